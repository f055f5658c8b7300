"""
Shared fixtures: fake HTTP responses, a sample account, and an in-memory
stand-in for the Postgres-backed functions the orchestrator calls.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
import requests

from shopify_ingest.extract.accounts_reader import Account
from shopify_ingest.normalize.states import load_state_table


def make_response(
    status_code: int = 200,
    body: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    url: str = "https://test-shop.myshopify.com/admin/api/2024-01/orders.json",
) -> requests.Response:
    """Build a real requests.Response so header lookups stay case-insensitive."""
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body if body is not None else {}).encode("utf-8")
    response.headers.update(headers or {})
    response.url = url
    return response


def link_next(url: str) -> Dict[str, str]:
    return {"Link": f'<{url}>; rel="next"'}


@pytest.fixture
def account() -> Account:
    return Account(
        tenant_id="tenant-1",
        account_id="acc-1",
        channel="shopify",
        access_token="shpat_test",
        store_domain="test-shop.myshopify.com",
        api_version="2024-01",
    )


@pytest.fixture
def states():
    return load_state_table()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def session() -> MagicMock:
    mock_session = MagicMock(spec=requests.Session)
    mock_session.headers = {}
    return mock_session


class FakeStore:
    """In-memory sync_state / orders / channel_accounts with the same call shapes."""

    def __init__(self):
        self.accounts: List[Account] = []
        self.watermarks: Dict[Tuple[str, str, str], Optional[datetime]] = {}
        self.orders: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self.upserts = 0
        self.refresh_calls = 0

    def get_connected_accounts(self, conn, tenant_id, channel):
        return [a for a in self.accounts if a.tenant_id == tenant_id and a.channel == channel]

    def get_last_sync(self, conn, tenant_id, channel, account_id):
        return self.watermarks.get((tenant_id, channel, account_id))

    def update_sync(self, conn, tenant_id, channel, account_id, timestamp):
        key = (tenant_id, channel, account_id)
        current = self.watermarks.get(key)
        self.watermarks[key] = max(current, timestamp) if current else timestamp

    def upsert_order(self, conn, row):
        key = (row["tenant_id"], row["channel"], row["external_order_id"])
        self.orders[key] = dict(row)
        self.upserts += 1

    def refresh_metrics(self, conn):
        self.refresh_calls += 1


@pytest.fixture
def fake_store(monkeypatch) -> FakeStore:
    store = FakeStore()
    for name in (
        "get_connected_accounts",
        "get_last_sync",
        "update_sync",
        "upsert_order",
        "refresh_metrics",
    ):
        monkeypatch.setattr(f"shopify_ingest.sync.{name}", getattr(store, name))
    return store
