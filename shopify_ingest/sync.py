"""
Shopify sync orchestration.

Drives one tenant's run: list connected accounts, walk each account's
changed orders since its watermark, resolve missing addresses, upsert,
advance the watermark, then trigger the metrics refresh once.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from shopify_ingest.config import Config
from shopify_ingest.exceptions import ConfigurationError
from shopify_ingest.extract.accounts_reader import Account, get_connected_accounts
from shopify_ingest.extract.retry import Degraded, Sleep, Success
from shopify_ingest.extract.shopify_client import ShopifyClient
from shopify_ingest.load.order_writer import (
    build_order_row,
    order_address,
    parse_timestamp,
    refresh_metrics,
    upsert_order,
)
from shopify_ingest.normalize.states import StateTable, load_state_table
from shopify_ingest.utils.db import get_db_connection
from shopify_ingest.utils.logging_utils import (
    log_section_start,
    log_section_complete,
    log_progress,
    log_warning,
    log_error,
)
from shopify_ingest.utils.state import get_last_sync, update_sync


@dataclass
class AccountResult:
    account_id: str
    pages: int = 0
    orders_upserted: int = 0
    detail_fetches: int = 0
    details_degraded: int = 0
    previous_watermark: Optional[datetime] = None
    watermark: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "pages": self.pages,
            "orders_upserted": self.orders_upserted,
            "detail_fetches": self.detail_fetches,
            "details_degraded": self.details_degraded,
            "previous_watermark": _iso(self.previous_watermark),
            "watermark": _iso(self.watermark),
        }


@dataclass
class IngestResult:
    tenant_id: str
    accounts: List[AccountResult] = field(default_factory=list)

    @property
    def orders_upserted(self) -> int:
        return sum(a.orders_upserted for a in self.accounts)

    @property
    def detail_fetches(self) -> int:
        return sum(a.detail_fetches for a in self.accounts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "accounts_synced": len(self.accounts),
            "orders_upserted": self.orders_upserted,
            "detail_fetches": self.detail_fetches,
            "accounts": [a.to_dict() for a in self.accounts],
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def resolve_order(
    client: ShopifyClient, order: Dict[str, Any], result: AccountResult, section: str
) -> Dict[str, Any]:
    """
    Return the payload to persist for a list entry.

    Entries with an address are used as-is. Otherwise the full order is
    fetched; if that fails the list entry is kept and the row simply has
    no state or pincode.
    """
    if order_address(order) or order.get("id") is None:
        return order

    order_id = str(order["id"])
    result.detail_fetches += 1
    outcome = client.fetch_order_detail(order_id)

    if isinstance(outcome, Success):
        return outcome.value

    result.details_degraded += 1
    if isinstance(outcome, Degraded):
        log_warning(section, f"Detail for order {order_id} unavailable ({outcome.reason}), using list entry")
    else:
        log_error(section, f"Detail for order {order_id} failed: {outcome.error}; using list entry")
    return order


def ingest_account(
    conn,
    account: Account,
    client: ShopifyClient,
    states: StateTable,
    now: Optional[datetime] = None,
) -> AccountResult:
    """
    Sync one account from its watermark to the end of the order listing.

    The watermark only moves after the whole listing has been walked, and
    only if some order carried an updated_at. A failure part-way leaves
    already upserted orders committed and the old watermark in place.

    Args:
        conn: Open psycopg2 connection
        account: Account to sync
        client: Shopify client bound to the account
        states: State reference table
        now: Clock override for the first-sync lookback window

    Returns:
        AccountResult with counters and watermarks
    """
    section = f"Shopify Sync - {account.account_id}"
    log_section_start(section)
    result = AccountResult(account_id=account.account_id)

    result.previous_watermark = get_last_sync(
        conn, account.tenant_id, account.channel, account.account_id
    )
    since = result.previous_watermark
    if since is None:
        since = (now or datetime.now(UTC)) - timedelta(days=Config.LOOKBACK_DAYS)
        log_progress(section, f"First sync, looking back {Config.LOOKBACK_DAYS} days to {since.isoformat()}")

    candidate: Optional[datetime] = None
    for page in client.iter_pages(since):
        result.pages += 1
        for raw_order in page.orders:
            order = resolve_order(client, raw_order, result, section)
            row = build_order_row(
                account.tenant_id, account.channel, account.account_id, order, states
            )
            upsert_order(conn, row)
            result.orders_upserted += 1

            updated_at = parse_timestamp(order.get("updated_at"))
            if updated_at is not None and (candidate is None or updated_at > candidate):
                candidate = updated_at

    if candidate is not None:
        update_sync(conn, account.tenant_id, account.channel, account.account_id, candidate)
        if result.previous_watermark is not None and result.previous_watermark > candidate:
            result.watermark = result.previous_watermark
        else:
            result.watermark = candidate
    else:
        result.watermark = result.previous_watermark
        log_progress(section, "No orders with updated_at seen, watermark unchanged")

    log_section_complete(
        section,
        f"{result.orders_upserted} order(s) over {result.pages} page(s), "
        f"{result.detail_fetches} detail fetch(es)",
    )
    return result


def ingest_shopify(
    tenant_id: str,
    conn=None,
    *,
    session_factory: Optional[Callable[[], requests.Session]] = None,
    states: Optional[StateTable] = None,
    sleep: Sleep = time.sleep,
    now: Optional[datetime] = None,
) -> IngestResult:
    """
    Ingest every connected Shopify account of a tenant, then refresh metrics.

    Accounts run one after another. Any failure aborts the run and is
    re-raised; accounts finished before it keep their new watermarks.

    Args:
        tenant_id: Tenant to sync
        conn: Open psycopg2 connection; one is opened (and closed) when omitted
        session_factory: Builds the HTTP session for each account
        states: State reference table; the configured one is loaded when omitted
        sleep: Injected sleep used for backoff and throttling
        now: Clock override for first-sync lookback

    Returns:
        IngestResult summarizing the run

    Raises:
        ConfigurationError: If the tenant has no connected Shopify account
    """
    section = f"Shopify Ingestion - {tenant_id}"
    log_section_start(section)

    if states is None:
        states = load_state_table(Config.get_state_map_path())
    owns_conn = conn is None
    if owns_conn:
        conn = get_db_connection()

    result = IngestResult(tenant_id=tenant_id)
    try:
        accounts = get_connected_accounts(conn, tenant_id, Config.CHANNEL)
        if not accounts:
            raise ConfigurationError(
                f"No connected {Config.CHANNEL} accounts found for tenant {tenant_id}"
            )

        for account in accounts:
            session = session_factory() if session_factory else None
            client = ShopifyClient(account, session, sleep=sleep)
            try:
                result.accounts.append(
                    ingest_account(conn, account, client, states, now=now)
                )
            finally:
                client.close()

        refresh_metrics(conn)
    except Exception as e:
        log_error(section, e)
        raise
    finally:
        if owns_conn:
            conn.close()

    log_section_complete(
        section,
        f"{len(result.accounts)} account(s), {result.orders_upserted} order(s) upserted",
    )
    return result


def ingest_tenants(
    tenant_ids: Iterable[str], max_workers: Optional[int] = None
) -> Dict[str, Dict[str, Any]]:
    """
    Run several tenants in parallel, each on its own connection.

    Parallelism is across tenants only; one tenant's accounts still run
    sequentially inside ingest_shopify.

    Returns:
        Dict of tenant_id to a result dict with status 'success' or 'error'
    """
    tenant_ids = list(dict.fromkeys(tenant_ids))
    results: Dict[str, Dict[str, Any]] = {}

    with ThreadPoolExecutor(max_workers=max_workers or Config.MAX_WORKERS) as executor:
        future_to_tenant = {
            executor.submit(ingest_shopify, tenant_id): tenant_id
            for tenant_id in tenant_ids
        }
        for future in as_completed(future_to_tenant):
            tenant_id = future_to_tenant[future]
            try:
                results[tenant_id] = {"status": "success", **future.result().to_dict()}
            except Exception as e:
                results[tenant_id] = {"status": "error", "error": str(e)}

    return results
