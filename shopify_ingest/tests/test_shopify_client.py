"""
Unit tests for the Shopify client: page fetching, pagination and detail fetches.
"""

from datetime import datetime, UTC

import pytest
import requests

from conftest import make_response, link_next
from shopify_ingest.exceptions import ShopifyApiError
from shopify_ingest.extract.retry import Degraded, Fatal, RetryPolicy, Success
from shopify_ingest.extract.shopify_client import ShopifyClient, parse_next_link

BASE = "https://test-shop.myshopify.com/admin/api/2024-01"


@pytest.fixture
def client(account, session, fake_sleep):
    return ShopifyClient(
        account,
        session,
        timeout=30,
        page_size=250,
        list_policy=RetryPolicy(max_retries=0, base_delay=0.2),
        detail_policy=RetryPolicy(max_retries=3, base_delay=0.2),
        call_budget_threshold=0.8,
        call_budget_pause=0.6,
        detail_pause=0.15,
        sleep=fake_sleep,
    )


class TestParseNextLink:
    """Link header parsing."""

    def test_next_only(self):
        assert parse_next_link(f'<{BASE}/orders.json?page_info=abc>; rel="next"') == (
            f"{BASE}/orders.json?page_info=abc"
        )

    def test_previous_and_next(self):
        header = (
            f'<{BASE}/orders.json?page_info=prev>; rel="previous", '
            f'<{BASE}/orders.json?page_info=nxt>; rel="next"'
        )
        assert parse_next_link(header) == f"{BASE}/orders.json?page_info=nxt"

    def test_previous_only_means_exhausted(self):
        assert parse_next_link(f'<{BASE}/orders.json?page_info=prev>; rel="previous"') is None

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header(self, header):
        assert parse_next_link(header) is None


class TestFetchPage:
    """Request construction and response parsing for one list page."""

    def test_session_carries_access_token(self, client, session):
        assert session.headers["X-Shopify-Access-Token"] == "shpat_test"

    def test_fresh_query_with_watermark(self, client, session):
        session.get.return_value = make_response(
            200,
            {"orders": [{"id": 1}]},
            {"X-Shopify-Shop-Api-Call-Limit": "41/50", **link_next(f"{BASE}/orders.json?page_info=p2")},
        )
        watermark = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

        page = client.fetch_page(watermark)

        session.get.assert_called_once_with(
            f"{BASE}/orders.json",
            params={
                "status": "any",
                "limit": 250,
                "updated_at_min": "2024-01-15T10:30:00+00:00",
            },
            timeout=30,
        )
        assert page.orders == [{"id": 1}]
        assert page.next_cursor == f"{BASE}/orders.json?page_info=p2"
        assert page.call_budget_ratio == pytest.approx(0.82)

    def test_fresh_query_without_watermark(self, client, session):
        session.get.return_value = make_response(200, {"orders": []})
        client.fetch_page(None)
        assert session.get.call_args.kwargs["params"] == {"status": "any", "limit": 250}

    def test_cursor_used_verbatim(self, client, session):
        cursor = f"{BASE}/orders.json?limit=250&page_info=xyz"
        session.get.return_value = make_response(200, {"orders": []})

        page = client.fetch_page(datetime(2024, 1, 1, tzinfo=UTC), cursor)

        session.get.assert_called_once_with(cursor, params=None, timeout=30)
        assert page.next_cursor is None
        assert page.call_budget_ratio is None

    def test_missing_orders_key(self, client, session):
        session.get.return_value = make_response(200, {})
        assert client.fetch_page(None).orders == []

    @pytest.mark.parametrize("status", [401, 404, 429, 500, 503])
    def test_non_2xx_raises_without_retry(self, client, session, sleeps, status):
        session.get.return_value = make_response(status, {"errors": "nope"})

        with pytest.raises(ShopifyApiError) as exc_info:
            client.fetch_page(None)

        assert exc_info.value.status_code == status
        assert exc_info.value.url == f"{BASE}/orders.json"
        assert session.get.call_count == 1
        assert sleeps == []

    def test_fatal_status_keeps_http_error_as_cause(self, client, session):
        session.get.return_value = make_response(404, {"errors": "Not Found"})

        with pytest.raises(ShopifyApiError) as exc_info:
            client.fetch_page(None)

        cause = exc_info.value.__cause__
        assert isinstance(cause, requests.exceptions.HTTPError)
        assert cause.response.status_code == 404

    def test_transport_error_raises(self, client, session):
        session.get.side_effect = requests.exceptions.ReadTimeout("stalled")
        with pytest.raises(ShopifyApiError) as exc_info:
            client.fetch_page(None)
        assert exc_info.value.status_code is None

    def test_list_retries_are_tunable(self, account, session, sleeps, fake_sleep):
        client = ShopifyClient(
            account, session, list_policy=RetryPolicy(max_retries=2), sleep=fake_sleep
        )
        session.get.side_effect = [make_response(503), make_response(200, {"orders": []})]
        assert client.fetch_page(None).orders == []
        assert sleeps == pytest.approx([0.2])


class TestIterPages:
    """Pagination termination and throttling between pages."""

    def test_stops_after_last_page(self, client, session):
        session.get.side_effect = [
            make_response(200, {"orders": [{"id": 1}]}, link_next(f"{BASE}/orders.json?page_info=2")),
            make_response(200, {"orders": [{"id": 2}]}, link_next(f"{BASE}/orders.json?page_info=3")),
            make_response(200, {"orders": [{"id": 3}]}),
        ]

        pages = list(client.iter_pages(None))

        assert [p.orders[0]["id"] for p in pages] == [1, 2, 3]
        assert session.get.call_count == 3
        assert session.get.call_args_list[1].args[0] == f"{BASE}/orders.json?page_info=2"
        assert session.get.call_args_list[2].args[0] == f"{BASE}/orders.json?page_info=3"

    def test_progress_log_names_page_url(self, client, session, capsys):
        second = f"{BASE}/orders.json?page_info=2"
        session.get.side_effect = [
            make_response(200, {"orders": []}, link_next(second)),
            make_response(200, {"orders": [{"id": 2}]}, url=second),
        ]

        pages = list(client.iter_pages(None))

        assert pages[1].url == second
        out = capsys.readouterr().out
        assert f"Page 1 ({BASE}/orders.json)" in out
        assert f"Page 2 ({second}): 1 order(s), last page" in out

    def test_resume_from_cursor(self, client, session):
        session.get.return_value = make_response(200, {"orders": [{"id": 9}]})
        pages = list(client.iter_pages(None, cursor=f"{BASE}/orders.json?page_info=mid"))
        assert len(pages) == 1
        session.get.assert_called_once_with(
            f"{BASE}/orders.json?page_info=mid", params=None, timeout=30
        )

    def test_high_call_budget_pauses_before_next_page(self, client, session, sleeps):
        session.get.side_effect = [
            make_response(
                200,
                {"orders": []},
                {"X-Shopify-Shop-Api-Call-Limit": "41/50", **link_next(f"{BASE}/orders.json?page_info=2")},
            ),
            make_response(200, {"orders": []}),
        ]
        list(client.iter_pages(None))
        assert sleeps == [0.6]

    def test_moderate_call_budget_does_not_pause(self, client, session, sleeps):
        session.get.side_effect = [
            make_response(
                200,
                {"orders": []},
                {"X-Shopify-Shop-Api-Call-Limit": "30/50", **link_next(f"{BASE}/orders.json?page_info=2")},
            ),
            make_response(200, {"orders": []}),
        ]
        list(client.iter_pages(None))
        assert sleeps == []


class TestFetchOrderDetail:
    """Single order fetch with degrade-on-exhaustion semantics."""

    def test_success(self, client, session, sleeps):
        session.get.return_value = make_response(200, {"order": {"id": 7, "shipping_address": {"zip": "1"}}})

        outcome = client.fetch_order_detail("7")

        assert isinstance(outcome, Success)
        assert outcome.value["id"] == 7
        session.get.assert_called_once_with(f"{BASE}/orders/7.json", timeout=30)
        assert sleeps == [0.15]

    def test_backoff_schedule_then_degraded(self, client, session, sleeps):
        session.get.return_value = make_response(503)

        outcome = client.fetch_order_detail("7")

        assert isinstance(outcome, Degraded)
        assert session.get.call_count == 4
        assert sleeps == pytest.approx([0.2, 0.4, 0.8, 0.15])

    def test_retry_after_honoured(self, client, session, sleeps):
        session.get.side_effect = [
            make_response(429, headers={"Retry-After": "2"}),
            make_response(200, {"order": {"id": 7}}),
        ]
        outcome = client.fetch_order_detail("7")
        assert isinstance(outcome, Success)
        assert sleeps == pytest.approx([2.0, 0.15])

    def test_not_found_is_fatal_but_still_pauses(self, client, session, sleeps):
        session.get.return_value = make_response(404)
        outcome = client.fetch_order_detail("7")
        assert isinstance(outcome, Fatal)
        assert session.get.call_count == 1
        assert sleeps == [0.15]

    def test_body_without_order_is_degraded(self, client, session):
        session.get.return_value = make_response(200, {"something": "else"})
        assert isinstance(client.fetch_order_detail("7"), Degraded)
