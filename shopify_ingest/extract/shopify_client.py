"""
Shopify Admin REST client for order extraction.

Fetches order list pages (cursor pagination via the Link header, proactive
throttling on the call-limit header) and single order details for list
entries that arrive without an address.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

import requests
from requests.utils import parse_header_links

from shopify_ingest.config import Config
from shopify_ingest.exceptions import ShopifyApiError
from shopify_ingest.extract.accounts_reader import Account
from shopify_ingest.extract.retry import (
    Degraded,
    Fatal,
    FetchOutcome,
    RetryPolicy,
    Sleep,
    Success,
    call_with_retry,
    parse_call_budget,
    throttle_if_needed,
)
from shopify_ingest.utils.logging_utils import log_progress, log_error

CALL_LIMIT_HEADER = "X-Shopify-Shop-Api-Call-Limit"


@dataclass(frozen=True)
class OrderPage:
    """One page of the orders listing."""

    orders: List[Dict[str, Any]]
    next_cursor: Optional[str]
    call_budget_ratio: Optional[float]
    url: str


def parse_next_link(link_header: Optional[str]) -> Optional[str]:
    """
    Extract the rel="next" URL from a Link header.

    Args:
        link_header: Raw header value, e.g. '<https://...>; rel="previous", <https://...>; rel="next"'

    Returns:
        The next page URL, or None when the sequence is exhausted.
    """
    if not link_header:
        return None
    for link in parse_header_links(link_header):
        rels = link.get("rel", "").split()
        if "next" in rels and link.get("url"):
            return link["url"]
    return None


def format_watermark(watermark: datetime) -> str:
    """Render a watermark the way updated_at_min expects it (ISO 8601)."""
    return watermark.isoformat()


class ShopifyClient:
    """Client for one store's Admin REST API."""

    def __init__(
        self,
        account: Account,
        session: Optional[requests.Session] = None,
        *,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
        list_policy: Optional[RetryPolicy] = None,
        detail_policy: Optional[RetryPolicy] = None,
        call_budget_threshold: Optional[float] = None,
        call_budget_pause: Optional[float] = None,
        detail_pause: Optional[float] = None,
        sleep: Sleep = time.sleep,
    ):
        self.account = account
        self.base_url = (
            f"https://{account.store_domain}/admin/api/{account.api_version}"
        )
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "X-Shopify-Access-Token": account.access_token,
                "Accept": "application/json",
            }
        )
        self.timeout = timeout if timeout is not None else Config.HTTP_TIMEOUT_SECONDS
        self.page_size = page_size or Config.PAGE_SIZE
        self.list_policy = list_policy or RetryPolicy(
            max_retries=Config.LIST_MAX_RETRIES,
            base_delay=Config.RETRY_BASE_DELAY_SECONDS,
        )
        self.detail_policy = detail_policy or RetryPolicy(
            max_retries=Config.DETAIL_MAX_RETRIES,
            base_delay=Config.RETRY_BASE_DELAY_SECONDS,
        )
        self.call_budget_threshold = (
            call_budget_threshold
            if call_budget_threshold is not None
            else Config.CALL_BUDGET_THRESHOLD
        )
        self.call_budget_pause = (
            call_budget_pause
            if call_budget_pause is not None
            else Config.CALL_BUDGET_PAUSE_SECONDS
        )
        self.detail_pause = (
            detail_pause if detail_pause is not None else Config.DETAIL_PAUSE_SECONDS
        )
        self.sleep = sleep
        self.section = f"Shopify API - {account.store_domain}"

    def close(self) -> None:
        self.session.close()

    def orders_url(self) -> str:
        return f"{self.base_url}/orders.json"

    def order_url(self, order_id: str) -> str:
        return f"{self.base_url}/orders/{order_id}.json"

    def build_list_params(self, watermark: Optional[datetime]) -> Dict[str, Any]:
        """Query for a fresh listing: every status, full pages, changes since the watermark."""
        params: Dict[str, Any] = {"status": "any", "limit": self.page_size}
        if watermark is not None:
            params["updated_at_min"] = format_watermark(watermark)
        return params

    def fetch_page(
        self, watermark: Optional[datetime], cursor: Optional[str] = None
    ) -> OrderPage:
        """
        Fetch one page of orders.

        Args:
            watermark: Lower bound for updated_at; ignored when a cursor is given
            cursor: Opaque next-page URL from a previous page, used verbatim

        Returns:
            OrderPage with the orders, next cursor and call-budget ratio

        Raises:
            ShopifyApiError: On any outcome other than a 2xx response
        """
        if cursor:
            url, params = cursor, None
        else:
            url, params = self.orders_url(), self.build_list_params(watermark)

        outcome = call_with_retry(
            lambda: self.session.get(url, params=params, timeout=self.timeout),
            self.list_policy,
            self.section,
            self.sleep,
        )

        if not isinstance(outcome, Success):
            status = outcome.status_code
            response = getattr(getattr(outcome, "error", None), "response", None)
            message = (
                f"Shopify {status}" if status is not None else "Shopify request failed"
            )
            log_error(self.section, f"{message} for {url}")
            error = ShopifyApiError(
                message,
                status_code=status,
                url=url,
                response_text=response.text if response is not None else None,
            )
            if isinstance(outcome, Fatal):
                raise error from outcome.error
            raise error

        response = outcome.value
        body = response.json() or {}
        orders = body.get("orders") or []
        return OrderPage(
            orders=orders,
            next_cursor=parse_next_link(response.headers.get("Link")),
            call_budget_ratio=parse_call_budget(response.headers.get(CALL_LIMIT_HEADER)),
            url=response.url or url,
        )

    def iter_pages(
        self, watermark: Optional[datetime], cursor: Optional[str] = None
    ) -> Iterator[OrderPage]:
        """
        Walk the order listing page by page.

        Starting from a cursor resumes mid-sequence. Between pages the call
        budget is checked and a cool-down taken when it runs high.
        """
        page_number = 0
        while True:
            page = self.fetch_page(watermark, cursor)
            page_number += 1
            log_progress(
                self.section,
                f"Page {page_number} ({page.url}): {len(page.orders)} order(s)"
                + (", more to come" if page.next_cursor else ", last page"),
            )
            yield page

            if not page.next_cursor:
                return

            throttle_if_needed(
                page.call_budget_ratio,
                self.call_budget_threshold,
                self.call_budget_pause,
                self.section,
                self.sleep,
            )
            cursor = page.next_cursor

    def fetch_order_detail(self, order_id: str) -> FetchOutcome:
        """
        Fetch a single order's full representation.

        Retryable failures are retried per the detail policy and end as
        Degraded; other non-2xx statuses come back as Fatal. A short pause
        follows every call to spare the shared call budget.

        Returns:
            Success wrapping the order dict, Degraded, or Fatal
        """
        url = self.order_url(order_id)
        try:
            outcome = call_with_retry(
                lambda: self.session.get(url, timeout=self.timeout),
                self.detail_policy,
                f"{self.section} - order {order_id}",
                self.sleep,
            )
            if not isinstance(outcome, Success):
                return outcome

            try:
                order = (outcome.value.json() or {}).get("order")
            except ValueError as e:
                return Degraded(reason=f"unreadable response body: {e}")
            if not order:
                return Degraded(reason="response had no order object")
            return Success(order)
        finally:
            self.sleep(self.detail_pause)
