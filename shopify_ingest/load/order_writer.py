"""
Order sink.

Maps Shopify order payloads to rows of the orders table and upserts them
on (tenant_id, channel, external_order_id), last write wins. Also owns the
downstream metrics refresh trigger.
"""

from datetime import datetime, UTC
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import psycopg2

from shopify_ingest.normalize.states import StateTable, normalize_state
from shopify_ingest.utils.logging_utils import log_progress, log_error

ORDER_COLUMNS = [
    "tenant_id",
    "channel",
    "account_id",
    "external_order_id",
    "order_date",
    "currency",
    "financial_status",
    "fulfillment_status",
    "gross_amount",
    "discount_amount",
    "net_sales_amount",
    "created_at",
    "state",
    "state_code",
    "pincode",
]

CONFLICT_KEY = ["tenant_id", "channel", "external_order_id"]

UPSERT_ORDER_SQL = """
    INSERT INTO orders ({columns})
    VALUES ({placeholders})
    ON CONFLICT ({conflict})
    DO UPDATE SET {updates}
""".format(
    columns=", ".join(ORDER_COLUMNS),
    placeholders=", ".join(["%s"] * len(ORDER_COLUMNS)),
    conflict=", ".join(CONFLICT_KEY),
    updates=", ".join(
        f"{col} = EXCLUDED.{col}" for col in ORDER_COLUMNS if col not in CONFLICT_KEY
    ),
)

REFRESH_METRICS_SQL = "SELECT refresh_metrics()"

PINCODE_FIELDS = ("zip", "postal_code", "postcode", "zip_code", "pincode")
STATE_FIELDS = ("province", "state", "region")
STATE_CODE_FIELDS = ("province_code", "state_code")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a Shopify ISO 8601 timestamp.

    Naive values are taken as UTC so every timestamp compares cleanly.

    Returns:
        Aware datetime, or None when the value is missing or unparseable
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _first(mapping: Dict[str, Any], keys) -> Any:
    for key in keys:
        if mapping.get(key):
            return mapping[key]
    return None


def order_address(order: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Shipping address when present, else billing, else None."""
    return order.get("shipping_address") or order.get("billing_address") or None


def _gross_amount(order: Dict[str, Any]) -> Optional[Decimal]:
    if order.get("total_price") is not None:
        return _to_decimal(order["total_price"])
    shop_money = (order.get("total_price_set") or {}).get("shop_money") or {}
    return _to_decimal(shop_money.get("amount"))


def _discount_amount(order: Dict[str, Any]) -> Optional[Decimal]:
    for key in ("total_discounts", "total_discount"):
        if order.get(key) is not None:
            return _to_decimal(order[key])
    return Decimal("0")


def _net_sales_amount(order: Dict[str, Any]) -> Optional[Decimal]:
    current = order.get("current_total_price")
    if isinstance(current, dict):
        if current.get("amount") is not None:
            return _to_decimal(current["amount"])
    elif current is not None:
        return _to_decimal(current)

    total = _to_decimal(order.get("total_price"))
    if total is None:
        return None
    discounts = _to_decimal(order.get("total_discounts")) or Decimal("0")
    return total - discounts


def build_order_row(
    tenant_id: str,
    channel: str,
    account_id: str,
    order: Dict[str, Any],
    states: StateTable,
) -> Dict[str, Any]:
    """
    Map a Shopify order payload to an orders row.

    Args:
        tenant_id: Owning tenant
        channel: Channel name
        account_id: Channel account the order came from
        order: Order object from the list or detail endpoint
        states: Reference table for state normalization

    Returns:
        Dict keyed by ORDER_COLUMNS

    Raises:
        ValueError: If the order has neither an id nor a name
    """
    if order.get("id") is not None:
        external_order_id = str(order["id"])
    elif order.get("name"):
        external_order_id = str(order["name"])
    else:
        raise ValueError("Shopify order has neither id nor name")

    address = order_address(order) or {}
    pincode = _first(address, PINCODE_FIELDS)
    normalized = normalize_state(
        states,
        _first(address, STATE_FIELDS),
        _first(address, STATE_CODE_FIELDS),
        pincode,
    )

    return {
        "tenant_id": tenant_id,
        "channel": channel,
        "account_id": account_id,
        "external_order_id": external_order_id,
        "order_date": parse_timestamp(order.get("created_at")),
        "currency": order.get("currency") or order.get("currency_code"),
        "financial_status": order.get("financial_status"),
        "fulfillment_status": order.get("fulfillment_status"),
        "gross_amount": _gross_amount(order),
        "discount_amount": _discount_amount(order),
        "net_sales_amount": _net_sales_amount(order),
        "created_at": parse_timestamp(order.get("created_at")),
        "state": normalized.state,
        "state_code": normalized.state_code,
        "pincode": str(pincode) if pincode is not None else None,
    }


def upsert_order(conn, row: Dict[str, Any]) -> None:
    """
    Insert or fully replace one order row and commit.

    Args:
        conn: Open psycopg2 connection
        row: Row produced by build_order_row
    """
    values = tuple(row.get(col) for col in ORDER_COLUMNS)
    try:
        with conn.cursor() as cursor:
            cursor.execute(UPSERT_ORDER_SQL, values)
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        log_error(
            f"Order Sink - {row.get('account_id')}",
            f"Failed to upsert order {row.get('external_order_id')}: {e}",
        )
        raise


def refresh_metrics(conn) -> None:
    """Fire the downstream metrics refresh; its semantics live in the database."""
    try:
        with conn.cursor() as cursor:
            cursor.execute(REFRESH_METRICS_SQL)
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        log_error("Metrics Refresh", str(e))
        raise
    log_progress("Metrics Refresh", "refresh_metrics() triggered")
