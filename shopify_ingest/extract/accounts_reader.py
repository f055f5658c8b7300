"""
Tenant account directory reader.

Loads the connected Shopify channel accounts for a tenant, including the
store credentials kept in the auth_json column.
"""

import json
from dataclasses import dataclass
from typing import List, Dict, Any

import psycopg2
from psycopg2.extras import RealDictCursor

from shopify_ingest.exceptions import ConfigurationError
from shopify_ingest.utils.logging_utils import log_progress, log_error


@dataclass(frozen=True)
class Account:
    """One connected channel credential for a tenant."""

    tenant_id: str
    account_id: str
    channel: str
    access_token: str
    store_domain: str
    api_version: str
    status: str = "connected"

    def __repr__(self) -> str:
        # keep the token out of logs and tracebacks
        return (
            f"Account(tenant_id={self.tenant_id!r}, account_id={self.account_id!r}, "
            f"store_domain={self.store_domain!r}, status={self.status!r})"
        )


ACCOUNTS_QUERY = """
    SELECT
        id,
        tenant_id,
        channel,
        status,
        auth_json
    FROM channel_accounts
    WHERE tenant_id = %s
      AND channel = %s
      AND status = 'connected'
    ORDER BY id
"""


def account_from_row(row: Dict[str, Any]) -> Account:
    """
    Build an Account from a channel_accounts row.

    Raises:
        ConfigurationError: If the stored credential is missing a field.
    """
    auth = row.get("auth_json") or {}
    if isinstance(auth, str):
        auth = json.loads(auth)

    missing = [
        key for key in ("store_domain", "api_version", "access_token") if not auth.get(key)
    ]
    if missing:
        raise ConfigurationError(
            f"Account {row['id']} auth_json missing: {', '.join(missing)}"
        )

    return Account(
        tenant_id=str(row["tenant_id"]),
        account_id=str(row["id"]),
        channel=row["channel"],
        access_token=auth["access_token"],
        store_domain=auth["store_domain"],
        api_version=auth["api_version"],
        status=row["status"],
    )


def get_connected_accounts(conn, tenant_id: str, channel: str) -> List[Account]:
    """
    Fetch every connected account for a tenant on one channel.

    Args:
        conn: Open psycopg2 connection
        tenant_id: Tenant whose accounts to list
        channel: Channel name (e.g. 'shopify')

    Returns:
        List of Account, possibly empty
    """
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(ACCOUNTS_QUERY, (tenant_id, channel))
            rows = cursor.fetchall()
    except psycopg2.Error as e:
        log_error(f"Account Directory - {tenant_id}", f"Database error: {e}")
        raise

    accounts = [account_from_row(row) for row in rows]
    log_progress(
        f"Account Directory - {tenant_id}",
        f"Found {len(accounts)} connected {channel} account(s)",
    )
    return accounts
