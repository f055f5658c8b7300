"""
State store module for managing incremental ingestion watermarks.

Uses the sync_state table to store and retrieve the last synced updated_at
per (tenant, channel, account).
"""

from datetime import datetime
from typing import Optional

import psycopg2

from shopify_ingest.utils.logging_utils import log_progress, log_error

READ_WATERMARK_SQL = """
    SELECT last_updated_at
    FROM sync_state
    WHERE tenant_id = %s AND channel = %s AND account_id = %s
"""

# GREATEST skips NULLs, so the stored value can only move forward.
WRITE_WATERMARK_SQL = """
    INSERT INTO sync_state (tenant_id, channel, account_id, last_updated_at)
    VALUES (%s, %s, %s, %s)
    ON CONFLICT (tenant_id, channel, account_id)
    DO UPDATE SET last_updated_at = GREATEST(sync_state.last_updated_at, EXCLUDED.last_updated_at)
"""


def get_last_sync(conn, tenant_id: str, channel: str, account_id: str) -> Optional[datetime]:
    """
    Retrieve the watermark for an account.

    Args:
        conn: Open psycopg2 connection
        tenant_id: Tenant identifier
        channel: Channel name
        account_id: Channel account identifier

    Returns:
        The last synced updated_at, or None if the account was never synced

    Raises:
        psycopg2.Error: Read failures are not masked with a default
    """
    section = f"State Store - {account_id}"
    try:
        with conn.cursor() as cursor:
            cursor.execute(READ_WATERMARK_SQL, (tenant_id, channel, account_id))
            row = cursor.fetchone()
    except psycopg2.Error as e:
        log_error(section, f"Failed to retrieve watermark: {e}")
        raise

    if row is None or row[0] is None:
        log_progress(section, "No watermark found")
        return None

    log_progress(section, f"Retrieved watermark: {row[0].isoformat()}")
    return row[0]


def update_sync(
    conn, tenant_id: str, channel: str, account_id: str, timestamp: datetime
) -> None:
    """
    Advance the watermark for an account and commit.

    Args:
        conn: Open psycopg2 connection
        tenant_id: Tenant identifier
        channel: Channel name
        account_id: Channel account identifier
        timestamp: Candidate watermark; an older value never replaces a newer one
    """
    section = f"State Store - {account_id}"
    try:
        with conn.cursor() as cursor:
            cursor.execute(
                WRITE_WATERMARK_SQL, (tenant_id, channel, account_id, timestamp)
            )
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        log_error(section, f"Failed to update watermark: {e}")
        raise

    log_progress(section, f"Updated watermark to: {timestamp.isoformat()}")
