"""
Postgres connection helper.
"""

import psycopg2

from shopify_ingest.config import Config


def get_db_connection():
    """Open a psycopg2 connection using the configured credentials."""
    return psycopg2.connect(**Config.get_db_connection_details())
