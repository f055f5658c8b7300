"""
Command-line driver: ingest one tenant's Shopify orders.

Usage:
    python -m shopify_ingest <tenant_id>
"""

import argparse
import json
from typing import List, Optional

from shopify_ingest.config import Config
from shopify_ingest.sync import ingest_shopify


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shopify-ingest",
        description="Incrementally ingest Shopify orders for a tenant.",
    )
    parser.add_argument("tenant_id", help="Tenant whose connected Shopify accounts to sync")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run summary as JSON",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run one ingestion and map the outcome to an exit status.

    Returns:
        0 on success, 1 on any failure
    """
    args = build_parser().parse_args(argv)

    try:
        Config.validate()
        result = ingest_shopify(args.tenant_id)
    except Exception as e:
        print(f"[FAILED] Ingestion failed: {e}")
        return 1

    print("[OK] Ingestion completed")
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"   Accounts synced: {len(result.accounts)}")
        print(f"   Orders upserted: {result.orders_upserted}")
        print(f"   Detail fetches: {result.detail_fetches}")
    return 0
