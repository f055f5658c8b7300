"""
Shopify order ingestion for the multi-tenant analytics store.

This package handles incremental extraction of orders from each tenant's
connected Shopify stores, normalizing address data and upserting the
results into Postgres before triggering the metrics refresh.
"""
