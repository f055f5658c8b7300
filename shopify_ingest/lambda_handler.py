"""
AWS Lambda handler for scheduled Shopify order ingestion.

Accepts {"tenant_id": "..."} for a single tenant or {"tenant_ids": [...]}
to fan out across tenants, and reports per-tenant results.
"""

import json
from datetime import datetime, UTC
from typing import Dict, Any

from shopify_ingest.config import Config
from shopify_ingest.sync import ingest_shopify, ingest_tenants
from shopify_ingest.utils.logging_utils import (
    log_section_start,
    log_section_complete,
    log_error,
)


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body)}


def _parse_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """Accept both direct invocation payloads and API Gateway proxy events."""
    if isinstance(event, dict) and isinstance(event.get("body"), str):
        return json.loads(event["body"] or "{}")
    return event or {}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler for order ingestion.

    Args:
        event: Payload carrying tenant_id or tenant_ids
        context: Lambda context object

    Returns:
        Dict with statusCode and a JSON body
    """
    run_timestamp = datetime.now(UTC)

    try:
        payload = _parse_event(event)
    except ValueError:
        return _response(400, {"error": "body must be JSON"})
    if not isinstance(payload, dict):
        return _response(400, {"error": "body must be a JSON object"})

    tenant_id = payload.get("tenant_id")
    tenant_ids = payload.get("tenant_ids")
    if not tenant_id and not tenant_ids:
        return _response(400, {"error": "tenant_id required"})
    if tenant_id is not None and not isinstance(tenant_id, str):
        return _response(400, {"error": "tenant_id must be a string"})
    if not tenant_id and (
        not isinstance(tenant_ids, list)
        or not all(isinstance(t, str) and t for t in tenant_ids)
    ):
        return _response(400, {"error": "tenant_ids must be a list of tenant ids"})

    try:
        log_section_start("Configuration Validation")
        Config.validate()
        log_section_complete("Configuration Validation")

        if tenant_id:
            result = ingest_shopify(tenant_id)
            return _response(
                200,
                {
                    "ok": True,
                    "run_timestamp": run_timestamp.isoformat(),
                    "results": {tenant_id: {"status": "success", **result.to_dict()}},
                },
            )

        results = ingest_tenants(tenant_ids)
        failed = [t for t, r in results.items() if r.get("status") == "error"]
        return _response(
            500 if failed else 200,
            {
                "ok": not failed,
                "run_timestamp": run_timestamp.isoformat(),
                "results": results,
                "summary": {
                    "successful_tenants": len(results) - len(failed),
                    "failed_tenants": len(failed),
                },
            },
        )
    except Exception as e:
        log_error("Shopify Ingestion", str(e))
        return _response(
            500, {"ok": False, "error": str(e), "run_timestamp": run_timestamp.isoformat()}
        )
