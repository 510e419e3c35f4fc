"""
Tracking API Routes.

Public endpoint for event ingestion. Accepts one event or a batch
`{siteId, events: [...]}`.

Key behaviors:
- Bot traffic gets a success-shaped `{"success": true, "ignored": true}`
- PII and malformed payloads are 400s naming the field
- Rate limiting is keyed by a hash of the client address
- X-Forwarded-For is honoured only from configured trusted proxies
"""

from __future__ import annotations

import hashlib
import ipaddress
import json
from typing import Any

from fastapi import APIRouter, Depends, Request

from src.api.deps import get_ingestion_service, get_trusted_proxies
from src.components.analytics import (
    AnalyticsIngestionService,
    IngestBatchInput,
    IngestEventInput,
    run_ingest,
    run_ingest_batch,
)
from src.core.errors import ValidationError

router = APIRouter()


# --- Helpers ---


def is_trusted_proxy(host: str, trusted: tuple[str, ...]) -> bool:
    if not host:
        return False
    if host in trusted:
        return True
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    for entry in trusted:
        try:
            if addr in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def get_client_ip(request: Request, trusted_proxies: tuple[str, ...] = ()) -> str:
    """
    Client address.

    X-Forwarded-For is only believed when the peer is a trusted proxy;
    the client is the nearest hop that is not itself a trusted proxy.
    """
    peer = request.client.host if request.client else ""
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded or not is_trusted_proxy(peer, trusted_proxies):
        return peer

    hops = [h.strip() for h in forwarded.split(",") if h.strip()]
    for hop in reversed(hops):
        if not is_trusted_proxy(hop, trusted_proxies):
            return hop
    return hops[0] if hops else peer


def get_client_key(client_ip: str) -> str:
    """Opaque rate-limit key; the raw address is never kept."""
    return hashlib.sha256(client_ip.encode()).hexdigest()[:16]


async def read_json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Invalid JSON body", code="malformed_json", field_name="body") from e


# --- Routes ---


@router.post("")
async def track(
    request: Request,
    service: AnalyticsIngestionService = Depends(get_ingestion_service),
    trusted_proxies: tuple[str, ...] = Depends(get_trusted_proxies),
) -> dict[str, Any]:
    """Ingest one tracking event or a batch of events."""
    body = await read_json_body(request)
    if not isinstance(body, dict):
        raise ValidationError("Body must be a JSON object", code="malformed_json", field_name="body")

    headers = dict(request.headers)
    client_ip = get_client_ip(request, trusted_proxies)
    client_key = get_client_key(client_ip)

    if "events" in body:
        batch = run_ingest_batch(
            IngestBatchInput(
                site_id=body.get("siteId") or body.get("site_id"),
                events=body["events"],
                headers=headers,
                client_ip=client_ip,
                client_key=client_key,
            ),
            service=service,
        )
        return {
            "success": True,
            "processed": batch.processed,
            "ignored": batch.ignored,
            "rejected": batch.rejected,
            "errors": [
                {"error": e.message, "code": e.code, "field": e.field_name} for e in batch.errors
            ],
        }

    out = run_ingest(
        IngestEventInput(data=body, headers=headers, client_ip=client_ip, client_key=client_key),
        service=service,
    )
    if out.ignored:
        return {"success": True, "ignored": True}
    if out.duplicate:
        return {"success": True, "duplicate": True}
    if out.errors:
        first = out.errors[0]
        raise ValidationError(first.message, code=first.code, field_name=first.field_name)
    return {"success": True}
