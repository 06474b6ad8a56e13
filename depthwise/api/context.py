"""Per-request metadata: request id, client id and origin."""

from __future__ import annotations

import hashlib
import uuid
from typing import Optional

from fastapi import Request

from depthwise.config import settings
from depthwise.db.models import Origin

CLIENT_ID_HEADER = "x-client-id"
REQUEST_ID_HEADER = "x-request-id"


def client_ip(request: Request) -> Optional[str]:
    """First hop of ``X-Forwarded-For`` when present, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def hash_ip(ip: Optional[str], salt: Optional[str] = None) -> Optional[str]:
    if not ip:
        return None
    digest = hashlib.sha256(f"{salt or settings.ip_hash_salt}:{ip}".encode("utf-8"))
    return digest.hexdigest()


def client_id_for(request: Request, body_client_id: Optional[str] = None) -> Optional[str]:
    value = body_client_id or request.headers.get(CLIENT_ID_HEADER)
    if not value:
        return None
    return value.strip()[:128] or None


def request_id_for(request: Request) -> str:
    return request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())


def request_origin(request: Request, body_client_id: Optional[str] = None) -> Origin:
    """Build the :class:`Origin` copied onto a new session row.

    Geo fields come from edge-proxy headers; the raw IP is never stored.
    """
    headers = request.headers
    return Origin(
        client_id=client_id_for(request, body_client_id),
        ip_hash=hash_ip(client_ip(request)),
        country=headers.get("x-vercel-ip-country") or headers.get("cf-ipcountry"),
        region=headers.get("x-vercel-ip-country-region"),
        city=headers.get("x-vercel-ip-city"),
        user_agent=(headers.get("user-agent") or "")[:512] or None,
    )
