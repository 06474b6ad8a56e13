"""Account usage and service health.

Routes
------
GET /user/usage    Tier, monthly allowance and token/cost totals (signed in)
GET /health        Liveness plus a database round-trip
"""

from __future__ import annotations

import sqlite3
from time import time
from typing import Any

from fastapi import APIRouter, Depends

from depthwise import __version__
from depthwise.api.deps import get_db, require_identity
from depthwise.api.schemas import usage_dict
from depthwise.config import settings
from depthwise.db import transaction
from depthwise.db import users as user_store
from depthwise.identity import Identity

router = APIRouter()


@router.get("/user/usage")
def usage_endpoint(
    conn: sqlite3.Connection = Depends(get_db),
    identity: Identity = Depends(require_identity),
) -> dict[str, Any]:
    now = int(time())
    with transaction(conn):
        user = user_store.ensure_user(conn, identity.user_id, identity.email, now=now)  # type: ignore[arg-type]
        user = user_store.reset_if_due(conn, user, settings.quota_window_days, now=now)
    return usage_dict(user, now, settings.quota_window_days)


@router.get("/health")
def health_endpoint(conn: sqlite3.Connection = Depends(get_db)) -> dict[str, Any]:
    conn.execute("SELECT 1").fetchone()
    return {"status": "ok", "version": __version__}
