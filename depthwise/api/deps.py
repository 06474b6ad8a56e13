"""FastAPI dependencies: database connection, caller identity, generator."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from typing import Optional

from fastapi import Header, Request

from depthwise.db import get_connection
from depthwise.errors import AuthenticationRequired
from depthwise.generator.client import ContentGenerator, LLMContentGenerator
from depthwise.identity import ANONYMOUS_IDENTITY, Identity, decode_bearer_token


def get_db(request: Request) -> Iterator[sqlite3.Connection]:
    """One connection per request, closed when the response is done."""
    conn = get_connection(request.app.state.db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_identity(authorization: Optional[str] = Header(default=None)) -> Identity:
    """Anonymous without a header; a present but invalid token is rejected."""
    if not authorization:
        return ANONYMOUS_IDENTITY
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationRequired("Invalid authorization header")
    return decode_bearer_token(token.strip())


def require_identity(authorization: Optional[str] = Header(default=None)) -> Identity:
    identity = get_identity(authorization)
    if not identity.authenticated:
        raise AuthenticationRequired()
    return identity


def get_generator(request: Request) -> ContentGenerator:
    generator = getattr(request.app.state, "generator", None)
    if generator is None:
        generator = LLMContentGenerator()
        request.app.state.generator = generator
    return generator
