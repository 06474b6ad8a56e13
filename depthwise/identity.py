"""Caller identity: who is making a request, if anyone.

Credentials are never managed here.  An upstream identity provider issues an
HS256 bearer token whose ``sub`` claim is the stable user id; this module only
verifies it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import jwt

from depthwise.config import settings
from depthwise.errors import AuthenticationRequired

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


ANONYMOUS_IDENTITY = Identity()


def decode_bearer_token(token: str, secret: Optional[str] = None) -> Identity:
    """Verify *token* and return the identity it carries.

    Raises:
        AuthenticationRequired: If the token is invalid, expired, or has no ``sub``.
    """
    try:
        claims = jwt.decode(token, secret or settings.auth_secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise AuthenticationRequired("Token has expired") from None
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise AuthenticationRequired("Invalid authentication token") from None

    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationRequired("Token carries no subject")
    return Identity(user_id=str(user_id), email=claims.get("email"))


def issue_token(user_id: str, email: Optional[str] = None, secret: Optional[str] = None) -> str:
    """Mint a token for *user_id* (local development and tests)."""
    claims = {"sub": user_id}
    if email:
        claims["email"] = email
    return jwt.encode(claims, secret or settings.auth_secret, algorithm="HS256")
