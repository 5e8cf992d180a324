"""
Request authentication.

Tokens are opaque strings issued by `ReleaseDb.issue_token` (see the
`create-user` CLI command). A request carries one either as
`Authorization: Bearer <token>` or in the auth cookie.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

from releasedesk.core.models import Actor, Role

if TYPE_CHECKING:
    from releasedesk.core.release_db import ReleaseDb

logger = logging.getLogger(__name__)

# References set by configure_auth
_db: ReleaseDb | None = None
_cookie_name: str = "auth_token"


def configure_auth(db: ReleaseDb, cookie_name: str = "auth_token") -> None:
    global _db, _cookie_name
    _db = db
    _cookie_name = cookie_name


def _token_from_request(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get(_cookie_name) or None


async def get_actor(request: Request) -> Actor:
    """FastAPI dependency: the authenticated actor, or HTTP 401."""
    if _db is None:
        raise HTTPException(status_code=503, detail="Server not initialized")

    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    user = await _db.resolve_token(token)
    if user is None:
        logger.info("Rejected invalid or expired token on %s", request.url.path)
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return Actor(user_id=user.id, role=Role(user.role))
