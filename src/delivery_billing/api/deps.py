"""Request dependencies shared by the route groups."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Header, HTTPException, status

from ..db.supabase import get_supabase_client

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CurrentAccount:
    id: str
    email: str | None = None


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_account(authorization: str | None = Header(default=None)) -> CurrentAccount:
    """Resolve the caller from a Supabase access token (``Authorization: Bearer ...``)."""
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token.")

    supabase = get_supabase_client()
    if supabase is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication backend not configured.",
        )

    try:
        response = supabase.auth.get_user(token)
    except Exception as exc:
        logger.info(f"Token verification failed: {exc}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired session.") from exc

    user = getattr(response, "user", None)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired session.")
    return CurrentAccount(id=str(user.id), email=getattr(user, "email", None))
