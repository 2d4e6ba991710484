"""Resolves the calling user from the Supabase access token."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header
from supabase import Client

from questforge.helpers.request_context import patch_context
from questforge.services.errors import NotAuthenticated
from questforge.supabase.supabase_client import get_supabase

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        return ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def resolve_user_id(sb: Client, authorization: Optional[str]) -> str:
    """User id behind the bearer token, or NotAuthenticated."""
    token = bearer_token(authorization)
    if not token:
        raise NotAuthenticated()
    try:
        res = sb.auth.get_user(token)
    except Exception as e:
        logger.warning("auth.get_user.failed: %s", e)
        raise NotAuthenticated() from e

    user = getattr(res, "user", None)
    user_id = str(getattr(user, "id", "") or "")
    if not user_id:
        raise NotAuthenticated()
    patch_context(user_id=user_id)
    return user_id


def get_current_user_id(
    authorization: Optional[str] = Header(default=None),
    sb: Client = Depends(get_supabase),
) -> str:
    """FastAPI dependency: the authenticated user id."""
    return resolve_user_id(sb, authorization)
