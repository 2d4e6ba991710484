"""
questforge/services/session_service.py
--------------------------------------
Resolves the player's single active game session (tenant / save slot).

Almost every tenant-scoped operation starts with
``SessionService(sb).resolve_active_session(user_id)``.

Invariant: at most one ``game_sessions`` row per user has ``is_active = true``.
The store enforces it with a partial unique index; concurrent resolutions for
a brand new user therefore race on the insert, and the loser re-reads the
winner's row instead of failing.
"""
from __future__ import annotations

import logging
from typing import Optional

from postgrest import APIError
from supabase import Client

from questforge.helpers.request_context import patch_context
from questforge.models.domain.sessions import (
    DEFAULT_SESSION_TITLE,
    SESSION_COLUMNS,
    GameSession,
    GameSessionCreate,
)
from questforge.services.errors import NotAuthenticated, NotFound, StorageError
from questforge.supabase.supabase_client import first_row, is_unique_violation, run_lookup, run_query

logger = logging.getLogger(__name__)

MAX_RESOLVE_ATTEMPTS = 3


class SessionService:
    """Active-session resolution plus explicit create / activate."""

    def __init__(self, supabase: Client):
        self.sb = supabase

    # ── Read ──────────────────────────────────────────────────────────────────

    def get_active(self, user_id: str) -> Optional[GameSession]:
        res = run_query(
            "game_sessions read active",
            lambda: (
                self.sb.table("game_sessions")
                .select(SESSION_COLUMNS)
                .eq("user_id", user_id)
                .eq("is_active", True)
                .limit(1)
                .execute()
            ),
        )
        row = first_row(res)
        return GameSession(**row) if row else None

    def get_active_or_latest(self, user_id: str) -> Optional[GameSession]:
        """The active session, else the most recently created one, else None."""
        active = self.get_active(user_id)
        if active is not None:
            return active
        res = run_query(
            "game_sessions read latest",
            lambda: (
                self.sb.table("game_sessions")
                .select(SESSION_COLUMNS)
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            ),
        )
        row = first_row(res)
        return GameSession(**row) if row else None

    # ── Write ─────────────────────────────────────────────────────────────────

    def _deactivate_all(self, user_id: str) -> None:
        run_query(
            "game_sessions deactivate",
            lambda: (
                self.sb.table("game_sessions")
                .update({"is_active": False})
                .eq("user_id", user_id)
                .execute()
            ),
        )

    def _insert_active(self, user_id: str, title: str) -> GameSession:
        payload = GameSessionCreate(user_id=user_id, title=title).model_dump(mode="json")
        res = self.sb.table("game_sessions").insert(payload).execute()
        row = first_row(res)
        if row is None:
            raise StorageError("game_sessions insert returned no row")
        return GameSession(**row)

    def create_session(self, user_id: str, title: Optional[str] = None) -> GameSession:
        """Deactivate every session of the user, then create a new active one."""
        if not user_id:
            raise NotAuthenticated()
        self._deactivate_all(user_id)
        session = run_query(
            "game_sessions insert",
            lambda: self._insert_active(user_id, (title or "").strip() or DEFAULT_SESSION_TITLE),
        )
        patch_context(user_id=user_id, session_id=session.id)
        logger.info("sessions.create.ok session=%s", session.id)
        return session

    def activate_session(self, user_id: str, session_id: str) -> GameSession:
        """Make an existing session of the user the active one."""
        if not user_id:
            raise NotAuthenticated()
        res = run_lookup(
            "game_sessions read",
            lambda: (
                self.sb.table("game_sessions")
                .select("id")
                .eq("id", session_id)
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            ),
        )
        if first_row(res) is None:
            raise NotFound(f"Session not found: {session_id}")

        self._deactivate_all(user_id)
        res = run_query(
            "game_sessions activate",
            lambda: (
                self.sb.table("game_sessions")
                .update({"is_active": True})
                .eq("id", session_id)
                .eq("user_id", user_id)
                .execute()
            ),
        )
        row = first_row(res)
        if row is None:
            raise NotFound(f"Session not found: {session_id}")
        patch_context(user_id=user_id, session_id=row["id"])
        return GameSession(**row)

    # ── Resolve ───────────────────────────────────────────────────────────────

    def resolve_active_session(self, user_id: Optional[str]) -> GameSession:
        """
        Return the user's active session, creating one if none exists.

        1. Read the active row; found → patch context, return.
        2. Otherwise deactivate all of the user's sessions (clears any state
           left inconsistent by an earlier failure) and insert a new active one.
        3. A unique violation on insert means a concurrent call just created
           it: re-read instead of failing.
        """
        if not user_id:
            raise NotAuthenticated()
        patch_context(user_id=user_id)

        for attempt in range(1, MAX_RESOLVE_ATTEMPTS + 1):
            existing = self.get_active(user_id)
            if existing is not None:
                patch_context(session_id=existing.id)
                return existing

            self._deactivate_all(user_id)
            try:
                created = self._insert_active(user_id, DEFAULT_SESSION_TITLE)
            except APIError as e:
                if is_unique_violation(e):
                    logger.info("sessions.resolve.race attempt=%d", attempt)
                    continue
                raise StorageError(f"game_sessions insert failed: {e.message}") from e
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"game_sessions insert failed: {e}") from e

            patch_context(session_id=created.id)
            logger.info("sessions.resolve.created session=%s", created.id)
            return created

        raise StorageError(
            f"Could not resolve an active session after {MAX_RESOLVE_ATTEMPTS} attempts"
        )
