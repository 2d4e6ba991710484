"""
Artifact routers
----------------
One router per cached artifact kind, all built by ``build_artifact_router``.

GET  /quest-mission?entity_id=...            — Stored mission order, or null
POST /quest-mission?force=<bool>             — Get-or-generate the mission order
GET  /quest-congrats · POST /quest-congrats
GET  /quest-encouragement · POST /quest-encouragement
GET  /chapter-story · POST /chapter-story    — entity_id is a chapter id

Every call runs inside the caller's active session (created on first use).
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from supabase import Client

from questforge.models.api.artifacts import (
    ArtifactGenerateRequest,
    ArtifactGenerateResponse,
    ArtifactResponse,
)
from questforge.routers.dependencies import get_text_generator
from questforge.services.artifact_kinds import CHAPTER_STORY, CONGRATS, ENCOURAGEMENT, MISSION
from questforge.services.artifact_service import ArtifactService
from questforge.services.auth_service import get_current_user_id
from questforge.services.generation_cache import ArtifactKind
from questforge.services.llm_service import TextGenerator
from questforge.services.session_service import SessionService
from questforge.supabase.supabase_client import get_supabase

logger = logging.getLogger(__name__)


def build_artifact_router(kind: ArtifactKind, prefix: str) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[prefix.strip("/")])

    @router.get("", response_model=ArtifactResponse)
    def get_artifact(
        entity_id: str = Query(..., min_length=1),
        user_id: str = Depends(get_current_user_id),
        sb: Client = Depends(get_supabase),
    ) -> ArtifactResponse:
        """The stored artifact for this entity in the active session. Never generates."""
        session = SessionService(sb).resolve_active_session(user_id)
        record = ArtifactService(sb).get(kind, entity_id, session.id)
        return ArtifactResponse(artifact=record)

    @router.post("", response_model=ArtifactGenerateResponse)
    def generate_artifact(
        req: ArtifactGenerateRequest,
        force: bool = Query(False),
        user_id: str = Depends(get_current_user_id),
        sb: Client = Depends(get_supabase),
        text_generator: TextGenerator = Depends(get_text_generator),
    ) -> ArtifactGenerateResponse:
        """
        Return the cached artifact, generating and storing it on a miss.

        ``force=true`` skips the cache read and overwrites the stored record.
        """
        session = SessionService(sb).resolve_active_session(user_id)
        result = ArtifactService(sb, text_generator).generate(
            kind, req.entity_id, session.id, user_id=user_id, force=force,
        )
        return ArtifactGenerateResponse(artifact=result.record, cached=result.cached)

    return router


ARTIFACT_ROUTERS: List[APIRouter] = [
    build_artifact_router(MISSION, "/quest-mission"),
    build_artifact_router(CONGRATS, "/quest-congrats"),
    build_artifact_router(ENCOURAGEMENT, "/quest-encouragement"),
    build_artifact_router(CHAPTER_STORY, "/chapter-story"),
]
