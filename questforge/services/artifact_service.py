"""
questforge/services/artifact_service.py
---------------------------------------
Read and generate cached artifacts for a session.

The one entry point shared by the HTTP routes and the queue worker: both end
up in ``ArtifactService.generate`` so a synchronous POST and a queued job for
the same (entity, session) hit the same cache row. Every provider call is
also written to the ``ai_generations`` audit table.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from supabase import Client

from questforge.helpers.request_context import current_context, patch_context
from questforge.models.domain._time import utcnow_iso
from questforge.models.domain.artifacts import GenerationRecord
from questforge.services.generation_cache import (
    ArtifactKind,
    CachedArtifact,
    GeneratedArtifact,
    GenerationCache,
)
from questforge.services.generation_log_service import GenerationAttempt, GenerationLogService
from questforge.services.llm_service import LLMService, TextGenerator
from questforge.services.quest_context_service import QuestContextService

logger = logging.getLogger(__name__)


class ArtifactService:
    """Binds an ArtifactKind to the context loaders and the text generator."""

    def __init__(self, supabase: Client, text_generator: Optional[TextGenerator] = None):
        self.sb = supabase
        self.cache = GenerationCache(supabase)
        self.context = QuestContextService(supabase)
        self.llm = text_generator or LLMService()
        self.generation_log = GenerationLogService(supabase)

    def get(self, kind: ArtifactKind, entity_id: str, session_id: str) -> Optional[GenerationRecord]:
        patch_context(session_id=session_id, **{kind.entity_column: entity_id})
        return self.cache.read(kind, entity_id, session_id)

    def generate(
        self,
        kind: ArtifactKind,
        entity_id: str,
        session_id: str,
        *,
        user_id: Optional[str] = None,
        force: bool = False,
    ) -> CachedArtifact:
        """
        Get-or-generate the artifact of ``kind`` for (entity_id, session_id).

        The entity must belong to the session (NotFound / Forbidden otherwise),
        checked before the cache so a foreign id never reads another
        session's record.
        """
        entity_row = self.context.load_owned(kind.entity_table, entity_id, session_id)
        if entity_row.get("chapter_id"):
            patch_context(chapter_id=entity_row["chapter_id"])

        def generator_fn(entity_id: str, session_id: str) -> GeneratedArtifact:
            prepared = kind.build_inputs(self.context, entity_row, session_id, user_id)
            attempt = self._attempt(kind, entity_id, session_id, entity_row, user_id)
            attempt.request_json = dict(prepared.inputs)
            attempt.context_json = dict(prepared.facts or {})
            t0 = time.monotonic()
            try:
                payload = self.llm.generate(kind.prompt, prepared.inputs)
                attempt.model = payload.model or attempt.model
                structured = GenerationCache.check_structured(kind, payload.structured)
                if kind.finalize is not None:
                    structured = kind.finalize(structured, prepared.facts)
                rendered = kind.render(structured) if kind.render is not None else ""
                produced = GenerationCache.validate(
                    kind, GeneratedArtifact(structured=structured, rendered=rendered, model=payload.model)
                )
            except Exception as e:
                self.generation_log.record(attempt.to_row(
                    status="error",
                    finished_at=utcnow_iso(),
                    duration_ms=int((time.monotonic() - t0) * 1000),
                    error=e,
                ))
                raise
            self.generation_log.record(attempt.to_row(
                status="success",
                finished_at=utcnow_iso(),
                duration_ms=int((time.monotonic() - t0) * 1000),
                parsed_json=produced.structured,
                rendered_md=produced.rendered,
            ))
            return produced

        return self.cache.get_or_generate(
            kind,
            entity_id,
            session_id,
            force=force,
            generator_fn=generator_fn,
        )

    def _attempt(self, kind, entity_id, session_id, entity_row, user_id) -> GenerationAttempt:
        ctx = current_context()
        return GenerationAttempt(
            generation_type=kind.name,
            session_id=session_id,
            user_id=user_id or (ctx.user_id if ctx else None),
            chapter_quest_id=entity_id if kind.entity_column == "chapter_quest_id" else None,
            chapter_id=entity_row.get("chapter_id") or (entity_id if kind.entity_column == "chapter_id" else None),
            adventure_id=entity_row.get("adventure_id"),
            source="worker" if ctx and ctx.job_id else "api",
            model=getattr(self.llm, "llm_model", None) or "unknown",
            started_at=utcnow_iso(),
        )
