"""
questforge/services/generation_cache.py
---------------------------------------
Get-or-generate cache for LLM artifacts.

Every artifact kind (mission brief, congrats, encouragement, chapter story)
is cached the same way: one row per (entity, session) in the kind's table,
written by upsert, served from the table until someone asks for a forced
regeneration. The algorithm lives here once; the kinds differ only by the
``ArtifactKind`` descriptor they pass in.

Import
------
    from questforge.services.generation_cache import GenerationCache

    cache = GenerationCache(get_supabase())
    result = cache.get_or_generate(MISSION, chapter_quest_id, session_id,
                                   force=False, generator_fn=fn)
    result.record, result.cached
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from supabase import Client

from questforge.helpers.request_context import patch_context
from questforge.models.domain._time import utcnow_iso
from questforge.models.domain.artifacts import GenerationRecord
from questforge.services.errors import GenerationFailed, GenerationInvalid, QuestForgeError
from questforge.supabase.supabase_client import first_row, run_lookup, run_query

logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]


@dataclass(frozen=True)
class ArtifactKind:
    """Descriptor of one cached artifact kind: where it lives and what is valid."""

    name: str
    table: str
    entity_column: str
    json_column: str
    md_column: str
    required_fields: Tuple[str, ...] = ()
    list_fields: Tuple[str, ...] = ()
    tenant_column: str = "session_id"
    entity_table: str = ""

    # Generation side, used by ArtifactService; the cache itself ignores them.
    prompt: Any = field(default=None, compare=False)
    build_inputs: Optional[Callable[..., Any]] = field(default=None, compare=False)
    finalize: Optional[Callable[[JsonDict, JsonDict], JsonDict]] = field(default=None, compare=False)
    render: Optional[Callable[[JsonDict], str]] = field(default=None, compare=False)

    @property
    def columns(self) -> str:
        return ",".join([
            self.entity_column,
            self.tenant_column,
            self.json_column,
            self.md_column,
            "model",
            "created_at",
            "updated_at",
        ])

    @property
    def conflict_target(self) -> str:
        return f"{self.entity_column},{self.tenant_column}"

    def to_record(self, row: JsonDict) -> GenerationRecord:
        return GenerationRecord(
            kind=self.name,
            entity_id=str(row[self.entity_column]),
            session_id=str(row[self.tenant_column]),
            structured=row.get(self.json_column) or {},
            rendered=row.get(self.md_column) or "",
            model=row.get("model"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


@dataclass
class GeneratedArtifact:
    """What a generator hands back before it is validated and stored."""

    structured: JsonDict
    rendered: str
    model: str


@dataclass
class CachedArtifact:
    record: GenerationRecord
    cached: bool


GeneratorFn = Callable[[str, str], GeneratedArtifact]


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple)):
        return len(value) == 0
    return False


class GenerationCache:
    """Reads, validates and upserts generation records for any ArtifactKind."""

    def __init__(self, supabase: Client):
        self.sb = supabase

    # ── Read ──────────────────────────────────────────────────────────────────

    def read_row(self, kind: ArtifactKind, entity_id: str, session_id: str) -> Optional[JsonDict]:
        res = run_lookup(
            f"{kind.table} read",
            lambda: (
                self.sb.table(kind.table)
                .select(kind.columns)
                .eq(kind.entity_column, str(entity_id))
                .eq(kind.tenant_column, str(session_id))
                .limit(1)
                .execute()
            ),
        )
        return first_row(res)

    def read(self, kind: ArtifactKind, entity_id: str, session_id: str) -> Optional[GenerationRecord]:
        """The stored record for (entity, session), or None."""
        row = self.read_row(kind, entity_id, session_id)
        return kind.to_record(row) if row is not None else None

    # ── Validate ──────────────────────────────────────────────────────────────

    @staticmethod
    def check_structured(kind: ArtifactKind, structured: Any) -> JsonDict:
        """Field checks that must pass before the payload is rendered."""
        if not isinstance(structured, dict) or not structured:
            raise GenerationInvalid(f"{kind.name}: empty structured payload")
        missing = [f for f in kind.required_fields if _is_blank(structured.get(f))]
        if missing:
            raise GenerationInvalid(f"{kind.name}: missing fields {', '.join(missing)}")
        not_lists = [
            f for f in kind.list_fields
            if structured.get(f) is not None and not isinstance(structured[f], list)
        ]
        if not_lists:
            raise GenerationInvalid(f"{kind.name}: expected a list for {', '.join(not_lists)}")
        return structured

    @classmethod
    def validate(cls, kind: ArtifactKind, produced: Any) -> GeneratedArtifact:
        if not isinstance(produced, GeneratedArtifact):
            raise GenerationInvalid(f"{kind.name}: generator returned {type(produced).__name__}")
        cls.check_structured(kind, produced.structured)
        if _is_blank(produced.rendered):
            raise GenerationInvalid(f"{kind.name}: empty rendered text")
        return produced

    # ── Upsert ────────────────────────────────────────────────────────────────

    def upsert(
        self,
        kind: ArtifactKind,
        entity_id: str,
        session_id: str,
        produced: GeneratedArtifact,
    ) -> JsonDict:
        """Insert or overwrite the (entity, session) row. Last writer wins."""
        row = {
            kind.entity_column: str(entity_id),
            kind.tenant_column: str(session_id),
            kind.json_column: produced.structured,
            kind.md_column: produced.rendered,
            "model": produced.model or "unknown",
            "updated_at": utcnow_iso(),
        }
        res = run_query(
            f"{kind.table} upsert",
            lambda: (
                self.sb.table(kind.table)
                .upsert(row, on_conflict=kind.conflict_target)
                .execute()
            ),
        )
        saved = first_row(res)
        if saved is None:
            # returning=minimal: fetch the row we just wrote
            saved = self.read_row(kind, entity_id, session_id)
        if saved is None:
            saved = row
        return saved

    # ── Get or generate ───────────────────────────────────────────────────────

    def get_or_generate(
        self,
        kind: ArtifactKind,
        entity_id: str,
        session_id: str,
        *,
        force: bool = False,
        generator_fn: GeneratorFn,
    ) -> CachedArtifact:
        """
        Serve the cached record, or generate, validate and store a new one.

        1. Unless force, read (entity, session); a hit returns cached=True
           without calling generator_fn and without writing.
        2. Call generator_fn(entity_id, session_id).
        3. Validate; invalid output raises GenerationInvalid and is not stored.
        4. Upsert and return the stored row with cached=False.
        """
        patch_context(session_id=session_id, **{kind.entity_column: entity_id})

        if not force:
            row = self.read_row(kind, entity_id, session_id)
            if row is not None:
                logger.info("generation.cache.hit kind=%s entity=%s", kind.name, entity_id)
                return CachedArtifact(record=kind.to_record(row), cached=True)
            logger.info("generation.cache.miss kind=%s entity=%s", kind.name, entity_id)
        else:
            logger.info("generation.cache.forced kind=%s entity=%s", kind.name, entity_id)

        try:
            produced = generator_fn(entity_id, session_id)
        except GenerationInvalid as e:
            logger.warning("generation.invalid kind=%s: %s", kind.name, e.message)
            raise
        except QuestForgeError:
            raise
        except Exception as e:
            logger.exception("generation.provider.error kind=%s", kind.name)
            raise GenerationFailed(f"{kind.name} generation failed: {e}") from e

        try:
            self.validate(kind, produced)
        except GenerationInvalid as e:
            logger.warning("generation.invalid kind=%s: %s", kind.name, e.message)
            raise

        saved = self.upsert(kind, entity_id, session_id, produced)
        logger.info(
            "generation.stored kind=%s entity=%s model=%s",
            kind.name, entity_id, saved.get("model"),
        )
        return CachedArtifact(record=kind.to_record(saved), cached=False)
