"""
questforge/services/quest_context_service.py
--------------------------------------------
Loads the game context fed to the generators.

The target entity (a chapter quest or a chapter) must exist and belong to the
caller's session. Everything around it (adventure and chapter context texts,
player profile and character voice, mission hint) is best-effort: a missing
or unreadable row degrades the prompt, it does not fail the generation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from supabase import Client

from questforge.services.errors import Forbidden, NotFound, StorageError
from questforge.supabase.supabase_client import first_row, run_lookup, run_query

logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]

DEFAULT_CHARACTER_NAME = "Game Master"


def safe_trim(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass
class PlayerContext:
    display_name: Optional[str] = None
    character: Optional[JsonDict] = None

    @property
    def ai_style(self) -> JsonDict:
        return (self.character or {}).get("ai_style") or {}

    def voice(self, default_style: str = "motivating") -> JsonDict:
        style = self.ai_style
        return {
            "tone": style.get("tone") or "neutral",
            "style": style.get("style") or default_style,
            "verbosity": style.get("verbosity") or "normal",
        }

    def voice_section(self, default_style: str = "motivating") -> str:
        v = self.voice(default_style)
        if not self.character:
            return "Voice: neutral."
        lines = [
            f"Voice: {self.character.get('emoji') or '🧙'} {self.character.get('name')}. "
            f"Tone={v['tone']}, style={v['style']}, verbosity={v['verbosity']}."
        ]
        if self.character.get("motto"):
            lines.append(f"Oath (reflect it, do not quote it): {self.character['motto']}")
        return "\n".join(lines)

    def player_section(self) -> str:
        if self.display_name:
            return f'The player is called "{self.display_name}". Use the name at most twice.'
        return "The player has no display name. Do not invent one."


@dataclass
class ChapterQuestContext:
    """A chapter quest joined with its adventure quest and surrounding texts."""

    row: JsonDict
    quest: JsonDict = field(default_factory=dict)
    chapter: JsonDict = field(default_factory=dict)
    adventure_context: str = ""
    chapter_context: str = ""

    @property
    def difficulty(self) -> int:
        d = self.quest.get("difficulty")
        return int(d) if isinstance(d, (int, float)) else 2

    @property
    def estimate_min(self) -> Optional[int]:
        e = self.quest.get("estimate_min")
        return int(e) if isinstance(e, (int, float)) else None

    def facts(self) -> JsonDict:
        return {
            "title": safe_trim(self.quest.get("title")) or "Quest",
            "description": safe_trim(self.quest.get("description")),
            "room_code": self.quest.get("room_code") or "",
            "difficulty": self.difficulty,
            "estimate_min": self.estimate_min,
            "status": self.row.get("status"),
        }


class QuestContextService:
    """Read-only access to the game tables the prompts need."""

    def __init__(self, supabase: Client):
        self.sb = supabase

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _by_id(self, table: str, row_id: Any, columns: str = "*") -> Optional[JsonDict]:
        if not row_id:
            return None
        res = run_lookup(
            f"{table} read",
            lambda: self.sb.table(table).select(columns).eq("id", str(row_id)).limit(1).execute(),
        )
        return first_row(res)

    def _optional(self, table: str, row_id: Any, columns: str = "*") -> JsonDict:
        try:
            return self._by_id(table, row_id, columns) or {}
        except StorageError as e:
            logger.warning("context.optional.read_failed table=%s: %s", table, e.message)
            return {}

    # ── Target entities ───────────────────────────────────────────────────────

    def load_owned(self, table: str, entity_id: str, session_id: str) -> JsonDict:
        """Load the target entity; it must exist and belong to session_id."""
        row = self._by_id(table, entity_id)
        if row is None:
            raise NotFound(f"{table} not found: {entity_id}")
        owner = row.get("session_id")
        if not owner:
            raise NotFound(f"{table} {entity_id} has no session_id")
        if str(owner) != str(session_id):
            raise Forbidden(f"{table} {entity_id} belongs to another session")
        return row

    # ── Surrounding context ───────────────────────────────────────────────────

    def load_chapter_quest_context(self, row: JsonDict) -> ChapterQuestContext:
        ctx = ChapterQuestContext(row=row)
        ctx.quest = self._optional("adventure_quests", row.get("adventure_quest_id"))
        ctx.chapter = self._optional("chapters", row.get("chapter_id"))
        ctx.chapter_context = safe_trim(ctx.chapter.get("context_text"))
        adventure = self._optional("adventures", ctx.chapter.get("adventure_id"))
        ctx.adventure_context = safe_trim(adventure.get("context_text"))
        return ctx

    def load_adventure(self, adventure_id: Any) -> JsonDict:
        return self._optional("adventures", adventure_id)

    def load_chapter_quests(self, chapter_id: str, session_id: str) -> List[JsonDict]:
        """Quests of a chapter with their adventure quest title, room and difficulty."""
        res = run_query(
            "chapter_quests list",
            lambda: (
                self.sb.table("chapter_quests")
                .select("*")
                .eq("chapter_id", str(chapter_id))
                .eq("session_id", str(session_id))
                .execute()
            ),
        )
        out: List[JsonDict] = []
        for cq in res.data or []:
            quest = self._optional("adventure_quests", cq.get("adventure_quest_id"))
            out.append({
                "status": cq.get("status"),
                "title": safe_trim(quest.get("title")) or "Quest",
                "room_code": quest.get("room_code"),
                "difficulty": quest.get("difficulty"),
            })
        return out

    def load_player(self, user_id: Optional[str]) -> PlayerContext:
        if not user_id:
            return PlayerContext()
        try:
            res = run_query(
                "player_profiles read",
                lambda: (
                    self.sb.table("player_profiles")
                    .select("user_id,display_name,character_id")
                    .eq("user_id", str(user_id))
                    .limit(1)
                    .execute()
                ),
            )
        except StorageError as e:
            logger.warning("context.player.read_failed: %s", e.message)
            return PlayerContext()

        profile = first_row(res) or {}
        display_name = safe_trim(profile.get("display_name")) or None
        c = self._optional("characters", profile.get("character_id"))
        if not c:
            return PlayerContext(display_name=display_name)
        return PlayerContext(
            display_name=display_name,
            character={
                "name": c.get("name") or DEFAULT_CHARACTER_NAME,
                "emoji": c.get("emoji"),
                "archetype": c.get("archetype"),
                "vibe": c.get("vibe"),
                "motto": c.get("motto"),
                "ai_style": c.get("ai_style") or {},
            },
        )

    def load_mission_hint(self, chapter_quest_id: str, session_id: str, limit: int = 900) -> str:
        """Rendered mission brief of the quest, if one was generated already."""
        try:
            res = run_query(
                "quest_mission_orders read",
                lambda: (
                    self.sb.table("quest_mission_orders")
                    .select("mission_md")
                    .eq("chapter_quest_id", str(chapter_quest_id))
                    .eq("session_id", str(session_id))
                    .limit(1)
                    .execute()
                ),
            )
        except StorageError as e:
            logger.warning("context.mission_hint.read_failed: %s", e.message)
            return ""
        row = first_row(res) or {}
        return safe_trim(row.get("mission_md"))[:limit]
