"""
questforge/services/artifact_kinds.py
-------------------------------------
The four cached artifact kinds.

Each kind is an ArtifactKind descriptor: its table and key columns, the
fields a valid model answer must carry, how to build the prompt inputs from
the game context, how to patch the answer with facts the database knows
better than the model, and how to render it to markdown.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from questforge.models.domain.jobs import JobType
from questforge.prompts.generation_prompts import (
    CHAPTER_STORY_PROMPT,
    CONGRATS_PROMPT,
    ENCOURAGEMENT_PROMPT,
    MISSION_PROMPT,
)
from questforge.services.generation_cache import ArtifactKind
from questforge.services.quest_context_service import QuestContextService, safe_trim

JsonDict = Dict[str, Any]


@dataclass
class PromptInputs:
    inputs: JsonDict
    facts: JsonDict = field(default_factory=dict)


# ── Helpers ───────────────────────────────────────────────────────────────────

def difficulty_label(d: Optional[int]) -> str:
    if d is None:
        return "Standard"
    if d <= 1:
        return "Easy"
    if d == 2:
        return "Standard"
    return "Hard"


def format_estimate(estimate_min: Optional[int]) -> Optional[str]:
    if not estimate_min or estimate_min <= 0:
        return None
    if estimate_min < 60:
        return f"{estimate_min} min"
    h, m = divmod(estimate_min, 60)
    return f"{h}h" if m == 0 else f"{h}h {m}min"


def _mission_rules(verbosity: str) -> JsonDict:
    if verbosity == "short":
        return {"max_intro_lines": 2, "steps_min": 3, "steps_max": 6}
    if verbosity == "rich":
        return {"max_intro_lines": 4, "steps_min": 5, "steps_max": 9}
    return {"max_intro_lines": 3, "steps_min": 3, "steps_max": 9}


def _message_rules(verbosity: str) -> JsonDict:
    if verbosity == "short":
        return {"lines_min": 2, "lines_max": 4}
    if verbosity == "rich":
        return {"lines_min": 4, "lines_max": 8}
    return {"lines_min": 3, "lines_max": 7}


def _story_rules(verbosity: str) -> JsonDict:
    return {"max_paragraphs": {"short": 3, "rich": 7}.get(verbosity, 5)}


def _common_sections(player, adventure_context: str, chapter_context: str, default_style: str) -> JsonDict:
    return {
        "voice_section": player.voice_section(default_style),
        "player_section": player.player_section(),
        "adventure_context": adventure_context or "(none)",
        "chapter_context": chapter_context or "(none)",
    }


def _dump(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, indent=2, default=str)


# ── Input builders ────────────────────────────────────────────────────────────

def build_mission_inputs(
    ctx: QuestContextService, entity_row: JsonDict, session_id: str, user_id: Optional[str]
) -> PromptInputs:
    cq = ctx.load_chapter_quest_context(entity_row)
    player = ctx.load_player(user_id)
    facts = cq.facts()
    quest_context = dict(facts, adventure_context=cq.adventure_context, chapter_context=cq.chapter_context)
    inputs = _common_sections(player, cq.adventure_context, cq.chapter_context, "motivating")
    inputs.update(_mission_rules(player.voice()["verbosity"]))
    inputs["quest_context"] = _dump(quest_context)
    return PromptInputs(inputs=inputs, facts=facts)


def _build_message_inputs(
    ctx: QuestContextService, entity_row: JsonDict, session_id: str, user_id: Optional[str]
) -> PromptInputs:
    cq = ctx.load_chapter_quest_context(entity_row)
    player = ctx.load_player(user_id)
    facts = cq.facts()
    quest_context = {
        "quest_title": facts["title"],
        "room_code": facts["room_code"] or None,
        "difficulty": difficulty_label(facts["difficulty"]),
        "mission_hint": ctx.load_mission_hint(str(entity_row["id"]), session_id) or None,
    }
    inputs = _common_sections(player, cq.adventure_context, cq.chapter_context, "motivating")
    inputs.update(_message_rules(player.voice()["verbosity"]))
    inputs["quest_context"] = _dump(quest_context)
    return PromptInputs(inputs=inputs, facts=facts)


build_congrats_inputs = _build_message_inputs
build_encouragement_inputs = _build_message_inputs


def build_chapter_story_inputs(
    ctx: QuestContextService, entity_row: JsonDict, session_id: str, user_id: Optional[str]
) -> PromptInputs:
    player = ctx.load_player(user_id)
    adventure = ctx.load_adventure(entity_row.get("adventure_id"))
    quests = ctx.load_chapter_quests(str(entity_row["id"]), session_id)

    def by_status(status: str) -> List[JsonDict]:
        return [{k: q[k] for k in ("title", "room_code")} for q in quests if q["status"] == status]

    chapter_context = safe_trim(entity_row.get("context_text"))
    adventure_context = safe_trim(adventure.get("context_text"))
    story_context = {
        "chapter": {
            "title": safe_trim(entity_row.get("title")) or "Chapter",
            "pace": entity_row.get("pace") or "standard",
            "status": entity_row.get("status"),
        },
        "adventure": {
            "title": safe_trim(adventure.get("title")) or None,
            "code": safe_trim(adventure.get("code")) or None,
        },
        "quests": {"done": by_status("done"), "doing": by_status("doing"), "todo": by_status("todo")},
    }
    inputs = _common_sections(player, adventure_context, chapter_context, "narrative")
    inputs.update(_story_rules(player.voice("narrative")["verbosity"]))
    inputs["quest_context"] = _dump(story_context)
    return PromptInputs(inputs=inputs, facts={"done_count": len(story_context["quests"]["done"])})


# ── Finalizers ────────────────────────────────────────────────────────────────

def finalize_mission(structured: JsonDict, facts: JsonDict) -> JsonDict:
    """Time estimate and difficulty come from the quest row, not the model."""
    out = dict(structured)
    out["estimated_time"] = (
        format_estimate(facts.get("estimate_min"))
        or safe_trim(out.get("estimated_time"))
        or "Estimated time: ?"
    )
    out["difficulty_label"] = difficulty_label(facts.get("difficulty"))
    return out


# ── Renderers ─────────────────────────────────────────────────────────────────

def render_mission(m: JsonDict) -> str:
    lines = [
        f"⏱️ {m.get('estimated_time', '')}",
        f"💪 {m.get('difficulty_label', '')}",
        "",
        safe_trim(m.get("intro")),
        "",
        "**🎯 Objectives**",
        "",
        safe_trim(m.get("objectives_paragraph")),
        "",
        "**🪜 Steps**",
        "",
        *[f"- {safe_trim(s)}" for s in (m.get("steps") or [])],
        "",
        "**✅ Success**",
        "",
        safe_trim(m.get("success_paragraph")),
    ]
    return "\n".join(lines).strip()


def render_message(m: JsonDict) -> str:
    title = safe_trim(m.get("title"))
    message = safe_trim(m.get("message"))
    return f"**{title}**\n\n{message}".strip() if title else message


def render_chapter_story(s: JsonDict) -> str:
    parts: List[str] = []
    summary = safe_trim(s.get("summary"))
    if summary:
        parts += [f"**{summary}**", ""]
    for p in s.get("paragraphs") or []:
        parts += [safe_trim(str(p)), ""]
    trophies = [safe_trim(str(t)) for t in (s.get("trophies") or []) if safe_trim(str(t))]
    if trophies:
        parts += ["**🏅 Highlights**", ""] + [f"- {t}" for t in trophies]
    return "\n".join(parts).strip()


# ── Descriptors ───────────────────────────────────────────────────────────────

MISSION = ArtifactKind(
    name="quest_mission",
    table="quest_mission_orders",
    entity_column="chapter_quest_id",
    entity_table="chapter_quests",
    json_column="mission_json",
    md_column="mission_md",
    required_fields=("intro", "objectives_paragraph", "steps", "success_paragraph"),
    list_fields=("steps",),
    prompt=MISSION_PROMPT,
    build_inputs=build_mission_inputs,
    finalize=finalize_mission,
    render=render_mission,
)

CONGRATS = ArtifactKind(
    name="quest_congrat",
    table="quest_congrats",
    entity_column="chapter_quest_id",
    entity_table="chapter_quests",
    json_column="congrats_json",
    md_column="congrats_md",
    required_fields=("title", "message"),
    prompt=CONGRATS_PROMPT,
    build_inputs=build_congrats_inputs,
    render=render_message,
)

ENCOURAGEMENT = ArtifactKind(
    name="quest_encouragement",
    table="quest_encouragements",
    entity_column="chapter_quest_id",
    entity_table="chapter_quests",
    json_column="encouragement_json",
    md_column="encouragement_md",
    required_fields=("message",),
    prompt=ENCOURAGEMENT_PROMPT,
    build_inputs=build_encouragement_inputs,
    render=render_message,
)

CHAPTER_STORY = ArtifactKind(
    name="chapter_story",
    table="chapter_stories",
    entity_column="chapter_id",
    entity_table="chapters",
    json_column="story_json",
    md_column="story_md",
    required_fields=("title", "summary", "paragraphs"),
    list_fields=("paragraphs", "trophies"),
    prompt=CHAPTER_STORY_PROMPT,
    build_inputs=build_chapter_story_inputs,
    render=render_chapter_story,
)

KIND_BY_JOB_TYPE: Dict[JobType, ArtifactKind] = {
    JobType.quest_mission: MISSION,
    JobType.quest_congrat: CONGRATS,
    JobType.quest_encouragement: ENCOURAGEMENT,
    JobType.chapter_story: CHAPTER_STORY,
}
