import sys
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from fake_supabase import FakeSupabase  # noqa: E402

from questforge.prompts.generation_prompts import (  # noqa: E402
    CHAPTER_STORY_PROMPT,
    CONGRATS_PROMPT,
    ENCOURAGEMENT_PROMPT,
    MISSION_PROMPT,
)
from questforge.services.errors import QueuePublishError  # noqa: E402
from questforge.services.llm_service import GeneratedPayload  # noqa: E402

WORKER_SECRET = "test-worker-secret"
APP_URL = "https://questforge.test"

MISSION_OUT = {
    "intro": "The dust bunnies of the Living Room have formed a council.",
    "objectives_paragraph": "Clear the floor and restore order to the sofa kingdom.",
    "steps": ["Pick up the stray socks", "Vacuum the rug", "Fluff the cushions"],
    "success_paragraph": "A spotless floor and a sofa fit for a hero.",
    "estimated_time": "about an hour",
}
CONGRATS_OUT = {"title": "Victory!", "message": "The Living Room sings your name."}
ENCOURAGEMENT_OUT = {"message": "One sock at a time, brave one."}
CHAPTER_STORY_OUT = {
    "title": "The Great Tidy",
    "summary": "Three rooms fell to your broom.",
    "paragraphs": ["It began in the kitchen.", "It ended with a gleaming hallway."],
    "trophies": ["Sock Slayer"],
}


class FakeTextGenerator:
    """Counts calls and answers each prompt with a canned JSON object."""

    def __init__(self) -> None:
        self.outputs: List = [
            (MISSION_PROMPT, MISSION_OUT),
            (CONGRATS_PROMPT, CONGRATS_OUT),
            (ENCOURAGEMENT_PROMPT, ENCOURAGEMENT_OUT),
            (CHAPTER_STORY_PROMPT, CHAPTER_STORY_OUT),
        ]
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.model = "fake-model"
        self._lock = threading.Lock()

    def set_output(self, prompt: Any, output: Dict[str, Any]) -> None:
        self.outputs = [(p, output if p is prompt else o) for p, o in self.outputs]

    def generate(self, prompt: Any, inputs: Dict[str, Any]) -> GeneratedPayload:
        with self._lock:
            self.calls.append(inputs)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        for p, output in self.outputs:
            if p is prompt:
                return GeneratedPayload(structured=dict(output), model=self.model)
        raise AssertionError("unexpected prompt")


class FakePublisher:
    """Records QStash publishes instead of sending them."""

    def __init__(self) -> None:
        self.published: List[Dict[str, Any]] = []
        self.fail = False

    def publish_json(self, url: str, body: Dict[str, Any], deduplication_id: Optional[str] = None) -> Dict[str, Any]:
        if self.fail:
            raise QueuePublishError("QStash publish failed (500): unavailable")
        self.published.append({"url": url, "body": body, "deduplication_id": deduplication_id})
        return {"messageId": f"msg-{len(self.published)}"}


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    monkeypatch.setenv("APP_URL", APP_URL)
    monkeypatch.setenv("WORKER_SECRET", WORKER_SECRET)
    monkeypatch.setenv("QSTASH_TOKEN", "test-qstash-token")
    monkeypatch.delenv("SYSTEM_LOGS_ENABLED", raising=False)


@pytest.fixture
def sb():
    return FakeSupabase()


@pytest.fixture
def generator():
    return FakeTextGenerator()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def world(sb):
    """A player with an active session, one chapter and one chapter quest (Q123)."""
    user_id = sb.add_user("token-alice", "user-alice")
    session = sb.seed("game_sessions", user_id=user_id, title="My adventure", is_active=True, status="active")
    adventure = sb.seed("adventures", session_id=session["id"], title="The Haunted Flat",
                        code="HF", context_text="A flat haunted by chores.")
    chapter = sb.seed("chapters", id="C1", adventure_id=adventure["id"], session_id=session["id"],
                      title="Chapter One", context_text="The kitchen rebellion.", status="active")
    quest = sb.seed("adventure_quests", adventure_id=adventure["id"], title="Tame the Living Room",
                    description="Tidy the living room.", room_code="living", difficulty=2, estimate_min=45)
    cq = sb.seed("chapter_quests", id="Q123", chapter_id=chapter["id"], adventure_quest_id=quest["id"],
                 session_id=session["id"], status="doing")
    character = sb.seed("characters", name="Sir Sweepalot", emoji="🧹", archetype="knight",
                        vibe="gallant", motto="No crumb left behind",
                        ai_style={"tone": "epic", "style": "heroic", "verbosity": "short"})
    sb.seed("player_profiles", user_id=user_id, display_name="Alice", character_id=character["id"])
    return {
        "user_id": user_id,
        "token": "token-alice",
        "headers": {"Authorization": "Bearer token-alice"},
        "session_id": session["id"],
        "chapter_id": chapter["id"],
        "chapter_quest_id": cq["id"],
    }


@pytest.fixture
def client(sb, generator, publisher):
    from fastapi.testclient import TestClient

    from questforge.main import app
    from questforge.routers.dependencies import get_queue_publisher, get_text_generator
    from questforge.supabase.supabase_client import get_supabase

    app.dependency_overrides[get_supabase] = lambda: sb
    app.dependency_overrides[get_text_generator] = lambda: generator
    app.dependency_overrides[get_queue_publisher] = lambda: publisher
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
