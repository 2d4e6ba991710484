"""Injectable collaborators shared by the routers. Tests override these via app.dependency_overrides."""
from __future__ import annotations

from questforge.services.llm_service import LLMService, TextGenerator
from questforge.services.qstash_service import QStashService, QueuePublisher


def get_text_generator() -> TextGenerator:
    return LLMService()


def get_queue_publisher() -> QueuePublisher:
    return QStashService()
