import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from questforge.prompts.generation_prompts import CONGRATS_PROMPT
from questforge.services.errors import GenerationFailed, GenerationInvalid
from questforge.services.llm_service import LLMService, parse_json_object

CONGRATS_INPUTS = {
    "voice_section": "Voice: neutral.",
    "player_section": "The player has no display name. Do not invent one.",
    "adventure_context": "(none)",
    "chapter_context": "(none)",
    "quest_context": "{}",
    "lines_min": 3,
    "lines_max": 7,
}


def test_parse_plain_and_fenced_json():
    assert parse_json_object('{"message": "hi"}') == {"message": "hi"}
    assert parse_json_object('```json\n{"message": "hi"}\n```') == {"message": "hi"}
    assert parse_json_object('```\n{"a": 1}\n```') == {"a": 1}


@pytest.mark.parametrize("raw", ["", "not json", "[1, 2]", '"just a string"'])
def test_parse_rejects_non_objects(raw):
    with pytest.raises(GenerationInvalid):
        parse_json_object(raw)


def test_generate_runs_the_chain(monkeypatch):
    svc = LLMService(llm_model="gpt-test")
    fake = FakeListChatModel(responses=['```json\n{"title": "Yes", "message": "Done."}\n```'])
    monkeypatch.setattr(svc, "_build_llm", lambda: fake)

    payload = svc.generate(CONGRATS_PROMPT, CONGRATS_INPUTS)
    assert payload.structured == {"title": "Yes", "message": "Done."}
    assert payload.model == "gpt-test"


def test_provider_exception_becomes_generation_failed(monkeypatch):
    svc = LLMService()

    def broken():
        raise RuntimeError("no api key")

    monkeypatch.setattr(svc, "_build_llm", broken)
    with pytest.raises(GenerationFailed):
        svc.generate(CONGRATS_PROMPT, CONGRATS_INPUTS)


def test_model_defaults_from_env(monkeypatch):
    monkeypatch.setenv("QUESTFORGE_LLM_MODEL", "gpt-env")
    assert LLMService().llm_model == "gpt-env"
    monkeypatch.delenv("QUESTFORGE_LLM_MODEL")
    assert LLMService().llm_model == "gpt-4.1"
