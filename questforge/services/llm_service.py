"""
questforge/services/llm_service.py
----------------------------------
Text-generation collaborator: prompt in, parsed JSON object out.

The chain is the usual ``prompt | ChatOpenAI | StrOutputParser``; the prompt
asks for a single JSON object and the answer is parsed here. Anything the
provider raises becomes GenerationFailed, anything that does not parse into
a JSON object becomes GenerationInvalid.

Import
------
    from questforge.services.llm_service import LLMService

    llm = LLMService()
    payload = llm.generate(MISSION_PROMPT, {"quest_context": "...", ...})
    payload.structured, payload.model
"""
from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

from questforge.services.errors import GenerationFailed, GenerationInvalid

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4.1"

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass
class GeneratedPayload:
    structured: Dict[str, Any]
    model: str


class TextGenerator(Protocol):
    def generate(self, prompt: ChatPromptTemplate, inputs: Dict[str, Any]) -> GeneratedPayload:
        ...


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Parse the model answer, tolerating a ```json fenced block."""
    text = (raw or "").strip()
    m = _FENCE_RE.match(text)
    if m:
        text = m.group(1)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise GenerationInvalid(f"Model returned non-JSON output: {e}") from e
    if not isinstance(parsed, dict):
        raise GenerationInvalid("Model returned JSON that is not an object")
    return parsed


class LLMService:
    """ChatOpenAI wrapper returning parsed JSON objects."""

    def __init__(
        self,
        llm_model: Optional[str] = None,
        temperature: float = 0.7,
        openai_api_key: Optional[str] = None,
    ):
        self.llm_model = llm_model or os.environ.get("QUESTFORGE_LLM_MODEL", DEFAULT_MODEL)
        self.temperature = temperature
        self._api_key = openai_api_key

    def _build_llm(self) -> ChatOpenAI:
        kwargs: Dict[str, Any] = {"model": self.llm_model, "temperature": self.temperature}
        if self._api_key:
            kwargs["api_key"] = self._api_key
        return ChatOpenAI(**kwargs)

    def generate(self, prompt: ChatPromptTemplate, inputs: Dict[str, Any]) -> GeneratedPayload:
        chain = prompt | self._build_llm() | StrOutputParser()

        t0 = time.monotonic()
        try:
            raw_output = chain.invoke(inputs)
        except Exception as e:
            logger.exception("llm.invoke.error model=%s", self.llm_model)
            raise GenerationFailed(f"LLM call failed: {e}") from e

        logger.info(
            "llm.invoke.ok model=%s ms=%d chars=%d",
            self.llm_model, int((time.monotonic() - t0) * 1000), len(raw_output or ""),
        )
        return GeneratedPayload(structured=parse_json_object(raw_output), model=self.llm_model)
