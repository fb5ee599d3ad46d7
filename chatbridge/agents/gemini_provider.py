"""Google Gemini provider speaking the ``generateContent`` REST format.

Gemini has no assistant or system role on the wire: assistant turns are sent
as ``model`` and every other turn as ``user``.  A ``system`` turn therefore
reads back as ``user``.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import aiohttp

from chatbridge.agents.base import (
    ConfigurationError,
    EmptyResponse,
    HTTPChatProvider,
    MalformedResponse,
    normalize_credential,
)
from chatbridge.chat.message import ChatTurn, Role

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TIMEOUT_S = 30.0

_MODEL_ROLE = "model"
_USER_ROLE = "user"


def to_wire_role(role: Role) -> str:
    return _MODEL_ROLE if role is Role.ASSISTANT else _USER_ROLE


class GeminiProvider(HTTPChatProvider):
    """Calls ``POST {base_url}/models/{model}:generateContent``."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        base_url: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        super().__init__(timeout_s=timeout_s, session=session)
        self._api_key = normalize_credential(api_key, "Gemini API key")
        if not model or not model.strip():
            raise ConfigurationError("Gemini model cannot be empty")
        self._model = model.strip()
        self._base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")

    @property
    def name(self) -> str:
        return f"gemini/{self._model}"

    @property
    def model(self) -> str:
        return self._model

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/models/{self._model}:generateContent"

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self._api_key,
        }

    def build_payload(self, history: Sequence[ChatTurn]) -> dict[str, Any]:
        return {
            "contents": [
                {"role": to_wire_role(turn.role), "parts": [{"text": turn.content}]}
                for turn in history
            ]
        }

    def parse_reply(self, data: Any) -> str:
        if not isinstance(data, dict):
            raise MalformedResponse(f"{self.name}: expected a JSON object, got {type(data).__name__}")

        candidates = data.get("candidates")
        if candidates is not None and not isinstance(candidates, list):
            raise MalformedResponse(f"{self.name}: 'candidates' is not a list")
        if not candidates:
            raise EmptyResponse(f"{self.name}: response has no candidates{_block_reason(data)}")

        first = candidates[0]
        if not isinstance(first, dict):
            raise MalformedResponse(f"{self.name}: candidates[0] is not an object")
        content = first.get("content")
        if content is None:
            finish = first.get("finishReason")
            suffix = f" (finishReason={finish})" if finish else ""
            raise EmptyResponse(f"{self.name}: candidates[0] has no content{suffix}")
        if not isinstance(content, dict):
            raise MalformedResponse(f"{self.name}: candidates[0].content is not an object")

        parts = content.get("parts")
        if parts is not None and not isinstance(parts, list):
            raise MalformedResponse(f"{self.name}: candidates[0].content.parts is not a list")
        if not parts:
            raise EmptyResponse(f"{self.name}: candidates[0] has no parts")

        part = parts[0]
        if not isinstance(part, dict):
            raise MalformedResponse(f"{self.name}: candidates[0].content.parts[0] is not an object")
        text = part.get("text")
        if text is None:
            raise EmptyResponse(f"{self.name}: candidates[0].content.parts[0] has no text")
        if not isinstance(text, str):
            raise MalformedResponse(f"{self.name}: candidates[0].content.parts[0].text is not text")
        text = text.strip()
        if not text:
            raise EmptyResponse(f"{self.name}: candidates[0].content.parts[0].text is empty")
        return text


def _block_reason(data: dict[str, Any]) -> str:
    feedback = data.get("promptFeedback")
    if isinstance(feedback, dict) and feedback.get("blockReason"):
        return f" (blocked: {feedback['blockReason']})"
    return ""
