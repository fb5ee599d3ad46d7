"""OpenAI provider speaking the Chat Completions wire format."""
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

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_S = 45.0


def to_wire_role(role: Role) -> str:
    """OpenAI uses the internal role vocabulary unchanged."""
    return role.value


class OpenAIProvider(HTTPChatProvider):
    """Calls ``POST {base_url}/chat/completions`` with a bearer token.

    The project id is optional; when given it is sent as ``OpenAI-Project``.
    """

    def __init__(
        self,
        api_key: str,
        project_id: str | None = None,
        model: str = DEFAULT_MODEL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        base_url: str | None = None,
        max_tokens: int = 256,
        temperature: float = 0.7,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        super().__init__(timeout_s=timeout_s, session=session)
        self._api_key = normalize_credential(api_key, "OpenAI API key")
        self._project_id = (
            normalize_credential(project_id, "OpenAI project id", strip_scheme=False)
            if project_id is not None
            else None
        )
        if not model or not model.strip():
            raise ConfigurationError("OpenAI model cannot be empty")
        self._model = model.strip()
        self._base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def name(self) -> str:
        return f"openai/{self._model}"

    @property
    def model(self) -> str:
        return self._model

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/chat/completions"

    def headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        if self._project_id is not None:
            headers["OpenAI-Project"] = self._project_id
        return headers

    def build_payload(self, history: Sequence[ChatTurn]) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": [
                {"role": to_wire_role(turn.role), "content": turn.content} for turn in history
            ],
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }

    def parse_reply(self, data: Any) -> str:
        if not isinstance(data, dict):
            raise MalformedResponse(f"{self.name}: expected a JSON object, got {type(data).__name__}")

        choices = data.get("choices")
        if choices is None:
            raise EmptyResponse(f"{self.name}: response has no choices")
        if not isinstance(choices, list):
            raise MalformedResponse(f"{self.name}: 'choices' is not a list")
        if not choices:
            raise EmptyResponse(f"{self.name}: response has no choices")

        first = choices[0]
        if not isinstance(first, dict):
            raise MalformedResponse(f"{self.name}: choices[0] is not an object")
        message = first.get("message")
        if message is None:
            raise EmptyResponse(f"{self.name}: choices[0] has no message")
        if not isinstance(message, dict):
            raise MalformedResponse(f"{self.name}: choices[0].message is not an object")

        content = message.get("content")
        if content is None:
            raise EmptyResponse(f"{self.name}: choices[0].message has no content")
        if not isinstance(content, str):
            raise MalformedResponse(f"{self.name}: choices[0].message.content is not text")
        text = content.strip()
        if not text:
            raise EmptyResponse(f"{self.name}: choices[0].message.content is empty")
        return text
