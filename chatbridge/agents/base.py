"""Abstract LLM provider interface.

All chat backends implement :class:`LLMProvider` so the session can swap
providers without changing any call sites.  Both built-in backends speak
JSON over HTTPS and share the aiohttp transport in :class:`HTTPChatProvider`;
they differ only in endpoint, headers, payload shape and reply extraction.

Every failure a provider can report is an :class:`LLMError` subclass whose
``kind`` is stable across backends, so callers classify errors without
knowing which provider produced them.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import aiohttp

from chatbridge.chat.message import ChatTurn

logger = logging.getLogger(__name__)

# Leading auth scheme in a pasted key, e.g. "Bearer sk-...".
_SCHEME_PREFIX = re.compile(r"^bearer(?:\s*:\s*|\s+|$)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

class LLMError(Exception):
    """Raised by providers on any failure (callers catch this)."""

    kind: str = "provider"


class ConfigurationError(LLMError):
    """A provider cannot be constructed: missing or blank credential."""

    kind = "configuration"


class NetworkError(LLMError):
    """Transport failure: non-success status, connection error or timeout."""

    kind = "network"

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        text = super().__str__()
        if self.body:
            return f"{text} | {self.body[:500]}"
        return text


class MalformedResponse(LLMError):
    """Success status, but the body does not have the expected shape."""

    kind = "malformed_response"


class EmptyResponse(LLMError):
    """Well-formed body without a usable candidate or text."""

    kind = "empty_response"


class Cancelled(LLMError):
    """The caller cancelled the request before it completed."""

    kind = "cancelled"


# ---------------------------------------------------------------------------
# Provider identity and configuration
# ---------------------------------------------------------------------------

class ProviderKind(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"


# The only place a provider is paired with its display label.
PROVIDER_LABELS: dict[ProviderKind, str] = {
    ProviderKind.GEMINI: "Gemini",
    ProviderKind.OPENAI: "ChatGPT",
}


def parse_kind(identifier: ProviderKind | str) -> ProviderKind | None:
    """Resolve a kind, its value ("openai") or its label ("ChatGPT").

    Matching is case-insensitive.  Returns None for unknown identifiers.
    """
    if isinstance(identifier, ProviderKind):
        return identifier
    wanted = str(identifier).strip().lower()
    for kind, label in PROVIDER_LABELS.items():
        if wanted in (kind.value, label.lower()):
            return kind
    return None


@dataclass(frozen=True)
class ProviderConfig:
    """Construction parameters for one provider adapter."""

    api_key: str
    model: str
    project_id: str | None = None
    timeout_s: float = 45.0
    base_url: str | None = None
    max_tokens: int = 256
    temperature: float = 0.7


def normalize_credential(value: str | None, what: str, strip_scheme: bool = True) -> str:
    """Clean up a pasted credential and reject it when nothing is left.

    Removes surrounding whitespace, embedded line breaks and (for API keys)
    a leading ``Bearer`` token.

    Raises:
        ConfigurationError: If the credential is missing or blank.
    """
    cleaned = (value or "").replace("\r", "").replace("\n", "").strip()
    if strip_scheme:
        cleaned = _SCHEME_PREFIX.sub("", cleaned).strip()
    if not cleaned:
        raise ConfigurationError(f"{what} cannot be empty")
    return cleaned


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class CancelToken:
    """Cooperative cancellation signal handed to :meth:`LLMProvider.chat`.

    The caller calls :meth:`cancel`; the provider races its transport task
    against :meth:`wait` and aborts the request when the token wins.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------

class LLMProvider(ABC):
    """Minimal async interface for multi-turn chat."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name, e.g. 'gemini/gemini-2.5-flash'."""
        ...

    @abstractmethod
    async def chat(self, history: Sequence[ChatTurn], cancel: CancelToken | None = None) -> str:
        """Send the full history to the backend and return the assistant reply.

        Args:
            history: Turns in chronological order.  Never mutated.
            cancel:  Optional token; firing it aborts the request.

        Returns:
            The reply text with surrounding whitespace removed (never empty).

        Raises:
            LLMError: NetworkError, MalformedResponse, EmptyResponse or
                Cancelled.  No retries are attempted.
        """
        ...


class HTTPChatProvider(LLMProvider):
    """Shared JSON-over-HTTPS transport for the built-in providers.

    Subclasses supply the endpoint, headers, payload and reply extraction.
    A session may be injected (tests, connection reuse); otherwise one
    short-lived ``aiohttp.ClientSession`` is opened per request.
    """

    def __init__(self, timeout_s: float, session: aiohttp.ClientSession | None = None) -> None:
        if timeout_s <= 0:
            raise ConfigurationError(f"timeout must be positive, got {timeout_s}")
        self._timeout_s = timeout_s
        self._session = session

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    @property
    @abstractmethod
    def endpoint(self) -> str:
        ...

    @abstractmethod
    def headers(self) -> dict[str, str]:
        ...

    @abstractmethod
    def build_payload(self, history: Sequence[ChatTurn]) -> dict[str, Any]:
        """Translate the history into the backend's request body."""
        ...

    @abstractmethod
    def parse_reply(self, data: Any) -> str:
        """Extract the first candidate's text from a decoded response body."""
        ...

    async def chat(self, history: Sequence[ChatTurn], cancel: CancelToken | None = None) -> str:
        if cancel is not None and cancel.cancelled:
            raise Cancelled(f"{self.name}: request cancelled before dispatch")

        payload = self.build_payload(history)
        logger.info("%s: sending %d turns", self.name, len(history))
        start = time.monotonic()

        if cancel is None:
            data = await self._post(payload)
        else:
            data = await self._race(asyncio.ensure_future(self._post(payload)), cancel)

        reply = self.parse_reply(data)
        logger.info(
            "%s: reply received in %.2f s (%d chars)",
            self.name,
            time.monotonic() - start,
            len(reply),
        )
        return reply

    async def _race(self, request: asyncio.Future, cancel: CancelToken) -> Any:
        """Wait for *request* unless *cancel* fires first."""
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({request, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            request.cancel()
            raise
        finally:
            waiter.cancel()

        if not request.done():
            request.cancel()
            # Let aiohttp release the connection before reporting.
            await asyncio.gather(request, return_exceptions=True)
            logger.info("%s: request cancelled by caller", self.name)
            raise Cancelled(f"{self.name}: request cancelled")
        return request.result()

    async def _post(self, payload: dict[str, Any]) -> Any:
        timeout = aiohttp.ClientTimeout(total=self._timeout_s)
        try:
            if self._session is not None:
                return await self._send(self._session, payload, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, payload, timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkError(
                f"{self.name}: request timed out after {self._timeout_s:g} s"
            ) from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(f"{self.name}: connection failed: {exc}") from exc

    async def _send(
        self,
        session: aiohttp.ClientSession,
        payload: dict[str, Any],
        timeout: aiohttp.ClientTimeout,
    ) -> Any:
        async with session.post(
            self.endpoint, json=payload, headers=self.headers(), timeout=timeout
        ) as resp:
            raw = await resp.read()
            if not 200 <= resp.status < 300:
                logger.warning("%s: HTTP %d", self.name, resp.status)
                raise NetworkError(
                    f"{self.name}: HTTP {resp.status}",
                    status=resp.status,
                    body=raw.decode("utf-8", errors="replace"),
                )

        try:
            return json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise MalformedResponse(f"{self.name}: response body is not valid UTF-8") from exc
        except ValueError as exc:
            raise MalformedResponse(f"{self.name}: response body is not valid JSON") from exc
