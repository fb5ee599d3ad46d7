"""Chat session: owns the history and drives one request at a time.

State machine::

    IDLE --send_user_text()--> AWAITING --provider resolves--> IDLE

While AWAITING, further sends are dropped (not queued), so assistant turns
always land in the order their requests were made.  The history is only
mutated here, at two points: the user turn is appended before dispatch and
the assistant turn after a successful reply.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from chatbridge.agents.base import (
    PROVIDER_LABELS,
    CancelToken,
    Cancelled,
    LLMError,
    LLMProvider,
    ProviderKind,
    parse_kind,
)
from chatbridge.agents.factory import ProviderRegistry
from chatbridge.chat.message import ChatTurn, ValidationError

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING = "awaiting"


@dataclass(frozen=True)
class Exchange:
    """Outcome of one round-trip.

    Exactly one of ``reply`` and ``error`` is set.  ``provider`` is the label
    of the provider the request was dispatched to.
    """

    provider: str
    reply: ChatTurn | None = None
    error: LLMError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, Cancelled)


class ChatSession:
    """One conversation against the currently selected provider.

    Usage::

        session = ChatSession(build_registry(cfg), initial="gemini")
        exchange = await session.ask("Hello")
        if exchange is not None and exchange.ok:
            print(exchange.reply.content)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        initial: ProviderKind | str | None = None,
    ) -> None:
        self._registry = registry
        self._history: list[ChatTurn] = []
        self._state = SessionState.IDLE
        self._active_kind: ProviderKind | None = None
        self._token: CancelToken | None = None

        if initial is not None:
            self.switch_provider(initial)
        if self._active_kind is None:
            fallback = registry.first_available()
            if fallback is not None:
                self.switch_provider(fallback)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_awaiting(self) -> bool:
        return self._state is SessionState.AWAITING

    @property
    def history(self) -> tuple[ChatTurn, ...]:
        return tuple(self._history)

    def get_history_snapshot(self) -> tuple[ChatTurn, ...]:
        return self.history

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def active_kind(self) -> ProviderKind | None:
        return self._active_kind

    @property
    def active_label(self) -> str | None:
        if self._active_kind is None:
            return None
        return PROVIDER_LABELS[self._active_kind]

    @property
    def active_provider(self) -> LLMProvider | None:
        if self._active_kind is None:
            return None
        return self._registry.get(self._active_kind)

    # ------------------------------------------------------------------
    # Provider selection
    # ------------------------------------------------------------------

    def switch_provider(self, identifier: ProviderKind | str) -> bool:
        """Select the provider for future sends.

        An in-flight request keeps running against the provider it was
        dispatched to.  Returns False, leaving the current provider active,
        when the identifier is unknown or that provider was never built.
        """
        kind = parse_kind(identifier)
        if kind is None:
            logger.warning("Unknown provider %r", identifier)
            return False
        if kind not in self._registry:
            logger.warning("%s unavailable (credentials missing)", PROVIDER_LABELS[kind])
            return False
        self._active_kind = kind
        logger.info("Current LLM: %s", PROVIDER_LABELS[kind])
        return True

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------

    def send_user_text(self, text: str) -> asyncio.Task | None:
        """Append a user turn and dispatch the history to the active provider.

        Must be called from a running event loop.  Returns the task that
        resolves to an :class:`Exchange`, or None when the send is dropped
        (a request is already in flight, or no provider is available).

        Raises:
            ValidationError: If *text* is blank.  History is not touched.
        """
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text cannot be empty")

        if self._state is SessionState.AWAITING:
            logger.warning("Send dropped: a request is already in flight")
            return None
        provider = self.active_provider
        if provider is None:
            logger.warning("Send dropped: no provider available")
            return None

        loop = asyncio.get_running_loop()
        self._history.append(ChatTurn.user(text))
        self._state = SessionState.AWAITING
        token = self._token = CancelToken()
        task = loop.create_task(
            self._exchange(provider, self.active_label, self.history, token),
            name="chat_exchange",
        )
        # A task cancelled before its first step never reaches _exchange's finally.
        task.add_done_callback(lambda _: self._release(token))
        return task

    async def ask(self, text: str) -> Exchange | None:
        """Send *text* and wait for the outcome; None if the send was dropped."""
        task = self.send_user_text(text)
        if task is None:
            return None
        return await task

    def cancel(self) -> bool:
        """Abort the in-flight request.  Returns False when idle."""
        if self._token is None:
            return False
        self._token.cancel()
        logger.info("Cancellation requested")
        return True

    async def _exchange(
        self,
        provider: LLMProvider,
        label: str,
        snapshot: tuple[ChatTurn, ...],
        token: CancelToken,
    ) -> Exchange:
        logger.info("Dispatching %d turns to %s", len(snapshot), provider.name)
        try:
            try:
                text = await provider.chat(snapshot, token)
            except Cancelled as exc:
                logger.info("%s request cancelled: %s", label, exc)
                return Exchange(provider=label, error=exc)
            except LLMError as exc:
                logger.error("%s request failed (%s): %s", label, exc.kind, exc)
                return Exchange(provider=label, error=exc)

            turn = ChatTurn.assistant(text)
            self._history.append(turn)
            return Exchange(provider=label, reply=turn)
        finally:
            self._release(token)

    def _release(self, token: CancelToken) -> None:
        if self._token is token:
            self._state = SessionState.IDLE
            self._token = None
