"""Tests for chatbridge/agents/base.py — taxonomy, credentials, transport, cancellation.

The transport is exercised through OpenAIProvider with a mocked aiohttp
session; nothing here opens a socket.
"""
import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import aiohttp
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import make_response, make_session

from chatbridge.agents.base import (
    PROVIDER_LABELS,
    CancelToken,
    Cancelled,
    ConfigurationError,
    EmptyResponse,
    LLMError,
    LLMProvider,
    MalformedResponse,
    NetworkError,
    ProviderKind,
    normalize_credential,
    parse_kind,
)
from chatbridge.agents.openai_provider import OpenAIProvider
from chatbridge.chat.message import ChatTurn

HISTORY = [ChatTurn.user("Hello")]


def _make_provider(session) -> OpenAIProvider:
    return OpenAIProvider(api_key="sk-test", model="m1", session=session)


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

class TestErrorTaxonomy:
    @pytest.mark.parametrize("cls, kind", [
        (ConfigurationError, "configuration"),
        (NetworkError, "network"),
        (MalformedResponse, "malformed_response"),
        (EmptyResponse, "empty_response"),
        (Cancelled, "cancelled"),
    ])
    def test_kinds_are_distinct_llm_errors(self, cls, kind):
        assert issubclass(cls, LLMError)
        assert cls.kind == kind

    def test_network_error_carries_diagnostics(self):
        exc = NetworkError("HTTP 500", status=500, body="oops")
        assert exc.status == 500
        assert str(exc) == "HTTP 500 | oops"

    def test_network_error_without_body(self):
        assert str(NetworkError("timed out")) == "timed out"
        assert NetworkError("timed out").status is None

    def test_long_bodies_are_truncated_in_message(self):
        exc = NetworkError("HTTP 500", status=500, body="x" * 5000)
        assert len(str(exc)) < 600
        assert len(exc.body) == 5000

    def test_provider_interface_is_abstract(self):
        with pytest.raises(TypeError):
            LLMProvider()


# ---------------------------------------------------------------------------
# Credentials and provider identity
# ---------------------------------------------------------------------------

class TestNormalizeCredential:
    @pytest.mark.parametrize("raw, expected", [
        ("sk-abc", "sk-abc"),
        ("  sk-abc  ", "sk-abc"),
        ("sk-\nabc\r", "sk-abc"),
        ("Bearer sk-abc", "sk-abc"),
        ("BEARER   sk-abc", "sk-abc"),
        ("bearer: sk-abc", "sk-abc"),
        ("Bearer:sk-abc", "sk-abc"),
        ("bearerish-key", "bearerish-key"),
        ("Bearer-abc", "Bearer-abc"),
        ("bearer_sk-abc", "bearer_sk-abc"),
    ])
    def test_cleanup(self, raw, expected):
        assert normalize_credential(raw, "key") == expected

    def test_scheme_kept_when_not_requested(self):
        assert normalize_credential("Bearer-proj", "project", strip_scheme=False) == "Bearer-proj"

    @pytest.mark.parametrize("raw", [None, "", " ", "\r\n", "Bearer ", "bearer"])
    def test_blank_raises(self, raw):
        with pytest.raises(ConfigurationError, match="key cannot be empty"):
            normalize_credential(raw, "key")


class TestParseKind:
    @pytest.mark.parametrize("identifier, expected", [
        ("openai", ProviderKind.OPENAI),
        ("OpenAI", ProviderKind.OPENAI),
        ("ChatGPT", ProviderKind.OPENAI),
        ("chatgpt", ProviderKind.OPENAI),
        ("gemini", ProviderKind.GEMINI),
        (" Gemini ", ProviderKind.GEMINI),
        (ProviderKind.GEMINI, ProviderKind.GEMINI),
    ])
    def test_known_identifiers(self, identifier, expected):
        assert parse_kind(identifier) is expected

    @pytest.mark.parametrize("identifier", ["claude", "", "0", "1"])
    def test_unknown_identifiers(self, identifier):
        assert parse_kind(identifier) is None

    def test_every_kind_has_exactly_one_label(self):
        assert set(PROVIDER_LABELS) == set(ProviderKind)
        assert len(set(PROVIDER_LABELS.values())) == len(ProviderKind)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class TestTransport:
    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self):
        mock_resp = make_response({})
        mock_resp.__aenter__ = AsyncMock(side_effect=asyncio.TimeoutError())
        with pytest.raises(NetworkError, match="timed out") as excinfo:
            await _make_provider(make_session(mock_resp)).chat(HISTORY)
        assert excinfo.value.status is None

    @pytest.mark.asyncio
    async def test_connection_failure_is_network_error(self):
        session = make_session(side_effect=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(NetworkError, match="connection failed"):
            await _make_provider(session).chat(HISTORY)

    @pytest.mark.asyncio
    async def test_timeout_passed_to_request(self, openai_reply):
        session = make_session(make_response(openai_reply()))
        await OpenAIProvider(api_key="sk-test", timeout_s=12, session=session).chat(HISTORY)
        timeout = session.post.call_args.kwargs["timeout"]
        assert isinstance(timeout, aiohttp.ClientTimeout)
        assert timeout.total == 12

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self):
        session = make_session(make_response(text="<html>gateway</html>"))
        with pytest.raises(MalformedResponse):
            await _make_provider(session).chat(HISTORY)

    @pytest.mark.asyncio
    async def test_undecodable_success_body_is_malformed(self):
        session = make_session(make_response(raw=b'{"choices":[{"message":{"content":"\xff\xfe"}}]}'))
        with pytest.raises(MalformedResponse, match="not valid UTF-8"):
            await _make_provider(session).chat(HISTORY)

    @pytest.mark.asyncio
    async def test_undecodable_error_body_is_network_error(self):
        session = make_session(make_response(status=500, raw=b"upstream \xff failure"))
        with pytest.raises(NetworkError) as excinfo:
            await _make_provider(session).chat(HISTORY)
        assert excinfo.value.status == 500
        assert excinfo.value.body == "upstream \ufffd failure"

    @pytest.mark.asyncio
    async def test_2xx_other_than_200_accepted(self, openai_reply):
        session = make_session(make_response(openai_reply("ok"), status=201))
        assert await _make_provider(session).chat(HISTORY) == "ok"

    @pytest.mark.asyncio
    async def test_own_session_opened_when_none_injected(self, mocker, openai_reply):
        session = make_session(make_response(openai_reply("ok")))
        factory = mocker.patch("chatbridge.agents.base.aiohttp.ClientSession")
        factory.return_value.__aenter__ = AsyncMock(return_value=session)
        factory.return_value.__aexit__ = AsyncMock(return_value=False)

        reply = await OpenAIProvider(api_key="sk-test").chat(HISTORY)

        assert reply == "ok"
        factory.assert_called_once()
        factory.return_value.__aexit__.assert_awaited_once()


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class TestCancellation:
    def test_token_starts_clear(self):
        token = CancelToken()
        assert token.cancelled is False
        token.cancel()
        assert token.cancelled is True

    @pytest.mark.asyncio
    async def test_pre_cancelled_token_skips_network(self, openai_reply):
        session = make_session(make_response(openai_reply()))
        token = CancelToken()
        token.cancel()
        with pytest.raises(Cancelled):
            await _make_provider(session).chat(HISTORY, token)
        session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_10ms_after_dispatch(self, openai_reply):
        mock_resp = make_response(openai_reply(), delay=5.0)
        provider = _make_provider(make_session(mock_resp))
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        with pytest.raises(Cancelled):
            await asyncio.wait_for(provider.chat(HISTORY, token), timeout=2.0)

        # The request context was exited, i.e. the connection was released.
        mock_resp.__aexit__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_completed_request_ignores_late_cancel(self, openai_reply):
        provider = _make_provider(make_session(make_response(openai_reply("done"))))
        token = CancelToken()
        assert await provider.chat(HISTORY, token) == "done"
        token.cancel()

    @pytest.mark.asyncio
    async def test_outer_task_cancellation_propagates(self, openai_reply):
        mock_resp = make_response(openai_reply(), delay=5.0)
        provider = _make_provider(make_session(mock_resp))
        task = asyncio.ensure_future(provider.chat(HISTORY, CancelToken()))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        # Give the aborted transport task a few ticks to unwind.
        for _ in range(5):
            await asyncio.sleep(0)
        mock_resp.__aexit__.assert_awaited_once()
