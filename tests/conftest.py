"""Shared fixtures and aiohttp mocks for all tests."""
import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


def make_response(
    payload: object = None,
    status: int = 200,
    text: str | None = None,
    delay: float = 0.0,
    raw: bytes | None = None,
) -> AsyncMock:
    """Build an aiohttp response mock usable as ``async with session.post(...)``.

    Args:
        payload: Serialised to JSON and returned from ``resp.read()``.
        status:  HTTP status code.
        text:    Body text; overrides *payload* (for non-JSON bodies).
        delay:   Seconds ``resp.read()`` waits before returning.
        raw:     Body bytes as sent; overrides *text* and *payload*.
    """
    if raw is not None:
        body = raw
    elif text is not None:
        body = text.encode("utf-8")
    else:
        body = json.dumps(payload).encode("utf-8")

    async def _read() -> bytes:
        if delay:
            await asyncio.sleep(delay)
        return body

    mock_resp = AsyncMock()
    mock_resp.status = status
    mock_resp.read = AsyncMock(side_effect=_read)
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)
    return mock_resp


def make_session(mock_resp: AsyncMock | None = None, side_effect: Exception | None = None) -> MagicMock:
    """Return a session mock whose ``post`` yields *mock_resp* or raises."""
    mock_session = MagicMock()
    if side_effect is not None:
        mock_session.post = MagicMock(side_effect=side_effect)
    else:
        mock_session.post = MagicMock(return_value=mock_resp)
    return mock_session


def sent_payload(mock_session: MagicMock) -> dict:
    """The JSON body passed to the last ``session.post`` call."""
    return mock_session.post.call_args.kwargs["json"]


def sent_headers(mock_session: MagicMock) -> dict:
    return mock_session.post.call_args.kwargs["headers"]


@pytest.fixture
def openai_reply():
    def _build(content: str = "Hi there") -> dict:
        return {"choices": [{"message": {"role": "assistant", "content": content}}]}
    return _build


@pytest.fixture
def gemini_reply():
    def _build(text: str = "Hi there") -> dict:
        return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}
    return _build
