"""Write the conversation to a plain-text log."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from chatbridge.chat.message import ChatTurn

logger = logging.getLogger(__name__)

_BASE_NAME = "chat_history"
_EXT = ".txt"


def _unique_path(directory: Path) -> Path:
    """chat_history.txt, then chat_history(1).txt, chat_history(2).txt, ..."""
    path = directory / f"{_BASE_NAME}{_EXT}"
    i = 1
    while path.exists():
        path = directory / f"{_BASE_NAME}({i}){_EXT}"
        i += 1
    return path


def export_history(turns: Iterable[ChatTurn], directory: str | Path = ".") -> Path | None:
    """Write one ``[role]: content`` line per turn.

    Never overwrites an earlier export.  Returns the file written, or None
    when there is nothing to export.
    """
    turns = list(turns)
    if not turns:
        logger.info("No chat history to export")
        return None

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = _unique_path(directory)
    with path.open("w", encoding="utf-8") as fh:
        for turn in turns:
            fh.write(f"[{turn.role.value}]: {turn.content}\n")

    logger.info("Exported %d turns to %s", len(turns), path)
    return path
