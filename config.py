"""Central configuration loaded from the environment, a .env file and key files.

Lookup order for every setting (first non-blank value wins):

    1. process environment
    2. ``.env`` file (``KEY=value`` lines, ``#`` comments)
    3. ``openai.key`` / ``gemini.key`` next to this file (API keys only)
    4. the dataclass default

A missing API key is not an error here: the provider factory disables that
provider at startup.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

from chatbridge.agents import gemini_provider, openai_provider
from chatbridge.agents.base import ProviderConfig, ProviderKind

logger = logging.getLogger(__name__)

ROOT = Path(__file__).parent


def _read_key(filename: str, key_dir: Path = ROOT) -> str:
    path = key_dir / filename
    if path.exists():
        return path.read_text().strip()
    return ""


@dataclass
class AppConfig:
    # OpenAI (Chat Completions)
    openai_api_key: str = ""
    openai_project_id: str = ""
    openai_model: str = openai_provider.DEFAULT_MODEL
    openai_timeout_s: float = openai_provider.DEFAULT_TIMEOUT_S
    openai_max_tokens: int = 256
    openai_temperature: float = 0.7

    # Google Gemini (generateContent)
    gemini_api_key: str = ""
    gemini_model: str = gemini_provider.DEFAULT_MODEL
    gemini_timeout_s: float = gemini_provider.DEFAULT_TIMEOUT_S

    # Provider selected at startup: "gemini" | "openai"
    default_provider: str = ProviderKind.GEMINI.value

    # Where /export writes chat_history.txt
    export_dir: str = "."

    def provider_config(self, kind: ProviderKind) -> ProviderConfig:
        """Build the construction parameters for one provider."""
        if kind is ProviderKind.OPENAI:
            return ProviderConfig(
                api_key=self.openai_api_key,
                project_id=self.openai_project_id or None,
                model=self.openai_model,
                timeout_s=self.openai_timeout_s,
                max_tokens=self.openai_max_tokens,
                temperature=self.openai_temperature,
            )
        if kind is ProviderKind.GEMINI:
            return ProviderConfig(
                api_key=self.gemini_api_key,
                model=self.gemini_model,
                timeout_s=self.gemini_timeout_s,
            )
        raise ValueError(f"Unknown provider kind {kind!r}")


def load_config(
    env_file: str | Path | None = ".env",
    key_dir: Path = ROOT,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Read settings once at startup and return an :class:`AppConfig`."""
    if environ is None:
        environ = os.environ

    file_values: dict[str, str | None] = {}
    if env_file is not None:
        if Path(env_file).exists():
            file_values = dict(dotenv_values(env_file))
        else:
            logger.warning(".env file not found at %s", env_file)

    def lookup(name: str, key_file: str | None = None, default: str = "") -> str:
        for source in (environ, file_values):
            value = (source.get(name) or "").strip()
            if value:
                return value
        if key_file is not None:
            value = _read_key(key_file, key_dir)
            if value:
                return value
        return default

    defaults = AppConfig()
    return AppConfig(
        openai_api_key=lookup("OPENAI_KEY", key_file="openai.key"),
        openai_project_id=lookup("OPENAI_PROJECT_ID"),
        openai_model=lookup("OPENAI_MODEL", default=defaults.openai_model),
        gemini_api_key=lookup("GEMINI_KEY", key_file="gemini.key"),
        gemini_model=lookup("GEMINI_MODEL", default=defaults.gemini_model),
        default_provider=lookup("CHATBRIDGE_PROVIDER", default=defaults.default_provider),
        export_dir=lookup("CHATBRIDGE_EXPORT_DIR", default=defaults.export_dir),
    )
