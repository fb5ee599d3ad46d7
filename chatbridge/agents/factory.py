"""LLM provider factory — builds every configured provider at startup."""
from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING

from chatbridge.agents.base import (
    PROVIDER_LABELS,
    ConfigurationError,
    LLMProvider,
    ProviderConfig,
    ProviderKind,
    parse_kind,
)

if TYPE_CHECKING:
    from config import AppConfig

logger = logging.getLogger(__name__)


def create_provider(kind: ProviderKind | str, cfg: ProviderConfig) -> LLMProvider:
    """Instantiate the provider for *kind* from its config.

    Supported kinds:
        ProviderKind.OPENAI  — OpenAI Chat Completions
        ProviderKind.GEMINI  — Google Gemini generateContent

    Raises:
        ConfigurationError: If a required credential is missing or blank.
        ValueError: If the kind is unrecognised.
    """
    resolved = parse_kind(kind)
    if resolved is None:
        raise ValueError(f"Unknown provider {kind!r}. Choose 'gemini' or 'openai'.")
    kind = resolved
    logger.info("Creating LLM provider: %s", kind.value)

    if kind is ProviderKind.OPENAI:
        from chatbridge.agents.openai_provider import OpenAIProvider
        return OpenAIProvider(
            api_key=cfg.api_key,
            project_id=cfg.project_id,
            model=cfg.model,
            timeout_s=cfg.timeout_s,
            base_url=cfg.base_url,
            max_tokens=cfg.max_tokens,
            temperature=cfg.temperature,
        )

    if kind is ProviderKind.GEMINI:
        from chatbridge.agents.gemini_provider import GeminiProvider
        return GeminiProvider(
            api_key=cfg.api_key,
            model=cfg.model,
            timeout_s=cfg.timeout_s,
            base_url=cfg.base_url,
        )

    raise ValueError(f"No adapter for provider {kind.value!r}")


class ProviderRegistry:
    """The providers that could be constructed, keyed by kind.

    Iteration follows the order of ``PROVIDER_LABELS`` so the default
    selection is stable.
    """

    def __init__(self, providers: Mapping[ProviderKind, LLMProvider] | None = None) -> None:
        self._providers: dict[ProviderKind, LLMProvider] = dict(providers or {})

    def get(self, kind: ProviderKind) -> LLMProvider | None:
        return self._providers.get(kind)

    @property
    def available(self) -> list[ProviderKind]:
        return [kind for kind in PROVIDER_LABELS if kind in self._providers]

    def first_available(self) -> ProviderKind | None:
        available = self.available
        return available[0] if available else None

    def __contains__(self, kind: object) -> bool:
        return kind in self._providers

    def __iter__(self) -> Iterator[ProviderKind]:
        return iter(self.available)

    def __len__(self) -> int:
        return len(self._providers)


def build_registry(app_config: AppConfig) -> ProviderRegistry:
    """Construct every provider whose credentials are present.

    A provider whose construction fails is disabled with a warning; the
    session keeps running as long as one provider remains.
    """
    providers: dict[ProviderKind, LLMProvider] = {}
    for kind, label in PROVIDER_LABELS.items():
        try:
            providers[kind] = create_provider(kind, app_config.provider_config(kind))
        except ConfigurationError as exc:
            logger.warning("%s disabled: %s", label, exc)

    if not providers:
        logger.error("No LLM provider configured. Set OPENAI_KEY or GEMINI_KEY in .env")
    else:
        logger.info(
            "Available providers: %s",
            [PROVIDER_LABELS[kind] for kind in PROVIDER_LABELS if kind in providers],
        )
    return ProviderRegistry(providers)
