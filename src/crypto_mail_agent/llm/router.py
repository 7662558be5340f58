"""Picks the completion backend named in the ``llm`` config section."""

from __future__ import annotations

import importlib
import logging

from crypto_mail_agent.config import LLMConfig, LLMProviderConfig, is_unset
from crypto_mail_agent.errors import ConfigurationError
from crypto_mail_agent.llm.base import BaseLLMProvider

logger = logging.getLogger("crypto_mail_agent.llm.router")

# Imported lazily so a deployment only pays for the SDK it uses.
_BACKENDS: dict[str, str] = {
    "anthropic": "crypto_mail_agent.llm.anthropic:AnthropicProvider",
    "openai": "crypto_mail_agent.llm.openai:OpenAIProvider",
}


def _load_backend(name: str) -> type[BaseLLMProvider]:
    module_path, class_name = _BACKENDS[name].split(":")
    return getattr(importlib.import_module(module_path), class_name)


class LLMRouter:
    """Builds one provider per backend name and hands out the same instance after.

    Parameters
    ----------
    llm_config:
        The ``llm`` section of :class:`~crypto_mail_agent.config.AppConfig`.
    """

    def __init__(self, llm_config: LLMConfig):
        self._config = llm_config
        self._providers: dict[str, BaseLLMProvider] = {}

    def _settings_for(self, name: str) -> LLMProviderConfig:
        if name not in _BACKENDS:
            raise ConfigurationError(
                f"Unknown provider '{name}'. Supported providers: {sorted(_BACKENDS)}"
            )
        settings = getattr(self._config, name, None)
        if settings is None:
            raise ConfigurationError(f"Provider '{name}' has no llm.{name} section.")
        if is_unset(settings.api_key):
            raise ConfigurationError(f"llm.{name}.api_key is not set.")
        if not settings.model:
            raise ConfigurationError(f"llm.{name}.model is not set.")
        return settings

    def get_provider(self, name: str | None = None) -> BaseLLMProvider:
        """Provider for *name*, or for ``default_provider`` when omitted.

        Raises
        ------
        ConfigurationError
            If the backend is unknown or its section is incomplete.
        """
        name = name or self._config.default_provider
        if name not in self._providers:
            settings = self._settings_for(name)
            self._providers[name] = _load_backend(name)(
                api_key=settings.api_key,
                model=settings.model,
                base_url=settings.base_url,
                max_tokens=settings.max_tokens,
            )
            logger.info(f"Using {name} completion backend (model={settings.model})")
        return self._providers[name]
