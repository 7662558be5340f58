"""Completion service abstraction layer for Crypto Mail Agent.

Provides a unified interface over Anthropic, OpenAI, and any
OpenAI-compatible endpoint, plus a router that picks the configured one.
"""

from crypto_mail_agent.llm.base import (
    BaseLLMProvider,
    LLMMessage,
    LLMResponse,
    ToolCall,
    ToolDefinition,
)
from crypto_mail_agent.llm.router import LLMRouter

__all__ = [
    "BaseLLMProvider",
    "LLMMessage",
    "LLMResponse",
    "LLMRouter",
    "ToolCall",
    "ToolDefinition",
]
