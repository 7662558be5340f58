"""Provider-neutral message, tool and response types for the completion service."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class LLMMessage:
    """One entry of the conversation history.

    ``role`` is one of ``system``, ``user``, ``assistant`` or ``tool``.
    Assistant messages may carry ``tool_calls`` (dicts with ``id``, ``name``
    and ``arguments``); tool messages carry the ``tool_call_id`` they answer.
    """

    role: str
    content: str = ""
    tool_calls: Optional[list[dict[str, Any]]] = None
    tool_call_id: Optional[str] = None


@dataclass
class ToolDefinition:
    """An operation the model may request, with a JSON Schema for its input."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCall:
    """A tagged operation request proposed by the model.

    ``arguments`` is whatever the provider returned: already a mapping, or
    the raw JSON-encoded string.
    """

    id: str
    name: str
    arguments: dict[str, Any] | str


@dataclass
class LLMResponse:
    content: str = ""
    tool_calls: Optional[list[ToolCall]] = None
    usage: Optional[dict[str, int]] = None
    stop_reason: Optional[str] = None


class BaseLLMProvider(abc.ABC):
    """Common constructor and interface for every completion backend."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 1024,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens

    @abc.abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        """Submit the history and return either text or tool calls."""
