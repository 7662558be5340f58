"""Anthropic Messages API completion backend."""

from __future__ import annotations

import json
import logging

import anthropic

from crypto_mail_agent.errors import ProviderError
from crypto_mail_agent.llm.base import (
    BaseLLMProvider,
    LLMMessage,
    LLMResponse,
    ToolCall,
    ToolDefinition,
)

logger = logging.getLogger("crypto_mail_agent.llm.anthropic")


def _tool_input(arguments) -> dict:
    """``tool_use`` blocks need an object; undecodable payloads become ``{}``."""
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError:
            return {}
    return arguments if isinstance(arguments, dict) else {}


def to_anthropic_messages(messages: list[LLMMessage]) -> tuple[str, list[dict]]:
    """Split out the system prompt and build the ``messages`` list.

    Tool results become ``tool_result`` blocks on a user turn; results that
    answer the same assistant turn share one user turn.
    """
    system_parts: list[str] = []
    turns: list[dict] = []
    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.content)
        elif msg.role == "tool":
            block = {"type": "tool_result", "tool_use_id": msg.tool_call_id or "", "content": msg.content}
            previous = turns[-1] if turns else None
            if previous and previous["role"] == "user" and isinstance(previous["content"], list):
                previous["content"].append(block)
            else:
                turns.append({"role": "user", "content": [block]})
        elif msg.role == "assistant" and msg.tool_calls:
            blocks: list[dict] = [{"type": "text", "text": msg.content}] if msg.content else []
            blocks.extend(
                {"type": "tool_use", "id": call["id"], "name": call["name"], "input": _tool_input(call["arguments"])}
                for call in msg.tool_calls
            )
            turns.append({"role": "assistant", "content": blocks})
        else:
            turns.append({"role": msg.role, "content": msg.content})
    return "\n".join(system_parts), turns


def from_message(response) -> LLMResponse:
    text = [block.text for block in response.content if block.type == "text"]
    calls = [
        ToolCall(id=block.id, name=block.name, arguments=block.input)
        for block in response.content
        if block.type == "tool_use"
    ]
    usage = None
    if response.usage:
        usage = {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        }
    return LLMResponse(
        content="\n".join(text),
        tool_calls=calls or None,
        usage=usage,
        stop_reason=response.stop_reason,
    )


class AnthropicProvider(BaseLLMProvider):
    """Claude models through :class:`anthropic.AsyncAnthropic`."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 1024,
    ):
        super().__init__(api_key=api_key, model=model, base_url=base_url, max_tokens=max_tokens)
        self._client = anthropic.AsyncAnthropic(api_key=api_key, base_url=base_url or None)

    async def complete(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        system, turns = to_anthropic_messages(messages)
        request: dict = {"model": self.model, "max_tokens": self.max_tokens, "messages": turns}
        if system:
            request["system"] = system
        if tools:
            request["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]

        try:
            response = await self._client.messages.create(**request)
        except anthropic.APIError as exc:
            logger.error(f"Anthropic request failed ({self.model}): {exc}")
            raise ProviderError(f"The completion service failed: {exc}") from exc

        return from_message(response)
