"""OpenAI (and OpenAI-compatible) completion backend."""

from __future__ import annotations

import json
import logging

import openai

from crypto_mail_agent.errors import ProviderError
from crypto_mail_agent.llm.base import (
    BaseLLMProvider,
    LLMMessage,
    LLMResponse,
    ToolCall,
    ToolDefinition,
)

logger = logging.getLogger("crypto_mail_agent.llm.openai")


def to_chat_message(msg: LLMMessage) -> dict:
    """One history entry in Chat Completions shape."""
    if msg.role == "tool":
        return {"role": "tool", "tool_call_id": msg.tool_call_id or "", "content": msg.content}
    if msg.role == "assistant" and msg.tool_calls:
        return {
            "role": "assistant",
            "content": msg.content or None,
            "tool_calls": [
                {
                    "id": call["id"],
                    "type": "function",
                    "function": {
                        "name": call["name"],
                        # Malformed payloads go back untouched so the model sees its own output.
                        "arguments": call["arguments"]
                        if isinstance(call["arguments"], str)
                        else json.dumps(call["arguments"]),
                    },
                }
                for call in msg.tool_calls
            ],
        }
    return {"role": msg.role, "content": msg.content}


def to_function_tool(tool: ToolDefinition) -> dict:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }


def from_completion(response) -> LLMResponse:
    """Map a ``ChatCompletion`` onto :class:`LLMResponse`.

    Arguments stay the raw JSON string the service produced.
    """
    choice = response.choices[0]
    calls = [
        ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments)
        for tc in choice.message.tool_calls or []
    ]
    usage = None
    if response.usage:
        usage = {
            "input_tokens": response.usage.prompt_tokens,
            "output_tokens": response.usage.completion_tokens,
        }
    return LLMResponse(
        content=choice.message.content or "",
        tool_calls=calls or None,
        usage=usage,
        stop_reason=choice.finish_reason,
    )


class OpenAIProvider(BaseLLMProvider):
    """Chat Completions with function calling.

    ``base_url`` points the client at any compatible endpoint (vLLM,
    Ollama, LiteLLM and the like).
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 1024,
    ):
        super().__init__(api_key=api_key, model=model, base_url=base_url, max_tokens=max_tokens)
        self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url or None)

    async def complete(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        request: dict = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [to_chat_message(m) for m in messages],
        }
        if tools:
            request["tools"] = [to_function_tool(t) for t in tools]

        try:
            response = await self._client.chat.completions.create(**request)
        except openai.OpenAIError as exc:
            logger.error(f"OpenAI request failed ({self.model}): {exc}")
            raise ProviderError(f"The completion service failed: {exc}") from exc

        return from_completion(response)
