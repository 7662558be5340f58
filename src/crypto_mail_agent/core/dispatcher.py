"""Intent dispatcher - turns a free-form request into wallet operations and a reply."""

from __future__ import annotations

import asyncio
import json
import logging

from crypto_mail_agent.errors import ExhaustedRounds, InvalidArguments, ProviderError, ProviderTimeout
from crypto_mail_agent.llm.base import BaseLLMProvider, LLMMessage, LLMResponse, ToolCall
from crypto_mail_agent.tools.registry import OperationRegistry, decode_arguments

logger = logging.getLogger("crypto_mail_agent.dispatcher")

SYSTEM_PROMPT = """\
You are a helpful crypto assistant that helps users manage their cryptocurrency via email.
You can help users:
1. Create a new wallet
2. Check their balance
3. Send crypto to others (by email or wallet address)
4. View transaction history
5. Get their wallet address

When a user sends you an email, analyze their intent and use the appropriate tool.
Always be friendly and explain things simply - these are Web2 users who may be new to crypto!

Important rules:
- Every tool acts on the wallet of the user who wrote the email; you never need their address.
- When sending crypto, parse the amount and recipient from the user's message.
- Amounts are in ETH as decimal strings (e.g. "0.1", "1.5").
- Be helpful if users make mistakes - suggest corrections.
- If a tool reports a failure, explain it; never claim a transfer happened unless send_crypto succeeded.
- Never call send_crypto again for a transfer that already failed unless the user asks again."""

APOLOGY = (
    "Sorry, I couldn't finish handling your request. "
    "Please try again with a shorter, more specific message."
)
TRY_AGAIN_LATER = (
    "Sorry, our service is temporarily unavailable. Please try again later."
)


class IntentDispatcher:
    """Runs the bounded completion/operation loop for one request at a time.

    The dispatcher holds no per-request state, so one instance can serve
    many concurrent :meth:`handle` calls.

    Parameters
    ----------
    provider:
        Completion service.
    registry:
        Operation registry bound to the wallet engine.
    max_rounds:
        Maximum completion rounds before giving up with ``ExhaustedRounds``.
    timeout_seconds:
        Per-round limit on the completion call.
    """

    def __init__(
        self,
        provider: BaseLLMProvider,
        registry: OperationRegistry,
        max_rounds: int = 5,
        timeout_seconds: float = 30.0,
    ) -> None:
        if max_rounds < 3:
            raise ValueError("max_rounds must be at least 3")
        self.provider = provider
        self.registry = registry
        self.max_rounds = max_rounds
        self.timeout_seconds = timeout_seconds

    async def handle(self, requester: str, text: str, subject: str | None = None) -> str:
        """Answer *text* on behalf of *requester*.

        Domain failures are already folded into the conversation; this only
        turns the loop's own safety valves into user-facing messages.
        """
        try:
            return await self.run(requester, text, subject)
        except ExhaustedRounds as exc:
            logger.warning(f"Gave up on request from {requester}: {exc}")
            return APOLOGY
        except ProviderError as exc:
            logger.error(f"Completion service unavailable for {requester}: {exc.message}")
            return TRY_AGAIN_LATER

    async def run(self, requester: str, text: str, subject: str | None = None) -> str:
        """The dispatch loop itself. Raises ``ExhaustedRounds`` past the bound."""
        logger.info(f"Processing request from {requester} (subject={subject!r})")
        history = self._seed_history(requester, text, subject)
        definitions = self.registry.definitions()

        for round_no in range(1, self.max_rounds + 1):
            response = await self._complete_with_retry(history, definitions)

            if not response.tool_calls:
                reply = response.content or "I processed your request but have no additional message."
                logger.info(f"Final answer for {requester} after {round_no} round(s)")
                return reply

            history.append(LLMMessage(
                role="assistant",
                content=response.content or "",
                tool_calls=[
                    {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                    for tc in response.tool_calls
                ],
            ))
            for tc in response.tool_calls:
                result = await self._execute(requester, tc)
                history.append(LLMMessage(
                    role="tool",
                    content=json.dumps(result, default=str),
                    tool_call_id=tc.id,
                ))

        raise ExhaustedRounds(self.max_rounds)

    @staticmethod
    def _seed_history(requester: str, text: str, subject: str | None) -> list[LLMMessage]:
        user_turn = (
            f"User email: {requester}\n"
            f"Email subject: {subject or '(no subject)'}\n"
            f"Email body: {text}\n\n"
            f"Please help this user with their crypto request."
        )
        return [
            LLMMessage(role="system", content=SYSTEM_PROMPT),
            LLMMessage(role="user", content=user_turn),
        ]

    async def _complete(self, history, definitions) -> LLMResponse:
        try:
            return await asyncio.wait_for(
                self.provider.complete(messages=history, tools=definitions),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ProviderTimeout(
                f"Completion service did not answer within {self.timeout_seconds}s"
            ) from None

    async def _complete_with_retry(self, history, definitions) -> LLMResponse:
        try:
            return await self._complete(history, definitions)
        except ProviderError as exc:
            logger.warning(f"Completion round failed, retrying once: {exc.message}")
        return await self._complete(history, definitions)

    async def _execute(self, requester: str, tc: ToolCall) -> dict:
        logger.info(f"[{requester}] calling operation: {tc.name} (id={tc.id})")
        try:
            arguments = decode_arguments(tc.arguments)
        except InvalidArguments as exc:
            return exc.to_result()
        result = await self.registry.invoke(tc.name, requester, arguments)
        logger.info(f"[{requester}] {tc.name} -> success={result.get('success')}")
        return result
