"""Operation registry - the whitelist of wallet operations the model may request."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import pydantic
from pydantic import BaseModel

from crypto_mail_agent.errors import (
    InvalidArguments,
    MissingParameter,
    ProviderError,
    UnknownOperation,
    ValidationError,
    WalletError,
)
from crypto_mail_agent.llm.base import ToolDefinition

if TYPE_CHECKING:
    from crypto_mail_agent.wallet.manager import WalletEngine

logger = logging.getLogger("crypto_mail_agent.tools.registry")

Handler = Callable[["WalletEngine", str, BaseModel], Awaitable[dict]]

_MISSING_ERROR_TYPES = {"missing", "string_too_short"}


@dataclass
class Operation:
    name: str
    description: str
    input_model: type[BaseModel]
    handler: Handler
    retry_safe: bool = True

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=_input_schema(self.input_model),
        )

    def validate(self, arguments: dict[str, Any]) -> BaseModel:
        """Build the input struct, mapping pydantic errors onto our taxonomy."""
        try:
            return self.input_model.model_validate(arguments)
        except pydantic.ValidationError as exc:
            errors = exc.errors()
            missing = [
                ".".join(str(p) for p in err["loc"])
                for err in errors
                if err["type"] in _MISSING_ERROR_TYPES
            ]
            if missing:
                raise MissingParameter(
                    f"Missing required parameter(s) for {self.name}: {', '.join(missing)}"
                ) from None
            first = errors[0]
            field = ".".join(str(p) for p in first["loc"]) or "arguments"
            raise ValidationError(f"Invalid {field} for {self.name}: {first['msg']}") from None


def _input_schema(model: type[BaseModel]) -> dict[str, Any]:
    """JSON Schema for *model*, without the pydantic-generated titles."""
    schema = model.model_json_schema()
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    schema.setdefault("properties", {})
    schema.setdefault("required", [])
    return schema


def decode_arguments(arguments: dict[str, Any] | str | None) -> dict[str, Any]:
    """Turn a tool-call payload into a mapping.

    Raises
    ------
    InvalidArguments
        If a string payload is not JSON or does not encode an object.
    """
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, str):
        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError as exc:
            raise InvalidArguments(f"Arguments are not valid JSON: {exc.msg}") from None
        if isinstance(decoded, dict):
            return decoded
    raise InvalidArguments("Arguments must be a JSON object.")


# ---------------------------------------------------------------------------
# Static catalog, filled by the @operation decorator
# ---------------------------------------------------------------------------

CATALOG: dict[str, Operation] = {}


def operation(
    name: str,
    description: str,
    input_model: type[BaseModel],
    *,
    retry_safe: bool = True,
):
    """Decorator to add an async handler to the operation catalog.

    Usage:
        @operation("get_balance", "Get the user's balance", NoArguments)
        async def get_balance(engine, requester, args) -> dict:
            ...
    """

    def decorator(func: Handler) -> Handler:
        CATALOG[name] = Operation(
            name=name,
            description=description,
            input_model=input_model,
            handler=func,
            retry_safe=retry_safe,
        )
        return func

    return decorator


class OperationRegistry:
    """Binds the operation catalog to one :class:`WalletEngine`.

    :meth:`invoke` never raises for domain failures: validation problems,
    missing wallets, insufficient funds and provider errors all come back
    as ``{"success": False, "message": ..., "error": code}``.
    """

    def __init__(
        self,
        engine: WalletEngine,
        operations: dict[str, Operation] | None = None,
    ) -> None:
        self.engine = engine
        self._operations = dict(CATALOG if operations is None else operations)

    def get_operation(self, name: str) -> Operation | None:
        return self._operations.get(name)

    def list_names(self) -> list[str]:
        return list(self._operations.keys())

    def definitions(self) -> list[ToolDefinition]:
        return [op.to_definition() for op in self._operations.values()]

    async def invoke(self, name: str, requester: str, arguments: dict[str, Any]) -> dict:
        try:
            op = self._operations.get(name)
            if op is None:
                raise UnknownOperation(
                    f"Unknown operation '{name}'. Available: {', '.join(self.list_names())}"
                )
            args = op.validate(arguments)
            return await self._run(op, requester, args)
        except WalletError as exc:
            logger.info(f"{name} for {requester} failed: {exc.code}: {exc.message}")
            return exc.to_result()

    async def _run(self, op: Operation, requester: str, args: BaseModel) -> dict:
        try:
            return await op.handler(self.engine, requester, args)
        except ProviderError as exc:
            if not op.retry_safe:
                raise
            logger.warning(f"{op.name} hit a provider error, retrying once: {exc.message}")
        return await op.handler(self.engine, requester, args)
