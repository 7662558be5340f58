"""MCP stdio server exposing the wallet operations to MCP clients.

An MCP client talks to the operation registry directly, without the
completion loop in between. Since there is no inbound e-mail to take the
requester from, every operation that acts on a wallet takes the user's
e-mail address as an extra argument (``from_email`` for ``send_crypto``,
``email`` otherwise). That argument is stripped before the registry sees the
call, so it only ever selects whose wallet is used.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from crypto_mail_agent.errors import MissingParameter
from crypto_mail_agent.tools import OperationRegistry
from crypto_mail_agent.wallet.manager import normalize_email

logger = logging.getLogger("crypto_mail_agent.mcp")

SERVER_NAME = "crypto-mail-agent"

_REQUESTER_FIELDS = {"send_crypto": "from_email"}
_ANONYMOUS_OPERATIONS = {"get_help"}


def requester_field(name: str) -> str | None:
    """Argument naming the acting user for operation *name*, or None."""
    if name in _ANONYMOUS_OPERATIONS:
        return None
    return _REQUESTER_FIELDS.get(name, "email")


def _text(result: dict) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result, default=str))]


def list_tools(registry: OperationRegistry) -> list[Tool]:
    tools = []
    for definition in registry.definitions():
        schema = copy.deepcopy(definition.parameters)
        field = requester_field(definition.name)
        if field is not None:
            schema["properties"] = {
                field: {
                    "type": "string",
                    "description": "E-mail address of the user the operation acts for",
                },
                **schema["properties"],
            }
            schema["required"] = [field, *schema["required"]]
        tools.append(Tool(
            name=definition.name,
            description=definition.description,
            inputSchema=schema,
        ))
    return tools


async def call_tool(
    registry: OperationRegistry,
    name: str,
    arguments: dict[str, Any] | None,
) -> list[TextContent]:
    """Run one operation for the user named in *arguments*.

    Domain failures come back as ``{"success": False, ...}`` text content,
    the same shape the completion loop sees.
    """
    arguments = dict(arguments or {})
    requester = ""
    field = requester_field(name)
    if field is not None and registry.get_operation(name) is not None:
        value = arguments.pop(field, None)
        if not isinstance(value, str) or not value.strip():
            return _text(MissingParameter(
                f"Missing required parameter(s) for {name}: {field}"
            ).to_result())
        requester = normalize_email(value)

    logger.info(f"MCP call {name} for {requester or '-'}")
    return _text(await registry.invoke(name, requester, arguments))


def build_server(registry: OperationRegistry) -> Server:
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def _list_tools() -> list[Tool]:
        return list_tools(registry)

    @server.call_tool()
    async def _call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        return await call_tool(registry, name, arguments)

    return server


async def serve_stdio(registry: OperationRegistry) -> None:
    """Serve *registry* on stdin/stdout until the client disconnects."""
    server = build_server(registry)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())
