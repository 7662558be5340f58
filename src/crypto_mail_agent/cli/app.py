"""CLI for Crypto Mail Agent - talk to the wallet agent from the terminal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from crypto_mail_agent.config import DEFAULT_CONFIG_PATH
from crypto_mail_agent.errors import ConfigurationError

app = typer.Typer(
    name="crypto-mail-agent",
    help="Custodial crypto wallets driven by plain-English e-mail.",
    no_args_is_help=True,
)
console = Console()
logger = logging.getLogger("crypto_mail_agent.cli")

GENERIC_ERROR = "Something went wrong on our side. Please try again later."

_config_path: Path = DEFAULT_CONFIG_PATH


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"crypto-mail-agent {version('crypto-mail-agent')}")
        raise typer.Exit()


@app.callback()
def main(
    config: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to config.yaml",
        envvar="CRYPTO_MAIL_AGENT_CONFIG",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Custodial crypto wallets driven by plain-English e-mail."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _run(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


async def _load_application(out: Console = console):
    from crypto_mail_agent.config import load_config
    from crypto_mail_agent.core.app import Application

    try:
        return await Application.load(load_config(_config_path))
    except ConfigurationError as e:
        out.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


async def _answer(application, requester: str, text: str) -> str:
    try:
        return await application.handle(requester, text)
    except Exception:
        logger.exception(f"Request from {requester} failed")
        return GENERIC_ERROR


# ------------------------------------------------------------------
# init / keygen
# ------------------------------------------------------------------


@app.command()
def init(
    path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--path", "-p", help="Where to write the template"),
):
    """Write a config.yaml template with environment placeholders."""
    from crypto_mail_agent.config import write_config_template

    try:
        write_config_template(path)
    except FileExistsError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)
    console.print(Panel(
        f"[bold green]Config written to {path}[/bold green]\n\n"
        f"[dim]Set OPENAI_API_KEY (or ANTHROPIC_API_KEY), RPC_URL and ENCRYPTION_KEY,\n"
        f"then run 'crypto-mail-agent chat you@example.com'.[/dim]",
        title="Crypto Mail Agent",
    ))


@app.command()
def keygen():
    """Print a fresh 32-byte encryption key (64 hex chars)."""
    from crypto_mail_agent.wallet.keystore import generate_key

    console.print(generate_key())
    console.print("[dim]Store it as ENCRYPTION_KEY. Losing it makes every wallet unrecoverable.[/dim]")


# ------------------------------------------------------------------
# ask / chat
# ------------------------------------------------------------------


@app.command()
def ask(
    email: str = typer.Argument(help="E-mail address the request comes from"),
    message: str = typer.Argument(help="The request, e.g. 'what is my balance?'"),
):
    """Send a single request and print the reply."""

    async def _ask():
        application = await _load_application()
        try:
            with console.status("Thinking..."):
                return await _answer(application, email, message)
        finally:
            await application.close()

    reply = _run(_ask())
    console.print(reply)


@app.command()
def chat(
    email: str = typer.Argument(help="E-mail address to act as"),
):
    """Start an interactive session. Use '/email <address>' to switch users."""

    async def _chat():
        application = await _load_application()
        requester = email

        console.print(f"[bold]Crypto Mail Agent[/bold] - acting as [cyan]{requester}[/cyan]")
        console.print("[dim]Type 'exit' to quit, '/email <address>' to switch users.[/dim]\n")

        try:
            while True:
                try:
                    user_input = console.input("[bold blue]You>[/bold blue] ")
                except (EOFError, KeyboardInterrupt):
                    break

                text = user_input.strip()
                if not text:
                    continue
                if text.lower() in ("exit", "quit", "bye"):
                    break
                if text.startswith("/email"):
                    parts = text.split(maxsplit=1)
                    if len(parts) == 2:
                        requester = parts[1].strip()
                        console.print(f"[dim]Now acting as {requester}[/dim]\n")
                    else:
                        console.print(f"[dim]Acting as {requester}[/dim]\n")
                    continue

                with console.status("Thinking..."):
                    reply = await _answer(application, requester, text)

                console.print(f"[bold green]Agent>[/bold green] {reply}\n")
        finally:
            await application.close()
        console.print("[dim]Session ended.[/dim]")

    _run(_chat())


# ------------------------------------------------------------------
# serve
# ------------------------------------------------------------------


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to serve on (default: webhook.port)"),
    host: Optional[str] = typer.Option(None, "--host", help="Host to bind to (default: webhook.host)"),
):
    """Run the inbound e-mail webhook server."""
    from crypto_mail_agent.config import load_config
    from crypto_mail_agent.webhook.server import run_server

    config = load_config(_config_path)
    try:
        config.validate_startup()
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    host = host or config.webhook.host
    port = port or config.webhook.port
    console.print(f"[bold green]Webhook server at http://{host}:{port}/webhook/email[/bold green]")
    if not config.email.enabled:
        console.print("[yellow]Email is not configured; replies will not be sent.[/yellow]")
    run_server(config, host=host, port=port)


# ------------------------------------------------------------------
# mcp
# ------------------------------------------------------------------


@app.command(name="mcp")
def mcp_serve():
    """Serve the wallet operations to MCP clients over stdio."""
    from crypto_mail_agent.mcp_server import serve_stdio

    # stdout carries the protocol.
    err_console = Console(stderr=True)
    logging.getLogger().handlers = [
        RichHandler(console=err_console, rich_tracebacks=True, show_path=False)
    ]

    async def _serve():
        application = await _load_application(err_console)
        try:
            await serve_stdio(application.registry)
        finally:
            await application.close()

    _run(_serve())


if __name__ == "__main__":
    app()
