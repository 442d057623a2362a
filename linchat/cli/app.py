"""
Main CLI application for linchat.

Usage:
    linchat chat [--model ID] [--profile NAME] [--conversation ID] [--incognito]
    linchat models list
    linchat tools list
    linchat conversations list|show|delete|export
    linchat config show|validate
    linchat version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from linchat import __version__
from linchat.config import ConfigError, LinchatConfig, load_config

app = typer.Typer(name="linchat", help="linchat - streaming chat client for OpenAI-compatible endpoints")
models_app = typer.Typer(help="Model catalog")
tools_app = typer.Typer(help="Tool management")
conversations_app = typer.Typer(help="Saved conversations")
config_app = typer.Typer(help="Configuration management")

app.add_typer(models_app, name="models")
app.add_typer(tools_app, name="tools")
app.add_typer(conversations_app, name="conversations")
app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "linchat.yaml",
        Path.cwd() / "linchat.yml",
        Path.home() / ".config" / "linchat" / "config.yaml",
        Path.home() / ".linchat" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load(profile: str | None = None, cli_overrides: dict | None = None) -> LinchatConfig:
    try:
        return load_config(_get_config_path(), profile=profile, cli_overrides=cli_overrides)
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)


def _build_registry(cfg: LinchatConfig):
    from linchat.tools.builtin import BUILTIN_TOOLS
    from linchat.tools.registry import ToolRegistry

    registry = ToolRegistry()
    for tool_cls in BUILTIN_TOOLS:
        registry.register(tool_cls())
    registry.load_plugins(
        enabled=cfg.tools.plugins_enabled,
        allow_tools=set(cfg.tools.allow_tools) if cfg.tools.allow_tools else None,
    )
    return registry


def _build_catalog(cfg: LinchatConfig):
    from linchat.llm.catalog import ModelCatalog

    return ModelCatalog.from_file(cfg.llm.models_file)


def _open_store(cfg: LinchatConfig):
    from linchat.conversation.store import ConversationStore

    return ConversationStore(cfg.store.history_db)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model ID"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    conversation: Optional[str] = typer.Option(None, "--conversation", "-c", help="Resume conversation ID"),
    incognito: bool = typer.Option(False, "--incognito", help="Do not save this conversation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Start an interactive chat session."""
    from linchat.cli.chat import ChatHandler
    from linchat.conversation.manager import ConversationManager
    from linchat.llm.client import CompletionClient
    from linchat.orchestrator.core import Orchestrator

    _setup_logging(verbose)
    overrides = {"llm.model": model, "chat.incognito": True if incognito else None}
    cfg = _load(profile, overrides)

    async def _run():
        client = CompletionClient(
            base_url=cfg.llm.api_base,
            api_key=cfg.llm.api_key(),
            timeout=float(cfg.llm.timeout_seconds),
            max_retries=cfg.llm.max_retries,
        )
        orchestrator = Orchestrator(
            client=client,
            registry=_build_registry(cfg),
            catalog=_build_catalog(cfg),
            max_iterations=cfg.tools.max_iterations,
            tool_timeout=float(cfg.tools.timeout_seconds),
            parallel_tools=cfg.tools.parallel,
        )
        store = _open_store(cfg)
        await store.init()
        try:
            manager = ConversationManager(orchestrator, store, cfg)
            if conversation and not await manager.load(conversation):
                console.print(f"[red]Conversation not found:[/red] {conversation}")
                raise typer.Exit(1)
            handler = ChatHandler(manager, client=client, console=console)
            await handler.run_loop()
        finally:
            await store.close()

    asyncio.run(_run())


@models_app.command("list")
def models_list():
    """List selectable models."""
    from linchat.cli.output import OutputFormatter

    cfg = _load()
    catalog = _build_catalog(cfg)
    OutputFormatter(console).format_model_list(
        catalog.all(), active=cfg.llm.model or catalog.default_model_id
    )


@tools_app.command("list")
def tools_list():
    """List registered tools."""
    from linchat.cli.output import OutputFormatter

    cfg = _load()
    registry = _build_registry(cfg)
    OutputFormatter(console).format_tool_list(registry.list(), enabled=cfg.tools.enabled)


@conversations_app.command("list")
def conversations_list(
    limit: Optional[int] = typer.Option(None, help="Show at most N conversations"),
):
    """List saved conversations."""

    async def _run():
        from linchat.cli.output import OutputFormatter

        async with _open_store(_load()) as store:
            conversations = await store.list_conversations(limit=limit)
        OutputFormatter(console).format_conversation_list(conversations)

    asyncio.run(_run())


@conversations_app.command("show")
def conversations_show(conversation_id: str = typer.Argument(..., help="Conversation ID")):
    """Show a conversation."""

    async def _run():
        from linchat.cli.output import OutputFormatter

        async with _open_store(_load()) as store:
            conv = await store.get_conversation(conversation_id)
        if conv is None:
            console.print(f"[red]Conversation not found:[/red] {conversation_id}")
            raise typer.Exit(1)
        OutputFormatter(console).format_conversation(conv)

    asyncio.run(_run())


@conversations_app.command("delete")
def conversations_delete(conversation_id: str = typer.Argument(..., help="Conversation ID")):
    """Delete a conversation."""

    async def _run():
        async with _open_store(_load()) as store:
            deleted = await store.delete_conversation(conversation_id)
        if not deleted:
            console.print(f"[red]Conversation not found:[/red] {conversation_id}")
            raise typer.Exit(1)
        console.print(f"Deleted conversation: {conversation_id}")

    asyncio.run(_run())


@conversations_app.command("export")
def conversations_export(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
    fmt: str = typer.Option("markdown", "--format", "-f", help="Export format: markdown, json"),
):
    """Export a conversation as markdown or json."""

    async def _run():
        from linchat.cli.output import OutputFormatter

        async with _open_store(_load()) as store:
            conv = await store.get_conversation(conversation_id)
        if conv is None:
            console.print(f"[red]Conversation not found:[/red] {conversation_id}")
            raise typer.Exit(1)
        console.print(
            OutputFormatter(console).export_conversation(conv, fmt),
            markup=False,
            highlight=False,
        )

    asyncio.run(_run())


@config_app.command("show")
def config_show(profile: Optional[str] = typer.Option(None, help="Config profile name")):
    """Show effective config."""
    from linchat.cli.output import OutputFormatter

    OutputFormatter(console).format_config(_load(profile).to_dict())


@config_app.command("validate")
def config_validate(profile: Optional[str] = typer.Option(None, help="Config profile name")):
    """Validate config and summarize the effective settings."""
    config_path = _get_config_path()
    cfg = _load(profile)
    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  Endpoint: {cfg.llm.api_base} (model: {cfg.llm.model or 'catalog default'})")
    if cfg.llm.api_key_env and not cfg.llm.api_key():
        console.print(f"  [yellow]Warning:[/yellow] ${cfg.llm.api_key_env} is not set")
    console.print(f"  Tools enabled: {', '.join(cfg.tools.enabled) or 'none'}")
    console.print(f"  History: {'incognito' if cfg.chat.incognito else cfg.store.history_db}")


@app.command()
def version():
    """Show version."""
    console.print(f"linchat v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
