"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console, Group, RenderableType
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from linchat.conversation.messages import AssistantMessage, Message
from linchat.llm.catalog import ModelInfo
from linchat.llm.types import ContentPart, ImagePart, Part, ReasoningPart, ToolGroupPart
from linchat.tools.base import Tool


def _reasoning_label(model: ModelInfo) -> str:
    if isinstance(model.reasoning, str):
        return f"via {model.reasoning}"
    if model.has_toggleable_reasoning:
        return "toggle"
    return "yes" if model.reasoning else ""


def _truncate(value: Any, limit: int = 200) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= limit else text[:limit] + "..."


class OutputFormatter:
    """Rich-based output formatting for the linchat CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Message parts
    # ------------------------------------------------------------------

    def render_parts(self, parts: list[Part]) -> RenderableType:
        """One renderable per part, in order."""
        items: list[RenderableType] = []
        for part in parts:
            if isinstance(part, ReasoningPart):
                if part.text.strip():
                    items.append(Panel(Text(part.text, style="dim italic"), title="thinking", border_style="dim"))
            elif isinstance(part, ContentPart):
                items.append(Markdown(part.text))
            elif isinstance(part, ToolGroupPart):
                items.append(self._tool_group(part))
            elif isinstance(part, ImagePart):
                for img in part.images:
                    label = img.url if not img.url.startswith("data:") else "<inline image>"
                    line = Text(f"[image] {label}", style="magenta")
                    if img.revised_prompt:
                        line.append(f"\n  {img.revised_prompt}", style="dim")
                    items.append(line)
        return Group(*items)

    def _tool_group(self, part: ToolGroupPart) -> Table:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column(no_wrap=True)
        table.add_column()
        for tool in part.tools:
            status = Text("done", style="green") if tool.has_result else Text("running", style="yellow")
            detail = f"[cyan]{tool.name or '?'}[/cyan]({_truncate(tool.arguments_text, 80)})"
            if tool.has_result:
                detail += f"\n  -> {_truncate(tool.result)}"
            table.add_row(status, detail)
        return table

    def format_message_footer(self, msg: AssistantMessage) -> None:
        bits: list[str] = []
        if msg.first_token_time and msg.api_call_time:
            ttft = (msg.first_token_time - msg.api_call_time).total_seconds()
            bits.append(f"first token {ttft:.2f}s")
        if msg.reasoning_duration_ms is not None:
            bits.append(f"thought {msg.reasoning_duration_ms / 1000:.1f}s")
        if msg.total_tokens:
            bits.append(f"{msg.prompt_tokens}+{msg.token_count} tokens")
        if bits:
            self.console.print(f"[dim]{' | '.join(bits)}[/dim]")

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def format_model_list(self, models: list[ModelInfo], active: str | None = None) -> None:
        table = Table(title="Models", show_lines=False)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name")
        table.add_column("Category", style="dim")
        table.add_column("Reasoning", no_wrap=True)
        table.add_column("Vision", no_wrap=True)
        table.add_column("Tools", no_wrap=True)

        for m in models:
            marker = "* " if m.id == active else ""
            table.add_row(
                marker + m.id,
                m.name,
                m.category,
                _reasoning_label(m),
                "yes" if m.vision else "",
                "yes" if m.tool_use else "no",
            )
        self.console.print(table)

    def format_tool_list(self, tools: list[Tool], enabled: list[str] | None = None) -> None:
        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Enabled", no_wrap=True)
        table.add_column("Description")

        enabled_set = set(enabled or [])
        for t in tools:
            on = Text("yes", style="green") if t.name in enabled_set else Text("no", style="dim")
            table.add_row(t.name, on, t.description)
        self.console.print(table)

    def format_conversation_list(self, conversations: list[dict]) -> None:
        if not conversations:
            self.console.print("[dim]No conversations found.[/dim]")
            return

        table = Table(title="Conversations")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Title")
        table.add_column("Model", style="dim")
        table.add_column("Messages", justify="right")
        table.add_column("Updated", no_wrap=True)

        for c in conversations:
            table.add_row(
                c["id"],
                c["title"],
                c.get("model") or "",
                str(c.get("message_count", "")),
                c["updated_at"][:19],
            )
        self.console.print(table)

    def format_conversation(self, conv: dict) -> None:
        self.console.print(Panel(f"[bold]{conv['title']}[/bold]\n[dim]{conv['id']}[/dim]"))
        for msg in conv["messages"]:
            if msg.role == "user":
                self.console.print(f"[bold blue]you>[/bold blue] {msg.content}")
                for a in msg.attachments:
                    self.console.print(f"  [dim]attached {a.type}: {a.filename}[/dim]")
            else:
                self.console.print(f"[bold green]{msg.model or 'assistant'}>[/bold green]")
                if msg.parts:
                    self.console.print(self.render_parts(msg.parts))
                else:
                    self.console.print(Markdown(msg.content))
            self.console.print()

    def format_config(self, config: dict) -> None:
        self.console.print(Syntax(json.dumps(config, indent=2, default=str), "json", theme="monokai"))

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_conversation(self, conv: dict, fmt: str = "markdown") -> str:
        messages: list[Message] = conv["messages"]
        if fmt == "json":
            return json.dumps(
                {
                    "id": conv["id"],
                    "title": conv["title"],
                    "model": conv.get("model"),
                    "messages": [m.to_dict() for m in messages],
                },
                indent=2,
                default=str,
            )

        lines: list[str] = [f"# {conv['title']}\n"]
        for msg in messages:
            if msg.role == "user":
                lines.append("## User\n")
                lines.append(f"{msg.content}\n")
                continue
            lines.append(f"## Assistant ({msg.model or 'unknown'})\n")
            for part in msg.parts:
                if isinstance(part, ReasoningPart) and part.text.strip():
                    quoted = "\n".join(f"> {line}" for line in part.text.splitlines())
                    lines.append(f"{quoted}\n")
                elif isinstance(part, ContentPart):
                    lines.append(f"{part.text}\n")
                elif isinstance(part, ToolGroupPart):
                    for tool in part.tools:
                        lines.append(f"### Tool: {tool.name}\n")
                        lines.append(f"```json\n{tool.arguments_text or '{}'}\n```\n")
                        if tool.has_result:
                            lines.append(f"```\n{_truncate(tool.result, 500)}\n```\n")
                elif isinstance(part, ImagePart):
                    for img in part.images:
                        lines.append(f"![{img.revised_prompt or 'image'}]({img.url})\n")
            if not msg.parts and msg.content:
                lines.append(f"{msg.content}\n")
        return "\n".join(lines)
