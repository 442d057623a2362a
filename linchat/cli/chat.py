"""Interactive chat session handler."""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import signal as signals
from pathlib import Path

from rich.console import Console
from rich.live import Live

from linchat.cli.output import OutputFormatter
from linchat.conversation.manager import ConversationManager
from linchat.conversation.messages import AssistantMessage, Attachment
from linchat.llm.client import CompletionClient
from linchat.llm.types import AbortSignal, Part

logger = logging.getLogger(__name__)


def load_attachment(path: str | Path) -> Attachment:
    """Read an image or PDF from disk into a data-URL attachment."""
    p = Path(path).expanduser()
    mime, _ = mimetypes.guess_type(p.name)
    mime = mime or "application/octet-stream"
    if mime == "application/pdf":
        kind = "pdf"
    elif mime.startswith("image/"):
        kind = "image"
    else:
        raise ValueError(f"Unsupported attachment type: {mime}")
    encoded = base64.b64encode(p.read_bytes()).decode("ascii")
    return Attachment(
        type=kind,
        filename=p.name,
        data_url=f"data:{mime};base64,{encoded}",
        mime_type=mime,
    )


class ChatHandler:
    """
    Manages the interactive chat loop.

    Handles live rendering of the streamed parts, inline commands and
    Ctrl-C cancellation of the running turn.
    """

    def __init__(
        self,
        manager: ConversationManager,
        client: CompletionClient | None = None,
        console: Console | None = None,
    ) -> None:
        self.manager = manager
        self.client = client
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self.pending_attachments: list[Attachment] = []
        self._running = True

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        parts = command.strip().split(None, 1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""
        catalog = self.manager.orchestrator.catalog

        if cmd == "/quit":
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/new":
            self.manager.new_conversation()
            self.pending_attachments.clear()
            self.console.print("  Started a new conversation.")
            return True

        if cmd == "/models":
            self.formatter.format_model_list(catalog.all(), active=self.manager.model_id)
            return True

        if cmd == "/model":
            if not arg:
                self.console.print(f"  Active model: [bold]{self.manager.model_id}[/bold]")
            elif catalog.find(arg) is None:
                self.console.print(f"  [red]Unknown model:[/red] {arg}")
            else:
                self.manager.select_model(arg)
                self.console.print(f"  Switched to model: [bold]{arg}[/bold]")
            return True

        if cmd == "/effort":
            if not arg:
                current = self.manager.reasoning_efforts.get(self.manager.model_id, "default")
                self.console.print(f"  Reasoning effort: {current}")
            else:
                self.manager.select_model(self.manager.model_id, reasoning_effort=arg)
                self.console.print(f"  Reasoning effort set to [bold]{arg}[/bold]")
            return True

        if cmd == "/tools":
            self.formatter.format_tool_list(
                self.manager.orchestrator.registry.list(),
                enabled=self.manager.config.tools.enabled,
            )
            return True

        if cmd == "/attach":
            if not arg:
                self.console.print("  Usage: /attach PATH")
                return True
            try:
                attachment = load_attachment(arg)
            except (OSError, ValueError) as e:
                self.console.print(f"  [red]Error:[/red] {e}")
                return True
            self.pending_attachments.append(attachment)
            self.console.print(f"  Attached {attachment.type}: {attachment.filename}")
            return True

        if cmd == "/incognito":
            self.manager.incognito = not self.manager.incognito
            state = "on" if self.manager.incognito else "off"
            self.console.print(f"  Incognito mode {state}.")
            return True

        if cmd == "/title":
            if self.client is None:
                self.console.print(f"  Title: {self.manager.title}")
            else:
                title = await self.manager.retitle(self.client)
                self.console.print(f"  Title: [bold]{title}[/bold]")
            return True

        if cmd == "/help":
            self.console.print(
                "  [bold]Commands:[/bold]\n"
                "  /quit          - Exit the chat\n"
                "  /new           - Start a new conversation\n"
                "  /models        - List available models\n"
                "  /model ID      - Switch model\n"
                "  /effort LEVEL  - Set the reasoning effort of the current model\n"
                "  /tools         - List available tools\n"
                "  /attach PATH   - Attach an image or PDF to the next message\n"
                "  /incognito     - Toggle saving of this conversation\n"
                "  /title         - Generate a title for this conversation\n"
                "  /help          - Show this help\n"
                "  [dim]Ctrl-C while a response streams cancels it.[/dim]\n"
            )
            return True

        return False

    async def handle_input(self, user_input: str) -> AssistantMessage:
        """Send one message and render the assistant's parts live."""
        abort = AbortSignal()
        loop = asyncio.get_running_loop()
        installed = False
        try:
            loop.add_signal_handler(signals.SIGINT, abort.abort)
            installed = True
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler unavailable; Ctrl-C will not cancel the turn")

        attachments, self.pending_attachments = self.pending_attachments, []
        try:
            with Live(console=self.console, refresh_per_second=12, transient=False) as live:

                def on_update(_msg: AssistantMessage, snapshot: list[Part]) -> None:
                    live.update(self.formatter.render_parts(snapshot))

                message = await self.manager.send_message(
                    user_input, attachments, signal=abort, on_update=on_update
                )
                live.update(self.formatter.render_parts(message.parts))
        finally:
            if installed:
                loop.remove_signal_handler(signals.SIGINT)

        self.formatter.format_message_footer(message)
        if (
            self.client is not None
            and self.manager.config.chat.generate_titles
            and len(self.manager.messages) == 2
        ):
            await self.manager.retitle(self.client)
        return message

    async def run_loop(self) -> None:
        """Main interactive loop."""
        self.console.print(
            f"[bold]linchat[/bold] - {self.manager.model_id or 'no model selected'}\n"
            "[dim]Type /help for commands, /quit to exit.[/dim]\n"
        )

        while self._running:
            try:
                user_input = await asyncio.get_running_loop().run_in_executor(
                    None, lambda: input("you> ").strip()
                )
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                handled = await self.handle_command(user_input)
                if handled:
                    continue

            await self.handle_input(user_input)
