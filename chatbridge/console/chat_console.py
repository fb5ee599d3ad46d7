"""
Terminal front end for a chat session.

Prints the transcript with rich, reads input on a daemon thread so the event
loop stays free while a request is in flight, and maps slash commands onto
the session:

    /provider NAME   switch provider (gemini | openai, or its label)
    /providers       list configured providers
    /export [DIR]    write the history to chat_history.txt
    /history         reprint the conversation
    /help            show commands
    /quit            leave

Ctrl-C while waiting for a reply cancels the request.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading

from rich.console import Console
from rich.text import Text

from chatbridge.agents.base import PROVIDER_LABELS
from chatbridge.chat.export import export_history
from chatbridge.chat.message import Role, ValidationError
from chatbridge.chat.session import ChatSession, Exchange

logger = logging.getLogger(__name__)

_HELP = (
    "/provider NAME  switch provider (gemini | openai)\n"
    "/providers      list configured providers\n"
    "/export [DIR]   export history to chat_history.txt\n"
    "/history        reprint the conversation\n"
    "/help           show this help\n"
    "/quit           leave"
)


class ChatConsole:
    """
    Interactive chat loop on top of :class:`ChatSession`.

    Usage::

        console = ChatConsole(session)
        await console.run()
    """

    def __init__(
        self,
        session: ChatSession,
        export_dir: str = ".",
        console: Console | None = None,
    ) -> None:
        self.session = session
        self.export_dir = export_dir
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_user(self, text: str) -> None:
        self.console.print(Text.assemble(("User: ", "bold green"), text))

    def render_exchange(self, exchange: Exchange) -> None:
        if exchange.ok:
            self.console.print(
                Text.assemble((f"{exchange.provider}: ", "bold magenta"), exchange.reply.content)
            )
        elif exchange.cancelled:
            self.console.print(Text("Request cancelled.", style="dim"))
        else:
            self.console.print(Text.assemble(("Error: ", "bold red"), str(exchange.error)))

    def render_history(self) -> None:
        history = self.session.history
        if not history:
            self.console.print(Text("No messages yet.", style="dim"))
            return
        for turn in history:
            if turn.role is Role.USER:
                self.render_user(turn.content)
            else:
                self.console.print(Text.assemble((f"[{turn.role.value}] ", "dim"), turn.content))

    def _notify(self, message: str, style: str = "yellow") -> None:
        self.console.print(Text(message, style=style))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def handle_command(self, line: str) -> bool:
        """Run one slash command.  Returns False when the loop should stop."""
        command, _, arg = line.strip().partition(" ")
        command = command.lower()
        arg = arg.strip()

        if command in ("/quit", "/exit"):
            return False
        if command == "/help":
            self.console.print(_HELP)
        elif command == "/providers":
            available = self.session.registry.available
            for kind, label in PROVIDER_LABELS.items():
                marker = "*" if kind is self.session.active_kind else " "
                status = "ready" if kind in available else "missing credentials"
                self.console.print(f"{marker} {label} ({kind.value}): {status}")
        elif command == "/provider":
            if not arg:
                self._notify("Usage: /provider gemini|openai")
            elif self.session.switch_provider(arg):
                self._notify(f"Current LLM: {self.session.active_label}", style="cyan")
            else:
                self._notify(f"{arg} unavailable (credentials missing or unknown name).")
        elif command == "/export":
            self._export(arg or self.export_dir)
        elif command == "/history":
            self.render_history()
        else:
            self._notify(f"Unknown command {command}. Type /help.")
        return True

    def _export(self, directory: str) -> None:
        try:
            path = export_history(self.session.history, directory)
        except OSError as exc:
            logger.error("Failed to export: %s", exc)
            self._notify("Failed to export", style="red")
            return
        if path is None:
            self._notify("No chat history to export.")
        else:
            self._notify(f"Chat history successfully exported to {path}", style="cyan")

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, text: str) -> Exchange | None:
        """Send one message and render the outcome."""
        try:
            task = self.session.send_user_text(text)
        except ValidationError:
            return None
        if task is None:
            if self.session.active_provider is None:
                self._notify("No provider available.")
            else:
                self._notify("Still waiting for the previous reply.")
            return None

        self.render_user(text.strip())
        exchange = await self._await_reply(task)
        self.render_exchange(exchange)
        return exchange

    async def _await_reply(self, task: asyncio.Task) -> Exchange:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.session.cancel)
            handler_installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            # No signal handlers on Windows loops or off the main thread.
            handler_installed = False
        try:
            with self.console.status("Typing…"):
                return await task
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)

    async def _read_line(self, prompt: str) -> str:
        """Read one line on a daemon thread.

        A read still blocked on stdin at shutdown does not keep the process
        alive the way a default-executor thread would.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def _settle(line: str | None, error: Exception | None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(line)

        def _worker() -> None:
            try:
                line, error = self.console.input(prompt), None
            except Exception as exc:
                line, error = None, exc
            try:
                loop.call_soon_threadsafe(_settle, line, error)
            except RuntimeError:
                logger.debug("Input arrived after the event loop closed")

        threading.Thread(target=_worker, name="chat-input", daemon=True).start()
        return await future

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Read-eval-print until /quit or end of input."""
        if self.session.active_provider is None:
            self._notify(
                "No LLM provider configured. Set OPENAI_KEY or GEMINI_KEY in .env",
                style="bold red",
            )
        else:
            self._notify(f"Current LLM: {self.session.active_label}. Type /help for commands.",
                         style="cyan")

        while True:
            try:
                line = await self._read_line("[bold cyan]> [/bold cyan]")
            except EOFError:
                break
            if not line.strip():
                continue
            if line.lstrip().startswith("/"):
                if not self.handle_command(line):
                    break
                continue
            await self.send(line)
