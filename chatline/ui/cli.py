"""Rich CLI interface for Chatline.

Features:
- Streaming token output into a live markdown panel
- Slash commands (/help, /history, /tokens, /clear, /quit)
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing

from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from chatline.config import ChatlineConfig, get_chatline_home
from chatline.core.engine import ChatEngine
from chatline.core.errors import ProviderError, ValidationError
from chatline.core.session.store import mint_conversation_id
from chatline.core.types import Role, TurnStatus

console = Console()

HELP_TEXT = """
**Slash Commands:**
- `/help` - Show this help message
- `/history` - Show conversation history
- `/tokens` - Show the outbound context size for the next request
- `/clear` - Start a new conversation
- `/quit` or `/exit` - Exit Chatline
"""

_ROLE_COLORS = {
    Role.USER: "green",
    Role.ASSISTANT: "blue",
}


class CLI:
    """Interactive CLI for Chatline."""

    def __init__(self, engine: ChatEngine, config: ChatlineConfig) -> None:
        self.engine = engine
        self.config = config
        self.conversation_id = mint_conversation_id()

        # Setup prompt history
        history_dir = get_chatline_home() / "history"
        history_dir.mkdir(parents=True, exist_ok=True)
        self.prompt_session: PromptSession[str] = PromptSession(
            history=FileHistory(str(history_dir / "cli_input.txt")),
        )

    async def run(self) -> None:
        """Main CLI loop."""
        self._print_banner()

        with patch_stdout():
            while True:
                try:
                    user_input = await asyncio.get_event_loop().run_in_executor(
                        None,
                        lambda: self.prompt_session.prompt("\n> "),
                    )
                except (EOFError, KeyboardInterrupt):
                    console.print("\n[dim]Goodbye![/dim]")
                    break

                user_input = user_input.strip()
                if not user_input:
                    continue

                if user_input.startswith("/"):
                    should_continue = await self._handle_command(user_input)
                    if not should_continue:
                        break
                    continue

                await self._process_message(user_input)

    async def _process_message(self, user_text: str) -> None:
        """Stream the reply for one message into a live panel."""
        try:
            reply = await self.engine.stream_message(user_text, self.conversation_id)
        except ValidationError as e:
            console.print(f"[yellow]{e.detail}[/yellow]")
            return

        console.print()
        try:
            with Live(console=console, refresh_per_second=12) as live:
                async with aclosing(reply.__aiter__()) as fragments:
                    async for _ in fragments:
                        live.update(self._reply_panel(reply.content))
        except ProviderError as e:
            console.print(f"\n[red]Error: {e}[/red]")
            console.print("[dim]The failed reply was kept in history; send your message again to retry.[/dim]")
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted[/yellow]")

    def _reply_panel(self, content: str) -> Panel:
        return Panel(
            Markdown(content),
            title="[bold blue]Assistant[/bold blue]",
            border_style="blue",
            padding=(1, 2),
        )

    async def _handle_command(self, command: str) -> bool:
        """Handle a slash command. Returns False if should exit."""
        cmd = command.split(maxsplit=1)[0].lower()

        if cmd in ("/quit", "/exit", "/q"):
            console.print("[dim]Goodbye![/dim]")
            return False

        elif cmd == "/help":
            console.print(Markdown(HELP_TEXT))

        elif cmd == "/history":
            session = await self.engine.store.get(self.conversation_id)
            turns = session.visible_turns() if session else []
            if not turns:
                console.print("[dim]No conversation history[/dim]")
            for turn in turns:
                color = _ROLE_COLORS.get(turn.role, "white")
                marker = "" if turn.status == TurnStatus.COMPLETE else f" [dim]({turn.status.value})[/dim]"
                preview = turn.content[:200] if turn.content else "(empty)"
                console.print(f"[{color}]{turn.role.value}:[/{color}]{marker} {preview}")

        elif cmd == "/tokens":
            session = await self.engine.store.get(self.conversation_id)
            if session is None:
                console.print("[dim]No conversation yet[/dim]")
            else:
                context = self.engine.outbound_context(session)
                console.print(
                    f"[blue]{len(context)}/{len(session.history)} turns, "
                    f"~{self.engine.trimmer.total_tokens(context)} tokens "
                    f"(budget {self.engine.trimmer.max_tokens})[/blue]"
                )

        elif cmd == "/clear":
            await self.engine.clear_conversation(self.conversation_id)
            self.conversation_id = mint_conversation_id()
            console.print("[green]Conversation cleared[/green]")

        else:
            console.print(f"[red]Unknown command: {cmd}[/red]")
            console.print("[dim]Type /help for available commands[/dim]")

        return True

    def _print_banner(self) -> None:
        """Print the startup banner."""
        console.print(
            Panel(
                Text.from_markup(
                    "[bold cyan]Chatline[/bold cyan]\n"
                    f"  [dim]Model:[/dim] [bold]{self.config.models.default}[/bold]\n"
                    "  [dim]Type /help for commands, /quit to exit[/dim]"
                ),
                border_style="cyan",
            )
        )
