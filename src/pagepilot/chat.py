"""Interactive console for talking to a session.

Runs the page server in the background so a browser tab can connect, and
prompts for approvals inline when the agent wants to do something
sensitive.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pagepilot.errors import ApprovalExpired, PagePilotError, SchemaError
from pagepilot.server.server import BackgroundServer
from pagepilot.session.models import ApprovalAction, ApprovalRequest, TurnOutcome

if TYPE_CHECKING:
    from pathlib import Path

    from pagepilot.runtime import Runtime
    from pagepilot.transport.local import AssistanceRequest

console = Console()

HELP = """\
[bold]/pages[/bold]    list connected pages
[bold]/history[/bold]  show the conversation
[bold]/new[/bold]      start a new session
[bold]/quit[/bold]     exit"""


def show_assistance(request: AssistanceRequest) -> None:
    console.print(
        Panel(
            request.message,
            title=f"Assistance needed: {request.kind}",
            border_style="yellow",
        )
    )


class ChatRepl:
    """Prompt loop over one session at a time."""

    def __init__(
        self,
        runtime: Runtime,
        server: BackgroundServer,
        history_file: Path | None = None,
    ) -> None:
        self.runtime = runtime
        self.server = server
        self.session_id: str | None = None
        history = FileHistory(str(history_file)) if history_file else None
        self.prompt: PromptSession[str] = PromptSession(
            history=history,
            auto_suggest=AutoSuggestFromHistory(),
        )

    async def _ask(self, message: str) -> str:
        return await self.prompt.prompt_async(message)

    async def run(self) -> None:
        await self.server.start()
        try:
            await self._new_session()
            console.print(f"[bold]PagePilot[/bold] - pages connect to {self.server.url}/pages/<id>")
            console.print(HELP + "\n")
            await self._loop()
        finally:
            await self.server.stop()

    async def _new_session(self) -> str:
        session = await self.runtime.sessions.create_session()
        self.session_id = session.session_id
        console.print(f"[dim]Session {session.session_id}[/dim]")
        return session.session_id

    async def _current_session(self) -> str:
        """The id of the session being chatted in, starting one if needed."""
        if self.session_id is None:
            return await self._new_session()
        return self.session_id

    async def _loop(self) -> None:
        while True:
            try:
                line = (await self._ask("you> ")).strip()
            except KeyboardInterrupt:
                continue
            except EOFError:
                return

            if not line:
                continue
            if line == "/quit":
                return
            if line.startswith("/"):
                await self._command(line)
                continue

            session_id = await self._current_session()
            try:
                outcome = await self.runtime.sessions.submit_user_message(session_id, line)
                await self._follow(outcome)
            except PagePilotError as e:
                console.print(f"[red]{e}[/red]")

    async def _command(self, line: str) -> None:
        if line == "/pages":
            table = Table("id", "title", "url", "active")
            for page in self.runtime.contexts.list_contexts():
                table.add_row(page["id"], page["title"] or "", page["url"] or "", "*" if page["active"] else "")
            console.print(table)
        elif line == "/history":
            session = await self.runtime.sessions.get_session(await self._current_session())
            for message in session.conversation:
                console.print(f"[bold]{message.role.value}[/bold]: {message.content}")
                for call in message.tool_calls:
                    console.print(f"  [cyan]-> {call.name}({json.dumps(call.arguments)})[/cyan]")
        elif line == "/new":
            await self._new_session()
        else:
            console.print(HELP)

    async def _follow(self, outcome: TurnOutcome) -> None:
        """Print the turn result, prompting for approvals until it finishes."""
        while outcome.approval is not None:
            outcome = await self._approve(outcome.approval)
        console.print(f"[green]pilot>[/green] {outcome.content or ''}")

    async def _approve(self, request: ApprovalRequest) -> TurnOutcome:
        session_id = request.session_id
        call = request.tool_call
        console.print(
            Panel(
                json.dumps(request.arguments, indent=2),
                title=f"Approve {call.name}?",
                border_style="magenta",
            )
        )
        while True:
            answer = (await self._ask("[a]pprove / [r]eject / [e]dit > ")).strip().lower()
            try:
                if answer in ("a", "approve"):
                    return await self.runtime.sessions.resolve_approval(
                        session_id, ApprovalAction.APPROVE
                    )
                if answer in ("r", "reject"):
                    return await self.runtime.sessions.resolve_approval(
                        session_id, ApprovalAction.REJECT
                    )
                if answer in ("e", "edit"):
                    raw = await self._ask("arguments (JSON)> ")
                    edited = json.loads(raw)
                    return await self.runtime.sessions.resolve_approval(
                        session_id, ApprovalAction.EDIT, edited
                    )
            except json.JSONDecodeError as e:
                console.print(f"[red]Not valid JSON: {e}[/red]")
            except SchemaError as e:
                console.print(f"[red]{e}[/red]")
            except ApprovalExpired as e:
                console.print(f"[red]{e}. Only reject is possible now.[/red]")

