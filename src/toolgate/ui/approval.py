"""Rich-formatted approval prompt for pending actions."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from toolgate.permissions.approval import (
    ApprovalState,
    LineReader,
    PendingApproval,
    parse_answer,
)


class RichApprovalCallback:
    """Rich-formatted interactive approval prompt."""

    def __init__(self, console: Console | None = None, reader: LineReader | None = None) -> None:
        self._console = console or Console(stderr=True)
        self._reader = reader or LineReader()

    async def request_approval(self, pending: PendingApproval) -> ApprovalState:
        """Show a styled approval prompt and wait for y/a/n."""
        request = pending.request
        title = Text(f" ◆ {request.tool} ", style="bold #fbbf24")
        body = Text()
        body.append(pending.description, style="#94a3b8")
        body.append(f"\nagent: {request.agent}", style="#7c7c8a")
        if pending.decision.matched_rule_id:
            body.append(f"  rule: {pending.decision.matched_rule_id}", style="#7c7c8a")

        self._console.print()
        self._console.print(Panel(
            body,
            title=title,
            border_style="#fbbf24",
            expand=False,
            padding=(0, 1),
        ))

        prompt_text = (
            "[bold #fbbf24]Allow?[/bold #fbbf24] "
            f"[#7c7c8a](y/n, a = always for {escape(pending.pattern_class)})[/#7c7c8a] › "
        )
        try:
            self._console.print(prompt_text, end="")
            answer = await self._reader.readline()
        except (EOFError, KeyboardInterrupt):
            self._console.print()
            return ApprovalState.DENIED
        return parse_answer(answer)
