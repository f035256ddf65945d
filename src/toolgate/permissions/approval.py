"""Pending approvals and callbacks for interactive permission prompts."""

from __future__ import annotations

import asyncio
import posixpath
import shlex
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from toolgate.permissions.rules import Decision, PermissionDecision
from toolgate.types.requests import ActionRequest


class ApprovalState(Enum):
    """Lifecycle of a pending approval. Everything but PENDING is terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    APPROVED_FOR_SESSION = "approved_for_session"
    DENIED = "denied"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self is not ApprovalState.PENDING

    @property
    def outcome(self) -> PermissionDecision:
        """Final outcome for the caller; timeouts and cancellations deny."""
        if self in (ApprovalState.APPROVED, ApprovalState.APPROVED_FOR_SESSION):
            return PermissionDecision.ALLOW
        return PermissionDecision.DENY


# States a human (or an out-of-band responder) may pick
ANSWER_STATES = frozenset({
    ApprovalState.APPROVED,
    ApprovalState.APPROVED_FOR_SESSION,
    ApprovalState.DENIED,
})


@dataclass(eq=False)
class PendingApproval:
    """An Ask decision waiting for a human answer.

    Each pending approval carries its own future, so waiting on one never
    blocks any other.  ``deadline`` is in event-loop time; ``expires_at`` is
    the same instant on the wall clock.
    """

    request: ActionRequest
    decision: Decision
    deadline: float
    expires_at: datetime
    pattern_class: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    state: ApprovalState = ApprovalState.PENDING
    _future: asyncio.Future[ApprovalState] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self.state.terminal

    @property
    def description(self) -> str:
        return describe_request(self.request)

    def resolve(self, state: ApprovalState) -> bool:
        """Move to terminal *state*. Returns False if already resolved."""
        if not state.terminal:
            raise ValueError("Cannot resolve an approval back to PENDING")
        if self.state.terminal:
            return False
        self.state = state
        assert self._future is not None
        if not self._future.done():
            self._future.set_result(state)
        return True

    async def wait(self) -> ApprovalState:
        """Wait for a terminal state without cancelling the shared future."""
        assert self._future is not None
        return await asyncio.shield(self._future)


@runtime_checkable
class ApprovalCallback(Protocol):
    """Protocol for asking a human to answer a pending approval."""

    async def request_approval(self, pending: PendingApproval) -> ApprovalState | bool:
        """Ask the user whether to allow the pending action.

        Returns APPROVED, APPROVED_FOR_SESSION or DENIED (True/False are
        accepted as APPROVED/DENIED).
        """
        ...


def coerce_answer(answer: ApprovalState | bool | None) -> ApprovalState:
    """Normalize a callback answer; anything unexpected denies."""
    if answer is True:
        return ApprovalState.APPROVED
    if isinstance(answer, ApprovalState) and answer in ANSWER_STATES:
        return answer
    return ApprovalState.DENIED


def parse_answer(text: str) -> ApprovalState:
    """Map a typed reply (y/a/n) to an approval state."""
    answer = text.strip().lower()
    if answer in ("y", "yes"):
        return ApprovalState.APPROVED
    if answer in ("a", "always", "s", "session"):
        return ApprovalState.APPROVED_FOR_SESSION
    return ApprovalState.DENIED


def session_pattern_for(request: ActionRequest) -> str:
    """Generalize a request target into the pattern class a session grant covers.

    ``npm run dev`` becomes ``npm run *``; ``src/app.py`` becomes ``src/*``.
    Single-word commands, bare file names and custom tools stay literal.
    """
    target = request.target
    if request.tool.is_command:
        try:
            words = shlex.split(target)
        except ValueError:
            words = target.split()
        keep = min(2, len(words) - 1)
        if keep <= 0:
            return target
        return " ".join(words[:keep]) + " *"
    if request.tool.is_custom:
        return target
    parent = posixpath.dirname(target)
    if not parent:
        return target
    return f"{parent}/*"


def describe_request(request: ActionRequest) -> str:
    """Build a human-readable one-line description of an action request."""
    tool, target = request.tool.name, request.target
    if tool == "Bash":
        return f"Run command: {target}"
    if tool == "Read":
        return f"Read {target}"
    if tool == "Edit":
        if request.file_meta is not None:
            return f"Edit {target} ({request.file_meta.size} bytes)"
        return f"Edit {target}"
    # MCP tools
    if tool.startswith("mcp__"):
        parts = tool.split("__", 2)
        short = parts[-1] if len(parts) > 1 else tool
        return f"MCP tool: {short} {target}".rstrip()
    if len(target) > 80:
        target = target[:77] + "..."
    return f"{tool}({target})"


class LineReader:
    """Reads stdin lines in a worker thread, one ``input()`` at a time.

    A blocked ``input()`` cannot be interrupted.  When the caller waiting on
    it gives up (its approval timed out or was cancelled), the read stays in
    flight and the next :meth:`readline` picks up its line instead of
    starting a second read that would race it for stdin.
    """

    def __init__(self) -> None:
        self._read: asyncio.Future[str] | None = None

    async def readline(self, prompt: str = "") -> str:
        if self._read is None:
            loop = asyncio.get_running_loop()
            self._read = loop.run_in_executor(None, lambda: input(prompt))
        elif prompt:
            print(prompt, end="", flush=True)
        read = self._read
        try:
            return await asyncio.shield(read)
        finally:
            if read.done():
                self._read = None


class StdinApprovalCallback:
    """Plain-text approval prompt using stdin/stdout."""

    def __init__(self, reader: LineReader | None = None) -> None:
        self._reader = reader or LineReader()

    async def request_approval(self, pending: PendingApproval) -> ApprovalState:
        """Prompt the user with a y/a/n question."""
        prompt = (
            f"\n[{pending.request.agent}] {pending.description}\n"
            f"Allow? [y]es / [a]lways ({pending.pattern_class}) / [n]o > "
        )
        try:
            answer = await self._reader.readline(prompt)
        except (EOFError, KeyboardInterrupt):
            return ApprovalState.DENIED
        return parse_answer(answer)
