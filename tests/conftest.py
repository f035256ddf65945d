"""Shared fixtures: request/rule builders and a scripted approval callback."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import pytest

from toolgate.permissions.approval import ApprovalState, PendingApproval
from toolgate.permissions.rules import PermissionDecision, Rule, Scope
from toolgate.types.requests import ActionRequest, FileMeta, ToolCategory

# A fixed Monday afternoon so time-window tests are deterministic
NOON = datetime(2026, 3, 2, 12, 0)


class ScriptedCallback:
    """Approval callback that answers from a script and records what it saw.

    Each answer may be an ApprovalState, a bool, an exception instance to
    raise, or ``None`` to block until cancelled.
    """

    def __init__(self, answers: list[Any] | None = None, delay: float = 0.0) -> None:
        self._answers = list(answers or [])
        self._delay = delay
        self.seen: list[PendingApproval] = []

    async def request_approval(self, pending: PendingApproval) -> ApprovalState | bool:
        self.seen.append(pending)
        answer = self._answers.pop(0) if self._answers else ApprovalState.DENIED
        if self._delay:
            await asyncio.sleep(self._delay)
        if answer is None:
            await asyncio.Event().wait()
        if isinstance(answer, BaseException):
            raise answer
        return answer


@pytest.fixture
def make_request() -> Callable[..., ActionRequest]:
    """Factory for ActionRequests with deterministic defaults."""

    def _make(
        tool: str = "Bash",
        target: str = "ls",
        *,
        agent: str = "default",
        environment: str = "dev",
        user_id: str = "alice",
        timestamp: datetime = NOON,
        file_meta: FileMeta | None = None,
    ) -> ActionRequest:
        return ActionRequest(
            tool=ToolCategory.parse(tool),
            target=target,
            agent=agent,
            environment=environment,
            user_id=user_id,
            timestamp=timestamp,
            file_meta=file_meta,
        )

    return _make


@pytest.fixture
def make_rule() -> Callable[..., Rule]:
    """Factory for Rules: ``make_rule("allow", "git *", tool="Bash")``."""
    counter = iter(range(1000))

    def _make(
        action: str | PermissionDecision,
        *patterns: str,
        tool: str = "*",
        scope: Scope = Scope.GLOBAL,
        **kwargs: Any,
    ) -> Rule:
        return Rule(
            action=action,  # type: ignore[arg-type]
            patterns=patterns,  # type: ignore[arg-type]
            tool=tool,
            scope=scope,
            declaration_order=kwargs.pop("declaration_order", next(counter)),
            **kwargs,
        )

    return _make


@pytest.fixture
def scripted_callback() -> type[ScriptedCallback]:
    """The ScriptedCallback class, for tests that build their own script."""
    return ScriptedCallback
