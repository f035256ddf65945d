"""InteractionGate — turns ASK decisions into a final ALLOW or DENY.

Each ASK becomes a :class:`PendingApproval` with its own future and deadline.
Pending approvals are shown to the human one at a time in arrival order, but
each resolves on its own: a timeout, an out-of-band answer or a cancellation
never waits for the prompt in front of it.

"Approve for session" answers are remembered per agent, tool and matched
rule, so they only skip prompts raised by that same rule.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import UTC, datetime, timedelta

from toolgate.permissions.approval import (
    ANSWER_STATES,
    ApprovalCallback,
    ApprovalState,
    PendingApproval,
    coerce_answer,
    session_pattern_for,
)
from toolgate.permissions.patterns import Pattern, compile_pattern
from toolgate.permissions.rules import Decision, PermissionDecision
from toolgate.types.config import DEFAULT_APPROVAL_TIMEOUT
from toolgate.types.requests import ActionRequest

logger = logging.getLogger(__name__)


class InteractionGate:
    """Resolves ASK decisions by suspending for human confirmation.

    Args:
        callback: Presents pending approvals to the human. Without one,
            approvals can only be answered through :meth:`respond`.
        timeout: Seconds before a pending approval times out (denied).
        approved_ttl: Seconds an "approve once" answer is reused for the
            exact same agent, tool and target. 0 disables reuse.
    """

    def __init__(
        self,
        callback: ApprovalCallback | None = None,
        *,
        timeout: float = DEFAULT_APPROVAL_TIMEOUT,
        approved_ttl: float = 0.0,
    ) -> None:
        self._callback = callback
        self._timeout = timeout
        self._approved_ttl = approved_ttl
        self._pending: dict[str, PendingApproval] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._grants: dict[tuple[str, str, str], list[Pattern]] = {}
        self._recent: dict[tuple[str, str, str, str], float] = {}
        self._queue: asyncio.Queue[PendingApproval] | None = None
        self._presenter: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def pending(self) -> list[PendingApproval]:
        """Outstanding approvals in arrival order."""
        return list(self._pending.values())

    @property
    def grants(self) -> dict[tuple[str, str, str], list[str]]:
        """Session grants as ``(agent, tool, rule id) -> [pattern class, ...]``."""
        return {key: [p.glob for p in patterns] for key, patterns in self._grants.items()}

    # -- Public API --------------------------------------------------------

    async def resolve(
        self,
        decision: Decision,
        request: ActionRequest,
        *,
        timeout: float | None = None,
    ) -> PermissionDecision:
        """Return the final outcome for *decision*.

        ALLOW and DENY pass straight through.  ASK returns ALLOW only if a
        cached answer covers the request or the human approves.
        """
        if decision.outcome is not PermissionDecision.ASK:
            return decision.outcome
        if self.is_cached(request, decision.matched_rule_id):
            logger.debug("Cached approval covers %s %r", request.tool, request.target)
            return PermissionDecision.ALLOW

        pending = self.submit(decision, request, timeout=timeout)
        state = await self.wait(pending)
        return state.outcome

    def submit(
        self,
        decision: Decision,
        request: ActionRequest,
        *,
        timeout: float | None = None,
    ) -> PendingApproval:
        """Open a pending approval without waiting for it."""
        loop = asyncio.get_running_loop()
        timeout = self._timeout if timeout is None else timeout
        pending = PendingApproval(
            request=request,
            decision=decision,
            deadline=loop.time() + max(timeout, 0.0),
            expires_at=datetime.now(UTC) + timedelta(seconds=max(timeout, 0.0)),
            pattern_class=session_pattern_for(request),
        )

        if self._closed:
            pending.resolve(ApprovalState.CANCELLED)
            self._log_resolution(pending)
            return pending
        if timeout <= 0:
            pending.resolve(ApprovalState.TIMED_OUT)
            self._log_resolution(pending)
            return pending

        self._pending[pending.id] = pending
        self._timers[pending.id] = loop.call_at(pending.deadline, self._expire, pending)
        if self._callback is not None:
            self._ensure_presenter()
            assert self._queue is not None
            self._queue.put_nowait(pending)
        logger.debug("Approval %s pending: %s", pending.id, pending.description)
        return pending

    async def wait(self, pending: PendingApproval) -> ApprovalState:
        """Wait for *pending* to reach a terminal state.

        If the waiting task is cancelled, the approval is marked CANCELLED.
        """
        try:
            return await pending.wait()
        except asyncio.CancelledError:
            self._finish(pending, ApprovalState.CANCELLED)
            raise

    def respond(self, approval_id: str, state: ApprovalState) -> bool:
        """Answer a pending approval out-of-band. Returns False if unknown or resolved."""
        if state not in ANSWER_STATES:
            raise ValueError(f"{state.value} is not a valid answer")
        pending = self._pending.get(approval_id)
        if pending is None:
            return False
        return self._finish(pending, state)

    def cancel_all(self) -> int:
        """Cancel every outstanding approval (session ended). Returns the count."""
        count = 0
        for pending in list(self._pending.values()):
            if self._finish(pending, ApprovalState.CANCELLED):
                count += 1
        return count

    async def close(self) -> None:
        """Cancel outstanding approvals and stop presenting new ones."""
        self._closed = True
        self.cancel_all()
        if self._presenter is not None:
            self._presenter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._presenter
            self._presenter = None

    # -- Cached answers ----------------------------------------------------

    def grant(self, agent: str, tool: str, pattern: str, rule_id: str | None = None) -> None:
        """Approve *pattern* for the rest of the session.

        The grant only covers asks raised by rule *rule_id* for *agent* and
        *tool*; an ask from any other rule still prompts.
        """
        patterns = self._grants.setdefault((agent, tool, rule_id or ""), [])
        if all(p.glob != pattern for p in patterns):
            patterns.append(compile_pattern(pattern))

    def clear_grants(self) -> None:
        self._grants.clear()
        self._recent.clear()

    def is_cached(self, request: ActionRequest, rule_id: str | None = None) -> bool:
        """Whether a session grant or a recent approval for rule *rule_id* covers *request*."""
        rule_key = rule_id or ""
        for pattern in self._grants.get((request.agent, request.tool.name, rule_key), ()):
            if pattern.matches(request.target, command=request.tool.is_command):
                return True
        key = (request.agent, request.tool.name, rule_key, request.target)
        expiry = self._recent.get(key)
        if expiry is None:
            return False
        if asyncio.get_running_loop().time() < expiry:
            return True
        del self._recent[key]
        return False

    # -- Internals ---------------------------------------------------------

    def _finish(self, pending: PendingApproval, state: ApprovalState) -> bool:
        if not pending.resolve(state):
            return False
        self._pending.pop(pending.id, None)
        timer = self._timers.pop(pending.id, None)
        if timer is not None:
            timer.cancel()

        request = pending.request
        rule_id = pending.decision.matched_rule_id
        if state is ApprovalState.APPROVED_FOR_SESSION:
            self.grant(request.agent, request.tool.name, pending.pattern_class, rule_id)
        elif state is ApprovalState.APPROVED and self._approved_ttl > 0:
            key = (request.agent, request.tool.name, rule_id or "", request.target)
            self._recent[key] = asyncio.get_running_loop().time() + self._approved_ttl
        self._log_resolution(pending)
        return True

    def _expire(self, pending: PendingApproval) -> None:
        self._timers.pop(pending.id, None)
        self._finish(pending, ApprovalState.TIMED_OUT)

    def _log_resolution(self, pending: PendingApproval) -> None:
        logger.info(
            "Approval %s for %s %r (agent %s): %s",
            pending.id, pending.request.tool, pending.request.target,
            pending.request.agent, pending.state.value,
        )

    def _ensure_presenter(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._presenter is None or self._presenter.done():
            self._presenter = asyncio.get_running_loop().create_task(self._present())

    async def _present(self) -> None:
        """Show pending approvals to the human one at a time, FIFO."""
        assert self._queue is not None and self._callback is not None
        while True:
            pending = await self._queue.get()
            if pending.done:
                continue
            await self._present_one(pending)

    async def _present_one(self, pending: PendingApproval) -> None:
        assert self._callback is not None
        ask = asyncio.ensure_future(self._callback.request_approval(pending))
        waiter = asyncio.ensure_future(pending.wait())
        try:
            done, _ = await asyncio.wait({ask, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            ask.cancel()
            waiter.cancel()
            raise
        waiter.cancel()

        if ask not in done:
            # Resolved elsewhere (timeout, respond, cancel) while on screen
            ask.cancel()
            return
        if ask.cancelled():
            answer = ApprovalState.DENIED
        elif ask.exception() is not None:
            logger.warning(
                "Approval prompt for %s failed: %s", pending.id, ask.exception(),
            )
            answer = ApprovalState.DENIED
        else:
            answer = coerce_answer(ask.result())

        if asyncio.get_running_loop().time() >= pending.deadline:
            answer = ApprovalState.TIMED_OUT
        self._finish(pending, answer)
