"""Permission session — the caller-side decision pipeline.

A session owns one RuleStore, one DecisionEngine and one InteractionGate.
``authorize`` returns only terminal outcomes; ``run`` refuses to start the
gated action unless that outcome is ALLOW.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, TypeVar

from toolgate.permissions.approval import ApprovalCallback
from toolgate.permissions.engine import DecisionEngine
from toolgate.permissions.gate import InteractionGate
from toolgate.permissions.policy import agent_overrides_from
from toolgate.permissions.rules import Decision, PermissionDecision
from toolgate.permissions.store import RuleSet, RuleStore, ScopeSource
from toolgate.types.agents import AgentDef
from toolgate.types.config import GateConfig
from toolgate.types.requests import ActionRequest, FileMeta, ToolCategory

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PermissionDenied(Exception):
    """Raised by :meth:`PermissionSession.run` when an action is not allowed."""

    def __init__(self, request: ActionRequest, decision: Decision) -> None:
        super().__init__(f"{request.tool} {request.target!r} denied: {decision.reason}")
        self.request = request
        self.decision = decision


def new_session_id() -> str:
    """Generate a new session ID."""
    return uuid.uuid4().hex[:12]


class PermissionSession:
    """Evaluates and gates every action of one agent session."""

    def __init__(
        self,
        store: RuleStore | None = None,
        gate: InteractionGate | None = None,
        *,
        config: GateConfig | None = None,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or new_session_id()
        self._config = config or GateConfig()
        self._engine = DecisionEngine(store)
        self._gate = gate or InteractionGate(timeout=self._config.approval_timeout)

    @classmethod
    def from_config(
        cls,
        config: GateConfig,
        *,
        session_rules: ScopeSource = None,
        agents: Iterable[AgentDef] = (),
        callback: ApprovalCallback | None = None,
        session_id: str | None = None,
    ) -> PermissionSession:
        """Build a session from the configured policy files.

        Raises ``ConfigError`` if any scope was rejected; the session is
        then not created.
        """
        store = RuleStore()
        store.load(
            global_rules=config.global_policy,
            project_rules=config.project_policy,
            session_rules=session_rules,
            agent_overrides=agent_overrides_from(agents),
        )
        gate = InteractionGate(callback, timeout=config.approval_timeout)
        return cls(store, gate, config=config, session_id=session_id)

    @property
    def store(self) -> RuleStore:
        return self._engine.store

    @property
    def engine(self) -> DecisionEngine:
        return self._engine

    @property
    def gate(self) -> InteractionGate:
        return self._gate

    @property
    def config(self) -> GateConfig:
        return self._config

    def request(
        self,
        tool: str | ToolCategory,
        target: str,
        *,
        agent: str = "default",
        file_meta: FileMeta | None = None,
        timestamp: datetime | None = None,
    ) -> ActionRequest:
        """Build a request stamped with this session's environment and user."""
        kwargs: dict[str, Any] = {
            "agent": agent,
            "environment": self._config.environment,
            "user_id": self._config.user_id,
            "file_meta": file_meta,
        }
        if timestamp is not None:
            kwargs["timestamp"] = timestamp
        return ActionRequest.build(tool, target, **kwargs)

    def reload(
        self,
        *,
        global_rules: ScopeSource = None,
        project_rules: ScopeSource = None,
        session_rules: ScopeSource = None,
        agent_overrides: Mapping[str, ScopeSource] | None = None,
    ) -> RuleSet:
        """Swap in freshly loaded rules; in-flight checks keep their snapshot."""
        return self.store.load(
            global_rules=global_rules,
            project_rules=project_rules,
            session_rules=session_rules,
            agent_overrides=agent_overrides,
        )

    def check(self, request: ActionRequest) -> Decision:
        """Evaluate without prompting; the outcome may be ASK."""
        return self._engine.check(request)

    async def authorize(self, request: ActionRequest) -> Decision:
        """Return a terminal ALLOW or DENY decision for *request*."""
        snapshot = self.store.snapshot
        decision = self._engine.check(request, snapshot)
        if not decision.needs_approval:
            return decision

        if self._gate.is_cached(request, decision.matched_rule_id):
            return Decision(
                outcome=PermissionDecision.ALLOW,
                matched_rule_id=decision.matched_rule_id,
                reason="Covered by an earlier approval",
            )
        pending = self._gate.submit(decision, request)
        state = await self._gate.wait(pending)
        return Decision(
            outcome=state.outcome,
            matched_rule_id=decision.matched_rule_id,
            reason=f"Approval {state.value}",
        )

    async def run(self, request: ActionRequest, action: Callable[[], Awaitable[T]]) -> T:
        """Run *action* only if *request* is allowed.

        Raises ``PermissionDenied`` before *action* is started otherwise.
        """
        decision = await self.authorize(request)
        if not decision.allowed:
            logger.info("Refused %s %r: %s", request.tool, request.target, decision.reason)
            raise PermissionDenied(request, decision)
        return await action()

    async def close(self) -> None:
        """End the session; outstanding approvals resolve as cancelled."""
        await self._gate.close()

    async def __aenter__(self) -> PermissionSession:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
