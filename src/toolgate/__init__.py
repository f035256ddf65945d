"""toolgate — permission engine for agent tool calls.

Usage:
    import toolgate

    store = toolgate.RuleStore()
    store.load(project_rules={"Bash": {"git *": "allow", "rm *": "ask"}})

    async with toolgate.PermissionSession(store) as session:
        request = session.request("Bash", "git status")
        decision = await session.authorize(request)
        if decision.allowed:
            ...
"""

from toolgate.core.session import PermissionDenied, PermissionSession
from toolgate.permissions.approval import ApprovalCallback, ApprovalState, PendingApproval
from toolgate.permissions.conditions import Condition, SizeRange, TimeWindow, compile_condition
from toolgate.permissions.engine import DecisionEngine, evaluate
from toolgate.permissions.gate import InteractionGate
from toolgate.permissions.patterns import Pattern, applies, compile_pattern
from toolgate.permissions.rules import (
    ConfigError,
    Decision,
    PermissionDecision,
    Rule,
    Scope,
)
from toolgate.permissions.store import RuleSet, RuleStore, merge
from toolgate.types.agents import AgentDef
from toolgate.types.config import GateConfig
from toolgate.types.requests import ActionRequest, FileMeta, ToolCategory

__version__ = "0.1.0"

__all__ = [
    # Engine
    "DecisionEngine",
    "InteractionGate",
    "PermissionSession",
    "RuleSet",
    "RuleStore",
    "applies",
    "evaluate",
    "merge",
    # Rules and decisions
    "Condition",
    "ConfigError",
    "Decision",
    "Pattern",
    "PermissionDecision",
    "PermissionDenied",
    "Rule",
    "Scope",
    "SizeRange",
    "TimeWindow",
    "compile_condition",
    "compile_pattern",
    # Approvals
    "ApprovalCallback",
    "ApprovalState",
    "PendingApproval",
    # Requests and configuration
    "ActionRequest",
    "AgentDef",
    "FileMeta",
    "GateConfig",
    "ToolCategory",
]
