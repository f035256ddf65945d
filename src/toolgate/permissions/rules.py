"""Permission rules, decisions and scopes."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from toolgate.permissions.patterns import Pattern, compile_patterns
from toolgate.types.requests import ToolCategory

if TYPE_CHECKING:
    from toolgate.permissions.conditions import Condition
    from toolgate.permissions.store import RuleSet

ANY_TOOL = "*"


class ConfigError(ValueError):
    """A rule document or rule record is malformed.

    ``errors`` maps a scope label (``"project"``, ``"agent:reviewer"``) to the
    reason that scope was rejected.  When raised by :meth:`RuleStore.load`,
    ``rule_set`` holds the snapshot that was installed without those scopes.
    """

    def __init__(
        self,
        message: str,
        *,
        errors: Mapping[str, str] | None = None,
        rule_set: RuleSet | None = None,
    ) -> None:
        super().__init__(message)
        self.errors = dict(errors or {})
        self.rule_set = rule_set


class PermissionDecision(Enum):
    """Result of a permission check."""

    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"


class Scope(Enum):
    """Origin of a rule, in merge order."""

    GLOBAL = "global"
    PROJECT = "project"
    SESSION = "session"
    AGENT_OVERRIDE = "agent"


def parse_action(value: object) -> PermissionDecision:
    """Parse an action keyword (``allow``/``deny``/``ask``)."""
    if isinstance(value, PermissionDecision):
        return value
    try:
        return PermissionDecision(str(value).strip().lower())
    except ValueError:
        raise ConfigError(f"Unknown action keyword: {value!r}") from None


@dataclass(frozen=True, slots=True)
class Rule:
    """A single declarative permission rule.

    Plain strings and ``(glob, negated)`` pairs in *patterns* are compiled on
    construction, and *action* may be given as a keyword.  An unknown action
    or an empty pattern list raises :class:`ConfigError`.
    """

    action: PermissionDecision
    patterns: tuple[Pattern, ...]
    scope: Scope = Scope.GLOBAL
    tool: str = ANY_TOOL  # Tool category name or "*"
    condition: Condition | None = None
    declaration_order: int = 0
    id: str = ""
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "action", parse_action(self.action))
        if isinstance(self.patterns, str):
            raise ConfigError(f"Rule patterns must be a list, got {self.patterns!r}")
        if not self.patterns:
            raise ConfigError(f"Rule {self.id or self.declaration_order!r} has no patterns")
        try:
            object.__setattr__(self, "patterns", compile_patterns(self.patterns))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid pattern in rule: {exc}") from exc
        if self.tool != ANY_TOOL:
            try:
                object.__setattr__(self, "tool", ToolCategory.parse(self.tool).name)
            except ValueError as exc:
                raise ConfigError(str(exc)) from exc
        if not self.id:
            object.__setattr__(self, "id", f"{self.scope.value}:{self.declaration_order}")

    def governs(self, tool: ToolCategory) -> bool:
        """Whether this rule is about *tool* at all."""
        return self.tool == ANY_TOOL or self.tool == tool.name

    def with_scope(self, scope: Scope, declaration_order: int) -> Rule:
        """Copy of this rule re-homed into *scope* at *declaration_order*."""
        rule_id = self.id
        if rule_id == f"{self.scope.value}:{self.declaration_order}":
            rule_id = ""
        return Rule(
            action=self.action,
            patterns=self.patterns,
            scope=scope,
            tool=self.tool,
            condition=self.condition,
            declaration_order=declaration_order,
            id=rule_id,
            description=self.description,
        )

    def __str__(self) -> str:
        globs = ", ".join(str(p) for p in self.patterns)
        return f"{self.tool}({globs}) -> {self.action.value}"


@dataclass(frozen=True, slots=True)
class Decision:
    """The engine's outcome for one action request."""

    outcome: PermissionDecision
    matched_rule_id: str | None = None
    reason: str = field(default="")

    @property
    def allowed(self) -> bool:
        return self.outcome is PermissionDecision.ALLOW

    @property
    def needs_approval(self) -> bool:
        return self.outcome is PermissionDecision.ASK
