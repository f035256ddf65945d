"""RuleStore — merges the four rule scopes into immutable snapshots.

Merge order is fixed: global, project, session, then the requesting agent's
overrides.  Position alone decides precedence, so merging is a plain
concatenation.  Each scope is validated as a unit: one bad rule rejects the
whole scope, which then contributes nothing.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Union

from toolgate.permissions.policy import load_scope_file, normalize_document
from toolgate.permissions.rules import ConfigError, Rule, Scope

logger = logging.getLogger(__name__)

# A scope may be given as canonical rules, a policy document or a policy file
ScopeSource = Union[Iterable[Rule], Mapping[str, Any], str, Path, None]


@dataclass(frozen=True, slots=True, eq=False)
class RuleSet:
    """An immutable snapshot of every scope's rules."""

    global_rules: tuple[Rule, ...] = ()
    project_rules: tuple[Rule, ...] = ()
    session_rules: tuple[Rule, ...] = ()
    agent_overrides: Mapping[str, tuple[Rule, ...]] = field(default_factory=dict)
    _base: tuple[Rule, ...] = field(init=False, repr=False, default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "global_rules", tuple(self.global_rules))
        object.__setattr__(self, "project_rules", tuple(self.project_rules))
        object.__setattr__(self, "session_rules", tuple(self.session_rules))
        object.__setattr__(
            self,
            "agent_overrides",
            MappingProxyType({k: tuple(v) for k, v in self.agent_overrides.items()}),
        )
        object.__setattr__(
            self, "_base", merge(self.global_rules, self.project_rules, self.session_rules),
        )

    def effective_rules(self, agent: str | None = None) -> tuple[Rule, ...]:
        """The ordered rule sequence that applies to *agent*."""
        if agent is None:
            return self._base
        return self._base + self.agent_overrides.get(agent, ())

    @property
    def agents(self) -> list[str]:
        return sorted(self.agent_overrides)

    def __len__(self) -> int:
        return len(self._base) + sum(len(r) for r in self.agent_overrides.values())


def merge(
    global_rules: Iterable[Rule],
    project_rules: Iterable[Rule],
    session_rules: Iterable[Rule],
    agent_overrides: Iterable[Rule] = (),
) -> tuple[Rule, ...]:
    """Concatenate scopes in precedence order, keeping each scope's order."""
    return (
        tuple(global_rules)
        + tuple(project_rules)
        + tuple(session_rules)
        + tuple(agent_overrides)
    )


def validate_scope(scope: Scope, source: ScopeSource) -> tuple[Rule, ...]:
    """Normalize one scope's source into rules homed in *scope*.

    Raises ``ConfigError`` if anything in the scope is malformed.
    """
    if source is None:
        return ()
    if isinstance(source, (str, Path)):
        return load_scope_file(scope, source)
    if isinstance(source, Mapping):
        return normalize_document(scope, source)

    rules: list[Rule] = []
    for index, rule in enumerate(source):
        if not isinstance(rule, Rule):
            raise ConfigError(f"Expected a Rule, got {type(rule).__name__}")
        if rule.scope is not scope or rule.declaration_order != index:
            rule = rule.with_scope(scope, index)
        rules.append(rule)
    return tuple(rules)


class RuleStore:
    """Holds the current :class:`RuleSet` and swaps it atomically on reload.

    Readers take :attr:`snapshot` once and keep using it; a reload never
    mutates a snapshot that is already in use.
    """

    def __init__(self, rule_set: RuleSet | None = None) -> None:
        self._snapshot = rule_set if rule_set is not None else RuleSet()
        self._lock = threading.Lock()
        self._generation = 0

    @property
    def snapshot(self) -> RuleSet:
        return self._snapshot

    @property
    def generation(self) -> int:
        """Number of snapshots installed since construction."""
        return self._generation

    def effective_rules(self, agent: str | None = None) -> tuple[Rule, ...]:
        return self._snapshot.effective_rules(agent)

    def replace(self, rule_set: RuleSet) -> RuleSet:
        """Install *rule_set* as the current snapshot."""
        with self._lock:
            self._snapshot = rule_set
            self._generation += 1
        logger.debug("Installed rule set generation %d (%d rules)", self._generation, len(rule_set))
        return rule_set

    def load(
        self,
        *,
        global_rules: ScopeSource = None,
        project_rules: ScopeSource = None,
        session_rules: ScopeSource = None,
        agent_overrides: Mapping[str, ScopeSource] | None = None,
    ) -> RuleSet:
        """Validate every scope, install the merged snapshot and return it.

        Invalid scopes are installed empty and reported together in one
        ``ConfigError`` raised after the swap; ``error.rule_set`` is the
        snapshot now in force.
        """
        errors: dict[str, str] = {}

        def _scope(scope: Scope, source: ScopeSource, label: str) -> tuple[Rule, ...]:
            try:
                return validate_scope(scope, source)
            except ConfigError as exc:
                logger.warning("Rejected %s rules: %s", label, exc)
                errors[label] = str(exc)
                return ()

        overrides: dict[str, tuple[Rule, ...]] = {}
        for agent, source in (agent_overrides or {}).items():
            rules = _scope(Scope.AGENT_OVERRIDE, source, f"agent:{agent}")
            if rules:
                overrides[agent] = rules

        rule_set = RuleSet(
            global_rules=_scope(Scope.GLOBAL, global_rules, Scope.GLOBAL.value),
            project_rules=_scope(Scope.PROJECT, project_rules, Scope.PROJECT.value),
            session_rules=_scope(Scope.SESSION, session_rules, Scope.SESSION.value),
            agent_overrides=overrides,
        )
        self.replace(rule_set)

        if errors:
            scopes = ", ".join(sorted(errors))
            raise ConfigError(
                f"Rejected malformed rule scopes: {scopes}",
                errors=errors,
                rule_set=rule_set,
            )
        return rule_set
