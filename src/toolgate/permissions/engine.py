"""Permission evaluation engine.

Evaluation is positional: rules are scanned in merge order and the last rule
that applies to the request decides.  A rule applies when it governs the
request's tool category, its patterns match the target and its condition
holds.  No applicable rule means DENY.

Evaluation is pure and never suspends, so one snapshot can serve any number
of concurrent callers.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from toolgate.permissions.conditions import holds
from toolgate.permissions.patterns import applies
from toolgate.permissions.rules import Decision, PermissionDecision, Rule
from toolgate.permissions.store import RuleSet, RuleStore
from toolgate.types.requests import ActionRequest

logger = logging.getLogger(__name__)


def rule_applies(rule: Rule, request: ActionRequest) -> bool:
    """Check if a rule applies to an action request."""
    if not rule.governs(request.tool):
        return False
    if not applies(rule.patterns, request.target, command=request.tool.is_command):
        return False
    return holds(rule.condition, request)


def evaluate(request: ActionRequest, effective_rules: Sequence[Rule]) -> Decision:
    """Decide ALLOW, DENY or ASK for *request* (last applicable rule wins)."""
    last_match: Rule | None = None
    for rule in effective_rules:
        if rule_applies(rule, request):
            last_match = rule

    if last_match is None:
        return Decision(
            outcome=PermissionDecision.DENY,
            reason=f"No rule matched {request.tool} {request.target!r}; denied by default",
        )
    return Decision(
        outcome=last_match.action,
        matched_rule_id=last_match.id,
        reason=last_match.description or f"Rule {last_match.id} matched: {last_match}",
    )


def explain(request: ActionRequest, effective_rules: Sequence[Rule]) -> list[Rule]:
    """Every rule that applies to *request*, in order. The last one decides."""
    return [rule for rule in effective_rules if rule_applies(rule, request)]


class DecisionEngine:
    """Evaluates action requests against the rules of a :class:`RuleStore`."""

    def __init__(self, store: RuleStore | None = None) -> None:
        self._store = store or RuleStore()

    @property
    def store(self) -> RuleStore:
        return self._store

    @staticmethod
    def evaluate(request: ActionRequest, effective_rules: Sequence[Rule]) -> Decision:
        return evaluate(request, effective_rules)

    def check(self, request: ActionRequest, rule_set: RuleSet | None = None) -> Decision:
        """Evaluate against *rule_set*, or the store's current snapshot.

        Returns:
            Decision with outcome ALLOW (execute), DENY (refuse) or ASK
            (hand to the InteractionGate before executing).
        """
        snapshot = rule_set if rule_set is not None else self._store.snapshot
        decision = evaluate(request, snapshot.effective_rules(request.agent))
        logger.debug(
            "%s %r for agent %s -> %s (%s)",
            request.tool, request.target, request.agent,
            decision.outcome.value, decision.matched_rule_id or "default",
        )
        return decision

    def evaluate_request(self, request: ActionRequest) -> Decision:
        """Evaluate *request* against the current snapshot for its agent."""
        return self.check(request)

    def simulate(self, request: ActionRequest) -> list[Rule]:
        """What-if analysis: every applicable rule for *request*."""
        return explain(request, self._store.effective_rules(request.agent))
