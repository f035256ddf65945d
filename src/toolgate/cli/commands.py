"""CLI subcommands for toolgate (check, explain, rules)."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date, datetime
from pathlib import Path
from typing import Any

import click

from toolgate.core.config import load_gate_config
from toolgate.core.session import PermissionSession
from toolgate.permissions.conditions import parse_time
from toolgate.permissions.gate import InteractionGate
from toolgate.permissions.rules import ConfigError, Decision, PermissionDecision, Rule
from toolgate.permissions.store import RuleStore
from toolgate.types.requests import ActionRequest, FileMeta, ToolCategory

# Exit status per outcome for scripting: allow=0, deny=1, ask=2
_EXIT_CODES = {
    PermissionDecision.ALLOW: 0,
    PermissionDecision.DENY: 1,
    PermissionDecision.ASK: 2,
}

_LOAD_OPTIONS = [
    click.option("--cwd", default=None, help="Project directory (default: current)"),
    click.option("--global-policy", type=click.Path(dir_okay=False), default=None,
                 help="Global policy file (default: ~/.toolgate/permissions.*)"),
    click.option("--project-policy", type=click.Path(dir_okay=False), default=None,
                 help="Project policy file (default: <cwd>/.toolgate/permissions.*)"),
    click.option("--session-policy", type=click.Path(dir_okay=False), default=None,
                 help="Session override policy file"),
    click.option("--agent-policy", multiple=True, metavar="AGENT=PATH",
                 help="Per-agent override policy file (repeatable)"),
    click.option("--agent", "-a", default="default", help="Requesting agent"),
]

_REQUEST_OPTIONS = [
    click.argument("tool"),
    click.argument("target"),
    click.option("--env", "environment", default=None, help="Environment tag"),
    click.option("--user", "user_id", default=None, help="User ID"),
    click.option("--at", "at_time", default=None, metavar="HH:MM",
                 help="Evaluate as if at this time of day"),
]


def _with_options(options: list[Callable[[Any], Any]]) -> Callable[[Any], Any]:
    def decorator(f: Any) -> Any:
        for option in reversed(options):
            f = option(f)
        return f
    return decorator


def _parse_agent_policies(values: tuple[str, ...]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for value in values:
        agent, sep, path = value.partition("=")
        if not sep or not agent or not path:
            raise click.BadParameter(f"expected AGENT=PATH, got {value!r}", param_hint="--agent-policy")
        overrides[agent] = path
    return overrides


def _load_session(
    *,
    cwd: str | None,
    global_policy: str | None,
    project_policy: str | None,
    session_policy: str | None,
    agent_policy: tuple[str, ...],
    environment: str | None = None,
    user_id: str | None = None,
    callback: Any | None = None,
) -> PermissionSession:
    """Load every scope; rejected scopes are reported and left empty."""
    config = load_gate_config(
        cwd,
        environment=environment,
        user_id=user_id,
        global_policy=Path(global_policy) if global_policy else None,
        project_policy=Path(project_policy) if project_policy else None,
    )
    store = RuleStore()
    try:
        store.load(
            global_rules=config.global_policy,
            project_rules=config.project_policy,
            session_rules=session_policy,
            agent_overrides=_parse_agent_policies(agent_policy),
        )
    except ConfigError as exc:
        click.echo(f"Warning: {exc}", err=True)
        for scope, message in sorted(exc.errors.items()):
            click.echo(f"  {scope}: {message}", err=True)
    gate = InteractionGate(callback, timeout=config.approval_timeout)
    return PermissionSession(store, gate, config=config)


def _build_request(
    session: PermissionSession,
    tool: str,
    target: str,
    *,
    agent: str,
    cwd: str | None,
    at_time: str | None,
) -> ActionRequest:
    try:
        category = ToolCategory.parse(tool)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="TOOL") from exc

    timestamp = None
    if at_time:
        try:
            timestamp = datetime.combine(date.today(), parse_time(at_time))
        except ConfigError as exc:
            raise click.BadParameter(str(exc), param_hint="--at") from exc

    file_meta = None
    if not category.is_command and not category.is_custom:
        file_meta = FileMeta.from_path(Path(cwd or ".") / target)
    return session.request(
        category, target, agent=agent, file_meta=file_meta, timestamp=timestamp,
    )


def _format_rule(rule: Rule) -> str:
    line = f"{rule.id:<16} {rule.scope.value:<8} {rule.action.value:<6} {rule}"
    if rule.condition is not None:
        line += "  [conditional]"
    return line


async def _authorize(session: PermissionSession, request: ActionRequest) -> Decision:
    try:
        return await session.authorize(request)
    finally:
        await session.close()


@click.command()
@_with_options(_REQUEST_OPTIONS + _LOAD_OPTIONS)
@click.option("--interactive/--no-interactive", default=False, help="Prompt on ask decisions")
@click.option("--rich/--no-rich", "use_rich", default=True, help="Rich approval prompt")
def check_cmd(
    tool: str,
    target: str,
    agent: str,
    interactive: bool,
    use_rich: bool,
    environment: str | None,
    user_id: str | None,
    at_time: str | None,
    **load: Any,
) -> None:
    """Decide whether AGENT may use TOOL on TARGET."""
    callback = None
    if interactive:
        if use_rich:
            from toolgate.ui.approval import RichApprovalCallback
            callback = RichApprovalCallback()
        else:
            from toolgate.permissions.approval import StdinApprovalCallback
            callback = StdinApprovalCallback()

    session = _load_session(
        environment=environment, user_id=user_id, callback=callback, **load,
    )
    request = _build_request(
        session, tool, target, agent=agent, cwd=load["cwd"], at_time=at_time,
    )
    if interactive:
        decision = asyncio.run(_authorize(session, request))
    else:
        decision = session.check(request)

    click.echo(f"{decision.outcome.value}\t{decision.matched_rule_id or '-'}\t{decision.reason}")
    code = _EXIT_CODES[decision.outcome]
    if code:
        raise SystemExit(code)


@click.command()
@_with_options(_REQUEST_OPTIONS + _LOAD_OPTIONS)
def explain_cmd(
    tool: str,
    target: str,
    agent: str,
    environment: str | None,
    user_id: str | None,
    at_time: str | None,
    **load: Any,
) -> None:
    """List every rule that applies to TOOL on TARGET; the last one wins."""
    session = _load_session(environment=environment, user_id=user_id, **load)
    request = _build_request(
        session, tool, target, agent=agent, cwd=load["cwd"], at_time=at_time,
    )
    matches = session.engine.simulate(request)
    if not matches:
        click.echo("No rule applies; denied by default.")
        return
    for index, rule in enumerate(matches):
        marker = "=>" if index == len(matches) - 1 else "  "
        click.echo(f"{marker} {_format_rule(rule)}")


@click.command()
@_with_options(_LOAD_OPTIONS)
def rules_cmd(agent: str, **load: Any) -> None:
    """Show the effective rules for an agent in merge order."""
    session = _load_session(**load)
    rules = session.store.effective_rules(agent)
    if not rules:
        click.echo("(no rules; everything is denied)")
        return
    for rule in rules:
        click.echo(_format_rule(rule))
    click.echo(f"\n{len(rules)} rules for agent {agent!r}")
