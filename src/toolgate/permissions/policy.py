"""Policy documents — normalize shorthand config forms into canonical rules.

A policy document maps a tool category to a policy::

    Bash:
      "git *": allow          # pattern map, one rule per pattern
      "rm *": ask
    Read: allow               # bare keyword, one rule matching everything
    Edit:
      - patterns: ["src/**", "!src/generated/**"]
        action: ask
        when:
          environments: [prod]
          time_window: "09:00-17:00"

The engine itself only ever sees the resulting :class:`Rule` records.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml

from toolgate.permissions.conditions import condition_from_mapping
from toolgate.permissions.patterns import MATCH_ALL
from toolgate.permissions.rules import ConfigError, Rule, Scope
from toolgate.types.agents import AgentDef

logger = logging.getLogger(__name__)

POLICY_SUFFIXES = (".toml", ".yaml", ".yml")

_RULE_KEYS = {"id", "pattern", "patterns", "action", "decision", "when", "description"}


def normalize_document(scope: Scope, document: Mapping[str, Any] | None) -> tuple[Rule, ...]:
    """Turn a ``tool -> policy`` document into ordered rules for *scope*.

    Raises ``ConfigError`` on the first malformed entry; callers reject the
    whole scope in that case.
    """
    if not document:
        return ()
    if not isinstance(document, Mapping):
        raise ConfigError(f"{scope.value} policy must be a mapping, got {type(document).__name__}")
    if "permissions" in document:
        document = document["permissions"] or {}
        if not isinstance(document, Mapping):
            raise ConfigError(f"{scope.value} 'permissions' must be a mapping")

    rules: list[Rule] = []
    for tool, policy in document.items():
        tool_name = str(tool)
        for kwargs in _expand_policy(tool_name, policy):
            rules.append(Rule(
                scope=scope,
                tool=tool_name,
                declaration_order=len(rules),
                **kwargs,
            ))
    return tuple(rules)


def _expand_policy(tool: str, policy: Any) -> list[dict[str, Any]]:
    """Expand one tool's policy value into Rule keyword arguments."""
    if isinstance(policy, str):
        return [{"action": policy, "patterns": (MATCH_ALL,)}]

    if isinstance(policy, Mapping):
        expanded = []
        for pattern, action in policy.items():
            pattern = str(pattern)
            if pattern.startswith("!"):
                raise ConfigError(
                    f"{tool}: negated pattern {pattern!r} needs the rule list form"
                )
            if not isinstance(action, str):
                raise ConfigError(f"{tool}: action for {pattern!r} must be a keyword")
            expanded.append({"action": action, "patterns": (pattern,)})
        return expanded

    if isinstance(policy, list):
        return [_expand_rule_entry(tool, entry) for entry in policy]

    raise ConfigError(f"{tool}: unsupported policy value {policy!r}")


def _expand_rule_entry(tool: str, entry: Any) -> dict[str, Any]:
    if not isinstance(entry, Mapping):
        raise ConfigError(f"{tool}: rule entries must be mappings, got {entry!r}")
    unknown = set(entry) - _RULE_KEYS
    if unknown:
        raise ConfigError(f"{tool}: unknown rule keys {sorted(unknown)}")

    patterns = entry.get("patterns", entry.get("pattern"))
    if patterns is None:
        raise ConfigError(f"{tool}: rule is missing 'patterns'")
    if isinstance(patterns, str):
        patterns = [patterns]
    if not isinstance(patterns, list):
        raise ConfigError(f"{tool}: 'patterns' must be a string or a list")

    action = entry.get("action", entry.get("decision"))
    if action is None:
        raise ConfigError(f"{tool}: rule is missing 'action'")

    when = entry.get("when")
    return {
        "action": action,
        "patterns": tuple(str(p) for p in patterns),
        "condition": condition_from_mapping(when) if when else None,
        "id": str(entry.get("id", "")),
        "description": str(entry.get("description", "")),
    }


def parse_file(path: str | Path) -> dict[str, Any]:
    """Parse a YAML or TOML policy file.

    A missing file is an empty document.  Unreadable, unparsable or
    unsupported files raise ``ConfigError``.
    """
    path = Path(path).expanduser()
    if not path.exists():
        return {}

    suffix = path.suffix.lower()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read policy file {path}: {exc}") from exc

    if suffix in (".yml", ".yaml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse YAML policy {path}: {exc}") from exc
    elif suffix == ".toml":
        import tomllib
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Failed to parse TOML policy {path}: {exc}") from exc
    else:
        raise ConfigError(f"Unsupported policy file extension: {path}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Policy file {path} must contain a mapping")
    return data


def load_scope_file(scope: Scope, path: str | Path) -> tuple[Rule, ...]:
    """Read and normalize one scope's policy file."""
    rules = normalize_document(scope, parse_file(path))
    logger.debug("Loaded %d %s rules from %s", len(rules), scope.value, path)
    return rules


def find_policy_file(directory: str | Path) -> Path | None:
    """Return the first ``permissions.{toml,yaml,yml}`` in *directory*."""
    directory = Path(directory).expanduser()
    for suffix in POLICY_SUFFIXES:
        candidate = directory / f"permissions{suffix}"
        if candidate.is_file():
            return candidate
    return None


def agent_overrides_from(agents: Iterable[AgentDef]) -> dict[str, Mapping[str, Any]]:
    """Collect the permission documents embedded in agent definitions."""
    return {agent.name: agent.permissions for agent in agents if agent.permissions}
