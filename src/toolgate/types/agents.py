"""Agent definition types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class AgentDef:
    """Definition of an agent as far as permissions are concerned."""

    name: str
    description: str = ""
    # Per-agent override document (tool -> policy), merged after every other scope
    permissions: dict[str, Any] = field(default_factory=dict)
