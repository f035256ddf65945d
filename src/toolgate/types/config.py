"""Configuration types for toolgate."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_APPROVAL_TIMEOUT = 300.0


@dataclass(frozen=True, slots=True)
class GateConfig:
    """Configuration for a permission session."""

    environment: str = ""  # Environment tag stamped on requests, e.g. "prod"
    user_id: str = ""
    approval_timeout: float = DEFAULT_APPROVAL_TIMEOUT  # Seconds; <= 0 denies every ask
    global_policy: Path | None = None
    project_policy: Path | None = None
