"""Configuration loading (environment variables, policy file locations)."""

from __future__ import annotations

import getpass
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from toolgate.permissions.policy import find_policy_file
from toolgate.types.config import DEFAULT_APPROVAL_TIMEOUT, GateConfig

logger = logging.getLogger(__name__)

# Load .env from current directory (and parents), won't override existing env vars
load_dotenv()

CONFIG_DIR_NAME = ".toolgate"


def global_config_dir() -> Path:
    """User-level config directory, ``~/.toolgate``."""
    return Path.home() / CONFIG_DIR_NAME


def project_config_dir(cwd: str | Path | None = None) -> Path:
    """Project-level config directory, ``<cwd>/.toolgate``."""
    return Path(cwd or Path.cwd()) / CONFIG_DIR_NAME


def load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}

    if env := os.environ.get("TOOLGATE_ENV"):
        config["environment"] = env
    if user := os.environ.get("TOOLGATE_USER"):
        config["user_id"] = user
    if raw := os.environ.get("TOOLGATE_APPROVAL_TIMEOUT"):
        try:
            config["approval_timeout"] = float(raw)
        except ValueError:
            logger.warning("Ignoring non-numeric TOOLGATE_APPROVAL_TIMEOUT=%r", raw)

    return config


def _default_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""


def load_gate_config(cwd: str | Path | None = None, **overrides: Any) -> GateConfig:
    """Build a GateConfig from the environment and the well-known policy locations.

    Explicit keyword *overrides* win over environment variables.
    """
    values: dict[str, Any] = {
        "environment": "",
        "user_id": _default_user(),
        "approval_timeout": DEFAULT_APPROVAL_TIMEOUT,
        "global_policy": find_policy_file(global_config_dir()),
        "project_policy": find_policy_file(project_config_dir(cwd)),
    }
    values.update(load_env_config())
    values.update({k: v for k, v in overrides.items() if v is not None})
    return GateConfig(**values)
