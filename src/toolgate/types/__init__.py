"""Type definitions for toolgate."""

from toolgate.types.agents import AgentDef
from toolgate.types.config import GateConfig
from toolgate.types.requests import (
    BASH,
    EDIT,
    READ,
    ActionRequest,
    FileMeta,
    ToolCategory,
)

__all__ = [
    "BASH",
    "EDIT",
    "READ",
    "ActionRequest",
    "AgentDef",
    "FileMeta",
    "GateConfig",
    "ToolCategory",
]
