"""Action request types passed into the permission engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

# Built-in tool categories, keyed by lower-case name
BUILTIN_CATEGORIES: dict[str, str] = {
    "bash": "Bash",
    "read": "Read",
    "edit": "Edit",
}


@dataclass(frozen=True, slots=True)
class ToolCategory:
    """A tool category: Bash, Read, Edit, or a custom tool name."""

    name: str

    @classmethod
    def parse(cls, name: str) -> ToolCategory:
        """Canonicalize *name*; built-in names are case-insensitive."""
        name = name.strip()
        if not name:
            raise ValueError("Tool category name must not be empty")
        return cls(BUILTIN_CATEGORIES.get(name.lower(), name))

    @property
    def is_custom(self) -> bool:
        return self.name not in BUILTIN_CATEGORIES.values()

    @property
    def is_command(self) -> bool:
        """Command categories match targets as command literals, not paths."""
        return self.name == "Bash"

    def __str__(self) -> str:
        return self.name


BASH = ToolCategory("Bash")
READ = ToolCategory("Read")
EDIT = ToolCategory("Edit")


@dataclass(frozen=True, slots=True)
class FileMeta:
    """Metadata for the file an action targets."""

    size: int
    content: str | None = None

    @classmethod
    def from_path(cls, path: str | Path, *, read_content: bool = True) -> FileMeta | None:
        """Build metadata for an existing file, or None if it does not exist."""
        p = Path(path)
        if not p.is_file():
            return None
        content: str | None = None
        if read_content:
            try:
                content = p.read_text(errors="replace")
            except OSError:
                content = None
        return cls(size=p.stat().st_size, content=content)


@dataclass(frozen=True, slots=True)
class ActionRequest:
    """A single action an agent is attempting."""

    tool: ToolCategory
    target: str  # File path or command literal
    agent: str = "default"
    environment: str = ""
    user_id: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    file_meta: FileMeta | None = None

    @classmethod
    def build(
        cls,
        tool: str | ToolCategory,
        target: str,
        **kwargs: object,
    ) -> ActionRequest:
        """Convenience constructor accepting a plain category name."""
        category = tool if isinstance(tool, ToolCategory) else ToolCategory.parse(tool)
        return cls(tool=category, target=target, **kwargs)  # type: ignore[arg-type]
