"""Contextual conditions that gate whether a rule applies."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import time
from typing import Any

from toolgate.permissions.rules import ConfigError
from toolgate.types.requests import ActionRequest

logger = logging.getLogger(__name__)

# Maximum allowed length for a regex pattern to mitigate ReDoS.
_MAX_REGEX_LEN = 1024


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Half-open daily window ``[start, end)``; wraps past midnight if end < start."""

    start: time
    end: time

    def contains(self, moment: time) -> bool:
        if self.end < self.start:
            return moment >= self.start or moment < self.end
        return self.start <= moment < self.end

    def __str__(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True, slots=True)
class SizeRange:
    """Inclusive file size bounds in bytes; either bound may be open."""

    min: int | None = None
    max: int | None = None

    def contains(self, size: int) -> bool:
        if self.min is not None and size < self.min:
            return False
        if self.max is not None and size > self.max:
            return False
        return True


@dataclass(frozen=True, slots=True)
class Condition:
    """Predicate over the request context. Every present sub-field must hold.

    Empty ``environments``/``users`` sets count as absent.  The content regex
    is compiled eagerly by :func:`compile_condition` so that invalid or
    oversized patterns are rejected when the rule is built.
    """

    environments: frozenset[str] = frozenset()
    users: frozenset[str] = frozenset()
    time_window: TimeWindow | None = None
    file_size: SizeRange | None = None
    content_pattern: str | None = None
    _compiled_re: re.Pattern[str] | None = field(
        default=None, repr=False, compare=False,
    )


def compile_condition(
    *,
    environments: Iterable[str] = (),
    users: Iterable[str] = (),
    time_window: TimeWindow | None = None,
    file_size: SizeRange | None = None,
    content_pattern: str | None = None,
) -> Condition:
    """Create a Condition, validating bounds and compiling the content regex.

    Raises ``ConfigError`` on an invalid size range or regex.
    """
    if time_window is not None:
        for moment in (time_window.start, time_window.end):
            if moment.tzinfo is not None:
                raise ConfigError(f"time_window must not carry a UTC offset: {time_window}")
    if file_size is not None:
        for bound in (file_size.min, file_size.max):
            if bound is not None and bound < 0:
                raise ConfigError(f"file_size bound must be >= 0, got {bound}")
        if (
            file_size.min is not None
            and file_size.max is not None
            and file_size.min > file_size.max
        ):
            raise ConfigError(
                f"file_size min ({file_size.min}) exceeds max ({file_size.max})"
            )

    compiled: re.Pattern[str] | None = None
    if content_pattern is not None:
        if len(content_pattern) > _MAX_REGEX_LEN:
            raise ConfigError(
                f"content_matches pattern exceeds {_MAX_REGEX_LEN} chars"
            )
        try:
            compiled = re.compile(content_pattern)
        except re.error as exc:
            raise ConfigError(f"Invalid content_matches regex: {exc}") from exc

    return Condition(
        environments=frozenset(environments),
        users=frozenset(users),
        time_window=time_window,
        file_size=file_size,
        content_pattern=content_pattern,
        _compiled_re=compiled,
    )


def parse_time(value: Any) -> time:
    """Parse ``HH:MM`` (or ``HH:MM:SS``) into a naive time of day.

    Request timestamps are compared as local wall-clock times, so values
    carrying a UTC offset are rejected.
    """
    if isinstance(value, time):
        parsed = value
    elif isinstance(value, int) and not isinstance(value, bool):
        # Small ints are hours; YAML 1.1 reads unquoted 17:00 as 1020 minutes
        hours, minutes = (value, 0) if value < 24 else divmod(value, 60)
        if not 0 <= hours < 24:
            raise ConfigError(f"Invalid time of day: {value!r}")
        parsed = time(hours, minutes)
    else:
        try:
            parsed = time.fromisoformat(str(value).strip())
        except ValueError:
            raise ConfigError(f"Invalid time of day: {value!r}") from None
    if parsed.tzinfo is not None:
        raise ConfigError(f"Time of day must not carry a UTC offset: {value!r}")
    return parsed


def parse_time_window(value: Any) -> TimeWindow:
    """Parse ``"09:00-17:00"``, ``{start, end}`` or ``[start, end]``."""
    if isinstance(value, TimeWindow):
        return value
    if isinstance(value, str):
        start, sep, end = value.partition("-")
        if not sep:
            raise ConfigError(f"time_window must look like 'HH:MM-HH:MM', got {value!r}")
    elif isinstance(value, Mapping):
        if "start" not in value or "end" not in value:
            raise ConfigError("time_window mapping needs 'start' and 'end'")
        start, end = value["start"], value["end"]
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        start, end = value
    else:
        raise ConfigError(f"Invalid time_window: {value!r}")
    return TimeWindow(start=parse_time(start), end=parse_time(end))


def _parse_size(value: Any) -> SizeRange:
    if not isinstance(value, Mapping):
        raise ConfigError(f"file_size must be a mapping with min/max, got {value!r}")
    unknown = set(value) - {"min", "max"}
    if unknown:
        raise ConfigError(f"Unknown file_size keys: {sorted(unknown)}")
    bounds: dict[str, int | None] = {}
    for key in ("min", "max"):
        raw = value.get(key)
        if raw is None:
            bounds[key] = None
        elif isinstance(raw, int) and not isinstance(raw, bool):
            bounds[key] = raw
        else:
            raise ConfigError(f"file_size {key} must be an integer, got {raw!r}")
    return SizeRange(min=bounds["min"], max=bounds["max"])


def _as_names(value: Any, key: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(str(v) for v in value)
    raise ConfigError(f"{key} must be a string or a list of strings")


_CONDITION_KEYS = {
    "environments", "environment", "users", "user",
    "time_window", "file_size", "content_matches",
}


def condition_from_mapping(data: Mapping[str, Any]) -> Condition:
    """Build a Condition from a ``when:`` mapping in a policy document."""
    if not isinstance(data, Mapping):
        raise ConfigError(f"Condition must be a mapping, got {type(data).__name__}")
    unknown = set(data) - _CONDITION_KEYS
    if unknown:
        raise ConfigError(f"Unknown condition keys: {sorted(unknown)}")

    environments = data.get("environments", data.get("environment", ()))
    users = data.get("users", data.get("user", ()))
    window = data.get("time_window")
    size = data.get("file_size")
    content = data.get("content_matches")

    return compile_condition(
        environments=_as_names(environments, "environments"),
        users=_as_names(users, "users"),
        time_window=parse_time_window(window) if window is not None else None,
        file_size=_parse_size(size) if size is not None else None,
        content_pattern=str(content) if content is not None else None,
    )


def holds(condition: Condition | None, request: ActionRequest) -> bool:
    """Evaluate *condition* against *request*. No condition always holds."""
    if condition is None:
        return True
    for check in _CHECKS:
        if not check(condition, request):
            return False
    return True


def _environment_ok(cond: Condition, request: ActionRequest) -> bool:
    return not cond.environments or request.environment in cond.environments


def _user_ok(cond: Condition, request: ActionRequest) -> bool:
    return not cond.users or request.user_id in cond.users


def _time_ok(cond: Condition, request: ActionRequest) -> bool:
    if cond.time_window is None:
        return True
    return cond.time_window.contains(request.timestamp.time())


def _size_ok(cond: Condition, request: ActionRequest) -> bool:
    """File size gate; fails closed without file metadata."""
    if cond.file_size is None:
        return True
    if request.file_meta is None:
        return False
    return cond.file_size.contains(request.file_meta.size)


def _content_ok(cond: Condition, request: ActionRequest) -> bool:
    """Regex search over file content; fails closed without content."""
    if cond.content_pattern is None:
        return True
    if request.file_meta is None or request.file_meta.content is None:
        return False
    compiled = cond._compiled_re
    if compiled is None:
        if len(cond.content_pattern) > _MAX_REGEX_LEN:
            logger.warning("Skipping oversized content_matches pattern")
            return False
        try:
            compiled = re.compile(cond.content_pattern)
        except re.error:
            logger.warning("Invalid regex in content_matches: %s", cond.content_pattern)
            return False
    return compiled.search(request.file_meta.content) is not None


_CHECKS: tuple[Callable[[Condition, ActionRequest], bool], ...] = (
    _environment_ok,
    _user_ok,
    _time_ok,
    _size_ok,
    _content_ok,
)
