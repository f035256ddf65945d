"""Glob/negation pattern matching for permission rules.

Patterns are evaluated left to right, gitignore-style: a positive pattern that
matches turns the result on, a negated pattern (``!glob``) that matches turns
it off again.  The last pattern that matches decides.

Glob syntax:

- ``*``  any run of characters except ``/`` (command targets: anything)
- ``**`` any run of characters including ``/``; ``**/`` may match nothing
- ``?``  exactly one character (never ``/`` for path targets)

A pattern made of a lone ``*`` matches every target, path targets containing
``/`` included.  It is the one exception to the path rule above: a bare
keyword policy such as ``Read: allow`` expands to ``*`` and must govern the
whole tool.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

MATCH_ALL = "*"


@dataclass(frozen=True, slots=True)
class Pattern:
    """A compiled glob pattern, optionally negated."""

    glob: str
    negated: bool = False
    _path_re: re.Pattern[str] | None = field(default=None, repr=False, compare=False)
    _command_re: re.Pattern[str] | None = field(default=None, repr=False, compare=False)

    def matches(self, target: str, *, command: bool = False) -> bool:
        """Whether the un-negated glob matches *target*."""
        if self.glob == MATCH_ALL:
            return True
        compiled = self._command_re if command else self._path_re
        if compiled is None:
            compiled = re.compile(translate(self.glob, command=command), re.DOTALL)
        return compiled.fullmatch(target) is not None

    def __str__(self) -> str:
        return f"!{self.glob}" if self.negated else self.glob


def translate(glob: str, *, command: bool = False) -> str:
    """Translate a glob into a regular expression source string."""
    single = "." if command else "[^/]"
    parts: list[str] = []
    i, n = 0, len(glob)
    while i < n:
        c = glob[i]
        if c == "*":
            if glob.startswith("**/", i):
                parts.append("(?:.*/)?")
                i += 3
            elif glob.startswith("**", i):
                parts.append(".*")
                i += 2
            else:
                parts.append(f"{single}*")
                i += 1
        elif c == "?":
            parts.append(single)
            i += 1
        else:
            parts.append(re.escape(c))
            i += 1
    return "".join(parts)


def compile_pattern(glob: str, negated: bool = False) -> Pattern:
    """Compile *glob* into a :class:`Pattern` (path and command forms)."""
    if not glob:
        raise ValueError("Pattern must not be empty")
    return Pattern(
        glob=glob,
        negated=negated,
        _path_re=re.compile(translate(glob), re.DOTALL),
        _command_re=re.compile(translate(glob, command=True), re.DOTALL),
    )


def parse_pattern(text: str) -> Pattern:
    """Parse a pattern string; a leading ``!`` marks negation."""
    if text.startswith("!"):
        return compile_pattern(text[1:], negated=True)
    return compile_pattern(text)


def compile_patterns(items: Iterable[str | Pattern | tuple[str, bool]]) -> tuple[Pattern, ...]:
    """Compile a mixed list of pattern strings, ``(glob, negated)`` pairs or Patterns."""
    compiled: list[Pattern] = []
    for item in items:
        if isinstance(item, Pattern):
            compiled.append(item)
        elif isinstance(item, tuple):
            glob, negated = item
            compiled.append(compile_pattern(glob, bool(negated)))
        else:
            compiled.append(parse_pattern(str(item)))
    return tuple(compiled)


def applies(patterns: Sequence[Pattern], target: str, *, command: bool = False) -> bool:
    """Evaluate a pattern list against *target* (last matching pattern wins)."""
    matched = False
    for pattern in patterns:
        if pattern.negated:
            if matched and pattern.matches(target, command=command):
                matched = False
        elif not matched and pattern.matches(target, command=command):
            matched = True
    return matched
