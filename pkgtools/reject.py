"""
Reject rules: paths the package tools must never install or remove.

Each non-blank, non-comment line of reject.conf is a POSIX extended
regular expression matched (unanchored) against the package-relative path:

    # keep local configuration
    ^etc/myapp\\.conf$
    ^etc/rc\\.d/
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Pattern

from .errors import InvalidRule, PkgError
from .paths import strip_dot_slash

log = logging.getLogger("pkgtools")

# POSIX bracket expressions that Python's re does not understand
_POSIX_CLASSES = {
    "[:alnum:]": "a-zA-Z0-9",
    "[:alpha:]": "a-zA-Z",
    "[:blank:]": " \\t",
    "[:cntrl:]": "\\x00-\\x1f\\x7f",
    "[:digit:]": "0-9",
    "[:graph:]": "\\x21-\\x7e",
    "[:lower:]": "a-z",
    "[:print:]": "\\x20-\\x7e",
    "[:punct:]": "!-/:-@\\[-`{-~",
    "[:space:]": " \\t\\n\\r\\f\\v",
    "[:upper:]": "A-Z",
    "[:xdigit:]": "0-9A-Fa-f",
}


def _translate(pattern: str) -> str:
    for posix, ranges in _POSIX_CLASSES.items():
        pattern = pattern.replace(posix, ranges)
    return pattern


def compile_rule(pattern: str, lineno: int = 0) -> Pattern[str]:
    try:
        return re.compile(_translate(pattern))
    except re.error as e:
        raise InvalidRule(pattern, lineno, str(e)) from e


class RejectRuleSet:
    def __init__(self, rules: Iterable[Pattern[str]] = ()):
        self._rules: List[Pattern[str]] = list(rules)

    @classmethod
    def from_patterns(cls, patterns: Iterable[str]) -> "RejectRuleSet":
        return cls(compile_rule(p, i) for i, p in enumerate(patterns, 1))

    @classmethod
    def load(cls, path: Path) -> "RejectRuleSet":
        """Parse `path`; a missing file is an empty rule set."""
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return cls()
        except (OSError, UnicodeDecodeError) as e:
            raise PkgError(f"{path}: read error: {e}") from e

        rules = []
        for lineno, line in enumerate(text.split("\n"), 1):
            if not line or line.startswith("#"):
                continue
            rules.append(compile_rule(line, lineno))
        log.debug("loaded %d reject rule(s) from %s", len(rules), path)
        return cls(rules)

    def matches(self, relpath: str) -> bool:
        relpath = strip_dot_slash(relpath)
        return any(rule.search(relpath) for rule in self._rules)

    @property
    def patterns(self) -> List[str]:
        return [r.pattern for r in self._rules]

    def __len__(self) -> int:
        return len(self._rules)

    def __bool__(self) -> bool:
        return bool(self._rules)
