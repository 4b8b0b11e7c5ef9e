"""Path policy deciding which forwarded URIs require step-up verification."""
from __future__ import annotations

import logging
import re
from typing import Iterable

logger = logging.getLogger(__name__)


def compile_glob(pattern: str) -> re.Pattern[str]:
    """Translate a ``*``/``?`` glob into an anchored regular expression."""

    escaped = re.escape(pattern.strip())
    escaped = escaped.replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(f"^{escaped}$")


class StepUpMatcher:
    """Compiled step-up policy.

    Patterns are compiled once; one that fails to compile is logged and
    dropped.
    """

    def __init__(self, patterns: Iterable[str] = (), *, enabled: bool = True) -> None:
        self._enabled = enabled
        compiled: list[re.Pattern[str]] = []
        for pattern in patterns:
            if not pattern or not pattern.strip():
                continue
            try:
                compiled.append(compile_glob(pattern))
            except re.error:
                logger.warning("ignoring invalid step-up pattern %r", pattern, exc_info=True)
        self._patterns: tuple[re.Pattern[str], ...] = tuple(compiled)

    @property
    def enabled(self) -> bool:
        return self._enabled and bool(self._patterns)

    def matches(self, path: str) -> bool:
        if not self.enabled:
            return False
        return any(pattern.match(path) for pattern in self._patterns)


__all__ = ["StepUpMatcher", "compile_glob"]
