"""Window class -> display string rewriting, memoized per class."""

from __future__ import annotations

import re
from typing import Any

from . import metrics
from .log import log

_DOLLAR_REF = re.compile(r"\$(\d+)|\$\{(\d+)\}")


def _python_template(replacement: str) -> str:
    """Accept '$1' / '${1}' back-references alongside Python's '\\1'."""
    return _DOLLAR_REF.sub(lambda m: "\\g<" + (m.group(1) or m.group(2)) + ">", replacement)


class RewriteEngine:
    """
    Ordered regex rules (full, case-insensitive match), first match wins.
    Unmatched classes map to `default`. Results are cached for the engine's lifetime.
    """

    def __init__(self, rules: Any, default: str = "?"):
        self.default = default
        self.rules: list[tuple[re.Pattern, str]] = []
        self._cache: dict[str, str] = {}

        if not isinstance(rules, dict):
            if rules:
                log.warning("window-rewrite must be an object, ignoring: %r", rules)
            return
        for pat, repl in rules.items():
            if not isinstance(pat, str) or not isinstance(repl, str):
                log.warning("Invalid window-rewrite rule skipped: %r -> %r", pat, repl)
                continue
            try:
                self.rules.append((re.compile(pat, re.IGNORECASE), _python_template(repl)))
            except re.error as e:
                log.error("Invalid rule %s: %s", pat, e)
                metrics.inc("invalid_regex_patterns")

    def _rewrite_once(self, window_class: str) -> str | None:
        for rule, repl in self.rules:
            if rule.fullmatch(window_class):
                try:
                    return rule.sub(repl, window_class)
                except (re.error, IndexError) as e:
                    log.error("Rewrite of %r by %s failed: %s", window_class, rule.pattern, e)
                    return None
        return None

    def get(self, window_class: str) -> str:
        cached = self._cache.get(window_class)
        if cached is not None:
            return cached

        rewritten = self._rewrite_once(window_class)
        if rewritten is None:
            rewritten = self.default

        self._cache[window_class] = rewritten
        metrics.set_value("rewrite_cache_size", len(self._cache))
        return rewritten

    __call__ = get

    def __len__(self) -> int:
        return len(self._cache)
