# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

import re
from collections.abc import Sequence

from loguru import logger

from groeimet_sandbox.models import Language, SafetyViolation

PYTHON_PATTERNS: tuple[str, ...] = (
    r"import\s+os",
    r"import\s+subprocess",
    r"import\s+sys",
    r"__import__",
    r"eval\s*\(",
    r"exec\s*\(",
    r"compile\s*\(",
    r"open\s*\(",
    r"file\s*\(",
)
PYTHON_NETWORK_PATTERNS: tuple[str, ...] = (
    r"import\s+urllib",
    r"import\s+requests",
    r"import\s+socket",
    r"import\s+http",
)

JAVASCRIPT_PATTERNS: tuple[str, ...] = (
    r"require\s*\(",
    r"import\s*\(",
    r"eval\s*\(",
    r"Function\s*\(",
    r"setTimeout\s*\(",
    r"setInterval\s*\(",
    r"process\.",
    r"child_process",
    r"fs\.",
)
JAVASCRIPT_NETWORK_PATTERNS: tuple[str, ...] = (
    r"fetch\s*\(",
    r"XMLHttpRequest",
    r"axios",
    r"http\.",
    r"https\.",
)


class SafetyFilter:
    """Deny-list screening of source code before it reaches an interpreter.

    Patterns are checked in list order and the first one that matches anywhere
    in the source is reported. This reduces the chance of unsafe code running;
    it is not a sandbox and obfuscated calls can slip through.
    """

    def __init__(
        self,
        python_patterns: Sequence[str] = PYTHON_PATTERNS,
        python_network_patterns: Sequence[str] = PYTHON_NETWORK_PATTERNS,
        javascript_patterns: Sequence[str] = JAVASCRIPT_PATTERNS,
        javascript_network_patterns: Sequence[str] = JAVASCRIPT_NETWORK_PATTERNS,
    ):
        self._rules: dict[str, tuple[list[re.Pattern[str]], list[re.Pattern[str]]]] = {
            "python": (_compile(python_patterns), _compile(python_network_patterns)),
            "javascript": (_compile(javascript_patterns), _compile(javascript_network_patterns)),
        }
        # TypeScript is screened as the JavaScript it transpiles to.
        self._rules["typescript"] = self._rules["javascript"]

    def patterns_for(self, language: Language, allow_network: bool) -> list[re.Pattern[str]]:
        """Return the ordered pattern list applied to a language."""
        base, network = self._rules[language]
        return list(base) if allow_network else [*base, *network]

    def scan(self, source_code: str, language: Language, allow_network: bool = False) -> SafetyViolation | None:
        """Return the first violation found, or None when the code passes."""
        for pattern in self.patterns_for(language, allow_network):
            if pattern.search(source_code):
                logger.warning(f"Rejected {language} code matching {pattern.pattern!r}")
                return SafetyViolation(matched_pattern=pattern.pattern, language=language)
        return None


def _compile(patterns: Sequence[str]) -> list[re.Pattern[str]]:
    return [re.compile(p) for p in patterns]
