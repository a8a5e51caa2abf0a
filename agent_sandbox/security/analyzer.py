"""
Security Analyzer

Static, text-level scan of agent source for disallowed constructs before any
execution is attempted.

This is advisory pattern matching, not sound static analysis. Obfuscated code
(string concatenation, encoded payloads, attribute chains built at runtime)
can slip past it. It is one layer of defense in depth; the isolation boundary
itself is the restricted namespace or the worker process.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Pattern, Tuple

from ..errors import SecurityViolation
from .policies import DANGEROUS_PATTERNS, FORBIDDEN_MODULES

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    """Outcome of a scan. ``safe`` is True when there are no violations."""
    violations: List[str] = field(default_factory=list)

    @property
    def safe(self) -> bool:
        return not self.violations


class SecurityAnalyzer:
    """
    Scans agent source against the canonical policy.

    Pure: no side effects, never executes the code under test.
    """

    def __init__(
        self,
        forbidden_modules: Optional[Iterable[str]] = None,
        patterns: Optional[Iterable[Tuple[str, str]]] = None,
    ):
        modules = sorted(forbidden_modules if forbidden_modules is not None else FORBIDDEN_MODULES)
        self.forbidden_modules = frozenset(modules)
        self._import_patterns: List[Tuple[Pattern[str], str]] = []
        for module in modules:
            name = re.escape(module)
            self._import_patterns.append((
                re.compile(
                    rf"^\s*(?:from\s+{name}(?:\.\w+)*\s+import\b|import\s+(?:[\w.]+\s*,\s*)*{name}(?:\.\w+)*\b)",
                    re.MULTILINE,
                ),
                f"import of disallowed module '{module}'",
            ))
        self._patterns: List[Tuple[Pattern[str], str]] = [
            (re.compile(pattern), description)
            for pattern, description in (patterns if patterns is not None else DANGEROUS_PATTERNS)
        ]

    def analyze(self, source: str) -> AnalysisReport:
        """
        Scan source text.

        Args:
            source: Agent source code

        Returns:
            AnalysisReport listing every matched rule
        """
        report = AnalysisReport()
        if not source:
            return report

        for pattern, description in self._import_patterns:
            if pattern.search(source):
                report.violations.append(description)

        for pattern, description in self._patterns:
            match = pattern.search(source)
            if match:
                report.violations.append(f"{description} ({match.group(0).strip()!r})")

        return report

    def check(self, source: str, agent_name: str = "<agent>") -> AnalysisReport:
        """Scan source and raise SecurityViolation when it is not safe."""
        report = self.analyze(source)
        if not report.safe:
            logger.warning(f"Agent {agent_name} failed security analysis: {report.violations}")
            raise SecurityViolation(agent_name, report.violations)
        logger.debug(f"Agent {agent_name} passed security analysis")
        return report
