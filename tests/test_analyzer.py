"""
Unit tests for the static security analyzer.
"""

import pytest

from agent_sandbox.errors import SecurityViolation
from agent_sandbox.security.analyzer import SecurityAnalyzer


SAFE_AGENT = '''
import json
import hashlib

def execute(params, context):
    digest = hashlib.sha256(params["text"].encode()).hexdigest()
    return {"digest": digest, "echo": json.dumps(params)}
'''


class TestSecurityAnalyzer:
    """Test suite for SecurityAnalyzer."""

    @pytest.fixture
    def analyzer(self):
        return SecurityAnalyzer()

    def test_safe_source(self, analyzer):
        """Plain agent code passes."""
        report = analyzer.analyze(SAFE_AGENT)
        assert report.safe
        assert report.violations == []

    def test_empty_source_is_safe(self, analyzer):
        """Nothing to scan means nothing to report."""
        assert analyzer.analyze("").safe

    @pytest.mark.parametrize("source", [
        "import os",
        "import subprocess",
        "from pathlib import Path",
        "import json, socket",
        "from os.path import join",
        "import urllib.request",
        "    import ctypes",
        "import importlib",
    ])
    def test_forbidden_imports(self, analyzer, source):
        """Imports of process, filesystem and network modules are rejected."""
        report = analyzer.analyze(source)
        assert not report.safe
        assert any("disallowed module" in v for v in report.violations)

    @pytest.mark.parametrize("source", [
        "eval('1 + 1')",
        "exec(code)",
        "compile(src, 'x', 'exec')",
        "__import__('os')",
        "open('/etc/passwd')",
        "getattr(obj, name)",
        "globals()",
        "().__class__.__bases__[0].__subclasses__()",
        "fn.__globals__",
        "f.__code__",
        "obj.__dict__",
    ])
    def test_dangerous_patterns(self, analyzer, source):
        """Dynamic evaluation and interpreter internals are rejected."""
        assert not analyzer.analyze(source).safe

    def test_similar_names_are_not_flagged(self, analyzer):
        """Identifiers that merely contain a keyword pass."""
        source = "def execute(params, context):\n    return params.reopen(1) + retrieval(2)\n"
        assert analyzer.analyze(source).safe

    def test_module_names_inside_words_are_not_flagged(self, analyzer):
        """Only real import statements count."""
        assert analyzer.analyze("import osmium_helpers").safe is True

    def test_multiple_violations_reported(self, analyzer):
        """Every matched rule is listed."""
        report = analyzer.analyze("import os\neval('x')\n")
        assert len(report.violations) == 2

    def test_check_raises(self, analyzer):
        """check() raises SecurityViolation carrying the violations."""
        with pytest.raises(SecurityViolation) as exc_info:
            analyzer.check("import sys", agent_name="Sneaky")

        assert exc_info.value.agent_name == "Sneaky"
        assert exc_info.value.violations

    def test_check_returns_report_when_safe(self, analyzer):
        """check() returns the report for safe code."""
        assert analyzer.check(SAFE_AGENT).safe

    def test_custom_policy(self):
        """Forbidden modules can be overridden."""
        analyzer = SecurityAnalyzer(forbidden_modules=["json"], patterns=[])
        assert not analyzer.analyze("import json").safe
        assert analyzer.analyze("import os").safe
