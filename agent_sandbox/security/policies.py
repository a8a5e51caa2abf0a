"""
Security Policies

The single canonical policy applied to every isolation backend: dangerous
source patterns, sensitive context keys, destructive SQL shapes and the
module capability table.

The SQL shapes are a best-effort text filter, not a parser. The tautology
check only recognizes literal always-true predicates such as `1=1`, `true`
or `x = x`; compound or range predicates (`1=1 OR x`, `id >= 0`) still pass.
"""

import re
from typing import FrozenSet, List, Tuple

# Modules agent code must never import. Matched against `import x` and
# `from x import ...` statements.
FORBIDDEN_MODULES: FrozenSet[str] = frozenset({
    "os", "sys", "subprocess", "shutil", "pathlib", "io", "tempfile", "glob",
    "socket", "ssl", "http", "urllib", "requests", "httpx", "ftplib", "smtplib",
    "ctypes", "cffi", "mmap", "multiprocessing", "threading", "signal",
    "pickle", "shelve", "marshal", "code", "codeop",
    "builtins", "importlib", "inspect", "gc", "resource", "pty",
})

# (pattern, description). Descriptions end up in AnalysisReport.violations.
DANGEROUS_PATTERNS: List[Tuple[str, str]] = [
    (r"(?<![\w.])eval\s*\(", "dynamic evaluation via eval()"),
    (r"(?<![\w.])exec\s*\(", "dynamic execution via exec()"),
    (r"(?<![\w.])compile\s*\(", "code compilation via compile()"),
    (r"__import__", "dynamic import via __import__"),
    (r"(?<![\w.])open\s*\(", "raw file access via open()"),
    (r"(?<![\w.])(getattr|setattr|delattr)\s*\(", "reflective attribute access"),
    (r"(?<![\w.])(globals|locals|vars)\s*\(", "namespace introspection"),
    (r"__(builtins|globals|subclasses|class|bases|mro|code|closure|dict|file|loader|spec)__",
     "access to interpreter internals"),
    (r"\bos\.(system|popen|environ|exec\w*|spawn\w*|fork)\b", "process access through os"),
    (r"\bsys\.(modules|path|exit|argv)\b", "interpreter state access through sys"),
]

# Keys removed from the context before it crosses into a worker.
SENSITIVE_CONTEXT_KEYS: FrozenSet[str] = frozenset({
    "database", "db", "storage", "llm_client", "api_keys", "apikeys",
    "credentials", "secrets", "password", "token",
})

# SQL statement shapes the mediated storage handle refuses to forward.
DESTRUCTIVE_STATEMENTS: FrozenSet[str] = frozenset({
    "drop", "alter", "truncate", "create", "pragma", "attach", "detach",
    "vacuum", "reindex",
})

# Literal predicates that do not narrow a DELETE. Not exhaustive.
TAUTOLOGY_PATTERN = re.compile(
    r"^\s*\(?\s*(1\s*=\s*1|true|1|'(\w*)'\s*=\s*'\2'|(\w+)\s*=\s*\3)\s*\)?\s*;?\s*$",
    re.IGNORECASE,
)

# Modules the mediated loader will resolve. Side-effect free utilities only.
ALLOWED_MODULES: Tuple[str, ...] = (
    "base64", "collections", "datetime", "difflib", "functools", "hashlib",
    "hmac", "itertools", "json", "math", "re", "statistics", "string",
    "textwrap", "uuid",
)
