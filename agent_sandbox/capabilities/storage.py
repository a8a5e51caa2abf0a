"""
Mediated Storage

The single channel through which agent code may persist state. Statements are
filtered before they reach the real storage engine; schema-mutating and
destructive shapes are refused locally.
"""

import logging
import re
import sqlite3
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import PermissionDenied
from ..security.policies import DESTRUCTIVE_STATEMENTS, TAUTOLOGY_PATTERN

logger = logging.getLogger(__name__)

_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_FIRST_WORD = re.compile(r"^\s*(\w+)")
_DELETE_TAIL = re.compile(r"\bdelete\b(.*)$", re.IGNORECASE | re.DOTALL)
_TOKEN = re.compile(r"\(|\)|\b\w+\b")
_RETURNING = re.compile(r"\breturning\b", re.IGNORECASE)

_FORWARDED = frozenset({"run", "all", "get", "prepare"})


def _normalize(sql: str) -> str:
    text = _BLOCK_COMMENT.sub(" ", sql)
    text = _LINE_COMMENT.sub(" ", text)
    return text.strip()


def _top_level_where(text: str) -> Optional[str]:
    """Predicate text after the first WHERE outside parentheses, or None."""
    depth = 0
    for match in _TOKEN.finditer(text):
        token = match.group(0)
        if token == "(":
            depth += 1
        elif token == ")":
            depth = max(depth - 1, 0)
        elif depth == 0 and token.lower() == "where":
            return _RETURNING.split(text[match.end():], 1)[0]
    return None


def check_statement(sql: str) -> None:
    """
    Raise PermissionDenied if a statement must not be forwarded.

    Args:
        sql: Statement text as supplied by agent code
    """
    if not isinstance(sql, str) or not sql.strip():
        raise PermissionDenied("Empty or non-text SQL statement")

    text = _normalize(sql)
    # Literals may legitimately contain keywords or semicolons
    skeleton = _STRING_LITERAL.sub("''", text)

    if ";" in skeleton.rstrip().rstrip(";"):
        raise PermissionDenied("Multiple SQL statements are not allowed")

    match = _FIRST_WORD.match(skeleton)
    verb = match.group(1).lower() if match else ""

    if verb in DESTRUCTIVE_STATEMENTS:
        raise PermissionDenied(f"SQL statement '{verb.upper()}' is not allowed for agents")

    for keyword in DESTRUCTIVE_STATEMENTS:
        if verb == "with" and re.search(rf"\b{keyword}\b", skeleton, re.IGNORECASE):
            raise PermissionDenied(f"SQL statement '{keyword.upper()}' is not allowed for agents")

    # Only the DELETE itself counts; a WHERE inside a CTE or subquery does not narrow it
    tail = _DELETE_TAIL.search(skeleton) if verb in ("delete", "with") else None
    if tail:
        predicate = _top_level_where(tail.group(1))
        if predicate is None or not predicate.strip() or TAUTOLOGY_PATTERN.match(predicate):
            raise PermissionDenied("DELETE without a narrowing WHERE clause is not allowed")


class MediatedStorage:
    """
    Filtered proxy to a storage engine.

    The engine must provide ``run``, ``all``, ``get`` and ``prepare``
    (sqlite-style). Only statements passing :func:`check_statement` are
    forwarded. Not agent-exclusive: concurrent agents share the engine and
    rely on its own serialization.
    """

    __slots__ = ("_call", "_agent_name")

    def __init__(self, engine: Any, agent_name: str = "<agent>"):
        # Engine reference lives only in this closure, which filters every statement
        def call(operation: str, sql: str, params: Tuple[Any, ...]) -> Any:
            if operation not in _FORWARDED:
                raise PermissionDenied(f"Storage operation '{operation}' is not available to agents")
            try:
                check_statement(sql)
            except PermissionDenied as e:
                logger.warning(f"Blocked statement from agent {agent_name}: {e}")
                raise
            if operation == "prepare":
                return engine.prepare(sql)
            return getattr(engine, operation)(sql, tuple(params))

        object.__setattr__(self, "_call", call)
        object.__setattr__(self, "_agent_name", agent_name)

    def run(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        return self._call("run", sql, tuple(params or ()))

    def all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        return self._call("all", sql, tuple(params or ()))

    def get(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        return self._call("get", sql, tuple(params or ()))

    def prepare(self, sql: str) -> "PreparedStatement":
        self._call("prepare", sql, ())
        return PreparedStatement(self, sql)

    # Agents only ever see the filtered surface
    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        raise PermissionDenied(f"Storage operation '{name}' is not available to agents")

    def __setattr__(self, name: str, value: Any) -> None:
        raise PermissionDenied("Storage handle is read-only")

    def __repr__(self) -> str:
        return f"<MediatedStorage agent={self._agent_name!r}>"


class PreparedStatement:
    """Statement that already passed the filter, bound to its storage handle."""

    def __init__(self, storage: MediatedStorage, sql: str):
        self._storage = storage
        self.sql = sql

    def run(self, *params: Any) -> Any:
        return self._storage.run(self.sql, params)

    def all(self, *params: Any) -> List[Dict[str, Any]]:
        return self._storage.all(self.sql, params)

    def get(self, *params: Any) -> Optional[Dict[str, Any]]:
        return self._storage.get(self.sql, params)


class SqliteStorage:
    """
    Storage engine over an sqlite3 database.

    Serializes access with a lock so it can be shared by agents running on
    different threads.
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()

    def run(self, sql: str, params: Sequence[Any] = ()) -> Dict[str, Any]:
        with self._lock:
            cursor = self._conn.execute(sql, tuple(params))
            self._conn.commit()
            return {"changes": cursor.rowcount, "last_row_id": cursor.lastrowid}

    def all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(sql, tuple(params)).fetchall()
        return [dict(row) for row in rows]

    def get(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(sql, tuple(params)).fetchone()
        return dict(row) if row is not None else None

    def prepare(self, sql: str) -> str:
        # sqlite3 keeps its own statement cache
        return sql

    def executescript(self, script: str) -> None:
        """Host-side schema setup. Never exposed through MediatedStorage."""
        with self._lock:
            self._conn.executescript(script)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
