"""
Sandbox Errors

Exception hierarchy for agent execution and the mapping from exceptions
(or error text received from a worker) onto the ErrorKind taxonomy.
"""

import re
from typing import Optional

from .models import ErrorKind


class SandboxError(Exception):
    """Base exception for sandbox-related errors."""
    pass


class SecurityViolation(SandboxError):
    """Raised when static analysis rejects agent source."""

    def __init__(self, agent_name: str, violations):
        self.agent_name = agent_name
        self.violations = list(violations)
        super().__init__(
            f"Security violation in agent '{agent_name}': " + "; ".join(self.violations)
        )


class PermissionDenied(SandboxError):
    """Raised when agent code asks for a capability it was not granted."""
    pass


class AgentContractError(SandboxError):
    """Raised when agent source does not honour the execute(params, context) contract."""
    pass


_SECURITY_TEXT = re.compile(r"security|dangerous pattern", re.IGNORECASE)
_PERMISSION_TEXT = re.compile(r"permission|not allowed|denied|forbidden", re.IGNORECASE)
_MEMORY_TEXT = re.compile(r"memory|heap|out of memory|cannot allocate", re.IGNORECASE)


def categorize_message(message: Optional[str]) -> ErrorKind:
    """
    Infer an ErrorKind from error text.

    Used for errors that only survive as strings, e.g. after crossing the
    worker pipe.
    """
    if not message:
        return ErrorKind.RUNTIME
    if _SECURITY_TEXT.search(message):
        return ErrorKind.SECURITY
    if _PERMISSION_TEXT.search(message):
        return ErrorKind.PERMISSION
    if _MEMORY_TEXT.search(message):
        return ErrorKind.MEMORY
    return ErrorKind.RUNTIME


def categorize_error(error: BaseException) -> ErrorKind:
    """
    Map an exception raised by agent code onto an ErrorKind.

    Known exception types win; anything else is categorized by its message.
    """
    if isinstance(error, SecurityViolation):
        return ErrorKind.SECURITY
    if isinstance(error, (PermissionDenied, PermissionError)):
        return ErrorKind.PERMISSION
    if isinstance(error, MemoryError):
        return ErrorKind.MEMORY
    if isinstance(error, AgentContractError):
        return ErrorKind.RUNTIME
    return categorize_message(str(error))


def describe_error(error: BaseException) -> str:
    """Human-readable one-liner for an exception."""
    message = str(error)
    if not message:
        return type(error).__name__
    return f"{type(error).__name__}: {message}"
