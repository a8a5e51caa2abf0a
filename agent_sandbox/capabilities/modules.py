"""
Mediated Module Loader

Replaces ``__import__`` inside the capability environment. Modules come from a
capability table resolved once when the environment is built; nothing is
looked up on demand.
"""

import importlib
import logging
import types
from typing import Any, Dict, Iterable, Optional

from ..errors import PermissionDenied
from ..security.policies import ALLOWED_MODULES

logger = logging.getLogger(__name__)


class ModuleProxy:
    """
    Read-only view of a module.

    Private names and nested module objects are hidden so that agent code
    cannot walk from an allowed module to a forbidden one
    (e.g. ``json.codecs.sys``).
    """

    __slots__ = ("_lookup", "_name")

    def __init__(self, module: types.ModuleType, name: Optional[str] = None):
        name = name or module.__name__

        # Module reference lives only in this closure; every lookup is filtered
        def lookup(attr: Optional[str] = None) -> Any:
            if attr is None:
                return [
                    public for public in dir(module)
                    if not public.startswith("_")
                    and not isinstance(getattr(module, public, None), types.ModuleType)
                ]
            if attr.startswith("_"):
                raise PermissionDenied(f"Access to '{attr}' on module '{name}' is not allowed")
            value = getattr(module, attr)
            if isinstance(value, types.ModuleType):
                raise PermissionDenied(f"Access to submodule '{name}.{attr}' is not allowed")
            return value

        object.__setattr__(self, "_lookup", lookup)
        object.__setattr__(self, "_name", name)

    def __getattr__(self, name: str) -> Any:
        return self._lookup(name)

    def __setattr__(self, name: str, value: Any) -> None:
        raise PermissionDenied(f"Module '{self._name}' is read-only inside the sandbox")

    def __delattr__(self, name: str) -> None:
        raise PermissionDenied(f"Module '{self._name}' is read-only inside the sandbox")

    def __dir__(self):
        return self._lookup()

    def __repr__(self) -> str:
        return f"<sandboxed module '{self._name}'>"


class ModuleLoader:
    """
    Capability table of importable modules.

    Instances are callable with the ``__import__`` signature so they can be
    installed directly into restricted builtins.
    """

    def __init__(self, allowed: Optional[Iterable[str]] = None):
        self._table: Dict[str, ModuleProxy] = {}
        for name in (allowed if allowed is not None else ALLOWED_MODULES):
            self._table[name] = ModuleProxy(importlib.import_module(name), name)

    @property
    def names(self):
        return sorted(self._table)

    def load(self, name: str) -> ModuleProxy:
        """Resolve a module by name or raise PermissionDenied."""
        try:
            return self._table[name]
        except KeyError:
            logger.debug(f"Blocked import of {name!r}")
            raise PermissionDenied(
                f"Import of '{name}' is not allowed. Allowed modules: {', '.join(self.names)}"
            ) from None

    def __call__(self, name, globals=None, locals=None, fromlist=(), level=0):
        if level:
            raise PermissionDenied("Relative imports are not allowed")
        return self.load(name)
