"""
Tests for the mediated module loader.
"""

import json

import pytest

from agent_sandbox.capabilities.modules import ModuleLoader, ModuleProxy
from agent_sandbox.errors import PermissionDenied


class TestModuleLoader:
    """Capability table lookups."""

    @pytest.fixture
    def loader(self):
        return ModuleLoader()

    def test_allowed_module(self, loader):
        module = loader.load("json")
        assert isinstance(module, ModuleProxy)
        assert module.loads("[1, 2]") == [1, 2]

    def test_disallowed_module(self, loader):
        with pytest.raises(PermissionDenied, match="Import of 'random' is not allowed"):
            loader.load("random")

    def test_import_signature(self, loader):
        """The loader can stand in for __import__."""
        module = loader("math", {}, {}, (), 0)
        assert module.sqrt(16) == 4.0

    def test_relative_import_denied(self, loader):
        with pytest.raises(PermissionDenied, match="Relative imports"):
            loader("sibling", {}, {}, ("thing",), 1)

    def test_custom_table(self):
        loader = ModuleLoader(allowed=["math"])
        assert loader.names == ["math"]
        with pytest.raises(PermissionDenied):
            loader.load("json")


class TestModuleProxy:
    """Read-only module views."""

    @pytest.fixture
    def proxy(self):
        return ModuleProxy(json)

    def test_private_names_hidden(self, proxy):
        with pytest.raises(PermissionDenied):
            proxy._default_encoder

    def test_internal_slots_do_not_expose_module(self, proxy):
        """The proxy's own slot only performs filtered lookups."""
        with pytest.raises(PermissionDenied):
            proxy._lookup("_default_decoder")

    def test_submodules_hidden(self, proxy):
        """No walking from an allowed module to another module."""
        with pytest.raises(PermissionDenied, match="submodule"):
            proxy.decoder

    def test_read_only(self, proxy):
        with pytest.raises(PermissionDenied):
            proxy.dumps = lambda value: "patched"
        with pytest.raises(PermissionDenied):
            del proxy.dumps
        assert json.dumps(1) == "1"

    def test_dir_lists_public_names(self, proxy):
        names = dir(proxy)
        assert "dumps" in names
        assert "decoder" not in names
        assert not any(name.startswith("_") for name in names)
