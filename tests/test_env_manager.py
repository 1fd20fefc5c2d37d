"""Tests for env_manager lookups, defaults and caching."""

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "python"))

import env_manager


@pytest.fixture(autouse=True)
def fresh_cache():
    env_manager.clear()
    yield
    env_manager.clear()


class TestGet:
    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("MATMUL_BACKEND", raising=False)
        assert env_manager.get("MATMUL_BACKEND") == "opencl"

    def test_environment_overrides_default(self, monkeypatch):
        monkeypatch.setenv("MATMUL_BACKEND", "simulated")
        assert env_manager.get("MATMUL_BACKEND") == "simulated"

    def test_unknown_unset_variable_is_none(self, monkeypatch):
        monkeypatch.delenv("MATMUL_OPENCL_LIBRARY", raising=False)
        assert env_manager.get("MATMUL_OPENCL_LIBRARY") is None

    def test_value_cached_until_clear(self, monkeypatch):
        monkeypatch.setenv("MATMUL_SIZE", "32")
        assert env_manager.get("MATMUL_SIZE") == "32"
        monkeypatch.setenv("MATMUL_SIZE", "64")
        assert env_manager.get("MATMUL_SIZE") == "32"
        env_manager.clear()
        assert env_manager.get("MATMUL_SIZE") == "64"


class TestGetInt:
    def test_default_size(self, monkeypatch):
        monkeypatch.delenv("MATMUL_SIZE", raising=False)
        assert env_manager.get_int("MATMUL_SIZE") == 256

    def test_parsed(self, monkeypatch):
        monkeypatch.setenv("MATMUL_SIZE", "1000")
        assert env_manager.get_int("MATMUL_SIZE") == 1000

    @pytest.mark.parametrize("value", ["abc", "0", "-4", "2.5"])
    def test_invalid_rejected(self, monkeypatch, value):
        monkeypatch.setenv("MATMUL_SIZE", value)
        with pytest.raises(ValueError, match="MATMUL_SIZE"):
            env_manager.get_int("MATMUL_SIZE")


class TestGetList:
    def test_default_vendor_order(self, monkeypatch):
        monkeypatch.delenv("MATMUL_PREFERRED_VENDORS", raising=False)
        assert env_manager.get_list("MATMUL_PREFERRED_VENDORS") == ["NVIDIA", "AMD", "Intel"]

    def test_whitespace_and_empty_items_dropped(self, monkeypatch):
        monkeypatch.setenv("MATMUL_PREFERRED_VENDORS", " AMD , ,Intel,")
        assert env_manager.get_list("MATMUL_PREFERRED_VENDORS") == ["AMD", "Intel"]
