"""Shared fixtures for envbuddel tests."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from envbuddel.key import KeyMaterial
from envbuddel.settings import Settings


@pytest.fixture
def temp_dir(tmp_path):
    """Provide a temporary working directory."""
    return tmp_path


@pytest.fixture
def cli_runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def test_key():
    """Provide a fixed key."""
    return KeyMaterial(bytes(range(32)))


@pytest.fixture
def other_key():
    """Provide a second fixed key different from test_key."""
    return KeyMaterial(bytes(range(100, 132)))


@pytest.fixture
def settings(temp_dir):
    """Provide settings pointing into the temporary directory."""
    return Settings(
        keyfile=temp_dir / "safe.key",
        source=temp_dir / ".env",
        vault=temp_dir / "env.enc",
    )


@pytest.fixture
def sample_tree(temp_dir):
    """Create a small environment folder."""
    root = temp_dir / "conf"
    (root / "a").mkdir(parents=True)
    (root / "a" / "b.txt").write_bytes(b"hello")
    (root / "c.txt").write_bytes(b"")
    return root


@pytest.fixture
def deny_lstat(monkeypatch):
    """Make lstat() of registered paths fail with a permission error."""
    denied = set()
    original = Path.lstat

    def lstat(self, *args, **kwargs):
        if self in denied:
            raise PermissionError(13, "Permission denied", str(self))
        return original(self, *args, **kwargs)

    monkeypatch.setattr(Path, "lstat", lstat)
    return denied.add
