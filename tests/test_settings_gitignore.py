"""Tests for settings resolution and .gitignore maintenance."""

from pathlib import Path

import pytest

from envbuddel import gitignore
from envbuddel.exceptions import StorageError
from envbuddel.settings import Settings


class TestSettings:
    """Test settings precedence."""

    def test_defaults(self):
        settings = Settings.from_env(environ={})
        assert settings.keyfile == Path("safe.key")
        assert settings.source == Path(".env")
        assert settings.vault == Path("env.enc")
        assert settings.key_env == "CI_SECRET"

    def test_environment_overrides_defaults(self):
        environ = {
            "ENVBUDDEL_KEYFILE": "ci.key",
            "ENVBUDDEL_ENV_CONF": "config",
            "ENVBUDDEL_VAULT": "config.enc",
            "ENVBUDDEL_KEY_ENV": "MY_SECRET",
        }
        settings = Settings.from_env(environ=environ)
        assert settings.keyfile == Path("ci.key")
        assert settings.source == Path("config")
        assert settings.vault == Path("config.enc")
        assert settings.key_env == "MY_SECRET"

    def test_explicit_overrides_environment(self):
        settings = Settings.from_env(
            environ={"ENVBUDDEL_VAULT": "config.enc"}, vault="other.enc"
        )
        assert settings.vault == Path("other.enc")

    def test_key_from_env(self):
        settings = Settings(key_env="MY_SECRET")
        assert settings.key_from_env({"MY_SECRET": "abc"}) == "abc"
        assert settings.key_from_env({"CI_SECRET": "abc"}) is None
        assert settings.key_from_env({"MY_SECRET": ""}) is None

    def test_empty_key_env_rejected(self):
        with pytest.raises(ValueError):
            Settings(key_env="")


class TestGitignore:
    """Test .gitignore helpers."""

    def test_add_entries(self):
        content = gitignore.add_entries("*.pyc\n/safe.key\n", ["/safe.key", "/.env"])
        assert content == "*.pyc\n/safe.key\n/.env\n"

    def test_add_entries_to_empty(self):
        assert gitignore.add_entries("", ["/.env"]) == "/.env\n"

    def test_add_entries_idempotent(self):
        once = gitignore.add_entries("", ["/a", "/b"])
        assert gitignore.add_entries(once, ["/a", "/b"]) == once

    def test_find_gitignore_upward(self, temp_dir):
        (temp_dir / ".gitignore").write_text("")
        nested = temp_dir / "a" / "b"
        nested.mkdir(parents=True)
        assert gitignore.find_gitignore(nested) == (temp_dir / ".gitignore").resolve()

    def test_entry_for(self, temp_dir):
        assert gitignore.entry_for(temp_dir / "conf" / ".env", temp_dir) == "/conf/.env"
        assert gitignore.entry_for(temp_dir.parent / "x", temp_dir) is None

    def test_update_existing(self, temp_dir):
        path = temp_dir / ".gitignore"
        path.write_text("node_modules\n")
        nested = temp_dir / "sub"
        nested.mkdir()
        result = gitignore.update_gitignore(nested, [nested / "safe.key"])
        assert result == path.resolve()
        assert path.read_text() == "node_modules\n/sub/safe.key\n"

    def test_update_skips_outside_paths(self, temp_dir):
        path = temp_dir / ".gitignore"
        path.write_text("")
        gitignore.update_gitignore(temp_dir, [temp_dir.parent / "elsewhere.key"])
        assert path.read_text() == ""

    def test_update_undecodable(self, temp_dir):
        path = temp_dir / ".gitignore"
        path.write_bytes(b"caf\xe9\n")
        with pytest.raises(StorageError):
            gitignore.update_gitignore(temp_dir, [temp_dir / "safe.key"])
        assert path.read_bytes() == b"caf\xe9\n"
