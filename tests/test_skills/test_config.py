"""Tests for engine settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from skill_patch.config import Settings, load_settings, read_env_file
from skill_patch.errors import ConfigError


class TestReadEnvFile:
    def test_returns_only_requested_keys(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text(
            "# comment\n"
            "SKILLPATCH_MERGE_MEMORY=local\n"
            "UNRELATED=1\n"
            "SKILLPATCH_TEST_TIMEOUT='30'\n"
            'SKILLPATCH_SKILLS_DIR="vendor/skills"\n'
            "SKILLPATCH_INSTALL_TIMEOUT=\n"
            "not a pair\n"
        )
        values = read_env_file(
            tmp_path,
            ["SKILLPATCH_MERGE_MEMORY", "SKILLPATCH_TEST_TIMEOUT", "SKILLPATCH_SKILLS_DIR", "SKILLPATCH_INSTALL_TIMEOUT"],
        )
        assert values == {
            "SKILLPATCH_MERGE_MEMORY": "local",
            "SKILLPATCH_TEST_TIMEOUT": "30",
            "SKILLPATCH_SKILLS_DIR": "vendor/skills",
        }

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert read_env_file(tmp_path, ["SKILLPATCH_MERGE_MEMORY"]) == {}


class TestLoadSettings:
    def test_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path)
        assert settings == Settings()
        assert settings.skills_dir == Path(".claude/skills")
        assert settings.merge_memory == "auto"
        assert settings.install_command == ["npm", "install", "--legacy-peer-deps"]

    def test_env_file_values_are_used(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text(
            "SKILLPATCH_MERGE_TIMEOUT=12.5\nSKILLPATCH_INSTALL_COMMAND=pnpm install --frozen-lockfile\n"
        )
        settings = load_settings(tmp_path)
        assert settings.merge_timeout == 12.5
        assert settings.install_command == ["pnpm", "install", "--frozen-lockfile"]

    def test_environment_wins_over_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / ".env").write_text("SKILLPATCH_MERGE_MEMORY=git\n")
        monkeypatch.setenv("SKILLPATCH_MERGE_MEMORY", "LOCAL")
        assert load_settings(tmp_path).merge_memory == "local"

    def test_invalid_values_raise_config_error(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SKILLPATCH_MERGE_MEMORY", "svn")
        with pytest.raises(ConfigError):
            load_settings(tmp_path)

    def test_settings_are_frozen(self) -> None:
        with pytest.raises(ValueError):
            Settings().merge_timeout = 1.0  # type: ignore[misc]
