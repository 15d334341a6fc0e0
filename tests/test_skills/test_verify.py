"""Tests for post-replay verification helpers."""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING

import pytest

from skill_patch.state import record_custom_modification, record_skill_application
from skill_patch.verify import reapply_custom_patches, run_command, run_skill_tests

from .conftest import create_minimal_state, create_skill_package, init_git_repo, load_ctx

if TYPE_CHECKING:
    from pathlib import Path


class TestRunCommand:
    def test_success_captures_output(self, skills_tmp: Path) -> None:
        passed, output = run_command("echo hello", skills_tmp, timeout=10)
        assert passed is True
        assert output == "hello"

    def test_failure_includes_stderr(self, skills_tmp: Path) -> None:
        passed, output = run_command("echo broken >&2; exit 3", skills_tmp, timeout=10)
        assert passed is False
        assert "broken" in output

    def test_runs_from_project_root(self, skills_tmp: Path) -> None:
        (skills_tmp / "marker.txt").write_text("x")
        passed, _ = run_command("test -f marker.txt", skills_tmp, timeout=10)
        assert passed is True

    def test_timeout_is_a_failure(self, skills_tmp: Path) -> None:
        passed, output = run_command("sleep 5", skills_tmp, timeout=0.2)
        assert passed is False
        assert "timed out" in output


class TestRunSkillTests:
    def test_skips_skills_without_tests(self, data_dir: Path) -> None:
        create_minimal_state(data_dir)
        with_test = create_skill_package(data_dir, skill="a", test="true")
        failing = create_skill_package(data_dir, skill="b", test="false")
        no_test = create_skill_package(data_dir, skill="c")

        results = run_skill_tests({"a": with_test, "b": failing, "c": no_test}, load_ctx(data_dir))

        assert results == {"a": True, "b": False}


class TestReapplyCustomPatches:
    @pytest.fixture(autouse=True)
    def _setup(self, data_dir: Path) -> None:
        self.tmp_dir = data_dir
        create_minimal_state(data_dir)
        (data_dir / "src").mkdir(exist_ok=True)
        (data_dir / "src" / "config.ts").write_text("line1\nline2\n")
        init_git_repo(data_dir)

    def _make_patch(self, name: str) -> str:
        config = self.tmp_dir / "src" / "config.ts"
        config.write_text("line1\nline2 patched\n")
        diff = subprocess.run(
            ["git", "diff", "--", "src/config.ts"],
            cwd=self.tmp_dir,
            capture_output=True,
            text=True,
            check=True,
        ).stdout
        subprocess.run(["git", "checkout", "--", "src/config.ts"], cwd=self.tmp_dir, check=True)
        patch_rel = f".skillpatch/custom/{name}"
        (self.tmp_dir / patch_rel).parent.mkdir(parents=True, exist_ok=True)
        (self.tmp_dir / patch_rel).write_text(diff)
        return patch_rel

    def test_applies_standalone_modification(self) -> None:
        patch_rel = self._make_patch("001-tweak.patch")
        ctx = load_ctx(self.tmp_dir)
        record_custom_modification(ctx.state, "tweak", ["src/config.ts"], patch_rel)

        assert reapply_custom_patches(ctx) == []
        assert (self.tmp_dir / "src" / "config.ts").read_text() == "line1\nline2 patched\n"

    def test_skill_patch_only_for_requested_skills(self) -> None:
        patch_rel = self._make_patch("telegram.patch")
        ctx = load_ctx(self.tmp_dir)
        entry = record_skill_application(ctx.state, "telegram", "1.0.0", {})
        entry.custom_patch = patch_rel

        assert reapply_custom_patches(ctx, skills=[]) == []
        assert (self.tmp_dir / "src" / "config.ts").read_text() == "line1\nline2\n"

    def test_missing_patch_is_reported(self) -> None:
        ctx = load_ctx(self.tmp_dir)
        record_custom_modification(ctx.state, "gone", ["src/config.ts"], ".skillpatch/custom/missing.patch")
        assert reapply_custom_patches(ctx) == [".skillpatch/custom/missing.patch"]
