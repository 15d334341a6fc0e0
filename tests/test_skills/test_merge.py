"""Tests for the merge module (git merge-file wrapper)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from skill_patch.errors import MergeError
from skill_patch.merge import has_conflict_markers, is_git_repo, merge_file, merge_into

from .conftest import init_git_repo

if TYPE_CHECKING:
    from pathlib import Path


class TestIsGitRepo:
    def test_returns_true_in_git_repo(self, skills_tmp: Path) -> None:
        init_git_repo(skills_tmp)
        assert is_git_repo() is True

    def test_returns_false_outside_git_repo(self, skills_tmp: Path) -> None:
        assert is_git_repo() is False


class TestHasConflictMarkers:
    def test_detects_marker_at_line_start(self) -> None:
        assert has_conflict_markers("a\n<<<<<<< current\nb\n=======\nc\n>>>>>>> skill\n") is True

    def test_ignores_marker_text_mid_line(self) -> None:
        assert has_conflict_markers("x = '<<<<<<<'\n") is False


class TestMergeFile:
    @pytest.fixture(autouse=True)
    def _setup(self, skills_tmp: Path) -> None:
        self.tmp_dir = skills_tmp
        self.base = skills_tmp / "base.txt"
        self.current = skills_tmp / "current.txt"
        self.skill = skills_tmp / "skill.txt"

    def test_clean_merge_with_no_overlapping_changes(self) -> None:
        self.base.write_text("line1\nline2\nline3\n")
        self.current.write_text("line1-modified\nline2\nline3\n")
        self.skill.write_text("line1\nline2\nline3-modified\n")

        result = merge_file(self.current, self.base, self.skill)
        assert result.clean is True
        assert result.conflicts == 0

        merged = self.current.read_text()
        assert "line1-modified" in merged
        assert "line3-modified" in merged

    def test_conflict_with_overlapping_changes(self) -> None:
        self.base.write_text("line1\nline2\nline3\n")
        self.current.write_text("line1-ours\nline2\nline3\n")
        self.skill.write_text("line1-theirs\nline2\nline3\n")

        result = merge_file(self.current, self.base, self.skill)
        assert result.clean is False
        assert result.conflicts == 1

        merged = self.current.read_text()
        assert "<<<<<<< current" in merged
        assert "||||||| base" in merged
        assert ">>>>>>> skill" in merged
        assert "line1-ours" in merged
        assert "line1-theirs" in merged

    def test_identical_inputs_merge_to_themselves(self) -> None:
        content = "alpha\nbeta\ngamma\n"
        for path in (self.base, self.current, self.skill):
            path.write_text(content)

        result = merge_file(self.current, self.base, self.skill)
        assert result.clean is True
        assert self.current.read_text() == content

    def test_same_change_on_both_sides_is_clean(self) -> None:
        self.base.write_text("line1\n")
        self.current.write_text("line1-changed\n")
        self.skill.write_text("line1-changed\n")

        result = merge_file(self.current, self.base, self.skill)
        assert result.clean is True
        assert self.current.read_text() == "line1-changed\n"

    def test_missing_input_raises_merge_error(self) -> None:
        self.current.write_text("line1\n")
        self.skill.write_text("line1\n")

        with pytest.raises(MergeError):
            merge_file(self.current, self.tmp_dir / "nope.txt", self.skill)


class TestMergeInto:
    def test_returns_pre_merge_content_and_writes_result(self, skills_tmp: Path) -> None:
        base = skills_tmp / "base.txt"
        current = skills_tmp / "current.txt"
        skill = skills_tmp / "skill.txt"
        base.write_text("line1\n")
        current.write_text("line1-from-A\n")
        skill.write_text("line1-from-B\n")

        result, ours = merge_into(current, base, skill)

        assert result.clean is False
        assert ours == "line1-from-A\n"
        assert has_conflict_markers(current.read_text())
        # The skill side is read, never written
        assert skill.read_text() == "line1-from-B\n"
