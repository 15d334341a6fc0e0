"""Tests for replay memory: conflict tokens and the directory-backed backend."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from skill_patch.config import Settings
from skill_patch.context import InstallContext
from skill_patch.memory import (
    GitRerereMemory,
    LocalMemory,
    MergeSides,
    conflict_hunks,
    conflict_token,
    normalize_conflicts,
    open_memory,
    split_conflicts,
)
from skill_patch.types import SkillState

from .conftest import init_git_repo

if TYPE_CHECKING:
    from pathlib import Path

PREIMAGE = (
    "head\n"
    "<<<<<<< current\n"
    "line1-from-A\n"
    "||||||| base\n"
    "line1\n"
    "=======\n"
    "line1-from-B\n"
    ">>>>>>> skill\n"
    "tail\n"
)

SIDES = MergeSides(base="head\nline1\ntail\n", ours="head\nline1-from-A\ntail\n", theirs="head\nline1-from-B\ntail\n")


class TestConflictToken:
    def test_extracts_both_sides_of_each_hunk(self) -> None:
        assert conflict_hunks(PREIMAGE) == [("line1-from-A\n", "line1-from-B\n")]

    def test_no_conflict_means_no_token(self) -> None:
        assert conflict_token("just text\n") is None

    def test_labels_and_side_order_do_not_change_token(self) -> None:
        swapped = (
            "<<<<<<< ours\n"
            "line1-from-B\n"
            "=======\n"
            "line1-from-A\n"
            ">>>>>>> theirs\n"
        )
        assert conflict_token(swapped) == conflict_token(PREIMAGE)

    def test_different_hunks_give_different_tokens(self) -> None:
        other = PREIMAGE.replace("line1-from-B", "line1-from-C")
        assert conflict_token(other) != conflict_token(PREIMAGE)


class TestNormalizeConflicts:
    def test_drops_labels_and_base_and_sorts_sides(self) -> None:
        assert normalize_conflicts(PREIMAGE) == (
            "head\n<<<<<<<\nline1-from-A\n=======\nline1-from-B\n>>>>>>>\ntail\n"
        )

    def test_split_keeps_plain_lines_around_regions(self) -> None:
        assert split_conflicts(PREIMAGE) == ["head\n", ("line1-from-A\n", "line1-from-B\n"), "tail\n"]

    def test_unterminated_region_is_dropped(self) -> None:
        truncated = "head\n<<<<<<< current\nline1-from-A\n=======\n"
        assert normalize_conflicts(truncated) == "head\n"
        assert conflict_hunks(truncated) == []


class TestLocalMemory:
    @pytest.fixture(autouse=True)
    def _setup(self, skills_tmp: Path) -> None:
        self.work = skills_tmp / "config.ts"
        self.memory = LocalMemory(skills_tmp / "rr-cache")

    def test_unknown_conflict_has_no_resolution(self) -> None:
        self.work.write_text(PREIMAGE)
        token = self.memory.record_preimage("config.ts", self.work, SIDES)

        assert token == conflict_token(PREIMAGE)
        assert self.memory.lookup_by_preimage("config.ts", self.work) is None

    def test_committed_resolution_is_replayed(self) -> None:
        self.work.write_text(PREIMAGE)
        self.memory.record_preimage("config.ts", self.work, SIDES)
        self.work.write_text("head\nline1-merged\ntail\n")
        self.memory.commit_resolution("config.ts", self.work)

        # Same conflict again
        self.work.write_text(PREIMAGE)
        self.memory.record_preimage("config.ts", self.work, SIDES)
        assert self.memory.lookup_by_preimage("config.ts", self.work) == "head\nline1-merged\ntail\n"

    def test_seeded_pair_is_replayed(self) -> None:
        token = self.memory.token_for(PREIMAGE)
        assert token is not None
        self.memory.seed(token, PREIMAGE, "resolved\n")

        self.work.write_text(PREIMAGE)
        self.memory.record_preimage("config.ts", self.work, SIDES)
        assert self.memory.lookup_by_preimage("config.ts", self.work) == "resolved\n"

    def test_same_hunk_in_different_surroundings_is_not_reused(self) -> None:
        self.memory.seed(conflict_token(PREIMAGE) or "", PREIMAGE, "resolved\n")

        self.work.write_text(PREIMAGE.replace("tail\n", "another tail\n"))
        self.memory.record_preimage("config.ts", self.work, SIDES)
        assert self.memory.lookup_by_preimage("config.ts", self.work) is None

    def test_discard_forgets_registered_conflict(self) -> None:
        self.work.write_text(PREIMAGE)
        self.memory.record_preimage("config.ts", self.work, SIDES)
        self.memory.discard("config.ts")

        assert self.memory.commit_resolution("config.ts", self.work) is None


class TestOpenMemory:
    def _ctx(self, root: Path, backend: str) -> InstallContext:
        state = SkillState(skills_system_version="0.1.0", core_version="1.0.0")
        return InstallContext(project_root=root, state=state, settings=Settings(merge_memory=backend))

    def test_auto_picks_local_outside_git(self, skills_tmp: Path) -> None:
        assert isinstance(open_memory(self._ctx(skills_tmp, "auto")), LocalMemory)

    def test_auto_picks_git_inside_repo(self, skills_tmp: Path) -> None:
        init_git_repo(skills_tmp)
        assert isinstance(open_memory(self._ctx(skills_tmp, "auto")), GitRerereMemory)

    def test_explicit_local(self, skills_tmp: Path) -> None:
        init_git_repo(skills_tmp)
        memory = open_memory(self._ctx(skills_tmp, "local"))
        assert isinstance(memory, LocalMemory)
        assert memory.cache_dir == skills_tmp / ".skillpatch" / "rr-cache"


class TestGitRerereMemory:
    @pytest.fixture(autouse=True)
    def _setup(self, skills_tmp: Path) -> None:
        init_git_repo(skills_tmp)
        self.tmp_dir = skills_tmp
        self.memory = GitRerereMemory(skills_tmp)

    def test_token_matches_local_backend(self, skills_tmp: Path) -> None:
        assert self.memory.token_for(PREIMAGE) == LocalMemory(skills_tmp / "x").token_for(PREIMAGE)

    def test_seed_writes_normalized_preimage(self) -> None:
        token = self.memory.token_for(PREIMAGE) or ""
        self.memory.seed(token, PREIMAGE, "resolved\n")

        entry = self.memory.rr_cache_dir / token
        assert (entry / "preimage").read_text() == normalize_conflicts(PREIMAGE)
        assert (entry / "postimage").read_text() == "resolved\n"

    def test_discard_removes_merge_state(self) -> None:
        (self.memory.git_dir / "MERGE_HEAD").write_text("deadbeef\n")
        (self.memory.git_dir / "MERGE_MSG").write_text("stale\n")
        (self.memory.git_dir / "MERGE_RR").write_text("0123abcd\tconfig.ts\0")

        self.memory.discard("config.ts")

        assert not (self.memory.git_dir / "MERGE_HEAD").exists()
        assert not (self.memory.git_dir / "MERGE_MSG").exists()
        assert not (self.memory.git_dir / "MERGE_RR").exists()

    def test_seeded_resolution_replays_after_earlier_discard(self) -> None:
        work_path = self.tmp_dir / "config.ts"
        work_path.write_text(PREIMAGE)
        self.memory.record_preimage("config.ts", work_path, SIDES)
        assert self.memory.lookup_by_preimage("config.ts", work_path) is None
        self.memory.discard("config.ts")

        token = self.memory.token_for(PREIMAGE) or ""
        self.memory.seed(token, PREIMAGE, "head\nline1-from-A\nline1-from-B\ntail\n")
        work_path.write_text(PREIMAGE)
        self.memory.record_preimage("config.ts", work_path, SIDES)

        assert self.memory.lookup_by_preimage("config.ts", work_path) == "head\nline1-from-A\nline1-from-B\ntail\n"
