"""Tests for skill file operations (rename, delete, move)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from skill_patch.file_ops import execute_file_ops, file_op_paths
from skill_patch.types import FileOperation

if TYPE_CHECKING:
    from pathlib import Path


def rename(src: str, dst: str) -> FileOperation:
    return FileOperation(type="rename", from_=src, to=dst)


def move(src: str, dst: str) -> FileOperation:
    return FileOperation(type="move", from_=src, to=dst)


def delete(path: str) -> FileOperation:
    return FileOperation(type="delete", path=path)


class TestExecuteFileOps:
    @pytest.fixture(autouse=True)
    def _setup(self, skills_tmp: Path) -> None:
        self.tmp_dir = skills_tmp
        (skills_tmp / "src").mkdir()
        (skills_tmp / "src" / "old.ts").write_text("old")

    def test_rename_keeps_content(self) -> None:
        result = execute_file_ops([rename("src/old.ts", "src/new.ts")], self.tmp_dir)
        assert result.success is True
        assert result.executed == [rename("src/old.ts", "src/new.ts")]
        assert (self.tmp_dir / "src" / "new.ts").read_text() == "old"
        assert not (self.tmp_dir / "src" / "old.ts").exists()

    def test_move_creates_destination_directory(self) -> None:
        result = execute_file_ops([move("src/old.ts", "lib/deep/old.ts")], self.tmp_dir)
        assert result.success is True
        assert (self.tmp_dir / "lib" / "deep" / "old.ts").exists()

    def test_delete_removes_file(self) -> None:
        result = execute_file_ops([delete("src/old.ts")], self.tmp_dir)
        assert result.success is True
        assert not (self.tmp_dir / "src" / "old.ts").exists()

    def test_delete_missing_file_is_a_warning(self) -> None:
        result = execute_file_ops([delete("src/nonexistent.ts")], self.tmp_dir)
        assert result.success is True
        assert result.errors == []
        assert len(result.warnings) == 1

    @pytest.mark.parametrize(
        ("op", "message"),
        [
            (rename("src/old.ts", "../../escaped.ts"), "escapes"),
            (delete("../outside.ts"), "escapes"),
            (rename("src/missing.ts", "src/new.ts"), "does not exist"),
            (FileOperation(type="move", from_="src/old.ts"), "requires"),
            (FileOperation(type="delete"), "requires"),
        ],
    )
    def test_invalid_operations_fail(self, op: FileOperation, message: str) -> None:
        result = execute_file_ops([op], self.tmp_dir)
        assert result.success is False
        assert message in result.errors[0]
        assert (self.tmp_dir / "src" / "old.ts").exists()

    def test_rename_onto_existing_target_fails(self) -> None:
        (self.tmp_dir / "src" / "taken.ts").write_text("taken")
        result = execute_file_ops([rename("src/old.ts", "src/taken.ts")], self.tmp_dir)
        assert result.success is False
        assert (self.tmp_dir / "src" / "taken.ts").read_text() == "taken"

    def test_stops_at_first_error(self) -> None:
        (self.tmp_dir / "src" / "keep.ts").write_text("keep")
        ops = [
            rename("src/old.ts", "src/renamed.ts"),
            rename("src/missing.ts", "src/x.ts"),
            delete("src/keep.ts"),
        ]

        result = execute_file_ops(ops, self.tmp_dir)

        assert result.success is False
        assert result.executed == ops[:1]
        assert (self.tmp_dir / "src" / "renamed.ts").exists()
        assert (self.tmp_dir / "src" / "keep.ts").exists()


class TestFileOpPaths:
    def test_lists_every_referenced_path(self) -> None:
        ops = [rename("a.ts", "b.ts"), delete("c.ts"), move("d.ts", "e/d.ts")]
        assert file_op_paths(ops) == ["a.ts", "b.ts", "c.ts", "d.ts", "e/d.ts"]

    def test_from_alias_round_trips(self) -> None:
        op = FileOperation.model_validate({"type": "rename", "from": "a.ts", "to": "b.ts"})
        assert op.from_ == "a.ts"
        assert op.model_dump(by_alias=True)["from"] == "a.ts"
