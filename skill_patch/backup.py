"""Backup, restore and transactional rollback for the skill patch engine."""

from __future__ import annotations

import shutil
from pathlib import Path
from types import TracebackType

from .constants import BACKUP_DIR
from .logger import get_logger

logger = get_logger(__name__)

TOMBSTONE_SUFFIX = ".tombstone"


def _backup_dir(project_root: Path) -> Path:
    return project_root / BACKUP_DIR


def has_backup(project_root: Path) -> bool:
    backup_dir = _backup_dir(project_root)
    return backup_dir.exists() and any(backup_dir.iterdir())


def create_backup(project_root: Path, rel_paths: list[str]) -> None:
    """Back up project files. Files that don't exist yet get a tombstone."""
    backup_dir = _backup_dir(project_root)
    backup_dir.mkdir(parents=True, exist_ok=True)

    for rel_path in rel_paths:
        abs_path = project_root / rel_path
        backup_path = backup_dir / rel_path
        backup_path.parent.mkdir(parents=True, exist_ok=True)

        if abs_path.is_file():
            shutil.copy2(abs_path, backup_path)
        else:
            # Restore will delete whatever appears at this path
            backup_path.with_name(backup_path.name + TOMBSTONE_SUFFIX).write_text("", encoding="utf-8")


def restore_backup(project_root: Path) -> None:
    """Put every backed-up file back, deleting files that had tombstones."""
    backup_dir = _backup_dir(project_root)
    if not backup_dir.exists():
        return

    for entry in sorted(backup_dir.rglob("*")):
        if entry.is_dir():
            continue
        rel = entry.relative_to(backup_dir).as_posix()
        if rel.endswith(TOMBSTONE_SUFFIX):
            original_path = project_root / rel.removesuffix(TOMBSTONE_SUFFIX)
            if original_path.is_file():
                original_path.unlink()
        else:
            original_path = project_root / rel
            original_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(entry, original_path)

    logger.info("backup restored", project_root=str(project_root))


def clear_backup(project_root: Path) -> None:
    """Remove the entire backup directory."""
    backup_dir = _backup_dir(project_root)
    if backup_dir.exists():
        shutil.rmtree(backup_dir)


class Transaction:
    """Begin/commit/rollback scope over a set of project files.

    Leaving the ``with`` block without commit() or keep() rolls back, as does
    an exception, so the tree ends up either fully old or fully new.
    """

    def __init__(self, project_root: Path, rel_paths: list[str]) -> None:
        self.project_root = project_root
        self.rel_paths = sorted(set(rel_paths))
        self.state: str = "idle"

    def begin(self) -> Transaction:
        clear_backup(self.project_root)
        create_backup(self.project_root, self.rel_paths)
        self.state = "open"
        return self

    def commit(self) -> None:
        clear_backup(self.project_root)
        self.state = "committed"

    def rollback(self) -> None:
        restore_backup(self.project_root)
        clear_backup(self.project_root)
        self.state = "rolled_back"

    def keep(self) -> None:
        """Leave the backup pending so a human can finish or abort later."""
        self.state = "kept"

    def __enter__(self) -> Transaction:
        return self.begin()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self.state == "open":
            self.rollback()
