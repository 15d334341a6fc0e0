"""Base snapshot store: the pristine pre-skill tree every merge starts from."""

from __future__ import annotations

import contextlib
import json
import shutil
import subprocess
from pathlib import Path
from typing import Literal

from .constants import BACKUP_DIR, BASE_DIR, BASE_EXCLUDES, BASE_INCLUDES, PACKAGE_MANIFEST, SKILLS_SCHEMA_VERSION
from .logger import get_logger
from .state import compute_file_hash, write_state
from .types import SkillState

logger = get_logger(__name__)

RestoreOutcome = Literal["restored", "deleted", "absent"]


class BaseSnapshot:
    """Path-addressed, read-only view of the base snapshot directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def path(self, rel_path: str) -> Path:
        return self.root / rel_path

    def exists(self, rel_path: str) -> bool:
        return self.path(rel_path).is_file()

    def hash(self, rel_path: str) -> str | None:
        path = self.path(rel_path)
        return compute_file_hash(path) if path.is_file() else None

    def read_text(self, rel_path: str) -> str:
        return self.path(rel_path).read_text(encoding="utf-8")

    def restore(self, rel_path: str, project_root: Path) -> RestoreOutcome:
        """Reset a working file to its pristine version.

        Paths that only exist as a skill's addition are deleted instead.
        """
        current_path = project_root / rel_path
        base_path = self.path(rel_path)

        if base_path.is_file():
            current_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(base_path, current_path)
            return "restored"
        if current_path.exists():
            current_path.unlink()
            return "deleted"
        return "absent"

    def adopt(self, rel_path: str, source: Path) -> bool:
        """Seed a missing entry from source. Existing entries are never replaced."""
        base_path = self.path(rel_path)
        if base_path.exists() or not source.is_file():
            return False
        base_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, base_path)
        return True

    def create(
        self,
        project_root: Path,
        includes: list[str] | None = None,
        excludes: set[str] | None = None,
    ) -> None:
        """Replace the snapshot wholesale with the current tree."""
        excludes = BASE_EXCLUDES if excludes is None else excludes
        if self.root.exists():
            shutil.rmtree(self.root)
        self.root.mkdir(parents=True, exist_ok=True)

        for include in includes if includes is not None else BASE_INCLUDES:
            src_path = project_root / include
            if not src_path.exists():
                continue
            dest_path = self.root / include
            if src_path.is_dir():
                _copy_dir_filtered(src_path, dest_path, excludes)
            else:
                dest_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(src_path, dest_path)


def _copy_dir_filtered(src: Path, dest: Path, excludes: set[str]) -> None:
    dest.mkdir(parents=True, exist_ok=True)
    for entry in src.iterdir():
        if entry.name in excludes:
            continue
        if entry.is_dir():
            _copy_dir_filtered(entry, dest / entry.name, excludes)
        else:
            shutil.copy2(entry, dest / entry.name)


def read_core_version(project_root: Path) -> str:
    """Read the core version from the package manifest, defaulting to 0.0.0."""
    try:
        pkg = json.loads((project_root / PACKAGE_MANIFEST).read_text(encoding="utf-8"))
        return str(pkg.get("version", "0.0.0"))
    except (OSError, ValueError):
        return "0.0.0"


def init_installation(project_root: Path | None = None) -> SkillState:
    """Snapshot the base tree and write the initial state."""
    root = (project_root or Path.cwd()).resolve()
    (root / BACKUP_DIR).mkdir(parents=True, exist_ok=True)

    BaseSnapshot(root / BASE_DIR).create(root)

    state = SkillState(
        skills_system_version=SKILLS_SCHEMA_VERSION,
        core_version=read_core_version(root),
        applied_skills=[],
    )
    write_state(root, state)

    # Let git rerere record resolutions when running inside a repository
    with contextlib.suppress(OSError, subprocess.SubprocessError):
        subprocess.run(
            ["git", "config", "--local", "rerere.enabled", "true"],
            capture_output=True,
            text=True,
            check=False,
            cwd=root,
            timeout=30,
        )

    logger.info("skills system initialized", project_root=str(root), core_version=state.core_version)
    return state
