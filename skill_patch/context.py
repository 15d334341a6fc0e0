"""Per-operation installation context.

Every mutating operation loads one InstallContext at the start, threads it
through the helpers it calls, and writes the state back once at the end.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import Settings, load_settings
from .constants import (
    BACKUP_DIR,
    BASE_DIR,
    CUSTOM_DIR,
    LOCK_FILE,
    MEMORY_DIR,
    PENDING_FILE,
    RESOLUTIONS_DIR,
    SHIPPED_RESOLUTIONS_DIR,
)
from .state import read_state, write_state
from .types import SkillState


@dataclass
class InstallContext:
    project_root: Path
    state: SkillState
    settings: Settings

    @classmethod
    def load(cls, project_root: Path | None = None, settings: Settings | None = None) -> InstallContext:
        root = (project_root or Path.cwd()).resolve()
        return cls(
            project_root=root,
            state=read_state(root),
            settings=settings or load_settings(root),
        )

    def save(self) -> None:
        write_state(self.project_root, self.state)

    @property
    def base_dir(self) -> Path:
        return self.project_root / BASE_DIR

    @property
    def backup_dir(self) -> Path:
        return self.project_root / BACKUP_DIR

    @property
    def lock_path(self) -> Path:
        return self.project_root / LOCK_FILE

    @property
    def custom_dir(self) -> Path:
        return self.project_root / CUSTOM_DIR

    @property
    def memory_dir(self) -> Path:
        return self.project_root / MEMORY_DIR

    @property
    def pending_path(self) -> Path:
        return self.project_root / PENDING_FILE

    @property
    def skills_root(self) -> Path:
        return self.project_root / self.settings.skills_dir

    @property
    def resolution_roots(self) -> list[Path]:
        """Lookup order: maintainer-shipped first, then locally generated."""
        return [
            self.project_root / SHIPPED_RESOLUTIONS_DIR,
            self.project_root / RESOLUTIONS_DIR,
        ]

    @property
    def local_resolutions_dir(self) -> Path:
        return self.project_root / RESOLUTIONS_DIR
