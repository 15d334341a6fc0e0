"""Skill patch engine: apply, replay and uninstall declarative skill packages."""

from __future__ import annotations

from .apply import abort_apply, apply_skill, complete_apply
from .backup import Transaction, clear_backup, create_backup, restore_backup
from .base import BaseSnapshot, init_installation
from .config import Settings, load_settings
from .constants import (
    BACKUP_DIR,
    BASE_DIR,
    DATA_DIR,
    LOCK_FILE,
    RESOLUTIONS_DIR,
    SHIPPED_RESOLUTIONS_DIR,
    SKILLS_SCHEMA_VERSION,
    STATE_FILE,
)
from .context import InstallContext
from .errors import (
    ConfigError,
    LockError,
    ManifestError,
    MergeError,
    MissingDependencyError,
    SkillPatchError,
    StateError,
    StructuredMergeError,
)
from .file_ops import execute_file_ops
from .lock import acquire_lock, hold_lock, is_locked, release_lock
from .manifest import (
    check_conflicts,
    check_core_version,
    check_dependencies,
    check_system_version,
    compute_overlaps,
    find_skill_dir,
    read_all_manifests,
    read_manifest,
)
from .memory import GitRerereMemory, LocalMemory, ResolutionMemory, open_memory
from .merge import has_conflict_markers, is_git_repo, merge_file
from .replay import replay_skills
from .resolution_cache import (
    clear_all_resolutions,
    find_resolution_dir,
    load_resolutions,
    record_resolutions,
    save_resolution,
)
from .state import (
    compare_semver,
    compute_file_hash,
    read_state,
    record_custom_modification,
    record_skill_application,
    write_state,
)
from .structured import (
    are_ranges_compatible,
    merge_env_additions,
    merge_package_dependencies,
    merge_service_definitions,
    run_install,
)
from .types import (
    AppliedSkill,
    ApplyResult,
    CustomModification,
    EnvAdditions,
    FileInputHashes,
    FileOperation,
    FileOpsResult,
    MergeResult,
    PackageDependencies,
    ReplayResult,
    ResolutionMeta,
    ServiceDefinitions,
    SkillManifest,
    SkillOverlap,
    SkillState,
    UninstallResult,
)
from .uninstall import uninstall_skill

__all__ = [
    # apply / uninstall / replay
    "abort_apply",
    "apply_skill",
    "complete_apply",
    "replay_skills",
    "uninstall_skill",
    # backup / lock
    "Transaction",
    "acquire_lock",
    "clear_backup",
    "create_backup",
    "hold_lock",
    "is_locked",
    "release_lock",
    "restore_backup",
    # base / context / config
    "BaseSnapshot",
    "InstallContext",
    "Settings",
    "init_installation",
    "load_settings",
    # constants
    "BACKUP_DIR",
    "BASE_DIR",
    "DATA_DIR",
    "LOCK_FILE",
    "RESOLUTIONS_DIR",
    "SHIPPED_RESOLUTIONS_DIR",
    "SKILLS_SCHEMA_VERSION",
    "STATE_FILE",
    # errors
    "ConfigError",
    "LockError",
    "ManifestError",
    "MergeError",
    "MissingDependencyError",
    "SkillPatchError",
    "StateError",
    "StructuredMergeError",
    # file ops
    "execute_file_ops",
    # manifest
    "check_conflicts",
    "check_core_version",
    "check_dependencies",
    "check_system_version",
    "compute_overlaps",
    "find_skill_dir",
    "read_all_manifests",
    "read_manifest",
    # merge / memory
    "GitRerereMemory",
    "LocalMemory",
    "ResolutionMemory",
    "has_conflict_markers",
    "is_git_repo",
    "merge_file",
    "open_memory",
    # resolution cache
    "clear_all_resolutions",
    "find_resolution_dir",
    "load_resolutions",
    "record_resolutions",
    "save_resolution",
    # state
    "compare_semver",
    "compute_file_hash",
    "read_state",
    "record_custom_modification",
    "record_skill_application",
    "write_state",
    # structured
    "are_ranges_compatible",
    "merge_env_additions",
    "merge_package_dependencies",
    "merge_service_definitions",
    "run_install",
    # types
    "AppliedSkill",
    "ApplyResult",
    "CustomModification",
    "EnvAdditions",
    "FileInputHashes",
    "FileOperation",
    "FileOpsResult",
    "MergeResult",
    "PackageDependencies",
    "ReplayResult",
    "ResolutionMeta",
    "ServiceDefinitions",
    "SkillManifest",
    "SkillOverlap",
    "SkillState",
    "UninstallResult",
]
