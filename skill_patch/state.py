"""Skills state persistence and file hashing."""

from __future__ import annotations

import hashlib
import os
from datetime import UTC, datetime
from pathlib import Path

import yaml
from pydantic import ValidationError

from .constants import DATA_DIR, SKILLS_SCHEMA_VERSION, STATE_FILE
from .errors import StateError
from .types import AppliedSkill, CustomModification, SkillState


def state_path(project_root: Path) -> Path:
    return project_root / DATA_DIR / STATE_FILE


def read_state(project_root: Path) -> SkillState:
    """Read and validate the skills state file."""
    path = state_path(project_root)
    if not path.exists():
        raise StateError(f"{DATA_DIR / STATE_FILE} not found. Run init_installation() first.")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        state = SkillState.model_validate(raw)
    except (yaml.YAMLError, ValidationError) as err:
        raise StateError(f"Corrupt state file {path}: {err}") from err

    if compare_semver(state.skills_system_version, SKILLS_SCHEMA_VERSION) > 0:
        raise StateError(
            f"state.yaml version {state.skills_system_version} is newer than "
            f"tooling version {SKILLS_SCHEMA_VERSION}. Update your skills engine."
        )

    return state


def write_state(project_root: Path, state: SkillState) -> None:
    """Atomically write the skills state file."""
    path = state_path(project_root)
    path.parent.mkdir(parents=True, exist_ok=True)

    content = yaml.safe_dump(state.model_dump(exclude_none=True), sort_keys=True)

    # Write to temp file then rename over the original so a crash never
    # leaves a half-written state.yaml
    tmp_path = path.with_suffix(".yaml.tmp")
    with tmp_path.open("w", encoding="utf-8") as fh:
        fh.write(content)
        fh.flush()
        os.fsync(fh.fileno())
    os.replace(tmp_path, path)


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def record_skill_application(
    state: SkillState,
    skill_name: str,
    version: str,
    file_hashes: dict[str, str],
) -> AppliedSkill:
    """Record a skill application, replacing any previous entry in place.

    A skill that was already recorded keeps its position in the apply order.
    """
    entry = AppliedSkill(
        name=skill_name,
        version=version,
        applied_at=now_iso(),
        file_hashes=file_hashes,
    )
    for i, existing in enumerate(state.applied_skills):
        if existing.name == skill_name:
            entry.custom_patch = existing.custom_patch
            entry.custom_patch_description = existing.custom_patch_description
            state.applied_skills[i] = entry
            return entry

    state.applied_skills.append(entry)
    return entry


def record_custom_modification(
    state: SkillState,
    description: str,
    files_modified: list[str],
    patch_file: str,
) -> CustomModification:
    mod = CustomModification(
        description=description,
        applied_at=now_iso(),
        files_modified=files_modified,
        patch_file=patch_file,
    )
    if state.custom_modifications is None:
        state.custom_modifications = []
    state.custom_modifications.append(mod)
    return mod


def touched_paths(state: SkillState) -> set[str]:
    """Every path recorded by an applied skill or a custom modification."""
    paths: set[str] = set()
    for skill in state.applied_skills:
        paths.update(skill.file_hashes)
    for mod in state.custom_modifications or []:
        paths.update(mod.files_modified)
    return paths


def hash_paths(project_root: Path, rel_paths: list[str]) -> dict[str, str]:
    """Hash the given paths as they exist on disk; missing files are left out."""
    hashes: dict[str, str] = {}
    for rel_path in rel_paths:
        abs_path = project_root / rel_path
        if abs_path.is_file():
            hashes[rel_path] = compute_file_hash(abs_path)
    return hashes


def refresh_file_hashes(state: SkillState, project_root: Path) -> None:
    """Re-hash every applied skill's files from what is actually on disk."""
    for skill in state.applied_skills:
        skill.file_hashes = hash_paths(project_root, list(skill.file_hashes))


def compute_file_hash(file_path: Path) -> str:
    """Compute the SHA-256 hash of a file's contents."""
    return hashlib.sha256(file_path.read_bytes()).hexdigest()


def compute_text_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def compare_semver(a: str, b: str) -> int:
    """Compare two semver strings.

    Returns negative if a < b, 0 if equal, positive if a > b.
    """
    parts_a = _version_parts(a)
    parts_b = _version_parts(b)

    for i in range(max(len(parts_a), len(parts_b))):
        val_a = parts_a[i] if i < len(parts_a) else 0
        val_b = parts_b[i] if i < len(parts_b) else 0
        diff = val_a - val_b
        if diff != 0:
            return diff

    return 0


def _version_parts(version: str) -> list[int]:
    # Pre-release and build suffixes ("1.2.0-beta.1") are ignored
    core = version.strip().lstrip("v").split("-", 1)[0].split("+", 1)[0]
    return [int(x) if x.isdigit() else 0 for x in core.split(".")]
