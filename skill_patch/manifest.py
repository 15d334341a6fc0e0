"""Skill manifest reading, validation, and compatibility checks."""

from __future__ import annotations

from itertools import combinations
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError

from .constants import SKILLS_SCHEMA_VERSION
from .errors import ManifestError
from .logger import get_logger
from .state import compare_semver
from .types import (
    EnvAdditions,
    PackageDependencies,
    ServiceDefinitions,
    SkillManifest,
    SkillOverlap,
    SkillState,
)

if TYPE_CHECKING:
    from .context import InstallContext

logger = get_logger(__name__)

MANIFEST_FILE = "manifest.yaml"

REQUIRED_FIELDS = ["skill", "version", "core_version", "adds", "modifies"]

# Alternate spellings accepted for each structured operation
STRUCTURED_KEYS = {
    "package_dependencies": ("package_dependencies", "npm_dependencies"),
    "env_additions": ("env_additions",),
    "service_definitions": ("service_definitions", "docker_compose_services"),
}


def normalize_path(raw: str) -> str:
    """Normalize a manifest path to a clean project-relative POSIX path."""
    cleaned = str(raw).strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    path = PurePosixPath(cleaned)
    if not cleaned or path.is_absolute() or ".." in path.parts:
        raise ManifestError(f'Invalid path in manifest: {raw} (must be relative without "..")')
    return str(path)


def _normalize_paths(field: str, raw_paths: Any) -> list[str]:
    if raw_paths is None:
        return []
    if not isinstance(raw_paths, list):
        raise ManifestError(f"Manifest field '{field}' must be a list of paths")
    seen: dict[str, None] = {}
    for p in raw_paths:
        if not isinstance(p, str):
            raise ManifestError(f"Manifest field '{field}' must be a list of paths, got {p!r}")
        seen.setdefault(normalize_path(p), None)
    return list(seen)


def parse_structured(raw: dict[str, Any] | None) -> list[PackageDependencies | EnvAdditions | ServiceDefinitions]:
    """Turn the manifest's structured mapping into typed operations."""
    if not raw:
        return []
    if not isinstance(raw, dict):
        raise ManifestError("Manifest field 'structured' must be a mapping")

    def pick(kind: str, expected: type) -> Any:
        for key in STRUCTURED_KEYS[kind]:
            if raw.get(key):
                if not isinstance(raw[key], expected):
                    raise ManifestError(f"Manifest field 'structured.{key}' must be a {expected.__name__}")
                return raw[key]
        return None

    ops: list[PackageDependencies | EnvAdditions | ServiceDefinitions] = []
    if packages := pick("package_dependencies", dict):
        ops.append(PackageDependencies(packages={str(k): str(v) for k, v in packages.items()}))
    if variables := pick("env_additions", list):
        ops.append(EnvAdditions(variables=[str(v) for v in variables]))
    if services := pick("service_definitions", dict):
        ops.append(ServiceDefinitions(services=dict(services)))
    return ops


def read_manifest(skill_dir: Path) -> SkillManifest:
    """Read and validate a skill manifest from a directory."""
    manifest_path = skill_dir / MANIFEST_FILE
    if not manifest_path.exists():
        raise ManifestError(f"Manifest not found: {manifest_path}")

    try:
        raw = yaml.safe_load(manifest_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as err:
        raise ManifestError(f"Manifest is not valid YAML: {manifest_path}: {err}") from err

    if not isinstance(raw, dict):
        raise ManifestError(f"Manifest must be a mapping: {manifest_path}")

    for field in REQUIRED_FIELDS:
        if raw.get(field) is None:
            raise ManifestError(f"Manifest missing required field: {field}")

    raw["adds"] = _normalize_paths("adds", raw.get("adds"))
    raw["modifies"] = _normalize_paths("modifies", raw.get("modifies"))
    raw["structured"] = parse_structured(raw.get("structured"))
    raw["file_ops"] = raw.get("file_ops") or []
    raw["conflicts"] = raw.get("conflicts") or []
    raw["depends"] = raw.get("depends") or []
    for key in ("skill", "version", "core_version"):
        raw[key] = str(raw[key])

    try:
        return SkillManifest.model_validate(raw)
    except ValidationError as err:
        raise ManifestError(f"Invalid manifest {manifest_path}: {err}") from err


def find_skill_dir(skill_name: str, ctx: InstallContext) -> Path | None:
    """Scan the skills root for a directory whose manifest declares skill_name."""
    skills_root = ctx.skills_root
    if not skills_root.exists():
        return None

    for entry in sorted(skills_root.iterdir()):
        if not entry.is_dir() or not (entry / MANIFEST_FILE).exists():
            continue
        try:
            manifest = read_manifest(entry)
        except ManifestError as err:
            logger.debug("skipping invalid manifest", skill_dir=str(entry), error=str(err))
            continue
        if manifest.skill == skill_name:
            return entry

    return None


def read_all_manifests(skills_root: Path) -> list[tuple[SkillManifest, Path]]:
    """Read every skill package under skills_root, sorted by directory name."""
    if not skills_root.exists():
        return []

    results: list[tuple[SkillManifest, Path]] = []
    for entry in sorted(skills_root.iterdir()):
        if entry.is_dir() and (entry / MANIFEST_FILE).exists():
            results.append((read_manifest(entry), entry))
    return results


def compute_overlaps(manifests: list[SkillManifest]) -> list[SkillOverlap]:
    """Pairwise overlap between skills.

    Two skills overlap if they share any ``modifies`` entry or both declare a
    structured dependency on the same package.
    """
    overlaps: list[SkillOverlap] = []

    for a, b in combinations(manifests, 2):
        reasons: list[str] = []

        shared_modifies = [m for m in a.modifies if m in b.modifies]
        if shared_modifies:
            reasons.append(f"shared modifies: {', '.join(shared_modifies)}")

        shared_packages = sorted(a.package_names() & b.package_names())
        if shared_packages:
            reasons.append(f"shared packages: {', '.join(shared_packages)}")

        if reasons:
            overlaps.append(SkillOverlap(skills=[a.skill, b.skill], reason="; ".join(reasons)))

    return overlaps


def check_core_version(manifest: SkillManifest, state: SkillState) -> str | None:
    """Return a warning when the skill targets a newer core than installed."""
    if compare_semver(manifest.core_version, state.core_version) > 0:
        return (
            f"Skill targets core {manifest.core_version} but current core "
            f"is {state.core_version}. The merge might still work but "
            f"there's a compatibility risk."
        )
    return None


def check_system_version(manifest: SkillManifest) -> str | None:
    """Return an error when the skill needs a newer skills engine."""
    if not manifest.min_skills_system_version:
        return None
    if compare_semver(manifest.min_skills_system_version, SKILLS_SCHEMA_VERSION) > 0:
        return (
            f"Skill requires skills system version "
            f"{manifest.min_skills_system_version} but current is "
            f"{SKILLS_SCHEMA_VERSION}. Update your skills engine."
        )
    return None


def check_dependencies(manifest: SkillManifest, state: SkillState) -> list[str]:
    """Return the declared dependencies that are not applied yet."""
    applied = set(state.names())
    return [dep for dep in manifest.depends if dep not in applied]


def check_conflicts(manifest: SkillManifest, state: SkillState) -> list[str]:
    """Return the applied skills this manifest declares a conflict with."""
    applied = set(state.names())
    return [c for c in manifest.conflicts if c in applied]
