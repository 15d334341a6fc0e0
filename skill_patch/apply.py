"""Apply a skill to the current project.

Applying is a replay of the applied skills plus the new one, so a fresh
apply and a later uninstall-and-replay produce the same tree.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import ValidationError

from .backup import Transaction, clear_backup, has_backup, restore_backup
from .base import BaseSnapshot
from .constants import PACKAGE_LOCK
from .context import InstallContext
from .errors import FailureKind, SkillPatchError, StateError, failure_kind
from .file_ops import file_op_paths
from .lock import hold_lock
from .logger import get_logger
from .manifest import check_conflicts, check_core_version, check_dependencies, check_system_version, read_manifest
from .memory import open_memory
from .merge import has_conflict_markers
from .replay import collect_touched, locate_skill_dirs, replay_skills
from .resolution_cache import record_resolutions
from .state import compute_file_hash, hash_paths, record_skill_application, refresh_file_hashes, touched_paths
from .structured import STRUCTURED_TARGETS
from .types import ApplyResult, PendingApply, SkillManifest
from .verify import reapply_custom_patches, run_command

logger = get_logger(__name__)


def read_pending(ctx: InstallContext) -> PendingApply | None:
    if not ctx.pending_path.exists():
        return None
    try:
        raw = yaml.safe_load(ctx.pending_path.read_text(encoding="utf-8"))
        return PendingApply.model_validate(raw)
    except (yaml.YAMLError, ValidationError) as err:
        raise StateError(f"Pending apply record is corrupt: {ctx.pending_path}") from err


def write_pending(ctx: InstallContext, pending: PendingApply) -> None:
    ctx.pending_path.parent.mkdir(parents=True, exist_ok=True)
    ctx.pending_path.write_text(yaml.safe_dump(pending.model_dump(), sort_keys=False), encoding="utf-8")


def clear_pending(ctx: InstallContext) -> None:
    ctx.pending_path.unlink(missing_ok=True)


def detect_drift(manifest: SkillManifest, ctx: InstallContext) -> list[str]:
    """Files the replay will rewrite whose working copy has unrecorded edits.

    A file is compared with the hash its last applying skill recorded, or
    with the base snapshot when no skill recorded it.
    """
    recorded: dict[str, str] = {}
    for skill in ctx.state.applied_skills:
        recorded.update(skill.file_hashes)

    base = BaseSnapshot(ctx.base_dir)
    drift: list[str] = []
    for rel_path in sorted({*manifest.modifies, *recorded}):
        current_path = ctx.project_root / rel_path
        expected = recorded.get(rel_path) or base.hash(rel_path)
        if current_path.is_file() and expected is not None and compute_file_hash(current_path) != expected:
            drift.append(rel_path)
    return drift


def _failed(manifest: SkillManifest, error: str, failure: FailureKind, **extra: object) -> ApplyResult:
    return ApplyResult(
        success=False,
        skill=manifest.skill,
        version=manifest.version,
        error=error,
        failure=failure,
        **extra,
    )


def _preflight(manifest: SkillManifest, ctx: InstallContext) -> ApplyResult | None:
    if error := check_system_version(manifest):
        return _failed(manifest, error, "precondition")

    if ctx.pending_path.exists() or has_backup(ctx.project_root):
        return _failed(
            manifest,
            "An earlier operation left a pending backup. Run complete_apply() or abort_apply() first.",
            "precondition",
        )

    if ctx.state.find(manifest.skill) is not None:
        return _failed(manifest, f'Skill "{manifest.skill}" is already applied.', "precondition")

    if missing := check_dependencies(manifest, ctx.state):
        return _failed(manifest, f"Missing dependencies: {', '.join(missing)}", "missing_dependency")

    if conflicting := check_conflicts(manifest, ctx.state):
        return _failed(manifest, f"Conflicting skills: {', '.join(conflicting)}", "precondition")

    return None


def _backup_paths(manifests: list[SkillManifest], ctx: InstallContext) -> list[str]:
    paths = [*collect_touched(manifests), *touched_paths(ctx.state), *STRUCTURED_TARGETS, PACKAGE_LOCK]
    for manifest in manifests:
        paths.extend(file_op_paths(manifest.file_ops))
    return paths


def _record(manifest: SkillManifest, ctx: InstallContext) -> None:
    record_skill_application(
        ctx.state,
        manifest.skill,
        manifest.version,
        hash_paths(ctx.project_root, manifest.touched),
    )
    refresh_file_hashes(ctx.state, ctx.project_root)
    ctx.save()


def _verify(manifest: SkillManifest, ctx: InstallContext) -> str | None:
    """Run post_apply commands then the skill's test; returns an error or None."""
    for command in manifest.post_apply or []:
        passed, output = run_command(command, ctx.project_root, ctx.settings.test_timeout)
        if not passed:
            return f"post_apply command failed: {command}: {output}"

    if manifest.test:
        passed, output = run_command(manifest.test, ctx.project_root, ctx.settings.test_timeout)
        if not passed:
            return f"Tests failed: {output}"

    return None


def apply_skill(skill_dir: str | Path, project_root: Path | None = None) -> ApplyResult:
    """Apply the skill packaged in skill_dir on top of the applied skills."""
    skill_dir = Path(skill_dir).resolve()
    try:
        ctx = InstallContext.load(project_root)
        manifest = read_manifest(skill_dir)
    except SkillPatchError as err:
        return ApplyResult(success=False, skill=skill_dir.name, version="", error=str(err), failure=failure_kind(err))

    if rejected := _preflight(manifest, ctx):
        return rejected

    warnings: list[str] = []
    if warning := check_core_version(manifest, ctx.state):
        logger.warning("core version mismatch", skill=manifest.skill, warning=warning)
        warnings.append(warning)

    drift = detect_drift(manifest, ctx)
    if drift:
        logger.warning("local edits will be replaced by the replay", files=drift)

    order = [*ctx.state.names(), manifest.skill]
    skill_dirs, missing = locate_skill_dirs(order[:-1], ctx)
    if missing:
        return _failed(
            manifest,
            f"Cannot find skill package for {', '.join(missing)}. All applied skills must be available for replay.",
            "missing_dependency",
        )
    skill_dirs[manifest.skill] = skill_dir

    try:
        manifests = [read_manifest(skill_dirs[name]) for name in order]
        with hold_lock(ctx.project_root, ctx.settings.lock_stale_after), Transaction(
            ctx.project_root, _backup_paths(manifests, ctx)
        ) as txn:
            # A modified file the snapshot never captured becomes its own base
            base = BaseSnapshot(ctx.base_dir)
            for rel_path in manifest.modifies:
                if base.adopt(rel_path, ctx.project_root / rel_path):
                    logger.info("base entry adopted", path=rel_path)

            replay = replay_skills(order, skill_dirs, ctx)

            if replay.failure == "conflict":
                # The tree keeps its conflict markers for a human to resolve
                txn.keep()
                write_pending(
                    ctx,
                    PendingApply(
                        skill=manifest.skill,
                        version=manifest.version,
                        apply_order=order,
                        conflicts=replay.conflicts,
                    ),
                )
                return _failed(
                    manifest,
                    (
                        f"Merge conflicts in: {', '.join(replay.merge_conflicts or [])}. "
                        "Resolve them, then run complete_apply() to finish or abort_apply() to roll back."
                    ),
                    "conflict",
                    merge_conflicts=replay.merge_conflicts,
                    backup_pending=True,
                    untracked_changes=drift or None,
                    warnings=warnings or None,
                )

            if not replay.success:
                return _failed(manifest, replay.error or "Replay failed", replay.failure or "error")

            reapply_custom_patches(ctx)

            if error := _verify(manifest, ctx):
                return _failed(manifest, error, "verification")

            _record(manifest, ctx)
            txn.commit()
    except SkillPatchError as err:
        logger.warning("apply failed", skill=manifest.skill, error=str(err))
        return _failed(manifest, str(err), failure_kind(err))
    except Exception as err:
        logger.exception("apply failed", skill=manifest.skill)
        return _failed(manifest, str(err), failure_kind(err))

    logger.info("skill applied", skill=manifest.skill, version=manifest.version)
    return ApplyResult(
        success=True,
        skill=manifest.skill,
        version=manifest.version,
        untracked_changes=drift or None,
        warnings=warnings or None,
    )


def complete_apply(
    skill_dir: str | Path,
    project_root: Path | None = None,
    resolution_source: Literal["generated", "maintainer", "user"] = "user",
) -> ApplyResult:
    """Finish an apply whose conflicts were resolved by hand.

    The resolutions are saved to the resolution cache and replay memory,
    then the apply runs again from the backup so the recorded tree is
    exactly what a replay reproduces.
    """
    skill_dir = Path(skill_dir).resolve()
    try:
        ctx = InstallContext.load(project_root)
        manifest = read_manifest(skill_dir)
        pending = read_pending(ctx)
    except SkillPatchError as err:
        return ApplyResult(success=False, skill=skill_dir.name, version="", error=str(err), failure=failure_kind(err))

    if pending is None:
        return _failed(manifest, "No apply is waiting for conflict resolution.", "precondition")
    if pending.skill != manifest.skill:
        return _failed(manifest, f'The pending apply is for "{pending.skill}", not "{manifest.skill}".', "precondition")

    unresolved = [
        c.rel_path
        for c in pending.conflicts
        if not (ctx.project_root / c.rel_path).is_file()
        or has_conflict_markers((ctx.project_root / c.rel_path).read_text(encoding="utf-8"))
    ]
    if unresolved:
        return _failed(
            manifest,
            f"Conflict markers remain in: {', '.join(unresolved)}",
            "conflict",
            merge_conflicts=unresolved,
            backup_pending=True,
        )

    # Resolution sets are keyed by the skills applied when the conflict arose
    conflicted_skill = pending.conflicts[0].skill if pending.conflicts else pending.skill
    key_skills = pending.apply_order[: pending.apply_order.index(conflicted_skill) + 1]

    try:
        with hold_lock(ctx.project_root, ctx.settings.lock_stale_after):
            record_resolutions(
                key_skills,
                pending.conflicts,
                ctx,
                open_memory(ctx),
                meta={"apply_order": pending.apply_order, "resolution_source": resolution_source},
            )
            restore_backup(ctx.project_root)
            clear_backup(ctx.project_root)
            clear_pending(ctx)
    except SkillPatchError as err:
        return _failed(manifest, str(err), failure_kind(err), backup_pending=True)

    logger.info("resolutions recorded, re-applying", skill=manifest.skill, files=[c.rel_path for c in pending.conflicts])
    return apply_skill(skill_dir, ctx.project_root)


def abort_apply(project_root: Path | None = None) -> bool:
    """Roll back an apply that stopped on conflicts. Returns False if none was pending."""
    root = (project_root or Path.cwd()).resolve()
    ctx = InstallContext.load(root)
    if not ctx.pending_path.exists() and not has_backup(root):
        return False

    with hold_lock(root, ctx.settings.lock_stale_after):
        restore_backup(root)
        clear_backup(root)
        clear_pending(ctx)

    logger.info("pending apply aborted", project_root=str(root))
    return True
