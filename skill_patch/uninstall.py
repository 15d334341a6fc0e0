"""Uninstall a skill by replaying the remaining skills without it."""

from __future__ import annotations

from pathlib import Path

from .backup import Transaction, has_backup
from .base import BaseSnapshot
from .constants import PACKAGE_LOCK
from .context import InstallContext
from .errors import SkillPatchError, failure_kind
from .file_ops import file_op_paths
from .lock import hold_lock
from .logger import get_logger
from .manifest import read_manifest
from .replay import locate_skill_dirs, replay_skills
from .state import refresh_file_hashes, touched_paths
from .structured import STRUCTURED_TARGETS
from .types import UninstallResult
from .verify import reapply_custom_patches, run_skill_tests

logger = get_logger(__name__)


def uninstall_skill(
    skill_name: str,
    project_root: Path | None = None,
    confirm_custom_patch: bool = False,
) -> UninstallResult:
    """Remove one applied skill, leaving every other skill's result intact.

    The tree is either left exactly as it was or fully moved to the state
    without the skill; any failure after the backup is taken restores it.
    """
    try:
        ctx = InstallContext.load(project_root)
    except SkillPatchError as err:
        return UninstallResult(success=False, skill=skill_name, error=str(err), failure=failure_kind(err))

    state = ctx.state

    # 1. Skills are baked into the base once it has been rebased
    if state.rebased_at:
        return UninstallResult(
            success=False,
            skill=skill_name,
            error=(
                "Cannot uninstall individual skills after rebase. The base includes "
                "all skill modifications. To remove a skill, start from a clean core "
                "and re-apply the skills you want."
            ),
            failure="precondition",
        )

    # 2. Must be applied
    entry = state.find(skill_name)
    if entry is None:
        return UninstallResult(
            success=False,
            skill=skill_name,
            error=f'Skill "{skill_name}" is not applied.',
            failure="precondition",
        )

    # 3. Custom patch: surfaced, proceeds only with confirmation
    if entry.custom_patch and not confirm_custom_patch:
        return UninstallResult(
            success=False,
            skill=skill_name,
            custom_patch_warning=(
                f'Skill "{skill_name}" has a custom patch '
                f"({entry.custom_patch_description or 'no description'}). "
                "Uninstalling will lose these customizations. "
                "Re-run with confirmation to proceed."
            ),
            failure="precondition",
        )

    # 4. A pending apply keeps its backup until it is completed or aborted
    if ctx.pending_path.exists() or has_backup(ctx.project_root):
        return UninstallResult(
            success=False,
            skill=skill_name,
            error="An earlier operation left a pending backup. Run complete_apply() or abort_apply() first.",
            failure="precondition",
        )

    remaining = [name for name in state.names() if name != skill_name]

    # 5. Every remaining skill must be present to replay it
    skill_dirs, missing = locate_skill_dirs(remaining, ctx)
    if missing:
        return UninstallResult(
            success=False,
            skill=skill_name,
            error=(
                f"Cannot find skill package for {', '.join(missing)} in "
                f"{ctx.settings.skills_dir}. All remaining skills must be available for replay."
            ),
            failure="missing_dependency",
        )

    try:
        backup_paths = [*touched_paths(state), *STRUCTURED_TARGETS, PACKAGE_LOCK]
        for skill_dir in skill_dirs.values():
            backup_paths.extend(file_op_paths(read_manifest(skill_dir).file_ops))

        # 6. Lock, then back up everything any skill or custom patch touched
        with hold_lock(ctx.project_root, ctx.settings.lock_stale_after), Transaction(
            ctx.project_root, backup_paths
        ) as txn:
            # 7. Files only the removed skill touched go straight back to base
            still_owned: set[str] = set()
            for other in state.applied_skills:
                if other.name != skill_name:
                    still_owned.update(other.file_hashes)
            base = BaseSnapshot(ctx.base_dir)
            for rel_path in entry.file_hashes:
                if rel_path not in still_owned:
                    outcome = base.restore(rel_path, ctx.project_root)
                    logger.debug("exclusive file reset", path=rel_path, outcome=outcome)

            # 8. Replay what is left
            replay = replay_skills(remaining, skill_dirs, ctx)
            if not replay.success:
                return UninstallResult(
                    success=False,
                    skill=skill_name,
                    merge_conflicts=replay.merge_conflicts,
                    error=f"Replay failed: {replay.error}",
                    failure=replay.failure or "error",
                )

            # 9. Custom patches, best-effort
            reapply_custom_patches(ctx, remaining)

            # 10. A previously passing skill must still pass
            test_results = run_skill_tests(skill_dirs, ctx)
            test_failures = [name for name, passed in test_results.items() if not passed]
            if test_failures:
                return UninstallResult(
                    success=False,
                    skill=skill_name,
                    test_results=test_results,
                    error=f"Tests failed after uninstall: {', '.join(test_failures)}",
                    failure="verification",
                )

            # 11. Record
            state.applied_skills = [s for s in state.applied_skills if s.name != skill_name]
            refresh_file_hashes(state, ctx.project_root)
            ctx.save()
            txn.commit()
    except SkillPatchError as err:
        logger.warning("uninstall failed", skill=skill_name, error=str(err))
        return UninstallResult(success=False, skill=skill_name, error=str(err), failure=failure_kind(err))
    except Exception as err:
        logger.exception("uninstall failed", skill=skill_name)
        return UninstallResult(success=False, skill=skill_name, error=str(err), failure=failure_kind(err))

    logger.info("skill uninstalled", skill=skill_name, remaining=remaining)
    return UninstallResult(success=True, skill=skill_name, test_results=test_results or None)
