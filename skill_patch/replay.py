"""Replay an ordered skill list from the clean base snapshot."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

from .base import BaseSnapshot
from .errors import MissingDependencyError, SkillPatchError, failure_kind
from .file_ops import execute_file_ops, file_op_paths
from .logger import get_logger
from .manifest import find_skill_dir, read_manifest
from .memory import MergeSides, ResolutionMemory, open_memory
from .merge import merge_into
from .resolution_cache import load_resolutions, seed_for_conflict
from .state import compute_file_hash
from .structured import StructuredBatch, apply_structured_batch, run_install
from .types import ConflictRecord, FileInputHashes, ReplayResult, SkillManifest, SkillOutcome, StructuredOperation

if TYPE_CHECKING:
    from .context import InstallContext

logger = get_logger(__name__)


def locate_skill_dirs(names: list[str], ctx: InstallContext) -> tuple[dict[str, Path], list[str]]:
    """Find the package directory of every named skill; returns (found, missing)."""
    found: dict[str, Path] = {}
    missing: list[str] = []
    for name in names:
        skill_dir = find_skill_dir(name, ctx)
        if skill_dir is None:
            missing.append(name)
        else:
            found[name] = skill_dir
    return found, missing


def collect_touched(manifests: list[SkillManifest]) -> list[str]:
    """Union of adds and modifies across manifests, in first-seen order."""
    touched: dict[str, None] = {}
    for manifest in manifests:
        for rel_path in manifest.touched:
            touched.setdefault(rel_path, None)
    return list(touched)


class SkillReplayer:
    """Applies one skill at a time on top of whatever replay produced so far."""

    def __init__(self, ctx: InstallContext, memory: ResolutionMemory) -> None:
        self.ctx = ctx
        self.memory = memory
        self.base = BaseSnapshot(ctx.base_dir)

    def apply(self, manifest: SkillManifest, skill_dir: Path, applied_so_far: list[str]) -> list[ConflictRecord]:
        """Fold one skill into the tree; returns the conflicts it left behind."""
        root = self.ctx.project_root

        if manifest.file_ops:
            result = execute_file_ops(manifest.file_ops, root)
            if not result.success:
                raise SkillPatchError(f"File operations failed: {'; '.join(result.errors)}")

        for rel_path in manifest.adds:
            src_path = skill_dir / "add" / rel_path
            if not src_path.is_file():
                raise MissingDependencyError(f"Skill {manifest.skill} is missing add/{rel_path}")
            dest_path = root / rel_path
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src_path, dest_path)

        conflicts: list[ConflictRecord] = []
        for rel_path in manifest.modifies:
            conflict = self._merge_one(manifest, skill_dir, rel_path, applied_so_far)
            if conflict is not None:
                conflicts.append(conflict)
        return conflicts

    def _merge_one(
        self,
        manifest: SkillManifest,
        skill_dir: Path,
        rel_path: str,
        applied_so_far: list[str],
    ) -> ConflictRecord | None:
        current_path = self.ctx.project_root / rel_path
        base_path = self.base.path(rel_path)
        # Skill packages are never mutated
        skill_path = skill_dir / "modify" / rel_path

        if not skill_path.is_file():
            raise MissingDependencyError(f"Skill {manifest.skill} is missing modify/{rel_path}")

        if not current_path.exists() or not base_path.is_file():
            # Nothing to merge against: the skill's version is the result
            current_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(skill_path, current_path)
            return None

        inputs = FileInputHashes(
            base=compute_file_hash(base_path),
            current=compute_file_hash(current_path),
            skill=compute_file_hash(skill_path),
        )
        result, ours_content = merge_into(current_path, base_path, skill_path, timeout=self.ctx.settings.merge_timeout)
        if result.clean:
            return None

        preimage = current_path.read_text(encoding="utf-8")
        sides = MergeSides(
            base=base_path.read_text(encoding="utf-8"),
            ours=ours_content,
            theirs=skill_path.read_text(encoding="utf-8"),
        )
        if self._resolve_from_memory(rel_path, current_path, sides, inputs, applied_so_far):
            return None

        return ConflictRecord(rel_path=rel_path, skill=manifest.skill, preimage=preimage, input_hashes=inputs)

    def _resolve_from_memory(
        self,
        rel_path: str,
        current_path: Path,
        sides: MergeSides,
        inputs: FileInputHashes,
        applied_so_far: list[str],
    ) -> bool:
        try:
            seed_for_conflict(applied_so_far, rel_path, inputs, self.ctx, self.memory)

            self.memory.record_preimage(rel_path, current_path, sides)
            resolution = self.memory.lookup_by_preimage(rel_path, current_path)
            if resolution is None:
                self.memory.discard(rel_path)
                return False

            current_path.write_text(resolution, encoding="utf-8")
            self.memory.commit_resolution(rel_path, current_path)
        except (OSError, subprocess.SubprocessError) as err:
            logger.warning("replay memory unavailable", path=rel_path, error=str(err))
            return False

        logger.info("conflict auto-resolved from replay memory", path=rel_path)
        return True


def replay_skills(
    skills: list[str],
    skill_dirs: dict[str, Path],
    ctx: InstallContext,
    memory: ResolutionMemory | None = None,
) -> ReplayResult:
    """Reset every touched file to base, then re-apply skills in order.

    Stops after the first skill that leaves an unresolved conflict; later
    skills are never attempted. Structured operations and the install step
    only run when every skill applied cleanly.
    """
    memory = memory or open_memory(ctx)
    base = BaseSnapshot(ctx.base_dir)
    per_skill: dict[str, SkillOutcome] = {}

    # 1. Collect
    manifests: dict[str, SkillManifest] = {}
    for name in skills:
        skill_dir = skill_dirs.get(name)
        if skill_dir is None:
            per_skill[name] = SkillOutcome(success=False, error=f"Skill directory not found for: {name}")
            return ReplayResult(
                success=False,
                per_skill=per_skill,
                error=f"Missing skill directory for: {name}",
                failure="missing_dependency",
            )
        try:
            manifests[name] = read_manifest(skill_dir)
        except SkillPatchError as err:
            per_skill[name] = SkillOutcome(success=False, error=str(err))
            return ReplayResult(success=False, per_skill=per_skill, error=str(err), failure=failure_kind(err))

    # 2. Reset, including whatever file operations renamed or moved
    reset_paths = collect_touched(list(manifests.values()))
    for manifest in manifests.values():
        reset_paths.extend(p for p in file_op_paths(manifest.file_ops) if p not in reset_paths)
    for rel_path in reset_paths:
        base.restore(rel_path, ctx.project_root)

    # 3. Preload; the last skill is the one applied on top, so its modify/
    # files are the "theirs" side most likely to conflict
    if skills:
        load_resolutions(skills, ctx, skill_dirs[skills[-1]], memory)

    # 4. Apply each skill in order
    replayer = SkillReplayer(ctx, memory)
    operations: list[StructuredOperation] = []
    for index, name in enumerate(skills):
        manifest = manifests[name]
        try:
            conflicts = replayer.apply(manifest, skill_dirs[name], skills[: index + 1])
        except Exception as err:
            per_skill[name] = SkillOutcome(success=False, error=str(err))
            return ReplayResult(
                success=False,
                per_skill=per_skill,
                error=f"Replay failed for {name}: {err}",
                failure=failure_kind(err),
            )

        # 5. Stop on conflict: later skills would merge against conflict markers
        if conflicts:
            paths = [c.rel_path for c in conflicts]
            per_skill[name] = SkillOutcome(success=False, error=f"Merge conflicts: {', '.join(paths)}")
            return ReplayResult(
                success=False,
                per_skill=per_skill,
                merge_conflicts=paths,
                conflicts=conflicts,
                error=f"Unresolved merge conflicts: {', '.join(paths)}",
                failure="conflict",
            )

        per_skill[name] = SkillOutcome(success=True)
        operations.extend(manifest.structured)
        logger.debug("skill replayed", skill=name)

    # 6. Aggregated structured operations, then best-effort install
    batch = StructuredBatch.collect(operations)
    try:
        apply_structured_batch(batch, ctx.project_root)
    except (SkillPatchError, OSError, ValueError) as err:
        return ReplayResult(
            success=False,
            per_skill=per_skill,
            error=f"Structured operations failed: {err}",
            failure=failure_kind(err),
        )

    if batch.has_packages:
        run_install(ctx.settings.install_command, ctx.project_root, ctx.settings.install_timeout)

    return ReplayResult(success=True, per_skill=per_skill)
