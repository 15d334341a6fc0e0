"""Post-replay steps: custom patch re-application and skill test commands."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

from .logger import get_logger
from .manifest import read_manifest

if TYPE_CHECKING:
    from .context import InstallContext

logger = get_logger(__name__)


def run_command(command: str, project_root: Path, timeout: float) -> tuple[bool, str]:
    """Run a shell command from the project root. Returns (passed, output)."""
    try:
        proc = subprocess.run(
            command,
            shell=True,
            capture_output=True,
            text=True,
            check=False,
            cwd=project_root,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return False, f"timed out after {timeout:g}s"
    except OSError as err:
        return False, str(err)
    return proc.returncode == 0, (proc.stdout + proc.stderr).strip()


def reapply_custom_patches(ctx: InstallContext, skills: list[str] | None = None) -> list[str]:
    """Re-apply custom patches on top of a fresh replay.

    Covers the per-skill patches of ``skills`` (default: every applied skill)
    and all standalone custom modifications. Best-effort: a patch that no
    longer applies is logged and reported, never raised. Returns the patch
    files that failed.
    """
    wanted = set(ctx.state.names() if skills is None else skills)
    patch_files = [s.custom_patch for s in ctx.state.applied_skills if s.custom_patch and s.name in wanted]
    patch_files.extend(mod.patch_file for mod in ctx.state.custom_modifications or [])

    failed: list[str] = []
    for patch_file in patch_files:
        patch_path = ctx.project_root / patch_file
        if not patch_path.exists():
            logger.warning("custom patch missing", patch_file=patch_file)
            failed.append(patch_file)
            continue
        try:
            subprocess.run(
                ["git", "apply", "--3way", str(patch_path)],
                capture_output=True,
                text=True,
                check=True,
                cwd=ctx.project_root,
                timeout=ctx.settings.merge_timeout,
            )
        except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as err:
            logger.warning("custom patch did not apply", patch_file=patch_file, error=str(err))
            failed.append(patch_file)
    return failed


def run_skill_tests(skill_dirs: dict[str, Path], ctx: InstallContext) -> dict[str, bool]:
    """Run the declared test command of each skill; skills without one are skipped."""
    results: dict[str, bool] = {}
    for name, skill_dir in skill_dirs.items():
        test = read_manifest(skill_dir).test
        if not test:
            continue
        passed, output = run_command(test, ctx.project_root, ctx.settings.test_timeout)
        results[name] = passed
        if not passed:
            logger.warning("skill test failed", skill=name, command=test, output=output[-2000:])
    return results
