"""Three-way file merging on top of git merge-file."""

from __future__ import annotations

import shutil
import subprocess
import tempfile
import uuid
from pathlib import Path

from .errors import MergeError
from .types import MergeResult

CONFLICT_START = "<<<<<<<"
CONFLICT_BASE = "|||||||"
CONFLICT_SEP = "======="
CONFLICT_END = ">>>>>>>"

MERGE_LABELS = ("current", "base", "skill")


def is_git_repo(cwd: Path | None = None) -> bool:
    """Check if the directory is inside a git work tree."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--is-inside-work-tree"],
            capture_output=True,
            text=True,
            check=False,
            cwd=cwd,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return result.returncode == 0 and result.stdout.strip() == "true"


def has_conflict_markers(content: str) -> bool:
    return any(line.startswith(CONFLICT_START) for line in content.splitlines())


def merge_file(
    current_path: Path,
    base_path: Path,
    skill_path: Path,
    timeout: float = 60.0,
) -> MergeResult:
    """Three-way merge skill_path into current_path using base_path as ancestor.

    Modifies current_path in place. Lines changed on one side only are taken
    from that side; lines changed on both sides become a conflict region
    showing current, base and skill versions.
    """
    args = ["git", "merge-file", "--diff3"]
    for label in MERGE_LABELS:
        args.extend(["-L", label])
    args.extend([str(current_path), str(base_path), str(skill_path)])

    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as err:
        raise MergeError(f"git merge-file timed out after {timeout}s on {current_path}") from err
    except OSError as err:
        raise MergeError(f"git merge-file could not be run: {err}") from err

    if result.returncode == 0:
        return MergeResult(clean=True, conflicts=0)

    # Positive exit codes up to 127 count conflicts; git reports errors as -1 (255)
    if 0 < result.returncode < 128:
        return MergeResult(clean=False, conflicts=result.returncode)

    raise MergeError(f"git merge-file failed with exit code {result.returncode}: {result.stderr.strip()}")


def merge_into(
    current_path: Path,
    base_path: Path,
    skill_path: Path,
    timeout: float = 60.0,
) -> tuple[MergeResult, str]:
    """Merge through a temp copy, then write the outcome over current_path.

    Returns the merge result and the pre-merge ("ours") content of current_path.
    """
    ours_content = current_path.read_text(encoding="utf-8")
    tmp_current = Path(tempfile.gettempdir()) / f"skillpatch-merge-{uuid.uuid4()}-{current_path.name}"
    shutil.copy2(current_path, tmp_current)
    try:
        result = merge_file(tmp_current, base_path, skill_path, timeout=timeout)
        shutil.copy2(tmp_current, current_path)
    finally:
        tmp_current.unlink(missing_ok=True)
    return result, ours_content
