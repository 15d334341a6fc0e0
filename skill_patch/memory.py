"""Conflict replay memory: remembers how a given conflict was resolved.

Two interchangeable backends sit behind ResolutionMemory. GitRerereMemory
drives git's own rerere machinery; LocalMemory keeps the same
``<token>/preimage`` + ``<token>/postimage`` layout under the engine's data
directory and works without a git repository.
"""

from __future__ import annotations

import hashlib
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from .logger import get_logger
from .merge import CONFLICT_BASE, CONFLICT_END, CONFLICT_SEP, CONFLICT_START, has_conflict_markers, is_git_repo

if TYPE_CHECKING:
    from .context import InstallContext

logger = get_logger(__name__)

# A mode-0 entry with this id removes a path from the index
NULL_OID = "0" * 40


@dataclass
class MergeSides:
    base: str
    ours: str
    theirs: str


class ResolutionMemory(Protocol):
    def record_preimage(self, rel_path: str, work_path: Path, sides: MergeSides) -> str | None:
        """Register the conflict now sitting in work_path; returns its token if known."""

    def lookup_by_preimage(self, rel_path: str, work_path: Path) -> str | None:
        """Return the remembered resolution for the registered conflict, if any."""

    def commit_resolution(self, rel_path: str, work_path: Path) -> str | None:
        """Remember work_path's current content as the resolution of its conflict."""

    def discard(self, rel_path: str) -> None:
        """Forget the registered conflict without recording a resolution."""

    def seed(self, token: str, preimage: str, postimage: str) -> None:
        """Pre-load a preimage/postimage pair under a known token."""

    def token_for(self, preimage: str) -> str | None:
        """Token under which a conflict with this preimage is remembered."""


def split_conflicts(content: str) -> list[str | tuple[str, str]]:
    """Split content into plain lines and (ours, theirs) conflict regions.

    Marker labels and base sections are dropped; an unterminated region at
    the end of the content is dropped too.
    """
    parts: list[str | tuple[str, str]] = []
    ours: list[str] = []
    theirs: list[str] = []
    section: str | None = None

    for line in content.splitlines(keepends=True):
        if line.startswith(CONFLICT_START):
            section, ours, theirs = "ours", [], []
        elif section is not None and line.startswith(CONFLICT_BASE):
            section = "base"
        elif section is not None and line.startswith(CONFLICT_SEP):
            section = "theirs"
        elif section is not None and line.startswith(CONFLICT_END):
            parts.append(("".join(ours), "".join(theirs)))
            section = None
        elif section == "ours":
            ours.append(line)
        elif section == "theirs":
            theirs.append(line)
        elif section is None:
            parts.append(line)

    return parts


def conflict_hunks(content: str) -> list[tuple[str, str]]:
    """Extract (ours, theirs) text for every conflict region in content."""
    return [part for part in split_conflicts(content) if isinstance(part, tuple)]


def conflict_token(content: str) -> str | None:
    """SHA-1 over each hunk's two sides in sorted order, like rerere's conflict ID.

    Marker labels, the base section and which side is "ours" do not change
    the token.
    """
    hunks = conflict_hunks(content)
    if not hunks:
        return None
    digest = hashlib.sha1()
    for ours, theirs in hunks:
        first, second = sorted([ours, theirs])
        digest.update(first.encode("utf-8") + b"\0" + second.encode("utf-8") + b"\0")
    return digest.hexdigest()


def normalize_conflicts(content: str) -> str:
    """Rewrite conflict regions the way rerere stores a preimage.

    Labels and the base section are dropped and the two sides are sorted.
    """
    out: list[str] = []
    for part in split_conflicts(content):
        if isinstance(part, str):
            out.append(part)
            continue
        first, second = sorted(part)
        out.extend([CONFLICT_START + "\n", first, CONFLICT_SEP + "\n", second, CONFLICT_END + "\n"])
    return "".join(out)


class LocalMemory:
    """Directory-backed replay memory for installations outside git."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = cache_dir
        self._active: dict[str, str] = {}

    def _entry(self, token: str) -> Path:
        return self.cache_dir / token

    def record_preimage(self, rel_path: str, work_path: Path, sides: MergeSides) -> str | None:
        preimage = work_path.read_text(encoding="utf-8")
        token = conflict_token(preimage)
        if token is None:
            return None
        entry = self._entry(token)
        entry.mkdir(parents=True, exist_ok=True)
        if not (entry / "preimage").exists():
            (entry / "preimage").write_text(preimage, encoding="utf-8")
        self._active[rel_path] = token
        return token

    def lookup_by_preimage(self, rel_path: str, work_path: Path) -> str | None:
        token = self._active.get(rel_path)
        if token is None:
            return None
        entry = self._entry(token)
        if not (entry / "postimage").exists():
            return None
        # Same conflict hunks in different surroundings must not reuse a
        # whole-file postimage
        stored = (entry / "preimage").read_text(encoding="utf-8")
        current = work_path.read_text(encoding="utf-8")
        if normalize_conflicts(stored) != normalize_conflicts(current):
            return None
        return (entry / "postimage").read_text(encoding="utf-8")

    def commit_resolution(self, rel_path: str, work_path: Path) -> str | None:
        token = self._active.pop(rel_path, None)
        if token is None:
            return None
        resolution = work_path.read_text(encoding="utf-8")
        entry = self._entry(token)
        entry.mkdir(parents=True, exist_ok=True)
        (entry / "postimage").write_text(resolution, encoding="utf-8")
        return token

    def discard(self, rel_path: str) -> None:
        self._active.pop(rel_path, None)

    def seed(self, token: str, preimage: str, postimage: str) -> None:
        entry = self._entry(token)
        entry.mkdir(parents=True, exist_ok=True)
        (entry / "preimage").write_text(preimage, encoding="utf-8")
        (entry / "postimage").write_text(postimage, encoding="utf-8")

    def token_for(self, preimage: str) -> str | None:
        return conflict_token(preimage)


class GitRerereMemory:
    """Replay memory backed by git rerere.

    rerere only looks at unmerged index entries, so each conflict is staged
    as stages 1/2/3 with a MERGE_HEAD before rerere is asked about it.
    """

    def __init__(self, project_root: Path, timeout: float = 60.0) -> None:
        self.project_root = project_root
        self.timeout = timeout

    def _git(self, *args: str, stdin: str | None = None, check: bool = True) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["git", *args],
            input=stdin,
            capture_output=True,
            text=True,
            check=check,
            cwd=self.project_root,
            timeout=self.timeout,
        )

    @property
    def git_dir(self) -> Path:
        git_dir = Path(self._git("rev-parse", "--git-dir").stdout.strip())
        return git_dir if git_dir.is_absolute() else self.project_root / git_dir

    @property
    def rr_cache_dir(self) -> Path:
        return self.git_dir / "rr-cache"

    def _rr_entries(self) -> set[str]:
        if not self.rr_cache_dir.exists():
            return set()
        return {entry.name for entry in self.rr_cache_dir.iterdir() if entry.is_dir()}

    def _hash_object(self, content: str) -> str:
        return self._git("hash-object", "-w", "--stdin", stdin=content).stdout.strip()

    def _stage_conflict(self, rel_path: str, sides: MergeSides) -> None:
        git_dir = self.git_dir

        # A crash mid-merge can leave MERGE_HEAD behind
        if (git_dir / "MERGE_HEAD").exists():
            self.discard(rel_path)
        # A leftover MERGE_RR maps the path to an old conflict ID and stops
        # rerere from replaying a known postimage
        (git_dir / "MERGE_RR").unlink(missing_ok=True)

        base_hash = self._hash_object(sides.base)
        ours_hash = self._hash_object(sides.ours)
        theirs_hash = self._hash_object(sides.theirs)

        index_info = "\n".join(
            [
                f"0 {NULL_OID}\t{rel_path}",
                f"100644 {base_hash} 1\t{rel_path}",
                f"100644 {ours_hash} 2\t{rel_path}",
                f"100644 {theirs_hash} 3\t{rel_path}",
            ]
        )
        self._git("update-index", "--index-info", stdin=index_info)

        head_hash = self._git("rev-parse", "HEAD").stdout.strip()
        (git_dir / "MERGE_HEAD").write_text(head_hash + "\n", encoding="utf-8")
        (git_dir / "MERGE_MSG").write_text(f"Skill merge: {rel_path}\n", encoding="utf-8")

    def record_preimage(self, rel_path: str, work_path: Path, sides: MergeSides) -> str | None:
        self.rr_cache_dir.mkdir(parents=True, exist_ok=True)
        self._stage_conflict(rel_path, sides)
        before = self._rr_entries()
        # Records the preimage, or replays a known postimage into the work tree
        self._git("rerere", check=False)
        new_entries = self._rr_entries() - before
        return new_entries.pop() if len(new_entries) == 1 else None

    def lookup_by_preimage(self, rel_path: str, work_path: Path) -> str | None:
        # rerere resolves the working tree but not the index, so the file's
        # own markers are the source of truth
        try:
            content = work_path.read_text(encoding="utf-8")
        except OSError:
            return None
        return None if has_conflict_markers(content) else content

    def commit_resolution(self, rel_path: str, work_path: Path) -> str | None:
        before = self._rr_entries()
        self._git("add", "--", rel_path, check=False)
        self._git("rerere", check=False)
        self.discard(rel_path)
        self._git("restore", "--staged", "--", rel_path, check=False)
        new_entries = self._rr_entries() - before
        return new_entries.pop() if len(new_entries) == 1 else None

    def discard(self, rel_path: str) -> None:
        git_dir = self.git_dir
        for name in ("MERGE_HEAD", "MERGE_MSG", "MERGE_RR"):
            (git_dir / name).unlink(missing_ok=True)
        # Only reset this file's entries so the user's staged changes survive
        self._git("reset", "--", rel_path, check=False)

    def seed(self, token: str, preimage: str, postimage: str) -> None:
        entry = self.rr_cache_dir / token
        entry.mkdir(parents=True, exist_ok=True)
        # rerere merges preimage -> postimage onto its own normalized view
        # of the conflict, so the stored preimage must be normalized too
        (entry / "preimage").write_text(normalize_conflicts(preimage), encoding="utf-8")
        (entry / "postimage").write_text(postimage, encoding="utf-8")

    def token_for(self, preimage: str) -> str | None:
        token = conflict_token(preimage)
        if token is not None:
            return token
        # Not conflict-marked: look for an entry that recorded it verbatim
        if not self.rr_cache_dir.exists():
            return None
        for entry in sorted(self.rr_cache_dir.iterdir()):
            preimage_path = entry / "preimage"
            if preimage_path.is_file() and preimage_path.read_text(encoding="utf-8") == preimage:
                return entry.name
        return None


def open_memory(ctx: InstallContext) -> ResolutionMemory:
    """Pick the replay memory backend configured for this installation."""
    backend = ctx.settings.merge_memory
    if backend == "auto":
        backend = "git" if is_git_repo(ctx.project_root) else "local"
    if backend == "git":
        return GitRerereMemory(ctx.project_root, timeout=ctx.settings.merge_timeout)
    return LocalMemory(ctx.memory_dir)
