"""Resolution cache: hash-verified conflict resolutions keyed by skill combination.

Layout of one resolution set (``<root>/<skill-a>+<skill-b>/``)::

    meta.yaml
    src/config.ts.preimage        conflict-marked merge output
    src/config.ts.resolution      accepted resolved content
    src/config.ts.preimage.hash   replay-memory token for that preimage

A pair is only trusted when the base, current and skill inputs on disk hash
to exactly what meta.yaml recorded for that file.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ValidationError

from .logger import get_logger
from .state import compute_file_hash, now_iso
from .types import ConflictRecord, FileInputHashes, ResolutionMeta

if TYPE_CHECKING:
    from .context import InstallContext
    from .memory import ResolutionMemory

logger = get_logger(__name__)

META_FILE = "meta.yaml"
PREIMAGE_SUFFIX = ".preimage"
RESOLUTION_SUFFIX = ".resolution"
TOKEN_SUFFIX = ".preimage.hash"


class PreimagePair(BaseModel):
    """A preimage/resolution pair found in a resolution set."""

    rel_path: str
    preimage: Path
    resolution: Path

    @property
    def token_path(self) -> Path:
        return self.preimage.with_name(self.preimage.name + ".hash")


class ResolutionFile(BaseModel):
    """A file to save in the resolution cache."""

    rel_path: str
    preimage: str
    resolution: str
    input_hashes: FileInputHashes


def resolution_key(skills: list[str]) -> str:
    """Skills sorted alphabetically and joined with "+"."""
    return "+".join(sorted(skills))


def find_resolution_dir(skills: list[str], ctx: InstallContext) -> Path | None:
    """Locate the resolution set for a skill combination, shipped sets first."""
    key = resolution_key(skills)
    for root in ctx.resolution_roots:
        dir_path = root / key
        if dir_path.is_dir():
            return dir_path
    return None


def _find_preimage_pairs(dir_path: Path, base_dir: Path) -> list[PreimagePair]:
    pairs: list[PreimagePair] = []

    for entry in sorted(dir_path.iterdir()):
        if entry.is_dir():
            pairs.extend(_find_preimage_pairs(entry, base_dir))
        elif entry.name.endswith(PREIMAGE_SUFFIX):
            stem = entry.name.removesuffix(PREIMAGE_SUFFIX)
            resolution_path = entry.with_name(stem + RESOLUTION_SUFFIX)
            if resolution_path.exists():
                rel_path = entry.relative_to(base_dir).as_posix().removesuffix(PREIMAGE_SUFFIX)
                pairs.append(PreimagePair(rel_path=rel_path, preimage=entry, resolution=resolution_path))

    return pairs


def read_meta(res_dir: Path) -> ResolutionMeta | None:
    meta_path = res_dir / META_FILE
    if not meta_path.exists():
        return None
    try:
        raw = yaml.safe_load(meta_path.read_text(encoding="utf-8"))
        return ResolutionMeta.model_validate(raw)
    except (yaml.YAMLError, ValidationError) as err:
        logger.warning("resolution-cache: unreadable meta", path=str(meta_path), error=str(err))
        return None


def _inputs_match(
    rel_path: str,
    expected: FileInputHashes,
    base_path: Path,
    current_path: Path,
    skill_path: Path,
) -> bool:
    if not base_path.is_file() or not current_path.is_file() or not skill_path.is_file():
        logger.info("resolution-cache: skipping pair, input files not found", path=rel_path)
        return False

    for side, path in (("base", base_path), ("current", current_path), ("skill", skill_path)):
        if compute_file_hash(path) != getattr(expected, side):
            logger.info(f"resolution-cache: skipping pair, {side} hash mismatch", path=rel_path)
            return False

    return True


def _seed_pair(pair: PreimagePair, memory: ResolutionMemory) -> bool:
    if not pair.token_path.exists():
        logger.info("resolution-cache: skipping pair, no replay token recorded", path=pair.rel_path)
        return False
    token = pair.token_path.read_text(encoding="utf-8").strip()
    if not token:
        logger.info("resolution-cache: skipping pair, empty replay token", path=pair.rel_path)
        return False

    memory.seed(
        token,
        pair.preimage.read_text(encoding="utf-8"),
        pair.resolution.read_text(encoding="utf-8"),
    )
    return True


def load_resolutions(
    skills: list[str],
    ctx: InstallContext,
    skill_dir: Path | None,
    memory: ResolutionMemory,
) -> bool:
    """Seed replay memory with every pair whose recorded inputs match disk.

    Pairs are checked one by one; a stale pair is skipped without affecting
    the rest. Returns True if at least one pair was loaded.
    """
    res_dir = find_resolution_dir(skills, ctx)
    if res_dir is None:
        return False

    meta = read_meta(res_dir)
    if meta is None:
        return False

    pairs = _find_preimage_pairs(res_dir, res_dir)
    if not pairs:
        return False

    if skill_dir is None:
        logger.info("resolution-cache: no skill directory to verify against", key=res_dir.name)
        return False

    loaded_any = False
    for pair in pairs:
        expected = meta.file_hashes.get(pair.rel_path)
        if expected is None:
            logger.info("resolution-cache: skipping pair, no file_hashes in meta", path=pair.rel_path)
            continue

        if not _inputs_match(
            pair.rel_path,
            expected,
            ctx.base_dir / pair.rel_path,
            ctx.project_root / pair.rel_path,
            skill_dir / "modify" / pair.rel_path,
        ):
            continue

        if _seed_pair(pair, memory):
            loaded_any = True

    if loaded_any:
        logger.info("resolution-cache: loaded resolutions", key=res_dir.name, source=meta.resolution_source)
    return loaded_any


def seed_for_conflict(
    skills: list[str],
    rel_path: str,
    inputs: FileInputHashes,
    ctx: InstallContext,
    memory: ResolutionMemory,
) -> bool:
    """Seed the single pair for rel_path if it was recorded for exactly these inputs.

    The per-file counterpart of load_resolutions, checked against the hashes
    of the merge that just conflicted instead of the files on disk. Every
    root is consulted, shipped first.
    """
    key = resolution_key(skills)
    for root in ctx.resolution_roots:
        res_dir = root / key
        meta = read_meta(res_dir) if res_dir.is_dir() else None
        if meta is None or meta.file_hashes.get(rel_path) != inputs:
            continue

        pair = PreimagePair(
            rel_path=rel_path,
            preimage=res_dir / (rel_path + PREIMAGE_SUFFIX),
            resolution=res_dir / (rel_path + RESOLUTION_SUFFIX),
        )
        if pair.preimage.exists() and pair.resolution.exists() and _seed_pair(pair, memory):
            return True
    return False


def save_resolution(
    skills: list[str],
    files: list[ResolutionFile | dict[str, Any]],
    meta: dict[str, Any],
    ctx: InstallContext,
    memory: ResolutionMemory | None = None,
) -> Path:
    """Write preimage/resolution pairs and meta.yaml under the local root.

    When a replay memory is given, each preimage's token is captured in a
    sidecar so a later load can pre-seed that memory directly.
    """
    res_dir = ctx.local_resolutions_dir / resolution_key(skills)
    normalized = [f if isinstance(f, ResolutionFile) else ResolutionFile.model_validate(f) for f in files]

    for file in normalized:
        preimage_path = res_dir / (file.rel_path + PREIMAGE_SUFFIX)
        resolution_path = res_dir / (file.rel_path + RESOLUTION_SUFFIX)

        preimage_path.parent.mkdir(parents=True, exist_ok=True)
        preimage_path.write_text(file.preimage, encoding="utf-8")
        resolution_path.write_text(file.resolution, encoding="utf-8")

        token = memory.token_for(file.preimage) if memory is not None else None
        if token:
            (res_dir / (file.rel_path + TOKEN_SUFFIX)).write_text(token, encoding="utf-8")

    # Earlier pairs of the same set stay valid alongside the new ones
    existing = read_meta(res_dir)
    file_hashes = dict(existing.file_hashes) if existing else {}
    file_hashes.update({f.rel_path: f.input_hashes for f in normalized})

    full_meta = ResolutionMeta(
        skills=sorted(skills),
        apply_order=list(meta.get("apply_order") or skills),
        core_version=str(meta.get("core_version") or ""),
        resolved_at=str(meta.get("resolved_at") or now_iso()),
        tested=bool(meta.get("tested", False)),
        test_passed=bool(meta.get("test_passed", False)),
        resolution_source=meta.get("resolution_source") or "user",
        file_hashes=file_hashes,
    )

    res_dir.mkdir(parents=True, exist_ok=True)
    (res_dir / META_FILE).write_text(
        yaml.safe_dump(full_meta.model_dump(), sort_keys=True),
        encoding="utf-8",
    )
    return res_dir


def record_resolutions(
    skills: list[str],
    conflicts: list[ConflictRecord],
    ctx: InstallContext,
    memory: ResolutionMemory,
    meta: dict[str, Any] | None = None,
) -> Path | None:
    """Capture human-resolved working files as a resolution set.

    Each resolution is also committed to replay memory (seeded under the
    preimage's token) so the same conflict resolves itself next time.
    """
    if not conflicts:
        return None

    files: list[ResolutionFile] = []
    for conflict in conflicts:
        resolved = (ctx.project_root / conflict.rel_path).read_text(encoding="utf-8")
        token = memory.token_for(conflict.preimage)
        if token:
            memory.seed(token, conflict.preimage, resolved)
        files.append(
            ResolutionFile(
                rel_path=conflict.rel_path,
                preimage=conflict.preimage,
                resolution=resolved,
                input_hashes=conflict.input_hashes,
            )
        )

    full_meta: dict[str, Any] = {"apply_order": skills, "core_version": ctx.state.core_version}
    full_meta.update(meta or {})
    return save_resolution(skills, files, full_meta, ctx, memory)


def clear_all_resolutions(ctx: InstallContext) -> None:
    """Remove every locally generated resolution set.

    Shipped sets are left alone.
    """
    res_dir = ctx.local_resolutions_dir
    if res_dir.exists():
        shutil.rmtree(res_dir)
    res_dir.mkdir(parents=True, exist_ok=True)
