"""Non-merge file operations (rename, delete, move) declared by a skill."""

from __future__ import annotations

from pathlib import Path

from .types import FileOperation, FileOpsResult


def _safe_path(root: Path, relative_path: str) -> Path | None:
    """Resolve a relative path within root, rejecting escapes."""
    resolved = (root / relative_path).resolve()
    if resolved != root and not resolved.is_relative_to(root):
        return None
    return resolved


def _relocate(op: FileOperation, root: Path) -> str | None:
    """Shared body of rename and move; returns an error message on failure."""
    if not op.from_ or not op.to:
        return f"{op.type}: requires 'from' and 'to'"
    src_path = _safe_path(root, op.from_)
    if src_path is None:
        return f"{op.type}: path escapes project root: {op.from_}"
    dst_path = _safe_path(root, op.to)
    if dst_path is None:
        return f"{op.type}: path escapes project root: {op.to}"
    if not src_path.exists():
        return f"{op.type}: source does not exist: {op.from_}"
    if dst_path.exists():
        return f"{op.type}: target already exists: {op.to}"
    if op.type == "move":
        dst_path.parent.mkdir(parents=True, exist_ok=True)
    src_path.rename(dst_path)
    return None


def execute_file_ops(ops: list[FileOperation], project_root: Path) -> FileOpsResult:
    """Execute file operations in order, stopping at the first error."""
    result = FileOpsResult(success=True, executed=[], warnings=[], errors=[])
    root = project_root.resolve()

    for op in ops:
        error: str | None = None

        if op.type in ("rename", "move"):
            error = _relocate(op, root)
        elif op.type == "delete":
            if not op.path:
                error = "delete: requires 'path'"
            elif (del_path := _safe_path(root, op.path)) is None:
                error = f"delete: path escapes project root: {op.path}"
            elif not del_path.exists():
                result.warnings.append(f"delete: file does not exist (skipped): {op.path}")
            else:
                del_path.unlink()
        else:
            error = f"unknown operation type: {op.type}"

        if error:
            result.errors.append(error)
            result.success = False
            return result
        result.executed.append(op)

    return result


def file_op_paths(ops: list[FileOperation]) -> list[str]:
    """Every project path a list of file operations can touch."""
    paths: list[str] = []
    for op in ops:
        paths.extend(p for p in (op.from_, op.to, op.path) if p)
    return paths
