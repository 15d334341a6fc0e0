"""Shared fixtures for skill patch engine tests."""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING, Any

import pytest
import yaml

from skill_patch.context import InstallContext

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def skills_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create a temp project directory and chdir into it."""
    monkeypatch.chdir(tmp_path)
    # Package installs are never run from tests
    monkeypatch.setenv("SKILLPATCH_INSTALL_COMMAND", "true")
    return tmp_path


@pytest.fixture()
def data_dir(skills_tmp: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Set up .skillpatch/base/src and .skillpatch/backup, with local replay memory."""
    monkeypatch.setenv("SKILLPATCH_MERGE_MEMORY", "local")
    (skills_tmp / ".skillpatch" / "base" / "src").mkdir(parents=True, exist_ok=True)
    (skills_tmp / ".skillpatch" / "backup").mkdir(parents=True, exist_ok=True)
    return skills_tmp


def write_state(tmp_dir: Path, state: dict[str, Any]) -> None:
    """Write a YAML state file to .skillpatch/state.yaml."""
    state_path = tmp_dir / ".skillpatch" / "state.yaml"
    state_path.parent.mkdir(parents=True, exist_ok=True)
    state_path.write_text(yaml.safe_dump(state), encoding="utf-8")


def create_minimal_state(tmp_dir: Path, **overrides: Any) -> None:
    """Write a minimal skills state file."""
    state: dict[str, Any] = {
        "skills_system_version": "0.1.0",
        "core_version": "1.0.0",
        "applied_skills": [],
    }
    state.update(overrides)
    write_state(tmp_dir, state)


def write_base(tmp_dir: Path, files: dict[str, str], *, also_current: bool = True) -> None:
    """Write files into the base snapshot and, by default, the working tree."""
    for rel_path, content in files.items():
        targets = [tmp_dir / ".skillpatch" / "base" / rel_path]
        if also_current:
            targets.append(tmp_dir / rel_path)
        for target in targets:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")


def load_ctx(tmp_dir: Path) -> InstallContext:
    return InstallContext.load(tmp_dir)


def create_skill_package(
    tmp_dir: Path,
    *,
    skill: str = "test-skill",
    version: str = "1.0.0",
    core_version: str = "1.0.0",
    adds: list[str] | None = None,
    modifies: list[str] | None = None,
    add_files: dict[str, str] | None = None,
    modify_files: dict[str, str] | None = None,
    conflicts: list[str] | None = None,
    depends: list[str] | None = None,
    test: str | None = None,
    structured: dict[str, Any] | None = None,
    file_ops: list[dict[str, Any]] | None = None,
    post_apply: list[str] | None = None,
    min_skills_system_version: str | None = None,
    dir_name: str | None = None,
    installed: bool = True,
) -> Path:
    """Create a skill package with manifest and optional files.

    Installed packages live under .claude/skills/ where replay looks them up.
    """
    parent = tmp_dir / ".claude" / "skills" if installed else tmp_dir
    skill_dir = parent / (dir_name or skill)
    skill_dir.mkdir(parents=True, exist_ok=True)

    manifest: dict[str, Any] = {
        "skill": skill,
        "version": version,
        "description": "Test skill",
        "core_version": core_version,
        "adds": adds or [],
        "modifies": modifies or [],
        "conflicts": conflicts or [],
        "depends": depends or [],
    }
    if test is not None:
        manifest["test"] = test
    if structured is not None:
        manifest["structured"] = structured
    if file_ops is not None:
        manifest["file_ops"] = file_ops
    if post_apply is not None:
        manifest["post_apply"] = post_apply
    if min_skills_system_version is not None:
        manifest["min_skills_system_version"] = min_skills_system_version

    (skill_dir / "manifest.yaml").write_text(yaml.safe_dump(manifest), encoding="utf-8")

    for sub_dir, files in (("add", add_files), ("modify", modify_files)):
        for rel_path, content in (files or {}).items():
            full_path = skill_dir / sub_dir / rel_path
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_text(content, encoding="utf-8")

    return skill_dir


def init_git_repo(directory: Path) -> None:
    """Initialize a git repo with an initial commit."""
    run_opts = {"cwd": str(directory), "capture_output": True, "text": True}
    subprocess.run(["git", "init"], **run_opts, check=True)
    subprocess.run(["git", "config", "user.email", "test@test.com"], **run_opts, check=True)
    subprocess.run(["git", "config", "user.name", "Test"], **run_opts, check=True)
    subprocess.run(["git", "config", "rerere.enabled", "true"], **run_opts, check=True)
    (directory / ".gitignore").write_text("__pycache__\n", encoding="utf-8")
    subprocess.run(["git", "add", "-A"], **run_opts, check=True)
    subprocess.run(["git", "commit", "-m", "init"], **run_opts, check=True)
