"""Engine settings read from the environment and the installation's .env file."""

from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from .constants import DEFAULT_SKILLS_DIR, LOCK_STALE_AFTER_S
from .errors import ConfigError

MemoryBackend = Literal["auto", "git", "local"]

ENV_KEYS = [
    "SKILLPATCH_SKILLS_DIR",
    "SKILLPATCH_MERGE_MEMORY",
    "SKILLPATCH_MERGE_TIMEOUT",
    "SKILLPATCH_TEST_TIMEOUT",
    "SKILLPATCH_INSTALL_TIMEOUT",
    "SKILLPATCH_INSTALL_COMMAND",
    "SKILLPATCH_LOCK_STALE_AFTER",
]


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    skills_dir: Path = DEFAULT_SKILLS_DIR
    merge_memory: MemoryBackend = "auto"
    merge_timeout: float = 60.0
    test_timeout: float = 120.0
    install_timeout: float = 300.0
    install_command: list[str] = ["npm", "install", "--legacy-peer-deps"]
    lock_stale_after: float = LOCK_STALE_AFTER_S


def read_env_file(project_root: Path, keys: list[str]) -> dict[str, str]:
    """Parse the project's .env file and return values for requested keys.

    Does NOT load into os.environ, so values never leak to the test and
    install commands the engine spawns.
    """
    env_file = project_root / ".env"
    try:
        content = env_file.read_text(encoding="utf-8")
    except OSError:
        return {}

    result: dict[str, str] = {}
    wanted = set(keys)

    for line in content.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        key, sep, value = trimmed.partition("=")
        if not sep:
            continue
        key = key.strip()
        if key not in wanted:
            continue
        value = value.strip()
        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]
        if value:
            result[key] = value

    return result


def load_settings(project_root: Path | None = None) -> Settings:
    """Build settings; environment variables win over .env values."""
    root = project_root or Path.cwd()
    file_values = read_env_file(root, ENV_KEYS)

    def lookup(key: str) -> str | None:
        return os.environ.get(key) or file_values.get(key)

    raw: dict[str, object] = {}
    if value := lookup("SKILLPATCH_SKILLS_DIR"):
        raw["skills_dir"] = value
    if value := lookup("SKILLPATCH_MERGE_MEMORY"):
        raw["merge_memory"] = value.lower()
    if value := lookup("SKILLPATCH_MERGE_TIMEOUT"):
        raw["merge_timeout"] = value
    if value := lookup("SKILLPATCH_TEST_TIMEOUT"):
        raw["test_timeout"] = value
    if value := lookup("SKILLPATCH_INSTALL_TIMEOUT"):
        raw["install_timeout"] = value
    if value := lookup("SKILLPATCH_INSTALL_COMMAND"):
        raw["install_command"] = shlex.split(value)
    if value := lookup("SKILLPATCH_LOCK_STALE_AFTER"):
        raw["lock_stale_after"] = value

    try:
        return Settings.model_validate(raw)
    except ValidationError as err:
        raise ConfigError(f"Invalid skill patch settings: {err}") from err
