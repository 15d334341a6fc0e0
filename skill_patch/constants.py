"""Skill patch engine constants."""

from __future__ import annotations

from pathlib import Path

DATA_DIR = Path(".skillpatch")
STATE_FILE = "state.yaml"
BASE_DIR = DATA_DIR / "base"
BACKUP_DIR = DATA_DIR / "backup"
LOCK_FILE = DATA_DIR / "lock"
# Seconds after which a lock held by a live process is taken over
LOCK_STALE_AFTER_S = 5 * 60
CUSTOM_DIR = DATA_DIR / "custom"
RESOLUTIONS_DIR = DATA_DIR / "resolutions"
MEMORY_DIR = DATA_DIR / "rr-cache"
PENDING_FILE = DATA_DIR / "pending.yaml"
SHIPPED_RESOLUTIONS_DIR = Path(".claude/resolutions")
DEFAULT_SKILLS_DIR = Path(".claude/skills")
SKILLS_SCHEMA_VERSION = "0.1.0"

# Top-level paths captured in the base snapshot
BASE_INCLUDES = ["src/", "package.json", ".env.example", "container/"]

BASE_EXCLUDES = {
    "node_modules",
    ".git",
    str(DATA_DIR),
    "dist",
    "logs",
}

# Targets of the structured merge rules
PACKAGE_MANIFEST = "package.json"
PACKAGE_LOCK = "package-lock.json"
ENV_EXAMPLE = ".env.example"
COMPOSE_FILE = "docker-compose.yml"
