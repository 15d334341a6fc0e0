"""Exception types raised inside the skill patch engine.

Orchestration entry points (apply, replay, uninstall) catch these and report
them through result objects; lower-level helpers let them propagate.
"""

from __future__ import annotations

from typing import Literal

FailureKind = Literal["conflict", "missing_dependency", "precondition", "verification", "error"]


class SkillPatchError(Exception):
    """Base class for engine errors."""

    failure: FailureKind = "error"


class ConfigError(SkillPatchError, ValueError):
    pass


class ManifestError(SkillPatchError, ValueError):
    pass


class StateError(SkillPatchError, RuntimeError):
    pass


class LockError(SkillPatchError, RuntimeError):
    failure: FailureKind = "precondition"


class MergeError(SkillPatchError, RuntimeError):
    """The merge tool itself failed (as opposed to reporting conflicts)."""


class StructuredMergeError(SkillPatchError, ValueError):
    """A structured operation cannot be merged (range conflict, port collision)."""


class MissingDependencyError(SkillPatchError, FileNotFoundError):
    failure: FailureKind = "missing_dependency"


def failure_kind(err: BaseException) -> FailureKind:
    """Map an exception to the failure kind reported in results."""
    if isinstance(err, SkillPatchError):
        return err.failure
    if isinstance(err, FileNotFoundError):
        return "missing_dependency"
    return "error"
