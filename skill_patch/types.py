"""Skill patch engine domain types."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .errors import FailureKind


class FileOperation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["rename", "delete", "move"]
    from_: str | None = Field(default=None, alias="from")
    to: str | None = None
    path: str | None = None


# Structured operations: a closed set of variants, one merge rule each.


class PackageDependencies(BaseModel):
    kind: Literal["package_dependencies"] = "package_dependencies"
    packages: dict[str, str]


class EnvAdditions(BaseModel):
    kind: Literal["env_additions"] = "env_additions"
    variables: list[str]


class ServiceDefinitions(BaseModel):
    kind: Literal["service_definitions"] = "service_definitions"
    services: dict[str, Any]


StructuredOperation = Annotated[
    PackageDependencies | EnvAdditions | ServiceDefinitions,
    Field(discriminator="kind"),
]


class SkillManifest(BaseModel):
    skill: str
    version: str
    description: str = ""
    core_version: str
    adds: list[str]
    modifies: list[str]
    structured: list[StructuredOperation] = []
    file_ops: list[FileOperation] = []
    conflicts: list[str] = []
    depends: list[str] = []
    test: str | None = None
    author: str | None = None
    license: str | None = None
    min_skills_system_version: str | None = None
    tested_with: list[str] | None = None
    post_apply: list[str] | None = None

    @property
    def touched(self) -> list[str]:
        """Every path this skill adds or merges into, adds first."""
        return [*self.adds, *(p for p in self.modifies if p not in self.adds)]

    def package_names(self) -> set[str]:
        names: set[str] = set()
        for op in self.structured:
            if isinstance(op, PackageDependencies):
                names.update(op.packages)
        return names


class SkillOverlap(BaseModel):
    skills: list[str]
    reason: str


class AppliedSkill(BaseModel):
    name: str
    version: str
    applied_at: str
    file_hashes: dict[str, str]
    custom_patch: str | None = None
    custom_patch_description: str | None = None


class CustomModification(BaseModel):
    description: str = ""
    applied_at: str | None = None
    files_modified: list[str]
    patch_file: str


class SkillState(BaseModel):
    skills_system_version: str
    core_version: str
    applied_skills: list[AppliedSkill] = []
    custom_modifications: list[CustomModification] | None = None
    rebased_at: str | None = None

    def find(self, name: str) -> AppliedSkill | None:
        return next((s for s in self.applied_skills if s.name == name), None)

    def names(self) -> list[str]:
        return [s.name for s in self.applied_skills]


class MergeResult(BaseModel):
    clean: bool
    conflicts: int = 0


class FileOpsResult(BaseModel):
    success: bool
    executed: list[FileOperation]
    warnings: list[str]
    errors: list[str]


class FileInputHashes(BaseModel):
    base: str
    current: str
    skill: str


class ResolutionMeta(BaseModel):
    skills: list[str]
    apply_order: list[str]
    core_version: str = ""
    resolved_at: str
    tested: bool = False
    test_passed: bool = False
    resolution_source: Literal["generated", "maintainer", "user"] = "user"
    file_hashes: dict[str, FileInputHashes] = {}


class ConflictRecord(BaseModel):
    """An unresolved conflict left in the working tree by a replay."""

    rel_path: str
    skill: str
    preimage: str
    input_hashes: FileInputHashes


class SkillOutcome(BaseModel):
    success: bool
    error: str | None = None


class ReplayResult(BaseModel):
    success: bool
    per_skill: dict[str, SkillOutcome] = {}
    merge_conflicts: list[str] | None = None
    conflicts: list[ConflictRecord] = []
    error: str | None = None
    failure: FailureKind | None = None


class ApplyResult(BaseModel):
    success: bool
    skill: str
    version: str
    merge_conflicts: list[str] | None = None
    backup_pending: bool | None = None
    untracked_changes: list[str] | None = None
    warnings: list[str] | None = None
    error: str | None = None
    failure: FailureKind | None = None


class PendingApply(BaseModel):
    """Conflicts awaiting human resolution after an apply."""

    skill: str
    version: str
    apply_order: list[str]
    conflicts: list[ConflictRecord]


class UninstallResult(BaseModel):
    success: bool
    skill: str
    custom_patch_warning: str | None = None
    test_results: dict[str, bool] | None = None
    merge_conflicts: list[str] | None = None
    error: str | None = None
    failure: FailureKind | None = None
