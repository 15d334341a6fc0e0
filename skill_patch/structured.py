"""Structured (non-text) merge rules: package deps, env vars, service definitions.

Each operation variant has exactly one rule. During a replay the operations
of every skill are aggregated first and each rule runs once over the
aggregate, in the fixed order of RULES.
"""

from __future__ import annotations

import json
import re
import subprocess
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .constants import COMPOSE_FILE, ENV_EXAMPLE, PACKAGE_MANIFEST
from .errors import StructuredMergeError
from .logger import get_logger
from .types import EnvAdditions, PackageDependencies, ServiceDefinitions, StructuredOperation

logger = get_logger(__name__)

ENV_VAR_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=")


def _compare_version_parts(a: list[str], b: list[str]) -> int:
    for i in range(max(len(a), len(b))):
        a_num = int(a[i]) if i < len(a) and a[i].isdigit() else 0
        b_num = int(b[i]) if i < len(b) and b[i].isdigit() else 0
        if a_num != b_num:
            return a_num - b_num
    return 0


def are_ranges_compatible(existing: str, requested: str) -> tuple[bool, str]:
    """Check whether two version ranges can be satisfied together.

    Returns (compatible, resolved). Caret ranges with the same major and tilde
    ranges with the same major.minor resolve to the higher of the two; any
    other differing pair is incompatible.
    """
    if existing == requested:
        return True, existing

    for prefix, fixed_parts in (("^", 1), ("~", 2)):
        if existing.startswith(prefix) and requested.startswith(prefix):
            e_parts = existing[1:].split(".")
            r_parts = requested[1:].split(".")
            if e_parts[:fixed_parts] != r_parts[:fixed_parts]:
                return False, existing
            resolved = existing if _compare_version_parts(e_parts, r_parts) >= 0 else requested
            return True, resolved

    return False, existing


def merge_package_dependencies(package_json_path: Path, new_deps: dict[str, str]) -> None:
    """Merge dependencies into package.json, keeping both sections sorted."""
    if package_json_path.exists():
        pkg: dict[str, Any] = json.loads(package_json_path.read_text(encoding="utf-8"))
    else:
        pkg = {}

    dependencies: dict[str, str] = pkg.get("dependencies") or {}
    dev_dependencies: dict[str, str] | None = pkg.get("devDependencies")

    for name, version in new_deps.items():
        existing = dependencies.get(name)
        if existing is None and dev_dependencies is not None:
            existing = dev_dependencies.get(name)
        if existing and existing != version:
            compatible, resolved = are_ranges_compatible(existing, version)
            if not compatible:
                raise StructuredMergeError(
                    f"Dependency conflict: {name} is already at {existing}, skill wants {version}"
                )
            dependencies[name] = resolved
        else:
            dependencies[name] = version

    pkg["dependencies"] = dict(sorted(dependencies.items()))
    if dev_dependencies is not None:
        pkg["devDependencies"] = dict(sorted(dev_dependencies.items()))

    package_json_path.write_text(json.dumps(pkg, indent=2) + "\n", encoding="utf-8")


def merge_env_additions(env_example_path: Path, additions: list[str]) -> None:
    """Declare variables in .env.example that are not already there."""
    content = env_example_path.read_text(encoding="utf-8") if env_example_path.exists() else ""

    existing_vars = {m.group(1) for line in content.split("\n") if (m := ENV_VAR_RE.match(line))}
    new_vars = [v for v in dict.fromkeys(additions) if v not in existing_vars]
    if not new_vars:
        return

    if content and not content.endswith("\n"):
        content += "\n"
    content += "\n# Added by skill\n"
    content += "".join(f"{v}=\n" for v in new_vars)

    env_example_path.write_text(content, encoding="utf-8")


def _host_port(port_mapping: object) -> str | None:
    parts = str(port_mapping).split(":")
    return parts[-2] if len(parts) >= 2 else None


def _host_ports(service: object) -> list[str]:
    ports = service.get("ports") if isinstance(service, dict) else None
    if not isinstance(ports, list):
        return []
    return [host for p in ports if (host := _host_port(p))]


def merge_service_definitions(compose_path: Path, services: dict[str, Any]) -> None:
    """Add services to docker-compose.yml, refusing host port collisions."""
    if compose_path.exists():
        compose: dict[str, Any] = yaml.safe_load(compose_path.read_text(encoding="utf-8")) or {}
    else:
        compose = {"version": "3"}

    existing_services: dict[str, Any] = compose.get("services") or {}
    compose["services"] = existing_services

    used_ports = {port for svc in existing_services.values() for port in _host_ports(svc)}

    for name, definition in services.items():
        if name in existing_services:
            continue
        for host in _host_ports(definition):
            if host in used_ports:
                raise StructuredMergeError(f'Port collision: host port {host} from service "{name}" is already in use')
            used_ports.add(host)
        existing_services[name] = definition

    compose_path.write_text(yaml.safe_dump(compose, default_flow_style=False, sort_keys=False), encoding="utf-8")


@dataclass
class StructuredBatch:
    """Structured operations of several skills, folded together in apply order."""

    packages: dict[str, str]
    env_variables: list[str]
    services: dict[str, Any]

    @classmethod
    def collect(cls, operations: Iterable[StructuredOperation]) -> StructuredBatch:
        batch = cls(packages={}, env_variables=[], services={})
        for op in operations:
            if isinstance(op, PackageDependencies):
                batch.packages.update(op.packages)
            elif isinstance(op, EnvAdditions):
                batch.env_variables.extend(v for v in op.variables if v not in batch.env_variables)
            elif isinstance(op, ServiceDefinitions):
                batch.services.update(op.services)
        return batch

    @property
    def has_packages(self) -> bool:
        return bool(self.packages)

    def is_empty(self) -> bool:
        return not (self.packages or self.env_variables or self.services)


@dataclass
class StructuredRule:
    kind: str
    target: str
    payload: Callable[[StructuredBatch], Any]
    merge: Callable[[Path, Any], None]


RULES = [
    StructuredRule("package_dependencies", PACKAGE_MANIFEST, lambda b: b.packages, merge_package_dependencies),
    StructuredRule("env_additions", ENV_EXAMPLE, lambda b: b.env_variables, merge_env_additions),
    StructuredRule("service_definitions", COMPOSE_FILE, lambda b: b.services, merge_service_definitions),
]

STRUCTURED_TARGETS = [rule.target for rule in RULES]


def apply_structured_batch(batch: StructuredBatch, project_root: Path) -> list[str]:
    """Run every rule that has work to do; returns the target files touched."""
    touched: list[str] = []
    for rule in RULES:
        payload = rule.payload(batch)
        if not payload:
            continue
        rule.merge(project_root / rule.target, payload)
        touched.append(rule.target)
    return touched


def run_install(command: list[str], project_root: Path, timeout: float) -> bool:
    """Run the package-manager install step. Failures are logged, not raised."""
    try:
        subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=True,
            cwd=project_root,
            timeout=timeout,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as err:
        logger.warning("package install failed", command=" ".join(command), error=str(err))
        return False
    return True
