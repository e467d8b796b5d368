"""Tech stack and project shape inference from manifest files."""

from __future__ import annotations

import json
import logging
import re
import tomllib
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from refactor_pilot.scan.models import FileInsight

logger = logging.getLogger(__name__)

_DEPENDENCY_FIELDS = ("dependencies", "devDependencies", "peerDependencies", "optionalDependencies")
_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


@dataclass(slots=True)
class PackageSignals:
    """Facts read from ``package.json`` and Python manifests."""

    has_package_json: bool = False
    has_typescript: bool = False
    has_bin: bool = False
    dependencies: set[str] = field(default_factory=set)
    python_dependencies: set[str] = field(default_factory=set)
    has_python_scripts: bool = False


def read_package_signals(root: Path) -> PackageSignals:
    has_tsconfig = (root / "tsconfig.json").exists()
    signals = PackageSignals(has_typescript=has_tsconfig)
    _read_python_signals(root, signals)

    package_json = root / "package.json"
    if not package_json.exists():
        return signals
    signals.has_package_json = True
    try:
        parsed = json.loads(package_json.read_text("utf-8"))
    except (OSError, ValueError) as error:
        logger.debug("Unreadable package.json in %s: %s", root, error)
        return signals
    if not isinstance(parsed, dict):
        return signals

    for field_name in _DEPENDENCY_FIELDS:
        section = parsed.get(field_name)
        if isinstance(section, dict):
            signals.dependencies.update(name.lower() for name in section)
    signals.has_typescript = "typescript" in signals.dependencies or has_tsconfig
    signals.has_bin = isinstance(parsed.get("bin"), dict | str)
    return signals


def infer_tech_stack(  # noqa: C901, PLR0911
    root: Path,
    signals: PackageSignals,
    source_files: Sequence[FileInsight],
) -> str:
    """Return a short human label for the repository's main stack."""

    dependencies = signals.dependencies
    typescript = signals.has_typescript
    if "next" in dependencies:
        return "Next.js + TypeScript" if typescript else "Next.js"
    if "react" in dependencies and "vite" in dependencies:
        return "React + TypeScript + Vite" if typescript else "React + Vite"
    if "express" in dependencies:
        return "TypeScript + Node.js + Express" if typescript else "Node.js + Express"
    if "fastify" in dependencies:
        return "TypeScript + Node.js + Fastify" if typescript else "Node.js + Fastify"
    if (root / "Cargo.toml").exists():
        return "Rust"
    if (root / "go.mod").exists():
        return "Go"
    if _has_python_manifest(root):
        for framework, label in (("django", "Django"), ("fastapi", "FastAPI"), ("flask", "Flask")):
            if framework in signals.python_dependencies:
                return f"Python + {label}"
        return "Python"
    if (root / "Package.swift").exists() or any(root.glob("*.xcodeproj")):
        return "Swift"
    if (root / "build.gradle.kts").exists() or (root / "build.gradle").exists():
        return "Kotlin/Java (Gradle)"
    if (root / "pom.xml").exists():
        return "Java (Maven)"
    if signals.has_package_json:
        return "TypeScript + Node.js" if typescript else "Node.js"

    paths = [item.path for item in source_files]
    if any(path.endswith((".ts", ".tsx")) for path in paths):
        return "TypeScript"
    if any(path.endswith((".js", ".jsx")) for path in paths):
        return "JavaScript"
    if any(path.endswith(".py") for path in paths):
        return "Python"
    return "custom"


def infer_project_shape(root: Path, tech_stack: str, signals: PackageSignals) -> str:
    if (root / "apps").exists() and (root / "packages").exists():
        return "monorepo"

    stack = tech_stack.lower()
    if any(marker in stack for marker in ("next", "vite", "django", "flask")):
        return "web-app"
    if any(marker in stack for marker in ("express", "fastify", "fastapi")):
        return "api-service"
    if (
        signals.has_bin
        or signals.has_python_scripts
        or (root / "src" / "cli.ts").exists()
        or (root / "src" / "commands").exists()
    ):
        return "cli-tool"
    if signals.has_package_json or (root / "pyproject.toml").exists():
        return "library"
    return "custom"


def _has_python_manifest(root: Path) -> bool:
    return any(
        (root / name).exists() for name in ("pyproject.toml", "requirements.txt", "setup.py")
    )


def _read_python_signals(root: Path, signals: PackageSignals) -> None:
    pyproject = root / "pyproject.toml"
    if pyproject.exists():
        try:
            parsed = tomllib.loads(pyproject.read_text("utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as error:
            logger.debug("Unreadable pyproject.toml in %s: %s", root, error)
            parsed = {}
        project = parsed.get("project", {})
        if isinstance(project, dict):
            requirements = project.get("dependencies", [])
            if isinstance(requirements, list):
                signals.python_dependencies.update(_requirement_names(requirements))
            signals.has_python_scripts = bool(project.get("scripts"))
        tool = parsed.get("tool", {})
        poetry = tool.get("poetry", {}) if isinstance(tool, dict) else {}
        if isinstance(poetry, dict):
            deps = poetry.get("dependencies", {})
            if isinstance(deps, dict):
                signals.python_dependencies.update(name.lower() for name in deps)
            signals.has_python_scripts = signals.has_python_scripts or bool(poetry.get("scripts"))

    requirements_txt = root / "requirements.txt"
    if requirements_txt.exists():
        try:
            lines = requirements_txt.read_text("utf-8").splitlines()
        except OSError:
            return
        signals.python_dependencies.update(
            _requirement_names(line for line in lines if not line.strip().startswith("#")),
        )


def _requirement_names(requirements) -> set[str]:
    names: set[str] = set()
    for requirement in requirements:
        if not isinstance(requirement, str):
            continue
        match = _REQUIREMENT_NAME.match(requirement)
        if match is not None:
            names.add(match.group(1).lower())
    return names
