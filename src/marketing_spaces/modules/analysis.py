"""
Local Project Analysis - Scan a project folder on disk.

Produces three JSON outputs: repository metadata, the contents of a
few key files, and the folder structure.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import tomllib
from collections import Counter
from pathlib import Path
from typing import Any

from marketing_spaces.core.data_types import DataType
from marketing_spaces.core.errors import ErrorCategory, FatalModuleError, ModuleWorkError
from marketing_spaces.core.module_types import (
    ModuleContext,
    ModuleDescriptor,
    ModuleResult,
    ModuleType,
    OutputDefinition,
)


logger = logging.getLogger(__name__)

KEY_FILES = (
    "README.md",
    "README.rst",
    "README.txt",
    "README",
    "package.json",
    "pyproject.toml",
    "setup.cfg",
    "Cargo.toml",
    "go.mod",
)

ALWAYS_SKIPPED = {".git", "node_modules", "__pycache__", ".venv", "venv"}

LANGUAGES = {
    ".py": "Python",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".go": "Go",
    ".rs": "Rust",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".java": "Java",
    ".rb": "Ruby",
    ".css": "CSS",
    ".html": "HTML",
}

FRAMEWORKS = (
    # (dependency name, framework, project type)
    ("next", "Next.js", "web"),
    ("expo", "Expo", "mobile"),
    ("react-native", "React Native", "mobile"),
    ("react", "React", "web"),
    ("vue", "Vue.js", "web"),
    ("svelte", "Svelte", "web"),
    ("django", "Django", "web"),
    ("flask", "Flask", "web"),
    ("fastapi", "FastAPI", "web"),
    ("aiohttp", "aiohttp", "web"),
    ("pyside6", "PySide6", "desktop"),
)


def _scan(root: Path, include_hidden: bool, max_depth: int, depth: int = 0) -> list[dict[str, Any]]:
    """Recursively describe a directory as a list of file/directory nodes."""
    nodes = []
    try:
        entries = sorted(root.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
    except OSError as e:
        logger.warning("Cannot read %s: %s", root, e)
        return nodes

    for entry in entries:
        if entry.name in ALWAYS_SKIPPED:
            continue
        if not include_hidden and entry.name.startswith("."):
            continue

        if entry.is_dir():
            node: dict[str, Any] = {"name": entry.name, "type": "directory"}
            if depth < max_depth:
                node["children"] = _scan(entry, include_hidden, max_depth, depth + 1)
            nodes.append(node)
        else:
            try:
                size = entry.stat().st_size
            except OSError:
                continue
            nodes.append({"name": entry.name, "type": "file", "size": size})
    return nodes


def _walk_files(nodes: list[dict[str, Any]], prefix: str = ""):
    for node in nodes:
        path = f"{prefix}{node['name']}"
        if node["type"] == "directory":
            yield from _walk_files(node.get("children", []), f"{path}/")
        else:
            yield path, node


def _dependencies(root: Path, contents: dict[str, str]) -> tuple[str | None, list[str]]:
    """Project name and dependency names declared in manifest files."""
    name = None
    deps: list[str] = []

    if "package.json" in contents:
        try:
            package = json.loads(contents["package.json"])
            name = package.get("name") or name
            deps += list(package.get("dependencies", {}))
            deps += list(package.get("devDependencies", {}))
        except (json.JSONDecodeError, AttributeError):
            logger.debug("Unparseable package.json in %s", root)

    if "pyproject.toml" in contents:
        try:
            project = tomllib.loads(contents["pyproject.toml"]).get("project", {})
            name = project.get("name") or name
            for requirement in project.get("dependencies", []):
                deps.append(re.split(r"[\s;\[<>=!~]", requirement, maxsplit=1)[0])
        except tomllib.TOMLDecodeError:
            logger.debug("Unparseable pyproject.toml in %s", root)

    return name, deps


def analyze_project(
    root: Path,
    include_hidden: bool = False,
    max_depth: int = 4,
    max_file_bytes: int = 20000,
) -> tuple[dict[str, Any], dict[str, str], dict[str, Any]]:
    """
    Scan ``root`` and return (metadata, file contents, structure).

    Blocking; run it in a worker thread from async code.
    """
    tree = _scan(root, include_hidden, max_depth)

    contents: dict[str, str] = {}
    for name in KEY_FILES:
        path = root / name
        if path.is_file():
            try:
                contents[name] = path.read_text(encoding="utf-8", errors="replace")[:max_file_bytes]
            except OSError as e:
                logger.warning("Cannot read %s: %s", path, e)

    languages: Counter[str] = Counter()
    file_count = 0
    total_size = 0
    for path, node in _walk_files(tree):
        file_count += 1
        total_size += node.get("size", 0)
        language = LANGUAGES.get(Path(path).suffix.lower())
        if language:
            languages[language] += 1

    project_name, deps = _dependencies(root, contents)
    lowered = {d.lower() for d in deps}

    framework = None
    project_type = "unknown"
    for dependency, fw, kind in FRAMEWORKS:
        if dependency in lowered:
            framework, project_type = fw, kind
            break

    top_level = {node["name"] for node in tree if node["type"] == "directory"}
    metadata = {
        "projectName": project_name or root.name,
        "projectPath": str(root),
        "projectType": project_type,
        "framework": framework,
        "languages": [lang for lang, _ in languages.most_common()],
        "dependencies": sorted(set(deps)),
        "detectedFiles": sorted(contents),
        "hasReadme": any(name.startswith("README") for name in contents),
        "fileCount": file_count,
        "totalSize": total_size,
        "directories": {
            "hasSrc": "src" in top_level,
            "hasApp": "app" in top_level,
            "hasComponents": "components" in top_level,
            "hasAssets": "assets" in top_level,
            "hasPublic": "public" in top_level,
            "hasTests": "tests" in top_level or "test" in top_level,
        },
    }
    structure = {"name": root.name, "type": "directory", "children": tree}
    return metadata, contents, structure


async def local_project_analysis_executor(
    inputs: dict[str, Any],
    config: dict[str, Any],
    context: ModuleContext,
) -> ModuleResult:
    """Scan the configured local project folder."""
    raw_path = (config.get("localProjectPath") or "").strip()
    if not raw_path:
        raise FatalModuleError(
            "No project folder configured. Set a local project path first.",
            code="MISSING_CONFIG",
        )

    root = Path(raw_path).expanduser()
    if not root.is_dir():
        raise ModuleWorkError(
            f"Project folder not found: {root}",
            code="PATH_NOT_FOUND",
            category=ErrorCategory.INPUT,
        )

    context.log(f"Scanning {root}")
    metadata, contents, structure = await asyncio.to_thread(
        analyze_project,
        root,
        bool(config.get("includeHiddenFiles", False)),
        int(config.get("maxDepth", 4)),
        int(config.get("maxFileBytes", 20000)),
    )
    context.log(
        f"Found {metadata['fileCount']} files",
        details={"languages": metadata["languages"], "framework": metadata["framework"]},
    )

    if metadata["fileCount"] == 0:
        raise ModuleWorkError("The project folder is empty", code="EMPTY_PROJECT", category=ErrorCategory.INPUT)

    warning = None
    if not metadata["hasReadme"]:
        warning = "No README found; descriptions will rely on file names only"

    file_contents = {"files": contents, "count": len(contents)}

    return ModuleResult(
        outputs={
            "out-1": metadata,
            "out-2": file_contents,
            "out-3": structure,
        },
        warning=warning,
    )


LOCAL_PROJECT_ANALYSIS = ModuleDescriptor(
    type=ModuleType.LOCAL_PROJECT_ANALYSIS,
    name="Local Project Analysis Agent",
    description="Scan a project folder on this machine",
    inputs=[],
    outputs=[
        OutputDefinition(
            id="out-1",
            label="Repository Metadata",
            data_type=DataType.JSON,
            description="Name, languages, framework and dependencies",
        ),
        OutputDefinition(
            id="out-2",
            label="File Contents",
            data_type=DataType.JSON,
            description="README and manifest files",
        ),
        OutputDefinition(
            id="out-3",
            label="Repo Structure",
            data_type=DataType.JSON,
            description="Folder tree",
        ),
    ],
    config_defaults={
        "localProjectPath": "",
        "includeHiddenFiles": False,
        "maxDepth": 4,
        "maxFileBytes": 20000,
    },
    executor=local_project_analysis_executor,
    width=450.0,
    height=520.0,
)
