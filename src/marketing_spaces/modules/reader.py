"""
Reader Engine - Condense project metadata into a compact profile.
"""

from __future__ import annotations

import re
from typing import Any

from marketing_spaces.core.data_types import DataType
from marketing_spaces.core.errors import ErrorCategory, ModuleWorkError
from marketing_spaces.core.module_types import (
    InputDefinition,
    ModuleContext,
    ModuleDescriptor,
    ModuleResult,
    ModuleType,
    OutputDefinition,
)


_WORD = re.compile(r"[A-Za-z][A-Za-z0-9]+")

STOP_WORDS = {
    "the", "and", "for", "with", "this", "that", "from", "your", "into",
    "app", "src", "lib", "test", "tests", "main", "index", "json", "config",
}


def _split_name(name: str) -> list[str]:
    """'my-cool_app' / 'MyCoolApp' -> ['my', 'cool', 'app']"""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", name)
    return [w.lower() for w in _WORD.findall(spaced.replace("-", " ").replace("_", " "))]


def build_profile(metadata: dict[str, Any]) -> dict[str, Any]:
    """Reduce analysis metadata to the fields later modules rely on."""
    name = str(metadata.get("projectName") or metadata.get("name") or "Untitled")
    languages = list(metadata.get("languages") or [])
    framework = metadata.get("framework")
    project_type = metadata.get("projectType") or "unknown"

    keywords: list[str] = []
    for word in _split_name(name):
        if word not in STOP_WORDS and word not in keywords:
            keywords.append(word)
    for tech in ([framework] if framework else []) + languages[:3]:
        if tech.lower() not in keywords:
            keywords.append(tech.lower())

    stack = ", ".join(([framework] if framework else []) + languages[:2]) or "an unknown stack"
    kind = {"web": "web application", "mobile": "mobile app", "desktop": "desktop application"}.get(
        project_type, "software project"
    )

    return {
        "projectName": name,
        "projectType": project_type,
        "framework": framework,
        "languages": languages,
        "keywords": keywords,
        "summary": f"{name} is a {kind} built with {stack}.",
        "fileCount": metadata.get("fileCount", 0),
    }


async def reader_engine_executor(
    inputs: dict[str, Any],
    config: dict[str, Any],
    context: ModuleContext,
) -> ModuleResult:
    metadata = inputs.get("in-1")
    if not isinstance(metadata, dict):
        raise ModuleWorkError(
            "Reader Engine expects a project metadata object",
            code="INVALID_INPUT",
            category=ErrorCategory.INPUT,
        )

    profile = build_profile(metadata)
    context.log(f"Profiled {profile['projectName']}", details={"keywords": profile["keywords"]})
    return ModuleResult(outputs={"out-1": profile})


READER_ENGINE = ModuleDescriptor(
    type=ModuleType.READER_ENGINE,
    name="Reader Engine",
    description="Summarise repository metadata",
    inputs=[
        InputDefinition(
            id="in-1",
            label="Project Metadata",
            accepted_types=(DataType.JSON,),
        ),
    ],
    outputs=[
        OutputDefinition(
            id="out-1",
            label="Processed Data",
            data_type=DataType.JSON,
        ),
    ],
    executor=reader_engine_executor,
    width=400.0,
    height=350.0,
)
