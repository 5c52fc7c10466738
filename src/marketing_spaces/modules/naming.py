"""
Naming Engine - Propose product names for a project.

Uses the configured inference provider when one is available; otherwise
names are derived from the project's keywords.
"""

from __future__ import annotations

import json
import logging
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
from marketing_spaces.providers.base import InferenceRequest, ProviderError


logger = logging.getLogger(__name__)

SUFFIXES = ("ly", "io", "hub", "kit", "lab", "flow", "forge", "base")

SYSTEM_PROMPT = (
    "You are a naming specialist for software products. "
    'Answer with JSON only: {"names": ["..."]}.'
)


def fallback_names(project: dict[str, Any], count: int) -> list[str]:
    """Deterministic names built from project keywords."""
    words = [w for w in project.get("keywords", []) if w.isalpha()] or ["project"]
    names: list[str] = []
    i = 0
    while len(names) < count and i < count * 4:
        base = words[i % len(words)].capitalize()
        candidate = base + SUFFIXES[i % len(SUFFIXES)]
        if candidate not in names:
            names.append(candidate)
        i += 1
    return names


def parse_names(text: str) -> list[str]:
    """Accept either {"names": [...]} JSON or one name per line."""
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            data = data.get("names", [])
        if isinstance(data, list):
            return [str(n).strip() for n in data if str(n).strip()]
    except json.JSONDecodeError:
        pass
    return [line.strip(" -*\t") for line in text.splitlines() if line.strip(" -*\t")]


def build_prompt(project: dict[str, Any], count: int, style: str) -> str:
    return (
        f"Suggest {count} {style} product names for this project.\n"
        f"Name: {project.get('projectName', '')}\n"
        f"Summary: {project.get('summary', '')}\n"
        f"Keywords: {', '.join(project.get('keywords', []))}"
    )


async def naming_engine_executor(
    inputs: dict[str, Any],
    config: dict[str, Any],
    context: ModuleContext,
) -> ModuleResult:
    project = inputs.get("in-1")
    if not isinstance(project, dict):
        raise ModuleWorkError(
            "Naming Engine expects project data",
            code="INVALID_INPUT",
            category=ErrorCategory.INPUT,
        )

    count = max(1, int(config.get("count", 5)))
    style = str(config.get("style") or "modern")
    provider = context.get_provider(config.get("provider"))

    warning = None
    names: list[str] = []
    if provider is not None:
        context.log(f"Asking {provider.name} for {count} names")
        try:
            result = await provider.run(InferenceRequest(
                prompt=build_prompt(project, count, style),
                system=SYSTEM_PROMPT,
            ))
            names = parse_names(result.output_text)[:count]
            context.log("Provider answered", details={"tokens": result.tokens_used})
        except ProviderError as e:
            logger.warning("Naming provider failed: %s", e)
            warning = f"{provider.name} failed ({e}); used offline suggestions"

    if not names:
        if provider is not None and warning is None:
            warning = "Provider returned no usable names; used offline suggestions"
        names = fallback_names(project, count)

    return ModuleResult(outputs={"out-1": "\n".join(names)}, warning=warning)


NAMING_ENGINE = ModuleDescriptor(
    type=ModuleType.NAMING_ENGINE,
    name="Naming Engine",
    description="Generate product name suggestions",
    inputs=[
        InputDefinition(
            id="in-1",
            label="Project Data",
            accepted_types=(DataType.JSON,),
        ),
    ],
    outputs=[
        OutputDefinition(
            id="out-1",
            label="Name Suggestions",
            data_type=DataType.TEXT,
            description="One name per line",
        ),
    ],
    config_defaults={"count": 5, "style": "modern", "provider": None},
    width=400.0,
    height=400.0,
    executor=naming_engine_executor,
)
