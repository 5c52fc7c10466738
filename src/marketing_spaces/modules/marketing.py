"""
Marketing Pack - Bundle copy and artwork into one deliverable.
"""

from __future__ import annotations

from typing import Any

from marketing_spaces.core.data_types import DataType, ImageData
from marketing_spaces.core.errors import ErrorCategory, ModuleWorkError
from marketing_spaces.core.module_types import (
    InputDefinition,
    ModuleContext,
    ModuleDescriptor,
    ModuleResult,
    ModuleType,
    OutputDefinition,
)


MAX_KEYWORDS = 10
MAX_SUBTITLE = 30


def build_copy(project: dict[str, Any]) -> dict[str, Any]:
    name = str(project.get("projectName") or "Untitled")
    summary = str(project.get("summary") or f"{name} helps you get more done.")
    keywords = [str(k) for k in project.get("keywords", [])][:MAX_KEYWORDS]

    subtitle = summary.split(".")[0]
    if len(subtitle) > MAX_SUBTITLE:
        subtitle = subtitle[: MAX_SUBTITLE - 1].rstrip() + "…"

    return {
        "appName": name,
        "subtitle": subtitle,
        "tagline": f"{name}: built for the way you work.",
        "description": summary,
        "keywords": keywords,
    }


async def marketing_pack_executor(
    inputs: dict[str, Any],
    config: dict[str, Any],
    context: ModuleContext,
) -> ModuleResult:
    project = inputs.get("in-1")
    if not isinstance(project, dict):
        raise ModuleWorkError(
            "Marketing Pack expects project data",
            code="INVALID_INPUT",
            category=ErrorCategory.INPUT,
        )

    icons = inputs.get("in-2") or []
    if isinstance(icons, ImageData):
        icons = [icons]

    pack = {
        "copy": build_copy(project),
        "icons": icons,
        "platforms": list(config.get("platforms") or ["web"]),
    }
    context.log("Assembled marketing pack", details={"icons": len(icons)})

    warning = None if icons else "No icons connected; the pack has no artwork"
    return ModuleResult(outputs={"out-1": pack}, warning=warning)


MARKETING_PACK = ModuleDescriptor(
    type=ModuleType.MARKETING_PACK,
    name="Marketing Pack",
    description="Bundle copy and icons for a store listing",
    inputs=[
        InputDefinition(
            id="in-1",
            label="Project Data",
            accepted_types=(DataType.JSON,),
        ),
        InputDefinition(
            id="in-2",
            label="Icons",
            accepted_types=(DataType.IMAGE,),
            required=False,
        ),
    ],
    outputs=[
        OutputDefinition(
            id="out-1",
            label="Marketing Materials",
            data_type=DataType.MIXED,
        ),
    ],
    config_defaults={"platforms": ["web"]},
    executor=marketing_pack_executor,
    width=400.0,
    height=400.0,
)
