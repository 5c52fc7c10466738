"""
Icon Generator - Render app icon variants from project data.

Icons are drawn locally: a diagonal gradient tile with the project's
initials, one variant per palette.
"""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np
from PIL import Image, ImageDraw, ImageFont

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


PALETTES: dict[str, tuple[tuple[int, int, int], tuple[int, int, int]]] = {
    "ocean": ((59, 130, 246), (139, 92, 246)),
    "forest": ((16, 185, 129), (5, 95, 70)),
    "sunset": ((245, 158, 11), (239, 68, 68)),
    "graphite": ((75, 85, 99), (17, 24, 39)),
}

MIN_SIZE = 32
MAX_SIZE = 1024


def project_title(value: Any) -> str:
    """Pick a display name from JSON project data or plain text."""
    if isinstance(value, dict):
        return str(value.get("projectName") or value.get("name") or "").strip()
    if isinstance(value, str):
        for line in value.splitlines():
            if line.strip():
                return line.strip()
    return ""


def initials(title: str) -> str:
    words = [w for w in title.replace("-", " ").replace("_", " ").split() if w]
    if not words:
        return "?"
    if len(words) == 1:
        return words[0][:2].upper()
    return (words[0][0] + words[1][0]).upper()


def render_icon(text: str, size: int, palette: str, corner_radius: float = 0.22) -> ImageData:
    """Draw one RGBA icon tile."""
    start, end = (np.array(c, dtype=np.float32) / 255.0 for c in PALETTES[palette])

    # Diagonal gradient
    ramp = np.linspace(0.0, 1.0, size, dtype=np.float32)
    t = (ramp[None, :] + ramp[:, None]) / 2.0
    rgb = start * (1.0 - t[..., None]) + end * t[..., None]

    mask = Image.new("L", (size, size), 0)
    ImageDraw.Draw(mask).rounded_rectangle(
        (0, 0, size - 1, size - 1),
        radius=int(size * corner_radius),
        fill=255,
    )
    alpha = np.asarray(mask, dtype=np.float32)[..., None] / 255.0

    tile = Image.fromarray((np.concatenate([rgb, alpha], axis=-1) * 255).astype(np.uint8))

    draw = ImageDraw.Draw(tile)
    font = ImageFont.load_default(size=max(10, size // 3))
    draw.text((size / 2, size / 2), text, fill=(255, 255, 255, 255), font=font, anchor="mm")

    image = ImageData.from_pil(tile, label=f"{palette} {size}px")
    image.metadata = {"palette": palette, "text": text}
    return image


async def icon_generator_executor(
    inputs: dict[str, Any],
    config: dict[str, Any],
    context: ModuleContext,
) -> ModuleResult:
    title = project_title(inputs.get("in-1"))
    if not title:
        raise ModuleWorkError(
            "Icon Generator needs a project name",
            code="INVALID_INPUT",
            category=ErrorCategory.INPUT,
        )

    size = int(config.get("size", 256))
    if not MIN_SIZE <= size <= MAX_SIZE:
        raise ModuleWorkError(
            f"Icon size must be between {MIN_SIZE} and {MAX_SIZE}",
            code="INVALID_CONFIG",
            category=ErrorCategory.INPUT,
        )

    requested = config.get("palettes") or list(PALETTES)
    palettes = [p for p in requested if p in PALETTES]
    unknown = [p for p in requested if p not in PALETTES]

    if not palettes:
        raise ModuleWorkError(
            f"No known palettes in {requested}",
            code="INVALID_CONFIG",
            category=ErrorCategory.INPUT,
        )

    text = initials(title)
    context.log(f"Rendering {len(palettes)} icon(s) for {title}")
    icons = await asyncio.to_thread(
        lambda: [render_icon(text, size, palette) for palette in palettes]
    )

    warning = f"Unknown palettes skipped: {', '.join(unknown)}" if unknown else None
    return ModuleResult(outputs={"out-1": icons}, warning=warning)


ICON_GENERATOR = ModuleDescriptor(
    type=ModuleType.ICON_GENERATOR,
    name="Icon Generator",
    description="Render app icon variants",
    inputs=[
        InputDefinition(
            id="in-1",
            label="Project Data",
            accepted_types=(DataType.JSON, DataType.TEXT),
        ),
    ],
    outputs=[
        OutputDefinition(
            id="out-1",
            label="Generated Icons",
            data_type=DataType.IMAGE,
        ),
    ],
    config_defaults={"size": 256, "palettes": list(PALETTES)},
    executor=icon_generator_executor,
    width=400.0,
    height=400.0,
)
