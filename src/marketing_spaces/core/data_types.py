"""
Data Types - Payload kinds and module status values.

This module defines what flows along connections:
- DataType: Closed set of payload kinds a port can carry
- ModuleStatus: States of the per-module execution state machine
- is_compatible: The single compatibility rule used by the validator
- ImageData: Container for image payloads produced by modules
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from io import BytesIO
from typing import Any, TypeAlias

import numpy as np
from numpy.typing import NDArray


class DataType(str, Enum):
    """
    Enumeration of payload kinds that can flow through connections.

    MIXED is an opaque bundle. It is matched literally like every other
    member: an input that wants to accept anything has to list MIXED
    among its accepted types, and an IMAGE output still cannot reach an
    input that only lists MIXED.
    """
    IMAGE = "image"
    TEXT = "text"
    JSON = "json"
    AUDIO = "audio"
    VIDEO = "video"
    MIXED = "mixed"


class ModuleStatus(str, Enum):
    """Status of a module in the execution state machine."""
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    WARNING = "warning"
    FATAL_ERROR = "fatal_error"
    INVALID = "invalid"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def has_outputs(self) -> bool:
        """Whether a module in this status may carry outputs."""
        return self in SUCCESS_STATUSES

    @property
    def is_error(self) -> bool:
        return self in (ModuleStatus.ERROR, ModuleStatus.FATAL_ERROR)


TERMINAL_STATUSES = frozenset({
    ModuleStatus.DONE,
    ModuleStatus.ERROR,
    ModuleStatus.WARNING,
    ModuleStatus.FATAL_ERROR,
})

# Outputs of these may feed downstream modules
SUCCESS_STATUSES = frozenset({ModuleStatus.DONE, ModuleStatus.WARNING})


# Type alias for user-entered configuration values
ConfigValue: TypeAlias = str | int | float | bool | list | dict | None


class PortDirection(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


@dataclass
class Port:
    """
    A typed attachment point on a module.

    Output ports declare exactly one ``data_type``. Input ports declare
    the set of ``accepted_types``; an input with no accepted types can
    never be connected. ``connected`` is derived from the connection set
    and only filled in on snapshots.
    """
    id: str
    direction: PortDirection
    label: str
    data_type: DataType | None = None
    accepted_types: tuple[DataType, ...] = ()
    required: bool = True
    connected: bool = False

    @property
    def is_input(self) -> bool:
        return self.direction == PortDirection.INPUT

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.direction.value,
            "label": self.label,
            "connected": self.connected,
        }
        if self.is_input:
            data["acceptedTypes"] = [t.value for t in self.accepted_types]
            data["required"] = self.required
        else:
            data["dataType"] = self.data_type.value if self.data_type else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Port:
        data_type = data.get("dataType")
        return cls(
            id=data["id"],
            direction=PortDirection(data["type"]),
            label=data.get("label", data["id"]),
            data_type=DataType(data_type) if data_type else None,
            accepted_types=tuple(DataType(t) for t in data.get("acceptedTypes", [])),
            required=data.get("required", True),
            connected=data.get("connected", False),
        )


def is_compatible(output_type: DataType, input_port: Port) -> bool:
    """Check whether an output of ``output_type`` may feed ``input_port``."""
    return output_type in input_port.accepted_types


def is_empty_value(value: Any) -> bool:
    """Check whether a produced output value counts as empty."""
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set)):
        return len(value) == 0
    return False


def encode_payload(value: Any) -> Any:
    """Make module input/output values JSON-serializable."""
    if isinstance(value, ImageData):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(k): encode_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_payload(v) for v in value]
    return value


def decode_payload(value: Any) -> Any:
    """Inverse of encode_payload."""
    if isinstance(value, dict):
        if value.get("kind") == "image" and "png_base64" in value:
            return ImageData.from_dict(value)
        return {k: decode_payload(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_payload(v) for v in value]
    return value


@dataclass
class ImageData:
    """
    Container for image payloads flowing between modules.

    Internally stores pixels as a numpy array in HWC format with
    float32 values in range [0, 1].

    Attributes:
        pixels: numpy array of shape (H, W, C) with float32 values [0, 1]
        label: Optional human-readable label (e.g. icon variant name)
    """
    pixels: NDArray[np.float32]
    label: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_numpy(cls, array: NDArray, label: str = "") -> ImageData:
        """
        Create ImageData from a numpy array.

        Handles uint8 [0, 255] and float64 input and grayscale HW arrays.
        """
        arr = array.copy()

        if arr.dtype == np.uint8:
            arr = arr.astype(np.float32) / 255.0
        elif arr.dtype != np.float32:
            arr = arr.astype(np.float32)

        if arr.ndim == 2:
            arr = np.stack([arr, arr, arr], axis=-1)

        return cls(pixels=arr, label=label)

    @classmethod
    def from_pil(cls, image, label: str = "") -> ImageData:
        """Create ImageData from a PIL Image."""
        from PIL import Image

        if not isinstance(image, Image.Image):
            raise TypeError(f"Expected PIL Image, got {type(image)}")

        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGB")

        arr = np.array(image, dtype=np.float32) / 255.0
        return cls(pixels=arr, label=label)

    @classmethod
    def from_base64(cls, encoded: str, label: str = "") -> ImageData:
        """Create ImageData from a base64-encoded PNG."""
        from PIL import Image

        image = Image.open(BytesIO(base64.b64decode(encoded)))
        return cls.from_pil(image, label=label)

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def channels(self) -> int:
        return self.pixels.shape[2] if self.pixels.ndim == 3 else 1

    @property
    def size(self) -> tuple[int, int]:
        """Image size as (width, height)."""
        return (self.width, self.height)

    def to_numpy(self, dtype: np.dtype = np.float32) -> NDArray:
        """Convert to a numpy array in HWC format."""
        if dtype == np.uint8:
            return (self.pixels * 255).clip(0, 255).astype(np.uint8)
        return self.pixels.astype(dtype)

    def to_pil(self):
        """Convert to PIL Image."""
        from PIL import Image

        return Image.fromarray(self.to_numpy(np.uint8))

    def to_png_bytes(self) -> bytes:
        buffer = BytesIO()
        self.to_pil().save(buffer, format="PNG")
        return buffer.getvalue()

    def to_base64(self) -> str:
        return base64.b64encode(self.to_png_bytes()).decode("ascii")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "kind": "image",
            "label": self.label,
            "width": self.width,
            "height": self.height,
            "png_base64": self.to_base64(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageData:
        image = cls.from_base64(data["png_base64"], label=data.get("label", ""))
        image.metadata = dict(data.get("metadata", {}))
        return image
