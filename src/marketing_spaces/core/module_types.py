"""
Module Type System - Definitions and registry for module kinds.

This module defines how module kinds are specified:
- ModuleType: Closed enumeration of module kinds
- InputDefinition / OutputDefinition: Port templates
- ModuleDescriptor: Complete definition of a module kind (ports + work function)
- ModuleRegistry: Mapping from ModuleType to its descriptor
- ModuleResult / ModuleFailure: What a work function hands back
- ModuleContext: Per-run services passed to a work function
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from marketing_spaces.core.data_types import DataType, Port, PortDirection
from marketing_spaces.core.errors import ErrorCategory


logger = logging.getLogger(__name__)


class ModuleType(str, Enum):
    """Kinds of modules that can be placed on a space."""
    LOCAL_PROJECT_ANALYSIS = "local-project-analysis"
    READER_ENGINE = "reader-engine"
    NAMING_ENGINE = "naming-engine"
    ICON_GENERATOR = "icon-generator"
    MARKETING_PACK = "marketing-pack"


@dataclass
class InputDefinition:
    """
    Definition of an input port on a module kind.

    Attributes:
        id: Port identifier, unique within the module
        label: Display label in UI
        accepted_types: Payload kinds this input accepts
        required: If True, the module cannot run without this input connected
    """
    id: str
    label: str
    accepted_types: tuple[DataType, ...]
    required: bool = True
    description: str = ""

    def instantiate(self) -> Port:
        return Port(
            id=self.id,
            direction=PortDirection.INPUT,
            label=self.label,
            accepted_types=tuple(self.accepted_types),
            required=self.required,
        )


@dataclass
class OutputDefinition:
    """
    Definition of an output port on a module kind.

    Attributes:
        id: Port identifier, unique within the module
        label: Display label in UI
        data_type: Payload kind produced
    """
    id: str
    label: str
    data_type: DataType
    description: str = ""

    def instantiate(self) -> Port:
        return Port(
            id=self.id,
            direction=PortDirection.OUTPUT,
            label=self.label,
            data_type=self.data_type,
        )


@dataclass
class ModuleResult:
    """Successful outcome of a work function, keyed by output port id."""
    outputs: dict[str, Any]
    warning: str | None = None


@dataclass
class ModuleFailure:
    """Failure returned (rather than raised) by a work function."""
    message: str
    fatal: bool = False
    code: str = "PROCESSING_ERROR"
    category: ErrorCategory | None = None


@dataclass
class ModuleLog:
    """A log line attached to a module (info, warning or error)."""
    timestamp: datetime
    level: str
    message: str
    details: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModuleLog:
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            level=data.get("level", "info"),
            message=data.get("message", ""),
            details=data.get("details"),
        )


class ModuleContext:
    """
    Context passed to module work functions during execution.

    Provides access to:
    - Inference provider instances
    - Per-module log entries (shown in the module's log panel)
    """

    def __init__(
        self,
        module_id: str,
        module_name: str = "",
        providers: dict[str, Any] | None = None,
        default_provider: str | None = None,
    ):
        self.module_id = module_id
        self.module_name = module_name
        self._providers = dict(providers or {})
        self._default_provider = default_provider
        self.logs: list[ModuleLog] = []

    def get_provider(self, provider_id: str | None = None) -> Any:
        """Get a provider instance, or the default one."""
        return self._providers.get(provider_id or self._default_provider or "")

    def set_provider(self, provider_id: str, provider: Any) -> None:
        self._providers[provider_id] = provider

    def log(self, message: str, level: str = "info", details: Any = None) -> None:
        self.logs.append(ModuleLog(
            timestamp=datetime.now(timezone.utc),
            level=level,
            message=message,
            details=details,
        ))
        logger.debug("[%s] %s: %s", self.module_name or self.module_id, level, message)

    def warning(self, message: str, details: Any = None) -> None:
        self.log(message, level="warning", details=details)


@runtime_checkable
class ModuleExecutor(Protocol):
    """Protocol for module work functions."""

    async def __call__(
        self,
        inputs: dict[str, Any],
        config: dict[str, Any],
        context: ModuleContext,
    ) -> ModuleResult | ModuleFailure:
        """
        Execute the module.

        Args:
            inputs: Resolved upstream values keyed by input port id
            config: User-entered configuration of the module
            context: Execution context with access to providers and logging

        Returns:
            ModuleResult with outputs keyed by output port id, or ModuleFailure
        """
        ...


@dataclass
class ModuleDescriptor:
    """
    Complete definition of a module kind.

    Descriptors are templates: they fix the ports every module of the
    kind gets at creation time and the work function that runs it.
    """
    type: ModuleType
    name: str
    description: str = ""

    inputs: list[InputDefinition] = field(default_factory=list)
    outputs: list[OutputDefinition] = field(default_factory=list)
    config_defaults: dict[str, Any] = field(default_factory=dict)

    executor: ModuleExecutor | None = None

    # UI hints
    width: float = 400.0
    height: float = 400.0

    def get_input(self, port_id: str) -> InputDefinition | None:
        for inp in self.inputs:
            if inp.id == port_id:
                return inp
        return None

    def get_output(self, port_id: str) -> OutputDefinition | None:
        for out in self.outputs:
            if out.id == port_id:
                return out
        return None

    def create_ports(self) -> tuple[list[Port], list[Port]]:
        """Instantiate fresh input and output ports from the template."""
        return (
            [inp.instantiate() for inp in self.inputs],
            [out.instantiate() for out in self.outputs],
        )


class ModuleRegistry:
    """
    Registry of available module kinds.

    Constructed explicitly and passed to the store and engine, so
    independent spaces and tests can use their own registries.
    """

    def __init__(self, descriptors: list[ModuleDescriptor] | None = None):
        self._descriptors: dict[ModuleType, ModuleDescriptor] = {}
        for descriptor in descriptors or []:
            self.register(descriptor)

    def register(self, descriptor: ModuleDescriptor) -> None:
        """Register (or replace) the descriptor for a module kind."""
        self._descriptors[descriptor.type] = descriptor

    def unregister(self, module_type: ModuleType) -> ModuleDescriptor | None:
        return self._descriptors.pop(module_type, None)

    def get(self, module_type: ModuleType | str) -> ModuleDescriptor | None:
        try:
            return self._descriptors.get(ModuleType(module_type))
        except ValueError:
            return None

    def require(self, module_type: ModuleType | str) -> ModuleDescriptor:
        """Get a descriptor, raising KeyError for unknown kinds."""
        descriptor = self.get(module_type)
        if descriptor is None:
            raise KeyError(f"Unknown module type: {module_type}")
        return descriptor

    def get_all(self) -> list[ModuleDescriptor]:
        return list(self._descriptors.values())

    def set_executor(self, module_type: ModuleType, executor: ModuleExecutor) -> None:
        """Swap the work function of a registered kind."""
        self.require(module_type).executor = executor

    def search(self, query: str) -> list[ModuleDescriptor]:
        """Search module kinds by name or description."""
        query = query.lower()
        return [
            d for d in self._descriptors.values()
            if query in d.name.lower() or query in d.description.lower()
        ]

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, module_type: ModuleType) -> bool:
        return module_type in self._descriptors

