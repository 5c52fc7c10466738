"""
Core module - Graph model, validation, store, and execution.

This module provides the fundamental building blocks for Marketing Spaces:
- Data Types: Port payload kinds, module status, ports
- Module Types: Module kinds, descriptors and registry
- Graph: Modules, connections and spaces
- Validation: Connection rules
- Store: The single writer of a space
- Execution: Flow runs and the module state machine
- Interaction: Drag-to-connect protocol
"""

from marketing_spaces.core.data_types import (
    DataType,
    ImageData,
    ModuleStatus,
    Port,
    PortDirection,
    SUCCESS_STATUSES,
    TERMINAL_STATUSES,
    is_compatible,
    is_empty_value,
)

from marketing_spaces.core.errors import (
    ConnectionErrorCode,
    ConnectionNotFoundError,
    ConnectionRejectedError,
    DuplicateConnectionError,
    ErrorCategory,
    FatalModuleError,
    FlowAlreadyRunningError,
    InvalidModuleUpdateError,
    ModuleNotFoundInSpaceError,
    ModuleWorkError,
    NotFoundError,
    RecoveryAction,
    SpaceNotFoundError,
    SpacesError,
    StorageError,
)

from marketing_spaces.core.module_types import (
    InputDefinition,
    ModuleContext,
    ModuleDescriptor,
    ModuleExecutor,
    ModuleFailure,
    ModuleLog,
    ModuleRegistry,
    ModuleResult,
    ModuleType,
    OutputDefinition,
)

from marketing_spaces.core.graph import (
    Connection,
    ConnectionId,
    Module,
    ModuleError,
    ModuleId,
    Point2D,
    Size2D,
    Space,
    SpaceId,
    new_connection_id,
    new_module_id,
    new_space_id,
)

from marketing_spaces.core.validation import ValidationResult, validate_connection
from marketing_spaces.core.storage import JsonSpaceStorage, SpaceStorage
from marketing_spaces.core.store import GraphStore
from marketing_spaces.core.execution import (
    ExecutionEngine,
    FlowExecutionState,
    FlowProgress,
    FlowRunResult,
    FlowStatus,
)
from marketing_spaces.core.interaction import ConnectionDragSession, DragState, DropOutcome


__all__ = [
    # data_types.py
    "DataType",
    "ImageData",
    "ModuleStatus",
    "Port",
    "PortDirection",
    "SUCCESS_STATUSES",
    "TERMINAL_STATUSES",
    "is_compatible",
    "is_empty_value",
    # errors.py
    "ConnectionErrorCode",
    "ConnectionNotFoundError",
    "ConnectionRejectedError",
    "DuplicateConnectionError",
    "ErrorCategory",
    "FatalModuleError",
    "FlowAlreadyRunningError",
    "InvalidModuleUpdateError",
    "ModuleNotFoundInSpaceError",
    "ModuleWorkError",
    "NotFoundError",
    "RecoveryAction",
    "SpaceNotFoundError",
    "SpacesError",
    "StorageError",
    # module_types.py
    "InputDefinition",
    "ModuleContext",
    "ModuleDescriptor",
    "ModuleExecutor",
    "ModuleFailure",
    "ModuleLog",
    "ModuleRegistry",
    "ModuleResult",
    "ModuleType",
    "OutputDefinition",
    # graph.py
    "Connection",
    "ConnectionId",
    "Module",
    "ModuleError",
    "ModuleId",
    "Point2D",
    "Size2D",
    "Space",
    "SpaceId",
    "new_connection_id",
    "new_module_id",
    "new_space_id",
    # validation.py
    "ValidationResult",
    "validate_connection",
    # storage.py
    "JsonSpaceStorage",
    "SpaceStorage",
    # store.py
    "GraphStore",
    # execution.py
    "ExecutionEngine",
    "FlowExecutionState",
    "FlowProgress",
    "FlowRunResult",
    "FlowStatus",
    # interaction.py
    "ConnectionDragSession",
    "DragState",
    "DropOutcome",
]
