"""
Connection Validation - Decide whether a proposed edge is legal.

validate_connection() is side-effect free: it reads the space and
returns a ValidationResult. Checks run in a fixed order and stop at the
first failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from marketing_spaces.core.data_types import (
    DataType,
    ModuleStatus,
    is_compatible,
    is_empty_value,
)
from marketing_spaces.core.errors import ConnectionErrorCode
from marketing_spaces.core.graph import Space


MESSAGES: dict[ConnectionErrorCode, str] = {
    ConnectionErrorCode.MODULE_NOT_DONE: "The previous module has not finished yet. Run it first.",
    ConnectionErrorCode.MODULE_IN_ERROR: "Resolve the error in the previous module before connecting it.",
    ConnectionErrorCode.EMPTY_OUTPUT: "There is no data available to connect from this module.",
    ConnectionErrorCode.TYPE_MISMATCH: "This module does not accept the type of data you are connecting.",
    ConnectionErrorCode.CIRCULAR_DEPENDENCY: "Loops between modules are not allowed.",
    ConnectionErrorCode.INPUT_ALREADY_CONNECTED: "This input already has a connection.",
    ConnectionErrorCode.MODULE_NOT_FOUND: "Module not found.",
}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a proposed connection."""
    valid: bool
    data_type: DataType | None = None
    error_code: ConnectionErrorCode | None = None
    message: str = ""

    @classmethod
    def ok(cls, data_type: DataType) -> ValidationResult:
        return cls(valid=True, data_type=data_type)

    @classmethod
    def reject(cls, code: ConnectionErrorCode, message: str | None = None) -> ValidationResult:
        return cls(valid=False, error_code=code, message=message or MESSAGES[code])

    def __bool__(self) -> bool:
        return self.valid

    def to_dict(self) -> dict[str, Any]:
        if self.valid:
            return {"valid": True, "dataType": self.data_type.value if self.data_type else None}
        return {
            "valid": False,
            "error": {"type": self.error_code.value, "message": self.message},
        }


def validate_connection(
    space: Space,
    source_module_id: str,
    source_port_id: str,
    target_module_id: str,
    target_port_id: str,
) -> ValidationResult:
    """
    Validate a proposed connection from an output port to an input port.

    Returns:
        ValidationResult; on success ``data_type`` is the source port's
        declared output type, which becomes the connection's type.
    """
    if source_module_id == target_module_id:
        return ValidationResult.reject(
            ConnectionErrorCode.CIRCULAR_DEPENDENCY,
            "A module cannot be connected to itself.",
        )

    source = space.get_module(source_module_id)
    target = space.get_module(target_module_id)
    if source is None or target is None:
        return ValidationResult.reject(ConnectionErrorCode.MODULE_NOT_FOUND)

    # Source readiness
    if source.status.is_error:
        return ValidationResult.reject(ConnectionErrorCode.MODULE_IN_ERROR)
    if source.status != ModuleStatus.DONE:
        return ValidationResult.reject(ConnectionErrorCode.MODULE_NOT_DONE)

    # Output presence
    source_port = source.get_output_port(source_port_id)
    if source_port is None or source_port.data_type is None:
        return ValidationResult.reject(ConnectionErrorCode.EMPTY_OUTPUT)
    if is_empty_value(source.outputs.get(source_port_id)):
        return ValidationResult.reject(ConnectionErrorCode.EMPTY_OUTPUT)

    # Type compatibility
    target_port = target.get_input_port(target_port_id)
    if target_port is None or not target_port.accepted_types:
        return ValidationResult.reject(
            ConnectionErrorCode.TYPE_MISMATCH,
            "Invalid input port.",
        )
    if not is_compatible(source_port.data_type, target_port):
        return ValidationResult.reject(ConnectionErrorCode.TYPE_MISMATCH)

    if target.status == ModuleStatus.RUNNING:
        return ValidationResult.reject(
            ConnectionErrorCode.MODULE_NOT_DONE,
            "The target module is running.",
        )

    # Fan-in
    if space.get_input_connection(target_module_id, target_port_id) is not None:
        return ValidationResult.reject(ConnectionErrorCode.INPUT_ALREADY_CONNECTED)

    # Acyclicity
    if space.would_create_cycle(source_module_id, target_module_id):
        return ValidationResult.reject(ConnectionErrorCode.CIRCULAR_DEPENDENCY)

    return ValidationResult.ok(source_port.data_type)
