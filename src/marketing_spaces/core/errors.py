"""
Errors - Exception hierarchy and error codes for the spaces core.

Connection validation never raises; it reports one of the
ConnectionErrorCode values. The exceptions below are raised by store
mutations, the execution engine and module work functions.
"""

from __future__ import annotations

from enum import Enum


class ConnectionErrorCode(str, Enum):
    """Reasons a proposed connection is rejected."""
    MODULE_NOT_DONE = "MODULE_NOT_DONE"
    EMPTY_OUTPUT = "EMPTY_OUTPUT"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    MODULE_IN_ERROR = "MODULE_IN_ERROR"
    INPUT_ALREADY_CONNECTED = "INPUT_ALREADY_CONNECTED"
    MODULE_NOT_FOUND = "MODULE_NOT_FOUND"


class ErrorCategory(str, Enum):
    """Category of a module error shown to the user."""
    INPUT = "input"
    SYSTEM = "system"
    PROCESSING = "processing"
    CONNECTION = "connection"
    FATAL = "fatal"


class RecoveryAction(str, Enum):
    RETRY = "retry"
    RESET = "reset"
    VIEW_LOGS = "view_logs"
    EDIT_INPUTS = "edit_inputs"
    CONTACT_SUPPORT = "contact_support"


class SpacesError(Exception):
    """Base exception for all spaces errors."""
    pass


class NotFoundError(SpacesError):
    """A referenced entity does not exist."""
    pass


class SpaceNotFoundError(NotFoundError):
    pass


class ModuleNotFoundInSpaceError(NotFoundError):
    pass


class ConnectionNotFoundError(NotFoundError):
    pass


class InvalidModuleUpdateError(SpacesError):
    """An update would break the status/outputs invariant."""
    pass


class DuplicateConnectionError(SpacesError):
    """The same source and target port pair is already connected."""
    pass


class ConnectionRejectedError(SpacesError):
    """A proposed connection failed validation."""

    def __init__(self, code: ConnectionErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class FlowAlreadyRunningError(SpacesError):
    """A flow run is already active for this space."""
    pass


class StorageError(SpacesError):
    """The persistence collaborator failed."""
    pass


class ModuleWorkError(SpacesError):
    """Recoverable failure raised by a module work function."""

    def __init__(
        self,
        message: str,
        code: str = "PROCESSING_ERROR",
        category: ErrorCategory = ErrorCategory.PROCESSING,
    ):
        super().__init__(message)
        self.code = code
        self.category = category


class FatalModuleError(ModuleWorkError):
    """Unrecoverable failure; halts the rest of the flow run."""

    def __init__(self, message: str, code: str = "FATAL_ERROR"):
        super().__init__(message, code=code, category=ErrorCategory.FATAL)
