"""
Graph Store - The authoritative owner of a space's modules and connections.

Every mutation either leaves the space's invariants intact or fails
without changing anything:
- connections reference existing modules and ports
- an input port has at most one incoming connection
- the connection graph is acyclic
- a module only carries outputs while its status is success-bearing

Changed modules are rebuilt with dataclasses.replace() and swapped in
under a lock, so readers never see a half-updated module.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Iterable

from marketing_spaces.core.data_types import ModuleStatus, is_compatible
from marketing_spaces.core.errors import (
    ConnectionErrorCode,
    ConnectionNotFoundError,
    ConnectionRejectedError,
    DuplicateConnectionError,
    InvalidModuleUpdateError,
    ModuleNotFoundInSpaceError,
    SpaceNotFoundError,
    StorageError,
)
from marketing_spaces.core.graph import (
    Connection,
    Module,
    ModuleId,
    Point2D,
    Size2D,
    Space,
)
from marketing_spaces.core.module_types import ModuleRegistry, ModuleType
from marketing_spaces.core.storage import SpaceStorage
from marketing_spaces.core.validation import ValidationResult, validate_connection


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "name",
    "position",
    "size",
    "inputs",
    "status",
    "outputs",
    "error",
    "logs",
    "needs_rerun",
})


class GraphStore:
    """
    Owns one space and all mutations applied to it.

    The store is constructed explicitly with the module registry (and
    optionally a persistence collaborator) and passed to whoever needs
    it: the execution engine, the drag-to-connect session, the API.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        space: Space | None = None,
        storage: SpaceStorage | None = None,
        duplicate_offset: float = 50.0,
    ):
        self._registry = registry
        self._space = space or Space()
        self._storage = storage
        self._duplicate_offset = duplicate_offset
        self._lock = threading.RLock()
        self._listeners: list[Callable[[Space], None]] = []

    # --- Read model ---

    @property
    def space(self) -> Space:
        return self._space

    @property
    def registry(self) -> ModuleRegistry:
        return self._registry

    def get_module(self, module_id: str) -> Module:
        module = self._space.get_module(module_id)
        if module is None:
            raise ModuleNotFoundInSpaceError(f"Module not found: {module_id}")
        return module

    def get_connection(self, connection_id: str) -> Connection:
        connection = self._space.get_connection(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(f"Connection not found: {connection_id}")
        return connection

    def snapshot(self) -> dict[str, Any]:
        """Serializable snapshot of the whole space."""
        with self._lock:
            return self._space.to_dict()

    def rename(self, name: str) -> None:
        with self._lock:
            self._space.name = name
            self._commit()

    def subscribe(self, listener: Callable[[Space], None]) -> None:
        """Call ``listener`` after every committed mutation."""
        self._listeners.append(listener)

    def _commit(self) -> None:
        self._space.touch()
        for listener in self._listeners:
            listener(self._space)

    # --- Module operations ---

    def create_module(
        self,
        module_type: ModuleType | str,
        position: Point2D | dict | None = None,
    ) -> Module:
        """Create an idle module with the port template of its kind."""
        descriptor = self._registry.require(module_type)
        module = Module.create(descriptor, _as_point(position))
        with self._lock:
            self._space.add_module(module)
            self._commit()
        logger.debug("Created module %s (%s)", module.id, module.type.value)
        return module

    def update_module(self, module_id: str, updates: dict[str, Any] | None = None, **fields: Any) -> Module:
        """
        Merge fields into a module.

        Accepted fields: name, position, size, inputs, status, outputs,
        error, logs, needs_rerun. Outputs may only be set together with
        (or on a module already in) a success-bearing status; moving to
        any other status clears them.

        Moving a module back to idle, or into error/fatal_error/invalid,
        invalidates everything downstream of it.

        Raises:
            ModuleNotFoundInSpaceError: Unknown module.
            InvalidModuleUpdateError: Unknown field or outputs without a
                compatible status.
        """
        changes = dict(updates or {})
        changes.update(fields)

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidModuleUpdateError(f"Cannot update fields: {sorted(unknown)}")

        with self._lock:
            module = self.get_module(module_id)
            new_module = self._apply_changes(module, changes)

            replacements = {new_module.id: new_module}
            if _invalidates_dependents(module.status, new_module.status):
                for downstream_id in self._space.get_downstream_modules(module_id):
                    downstream = self._space.get_module(downstream_id)
                    if downstream is not None:
                        replacements[downstream.id] = _invalidated(downstream)

            for replacement in replacements.values():
                self._space.replace_module(replacement)
            self._commit()

        if module.status != new_module.status:
            logger.debug(
                "Module %s: %s -> %s",
                module_id, module.status.value, new_module.status.value,
            )
        return new_module

    def _apply_changes(self, module: Module, changes: dict[str, Any]) -> Module:
        values: dict[str, Any] = {}
        if "name" in changes:
            values["name"] = str(changes["name"])
        if "position" in changes:
            values["position"] = _as_point(changes["position"])
        if "size" in changes:
            values["size"] = _as_size(changes["size"])
        if "inputs" in changes:
            values["inputs"] = dict(changes["inputs"] or {})
        if "error" in changes:
            values["error"] = changes["error"]
        if "logs" in changes:
            values["logs"] = list(changes["logs"] or [])
        if "needs_rerun" in changes:
            values["needs_rerun"] = bool(changes["needs_rerun"])

        status = ModuleStatus(changes["status"]) if "status" in changes else module.status
        values["status"] = status

        if "outputs" in changes:
            outputs = dict(changes["outputs"] or {})
            if outputs and not status.has_outputs:
                raise InvalidModuleUpdateError(
                    f"Cannot set outputs on a module with status {status.value!r}"
                )
            unknown_ports = set(outputs) - {p.id for p in module.output_ports}
            if unknown_ports:
                raise InvalidModuleUpdateError(
                    f"Unknown output ports: {sorted(unknown_ports)}"
                )
            values["outputs"] = outputs
        elif not status.has_outputs:
            values["outputs"] = {}

        return replace(module, **values)

    def delete_module(self, module_id: str) -> Module:
        """Remove a module and every connection touching it."""
        with self._lock:
            self.get_module(module_id)
            targets = [
                c.target_module_id for c in self._space.get_outgoing_connections(module_id)
            ]
            invalidated = self._collect_invalidations(targets)
            removed = self._space.remove_module(module_id)
            for module in invalidated:
                if module.id != module_id and module.id in self._space:
                    self._space.replace_module(module)
            self._commit()
        logger.debug("Deleted module %s", module_id)
        return removed

    def duplicate_module(self, module_id: str) -> Module:
        """
        Clone a module: new id, same kind and inputs, offset position,
        fresh ports, idle status. Connections are not copied.
        """
        with self._lock:
            original = self.get_module(module_id)
            descriptor = self._registry.require(original.type)
            offset = Point2D(self._duplicate_offset, self._duplicate_offset)
            duplicate = Module.create(descriptor, original.position + offset)
            duplicate = replace(
                duplicate,
                name=original.name,
                size=replace(original.size),
                inputs=copy.deepcopy(original.inputs),
            )
            self._space.add_module(duplicate)
            self._commit()
        logger.debug("Duplicated module %s as %s", module_id, duplicate.id)
        return duplicate

    # --- Connection operations ---

    def validate_connection(
        self,
        source_module_id: str,
        source_port_id: str,
        target_module_id: str,
        target_port_id: str,
    ) -> ValidationResult:
        with self._lock:
            return validate_connection(
                self._space,
                source_module_id,
                source_port_id,
                target_module_id,
                target_port_id,
            )

    def add_connection(self, connection: Connection) -> Connection:
        """
        Add a pre-validated connection.

        Structural invariants are re-checked so a stale validation
        result cannot corrupt the graph.

        Raises:
            ModuleNotFoundInSpaceError: An endpoint module does not exist.
            DuplicateConnectionError: The same port pair is already connected.
            ConnectionRejectedError: Unknown port, fan-in, type or cycle violation.
        """
        with self._lock:
            source = self.get_module(connection.source_module_id)
            target = self.get_module(connection.target_module_id)

            if self._space.find_connection(connection) is not None:
                raise DuplicateConnectionError(
                    f"{connection.source_module_id}:{connection.source_port_id} is already "
                    f"connected to {connection.target_module_id}:{connection.target_port_id}"
                )

            if source.get_output_port(connection.source_port_id) is None:
                raise ConnectionRejectedError(
                    ConnectionErrorCode.EMPTY_OUTPUT,
                    f"Unknown output port: {connection.source_port_id}",
                )
            target_port = target.get_input_port(connection.target_port_id)
            if target_port is None or not is_compatible(connection.data_type, target_port):
                raise ConnectionRejectedError(
                    ConnectionErrorCode.TYPE_MISMATCH,
                    f"Input port {connection.target_port_id} does not accept "
                    f"{connection.data_type.value}",
                )
            if self._space.get_input_connection(target.id, target_port.id) is not None:
                raise ConnectionRejectedError(
                    ConnectionErrorCode.INPUT_ALREADY_CONNECTED,
                    f"Input port {target_port.id} already has a connection",
                )
            if self._space.would_create_cycle(source.id, target.id):
                raise ConnectionRejectedError(
                    ConnectionErrorCode.CIRCULAR_DEPENDENCY,
                    "Connection would create a cycle",
                )

            self._space.add_connection(connection)
            self._commit()

        logger.debug(
            "Connected %s:%s -> %s:%s (%s)",
            connection.source_module_id, connection.source_port_id,
            connection.target_module_id, connection.target_port_id,
            connection.data_type.value,
        )
        return connection

    def connect(
        self,
        source_module_id: str,
        source_port_id: str,
        target_module_id: str,
        target_port_id: str,
    ) -> Connection:
        """
        Validate and commit a connection in one step.

        Raises:
            ConnectionRejectedError: Validation failed; nothing was changed.
        """
        with self._lock:
            result = self.validate_connection(
                source_module_id, source_port_id, target_module_id, target_port_id,
            )
            if not result.valid:
                raise ConnectionRejectedError(result.error_code, result.message)
            return self.add_connection(Connection.create(
                source_module_id,
                source_port_id,
                target_module_id,
                target_port_id,
                result.data_type,
            ))

    def delete_connection(self, connection_id: str) -> Connection:
        """Remove a connection; its target and everything downstream become invalid."""
        with self._lock:
            connection = self.get_connection(connection_id)
            invalidated = self._collect_invalidations([connection.target_module_id])
            self._space.remove_connection(connection_id)
            for module in invalidated:
                self._space.replace_module(module)
            self._commit()
        logger.debug("Deleted connection %s", connection_id)
        return connection

    def _collect_invalidations(self, module_ids: Iterable[str]) -> list[Module]:
        """Invalidated copies of the given modules and their downstream modules."""
        affected: set[ModuleId] = set()
        for module_id in module_ids:
            affected.add(ModuleId(module_id))
            affected |= self._space.get_downstream_modules(module_id)
        modules = [self._space.get_module(mid) for mid in affected]
        return [_invalidated(m) for m in modules if m is not None]

    # --- Flow support ---

    def set_connection_validity(self, connection_id: str, is_valid: bool | None) -> None:
        with self._lock:
            connection = self.get_connection(connection_id)
            connection.is_valid = is_valid

    def set_flow_state(self, state: dict[str, Any] | None) -> None:
        with self._lock:
            self._space.flow_execution_state = state

    def reset_all(self) -> None:
        """Drive every module back to idle and clear transient connection flags."""
        with self._lock:
            for module in self._space.modules.values():
                self._space.replace_module(replace(
                    module,
                    status=ModuleStatus.IDLE,
                    outputs={},
                    logs=[],
                    error=None,
                    needs_rerun=False,
                ))
            for connection in self._space.connections:
                connection.is_valid = None
            self._space.flow_execution_state = None
            self._commit()

    # --- Persistence boundary ---

    def _require_storage(self) -> SpaceStorage:
        if self._storage is None:
            raise StorageError("No storage configured")
        return self._storage

    def save_space(self) -> None:
        """Hand a snapshot of the current space to the persistence collaborator."""
        storage = self._require_storage()
        snapshot = self.snapshot()
        try:
            storage.save_space(snapshot)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save space: {e}") from e

    def load_space(self, space_id: str) -> Space:
        """
        Replace the current space with a stored one.

        Modules saved mid-run have no in-flight work after loading and
        are put back to idle.
        """
        storage = self._require_storage()
        try:
            snapshot = storage.load_space(space_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to load space: {e}") from e
        if snapshot is None:
            raise SpaceNotFoundError(f"Space not found: {space_id}")

        try:
            space = Space.from_dict(snapshot)
        except (KeyError, ValueError, TypeError) as e:
            raise StorageError(f"Invalid space snapshot {space_id}: {e}") from e

        for module in space.modules.values():
            if module.status == ModuleStatus.RUNNING:
                space.replace_module(replace(module, status=ModuleStatus.IDLE, outputs={}))
        space.flow_execution_state = None

        with self._lock:
            self._space = space
        logger.info("Loaded space %r (%d modules)", space.name, len(space))
        return space

    def get_all_spaces(self) -> list[dict[str, Any]]:
        storage = self._require_storage()
        try:
            return storage.get_all_spaces()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list spaces: {e}") from e

    def delete_space(self, space_id: str) -> None:
        storage = self._require_storage()
        try:
            storage.delete_space(space_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete space: {e}") from e


def _invalidates_dependents(old: ModuleStatus, new: ModuleStatus) -> bool:
    if old == new:
        return False
    if new == ModuleStatus.IDLE:
        return True
    if new == ModuleStatus.INVALID:
        return True
    return new.is_error and not old.is_error


def _invalidated(module: Module) -> Module:
    return replace(module, status=ModuleStatus.INVALID, outputs={})


def _as_point(value: Point2D | dict | None) -> Point2D | None:
    if value is None or isinstance(value, Point2D):
        return value
    return Point2D.from_dict(value)


def _as_size(value: Size2D | dict) -> Size2D:
    if isinstance(value, Size2D):
        return value
    return Size2D.from_dict(value)
