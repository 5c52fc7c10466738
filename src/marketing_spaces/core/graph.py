"""
Space Graph Model - Core data structures for a space.

This module defines the fundamental building blocks:
- Module: A single processing unit with typed ports, inputs and outputs
- Connection: A validated link from an output port to an input port
- Space: The complete graph containing modules and connections

Space only provides raw structural operations and graph analysis.
Invariant-preserving mutation goes through GraphStore.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, NewType
from uuid import uuid4

from marketing_spaces.core.data_types import (
    DataType,
    ModuleStatus,
    Port,
    decode_payload,
    encode_payload,
    is_compatible,
)
from marketing_spaces.core.errors import ErrorCategory, RecoveryAction
from marketing_spaces.core.module_types import (
    ModuleDescriptor,
    ModuleLog,
    ModuleType,
)


# Type aliases for clarity
ModuleId = NewType("ModuleId", str)
ConnectionId = NewType("ConnectionId", str)
SpaceId = NewType("SpaceId", str)


def new_module_id() -> ModuleId:
    """Generate a new unique module ID."""
    return ModuleId(f"module-{uuid4().hex}")


def new_connection_id() -> ConnectionId:
    """Generate a new unique connection ID."""
    return ConnectionId(f"conn-{uuid4().hex}")


def new_space_id() -> SpaceId:
    return SpaceId(f"space-{uuid4().hex}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Point2D:
    """2D point for module positioning on the canvas."""
    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: Point2D) -> Point2D:
        return Point2D(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point2D) -> Point2D:
        return Point2D(self.x - other.x, self.y - other.y)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Point2D:
        return cls(float(data.get("x", 0.0)), float(data.get("y", 0.0)))


@dataclass
class Size2D:
    """2D size for module dimensions."""
    width: float = 400.0
    height: float = 400.0

    def to_dict(self) -> dict[str, float]:
        return {"width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Size2D:
        return cls(float(data.get("width", 400.0)), float(data.get("height", 400.0)))


@dataclass
class ModuleError:
    """Error information attached to a failed module."""
    message: str
    code: str = "PROCESSING_ERROR"
    category: ErrorCategory = ErrorCategory.PROCESSING
    short_message: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    recovery_actions: list[RecoveryAction] = field(default_factory=list)
    recoverable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "shortMessage": self.short_message or self.message[:80],
            "timestamp": self.timestamp.isoformat(),
            "recoveryActions": [a.value for a in self.recovery_actions],
            "recoverable": self.recoverable,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModuleError:
        return cls(
            message=data.get("message", ""),
            code=data.get("code", "PROCESSING_ERROR"),
            category=ErrorCategory(data.get("category", "processing")),
            short_message=data.get("shortMessage", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else utcnow(),
            recovery_actions=[RecoveryAction(a) for a in data.get("recoveryActions", [])],
            recoverable=data.get("recoverable", True),
        )


@dataclass
class Connection:
    """
    A connection (edge) between two modules.

    ``data_type`` is the type agreed on when the edge was validated; it
    does not follow later changes to the source port. ``is_valid`` is a
    transient flag set by the engine when it resolves the edge.
    """
    id: ConnectionId
    source_module_id: ModuleId
    source_port_id: str
    target_module_id: ModuleId
    target_port_id: str
    data_type: DataType
    is_valid: bool | None = None

    @classmethod
    def create(
        cls,
        source_module_id: str,
        source_port_id: str,
        target_module_id: str,
        target_port_id: str,
        data_type: DataType,
    ) -> Connection:
        """Factory method to create a new connection."""
        return cls(
            id=new_connection_id(),
            source_module_id=ModuleId(source_module_id),
            source_port_id=source_port_id,
            target_module_id=ModuleId(target_module_id),
            target_port_id=target_port_id,
            data_type=DataType(data_type),
        )

    def touches(self, module_id: str) -> bool:
        return module_id in (self.source_module_id, self.target_module_id)

    def same_ports(self, other: Connection) -> bool:
        return (
            self.source_module_id == other.source_module_id
            and self.source_port_id == other.source_port_id
            and self.target_module_id == other.target_module_id
            and self.target_port_id == other.target_port_id
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sourceModuleId": self.source_module_id,
            "sourcePortId": self.source_port_id,
            "targetModuleId": self.target_module_id,
            "targetPortId": self.target_port_id,
            "dataType": self.data_type.value,
            "isValid": self.is_valid,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Connection:
        return cls(
            id=ConnectionId(data["id"]),
            source_module_id=ModuleId(data["sourceModuleId"]),
            source_port_id=data["sourcePortId"],
            target_module_id=ModuleId(data["targetModuleId"]),
            target_port_id=data["targetPortId"],
            data_type=DataType(data["dataType"]),
            is_valid=data.get("isValid"),
        )


@dataclass
class Module:
    """
    A single module (node) in a space.

    Modules have:
    - A unique ID and a kind (references a ModuleDescriptor)
    - Position and size on the canvas (presentation only)
    - A status in the execution state machine
    - User configuration / resolved upstream values in ``inputs``
    - Produced values in ``outputs``, keyed by output port id
    - Input and output ports fixed at creation time by the kind
    """
    id: ModuleId
    type: ModuleType
    name: str
    position: Point2D = field(default_factory=Point2D)
    size: Size2D = field(default_factory=Size2D)
    status: ModuleStatus = ModuleStatus.IDLE

    inputs: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict, repr=False)

    input_ports: list[Port] = field(default_factory=list)
    output_ports: list[Port] = field(default_factory=list)

    error: ModuleError | None = None
    logs: list[ModuleLog] = field(default_factory=list, repr=False)
    needs_rerun: bool = False

    @classmethod
    def create(
        cls,
        descriptor: ModuleDescriptor,
        position: Point2D | None = None,
        module_id: str | None = None,
    ) -> Module:
        """Factory method to create a new idle module from its kind."""
        input_ports, output_ports = descriptor.create_ports()
        return cls(
            id=ModuleId(module_id) if module_id else new_module_id(),
            type=descriptor.type,
            name=descriptor.name,
            position=position or Point2D(),
            size=Size2D(descriptor.width, descriptor.height),
            inputs=dict(descriptor.config_defaults),
            input_ports=input_ports,
            output_ports=output_ports,
        )

    def get_input_port(self, port_id: str) -> Port | None:
        for port in self.input_ports:
            if port.id == port_id:
                return port
        return None

    def get_output_port(self, port_id: str) -> Port | None:
        for port in self.output_ports:
            if port.id == port_id:
                return port
        return None

    @property
    def input_port_ids(self) -> set[str]:
        return {p.id for p in self.input_ports}

    def config(self) -> dict[str, Any]:
        """User-entered configuration (inputs not fed by a port)."""
        port_ids = self.input_port_ids
        return {k: v for k, v in self.inputs.items() if k not in port_ids}

    def to_dict(self, connected_ports: set[str] | None = None) -> dict[str, Any]:
        connected_ports = connected_ports or set()

        def port_dict(port: Port) -> dict[str, Any]:
            data = port.to_dict()
            data["connected"] = port.id in connected_ports
            return data

        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "position": self.position.to_dict(),
            "size": self.size.to_dict(),
            "status": self.status.value,
            "inputs": encode_payload(self.inputs),
            "outputs": encode_payload(self.outputs),
            "ports": {
                "input": [port_dict(p) for p in self.input_ports],
                "output": [port_dict(p) for p in self.output_ports],
            },
            "error": self.error.to_dict() if self.error else None,
            "logs": [log.to_dict() for log in self.logs],
            "needsReRun": self.needs_rerun,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Module:
        status = ModuleStatus(data.get("status", "idle"))
        ports = data.get("ports", {})
        input_ports = [Port.from_dict(p) for p in ports.get("input", [])]
        output_ports = [Port.from_dict(p) for p in ports.get("output", [])]
        # connected is derived from the connection set, never trusted from disk
        for port in input_ports + output_ports:
            port.connected = False
        return cls(
            id=ModuleId(data["id"]),
            type=ModuleType(data["type"]),
            name=data.get("name", data["type"]),
            position=Point2D.from_dict(data.get("position", {})),
            size=Size2D.from_dict(data.get("size", {})),
            status=status,
            inputs=decode_payload(data.get("inputs", {})),
            # only success statuses carry outputs
            outputs=decode_payload(data.get("outputs", {})) if status.has_outputs else {},
            input_ports=input_ports,
            output_ports=output_ports,
            error=ModuleError.from_dict(data["error"]) if data.get("error") else None,
            logs=[ModuleLog.from_dict(entry) for entry in data.get("logs", [])],
            needs_rerun=data.get("needsReRun", False),
        )


class Space:
    """
    One complete graph project: modules and the connections between them.

    Provides structural operations and graph analysis. The accessors
    return copies, so callers cannot mutate the graph behind the store.
    """

    def __init__(
        self,
        name: str = "Untitled",
        space_id: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.id: SpaceId = SpaceId(space_id) if space_id else new_space_id()
        self.name: str = name
        self.created_at: datetime = created_at or utcnow()
        self.updated_at: datetime = updated_at or self.created_at
        self.version: int = 0
        self.flow_execution_state: dict[str, Any] | None = None
        self._modules: dict[ModuleId, Module] = {}
        self._connections: list[Connection] = []

    # --- Module operations ---

    @property
    def modules(self) -> dict[ModuleId, Module]:
        """Get all modules (read-only view)."""
        return self._modules.copy()

    def add_module(self, module: Module) -> None:
        self._modules[module.id] = module

    def replace_module(self, module: Module) -> None:
        """Swap in a new version of an existing module."""
        if module.id not in self._modules:
            raise KeyError(module.id)
        self._modules[module.id] = module

    def remove_module(self, module_id: str) -> Module | None:
        """
        Remove a module and all its connections.

        Returns the removed module, or None if not found.
        """
        module = self._modules.pop(ModuleId(module_id), None)
        if module:
            self._connections = [
                conn for conn in self._connections if not conn.touches(module_id)
            ]
        return module

    def get_module(self, module_id: str) -> Module | None:
        return self._modules.get(ModuleId(module_id))

    # --- Connection operations ---

    @property
    def connections(self) -> list[Connection]:
        """Get all connections (read-only copy)."""
        return self._connections.copy()

    def add_connection(self, connection: Connection) -> None:
        self._connections.append(connection)

    def remove_connection(self, connection_id: str) -> Connection | None:
        for i, conn in enumerate(self._connections):
            if conn.id == connection_id:
                return self._connections.pop(i)
        return None

    def get_connection(self, connection_id: str) -> Connection | None:
        for conn in self._connections:
            if conn.id == connection_id:
                return conn
        return None

    def get_input_connection(self, module_id: str, port_id: str) -> Connection | None:
        """Get the connection feeding into a specific input port."""
        for conn in self._connections:
            if conn.target_module_id == module_id and conn.target_port_id == port_id:
                return conn
        return None

    def get_incoming_connections(self, module_id: str) -> list[Connection]:
        return [c for c in self._connections if c.target_module_id == module_id]

    def get_outgoing_connections(self, module_id: str) -> list[Connection]:
        return [c for c in self._connections if c.source_module_id == module_id]

    def find_connection(self, candidate: Connection) -> Connection | None:
        """Find an existing connection between the same port pair."""
        for conn in self._connections:
            if conn.same_ports(candidate):
                return conn
        return None

    def connected_port_ids(self, module_id: str) -> set[str]:
        ports: set[str] = set()
        for conn in self._connections:
            if conn.source_module_id == module_id:
                ports.add(conn.source_port_id)
            if conn.target_module_id == module_id:
                ports.add(conn.target_port_id)
        return ports

    def port_connected(self, module_id: str, port_id: str) -> bool:
        return port_id in self.connected_port_ids(module_id)

    # --- Graph analysis ---

    def get_predecessors(self, module_id: str) -> set[ModuleId]:
        return {c.source_module_id for c in self._connections if c.target_module_id == module_id}

    def get_execution_order(self) -> list[ModuleId]:
        """
        Get modules in topological order for execution.

        Modules with no dependencies come first (in insertion order),
        followed by modules that depend on them, and so on.

        Raises:
            ValueError: If the graph contains a cycle.
        """
        dependencies: dict[ModuleId, set[ModuleId]] = {
            module_id: set() for module_id in self._modules
        }
        dependents: dict[ModuleId, list[ModuleId]] = {
            module_id: [] for module_id in self._modules
        }
        for conn in self._connections:
            dependencies[conn.target_module_id].add(conn.source_module_id)
            dependents[conn.source_module_id].append(conn.target_module_id)

        # Kahn's algorithm
        result: list[ModuleId] = []
        no_deps = deque(mid for mid, deps in dependencies.items() if not deps)

        while no_deps:
            module_id = no_deps.popleft()
            result.append(module_id)
            for dependent in dependents[module_id]:
                deps = dependencies[dependent]
                if module_id in deps:
                    deps.remove(module_id)
                    if not deps:
                        no_deps.append(dependent)

        if len(result) != len(self._modules):
            raise ValueError("Graph contains a cycle")

        return result

    def get_upstream_modules(self, module_id: str) -> set[ModuleId]:
        """Get all modules this module depends on (directly or indirectly)."""
        upstream: set[ModuleId] = set()
        to_visit = [module_id]

        while to_visit:
            current = to_visit.pop()
            for conn in self._connections:
                if conn.target_module_id == current:
                    source_id = conn.source_module_id
                    if source_id not in upstream:
                        upstream.add(source_id)
                        to_visit.append(source_id)

        return upstream

    def get_downstream_modules(self, module_id: str) -> set[ModuleId]:
        """Get all modules that depend on this module (directly or indirectly)."""
        downstream: set[ModuleId] = set()
        to_visit = [module_id]

        while to_visit:
            current = to_visit.pop()
            for conn in self._connections:
                if conn.source_module_id == current:
                    target_id = conn.target_module_id
                    if target_id not in downstream:
                        downstream.add(target_id)
                        to_visit.append(target_id)

        return downstream

    def would_create_cycle(self, source_module_id: str, target_module_id: str) -> bool:
        """Check if an edge source -> target would close a cycle."""
        if source_module_id == target_module_id:
            return True

        # If the source is reachable from the target, source -> target closes a loop
        visited: set[str] = set()
        to_visit = deque([target_module_id])

        while to_visit:
            current = to_visit.popleft()
            if current == source_module_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            to_visit.extend(
                conn.target_module_id
                for conn in self._connections
                if conn.source_module_id == current
            )

        return False

    def has_cycle(self) -> bool:
        try:
            self.get_execution_order()
        except ValueError:
            return True
        return False

    # --- Bookkeeping ---

    def touch(self) -> None:
        """Record a mutation."""
        self.version += 1
        self.updated_at = utcnow()

    # --- Serialization ---

    def to_dict(self) -> dict[str, Any]:
        """Convert the full entity graph to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "modules": [
                module.to_dict(self.connected_port_ids(module.id))
                for module in self._modules.values()
            ],
            "connections": [conn.to_dict() for conn in self._connections],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "version": self.version,
            "flowExecutionState": self.flow_execution_state,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Space:
        """
        Rebuild a space from a snapshot.

        Connections that would break a graph invariant are dropped:
        dangling endpoints, a type the target port does not accept, a
        second edge into one input, a cycle. Modules in a status that
        cannot carry outputs lose them.
        """
        space = cls(
            name=data.get("name", "Untitled"),
            space_id=data["id"],
            created_at=datetime.fromisoformat(data["createdAt"]) if data.get("createdAt") else None,
            updated_at=datetime.fromisoformat(data["updatedAt"]) if data.get("updatedAt") else None,
        )
        space.version = int(data.get("version", 0))
        space.flow_execution_state = data.get("flowExecutionState")

        for module_data in data.get("modules", []):
            space.add_module(Module.from_dict(module_data))

        for conn_data in data.get("connections", []):
            conn = Connection.from_dict(conn_data)
            source = space.get_module(conn.source_module_id)
            target = space.get_module(conn.target_module_id)
            if not source or not target:
                continue
            source_port = source.get_output_port(conn.source_port_id)
            target_port = target.get_input_port(conn.target_port_id)
            if not source_port or not target_port:
                continue
            if conn.data_type != source_port.data_type or not is_compatible(conn.data_type, target_port):
                continue
            if space.get_input_connection(conn.target_module_id, conn.target_port_id):
                continue
            if space.would_create_cycle(conn.source_module_id, conn.target_module_id):
                continue
            space.add_connection(conn)

        return space

    def __len__(self) -> int:
        """Return the number of modules."""
        return len(self._modules)

    def __contains__(self, module_id: str) -> bool:
        return module_id in self._modules
