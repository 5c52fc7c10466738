"""
Drag-to-Connect - Two-phase connection protocol consumed by a canvas.

A canvas reports pointer events to a ConnectionDragSession:

    begin_drag()   pointer pressed on an output port
    update_cursor() pointer moved (drives the rubber-band line)
    hover_target() pointer over an input port (compatibility preview)
    end_drag()     pointer released; validates and commits
    cancel()       Escape or release over empty canvas

Nothing here mutates the graph except end_drag() after a successful
validation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from marketing_spaces.core.data_types import DataType, is_compatible
from marketing_spaces.core.errors import ConnectionRejectedError, DuplicateConnectionError
from marketing_spaces.core.graph import Connection, Point2D
from marketing_spaces.core.store import GraphStore
from marketing_spaces.core.validation import ValidationResult


logger = logging.getLogger(__name__)


@dataclass
class DragState:
    """In-progress drag from an output port."""
    source_module_id: str
    source_port_id: str
    data_type: DataType
    cursor_pos: Point2D
    hover_module_id: str | None = None
    hover_port_id: str | None = None
    hover_compatible: bool | None = None


@dataclass
class DropOutcome:
    """Result of releasing a drag."""
    connection: Connection | None = None
    result: ValidationResult | None = None

    @property
    def connected(self) -> bool:
        return self.connection is not None


class ConnectionDragSession:
    """
    Tracks one drag gesture at a time for a single store.

    ``on_error`` is called with the rejecting ValidationResult when a drop
    fails, so the canvas can show it at the drop point.
    """

    def __init__(
        self,
        store: GraphStore,
        on_error: Callable[[ValidationResult], None] | None = None,
    ):
        self._store = store
        self._on_error = on_error
        self._drag: DragState | None = None

    @property
    def drag(self) -> DragState | None:
        return self._drag

    @property
    def is_dragging(self) -> bool:
        return self._drag is not None

    def begin_drag(
        self,
        source_module_id: str,
        source_port_id: str,
        data_type: DataType | str,
        cursor_pos: Point2D | tuple[float, float],
    ) -> DragState:
        """Start dragging a new connection out of an output port."""
        if not isinstance(cursor_pos, Point2D):
            cursor_pos = Point2D(*cursor_pos)
        self._drag = DragState(
            source_module_id=source_module_id,
            source_port_id=source_port_id,
            data_type=DataType(data_type),
            cursor_pos=cursor_pos,
        )
        logger.debug("Drag started from %s.%s", source_module_id, source_port_id)
        return self._drag

    def update_cursor(self, cursor_pos: Point2D | tuple[float, float]) -> None:
        if self._drag is None:
            return
        if not isinstance(cursor_pos, Point2D):
            cursor_pos = Point2D(*cursor_pos)
        self._drag.cursor_pos = cursor_pos

    def hover_target(self, target_module_id: str | None, target_port_id: str | None) -> bool:
        """
        Preview whether the dragged type fits the hovered input port.

        Only the port's accepted types are consulted; the full validation
        runs on drop.
        """
        if self._drag is None:
            return False

        self._drag.hover_module_id = target_module_id
        self._drag.hover_port_id = target_port_id

        compatible = False
        if target_module_id and target_port_id and target_module_id != self._drag.source_module_id:
            module = self._store.space.get_module(target_module_id)
            port = module.get_input_port(target_port_id) if module else None
            if port is not None:
                compatible = is_compatible(self._drag.data_type, port)

        self._drag.hover_compatible = compatible if target_port_id else None
        return compatible

    def end_drag(
        self,
        target_module_id: str | None = None,
        target_port_id: str | None = None,
    ) -> DropOutcome:
        """
        Release the drag, connecting to the given input port if legal.

        Releasing without a target cancels silently.
        """
        drag = self._drag
        self._drag = None

        if drag is None or not target_module_id or not target_port_id:
            return DropOutcome()

        result = self._store.validate_connection(
            drag.source_module_id,
            drag.source_port_id,
            target_module_id,
            target_port_id,
        )
        if not result.valid:
            logger.info(
                "Connection %s.%s -> %s.%s rejected: %s",
                drag.source_module_id, drag.source_port_id,
                target_module_id, target_port_id, result.error_code.value,
            )
            self._surface(result)
            return DropOutcome(result=result)

        connection = Connection.create(
            drag.source_module_id,
            drag.source_port_id,
            target_module_id,
            target_port_id,
            result.data_type,
        )
        try:
            connection = self._store.add_connection(connection)
        except DuplicateConnectionError:
            # Validation passed against a stale view; nothing new to add
            return DropOutcome(result=result)
        except ConnectionRejectedError as e:
            rejected = ValidationResult.reject(e.code, e.message)
            self._surface(rejected)
            return DropOutcome(result=rejected)

        return DropOutcome(connection=connection, result=result)

    def cancel(self) -> None:
        self._drag = None

    def _surface(self, result: ValidationResult) -> None:
        if self._on_error:
            self._on_error(result)
