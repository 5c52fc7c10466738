"""
Execution Engine - Async flow execution over a space.

This module drives modules through their state machine:

    idle -> running -> done | warning | error | fatal_error
    any -> invalid (a dependency became unusable)
    invalid -> idle (inputs resolvable again)

Modules start in topological order; independent branches may run
concurrently, but a module only starts once all of its predecessors
have settled for the current run. Pausing is cooperative: it stops new
modules from starting and lets in-flight work finish.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from marketing_spaces.core.data_types import ModuleStatus, is_empty_value
from marketing_spaces.core.errors import (
    ErrorCategory,
    FatalModuleError,
    FlowAlreadyRunningError,
    ModuleNotFoundInSpaceError,
    ModuleWorkError,
    RecoveryAction,
)
from marketing_spaces.core.graph import Module, ModuleError
from marketing_spaces.core.module_types import (
    ModuleContext,
    ModuleFailure,
    ModuleLog,
    ModuleResult,
)
from marketing_spaces.core.store import GraphStore


logger = logging.getLogger(__name__)


class FlowStatus(str, Enum):
    """Status of a flow run."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    HALTED = "halted"
    CANCELLED = "cancelled"


@dataclass
class FlowProgress:
    """Progress information for a flow run."""
    status: FlowStatus
    current_module: str | None = None
    current_module_name: str = ""
    modules_completed: int = 0
    modules_total: int = 0
    message: str = ""
    error: str | None = None

    @property
    def progress_percent(self) -> float:
        if self.modules_total == 0:
            return 0.0
        return (self.modules_completed / self.modules_total) * 100


@dataclass
class FlowExecutionState:
    """Scheduling state of the space's current flow run."""
    is_running: bool = False
    is_paused: bool = False
    current_module_ids: list[str] = field(default_factory=list)
    execution_order: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "isPaused": self.is_paused,
            "currentModuleId": self.current_module_ids[0] if self.current_module_ids else None,
            "currentModuleIds": list(self.current_module_ids),
            "executionOrder": list(self.execution_order),
        }


@dataclass
class FlowRunResult:
    """Outcome of one executeFlow call."""
    status: FlowStatus
    executed: list[str] = field(default_factory=list)
    statuses: dict[str, ModuleStatus] = field(default_factory=dict)
    halted_by: str | None = None
    started_at: float = field(default_factory=time.time)
    completed_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "executed": list(self.executed),
            "statuses": {mid: s.value for mid, s in self.statuses.items()},
            "haltedBy": self.halted_by,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }


class ExecutionEngine:
    """
    Async execution engine for one space.

    Features:
    - Topological scheduling with bounded concurrency
    - Per-module state machine with failure propagation
    - Cooperative pause, reset, and single-module re-run
    - Progress reporting
    """

    def __init__(
        self,
        store: GraphStore,
        providers: dict[str, Any] | None = None,
        default_provider: str | None = None,
        max_concurrency: int = 4,
    ):
        self._store = store
        self._providers = dict(providers or {})
        self._default_provider = default_provider
        self._max_concurrency = max(1, max_concurrency)
        self._state = FlowExecutionState()
        self._paused = False
        # Bumped by reset_flow(); results from an older generation are discarded
        self._generation = 0

        self._on_progress: Callable[[FlowProgress], None] | None = None

    @property
    def state(self) -> FlowExecutionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    def set_progress_callback(self, callback: Callable[[FlowProgress], None]) -> None:
        self._on_progress = callback

    def set_provider(self, provider_id: str, provider: Any) -> None:
        self._providers[provider_id] = provider

    def _report(self, progress: FlowProgress) -> None:
        if self._on_progress:
            self._on_progress(progress)

    def _publish_state(self) -> None:
        self._store.set_flow_state(self._state.to_dict())

    # --- Flow control ---

    async def execute_flow(self) -> FlowRunResult:
        """
        Run every runnable module of the space in topological order.

        Only modules in ``idle`` (or ``invalid`` modules whose inputs
        resolve again) are run; finished modules keep their results.

        Raises:
            FlowAlreadyRunningError: A run is already active.
        """
        if self._state.is_running:
            raise FlowAlreadyRunningError("A flow run is already active")

        space = self._store.space
        order = [str(mid) for mid in space.get_execution_order()]
        generation = self._generation
        result = FlowRunResult(status=FlowStatus.RUNNING)

        self._paused = False
        self._state = FlowExecutionState(is_running=True, execution_order=order)
        self._publish_state()

        total = len(order)
        completed = 0
        pending = list(order)
        settled: set[str] = set()
        in_flight: dict[asyncio.Task, str] = {}

        logger.info("Starting flow on space %r (%d modules)", space.name, total)

        finished = False
        try:
            self._report(FlowProgress(
                status=FlowStatus.RUNNING,
                modules_total=total,
                message="Starting execution",
            ))

            while True:
                if not self._paused and result.halted_by is None and generation == self._generation:
                    for module_id in list(pending):
                        if len(in_flight) >= self._max_concurrency:
                            break
                        if not space.get_predecessors(module_id) <= settled:
                            continue
                        pending.remove(module_id)

                        inputs = self._prepare(module_id)
                        if inputs is None:
                            settled.add(module_id)
                            completed += 1
                            continue

                        task = asyncio.create_task(self._run_module(module_id, inputs, generation))
                        in_flight[task] = module_id
                        result.executed.append(module_id)

                if not in_flight:
                    break

                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    module_id = in_flight.pop(task)
                    status = task.result()
                    settled.add(module_id)
                    completed += 1

                    self._report(FlowProgress(
                        status=FlowStatus.RUNNING,
                        current_module=module_id,
                        modules_completed=completed,
                        modules_total=total,
                        message=f"Module {module_id} finished with {status.value}",
                    ))

                    if status == ModuleStatus.FATAL_ERROR and result.halted_by is None:
                        result.halted_by = module_id
                        logger.error("Fatal error in module %s; halting flow", module_id)

            finished = True
        finally:
            if not finished:
                await self._abort_run(in_flight, result.executed, order)

        if generation != self._generation:
            result.status = FlowStatus.CANCELLED
        elif result.halted_by is not None:
            result.status = FlowStatus.HALTED
        elif self._paused and pending:
            result.status = FlowStatus.PAUSED
        else:
            result.status = FlowStatus.COMPLETED

        result.completed_at = time.time()
        result.statuses = {
            mid: module.status for mid, module in self._store.space.modules.items()
        }

        self._state = FlowExecutionState(
            is_paused=result.status == FlowStatus.PAUSED,
            execution_order=order,
        )
        self._paused = False
        self._publish_state()

        logger.info("Flow on space %r finished: %s", space.name, result.status.value)
        self._report(FlowProgress(
            status=result.status,
            modules_completed=completed,
            modules_total=total,
            message=f"Execution {result.status.value}",
            error=f"Fatal error in module {result.halted_by}" if result.halted_by else None,
        ))
        return result

    async def _abort_run(
        self,
        in_flight: dict[asyncio.Task, str],
        started: list[str],
        order: list[str],
    ) -> None:
        """Cancel outstanding work after a run was interrupted and free the engine."""
        logger.warning("Flow run interrupted; cancelling %d running module(s)", len(in_flight))
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)
        self._release_running(started)
        self._paused = False
        self._state = FlowExecutionState(execution_order=order)
        self._publish_state()

    def _release_running(self, module_ids: list[str]) -> None:
        """Put modules left in ``running`` back to idle."""
        space = self._store.space
        for module_id in module_ids:
            module = space.get_module(module_id)
            if module is not None and module.status == ModuleStatus.RUNNING:
                self._store.update_module(module_id, status=ModuleStatus.IDLE)

    def pause_flow(self) -> bool:
        """
        Stop scheduling modules that have not started yet.

        Modules already running are left to finish. Returns True if a
        run was active.
        """
        if not self._state.is_running:
            return False
        self._paused = True
        self._state.is_paused = True
        self._publish_state()
        logger.info("Flow paused; waiting for %d running module(s)", len(self._state.current_module_ids))
        self._report(FlowProgress(status=FlowStatus.PAUSED, message="Execution paused"))
        return True

    def reset_flow(self) -> None:
        """
        Drive every module back to idle and clear transient flags.

        Work still in flight finishes in the background but its result
        is discarded.
        """
        self._generation += 1
        self._store.reset_all()
        self._state = FlowExecutionState(is_running=self._state.is_running)
        self._publish_state()
        logger.info("Flow reset")

    async def rerun_module(self, module_id: str) -> ModuleStatus:
        """
        Reset a single module to idle and run it again.

        Dependents are invalidated by the reset. Returns the module's
        final status.
        """
        if self._state.is_running:
            raise FlowAlreadyRunningError("A flow run is already active")

        self._store.update_module(module_id, status=ModuleStatus.IDLE, error=None)
        inputs = self._prepare(module_id)
        if inputs is None:
            return self._store.get_module(module_id).status

        self._state = FlowExecutionState(is_running=True, execution_order=[module_id])
        try:
            return await self._run_module(module_id, inputs, self._generation)
        finally:
            self._release_running([module_id])
            self._state = FlowExecutionState()
            self._publish_state()

    # --- Per-module steps ---

    def _prepare(self, module_id: str) -> dict[str, Any] | None:
        """
        Resolve a module's inputs if it should run.

        Returns the resolved inputs keyed by input port id, or None when
        the module is skipped (already finished, deleted) or has been
        moved to ``invalid``.
        """
        space = self._store.space
        module = space.get_module(module_id)
        if module is None:
            return None
        if module.status not in (ModuleStatus.IDLE, ModuleStatus.INVALID):
            return None

        inputs: dict[str, Any] = {}
        for port in module.input_ports:
            connection = space.get_input_connection(module_id, port.id)
            if connection is None:
                if port.required:
                    self._invalidate(module, "MISSING_INPUT", f"Required input '{port.label}' is not connected")
                    return None
                continue

            source = space.get_module(connection.source_module_id)
            if source is None or not source.status.has_outputs:
                self._store.set_connection_validity(connection.id, False)
                source_name = source.name if source else connection.source_module_id
                self._invalidate(module, "UPSTREAM_NOT_DONE", f"Upstream module '{source_name}' has not completed")
                return None

            value = source.outputs.get(connection.source_port_id)
            if is_empty_value(value):
                self._store.set_connection_validity(connection.id, False)
                self._invalidate(module, "EMPTY_INPUT", f"Upstream module '{source.name}' produced no data for '{port.label}'")
                return None

            self._store.set_connection_validity(connection.id, True)
            inputs[port.id] = value

        if module.status == ModuleStatus.INVALID:
            self._store.update_module(module_id, status=ModuleStatus.IDLE, error=None)

        return inputs

    def _invalidate(self, module: Module, code: str, message: str) -> None:
        logger.info("Module %s is invalid: %s", module.id, message)
        current = self._store.get_module(module.id)
        self._store.update_module(
            module.id,
            status=ModuleStatus.INVALID,
            error=ModuleError(
                message=message,
                code=code,
                category=ErrorCategory.CONNECTION,
                recovery_actions=[RecoveryAction.EDIT_INPUTS],
            ),
            logs=current.logs + [_log("error", message)],
        )

    async def _run_module(self, module_id: str, inputs: dict[str, Any], generation: int) -> ModuleStatus:
        """Run one module's work function and record the outcome."""
        try:
            module = self._store.get_module(module_id)
        except ModuleNotFoundInSpaceError:
            logger.info("Module %s was deleted before it started", module_id)
            return ModuleStatus.IDLE
        descriptor = self._store.registry.get(module.type)

        started = time.time()
        self._store.update_module(
            module_id,
            status=ModuleStatus.RUNNING,
            inputs={**module.inputs, **inputs},
            error=None,
            logs=module.logs + [_log("info", f"Starting {module.name}")],
        )
        self._state.current_module_ids.append(module_id)
        self._publish_state()
        self._report(FlowProgress(
            status=FlowStatus.RUNNING,
            current_module=module_id,
            current_module_name=module.name,
            message=f"Executing {module.name}",
        ))

        context = ModuleContext(
            module_id=module_id,
            module_name=module.name,
            providers=self._providers,
            default_provider=self._default_provider,
        )
        config = module.config()

        try:
            if descriptor is None or descriptor.executor is None:
                raise FatalModuleError(f"No work function registered for {module.type.value}")
            outcome = await descriptor.executor(inputs, config, context)
        except asyncio.CancelledError:
            raise
        except FatalModuleError as e:
            outcome = ModuleFailure(str(e), fatal=True, code=e.code)
        except ModuleWorkError as e:
            outcome = ModuleFailure(str(e), code=e.code, category=e.category)
        except Exception as e:
            logger.exception("Module %s raised an unexpected error", module_id)
            outcome = ModuleFailure(f"{type(e).__name__}: {e}", code="SYSTEM_ERROR", category=ErrorCategory.SYSTEM)
        finally:
            if module_id in self._state.current_module_ids:
                self._state.current_module_ids.remove(module_id)

        if generation != self._generation:
            logger.info("Discarding result of module %s after reset", module_id)
            return ModuleStatus.IDLE

        try:
            current = self._store.get_module(module_id)
        except ModuleNotFoundInSpaceError:
            logger.info("Module %s was deleted while running", module_id)
            return ModuleStatus.IDLE

        elapsed = time.time() - started
        logs = current.logs + context.logs

        if isinstance(outcome, ModuleResult):
            unknown = set(outcome.outputs) - {p.id for p in current.output_ports}
            if unknown:
                outcome = ModuleFailure(f"Module produced unknown outputs: {sorted(unknown)}")

        if isinstance(outcome, ModuleResult):
            status = ModuleStatus.WARNING if outcome.warning else ModuleStatus.DONE
            if outcome.warning:
                logs.append(_log("warning", outcome.warning))
            logs.append(_log("info", f"Completed in {elapsed:.2f}s"))
            self._store.update_module(
                module_id,
                status=status,
                outputs=outcome.outputs,
                error=None,
                logs=logs,
            )
        elif isinstance(outcome, ModuleFailure):
            status = ModuleStatus.FATAL_ERROR if outcome.fatal else ModuleStatus.ERROR
            logs.append(_log("error", outcome.message))
            self._store.update_module(
                module_id,
                status=status,
                error=ModuleError(
                    message=outcome.message,
                    code=outcome.code,
                    category=outcome.category or (ErrorCategory.FATAL if outcome.fatal else ErrorCategory.PROCESSING),
                    recovery_actions=(
                        [RecoveryAction.RESET, RecoveryAction.VIEW_LOGS]
                        if outcome.fatal
                        else [RecoveryAction.RETRY, RecoveryAction.EDIT_INPUTS, RecoveryAction.VIEW_LOGS]
                    ),
                    recoverable=not outcome.fatal,
                ),
                logs=logs,
            )
        else:
            status = ModuleStatus.ERROR
            message = f"Work function returned {type(outcome).__name__}"
            logs.append(_log("error", message))
            self._store.update_module(
                module_id,
                status=status,
                error=ModuleError(message=message, code="SYSTEM_ERROR", category=ErrorCategory.SYSTEM),
                logs=logs,
            )

        logger.info("Module %s (%s) -> %s", module_id, module.type.value, status.value)
        self._publish_state()
        return status


def _log(level: str, message: str) -> ModuleLog:
    return ModuleLog(timestamp=datetime.now(timezone.utc), level=level, message=message)
