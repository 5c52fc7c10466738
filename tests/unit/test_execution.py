"""Tests for the execution engine."""

import asyncio

import pytest

from marketing_spaces.core.data_types import ModuleStatus
from marketing_spaces.core.errors import (
    ErrorCategory,
    FatalModuleError,
    FlowAlreadyRunningError,
    ModuleWorkError,
)
from marketing_spaces.core.execution import ExecutionEngine, FlowStatus
from marketing_spaces.core.module_types import ModuleFailure, ModuleResult, ModuleType


T = ModuleType


def run(coro):
    return asyncio.run(coro)


def _status(store, module):
    return store.get_module(module.id).status


def _build_chain(store, engine):
    """Build a -> b -> c the way a user would: run, connect, run, connect, run."""
    a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
    run(engine.execute_flow())
    b = store.create_module(T.READER_ENGINE)
    ab = store.connect(a.id, "out-1", b.id, "in-1")
    run(engine.execute_flow())
    c = store.create_module(T.NAMING_ENGINE)
    bc = store.connect(b.id, "out-1", c.id, "in-1")
    run(engine.execute_flow())
    return a, b, c, ab, bc


class TestExecuteFlow:
    """Tests for ExecutionEngine.execute_flow."""

    def test_independent_modules_each_run_once(self, store):
        ran = []

        async def records(inputs, config, context):
            ran.append(context.module_id)
            return ModuleResult(outputs={"out-1": {"x": 1}})

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, records)
        modules = [store.create_module(T.LOCAL_PROJECT_ANALYSIS) for _ in range(3)]

        result = run(ExecutionEngine(store).execute_flow())

        assert result.status == FlowStatus.COMPLETED
        assert sorted(ran) == sorted(m.id for m in modules)
        for module in modules:
            assert _status(store, module) == ModuleStatus.DONE

    def test_chain_runs_in_topological_order(self, store, calls, make_done):
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        make_done(a, {"out-1": {"projectName": "demo"}})
        b = store.create_module(T.READER_ENGINE)
        store.connect(a.id, "out-1", b.id, "in-1")
        store.update_module(a.id, status="idle")

        result = run(ExecutionEngine(store).execute_flow())

        assert calls == [T.LOCAL_PROJECT_ANALYSIS, T.READER_ENGINE]
        assert result.executed == [a.id, b.id]
        assert _status(store, b) == ModuleStatus.DONE
        assert store.get_module(b.id).inputs["in-1"] == {"projectName": "demo"}

    def test_outputs_feed_downstream_inputs(self, store):
        engine = ExecutionEngine(store)
        a, b, c, ab, bc = _build_chain(store, engine)

        assert store.get_module(b.id).inputs["in-1"] == {"projectName": "demo"}
        assert store.get_module(c.id).inputs["in-1"] == {"keywords": ["demo"]}
        assert store.get_connection(ab.id).is_valid is True
        assert store.get_connection(bc.id).is_valid is True

    def test_finished_modules_are_not_rerun(self, store, calls):
        engine = ExecutionEngine(store)
        _build_chain(store, engine)
        calls.clear()

        result = run(engine.execute_flow())

        assert calls == []
        assert result.executed == []
        assert result.status == FlowStatus.COMPLETED

    def test_deleted_connection_invalidates_downstream(self, store):
        engine = ExecutionEngine(store)
        a, b, c, ab, _ = _build_chain(store, engine)

        store.delete_connection(ab.id)
        run(engine.execute_flow())

        assert _status(store, a) == ModuleStatus.DONE
        assert _status(store, b) == ModuleStatus.INVALID
        assert _status(store, c) == ModuleStatus.INVALID
        assert store.get_module(b.id).error.code == "MISSING_INPUT"
        assert store.get_module(c.id).error.code == "UPSTREAM_NOT_DONE"

    def test_missing_required_input(self, store, calls):
        b = store.create_module(T.READER_ENGINE)

        run(ExecutionEngine(store).execute_flow())

        module = store.get_module(b.id)
        assert module.status == ModuleStatus.INVALID
        assert module.error.category == ErrorCategory.CONNECTION
        assert module.logs[-1].level == "error"
        assert calls == []

    def test_optional_input_may_be_unconnected(self, store, make_done):
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        make_done(a, {"out-1": {"projectName": "demo"}})
        pack = store.create_module(T.MARKETING_PACK)
        store.connect(a.id, "out-1", pack.id, "in-1")

        run(ExecutionEngine(store).execute_flow())

        assert _status(store, pack) == ModuleStatus.DONE

    def test_invalid_module_recovers_when_inputs_resolve(self, store, make_done):
        engine = ExecutionEngine(store)
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        b = store.create_module(T.READER_ENGINE)
        run(engine.execute_flow())
        assert _status(store, b) == ModuleStatus.INVALID

        store.connect(a.id, "out-1", b.id, "in-1")
        run(engine.execute_flow())

        assert _status(store, b) == ModuleStatus.DONE
        assert store.get_module(b.id).error is None

    def test_warning_outputs_feed_dependents(self, store, calls):
        async def warns(inputs, config, context):
            return ModuleResult(outputs={"out-1": {"projectName": "demo"}}, warning="No README")

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, warns)
        engine = ExecutionEngine(store)
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        b = store.create_module(T.READER_ENGINE)
        store.update_module(a.id, status="done", outputs={"out-1": {"x": 1}})
        store.connect(a.id, "out-1", b.id, "in-1")
        store.update_module(a.id, status="idle")

        run(engine.execute_flow())

        assert _status(store, a) == ModuleStatus.WARNING
        assert _status(store, b) == ModuleStatus.DONE
        assert any(log.level == "warning" for log in store.get_module(a.id).logs)

    def test_progress_callback(self, store):
        engine = ExecutionEngine(store)
        updates = []
        engine.set_progress_callback(updates.append)
        store.create_module(T.LOCAL_PROJECT_ANALYSIS)

        run(engine.execute_flow())

        assert updates[0].status == FlowStatus.RUNNING
        assert updates[-1].status == FlowStatus.COMPLETED
        assert updates[-1].progress_percent == 100.0

    def test_flow_state_published(self, store):
        engine = ExecutionEngine(store)
        store.create_module(T.LOCAL_PROJECT_ANALYSIS)

        run(engine.execute_flow())

        state = store.space.flow_execution_state
        assert state["isRunning"] is False
        assert len(state["executionOrder"]) == 1


class TestFailures:
    """Tests for error, fatal error and unexpected exceptions."""

    def _fan_out(self, store, make_done):
        """a feeds b and c independently."""
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        make_done(a, {"out-1": {"projectName": "demo"}, "out-2": "readme"})
        b = store.create_module(T.READER_ENGINE)
        c = store.create_module(T.ICON_GENERATOR)
        store.connect(a.id, "out-1", b.id, "in-1")
        store.connect(a.id, "out-2", c.id, "in-1")
        return a, b, c

    def test_error_does_not_halt_siblings(self, store, make_done, calls):
        async def fails(inputs, config, context):
            raise ModuleWorkError("bad input", code="INVALID_INPUT", category=ErrorCategory.INPUT)

        store.registry.set_executor(T.READER_ENGINE, fails)
        a, b, c = self._fan_out(store, make_done)

        result = run(ExecutionEngine(store).execute_flow())

        assert result.status == FlowStatus.COMPLETED
        module = store.get_module(b.id)
        assert module.status == ModuleStatus.ERROR
        assert module.outputs == {}
        assert module.error.code == "INVALID_INPUT"
        assert module.error.category == ErrorCategory.INPUT
        assert module.error.recoverable is True
        assert _status(store, c) == ModuleStatus.DONE

    def test_error_invalidates_dependents(self, store, make_done):
        async def fails(inputs, config, context):
            return ModuleFailure("model unavailable")

        store.registry.set_executor(T.READER_ENGINE, fails)
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        make_done(a, {"out-1": {"projectName": "demo"}})
        b = store.create_module(T.READER_ENGINE)
        store.connect(a.id, "out-1", b.id, "in-1")
        store.update_module(b.id, status="done", outputs={"out-1": {"k": 1}})
        c = store.create_module(T.NAMING_ENGINE)
        store.connect(b.id, "out-1", c.id, "in-1")
        store.update_module(b.id, status="idle")

        run(ExecutionEngine(store).execute_flow())

        assert _status(store, b) == ModuleStatus.ERROR
        assert _status(store, c) == ModuleStatus.INVALID

    def test_fatal_error_halts_flow(self, store, make_done):
        async def fatal(inputs, config, context):
            raise FatalModuleError("disk gone", code="MISSING_CONFIG")

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, fatal)
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        b = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        later = store.create_module(T.READER_ENGINE)
        make_done(a, {"out-1": {"x": 1}})
        store.connect(a.id, "out-1", later.id, "in-1")
        store.update_module(a.id, status="idle")

        result = run(ExecutionEngine(store, max_concurrency=1).execute_flow())

        assert result.status == FlowStatus.HALTED
        assert result.halted_by == a.id
        module = store.get_module(a.id)
        assert module.status == ModuleStatus.FATAL_ERROR
        assert module.error.recoverable is False
        assert module.error.category == ErrorCategory.FATAL
        assert result.executed == [a.id]
        assert _status(store, b) == ModuleStatus.IDLE
        assert _status(store, later) == ModuleStatus.INVALID

    def test_unexpected_exception_is_system_error(self, store):
        async def broken(inputs, config, context):
            raise RuntimeError("boom")

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, broken)
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)

        result = run(ExecutionEngine(store).execute_flow())

        assert result.status == FlowStatus.COMPLETED
        error = store.get_module(a.id).error
        assert error.code == "SYSTEM_ERROR"
        assert error.category == ErrorCategory.SYSTEM
        assert "boom" in error.message

    def test_unknown_output_port_is_error(self, store):
        async def strays(inputs, config, context):
            return ModuleResult(outputs={"out-7": "x"})

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, strays)
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)

        run(ExecutionEngine(store).execute_flow())

        assert _status(store, a) == ModuleStatus.ERROR

    def test_missing_executor_is_fatal(self, store):
        store.registry.require(T.LOCAL_PROJECT_ANALYSIS).executor = None
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)

        result = run(ExecutionEngine(store).execute_flow())

        assert result.status == FlowStatus.HALTED
        assert _status(store, a) == ModuleStatus.FATAL_ERROR


class TestFlowControl:
    """Tests for pause, reset, re-run and concurrency limits."""

    def test_already_running(self, store):
        gate = asyncio.Event()

        async def waits(inputs, config, context):
            await gate.wait()
            return ModuleResult(outputs={"out-1": {"x": 1}})

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, waits)
        store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        engine = ExecutionEngine(store)

        async def scenario():
            first = asyncio.create_task(engine.execute_flow())
            await asyncio.sleep(0.01)
            assert engine.is_running
            with pytest.raises(FlowAlreadyRunningError):
                await engine.execute_flow()
            gate.set()
            return await first

        result = run(scenario())
        assert result.status == FlowStatus.COMPLETED
        assert not engine.is_running

    def test_pause_stops_scheduling(self, store, make_done):
        gate = asyncio.Event()
        started = []

        async def waits(inputs, config, context):
            started.append(context.module_id)
            await gate.wait()
            return ModuleResult(outputs={"out-1": {"x": 1}})

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, waits)
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        make_done(a, {"out-1": {"x": 1}})
        b = store.create_module(T.READER_ENGINE)
        store.connect(a.id, "out-1", b.id, "in-1")
        store.update_module(a.id, status="idle")
        engine = ExecutionEngine(store)

        async def scenario():
            task = asyncio.create_task(engine.execute_flow())
            await asyncio.sleep(0.01)
            assert engine.pause_flow() is True
            assert engine.state.is_paused
            gate.set()
            return await task

        result = run(scenario())

        assert result.status == FlowStatus.PAUSED
        assert started == [a.id]
        assert _status(store, a) == ModuleStatus.DONE
        assert _status(store, b) == ModuleStatus.INVALID

        # Resuming only runs what has not finished
        started.clear()
        resumed = run(engine.execute_flow())
        assert resumed.status == FlowStatus.COMPLETED
        assert started == []
        assert _status(store, b) == ModuleStatus.DONE

    def test_pause_when_idle(self, store):
        assert ExecutionEngine(store).pause_flow() is False

    def test_reset_is_idempotent(self, store):
        engine = ExecutionEngine(store)
        a, b, c, ab, _ = _build_chain(store, engine)

        engine.reset_flow()
        snapshot = store.snapshot()
        engine.reset_flow()

        for module in (a, b, c):
            assert _status(store, module) == ModuleStatus.IDLE
            assert store.get_module(module.id).outputs == {}
        assert store.get_connection(ab.id).is_valid is None
        assert store.snapshot()["modules"] == snapshot["modules"]
        assert len(store.space.connections) == 2

    def test_reset_discards_in_flight_results(self, store):
        gate = asyncio.Event()

        async def waits(inputs, config, context):
            await gate.wait()
            return ModuleResult(outputs={"out-1": {"x": 1}})

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, waits)
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        engine = ExecutionEngine(store)

        async def scenario():
            task = asyncio.create_task(engine.execute_flow())
            await asyncio.sleep(0.01)
            engine.reset_flow()
            gate.set()
            return await task

        result = run(scenario())

        assert result.status == FlowStatus.CANCELLED
        assert _status(store, a) == ModuleStatus.IDLE
        assert store.get_module(a.id).outputs == {}

    def test_rerun_module(self, store, calls):
        engine = ExecutionEngine(store)
        a, b, c, _, _ = _build_chain(store, engine)
        calls.clear()

        status = run(engine.rerun_module(b.id))

        assert status == ModuleStatus.DONE
        assert calls == [T.READER_ENGINE]
        assert _status(store, a) == ModuleStatus.DONE
        assert _status(store, c) == ModuleStatus.INVALID

        run(engine.execute_flow())
        assert _status(store, c) == ModuleStatus.DONE

    def test_max_concurrency(self, store):
        active = 0
        peak = 0

        async def tracked(inputs, config, context):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return ModuleResult(outputs={"out-1": {"x": 1}})

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, tracked)
        modules = [store.create_module(T.LOCAL_PROJECT_ANALYSIS) for _ in range(5)]

        run(ExecutionEngine(store, max_concurrency=2).execute_flow())

        assert peak == 2
        assert all(_status(store, m) == ModuleStatus.DONE for m in modules)

    def test_providers_reach_context(self, store):
        seen = {}

        async def uses_provider(inputs, config, context):
            seen["provider"] = context.get_provider()
            context.log("hello")
            return ModuleResult(outputs={"out-1": {"x": 1}})

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, uses_provider)
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        provider = object()

        run(ExecutionEngine(store, providers={"mock": provider}, default_provider="mock").execute_flow())

        assert seen["provider"] is provider
        assert any(log.message == "hello" for log in store.get_module(a.id).logs)


class TestInterruptedRuns:
    """The engine stays usable after a run is interrupted."""

    def test_module_deleted_before_it_starts(self, store):
        modules = [store.create_module(T.LOCAL_PROJECT_ANALYSIS) for _ in range(2)]
        ran = []

        async def deletes_sibling(inputs, config, context):
            ran.append(context.module_id)
            for module in modules:
                if module.id != context.module_id and module.id in store.space:
                    store.delete_module(module.id)
            return ModuleResult(outputs={"out-1": {"x": 1}})

        store.registry.set_executor(T.LOCAL_PROJECT_ANALYSIS, deletes_sibling)
        engine = ExecutionEngine(store)

        result = run(engine.execute_flow())

        assert result.status == FlowStatus.COMPLETED
        assert len(ran) == 1
        assert list(result.statuses.values()) == [ModuleStatus.DONE]
        assert not engine.is_running

        store.create_module(T.READER_ENGINE)
        assert run(engine.execute_flow()).status == FlowStatus.COMPLETED

    def test_progress_callback_error_frees_engine(self, store):
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        engine = ExecutionEngine(store)

        def fails(progress):
            if progress.message.startswith("Executing"):
                raise RuntimeError("listener went away")

        engine.set_progress_callback(fails)
        with pytest.raises(RuntimeError):
            run(engine.execute_flow())

        assert not engine.is_running
        assert _status(store, a) == ModuleStatus.IDLE
        assert store.space.flow_execution_state["isRunning"] is False

        engine.set_progress_callback(lambda progress: None)
        result = run(engine.execute_flow())
        assert result.status == FlowStatus.COMPLETED
        assert _status(store, a) == ModuleStatus.DONE

    def test_callback_error_at_start(self, store):
        store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        engine = ExecutionEngine(store)

        def fails(progress):
            raise RuntimeError("boom")

        engine.set_progress_callback(fails)
        with pytest.raises(RuntimeError):
            run(engine.execute_flow())

        assert not engine.is_running

    def test_rerun_callback_error_leaves_module_idle(self, store, calls):
        a = store.create_module(T.LOCAL_PROJECT_ANALYSIS)
        engine = ExecutionEngine(store)
        run(engine.execute_flow())

        def fails(progress):
            raise RuntimeError("boom")

        engine.set_progress_callback(fails)
        with pytest.raises(RuntimeError):
            run(engine.rerun_module(a.id))

        assert not engine.is_running
        assert _status(store, a) == ModuleStatus.IDLE
