from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    """
    Ensure `src/` is on sys.path so tests can import `marketing_spaces`
    without requiring an editable install.
    """
    repo_root = Path(__file__).resolve().parents[1]
    src_root = repo_root / "src"
    sys.path.insert(0, str(src_root))


def _fake_executor(module_type, calls, outputs):
    from marketing_spaces.core.module_types import ModuleResult

    async def executor(inputs, config, context):
        calls.append(module_type)
        await asyncio.sleep(0)
        return ModuleResult(outputs=dict(outputs))

    return executor


@pytest.fixture
def calls() -> list:
    """Module kinds in the order their work functions were called."""
    return []


@pytest.fixture
def registry(calls):
    """
    Small registry with fake work functions.

    local-project-analysis: no inputs; out-1 json, out-2 text
    reader-engine:          in-1 json; out-1 json
    naming-engine:          in-1 json; out-1 text
    icon-generator:         in-1 json|text; out-1 image
    marketing-pack:         in-1 json, in-2 image (optional); out-1 mixed
    """
    from marketing_spaces.core.data_types import DataType
    from marketing_spaces.core.module_types import (
        InputDefinition,
        ModuleDescriptor,
        ModuleRegistry,
        ModuleType,
        OutputDefinition,
    )

    T = ModuleType
    D = DataType
    return ModuleRegistry([
        ModuleDescriptor(
            type=T.LOCAL_PROJECT_ANALYSIS,
            name="Source",
            outputs=[
                OutputDefinition("out-1", "Metadata", D.JSON),
                OutputDefinition("out-2", "Readme", D.TEXT),
            ],
            config_defaults={"localProjectPath": "/tmp/demo"},
            executor=_fake_executor(T.LOCAL_PROJECT_ANALYSIS, calls, {
                "out-1": {"projectName": "demo"},
                "out-2": "# demo",
            }),
        ),
        ModuleDescriptor(
            type=T.READER_ENGINE,
            name="Reader",
            inputs=[InputDefinition("in-1", "Metadata", (D.JSON,))],
            outputs=[OutputDefinition("out-1", "Profile", D.JSON)],
            executor=_fake_executor(T.READER_ENGINE, calls, {"out-1": {"keywords": ["demo"]}}),
        ),
        ModuleDescriptor(
            type=T.NAMING_ENGINE,
            name="Namer",
            inputs=[InputDefinition("in-1", "Profile", (D.JSON,))],
            outputs=[OutputDefinition("out-1", "Names", D.TEXT)],
            executor=_fake_executor(T.NAMING_ENGINE, calls, {"out-1": "Demoly"}),
        ),
        ModuleDescriptor(
            type=T.ICON_GENERATOR,
            name="Icons",
            inputs=[InputDefinition("in-1", "Project", (D.JSON, D.TEXT))],
            outputs=[OutputDefinition("out-1", "Icons", D.IMAGE)],
            executor=_fake_executor(T.ICON_GENERATOR, calls, {"out-1": ["icon"]}),
        ),
        ModuleDescriptor(
            type=T.MARKETING_PACK,
            name="Pack",
            inputs=[
                InputDefinition("in-1", "Project", (D.JSON,)),
                InputDefinition("in-2", "Icons", (D.IMAGE,), required=False),
            ],
            outputs=[OutputDefinition("out-1", "Pack", D.MIXED)],
            executor=_fake_executor(T.MARKETING_PACK, calls, {"out-1": {"copy": "x"}}),
        ),
    ])


@pytest.fixture
def store(registry):
    from marketing_spaces.core.store import GraphStore

    return GraphStore(registry)


@pytest.fixture
def make_done(store):
    """Mark a module done with the given outputs, bypassing execution."""

    def make_done(module, outputs=None):
        if outputs is None:
            outputs = {p.id: f"{p.id}-value" for p in module.output_ports}
        return store.update_module(module.id, status="done", outputs=outputs)

    return make_done
