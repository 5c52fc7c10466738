"""
HTTP API - Thin aiohttp translation layer over the store and engine.

Each space that is touched is kept in memory as a (store, engine) pair;
``PUT /api/spaces/{id}`` hands its snapshot to storage.

Error mapping:
    validation failures, bad requests  -> 400
    unknown space/module/connection     -> 404
    a flow run already active           -> 409
    anything else                       -> 500
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from aiohttp import web

from marketing_spaces.config import SpacesConfig
from marketing_spaces.core.errors import (
    ConnectionRejectedError,
    DuplicateConnectionError,
    FlowAlreadyRunningError,
    InvalidModuleUpdateError,
    NotFoundError,
)
from marketing_spaces.core.execution import ExecutionEngine
from marketing_spaces.core.graph import Space
from marketing_spaces.core.module_types import ModuleRegistry
from marketing_spaces.core.storage import JsonSpaceStorage, SpaceStorage
from marketing_spaces.core.store import GraphStore
from marketing_spaces.modules import default_registry
from marketing_spaces.providers import create_registry


logger = logging.getLogger(__name__)


@dataclass
class SpaceSession:
    store: GraphStore
    engine: ExecutionEngine


class SpaceSessions:
    """In-memory sessions keyed by space id, backed by storage."""

    def __init__(
        self,
        config: SpacesConfig,
        registry: ModuleRegistry | None = None,
        storage: SpaceStorage | None = None,
        providers: dict[str, Any] | None = None,
    ):
        self.config = config
        self.registry = registry or default_registry()
        self.storage = storage or JsonSpaceStorage(config.storage_dir)
        if providers is None:
            providers = create_registry(config.providers).instances()
        self.providers = providers
        self._sessions: dict[str, SpaceSession] = {}

    def _open(self, store: GraphStore) -> SpaceSession:
        engine = ExecutionEngine(
            store,
            providers=self.providers,
            default_provider=self.config.inference_provider,
            max_concurrency=self.config.max_concurrency,
        )
        session = SpaceSession(store=store, engine=engine)
        self._sessions[store.space.id] = session
        return session

    def _new_store(self, space: Space | None = None) -> GraphStore:
        return GraphStore(
            self.registry,
            space=space,
            storage=self.storage,
            duplicate_offset=self.config.duplicate_offset,
        )

    def create(self, name: str) -> SpaceSession:
        return self._open(self._new_store(Space(name=name)))

    def get(self, space_id: str) -> SpaceSession:
        """Get an open session, loading the space from storage if needed."""
        session = self._sessions.get(space_id)
        if session is None:
            store = self._new_store()
            store.load_space(space_id)
            session = self._open(store)
        return session

    def list(self) -> list[dict[str, Any]]:
        summaries = {s["id"]: s for s in self.storage.get_all_spaces()}
        for space_id, session in self._sessions.items():
            space = session.store.space
            summaries[space_id] = {
                "id": space.id,
                "name": space.name,
                "updatedAt": space.updated_at.isoformat(),
                "moduleCount": len(space),
            }
        return sorted(summaries.values(), key=lambda s: s.get("updatedAt") or "", reverse=True)

    def delete(self, space_id: str) -> None:
        session = self._sessions.pop(space_id, None)
        if session is not None:
            session.engine.reset_flow()
        self.storage.delete_space(space_id)


SESSIONS_KEY = web.AppKey("sessions", SpaceSessions)

PATCHABLE_FIELDS = frozenset({"name", "position", "size", "inputs", "status"})

# Status changes from a client are resets; the engine owns every other transition
PATCHABLE_STATUSES = frozenset({"idle"})


def _json_error(status: int, code: str, message: str) -> web.Response:
    return web.json_response({"error": {"type": code, "message": message}}, status=status)


class BadRequest(Exception):
    pass


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ConnectionRejectedError as e:
        return _json_error(400, e.code.value, e.message)
    except (BadRequest, InvalidModuleUpdateError, DuplicateConnectionError, ValueError) as e:
        return _json_error(400, "BAD_REQUEST", str(e))
    except NotFoundError as e:
        return _json_error(404, "NOT_FOUND", str(e))
    except FlowAlreadyRunningError as e:
        return _json_error(409, "FLOW_ALREADY_RUNNING", str(e))
    except Exception as e:
        logger.exception("Unhandled error in %s %s", request.method, request.path)
        return _json_error(500, "INTERNAL_ERROR", str(e) or type(e).__name__)


async def _body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except json.JSONDecodeError as e:
        raise BadRequest(f"Invalid JSON body: {e}") from e
    if not isinstance(data, dict):
        raise BadRequest("JSON body must be an object")
    return data


def _require(data: dict[str, Any], *keys: str) -> list[Any]:
    missing = [k for k in keys if not data.get(k)]
    if missing:
        raise BadRequest(f"Missing fields: {', '.join(missing)}")
    return [data[k] for k in keys]


def _session(request: web.Request) -> SpaceSession:
    return request.app[SESSIONS_KEY].get(request.match_info["space_id"])


def _module_json(store: GraphStore, module_id: str) -> dict[str, Any]:
    return store.get_module(module_id).to_dict(store.space.connected_port_ids(module_id))


# --- Spaces ---

async def list_spaces(request: web.Request) -> web.Response:
    return web.json_response({"spaces": request.app[SESSIONS_KEY].list()})


async def create_space(request: web.Request) -> web.Response:
    data = await _body(request)
    session = request.app[SESSIONS_KEY].create(str(data.get("name") or "Untitled"))
    return web.json_response(session.store.snapshot(), status=201)


async def get_space(request: web.Request) -> web.Response:
    return web.json_response(_session(request).store.snapshot())


async def save_space(request: web.Request) -> web.Response:
    data = await _body(request)
    store = _session(request).store
    if data.get("name"):
        store.rename(str(data["name"]))
    store.save_space()
    return web.json_response(store.snapshot())


async def delete_space(request: web.Request) -> web.Response:
    request.app[SESSIONS_KEY].delete(request.match_info["space_id"])
    return web.Response(status=204)


# --- Modules ---

async def create_module(request: web.Request) -> web.Response:
    data = await _body(request)
    (module_type,) = _require(data, "type")
    store = _session(request).store
    if store.registry.get(module_type) is None:
        raise BadRequest(f"Unknown module type: {module_type}")
    module = store.create_module(module_type, data.get("position"))
    return web.json_response(_module_json(store, module.id), status=201)


async def update_module(request: web.Request) -> web.Response:
    data = await _body(request)
    unknown = set(data) - PATCHABLE_FIELDS
    if unknown:
        raise BadRequest(f"Cannot update fields: {sorted(unknown)}")
    if "status" in data and data["status"] not in PATCHABLE_STATUSES:
        raise BadRequest(f"Cannot set status to {data['status']!r}; only 'idle' is allowed")
    store = _session(request).store
    module_id = request.match_info["module_id"]
    store.update_module(module_id, data)
    return web.json_response(_module_json(store, module_id))


async def delete_module(request: web.Request) -> web.Response:
    _session(request).store.delete_module(request.match_info["module_id"])
    return web.Response(status=204)


async def duplicate_module(request: web.Request) -> web.Response:
    store = _session(request).store
    module = store.duplicate_module(request.match_info["module_id"])
    return web.json_response(_module_json(store, module.id), status=201)


# --- Connections ---

def _connection_args(data: dict[str, Any]) -> list[str]:
    return [str(v) for v in _require(
        data, "sourceModuleId", "sourcePortId", "targetModuleId", "targetPortId",
    )]


async def validate_connection(request: web.Request) -> web.Response:
    data = await _body(request)
    result = _session(request).store.validate_connection(*_connection_args(data))
    return web.json_response(result.to_dict(), status=200 if result.valid else 400)


async def create_connection(request: web.Request) -> web.Response:
    data = await _body(request)
    connection = _session(request).store.connect(*_connection_args(data))
    return web.json_response(connection.to_dict(), status=201)


async def delete_connection(request: web.Request) -> web.Response:
    _session(request).store.delete_connection(request.match_info["connection_id"])
    return web.Response(status=204)


# --- Flow ---

async def execute_flow(request: web.Request) -> web.Response:
    session = _session(request)
    result = await session.engine.execute_flow()
    return web.json_response({"result": result.to_dict(), "space": session.store.snapshot()})


async def pause_flow(request: web.Request) -> web.Response:
    session = _session(request)
    paused = session.engine.pause_flow()
    return web.json_response({"paused": paused, "state": session.engine.state.to_dict()})


async def reset_flow(request: web.Request) -> web.Response:
    session = _session(request)
    session.engine.reset_flow()
    return web.json_response(session.store.snapshot())


def create_app(
    config: SpacesConfig | None = None,
    registry: ModuleRegistry | None = None,
    storage: SpaceStorage | None = None,
    providers: dict[str, Any] | None = None,
) -> web.Application:
    """Build the aiohttp application."""
    config = config or SpacesConfig()
    app = web.Application(middlewares=[error_middleware])
    app[SESSIONS_KEY] = SpaceSessions(config, registry=registry, storage=storage, providers=providers)

    base = "/api/spaces/{space_id}"
    app.router.add_get("/api/spaces", list_spaces)
    app.router.add_post("/api/spaces", create_space)
    app.router.add_get(base, get_space)
    app.router.add_put(base, save_space)
    app.router.add_delete(base, delete_space)

    app.router.add_post(f"{base}/modules", create_module)
    app.router.add_patch(f"{base}/modules/{{module_id}}", update_module)
    app.router.add_delete(f"{base}/modules/{{module_id}}", delete_module)
    app.router.add_post(f"{base}/modules/{{module_id}}/duplicate", duplicate_module)

    app.router.add_post(f"{base}/connections/validate", validate_connection)
    app.router.add_post(f"{base}/connections", create_connection)
    app.router.add_delete(f"{base}/connections/{{connection_id}}", delete_connection)

    app.router.add_post(f"{base}/flow/execute", execute_flow)
    app.router.add_post(f"{base}/flow/pause", pause_flow)
    app.router.add_post(f"{base}/flow/reset", reset_flow)

    return app
