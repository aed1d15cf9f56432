"""REST API for pool provisioning and runtime management.

Pool operations are awaited through phpfpm.bridge; runtime installs run as
background tasks whose progress is streamed over /api/v1/events.
"""

import asyncio
import json
import logging
import threading
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from phpfpm import get_pool_manager, get_runtime_service
from phpfpm.bridge import (
    async_create_pool,
    async_delete_pool,
    async_get_pool,
    async_install_runtime,
    async_list_available,
    async_list_installed,
    async_list_pools,
    async_list_registered,
    async_providers,
    async_reconfigure_pool,
    async_set_pool_status,
    shutdown as bridge_shutdown,
)
from phpfpm.errors import (
    FPMError,
    InstallError,
    InvalidProviderError,
    InvalidSettingsError,
    InvalidVersionError,
    PoolAlreadyExistsError,
    PoolIOError,
    PoolNotFoundError,
    ProviderNotImplementedError,
    RegistryError,
    ReloadError,
    UnknownProviderError,
    UnknownUserError,
)
from phpfpm.interface import PoolRecord
from phpfpm.pools import DEFAULT_VERSION, PoolManager
from phpfpm.runtimes import RuntimeService
from phpfpm.tasks import Task, TaskManager, get_task_manager

logger = logging.getLogger("server.app")


# ─────────────────────────────────────────────────────────────────
# Application Lifespan
# ─────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("API server starting up")
    get_task_manager().on_task_update(broadcast_task_event)
    shutdown_event = get_shutdown_event()

    try:
        yield
    except asyncio.CancelledError:
        logger.debug("Lifespan cancelled (shutdown signal)")
    finally:
        shutdown_event.set()
        # Give SSE generators a moment to clean up
        await asyncio.sleep(0.1)
        get_task_manager().remove_callback(broadcast_task_event)
        bridge_shutdown()
        logger.info("API server shutdown complete")


app = FastAPI(title="Lightweight PHP", lifespan=lifespan)


_shutdown_event: asyncio.Event | None = None


def get_shutdown_event() -> asyncio.Event:
    """Get or create the event that tells SSE generators to stop."""
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


# ─────────────────────────────────────────────────────────────────
# Error mapping
# ─────────────────────────────────────────────────────────────────

ERROR_STATUS: dict[type[FPMError], int] = {
    UnknownUserError: 400,
    InvalidProviderError: 400,
    UnknownProviderError: 400,
    InvalidVersionError: 400,
    InvalidSettingsError: 400,
    PoolNotFoundError: 404,
    PoolAlreadyExistsError: 409,
    ProviderNotImplementedError: 501,
    PoolIOError: 500,
    RegistryError: 500,
    InstallError: 500,
}


def status_for(exc: FPMError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


@app.exception_handler(FPMError)
async def fpm_error_handler(request: Request, exc: FPMError):
    status = status_for(exc)
    if status >= 500:
        logger.error(f"API: {request.method} {request.url.path} failed: {exc}")
    else:
        logger.debug(f"API: {request.method} {request.url.path} rejected ({status}): {exc}")
    return JSONResponse({"error": str(exc)}, status_code=status)


# ─────────────────────────────────────────────────────────────────
# Operation Event Broadcasting
# ─────────────────────────────────────────────────────────────────

_operation_events: deque = deque(maxlen=100)
_event_counter = 0
# Broadcasts arrive from install worker threads as well as the event loop
_events_lock = threading.Lock()


def broadcast_operation(
    operation: str,
    status: str,
    provider: str | None = None,
    subject: str | None = None,
    message: str = "",
    error: str | None = None,
):
    """Queue an operation event for all SSE clients."""
    global _event_counter
    with _events_lock:
        _event_counter += 1
        event = {
            "type": "operation",
            "id": _event_counter,
            "operation": operation,
            "status": status,
            "provider": provider,
            "subject": subject,
            "message": message,
            "error": error,
            "timestamp": time.time(),
        }
        _operation_events.append(event)
    logger.debug(f"SSE broadcast: {operation} {status} - {message or error or ''}")


def events_since(last_id: int) -> list[dict]:
    """Buffered events newer than `last_id`, oldest first."""
    with _events_lock:
        return [e for e in _operation_events if e["id"] > last_id]


def broadcast_task_event(task: Task):
    broadcast_operation(
        operation=f"task:{task.operation}",
        status=task.status.value,
        provider=task.provider,
        subject=task.params.get("version"),
        message=task.message,
        error=task.error,
    )


# ─────────────────────────────────────────────────────────────────
# Request/Response Models
# ─────────────────────────────────────────────────────────────────

class CreatePoolRequest(BaseModel):
    username: str = Field(min_length=1)
    php_version: str = DEFAULT_VERSION
    provider: str | None = None  # server's default provider
    settings: dict[str, Any] | None = None


class PoolStatusRequest(BaseModel):
    status: str


class PoolResponse(BaseModel):
    username: str
    php_version: str
    provider: str
    socket_path: str
    config_path: str
    status: str
    settings: dict[str, Any]
    created_at: datetime | None = None
    updated_at: datetime | None = None
    warning: str | None = None

    @classmethod
    def from_record(cls, pool: PoolRecord, warning: str | None = None) -> "PoolResponse":
        return cls(
            username=pool.username,
            php_version=pool.php_version,
            provider=pool.provider,
            socket_path=pool.socket_path,
            config_path=pool.config_path,
            status=pool.status.value,
            settings=pool.settings,
            created_at=pool.created_at,
            updated_at=pool.updated_at,
            warning=warning,
        )


class ActionResponse(BaseModel):
    success: bool
    message: str
    warning: str | None = None


class TaskResponse(BaseModel):
    id: str
    operation: str
    provider: str
    status: str
    message: str
    error: str | None = None
    submitted_at: float
    started_at: float | None = None
    completed_at: float | None = None

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            operation=task.operation,
            provider=task.provider,
            status=task.status.value,
            message=task.message,
            error=task.error,
            submitted_at=task.submitted_at,
            started_at=task.started_at,
            completed_at=task.completed_at,
        )


# ─────────────────────────────────────────────────────────────────
# Health
# ─────────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {"status": "ok"}


# ─────────────────────────────────────────────────────────────────
# Pools
# ─────────────────────────────────────────────────────────────────

@app.get("/api/v1/pools")
async def api_list_pools(pools: PoolManager = Depends(get_pool_manager)) -> list[PoolResponse]:
    return [PoolResponse.from_record(p) for p in await async_list_pools(pools)]


@app.post("/api/v1/pools", status_code=201)
async def api_create_pool(
    req: CreatePoolRequest,
    pools: PoolManager = Depends(get_pool_manager),
) -> PoolResponse:
    logger.info(f"API: POST /api/v1/pools (user={req.username}, php={req.php_version}, provider={req.provider})")
    try:
        pool = await async_create_pool(pools, req.username, req.php_version, req.provider, req.settings)
    except ReloadError as e:
        broadcast_operation("pool:create", "completed", e.pool.provider, req.username, error=str(e))
        return PoolResponse.from_record(e.pool, warning=str(e))
    broadcast_operation("pool:create", "completed", pool.provider, req.username, "Pool created")
    return PoolResponse.from_record(pool)


@app.get("/api/v1/pools/{username}")
async def api_get_pool(username: str, pools: PoolManager = Depends(get_pool_manager)) -> PoolResponse:
    pool = await async_get_pool(pools, username)
    if pool is None:
        raise PoolNotFoundError(f"Pool for user {username} not found")
    return PoolResponse.from_record(pool)


@app.delete("/api/v1/pools/{username}")
async def api_delete_pool(username: str, pools: PoolManager = Depends(get_pool_manager)) -> ActionResponse:
    logger.info(f"API: DELETE /api/v1/pools/{username}")
    warning = None
    try:
        await async_delete_pool(pools, username)
    except ReloadError as e:
        warning = str(e)
    broadcast_operation("pool:delete", "completed", subject=username, error=warning)
    return ActionResponse(success=True, message=f"Pool for user {username} deleted", warning=warning)


@app.api_route("/api/v1/pools/{username}/config", methods=["PUT", "PATCH"])
async def api_reconfigure_pool(
    username: str,
    overrides: dict[str, Any],
    pools: PoolManager = Depends(get_pool_manager),
) -> PoolResponse:
    logger.info(f"API: reconfigure {username}: {sorted(overrides)}")
    try:
        pool = await async_reconfigure_pool(pools, username, overrides)
    except ReloadError as e:
        broadcast_operation("pool:reconfigure", "completed", subject=username, error=str(e))
        return PoolResponse.from_record(e.pool, warning=str(e))
    broadcast_operation("pool:reconfigure", "completed", subject=username, message="Pool reconfigured")
    return PoolResponse.from_record(pool)


@app.put("/api/v1/pools/{username}/status")
async def api_set_pool_status(
    username: str,
    req: PoolStatusRequest,
    pools: PoolManager = Depends(get_pool_manager),
) -> PoolResponse:
    logger.info(f"API: PUT /api/v1/pools/{username}/status ({req.status})")
    pool = await async_set_pool_status(pools, username, req.status)
    broadcast_operation("pool:status", "completed", pool.provider, username, f"Pool {pool.status.value}")
    return PoolResponse.from_record(pool)


# ─────────────────────────────────────────────────────────────────
# PHP runtimes
# ─────────────────────────────────────────────────────────────────

async def _submit_install(
    runtimes: RuntimeService,
    tasks: TaskManager,
    version: str,
    provider: str | None,
):
    task = await async_install_runtime(runtimes, version, provider, task_manager=tasks)
    return JSONResponse(TaskResponse.from_task(task).model_dump(), status_code=202)


@app.post("/api/v1/php/install/{version}")
async def api_install_php(
    version: str,
    provider: str | None = None,
    runtimes: RuntimeService = Depends(get_runtime_service),
    tasks: TaskManager = Depends(get_task_manager),
):
    logger.info(f"API: install PHP {version} (provider={provider or 'default'})")
    return await _submit_install(runtimes, tasks, version, provider)


@app.get("/api/v1/php/versions")
async def api_php_versions(runtimes: RuntimeService = Depends(get_runtime_service)):
    versions = await async_list_registered(runtimes)
    return {
        "versions": [
            {**asdict(v), "status": v.status.value, "installed_at": v.installed_at.isoformat() if v.installed_at else None}
            for v in versions
        ]
    }


@app.get("/api/v1/php/available")
async def api_php_available(runtimes: RuntimeService = Depends(get_runtime_service)):
    return {"versions": await async_list_available(runtimes)}


# ─────────────────────────────────────────────────────────────────
# Providers
# ─────────────────────────────────────────────────────────────────

@app.get("/api/v1/providers")
async def api_providers(runtimes: RuntimeService = Depends(get_runtime_service)):
    return {"providers": [asdict(p) for p in await async_providers(runtimes)]}


@app.post("/api/v1/providers/{provider}/install/{version}")
async def api_provider_install(
    provider: str,
    version: str,
    runtimes: RuntimeService = Depends(get_runtime_service),
    tasks: TaskManager = Depends(get_task_manager),
):
    logger.info(f"API: install PHP {version} via {provider}")
    return await _submit_install(runtimes, tasks, version, provider)


@app.get("/api/v1/providers/{provider}/versions")
async def api_provider_versions(provider: str, runtimes: RuntimeService = Depends(get_runtime_service)):
    return {"provider": provider, "versions": await async_list_installed(runtimes, provider)}


@app.get("/api/v1/providers/{provider}/available")
async def api_provider_available(provider: str, runtimes: RuntimeService = Depends(get_runtime_service)):
    return {"provider": provider, "versions": await async_list_available(runtimes, provider)}


# ─────────────────────────────────────────────────────────────────
# Tasks and events
# ─────────────────────────────────────────────────────────────────

@app.get("/api/v1/tasks/{task_id}")
def api_get_task(task_id: str, tasks: TaskManager = Depends(get_task_manager)):
    task = tasks.get_task(task_id)
    if not task:
        return JSONResponse({"error": f"Task not found: {task_id}"}, status_code=404)
    return TaskResponse.from_task(task)


@app.get("/api/v1/events")
async def api_events(request: Request):
    """Server-Sent Events stream of task and pool operation events."""
    logger.debug("API: SSE client connected to /api/v1/events")
    shutdown_event = get_shutdown_event()

    async def event_generator():
        last_event_id = 0
        while not shutdown_event.is_set():
            if await request.is_disconnected():
                logger.debug("SSE: Client disconnected")
                break

            for event in events_since(last_event_id):
                last_event_id = event["id"]
                yield {"data": json.dumps(event)}

            await asyncio.sleep(0.1)
        logger.debug("SSE: Generator exiting")

    return EventSourceResponse(event_generator())
