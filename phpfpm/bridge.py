"""Async bridge for consuming the sync pool manager from async contexts.

Pool mutations and queries run in a ThreadPoolExecutor and are awaited; they
are never cancelled mid-flight. Runtime installs are queued on the
TaskManager and return a Task immediately.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, ParamSpec, TypeVar

from .interface import PoolRecord, RuntimeVersion
from .runtimes import ProviderInfo, RuntimeService
from .pools import PoolManager
from .tasks import Task, TaskManager, get_task_manager

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="bridge-")


async def run_sync(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a synchronous function in the thread pool."""
    logger.debug(f"Bridge: run_sync({func.__name__}) called")
    loop = asyncio.get_running_loop()
    # shield: a disconnected client must not abandon a half-done mutation
    result = await asyncio.shield(loop.run_in_executor(_executor, lambda: func(*args, **kwargs)))
    logger.debug(f"Bridge: run_sync({func.__name__}) completed")
    return result


# ─────────────────────────────────────────────────────────────────
# Pool operations (run in executor, await result)
# ─────────────────────────────────────────────────────────────────

async def async_create_pool(
    pools: PoolManager,
    username: str,
    version: str,
    provider: str | None = None,
    settings: dict | None = None,
) -> PoolRecord:
    logger.info(f"Bridge: Creating pool for {username}")
    return await run_sync(pools.create_pool, username, version, provider, settings)


async def async_delete_pool(pools: PoolManager, username: str):
    logger.info(f"Bridge: Deleting pool for {username}")
    return await run_sync(pools.delete_pool, username)


async def async_reconfigure_pool(pools: PoolManager, username: str, overrides: dict) -> PoolRecord:
    logger.info(f"Bridge: Reconfiguring pool for {username}")
    return await run_sync(pools.reconfigure_pool, username, overrides)


async def async_set_pool_status(pools: PoolManager, username: str, status: str) -> PoolRecord:
    logger.info(f"Bridge: Setting pool for {username} {status}")
    return await run_sync(pools.set_pool_status, username, status)


async def async_list_pools(pools: PoolManager) -> list[PoolRecord]:
    return await run_sync(pools.list_pools)


async def async_get_pool(pools: PoolManager, username: str) -> PoolRecord | None:
    return await run_sync(pools.get_pool, username)


# ─────────────────────────────────────────────────────────────────
# Runtime queries
# ─────────────────────────────────────────────────────────────────

async def async_list_installed(runtimes: RuntimeService, provider: str | None = None) -> list[str]:
    return await run_sync(runtimes.list_installed, provider)


async def async_list_available(runtimes: RuntimeService, provider: str | None = None) -> list[str]:
    return await run_sync(runtimes.list_available, provider)


async def async_list_registered(runtimes: RuntimeService) -> list[RuntimeVersion]:
    return await run_sync(runtimes.list_registered)


async def async_providers(runtimes: RuntimeService) -> list[ProviderInfo]:
    return await run_sync(runtimes.providers)


# ─────────────────────────────────────────────────────────────────
# Long operations (submit to TaskManager, return Task immediately)
# ─────────────────────────────────────────────────────────────────

async def async_install_runtime(
    runtimes: RuntimeService,
    version: str,
    provider: str | None = None,
    task_manager: TaskManager | None = None,
) -> Task:
    """Validate an install request, then run it in the background.

    Raises UnknownProviderError, InvalidVersionError or
    ProviderNotImplementedError before anything is submitted.
    """
    impl = await run_sync(runtimes.prepare_install, version, provider)
    task_manager = task_manager or get_task_manager()
    params = {"version": version, "provider": impl.name}

    logger.info(f"Bridge: Submitting install_runtime task for PHP {version} via {impl.name}")
    return task_manager.submit(
        operation="install_runtime",
        provider=impl.name,
        func=runtimes.install_task,
        params=params,
    )


def shutdown():
    """Shut down the task manager and bridge executor without waiting."""
    logger.info("Bridge: Shutting down")
    get_task_manager().shutdown(wait=False, cancel_futures=True)
    _executor.shutdown(wait=False, cancel_futures=True)
    logger.info("Bridge: Shutdown complete")
