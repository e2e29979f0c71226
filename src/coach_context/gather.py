"""Fan-out/fan-in for auxiliary fetches with a per-task fallback.

Every fetch runs concurrently inside one TaskGroup. A fetch that raises or
exceeds its timeout resolves to its declared default instead of failing the
batch, so a partial context is a normal outcome. Cancellation of the caller
still propagates: CancelledError is never converted into a default.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .metrics import record_source_fetch

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class FallbackTask:
    """A zero-argument coroutine factory plus the value used when it fails."""

    factory: Callable[[], Awaitable[Any]]
    default: Any = None


async def _run_with_fallback(name: str, task: FallbackTask, timeout: float | None) -> Any:
    started = time.perf_counter()
    try:
        async with asyncio.timeout(timeout):
            result = await task.factory()
    except TimeoutError:
        duration_ms = (time.perf_counter() - started) * 1000
        record_source_fetch(name, duration_ms, "timeout")
        logger.warning(
            "Source %s timed out after %.1fs, using default",
            name,
            timeout,
            extra={"ctx_source": name, "ctx_duration_ms": round(duration_ms, 1)},
        )
        return task.default
    except Exception as exc:
        duration_ms = (time.perf_counter() - started) * 1000
        record_source_fetch(name, duration_ms, "failed")
        logger.warning(
            "Source %s failed, using default: %s",
            name,
            exc,
            extra={"ctx_source": name, "ctx_duration_ms": round(duration_ms, 1)},
        )
        return task.default

    record_source_fetch(name, (time.perf_counter() - started) * 1000, "ok")
    return result


async def gather_with_fallback(
    tasks: Mapping[str, FallbackTask],
    *,
    timeout: float | None = DEFAULT_FETCH_TIMEOUT_SECONDS,
) -> dict[str, Any]:
    """Run all tasks concurrently; return ``{name: result_or_default}``."""
    if not tasks:
        return {}

    async with asyncio.TaskGroup() as tg:
        running = {
            name: tg.create_task(_run_with_fallback(name, task, timeout))
            for name, task in tasks.items()
        }

    return {name: handle.result() for name, handle in running.items()}
