"""In-memory aggregation metrics.

Asyncio is single-threaded, so plain dicts are safe; no locking needed.
"""

import time

_start_time = time.monotonic()

_metrics: dict = {
    "contexts_assembled": 0,
    "assembly_failures": 0,
    "gate_overages": 0,
    "sources": {},
}


def record_source_fetch(source: str, duration_ms: float, outcome: str) -> None:
    """Record one auxiliary fetch; outcome is ok, failed or timeout."""
    s = _metrics["sources"].setdefault(source, {
        "fetches": 0,
        "failures": 0,
        "timeouts": 0,
        "total_duration_ms": 0.0,
    })
    s["fetches"] += 1
    s["total_duration_ms"] += duration_ms
    if outcome == "failed":
        s["failures"] += 1
    elif outcome == "timeout":
        s["timeouts"] += 1


def record_context_assembled() -> None:
    _metrics["contexts_assembled"] += 1


def record_assembly_failure() -> None:
    _metrics["assembly_failures"] += 1


def record_gate_overage() -> None:
    _metrics["gate_overages"] += 1


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    return {
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "contexts_assembled": _metrics["contexts_assembled"],
        "assembly_failures": _metrics["assembly_failures"],
        "gate_overages": _metrics["gate_overages"],
        "sources": {
            name: dict(stats)
            for name, stats in _metrics["sources"].items()
        },
    }
