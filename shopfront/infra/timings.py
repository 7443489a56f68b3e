# shopfront/infra/timings.py
from __future__ import annotations
import json
import os
import socket
import time
from typing import Dict, List, Optional
import statistics

import httpx
import structlog

logger = structlog.get_logger(__name__)

# ------------ hot path: append only ------------
# one list per kind; no locks, single-threaded event loop
_TIMINGS: Dict[str, List[float]] = {}
_ERRORS: Dict[str, int] = {}


def now_ts() -> float:
    # monotonic for durations
    return time.perf_counter()


def record_timing(kind: str, value: float) -> None:
    lst = _TIMINGS.get(kind)
    if lst is None:
        lst = []
        _TIMINGS[kind] = lst
    lst.append(float(value))


def record_error(kind: str) -> None:
    _ERRORS[kind] = _ERRORS.get(kind, 0) + 1


class timeit:
    """async usage:
        async with timeit("ledger.create_order"):
            await fn()

    Failed calls are timed too, and counted per kind.
    """
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = now_ts()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        record_timing(self._kind, now_ts() - self._t0)
        if exc_type is not None:
            record_error(self._kind)


# ------------ stats only when asked ------------

def _mean_std(values: list[float]) -> tuple[float, float]:
    if not values:
        return 0.0, 0.0
    return (
        statistics.mean(values),
        statistics.stdev(values) if len(values) > 1 else 0.0
    )


def aggregates() -> List[Dict[str, float]]:
    out = []
    for kind in sorted(set(_TIMINGS) | set(_ERRORS)):
        vals = _TIMINGS.get(kind, [])
        mean, std = _mean_std(vals)
        out.append({
            "kind": kind,
            "n": len(vals),
            "errors": _ERRORS.get(kind, 0),
            "mean": mean,
            "std": std,
            "max": max(vals) if vals else 0.0,
        })
    return out


def reset() -> None:
    _TIMINGS.clear()
    _ERRORS.clear()


async def flush_timings(metrics_url: Optional[str] = None,
                        timeout: float = 10.0) -> int:
    """
    Log the aggregates and, when `metrics_url` is set, POST them there as
    NDJSON (one line per kind). Returns the number of kinds flushed.
    """
    rows = aggregates()
    if not rows:
        return 0
    for row in rows:
        logger.info("timing", **row)

    if metrics_url:
        body = "".join(
            json.dumps(r, separators=(",", ":")) + "\n" for r in rows
        ).encode("utf-8")
        headers = {
            "content-type": "application/x-ndjson",
            "x-worker-id": f"{os.getpid()}@{socket.gethostname()}",
        }
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                r = await client.post(metrics_url, content=body,
                                      headers=headers)
                r.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("timings flush failed", url=metrics_url,
                           error=str(e))
            return 0
    reset()
    return len(rows)
