"""
Batch and slot metrics for the variation service.

One record per concern of a variation batch:
  - batches: started, handed off to rendering, failed per stage
  - slots: queued for rendering, completed, failed
  - stages: duration samples for preparation / upload / analysis / concepts
  - levels: point-in-time sizes (registry, render queues)
  - recent failures for debugging

Process-local and ephemeral; /metrics serves get_snapshot().
"""

import time
import threading
from collections import Counter, deque
from typing import Deque, Dict

MAX_STAGE_SAMPLES = 100
MAX_FAILURES = 50

_lock = threading.Lock()
_started_at = time.time()

_batches: Counter = Counter()
_failed_by_stage: Counter = Counter()
_slots: Counter = Counter()
_stage_ms: Dict[str, Deque[float]] = {}
_levels: Dict[str, int] = {}
_failures: Deque[dict] = deque(maxlen=MAX_FAILURES)


# ── Batches ───────────────────────────────────────────────────────────────────

def batch_started():
    with _lock:
        _batches["started"] += 1


def batch_handed_off(task_count: int):
    """A batch reached the renderer with `task_count` slots."""
    with _lock:
        _batches["handed_off"] += 1
        _slots["queued"] += task_count


def batch_failed(timestamp: int, stage: str, error: BaseException):
    with _lock:
        _failed_by_stage[stage] += 1
        _failures.append(_failure(timestamp, stage, error))


def publish_failed(timestamp: int, error: BaseException):
    # Render tasks still live in-process; only the Redis copy is missing
    with _lock:
        _failures.append(_failure(timestamp, "publish", error))


def _failure(timestamp: int, stage: str, error: BaseException) -> dict:
    return {
        "at": time.time(),
        "batch": timestamp,
        "stage": stage,
        "error_type": type(error).__name__,
        "message": str(error)[:300],
    }


# ── Stages and slots ──────────────────────────────────────────────────────────

def stage_finished(stage: str, duration_ms: float):
    with _lock:
        samples = _stage_ms.get(stage)
        if samples is None:
            samples = _stage_ms[stage] = deque(maxlen=MAX_STAGE_SAMPLES)
        samples.append(duration_ms)


def slot_reported(succeeded: bool):
    with _lock:
        _slots["completed" if succeeded else "failed"] += 1


def set_level(name: str, value: int):
    with _lock:
        _levels[name] = value


# ── Snapshot ──────────────────────────────────────────────────────────────────

def _summarize(samples: Deque[float]) -> dict:
    ordered = sorted(samples)
    n = len(ordered)
    return {
        "p50": ordered[n // 2],
        "p95": ordered[int(n * 0.95)] if n >= 20 else ordered[-1],
        "avg": sum(ordered) / n,
        "count": n,
    }


def get_snapshot() -> dict:
    with _lock:
        return {
            "uptime_s": round(time.time() - _started_at, 1),
            "batches": {
                "started": _batches["started"],
                "handed_off": _batches["handed_off"],
                "failed": dict(_failed_by_stage),
            },
            "slots": {
                "queued": _slots["queued"],
                "completed": _slots["completed"],
                "failed": _slots["failed"],
            },
            "stages": {stage: _summarize(s) for stage, s in _stage_ms.items() if s},
            "levels": dict(_levels),
            "recent_failures": list(_failures)[-10:],
        }


def reset():
    """Clear everything. Used by tests."""
    with _lock:
        _batches.clear()
        _failed_by_stage.clear()
        _slots.clear()
        _stage_ms.clear()
        _levels.clear()
        _failures.clear()
