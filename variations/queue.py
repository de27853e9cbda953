"""
Redis-backed render-task queue for out-of-process renderers.

Reliable-queue pattern:
  1. LPUSH → `rendertasks:pending`                  (publish)
  2. BLMOVE → `rendertasks:processing`              (atomic dequeue + in-flight tracking)
  3. LREM from processing on report                 (ack)
  4. → `rendertasks:failed` on a failed render      (no automatic retry)

Keys:
  rendertasks:pending             pending slot ids (Redis list, FIFO)
  rendertasks:processing          in-flight slot ids (Redis list)
  rendertasks:failed              failed slot ids (Redis list)
  rendertasks:meta:{slot_id}      serialized GenerationTask + status (Redis hash, TTL 2h)
"""

import time
import logging
from typing import Iterable, Optional

from variations.pipeline.models import GenerationTask
from variations.pipeline.placeholders import belongs_to_batch

logger = logging.getLogger(__name__)

PENDING_KEY = "rendertasks:pending"
PROCESSING_KEY = "rendertasks:processing"
FAILED_KEY = "rendertasks:failed"
META_PREFIX = "rendertasks:meta:"
META_TTL = 7200  # 2 hours


def _decode(value):
    return value.decode("utf-8") if isinstance(value, bytes) else value


# ── Publish ───────────────────────────────────────────────────────────────────

def publish_render_tasks(redis_client, tasks: Iterable[GenerationTask]) -> int:
    """
    Publish a batch of render tasks in one transaction.
    Returns the pending queue length afterwards.
    """
    tasks = list(tasks)
    if not tasks:
        return redis_client.llen(PENDING_KEY)

    pipe = redis_client.pipeline(transaction=True)
    now = str(time.time())
    for task in tasks:
        meta_key = f"{META_PREFIX}{task.slot_id}"
        pipe.hset(meta_key, mapping={
            "task": task.model_dump_json(),
            "status": "queued",
            "enqueued_at": now,
        })
        pipe.expire(meta_key, META_TTL)
        pipe.lpush(PENDING_KEY, task.slot_id)
    pipe.execute()

    length = redis_client.llen(PENDING_KEY)
    logger.info(f"Published {len(tasks)} render tasks (pending={length})")
    return length


# ── Reliable dequeue ──────────────────────────────────────────────────────────

def dequeue_render_task(redis_client, timeout: int = 5) -> Optional[GenerationTask]:
    """
    Atomically move the next slot id from pending to processing and return
    its task. None on timeout or when the metadata has already expired.
    """
    result = redis_client.blmove(
        PENDING_KEY, PROCESSING_KEY,
        timeout=timeout,
        src="RIGHT", dest="LEFT",
    )
    if result is None:
        return None

    slot_id = _decode(result)
    meta_key = f"{META_PREFIX}{slot_id}"
    raw = redis_client.hget(meta_key, "task")
    if raw is None:
        redis_client.lrem(PROCESSING_KEY, 1, slot_id)
        logger.warning(f"Dropped render task {slot_id}: metadata expired")
        return None

    redis_client.hset(meta_key, mapping={"status": "processing", "processing_started_at": str(time.time())})
    logger.info(f"Dequeued render task {slot_id} → processing")
    return GenerationTask.model_validate_json(_decode(raw))


# ── Ack / Fail ────────────────────────────────────────────────────────────────

def ack_render_task(redis_client, slot_id: str):
    redis_client.lrem(PROCESSING_KEY, 1, slot_id)
    redis_client.hset(f"{META_PREFIX}{slot_id}", "status", "completed")
    logger.info(f"Acked render task {slot_id}")


def fail_render_task(redis_client, slot_id: str, error_msg: str = ""):
    """Move a task to the failed list. Retry policy belongs to the renderer."""
    meta_key = f"{META_PREFIX}{slot_id}"
    if error_msg:
        redis_client.hset(meta_key, "last_error", error_msg[:500])
    redis_client.lrem(PROCESSING_KEY, 1, slot_id)
    redis_client.lpush(FAILED_KEY, slot_id)
    redis_client.hset(meta_key, "status", "failed")
    logger.warning(f"Render task {slot_id} failed: {error_msg}")


def purge_batch(redis_client, timestamp: int) -> int:
    """Remove every pending task of a batch. Returns the number removed."""
    removed = 0
    for item in redis_client.lrange(PENDING_KEY, 0, -1):
        slot_id = _decode(item)
        if belongs_to_batch(slot_id, timestamp):
            removed += redis_client.lrem(PENDING_KEY, 0, slot_id)
            redis_client.delete(f"{META_PREFIX}{slot_id}")
    if removed:
        logger.info(f"Purged {removed} pending render tasks for batch {timestamp}")
    return removed


# ── Metadata helpers ──────────────────────────────────────────────────────────

def get_task_meta(redis_client, slot_id: str) -> Optional[dict]:
    data = redis_client.hgetall(f"{META_PREFIX}{slot_id}")
    if not data:
        return None
    return {_decode(k): _decode(v) for k, v in data.items()}


def get_queue_length(redis_client) -> int:
    return redis_client.llen(PENDING_KEY)
