"""
Generation registry: what each slot still needs rendered.

The registry is a key/value store over immutable snapshots. Writes never
mutate the current mapping; they build a new one and swap it in, so a
snapshot handed to a reader stays consistent.

Keys follow the id formats of the pipeline:
  variation-<ts>-<index>        image slot
  sora-video-<ts>-<index>       video slot
  variation-<ts>-<stageName>    shared stage task (upload, analyze, storyline, process)
"""

import logging
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .errors import RegistryError
from .models import GenerationTask, TaskStatus
from .placeholders import batch_timestamp

logger = logging.getLogger(__name__)


class GenerationRegistry:
    def __init__(self):
        self._entries: Mapping[str, GenerationTask] = MappingProxyType({})
        # Highest status reached per live batch timestamp
        self._watermarks: dict[int, TaskStatus] = {}

    # ── Reads ────────────────────────────────────────────────────────────

    def snapshot(self) -> Mapping[str, GenerationTask]:
        return self._entries

    def get(self, key: str) -> Optional[GenerationTask]:
        return self._entries.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def batch_entries(self, timestamp: int) -> dict[str, GenerationTask]:
        return {k: v for k, v in self._entries.items() if batch_timestamp(k) == timestamp}

    def status_of(self, timestamp: int) -> Optional[TaskStatus]:
        return self._watermarks.get(timestamp)

    # ── Writes ───────────────────────────────────────────────────────────

    def _check_batch(self, entries: dict[str, GenerationTask]) -> Optional[int]:
        stamps = {batch_timestamp(key) for key in entries}
        if None in stamps:
            raise RegistryError(f"Registry keys must embed a batch timestamp: {list(entries)}")
        if len(stamps) > 1:
            raise RegistryError(f"Entries span several batches: {sorted(stamps)}")
        return stamps.pop() if stamps else None

    def _check_status(self, timestamp: int, entries: Iterable[GenerationTask]) -> Optional[TaskStatus]:
        highest = None
        for task in entries:
            if highest is None or task.status.rank > highest.rank:
                highest = task.status
            current = self._watermarks.get(timestamp)
            if current is not None and task.status.rank < current.rank:
                raise RegistryError(
                    f"Status regression for batch {timestamp}: {current.value} -> {task.status.value}"
                )
        return highest

    def _swap(self, entries: dict[str, GenerationTask]) -> None:
        self._entries = MappingProxyType(entries)

    def insert_many(self, entries: Iterable[GenerationTask]) -> None:
        """Atomically insert the entries of a single batch."""
        new = {task.slot_id: task for task in entries}
        if not new:
            return
        timestamp = self._check_batch(new)
        highest = self._check_status(timestamp, new.values())

        merged = dict(self._entries)
        merged.update(new)
        self._swap(merged)
        self._watermarks[timestamp] = highest

    def transition(
        self,
        timestamp: int,
        remove: Iterable[str] = (),
        add: Iterable[GenerationTask] = (),
    ) -> None:
        """Stage boundary: remove and add entries of one batch in a single swap."""
        new = {task.slot_id: task for task in add}
        if new:
            if self._check_batch(new) != timestamp:
                raise RegistryError(f"Transition entries do not belong to batch {timestamp}")
            highest = self._check_status(timestamp, new.values())
        else:
            highest = None

        merged = dict(self._entries)
        for key in remove:
            merged.pop(key, None)
        merged.update(new)
        self._swap(merged)
        if highest is not None:
            self._watermarks[timestamp] = highest

    def _release(self, timestamp: Optional[int]) -> None:
        # A batch that reached GENERATING has no further stage writes
        if timestamp is None or self._watermarks.get(timestamp) != TaskStatus.GENERATING:
            return
        if not any(batch_timestamp(k) == timestamp for k in self._entries):
            del self._watermarks[timestamp]

    def delete(self, key: str) -> bool:
        if key not in self._entries:
            return False
        remaining = dict(self._entries)
        remaining.pop(key)
        self._swap(remaining)
        self._release(batch_timestamp(key))
        return True

    def delete_batch(self, timestamp: int) -> int:
        """Drop every entry of the batch and forget its status. Returns the number removed."""
        remaining = {k: v for k, v in self._entries.items() if batch_timestamp(k) != timestamp}
        removed = len(self._entries) - len(remaining)
        if removed:
            self._swap(remaining)
            logger.info(f"Registry: dropped {removed} entries for batch {timestamp}")
        self._watermarks.pop(timestamp, None)
        return removed
