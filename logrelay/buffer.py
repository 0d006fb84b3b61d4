"""
Thread-safe record buffer with size-threshold batching.
"""

import logging
import threading
from collections import deque

from .records import Batch, LogLevel, LogRecord

logger = logging.getLogger(__name__)


class BatchBuffer:
    """Accumulates records until a flush drains them.

    Records below min_level are dropped before they are counted. When an
    append brings the buffer to batch_size, the full batch is sealed and
    the buffer restarts empty; sealed batches wait for the next flush.
    max_size bounds buffered plus sealed records, and records arriving
    past it are dropped.
    """

    def __init__(self, batch_size: int, min_level: LogLevel = LogLevel.INFO, max_size: int = 10_000):
        self.batch_size = batch_size
        self.min_level = min_level
        self.max_size = max_size

        self._records: list[LogRecord] = []
        self._sealed: deque[Batch] = deque()
        self._sealed_count = 0
        self._lock = threading.Lock()
        self._dropped_count = 0
        self._filtered_count = 0

    def accepts(self, record: LogRecord) -> bool:
        return record.level >= self.min_level

    def append(self, record: LogRecord) -> bool:
        """Add a record. Returns True when a full batch was sealed."""
        if not self.accepts(record):
            with self._lock:
                self._filtered_count += 1
            return False

        with self._lock:
            if len(self._records) + self._sealed_count >= self.max_size:
                self._dropped_count += 1
                if self._dropped_count == 1 or self._dropped_count % 1000 == 0:
                    logger.warning(f"Buffer full ({self.max_size} records), dropped {self._dropped_count} so far")
                return False

            self._records.append(record)
            if len(self._records) < self.batch_size:
                return False

            batch = self._swap()
            self._sealed.append(batch)
            self._sealed_count += len(batch)
            return True

    def drain(self) -> Batch:
        """Atomically take the records not yet sealed into a batch."""
        with self._lock:
            return self._swap()

    def drain_sealed(self) -> list[Batch]:
        """Atomically take every sealed batch, leaving the open buffer alone."""
        with self._lock:
            return self._take_sealed()

    def drain_batches(self) -> list[Batch]:
        """Atomically take every sealed batch, then the unsealed remainder."""
        with self._lock:
            batches = self._take_sealed()
            if self._records:
                batches.append(self._swap())
            return batches

    def _take_sealed(self) -> list[Batch]:
        batches = list(self._sealed)
        self._sealed.clear()
        self._sealed_count = 0
        return batches

    def _swap(self) -> Batch:
        records, self._records = self._records, []
        return Batch(tuple(records))

    def clear(self) -> int:
        """Discard all pending records, returning how many were discarded."""
        with self._lock:
            count = len(self._records) + self._sealed_count
            self._records = []
            self._sealed.clear()
            self._sealed_count = 0
            return count

    def size(self) -> int:
        """Records in the open (unsealed) batch."""
        with self._lock:
            return len(self._records)

    def has_sealed(self) -> bool:
        with self._lock:
            return bool(self._sealed)

    def pending_count(self) -> int:
        """Every record still waiting for delivery, sealed or not."""
        with self._lock:
            return len(self._records) + self._sealed_count

    @property
    def dropped_count(self) -> int:
        with self._lock:
            return self._dropped_count

    @property
    def filtered_count(self) -> int:
        with self._lock:
            return self._filtered_count

    def __len__(self) -> int:
        return self.size()
