#!/usr/bin/env python3
"""
Per-source checkpoints and process-wide record counters.

Checkpoints live next to the records they describe
(``comments/<source>/offset.txt`` and ``count.txt``); the three counters live
at the store root. Counters are kept in memory and written out by ``flush()``.

Record writes go through ``persist_record()`` so that ``close()`` can wait for
writes already in progress and refuse new ones; the counters flushed on close
then match the records on disk.
"""

import logging
import threading
import time
from typing import Callable, Dict, Iterator, Optional, Tuple

from errors import LedgerClosedError, PersistenceError
from record_store import FileRecordStore

logger = logging.getLogger(__name__)

COUNTER_FILES = {
    "posts": "PostsCounter.txt",
    "profiles": "ProfilesCounter.txt",
    "comments": "CommentsCounter.txt",
}

COMMENTS_ROOT = "comments"
PROFILES_ROOT = "profiles"
POST_RECORD = "post.json"


def checkpoint_keys(source_id: str) -> Tuple[str, str]:
    return (
        f"{COMMENTS_ROOT}/{source_id}/offset.txt",
        f"{COMMENTS_ROOT}/{source_id}/count.txt",
    )


def parse_count(text: Optional[str]) -> Optional[int]:
    if text is None:
        return None
    try:
        value = int(text.strip())
    except ValueError:
        return None
    return value if value >= 0 else None


class CheckpointLedger:
    def __init__(self, store: FileRecordStore):
        self.store = store
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._counters = {kind: 0 for kind in COUNTER_FILES}
        self._gate = threading.Condition()
        self._writers: Dict[int, int] = {}
        self._closed = False
        self.loaded = False

    def load_all(self) -> dict:
        """Load checkpoints and add the flushed counter snapshot to the in-memory counters."""
        checkpoints = {}
        for source_id, is_dir in self.store.list_dir(COMMENTS_ROOT):
            if not is_dir:
                continue
            checkpoint = self.get_checkpoint(source_id)
            if checkpoint is not None:
                checkpoints[source_id] = checkpoint

        snapshot = {}
        for kind, filename in COUNTER_FILES.items():
            text = self.store.get_text(filename)
            value = parse_count(text)
            if text is not None and value is None:
                logger.warning("Ignoring unreadable counter file %s", filename)
            snapshot[kind] = value or 0

        # merged in one assignment: an interrupted load leaves the counters untouched
        with self._lock:
            self._counters = {kind: self._counters[kind] + snapshot[kind] for kind in COUNTER_FILES}
            self.loaded = True
            counters = dict(self._counters)

        return {"checkpoints": checkpoints, "counters": counters}

    def get_checkpoint(self, source_id: str) -> Optional[Tuple[int, int]]:
        offset_key, count_key = checkpoint_keys(source_id)
        offset_text = self.store.get_text(offset_key)
        if offset_text is None:
            return None
        offset = parse_count(offset_text)
        if offset is None:
            raise PersistenceError(f"Corrupt checkpoint for {source_id}: {offset_text!r}")
        total = parse_count(self.store.get_text(count_key)) or 0
        return offset, total

    def save_checkpoint(self, source_id: str, offset: int, total: int) -> None:
        if offset < 0 or total < 0:
            raise ValueError(f"Checkpoint values must be non-negative: {offset}, {total}")
        offset_key, count_key = checkpoint_keys(source_id)
        self.store.put_text(count_key, str(total))
        self.store.put_text(offset_key, str(offset))

    def record_persisted(self, kind: str) -> int:
        if kind not in COUNTER_FILES:
            raise KeyError(f"Unknown counter: {kind}")
        with self._lock:
            self._counters[kind] += 1
            return self._counters[kind]

    def persist_record(self, kind: str, write: Callable[[], bool]) -> bool:
        """Run ``write`` and count the record when it was newly created.

        Raises LedgerClosedError without writing once ``close()`` has started.
        """
        if kind not in COUNTER_FILES:
            raise KeyError(f"Unknown counter: {kind}")
        ident = threading.get_ident()
        with self._gate:
            if self._closed:
                raise LedgerClosedError("Ledger is closed")
            self._writers[ident] = self._writers.get(ident, 0) + 1

        created = False
        try:
            created = write()
            if created:
                self.record_persisted(kind)
        finally:
            with self._gate:
                self._writers[ident] -= 1
                if not self._writers[ident]:
                    del self._writers[ident]
                late = self._closed
                self._gate.notify_all()

        if created and late:
            # counted after the closing flush
            self.flush()
        return created

    def close(self, timeout: float = 5.0) -> Dict[str, int]:
        """Refuse new record writes, wait for the ones in progress, then flush."""
        ident = threading.get_ident()
        deadline = time.monotonic() + timeout
        with self._gate:
            self._closed = True
            while any(writer != ident for writer in self._writers):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning("Closing ledger with record writes still in progress")
                    break
                self._gate.wait(remaining)
        return self.flush()

    def counters(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def flush(self) -> Dict[str, int]:
        with self._flush_lock:
            snapshot = self.counters()
            for kind, filename in COUNTER_FILES.items():
                self.store.put_text(filename, str(snapshot[kind]))
        logger.debug("Flushed counters: %s", snapshot)
        return snapshot

    def rebuild_counters(self) -> Dict[str, int]:
        """Replace the counters with a count of the records on disk and flush them."""
        counts = {kind: 0 for kind in COUNTER_FILES}
        for source_id, is_dir in self.store.list_dir(COMMENTS_ROOT):
            if not is_dir:
                continue
            for post_id, post_is_dir in self.store.list_dir(f"{COMMENTS_ROOT}/{source_id}"):
                if not post_is_dir:
                    continue
                for name, entry_is_dir in self.store.list_dir(f"{COMMENTS_ROOT}/{source_id}/{post_id}"):
                    if entry_is_dir or not name.endswith(".json"):
                        continue
                    if name == POST_RECORD:
                        counts["posts"] += 1
                    else:
                        counts["comments"] += 1
        counts["profiles"] = sum(
            1 for name, is_dir in self.store.list_dir(PROFILES_ROOT)
            if not is_dir and name.endswith(".json")
        )

        with self._lock:
            self._counters = dict(counts)
        return self.flush()

    def progress_report(self) -> Iterator[Tuple[str, int, int, float]]:
        for source_id, is_dir in self.store.list_dir(COMMENTS_ROOT):
            if not is_dir:
                continue
            checkpoint = self.get_checkpoint(source_id)
            if checkpoint is None:
                logger.info("No offset data for group %s", source_id)
                continue
            offset, total = checkpoint
            percent = 100.0 * offset / total if total else 0.0
            yield source_id, offset, total, percent

    def log_progress(self) -> None:
        for source_id, offset, total, percent in self.progress_report():
            logger.info("Group %s : %d/%d : %.1f %%", source_id, offset, total, percent)
        counters = self.counters()
        logger.info("Total Posts: %d", counters["posts"])
        logger.info("Total Profiles: %d", counters["profiles"])
        logger.info("Total Comments: %d", counters["comments"])
