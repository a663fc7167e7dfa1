#!/usr/bin/env python3
"""
Per-group pagination state machine.

A crawler resumes from the group's checkpoint, then loops over
fetch -> process -> persist -> checkpoint until the offset reaches the latest
total reported by the API. The checkpoint is written only after every record
of a page has been persisted, so an interrupted page is fetched again on the
next run and its records are simply overwritten.
"""

import logging
import threading
from enum import Enum
from typing import Optional

from checkpoint_ledger import COMMENTS_ROOT, POST_RECORD, PROFILES_ROOT, CheckpointLedger
from errors import (
    LedgerClosedError,
    PersistenceError,
    RemoteFatalError,
    RemoteRateLimitError,
    TransientTransportError,
)
from record_store import FileRecordStore
from vk_records import page_records

logger = logging.getLogger(__name__)

TRANSIENT_POLICIES = {"retry", "nudge"}


class CrawlState(str, Enum):
    RESUMING = "resuming"
    FETCHING = "fetching"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_ERROR = "transient_error"
    PROCESSING = "processing"
    PERSISTING = "persisting"
    CHECKPOINT_UPDATE = "checkpoint_update"
    DONE = "done"
    FAILED = "failed"
    STOPPED = "stopped"


TERMINAL_STATES = {CrawlState.DONE, CrawlState.FAILED, CrawlState.STOPPED}


def post_key(source_id: str, post_id) -> str:
    return f"{COMMENTS_ROOT}/{source_id}/{post_id}/{POST_RECORD}"


def comment_key(source_id: str, post_id, comment_id) -> str:
    return f"{COMMENTS_ROOT}/{source_id}/{post_id}/{comment_id}.json"


def profile_key(profile_id) -> str:
    return f"{PROFILES_ROOT}/{profile_id}.json"


class SourceCrawler:
    def __init__(
        self,
        source_id: str,
        screen_name: str,
        client,
        store: FileRecordStore,
        ledger: CheckpointLedger,
        settings: Optional[dict] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        settings = settings or {}
        self.source_id = source_id
        self.screen_name = screen_name
        self.client = client
        self.store = store
        self.ledger = ledger
        self.stop_event = stop_event or threading.Event()

        self.page_size = int(settings.get("page_size", 20))
        self.rate_limit_cooldown = float(settings.get("rate_limit_cooldown", 360))
        self.transient_policy = str(settings.get("transient_policy", "retry")).lower()
        if self.transient_policy not in TRANSIENT_POLICIES:
            raise ValueError(f"Unknown transient policy: {self.transient_policy}")
        self.transient_offset_step = int(settings.get("transient_offset_step", 10))
        self.transient_retry_delay = float(settings.get("transient_retry_delay", 5))
        self.max_transient_retries = int(settings.get("max_transient_retries", 0))

        self.state = CrawlState.RESUMING
        self.offset = 0
        self.total = 0
        self.pages = 0
        self.error: Optional[Exception] = None

    def result(self) -> dict:
        return {
            "source_id": self.source_id,
            "screen_name": self.screen_name,
            "state": self.state.value,
            "offset": self.offset,
            "total": self.total,
            "pages": self.pages,
            "error": str(self.error) if self.error else None,
        }

    def resume(self) -> int:
        self.state = CrawlState.RESUMING
        checkpoint = self.ledger.get_checkpoint(self.source_id)
        if checkpoint is not None:
            self.offset, self.total = checkpoint
        logger.info("Starting parsing group %s from offset %d", self.source_id, self.offset)
        return self.offset

    def persist(self, records: dict) -> None:
        self.state = CrawlState.PERSISTING
        writes = [("posts", post_key(self.source_id, post["id"]), post) for post in records["posts"]]
        writes += [
            ("comments", comment_key(self.source_id, comment["post_id"], comment["id"]), comment)
            for comment in records["comments"]
        ]
        writes += [("profiles", profile_key(profile["id"]), profile) for profile in records["profiles"]]
        for kind, key, record in writes:
            self.ledger.persist_record(kind, lambda key=key, record=record: self.store.put_json(key, record))

    def advance(self, page: dict) -> bool:
        """Advance and checkpoint the offset; returns True when the group is finished."""
        self.state = CrawlState.CHECKPOINT_UPDATE
        fetched = len(page["posts"])
        self.offset += fetched
        self.total = page["total_count"]
        self.ledger.save_checkpoint(self.source_id, self.offset, self.total)
        self.pages += 1

        if self.offset >= self.total:
            logger.info("Finish. Group %s parsed %d/%d posts", self.source_id, self.offset, self.total)
            return True
        if fetched == 0:
            logger.warning(
                "Group %s returned an empty page at offset %d/%d; stopping",
                self.source_id, self.offset, self.total,
            )
            return True
        counters = self.ledger.counters()
        logger.info("Group %s. Next offset: %d/%d", self.source_id, self.offset, self.total)
        logger.debug(
            "Total Posts: %d. Total Profiles %d. Total Comments %d",
            counters["posts"], counters["profiles"], counters["comments"],
        )
        return False

    def handle_transient(self, exc: TransientTransportError, failures: int) -> None:
        self.state = CrawlState.TRANSIENT_ERROR
        if self.max_transient_retries and failures > self.max_transient_retries:
            raise RemoteFatalError(None, f"giving up after {failures - 1} transient errors: {exc}")
        if self.transient_policy == "nudge":
            self.offset += self.transient_offset_step
            logger.warning(
                "Group %s: %s. Skipping ahead to offset %d", self.source_id, exc, self.offset
            )
        else:
            logger.warning(
                "Group %s: %s. Retrying offset %d in %.1fs",
                self.source_id, exc, self.offset, self.transient_retry_delay,
            )
        self.stop_event.wait(self.transient_retry_delay)

    def handle_rate_limit(self, exc: RemoteRateLimitError) -> None:
        self.state = CrawlState.RATE_LIMITED
        logger.warning(
            "Group %s: %s. Cooling down for %.0fs before retrying offset %d",
            self.source_id, exc.message or exc, self.rate_limit_cooldown, self.offset,
        )
        self.stop_event.wait(self.rate_limit_cooldown)

    def run(self) -> dict:
        try:
            self.resume()
            transient_failures = 0
            while True:
                if self.stop_event.is_set():
                    self.state = CrawlState.STOPPED
                    logger.info("Group %s stopped at offset %d", self.source_id, self.offset)
                    break

                self.state = CrawlState.FETCHING
                try:
                    page = self.client.fetch_page(self.source_id, self.offset, self.page_size)
                except RemoteRateLimitError as exc:
                    self.handle_rate_limit(exc)
                    continue
                except TransientTransportError as exc:
                    transient_failures += 1
                    self.handle_transient(exc, transient_failures)
                    continue
                transient_failures = 0

                self.state = CrawlState.PROCESSING
                records = page_records(page, self.source_id, self.screen_name)
                self.persist(records)

                if self.advance(page):
                    self.state = CrawlState.DONE
                    break
        except LedgerClosedError:
            self.state = CrawlState.STOPPED
            logger.info("Group %s stopped mid-page at offset %d", self.source_id, self.offset)
        except (RemoteFatalError, PersistenceError) as exc:
            self.state = CrawlState.FAILED
            self.error = exc
            logger.error("Group %s failed at offset %d: %s", self.source_id, self.offset, exc)
        return self.result()
