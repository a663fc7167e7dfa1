#!/usr/bin/env python3
"""
Runs one source crawler thread per group and owns the shutdown contract.

The signal handler only unwinds the main thread with ``SystemExit``; the
counter flush and summary happen in ``run()``'s cleanup, outside any lock the
interrupted code may have held.
"""

import logging
import signal
import threading
from typing import Callable, Dict, Iterable, List, Optional

from checkpoint_ledger import CheckpointLedger
from record_store import FileRecordStore
from source_crawler import SourceCrawler

logger = logging.getLogger(__name__)


class Orchestrator:
    def __init__(
        self,
        client,
        store: FileRecordStore,
        ledger: Optional[CheckpointLedger] = None,
        settings: Optional[dict] = None,
        stop_event: Optional[threading.Event] = None,
        crawler_factory: Optional[Callable[..., SourceCrawler]] = None,
    ):
        self.client = client
        self.store = store
        self.ledger = ledger or CheckpointLedger(store)
        self.settings = settings or {}
        self.stop_event = stop_event or threading.Event()
        self.crawler_factory = crawler_factory or SourceCrawler
        self.flush_interval = float(self.settings.get("flush_interval", 60))
        self.close_timeout = float(self.settings.get("close_timeout", 5))
        self.results: Dict[str, dict] = {}
        self._results_lock = threading.Lock()
        self._interrupted = False
        self._closing = False

    def resolve_sources(self, group_names: Iterable[str]) -> List[tuple]:
        names = list(group_names)
        logger.info("Loaded %d groups: %s", len(names), names)
        sources = self.client.resolve_groups(names)
        logger.info("Resolved groupIDs: %s", [source_id for source_id, _ in sources])
        return sources

    def _run_crawler(self, crawler: SourceCrawler) -> None:
        try:
            result = crawler.run()
        except Exception:
            logger.exception("Group %s crashed", crawler.source_id)
            result = crawler.result()
            result["state"] = "failed"
            result["error"] = result["error"] or "unexpected crawler error"
        with self._results_lock:
            self.results[crawler.source_id] = result
        self.ledger.flush()

    def _flush_periodically(self) -> None:
        while not self.stop_event.wait(self.flush_interval):
            self.ledger.flush()

    def run(self, group_names: Iterable[str]) -> List[dict]:
        sources = []
        flusher = None
        try:
            sources = self.resolve_sources(group_names)
            self.ledger.load_all()
            self.ledger.log_progress()

            threads = []
            for source_id, screen_name in sources:
                crawler = self.crawler_factory(
                    source_id,
                    screen_name,
                    self.client,
                    self.store,
                    self.ledger,
                    settings=self.settings,
                    stop_event=self.stop_event,
                )
                thread = threading.Thread(
                    target=self._run_crawler,
                    args=(crawler,),
                    name=f"crawler{source_id}",
                    daemon=True,
                )
                threads.append(thread)

            if self.flush_interval > 0:
                flusher = threading.Thread(target=self._flush_periodically, name="ledger-flusher", daemon=True)
                flusher.start()

            for thread in threads:
                thread.start()
            for thread in threads:
                # short timeouts keep the main thread responsive to signals
                while thread.is_alive():
                    thread.join(0.5)
        finally:
            self._closing = True
            if self.ledger.loaded:
                self.shutdown()
            else:
                # nothing counted yet; the snapshot on disk is still current
                self.stop_event.set()
            if flusher is not None:
                flusher.join(1.0)

        return [self.results[source_id] for source_id, _ in sources if source_id in self.results]

    def log_summary(self, totals: Dict[str, int]) -> None:
        with self._results_lock:
            results = list(self.results.values())
        for result in results:
            logger.info(
                "Group %s (%s): %s at %d/%d%s",
                result["source_id"], result["screen_name"], result["state"],
                result["offset"], result["total"],
                f" ({result['error']})" if result["error"] else "",
            )
        logger.info(
            "Total Posts: %d. Total Profiles %d. Total Comments %d",
            totals["posts"], totals["profiles"], totals["comments"],
        )

    def shutdown(self) -> Dict[str, int]:
        """Stop the crawlers, close the ledger and log the totals."""
        self.stop_event.set()
        totals = self.ledger.close(self.close_timeout)
        self.log_summary(totals)
        return totals

    def install_signal_handlers(self) -> None:
        def handle_signal(signum, frame):
            if self._closing or self._interrupted:
                return
            self._interrupted = True
            logger.info("Received signal %d. Exiting gracefully..", signum)
            raise SystemExit(0)

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)
