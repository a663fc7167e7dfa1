#!/usr/bin/env python3
"""
CLI entry for the VK comment crawler.
"""

import argparse
import logging
import threading
from pathlib import Path

from checkpoint_ledger import CheckpointLedger
from config_loader import ConfigLoader
from errors import ConfigurationError, CrawlerError
from orchestrator import Orchestrator
from rate_governor import RateGovernor
from record_store import FileRecordStore
from vk_api import VkApiClient

logger = logging.getLogger("vk_crawler")


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", default="config.json", help="Config file path")
    parser.add_argument("--groups-file", default=None, help="Newline-delimited list of group screen names")
    parser.add_argument("--data-dir", default=None, help="Output directory for records and checkpoints")
    parser.add_argument("--page-size", type=int, default=None, help="Posts requested per page")
    parser.add_argument("--request-interval", type=float, default=None, help="Seconds between any two requests")
    parser.add_argument(
        "--transient-policy",
        choices=["retry", "nudge"],
        default=None,
        help="On network errors retry the same offset or skip ahead",
    )
    parser.add_argument("--recount", action="store_true", help="Rebuild counters from the records on disk first")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    loader = ConfigLoader(args.config)
    settings = loader.config["vk"]["settings"]
    if args.groups_file:
        settings["groups_file"] = args.groups_file
    if args.data_dir:
        settings["data_dir"] = args.data_dir
    if args.page_size:
        settings["page_size"] = args.page_size
    if args.request_interval is not None:
        settings["request_interval"] = args.request_interval
    if args.transient_policy:
        settings["transient_policy"] = args.transient_policy

    try:
        access_token = loader.access_token()
        group_names = loader.group_names()
    except ConfigurationError as exc:
        logger.error("%s Exiting..", exc)
        return 2

    store = FileRecordStore(Path(settings["data_dir"]).expanduser())
    if args.recount:
        counters = CheckpointLedger(store).rebuild_counters()
        logger.info("Recounted records on disk: %s", counters)

    stop_event = threading.Event()
    governor = RateGovernor(settings.get("request_interval", 0.666))
    client = VkApiClient(loader, access_token, governor, stop_event=stop_event)
    orchestrator = Orchestrator(client, store, settings=settings, stop_event=stop_event)
    orchestrator.install_signal_handlers()

    try:
        results = orchestrator.run(group_names)
    except CrawlerError as exc:
        logger.error("Crawl aborted: %s", exc)
        return 1

    failed = [result for result in results if result["state"] == "failed"]
    for result in failed:
        logger.error("Group %s failed: %s", result["source_id"], result["error"])
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
