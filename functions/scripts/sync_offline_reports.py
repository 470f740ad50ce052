"""
Watches connectivity and resubmits complaints queued while offline.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from client.api_client import CivicApiClient
from client.offline_queue import ConnectivityMonitor, OfflineQueue

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Offline complaint sync daemon")
    parser.add_argument("--api-url", required=True, help="Base URL of the civic issues API")
    parser.add_argument("--token", required=True, help="Firebase ID token of the citizen")
    parser.add_argument(
        "--queue-file",
        type=str,
        default="data/offline_complaints.json",
        help="Path of the offline queue file",
    )
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=10.0,
        help="Seconds between connectivity checks",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sync pass and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    api = CivicApiClient(args.api_url, token=args.token)
    queue = OfflineQueue(args.queue_file)

    if args.once:
        if not api.is_reachable():
            logger.warning("API unreachable, %d complaints still queued", len(queue))
            return 1
        report = queue.sync(api)
        return 0 if not report.failed else 1

    monitor = ConnectivityMonitor(api, queue, interval_seconds=args.interval_seconds)
    monitor.start()
    try:
        while True:
            time.sleep(args.interval_seconds)
    except KeyboardInterrupt:
        monitor.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
