"""
Offline queue for complaints captured without connectivity.

Complaints are kept in a local JSON file, photo inline as base64, and
resubmitted once the device is back online: photo first, then the issue.
Each entry is tried once per sync pass; failures are logged and the pass
moves on to the next entry.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Optional

import requests
from dacite import Config, from_dict

from client.api_client import ApiError, CivicApiClient
from shared.json_utils import convert_keys

logger = logging.getLogger(__name__)


@dataclass
class QueuedComplaint:
    title: str
    description: str
    category: str
    priority: str = "Medium"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    image_base64: Optional[str] = None
    # Set once the photo is uploaded so a retry does not upload it again.
    image_path: Optional[str] = None
    local_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    queued_at: float = field(default_factory=time.time)

    def to_payload(self) -> dict:
        payload = {
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
            "source": "offline_queue",
        }
        if self.image_path:
            payload["imagePath"] = self.image_path
        return payload


@dataclass
class SyncReport:
    synced: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)


class OfflineQueue:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> list[QueuedComplaint]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.exception("Offline queue at %s is unreadable", self.path)
            return []
        return [
            from_dict(
                data_class=QueuedComplaint,
                data=convert_keys(item, "camel_to_snake"),
                config=Config(check_types=False),
            )
            for item in raw
        ]

    def _save(self, items: list[QueuedComplaint]) -> None:
        if not items:
            self.clear()
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps([convert_keys(asdict(item), "snake_to_camel") for item in items]),
            encoding="utf-8",
        )
        os.replace(tmp_path, self.path)

    def add(self, complaint: QueuedComplaint) -> QueuedComplaint:
        with self._lock:
            items = self.load()
            items.append(complaint)
            self._save(items)
        logger.info("Queued complaint %s for later submission", complaint.local_id)
        return complaint

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    def __len__(self) -> int:
        return len(self.load())

    def sync(self, api: CivicApiClient) -> SyncReport:
        """
        Resubmits every queued complaint once. Submitted entries are removed;
        entries the server rejects as invalid are dropped, anything else stays
        queued for the next pass.
        """
        report = SyncReport()
        with self._lock:
            items = self.load()
            remaining = []
            for item in items:
                try:
                    if item.image_base64 and not item.image_path:
                        item.image_path = api.upload_image(item.image_base64)
                    api.create_issue(item.to_payload())
                    report.synced.append(item.local_id)
                except ApiError as e:
                    if e.status_code == 400:
                        logger.warning("Dropping invalid complaint %s: %s", item.local_id, e.detail)
                        report.rejected.append(item.local_id)
                    else:
                        logger.error("Failed to sync complaint %s: %s", item.local_id, e)
                        report.failed.append(item.local_id)
                        remaining.append(item)
                except requests.RequestException as e:
                    logger.error("Failed to sync complaint %s: %s", item.local_id, e)
                    report.failed.append(item.local_id)
                    remaining.append(item)
            self._save(remaining)
        if items:
            logger.info(
                "Offline sync: %d synced, %d failed, %d rejected",
                len(report.synced),
                len(report.failed),
                len(report.rejected),
            )
        return report


class ConnectivityMonitor:
    """
    Polls the API and runs a sync pass whenever connectivity comes back.
    """

    def __init__(
        self,
        api: CivicApiClient,
        queue: OfflineQueue,
        interval_seconds: float = 10.0,
        on_sync: Optional[Callable[[SyncReport], None]] = None,
    ):
        self.api = api
        self.queue = queue
        self.interval_seconds = interval_seconds
        self.on_sync = on_sync
        self.online: Optional[bool] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check(self) -> Optional[SyncReport]:
        """Probes connectivity once; syncs on an offline to online transition."""
        online = self.api.is_reachable()
        came_online = online and self.online is not True
        self.online = online
        if not came_online or not len(self.queue):
            return None
        report = self.queue.sync(self.api)
        if self.on_sync:
            self.on_sync(report)
        return report

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.check()
            except Exception:
                logger.exception("Connectivity check failed")
            self._stop.wait(self.interval_seconds)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="connectivity-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=self.interval_seconds)
