import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

import requests

from client.api_client import ApiError
from client.offline_queue import ConnectivityMonitor, OfflineQueue, QueuedComplaint


def _complaint(title="Pothole", image="aGVsbG8="):
    return QueuedComplaint(
        title=title,
        description="Deep pothole near the bus stop",
        category="Roads",
        latitude=28.61,
        longitude=77.2,
        image_base64=image,
    )


class OfflineQueueTest(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "offline" / "complaints.json"
        self.queue = OfflineQueue(self.path)
        self.api = MagicMock()
        self.api.upload_image.return_value = "issues/photos/abc.jpg"
        self.api.create_issue.return_value = {"id": "issue-1"}

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_add_persists_camel_case_json(self):
        self.queue.add(_complaint())

        stored = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0]["imageBase64"], "aGVsbG8=")
        self.assertIn("localId", stored[0])
        self.assertEqual(len(OfflineQueue(self.path)), 1)

    def test_sync_uploads_image_before_issue(self):
        self.queue.add(_complaint())

        report = self.queue.sync(self.api)

        self.assertEqual(len(report.synced), 1)
        self.api.upload_image.assert_called_once_with("aGVsbG8=")
        payload = self.api.create_issue.call_args[0][0]
        self.assertEqual(payload["imagePath"], "issues/photos/abc.jpg")
        self.assertEqual(payload["source"], "offline_queue")
        self.assertFalse(self.path.exists())

    def test_sync_without_image_skips_upload(self):
        self.queue.add(_complaint(image=None))

        self.queue.sync(self.api)

        self.api.upload_image.assert_not_called()
        self.assertNotIn("imagePath", self.api.create_issue.call_args[0][0])

    def test_failures_stay_queued_and_sync_continues(self):
        first = self.queue.add(_complaint("First"))
        second = self.queue.add(_complaint("Second"))
        self.api.create_issue.side_effect = [
            requests.ConnectionError("offline"),
            {"id": "issue-2"},
        ]

        report = self.queue.sync(self.api)

        self.assertEqual(report.failed, [first.local_id])
        self.assertEqual(report.synced, [second.local_id])
        remaining = self.queue.load()
        self.assertEqual([c.local_id for c in remaining], [first.local_id])

    def test_invalid_complaint_is_dropped(self):
        self.queue.add(_complaint())
        self.api.upload_image.side_effect = ApiError(400, "Image could not be decoded")

        report = self.queue.sync(self.api)

        self.assertEqual(len(report.rejected), 1)
        self.assertEqual(len(self.queue), 0)

    def test_server_error_keeps_complaint(self):
        self.queue.add(_complaint())
        self.api.create_issue.side_effect = ApiError(503, "unavailable")

        report = self.queue.sync(self.api)

        self.assertEqual(len(report.failed), 1)
        self.assertEqual(len(self.queue), 1)

    def test_retry_reuses_uploaded_photo(self):
        self.queue.add(_complaint())
        self.api.create_issue.side_effect = [ApiError(500, "boom"), {"id": "issue-1"}]

        self.queue.sync(self.api)
        stored = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(stored[0]["imagePath"], "issues/photos/abc.jpg")
        report = self.queue.sync(self.api)

        self.assertEqual(len(report.synced), 1)
        self.api.upload_image.assert_called_once_with("aGVsbG8=")
        payload = self.api.create_issue.call_args[0][0]
        self.assertEqual(payload["imagePath"], "issues/photos/abc.jpg")

    def test_unreadable_file_loads_as_empty(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json", encoding="utf-8")
        self.assertEqual(self.queue.load(), [])


class ConnectivityMonitorTest(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.queue = OfflineQueue(Path(self.tmpdir.name) / "complaints.json")
        self.api = MagicMock()
        self.api.upload_image.return_value = "issues/photos/abc.jpg"

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_syncs_only_on_transition_to_online(self):
        self.queue.add(_complaint())
        reports = []
        monitor = ConnectivityMonitor(self.api, self.queue, on_sync=reports.append)

        self.api.is_reachable.return_value = False
        self.assertIsNone(monitor.check())

        self.api.is_reachable.return_value = True
        report = monitor.check()
        self.assertEqual(len(report.synced), 1)
        self.assertEqual(reports, [report])

        self.queue.add(_complaint("Later"))
        self.assertIsNone(monitor.check())
        self.assertEqual(len(self.queue), 1)

    def test_empty_queue_does_not_sync(self):
        self.api.is_reachable.return_value = True
        monitor = ConnectivityMonitor(self.api, self.queue)
        self.assertIsNone(monitor.check())
        self.api.create_issue.assert_not_called()


if __name__ == "__main__":
    unittest.main()
