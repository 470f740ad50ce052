import base64
import io
import unittest

from fastapi.testclient import TestClient
from PIL import Image

from backend.app import create_app
from backend.auth import StaticTokenVerifier
from backend.db import InMemoryDbClient
from backend.dependencies import (
    get_db_client,
    get_push_client,
    get_queue_client,
    get_storage_client,
    get_token_verifier,
)
from backend.notifications import InMemoryPushClient
from backend.queue import InMemoryTriageQueue
from backend.storage import InMemoryStorageClient

CITIZEN = {"Authorization": "Bearer citizen-token"}
NEIGHBOUR = {"Authorization": "Bearer neighbour-token"}
ADMIN = {"Authorization": "Bearer admin-token"}


def _photo() -> str:
    out = io.BytesIO()
    Image.new("RGB", (16, 12), "red").save(out, format="PNG")
    return base64.b64encode(out.getvalue()).decode("ascii")


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.queue = InMemoryTriageQueue()
        self.push = InMemoryPushClient()
        self.verifier = StaticTokenVerifier()
        self.verifier.register("citizen-token", "citizen-1", "citizen@example.com")
        self.verifier.register("neighbour-token", "citizen-2", "neighbour@example.com")
        self.verifier.register("admin-token", "admin-1", "admin@example.com", "Admin")

        app = create_app()
        app.dependency_overrides[get_db_client] = lambda: self.db
        app.dependency_overrides[get_storage_client] = lambda: self.storage
        app.dependency_overrides[get_queue_client] = lambda: self.queue
        app.dependency_overrides[get_push_client] = lambda: self.push
        app.dependency_overrides[get_token_verifier] = lambda: self.verifier
        self.client = TestClient(app)

        self.db.ensure_user("admin-1", "admin@example.com", "Admin")
        self.db.update_user("admin-1", role="admin")

    def _report(self, headers=CITIZEN, **overrides):
        payload = {
            "title": "Pothole on MG Road",
            "description": "Deep pothole near the bus stop",
            "category": "Roads",
            "priority": "Medium",
            "latitude": 28.6139,
            "longitude": 77.2090,
            "address": "MG Road, Sector 14",
            "imageBase64": _photo(),
        }
        payload.update(overrides)
        return self.client.post("/api/issues", json=payload, headers=headers)

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")

    def test_requires_bearer_token(self):
        self.assertEqual(self.client.get("/api/issues").status_code, 401)
        response = self.client.get(
            "/api/issues", headers={"Authorization": "Bearer nope"}
        )
        self.assertEqual(response.status_code, 401)

    def test_suspended_user_is_rejected(self):
        self.db.ensure_user("citizen-1", "citizen@example.com")
        self.db.update_user("citizen-1", status="suspended")
        self.assertEqual(self.client.get("/api/users/me", headers=CITIZEN).status_code, 403)

    def test_submit_issue(self):
        response = self._report()
        self.assertEqual(response.status_code, 201)
        body = response.json()
        issue = body["issue"]
        self.assertEqual(issue["status"], "Open")
        self.assertEqual(issue["assignedDepartment"], "")
        self.assertTrue(issue["publicVisible"])
        self.assertTrue(issue["hasImage"])
        self.assertEqual(issue["upvotes"], 0)
        self.assertEqual(issue["reportedById"], "citizen-1")
        self.assertTrue(issue["imagePath"].startswith("issues/photos/"))
        self.assertIn(issue["imagePath"], body["imageUrl"])
        self.assertTrue(self.storage.exists(issue["imagePath"]))
        self.assertEqual(self.queue.items, [issue["id"]])

        profile = self.client.get("/api/users/me", headers=CITIZEN).json()["user"]
        self.assertEqual(profile["issuesReported"], 1)
        self.assertEqual(profile["points"], 15)

    def test_submit_issue_validation(self):
        self.assertEqual(self._report(imageBase64=None).status_code, 400)
        self.assertEqual(self._report(imageBase64="not base64!").status_code, 400)
        self.assertEqual(self._report(title="   ").status_code, 400)
        self.assertEqual(self._report(priority="Urgent").status_code, 400)
        self.assertEqual(self._report(longitude=None).status_code, 400)
        self.assertEqual(self.db.issues, {})

    def test_upload_then_submit_with_path(self):
        upload = self.client.post(
            "/api/issues/images", json={"imageBase64": _photo()}, headers=CITIZEN
        )
        self.assertEqual(upload.status_code, 201)
        path = upload.json()["path"]
        self.assertEqual(upload.json()["width"], 16)

        response = self._report(imageBase64=None, imagePath=path)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["issue"]["imagePath"], path)

        missing = self._report(imageBase64=None, imagePath="issues/photos/missing.jpg")
        self.assertEqual(missing.status_code, 400)

    def test_upvote_toggle(self):
        issue_id = self._report().json()["issue"]["id"]

        first = self.client.post(f"/api/issues/{issue_id}/upvote", headers=NEIGHBOUR)
        self.assertEqual(first.json(), {"success": True, "upvoted": True, "upvotes": 1})

        other = self.client.post(f"/api/issues/{issue_id}/upvote", headers=CITIZEN)
        self.assertEqual(other.json()["upvotes"], 2)

        second = self.client.post(f"/api/issues/{issue_id}/upvote", headers=NEIGHBOUR)
        self.assertEqual(second.json(), {"success": True, "upvoted": False, "upvotes": 1})
        self.assertEqual(self.db.get_issue(issue_id).upvoted_by, ["citizen-1"])

        missing = self.client.post("/api/issues/nope/upvote", headers=CITIZEN)
        self.assertEqual(missing.status_code, 404)

    def test_list_search_and_mine(self):
        self._report()
        self._report(title="Overflowing bin", category="Garbage", headers=NEIGHBOUR)

        listed = self.client.get("/api/issues", headers=CITIZEN).json()
        self.assertEqual(listed["count"], 2)

        found = self.client.get("/api/issues", params={"q": "BIN"}, headers=CITIZEN).json()
        self.assertEqual([i["title"] for i in found["issues"]], ["Overflowing bin"])

        mine = self.client.get("/api/issues/mine", headers=NEIGHBOUR).json()
        self.assertEqual(mine["count"], 1)
        self.assertEqual(mine["issues"][0]["reportedById"], "citizen-2")

    def test_nearby_sorted_by_distance(self):
        self._report(title="Close", latitude=28.6140, longitude=77.2091)
        self._report(title="Closer", latitude=28.6139, longitude=77.2090)
        self._report(title="Far away", latitude=19.0760, longitude=72.8777)

        response = self.client.get(
            "/api/issues/nearby",
            params={"lat": 28.6139, "lon": 77.2090, "radius_km": 5},
            headers=CITIZEN,
        )
        self.assertEqual(response.status_code, 200)
        titles = [item["issue"]["title"] for item in response.json()["issues"]]
        self.assertEqual(titles, ["Closer", "Close"])

        filtered = self.client.get(
            "/api/issues/nearby",
            params={"lat": 28.6139, "lon": 77.2090, "category": ["Garbage"]},
            headers=CITIZEN,
        )
        self.assertEqual(filtered.json()["count"], 0)

    def test_offline_sync_reports_per_item(self):
        valid = {
            "title": "Broken streetlight",
            "description": "Dark since Monday",
            "category": "Streetlight",
            "imageBase64": _photo(),
            "source": "offline_queue",
        }
        invalid = dict(valid, title="")
        response = self.client.post(
            "/api/issues/sync", json={"items": [valid, invalid]}, headers=CITIZEN
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["synced"], 1)
        self.assertEqual(body["failed"], 1)
        self.assertTrue(body["results"][0]["success"])
        self.assertFalse(body["results"][1]["success"])
        issue = self.db.get_issue(body["results"][0]["issueId"])
        self.assertEqual(issue.source, "offline_queue")

    def test_admin_routes_require_admin(self):
        self.assertEqual(self.client.get("/api/admin/issues", headers=CITIZEN).status_code, 403)
        self.assertEqual(self.client.get("/api/admin/issues", headers=ADMIN).status_code, 200)

    def test_admin_resolution_flow(self):
        issue_id = self._report().json()["issue"]["id"]

        response = self.client.patch(
            f"/api/admin/issues/{issue_id}",
            json={"status": "Resolved", "adminNotes": "Patched"},
            headers=ADMIN,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["issue"]["status"], "Resolved")

        comments = self.client.get(f"/api/issues/{issue_id}/comments", headers=CITIZEN).json()
        self.assertEqual(comments["comments"][0]["type"], "status_change")

        profile = self.db.get_user("citizen-1")
        self.assertEqual(profile.points, 20)
        self.assertEqual(profile.issues_resolved, 1)

        notifications = self.client.get("/api/notifications", headers=CITIZEN).json()
        self.assertEqual(notifications["unread"], 1)
        self.assertEqual(notifications["notifications"][0]["title"], "Issue Resolved")

        notification_id = notifications["notifications"][0]["id"]
        read = self.client.post(f"/api/notifications/{notification_id}/read", headers=CITIZEN)
        self.assertEqual(read.status_code, 200)
        self.assertEqual(
            self.client.get("/api/notifications", headers=CITIZEN).json()["unread"], 0
        )
        self.assertEqual(
            self.client.post("/api/notifications/nope/read", headers=CITIZEN).status_code, 404
        )

    def test_admin_update_rejects_bad_status(self):
        issue_id = self._report().json()["issue"]["id"]
        bad = self.client.patch(
            f"/api/admin/issues/{issue_id}", json={"status": "Closed"}, headers=ADMIN
        )
        self.assertEqual(bad.status_code, 400)
        missing = self.client.patch(
            "/api/admin/issues/nope", json={"status": "Resolved"}, headers=ADMIN
        )
        self.assertEqual(missing.status_code, 404)

    def test_hidden_issue_only_visible_to_reporter_and_admin(self):
        issue_id = self._report().json()["issue"]["id"]
        self.client.patch(
            f"/api/admin/issues/{issue_id}", json={"publicVisible": False}, headers=ADMIN
        )
        self.assertEqual(self.client.get(f"/api/issues/{issue_id}", headers=NEIGHBOUR).status_code, 404)
        self.assertEqual(self.client.get(f"/api/issues/{issue_id}", headers=CITIZEN).status_code, 200)
        self.assertEqual(self.client.get(f"/api/issues/{issue_id}", headers=ADMIN).status_code, 200)
        self.assertEqual(self.client.get("/api/issues", headers=NEIGHBOUR).json()["count"], 0)

    def test_seed_defaults_and_bulk_assign(self):
        issue_id = self._report(category="Water Leak").json()["issue"]["id"]

        seeded = self.client.post("/api/admin/seed-defaults", headers=ADMIN).json()
        self.assertEqual(seeded, {"departments": 5, "rules": 6, "automationRules": 4})

        assigned = self.client.post("/api/admin/auto-assign", headers=ADMIN).json()
        self.assertEqual(assigned["assigned"], 1)
        self.assertEqual(self.db.get_issue(issue_id).assigned_department, "Water & Sanitation")

        duplicate = self.client.post(
            "/api/admin/departments", json={"name": "electrical"}, headers=ADMIN
        )
        self.assertEqual(duplicate.status_code, 400)

    def test_leaderboard(self):
        self._report()
        self._report()

        body = self.client.get("/api/leaderboard", headers=CITIZEN).json()
        self.assertEqual(len(body["entries"]), 1)
        self.assertEqual(body["entries"][0]["uid"], "citizen-1")
        self.assertEqual(body["entries"][0]["points"], 30)
        self.assertEqual(body["entries"][0]["total_issues"], 2)
        self.assertEqual(body["me"]["rank"], 1)

        neighbour = self.client.get("/api/leaderboard", headers=NEIGHBOUR).json()
        self.assertIsNone(neighbour["me"])

    def test_push_token_and_preferences(self):
        bad = self.client.put(
            "/api/users/me/push-token", json={"pushToken": "fcm-token"}, headers=CITIZEN
        )
        self.assertEqual(bad.status_code, 400)

        good = self.client.put(
            "/api/users/me/push-token",
            json={"pushToken": "ExponentPushToken[abc]"},
            headers=CITIZEN,
        )
        self.assertEqual(good.json()["user"]["pushToken"], "ExponentPushToken[abc]")

        prefs = self.client.put(
            "/api/users/me/preferences", json={"issueUpdates": False}, headers=CITIZEN
        )
        self.assertEqual(
            prefs.json()["user"]["notificationPreferences"], {"issueUpdates": False}
        )

    def test_broadcast(self):
        self.db.ensure_user("citizen-1", "citizen@example.com")
        self.db.update_user("citizen-1", push_token="ExponentPushToken[abc]")

        response = self.client.post(
            "/api/admin/notifications/broadcast",
            json={"title": "Water cut", "body": "Sector 14, 10am-2pm", "target": "all"},
            headers=ADMIN,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["successCount"], 1)
        self.assertEqual([m["to"] for m in self.push.sent], ["ExponentPushToken[abc]"])
        self.assertEqual(len(self.db.list_notifications("admin-1")), 1)

        logs = self.client.get("/api/admin/notifications/logs", headers=ADMIN).json()["logs"]
        self.assertEqual(logs[0]["status"], "sent")
        self.assertEqual(logs[0]["recipientCount"], 2)

        individual = self.client.post(
            "/api/admin/notifications/broadcast",
            json={"title": "Hi", "body": "There", "target": "individual"},
            headers=ADMIN,
        )
        self.assertEqual(individual.status_code, 400)

    def test_analytics(self):
        self._report()
        response = self.client.get("/api/admin/analytics", params={"days": 7}, headers=ADMIN)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total_issues"], 1)
        self.assertEqual(len(body["daily_trends"]), 7)

    def test_sign_url_uses_storage_client(self):
        response = self.client.get(
            "/api/sign-url", params={"path": "issues/photos/a.jpg"}, headers=CITIZEN
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn("issues/photos/a.jpg", response.json()["url"])

        outside = self.client.get("/api/sign-url", params={"path": "secrets/a"}, headers=CITIZEN)
        self.assertEqual(outside.status_code, 400)


if __name__ == "__main__":
    unittest.main()
