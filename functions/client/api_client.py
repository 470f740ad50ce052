"""
HTTP client the citizen app uses to talk to the civic issues API.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15  # seconds


class ApiError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class CivicApiClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            headers=headers,
            timeout=self.timeout,
            **kwargs,
        )
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise ApiError(response.status_code, str(detail))
        return response.json()

    def is_reachable(self) -> bool:
        try:
            return self._request("GET", "/api/health").get("status") == "ok"
        except (requests.RequestException, ApiError):
            return False

    def upload_image(self, image_base64: str) -> str:
        """Uploads a photo and returns its storage path."""
        return self._request(
            "POST", "/api/issues/images", json={"imageBase64": image_base64}
        )["path"]

    def create_issue(self, payload: dict) -> dict:
        return self._request("POST", "/api/issues", json=payload)["issue"]

    def sync_batch(self, items: list[dict]) -> dict:
        return self._request("POST", "/api/issues/sync", json={"items": items})

    def get_issue(self, issue_id: str) -> dict:
        return self._request("GET", f"/api/issues/{issue_id}")["issue"]

    def list_issues(self, **params) -> list[dict]:
        return self._request("GET", "/api/issues", params=params)["issues"]

    def my_issues(self) -> list[dict]:
        return self._request("GET", "/api/issues/mine")["issues"]

    def nearby_issues(self, latitude: float, longitude: float, radius_km: float = 5.0) -> list[dict]:
        return self._request(
            "GET",
            "/api/issues/nearby",
            params={"lat": latitude, "lon": longitude, "radius_km": radius_km},
        )["issues"]

    def toggle_upvote(self, issue_id: str) -> dict:
        return self._request("POST", f"/api/issues/{issue_id}/upvote")

    def leaderboard(self) -> dict:
        return self._request("GET", "/api/leaderboard")

    def notifications(self) -> dict:
        return self._request("GET", "/api/notifications")

    def register_push_token(self, push_token: Optional[str]) -> dict:
        return self._request(
            "PUT", "/api/users/me/push-token", json={"pushToken": push_token}
        )["user"]
