"""
Triage queue between the API and the worker.

Every issue the API stores is announced here by id only; the issue itself
stays in the database. The worker pops ids in arrival order and runs
auto-assignment, duplicate detection, photo analysis and automations on
each. Local runs and tests use the in-memory list; deployments point
REDIS_URL at a Redis list.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions


class TriageQueue(Protocol):
    """Carries ids of newly stored issues that still need triage."""

    def enqueue(self, issue_id: str) -> None:
        ...

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        ...


@dataclass
class InMemoryTriageQueue:
    """Process-local triage queue. Pending ids are visible as ``items``."""

    items: list[str] = field(default_factory=list)

    def enqueue(self, issue_id: str) -> None:
        self.items.append(issue_id)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        # Never blocks: an empty queue means the worker has caught up.
        if not self.items:
            return None
        return self.items.pop(0)


@dataclass
class RedisTriageQueue:
    """Triage queue stored as a Redis list shared by API and worker processes."""

    url: str
    queue_key: str = "jansahyog:triage"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, issue_id: str) -> None:
        self.client.rpush(self.queue_key, issue_id)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        try:
            if block:
                popped = self.client.blpop(self.queue_key, timeout=timeout or 0)
                issue_id = popped[1] if popped else None
            else:
                issue_id = self.client.lpop(self.queue_key)
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections. Reconnect and report an
            # empty queue so run_loop polls again.
            self.client = redis.Redis.from_url(self.url)
            return None
        if issue_id is None:
            return None
        return issue_id.decode("utf-8")
