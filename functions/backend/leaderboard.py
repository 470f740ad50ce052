"""
Citizen leaderboard ranked by points.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

from backend.db import DbClient
from shared.constants import LEADERBOARD_SIZE
from shared.types import IssueStatus


@dataclass
class LeaderboardEntry:
    uid: str
    display_name: str
    points: int
    total_issues: int
    resolved_issues: int
    rank: int = 0
    photo_url: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


def build_leaderboard(db: DbClient, size: int = LEADERBOARD_SIZE) -> list[LeaderboardEntry]:
    """
    Top users by points. Users without points are left out; reported and
    resolved counts come from the issues themselves, not the profile counters.
    """
    entries = []
    for user in db.list_users(by_points=True, limit=size):
        if not user.points or user.points <= 0:
            continue
        issues = db.list_issues(reporter_id=user.uid)
        entries.append(
            LeaderboardEntry(
                uid=user.uid,
                display_name=user.display_name
                or (user.email.split("@")[0] if user.email else "Anonymous"),
                points=user.points,
                total_issues=len(issues),
                resolved_issues=sum(1 for i in issues if i.status == IssueStatus.RESOLVED),
                photo_url=user.photo_url,
            )
        )
    entries.sort(key=lambda e: e.points, reverse=True)
    for rank, entry in enumerate(entries, start=1):
        entry.rank = rank
    return entries


def find_entry(entries: list[LeaderboardEntry], uid: str) -> Optional[LeaderboardEntry]:
    return next((e for e in entries if e.uid == uid), None)
