"""
Aggregates for the admin analytics dashboard.

All figures are computed over issues reported inside a trailing window,
optionally narrowed to one department.
"""

from __future__ import annotations

import math
import re
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from backend.db import IssueRecord
from shared.types import IssuePriority, IssueStatus

UNASSIGNED = "Unassigned"
UNKNOWN_AREA = "Unknown Area"
TOP_N = 10
AREA_PATTERNS = [
    re.compile(r"Block [A-Z]", re.I),
    re.compile(r"Sector \d+", re.I),
    re.compile(r"Phase \d+", re.I),
    re.compile(r"Colony .+?(?:,|$)", re.I),
]


@dataclass
class AnalyticsReport:
    total_issues: int
    resolved_issues: int
    resolution_rate: int
    avg_response_time: float
    active_users: int
    status_counts: dict = field(default_factory=dict)
    priority_counts: dict = field(default_factory=dict)
    category_counts: dict = field(default_factory=dict)
    daily_trends: list = field(default_factory=list)
    department_performance: list = field(default_factory=list)
    top_reporters: list = field(default_factory=list)
    geographic_areas: list = field(default_factory=list)


def response_time_days(issue: IssueRecord) -> Optional[int]:
    """Whole days from report to last update, or None while the issue is Open."""
    if issue.status == IssueStatus.OPEN or not issue.reported_at or not issue.last_updated:
        return None
    return math.ceil(abs(issue.last_updated - issue.reported_at) / 86400)


def _average(values: list) -> float:
    return round(sum(values) / len(values), 1) if values else 0


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def area_from_address(address: Optional[str]) -> str:
    if not address:
        return UNKNOWN_AREA
    for pattern in AREA_PATTERNS:
        match = pattern.search(address)
        if match:
            return match.group(0).strip().rstrip(",")
    parts = address.split(",")
    return (parts[1] if len(parts) > 1 else parts[0]).strip() or UNKNOWN_AREA


def _day(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()


def compute_analytics(
    issues: Iterable[IssueRecord],
    days: int = 30,
    department: Optional[str] = None,
    now: Optional[float] = None,
) -> AnalyticsReport:
    now = time.time() if now is None else now
    cutoff = now - days * 86400
    filtered = [
        i
        for i in issues
        if i.reported_at >= cutoff
        and (not department or i.assigned_department == department)
    ]
    resolved = [i for i in filtered if i.status == IssueStatus.RESOLVED]
    response_times = [t for t in map(response_time_days, filtered) if t is not None]

    today = datetime.fromtimestamp(now, tz=timezone.utc).date()
    trends = {
        (today - timedelta(days=offset)).isoformat(): {
            "reported": 0,
            "resolved": 0,
            "inProgress": 0,
            "open": 0,
        }
        for offset in range(days - 1, -1, -1)
    }
    for issue in filtered:
        entry = trends.get(_day(issue.reported_at))
        if entry is None:
            continue
        entry["reported"] += 1
        if issue.status == IssueStatus.RESOLVED:
            entry["resolved"] += 1
        elif issue.status == IssueStatus.IN_PROGRESS:
            entry["inProgress"] += 1
        else:
            entry["open"] += 1

    by_department = defaultdict(list)
    for issue in filtered:
        by_department[issue.assigned_department or UNASSIGNED].append(issue)
    department_performance = []
    for name, dept_issues in by_department.items():
        dept_resolved = sum(1 for i in dept_issues if i.status == IssueStatus.RESOLVED)
        department_performance.append(
            {
                "department": name,
                "total": len(dept_issues),
                "resolved": dept_resolved,
                "open": sum(1 for i in dept_issues if i.status == IssueStatus.OPEN),
                "inProgress": sum(
                    1 for i in dept_issues if i.status == IssueStatus.IN_PROGRESS
                ),
                "resolveRate": _percent(dept_resolved, len(dept_issues)),
                "avgResponseTime": _average(
                    [t for t in map(response_time_days, dept_issues) if t is not None]
                ),
            }
        )
    department_performance.sort(key=lambda d: d["total"], reverse=True)

    reporters = Counter(i.reported_by or "unknown" for i in filtered)
    top_reporters = [
        {"email": email.split("@")[0], "fullEmail": email, "count": count}
        for email, count in reporters.most_common(TOP_N)
    ]

    areas = defaultdict(lambda: {"total": 0, "resolved": 0, "open": 0})
    for issue in filtered:
        entry = areas[area_from_address(issue.address or (issue.location or {}).get("address"))]
        entry["total"] += 1
        if issue.status == IssueStatus.RESOLVED:
            entry["resolved"] += 1
        else:
            entry["open"] += 1
    geographic_areas = sorted(
        (
            {"area": area, **counts, "resolveRate": _percent(counts["resolved"], counts["total"])}
            for area, counts in areas.items()
        ),
        key=lambda a: a["total"],
        reverse=True,
    )[:TOP_N]

    status_counts = Counter(str(i.status) for i in filtered)
    priority_counts = Counter(str(i.priority) for i in filtered)
    return AnalyticsReport(
        total_issues=len(filtered),
        resolved_issues=len(resolved),
        resolution_rate=_percent(len(resolved), len(filtered)),
        avg_response_time=_average(response_times),
        active_users=len({i.reported_by_id for i in filtered}),
        status_counts={s.value: status_counts[s.value] for s in IssueStatus},
        priority_counts={p.value: priority_counts[p.value] for p in IssuePriority},
        category_counts=dict(Counter(i.category for i in filtered).most_common(TOP_N)),
        daily_trends=[{"date": day, **counts} for day, counts in trends.items()],
        department_performance=department_performance,
        top_reporters=top_reporters,
        geographic_areas=geographic_areas,
    )
