# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================


"""
Duplicate detection for newly reported issues.

Scoring (0.0 to 1.0):
- Same category:                +0.4
- Within 100m:                  +0.3 scaled by closeness
- Similar title (word overlap): +0.3 scaled by Jaccard similarity

Only candidates reported within the last 7 days that are still open or in
progress are considered, and only scores >= 0.6 are reported.
"""

import logging
import math
import re
import time
from typing import Iterable, List, Optional

from backend.db import CommentRecord
from shared.types import CommentType, DuplicateMatch

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6_371_000
PROXIMITY_THRESHOLD_METERS = 100
TIME_WINDOW_DAYS = 7
MIN_DUPLICATE_SCORE = 0.6


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Returns distance in meters between two lat/lng points."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def title_words(title: Optional[str]) -> set[str]:
    return {w for w in re.split(r"\s+", (title or "").lower()) if len(w) > 2}


def duplicate_score(
    category: str,
    other_category: str,
    distance: float,
    words: set[str],
    other_words: set[str],
) -> float:
    score = 0.0
    if (category or "").lower() == (other_category or "").lower():
        score += 0.4
    if distance <= PROXIMITY_THRESHOLD_METERS:
        score += 0.3 * (1 - distance / PROXIMITY_THRESHOLD_METERS)
    union = words | other_words
    if union:
        score += 0.3 * (len(words & other_words) / len(union))
    return score


def find_duplicates(issue, candidates: Iterable, now: Optional[float] = None) -> List[DuplicateMatch]:
    """
    Finds likely duplicates of `issue` among `candidates`.

    Both are issue records exposing issue_id, title, category, latitude,
    longitude and reported_at (epoch seconds). Candidates should already be
    limited to unresolved issues. Results are sorted by score, best first.
    """
    if not issue.latitude or not issue.longitude:
        return []

    now = time.time() if now is None else now
    cutoff = now - TIME_WINDOW_DAYS * 86400
    words = title_words(issue.title)

    matches: List[DuplicateMatch] = []
    for other in candidates:
        if other.issue_id == issue.issue_id:
            continue
        if not other.latitude or not other.longitude:
            continue
        if other.reported_at < cutoff:
            continue

        distance = haversine_distance(
            issue.latitude, issue.longitude, other.latitude, other.longitude
        )
        score = duplicate_score(
            issue.category, other.category, distance, words, title_words(other.title)
        )
        if score >= MIN_DUPLICATE_SCORE:
            matches.append(
                DuplicateMatch(
                    issue_id=other.issue_id,
                    title=other.title or "",
                    score=round(score, 2),
                    distance=round(distance),
                    category=other.category or "",
                )
            )

    matches.sort(key=lambda m: m.score, reverse=True)
    return matches


def flag_as_duplicate(db, issue_id: str, match: DuplicateMatch) -> None:
    """Marks an issue as a likely duplicate and leaves a system comment."""
    db.update_issue(
        issue_id, duplicate_of_id=match.issue_id, duplicate_score=match.score
    )
    db.add_comment(
        CommentRecord(
            issue_id=issue_id,
            text=(
                f"Possible duplicate detected ({round(match.score * 100)}% match). "
                f"Original issue ID: {match.issue_id}"
            ),
            author="System",
            author_email="duplicate-detection@system",
            type=CommentType.ASSIGNMENT,
        )
    )
    logger.info(
        "Flagged issue %s as potential duplicate of %s (score: %s)",
        issue_id,
        match.issue_id,
        match.score,
    )


def clear_duplicate_flag(db, issue_id: str):
    """Clears the flag once an admin decides the issue is not a duplicate."""
    return db.update_issue(issue_id, duplicate_of_id=None, duplicate_score=None)
