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
Category and priority inference for newly reported issues.

Photos are labeled by the vision model and the report text is scored for
sentiment. When no model key is configured, keyword tables stand in for both.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from models import gemini
from shared.constants import DEFAULT_CATEGORY, KNOWN_CATEGORIES
from shared.types import (
    PRIORITY_ORDER,
    AiAnalysis,
    IssuePriority,
    Severity,
    TriageResult,
)

logger = logging.getLogger(__name__)

# A citizen's "Other" is only overridden by a reasonably confident guess.
MIN_RECATEGORIZE_CONFIDENCE = 0.6
NEGATIVE_SENTIMENT_ESCALATION = -0.6

CATEGORY_KEYWORDS = {
    "garbage": "Garbage",
    "trash": "Garbage",
    "waste": "Garbage",
    "litter": "Garbage",
    "dump": "Garbage",
    "water": "Water Leak",
    "leak": "Water Leak",
    "flooding": "Water Leak",
    "sewage": "Water Leak",
    "drain": "Water Leak",
    "road": "Roads",
    "pothole": "Roads",
    "crack": "Roads",
    "pavement": "Roads",
    "asphalt": "Roads",
    "light": "Streetlight",
    "streetlight": "Streetlight",
    "lamp": "Streetlight",
    "pole": "Streetlight",
    "pollution": "Pollution",
    "smoke": "Pollution",
    "air": "Pollution",
    "dust": "Pollution",
}

HAZARD_KEYWORDS = (
    "fire",
    "gas",
    "collapse",
    "flood",
    "electrocut",
    "live wire",
    "sinkhole",
    "explosion",
)

NEGATIVE_WORDS = frozenset(
    {
        "dangerous",
        "terrible",
        "awful",
        "urgent",
        "broken",
        "unsafe",
        "accident",
        "injured",
        "horrible",
        "disgusting",
        "stinks",
        "worst",
        "never",
        "again",
        "ignored",
    }
)
POSITIVE_WORDS = frozenset({"thanks", "thank", "fixed", "good", "great", "appreciate"})

SEVERITY_TO_PRIORITY = {
    Severity.LOW: IssuePriority.LOW,
    Severity.MEDIUM: IssuePriority.MEDIUM,
    Severity.HIGH: IssuePriority.HIGH,
    Severity.CRITICAL: IssuePriority.CRITICAL,
}

ANALYSIS_PROMPT = f"""You are a civic issue classifier for a city complaint system. Analyze this image of a civic issue and respond ONLY with a valid JSON object (no markdown, no code fences).

Categories: {", ".join(KNOWN_CATEGORIES)}

Respond with this exact JSON structure:
{{"suggestedCategory":"<one of the categories>","confidence":0.85,"description":"<one sentence describing the issue>","severity":"<low|medium|high|critical>","tags":["tag1","tag2"]}}

Rules:
- confidence should be between 0.0 and 1.0
- severity: low (minor inconvenience), medium (needs attention), high (safety concern), critical (immediate danger)
- tags: 2-5 keywords describing what you see
- If unsure about category, use "Other" with lower confidence"""

SENTIMENT_PROMPT = """Rate the sentiment of this citizen complaint on a scale from -1.0 (very negative, distressed) to 1.0 (very positive). Respond with JSON only.

Title: {title}
Description: {description}"""


class SentimentScore(BaseModel):
    score: float = Field(ge=-1.0, le=1.0)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalize_category(value: Optional[str]) -> str:
    """Maps free-form labels onto the known category list."""
    if not value:
        return DEFAULT_CATEGORY
    for category in KNOWN_CATEGORIES:
        if category.lower() == value.strip().lower():
            return category
    return CATEGORY_KEYWORDS.get(value.strip().lower(), DEFAULT_CATEGORY)


def fallback_analysis() -> AiAnalysis:
    return AiAnalysis(
        suggested_category=DEFAULT_CATEGORY,
        confidence=0.0,
        description="AI analysis could not parse the image",
        severity=Severity.MEDIUM,
        tags=[],
        analyzed_at=datetime.now(timezone.utc).isoformat(),
    )


def parse_analysis_response(text: str) -> AiAnalysis:
    """Parses the model's JSON answer; unparsable output yields a neutral fallback."""
    cleaned = re.sub(r"```(?:json)?\s*", "", text or "").strip()
    try:
        parsed = json.loads(cleaned)
        severity = str(parsed.get("severity", Severity.MEDIUM)).lower()
        if severity not in {s.value for s in Severity}:
            severity = Severity.MEDIUM
        tags = parsed.get("tags") or []
        return AiAnalysis(
            suggested_category=normalize_category(parsed.get("suggestedCategory")),
            confidence=_clamp(float(parsed.get("confidence", 0)), 0.0, 1.0),
            description=str(parsed.get("description", "")),
            severity=severity,
            tags=[str(tag) for tag in tags][:5],
            analyzed_at=datetime.now(timezone.utc).isoformat(),
        )
    except (ValueError, TypeError, AttributeError):
        logger.error("Failed to parse Gemini response: %s", text)
        return fallback_analysis()


def analyze_issue_image(image_bytes: bytes, api_key: str | None = None) -> AiAnalysis:
    text = gemini.call_predict_with_image(ANALYSIS_PROMPT, image_bytes, api_key=api_key)
    return parse_analysis_response(text)


def keyword_category(text: str) -> tuple[str, float]:
    """Best keyword-matched category for the text and a rough confidence."""
    words = re.findall(r"[a-z]+", (text or "").lower())
    hits: dict[str, int] = {}
    for word in words:
        category = CATEGORY_KEYWORDS.get(word)
        if category:
            hits[category] = hits.get(category, 0) + 1
    if not hits:
        return DEFAULT_CATEGORY, 0.0
    category = max(hits, key=lambda c: (hits[c], -KNOWN_CATEGORIES.index(c)))
    return category, min(0.9, 0.5 + 0.15 * hits[category])


def keyword_sentiment(text: str) -> float:
    words = re.findall(r"[a-z]+", (text or "").lower())
    if not words:
        return 0.0
    negatives = sum(1 for w in words if w in NEGATIVE_WORDS)
    positives = sum(1 for w in words if w in POSITIVE_WORDS)
    if negatives == positives == 0:
        return 0.0
    return round(_clamp((positives - negatives) / (positives + negatives + 1), -1.0, 1.0), 2)


def score_sentiment(title: str, description: str, api_key: str | None = None) -> float:
    result = gemini.call_predict_with_schema(
        SENTIMENT_PROMPT.format(title=title, description=description),
        SentimentScore,
        api_key=api_key,
    )
    if isinstance(result, list):
        result = result[0]
    return round(_clamp(float(result.score), -1.0, 1.0), 2)


def has_hazard(text: str) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in HAZARD_KEYWORDS)


def escalate(priority: str, steps: int = 1) -> IssuePriority:
    index = PRIORITY_ORDER.index(IssuePriority(priority))
    return PRIORITY_ORDER[min(len(PRIORITY_ORDER) - 1, index + steps)]


def infer_priority(
    current: str,
    text: str,
    sentiment_score: float,
    severity: Optional[str] = None,
) -> IssuePriority:
    """
    Combines photo severity, hazard keywords and sentiment into a priority.

    The result is never lower than the priority the citizen picked.
    """
    try:
        current_priority = IssuePriority(current)
    except ValueError:
        current_priority = IssuePriority.MEDIUM

    inferred = SEVERITY_TO_PRIORITY.get(severity, current_priority)
    if has_hazard(text):
        inferred = IssuePriority.CRITICAL
    elif sentiment_score <= NEGATIVE_SENTIMENT_ESCALATION:
        inferred = escalate(inferred)

    return max(
        current_priority, inferred, key=lambda p: PRIORITY_ORDER.index(p)
    )


def choose_category(current: str, suggested: str, confidence: float) -> str:
    # The reporter's own label wins unless it is empty or the catch-all.
    current = (current or "").strip()
    for category in KNOWN_CATEGORIES:
        if category.lower() == current.lower():
            current = category
            break
    if current and current != DEFAULT_CATEGORY:
        return current
    if suggested != DEFAULT_CATEGORY and confidence >= MIN_RECATEGORIZE_CONFIDENCE:
        return suggested
    return DEFAULT_CATEGORY


def triage_issue(
    title: str,
    description: str,
    category: str = "",
    priority: str = IssuePriority.MEDIUM,
    image_bytes: Optional[bytes] = None,
    api_key: str | None = None,
) -> TriageResult:
    """
    Infers category, priority and sentiment for one issue.

    Model failures are logged and the keyword heuristics are used instead.
    """
    text = f"{title}\n{description}"
    use_model = gemini.has_api_key(api_key)

    analysis: Optional[AiAnalysis] = None
    if use_model and image_bytes:
        try:
            analysis = analyze_issue_image(image_bytes, api_key=api_key)
        except Exception as e:
            logger.exception("Image analysis failed: %s", e)

    sentiment = None
    if use_model:
        try:
            sentiment = score_sentiment(title, description, api_key=api_key)
        except Exception as e:
            logger.exception("Sentiment analysis failed: %s", e)
    if sentiment is None:
        sentiment = keyword_sentiment(text)

    if analysis and analysis.confidence > 0:
        suggested, confidence = analysis.suggested_category, analysis.confidence
    else:
        suggested, confidence = keyword_category(text)

    return TriageResult(
        category=choose_category(category, suggested, confidence),
        priority=infer_priority(
            priority,
            text,
            sentiment,
            severity=analysis.severity if analysis else None,
        ),
        sentiment_score=sentiment,
        ai_analysis=analysis,
    )
