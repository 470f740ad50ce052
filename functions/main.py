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


# Cloud functions for the JanSahyog backend - issue feed, upvotes and triage.
#
# This file containing Python cloud functions must be named main.py.
# See https://cloud.google.com/run/docs/write-functions#python for more info.

# Standard library imports
import json
import os
from dataclasses import asdict
from datetime import datetime
from typing import Optional

# Third-party library imports
from dacite import from_dict, Config
from firebase_admin import initialize_app, firestore
from firebase_functions import https_fn, logger, options
from firebase_functions.firestore_fn import (
    on_document_created,
    on_document_updated,
    Event,
    Change,
    DocumentSnapshot,
)
from google.api_core import exceptions
from google.cloud.firestore_v1 import SERVER_TIMESTAMP
import requests

# Local application imports
from backend.images import InvalidImageError, decode_base64_image
from backend.notifications import (
    ExpoPushClient,
    automatic_message,
    automatic_triggers,
    is_valid_push_token,
)
from models import api_config
from shared.api import CivicIssueDocument, InAppNotification, UpvoteResult
from shared.firebase_constants import (
    CIVIC_ISSUES_COLLECTION,
    USERS_COLLECTION,
    USER_NOTIFICATIONS_COLLECTION,
)
from shared.json_utils import convert_keys
from shared.types import NotificationType
from triage.categorize import triage_issue

MAX_INLINE_IMAGE_BYTES = 1024 * 1024  # Firestore document limit
EXPO_PUSH_URL = os.environ.get("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")

initialize_app()


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _to_issue_document(data: dict) -> CivicIssueDocument:
    return from_dict(
        data_class=CivicIssueDocument,
        data=convert_keys(data, "camel_to_snake"),
        config=Config(check_types=False),
    )


@https_fn.on_request(
    cors=options.CorsOptions(cors_origins="*", cors_methods=["get"]),
    memory=options.MemoryOption.MB_256,
)
def get_civic_issues(req: https_fn.Request) -> https_fn.Response:
    """
    Returns every civic issue, most recently updated first.
    """
    try:
        db = firestore.client()
        docs = list(
            db.collection(CIVIC_ISSUES_COLLECTION)
            .order_by("lastUpdated", direction=firestore.Query.DESCENDING)
            .stream()
        )
        if not docs:
            return https_fn.Response("No civic issues found.", status=404)

        issues = [{"id": doc.id, **doc.to_dict()} for doc in docs]
        return https_fn.Response(
            json.dumps(issues, default=_json_default),
            status=200,
            mimetype="application/json",
        )
    except Exception as e:
        logger.error(f"Error fetching civic issues: {e}")
        return https_fn.Response("Something went wrong.", status=500)


def _apply_upvote_toggle(transaction, doc_ref, user_id: str) -> UpvoteResult:
    """
    Adds or removes `user_id` from the issue's voters inside `transaction`.
    """
    snapshot = doc_ref.get(transaction=transaction)
    if not snapshot.exists:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.NOT_FOUND, "Issue does not exist!"
        )

    data = snapshot.to_dict() or {}
    upvoted_by = data.get("upvotedBy") or []
    upvotes = data.get("upvotes") or 0

    if user_id in upvoted_by:
        new_count = max(0, upvotes - 1)
        transaction.update(
            doc_ref,
            {
                "upvotedBy": firestore.ArrayRemove([user_id]),
                "upvotes": firestore.Increment(-1) if upvotes > 0 else 0,
            },
        )
        return UpvoteResult(success=True, upvoted=False, upvotes=new_count)

    transaction.update(
        doc_ref,
        {
            "upvotedBy": firestore.ArrayUnion([user_id]),
            "upvotes": firestore.Increment(1),
        },
    )
    return UpvoteResult(success=True, upvoted=True, upvotes=upvotes + 1)


@https_fn.on_call(memory=options.MemoryOption.MB_256)
def toggle_upvote(req: https_fn.CallableRequest) -> dict:
    """
    Toggles the caller's upvote on an issue.

    Args:
        req (https_fn.CallableRequest): The request, containing issueId.

    Returns:
        A dictionary representation of the UpvoteResult object.
    """
    if not req.auth:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.UNAUTHENTICATED,
            "You must be signed in to upvote.",
        )
    issue_id = (req.data or {}).get("issueId")
    if not issue_id:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Must specify issueId parameter.",
        )

    db = firestore.client()
    transaction = db.transaction()
    doc_ref = db.collection(CIVIC_ISSUES_COLLECTION).document(issue_id)
    try:
        result = firestore.transactional(_apply_upvote_toggle)(
            transaction, doc_ref, req.auth.uid
        )
    except https_fn.HttpsError:
        raise
    except exceptions.Aborted as e:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.ABORTED,
            f"Upvote contended, try again: {e}",
        )
    except exceptions.TooManyRequests as e:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.RESOURCE_EXHAUSTED,
            f"Firestore quota exceeded: {e}",
        )
    except Exception as e:
        logger.error(f"Error toggling upvote on {issue_id}: {e}")
        raise https_fn.HttpsError(https_fn.FunctionsErrorCode.INTERNAL, str(e))
    return convert_keys(asdict(result), "snake_to_camel")


def _inline_image_bytes(issue: CivicIssueDocument) -> Optional[bytes]:
    # imageUri is only usable when it is a data URI; device file URIs are not.
    encoded = issue.image_base64
    if not encoded and (issue.image_uri or "").startswith("data:"):
        encoded = issue.image_uri
    if not encoded:
        return None
    try:
        return decode_base64_image(encoded, MAX_INLINE_IMAGE_BYTES)
    except InvalidImageError as e:
        logger.warn(f"Skipping unreadable issue image: {e}")
        return None


def _triage_fields(data: dict) -> dict:
    """
    Runs triage over a stored issue and returns the camelCase fields to write back.
    """
    issue = _to_issue_document(data)
    result = triage_issue(
        issue.title or "",
        issue.description or "",
        category=issue.category or "",
        priority=issue.priority or "Medium",
        image_bytes=_inline_image_bytes(issue),
        api_key=api_config.DEFAULT_API_KEY,
    )
    fields = {
        "category": result.category,
        "priority": str(result.priority),
        "sentiment_score": result.sentiment_score,
    }
    if result.ai_analysis:
        fields["ai_analysis"] = asdict(result.ai_analysis)
    return convert_keys(fields, "snake_to_camel")


@on_document_created(
    timeout_sec=120,
    memory=options.MemoryOption.MB_512,
    document=CIVIC_ISSUES_COLLECTION + "/{issueId}",
)
def on_civic_issue_created(event: Event[DocumentSnapshot]) -> None:
    """
    Infers category, priority and sentiment for a newly reported issue.
    """
    if not event.data:
        return
    issue_id = event.params["issueId"]
    data = event.data.to_dict() or {}
    if data.get("sentimentScore") is not None:
        return

    try:
        fields = _triage_fields(data)
    except Exception as e:
        logger.error(f"Triage failed for issue {issue_id}: {e}")
        return
    fields["lastUpdated"] = SERVER_TIMESTAMP
    event.data.reference.update(fields)
    logger.info(
        f"Triaged issue {issue_id}: {fields['category']} / {fields['priority']}"
    )


def _notify_reporter(db, issue_id: str, issue: CivicIssueDocument, trigger: str) -> None:
    message = automatic_message(trigger, issue)
    if not message or not issue.reported_by_id:
        return
    user_ref = db.collection(USERS_COLLECTION).document(issue.reported_by_id)
    user_doc = user_ref.get()
    user = user_doc.to_dict() if user_doc.exists else {}
    if user.get("notificationsEnabled") is False:
        return
    if (user.get("notificationPreferences") or {}).get("issueUpdates") is False:
        return

    title, body = message
    notification = InAppNotification(
        title=title,
        body=body,
        type=NotificationType.ISSUE_UPDATE,
        created_at=SERVER_TIMESTAMP,
        data={"trigger": trigger, "issueId": issue_id},
        related_issue_id=issue_id,
    )
    user_ref.collection(USER_NOTIFICATIONS_COLLECTION).add(
        convert_keys(asdict(notification), "snake_to_camel")
    )

    token = user.get("pushToken")
    if is_valid_push_token(token):
        try:
            ExpoPushClient(EXPO_PUSH_URL).send(
                [
                    {
                        "to": token,
                        "sound": "default",
                        "title": title,
                        "body": body,
                        "data": {"issueId": issue_id, "type": str(NotificationType.ISSUE_UPDATE)},
                        "priority": "high",
                        "channelId": "default",
                    }
                ]
            )
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Push to {issue.reported_by_id} failed: {e}")


@on_document_updated(
    memory=options.MemoryOption.MB_256,
    document=CIVIC_ISSUES_COLLECTION + "/{issueId}",
)
def on_civic_issue_updated(event: Event[Change[DocumentSnapshot]]) -> None:
    """
    Notifies the reporter when their issue changes status, department or
    is escalated to Critical.
    """
    if not event.data.before or not event.data.after:
        return
    issue_id = event.params["issueId"]
    before = _to_issue_document(event.data.before.to_dict() or {})
    after = _to_issue_document(event.data.after.to_dict() or {})

    triggers = automatic_triggers(before, after)
    if not triggers:
        return
    db = firestore.client()
    for trigger in triggers:
        try:
            _notify_reporter(db, issue_id, after, trigger)
        except Exception as e:
            logger.error(f"Notification {trigger} for {issue_id} failed: {e}")
