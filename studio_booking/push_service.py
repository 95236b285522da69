"""
OneSignal push notifications.

Trainees are addressed by external id (their profile id); broadcast
alerts target the `role` tag set by the app on subscription.
"""
import logging
from typing import List, Optional

import requests

from . import settings

logger = logging.getLogger(__name__)


class PushNotConfigured(Exception):
    """No OneSignal REST API key is set"""


class PushError(Exception):
    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.details = details


def build_payload(
    title: str,
    message: str,
    target_user_ids: Optional[List[int]] = None,
    target_role: Optional[str] = None,
    url: Optional[str] = None,
) -> dict:
    payload = {
        "app_id": settings.ONESIGNAL_APP_ID,
        "headings": {"en": title, "he": title},
        "contents": {"en": message, "he": message},
    }

    if target_user_ids:
        payload["include_aliases"] = {"external_id": [str(uid) for uid in target_user_ids]}
        payload["target_channel"] = "push"
    else:
        # Administrators when nothing else is specified
        payload["filters"] = [
            {"field": "tag", "key": "role", "relation": "=", "value": target_role or "administrator"}
        ]

    if url:
        payload["url"] = url
    return payload


def send_push(payload: dict) -> dict:
    """POST a notification to OneSignal and return its JSON response"""
    if not settings.ONESIGNAL_REST_API_KEY:
        raise PushNotConfigured("Notification service not configured")

    response = requests.post(
        settings.ONESIGNAL_API_URL,
        json=payload,
        headers={
            "Content-Type": "application/json; charset=utf-8",
            "Authorization": f"Basic {settings.ONESIGNAL_REST_API_KEY}",
        },
        timeout=settings.PUSH_TIMEOUT_SECONDS,
    )
    data = response.json()

    # OneSignal may answer 200 with an "errors" list (e.g. unsubscribed user)
    if not response.ok or data.get("errors"):
        logger.error(f"OneSignal error: {data}")
        raise PushError("Failed to send notification", details=data.get("errors", data))

    logger.info(f"Notification {data.get('id')} sent to {data.get('recipients', 0)} recipients")
    return data


def grant_tickets_payload(user_id: int, amount: int) -> dict:
    message = (
        f"{amount} new tickets were added to your account! 🎉"
        if amount > 0
        else "Your ticket balance was updated."
    )
    payload = build_payload("Balance update", message, target_user_ids=[user_id])
    # High priority heads-up notification
    payload["priority"] = 10
    if settings.ONESIGNAL_ANDROID_CHANNEL_ID:
        payload["android_channel_id"] = settings.ONESIGNAL_ANDROID_CHANNEL_ID
    return payload


def notify_safely(payload: dict) -> bool:
    """Background variant: log failures instead of raising"""
    try:
        send_push(payload)
        return True
    except PushNotConfigured:
        logger.warning("⚠️ ONESIGNAL_REST_API_KEY is not set, push skipped")
    except (PushError, requests.RequestException, ValueError) as e:
        logger.error(f"❌ Push notification failed: {e}")
    return False


def notify_tickets_granted(user_id: int, amount: int) -> bool:
    return notify_safely(grant_tickets_payload(user_id, amount))


def notify_session_cancelled(user_ids: List[int], title: str) -> bool:
    if not user_ids:
        return False
    return notify_safely(build_payload(
        "Session cancelled",
        f"'{title}' was cancelled by the studio. Your ticket was returned.",
        target_user_ids=user_ids,
    ))
