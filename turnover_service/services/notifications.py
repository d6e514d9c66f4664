"""Notification payloads and best-effort webhook dispatch."""

from __future__ import annotations

import logging

import httpx

from ..models import User
from ..settings import settings

_LOGGER = logging.getLogger(__name__)


def user_notification(
    user: User | None,
    title: str,
    message: str,
    *,
    kind: str,
    cleaning_id: int | None = None,
) -> dict:
    return {
        "user_id": user.id if user else None,
        "notify_target": user.notify_target if user else None,
        "title": title,
        "message": message,
        "category": "turnover",
        "kind": kind,
        "cleaning_id": cleaning_id,
    }


def dispatch(
    notifications: list[dict],
    *,
    webhook_url: str | None = None,
    timeout: float | None = None,
    client: httpx.Client | None = None,
) -> dict:
    """Post each notification to the webhook; failures are logged, never raised."""

    outcome = {"sent": 0, "failed": 0, "skipped": 0}
    url = webhook_url or settings.notify_webhook_url
    if not url:
        outcome["skipped"] = len(notifications)
        if notifications:
            _LOGGER.debug("No notification webhook configured; dropping %s notifications", len(notifications))
        return outcome

    owns_client = client is None
    http = client or httpx.Client(timeout=timeout or settings.notify_timeout)
    try:
        for item in notifications:
            if not item.get("notify_target"):
                outcome["skipped"] += 1
                continue
            try:
                response = http.post(url, json=item)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                outcome["failed"] += 1
                _LOGGER.warning(
                    "Notification %s for %s failed: %s",
                    item.get("kind"),
                    item.get("notify_target"),
                    exc,
                )
                continue
            outcome["sent"] += 1
    finally:
        if owns_client:
            http.close()
    return outcome
