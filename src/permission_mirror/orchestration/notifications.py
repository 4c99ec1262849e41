"""Parsing and client-state validation of Graph webhook notifications."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from permission_mirror.state.models import DriveSyncState

logger = logging.getLogger(__name__)

LIFECYCLE_REAUTHORIZATION_REQUIRED = "reauthorizationRequired"
LIFECYCLE_SUBSCRIPTION_REMOVED = "subscriptionRemoved"
LIFECYCLE_MISSED = "missed"


@dataclass(frozen=True)
class ChangeNotification:
    subscription_id: str
    tenant_id: str
    client_state: str | None
    resource: str


@dataclass(frozen=True)
class LifecycleNotification:
    subscription_id: str
    tenant_id: str
    client_state: str | None
    event: str


def _notification_values(body: Any) -> list[dict[str, Any]] | None:
    if not isinstance(body, dict):
        return None
    values = body.get("value")
    if not isinstance(values, list) or not values:
        return None
    if not all(
        isinstance(value, dict)
        and isinstance(value.get("subscriptionId"), str)
        and isinstance(value.get("tenantId"), str)
        for value in values
    ):
        return None
    return values


def parse_change_notifications(body: Any) -> list[ChangeNotification] | None:
    """Parse a change notification batch; None when the payload is malformed."""
    values = _notification_values(body)
    if values is None or not all(isinstance(value.get("resource"), str) for value in values):
        return None
    return [
        ChangeNotification(
            subscription_id=value["subscriptionId"],
            tenant_id=value["tenantId"],
            client_state=value.get("clientState"),
            resource=value["resource"],
        )
        for value in values
    ]


def parse_lifecycle_notifications(body: Any) -> list[LifecycleNotification] | None:
    """Parse a lifecycle notification batch; None when the payload is malformed."""
    values = _notification_values(body)
    if values is None or not all(isinstance(value.get("lifecycleEvent"), str) for value in values):
        return None
    return [
        LifecycleNotification(
            subscription_id=value["subscriptionId"],
            tenant_id=value["tenantId"],
            client_state=value.get("clientState"),
            event=value["lifecycleEvent"],
        )
        for value in values
    ]


def parse_resource(resource: str) -> tuple[str, str] | None:
    """Extract (site_id, drive_id) from "sites/{site}/drives/{drive}/root".

    A leading slash is tolerated; any other shape returns None.
    """
    segments = [segment for segment in resource.split("/") if segment]
    if (
        len(segments) != 5
        or segments[0] != "sites"
        or segments[2] != "drives"
        or segments[4] != "root"
    ):
        return None
    return segments[1], segments[3]


def is_client_state_valid(
    stored: Sequence[DriveSyncState],
    incoming: Sequence[ChangeNotification | LifecycleNotification],
) -> bool:
    """Check a notification batch against the stored subscriptions.

    Every subscription referenced by the batch must be stored locally, and
    every notification must carry that subscription's client state. One
    failure rejects the whole batch.
    """
    by_subscription = {state.subscription_id: state for state in stored}
    referenced = {notification.subscription_id for notification in incoming}
    if len(referenced) != len(by_subscription):
        logger.warning(
            "[is_client_state_valid] subscription count mismatch; incoming:%s;stored:%s",
            len(referenced),
            len(by_subscription),
        )
        return False
    for notification in incoming:
        state = by_subscription.get(notification.subscription_id)
        if state is None or state.subscription_client_state != notification.client_state:
            logger.warning(
                "[is_client_state_valid] client state mismatch; subscription_id:%s",
                notification.subscription_id,
            )
            return False
    return True
