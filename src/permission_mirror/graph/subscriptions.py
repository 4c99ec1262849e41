"""Graph change-notification subscriptions on drive roots."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta

from permission_mirror.graph.client import GraphApiError, GraphClient
from permission_mirror.graph.models import (
    FIELD_CLIENT_STATE,
    FIELD_EXPIRATION,
    FIELD_ID,
    Subscription,
)

logger = logging.getLogger(__name__)

CHANGE_TYPE_UPDATED = "updated"
EVENT_HANDLER_PATH = "/api/webhooks/microsoft/event-handler"
LIFECYCLE_PATH = "/api/webhooks/microsoft/lifecycle-notifications"


def drive_root_resource(site_id: str, drive_id: str) -> str:
    """Resource path a drive subscription watches."""
    return f"sites/{site_id}/drives/{drive_id}/root"


def expiration_from_now(days: int, now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp `days` after now."""
    base = now or datetime.now(UTC)
    return (base + timedelta(days=days)).isoformat().replace("+00:00", "Z")


class SubscriptionConnector:
    """Creates, renews and removes drive change subscriptions."""

    def __init__(
        self,
        graph_client: GraphClient,
        webhook_base_url: str,
        expiration_days: int = 25,
    ) -> None:
        self._graph = graph_client
        self._webhook_base_url = webhook_base_url.rstrip("/")
        self._expiration_days = expiration_days

    def create_subscription(self, site_id: str, drive_id: str) -> Subscription:
        """Subscribe to updates under a drive's root.

        A fresh random client state is generated per subscription; incoming
        notifications must echo it back.
        """
        client_state = str(uuid.uuid4())
        body = {
            "changeType": CHANGE_TYPE_UPDATED,
            "notificationUrl": f"{self._webhook_base_url}{EVENT_HANDLER_PATH}",
            "lifecycleNotificationUrl": f"{self._webhook_base_url}{LIFECYCLE_PATH}",
            "resource": drive_root_resource(site_id, drive_id),
            "expirationDateTime": expiration_from_now(self._expiration_days),
            "clientState": client_state,
        }
        response = self._graph.post("/subscriptions", body)
        subscription = Subscription(
            id=response[FIELD_ID],
            expires_at=response.get(FIELD_EXPIRATION, body["expirationDateTime"]),
            client_state=response.get(FIELD_CLIENT_STATE) or client_state,
        )
        logger.info(
            "[create_subscription] subscription created; drive_id:%s;subscription_id:%s",
            drive_id,
            subscription.id,
        )
        return subscription

    def renew_subscription(self, subscription_id: str) -> Subscription:
        """Push the expiry of a subscription forward."""
        expires_at = expiration_from_now(self._expiration_days)
        response = self._graph.patch(
            f"/subscriptions/{subscription_id}", {"expirationDateTime": expires_at}
        )
        return Subscription(
            id=response.get(FIELD_ID, subscription_id),
            expires_at=response.get(FIELD_EXPIRATION, expires_at),
            client_state=response.get(FIELD_CLIENT_STATE),
        )

    def remove_subscription(self, subscription_id: str) -> bool:
        """Delete a subscription.

        Returns:
            True when removed, False when it had already expired or been removed.
        """
        try:
            self._graph.delete(f"/subscriptions/{subscription_id}")
        except GraphApiError as exc:
            if exc.is_not_found:
                logger.info(
                    "[remove_subscription] subscription already gone; subscription_id:%s",
                    subscription_id,
                )
                return False
            raise
        return True
