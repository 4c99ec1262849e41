"""Scheduled fan-out: daily full syncs and subscription renewals."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta

import azure.durable_functions as df

from permission_mirror.orchestration.common import REFRESH_SUBSCRIPTION
from permission_mirror.orchestration.inbound import start_full_sync, start_orchestration
from permission_mirror.state.store import StateStore

logger = logging.getLogger(__name__)

# Graph emits up to 7 fractional digits; datetime accepts at most 6.
_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp as returned by Graph, or None."""
    try:
        parsed = datetime.fromisoformat(_EXCESS_FRACTION.sub(r"\1", value))
    except (TypeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


async def schedule_full_syncs(
    client: df.DurableOrchestrationClient, store: StateStore
) -> list[str]:
    """Start a non-first full sync for every installed organisation."""
    instance_ids = [
        await start_full_sync(client, organisation.id, is_first_sync=False)
        for organisation in store.list_organisations()
    ]
    logger.info("[schedule_full_syncs] full syncs started; count:%s", len(instance_ids))
    return instance_ids


async def schedule_subscription_renewals(
    client: df.DurableOrchestrationClient,
    store: StateStore,
    threshold_days: int,
    now: datetime | None = None,
) -> list[str]:
    """Renew every subscription expiring within threshold_days.

    Subscriptions with an unreadable expiry are renewed too.

    Returns:
        Ids of the subscriptions a renewal was started for.
    """
    deadline = (now or datetime.now(UTC)) + timedelta(days=threshold_days)
    renewed: list[str] = []
    for state in store.list_all_drive_states():
        expires_at = parse_timestamp(state.subscription_expires_at)
        if expires_at is None:
            logger.warning(
                "[schedule_subscription_renewals] unreadable expiry; subscription_id:%s;value:%s",
                state.subscription_id,
                state.subscription_expires_at,
            )
        elif expires_at > deadline:
            continue
        started = await start_orchestration(
            client,
            REFRESH_SUBSCRIPTION,
            f"{state.organisation_id}:refresh-subscription:{state.subscription_id}",
            {"organisation_id": state.organisation_id, "subscription_id": state.subscription_id},
        )
        if started:
            renewed.append(state.subscription_id)
    logger.info("[schedule_subscription_renewals] renewals started; count:%s", len(renewed))
    return renewed
