"""Change subscription renewal and replacement."""

from __future__ import annotations

from collections.abc import Generator
from typing import TYPE_CHECKING, Any

from permission_mirror.orchestration.common import (
    CREATE_DRIVE_SUBSCRIPTION,
    GET_SUBSCRIPTION_STATE,
    RENEW_DRIVE_SUBSCRIPTION,
    SAVE_DRIVE_SYNC_STATE,
    STATUS_COMPLETED,
    NonRetriableError,
    call_activity,
    log_info,
)

if TYPE_CHECKING:
    import azure.durable_functions as df

    from permission_mirror.config import AppConfig


def _subscription_state(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, dict[str, Any]]:
    payload = context.get_input()
    state = yield call_activity(
        context,
        config,
        GET_SUBSCRIPTION_STATE,
        {
            "organisation_id": payload["organisation_id"],
            "subscription_id": payload["subscription_id"],
        },
    )
    if state is None:
        raise NonRetriableError(
            f"Could not retrieve subscription; organisation_id={payload['organisation_id']};"
            f"subscription_id={payload['subscription_id']}"
        )
    return state  # type: ignore[no-any-return]


def refresh_subscription(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, dict[str, str]]:
    """Extend the expiry of a drive subscription.

    Input: {organisation_id, subscription_id}.
    """
    state = yield from _subscription_state(context, config)
    renewed = yield call_activity(
        context,
        config,
        RENEW_DRIVE_SUBSCRIPTION,
        {
            "organisation_id": state["organisation_id"],
            "drive_id": state["drive_id"],
            "subscription_id": state["subscription_id"],
        },
    )
    log_info(
        context,
        "[refresh_subscription] subscription refreshed; subscription_id:%s;expires_at:%s",
        state["subscription_id"],
        renewed["expires_at"],
    )
    return STATUS_COMPLETED


def resubscribe_drive(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, dict[str, str]]:
    """Replace a subscription the provider removed, keeping the drive's cursor.

    Input: {organisation_id, subscription_id}.
    """
    state = yield from _subscription_state(context, config)
    drive_ref = {
        "organisation_id": state["organisation_id"],
        "site_id": state["site_id"],
        "drive_id": state["drive_id"],
    }
    subscription = yield call_activity(context, config, CREATE_DRIVE_SUBSCRIPTION, drive_ref)
    yield call_activity(
        context, config, SAVE_DRIVE_SYNC_STATE, {**drive_ref, "subscription": subscription}
    )
    log_info(
        context,
        "[resubscribe_drive] drive resubscribed; drive_id:%s;old:%s;new:%s",
        state["drive_id"],
        state["subscription_id"],
        subscription["id"],
    )
    return STATUS_COMPLETED
