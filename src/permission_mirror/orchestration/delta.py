"""Drive change-feed workflows.

initialize_delta runs once after a drive's crawl and only walks the feed to
its end, to capture the cursor incremental syncs resume from. update_items
runs on change notifications and applies what changed since that cursor.
The two never call each other; they meet only through the stored
DriveSyncState.
"""

from __future__ import annotations

from collections.abc import Generator
from typing import TYPE_CHECKING, Any

from permission_mirror.orchestration.common import (
    APPLY_DELTA_CHANGES,
    ESTABLISH_DRIVE_SUBSCRIPTION,
    FETCH_DELTA_PAGE,
    FIND_DRIVE_SYNC_STATE,
    GET_ORGANISATION,
    SAVE_DELTA_CURSOR,
    SAVE_DRIVE_SYNC_STATE,
    STATUS_COMPLETED,
    STATUS_ONGOING,
    TAKE_PENDING_CHANGES,
    NonRetriableError,
    call_activity,
    log_info,
)
from permission_mirror.orchestration.throttle import STAGE_DELTA, STAGE_UPDATE_ITEMS, throttled

if TYPE_CHECKING:
    import azure.durable_functions as df

    from permission_mirror.config import AppConfig


def _fetch_page(
    context: df.DurableOrchestrationContext, config: AppConfig, payload: dict[str, Any]
) -> Generator[Any, Any, dict[str, Any]]:
    return (
        yield call_activity(
            context,
            config,
            FETCH_DELTA_PAGE,
            {
                "organisation_id": payload["organisation_id"],
                "site_id": payload["site_id"],
                "drive_id": payload["drive_id"],
                "cursor": payload.get("cursor"),
                "is_first_sync": payload.get("is_first_sync", False),
            },
        )
    )


def _apply_page(
    context: df.DurableOrchestrationContext,
    config: AppConfig,
    payload: dict[str, Any],
    state: dict[str, Any],
) -> Generator[Any, Any, dict[str, Any]]:
    return (
        yield call_activity(
            context,
            config,
            APPLY_DELTA_CHANGES,
            {
                "organisation_id": state["organisation_id"],
                "site_id": payload["site_id"],
                "drive_id": payload["drive_id"],
                "cursor": payload.get("cursor") or state["delta_cursor"],
            },
        )
    )


def initialize_delta(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, dict[str, str]]:
    """Reach the newest delta cursor of a drive and subscribe to its changes.

    Input: {organisation_id, site_id, drive_id, is_first_sync, cursor}.
    """
    payload = context.get_input()
    organisation_id = payload["organisation_id"]
    site_id = payload["site_id"]
    drive_id = payload["drive_id"]

    organisation = yield call_activity(
        context, config, GET_ORGANISATION, {"organisation_id": organisation_id}
    )
    if organisation is None:
        raise NonRetriableError(f"Could not retrieve organisation; id={organisation_id}")

    page = yield from throttled(
        context, config, organisation_id, STAGE_DELTA, _fetch_page(context, config, payload)
    )
    if page["next_cursor"]:
        context.continue_as_new({**payload, "cursor": page["next_cursor"]})
        return STATUS_ONGOING
    if not page["delta_cursor"]:
        raise NonRetriableError(f"Delta pull returned no cursor; drive_id={drive_id}")

    drive_ref = {"organisation_id": organisation_id, "site_id": site_id, "drive_id": drive_id}
    subscription = yield call_activity(context, config, ESTABLISH_DRIVE_SUBSCRIPTION, drive_ref)
    yield call_activity(
        context,
        config,
        SAVE_DRIVE_SYNC_STATE,
        {**drive_ref, "subscription": subscription, "delta_cursor": page["delta_cursor"]},
    )
    log_info(
        context,
        "[initialize_delta] drive delta initialised; drive_id:%s;subscription_id:%s",
        drive_id,
        subscription["id"],
    )
    return STATUS_COMPLETED


def update_items(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, dict[str, str]]:
    """Apply one page of drive changes, then continue until the feed is drained.

    Input: {organisation_id, tenant_id, site_id, drive_id, subscription_id,
    cursor}. The stored delta cursor is only replaced once the last page has
    been applied. Notifications that arrived while this run was active leave
    a pending-changes marker; a run that finds one starts over from the
    cursor it just saved.
    """
    payload = context.get_input()
    site_id = payload["site_id"]
    drive_id = payload["drive_id"]

    state = yield call_activity(
        context,
        config,
        FIND_DRIVE_SYNC_STATE,
        {
            "tenant_id": payload["tenant_id"],
            "site_id": site_id,
            "drive_id": drive_id,
            "subscription_id": payload["subscription_id"],
        },
    )
    if state is None:
        raise NonRetriableError(
            f"Could not retrieve drive sync state; drive_id={drive_id};"
            f"subscription_id={payload['subscription_id']}"
        )
    organisation_id = state["organisation_id"]

    result = yield from throttled(
        context,
        config,
        organisation_id,
        STAGE_UPDATE_ITEMS,
        _apply_page(context, config, payload, state),
    )
    if result["next_cursor"]:
        context.continue_as_new({**payload, "cursor": result["next_cursor"]})
        return STATUS_ONGOING
    if not result["delta_cursor"]:
        raise NonRetriableError(f"Delta pull returned no cursor; drive_id={drive_id}")

    drive_ref = {"organisation_id": organisation_id, "drive_id": drive_id}
    yield call_activity(
        context,
        config,
        SAVE_DELTA_CURSOR,
        {**drive_ref, "delta_cursor": result["delta_cursor"]},
    )
    pending = yield call_activity(context, config, TAKE_PENDING_CHANGES, drive_ref)
    if pending:
        log_info(
            context,
            "[update_items] changes notified during the run, starting over; drive_id:%s",
            drive_id,
        )
        context.continue_as_new({**payload, "cursor": None})
        return STATUS_ONGOING

    log_info(
        context,
        "[update_items] drive changes applied; organisation_id:%s;drive_id:%s",
        organisation_id,
        drive_id,
    )
    return STATUS_COMPLETED
