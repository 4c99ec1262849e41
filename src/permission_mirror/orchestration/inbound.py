"""Operations that start, or cancel, workflows on behalf of callers.

Every workflow instance id starts with "{organisation_id}:", so all the work
of an organisation can be found, and terminated, by prefix.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import azure.durable_functions as df

from permission_mirror.orchestration.common import (
    DELETE_OBJECT,
    DELETE_OBJECT_PERMISSIONS,
    REFRESH_OBJECT,
    REFRESH_SUBSCRIPTION,
    REMOVE_ORGANISATION,
    RESUBSCRIBE_DRIVE,
    SYNC_SITES,
    UPDATE_ITEMS,
    organisation_prefix,
    sync_prefix,
)
from permission_mirror.orchestration.throttle import OP_RESET, STAGES, slots_entity_id
from permission_mirror.orchestration.notifications import (
    LIFECYCLE_MISSED,
    LIFECYCLE_REAUTHORIZATION_REQUIRED,
    LIFECYCLE_SUBSCRIPTION_REMOVED,
    ChangeNotification,
    LifecycleNotification,
    is_client_state_valid,
    parse_resource,
)
from permission_mirror.state.models import Organisation
from permission_mirror.state.store import StateStore

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (
    df.OrchestrationRuntimeStatus.Running,
    df.OrchestrationRuntimeStatus.Pending,
    df.OrchestrationRuntimeStatus.ContinuedAsNew,
)


def utc_timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now(UTC)).isoformat().replace("+00:00", "Z")


async def start_orchestration(
    client: df.DurableOrchestrationClient,
    name: str,
    instance_id: str,
    payload: dict[str, Any],
) -> bool:
    """Start an orchestration unless an instance with that id is still active.

    Returns:
        True when a new instance was started.
    """
    status = await client.get_status(instance_id)
    if status is not None and status.runtime_status in ACTIVE_STATUSES:
        logger.info(
            "[start_orchestration] instance already active; name:%s;instance_id:%s",
            name,
            instance_id,
        )
        return False
    await client.start_new(name, instance_id, payload)
    logger.info("[start_orchestration] started; name:%s;instance_id:%s", name, instance_id)
    return True


async def start_full_sync(
    client: df.DurableOrchestrationClient,
    organisation_id: str,
    is_first_sync: bool = True,
    now: datetime | None = None,
) -> str:
    """Start a full crawl of an organisation stamped with the current time."""
    sync_started_at = utc_timestamp(now)
    instance_id = f"{sync_prefix(organisation_id, sync_started_at)}:sites"
    await client.start_new(
        SYNC_SITES,
        instance_id,
        {
            "organisation_id": organisation_id,
            "is_first_sync": is_first_sync,
            "sync_started_at": sync_started_at,
            "cursor": None,
        },
    )
    logger.info(
        "[start_full_sync] full sync started; organisation_id:%s;is_first_sync:%s",
        organisation_id,
        is_first_sync,
    )
    return instance_id


async def start_incremental_sync(
    client: df.DurableOrchestrationClient,
    store: StateStore,
    organisation_id: str,
    site_id: str,
    drive_id: str,
    subscription_id: str,
    tenant_id: str,
) -> bool:
    """Start applying a drive's changes.

    While a run for the drive is still going, the drive is marked as having
    pending changes instead; the run starts over once it sees the mark. The
    start is tried once more after marking in case the run ended meanwhile.

    Returns:
        True when a new instance was started.
    """
    instance_id = f"{organisation_id}:update-items:{subscription_id}"
    payload = {
        "organisation_id": organisation_id,
        "tenant_id": tenant_id,
        "site_id": site_id,
        "drive_id": drive_id,
        "subscription_id": subscription_id,
        "cursor": None,
    }
    if await start_orchestration(client, UPDATE_ITEMS, instance_id, payload):
        return True
    store.mark_changes_pending(organisation_id, drive_id)
    return await start_orchestration(client, UPDATE_ITEMS, instance_id, payload)


async def _start_object_workflow(
    client: df.DurableOrchestrationClient,
    name: str,
    organisation_id: str,
    item_id: str,
    metadata: dict[str, str],
    **extra: Any,
) -> str:
    instance_id = f"{organisation_id}:{name}:{item_id}:{uuid.uuid4().hex}"
    await client.start_new(
        name,
        instance_id,
        {
            "organisation_id": organisation_id,
            "item_id": item_id,
            "site_id": metadata["siteId"],
            "drive_id": metadata["driveId"],
            **extra,
        },
    )
    return instance_id


async def refresh_object(
    client: df.DurableOrchestrationClient,
    organisation_id: str,
    item_id: str,
    metadata: dict[str, str],
) -> str:
    return await _start_object_workflow(
        client, REFRESH_OBJECT, organisation_id, item_id, metadata
    )


async def delete_object_permissions(
    client: df.DurableOrchestrationClient,
    organisation_id: str,
    item_id: str,
    metadata: dict[str, str],
    permission_ids: Sequence[str],
) -> str:
    return await _start_object_workflow(
        client,
        DELETE_OBJECT_PERMISSIONS,
        organisation_id,
        item_id,
        metadata,
        permission_ids=list(permission_ids),
    )


async def delete_object(
    client: df.DurableOrchestrationClient,
    organisation_id: str,
    item_id: str,
    metadata: dict[str, str],
) -> str:
    return await _start_object_workflow(client, DELETE_OBJECT, organisation_id, item_id, metadata)


async def handle_change_notifications(
    client: df.DurableOrchestrationClient,
    store: StateStore,
    notifications: Sequence[ChangeNotification],
) -> bool:
    """Start an incremental sync per notified drive.

    Returns:
        False, with nothing started, when the batch fails client-state
        validation.
    """
    stored = store.find_subscriptions((n.tenant_id, n.subscription_id) for n in notifications)
    if not is_client_state_valid(stored, notifications):
        return False

    by_subscription = {state.subscription_id: state for state in stored}
    for notification in notifications:
        parsed = parse_resource(notification.resource)
        if parsed is None:
            logger.warning(
                "[handle_change_notifications] malformed resource dropped; "
                "subscription_id:%s;resource:%s",
                notification.subscription_id,
                notification.resource,
            )
            continue
        site_id, drive_id = parsed
        await start_incremental_sync(
            client,
            store,
            by_subscription[notification.subscription_id].organisation_id,
            site_id,
            drive_id,
            notification.subscription_id,
            notification.tenant_id,
        )
    return True


async def handle_lifecycle_notifications(
    client: df.DurableOrchestrationClient,
    store: StateStore,
    notifications: Sequence[LifecycleNotification],
) -> bool:
    """React to subscription lifecycle events.

    reauthorizationRequired renews the subscription, subscriptionRemoved
    replaces it, and missed catches up on the drive's changes.

    Returns:
        False, with nothing started, when the batch fails client-state
        validation.
    """
    stored = store.find_subscriptions((n.tenant_id, n.subscription_id) for n in notifications)
    if not is_client_state_valid(stored, notifications):
        return False

    by_subscription = {state.subscription_id: state for state in stored}
    for notification in notifications:
        state = by_subscription[notification.subscription_id]
        payload = {
            "organisation_id": state.organisation_id,
            "subscription_id": state.subscription_id,
        }
        if notification.event == LIFECYCLE_REAUTHORIZATION_REQUIRED:
            await start_orchestration(
                client,
                REFRESH_SUBSCRIPTION,
                f"{state.organisation_id}:refresh-subscription:{state.subscription_id}",
                payload,
            )
        elif notification.event == LIFECYCLE_SUBSCRIPTION_REMOVED:
            await start_orchestration(
                client,
                RESUBSCRIBE_DRIVE,
                f"{state.organisation_id}:resubscribe-drive:{state.subscription_id}",
                payload,
            )
        elif notification.event == LIFECYCLE_MISSED:
            await start_incremental_sync(
                client,
                store,
                state.organisation_id,
                state.site_id,
                state.drive_id,
                state.subscription_id,
                notification.tenant_id,
            )
        else:
            logger.info(
                "[handle_lifecycle_notifications] ignoring event; event:%s;subscription_id:%s",
                notification.event,
                notification.subscription_id,
            )
    return True


async def cancel_organisation_workflows(
    client: df.DurableOrchestrationClient, organisation_id: str
) -> list[str]:
    """Terminate every active workflow of an organisation.

    The organisation's concurrency slots are cleared as well, since the
    terminated instances never give theirs back.

    Returns:
        Ids of the terminated instances.
    """
    prefix = organisation_prefix(organisation_id)
    statuses = await client.get_status_by(runtime_status=list(ACTIVE_STATUSES))
    terminated: list[str] = []
    for status in statuses:
        if status.instance_id.startswith(prefix):
            await client.terminate(status.instance_id, "organisation reinstalled or uninstalled")
            terminated.append(status.instance_id)
    for stage in STAGES:
        await client.signal_entity(slots_entity_id(organisation_id, stage), OP_RESET)
    if terminated:
        logger.info(
            "[cancel_organisation_workflows] workflows terminated; organisation_id:%s;count:%s",
            organisation_id,
            len(terminated),
        )
    return terminated


async def install_organisation(
    client: df.DurableOrchestrationClient,
    store: StateStore,
    organisation_id: str,
    tenant_id: str,
    region: str,
) -> str:
    """Record an installed organisation and start its first full sync."""
    await cancel_organisation_workflows(client, organisation_id)
    store.upsert_organisation(
        Organisation(id=organisation_id, tenant_id=tenant_id, region=region)
    )
    return await start_full_sync(client, organisation_id, is_first_sync=True)


async def uninstall_organisation(
    client: df.DurableOrchestrationClient,
    store: StateStore,
    organisation_id: str,
) -> str | None:
    """Cancel an organisation's workflows and start its teardown.

    Returns:
        The teardown instance id, or None when the organisation is unknown.
    """
    await cancel_organisation_workflows(client, organisation_id)
    if store.get_organisation(organisation_id) is None:
        logger.warning(
            "[uninstall_organisation] unknown organisation; organisation_id:%s", organisation_id
        )
        return None
    instance_id = f"{organisation_id}:remove-organisation:{utc_timestamp()}"
    await client.start_new(
        REMOVE_ORGANISATION, instance_id, {"organisation_id": organisation_id}
    )
    return instance_id
