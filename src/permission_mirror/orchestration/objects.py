"""On-demand operations on a single reported object.

Input of each workflow: {organisation_id, item_id, site_id, drive_id}, plus
permission_ids for delete_object_permissions.
"""

from __future__ import annotations

from collections.abc import Generator
from typing import TYPE_CHECKING, Any

from permission_mirror.orchestration.common import (
    GET_ORGANISATION,
    REMOVE_OBJECT,
    REMOVE_OBJECT_PERMISSIONS,
    SYNC_OBJECT,
    NonRetriableError,
    call_activity,
    run_activity,
)
from permission_mirror.orchestration.throttle import STAGE_OBJECTS, throttled

if TYPE_CHECKING:
    import azure.durable_functions as df

    from permission_mirror.config import AppConfig


def _run_for_object(
    context: df.DurableOrchestrationContext, config: AppConfig, activity: str
) -> Generator[Any, Any, Any]:
    payload = context.get_input()
    organisation = yield call_activity(
        context, config, GET_ORGANISATION, {"organisation_id": payload["organisation_id"]}
    )
    if organisation is None:
        raise NonRetriableError(
            f"Could not retrieve organisation; id={payload['organisation_id']}"
        )
    return (
        yield from throttled(
            context,
            config,
            payload["organisation_id"],
            STAGE_OBJECTS,
            run_activity(context, config, activity, payload),
        )
    )


def refresh_object(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, Any]:
    """Re-report an item, or drop it from the platform when it has nothing left."""
    return (yield from _run_for_object(context, config, SYNC_OBJECT))


def delete_object(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, Any]:
    """Delete an item from its drive and from the platform."""
    return (yield from _run_for_object(context, config, REMOVE_OBJECT))


def delete_object_permissions(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, Any]:
    """Delete permissions of an item.

    Returns the deleted, not-found and unexpectedly failed permission ids.
    """
    return (yield from _run_for_object(context, config, REMOVE_OBJECT_PERMISSIONS))
