"""Organisation teardown on uninstall."""

from __future__ import annotations

from collections.abc import Generator
from typing import TYPE_CHECKING, Any

from permission_mirror.orchestration.common import (
    DELETE_ORGANISATION_RECORDS,
    GET_ORGANISATION,
    LIST_DRIVE_SYNC_STATES,
    REMOVE_DRIVE_SUBSCRIPTION,
    STATUS_COMPLETED,
    UPDATE_CONNECTION_STATUS,
    NonRetriableError,
    call_activity,
    log_info,
    log_warning,
    wait_for_tasks,
)

if TYPE_CHECKING:
    import azure.durable_functions as df

    from permission_mirror.config import AppConfig


def remove_organisation(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, dict[str, str]]:
    """Tear down an organisation.

    Input: {organisation_id}.

    The platform connection is marked as errored first. Every provider
    subscription is then removed, and only once each removal has succeeded,
    failed or timed out are the local records deleted. A subscription left
    behind expires on its own and its notifications no longer match any
    stored state.
    """
    organisation_id = context.get_input()["organisation_id"]
    org_ref = {"organisation_id": organisation_id}

    organisation = yield call_activity(context, config, GET_ORGANISATION, org_ref)
    if organisation is None:
        raise NonRetriableError(f"Could not retrieve organisation; id={organisation_id}")

    yield call_activity(
        context, config, UPDATE_CONNECTION_STATUS, {**org_ref, "has_error": True}
    )

    states = yield call_activity(context, config, LIST_DRIVE_SYNC_STATES, org_ref)
    removed_all = yield from wait_for_tasks(
        context,
        [state["subscription_id"] for state in states],
        lambda subscription_id: call_activity(
            context,
            config,
            REMOVE_DRIVE_SUBSCRIPTION,
            {**org_ref, "subscription_id": subscription_id},
        ),
        config.sync_concurrency,
        config.wait_timeout_hours,
    )
    if not removed_all:
        log_warning(
            context,
            "[remove_organisation] not every subscription was removed; organisation_id:%s",
            organisation_id,
        )

    yield call_activity(context, config, DELETE_ORGANISATION_RECORDS, org_ref)
    log_info(
        context,
        "[remove_organisation] organisation removed; organisation_id:%s;subscriptions:%s",
        organisation_id,
        len(states),
    )
    return STATUS_COMPLETED
