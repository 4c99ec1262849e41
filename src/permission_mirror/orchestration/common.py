"""Shared pieces of the durable orchestrators: names, retries, bounded waits."""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator, Sequence
from datetime import timedelta
from typing import TYPE_CHECKING, Any, TypeVar

import azure.durable_functions as df

from permission_mirror.sync.inheritance import chunked

if TYPE_CHECKING:
    from permission_mirror.config import AppConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Orchestrator function names
SYNC_SITES = "sync_sites"
SYNC_DRIVES = "sync_drives"
SYNC_ITEMS = "sync_items"
INITIALIZE_DELTA = "initialize_delta"
UPDATE_ITEMS = "update_items"
REFRESH_SUBSCRIPTION = "refresh_subscription"
RESUBSCRIBE_DRIVE = "resubscribe_drive"
REMOVE_ORGANISATION = "remove_organisation"
REFRESH_OBJECT = "refresh_object"
DELETE_OBJECT = "delete_object"
DELETE_OBJECT_PERMISSIONS = "delete_object_permissions"

# Activity function names
GET_ORGANISATION = "get_organisation"
LIST_SITES_PAGE = "list_sites_page"
LIST_DRIVES_PAGE = "list_drives_page"
LIST_ITEMS_PAGE = "list_items_page"
REPORT_ITEMS = "report_items"
DELETE_STALE_OBJECTS = "delete_stale_objects"
FETCH_DELTA_PAGE = "fetch_delta_page"
FIND_DRIVE_SYNC_STATE = "find_drive_sync_state"
APPLY_DELTA_CHANGES = "apply_delta_changes"
SAVE_DELTA_CURSOR = "save_delta_cursor"
TAKE_PENDING_CHANGES = "take_pending_changes"
ESTABLISH_DRIVE_SUBSCRIPTION = "establish_drive_subscription"
CREATE_DRIVE_SUBSCRIPTION = "create_drive_subscription"
SAVE_DRIVE_SYNC_STATE = "save_drive_sync_state"
GET_SUBSCRIPTION_STATE = "get_subscription_state"
RENEW_DRIVE_SUBSCRIPTION = "renew_drive_subscription"
LIST_DRIVE_SYNC_STATES = "list_drive_sync_states"
REMOVE_DRIVE_SUBSCRIPTION = "remove_drive_subscription"
UPDATE_CONNECTION_STATUS = "update_connection_status"
DELETE_ORGANISATION_RECORDS = "delete_organisation_records"
SYNC_OBJECT = "sync_object"
REMOVE_OBJECT = "remove_object"
REMOVE_OBJECT_PERMISSIONS = "remove_object_permissions"
START_WORKFLOW = "start_workflow"

STATUS_ONGOING = {"status": "ongoing"}
STATUS_COMPLETED = {"status": "completed"}
STATUS_INCOMPLETE = {"status": "incomplete"}


class NonRetriableError(Exception):
    """The workflow can never succeed; fail the instance without retrying."""


def retry_options(config: AppConfig) -> df.RetryOptions:
    """Retry policy applied to every activity call."""
    return df.RetryOptions(
        first_retry_interval_in_milliseconds=config.activity_retry_interval_ms,
        max_number_of_attempts=config.activity_max_attempts,
    )


def call_activity(
    context: df.DurableOrchestrationContext, config: AppConfig, name: str, payload: Any
) -> Any:
    """Schedule an activity under the configured retry policy."""
    return context.call_activity_with_retry(name, retry_options(config), payload)


def run_activity(
    context: df.DurableOrchestrationContext, config: AppConfig, name: str, payload: Any
) -> Generator[Any, Any, Any]:
    """call_activity as a step usable with `yield from`."""
    return (yield call_activity(context, config, name, payload))


def log_info(context: df.DurableOrchestrationContext, msg: str, *args: Any) -> None:
    """Log once per orchestration step, not on every replay."""
    if not context.is_replaying:
        logger.info(msg, *args)


def log_warning(context: df.DurableOrchestrationContext, msg: str, *args: Any) -> None:
    if not context.is_replaying:
        logger.warning(msg, *args)


def wait_for_tasks(
    context: df.DurableOrchestrationContext,
    items: Sequence[T],
    start: Callable[[T], Any],
    batch_size: int,
    timeout_hours: int,
) -> Generator[Any, Any, bool]:
    """Start tasks in batches, waiting on each batch with a deadline.

    Every task of a batch is waited on individually, so one failing task
    neither hides the others' outcome nor lets the next batch start while
    they are still running. A batch that does not finish before the deadline
    is logged and left behind; the caller carries on with the next batch.

    Args:
        context: Orchestration context of the caller.
        items: One element per task to start.
        start: Schedules the task for one element.
        batch_size: Tasks started together before waiting.
        timeout_hours: Longest wait on one batch before moving on.

    Returns:
        True when every task succeeded before its batch deadline and none
        reported STATUS_INCOMPLETE.
    """
    all_completed = True
    for batch in chunked(items, batch_size):
        pending = [start(item) for item in batch]
        deadline = context.current_utc_datetime + timedelta(hours=timeout_hours)
        timer = context.create_timer(deadline)
        while pending:
            winner = yield context.task_any([*pending, timer])
            if winner is timer:
                break
            pending = [task for task in pending if task is not winner]
            if isinstance(winner.result, Exception):
                all_completed = False
                log_warning(
                    context,
                    "[wait_for_tasks] task failed; instance_id:%s;error:%s",
                    context.instance_id,
                    winner.result,
                )
            elif winner.result == STATUS_INCOMPLETE:
                all_completed = False
        if pending:
            all_completed = False
            log_warning(
                context,
                "[wait_for_tasks] batch did not complete in time; instance_id:%s;pending:%s",
                context.instance_id,
                len(pending),
            )
        else:
            timer.cancel()
    return all_completed


def wait_for_children(
    context: df.DurableOrchestrationContext,
    children: Sequence[tuple[str, dict[str, Any], str]],
    batch_size: int,
    timeout_hours: int,
) -> Generator[Any, Any, bool]:
    """Run child orchestrations, given as (name, input, instance id), in bounded batches."""
    return (
        yield from wait_for_tasks(
            context,
            children,
            lambda child: context.call_sub_orchestrator(child[0], child[1], child[2]),
            batch_size,
            timeout_hours,
        )
    )


def sync_prefix(organisation_id: str, sync_started_at: str) -> str:
    """Instance id prefix shared by every workflow of one full sync."""
    return f"{organisation_id}:{sync_started_at}"


def organisation_prefix(organisation_id: str) -> str:
    """Instance id prefix of every workflow acting for an organisation."""
    return f"{organisation_id}:"
