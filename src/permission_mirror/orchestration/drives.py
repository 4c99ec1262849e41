"""Crawl every drive of one site."""

from __future__ import annotations

from collections.abc import Generator
from typing import TYPE_CHECKING, Any

from permission_mirror.orchestration.common import (
    LIST_DRIVES_PAGE,
    STATUS_COMPLETED,
    STATUS_INCOMPLETE,
    STATUS_ONGOING,
    SYNC_ITEMS,
    call_activity,
    log_info,
    sync_prefix,
    wait_for_children,
)
from permission_mirror.orchestration.throttle import STAGE_DRIVES, throttled

if TYPE_CHECKING:
    import azure.durable_functions as df

    from permission_mirror.config import AppConfig


def _list_page(
    context: df.DurableOrchestrationContext, config: AppConfig, payload: dict[str, Any]
) -> Generator[Any, Any, dict[str, Any]]:
    return (
        yield call_activity(
            context,
            config,
            LIST_DRIVES_PAGE,
            {
                "organisation_id": payload["organisation_id"],
                "site_id": payload["site_id"],
                "cursor": payload.get("cursor"),
            },
        )
    )


def sync_drives(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, dict[str, str]]:
    """Crawl one page of a site's drives, then continue with the next page.

    Input: {organisation_id, site_id, is_first_sync, sync_started_at, cursor,
    incomplete}. Completes with STATUS_INCOMPLETE when a drive crawl failed or
    timed out on any page.
    """
    payload = context.get_input()
    organisation_id = payload["organisation_id"]
    site_id = payload["site_id"]
    sync_started_at = payload["sync_started_at"]

    page = yield from throttled(
        context, config, organisation_id, STAGE_DRIVES, _list_page(context, config, payload)
    )
    prefix = sync_prefix(organisation_id, sync_started_at)
    children = [
        (
            SYNC_ITEMS,
            {
                "organisation_id": organisation_id,
                "site_id": site_id,
                "drive_id": drive_id,
                "is_first_sync": payload.get("is_first_sync", False),
                "sync_started_at": sync_started_at,
                "folder": None,
                "cursor": None,
            },
            f"{prefix}:items:{drive_id}:root",
        )
        for drive_id in page["ids"]
    ]
    log_info(
        context,
        "[sync_drives] crawling drives page; site_id:%s;drives:%s",
        site_id,
        len(children),
    )
    completed = yield from wait_for_children(
        context, children, config.sync_concurrency, config.wait_timeout_hours
    )
    incomplete = bool(payload.get("incomplete")) or not completed

    if page["next_cursor"]:
        context.continue_as_new(
            {**payload, "cursor": page["next_cursor"], "incomplete": incomplete}
        )
        return STATUS_ONGOING
    return STATUS_INCOMPLETE if incomplete else STATUS_COMPLETED
