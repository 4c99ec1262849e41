"""Full-sync entry point: crawl every site of an organisation."""

from __future__ import annotations

from collections.abc import Generator
from typing import TYPE_CHECKING, Any

from permission_mirror.orchestration.common import (
    DELETE_STALE_OBJECTS,
    GET_ORGANISATION,
    LIST_SITES_PAGE,
    STATUS_COMPLETED,
    STATUS_INCOMPLETE,
    STATUS_ONGOING,
    SYNC_DRIVES,
    NonRetriableError,
    call_activity,
    log_info,
    log_warning,
    sync_prefix,
    wait_for_children,
)

if TYPE_CHECKING:
    import azure.durable_functions as df

    from permission_mirror.config import AppConfig


def sync_sites(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, dict[str, str]]:
    """Crawl one page of sites, then continue with the next page.

    Input: {organisation_id, is_first_sync, sync_started_at, cursor,
    incomplete}.

    Once the last page has been crawled, every object the platform holds for
    the organisation that was not refreshed since sync_started_at is deleted.
    The sweep is skipped when any part of the crawl failed or timed out
    (`incomplete`), since objects of that part were not refreshed.
    """
    payload = context.get_input()
    organisation_id = payload["organisation_id"]
    sync_started_at = payload["sync_started_at"]

    organisation = yield call_activity(
        context, config, GET_ORGANISATION, {"organisation_id": organisation_id}
    )
    if organisation is None:
        raise NonRetriableError(f"Could not retrieve organisation; id={organisation_id}")

    page = yield call_activity(
        context,
        config,
        LIST_SITES_PAGE,
        {"organisation_id": organisation_id, "cursor": payload.get("cursor")},
    )
    prefix = sync_prefix(organisation_id, sync_started_at)
    children = [
        (
            SYNC_DRIVES,
            {
                "organisation_id": organisation_id,
                "site_id": site_id,
                "is_first_sync": payload.get("is_first_sync", False),
                "sync_started_at": sync_started_at,
                "cursor": None,
            },
            f"{prefix}:drives:{site_id}",
        )
        for site_id in page["ids"]
    ]
    log_info(
        context,
        "[sync_sites] crawling sites page; organisation_id:%s;sites:%s",
        organisation_id,
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

    if incomplete:
        log_warning(
            context,
            "[sync_sites] crawl incomplete, stale objects kept; organisation_id:%s",
            organisation_id,
        )
        return STATUS_INCOMPLETE

    yield call_activity(
        context,
        config,
        DELETE_STALE_OBJECTS,
        {"organisation_id": organisation_id, "synced_before": sync_started_at},
    )
    log_info(context, "[sync_sites] full sync completed; organisation_id:%s", organisation_id)
    return STATUS_COMPLETED
