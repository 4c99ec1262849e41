"""Recursive crawl of a drive's folders and files.

Each instance handles one page of one folder's children (the drive root when
no folder is given). Child folders get their own instance and are waited on
before the page itself is reported. The folder context carried between pages
holds the parent folder's permission ids, so permissions a child merely
inherits are never reported:

    {"id": folder id,
     "paginated": True once the folder's own permissions were fetched in full,
     "permissions": the folder's permission ids,
     "ancestors": ids of the folders above it, for the cycle and depth guard}
"""

from __future__ import annotations

from collections.abc import Generator
from typing import TYPE_CHECKING, Any

from permission_mirror.graph.models import DriveItem
from permission_mirror.orchestration.common import (
    GET_ORGANISATION,
    INITIALIZE_DELTA,
    LIST_ITEMS_PAGE,
    REPORT_ITEMS,
    START_WORKFLOW,
    STATUS_COMPLETED,
    STATUS_INCOMPLETE,
    STATUS_ONGOING,
    SYNC_ITEMS,
    NonRetriableError,
    call_activity,
    log_info,
    log_warning,
    sync_prefix,
    wait_for_children,
)
from permission_mirror.orchestration.throttle import STAGE_ITEMS, throttled
from permission_mirror.sync.inheritance import group_items

if TYPE_CHECKING:
    import azure.durable_functions as df

    from permission_mirror.config import AppConfig


def _child_folders(
    payload: dict[str, Any], folders: list[DriveItem], config: AppConfig
) -> list[tuple[str, dict[str, Any], str]]:
    folder = payload.get("folder")
    ancestors = [*folder.get("ancestors", []), folder["id"]] if folder else []
    prefix = sync_prefix(payload["organisation_id"], payload["sync_started_at"])
    children = []
    for child in folders:
        if child.id in ancestors or len(ancestors) >= config.max_folder_depth:
            continue
        children.append(
            (
                SYNC_ITEMS,
                {
                    "organisation_id": payload["organisation_id"],
                    "site_id": payload["site_id"],
                    "drive_id": payload["drive_id"],
                    "is_first_sync": payload.get("is_first_sync", False),
                    "sync_started_at": payload["sync_started_at"],
                    "folder": {
                        "id": child.id,
                        "paginated": False,
                        "permissions": [],
                        "ancestors": ancestors,
                    },
                    "cursor": None,
                },
                f"{prefix}:items:{payload['drive_id']}:{child.id}",
            )
        )
    return children


def _list_page(
    context: df.DurableOrchestrationContext, config: AppConfig, payload: dict[str, Any]
) -> Generator[Any, Any, dict[str, Any]]:
    folder = payload.get("folder")
    return (
        yield call_activity(
            context,
            config,
            LIST_ITEMS_PAGE,
            {
                "organisation_id": payload["organisation_id"],
                "site_id": payload["site_id"],
                "drive_id": payload["drive_id"],
                "folder_id": folder["id"] if folder else None,
                "cursor": payload.get("cursor"),
            },
        )
    )


def _report_page(
    context: df.DurableOrchestrationContext,
    config: AppConfig,
    payload: dict[str, Any],
    items: list[dict[str, Any]],
) -> Generator[Any, Any, dict[str, Any]]:
    return (
        yield call_activity(
            context,
            config,
            REPORT_ITEMS,
            {
                "organisation_id": payload["organisation_id"],
                "site_id": payload["site_id"],
                "drive_id": payload["drive_id"],
                "folder": payload.get("folder"),
                "items": items,
            },
        )
    )


def sync_items(
    context: df.DurableOrchestrationContext, config: AppConfig
) -> Generator[Any, Any, dict[str, str]]:
    """Crawl and report one page of a folder's children.

    Input: {organisation_id, site_id, drive_id, is_first_sync,
    sync_started_at, folder, cursor, incomplete}.

    Listing and reporting each hold one of the organisation's item slots;
    waiting on child folders holds none. When the last page of a drive's
    top-level walk is done, delta initialisation is started for the drive.
    Completes with STATUS_INCOMPLETE when a child folder crawl failed or
    timed out on any page.
    """
    payload = context.get_input()
    organisation_id = payload["organisation_id"]
    site_id = payload["site_id"]
    drive_id = payload["drive_id"]
    folder = payload.get("folder")

    organisation = yield call_activity(
        context, config, GET_ORGANISATION, {"organisation_id": organisation_id}
    )
    if organisation is None:
        raise NonRetriableError(f"Could not retrieve organisation; id={organisation_id}")

    page = yield from throttled(
        context, config, organisation_id, STAGE_ITEMS, _list_page(context, config, payload)
    )

    folders, _ = group_items(DriveItem.from_dict(data) for data in page["items"])
    children = _child_folders(payload, folders, config)
    if len(children) < len(folders):
        log_warning(
            context,
            "[sync_items] skipped folders past the depth limit or in a cycle; "
            "drive_id:%s;folder_id:%s;skipped:%s",
            drive_id,
            folder["id"] if folder else None,
            len(folders) - len(children),
        )
    completed = yield from wait_for_children(
        context, children, config.items_sync_concurrency, config.wait_timeout_hours
    )
    incomplete = bool(payload.get("incomplete")) or not completed

    report = yield from throttled(
        context,
        config,
        organisation_id,
        STAGE_ITEMS,
        _report_page(context, config, payload, page["items"]),
    )

    if page["next_cursor"]:
        next_folder = None
        if folder:
            next_folder = {
                **folder,
                "paginated": bool(folder.get("paginated") or report["parent_paginated"]),
                "permissions": report["parent_permissions"],
            }
        context.continue_as_new(
            {
                **payload,
                "folder": next_folder,
                "cursor": page["next_cursor"],
                "incomplete": incomplete,
            }
        )
        return STATUS_ONGOING

    if folder is None:
        # Only the newest cursor is needed here, so the ids-only feed is enough.
        yield call_activity(
            context,
            config,
            START_WORKFLOW,
            {
                "name": INITIALIZE_DELTA,
                "instance_id": (
                    f"{sync_prefix(organisation_id, payload['sync_started_at'])}:delta:{drive_id}"
                ),
                "input": {
                    "organisation_id": organisation_id,
                    "site_id": site_id,
                    "drive_id": drive_id,
                    "is_first_sync": True,
                    "cursor": None,
                },
            },
        )
        log_info(
            context,
            "[sync_items] drive crawl completed; organisation_id:%s;drive_id:%s",
            organisation_id,
            drive_id,
        )
    return STATUS_INCOMPLETE if incomplete else STATUS_COMPLETED
