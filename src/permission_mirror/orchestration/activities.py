"""Activity implementations: every unit of I/O the orchestrators schedule.

Each public method of SyncActivities takes one JSON-serialisable payload dict
and returns a JSON-serialisable result, so it can be registered as a durable
activity function as-is. Activities are retried by the orchestrators, so each
must be safe to run more than once.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

from permission_mirror.graph.client import GraphApiError, graph_client_for_tenant
from permission_mirror.graph.drives import DriveConnector
from permission_mirror.graph.models import ROOT_ITEM_NAME, DriveItem
from permission_mirror.graph.subscriptions import SubscriptionConnector
from permission_mirror.platform_api.client import PlatformClient, platform_client_from_config
from permission_mirror.state.models import DriveSyncState, Organisation
from permission_mirror.state.store import StateStore, state_store_from_config
from permission_mirror.sync.inheritance import (
    ItemPermissions,
    chunked,
    partition_delta,
    reconcile_against_siblings,
    strip_inherited,
)
from permission_mirror.sync.objects import build_reportable_objects
from permission_mirror.sync.permissions import parse_permission

if TYPE_CHECKING:
    from permission_mirror.config import AppConfig

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[Organisation], DriveConnector]
SubscriptionsFactory = Callable[[Organisation], SubscriptionConnector]
PlatformFactory = Callable[[Organisation], PlatformClient]


class StateNotFoundError(LookupError):
    """Stored state an activity works on is missing.

    Activities fail with this like with any other error, so the retry policy
    applies. Orchestrators look the state up first and stop without retrying
    when it is gone.
    """


class SyncActivities:
    """I/O steps of the sync workflows, bound to their collaborators."""

    def __init__(
        self,
        store: StateStore,
        connector_for: ConnectorFactory,
        subscriptions_for: SubscriptionsFactory,
        platform_for: PlatformFactory,
        permissions_chunk_size: int = 15,
    ) -> None:
        """Initialise the activities.

        Args:
            store: Organisation and drive sync state store.
            connector_for: Builds a drive connector for an organisation's tenant.
            subscriptions_for: Builds a subscription connector for an organisation.
            platform_for: Builds a platform client for an organisation.
            permissions_chunk_size: Items whose permissions are fetched at once.
        """
        self._store = store
        self._connector_for = connector_for
        self._subscriptions_for = subscriptions_for
        self._platform_for = platform_for
        self._permissions_chunk_size = permissions_chunk_size

    def _organisation(self, organisation_id: str) -> Organisation:
        organisation = self._store.get_organisation(organisation_id)
        if organisation is None:
            raise StateNotFoundError(f"Could not retrieve organisation; id={organisation_id}")
        return organisation

    def _fetch_permissions(
        self,
        connector: DriveConnector,
        site_id: str,
        drive_id: str,
        items: Sequence[DriveItem],
    ) -> tuple[list[ItemPermissions], list[str]]:
        """Fetch and parse the full permission set of every item, chunk by chunk.

        Returns:
            A tuple of (items with their permissions, ids of vanished items).
        """
        entries: list[ItemPermissions] = []
        vanished: list[str] = []
        if not items:
            return entries, vanished
        with ThreadPoolExecutor(max_workers=self._permissions_chunk_size) as pool:
            for chunk in chunked(items, self._permissions_chunk_size):
                results = list(
                    pool.map(
                        lambda item: connector.list_all_permissions(site_id, drive_id, item.id),
                        chunk,
                    )
                )
                for item, raw_permissions in zip(chunk, results, strict=True):
                    if raw_permissions is None:
                        vanished.append(item.id)
                        continue
                    entries.append(
                        ItemPermissions(
                            item=item,
                            permissions=[parse_permission(raw) for raw in raw_permissions],
                        )
                    )
        return entries, vanished

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_organisation(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        organisation = self._store.get_organisation(payload["organisation_id"])
        return organisation.to_dict() if organisation is not None else None

    def find_drive_sync_state(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        state = self._store.find_drive_state(
            tenant_id=payload["tenant_id"],
            site_id=payload["site_id"],
            drive_id=payload["drive_id"],
            subscription_id=payload["subscription_id"],
        )
        return state.to_dict() if state is not None else None

    def get_subscription_state(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        state = self._store.get_subscription_state(
            payload["organisation_id"], payload["subscription_id"]
        )
        return state.to_dict() if state is not None else None

    def list_drive_sync_states(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
        states = self._store.list_drive_states(payload["organisation_id"])
        return [state.to_dict() for state in states]

    # ------------------------------------------------------------------
    # Full crawl
    # ------------------------------------------------------------------

    def list_sites_page(self, payload: dict[str, Any]) -> dict[str, Any]:
        connector = self._connector_for(self._organisation(payload["organisation_id"]))
        page = connector.list_sites(payload.get("cursor"))
        return {"ids": page.ids, "next_cursor": page.next_cursor}

    def list_drives_page(self, payload: dict[str, Any]) -> dict[str, Any]:
        connector = self._connector_for(self._organisation(payload["organisation_id"]))
        page = connector.list_drives(payload["site_id"], payload.get("cursor"))
        return {"ids": page.ids, "next_cursor": page.next_cursor}

    def list_items_page(self, payload: dict[str, Any]) -> dict[str, Any]:
        connector = self._connector_for(self._organisation(payload["organisation_id"]))
        page = connector.list_items(
            payload["site_id"],
            payload["drive_id"],
            folder_id=payload.get("folder_id"),
            cursor=payload.get("cursor"),
        )
        return {
            "items": [item.to_dict() for item in page.items],
            "next_cursor": page.next_cursor,
        }

    def report_items(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Report one crawled page of items, minus what the parent folder grants.

        The parent folder's permission ids are fetched in full the first time
        a folder is reported; later pages of the same folder reuse the set
        carried in the folder context.

        Returns:
            The parent permission ids and whether they were fully fetched, to
            carry into the next page of the same folder.
        """
        organisation = self._organisation(payload["organisation_id"])
        connector = self._connector_for(organisation)
        site_id = payload["site_id"]
        drive_id = payload["drive_id"]
        folder = payload.get("folder") or {}
        items = [DriveItem.from_dict(data) for data in payload.get("items", [])]

        parent_permissions: list[str] = []
        parent_paginated = False
        if folder.get("id") and not folder.get("paginated"):
            raw = connector.list_all_permissions(site_id, drive_id, folder["id"]) or []
            parent_permissions = [p.id for p in map(parse_permission, raw) if p.id]
            parent_paginated = True
            logger.info(
                "[report_items] fetched parent folder permissions; folder_id:%s;count:%s",
                folder["id"],
                len(parent_permissions),
            )
        elif folder.get("permissions"):
            parent_permissions = list(folder["permissions"])

        entries, _ = self._fetch_permissions(connector, site_id, drive_id, items)
        filtered = strip_inherited(parent_permissions, entries)
        objects, _ = build_reportable_objects(filtered, site_id, drive_id)
        if objects:
            self._platform_for(organisation).update_objects(objects)

        logger.info(
            "[report_items] page reported; organisation_id:%s;drive_id:%s;items:%s;reported:%s",
            organisation.id,
            drive_id,
            len(items),
            len(objects),
        )
        return {
            "parent_permissions": parent_permissions,
            "parent_paginated": parent_paginated,
            "reported": len(objects),
        }

    def delete_stale_objects(self, payload: dict[str, Any]) -> None:
        """Tombstone sweep: drop every object not refreshed since the sync started."""
        organisation = self._organisation(payload["organisation_id"])
        self._platform_for(organisation).delete_objects(synced_before=payload["synced_before"])

    # ------------------------------------------------------------------
    # Delta
    # ------------------------------------------------------------------

    def fetch_delta_page(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Advance through the change feed without processing it."""
        connector = self._connector_for(self._organisation(payload["organisation_id"]))
        page = connector.get_delta(
            payload["site_id"],
            payload["drive_id"],
            cursor=payload.get("cursor"),
            is_first_sync=bool(payload.get("is_first_sync")),
        )
        return {"next_cursor": page.next_cursor, "delta_cursor": page.delta_cursor}

    def apply_delta_changes(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Fetch one delta page and push its net changes to the platform.

        Updated items are re-fetched with their full permission sets and
        reconciled against parents present in the same page. Tombstoned items,
        vanished items and items left with nothing to report are deleted in a
        single call.
        """
        organisation = self._organisation(payload["organisation_id"])
        connector = self._connector_for(organisation)
        platform = self._platform_for(organisation)
        site_id = payload["site_id"]
        drive_id = payload["drive_id"]

        page = connector.get_delta(site_id, drive_id, cursor=payload.get("cursor"))
        parsed = partition_delta(page.items)
        entries, vanished = self._fetch_permissions(connector, site_id, drive_id, parsed.updated)
        reconciliation = reconcile_against_siblings(entries)
        objects, unreported = build_reportable_objects(
            reconciliation.to_update, site_id, drive_id
        )
        if objects:
            platform.update_objects(objects)

        delete_ids = list(
            dict.fromkeys([*parsed.deleted_ids, *vanished, *reconciliation.to_delete, *unreported])
        )
        if delete_ids:
            platform.delete_objects(ids=delete_ids)

        logger.info(
            "[apply_delta_changes] delta page applied; drive_id:%s;updated:%s;deleted:%s",
            drive_id,
            len(objects),
            len(delete_ids),
        )
        return {
            "next_cursor": page.next_cursor,
            "delta_cursor": page.delta_cursor,
            "updated": len(objects),
            "deleted": len(delete_ids),
        }

    def save_delta_cursor(self, payload: dict[str, Any]) -> None:
        state = self._store.update_delta_cursor(
            payload["organisation_id"], payload["drive_id"], payload["delta_cursor"]
        )
        if state is None:
            raise StateNotFoundError(
                f"Could not retrieve drive sync state; drive_id={payload['drive_id']}"
            )

    def take_pending_changes(self, payload: dict[str, Any]) -> bool:
        """Clear the drive's pending-changes mark, returning whether it was set."""
        pending = self._store.take_changes_pending(payload["organisation_id"], payload["drive_id"])
        if pending:
            logger.info(
                "[take_pending_changes] changes arrived during the run; drive_id:%s",
                payload["drive_id"],
            )
        return pending

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def establish_drive_subscription(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Return the drive's active subscription, creating one if there is none."""
        existing = self._store.get_drive_state(payload["organisation_id"], payload["drive_id"])
        if existing is not None and existing.subscription_id:
            return {
                "id": existing.subscription_id,
                "expires_at": existing.subscription_expires_at,
                "client_state": existing.subscription_client_state,
            }
        return self.create_drive_subscription(payload)

    def create_drive_subscription(self, payload: dict[str, Any]) -> dict[str, Any]:
        organisation = self._organisation(payload["organisation_id"])
        subscription = self._subscriptions_for(organisation).create_subscription(
            payload["site_id"], payload["drive_id"]
        )
        return {
            "id": subscription.id,
            "expires_at": subscription.expires_at,
            "client_state": subscription.client_state,
        }

    def save_drive_sync_state(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Upsert a drive's sync state.

        A payload without a delta cursor keeps the stored one.
        """
        organisation_id = payload["organisation_id"]
        drive_id = payload["drive_id"]
        subscription = payload["subscription"]
        delta_cursor = payload.get("delta_cursor")
        if delta_cursor is None:
            existing = self._store.get_drive_state(organisation_id, drive_id)
            if existing is None:
                raise StateNotFoundError(
                    f"No delta cursor to keep for drive; drive_id={drive_id}"
                )
            delta_cursor = existing.delta_cursor
        state = DriveSyncState(
            organisation_id=organisation_id,
            site_id=payload["site_id"],
            drive_id=drive_id,
            subscription_id=subscription["id"],
            subscription_expires_at=subscription["expires_at"],
            subscription_client_state=subscription["client_state"],
            delta_cursor=delta_cursor,
        )
        self._store.upsert_drive_state(state)
        return state.to_dict()

    def renew_drive_subscription(self, payload: dict[str, Any]) -> dict[str, Any]:
        organisation = self._organisation(payload["organisation_id"])
        subscription = self._subscriptions_for(organisation).renew_subscription(
            payload["subscription_id"]
        )
        self._store.update_subscription_expiry(
            organisation.id, payload["drive_id"], subscription.expires_at
        )
        logger.info(
            "[renew_drive_subscription] subscription renewed; subscription_id:%s;expires_at:%s",
            payload["subscription_id"],
            subscription.expires_at,
        )
        return {"expires_at": subscription.expires_at}

    def remove_drive_subscription(self, payload: dict[str, Any]) -> dict[str, Any]:
        organisation = self._organisation(payload["organisation_id"])
        removed = self._subscriptions_for(organisation).remove_subscription(
            payload["subscription_id"]
        )
        return {"subscription_id": payload["subscription_id"], "removed": removed}

    # ------------------------------------------------------------------
    # Organisation lifecycle
    # ------------------------------------------------------------------

    def update_connection_status(self, payload: dict[str, Any]) -> None:
        organisation = self._organisation(payload["organisation_id"])
        self._platform_for(organisation).update_connection_status(payload["has_error"])

    def delete_organisation_records(self, payload: dict[str, Any]) -> None:
        self._store.delete_organisation(payload["organisation_id"])

    # ------------------------------------------------------------------
    # Single objects
    # ------------------------------------------------------------------

    def sync_object(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Re-report one item, or delete it from the platform if nothing is left."""
        organisation = self._organisation(payload["organisation_id"])
        connector = self._connector_for(organisation)
        platform = self._platform_for(organisation)
        site_id = payload["site_id"]
        drive_id = payload["drive_id"]
        item_id = payload["item_id"]

        item = connector.get_item(site_id, drive_id, item_id)
        entries: list[ItemPermissions] = []
        if item is not None:
            entries, _ = self._fetch_permissions(connector, site_id, drive_id, [item])
            parent = (
                connector.get_item(site_id, drive_id, item.parent_id) if item.parent_id else None
            )
            if entries and parent is not None and parent.name != ROOT_ITEM_NAME:
                raw = connector.list_all_permissions(site_id, drive_id, parent.id) or []
                entries = strip_inherited(
                    [p.id for p in map(parse_permission, raw) if p.id], entries
                )

        objects, _ = build_reportable_objects(entries, site_id, drive_id)
        if objects:
            platform.update_objects(objects)
            return {"status": "updated"}
        platform.delete_objects(ids=[item_id])
        return {"status": "deleted"}

    def remove_object(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Delete an item from the drive and from the platform."""
        organisation = self._organisation(payload["organisation_id"])
        deleted = self._connector_for(organisation).delete_item(
            payload["site_id"], payload["drive_id"], payload["item_id"]
        )
        self._platform_for(organisation).delete_objects(ids=[payload["item_id"]])
        return {"status": "deleted" if deleted else "not_found"}

    def remove_object_permissions(self, payload: dict[str, Any]) -> dict[str, list[str]]:
        """Delete permissions of an item, bucketing the outcome per permission.

        Partial failure is expected; nothing is raised for individual
        permissions. When any permission was already gone the item is
        dropped from the platform so the next refresh re-reports it.
        """
        organisation = self._organisation(payload["organisation_id"])
        connector = self._connector_for(organisation)
        site_id = payload["site_id"]
        drive_id = payload["drive_id"]
        item_id = payload["item_id"]

        result: dict[str, list[str]] = {
            "deleted_permissions": [],
            "not_found_permissions": [],
            "unexpected_failed_permissions": [],
        }
        for permission_id in payload.get("permission_ids", []):
            try:
                connector.delete_permission(site_id, drive_id, item_id, permission_id)
            except GraphApiError as exc:
                if exc.is_not_found:
                    result["not_found_permissions"].append(permission_id)
                else:
                    logger.warning(
                        "[remove_object_permissions] permission deletion failed; "
                        "item_id:%s;permission_id:%s;status:%s",
                        item_id,
                        permission_id,
                        exc.status_code,
                    )
                    result["unexpected_failed_permissions"].append(permission_id)
                continue
            result["deleted_permissions"].append(permission_id)

        if result["not_found_permissions"]:
            self._platform_for(organisation).delete_objects(ids=[item_id])
        return result


def sync_activities_from_config(config: AppConfig) -> SyncActivities:
    """Construct SyncActivities wired to Graph, the platform and blob storage.

    Args:
        config: Application configuration instance.

    Returns:
        Configured SyncActivities instance.
    """

    def connector_for(organisation: Organisation) -> DriveConnector:
        return DriveConnector(
            graph_client_for_tenant(config, organisation.tenant_id),
            sites_page_size=config.sites_page_size,
            drives_page_size=config.drives_page_size,
            items_page_size=config.items_page_size,
            permissions_page_size=config.permissions_page_size,
            delta_page_size=config.delta_page_size,
        )

    def subscriptions_for(organisation: Organisation) -> SubscriptionConnector:
        return SubscriptionConnector(
            graph_client_for_tenant(config, organisation.tenant_id),
            webhook_base_url=config.webhook_base_url,
            expiration_days=config.subscription_expiration_days,
        )

    def platform_for(organisation: Organisation) -> PlatformClient:
        return platform_client_from_config(config, organisation.id, organisation.region)

    return SyncActivities(
        store=state_store_from_config(config),
        connector_for=connector_for,
        subscriptions_for=subscriptions_for,
        platform_for=platform_for,
        permissions_chunk_size=config.permissions_chunk_size,
    )
