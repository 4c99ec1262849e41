"""Unit tests for orchestration/activities.py — SyncActivities I/O steps."""

from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from permission_mirror.graph.client import GraphApiError
from permission_mirror.graph.models import DeltaPage, DriveItem, ItemsPage, Page, Subscription
from permission_mirror.orchestration.activities import (
    StateNotFoundError,
    SyncActivities,
    sync_activities_from_config,
)
from permission_mirror.state.models import DriveSyncState, Organisation
from tests.unit.orchestration.fakes import make_config

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_ORGANISATION = Organisation(id="org-1", tenant_id="tenant-1", region="eu")
_DRIVE = {"organisation_id": "org-1", "site_id": "site-1", "drive_id": "drive-1"}


def _make_activities(
    chunk_size: int = 15,
) -> tuple[SyncActivities, MagicMock, MagicMock, MagicMock, MagicMock]:
    """Return (activities, mock_store, mock_connector, mock_subscriptions, mock_platform)."""
    mock_store = MagicMock()
    mock_store.get_organisation.return_value = _ORGANISATION
    mock_connector = MagicMock()
    mock_subscriptions = MagicMock()
    mock_platform = MagicMock()
    activities = SyncActivities(
        store=mock_store,
        connector_for=lambda organisation: mock_connector,
        subscriptions_for=lambda organisation: mock_subscriptions,
        platform_for=lambda organisation: mock_platform,
        permissions_chunk_size=chunk_size,
    )
    return activities, mock_store, mock_connector, mock_subscriptions, mock_platform


def _item(
    id: str,
    parent_id: str | None = "folder-1",
    is_deleted: bool = False,
    name: str | None = None,
    owner_id: str | None = "owner-1",
) -> DriveItem:
    return DriveItem(
        id=id,
        name=name if name is not None else f"{id}.docx",
        web_url=f"https://contoso.sharepoint.com/{id}.docx",
        owner_id=owner_id,
        is_folder=False,
        last_modified=None,
        parent_id=parent_id,
        is_deleted=is_deleted,
    )


def _links(*numbers: int) -> list[dict[str, Any]]:
    """Raw anonymous link permissions with ids perm-{n}."""
    return [
        {
            "id": f"perm-{n}",
            "roles": ["read"],
            "link": {"scope": "anonymous", "webUrl": f"https://x/{n}"},
        }
        for n in numbers
    ]


def _user_grant(permission_id: str) -> dict[str, Any]:
    return {"id": permission_id, "roles": ["write"], "grantedToV2": {"user": {"id": "u1"}}}


def _drive_state(delta_cursor: str = "cursor-1") -> DriveSyncState:
    return DriveSyncState(
        organisation_id="org-1",
        site_id="site-1",
        drive_id="drive-1",
        subscription_id="sub-1",
        subscription_expires_at="2030-01-01T00:00:00Z",
        subscription_client_state="cs",
        delta_cursor=delta_cursor,
    )


# ---------------------------------------------------------------------------
# Lookups and listing
# ---------------------------------------------------------------------------


class TestLookups:
    def test_get_organisation(self) -> None:
        activities, mock_store, *_ = _make_activities()
        assert activities.get_organisation({"organisation_id": "org-1"}) == {
            "id": "org-1",
            "tenant_id": "tenant-1",
            "region": "eu",
        }
        mock_store.get_organisation.return_value = None
        assert activities.get_organisation({"organisation_id": "org-1"}) is None

    def test_unknown_organisation_raises_state_not_found(self) -> None:
        activities, mock_store, *_ = _make_activities()
        mock_store.get_organisation.return_value = None

        with pytest.raises(StateNotFoundError):
            activities.list_sites_page({"organisation_id": "org-1"})

    def test_find_drive_sync_state(self) -> None:
        activities, mock_store, *_ = _make_activities()
        mock_store.find_drive_state.return_value = _drive_state()

        result = activities.find_drive_sync_state(
            {
                "tenant_id": "tenant-1",
                "site_id": "site-1",
                "drive_id": "drive-1",
                "subscription_id": "sub-1",
            }
        )

        assert result is not None
        assert result["delta_cursor"] == "cursor-1"
        mock_store.find_drive_state.assert_called_once_with(
            tenant_id="tenant-1", site_id="site-1", drive_id="drive-1", subscription_id="sub-1"
        )


class TestListing:
    def test_list_sites_page(self) -> None:
        activities, _, mock_connector, _, _ = _make_activities()
        mock_connector.list_sites.return_value = Page(ids=["s1"], next_cursor="c2")

        result = activities.list_sites_page({"organisation_id": "org-1", "cursor": "c1"})

        assert result == {"ids": ["s1"], "next_cursor": "c2"}
        mock_connector.list_sites.assert_called_once_with("c1")

    def test_list_items_page_serialises_items(self) -> None:
        activities, _, mock_connector, _, _ = _make_activities()
        mock_connector.list_items.return_value = ItemsPage(items=[_item("a")], next_cursor=None)

        result = activities.list_items_page({**_DRIVE, "folder_id": "f1", "cursor": None})

        assert result["items"][0]["id"] == "a"
        assert result["next_cursor"] is None
        mock_connector.list_items.assert_called_once_with(
            "site-1", "drive-1", folder_id="f1", cursor=None
        )


# ---------------------------------------------------------------------------
# report_items
# ---------------------------------------------------------------------------


class TestReportItems:
    def test_root_page_reports_items_with_direct_permissions(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        permissions = {"a": _links(1), "b": []}
        mock_connector.list_all_permissions.side_effect = lambda s, d, item_id: permissions[item_id]

        result = activities.report_items(
            {**_DRIVE, "folder": None, "items": [_item("a").to_dict(), _item("b").to_dict()]}
        )

        assert result == {"parent_permissions": [], "parent_paginated": False, "reported": 1}
        [objects] = mock_platform.update_objects.call_args[0]
        assert [o.id for o in objects] == ["a"]

    def test_first_folder_page_fetches_parent_permissions_in_full(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        permissions = {"folder-1": _links(1, 2), "a": _links(1, 2), "b": _links(1, 3)}
        mock_connector.list_all_permissions.side_effect = lambda s, d, item_id: permissions[item_id]

        result = activities.report_items(
            {
                **_DRIVE,
                "folder": {"id": "folder-1", "paginated": False, "permissions": []},
                "items": [_item("a").to_dict(), _item("b").to_dict()],
            }
        )

        assert result["parent_permissions"] == ["perm-1", "perm-2"]
        assert result["parent_paginated"] is True
        [objects] = mock_platform.update_objects.call_args[0]
        assert [o.id for o in objects] == ["b"]
        assert [p.id for p in objects[0].permissions] == ["perm-3"]

    def test_later_folder_page_reuses_carried_permissions(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        mock_connector.list_all_permissions.return_value = _links(1)

        result = activities.report_items(
            {
                **_DRIVE,
                "folder": {"id": "folder-1", "paginated": True, "permissions": ["perm-1"]},
                "items": [_item("a").to_dict()],
            }
        )

        mock_connector.list_all_permissions.assert_called_once_with("site-1", "drive-1", "a")
        assert result["parent_permissions"] == ["perm-1"]
        assert result["parent_paginated"] is False
        mock_platform.update_objects.assert_not_called()

    def test_permissions_fetched_in_chunks(self) -> None:
        activities, _, mock_connector, _, _ = _make_activities(chunk_size=2)
        mock_connector.list_all_permissions.return_value = []

        activities.report_items(
            {**_DRIVE, "folder": None, "items": [_item(f"i{n}").to_dict() for n in range(5)]}
        )

        assert mock_connector.list_all_permissions.call_count == 5

    def test_delete_stale_objects(self) -> None:
        activities, _, _, _, mock_platform = _make_activities()

        activities.delete_stale_objects({"organisation_id": "org-1", "synced_before": "T"})

        mock_platform.delete_objects.assert_called_once_with(synced_before="T")


# ---------------------------------------------------------------------------
# Delta
# ---------------------------------------------------------------------------


class TestApplyDeltaChanges:
    def test_updates_and_deletes_in_one_call_each(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        updated = [
            _item(f"item-id-{i}", parent_id=f"item-id-{i - 1}" if i else "top") for i in range(5)
        ]
        deleted = [_item("item-id-5", is_deleted=True), _item("item-id-6", is_deleted=True)]
        root = _item("root-id", parent_id=None, name="root")
        mock_connector.get_delta.return_value = DeltaPage(
            items=[root, *updated, *deleted], next_cursor=None, delta_cursor="latest"
        )
        # First half carries 4 permissions, second half 6.
        permissions = {item.id: _links(1, 2, 3, 4) for item in updated[:2]}
        permissions.update({item.id: _links(1, 2, 3, 4, 5, 6) for item in updated[2:]})
        mock_connector.list_all_permissions.side_effect = lambda s, d, item_id: permissions[item_id]

        result = activities.apply_delta_changes({**_DRIVE, "cursor": "stored"})

        mock_connector.get_delta.assert_called_once_with("site-1", "drive-1", cursor="stored")
        mock_platform.update_objects.assert_called_once()
        [objects] = mock_platform.update_objects.call_args[0]
        assert [o.id for o in objects] == ["item-id-0", "item-id-2"]
        assert [p.id for p in objects[1].permissions] == ["perm-5", "perm-6"]
        mock_platform.delete_objects.assert_called_once()
        assert set(mock_platform.delete_objects.call_args.kwargs["ids"]) == {
            "item-id-5",
            "item-id-6",
            "item-id-1",
            "item-id-3",
            "item-id-4",
        }
        assert result == {
            "next_cursor": None,
            "delta_cursor": "latest",
            "updated": 2,
            "deleted": 5,
        }

    def test_vanished_and_unreportable_items_are_deleted(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        mock_connector.get_delta.return_value = DeltaPage(
            items=[_item("gone"), _item("group-only"), _item("no-owner", owner_id=None)],
            next_cursor="next",
        )
        permissions = {
            "gone": None,
            "group-only": [{"id": "g", "roles": [], "grantedToV2": {"siteGroup": {"id": "1"}}}],
            "no-owner": [_user_grant("p")],
        }
        mock_connector.list_all_permissions.side_effect = lambda s, d, item_id: permissions[item_id]

        result = activities.apply_delta_changes({**_DRIVE, "cursor": None})

        mock_platform.update_objects.assert_not_called()
        assert mock_platform.delete_objects.call_args.kwargs["ids"] == [
            "gone",
            "group-only",
            "no-owner",
        ]
        assert result["next_cursor"] == "next"

    def test_empty_page_makes_no_platform_calls(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        mock_connector.get_delta.return_value = DeltaPage(delta_cursor="latest")

        result = activities.apply_delta_changes({**_DRIVE, "cursor": "c"})

        mock_platform.update_objects.assert_not_called()
        mock_platform.delete_objects.assert_not_called()
        assert result["delta_cursor"] == "latest"

    def test_fetch_delta_page_passes_first_sync_flag(self) -> None:
        activities, _, mock_connector, _, _ = _make_activities()
        mock_connector.get_delta.return_value = DeltaPage(next_cursor="n")

        result = activities.fetch_delta_page({**_DRIVE, "cursor": None, "is_first_sync": True})

        assert result == {"next_cursor": "n", "delta_cursor": None}
        mock_connector.get_delta.assert_called_once_with(
            "site-1", "drive-1", cursor=None, is_first_sync=True
        )

    def test_save_delta_cursor(self) -> None:
        activities, mock_store, *_ = _make_activities()
        mock_store.update_delta_cursor.return_value = _drive_state("latest")

        activities.save_delta_cursor({**_DRIVE, "delta_cursor": "latest"})

        mock_store.update_delta_cursor.assert_called_once_with("org-1", "drive-1", "latest")

    def test_save_delta_cursor_without_state_fails(self) -> None:
        activities, mock_store, *_ = _make_activities()
        mock_store.update_delta_cursor.return_value = None

        with pytest.raises(StateNotFoundError):
            activities.save_delta_cursor({**_DRIVE, "delta_cursor": "latest"})

    def test_take_pending_changes(self) -> None:
        activities, mock_store, *_ = _make_activities()
        mock_store.take_changes_pending.side_effect = [True, False]

        assert activities.take_pending_changes(_DRIVE) is True
        assert activities.take_pending_changes(_DRIVE) is False
        mock_store.take_changes_pending.assert_called_with("org-1", "drive-1")


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class TestSubscriptions:
    def test_establish_reuses_stored_subscription(self) -> None:
        activities, mock_store, _, mock_subscriptions, _ = _make_activities()
        mock_store.get_drive_state.return_value = _drive_state()

        result = activities.establish_drive_subscription(_DRIVE)

        assert result == {
            "id": "sub-1",
            "expires_at": "2030-01-01T00:00:00Z",
            "client_state": "cs",
        }
        mock_subscriptions.create_subscription.assert_not_called()

    def test_establish_creates_subscription_for_new_drive(self) -> None:
        activities, mock_store, _, mock_subscriptions, _ = _make_activities()
        mock_store.get_drive_state.return_value = None
        mock_subscriptions.create_subscription.return_value = Subscription("sub-9", "2030", "x")

        result = activities.establish_drive_subscription(_DRIVE)

        assert result == {"id": "sub-9", "expires_at": "2030", "client_state": "x"}
        mock_subscriptions.create_subscription.assert_called_once_with("site-1", "drive-1")

    def test_save_drive_sync_state_with_cursor(self) -> None:
        activities, mock_store, *_ = _make_activities()
        subscription = {"id": "sub-2", "expires_at": "2031", "client_state": "y"}

        result = activities.save_drive_sync_state(
            {**_DRIVE, "subscription": subscription, "delta_cursor": "latest"}
        )

        saved = mock_store.upsert_drive_state.call_args[0][0]
        assert saved.subscription_id == "sub-2"
        assert saved.delta_cursor == "latest"
        assert result["subscription_client_state"] == "y"

    def test_save_drive_sync_state_keeps_stored_cursor(self) -> None:
        activities, mock_store, *_ = _make_activities()
        mock_store.get_drive_state.return_value = _drive_state("kept")
        subscription = {"id": "sub-2", "expires_at": "2031", "client_state": "y"}

        activities.save_drive_sync_state({**_DRIVE, "subscription": subscription})

        assert mock_store.upsert_drive_state.call_args[0][0].delta_cursor == "kept"

    def test_save_drive_sync_state_without_any_cursor_fails(self) -> None:
        activities, mock_store, *_ = _make_activities()
        mock_store.get_drive_state.return_value = None
        subscription = {"id": "sub-2", "expires_at": "2031", "client_state": "y"}

        with pytest.raises(StateNotFoundError):
            activities.save_drive_sync_state({**_DRIVE, "subscription": subscription})
        mock_store.upsert_drive_state.assert_not_called()

    def test_renew_updates_stored_expiry(self) -> None:
        activities, mock_store, _, mock_subscriptions, _ = _make_activities()
        mock_subscriptions.renew_subscription.return_value = Subscription("sub-1", "2031")

        result = activities.renew_drive_subscription(
            {"organisation_id": "org-1", "drive_id": "drive-1", "subscription_id": "sub-1"}
        )

        assert result == {"expires_at": "2031"}
        mock_store.update_subscription_expiry.assert_called_once_with("org-1", "drive-1", "2031")

    def test_remove_drive_subscription(self) -> None:
        activities, _, _, mock_subscriptions, _ = _make_activities()
        mock_subscriptions.remove_subscription.return_value = False

        result = activities.remove_drive_subscription(
            {"organisation_id": "org-1", "subscription_id": "sub-1"}
        )

        assert result == {"subscription_id": "sub-1", "removed": False}


# ---------------------------------------------------------------------------
# Organisation lifecycle
# ---------------------------------------------------------------------------


class TestOrganisationLifecycle:
    def test_update_connection_status(self) -> None:
        activities, _, _, _, mock_platform = _make_activities()

        activities.update_connection_status({"organisation_id": "org-1", "has_error": True})

        mock_platform.update_connection_status.assert_called_once_with(True)

    def test_delete_organisation_records(self) -> None:
        activities, mock_store, *_ = _make_activities()

        activities.delete_organisation_records({"organisation_id": "org-1"})

        mock_store.delete_organisation.assert_called_once_with("org-1")


# ---------------------------------------------------------------------------
# Single objects
# ---------------------------------------------------------------------------


class TestSyncObject:
    def _payload(self) -> dict[str, Any]:
        return {**_DRIVE, "item_id": "item-1"}

    def test_reports_item_minus_parent_permissions(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        items = {"item-1": _item("item-1"), "folder-1": _item("folder-1", name="Folder")}
        mock_connector.get_item.side_effect = lambda s, d, item_id: items[item_id]
        permissions = {"item-1": _links(1, 2), "folder-1": _links(1)}
        mock_connector.list_all_permissions.side_effect = lambda s, d, item_id: permissions[item_id]

        assert activities.sync_object(self._payload()) == {"status": "updated"}
        [objects] = mock_platform.update_objects.call_args[0]
        assert [p.id for p in objects[0].permissions] == ["perm-2"]

    def test_root_parent_permissions_are_not_stripped(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        items = {"item-1": _item("item-1"), "folder-1": _item("folder-1", name="root")}
        mock_connector.get_item.side_effect = lambda s, d, item_id: items[item_id]
        mock_connector.list_all_permissions.return_value = _links(1)

        assert activities.sync_object(self._payload()) == {"status": "updated"}
        mock_connector.list_all_permissions.assert_called_once_with("site-1", "drive-1", "item-1")

    def test_deletes_object_with_nothing_to_report(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        items = {"item-1": _item("item-1"), "folder-1": _item("folder-1", name="Folder")}
        mock_connector.get_item.side_effect = lambda s, d, item_id: items[item_id]
        mock_connector.list_all_permissions.return_value = _links(1)

        assert activities.sync_object(self._payload()) == {"status": "deleted"}
        mock_platform.update_objects.assert_not_called()
        mock_platform.delete_objects.assert_called_once_with(ids=["item-1"])

    def test_deletes_object_whose_item_is_gone(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        mock_connector.get_item.return_value = None

        assert activities.sync_object(self._payload()) == {"status": "deleted"}
        mock_platform.delete_objects.assert_called_once_with(ids=["item-1"])


class TestRemoveObject:
    def test_deletes_from_drive_and_platform(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        mock_connector.delete_item.return_value = True

        result = activities.remove_object({**_DRIVE, "item_id": "item-1"})

        assert result == {"status": "deleted"}
        mock_platform.delete_objects.assert_called_once_with(ids=["item-1"])

    def test_already_gone_item_still_removed_from_platform(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        mock_connector.delete_item.return_value = False

        assert activities.remove_object({**_DRIVE, "item_id": "item-1"}) == {"status": "not_found"}
        mock_platform.delete_objects.assert_called_once_with(ids=["item-1"])


class TestRemoveObjectPermissions:
    def test_buckets_outcome_per_permission(self) -> None:
        activities, _, mock_connector, _, mock_platform = _make_activities()
        failures = {"p2": GraphApiError(404, "gone"), "p4": GraphApiError(500, "boom")}

        def delete_permission(site_id: str, drive_id: str, item_id: str, pid: str) -> None:
            if pid in failures:
                raise failures[pid]

        mock_connector.delete_permission.side_effect = delete_permission

        result = activities.remove_object_permissions(
            {**_DRIVE, "item_id": "item-1", "permission_ids": ["p1", "p2", "p3", "p4", "p5"]}
        )

        assert result == {
            "deleted_permissions": ["p1", "p3", "p5"],
            "not_found_permissions": ["p2"],
            "unexpected_failed_permissions": ["p4"],
        }
        mock_platform.delete_objects.assert_called_once_with(ids=["item-1"])

    def test_all_deleted_leaves_platform_untouched(self) -> None:
        activities, _, _, _, mock_platform = _make_activities()

        result = activities.remove_object_permissions(
            {**_DRIVE, "item_id": "item-1", "permission_ids": ["p1"]}
        )

        assert result["deleted_permissions"] == ["p1"]
        mock_platform.delete_objects.assert_not_called()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestFactory:
    def test_wires_connectors_per_organisation_tenant(self) -> None:
        config = make_config()
        with (
            patch(
                "permission_mirror.orchestration.activities.state_store_from_config"
            ) as mock_store,
            patch("permission_mirror.orchestration.activities.graph_client_for_tenant") as mock_gc,
        ):
            mock_store.return_value.get_organisation.return_value = _ORGANISATION
            mock_gc.return_value.get.return_value = {"value": [{"id": "site-1"}]}
            activities = sync_activities_from_config(config)
            result = activities.list_sites_page({"organisation_id": "org-1"})

        mock_gc.assert_called_once_with(config, "tenant-1")
        assert result == {"ids": ["site-1"], "next_cursor": None}
