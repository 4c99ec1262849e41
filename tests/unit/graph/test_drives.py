"""Unit tests for graph/drives.py — DriveConnector paths, pages and 404 handling."""

from unittest.mock import MagicMock

import pytest

from permission_mirror.graph.client import GraphApiError
from permission_mirror.graph.drives import DriveConnector

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_BASE = "https://graph.microsoft.com/v1.0"


def _make_connector(**kwargs: int) -> tuple[DriveConnector, MagicMock]:
    """Return (connector, mock_graph_client)."""
    mock_graph = MagicMock()
    return DriveConnector(mock_graph, **kwargs), mock_graph


def _not_found() -> GraphApiError:
    return GraphApiError(404, "itemNotFound")


# ---------------------------------------------------------------------------
# Sites and drives
# ---------------------------------------------------------------------------


class TestListSites:
    def test_first_page_path_and_ids(self) -> None:
        connector, mock_graph = _make_connector(sites_page_size=10)
        mock_graph.get.return_value = {
            "value": [{"id": "site-1"}, {"id": "site-2"}, {"name": "no id"}],
            "@odata.nextLink": f"{_BASE}/sites?search=*&$top=10&$skiptoken=next-1",
        }

        page = connector.list_sites()

        mock_graph.get.assert_called_once_with("/sites?search=*&$top=10&$select=id")
        assert page.ids == ["site-1", "site-2"]
        assert page.next_cursor == "next-1"

    def test_cursor_is_sent_as_skip_token(self) -> None:
        connector, mock_graph = _make_connector()
        mock_graph.get.return_value = {"value": []}

        page = connector.list_sites("next-1")

        assert mock_graph.get.call_args[0][0].endswith("&$skiptoken=next-1")
        assert page.ids == []
        assert page.next_cursor is None


class TestListDrives:
    def test_path_is_scoped_to_site(self) -> None:
        connector, mock_graph = _make_connector(drives_page_size=7)
        mock_graph.get.return_value = {"value": [{"id": "drive-1"}]}

        page = connector.list_drives("site-1")

        mock_graph.get.assert_called_once_with("/sites/site-1/drives?$top=7&$select=id")
        assert page.ids == ["drive-1"]


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


class TestListItems:
    def test_root_children_when_no_folder(self) -> None:
        connector, mock_graph = _make_connector(items_page_size=15)
        mock_graph.get.return_value = {"value": [{"id": "a", "name": "A", "folder": {}}]}

        page = connector.list_items("site-1", "drive-1")

        path = mock_graph.get.call_args[0][0]
        assert path.startswith("/sites/site-1/drives/drive-1/root/children?$top=15&$select=")
        assert page.items[0].id == "a"
        assert page.items[0].is_folder is True

    def test_folder_children_with_cursor(self) -> None:
        connector, mock_graph = _make_connector()
        mock_graph.get.return_value = {
            "value": [],
            "@odata.nextLink": f"{_BASE}/x?$skiptoken=more",
        }

        page = connector.list_items("site-1", "drive-1", "folder-9", "c1")

        path = mock_graph.get.call_args[0][0]
        assert path.startswith("/sites/site-1/drives/drive-1/items/folder-9/children?")
        assert path.endswith("&$skiptoken=c1")
        assert page.next_cursor == "more"


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class TestPermissions:
    def test_list_all_permissions_follows_pages(self) -> None:
        connector, mock_graph = _make_connector()
        mock_graph.get.side_effect = [
            {"value": [{"id": "p1"}], "@odata.nextLink": f"{_BASE}/x?$skiptoken=2"},
            {"value": [{"id": "p2"}]},
        ]

        permissions = connector.list_all_permissions("s", "d", "item-1")

        assert permissions == [{"id": "p1"}, {"id": "p2"}]
        assert mock_graph.get.call_count == 2
        assert mock_graph.get.call_args_list[1][0][0].endswith("&$skiptoken=2")

    def test_list_all_permissions_returns_none_when_item_vanished(self) -> None:
        connector, mock_graph = _make_connector()
        mock_graph.get.side_effect = _not_found()

        assert connector.list_all_permissions("s", "d", "item-1") is None

    def test_list_all_permissions_propagates_other_errors(self) -> None:
        connector, mock_graph = _make_connector()
        mock_graph.get.side_effect = GraphApiError(500, "boom")

        with pytest.raises(GraphApiError):
            connector.list_all_permissions("s", "d", "item-1")

    def test_delete_permission_path(self) -> None:
        connector, mock_graph = _make_connector()

        connector.delete_permission("s", "d", "item-1", "perm-1")

        mock_graph.delete.assert_called_once_with(
            "/sites/s/drives/d/items/item-1/permissions/perm-1"
        )

    def test_delete_permission_propagates_not_found(self) -> None:
        connector, mock_graph = _make_connector()
        mock_graph.delete.side_effect = _not_found()

        with pytest.raises(GraphApiError):
            connector.delete_permission("s", "d", "item-1", "perm-1")


# ---------------------------------------------------------------------------
# Single items
# ---------------------------------------------------------------------------


class TestSingleItem:
    def test_get_item_maps_payload(self) -> None:
        connector, mock_graph = _make_connector()
        mock_graph.get.return_value = {"id": "item-1", "name": "a.txt"}

        item = connector.get_item("s", "d", "item-1")

        assert item is not None
        assert item.name == "a.txt"

    def test_get_item_returns_none_on_404(self) -> None:
        connector, mock_graph = _make_connector()
        mock_graph.get.side_effect = _not_found()

        assert connector.get_item("s", "d", "item-1") is None

    def test_delete_item_reports_outcome(self) -> None:
        connector, mock_graph = _make_connector()
        assert connector.delete_item("s", "d", "item-1") is True

        mock_graph.delete.side_effect = _not_found()
        assert connector.delete_item("s", "d", "item-1") is False


# ---------------------------------------------------------------------------
# Delta
# ---------------------------------------------------------------------------


class TestGetDelta:
    def test_first_sync_requests_ids_only(self) -> None:
        connector, mock_graph = _make_connector()
        mock_graph.get.return_value = {
            "value": [{"id": "a"}],
            "@odata.nextLink": f"{_BASE}/sites/s/drives/d/root/delta?token=n1",
        }

        page = connector.get_delta("s", "d", is_first_sync=True)

        mock_graph.get.assert_called_once_with("/sites/s/drives/d/root/delta?$select=id&$top=1000")
        assert page.next_cursor == "n1"
        assert page.delta_cursor is None

    def test_incremental_page_uses_cursor_and_page_size(self) -> None:
        connector, mock_graph = _make_connector(delta_page_size=50)
        mock_graph.get.return_value = {
            "value": [{"id": "a", "deleted": {}}],
            "@odata.deltaLink": f"{_BASE}/sites/s/drives/d/root/delta?token=latest",
        }

        page = connector.get_delta("s", "d", cursor="stored")

        mock_graph.get.assert_called_once_with("/sites/s/drives/d/root/delta?$top=50&token=stored")
        assert page.items[0].is_deleted is True
        assert page.next_cursor is None
        assert page.delta_cursor == "latest"
