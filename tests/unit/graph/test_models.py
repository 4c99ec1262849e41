"""Unit tests for graph/models.py — mapping Graph payloads to data models."""

from permission_mirror.graph.models import DeltaPage, DriveItem, Page


def _raw_item(**overrides: object) -> dict[str, object]:
    raw: dict[str, object] = {
        "id": "item-001",
        "name": "report.docx",
        "webUrl": "https://contoso.sharepoint.com/report.docx",
        "createdBy": {"user": {"id": "owner-1", "displayName": "Owner"}},
        "lastModifiedDateTime": "2024-05-01T10:00:00Z",
        "parentReference": {"id": "parent-001", "driveId": "drive-1"},
        "file": {"mimeType": "application/msword"},
    }
    raw.update(overrides)
    return raw


class TestDriveItemFromGraph:
    def test_maps_file_fields(self) -> None:
        item = DriveItem.from_graph(_raw_item())
        assert item.id == "item-001"
        assert item.name == "report.docx"
        assert item.web_url == "https://contoso.sharepoint.com/report.docx"
        assert item.owner_id == "owner-1"
        assert item.last_modified == "2024-05-01T10:00:00Z"
        assert item.parent_id == "parent-001"
        assert item.is_folder is False
        assert item.is_deleted is False

    def test_folder_facet_marks_folder(self) -> None:
        item = DriveItem.from_graph(_raw_item(folder={"childCount": 3}))
        assert item.is_folder is True

    def test_deleted_facet_marks_deleted(self) -> None:
        item = DriveItem.from_graph({"id": "gone", "deleted": {"state": "deleted"}})
        assert item.is_deleted is True
        assert item.name == ""
        assert item.owner_id is None
        assert item.parent_id is None

    def test_missing_creator_user_gives_no_owner(self) -> None:
        item = DriveItem.from_graph(_raw_item(createdBy={"application": {"id": "app"}}))
        assert item.owner_id is None

    def test_null_parent_reference_is_tolerated(self) -> None:
        item = DriveItem.from_graph(_raw_item(parentReference=None))
        assert item.parent_id is None


class TestDriveItemSerialisation:
    def test_to_dict_and_from_dict_preserve_fields(self) -> None:
        item = DriveItem.from_graph(_raw_item())
        data = item.to_dict()
        assert data["owner_id"] == "owner-1"
        assert DriveItem.from_dict(data) == item


class TestPages:
    def test_page_defaults_are_empty(self) -> None:
        page = Page()
        assert page.ids == []
        assert page.next_cursor is None

    def test_delta_page_defaults(self) -> None:
        page = DeltaPage()
        assert page.items == []
        assert page.next_cursor is None
        assert page.delta_cursor is None
