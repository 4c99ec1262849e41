"""Typed access to SharePoint sites, drives, drive items and permissions."""

from __future__ import annotations

import logging
from typing import Any

from permission_mirror.graph.client import GraphApiError, GraphClient
from permission_mirror.graph.models import (
    FIELD_ID,
    ODATA_DELTA_LINK,
    ODATA_NEXT_LINK,
    ODATA_VALUE,
    DeltaPage,
    DriveItem,
    ItemsPage,
    Page,
)
from permission_mirror.graph.pagination import (
    DELTA_TOKEN_PARAM,
    SKIP_TOKEN_PARAM,
    extract_cursor,
    with_cursor,
)

logger = logging.getLogger(__name__)

ITEM_SELECT = "id,folder,name,webUrl,createdBy,lastModifiedDateTime,parentReference"
FIRST_SYNC_DELTA_SELECT = "id"
FIRST_SYNC_DELTA_PAGE_SIZE = 1000


class DriveConnector:
    """Reads and mutates the drive hierarchy of one tenant."""

    def __init__(
        self,
        graph_client: GraphClient,
        sites_page_size: int = 100,
        drives_page_size: int = 100,
        items_page_size: int = 15,
        permissions_page_size: int = 100,
        delta_page_size: int = 100,
    ) -> None:
        self._graph = graph_client
        self._sites_page_size = sites_page_size
        self._drives_page_size = drives_page_size
        self._items_page_size = items_page_size
        self._permissions_page_size = permissions_page_size
        self._delta_page_size = delta_page_size

    def list_sites(self, cursor: str | None = None) -> Page:
        """List one page of site ids visible to the application."""
        path = f"/sites?search=*&$top={self._sites_page_size}&$select=id"
        response = self._graph.get(with_cursor(path, cursor, SKIP_TOKEN_PARAM))
        return _id_page(response)

    def list_drives(self, site_id: str, cursor: str | None = None) -> Page:
        """List one page of drive ids of a site."""
        path = f"/sites/{site_id}/drives?$top={self._drives_page_size}&$select=id"
        response = self._graph.get(with_cursor(path, cursor, SKIP_TOKEN_PARAM))
        return _id_page(response)

    def list_items(
        self,
        site_id: str,
        drive_id: str,
        folder_id: str | None = None,
        cursor: str | None = None,
    ) -> ItemsPage:
        """List one page of the children of a folder, or of the drive root.

        Args:
            site_id: Site owning the drive.
            drive_id: Drive to list.
            folder_id: Folder whose children are listed; None lists the root.
            cursor: Skip token of the page to fetch, None for the first page.
        """
        parent = f"items/{folder_id}" if folder_id else "root"
        path = (
            f"/sites/{site_id}/drives/{drive_id}/{parent}/children"
            f"?$top={self._items_page_size}&$select={ITEM_SELECT}"
        )
        response = self._graph.get(with_cursor(path, cursor, SKIP_TOKEN_PARAM))
        items = [DriveItem.from_graph(raw) for raw in response.get(ODATA_VALUE, [])]
        return ItemsPage(
            items=items,
            next_cursor=extract_cursor(response.get(ODATA_NEXT_LINK), SKIP_TOKEN_PARAM),
        )

    def list_permissions(
        self,
        site_id: str,
        drive_id: str,
        item_id: str,
        cursor: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        """List one page of raw permission payloads of an item.

        Returns:
            A tuple of (raw permissions, next cursor or None).
        """
        path = (
            f"/sites/{site_id}/drives/{drive_id}/items/{item_id}/permissions"
            f"?$top={self._permissions_page_size}"
        )
        response = self._graph.get(with_cursor(path, cursor, SKIP_TOKEN_PARAM))
        return (
            list(response.get(ODATA_VALUE, [])),
            extract_cursor(response.get(ODATA_NEXT_LINK), SKIP_TOKEN_PARAM),
        )

    def list_all_permissions(
        self, site_id: str, drive_id: str, item_id: str
    ) -> list[dict[str, Any]] | None:
        """Fetch every permission page of an item.

        Returns:
            The raw permission payloads, or None when the item no longer exists.
        """
        permissions: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            try:
                page, cursor = self.list_permissions(site_id, drive_id, item_id, cursor)
            except GraphApiError as exc:
                if exc.is_not_found:
                    logger.info(
                        "[list_all_permissions] item vanished; drive_id:%s;item_id:%s",
                        drive_id,
                        item_id,
                    )
                    return None
                raise
            permissions.extend(page)
            if cursor is None:
                return permissions

    def get_item(self, site_id: str, drive_id: str, item_id: str) -> DriveItem | None:
        """Fetch one drive item, or None when it does not exist."""
        path = f"/sites/{site_id}/drives/{drive_id}/items/{item_id}?$select={ITEM_SELECT}"
        try:
            return DriveItem.from_graph(self._graph.get(path))
        except GraphApiError as exc:
            if exc.is_not_found:
                return None
            raise

    def delete_item(self, site_id: str, drive_id: str, item_id: str) -> bool:
        """Delete a drive item.

        Returns:
            True when deleted, False when the item was already gone.
        """
        try:
            self._graph.delete(f"/sites/{site_id}/drives/{drive_id}/items/{item_id}")
        except GraphApiError as exc:
            if exc.is_not_found:
                return False
            raise
        return True

    def delete_permission(
        self, site_id: str, drive_id: str, item_id: str, permission_id: str
    ) -> None:
        """Delete one permission of an item.

        Raises:
            GraphApiError: On any non-2xx response, including 404 when the
                permission (or the item) no longer exists.
        """
        self._graph.delete(
            f"/sites/{site_id}/drives/{drive_id}/items/{item_id}/permissions/{permission_id}"
        )

    def get_delta(
        self,
        site_id: str,
        drive_id: str,
        cursor: str | None = None,
        is_first_sync: bool = False,
    ) -> DeltaPage:
        """Fetch one page of the drive change feed.

        Args:
            site_id: Site owning the drive.
            drive_id: Drive to read changes from.
            cursor: Next-page or stored delta cursor; None starts from scratch.
            is_first_sync: Request only item ids in large pages, for callers
                that only need to reach the newest delta cursor.
        """
        path = f"/sites/{site_id}/drives/{drive_id}/root/delta"
        if is_first_sync:
            path = f"{path}?$select={FIRST_SYNC_DELTA_SELECT}&$top={FIRST_SYNC_DELTA_PAGE_SIZE}"
        else:
            path = f"{path}?$top={self._delta_page_size}"
        response = self._graph.get(with_cursor(path, cursor, DELTA_TOKEN_PARAM))

        items = [DriveItem.from_graph(raw) for raw in response.get(ODATA_VALUE, [])]
        page = DeltaPage(
            items=items,
            next_cursor=extract_cursor(response.get(ODATA_NEXT_LINK), DELTA_TOKEN_PARAM),
            delta_cursor=extract_cursor(response.get(ODATA_DELTA_LINK), DELTA_TOKEN_PARAM),
        )
        logger.info(
            "[get_delta] fetched delta page; drive_id:%s;items:%s;has_next:%s",
            drive_id,
            len(items),
            page.next_cursor is not None,
        )
        return page


def _id_page(response: dict[str, Any]) -> Page:
    return Page(
        ids=[raw[FIELD_ID] for raw in response.get(ODATA_VALUE, []) if FIELD_ID in raw],
        next_cursor=extract_cursor(response.get(ODATA_NEXT_LINK), SKIP_TOKEN_PARAM),
    )
