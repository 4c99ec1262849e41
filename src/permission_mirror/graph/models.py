"""Data models for Microsoft Graph API sites, drives and drive items."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

# Graph API JSON field names
FIELD_ID = "id"
FIELD_NAME = "name"
FIELD_WEB_URL = "webUrl"
FIELD_CREATED_BY = "createdBy"
FIELD_USER = "user"
FIELD_FOLDER = "folder"
FIELD_DELETED = "deleted"
FIELD_PARENT_REFERENCE = "parentReference"
FIELD_LAST_MODIFIED = "lastModifiedDateTime"
FIELD_EXPIRATION = "expirationDateTime"
FIELD_CLIENT_STATE = "clientState"

# OData response keys
ODATA_DELTA_LINK = "@odata.deltaLink"
ODATA_NEXT_LINK = "@odata.nextLink"
ODATA_VALUE = "value"

# Name Graph gives the drive root pseudo-item in delta responses.
ROOT_ITEM_NAME = "root"


@dataclass
class DriveItem:
    """A file or folder node of a drive."""

    id: str
    name: str
    web_url: str
    owner_id: str | None
    is_folder: bool
    last_modified: str | None
    parent_id: str | None
    is_deleted: bool = False

    @classmethod
    def from_graph(cls, raw: dict[str, Any]) -> DriveItem:
        """Map a raw Graph API driveItem dict to a DriveItem."""
        created_by = raw.get(FIELD_CREATED_BY) or {}
        owner = created_by.get(FIELD_USER) or {}
        parent_ref = raw.get(FIELD_PARENT_REFERENCE) or {}
        return cls(
            id=raw.get(FIELD_ID, ""),
            name=raw.get(FIELD_NAME, ""),
            web_url=raw.get(FIELD_WEB_URL, ""),
            owner_id=owner.get(FIELD_ID),
            is_folder=FIELD_FOLDER in raw,
            last_modified=raw.get(FIELD_LAST_MODIFIED),
            parent_id=parent_ref.get(FIELD_ID),
            is_deleted=FIELD_DELETED in raw,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DriveItem:
        """Rebuild a DriveItem serialised with to_dict()."""
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        """Serialise for transport between activities."""
        return asdict(self)


@dataclass
class Page:
    """One page of a paginated Graph collection."""

    ids: list[str] = field(default_factory=list)
    next_cursor: str | None = None


@dataclass
class ItemsPage:
    """One page of drive item children."""

    items: list[DriveItem] = field(default_factory=list)
    next_cursor: str | None = None


@dataclass
class DeltaPage:
    """One page of a drive delta query.

    Exactly one of next_cursor (more pages follow) and delta_cursor (the
    pull is exhausted, resume from here next time) is set on a well-formed
    response.
    """

    items: list[DriveItem] = field(default_factory=list)
    next_cursor: str | None = None
    delta_cursor: str | None = None


@dataclass
class Subscription:
    """A Graph change-notification subscription."""

    id: str
    expires_at: str
    client_state: str | None = None
