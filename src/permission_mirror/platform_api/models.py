"""Objects pushed to the security platform."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

PERMISSION_TYPE_USER = "user"
PERMISSION_TYPE_ANYONE = "anyone"


@dataclass
class ReportablePermission:
    """A normalised, externally meaningful grant on a reported object."""

    id: str
    type: str
    display_name: str | None = None
    user_id: str | None = None
    email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialise in the platform's camelCase shape, omitting absent fields."""
        data: dict[str, Any] = {"id": self.id, "type": self.type}
        if self.display_name is not None:
            data["displayName"] = self.display_name
        if self.user_id is not None:
            data["userId"] = self.user_id
        if self.email is not None:
            data["email"] = self.email
        if self.metadata:
            data["metadata"] = self.metadata
        return data


@dataclass
class ReportableObject:
    """A file or folder with at least one direct reportable permission."""

    id: str
    name: str
    url: str
    owner_id: str
    site_id: str
    drive_id: str
    updated_at: str | None
    permissions: list[ReportablePermission] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialise in the platform's camelCase shape."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "ownerId": self.owner_id,
            "metadata": {"siteId": self.site_id, "driveId": self.drive_id},
            "permissions": [permission.to_dict() for permission in self.permissions],
        }
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        return data
