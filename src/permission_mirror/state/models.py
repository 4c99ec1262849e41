"""Persisted organisation and per-drive sync state."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class Organisation:
    """An installed customer account."""

    id: str
    tenant_id: str
    region: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Organisation:
        return cls(id=data["id"], tenant_id=data["tenant_id"], region=data["region"])

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DriveSyncState:
    """Change subscription and delta cursor of one drive of an organisation.

    Unique per (organisation_id, drive_id).
    """

    organisation_id: str
    site_id: str
    drive_id: str
    subscription_id: str
    subscription_expires_at: str
    subscription_client_state: str
    delta_cursor: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DriveSyncState:
        return cls(
            organisation_id=data["organisation_id"],
            site_id=data["site_id"],
            drive_id=data["drive_id"],
            subscription_id=data["subscription_id"],
            subscription_expires_at=data["subscription_expires_at"],
            subscription_client_state=data["subscription_client_state"],
            delta_cursor=data["delta_cursor"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
