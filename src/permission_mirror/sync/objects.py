"""Build the objects reported to the security platform."""

from __future__ import annotations

from collections.abc import Iterable

from permission_mirror.platform_api.models import ReportableObject, ReportablePermission
from permission_mirror.sync.inheritance import ItemPermissions
from permission_mirror.sync.permissions import is_reportable, normalize


def build_reportable_object(
    entry: ItemPermissions, site_id: str, drive_id: str
) -> ReportableObject | None:
    """Return the platform object for an item, or None if it is not reportable.

    An item is reportable when it has a known owner and at least one
    classifier-accepted permission left after inheritance filtering.
    """
    if not entry.item.owner_id:
        return None
    permissions: list[ReportablePermission] = []
    for permission in entry.permissions:
        if not is_reportable(permission):
            continue
        normalized = normalize(permission)
        if normalized is not None:
            permissions.append(normalized)
    if not permissions:
        return None
    return ReportableObject(
        id=entry.item.id,
        name=entry.item.name,
        url=entry.item.web_url,
        owner_id=entry.item.owner_id,
        site_id=site_id,
        drive_id=drive_id,
        updated_at=entry.item.last_modified,
        permissions=permissions,
    )


def build_reportable_objects(
    items: Iterable[ItemPermissions], site_id: str, drive_id: str
) -> tuple[list[ReportableObject], list[str]]:
    """Build platform objects for a batch.

    Returns:
        A tuple of (reportable objects, ids of items that produced none).
    """
    objects: list[ReportableObject] = []
    unreported: list[str] = []
    for entry in items:
        reportable = build_reportable_object(entry, site_id, drive_id)
        if reportable is None:
            unreported.append(entry.item.id)
        else:
            objects.append(reportable)
    return objects, unreported
