"""Inherited-permission filtering for crawled and delta-fetched drive items."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from permission_mirror.graph.models import ROOT_ITEM_NAME, DriveItem
from permission_mirror.sync.permissions import Permission

T = TypeVar("T")


@dataclass
class ItemPermissions:
    """A drive item together with the permissions fetched for it."""

    item: DriveItem
    permissions: list[Permission] = field(default_factory=list)

    @property
    def permission_ids(self) -> set[str]:
        return {permission.id for permission in self.permissions if permission.id}


@dataclass
class SiblingReconciliation:
    to_update: list[ItemPermissions] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)


@dataclass
class ParsedDelta:
    deleted_ids: list[str] = field(default_factory=list)
    updated: list[DriveItem] = field(default_factory=list)


def strip_inherited(
    parent_permission_ids: Iterable[str], items: Sequence[ItemPermissions]
) -> list[ItemPermissions]:
    """Remove every permission whose id the parent folder also carries.

    Items are never dropped, even when nothing is left; an empty permission
    list means there is nothing to report for that item.
    """
    parent_ids = set(parent_permission_ids)
    return [
        ItemPermissions(
            item=entry.item,
            permissions=[p for p in entry.permissions if p.id not in parent_ids],
        )
        for entry in items
    ]


def reconcile_against_siblings(items: Sequence[ItemPermissions]) -> SiblingReconciliation:
    """Strip permissions inherited from a parent present in the same batch.

    Used on delta batches, where there is no single known parent folder. An
    item whose parent is in the batch loses the parent's permission ids and
    is marked for deletion if none remain. An item whose parent is not in the
    batch is kept as-is.
    """
    by_id = {entry.item.id: entry for entry in items}
    result = SiblingReconciliation()
    for entry in items:
        parent = by_id.get(entry.item.parent_id) if entry.item.parent_id else None
        if parent is None or parent is entry:
            result.to_update.append(entry)
            continue
        parent_ids = parent.permission_ids
        remaining = [p for p in entry.permissions if p.id not in parent_ids]
        if remaining:
            result.to_update.append(ItemPermissions(item=entry.item, permissions=remaining))
        else:
            result.to_delete.append(entry.item.id)
    return result


def partition_delta(items: Iterable[DriveItem]) -> ParsedDelta:
    """Split a delta page into deleted ids and updated items.

    The drive root pseudo-item is left out of both.
    """
    parsed = ParsedDelta()
    for item in items:
        if item.name == ROOT_ITEM_NAME:
            continue
        if item.is_deleted:
            parsed.deleted_ids.append(item.id)
        else:
            parsed.updated.append(item)
    return parsed


def group_items(items: Iterable[DriveItem]) -> tuple[list[DriveItem], list[DriveItem]]:
    """Split drive items into (folders, files)."""
    folders: list[DriveItem] = []
    files: list[DriveItem] = []
    for item in items:
        (folders if item.is_folder else files).append(item)
    return folders, files


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most `size` elements."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
