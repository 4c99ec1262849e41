"""Organisation and drive sync state persisted as JSON blobs.

Layout inside the state container:

    organisations/{organisation_id}.json
    drives/{organisation_id}/{drive_id}.json
    pending-changes/{organisation_id}/{drive_id}.json

A pending-changes blob marks a drive that was notified of changes while
its incremental sync was already running.

Every write is a single-blob overwrite keyed by identity, so concurrent
writers resolve last-writer-wins.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient

from permission_mirror.state.models import DriveSyncState, Organisation

if TYPE_CHECKING:
    from permission_mirror.config import AppConfig

logger = logging.getLogger(__name__)

ORGANISATIONS_PREFIX = "organisations/"
DRIVES_PREFIX = "drives/"
PENDING_CHANGES_PREFIX = "pending-changes/"


def _organisation_blob(organisation_id: str) -> str:
    return f"{ORGANISATIONS_PREFIX}{organisation_id}.json"


def _drive_blob(organisation_id: str, drive_id: str) -> str:
    return f"{DRIVES_PREFIX}{organisation_id}/{drive_id}.json"


def _pending_changes_blob(organisation_id: str, drive_id: str) -> str:
    return f"{PENDING_CHANGES_PREFIX}{organisation_id}/{drive_id}.json"


class StateStore:
    """Reads and writes organisation and drive sync state."""

    def __init__(self, blob_service: BlobServiceClient, container: str) -> None:
        self._container = blob_service.get_container_client(container)
        self._container_ready = False

    # ------------------------------------------------------------------
    # Blob helpers
    # ------------------------------------------------------------------

    def _ensure_container(self) -> None:
        if self._container_ready:
            return
        try:
            self._container.create_container()
            logger.info("[_ensure_container] created state container")
        except ResourceExistsError:
            pass
        self._container_ready = True

    def _read(self, name: str) -> dict[str, Any] | None:
        try:
            data = self._container.get_blob_client(name).download_blob().readall()
        except ResourceNotFoundError:
            return None
        return json.loads(data)  # type: ignore[no-any-return]

    def _write(self, name: str, payload: dict[str, Any]) -> None:
        self._ensure_container()
        self._container.get_blob_client(name).upload_blob(
            json.dumps(payload).encode("utf-8"), overwrite=True
        )

    def _delete(self, name: str) -> bool:
        try:
            self._container.get_blob_client(name).delete_blob()
        except ResourceNotFoundError:
            return False
        return True

    def _list(self, prefix: str) -> list[dict[str, Any]]:
        documents: list[dict[str, Any]] = []
        try:
            for blob in self._container.list_blobs(name_starts_with=prefix):
                document = self._read(blob.name)
                if document is not None:
                    documents.append(document)
        except ResourceNotFoundError:
            # Container not created yet: nothing persisted.
            return []
        return documents

    # ------------------------------------------------------------------
    # Organisations
    # ------------------------------------------------------------------

    def get_organisation(self, organisation_id: str) -> Organisation | None:
        data = self._read(_organisation_blob(organisation_id))
        return Organisation.from_dict(data) if data is not None else None

    def upsert_organisation(self, organisation: Organisation) -> None:
        self._write(_organisation_blob(organisation.id), organisation.to_dict())
        logger.info(
            "[upsert_organisation] organisation saved; organisation_id:%s;tenant_id:%s",
            organisation.id,
            organisation.tenant_id,
        )

    def list_organisations(self) -> list[Organisation]:
        return [Organisation.from_dict(data) for data in self._list(ORGANISATIONS_PREFIX)]

    def find_organisations_by_tenant(self, tenant_id: str) -> list[Organisation]:
        return [org for org in self.list_organisations() if org.tenant_id == tenant_id]

    def delete_organisation(self, organisation_id: str) -> None:
        """Delete an organisation together with all of its drive sync states."""
        states = self.list_drive_states(organisation_id)
        for state in states:
            self.delete_drive_state(organisation_id, state.drive_id)
        self._delete(_organisation_blob(organisation_id))
        logger.info(
            "[delete_organisation] organisation deleted; organisation_id:%s;drive_states:%s",
            organisation_id,
            len(states),
        )

    # ------------------------------------------------------------------
    # Drive sync state
    # ------------------------------------------------------------------

    def upsert_drive_state(self, state: DriveSyncState) -> None:
        self._write(_drive_blob(state.organisation_id, state.drive_id), state.to_dict())

    def get_drive_state(self, organisation_id: str, drive_id: str) -> DriveSyncState | None:
        data = self._read(_drive_blob(organisation_id, drive_id))
        return DriveSyncState.from_dict(data) if data is not None else None

    def list_drive_states(self, organisation_id: str) -> list[DriveSyncState]:
        return [
            DriveSyncState.from_dict(data)
            for data in self._list(f"{DRIVES_PREFIX}{organisation_id}/")
        ]

    def list_all_drive_states(self) -> list[DriveSyncState]:
        return [DriveSyncState.from_dict(data) for data in self._list(DRIVES_PREFIX)]

    def find_drive_state(
        self, tenant_id: str, site_id: str, drive_id: str, subscription_id: str
    ) -> DriveSyncState | None:
        """Find the sync state a change notification refers to."""
        for organisation in self.find_organisations_by_tenant(tenant_id):
            state = self.get_drive_state(organisation.id, drive_id)
            if (
                state is not None
                and state.site_id == site_id
                and state.subscription_id == subscription_id
            ):
                return state
        return None

    def get_subscription_state(
        self, organisation_id: str, subscription_id: str
    ) -> DriveSyncState | None:
        for state in self.list_drive_states(organisation_id):
            if state.subscription_id == subscription_id:
                return state
        return None

    def find_subscriptions(
        self, pairs: Iterable[tuple[str, str]]
    ) -> list[DriveSyncState]:
        """Return the stored states matching (tenant_id, subscription_id) pairs.

        Pairs with no stored state are simply absent from the result.
        """
        wanted = set(pairs)
        tenants = {tenant_id for tenant_id, _ in wanted}
        found: list[DriveSyncState] = []
        for tenant_id in tenants:
            for organisation in self.find_organisations_by_tenant(tenant_id):
                for state in self.list_drive_states(organisation.id):
                    if (tenant_id, state.subscription_id) in wanted:
                        found.append(state)
        return found

    def update_subscription_expiry(
        self, organisation_id: str, drive_id: str, expires_at: str
    ) -> DriveSyncState | None:
        state = self.get_drive_state(organisation_id, drive_id)
        if state is None:
            return None
        updated = replace(state, subscription_expires_at=expires_at)
        self.upsert_drive_state(updated)
        return updated

    def update_delta_cursor(
        self, organisation_id: str, drive_id: str, delta_cursor: str
    ) -> DriveSyncState | None:
        state = self.get_drive_state(organisation_id, drive_id)
        if state is None:
            return None
        updated = replace(state, delta_cursor=delta_cursor)
        self.upsert_drive_state(updated)
        return updated

    def delete_drive_state(self, organisation_id: str, drive_id: str) -> bool:
        """Delete a drive's sync state and any pending-changes mark it has."""
        self._delete(_pending_changes_blob(organisation_id, drive_id))
        return self._delete(_drive_blob(organisation_id, drive_id))

    def mark_changes_pending(self, organisation_id: str, drive_id: str) -> None:
        self._write(
            _pending_changes_blob(organisation_id, drive_id),
            {"organisation_id": organisation_id, "drive_id": drive_id},
        )

    def take_changes_pending(self, organisation_id: str, drive_id: str) -> bool:
        """Clear the drive's pending-changes mark.

        Returns:
            True when a mark was there to clear.
        """
        return self._delete(_pending_changes_blob(organisation_id, drive_id))


def state_store_from_config(config: AppConfig) -> StateStore:
    """Construct a StateStore from an AppConfig instance.

    Args:
        config: Application configuration instance.

    Returns:
        Configured StateStore instance.
    """
    blob_service = BlobServiceClient.from_connection_string(config.storage_connection_string)
    return StateStore(blob_service=blob_service, container=config.state_container)
