"""Client for the security platform's data-protection API."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any
from urllib import request as urllib_request
from urllib.error import HTTPError

from permission_mirror.platform_api.models import ReportableObject

if TYPE_CHECKING:
    from permission_mirror.config import AppConfig

logger = logging.getLogger(__name__)

OBJECTS_PATH = "/data-protection/objects"
CONNECTION_STATUS_PATH = "/connection-status"


class PlatformApiError(Exception):
    """Raised when the platform API returns a non-2xx response."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Platform API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class PlatformClient:
    """Pushes objects and connection status for one organisation."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        source_id: str,
        organisation_id: str,
        region: str,
    ) -> None:
        """Initialise the platform client.

        Args:
            api_key: API key issued by the platform.
            base_url: Platform API base URL, without the region prefix.
            source_id: Identifier of this integration on the platform.
            organisation_id: Organisation the requests are made for.
            region: Platform region the organisation's data lives in.
        """
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._source_id = source_id
        self.organisation_id = organisation_id
        self.region = region

    def update_objects(self, objects: Sequence[ReportableObject]) -> dict[str, Any]:
        """Create or refresh reported objects."""
        logger.info(
            "[update_objects] pushing objects; organisation_id:%s;count:%s",
            self.organisation_id,
            len(objects),
        )
        return self._request(
            "POST", OBJECTS_PATH, {"objects": [obj.to_dict() for obj in objects]}
        )

    def delete_objects(
        self,
        ids: Sequence[str] | None = None,
        synced_before: str | None = None,
    ) -> dict[str, Any]:
        """Delete objects by id, or every object not refreshed since a timestamp.

        Raises:
            ValueError: If neither or both selectors are given.
        """
        if (ids is None) == (synced_before is None):
            raise ValueError("exactly one of ids or synced_before is required")
        body: dict[str, Any] = (
            {"ids": list(ids)} if ids is not None else {"syncedBefore": synced_before}
        )
        logger.info(
            "[delete_objects] deleting objects; organisation_id:%s;ids:%s;synced_before:%s",
            self.organisation_id,
            len(ids) if ids is not None else None,
            synced_before,
        )
        return self._request("DELETE", OBJECTS_PATH, body)

    def update_connection_status(self, has_error: bool) -> dict[str, Any]:
        """Report whether the organisation's connection is broken."""
        return self._request("POST", CONNECTION_STATUS_PATH, {"hasError": has_error})

    def _request(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}/{self.region}/api/rest{path}"
        payload = {
            "organisationId": self.organisation_id,
            "sourceId": self._source_id,
            **body,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        req = urllib_request.Request(
            url, data=json.dumps(payload).encode("utf-8"), headers=headers, method=method
        )
        try:
            with urllib_request.urlopen(req) as resp:
                raw = resp.read()
                if not raw:
                    return {}
                return json.loads(raw)  # type: ignore[no-any-return]
        except HTTPError as exc:
            raise PlatformApiError(exc.code, str(exc.reason)) from exc


def platform_client_from_config(
    config: AppConfig, organisation_id: str, region: str
) -> PlatformClient:
    """Construct a PlatformClient for one organisation.

    Args:
        config: Application configuration instance.
        organisation_id: Organisation the client acts for.
        region: Platform region of the organisation.

    Returns:
        Configured PlatformClient instance.
    """
    return PlatformClient(
        api_key=config.platform_api_key,
        base_url=config.platform_api_base_url,
        source_id=config.platform_source_id,
        organisation_id=organisation_id,
        region=region,
    )
