"""Microsoft Graph API client with MSAL authentication."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any
from urllib import request as urllib_request
from urllib.error import HTTPError

import msal

if TYPE_CHECKING:
    from permission_mirror.config import AppConfig

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
AUTHORITY_BASE_URL = "https://login.microsoftonline.com"

HTTP_NOT_FOUND = 404


class GraphAuthError(Exception):
    """Raised when MSAL token acquisition fails."""


class GraphApiError(Exception):
    """Raised when the Graph API returns a non-2xx response."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Graph API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message

    @property
    def is_not_found(self) -> bool:
        """True when the target resource no longer exists."""
        return self.status_code == HTTP_NOT_FOUND


class GraphClient:
    """Authenticated client for Microsoft Graph API, scoped to one tenant."""

    def __init__(self, client_id: str, client_secret: str, tenant_id: str) -> None:
        """Initialise the MSAL confidential client application.

        Args:
            client_id: Azure AD multi-tenant application (client) ID.
            client_secret: Azure AD application client secret.
            tenant_id: Azure AD tenant ID of the installed organisation.
        """
        authority = f"{AUTHORITY_BASE_URL}/{tenant_id}"
        self._app = msal.ConfidentialClientApplication(
            client_id=client_id,
            client_credential=client_secret,
            authority=authority,
        )
        self.tenant_id = tenant_id

    def _acquire_token(self) -> str:
        """Acquire a Bearer token using client credentials flow.

        Returns:
            Access token string.

        Raises:
            GraphAuthError: If MSAL cannot acquire a token.
        """
        result: dict[str, Any] = self._app.acquire_token_for_client(scopes=GRAPH_SCOPES) or {}
        if "access_token" not in result:
            error = result.get("error", "unknown_error")
            description = result.get("error_description", "No description provided")
            logger.error(
                "[_acquire_token] MSAL token acquisition failed; tenant_id:%s;error:%s",
                self.tenant_id,
                error,
            )
            raise GraphAuthError(f"Token acquisition failed: {error}: {description}")
        return str(result["access_token"])

    def get(self, path: str) -> dict[str, Any]:
        """Perform an authenticated GET request to the Graph API.

        Args:
            path: URL path relative to GRAPH_BASE_URL (must start with '/').

        Returns:
            Parsed JSON response body as a dict.

        Raises:
            GraphAuthError: If token acquisition fails.
            GraphApiError: If the API returns a non-2xx status code.
        """
        return self._request("GET", path)

    def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """Perform an authenticated POST request with a JSON body."""
        return self._request("POST", path, body)

    def patch(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """Perform an authenticated PATCH request with a JSON body."""
        return self._request("PATCH", path, body)

    def delete(self, path: str) -> None:
        """Perform an authenticated DELETE request.

        Raises:
            GraphApiError: If the API returns a non-2xx status code, including
                404 when the resource is already gone.
        """
        self._request("DELETE", path)

    def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request and decode the JSON response body.

        Empty bodies (e.g. 204 No Content) decode to an empty dict.
        """
        token = self._acquire_token()
        url = f"{GRAPH_BASE_URL}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        data: bytes | None = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"

        req = urllib_request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib_request.urlopen(req) as resp:
                raw = resp.read()
                if not raw:
                    return {}
                return json.loads(raw)  # type: ignore[no-any-return]
        except HTTPError as exc:
            raw = exc.read()
            try:
                detail = json.loads(raw).get("error", {}).get("message", exc.reason)
            except Exception:
                detail = exc.reason
            raise GraphApiError(exc.code, detail) from exc


def graph_client_for_tenant(config: AppConfig, tenant_id: str) -> GraphClient:
    """Construct a GraphClient for an installed organisation's tenant.

    Args:
        config: Application configuration instance.
        tenant_id: Azure AD tenant ID of the organisation.

    Returns:
        Configured GraphClient instance.
    """
    return GraphClient(
        client_id=config.client_id,
        client_secret=config.client_secret,
        tenant_id=tenant_id,
    )
