"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class AppConfig:
    """Centralized application configuration.

    Required fields have no defaults and will cause a KeyError at startup
    if the corresponding environment variable is missing. Sync tuning
    constants have sensible defaults but can be overridden via environment
    variables.
    """

    # Required: load_config raises KeyError when absent
    client_id: str
    client_secret: str
    storage_connection_string: str
    platform_api_key: str
    platform_api_base_url: str
    platform_source_id: str
    webhook_base_url: str

    # Sync tuning, overridable via PM_* variables
    state_container: str = "permission-mirror-state"
    sites_page_size: int = 100
    drives_page_size: int = 100
    # Kept low: every listed item costs one permissions request right after.
    items_page_size: int = 15
    permissions_page_size: int = 100
    permissions_chunk_size: int = 15
    delta_page_size: int = 100
    sync_concurrency: int = 5
    items_sync_concurrency: int = 5
    wait_timeout_hours: int = 24
    subscription_expiration_days: int = 25
    subscription_renewal_threshold_days: int = 5
    activity_max_attempts: int = 5
    activity_retry_interval_ms: int = 5000
    max_folder_depth: int = 64
    object_concurrency: int = 10
    slot_lease_minutes: int = 60
    slot_poll_seconds: int = 30


def load_config() -> AppConfig:
    """Construct an AppConfig from environment variables.

    Required environment variables:
        PM_CLIENT_ID: Azure AD multi-tenant application (client) ID.
        PM_CLIENT_SECRET: Azure AD application client secret.
        AzureWebJobsStorage: Azure Storage account connection string.
        PM_PLATFORM_API_KEY: API key for the security platform.
        PM_PLATFORM_API_BASE_URL: Base URL of the security platform API.
        PM_PLATFORM_SOURCE_ID: Source identifier registered on the platform.
        PM_WEBHOOK_BASE_URL: Public base URL Graph notifications are sent to.

    Optional environment variables (with defaults):
        PM_STATE_CONTAINER: Blob container for organisation and drive state.
        PM_SITES_PAGE_SIZE: Sites requested per page (default: 100).
        PM_DRIVES_PAGE_SIZE: Drives requested per page (default: 100).
        PM_ITEMS_PAGE_SIZE: Drive items requested per page (default: 15).
        PM_PERMISSIONS_PAGE_SIZE: Permissions requested per page (default: 100).
        PM_PERMISSIONS_CHUNK_SIZE: Items whose permissions are fetched concurrently (default: 15).
        PM_DELTA_PAGE_SIZE: Delta records requested per page (default: 100).
        PM_SYNC_CONCURRENCY: Site and drive crawls fanned out at once (default: 5).
        PM_ITEMS_SYNC_CONCURRENCY: Folder crawls fanned out at once (default: 5).
        PM_WAIT_TIMEOUT_HOURS: Bound on waiting for child crawls (default: 24).
        PM_SUBSCRIPTION_EXPIRATION_DAYS: Lifetime of a change subscription (default: 25).
        PM_SUBSCRIPTION_RENEWAL_THRESHOLD_DAYS: Renew subscriptions expiring sooner (default: 5).
        PM_ACTIVITY_MAX_ATTEMPTS: Attempts per activity before failing (default: 5).
        PM_ACTIVITY_RETRY_INTERVAL_MS: First retry interval of an activity (default: 5000).
        PM_MAX_FOLDER_DEPTH: Deepest folder level crawled (default: 64).
        PM_OBJECT_CONCURRENCY: Single-object workflows working at once per
            organisation (default: 10).
        PM_SLOT_LEASE_MINUTES: Lifetime of a concurrency slot that was never
            given back (default: 60).
        PM_SLOT_POLL_SECONDS: Wait between attempts to take a slot (default: 30).

    Returns:
        Configured AppConfig instance.
    """
    return AppConfig(
        client_id=os.environ["PM_CLIENT_ID"],
        client_secret=os.environ["PM_CLIENT_SECRET"],
        storage_connection_string=os.environ["AzureWebJobsStorage"],  # noqa: SIM112
        platform_api_key=os.environ["PM_PLATFORM_API_KEY"],
        platform_api_base_url=os.environ["PM_PLATFORM_API_BASE_URL"],
        platform_source_id=os.environ["PM_PLATFORM_SOURCE_ID"],
        webhook_base_url=os.environ["PM_WEBHOOK_BASE_URL"],
        state_container=os.environ.get("PM_STATE_CONTAINER", "permission-mirror-state"),
        sites_page_size=int(os.environ.get("PM_SITES_PAGE_SIZE", "100")),
        drives_page_size=int(os.environ.get("PM_DRIVES_PAGE_SIZE", "100")),
        items_page_size=int(os.environ.get("PM_ITEMS_PAGE_SIZE", "15")),
        permissions_page_size=int(os.environ.get("PM_PERMISSIONS_PAGE_SIZE", "100")),
        permissions_chunk_size=int(os.environ.get("PM_PERMISSIONS_CHUNK_SIZE", "15")),
        delta_page_size=int(os.environ.get("PM_DELTA_PAGE_SIZE", "100")),
        sync_concurrency=int(os.environ.get("PM_SYNC_CONCURRENCY", "5")),
        items_sync_concurrency=int(os.environ.get("PM_ITEMS_SYNC_CONCURRENCY", "5")),
        wait_timeout_hours=int(os.environ.get("PM_WAIT_TIMEOUT_HOURS", "24")),
        subscription_expiration_days=int(os.environ.get("PM_SUBSCRIPTION_EXPIRATION_DAYS", "25")),
        subscription_renewal_threshold_days=int(
            os.environ.get("PM_SUBSCRIPTION_RENEWAL_THRESHOLD_DAYS", "5")
        ),
        activity_max_attempts=int(os.environ.get("PM_ACTIVITY_MAX_ATTEMPTS", "5")),
        activity_retry_interval_ms=int(os.environ.get("PM_ACTIVITY_RETRY_INTERVAL_MS", "5000")),
        max_folder_depth=int(os.environ.get("PM_MAX_FOLDER_DEPTH", "64")),
        object_concurrency=int(os.environ.get("PM_OBJECT_CONCURRENCY", "10")),
        slot_lease_minutes=int(os.environ.get("PM_SLOT_LEASE_MINUTES", "60")),
        slot_poll_seconds=int(os.environ.get("PM_SLOT_POLL_SECONDS", "30")),
    )
