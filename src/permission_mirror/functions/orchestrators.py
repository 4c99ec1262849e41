"""Durable blueprint: orchestrator and activity function registrations.

Workflow logic lives in permission_mirror.orchestration; the functions here
only bind it to the Durable Functions runtime under the names the
orchestrators schedule.
"""

from functools import lru_cache
from typing import Any

import azure.durable_functions as df

from permission_mirror.config import AppConfig, load_config
from permission_mirror.orchestration import delta as delta_workflows
from permission_mirror.orchestration import drives as drive_workflows
from permission_mirror.orchestration import items as item_workflows
from permission_mirror.orchestration import objects as object_workflows
from permission_mirror.orchestration import organisations as organisation_workflows
from permission_mirror.orchestration import sites as site_workflows
from permission_mirror.orchestration import subscriptions as subscription_workflows
from permission_mirror.orchestration import throttle
from permission_mirror.orchestration.activities import SyncActivities, sync_activities_from_config
from permission_mirror.orchestration.inbound import start_orchestration

bp = df.Blueprint()


@lru_cache(maxsize=1)
def _config() -> AppConfig:
    return load_config()


@lru_cache(maxsize=1)
def _activities() -> SyncActivities:
    return sync_activities_from_config(_config())


# ----------------------------------------------------------------------
# Orchestrators
# ----------------------------------------------------------------------


@bp.orchestration_trigger(context_name="context")
def sync_sites(context: df.DurableOrchestrationContext):  # type: ignore[no-untyped-def]
    return (yield from site_workflows.sync_sites(context, _config()))


@bp.orchestration_trigger(context_name="context")
def sync_drives(context: df.DurableOrchestrationContext):  # type: ignore[no-untyped-def]
    return (yield from drive_workflows.sync_drives(context, _config()))


@bp.orchestration_trigger(context_name="context")
def sync_items(context: df.DurableOrchestrationContext):  # type: ignore[no-untyped-def]
    return (yield from item_workflows.sync_items(context, _config()))


@bp.orchestration_trigger(context_name="context")
def initialize_delta(context: df.DurableOrchestrationContext):  # type: ignore[no-untyped-def]
    return (yield from delta_workflows.initialize_delta(context, _config()))


@bp.orchestration_trigger(context_name="context")
def update_items(context: df.DurableOrchestrationContext):  # type: ignore[no-untyped-def]
    return (yield from delta_workflows.update_items(context, _config()))


@bp.orchestration_trigger(context_name="context")
def refresh_subscription(context: df.DurableOrchestrationContext):  # type: ignore[no-untyped-def]
    return (yield from subscription_workflows.refresh_subscription(context, _config()))


@bp.orchestration_trigger(context_name="context")
def resubscribe_drive(context: df.DurableOrchestrationContext):  # type: ignore[no-untyped-def]
    return (yield from subscription_workflows.resubscribe_drive(context, _config()))


@bp.orchestration_trigger(context_name="context")
def remove_organisation(context: df.DurableOrchestrationContext):  # type: ignore[no-untyped-def]
    return (yield from organisation_workflows.remove_organisation(context, _config()))


@bp.orchestration_trigger(context_name="context")
def refresh_object(context: df.DurableOrchestrationContext):  # type: ignore[no-untyped-def]
    return (yield from object_workflows.refresh_object(context, _config()))


@bp.orchestration_trigger(context_name="context")
def delete_object(context: df.DurableOrchestrationContext):  # type: ignore[no-untyped-def]
    return (yield from object_workflows.delete_object(context, _config()))


@bp.orchestration_trigger(context_name="context")
def delete_object_permissions(  # type: ignore[no-untyped-def]
    context: df.DurableOrchestrationContext,
):
    return (yield from object_workflows.delete_object_permissions(context, _config()))


# ----------------------------------------------------------------------
# Entities
# ----------------------------------------------------------------------


@bp.entity_trigger(context_name="context")
def organisation_slots(context: df.DurableEntityContext) -> None:
    throttle.organisation_slots(context)


# ----------------------------------------------------------------------
# Activities
# ----------------------------------------------------------------------


@bp.activity_trigger(input_name="payload")
def get_organisation(payload: dict[str, Any]) -> dict[str, Any] | None:
    return _activities().get_organisation(payload)


@bp.activity_trigger(input_name="payload")
def list_sites_page(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().list_sites_page(payload)


@bp.activity_trigger(input_name="payload")
def list_drives_page(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().list_drives_page(payload)


@bp.activity_trigger(input_name="payload")
def list_items_page(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().list_items_page(payload)


@bp.activity_trigger(input_name="payload")
def report_items(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().report_items(payload)


@bp.activity_trigger(input_name="payload")
def delete_stale_objects(payload: dict[str, Any]) -> None:
    _activities().delete_stale_objects(payload)


@bp.activity_trigger(input_name="payload")
def fetch_delta_page(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().fetch_delta_page(payload)


@bp.activity_trigger(input_name="payload")
def find_drive_sync_state(payload: dict[str, Any]) -> dict[str, Any] | None:
    return _activities().find_drive_sync_state(payload)


@bp.activity_trigger(input_name="payload")
def apply_delta_changes(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().apply_delta_changes(payload)


@bp.activity_trigger(input_name="payload")
def save_delta_cursor(payload: dict[str, Any]) -> None:
    _activities().save_delta_cursor(payload)


@bp.activity_trigger(input_name="payload")
def take_pending_changes(payload: dict[str, Any]) -> bool:
    return _activities().take_pending_changes(payload)


@bp.activity_trigger(input_name="payload")
def establish_drive_subscription(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().establish_drive_subscription(payload)


@bp.activity_trigger(input_name="payload")
def create_drive_subscription(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().create_drive_subscription(payload)


@bp.activity_trigger(input_name="payload")
def save_drive_sync_state(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().save_drive_sync_state(payload)


@bp.activity_trigger(input_name="payload")
def get_subscription_state(payload: dict[str, Any]) -> dict[str, Any] | None:
    return _activities().get_subscription_state(payload)


@bp.activity_trigger(input_name="payload")
def renew_drive_subscription(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().renew_drive_subscription(payload)


@bp.activity_trigger(input_name="payload")
def list_drive_sync_states(payload: dict[str, Any]) -> list[dict[str, Any]]:
    return _activities().list_drive_sync_states(payload)


@bp.activity_trigger(input_name="payload")
def remove_drive_subscription(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().remove_drive_subscription(payload)


@bp.activity_trigger(input_name="payload")
def update_connection_status(payload: dict[str, Any]) -> None:
    _activities().update_connection_status(payload)


@bp.activity_trigger(input_name="payload")
def delete_organisation_records(payload: dict[str, Any]) -> None:
    _activities().delete_organisation_records(payload)


@bp.activity_trigger(input_name="payload")
def sync_object(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().sync_object(payload)


@bp.activity_trigger(input_name="payload")
def remove_object(payload: dict[str, Any]) -> dict[str, Any]:
    return _activities().remove_object(payload)


@bp.activity_trigger(input_name="payload")
def remove_object_permissions(payload: dict[str, Any]) -> dict[str, list[str]]:
    return _activities().remove_object_permissions(payload)


@bp.activity_trigger(input_name="payload")
@bp.durable_client_input(client_name="client")
async def start_workflow(payload: dict[str, Any], client: df.DurableOrchestrationClient) -> bool:
    """Start an independent workflow from inside an orchestration."""
    return await start_orchestration(
        client, payload["name"], payload["instance_id"], payload["input"]
    )
