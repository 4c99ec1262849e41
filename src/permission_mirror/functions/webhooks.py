"""Webhook blueprint — platform requests and Graph notifications.

Handlers only check payload shapes and hand off to the inbound operations.
The handle_* coroutines take their durable client and state store as
arguments; the decorated functions at the bottom bind them to routes.
"""

import json
import logging
from typing import Any

import azure.durable_functions as df
import azure.functions as func

from permission_mirror.config import load_config
from permission_mirror.orchestration import inbound
from permission_mirror.orchestration.notifications import (
    parse_change_notifications,
    parse_lifecycle_notifications,
)
from permission_mirror.state.store import StateStore, state_store_from_config

logger = logging.getLogger(__name__)

bp = df.Blueprint()

VALIDATION_TOKEN_PARAM = "validationToken"
INVALID_DATA = {"message": "Invalid data"}


def _json_response(body: dict[str, Any], status_code: int) -> func.HttpResponse:
    return func.HttpResponse(json.dumps(body), status_code=status_code, mimetype="application/json")


def _json_body(req: func.HttpRequest) -> dict[str, Any] | None:
    try:
        body = req.get_json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _strings(body: dict[str, Any], *keys: str) -> list[str] | None:
    values = [body.get(key) for key in keys]
    if not all(isinstance(value, str) and value for value in values):
        return None
    return values  # type: ignore[return-value]


def _object_request(req: func.HttpRequest) -> tuple[str, str, dict[str, str]] | None:
    body = _json_body(req)
    if body is None:
        return None
    ids = _strings(body, "organisationId", "id")
    metadata = body.get("metadata")
    if (
        ids is None
        or not isinstance(metadata, dict)
        or _strings(metadata, "siteId", "driveId") is None
    ):
        return None
    return ids[0], ids[1], {"siteId": metadata["siteId"], "driveId": metadata["driveId"]}


# ----------------------------------------------------------------------
# Platform requests
# ----------------------------------------------------------------------


async def handle_start_sync(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    body = _json_body(req)
    ids = _strings(body, "organisationId") if body is not None else None
    if body is None or ids is None:
        return _json_response(INVALID_DATA, 400)
    instance_id = await inbound.start_full_sync(
        client, ids[0], is_first_sync=bool(body.get("isFirstSync", False))
    )
    return _json_response({"status": "accepted", "instanceId": instance_id}, 202)


async def handle_refresh_object(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    parsed = _object_request(req)
    if parsed is None:
        return _json_response(INVALID_DATA, 400)
    instance_id = await inbound.refresh_object(client, *parsed)
    return _json_response({"status": "accepted", "instanceId": instance_id}, 202)


async def handle_delete_object(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    parsed = _object_request(req)
    if parsed is None:
        return _json_response(INVALID_DATA, 400)
    instance_id = await inbound.delete_object(client, *parsed)
    return _json_response({"status": "accepted", "instanceId": instance_id}, 202)


async def handle_delete_object_permissions(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    parsed = _object_request(req)
    permissions = (_json_body(req) or {}).get("permissions")
    if (
        parsed is None
        or not isinstance(permissions, list)
        or not all(isinstance(p, dict) and isinstance(p.get("id"), str) for p in permissions)
    ):
        return _json_response(INVALID_DATA, 400)
    instance_id = await inbound.delete_object_permissions(
        client, *parsed, [permission["id"] for permission in permissions]
    )
    return _json_response({"status": "accepted", "instanceId": instance_id}, 202)


async def handle_install(
    req: func.HttpRequest, client: df.DurableOrchestrationClient, store: StateStore
) -> func.HttpResponse:
    body = _json_body(req)
    fields = _strings(body, "organisationId", "tenantId", "region") if body is not None else None
    if fields is None:
        return _json_response(INVALID_DATA, 400)
    instance_id = await inbound.install_organisation(client, store, *fields)
    return _json_response({"status": "accepted", "instanceId": instance_id}, 202)


async def handle_uninstall(
    req: func.HttpRequest, client: df.DurableOrchestrationClient, store: StateStore
) -> func.HttpResponse:
    body = _json_body(req)
    ids = _strings(body, "organisationId") if body is not None else None
    if ids is None:
        return _json_response(INVALID_DATA, 400)
    instance_id = await inbound.uninstall_organisation(client, store, ids[0])
    if instance_id is None:
        return _json_response({"message": "Organisation not found"}, 404)
    return _json_response({"status": "accepted", "instanceId": instance_id}, 202)


# ----------------------------------------------------------------------
# Graph notifications
# ----------------------------------------------------------------------


def _validation_response(req: func.HttpRequest) -> func.HttpResponse | None:
    """Echo the subscription validation token Graph sends on creation."""
    token = req.params.get(VALIDATION_TOKEN_PARAM)
    if token is None:
        return None
    return func.HttpResponse(token, status_code=200, mimetype="text/plain")


async def handle_event_notifications(
    req: func.HttpRequest, client: df.DurableOrchestrationClient, store: StateStore
) -> func.HttpResponse:
    validation = _validation_response(req)
    if validation is not None:
        return validation
    notifications = parse_change_notifications(_json_body(req))
    if notifications is None:
        return _json_response(INVALID_DATA, 404)
    if not await inbound.handle_change_notifications(client, store, notifications):
        return _json_response(INVALID_DATA, 404)
    return func.HttpResponse(status_code=202)


async def handle_lifecycle_notifications(
    req: func.HttpRequest, client: df.DurableOrchestrationClient, store: StateStore
) -> func.HttpResponse:
    validation = _validation_response(req)
    if validation is not None:
        return validation
    notifications = parse_lifecycle_notifications(_json_body(req))
    if notifications is None:
        return _json_response(INVALID_DATA, 404)
    if not await inbound.handle_lifecycle_notifications(client, store, notifications):
        return _json_response(INVALID_DATA, 404)
    return func.HttpResponse(status_code=202)


# ----------------------------------------------------------------------
# Routes
# ----------------------------------------------------------------------


def _store() -> StateStore:
    return state_store_from_config(load_config())


@bp.route(
    route="webhooks/platform/start-sync", methods=["POST"], auth_level=func.AuthLevel.FUNCTION
)
@bp.durable_client_input(client_name="client")
async def platform_start_sync(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    logger.info("[platform_start_sync] start sync requested")
    return await handle_start_sync(req, client)


@bp.route(
    route="webhooks/platform/refresh-object", methods=["POST"], auth_level=func.AuthLevel.FUNCTION
)
@bp.durable_client_input(client_name="client")
async def platform_refresh_object(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    logger.info("[platform_refresh_object] object refresh requested")
    return await handle_refresh_object(req, client)


@bp.route(
    route="webhooks/platform/delete-object", methods=["POST"], auth_level=func.AuthLevel.FUNCTION
)
@bp.durable_client_input(client_name="client")
async def platform_delete_object(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    logger.info("[platform_delete_object] object deletion requested")
    return await handle_delete_object(req, client)


@bp.route(
    route="webhooks/platform/delete-object-permissions",
    methods=["POST"],
    auth_level=func.AuthLevel.FUNCTION,
)
@bp.durable_client_input(client_name="client")
async def platform_delete_object_permissions(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    logger.info("[platform_delete_object_permissions] permission deletion requested")
    return await handle_delete_object_permissions(req, client)


@bp.route(route="webhooks/platform/install", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def platform_install(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    logger.info("[platform_install] install requested")
    return await handle_install(req, client, _store())


@bp.route(route="webhooks/platform/uninstall", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def platform_uninstall(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    logger.info("[platform_uninstall] uninstall requested")
    return await handle_uninstall(req, client, _store())


@bp.route(
    route="webhooks/microsoft/event-handler",
    methods=["POST"],
    auth_level=func.AuthLevel.ANONYMOUS,
)
@bp.durable_client_input(client_name="client")
async def microsoft_event_handler(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    logger.info("[microsoft_event_handler] change notifications received")
    return await handle_event_notifications(req, client, _store())


@bp.route(
    route="webhooks/microsoft/lifecycle-notifications",
    methods=["POST"],
    auth_level=func.AuthLevel.ANONYMOUS,
)
@bp.durable_client_input(client_name="client")
async def microsoft_lifecycle_notifications(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    logger.info("[microsoft_lifecycle_notifications] lifecycle notifications received")
    return await handle_lifecycle_notifications(req, client, _store())
