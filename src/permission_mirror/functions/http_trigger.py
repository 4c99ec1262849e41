"""HTTP trigger blueprint — health check endpoint."""

import json
import logging

import azure.functions as func

from permission_mirror import __version__

logger = logging.getLogger(__name__)

SERVICE_NAME = "permission-mirror"

bp = func.Blueprint()


@bp.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health_check(req: func.HttpRequest) -> func.HttpResponse:
    """Liveness check for the function app; needs no configuration or storage."""
    logger.info("[health_check] health check requested")

    try:
        body = json.dumps({"status": "ok", "service": SERVICE_NAME, "version": __version__})
        return func.HttpResponse(body, status_code=200, mimetype="application/json")

    except Exception:
        logger.error("[health_check] health check failed", exc_info=True)
        error_body = json.dumps({"status": "error", "message": "Internal server error"})
        return func.HttpResponse(error_body, status_code=500, mimetype="application/json")
