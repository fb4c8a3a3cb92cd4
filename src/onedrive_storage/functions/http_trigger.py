"""HTTP trigger blueprint — health check and storage self-check endpoints."""

import json
import logging
from dataclasses import asdict

import azure.functions as func

from onedrive_storage import __version__
from onedrive_storage.config import load_config
from onedrive_storage.orchestration.selfcheck import storage_self_check_from_config

logger = logging.getLogger(__name__)

bp = func.Blueprint()


@bp.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health_check(req: func.HttpRequest) -> func.HttpResponse:
    """Health check endpoint. Returns service status and version."""
    logger.info("[health_check] health check requested")

    try:
        body = json.dumps({"status": "ok", "version": __version__})
        return func.HttpResponse(body, status_code=200, mimetype="application/json")

    except Exception:
        logger.error("[health_check] health check failed", exc_info=True)
        error_body = json.dumps({"status": "error", "message": "Internal server error"})
        return func.HttpResponse(error_body, status_code=500, mimetype="application/json")


@bp.route(route="selfcheck", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def self_check(req: func.HttpRequest) -> func.HttpResponse:
    """Run the storage self-check against the configured drive.

    Requires a function key. Uploads, moves, downloads and deletes a batch
    of content-addressed blobs and returns the report.
    """
    logger.info("[self_check] self-check requested")

    try:
        config = load_config()
        check = storage_self_check_from_config(config)
        report = check.run()

        status = "ok" if report.ok else "failed"
        body = json.dumps({"status": status, "report": asdict(report)})
        logger.info("[self_check] self-check finished; status:%s", status)
        return func.HttpResponse(
            body,
            status_code=200 if report.ok else 500,
            mimetype="application/json",
        )

    except Exception:
        logger.error("[self_check] self-check failed", exc_info=True)
        error_body = json.dumps({"status": "error", "message": "Internal server error"})
        return func.HttpResponse(error_body, status_code=500, mimetype="application/json")
