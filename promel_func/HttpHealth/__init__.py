"""Liveness probe for the ProMEL function app."""

import json

import azure.functions as func

from .. import __version__
from ..shared import get_json_logger

LOGGER = get_json_logger("promel.HttpHealth")


def main(req: func.HttpRequest) -> func.HttpResponse:
    LOGGER.info("Health check", extra={"event": "health"})
    payload = {"ok": True, "message": "ProMEL AI backend is running", "version": __version__}
    return func.HttpResponse(body=json.dumps(payload), status_code=200, mimetype="application/json")
