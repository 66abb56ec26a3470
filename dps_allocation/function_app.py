"""
DPS ADT Allocation Azure Function.

HTTP triggered function used as the custom allocation webhook of an
IoT Hub Device Provisioning Service enrollment. For every device that
registers it makes sure a matching Azure Digital Twin exists and tells DPS
which linked IoT Hub the device goes to.

Architecture:
    Device → DPS → DPS Allocation (HTTP) → Azure Digital Twins
                        │
                        └→ {"iotHubHostName", "initialTwin"} → DPS → IoT Hub

Authentication:
    Function-level key on the HTTP trigger (configured on the DPS enrollment).
    Uses DefaultAzureCredential (Managed Identity) to talk to ADT.

Environment Variables Required:
    - ADT_SERVICE_URL: Azure Digital Twins endpoint URL
"""

import azure.functions as func
import json
import logging
from typing import Optional

from dps_allocation.adt_helper import get_twin_store
from dps_allocation.config import AllocationSettings, load_settings
from dps_allocation.exceptions import ValidationError
from dps_allocation.handler import AllocationHandler


# Create Blueprint for registration in the root function_app.py
bp = func.Blueprint()

UNCAUGHT_ERROR = "Uncaught error"

# Lazy loading so the host can index the function without configuration
_settings: Optional[AllocationSettings] = None
_handler: Optional[AllocationHandler] = None


def _get_handler() -> AllocationHandler:
    """Build the allocation handler once per worker process."""
    global _settings, _handler
    if _handler is None:
        if _settings is None:
            _settings = load_settings()
        _handler = AllocationHandler(_settings, get_twin_store(_settings))
    return _handler


def _read_body(req: func.HttpRequest):
    """Decode the JSON body; an empty or invalid body reads as None."""
    try:
        return req.get_json()
    except ValueError:
        return None


# ==========================================
# HTTP Triggered Function
# ==========================================

@bp.function_name(name="DpsAdtAllocationFunc")
@bp.route(route="dps-adt-allocation", methods=["GET", "POST"], auth_level=func.AuthLevel.FUNCTION)
async def dps_adt_allocation(req: func.HttpRequest) -> func.HttpResponse:
    """
    Allocate a provisioning device to a linked hub and ensure its twin.

    Expected Request Format:
        {
            "deviceRuntimeContext": {
                "registrationId": "dev-1",
                "payload": {"modelId": "dtmi:example:thermostat;1"}
            },
            "linkedHubs": ["hub-a.azure-devices.net", "hub-b.azure-devices.net"]
        }

    Returns:
        200: {"iotHubHostName": ..., "initialTwin": {"tags": ..., "properties": {}}}
        400: Plain text validation message
        500: "Uncaught error"
    """
    return await handle_allocation(req)


async def handle_allocation(
    req: func.HttpRequest, handler: Optional[AllocationHandler] = None
) -> func.HttpResponse:
    """Run the allocation and map the outcome to an HTTP response."""
    body = _read_body(req)
    logging.debug(f"DPS Allocation: Request.Body: {req.get_body().decode('utf-8', errors='replace')}")

    try:
        response = await (handler or _get_handler()).allocate(body)
    except ValidationError as e:
        logging.info(f"DPS Allocation: Rejected request ({e.reason})")
        logging.debug(f"DPS Allocation: Response: {e.message}")
        return func.HttpResponse(e.message, status_code=400, mimetype="text/plain")
    except Exception as e:
        logging.exception(f"DPS Allocation: Unexpected error: {type(e).__name__}: {e}")
        return func.HttpResponse(UNCAUGHT_ERROR, status_code=500, mimetype="text/plain")

    payload = response.model_dump()
    logging.debug(f"DPS Allocation: Response: {json.dumps(payload)}")
    return func.HttpResponse(
        json.dumps(payload),
        status_code=200,
        mimetype="application/json"
    )
