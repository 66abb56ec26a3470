"""
DPS Custom Allocation Request/Response Schemas.

The Device Provisioning Service posts a request of the form::

    {
        "deviceRuntimeContext": {
            "registrationId": "dev-1",
            "payload": {"modelId": "dtmi:example:thermostat;1"}
        },
        "linkedHubs": ["hub-a.azure-devices.net", "hub-b.azure-devices.net"]
    }

and expects the chosen hub plus the initial device twin in return::

    {
        "iotHubHostName": "hub-a.azure-devices.net",
        "initialTwin": {
            "tags": {"dtmi": "dtmi:example:thermostat;1", "dtId": "dev-1"},
            "properties": {}
        }
    }

Only the fields the allocation needs are declared; everything else DPS sends
(enrollment details, attestation context) is accepted and ignored.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dps_allocation.exceptions import ValidationError

MISSING_REGISTRATION_ID = "Registration ID not provided for the device."
NO_LINKED_HUBS = "No hub group defined for the enrollment."
MISSING_MODEL_ID = "Model ID not provided in the device payload."


# Wrongly typed fields are treated as absent where they occur, so the
# rejection names the field that is actually missing.

def _string_or_none(value):
    return value if isinstance(value, str) else None


def _object_or_none(value):
    return value if isinstance(value, dict) else None


# ==========================================
# Inbound (DPS → function)
# ==========================================

class DevicePayload(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, protected_namespaces=())

    model_id: Optional[str] = Field(default=None, alias="modelId")

    check_model_id = field_validator("model_id", mode="before")(_string_or_none)


class DeviceRuntimeContext(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    registration_id: Optional[str] = Field(default=None, alias="registrationId")
    payload: Optional[DevicePayload] = None

    check_registration_id = field_validator("registration_id", mode="before")(_string_or_none)
    check_payload = field_validator("payload", mode="before")(_object_or_none)


class AllocationRequestBody(BaseModel):
    """Raw request body as sent by DPS, every field optional."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    device_runtime_context: Optional[DeviceRuntimeContext] = Field(
        default=None, alias="deviceRuntimeContext"
    )
    linked_hubs: Optional[List[str]] = Field(default=None, alias="linkedHubs")

    check_device_runtime_context = field_validator("device_runtime_context", mode="before")(_object_or_none)

    @field_validator("linked_hubs", mode="before")
    @classmethod
    def check_linked_hubs(cls, value):
        if not isinstance(value, list):
            return None
        return [hub for hub in value if isinstance(hub, str)]


class AllocationRequest(BaseModel):
    """Validated allocation request."""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    registration_id: str
    linked_hubs: List[str]
    model_id: str


# ==========================================
# Outbound (function → DPS)
# ==========================================

class TwinTags(BaseModel):
    dtmi: str
    dtId: str


class InitialTwin(BaseModel):
    tags: TwinTags
    properties: Dict[str, Any] = Field(default_factory=dict)


class AllocationResponse(BaseModel):
    iotHubHostName: str
    initialTwin: InitialTwin


# ==========================================
# Validation
# ==========================================

def parse_allocation_request(body: Any) -> AllocationRequest:
    """
    Validate a DPS allocation request body.

    Checks run in the order DPS cares about: registration id first, then the
    linked hubs, then the model id carried in the device payload. A body that
    is not a JSON object (including an empty or unparseable one) has no
    registration id.

    Args:
        body: Decoded JSON body (usually a dict, may be None)

    Returns:
        The validated AllocationRequest

    Raises:
        ValidationError: If a required field is missing or empty
    """
    if not isinstance(body, dict):
        raise ValidationError("missing registration id", MISSING_REGISTRATION_ID)

    raw = AllocationRequestBody.model_validate(body)

    context = raw.device_runtime_context
    registration_id = context.registration_id if context else None
    if not registration_id:
        raise ValidationError("missing registration id", MISSING_REGISTRATION_ID)

    hubs = [hub for hub in raw.linked_hubs or [] if hub.strip()]
    if not hubs:
        raise ValidationError("no hubs provided", NO_LINKED_HUBS)

    payload = context.payload
    if payload is None or not payload.model_id:
        raise ValidationError("missing model id", MISSING_MODEL_ID)

    return AllocationRequest(
        registration_id=registration_id,
        linked_hubs=hubs,
        model_id=payload.model_id,
    )

