import os
import sys
import pytest

from dps_allocation.adt_helper import TwinRecord
from dps_allocation.config import AllocationSettings
from dps_allocation.exceptions import TwinNotFoundError

# Make the root function_app.py importable
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

MODEL_ID = "dtmi:example:thermostat;1"
HUBS = ["hub-a.azure-devices.net", "hub-b.azure-devices.net"]


class FakeTwinStore:
    """In-memory TwinStore that records every call."""

    def __init__(self, twins=None):
        self.twins = dict(twins or {})
        self.get_calls = []
        self.create_calls = []

    async def get(self, twin_id):
        self.get_calls.append(twin_id)
        if twin_id not in self.twins:
            raise TwinNotFoundError(twin_id)
        return self.twins[twin_id]

    async def create_or_replace(self, twin_id, model_id, contents):
        self.create_calls.append((twin_id, model_id, contents))
        record = TwinRecord(twin_id=twin_id, model_id=model_id, contents=dict(contents))
        self.twins[twin_id] = record
        return record


def make_body(registration_id="dev-1", model_id=MODEL_ID, hubs=HUBS):
    """Build a DPS allocation request body."""
    return {
        "deviceRuntimeContext": {
            "registrationId": registration_id,
            "payload": {"modelId": model_id},
        },
        "linkedHubs": hubs,
    }


@pytest.fixture(scope="function", autouse=True)
def clean_env(monkeypatch):
    """Keep developer environment variables out of the settings under test."""
    for name in (
        "ADT_SERVICE_URL",
        "AZURE_CLIENT_ID",
        "HUB_SELECTION_POLICY",
        "ADT_CREATE_IF_ABSENT",
        "TWIN_DEFAULT_CONTENTS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings():
    return AllocationSettings(
        _env_file=None,
        ADT_SERVICE_URL="https://test.api.weu.digitaltwins.azure.net",
    )


@pytest.fixture
def store():
    return FakeTwinStore()
