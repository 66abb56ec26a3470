"""Custom DPS allocation webhook backed by Azure Digital Twins."""

from dps_allocation.adt_helper import AdtTwinStore, TwinRecord, TwinStore, resolve_twin
from dps_allocation.config import AllocationSettings, load_settings
from dps_allocation.exceptions import (
    AllocationError,
    ConfigurationError,
    TwinNotFoundError,
    TwinStoreError,
    ValidationError,
)
from dps_allocation.handler import AllocationHandler
from dps_allocation.hub_selection import FirstHubSelector, HashHubSelector, HubSelector

__version__ = "0.1.0"
