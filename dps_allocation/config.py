"""
Function Configuration.

Settings are read once per worker process from the environment (or a local
``.env`` file) and passed into the allocation handler.

Environment Variables:
    - ADT_SERVICE_URL: Azure Digital Twins endpoint URL (required)
    - AZURE_CLIENT_ID: Client id of a user-assigned managed identity (optional)
    - HUB_SELECTION_POLICY: "first" (default) or "hash"
    - ADT_CREATE_IF_ABSENT: Only create twins that do not exist yet (default false)
    - TWIN_DEFAULT_CONTENTS: JSON object of initial twin properties
"""

from typing import Any, Dict, Literal, Optional

import pydantic
from pydantic_settings import BaseSettings, SettingsConfigDict

from dps_allocation.exceptions import ConfigurationError

DEFAULT_TWIN_CONTENTS = {"Temperature": 0.0}


class AllocationSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Azure Digital Twins
    ADT_SERVICE_URL: str = ""
    AZURE_CLIENT_ID: Optional[str] = None
    ADT_CREATE_IF_ABSENT: bool = False
    TWIN_DEFAULT_CONTENTS: Dict[str, Any] = DEFAULT_TWIN_CONTENTS

    # Allocation policy
    HUB_SELECTION_POLICY: Literal["first", "hash"] = "first"

    def require_service_url(self) -> str:
        """
        Get the ADT endpoint or raise if it is not configured.

        The check is deferred to first use so the function app can still be
        indexed by the host when the variable is missing.
        """
        url = self.ADT_SERVICE_URL.strip()
        if not url:
            raise ConfigurationError(
                "CRITICAL: Required environment variable 'ADT_SERVICE_URL' is missing or empty"
            )
        return url


def load_settings(**overrides) -> AllocationSettings:
    """Build settings from the environment, wrapping validation failures."""
    try:
        return AllocationSettings(**overrides)
    except pydantic.ValidationError as e:
        raise ConfigurationError(f"Invalid function configuration: {e}") from e
