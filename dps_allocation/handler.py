"""
DPS allocation handler.

Ties request validation, twin resolution and hub selection together:

    request → validate → resolve twin → select hub → response

Validation failures raise ValidationError before the twin store is touched.
Store failures raise TwinStoreError and are left to the caller.
"""

import logging
from typing import Any, Optional

from dps_allocation.adt_helper import TwinStore, resolve_twin
from dps_allocation.config import AllocationSettings
from dps_allocation.hub_selection import HubSelector, get_hub_selector
from dps_allocation.models import (
    AllocationResponse,
    InitialTwin,
    TwinTags,
    parse_allocation_request,
)

logger = logging.getLogger(__name__)


class AllocationHandler:
    """
    Allocates a provisioning device to a hub and ensures its digital twin.

    Args:
        settings: Function configuration
        store: TwinStore used to find or create twins
        selector: HubSelector; defaults to the one named in settings
    """

    def __init__(
        self,
        settings: AllocationSettings,
        store: TwinStore,
        selector: Optional[HubSelector] = None,
    ):
        if store is None:
            raise ValueError("store is required")
        self.settings = settings
        self.store = store
        self.selector = selector or get_hub_selector(settings.HUB_SELECTION_POLICY)

    async def allocate(self, body: Any) -> AllocationResponse:
        """
        Handle one DPS allocation request.

        Args:
            body: Decoded JSON request body

        Returns:
            AllocationResponse with the chosen hub and initial twin state

        Raises:
            ValidationError: If the request is incomplete
            TwinStoreError: If the twin could not be read or created
        """
        request = parse_allocation_request(body)
        logger.debug(f"payload.modelId: {request.model_id}")

        twin_id = await resolve_twin(
            self.store,
            request.model_id,
            request.registration_id,
            self.settings.TWIN_DEFAULT_CONTENTS,
        )

        hub = self.selector.select(request.linked_hubs, request.registration_id)
        logger.info(f"Allocating device '{request.registration_id}' to hub '{hub}'")

        return AllocationResponse(
            iotHubHostName=hub,
            initialTwin=InitialTwin(
                tags=TwinTags(dtmi=request.model_id, dtId=twin_id),
                properties={},
            ),
        )
