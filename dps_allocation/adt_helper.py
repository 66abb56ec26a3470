"""
Azure Digital Twins Helper Module.

Finds or creates the digital twin that backs a device being provisioned.

Architecture:
    ┌─────────────────────┐
    │  DPS Allocation     │
    │  (HTTP trigger)     │
    └──────────┬──────────┘
               │ resolve_twin()
               ▼
    ┌─────────────────────┐
    │  TwinStore          │   AdtTwinStore in Azure,
    │  get / create       │   in-memory fakes in tests
    └──────────┬──────────┘
               │
               ▼
    ┌─────────────────────┐
    │ Azure Digital Twins │
    └─────────────────────┘

The ADT client and its credential are created once per worker process and
shared by every invocation (see get_twin_store()).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from azure.core import MatchConditions
from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceNotFoundError,
)

from dps_allocation.config import AllocationSettings
from dps_allocation.exceptions import TwinNotFoundError, TwinStoreError

logger = logging.getLogger(__name__)


@dataclass
class TwinRecord:
    """
    A digital twin as returned by the store.

    Attributes:
        twin_id: The twin id ($dtId)
        model_id: The DTDL model the twin conforms to ($metadata.$model)
        contents: Remaining twin properties
    """
    twin_id: str
    model_id: str
    contents: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_adt(cls, twin: Dict[str, Any]) -> "TwinRecord":
        """Build a record from a BasicDigitalTwin JSON document."""
        metadata = twin.get("$metadata") or {}
        contents = {k: v for k, v in twin.items() if not k.startswith("$")}
        return cls(
            twin_id=twin["$dtId"],
            model_id=metadata.get("$model", ""),
            contents=contents,
        )

    def matches_model(self, model_id: str) -> bool:
        """Model ids are compared case-insensitively."""
        return (self.model_id or "").casefold() == (model_id or "").casefold()


@runtime_checkable
class TwinStore(Protocol):
    """
    Protocol for the digital twin store consumed by the resolver.

    get() raises TwinNotFoundError when the twin does not exist and
    TwinStoreError for anything else; create_or_replace() raises
    TwinStoreError on failure.
    """

    async def get(self, twin_id: str) -> TwinRecord:
        ...

    async def create_or_replace(
        self, twin_id: str, model_id: str, contents: Dict[str, Any]
    ) -> TwinRecord:
        ...


def build_twin_document(model_id: str, contents: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the BasicDigitalTwin JSON body for an upsert.

    Example:
        >>> build_twin_document("dtmi:example:thermostat;1", {"Temperature": 0.0})
        {'$metadata': {'$model': 'dtmi:example:thermostat;1'}, 'Temperature': 0.0}
    """
    if not model_id:
        raise ValueError("model_id is required")

    document: Dict[str, Any] = {"$metadata": {"$model": model_id}}
    document.update(contents or {})
    return document


class AdtTwinStore:
    """
    TwinStore backed by the async Azure Digital Twins client.

    Args:
        client: azure.digitaltwins.core.aio.DigitalTwinsClient
        create_if_absent: Send If-None-Match: * on create so an existing
            twin is never overwritten by a concurrent invocation
        credential: Async credential owned by the store, closed with it
    """

    def __init__(self, client, create_if_absent: bool = False, credential=None):
        if client is None:
            raise ValueError("client is required")
        self._client = client
        self._credential = credential
        self.create_if_absent = create_if_absent

    async def get(self, twin_id: str) -> TwinRecord:
        try:
            twin = await self._client.get_digital_twin(twin_id)
        except ResourceNotFoundError as e:
            raise TwinNotFoundError(twin_id) from e
        except AzureError as e:
            raise TwinStoreError(f"Failed to read twin '{twin_id}': {e}") from e
        return TwinRecord.from_adt(twin)

    async def create_or_replace(
        self, twin_id: str, model_id: str, contents: Dict[str, Any]
    ) -> TwinRecord:
        document = build_twin_document(model_id, contents)
        kwargs = {}
        if self.create_if_absent:
            kwargs["match_condition"] = MatchConditions.IfMissing

        try:
            twin = await self._client.upsert_digital_twin(twin_id, document, **kwargs)
        except HttpResponseError as e:
            if self.create_if_absent and e.status_code == 412:
                # Created by a concurrent invocation; use what is there now
                logger.info(f"Twin '{twin_id}' was created concurrently, re-reading it")
                record = await self.get(twin_id)
                if not record.matches_model(model_id):
                    logger.warning(
                        f"Twin '{twin_id}' kept model '{record.model_id}', "
                        f"not the requested '{model_id}'"
                    )
                return record
            raise TwinStoreError(f"Failed to create twin '{twin_id}': {e}") from e
        except AzureError as e:
            raise TwinStoreError(f"Failed to create twin '{twin_id}': {e}") from e
        return TwinRecord.from_adt(twin)

    async def close(self) -> None:
        await self._client.close()
        if self._credential is not None:
            await self._credential.close()


async def resolve_twin(
    store: TwinStore,
    model_id: str,
    registration_id: str,
    default_contents: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Find the twin for a device, creating or replacing it when needed.

    1. Look up the twin whose id is the registration id
    2. If it exists with the same model (case-insensitive), reuse it
    3. Otherwise create it, overwriting a twin of a different model

    The lookup and the create are two separate calls; unless the store was
    built with create_if_absent, two invocations for the same device can both
    create and the last write wins.

    Args:
        store: TwinStore to read from and write to
        model_id: DTDL model id the device reported
        registration_id: DPS registration id, used as the twin id
        default_contents: Initial properties for a newly created twin

    Returns:
        The id of the existing or created twin

    Raises:
        TwinStoreError: If the lookup fails for a reason other than not-found,
            or if the create fails
    """
    if not registration_id:
        raise ValueError("registration_id is required")
    if not model_id:
        raise ValueError("model_id is required")

    try:
        twin = await store.get(registration_id)
        if twin.matches_model(model_id):
            logger.info(f"Found DigitalTwin '{twin.twin_id}' of model '{twin.model_id}'")
            return twin.twin_id

        logger.info(
            f"Found DigitalTwin '{twin.twin_id}' but it is of model '{twin.model_id}', "
            f"not '{model_id}'; replacing it"
        )
    except TwinNotFoundError:
        logger.info(f"Did not find DigitalTwin '{registration_id}'")

    created = await store.create_or_replace(
        registration_id, model_id, dict(default_contents or {})
    )
    logger.info(f"✓ Digital Twin '{created.twin_id}' created with model '{model_id}'")
    return created.twin_id


# ==========================================
# Shared client (one per worker process)
# ==========================================

_twin_store: Optional[AdtTwinStore] = None


def create_adt_client(adt_instance_url: str, client_id: Optional[str] = None):
    """
    Create an async Azure Digital Twins client using DefaultAzureCredential.

    Uses managed identity when running in Azure Functions (a user-assigned
    identity when client_id is given), or falls back to developer
    credentials locally.

    Args:
        adt_instance_url: The ADT instance endpoint URL
            Format: https://{instance-name}.api.{region}.digitaltwins.azure.net
        client_id: Optional client id of a user-assigned managed identity

    Returns:
        Tuple of (DigitalTwinsClient, credential)

    Raises:
        ValueError: If adt_instance_url is missing
    """
    if not adt_instance_url:
        raise ValueError("adt_instance_url is required")

    from azure.digitaltwins.core.aio import DigitalTwinsClient
    from azure.identity.aio import DefaultAzureCredential

    if client_id:
        credential = DefaultAzureCredential(managed_identity_client_id=client_id)
    else:
        credential = DefaultAzureCredential()
    client = DigitalTwinsClient(adt_instance_url, credential)

    logger.info(f"Created ADT client for: {adt_instance_url}")
    return client, credential


def get_twin_store(settings: AllocationSettings) -> AdtTwinStore:
    """Return the process-wide ADT store, creating it on first use."""
    global _twin_store
    if _twin_store is None:
        client, credential = create_adt_client(
            settings.require_service_url(), settings.AZURE_CLIENT_ID
        )
        _twin_store = AdtTwinStore(
            client,
            create_if_absent=settings.ADT_CREATE_IF_ABSENT,
            credential=credential,
        )
    return _twin_store


async def close_twin_store() -> None:
    """Close the shared ADT client and credential, if one was created."""
    global _twin_store
    if _twin_store is not None:
        store, _twin_store = _twin_store, None
        await store.close()
