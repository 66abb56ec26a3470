"""
Hub selection policies.

The allocation handler asks a HubSelector which of the enrollment's linked
hubs a device goes to. Policies are swapped through HUB_SELECTION_POLICY
without touching the handler.
"""

import hashlib
from typing import Dict, Optional, Protocol, Sequence, Type, runtime_checkable

from dps_allocation.exceptions import ConfigurationError


@runtime_checkable
class HubSelector(Protocol):
    """Strategy interface for picking one hub out of a non-empty list."""

    def select(self, hubs: Sequence[str], registration_id: Optional[str] = None) -> str:
        ...


class FirstHubSelector:
    """Always picks the first linked hub."""

    name = "first"

    def select(self, hubs: Sequence[str], registration_id: Optional[str] = None) -> str:
        if not hubs:
            raise ValueError("hubs must not be empty")
        return hubs[0]


class HashHubSelector:
    """
    Spreads devices over the linked hubs by hashing the registration id.

    The same device always lands on the same hub as long as the hub list
    does not change. Falls back to the first hub without a registration id.
    """

    name = "hash"

    def select(self, hubs: Sequence[str], registration_id: Optional[str] = None) -> str:
        if not hubs:
            raise ValueError("hubs must not be empty")
        if not registration_id:
            return hubs[0]
        digest = hashlib.sha256(registration_id.encode("utf-8")).digest()
        return hubs[int.from_bytes(digest[:8], "big") % len(hubs)]


SELECTORS: Dict[str, Type] = {
    FirstHubSelector.name: FirstHubSelector,
    HashHubSelector.name: HashHubSelector,
}


def get_hub_selector(policy: str) -> HubSelector:
    """Instantiate the selector registered under the given policy name."""
    try:
        return SELECTORS[policy]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown hub selection policy '{policy}'. Available: {sorted(SELECTORS)}"
        ) from None
