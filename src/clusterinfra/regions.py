"""Platform fault domains per Azure region.

Azure does not expose the number of fault domains available in a region
through its API, so the values are maintained here. Source:
https://learn.microsoft.com/azure/virtual-machines/availability-set-overview
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from .errors import ProviderError


class UnknownRegionError(ProviderError):
    """Raised when a region has no known fault-domain count."""

    def __init__(self, region: str) -> None:
        super().__init__(
            f"could not determine the number of fault domains, unknown region '{region}'"
        )
        self.region = region


FAULT_DOMAINS_PER_REGION: Mapping[str, int] = MappingProxyType(
    {
        "eastasia": 2,
        "southeastasia": 2,
        "centralus": 3,
        "eastus": 3,
        "eastus2": 3,
        "westus": 3,
        "northcentralus": 3,
        "southcentralus": 3,
        "northeurope": 3,
        "westeurope": 3,
        "japanwest": 2,
        "japaneast": 2,
        "brazilsouth": 2,
        "australiaeast": 2,
        "australiasoutheast": 2,
        "southindia": 2,
        "centralindia": 2,
        "westindia": 2,
        "canadacentral": 3,
        "canadaeast": 2,
        "uksouth": 2,
        "ukwest": 2,
        "westcentralus": 2,
        "westus2": 2,
        "koreacentral": 2,
        "koreasouth": 2,
    }
)

# Update domains are not region-dependent; 20 is the platform maximum
UPDATE_DOMAIN_COUNT = 20


def fault_domain_count(
    region: str,
    table: Mapping[str, int] = FAULT_DOMAINS_PER_REGION,
) -> int:
    """Look up the fault-domain count for a region.

    Raises:
        UnknownRegionError: If the region is not in the table.
    """
    try:
        return table[region]
    except KeyError:
        raise UnknownRegionError(region) from None
