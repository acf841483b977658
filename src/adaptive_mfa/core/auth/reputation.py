# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""IP/domain reputation and geolocation collaborators."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from ipaddress import ip_address

import httpx
from beartype import beartype
from pydantic import Field

from adaptive_mfa.core.config import Settings
from adaptive_mfa.core.result_types import Err, Ok, Result

from .models import FrozenModel, GeoLocation

logger = logging.getLogger(__name__)


@beartype
class IPReputation(FrozenModel):
    """Reputation flags for a network address."""

    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False
    threat_score: int = Field(default=0, ge=0, le=100)


@beartype
class DomainReputation(FrozenModel):
    """Reputation flags for an email domain."""

    is_disposable: bool = False


class ReputationService(ABC):
    """Lookup contract; results are cacheable by the implementation only."""

    @abstractmethod
    async def lookup_ip(self, address: str) -> Result[IPReputation, str]:
        """Reputation of a network address."""

    @abstractmethod
    async def lookup_domain(self, domain: str) -> Result[DomainReputation, str]:
        """Reputation of an email domain."""


class StaticReputationService(ReputationService):
    """Configured lists only; every address is neutral unless listed."""

    def __init__(
        self,
        disposable_domains: list[str],
        flagged_addresses: Mapping[str, IPReputation] | None = None,
    ) -> None:
        self._disposable = {domain.lower() for domain in disposable_domains}
        self._flagged = dict(flagged_addresses or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "StaticReputationService":
        return cls(settings.risk_disposable_domains)

    @beartype
    async def lookup_ip(self, address: str) -> Result[IPReputation, str]:
        return Ok(self._flagged.get(address, IPReputation()))

    @beartype
    async def lookup_domain(self, domain: str) -> Result[DomainReputation, str]:
        return Ok(DomainReputation(is_disposable=domain.lower() in self._disposable))


class HttpReputationService(ReputationService):
    """Reputation lookups against an HTTP service.

    The service answers ``GET {base}/ip/{address}`` with
    ``{"is_vpn", "is_proxy", "is_tor", "threat_score"}``. Domain lookups use
    the configured disposable list, which the service does not cover.
    """

    def __init__(
        self,
        base_url: str,
        disposable_domains: list[str],
        timeout: float = 5.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._domains = StaticReputationService(disposable_domains)

    @beartype
    async def lookup_ip(self, address: str) -> Result[IPReputation, str]:
        """Query the reputation service for one address.

        Args:
            address: Client IP address

        Returns:
            Result containing the reputation or an error message
        """
        url = f"{self._base_url}/ip/{address}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, timeout=self._timeout)
        except httpx.TimeoutException:
            return Err("Reputation lookup timed out")
        except httpx.RequestError as e:
            return Err(f"Network error during reputation lookup: {str(e)}")

        if response.status_code != 200:
            return Err(f"Reputation service returned {response.status_code}")

        payload = response.json()
        return Ok(
            IPReputation(
                is_vpn=bool(payload.get("is_vpn", False)),
                is_proxy=bool(payload.get("is_proxy", False)),
                is_tor=bool(payload.get("is_tor", False)),
                threat_score=max(0, min(100, int(payload.get("threat_score", 0)))),
            )
        )

    @beartype
    async def lookup_domain(self, domain: str) -> Result[DomainReputation, str]:
        return await self._domains.lookup_domain(domain)


class GeoResolver(ABC):
    """Resolve a network address to a coarse location."""

    @abstractmethod
    async def resolve(self, address: str) -> GeoLocation | None:
        """Location for ``address`` or None when it cannot be placed."""


class StaticGeoResolver(GeoResolver):
    """Table-driven resolver; unlisted addresses resolve to None."""

    def __init__(self, table: Mapping[str, GeoLocation] | None = None) -> None:
        self._table = dict(table or {})

    @beartype
    async def resolve(self, address: str) -> GeoLocation | None:
        try:
            ip_address(address)
        except ValueError:
            logger.debug("Unparseable address %s", address)
            return None
        return self._table.get(address)
