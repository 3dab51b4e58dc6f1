"""Best-effort geo/network enrichment of connection alerts."""

import dataclasses
import ipaddress
import logging
from typing import Protocol

import httpx

from firewall_advisor.models import ConnectionAlert

logger = logging.getLogger(__name__)

GEO_ENDPOINT = "http://ip-api.com/json/{ip}"
GEO_FIELDS = "status,message,country,regionName,city,isp,org,as"


class Enricher(Protocol):
    async def enrich(self, alert: ConnectionAlert) -> ConnectionAlert: ...


class NullEnricher:
    """Enricher that returns alerts untouched (offline runs)."""

    async def enrich(self, alert: ConnectionAlert) -> ConnectionAlert:
        return alert


def is_public_address(address: str) -> bool:
    """Whether *address* is a globally routable IP address."""
    try:
        return ipaddress.ip_address(address).is_global
    except ValueError:
        return False


class GeoEnricher:
    """Adds location and network-owner labels from the ip-api.com service.

    Failures never propagate: the alert is returned unchanged and the
    problem is logged.

    Attributes:
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport

    async def enrich(self, alert: ConnectionAlert) -> ConnectionAlert:
        """Return a copy of *alert* with geo_location and whois_data filled."""
        if not is_public_address(alert.ip_address):
            return alert

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    GEO_ENDPOINT.format(ip=alert.ip_address),
                    params={"fields": GEO_FIELDS},
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Enrichment failed for %s: %s", alert.ip_address, exc)
            return alert

        if not isinstance(data, dict) or data.get("status") != "success":
            logger.info("No enrichment data for %s", alert.ip_address)
            return alert

        location = ", ".join(
            part for part in (data.get("city"), data.get("regionName"), data.get("country")) if part
        )
        owner = " / ".join(
            part for part in (data.get("isp"), data.get("org"), data.get("as")) if part
        )
        return dataclasses.replace(
            alert,
            geo_location=location or alert.geo_location,
            whois_data=owner or alert.whois_data,
        )
