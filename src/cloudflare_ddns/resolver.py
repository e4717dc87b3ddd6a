"""Public IP address lookup."""

from __future__ import annotations

import ipaddress
import logging
from typing import List, Optional, Sequence

from .errors import DDNSError, ResolveError
from .models import AddressFamily
from .transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_IPV4_URL = "https://api4.ipify.org"
DEFAULT_IPV6_URLS = (
    "https://api6.ipify.org",
    "https://v6.ident.me",
    "https://ipv6.icanhazip.com",
)


class PublicIPResolver:
    """Fetches the caller's public address from plain-text lookup services.

    IPv6 lookups walk the mirror list in order and return the first body
    that parses as an IPv6 literal.
    """

    def __init__(
        self,
        transport: Transport,
        ipv4_url: str = DEFAULT_IPV4_URL,
        ipv6_urls: Optional[Sequence[str]] = None,
    ):
        self.transport = transport
        self.ipv4_url = ipv4_url
        self.ipv6_urls: List[str] = list(ipv6_urls or DEFAULT_IPV6_URLS)

    def resolve(self, family: AddressFamily) -> str:
        if family is AddressFamily.IPV6:
            return self.get_ipv6()
        return self.get_ipv4()

    def get_ipv4(self) -> str:
        address = self._fetch(self.ipv4_url, ipaddress.IPv4Address)
        if address is None:
            raise ResolveError(f"No valid IPv4 address returned by {self.ipv4_url}")
        return address

    def get_ipv6(self) -> str:
        for url in self.ipv6_urls:
            address = self._fetch(url, ipaddress.IPv6Address)
            if address is not None:
                return address
        raise ResolveError(
            f"No valid IPv6 address returned by any of {len(self.ipv6_urls)} lookup services"
        )

    def _fetch(self, url: str, address_type: type) -> Optional[str]:
        try:
            body = self.transport.request("GET", url)
        except DDNSError as e:
            logger.warning(f"Address lookup via {url} failed: {e}")
            return None

        candidate = body.strip()
        try:
            address = address_type(candidate)
        except ValueError:
            logger.warning(f"Address lookup via {url} returned unusable body: {candidate[:64]!r}")
            return None

        logger.debug(f"Public address from {url}: {address}")
        return str(address)
