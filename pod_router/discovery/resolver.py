"""
Backend address enumeration.

Resolves the backend pool hostname to its current A and AAAA records. Both
families are queried concurrently and independently, so a pool that only
publishes IPv6 addresses (or only IPv4) still resolves.
"""

import asyncio
import ipaddress
import logging
from typing import List, Optional

import aiodns

from pod_router.discovery.errors import NoCandidates

logger = logging.getLogger("uvicorn.error")


def is_ipv6(address: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(address), ipaddress.IPv6Address)
    except ValueError:
        return ":" in address


def format_host(address: str, port: Optional[int] = None) -> str:
    """Render an address for use in a URL authority, bracketing IPv6 literals."""
    host = f"[{address}]" if is_ipv6(address) else address
    return f"{host}:{port}" if port is not None else host


class AddressEnumerator:
    """Resolve the configured pool hostname on every call, without caching."""

    def __init__(self, hostname: str, resolver: Optional[aiodns.DNSResolver] = None):
        self.hostname = hostname
        self._resolver = resolver

    @property
    def resolver(self) -> aiodns.DNSResolver:
        # aiodns binds to the running loop, so create it lazily
        if self._resolver is None:
            self._resolver = aiodns.DNSResolver()
        return self._resolver

    async def _query(self, record_type: str) -> List[str]:
        try:
            answers = await self.resolver.query(self.hostname, record_type)
        except aiodns.error.DNSError as e:
            logger.debug(f"[DNS] {record_type} lookup for {self.hostname} failed: {e}")
            return []
        return [answer.host for answer in answers]

    async def enumerate(self) -> List[str]:
        """
        Return the deduplicated union of the pool's IPv4 and IPv6 addresses.

        Raises:
            NoCandidates: when neither family yields an address.
        """
        ipv4, ipv6 = await asyncio.gather(self._query("A"), self._query("AAAA"))
        addresses = list(dict.fromkeys(ipv4 + ipv6))
        if not addresses:
            logger.error(f"[DISCOVERY] No IPs resolved for {self.hostname}")
            raise NoCandidates(self.hostname)

        logger.info(f"[DNS] Resolved {len(addresses)} IP(s): {', '.join(addresses)}")
        return addresses
