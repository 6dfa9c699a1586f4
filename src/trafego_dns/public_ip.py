"""Public IP resolver with an in-memory cache."""

from __future__ import annotations

import ipaddress
import logging
import time
from typing import Optional, Sequence

import requests

logger = logging.getLogger(__name__)

IPV4_LOOKUP_URLS = ("https://api.ipify.org", "https://checkip.amazonaws.com")
IPV6_LOOKUP_URLS = ("https://api6.ipify.org",)


class PublicIPResolver:
    """Looks up the host's public addresses.

    PUBLIC_IP / PUBLIC_IPV6 overrides always win. Looked up addresses are
    cached for `refresh_interval` seconds; when a lookup fails the last known
    address keeps being used.
    """

    def __init__(
        self,
        *,
        ipv4: str = "",
        ipv6: str = "",
        refresh_interval: float = 3600.0,
        timeout: float = 10.0,
        ipv4_urls: Sequence[str] = IPV4_LOOKUP_URLS,
        ipv6_urls: Sequence[str] = IPV6_LOOKUP_URLS,
    ):
        self._override_v4 = ipv4
        self._override_v6 = ipv6
        self.refresh_interval = refresh_interval
        self._timeout = timeout
        self._ipv4_urls = tuple(ipv4_urls)
        self._ipv6_urls = tuple(ipv6_urls)
        self._session = requests.Session()
        self._cache = {4: (None, 0.0), 6: (None, 0.0)}

    def cached_ipv4(self) -> Optional[str]:
        return self._override_v4 or self._cache[4][0]

    def cached_ipv6(self) -> Optional[str]:
        return self._override_v6 or self._cache[6][0]

    def get_public_ipv4(self) -> Optional[str]:
        if self._override_v4:
            return self._override_v4
        return self._resolve(4, self._ipv4_urls)

    def get_public_ipv6(self) -> Optional[str]:
        if self._override_v6:
            return self._override_v6
        return self._resolve(6, self._ipv6_urls)

    def refresh(self) -> None:
        """Re-run lookups whose cached value is older than the refresh interval.

        IPv6 is only refreshed once an address has been seen, so IPv4-only
        hosts do not log a failed lookup every cycle.
        """
        self.get_public_ipv4()
        if self.cached_ipv6():
            self.get_public_ipv6()

    def _resolve(self, version: int, urls: Sequence[str]) -> Optional[str]:
        cached, fetched_at = self._cache[version]
        if cached and time.time() - fetched_at < self.refresh_interval:
            return cached

        for url in urls:
            try:
                response = self._session.get(url, timeout=self._timeout)
                response.raise_for_status()
                address = ipaddress.ip_address(response.text.strip())
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.debug(f"Public IPv{version} lookup via {url} failed: {e}")
                continue
            if address.version != version:
                logger.debug(f"{url} returned an IPv{address.version} address, expected IPv{version}")
                continue

            value = str(address)
            if value != cached:
                logger.info(f"Public IPv{version} address: {value}")
            self._cache[version] = (value, time.time())
            return value

        if cached:
            logger.warning(f"Could not refresh public IPv{version} address, keeping {cached}")
        else:
            logger.warning(f"Could not determine public IPv{version} address")
        return cached
