"""DigitalOcean DNS provider."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from trafego_dns.errors import ProviderAPIError, ZoneNotFoundError
from trafego_dns.providers.base import DNSProvider, validate_common
from trafego_dns.records import (
    HOSTNAME_CONTENT_TYPES,
    PENDING_CONTENT,
    DesiredRecord,
    ProviderRecord,
    canonical_name,
    ensure_trailing_dot,
    strip_trailing_dot,
)
from trafego_dns.providers.rest import APISession

logger = logging.getLogger(__name__)

MIN_TTL = 30


class DigitalOceanProvider(DNSProvider):
    """DigitalOcean DNS provider implementation.

    The API speaks zone-relative names with "@" for the apex, and hostname
    valued data (CNAME, MX, SRV, NS) carries a trailing dot. Both are
    translated at the wire boundary so the cache only holds FQDNs.
    """

    API_URL = "https://api.digitalocean.com/v2"
    PAGE_SIZE = 100

    def __init__(
        self,
        token: str,
        domain: str,
        *,
        cache_refresh_interval: float = 3600.0,
        timeout: float = 10.0,
        api_url: str = API_URL,
    ):
        super().__init__(domain, cache_refresh_interval=cache_refresh_interval, timeout=timeout)
        self._api = APISession(api_url, token, provider_name="DigitalOcean", timeout=timeout)

    @property
    def name(self) -> str:
        return "DigitalOcean"

    @property
    def key(self) -> str:
        return "digitalocean"

    def init(self) -> None:
        try:
            data = self._api.request("GET", f"/domains/{self.domain}")
        except ProviderAPIError as e:
            if e.status == 404:
                raise ZoneNotFoundError(f"DigitalOcean domain not found: {self.domain}") from e
            raise
        logger.info(f"DigitalOcean domain {(data.get('domain') or {}).get('name', self.domain)} ready")

    # -------------------------------------------------------------------------
    # Name translation
    # -------------------------------------------------------------------------

    def to_relative_name(self, name: str) -> str:
        fqdn = canonical_name(name)
        if fqdn in (self.domain, "@", ""):
            return "@"
        suffix = f".{self.domain}"
        if fqdn.endswith(suffix):
            return fqdn[: -len(suffix)]
        return fqdn

    def to_fqdn(self, relative: str) -> str:
        value = canonical_name(relative)
        if value in ("@", ""):
            return self.domain
        if value == self.domain or value.endswith(f".{self.domain}"):
            return value
        return f"{value}.{self.domain}"

    def normalize_name(self, name: str) -> str:
        return self.to_fqdn(name)

    # -------------------------------------------------------------------------
    # Wire format
    # -------------------------------------------------------------------------

    def to_wire(self, record: DesiredRecord) -> Dict[str, Any]:
        data = record.content
        if record.type in HOSTNAME_CONTENT_TYPES:
            data = ensure_trailing_dot(data)

        payload: Dict[str, Any] = {
            "type": record.type,
            "name": self.to_relative_name(record.name),
            "data": data,
            "ttl": record.ttl,
        }
        if record.type == "MX":
            payload["priority"] = record.priority if record.priority is not None else 10
        elif record.type == "SRV":
            payload["priority"] = record.priority if record.priority is not None else 1
            payload["weight"] = record.weight if record.weight is not None else 1
            payload["port"] = record.port if record.port is not None else 80
        elif record.type == "CAA":
            payload["flags"] = record.flags if record.flags is not None else 0
            payload["tag"] = record.tag or "issue"
        return payload

    def from_wire(self, item: Dict[str, Any]) -> ProviderRecord:
        record_type = str(item.get("type") or "")
        content = str(item.get("data") or "")
        if record_type in HOSTNAME_CONTENT_TYPES:
            content = self.domain if content == "@" else strip_trailing_dot(content)

        record = ProviderRecord(
            id=str(item.get("id") or ""),
            type=record_type,
            name=self.to_fqdn(str(item.get("name") or "@")),
            content=content,
            ttl=item.get("ttl"),
            raw=item,
        )
        if record_type in ("MX", "SRV"):
            record.priority = item.get("priority")
        if record_type == "SRV":
            record.weight = item.get("weight")
            record.port = item.get("port")
        elif record_type == "CAA":
            record.flags = item.get("flags")
            record.tag = item.get("tag")
        return record

    # -------------------------------------------------------------------------
    # Remote operations
    # -------------------------------------------------------------------------

    def fetch_all_records(self) -> List[ProviderRecord]:
        records: List[ProviderRecord] = []
        data = self._api.request(
            "GET", f"/domains/{self.domain}/records", params={"per_page": self.PAGE_SIZE}
        )
        while True:
            records.extend(self.from_wire(item) for item in data.get("domain_records") or [])
            next_url = ((data.get("links") or {}).get("pages") or {}).get("next")
            if not next_url:
                break
            logger.debug(f"Fetching next DigitalOcean records page: {next_url}")
            data = self._api.request("GET", next_url)
        return records

    def create_record(self, record: DesiredRecord) -> ProviderRecord:
        self.ensure_initialized()
        data = self._api.request(
            "POST", f"/domains/{self.domain}/records", json=self.to_wire(record)
        )
        created = self.from_wire(data.get("domain_record") or {})
        self.update_record_in_cache(created)
        return created

    def update_record(self, record_id: str, record: DesiredRecord) -> ProviderRecord:
        self.ensure_initialized()
        data = self._api.request(
            "PUT", f"/domains/{self.domain}/records/{record_id}", json=self.to_wire(record)
        )
        updated = self.from_wire(data.get("domain_record") or {})
        self.update_record_in_cache(updated)
        return updated

    def delete_record(self, record_id: str) -> None:
        self.ensure_initialized()
        self._api.request("DELETE", f"/domains/{self.domain}/records/{record_id}")
        self.remove_record_from_cache(record_id)

    def validate_record(self, record: DesiredRecord) -> None:
        # A CNAME cannot point at its own name; publish the public IP instead.
        if record.type == "CNAME" and canonical_name(record.name) == canonical_name(record.content):
            logger.warning(
                f"Cannot create CNAME record for {record.name} pointing to itself. Converting to A record."
            )
            record.type = "A"
            record.content = PENDING_CONTENT
            record.needs_ip_lookup = True
            record.proxied = None
            return

        validate_common(record, self.name)
        record.proxied = None

        if record.ttl is not None and record.ttl < MIN_TTL:
            logger.debug(
                f"TTL value {record.ttl} is too low for {record.name} ({record.type}). "
                f"DigitalOcean requires minimum {MIN_TTL} seconds."
            )
            record.ttl = MIN_TTL
