"""Cloudflare DNS provider."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from trafego_dns.errors import ZoneNotFoundError
from trafego_dns.providers.base import DNSProvider, validate_common
from trafego_dns.providers.rest import APISession
from trafego_dns.records import PROXIABLE_TYPES, DesiredRecord, ProviderRecord, canonical_name

logger = logging.getLogger(__name__)

MANAGED_COMMENT = "Managed by Traefik DNS Manager"


class CloudflareProvider(DNSProvider):
    """Cloudflare DNS provider implementation.

    Records are addressed by Cloudflare's record id and updated with a full
    PUT. Every record written by this tool carries MANAGED_COMMENT, which is
    what orphan cleanup uses to recognise its own records.
    """

    API_URL = "https://api.cloudflare.com/client/v4"
    PAGE_SIZE = 100

    supports_proxy = True

    def __init__(
        self,
        token: str,
        zone: str,
        *,
        cache_refresh_interval: float = 3600.0,
        timeout: float = 10.0,
        api_url: str = API_URL,
    ):
        super().__init__(zone, cache_refresh_interval=cache_refresh_interval, timeout=timeout)
        self._api = APISession(api_url, token, provider_name="Cloudflare", timeout=timeout)
        self.zone_id = ""

    @property
    def name(self) -> str:
        return "Cloudflare"

    @property
    def key(self) -> str:
        return "cloudflare"

    def init(self) -> None:
        if self.zone_id:
            return
        data = self._api.request("GET", "/zones", params={"name": self.domain})
        zones = data.get("result") or []
        if not zones:
            raise ZoneNotFoundError(f"Cloudflare zone not found: {self.domain}")
        self.zone_id = str(zones[0]["id"])
        logger.info(f"Cloudflare zone {self.domain} resolved (id {self.zone_id})")

    # -------------------------------------------------------------------------
    # Wire format
    # -------------------------------------------------------------------------

    def to_wire(self, record: DesiredRecord) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": record.type,
            "name": record.name,
            "content": record.content,
            "ttl": record.ttl,
            "comment": MANAGED_COMMENT,
        }
        if record.type in PROXIABLE_TYPES:
            payload["proxied"] = bool(record.proxied)

        if record.type == "MX":
            payload["priority"] = record.priority if record.priority is not None else 10
        elif record.type == "SRV":
            payload["priority"] = record.priority if record.priority is not None else 1
            payload["data"] = {
                "priority": payload["priority"],
                "weight": record.weight if record.weight is not None else 1,
                "port": record.port if record.port is not None else 80,
                "target": record.content,
            }
        elif record.type == "CAA":
            payload["data"] = {
                "flags": record.flags if record.flags is not None else 0,
                "tag": record.tag or "issue",
                "value": record.content,
            }
        return payload

    def from_wire(self, item: Dict[str, Any]) -> ProviderRecord:
        record_type = str(item.get("type") or "")
        record = ProviderRecord(
            id=str(item.get("id") or ""),
            type=record_type,
            name=canonical_name(str(item.get("name") or "")),
            content=str(item.get("content") or ""),
            ttl=item.get("ttl"),
            comment=item.get("comment"),
            raw=item,
        )
        if record_type in PROXIABLE_TYPES:
            record.proxied = bool(item.get("proxied"))

        data = item.get("data") or {}
        if record_type == "MX":
            record.priority = item.get("priority")
        elif record_type == "SRV":
            record.priority = data.get("priority", item.get("priority"))
            record.weight = data.get("weight")
            record.port = data.get("port")
            if data.get("target"):
                record.content = str(data["target"])
        elif record_type == "CAA" and data:
            record.flags = data.get("flags")
            record.tag = data.get("tag")
            record.content = str(data.get("value") or "")
        return record

    # -------------------------------------------------------------------------
    # Remote operations
    # -------------------------------------------------------------------------

    def fetch_all_records(self) -> List[ProviderRecord]:
        path = f"/zones/{self.zone_id}/dns_records"
        page = 1
        data = self._api.request("GET", path, params={"per_page": self.PAGE_SIZE, "page": page})
        records: List[ProviderRecord] = []

        while True:
            records.extend(self.from_wire(item) for item in data.get("result") or [])
            info = data.get("result_info") or {}

            next_page_url = info.get("next_page_url")
            if next_page_url:
                page += 1
                data = self._api.request("GET", next_page_url)
                continue

            total_pages = int(info.get("total_pages") or 1)
            if page >= total_pages:
                break
            page += 1
            logger.debug(f"Fetching Cloudflare records page {page}/{total_pages}")
            data = self._api.request("GET", path, params={"per_page": self.PAGE_SIZE, "page": page})

        return records

    def create_record(self, record: DesiredRecord) -> ProviderRecord:
        self.ensure_initialized()
        data = self._api.request(
            "POST", f"/zones/{self.zone_id}/dns_records", json=self.to_wire(record)
        )
        created = self.from_wire(data.get("result") or {})
        self.update_record_in_cache(created)
        return created

    def update_record(self, record_id: str, record: DesiredRecord) -> ProviderRecord:
        self.ensure_initialized()
        data = self._api.request(
            "PUT", f"/zones/{self.zone_id}/dns_records/{record_id}", json=self.to_wire(record)
        )
        updated = self.from_wire(data.get("result") or {})
        self.update_record_in_cache(updated)
        return updated

    def delete_record(self, record_id: str) -> None:
        self.ensure_initialized()
        self._api.request("DELETE", f"/zones/{self.zone_id}/dns_records/{record_id}")
        self.remove_record_from_cache(record_id)

    def validate_record(self, record: DesiredRecord) -> None:
        validate_common(record, self.name)

        if record.type not in PROXIABLE_TYPES:
            if record.proxied:
                logger.warning(f"'proxied' is not valid for {record.type} records. Setting to false.")
            record.proxied = False

        if record.ttl != 1 and record.ttl < 60:
            logger.warning(f"TTL value {record.ttl} is too low for Cloudflare. Setting to 60 seconds.")
            record.ttl = 60

    def is_managed(self, record: ProviderRecord) -> bool:
        return record.comment == MANAGED_COMMENT
