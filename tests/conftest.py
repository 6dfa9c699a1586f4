"""Shared test doubles."""

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

import pytest

from trafego_dns.config import Settings
from trafego_dns.errors import ProviderAPIError
from trafego_dns.providers.base import DNSProvider, validate_common
from trafego_dns.records import DesiredRecord, ProviderRecord, canonical_name

# =============================================================================
# Mock DNS Provider
# =============================================================================


class MemoryDNSProvider(DNSProvider):
    """DNS provider with in-memory zone storage and call tracking."""

    supports_proxy = True

    def __init__(
        self,
        domain: str = "example.com",
        records: Optional[Iterable[ProviderRecord]] = None,
        fail_on: Iterable[str] = (),
    ):
        super().__init__(domain)
        self.zone: Dict[str, ProviderRecord] = {r.id: r for r in records or []}
        self.fail_on = {canonical_name(name) for name in fail_on}
        self.init_calls = 0
        self.fetch_calls = 0
        self.created: List[ProviderRecord] = []
        self.updated: List[ProviderRecord] = []
        self.deleted: List[str] = []
        self._next_id = 1

    @property
    def name(self) -> str:
        return "MemoryDNS"

    @property
    def key(self) -> str:
        return "memory"

    def init(self) -> None:
        self.init_calls += 1

    def fetch_all_records(self) -> List[ProviderRecord]:
        self.fetch_calls += 1
        return [replace(r) for r in self.zone.values()]

    def _store(self, record_id: str, record: DesiredRecord) -> ProviderRecord:
        if canonical_name(record.name) in self.fail_on:
            raise ProviderAPIError(f"Simulated failure for {record.name}", status=500)
        stored = ProviderRecord(
            id=record_id,
            type=record.type,
            name=canonical_name(record.name),
            content=record.content,
            ttl=record.ttl,
            proxied=record.proxied,
            priority=record.priority,
            weight=record.weight,
            port=record.port,
            flags=record.flags,
            tag=record.tag,
        )
        self.zone[record_id] = stored
        self.update_record_in_cache(replace(stored))
        return stored

    def create_record(self, record: DesiredRecord) -> ProviderRecord:
        record_id = f"rec-{self._next_id}"
        self._next_id += 1
        created = self._store(record_id, record)
        self.created.append(created)
        return created

    def update_record(self, record_id: str, record: DesiredRecord) -> ProviderRecord:
        updated = self._store(record_id, record)
        self.updated.append(updated)
        return updated

    def delete_record(self, record_id: str) -> None:
        record = self.zone.get(record_id)
        if record is not None and canonical_name(record.name) in self.fail_on:
            raise ProviderAPIError(f"Simulated failure deleting {record.name}", status=500)
        self.zone.pop(record_id, None)
        self.deleted.append(record_id)
        self.remove_record_from_cache(record_id)

    def validate_record(self, record: DesiredRecord) -> None:
        validate_common(record, self.name)


@pytest.fixture
def settings() -> Settings:
    return Settings.from_env(
        {
            "CLOUDFLARE_TOKEN": "token",
            "CLOUDFLARE_ZONE": "example.com",
            "PUBLIC_IP": "203.0.113.10",
        }
    )
