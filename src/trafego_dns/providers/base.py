"""Provider capability contract shared by every DNS backend."""

from __future__ import annotations

import ipaddress
import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

from trafego_dns.errors import DNSSyncError, ValidationError
from trafego_dns.records import (
    PENDING_CONTENT,
    DesiredRecord,
    ProviderRecord,
    RecordCache,
    canonical_name,
    diff_records,
)
from trafego_dns.reconcile import BatchResult, ChangeOutcome, ChangePlan, batch_ensure_records

if TYPE_CHECKING:
    from trafego_dns.public_ip import PublicIPResolver
    from trafego_dns.tracker import RecordTracker

logger = logging.getLogger(__name__)

IPV4_RE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")


def validate_common(record: DesiredRecord, provider_name: str) -> None:
    """Type checks shared by all providers; fills MX/SRV/CAA defaults in place."""
    if not record.type:
        raise ValidationError("Record type is required")
    if not record.name:
        raise ValidationError("Record name is required")
    if record.needs_ip_lookup or record.content == PENDING_CONTENT:
        raise ValidationError(f"Public IP for {record.name} has not been resolved")
    if not record.content:
        raise ValidationError(f"Content is required for {record.type} record {record.name}")

    if record.type == "A":
        if not IPV4_RE.match(record.content):
            raise ValidationError(f"Invalid IPv4 address format: {record.content}")
    elif record.type == "AAAA":
        try:
            ipaddress.IPv6Address(record.content)
        except ValueError:
            raise ValidationError(f"Invalid IPv6 address format: {record.content}")
    elif record.type == "MX":
        if record.priority is None:
            record.priority = 10
    elif record.type == "SRV":
        if record.priority is None:
            record.priority = 1
        if record.weight is None:
            record.weight = 1
        if record.port is None:
            raise ValidationError(f"Port is required for SRV record {record.name}")
    elif record.type == "CAA":
        if record.flags is None:
            record.flags = 0
        if not record.tag:
            raise ValidationError(f"Tag is required for CAA record {record.name}")
    elif record.type not in ("CNAME", "TXT", "NS"):
        logger.warning(f"Record type {record.type} may not be fully supported by {provider_name}")


class DNSProvider(ABC):
    """Abstract base class for DNS providers.

    Each instance owns one record cache for its zone. Every method that talks
    to the remote API goes through ensure_initialized() first.
    """

    supports_proxy = False

    def __init__(self, domain: str, *, cache_refresh_interval: float = 3600.0, timeout: float = 10.0):
        self.domain = canonical_name(domain)
        self.timeout = timeout
        self.cache = RecordCache(cache_refresh_interval)
        self._initialized = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @property
    @abstractmethod
    def key(self) -> str:
        """Short identifier used in tracker keys, e.g. "cloudflare"."""
        pass

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    @abstractmethod
    def init(self) -> None:
        """Resolve and authenticate the zone. Safe to call repeatedly."""
        pass

    def ensure_initialized(self) -> None:
        if self._initialized:
            return
        self.init()
        self._initialized = True

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    @abstractmethod
    def fetch_all_records(self) -> List[ProviderRecord]:
        """Full paginated fetch of the zone's records."""
        pass

    def refresh_record_cache(self) -> List[ProviderRecord]:
        self.ensure_initialized()
        logger.debug(f"Refreshing {self.name} record cache for {self.domain}")
        records = self.fetch_all_records()
        self.cache.replace(records)
        logger.debug(f"{self.name} record cache now holds {len(records)} records")
        return self.cache.records

    def get_records_from_cache(self, force_refresh: bool = False) -> List[ProviderRecord]:
        if self.cache.needs_refresh(force_refresh):
            return self.refresh_record_cache()
        return self.cache.records

    def find_record_in_cache(self, record_type: str, name: str) -> Optional[ProviderRecord]:
        return self.cache.find(record_type, self.normalize_name(name))

    def update_record_in_cache(self, record: ProviderRecord) -> None:
        self.cache.upsert(record)

    def remove_record_from_cache(self, record_id: str) -> None:
        removed = self.cache.remove(record_id)
        logger.debug(f"Removed {removed} record(s) with id {record_id} from {self.name} cache")

    def list_records(self, record_type: Optional[str] = None, name: Optional[str] = None) -> List[ProviderRecord]:
        """Records in the zone, optionally filtered by type and name."""
        records = self.get_records_from_cache()
        wanted_name = self.normalize_name(name) if name else None
        return [
            r
            for r in records
            if (record_type is None or r.type == record_type)
            and (wanted_name is None or canonical_name(r.name) == wanted_name)
        ]

    def normalize_name(self, name: str) -> str:
        """Map any provider spelling of a name to a lowercase FQDN."""
        value = canonical_name(name)
        if value in ("", "@"):
            return self.domain
        return value

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    @abstractmethod
    def create_record(self, record: DesiredRecord) -> ProviderRecord:
        pass

    @abstractmethod
    def update_record(self, record_id: str, record: DesiredRecord) -> ProviderRecord:
        pass

    @abstractmethod
    def delete_record(self, record_id: str) -> None:
        pass

    @abstractmethod
    def validate_record(self, record: DesiredRecord) -> None:
        """Fill defaults in place and raise ValidationError on invalid input."""
        pass

    def record_needs_update(self, existing: ProviderRecord, desired: DesiredRecord) -> bool:
        changes = diff_records(existing, desired, supports_proxy=self.supports_proxy)
        for field_name, old, new in changes:
            logger.debug(f"{desired.name} ({desired.type}) {field_name}: {old} -> {new}")
        return bool(changes)

    def is_managed(self, record: ProviderRecord) -> bool:
        """Whether the record carries this tool's ownership marker."""
        return True

    def apply_changes(self, plan: ChangePlan) -> List[ChangeOutcome]:
        """Apply creates then updates one at a time; failures are reported per record."""
        outcomes: List[ChangeOutcome] = []
        for desired in plan.create:
            try:
                created = self.create_record(desired)
                outcomes.append(ChangeOutcome("create", desired, record=created))
            except DNSSyncError as e:
                outcomes.append(ChangeOutcome("create", desired, error=e))
        for existing, desired in plan.update:
            try:
                updated = self.update_record(existing.id, desired)
                outcomes.append(ChangeOutcome("update", desired, existing=existing, record=updated))
            except DNSSyncError as e:
                outcomes.append(ChangeOutcome("update", desired, existing=existing, error=e))
        return outcomes

    def batch_ensure_records(
        self,
        records: List[DesiredRecord],
        *,
        ip_resolver: Optional["PublicIPResolver"] = None,
        tracker: Optional["RecordTracker"] = None,
    ) -> BatchResult:
        return batch_ensure_records(self, records, ip_resolver=ip_resolver, tracker=tracker)
