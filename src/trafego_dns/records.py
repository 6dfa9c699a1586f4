"""Record data model, per-provider record cache and shared normalization helpers."""

from __future__ import annotations

import ipaddress
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Sentinel content for apex records whose IP is resolved during reconciliation.
PENDING_CONTENT = "pending"

# Record types Cloudflare can proxy.
PROXIABLE_TYPES = frozenset({"A", "AAAA", "CNAME"})

# Record types whose content is a hostname (trailing dot / case insensitive).
HOSTNAME_CONTENT_TYPES = frozenset({"CNAME", "MX", "SRV", "NS"})

SUPPORTED_TYPES = frozenset({"A", "AAAA", "CNAME", "MX", "TXT", "SRV", "CAA", "NS"})


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class DesiredRecord:
    """The record a hostname should have, computed once per cycle.

    Mutable on purpose: validation fills type defaults in place and the
    reconciler swaps the pending sentinel for a resolved IP.
    """

    type: str
    name: str
    content: str = ""
    ttl: int = 1
    proxied: Optional[bool] = None
    priority: Optional[int] = None
    weight: Optional[int] = None
    port: Optional[int] = None
    flags: Optional[int] = None
    tag: Optional[str] = None
    needs_ip_lookup: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type, canonical_name(self.name))

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class ProviderRecord:
    """Canonical view of a record as it exists at the provider."""

    id: str
    type: str
    name: str
    content: str = ""
    ttl: Optional[int] = None
    proxied: Optional[bool] = None
    priority: Optional[int] = None
    weight: Optional[int] = None
    port: Optional[int] = None
    flags: Optional[int] = None
    tag: Optional[str] = None
    comment: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type, canonical_name(self.name))


# =============================================================================
# Name / content normalization
# =============================================================================


def strip_trailing_dot(value: str) -> str:
    return value[:-1] if value and value.endswith(".") else value


def ensure_trailing_dot(value: str) -> str:
    if not value or value.endswith("."):
        return value
    return f"{value}."


def canonical_name(name: str) -> str:
    """Lowercase FQDN without a trailing dot."""
    return strip_trailing_dot((name or "").strip()).lower()


def normalize_content(record_type: str, content: Optional[str]) -> str:
    """Normalize record content so equal values compare equal across providers."""
    if content is None:
        return ""
    value = str(content).strip()
    if record_type in HOSTNAME_CONTENT_TYPES:
        return strip_trailing_dot(value).lower()
    if record_type in ("A", "AAAA"):
        try:
            return str(ipaddress.ip_address(value))
        except ValueError:
            return value
    return value


def diff_records(
    existing: ProviderRecord,
    desired: DesiredRecord,
    *,
    supports_proxy: bool = False,
) -> List[Tuple[str, Any, Any]]:
    """Return the (field, existing, desired) pairs that differ.

    TTL is ignored when either side is proxied, since the provider forces an
    automatic TTL for proxied records.
    """
    changes: List[Tuple[str, Any, Any]] = []
    record_type = desired.type

    if normalize_content(record_type, existing.content) != normalize_content(
        record_type, desired.content
    ):
        changes.append(("content", existing.content, desired.content))

    proxied = supports_proxy and (existing.proxied is True or desired.proxied is True)
    if not proxied and existing.ttl != desired.ttl:
        changes.append(("ttl", existing.ttl, desired.ttl))

    if supports_proxy and record_type in PROXIABLE_TYPES:
        if bool(existing.proxied) != bool(desired.proxied):
            changes.append(("proxied", existing.proxied, desired.proxied))

    if record_type == "MX":
        fields: Tuple[str, ...] = ("priority",)
    elif record_type == "SRV":
        fields = ("priority", "weight", "port")
    elif record_type == "CAA":
        fields = ("flags", "tag")
    else:
        fields = ()
    for name in fields:
        old, new = getattr(existing, name), getattr(desired, name)
        if old != new:
            changes.append((name, old, new))

    return changes


# =============================================================================
# Record Cache
# =============================================================================


class RecordCache:
    """In-memory mirror of one provider zone.

    Refreshed wholesale from the provider and patched in place after each
    successful write so later lookups in the same cycle see the change.
    """

    def __init__(self, refresh_interval: float = 3600.0):
        self.refresh_interval = refresh_interval
        self.records: List[ProviderRecord] = []
        self.last_updated: float = 0.0

    def __len__(self) -> int:
        return len(self.records)

    def is_stale(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return (now - self.last_updated) > self.refresh_interval

    def needs_refresh(self, force: bool = False) -> bool:
        return force or not self.records or self.is_stale()

    def replace(self, records: List[ProviderRecord]) -> None:
        old_count = len(self.records)
        self.records = list(records)
        self.last_updated = time.time()
        logger.debug(f"Record cache replaced: {old_count} -> {len(self.records)} records")

    def find(self, record_type: str, name: str) -> Optional[ProviderRecord]:
        wanted = (record_type, canonical_name(name))
        for record in self.records:
            if record.key == wanted:
                return record
        return None

    def upsert(self, record: ProviderRecord) -> None:
        """Insert or replace a record, matching on id or on (type, name)."""
        for index, cached in enumerate(self.records):
            if cached.id == record.id or cached.key == record.key:
                self.records[index] = record
                # Drop any other entry that now shares the same identity.
                self.records = [
                    r
                    for i, r in enumerate(self.records)
                    if i == index or (r.id != record.id and r.key != record.key)
                ]
                return
        self.records.append(record)

    def remove(self, record_id: str) -> int:
        before = len(self.records)
        self.records = [r for r in self.records if r.id != record_id]
        return before - len(self.records)
