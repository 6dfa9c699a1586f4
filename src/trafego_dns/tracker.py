"""Ownership tracking for records created by this tool, plus the preserved-hostname list."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Tuple

from trafego_dns.errors import TrackerPersistenceError
from trafego_dns.records import ProviderRecord, canonical_name

logger = logging.getLogger(__name__)

MANAGED_BY = "Traefik DNS Manager"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Preserved hostnames
# =============================================================================


class PreservedHostnames:
    """Hostnames cleanup must never delete.

    Entries are exact names or "*.suffix" wildcards. A wildcard matches any
    name below the suffix but not the suffix itself.
    """

    def __init__(self, patterns: Iterable[str] = ()):
        exact = set()
        suffixes = set()
        for raw in patterns:
            pattern = canonical_name(raw)
            if not pattern:
                continue
            if pattern.startswith("*."):
                suffixes.add(pattern[1:])
            else:
                exact.add(pattern)
        self._exact = frozenset(exact)
        self._suffixes: Tuple[str, ...] = tuple(sorted(suffixes))

    def __len__(self) -> int:
        return len(self._exact) + len(self._suffixes)

    def __bool__(self) -> bool:
        return len(self) > 0

    def matches(self, name: str) -> bool:
        hostname = canonical_name(name)
        if hostname in self._exact:
            return True
        return any(hostname.endswith(suffix) for suffix in self._suffixes)

    def patterns(self) -> List[str]:
        return sorted(self._exact) + [f"*{suffix}" for suffix in self._suffixes]


# =============================================================================
# Record tracker
# =============================================================================


class RecordTracker:
    """Persisted registry of records this tool created.

    The JSON file is read once at start and rewritten in full after every
    mutation. If a write fails the in-memory state stays authoritative and
    the next mutation tries again.
    """

    def __init__(self, path: str, provider: str, domain: str):
        self.path = Path(path)
        self.provider = provider
        self.domain = canonical_name(domain)
        self._records: Dict[str, Dict[str, Any]] = {}
        self.load()

    @staticmethod
    def record_key(provider: str, domain: str, name: str, record_type: str) -> str:
        return f"{provider}:{canonical_name(domain)}:{canonical_name(name)}:{record_type}".lower()

    def _key(self, name: str, record_type: str) -> str:
        return self.record_key(self.provider, self.domain, name, record_type)

    def load(self) -> None:
        self._records = {}
        if not self.path.exists():
            logger.debug(f"No DNS record tracker file at {self.path}, starting fresh")
            return
        try:
            entries = json.loads(self.path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load tracked DNS records from {self.path}: {e}")
            return
        if not isinstance(entries, list):
            logger.error(f"Tracker file {self.path} does not contain a list, ignoring it")
            return

        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("name") or not entry.get("type"):
                logger.warning(f"Skipping malformed tracker entry: {entry}")
                continue
            key = self.record_key(
                str(entry.get("provider", "")),
                str(entry.get("domain", "")),
                str(entry["name"]),
                str(entry["type"]),
            )
            self._records[key] = entry
        logger.debug(f"Loaded {len(self._records)} tracked DNS records from {self.path}")

    def _write(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(list(self._records.values()), indent=2), "utf-8")
            tmp_path.replace(self.path)
        except OSError as e:
            raise TrackerPersistenceError(f"Failed to save tracked DNS records to {self.path}: {e}") from e

    def save(self) -> bool:
        try:
            self._write()
        except TrackerPersistenceError as e:
            logger.error(str(e))
            return False
        logger.debug(f"Saved {len(self._records)} tracked DNS records to {self.path}")
        return True

    def track_record(self, record: ProviderRecord) -> None:
        name = canonical_name(record.name)
        self._records[self._key(name, record.type)] = {
            "id": record.id,
            "provider": self.provider,
            "domain": self.domain,
            "name": name,
            "type": record.type,
            "createdAt": _now(),
            "managedBy": MANAGED_BY,
        }
        self.save()
        logger.debug(f"Tracked new DNS record: {name} ({record.type})")

    def untrack_record(self, record: ProviderRecord) -> bool:
        removed = self._records.pop(self._key(record.name, record.type), None)
        if removed is None:
            return False
        self.save()
        logger.debug(f"Removed tracked DNS record: {record.name} ({record.type})")
        return True

    def is_tracked(self, record: ProviderRecord) -> bool:
        return self._key(record.name, record.type) in self._records

    def update_record_id(self, record: ProviderRecord, new_id: str) -> None:
        entry = self._records.get(self._key(record.name, record.type))
        if entry is None:
            return
        entry["id"] = new_id
        entry["updatedAt"] = _now()
        self.save()
        logger.debug(f"Updated tracked DNS record id: {record.name} ({record.type})")

    def get_current_provider_records(self) -> List[Dict[str, Any]]:
        return [
            entry
            for entry in self._records.values()
            if entry.get("provider") == self.provider
            and canonical_name(str(entry.get("domain", ""))) == self.domain
        ]

    def get_all_tracked_records(self) -> List[Dict[str, Any]]:
        return list(self._records.values())


# =============================================================================
# Orphan cleanup
# =============================================================================


def find_orphaned_records(
    records: Iterable[ProviderRecord],
    active_hostnames: Iterable[str],
    tracker: RecordTracker,
    preserved: PreservedHostnames,
    is_managed: Callable[[ProviderRecord], bool] = lambda record: True,
) -> List[ProviderRecord]:
    """Records that are tracked, carry our marker, are no longer active and are not preserved."""
    active = {canonical_name(h) for h in active_hostnames}
    orphans = []
    for record in records:
        if not tracker.is_tracked(record) or not is_managed(record):
            continue
        if canonical_name(record.name) in active:
            continue
        if preserved.matches(record.name):
            logger.debug(f"Keeping preserved hostname {record.name} ({record.type})")
            continue
        orphans.append(record)
    return orphans
