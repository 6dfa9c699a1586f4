"""Desired-vs-actual reconciliation shared by every provider.

One pass classifies each desired record into create, update or unchanged
against the provider's record cache, then hands the create and update buckets
to the provider to apply. A failing record is counted and logged; it never
aborts the rest of the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from trafego_dns.errors import DNSSyncError, IPResolutionError
from trafego_dns.records import DesiredRecord, ProviderRecord

if TYPE_CHECKING:
    from trafego_dns.providers.base import DNSProvider
    from trafego_dns.public_ip import PublicIPResolver
    from trafego_dns.tracker import RecordTracker

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class BatchResult:
    """Per-cycle outcome of one reconciliation pass."""

    records: List[ProviderRecord] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    up_to_date: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated + self.up_to_date + self.errors


@dataclass
class ChangePlan:
    create: List[DesiredRecord] = field(default_factory=list)
    update: List[Tuple[ProviderRecord, DesiredRecord]] = field(default_factory=list)
    unchanged: List[ProviderRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.create) + len(self.update)


@dataclass
class ChangeOutcome:
    action: str
    desired: DesiredRecord
    existing: Optional[ProviderRecord] = None
    record: Optional[ProviderRecord] = None
    error: Optional[Any] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None


# =============================================================================
# Reconciliation
# =============================================================================


def resolve_pending_ip(record: DesiredRecord, ip_resolver: Optional["PublicIPResolver"]) -> None:
    """Replace the pending sentinel with the current public address."""
    if not record.needs_ip_lookup:
        return
    if ip_resolver is None:
        raise IPResolutionError(f"No IP resolver available for {record.name}")

    if record.type == "AAAA":
        address = ip_resolver.get_public_ipv6()
    else:
        address = ip_resolver.get_public_ipv4()
    if not address:
        raise IPResolutionError(f"Could not determine public IP for {record.name}")

    record.content = address
    record.needs_ip_lookup = False
    logger.debug(f"Resolved public IP for {record.name}: {address}")


def classify_records(
    provider: "DNSProvider",
    records: List[DesiredRecord],
    ip_resolver: Optional["PublicIPResolver"] = None,
) -> Tuple[ChangePlan, int]:
    """Bucket desired records against the cache. Returns the plan and the error count."""
    plan = ChangePlan()
    errors = 0

    for record in records:
        try:
            resolve_pending_ip(record, ip_resolver)
            provider.validate_record(record)
            # Validation may turn a self-referencing CNAME into an A record.
            if record.needs_ip_lookup:
                resolve_pending_ip(record, ip_resolver)
                provider.validate_record(record)

            existing = provider.find_record_in_cache(record.type, record.name)
            if existing is None:
                plan.create.append(record)
            elif provider.record_needs_update(existing, record):
                plan.update.append((existing, record))
            else:
                logger.debug(f"{record.type} record for {record.name} is up to date")
                plan.unchanged.append(existing)
        except DNSSyncError as e:
            errors += 1
            logger.error(f"Skipping {record.type} record for {record.name}: {e}")

    return plan, errors


def batch_ensure_records(
    provider: "DNSProvider",
    records: List[DesiredRecord],
    *,
    ip_resolver: Optional["PublicIPResolver"] = None,
    tracker: Optional["RecordTracker"] = None,
) -> BatchResult:
    """Make the provider's records match the desired list.

    created + updated + up_to_date + errors always equals len(records).
    """
    result = BatchResult()
    if not records:
        return result

    provider.ensure_initialized()
    provider.get_records_from_cache()

    plan, result.errors = classify_records(provider, records, ip_resolver)
    result.up_to_date = len(plan.unchanged)
    result.records.extend(plan.unchanged)
    logger.debug(
        f"Batch plan for {provider.name}: {len(plan.create)} to create, "
        f"{len(plan.update)} to update, {len(plan.unchanged)} unchanged"
    )

    if not len(plan):
        return result

    for outcome in provider.apply_changes(plan):
        desired = outcome.desired
        if not outcome.ok:
            result.errors += 1
            logger.error(f"Failed to {outcome.action} {desired.type} record for {desired.name}: {outcome.error}")
            continue

        result.records.append(outcome.record)
        if outcome.action == "create":
            result.created += 1
            logger.info(f"Created {desired.type} record for {desired.name}")
            if tracker is not None:
                tracker.track_record(outcome.record)
        else:
            result.updated += 1
            logger.info(f"Updated {desired.type} record for {desired.name}")
            if tracker is not None and outcome.existing is not None:
                if outcome.existing.id != outcome.record.id:
                    tracker.update_record_id(outcome.existing, outcome.record.id)

    return result
