"""AWS Route53 DNS provider."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from trafego_dns.errors import (
    DNSSyncError,
    NetworkError,
    PartialBatchFailure,
    ProviderAPIError,
    ProviderAuthError,
    ProviderError,
    ProviderTimeoutError,
    RecordAlreadyExistsError,
    ZoneNotFoundError,
)
from trafego_dns.providers.base import DNSProvider, validate_common
from trafego_dns.reconcile import ChangeOutcome, ChangePlan
from trafego_dns.records import (
    HOSTNAME_CONTENT_TYPES,
    DesiredRecord,
    ProviderRecord,
    canonical_name,
    ensure_trailing_dot,
    strip_trailing_dot,
)

logger = logging.getLogger(__name__)

MAX_CHANGES_PER_BATCH = 100
MIN_TTL = 60
DEFAULT_TTL = 300

AUTH_ERROR_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "UnrecognizedClientException",
    "ExpiredToken",
}

OCTAL_ESCAPE_RE = re.compile(r"\\(\d{3})")
CAA_VALUE_RE = re.compile(r'^(\d+)\s+(\S+)\s+"(.*)"$')


def decode_name(name: str) -> str:
    """Route53 returns special characters as octal escapes, e.g. \\052 for "*"."""
    return OCTAL_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 8)), name or "")


@dataclass
class _ChangeUnit:
    """One logical record change: a CREATE, or a DELETE+CREATE pair."""

    action: str
    desired: DesiredRecord
    existing: Optional[ProviderRecord]
    changes: List[Dict[str, Any]]


class Route53Provider(DNSProvider):
    """AWS Route53 DNS provider implementation.

    Route53 has no record ids and no in-place update. Records are identified
    as "name:type" and updates are submitted as DELETE+CREATE pairs. Batch
    reconciliation sends change batches of at most MAX_CHANGES_PER_BATCH
    changes; when a batch is rejected the remaining work is applied record by
    record against a freshly refreshed cache.
    """

    def __init__(
        self,
        zone: str,
        *,
        zone_id: str = "",
        access_key: str = "",
        secret_key: str = "",
        region: str = "eu-west-2",
        cache_refresh_interval: float = 3600.0,
        timeout: float = 10.0,
        client: Any = None,
    ):
        super().__init__(zone, cache_refresh_interval=cache_refresh_interval, timeout=timeout)
        self.zone_id = self._strip_zone_prefix(zone_id)

        if client is None:
            config = Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 3, "mode": "standard"},
            )
            # Without explicit keys boto3 falls back to its default credential chain.
            client = boto3.client(
                "route53",
                aws_access_key_id=access_key or None,
                aws_secret_access_key=secret_key or None,
                region_name=region,
                config=config,
            )
        self.client = client

    @property
    def name(self) -> str:
        return "Route53"

    @property
    def key(self) -> str:
        return "route53"

    @staticmethod
    def _strip_zone_prefix(zone_id: str) -> str:
        return (zone_id or "").replace("/hostedzone/", "")

    def _translate_error(self, error: Exception) -> ProviderError:
        if isinstance(error, NoCredentialsError):
            return ProviderAuthError(f"No AWS credentials available for Route53: {error}")
        if isinstance(error, (ConnectTimeoutError, ReadTimeoutError)):
            return ProviderTimeoutError(f"Route53 request timed out: {error}")
        if isinstance(error, EndpointConnectionError):
            return NetworkError(f"Failed to reach Route53: {error}")
        if isinstance(error, ClientError):
            details = error.response.get("Error", {})
            code = str(details.get("Code", ""))
            message = str(details.get("Message", "")) or str(error)
            status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if code in AUTH_ERROR_CODES:
                return ProviderAuthError(f"Route53 rejected the credentials: {message}")
            if code == "NoSuchHostedZone":
                return ZoneNotFoundError(f"Route53 hosted zone not found: {message}")
            if "already exists" in message.lower():
                return RecordAlreadyExistsError(message, status=status, code=code)
            return ProviderAPIError(f"Route53 API error ({code}): {message}", status=status, code=code)
        return NetworkError(f"Route53 request failed: {error}")

    def init(self) -> None:
        if self.zone_id:
            return
        zone_name = ensure_trailing_dot(self.domain)
        try:
            response = self.client.list_hosted_zones_by_name(DNSName=zone_name)
        except (BotoCoreError, ClientError) as e:
            raise self._translate_error(e) from e

        for zone in response.get("HostedZones", []):
            if zone.get("Name") == zone_name:
                self.zone_id = self._strip_zone_prefix(zone["Id"])
                logger.info(f"Route53 hosted zone {self.domain} resolved (id {self.zone_id})")
                return
        raise ZoneNotFoundError(f"Route53 hosted zone not found: {self.domain}")

    # -------------------------------------------------------------------------
    # Wire format
    # -------------------------------------------------------------------------

    def record_id(self, name: str, record_type: str) -> str:
        return f"{self.normalize_name(name)}:{record_type}"

    def to_rrset(self, record: DesiredRecord) -> Dict[str, Any]:
        content = record.content
        if record.type in HOSTNAME_CONTENT_TYPES:
            content = ensure_trailing_dot(content)

        if record.type == "MX":
            value = f"{record.priority if record.priority is not None else 10} {content}"
        elif record.type == "SRV":
            value = f"{record.priority} {record.weight} {record.port} {content}"
        elif record.type == "CAA":
            value = f'{record.flags if record.flags is not None else 0} {record.tag or "issue"} "{content}"'
        elif record.type == "TXT" and not (content.startswith('"') and content.endswith('"')):
            value = f'"{content}"'
        else:
            value = content

        return {
            "Name": ensure_trailing_dot(self.normalize_name(record.name)),
            "Type": record.type,
            "TTL": record.ttl if record.ttl is not None else DEFAULT_TTL,
            "ResourceRecords": [{"Value": value}],
        }

    def from_rrset(self, rrset: Dict[str, Any]) -> ProviderRecord:
        record_type = str(rrset.get("Type") or "")
        name = canonical_name(decode_name(str(rrset.get("Name") or "")))
        record = ProviderRecord(
            id=f"{name}:{record_type}",
            type=record_type,
            name=name,
            ttl=rrset.get("TTL"),
            raw=rrset,
        )

        values = rrset.get("ResourceRecords") or []
        if values:
            value = str(values[0].get("Value") or "")
            if record_type == "MX":
                parts = value.split(" ", 1)
                record.priority = int(parts[0])
                value = parts[1] if len(parts) > 1 else ""
            elif record_type == "SRV":
                parts = value.split(" ", 3)
                record.priority, record.weight, record.port = (int(p) for p in parts[:3])
                value = parts[3] if len(parts) > 3 else ""
            elif record_type == "CAA":
                match = CAA_VALUE_RE.match(value)
                if match:
                    record.flags = int(match.group(1))
                    record.tag = match.group(2)
                    value = match.group(3)
            elif record_type == "TXT" and len(value) >= 2 and value[0] == value[-1] == '"':
                value = value[1:-1]
            record.content = value
        elif rrset.get("AliasTarget"):
            record.content = str(rrset["AliasTarget"].get("DNSName") or "")

        if record_type in HOSTNAME_CONTENT_TYPES or rrset.get("AliasTarget"):
            record.content = strip_trailing_dot(record.content)
        return record

    def _record_from_desired(self, record: DesiredRecord, rrset: Dict[str, Any]) -> ProviderRecord:
        name = self.normalize_name(record.name)
        content = record.content
        if record.type in HOSTNAME_CONTENT_TYPES:
            content = strip_trailing_dot(content)
        return ProviderRecord(
            id=f"{name}:{record.type}",
            type=record.type,
            name=name,
            content=content,
            ttl=rrset["TTL"],
            priority=record.priority if record.type in ("MX", "SRV") else None,
            weight=record.weight if record.type == "SRV" else None,
            port=record.port if record.type == "SRV" else None,
            flags=record.flags if record.type == "CAA" else None,
            tag=record.tag if record.type == "CAA" else None,
            raw=rrset,
        )

    # -------------------------------------------------------------------------
    # Remote operations
    # -------------------------------------------------------------------------

    def _change(self, changes: List[Dict[str, Any]], comment: str) -> None:
        try:
            self.client.change_resource_record_sets(
                HostedZoneId=self.zone_id,
                ChangeBatch={"Comment": comment, "Changes": changes},
            )
        except (BotoCoreError, ClientError) as e:
            raise self._translate_error(e) from e

    def fetch_all_records(self) -> List[ProviderRecord]:
        records: List[ProviderRecord] = []
        try:
            paginator = self.client.get_paginator("list_resource_record_sets")
            for page in paginator.paginate(HostedZoneId=self.zone_id):
                for rrset in page.get("ResourceRecordSets", []):
                    records.append(self.from_rrset(rrset))
        except (BotoCoreError, ClientError) as e:
            raise self._translate_error(e) from e
        return records

    def _find_by_id(self, record_id: str) -> Optional[ProviderRecord]:
        for record in self.cache.records:
            if record.id == record_id:
                return record
        name, _, record_type = record_id.rpartition(":")
        if name and record_type:
            return self.find_record_in_cache(record_type, name)
        return None

    def create_record(self, record: DesiredRecord) -> ProviderRecord:
        self.ensure_initialized()
        rrset = self.to_rrset(record)
        self._change([{"Action": "CREATE", "ResourceRecordSet": rrset}], "Created by trafego-dns")
        created = self._record_from_desired(record, rrset)
        self.update_record_in_cache(created)
        return created

    def update_record(self, record_id: str, record: DesiredRecord) -> ProviderRecord:
        self.ensure_initialized()
        existing = self._find_by_id(record_id)
        if existing is None:
            raise ProviderAPIError(f"Record {record_id} not found for update")

        rrset = self.to_rrset(record)
        self._change(
            [
                {"Action": "DELETE", "ResourceRecordSet": existing.raw},
                {"Action": "CREATE", "ResourceRecordSet": rrset},
            ],
            "Updated by trafego-dns",
        )
        updated = self._record_from_desired(record, rrset)
        self.update_record_in_cache(updated)
        return updated

    def delete_record(self, record_id: str) -> None:
        self.ensure_initialized()
        existing = self._find_by_id(record_id)
        if existing is None:
            raise ProviderAPIError(f"Record {record_id} not found for deletion")

        self._change([{"Action": "DELETE", "ResourceRecordSet": existing.raw}], "Deleted by trafego-dns")
        self.remove_record_from_cache(existing.id)

    def validate_record(self, record: DesiredRecord) -> None:
        validate_common(record, self.name)

        if record.proxied is not None:
            logger.debug(f"'proxied' is not valid for Route53 records, ignoring it for {record.name}")
            record.proxied = None

        if record.ttl is None:
            record.ttl = DEFAULT_TTL
        elif record.ttl < MIN_TTL:
            logger.debug(f"TTL value {record.ttl} is too low for Route53. Using {MIN_TTL} seconds.")
            record.ttl = MIN_TTL

    # -------------------------------------------------------------------------
    # Batch apply
    # -------------------------------------------------------------------------

    def _build_units(self, plan: ChangePlan) -> List[_ChangeUnit]:
        units: List[_ChangeUnit] = []
        for desired in plan.create:
            units.append(
                _ChangeUnit(
                    "create",
                    desired,
                    None,
                    [{"Action": "CREATE", "ResourceRecordSet": self.to_rrset(desired)}],
                )
            )
        for existing, desired in plan.update:
            units.append(
                _ChangeUnit(
                    "update",
                    desired,
                    existing,
                    [
                        {"Action": "DELETE", "ResourceRecordSet": existing.raw},
                        {"Action": "CREATE", "ResourceRecordSet": self.to_rrset(desired)},
                    ],
                )
            )
        return units

    @staticmethod
    def _chunk_units(units: List[_ChangeUnit], limit: int = MAX_CHANGES_PER_BATCH) -> List[List[_ChangeUnit]]:
        """Split units into chunks of at most `limit` changes; a DELETE+CREATE pair is never split."""
        chunks: List[List[_ChangeUnit]] = []
        current: List[_ChangeUnit] = []
        size = 0
        for unit in units:
            if current and size + len(unit.changes) > limit:
                chunks.append(current)
                current, size = [], 0
            current.append(unit)
            size += len(unit.changes)
        if current:
            chunks.append(current)
        return chunks

    def _submit_chunk(self, chunk: List[_ChangeUnit], chunk_index: int) -> None:
        changes = [change for unit in chunk for change in unit.changes]
        logger.debug(f"Submitting Route53 change batch {chunk_index + 1} with {len(changes)} changes")
        try:
            self._change(changes, f"Batch update by trafego-dns ({len(chunk)} records)")
        except ProviderError as e:
            raise PartialBatchFailure(
                f"Route53 change batch {chunk_index + 1} failed: {e}", chunk_index=chunk_index
            ) from e

    def _apply_unit_sequentially(self, unit: _ChangeUnit) -> ChangeOutcome:
        desired = unit.desired
        current = self.find_record_in_cache(desired.type, desired.name)
        if current is not None and not self.record_needs_update(current, desired):
            logger.info(f"{desired.type} record for {desired.name} already applied, skipping")
            return ChangeOutcome(unit.action, desired, existing=unit.existing, record=current)

        try:
            if current is None:
                record = self.create_record(desired)
            else:
                record = self.update_record(current.id, desired)
            return ChangeOutcome(unit.action, desired, existing=unit.existing, record=record)
        except RecordAlreadyExistsError:
            logger.info(f"{desired.type} record for {desired.name} already exists, re-reading zone")
            try:
                self.refresh_record_cache()
            except DNSSyncError as e:
                return ChangeOutcome(unit.action, desired, existing=unit.existing, error=e)
            current = self.find_record_in_cache(desired.type, desired.name)
            if current is not None and not self.record_needs_update(current, desired):
                return ChangeOutcome(unit.action, desired, existing=unit.existing, record=current)
            return ChangeOutcome(
                unit.action,
                desired,
                existing=unit.existing,
                error=ProviderAPIError(f"{desired.name} ({desired.type}) exists with different values"),
            )
        except DNSSyncError as e:
            return ChangeOutcome(unit.action, desired, existing=unit.existing, error=e)

    def apply_changes(self, plan: ChangePlan) -> List[ChangeOutcome]:
        self.ensure_initialized()
        chunks = self._chunk_units(self._build_units(plan))
        outcomes: List[ChangeOutcome] = []
        sequential = False

        for index, chunk in enumerate(chunks):
            if not sequential:
                try:
                    self._submit_chunk(chunk, index)
                except PartialBatchFailure as e:
                    logger.warning(f"{e}; applying remaining records one at a time")
                    sequential = True
                    try:
                        self.refresh_record_cache()
                    except DNSSyncError as refresh_error:
                        logger.error(f"Failed to refresh Route53 records after batch failure: {refresh_error}")
                else:
                    for unit in chunk:
                        rrset = unit.changes[-1]["ResourceRecordSet"]
                        record = self._record_from_desired(unit.desired, rrset)
                        self.update_record_in_cache(record)
                        outcomes.append(
                            ChangeOutcome(unit.action, unit.desired, existing=unit.existing, record=record)
                        )
                    continue

            for unit in chunk:
                outcomes.append(self._apply_unit_sequentially(unit))

        return outcomes
