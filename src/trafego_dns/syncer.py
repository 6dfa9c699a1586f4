"""Orchestration: one sync cycle, the polling loop and Docker-triggered syncs."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from trafego_dns.config import Settings
from trafego_dns.docker_labels import DockerLabelSource
from trafego_dns.errors import ContainerSourceError, DNSSyncError
from trafego_dns.labels import (
    ensure_fqdn,
    extract_dns_config_from_labels,
    extract_hostnames_from_rule,
    find_labels_for_router,
    should_skip,
)
from trafego_dns.providers.base import DNSProvider
from trafego_dns.public_ip import PublicIPResolver
from trafego_dns.reconcile import BatchResult
from trafego_dns.records import DesiredRecord, canonical_name
from trafego_dns.traefik import Router, TraefikRouteSource
from trafego_dns.tracker import PreservedHostnames, RecordTracker, find_orphaned_records

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Counters for one sync cycle."""

    hostnames: List[str] = field(default_factory=list)
    skipped: int = 0
    extraction_errors: int = 0
    batch: BatchResult = field(default_factory=BatchResult)
    orphans_deleted: int = 0
    orphans_failed: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def errors(self) -> int:
        return self.extraction_errors + self.batch.errors + self.orphans_failed


class DNSSyncer:
    def __init__(
        self,
        *,
        settings: Settings,
        dns_provider: DNSProvider,
        route_source: TraefikRouteSource,
        label_source: Optional[DockerLabelSource] = None,
        ip_resolver: Optional[PublicIPResolver] = None,
        tracker: Optional[RecordTracker] = None,
        preserved: Optional[PreservedHostnames] = None,
    ):
        self.settings = settings
        self.dns_provider = dns_provider
        self.route_source = route_source
        self.label_source = label_source
        self.ip_resolver = ip_resolver
        self.tracker = tracker
        self.preserved = preserved or PreservedHostnames()

        self._cycle_lock = threading.Lock()
        self._trigger_lock = threading.Lock()
        self._last_trigger = 0.0
        self._container_labels: Dict[str, Dict[str, str]] = {}
        self._last_hostname_count: Optional[int] = None

    # -------------------------------------------------------------------------
    # Desired state
    # -------------------------------------------------------------------------

    def _refresh_container_labels(self) -> Dict[str, Dict[str, str]]:
        if self.label_source is None:
            return self._container_labels
        try:
            self._container_labels = self.label_source.list_labels()
        except ContainerSourceError as e:
            logger.warning(f"{e}; using labels from the previous cycle")
        return self._container_labels

    def collect_desired_records(
        self,
        routers: Mapping[str, Router],
        container_labels: Mapping[str, Mapping[str, str]],
    ) -> Tuple[List[DesiredRecord], List[str], int, int]:
        """Desired records, active hostnames, skipped count and error count for the given routers."""
        prefix = self.settings.dns_label_prefix
        zone = self.settings.zone
        desired: List[DesiredRecord] = []
        active: List[str] = []
        active_names: Set[str] = set()
        seen: Set[Tuple[str, str]] = set()
        skipped = 0
        errors = 0

        for router_name, router in routers.items():
            if "Host" not in (router.rule or ""):
                continue
            labels = find_labels_for_router(router, container_labels, self.settings.traefik_label_prefix)

            for hostname in extract_hostnames_from_rule(router.rule):
                if should_skip(labels, prefix):
                    skipped += 1
                    logger.debug(f"Skipping DNS management for {hostname} due to {prefix}skip=true label")
                    continue

                fqdn = ensure_fqdn(hostname, zone)
                if canonical_name(fqdn) not in active_names:
                    active_names.add(canonical_name(fqdn))
                    active.append(fqdn)
                try:
                    record = extract_dns_config_from_labels(labels, self.settings, fqdn, self.ip_resolver)
                except DNSSyncError as e:
                    errors += 1
                    logger.error(f"Error processing hostname {hostname} (router {router_name}): {e}")
                    continue

                if record.key in seen:
                    logger.debug(f"{fqdn} ({record.type}) already defined by another router, ignoring")
                    continue
                seen.add(record.key)
                desired.append(record)

        return desired, active, skipped, errors

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    def cleanup_orphaned_records(self, active_hostnames: List[str]) -> Tuple[int, int]:
        """Delete tracked records whose hostname is gone. Returns (deleted, failed)."""
        if self.tracker is None:
            logger.debug("No record tracker configured, skipping orphan cleanup")
            return 0, 0

        records = list(self.dns_provider.get_records_from_cache(force_refresh=True))
        orphans = find_orphaned_records(
            records,
            active_hostnames,
            self.tracker,
            self.preserved,
            self.dns_provider.is_managed,
        )

        deleted = 0
        failed = 0
        for record in orphans:
            logger.info(f"Removing orphaned DNS record: {record.name} ({record.type})")
            try:
                self.dns_provider.delete_record(record.id)
            except DNSSyncError as e:
                failed += 1
                logger.error(f"Failed to delete orphaned record {record.name} ({record.type}): {e}")
                continue
            self.tracker.untrack_record(record)
            deleted += 1

        if deleted:
            logger.info(f"Removed {deleted} orphaned DNS records")
        return deleted, failed

    # -------------------------------------------------------------------------
    # Sync cycle
    # -------------------------------------------------------------------------

    def sync_once(self) -> Optional[SyncResult]:
        """Run one cycle. Returns None when a cycle is already in progress."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping this run")
            return None
        try:
            return self._run_cycle()
        finally:
            self._cycle_lock.release()

    def _run_cycle(self) -> SyncResult:
        result = SyncResult()
        try:
            routers = self.route_source.get_routers()
            logger.debug(f"Found {len(routers)} routers in Traefik")
            container_labels = self._refresh_container_labels()
            if self.ip_resolver is not None:
                self.ip_resolver.refresh()

            desired, active, result.skipped, result.extraction_errors = self.collect_desired_records(
                routers, container_labels
            )
            result.hostnames = active
            if self._last_hostname_count != len(active):
                logger.info(f"Processing {len(active)} hostnames for DNS management")
            else:
                logger.debug(f"Processing {len(active)} hostnames for DNS management")
            self._last_hostname_count = len(active)

            result.batch = self.dns_provider.batch_ensure_records(
                desired, ip_resolver=self.ip_resolver, tracker=self.tracker
            )
            self._log_batch(result.batch)

            if self.settings.cleanup_orphaned:
                result.orphans_deleted, result.orphans_failed = self.cleanup_orphaned_records(active)
        except DNSSyncError as e:
            result.error = str(e)
            logger.error(f"Sync cycle failed: {e}")
        return result

    @staticmethod
    def _log_batch(batch: BatchResult) -> None:
        if batch.created:
            logger.info(f"Created {batch.created} new DNS records")
        if batch.updated:
            logger.info(f"Updated {batch.updated} existing DNS records")
        if batch.up_to_date:
            logger.info(f"{batch.up_to_date} DNS records are up to date")
        if batch.errors:
            logger.warning(f"Encountered {batch.errors} errors processing DNS records")

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    def request_sync(self, reason: str = "") -> bool:
        """Schedule a sync after the debounce delay. Returns False when debounced."""
        debounce = self.settings.docker_event_debounce
        with self._trigger_lock:
            now = time.monotonic()
            if self._last_trigger and now - self._last_trigger < debounce:
                logger.debug(f"Debounced sync request ({reason})")
                return False
            self._last_trigger = now

        logger.debug(f"Sync requested ({reason}), running in {debounce:.0f}s")
        timer = threading.Timer(debounce, self._triggered_sync)
        timer.daemon = True
        timer.start()
        return True

    def _triggered_sync(self) -> None:
        try:
            self.sync_once()
        except Exception as e:
            logger.error(f"Triggered sync failed: {e}", exc_info=True)

    def on_docker_event(self, event: Dict[str, Any]) -> None:
        attributes = (event.get("Actor") or {}).get("Attributes") or {}
        name = attributes.get("name") or str(event.get("id", ""))[:12]
        self.request_sync(f"container {name} {event.get('status') or event.get('Action')}")

    def start_event_watcher(self, stop_event: threading.Event) -> Optional[threading.Thread]:
        if self.label_source is None or not self.settings.watch_docker_events:
            return None
        thread = threading.Thread(
            target=self.label_source.watch,
            args=(self.on_docker_event, stop_event),
            name="docker-events",
            daemon=True,
        )
        thread.start()
        return thread

    def run_forever(self, stop_event: threading.Event) -> None:
        """Poll every POLL_INTERVAL seconds until `stop_event` is set."""
        self.start_event_watcher(stop_event)
        while not stop_event.is_set():
            try:
                self.sync_once()
            except Exception as e:
                logger.error(f"Unexpected error during sync: {e}", exc_info=True)
            stop_event.wait(max(5, self.settings.poll_interval))
