"""Unit tests for DNSSyncer.

Covers one full sync cycle against in-memory route, label and DNS sources:
record creation from routers, skip labels, orphan cleanup, error isolation
and trigger handling.
"""

import threading
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import MagicMock, patch

from conftest import MemoryDNSProvider

from trafego_dns.config import Settings
from trafego_dns.errors import ContainerSourceError, RouteSourceError
from trafego_dns.public_ip import PublicIPResolver
from trafego_dns.records import ProviderRecord
from trafego_dns.syncer import DNSSyncer
from trafego_dns.traefik import Router
from trafego_dns.tracker import PreservedHostnames, RecordTracker

# =============================================================================
# Mock Route Source
# =============================================================================


class MockRouteSource:
    """Route source returning a fixed router table, or failing."""

    def __init__(self, routers: Optional[List[Router]] = None, fail: bool = False):
        self.routers = list(routers or [])
        self.fail = fail
        self.calls = 0

    def get_routers(self) -> Dict[str, Router]:
        self.calls += 1
        if self.fail:
            raise RouteSourceError("Failed to read routers from every Traefik instance")
        return {router.name: router for router in self.routers}


def make_syncer(
    settings: Settings,
    tmp_path: Path,
    routers: List[Router],
    *,
    provider: Optional[MemoryDNSProvider] = None,
    labels: Optional[Dict[str, Dict[str, str]]] = None,
    preserved: Optional[List[str]] = None,
    route_source: Optional[MockRouteSource] = None,
    ip_resolver: Optional[PublicIPResolver] = None,
) -> DNSSyncer:
    provider = provider or MemoryDNSProvider()
    label_source = MagicMock()
    label_source.list_labels.return_value = labels or {}
    return DNSSyncer(
        settings=settings,
        dns_provider=provider,
        route_source=route_source or MockRouteSource(routers),
        label_source=label_source,
        tracker=RecordTracker(str(tmp_path / "records.json"), provider.key, provider.domain),
        preserved=PreservedHostnames(preserved or []),
        ip_resolver=ip_resolver,
    )


class TestSyncCycle:
    """Tests for a single sync cycle."""

    def test_creates_records_for_router_hostnames(self, settings: Settings, tmp_path: Path) -> None:
        """Test every Host() in every router becomes a record."""
        routers = [
            Router(name="app@docker", rule="Host(`app.example.com`) && Host(`www.example.com`)", service="app"),
            Router(name="apex@docker", rule="Host(`example.com`)", service="site"),
        ]
        syncer = make_syncer(settings, tmp_path, routers)

        result = syncer.sync_once()

        provider = syncer.dns_provider
        assert result.ok
        assert result.batch.created == 3
        assert provider.find_record_in_cache("CNAME", "app.example.com").content == "example.com"
        assert provider.find_record_in_cache("CNAME", "www.example.com") is not None
        assert provider.find_record_in_cache("A", "example.com").content == "203.0.113.10"

    def test_labels_applied(self, settings: Settings, tmp_path: Path) -> None:
        """Test container labels override record defaults."""
        routers = [Router(name="api@docker", rule="Host(`api.example.com`)", service="api")]
        labels = {
            "api": {
                "dns.cloudflare.type": "A",
                "dns.cloudflare.content": "198.51.100.20",
                "dns.cloudflare.proxied": "false",
            }
        }
        syncer = make_syncer(settings, tmp_path, routers, labels=labels)

        syncer.sync_once()

        record = syncer.dns_provider.find_record_in_cache("A", "api.example.com")
        assert record.content == "198.51.100.20"
        assert record.proxied is False

    def test_skip_label(self, settings: Settings, tmp_path: Path) -> None:
        """Test hostnames whose container says skip are not managed."""
        routers = [Router(name="internal@docker", rule="Host(`internal.example.com`)", service="internal")]
        labels = {"internal": {"dns.cloudflare.skip": "true"}}
        syncer = make_syncer(settings, tmp_path, routers, labels=labels)

        result = syncer.sync_once()

        assert result.skipped == 1
        assert result.hostnames == []
        assert syncer.dns_provider.cache.records == []

    def test_routers_without_host_ignored(self, settings: Settings, tmp_path: Path) -> None:
        """Test routers matching only on path contribute nothing."""
        routers = [Router(name="api@docker", rule="PathPrefix(`/api`)", service="api")]
        syncer = make_syncer(settings, tmp_path, routers)

        result = syncer.sync_once()

        assert result.hostnames == []
        assert result.batch.total == 0

    def test_bad_label_isolated(self, settings: Settings, tmp_path: Path) -> None:
        """Test a hostname with an invalid label does not block the others."""
        routers = [
            Router(name="bad@docker", rule="Host(`bad.example.com`)", service="bad"),
            Router(name="good@docker", rule="Host(`good.example.com`)", service="good"),
        ]
        labels = {"bad": {"dns.cloudflare.ttl": "later"}}
        syncer = make_syncer(settings, tmp_path, routers, labels=labels)

        result = syncer.sync_once()

        assert result.extraction_errors == 1
        assert result.batch.created == 1
        assert result.errors == 1

    def test_duplicate_hostnames_first_router_wins(self, settings: Settings, tmp_path: Path) -> None:
        """Test the same hostname on two routers yields one record."""
        routers = [
            Router(name="a@docker", rule="Host(`app.example.com`)", service="a"),
            Router(name="b@docker", rule="Host(`app.example.com`) && PathPrefix(`/b`)", service="b"),
        ]
        syncer = make_syncer(settings, tmp_path, routers)

        result = syncer.sync_once()

        assert result.hostnames == ["app.example.com"]
        assert result.batch.created == 1

    def test_bare_hostname_gets_zone(self, settings: Settings, tmp_path: Path) -> None:
        """Test Host(`app`) is managed as app.<zone>."""
        routers = [Router(name="app@docker", rule="Host(`app`)", service="app")]
        syncer = make_syncer(settings, tmp_path, routers)

        result = syncer.sync_once()

        assert result.hostnames == ["app.example.com"]

    def test_apex_follows_changed_public_ip(self, tmp_path: Path) -> None:
        """Test a new public IP is picked up on the next cycle once the cache expires."""
        settings = Settings.from_env({"CLOUDFLARE_TOKEN": "t", "CLOUDFLARE_ZONE": "example.com"})
        routers = [Router(name="apex@docker", rule="Host(`example.com`)", service="site")]
        resolver = PublicIPResolver(ipv4_urls=["https://ip.example"], refresh_interval=0)
        first, second = MagicMock(text="198.51.100.1"), MagicMock(text="198.51.100.2")
        syncer = make_syncer(settings, tmp_path, routers, ip_resolver=resolver)

        with patch.object(resolver._session, "get", side_effect=[first, second]) as mock_get:
            syncer.sync_once()
            result = syncer.sync_once()

        assert mock_get.call_count == 2
        assert result.batch.updated == 1
        assert syncer.dns_provider.find_record_in_cache("A", "example.com").content == "198.51.100.2"

    def test_route_source_failure_aborts_cycle(self, tmp_path: Path) -> None:
        """Test an unreachable Traefik never leads to deletions."""
        settings = Settings.from_env(
            {"CLOUDFLARE_TOKEN": "t", "CLOUDFLARE_ZONE": "example.com", "CLEANUP_ORPHANED": "true"}
        )
        existing = ProviderRecord(id="r1", type="CNAME", name="app.example.com", content="example.com", ttl=1)
        provider = MemoryDNSProvider(records=[existing])
        syncer = make_syncer(
            settings, tmp_path, [], provider=provider, route_source=MockRouteSource(fail=True)
        )
        syncer.tracker.track_record(existing)

        result = syncer.sync_once()

        assert not result.ok
        assert provider.deleted == []
        assert "r1" in provider.zone

    def test_label_source_failure_uses_previous_labels(self, settings: Settings, tmp_path: Path) -> None:
        """Test a Docker outage keeps the labels from the last cycle."""
        routers = [Router(name="api@docker", rule="Host(`api.example.com`)", service="api")]
        labels = {"api": {"dns.cloudflare.proxied": "false"}}
        syncer = make_syncer(settings, tmp_path, routers, labels=labels)
        syncer.sync_once()
        syncer.label_source.list_labels.side_effect = ContainerSourceError("daemon gone")

        result = syncer.sync_once()

        assert result.ok
        assert result.batch.up_to_date == 1
        assert result.batch.updated == 0


class TestOrphanCleanup:
    """Tests for removal of records whose hostname disappeared."""

    def make_settings(self) -> Settings:
        return Settings.from_env(
            {
                "CLOUDFLARE_TOKEN": "t",
                "CLOUDFLARE_ZONE": "example.com",
                "CLEANUP_ORPHANED": "true",
            }
        )

    def test_removed_router_record_deleted(self, tmp_path: Path) -> None:
        """Test a tracked record is deleted once its router goes away."""
        route_source = MockRouteSource(
            [
                Router(name="a@docker", rule="Host(`a.example.com`)", service="a"),
                Router(name="b@docker", rule="Host(`b.example.com`)", service="b"),
            ]
        )
        syncer = make_syncer(self.make_settings(), tmp_path, [], route_source=route_source)
        syncer.sync_once()

        route_source.routers = route_source.routers[:1]
        result = syncer.sync_once()

        provider = syncer.dns_provider
        assert result.orphans_deleted == 1
        assert provider.find_record_in_cache("CNAME", "b.example.com") is None
        assert provider.find_record_in_cache("CNAME", "a.example.com") is not None
        assert not syncer.tracker.is_tracked(ProviderRecord(id="", type="CNAME", name="b.example.com"))

    def test_untracked_and_preserved_records_kept(self, tmp_path: Path) -> None:
        """Test cleanup never touches records it did not create or that are preserved."""
        manual = ProviderRecord(id="m1", type="CNAME", name="manual.example.com", content="example.com", ttl=1)
        kept = ProviderRecord(id="k1", type="CNAME", name="x.static.example.com", content="example.com", ttl=1)
        provider = MemoryDNSProvider(records=[manual, kept])
        syncer = make_syncer(
            self.make_settings(), tmp_path, [], provider=provider, preserved=["*.static.example.com"]
        )
        syncer.tracker.track_record(kept)

        result = syncer.sync_once()

        assert result.orphans_deleted == 0
        assert provider.deleted == []

    def test_failed_delete_counted(self, tmp_path: Path) -> None:
        """Test a delete failure is counted and the record stays tracked."""
        gone = ProviderRecord(id="g1", type="CNAME", name="gone.example.com", content="example.com", ttl=1)
        provider = MemoryDNSProvider(records=[gone], fail_on=["gone.example.com"])
        syncer = make_syncer(self.make_settings(), tmp_path, [], provider=provider)
        syncer.tracker.track_record(gone)

        result = syncer.sync_once()

        assert result.orphans_failed == 1
        assert syncer.tracker.is_tracked(gone)

    def test_cleanup_disabled(self, settings: Settings, tmp_path: Path) -> None:
        """Test nothing is deleted when CLEANUP_ORPHANED is off."""
        gone = ProviderRecord(id="g1", type="CNAME", name="gone.example.com", content="example.com", ttl=1)
        provider = MemoryDNSProvider(records=[gone])
        syncer = make_syncer(settings, tmp_path, [], provider=provider)
        syncer.tracker.track_record(gone)

        syncer.sync_once()

        assert provider.deleted == []


class TestTriggers:
    """Tests for cycle exclusion and debounced triggers."""

    def test_overlapping_sync_skipped(self, settings: Settings, tmp_path: Path) -> None:
        """Test a sync requested while another runs is skipped."""
        syncer = make_syncer(settings, tmp_path, [])
        syncer._cycle_lock.acquire()
        try:
            assert syncer.sync_once() is None
        finally:
            syncer._cycle_lock.release()

        assert syncer.route_source.calls == 0

    def test_request_sync_debounced(self, settings: Settings, tmp_path: Path) -> None:
        """Test bursts of requests schedule a single sync."""
        syncer = make_syncer(settings, tmp_path, [])

        with patch("trafego_dns.syncer.threading.Timer") as mock_timer:
            first = syncer.request_sync("container web start")
            second = syncer.request_sync("container web die")

            assert first is True
            assert second is False
            mock_timer.assert_called_once_with(settings.docker_event_debounce, syncer._triggered_sync)
            mock_timer.return_value.start.assert_called_once()

    def test_docker_event_requests_sync(self, settings: Settings, tmp_path: Path) -> None:
        """Test a container event schedules a sync."""
        syncer = make_syncer(settings, tmp_path, [])
        event = {"Type": "container", "status": "start", "id": "abc", "Actor": {"Attributes": {"name": "web"}}}

        with patch.object(syncer, "request_sync") as mock_request:
            syncer.on_docker_event(event)

            mock_request.assert_called_once_with("container web start")

    def test_run_forever_stops(self, settings: Settings, tmp_path: Path) -> None:
        """Test the polling loop exits once the stop event is set."""
        settings.watch_docker_events = False
        syncer = make_syncer(settings, tmp_path, [])
        stop_event = threading.Event()

        def stop_after_first(*args, **kwargs):
            stop_event.set()
            return None

        with patch.object(syncer, "sync_once", side_effect=stop_after_first) as mock_sync:
            syncer.run_forever(stop_event)

            mock_sync.assert_called_once()
