#!/usr/bin/env python3
"""trafego-dns - Traefik to DNS provider synchronization

Reads HTTP routers from Traefik, derives one DNS record per hostname from the
labels of the containers behind each router, and keeps the records at
Cloudflare, DigitalOcean or Route53 in sync. Records created by this tool are
tracked so they can be removed when their hostname disappears.

See trafego_dns.config for the environment variables.
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from typing import List, Optional

from trafego_dns.config import Settings, validate_settings
from trafego_dns.docker_labels import DockerLabelSource
from trafego_dns.errors import DNSSyncError
from trafego_dns.providers.base import DNSProvider
from trafego_dns.providers.registry import create_dns_provider
from trafego_dns.public_ip import PublicIPResolver
from trafego_dns.syncer import DNSSyncer
from trafego_dns.traefik import TraefikRouteSource
from trafego_dns.tracker import PreservedHostnames, RecordTracker

logger = logging.getLogger("trafego_dns")

# =============================================================================
# Logging Setup
# =============================================================================


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def log_banner(settings: Settings, provider: DNSProvider, ip_resolver: PublicIPResolver) -> None:
    logger.info(f"trafego-dns: traefik -> {settings.dns_provider}")
    logger.info(f"DNS Provider: {provider.name} (zone {settings.zone})")
    if settings.traefik_config_path:
        logger.info(f"Traefik instances: {settings.traefik_config_path}")
    else:
        logger.info(f"Traefik API: {settings.traefik_api_url}")
    logger.info(f"Label prefix: {settings.dns_label_prefix}")
    logger.info(
        f"Defaults: type={settings.default_record_type} content={settings.default_content} "
        f"proxied={settings.default_proxied} ttl={settings.default_ttl}"
    )
    logger.info(
        f"Public IP: {ip_resolver.cached_ipv4() or 'auto'}"
        f" / IPv6: {ip_resolver.cached_ipv6() or 'auto'}"
    )
    logger.info(f"Sync mode: {settings.sync_mode}")
    if settings.sync_mode == "watch":
        logger.info(f"Poll interval: {settings.poll_interval}s")
        logger.info(f"Docker events: {'enabled' if settings.watch_docker_events else 'disabled'}")
    logger.info(f"Cleanup orphaned records: {'enabled' if settings.cleanup_orphaned else 'disabled'}")
    if settings.preserved_hostnames:
        logger.info(f"Preserved hostnames: {', '.join(settings.preserved_hostnames)}")


# =============================================================================
# Main
# =============================================================================


def build_syncer(settings: Settings, provider: DNSProvider, ip_resolver: PublicIPResolver) -> DNSSyncer:
    route_source = TraefikRouteSource(
        config_path=settings.traefik_config_path,
        api_url=settings.traefik_api_url,
        username=settings.traefik_api_username,
        password=settings.traefik_api_password,
        timeout_seconds=settings.request_timeout,
    )
    label_source = DockerLabelSource(settings.docker_socket, timeout=settings.request_timeout)
    tracker = RecordTracker(settings.tracker_path, provider.key, provider.domain)
    return DNSSyncer(
        settings=settings,
        dns_provider=provider,
        route_source=route_source,
        label_source=label_source,
        ip_resolver=ip_resolver,
        tracker=tracker,
        preserved=PreservedHostnames(settings.preserved_hostnames),
    )


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = sys.argv[1:] if argv is None else argv
    try:
        settings = Settings.from_env()
    except DNSSyncError as e:
        setup_logging("INFO")
        logger.error(str(e))
        sys.exit(1)
    if args and args[0] in ("once", "watch"):
        settings.sync_mode = args[0]

    setup_logging(settings.log_level)

    if not validate_settings(settings):
        logger.error("Configuration validation failed")
        sys.exit(1)

    provider = create_dns_provider(settings)
    ip_resolver = PublicIPResolver(
        ipv4=settings.public_ip,
        ipv6=settings.public_ipv6,
        refresh_interval=float(settings.ip_refresh_interval),
        timeout=settings.request_timeout,
    )
    log_banner(settings, provider, ip_resolver)

    # Unreachable provider or bad credentials at startup are fatal.
    try:
        provider.ensure_initialized()
    except DNSSyncError as e:
        logger.error(f"Cannot initialise {provider.name}: {e}. Exiting.")
        sys.exit(1)

    syncer = build_syncer(settings, provider, ip_resolver)

    if settings.sync_mode == "once":
        result = syncer.sync_once()
        if result is None or not result.ok:
            sys.exit(1)
        return

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Shutting down gracefully...")
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        syncer.run_forever(stop_event)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
        stop_event.set()
    finally:
        if syncer.label_source is not None:
            syncer.label_source.close()


if __name__ == "__main__":
    main()
