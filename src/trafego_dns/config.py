"""Runtime configuration loaded from environment variables.

Provider Selection:
    DNS_PROVIDER              "cloudflare", "digitalocean" or "route53" (default: cloudflare)

Cloudflare:
    CLOUDFLARE_TOKEN          API token with DNS edit permission
    CLOUDFLARE_ZONE           Zone name, e.g. example.com

DigitalOcean:
    DO_TOKEN                  API token
    DO_DOMAIN                 Domain managed in DigitalOcean DNS

Route53:
    ROUTE53_ACCESS_KEY        AWS access key id (optional, falls back to the boto3 chain)
    ROUTE53_SECRET_KEY        AWS secret access key
    ROUTE53_ZONE              Hosted zone name
    ROUTE53_ZONE_ID           Hosted zone id (optional, looked up from ROUTE53_ZONE)
    ROUTE53_REGION            AWS region (default: eu-west-2)

Traefik:
    TRAEFIK_API_URL           Traefik API base URL (default: http://traefik:8080/api)
    TRAEFIK_API_USERNAME      Basic auth username (optional)
    TRAEFIK_API_PASSWORD      Basic auth password (optional)
    TRAEFIK_CONFIG_PATH       YAML file or directory listing several Traefik instances (optional)

Labels and record defaults:
    DNS_LABEL_PREFIX          Prefix of DNS labels (default: dns.cloudflare.)
    TRAEFIK_LABEL_PREFIX      Prefix of Traefik labels (default: traefik.)
    DNS_DEFAULT_TYPE          Record type for non-apex hostnames (default: CNAME)
    DNS_DEFAULT_CONTENT       Default content (default: the zone name)
    DNS_DEFAULT_PROXIED       Default proxied flag (default: true)
    DNS_DEFAULT_TTL           Default TTL, 1 means automatic (default: 1)
    DNS_DEFAULT_<TYPE>_*      Per type overrides: CONTENT, PROXIED, TTL, PRIORITY,
                              WEIGHT, PORT, FLAGS, TAG

Runtime:
    PUBLIC_IP / PUBLIC_IPV6   Fixed public addresses (auto-detected when unset)
    IP_REFRESH_INTERVAL       Seconds between public IP lookups (default: 3600)
    DOCKER_SOCKET             Docker daemon URL (default: unix:///var/run/docker.sock)
    WATCH_DOCKER_EVENTS       Trigger syncs on container events (default: true)
    DOCKER_EVENT_DEBOUNCE_SECONDS
                              Delay and debounce window for event-triggered syncs (default: 3)
    POLL_INTERVAL             Seconds between scheduled syncs (default: 60)
    CACHE_REFRESH_INTERVAL    Max age of the provider record cache in seconds (default: 3600)
    CLEANUP_ORPHANED          Delete records for hostnames that disappeared (default: false)
    PRESERVED_HOSTNAMES       Comma-separated hostnames never cleaned up; "*.domain" wildcards
    TRACKER_PATH              JSON file of records created by this tool
                              (default: /data/dns-records.json)
    REQUEST_TIMEOUT_SECONDS   Timeout for every remote call (default: 10)
    SYNC_MODE                 "once" or "watch" (default: watch)
    LOG_LEVEL                 DEBUG, INFO, WARNING, ERROR (default: INFO)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from trafego_dns.errors import ConfigError

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("cloudflare", "digitalocean", "route53")

# =============================================================================
# Parsing helpers
# =============================================================================


def parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_int(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"Invalid format for environment variable {name}: expected an integer")


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class RecordDefaults:
    """Fallback values for one record type."""

    content: str = ""
    proxied: bool = True
    ttl: int = 1
    priority: Optional[int] = None
    weight: Optional[int] = None
    port: Optional[int] = None
    flags: Optional[int] = None
    tag: Optional[str] = None


@dataclass
class Settings:
    dns_provider: str = "cloudflare"

    cloudflare_token: str = ""
    cloudflare_zone: str = ""
    do_token: str = ""
    do_domain: str = ""
    route53_access_key: str = ""
    route53_secret_key: str = ""
    route53_zone: str = ""
    route53_zone_id: str = ""
    route53_region: str = "eu-west-2"

    traefik_api_url: str = "http://traefik:8080/api"
    traefik_api_username: str = ""
    traefik_api_password: str = ""
    traefik_config_path: str = ""

    dns_label_prefix: str = "dns.cloudflare."
    traefik_label_prefix: str = "traefik."

    default_record_type: str = "CNAME"
    default_content: str = ""
    default_proxied: bool = True
    default_ttl: int = 1
    record_defaults: Dict[str, RecordDefaults] = field(default_factory=dict)

    public_ip: str = ""
    public_ipv6: str = ""
    ip_refresh_interval: int = 3600

    docker_socket: str = "unix:///var/run/docker.sock"
    watch_docker_events: bool = True
    docker_event_debounce: float = 3.0

    poll_interval: int = 60
    cache_refresh_interval: int = 3600
    cleanup_orphaned: bool = False
    preserved_hostnames: List[str] = field(default_factory=list)
    tracker_path: str = "/data/dns-records.json"
    request_timeout: float = 10.0

    sync_mode: str = "watch"
    log_level: str = "INFO"

    @property
    def zone(self) -> str:
        """The zone/domain of the active provider."""
        if self.dns_provider == "digitalocean":
            return self.do_domain
        if self.dns_provider == "route53":
            return self.route53_zone
        return self.cloudflare_zone

    def defaults_for_type(self, record_type: str) -> RecordDefaults:
        defaults = self.record_defaults.get(record_type.upper())
        if defaults is not None:
            return defaults
        return RecordDefaults(
            content=self.default_content or self.zone,
            proxied=self.default_proxied,
            ttl=self.default_ttl,
        )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env

        def get(name: str, default: str = "") -> str:
            return str(env.get(name, default) or default).strip()

        provider = get("DNS_PROVIDER", "cloudflare").lower()
        settings = cls(
            dns_provider=provider,
            cloudflare_token=get("CLOUDFLARE_TOKEN"),
            cloudflare_zone=get("CLOUDFLARE_ZONE"),
            do_token=get("DO_TOKEN"),
            do_domain=get("DO_DOMAIN"),
            route53_access_key=get("ROUTE53_ACCESS_KEY"),
            route53_secret_key=get("ROUTE53_SECRET_KEY"),
            route53_zone=get("ROUTE53_ZONE"),
            route53_zone_id=get("ROUTE53_ZONE_ID"),
            route53_region=get("ROUTE53_REGION", "eu-west-2"),
            traefik_api_url=get("TRAEFIK_API_URL", "http://traefik:8080/api"),
            traefik_api_username=get("TRAEFIK_API_USERNAME"),
            traefik_api_password=get("TRAEFIK_API_PASSWORD"),
            traefik_config_path=get("TRAEFIK_CONFIG_PATH"),
            dns_label_prefix=get("DNS_LABEL_PREFIX", "dns.cloudflare."),
            traefik_label_prefix=get("TRAEFIK_LABEL_PREFIX", "traefik."),
            default_record_type=get("DNS_DEFAULT_TYPE", "CNAME").upper(),
            default_content=get("DNS_DEFAULT_CONTENT"),
            default_proxied=env.get("DNS_DEFAULT_PROXIED", "true") != "false",
            default_ttl=_parse_int(env, "DNS_DEFAULT_TTL", 1),
            public_ip=get("PUBLIC_IP"),
            public_ipv6=get("PUBLIC_IPV6"),
            ip_refresh_interval=_parse_int(env, "IP_REFRESH_INTERVAL", 3600),
            docker_socket=get("DOCKER_SOCKET", "unix:///var/run/docker.sock"),
            watch_docker_events=env.get("WATCH_DOCKER_EVENTS", "true") != "false",
            docker_event_debounce=float(_parse_int(env, "DOCKER_EVENT_DEBOUNCE_SECONDS", 3)),
            poll_interval=_parse_int(env, "POLL_INTERVAL", 60),
            cache_refresh_interval=_parse_int(env, "CACHE_REFRESH_INTERVAL", 3600),
            cleanup_orphaned=parse_bool(env.get("CLEANUP_ORPHANED"), default=False),
            preserved_hostnames=_parse_list(get("PRESERVED_HOSTNAMES")),
            tracker_path=get("TRACKER_PATH", "/data/dns-records.json"),
            request_timeout=float(_parse_int(env, "REQUEST_TIMEOUT_SECONDS", 10)),
            sync_mode=get("SYNC_MODE", "watch").lower(),
            log_level=get("LOG_LEVEL", "INFO").upper(),
        )
        if not settings.default_content:
            settings.default_content = settings.zone
        settings.record_defaults = _load_record_defaults(env, settings)
        return settings


def _load_record_defaults(env: Mapping[str, str], settings: Settings) -> Dict[str, RecordDefaults]:
    """Build the per-type default bundles from DNS_DEFAULT_<TYPE>_* variables."""

    def proxied_for(record_type: str) -> bool:
        raw = env.get(f"DNS_DEFAULT_{record_type}_PROXIED")
        if raw is None:
            return settings.default_proxied
        return raw != "false"

    def ttl_for(record_type: str) -> int:
        return _parse_int(env, f"DNS_DEFAULT_{record_type}_TTL", settings.default_ttl)

    def content_for(record_type: str, fallback: str = "") -> str:
        return str(env.get(f"DNS_DEFAULT_{record_type}_CONTENT", "") or fallback).strip()

    return {
        "A": RecordDefaults(
            content=content_for("A", settings.public_ip),
            proxied=proxied_for("A"),
            ttl=ttl_for("A"),
        ),
        "AAAA": RecordDefaults(
            content=content_for("AAAA", settings.public_ipv6),
            proxied=proxied_for("AAAA"),
            ttl=ttl_for("AAAA"),
        ),
        "CNAME": RecordDefaults(
            content=content_for("CNAME", settings.default_content),
            proxied=proxied_for("CNAME"),
            ttl=ttl_for("CNAME"),
        ),
        "MX": RecordDefaults(
            content=content_for("MX"),
            proxied=False,
            ttl=ttl_for("MX"),
            priority=_parse_int(env, "DNS_DEFAULT_MX_PRIORITY", 10),
        ),
        "TXT": RecordDefaults(content=content_for("TXT"), proxied=False, ttl=ttl_for("TXT")),
        "SRV": RecordDefaults(
            content=content_for("SRV"),
            proxied=False,
            ttl=ttl_for("SRV"),
            priority=_parse_int(env, "DNS_DEFAULT_SRV_PRIORITY", 1),
            weight=_parse_int(env, "DNS_DEFAULT_SRV_WEIGHT", 1),
            port=_parse_int(env, "DNS_DEFAULT_SRV_PORT", 80),
        ),
        "CAA": RecordDefaults(
            content=content_for("CAA"),
            proxied=False,
            ttl=ttl_for("CAA"),
            flags=_parse_int(env, "DNS_DEFAULT_CAA_FLAGS", 0),
            tag=str(env.get("DNS_DEFAULT_CAA_TAG", "issue") or "issue"),
        ),
    }


# =============================================================================
# Validation
# =============================================================================


def validate_settings(settings: Settings) -> bool:
    """Log every configuration problem; return True when the settings are usable."""
    errors = []

    if settings.dns_provider == "cloudflare":
        if not settings.cloudflare_token:
            errors.append("CLOUDFLARE_TOKEN is required when DNS_PROVIDER=cloudflare")
        if not settings.cloudflare_zone:
            errors.append("CLOUDFLARE_ZONE is required when DNS_PROVIDER=cloudflare")
    elif settings.dns_provider == "digitalocean":
        if not settings.do_token:
            errors.append("DO_TOKEN is required when DNS_PROVIDER=digitalocean")
        if not settings.do_domain:
            errors.append("DO_DOMAIN is required when DNS_PROVIDER=digitalocean")
    elif settings.dns_provider == "route53":
        if not settings.route53_zone:
            errors.append("ROUTE53_ZONE is required when DNS_PROVIDER=route53")
        if bool(settings.route53_access_key) != bool(settings.route53_secret_key):
            errors.append("ROUTE53_ACCESS_KEY and ROUTE53_SECRET_KEY must be set together")
    else:
        errors.append(
            f"Unsupported DNS_PROVIDER: {settings.dns_provider}. "
            f"Supported: {', '.join(SUPPORTED_PROVIDERS)}"
        )

    if not settings.traefik_api_url and not settings.traefik_config_path:
        errors.append("TRAEFIK_API_URL or TRAEFIK_CONFIG_PATH is required")

    if settings.sync_mode not in ("once", "watch"):
        errors.append(f"Invalid SYNC_MODE: {settings.sync_mode}. Use 'once' or 'watch'")

    if settings.poll_interval < 5:
        logger.warning(f"POLL_INTERVAL={settings.poll_interval}s is very low; using 5s")
        settings.poll_interval = 5

    if errors:
        for error in errors:
            logger.error(error)
        return False

    return True
