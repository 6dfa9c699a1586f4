"""Turn router rules and container labels into desired DNS records."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from trafego_dns.errors import ValidationError
from trafego_dns.records import PENDING_CONTENT, PROXIABLE_TYPES, DesiredRecord, strip_trailing_dot

if TYPE_CHECKING:
    from trafego_dns.config import Settings
    from trafego_dns.public_ip import PublicIPResolver

logger = logging.getLogger(__name__)

# Traefik v2+: Host(`a.example.com`) or Host(`a.example.com`, `b.example.com`)
HOST_RULE_RE = re.compile(r"\bHost\(([^)]*)\)")
HOST_ARG_RE = re.compile(r"[`\"']([^`\"']+)[`\"']")

# Traefik v1: Host:a.example.com,b.example.com
LEGACY_HOST_RULE_RE = re.compile(r"\bHost:\s*([a-zA-Z0-9.,-]+)")


def extract_hostnames_from_rule(rule: str) -> List[str]:
    """Return every hostname in a router rule, in order of appearance, without duplicates."""
    found = []
    for match in HOST_RULE_RE.finditer(rule or ""):
        for arg in HOST_ARG_RE.finditer(match.group(1)):
            found.append((match.start(1) + arg.start(), arg.group(1).strip()))
    for match in LEGACY_HOST_RULE_RE.finditer(rule or ""):
        offset = match.start(1)
        for part in match.group(1).split(","):
            found.append((offset, part.strip()))
            offset += len(part) + 1

    hostnames: List[str] = []
    for _, hostname in sorted(found, key=lambda item: item[0]):
        if hostname and hostname not in hostnames:
            hostnames.append(hostname)
    return hostnames


def is_apex_domain(hostname: str, zone: str) -> bool:
    return strip_trailing_dot(hostname or "").lower() == strip_trailing_dot(zone or "").lower()


def ensure_fqdn(hostname: str, zone: str) -> str:
    """Append the zone to bare hostnames like "app"."""
    if "." in hostname or not zone:
        return hostname
    return f"{hostname}.{strip_trailing_dot(zone)}"


def _base_name(value: str) -> str:
    """Strip the Traefik "@provider" suffix."""
    return (value or "").split("@", 1)[0]


def find_labels_for_router(
    router: Any,
    container_labels: Mapping[str, Mapping[str, str]],
    traefik_prefix: str,
) -> Dict[str, str]:
    """Merge the labels of every container related to the router's service.

    A container is related when its id/name equals the service, when it
    declares the router with that service, or when it declares a port for
    that service.
    """
    labels: Dict[str, str] = {}
    service = _base_name(getattr(router, "service", "") or "")
    if not service:
        return labels
    router_name = _base_name(getattr(router, "name", "") or "")

    router_service_key = f"{traefik_prefix}http.routers.{router_name}.service"
    service_port_key = f"{traefik_prefix}http.services.{service}.loadbalancer.server.port"

    for key, candidate in container_labels.items():
        if (
            key == service
            or _base_name(candidate.get(router_service_key, "")) == service
            or candidate.get(service_port_key)
        ):
            labels.update(candidate)
    return labels


def _label_int(labels: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = labels.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"Label {key} must be an integer, got '{raw}'")


def extract_dns_config_from_labels(
    labels: Mapping[str, str],
    settings: "Settings",
    hostname: str,
    ip_resolver: Optional["PublicIPResolver"] = None,
) -> DesiredRecord:
    """Build the desired record for a hostname from its container labels.

    Apex hostnames without an explicit content label become A records. When no
    public IP is cached yet the record is returned with the pending sentinel
    and resolved later by the reconciler.
    """
    prefix = settings.dns_label_prefix
    is_apex = is_apex_domain(hostname, settings.zone)

    record_type = str(labels.get(f"{prefix}type") or "").strip().upper()
    if not record_type:
        record_type = "A" if is_apex else settings.default_record_type
    defaults = settings.defaults_for_type(record_type)

    record = DesiredRecord(
        type=record_type,
        name=hostname,
        ttl=_label_int(labels, f"{prefix}ttl", defaults.ttl),
    )

    content = labels.get(f"{prefix}content")
    if content:
        record.content = content
    elif is_apex and record_type in ("CNAME", "A"):
        record.type = "A"
        cached_ip = ip_resolver.cached_ipv4() if ip_resolver else settings.public_ip
        if cached_ip:
            record.content = cached_ip
        else:
            record.content = PENDING_CONTENT
            record.needs_ip_lookup = True
        logger.debug(f"Apex domain {hostname} uses an A record ({record.content})")
    elif record_type in ("A", "AAAA") and not defaults.content:
        cached_ip = None
        if ip_resolver:
            cached_ip = ip_resolver.cached_ipv6() if record_type == "AAAA" else ip_resolver.cached_ipv4()
        if cached_ip:
            record.content = cached_ip
        else:
            record.content = PENDING_CONTENT
            record.needs_ip_lookup = True
    else:
        record.content = defaults.content

    if record.type in PROXIABLE_TYPES:
        proxied_label = labels.get(f"{prefix}proxied")
        if proxied_label is not None:
            record.proxied = proxied_label != "false"
        else:
            record.proxied = defaults.proxied

    if record.type == "MX":
        record.priority = _label_int(labels, f"{prefix}priority", defaults.priority)
    elif record.type == "SRV":
        record.priority = _label_int(labels, f"{prefix}priority", defaults.priority)
        record.weight = _label_int(labels, f"{prefix}weight", defaults.weight)
        record.port = _label_int(labels, f"{prefix}port", defaults.port)
    elif record.type == "CAA":
        record.flags = _label_int(labels, f"{prefix}flags", defaults.flags)
        record.tag = labels.get(f"{prefix}tag") or defaults.tag

    return record


def should_skip(labels: Mapping[str, str], prefix: str) -> bool:
    return labels.get(f"{prefix}skip") == "true"
