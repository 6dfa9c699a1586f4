"""Provider Registry"""

from __future__ import annotations

from trafego_dns.config import Settings
from trafego_dns.errors import ConfigError
from trafego_dns.providers.base import DNSProvider
from trafego_dns.providers.cloudflare import CloudflareProvider
from trafego_dns.providers.digitalocean import DigitalOceanProvider
from trafego_dns.providers.route53 import Route53Provider


def create_dns_provider(settings: Settings) -> DNSProvider:
    """Factory function to create the configured DNS provider."""
    common = dict(
        cache_refresh_interval=float(settings.cache_refresh_interval),
        timeout=settings.request_timeout,
    )
    if settings.dns_provider == "cloudflare":
        return CloudflareProvider(settings.cloudflare_token, settings.cloudflare_zone, **common)
    elif settings.dns_provider == "digitalocean":
        return DigitalOceanProvider(settings.do_token, settings.do_domain, **common)
    elif settings.dns_provider == "route53":
        return Route53Provider(
            settings.route53_zone,
            zone_id=settings.route53_zone_id,
            access_key=settings.route53_access_key,
            secret_key=settings.route53_secret_key,
            region=settings.route53_region,
            **common,
        )
    else:
        raise ConfigError(
            f"Unsupported DNS provider: '{settings.dns_provider}'. "
            f"Supported providers: cloudflare, digitalocean, route53"
        )
