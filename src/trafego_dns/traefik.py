"""Route source: HTTP routers read from one or more Traefik APIs.

Instances come from TRAEFIK_CONFIG_PATH when it points at a YAML file or a
directory of YAML files:

    instances:
      - name: "core"
        url: "http://traefik:8080/api"
        verify_tls: true
        router_filter: "*-public"
      - name: "edge"
        url: "https://traefik2:8080/api"
        username: "admin"
        password: "secret"
        verify_tls: false

Otherwise a single instance is built from TRAEFIK_API_URL and the optional
TRAEFIK_API_USERNAME / TRAEFIK_API_PASSWORD.
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import requests
import yaml
from requests.auth import HTTPBasicAuth

from trafego_dns.config import parse_bool
from trafego_dns.errors import RouteSourceError

logger = logging.getLogger(__name__)

# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Router:
    """An HTTP router as reported by the Traefik API."""

    name: str
    rule: str
    service: str = ""
    instance: str = ""


@dataclass(frozen=True)
class TraefikInstance:
    """Connection settings for one Traefik API."""

    name: str
    url: str
    verify_tls: bool = True
    username: str = ""
    password: str = ""
    router_filter: str = ""


def find_config_files(config_path: str) -> List[str]:
    """Return the YAML file itself, or every *.yaml in a directory (skipping *.template)."""
    path = Path(config_path)
    if path.is_file():
        return [str(path)]
    if path.is_dir():
        return [str(f) for f in sorted(path.glob("*.yaml")) if not f.name.endswith(".template")]
    return []


# =============================================================================
# Traefik route source
# =============================================================================


class TraefikRouteSource:
    """Reads HTTP routers from every configured Traefik instance."""

    def __init__(
        self,
        *,
        config_path: str = "",
        api_url: str = "",
        username: str = "",
        password: str = "",
        timeout_seconds: float = 10.0,
    ):
        self._config_path = config_path
        self._api_url = api_url
        self._username = username
        self._password = password
        self._timeout = timeout_seconds

    @property
    def name(self) -> str:
        return "Traefik"

    def get_instances(self) -> List[TraefikInstance]:
        if self._config_path:
            config_files = find_config_files(self._config_path)
            instances: List[TraefikInstance] = []
            for config_file in config_files:
                try:
                    with open(config_file, "r") as f:
                        config_data = yaml.safe_load(f)
                except (OSError, yaml.YAMLError) as e:
                    logger.error(f"Failed to load config from {config_file}: {e}")
                    continue

                if not config_data or "instances" not in config_data:
                    logger.warning(f"Config file {config_file} missing 'instances' key")
                    continue

                for item in config_data["instances"]:
                    if not isinstance(item, dict):
                        continue
                    url = str(item.get("url") or "").strip()
                    if not url:
                        continue
                    instances.append(
                        TraefikInstance(
                            name=str(item.get("name") or "traefik").strip(),
                            url=url,
                            verify_tls=parse_bool(item.get("verify_tls"), default=True),
                            username=str(item.get("username") or "").strip(),
                            password=str(item.get("password") or "").strip(),
                            router_filter=str(item.get("router_filter") or "").strip(),
                        )
                    )
            if instances:
                logger.debug(
                    f"Loaded {len(instances)} Traefik instance(s) from {len(config_files)} config file(s)"
                )
                return instances

        url = self._api_url.strip()
        if not url:
            return []
        return [
            TraefikInstance(
                name="traefik",
                url=url,
                username=self._username,
                password=self._password,
            )
        ]

    def get_instance_routers(self, instance: TraefikInstance) -> List[Router]:
        session = requests.Session()
        if instance.username and instance.password:
            session.auth = HTTPBasicAuth(instance.username, instance.password)

        base = instance.url.rstrip("/")
        response = session.get(
            f"{base}/http/routers",
            timeout=self._timeout,
            verify=instance.verify_tls,
        )
        response.raise_for_status()
        payload = response.json()

        # Traefik returns a list; some proxies in front of it return a name-keyed map.
        if isinstance(payload, dict):
            items = [
                dict(value, name=value.get("name") or key)
                for key, value in payload.items()
                if isinstance(value, dict)
            ]
        elif isinstance(payload, list):
            items = payload
        else:
            logger.error(
                f"Unexpected response format from {instance.name}: "
                f"expected list, got {type(payload).__name__}"
            )
            return []

        routers: List[Router] = []
        for item in items:
            if not isinstance(item, dict):
                logger.debug(f"Skipping non-dict router entry: {item}")
                continue
            router_name = str(item.get("name") or "")
            if instance.router_filter and not fnmatch.fnmatch(router_name, instance.router_filter):
                logger.debug(
                    f"Router '{router_name}' filtered out by name pattern '{instance.router_filter}'"
                )
                continue
            routers.append(
                Router(
                    name=router_name,
                    rule=str(item.get("rule") or ""),
                    service=str(item.get("service") or ""),
                    instance=instance.name,
                )
            )
        return routers

    def get_routers(self) -> Dict[str, Router]:
        """Routers from all instances keyed by name; the first instance wins on conflicts.

        Raises RouteSourceError when no instance could be read, so callers never
        mistake an unreachable Traefik for an empty routing table.
        """
        instances = self.get_instances()
        if not instances:
            raise RouteSourceError("No Traefik instance configured")

        routers: Dict[str, Router] = {}
        reachable = 0
        for instance in instances:
            try:
                instance_routers = self.get_instance_routers(instance)
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning(f"Traefik instance '{instance.name}' unreachable: {e}")
                continue
            reachable += 1
            for router in instance_routers:
                routers.setdefault(router.name, router)
            logger.debug(f"Traefik instance '{instance.name}': {len(instance_routers)} routers")

        if not reachable:
            raise RouteSourceError("Failed to read routers from every Traefik instance")
        return routers
