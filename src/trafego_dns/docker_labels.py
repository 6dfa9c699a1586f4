"""Container label source backed by the Docker daemon."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

import docker
import requests

from trafego_dns.errors import ContainerSourceError

logger = logging.getLogger(__name__)

EVENT_FILTERS = {"type": ["container"], "event": ["start", "stop", "die", "destroy"]}
RECONNECT_DELAY_SECONDS = 5.0


class DockerLabelSource:
    """Lists labels of running containers and streams container lifecycle events."""

    def __init__(self, base_url: str, *, timeout: float = 10.0, client: Any = None):
        self._base_url = base_url
        self._timeout = timeout
        self._client = client
        self._events: Any = None

    @property
    def client(self):
        if self._client is None:
            self._client = docker.DockerClient(base_url=self._base_url, timeout=int(self._timeout))
        return self._client

    def list_labels(self) -> Dict[str, Dict[str, str]]:
        """Labels of every running container, keyed by both container id and name."""
        try:
            containers = self.client.containers.list()
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise ContainerSourceError(f"Failed to list containers: {e}") from e

        labels: Dict[str, Dict[str, str]] = {}
        for container in containers:
            container_labels = dict(container.labels or {})
            labels[container.id] = container_labels
            if container.name:
                labels[container.name.lstrip("/")] = container_labels
        logger.debug(f"Read labels from {len(containers)} running containers")
        return labels

    def watch(self, callback: Callable[[Dict[str, Any]], None], stop_event: threading.Event) -> None:
        """Call `callback` for each container event until `stop_event` is set.

        The stream is reopened after daemon errors.
        """
        logger.info(f"Watching Docker events on {self._base_url}")
        while not stop_event.is_set():
            try:
                self._events = self.client.events(decode=True, filters=EVENT_FILTERS)
                for event in self._events:
                    if stop_event.is_set():
                        break
                    if event.get("Type") != "container":
                        continue
                    attributes = (event.get("Actor") or {}).get("Attributes") or {}
                    name = attributes.get("name") or str(event.get("id", ""))[:12]
                    logger.debug(f"Docker event: container {name} {event.get('status') or event.get('Action')}")
                    callback(event)
            except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
                if stop_event.is_set():
                    break
                logger.error(f"Docker event stream failed: {e}; reconnecting in {RECONNECT_DELAY_SECONDS:.0f}s")
            finally:
                self._events = None
            stop_event.wait(RECONNECT_DELAY_SECONDS)

    def close(self) -> None:
        events: Optional[Any] = self._events
        if events is not None:
            events.close()
        if self._client is not None:
            self._client.close()
