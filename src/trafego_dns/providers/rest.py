"""JSON-over-HTTP session shared by the REST providers."""

from __future__ import annotations

import logging
from typing import Any, Dict

import requests

from trafego_dns.errors import (
    NetworkError,
    ProviderAPIError,
    ProviderAuthError,
    ProviderTimeoutError,
    RecordAlreadyExistsError,
)

logger = logging.getLogger(__name__)


def _error_details(data: Any) -> tuple:
    """Pull (message, code) out of a Cloudflare- or DigitalOcean-style error body."""
    if not isinstance(data, dict):
        return "", ""
    errors = data.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0] if isinstance(errors[0], dict) else {}
        messages = [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors]
        return "; ".join(messages), str(first.get("code", ""))
    return str(data.get("message") or ""), str(data.get("id") or "")


class APISession:
    """Bearer-token JSON API client that maps failures onto the provider errors."""

    def __init__(self, base_url: str, token: str, *, provider_name: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.provider_name = provider_name
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            }
        )

    def request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = path if path.startswith(("http://", "https://")) else f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise ProviderTimeoutError(f"{self.provider_name} request timed out: {method} {url}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Failed to reach {self.provider_name}: {e}") from e

        if response.status_code == 204:
            return {}
        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code in (401, 403):
            message, _ = _error_details(data)
            raise ProviderAuthError(
                f"{self.provider_name} rejected the credentials ({response.status_code}): {message}"
            )

        failed = isinstance(data, dict) and data.get("success") is False
        if response.status_code >= 400 or failed:
            message, code = _error_details(data)
            message = message or f"HTTP {response.status_code}"
            error_cls = ProviderAPIError
            if "already exist" in message.lower() or code == "81057":
                error_cls = RecordAlreadyExistsError
            raise error_cls(
                f"{self.provider_name} API error on {method} {path}: {message}",
                status=response.status_code,
                code=code,
            )

        return data if isinstance(data, dict) else {"result": data}
