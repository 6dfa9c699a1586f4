"""Exception hierarchy shared by the sync engine and the provider adapters."""

from __future__ import annotations

from typing import Optional


class DNSSyncError(Exception):
    """Base class for all trafego-dns errors."""


class ConfigError(DNSSyncError):
    """Invalid or incomplete runtime configuration."""


class ValidationError(DNSSyncError):
    """A desired record is missing mandatory fields or violates provider rules.

    Rejects a single record; the rest of the batch continues.
    """


class IPResolutionError(DNSSyncError):
    """The public IP needed for an apex record could not be determined."""


class TrackerPersistenceError(DNSSyncError):
    """The ownership tracker file could not be written."""


# =============================================================================
# Provider errors
# =============================================================================


class ProviderError(DNSSyncError):
    """Base class for errors raised while talking to a DNS provider."""


class ProviderAuthError(ProviderError):
    """Credentials were rejected by the provider."""


class ZoneNotFoundError(ProviderError):
    """The configured zone/domain does not exist at the provider."""


class ProviderAPIError(ProviderError):
    """The provider answered with an error for a specific request."""

    def __init__(self, message: str, *, status: Optional[int] = None, code: str = ""):
        super().__init__(message)
        self.status = status
        self.code = code


class RecordAlreadyExistsError(ProviderAPIError):
    """A create was rejected because the record is already present."""


class NetworkError(ProviderError):
    """The provider could not be reached."""


class ProviderTimeoutError(NetworkError):
    """A provider request exceeded its timeout."""


class PartialBatchFailure(ProviderError):
    """A chunk of a transactional change batch was rejected.

    Internal to adapters that submit change batches; never surfaced to callers.
    """

    def __init__(self, message: str, *, chunk_index: int):
        super().__init__(message)
        self.chunk_index = chunk_index


# =============================================================================
# Source errors
# =============================================================================


class RouteSourceError(DNSSyncError):
    """No Traefik instance could be read this cycle."""


class ContainerSourceError(DNSSyncError):
    """Container labels could not be listed from the Docker daemon."""
