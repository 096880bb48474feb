from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    invalid_input = "invalid_input"
    not_found = "not_found"
    corruption_detected = "corruption_detected"
    backend_failure = "backend_failure"


class StorageConfigurationError(ValueError):
    """Required backend configuration is missing; the adapter can't be built."""


class CodecError(ValueError):
    """Game state could not be encoded or decoded."""


class RemoteBackendError(RuntimeError):
    """Network, database or authentication failure in a remote backend."""
