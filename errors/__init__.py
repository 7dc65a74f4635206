"""Custom exception hierarchy for the Nexus study service."""

from errors.exceptions import (
    ConflictError,
    ForbiddenError,
    InputValidationError,
    NexusError,
    NotFoundError,
    OutputParseError,
    ProviderError,
    StorageError,
)

__all__ = [
    "ConflictError",
    "ForbiddenError",
    "InputValidationError",
    "NexusError",
    "NotFoundError",
    "OutputParseError",
    "ProviderError",
    "StorageError",
]
