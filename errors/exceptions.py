"""Domain-specific exceptions for the Nexus study service.

Each exception carries the HTTP status the API layer answers with, so
routers can let them propagate and a single handler in ``main.py`` turns
them into JSON error responses.
"""

from __future__ import annotations


class NexusError(Exception):
    """Base class for all service errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(NexusError):
    """A referenced group, chat, quiz, user or file does not exist."""

    status_code = 404
    code = "not_found"

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} '{entity_id}' not found")


class ForbiddenError(NexusError):
    status_code = 403
    code = "forbidden"


class ConflictError(NexusError):
    """Another request is already initializing the same study session.

    Callers should retry later rather than immediately looping.
    """

    status_code = 409
    code = "conflict"


class InputValidationError(NexusError):
    """Malformed input rejected before any persistence or provider call."""

    status_code = 400
    code = "validation_error"


class ProviderError(NexusError):
    """The completion provider failed, timed out, or returned nothing usable."""

    status_code = 502
    code = "provider_error"


class OutputParseError(ProviderError):
    """The provider answered, but its output is not the JSON that was asked for."""

    code = "output_parse_error"

    def __init__(self, message: str, raw_output: str = "") -> None:
        self.raw_output = raw_output
        super().__init__(message)


class StorageError(NexusError):
    """Blob store or document store failure."""

    status_code = 500
    code = "storage_error"
