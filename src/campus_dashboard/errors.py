from __future__ import annotations


class PortalError(Exception):
    """Base class for errors surfaced by the dashboard core."""


class ValidationError(PortalError, ValueError):
    """Input rejected before any store mutation."""


InvalidArgumentError = ValidationError


class NotFoundError(PortalError, LookupError):
    def __init__(self, collection: str, record_id: str):
        super().__init__(f"{collection} record does not exist: {record_id}")
        self.collection = collection
        self.record_id = record_id


class StoreUnavailableError(PortalError):
    """The underlying store operation failed or could not be completed."""
