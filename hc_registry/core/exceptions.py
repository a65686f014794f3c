"""Typed error taxonomy shared by the ledger, the sync coordinator and the
request workflow. Every error carries a stable ``code`` that is stored on failed
requests and rendered in API error responses."""

from typing import Any

from fastapi import status


class RegistryError(Exception):
    code = "registry_error"
    error_type = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailure(RegistryError):
    code = "validation_error"
    error_type = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFound(ValidationFailure):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class DuplicateIdentifier(ValidationFailure):
    code = "duplicate_identifier"
    status_code = status.HTTP_409_CONFLICT


class AlreadyRetired(ValidationFailure):
    code = "already_retired"
    status_code = status.HTTP_409_CONFLICT


class Unauthorized(RegistryError):
    code = "unauthorized"
    error_type = "authorization_error"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidState(RegistryError):
    code = "invalid_state"
    error_type = "state_error"
    status_code = status.HTTP_409_CONFLICT


class LedgerUnavailable(RegistryError):
    """The ledger did not accept a submission. Safe to retry."""

    code = "ledger_unavailable"
    error_type = "ledger_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

