"""
org_access.exceptions — Typed failures raised by the store and the gate.

Every error carries an HTTP-ish status_code and a stable code so the boundary
layer can map it without inspecting messages.  Storage failures keep the
underlying boto exception as __cause__.
"""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Any


class DenialReason(StrEnum):
    NOT_A_MEMBER = "not_member"
    NOT_AN_ADMIN = "not_admin"


class OrgAccessError(Exception):
    """Base class for every failure surfaced by org_access."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict[str, Any]:
        """Render as an API Gateway proxy response."""
        return {
            "statusCode": self.status_code,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps({"error": {"code": self.code, "message": self.message}}),
        }


class AlreadyExists(OrgAccessError):
    status_code = 409
    code = "CONFLICT"


class NotFound(OrgAccessError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidInput(OrgAccessError):
    status_code = 400
    code = "BAD_REQUEST"


class InvalidIdentifier(InvalidInput):
    """A name or user id that cannot be turned into a storage key."""

    def __init__(self, field: str, value: Any) -> None:
        self.field = field
        self.value = value
        super().__init__(f"{field} must be a non-empty string, got {value!r}")


class NoFieldsProvided(InvalidInput):
    def __init__(self, message: str = "No valid fields provided to update") -> None:
        super().__init__(message)


class Forbidden(OrgAccessError):
    """
    Raised when the caller lacks the membership or role an action requires.

    Attributes:
        reason:   DenialReason distinguishing "no relationship at all" from
                  "relationship present but role insufficient".
        org_name: Organization the caller attempted to act on.
        user_id:  The denied caller.
    """

    status_code = 403

    def __init__(self, message: str, *, reason: DenialReason, org_name: str, user_id: str) -> None:
        self.reason = reason
        self.org_name = org_name
        self.user_id = user_id
        super().__init__(message)

    @property
    def code(self) -> str:  # type: ignore[override]
        if self.reason is DenialReason.NOT_AN_ADMIN:
            return "NOT_ORG_ADMIN"
        return "NOT_ORG_MEMBER"


class StorageError(OrgAccessError):
    """Backend failure not otherwise classified.

    operation names the store call that failed (e.g. "create_organization").
    """

    status_code = 502
    code = "STORAGE_ERROR"

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class ConditionalCheckFailed(StorageError):
    """The item precondition of a conditional write did not hold."""

    code = "CONDITIONAL_CHECK_FAILED"


class SigningError(Exception):
    """A presigned URL could not be produced.  Always handled as a soft failure."""

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(f"Could not presign {key!r}: {message}")
