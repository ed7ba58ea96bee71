from __future__ import annotations

from enum import Enum


class StoreErrorKind(str, Enum):
    FOREIGN_KEY_VIOLATION = 'FOREIGN_KEY_VIOLATION'
    UNIQUE_VIOLATION = 'UNIQUE_VIOLATION'
    PERMISSION_DENIED = 'PERMISSION_DENIED'
    OTHER = 'OTHER'


class PortalError(Exception):
    """Base class for errors surfaced to the portal's callers."""

    default_message = 'Request failed'

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PortalError):
    default_message = 'Invalid input'


class ProvisioningFailed(PortalError):
    """The auth user exists but its profile row could not be committed.

    The auth user is not rolled back; cleanup happens out of band.
    """

    default_message = 'Failed to create user profile. Please try again or contact support.'

    def __init__(self, message: str | None = None, *, principal_id: str, attempts: int) -> None:
        super().__init__(message)
        self.principal_id = principal_id
        self.attempts = attempts


class StoreError(PortalError):
    default_message = 'Data store request failed'

    def __init__(self, message: str | None = None, *, kind: StoreErrorKind = StoreErrorKind.OTHER, code: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.code = code


class TransientStoreError(StoreError):
    """Foreign-key race: the referenced row is committed but not yet visible."""

    def __init__(self, message: str | None = None, *, code: str | None = '23503') -> None:
        super().__init__(message, kind=StoreErrorKind.FOREIGN_KEY_VIOLATION, code=code)


class NotFound(PortalError):
    default_message = 'Record not found'


class DeliveryFailed(PortalError):
    default_message = 'Delivery failed. Please try again.'


class AuthExpired(PortalError):
    default_message = 'Invalid or expired reset link. Please request a new password reset.'


class InvalidLink(PortalError):
    default_message = 'Invalid reset link. Please request a new password reset.'


class AuthError(PortalError):
    default_message = 'Invalid username or password'
