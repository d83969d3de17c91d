"""
Error taxonomy for benefit operations.

Every failure a caller can act on is a BenefitError carrying a machine
readable ``kind``, the HTTP status it maps to and any details needed to
react (which side failed, available vs. requested amount).
"""
from decimal import Decimal


class BenefitError(Exception):
    kind = 'ERROR'
    http_status = 500

    def __init__(self, message, kind=None, **details):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details = details

    def to_dict(self):
        body = {'kind': self.kind, 'message': self.message}
        for key, value in self.details.items():
            # Decimals go out as strings so no precision is lost in JSON
            body[key] = str(value) if isinstance(value, Decimal) else value
        return body


class NotFound(BenefitError):
    kind = 'NOT_FOUND'
    http_status = 404

    def __init__(self, message, which=None, **details):
        if which is not None:
            details['which'] = which
        super().__init__(message, **details)
        self.which = which


class InvalidArgument(BenefitError):
    """Self-transfer, bad amount, inactive record or malformed input."""
    kind = 'INVALID_INPUT'
    http_status = 400


class InsufficientBalance(BenefitError):
    kind = 'INSUFFICIENT_BALANCE'
    http_status = 400

    def __init__(self, available, requested):
        super().__init__(
            f'Insufficient balance: available {available}, requested {requested}',
            available=available,
            requested=requested,
        )
        self.available = available
        self.requested = requested


class ConflictError(BenefitError):
    """Another writer committed since the record was read."""
    kind = 'CONFLICT'
    http_status = 409


class ConflictExhausted(ConflictError):
    kind = 'CONFLICT_EXHAUSTED'

    def __init__(self, attempts):
        super().__init__(
            f'Gave up after {attempts} conflicting attempts',
            attempts=attempts,
        )
        self.attempts = attempts


class StaleVersion(BenefitError):
    """Caller presented a version that is no longer current."""
    kind = 'STALE_VERSION'
    http_status = 409

    def __init__(self, expected, current):
        super().__init__(
            f'Stale version {expected}, current version is {current}',
            expected=expected,
            current=current,
        )


class Busy(BenefitError):
    """Exclusive access could not be acquired within the lock timeout."""
    kind = 'BUSY'
    http_status = 503


class StorageError(BenefitError):
    kind = 'STORAGE_ERROR'
    http_status = 500
