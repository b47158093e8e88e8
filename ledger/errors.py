"""Failures raised by ledger operations; every one leaves state untouched."""


class LedgerError(Exception):
    """Base exception for ledger operations"""
    pass


class AccessControlError(LedgerError):
    """Caller is not the owner or coordinator"""
    pass


class PhaseViolationError(LedgerError):
    """Operation attempted outside its required phase"""
    pass


class InputValidationError(LedgerError, ValueError):
    """Argument rejected at the ledger boundary"""
    pass


class ZeroDurationError(InputValidationError):
    """Poll duration must be positive"""
    pass


class ZeroTreeDepthError(InputValidationError):
    """Tree depth must be positive"""
    pass


class ZeroAddressError(InputValidationError):
    """Address must not be the zero address"""
    pass


class InvalidPublicKeyError(InputValidationError):
    """Public key is zero, the identity or off the curve"""
    pass


class ZeroBatchCountError(InputValidationError):
    """Batch size must be positive"""
    pass


class FieldRangeError(InputValidationError):
    """Value is at or above the field modulus"""
    pass


class IntegrityViolationError(LedgerError):
    """Proof or claimed values do not match the recomputed commitment"""
    pass
