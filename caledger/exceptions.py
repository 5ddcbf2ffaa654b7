"""Exception taxonomy for issuance, ledger and store operations."""

from typing import Optional


class CALedgerError(Exception):
    """Base class for all caledger errors."""


class PolicyViolation(CALedgerError, ValueError):
    """A CSR (or issuer) does not satisfy the signing policy."""

    def __init__(self, kind: str, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.field = field


class SigningFailed(CALedgerError):
    """The capability provider could not produce a signature."""

    def __init__(self, message: str, serial_number: Optional[int] = None, state: Optional[str] = None):
        super().__init__(message)
        self.serial_number = serial_number
        self.state = state


class LedgerIntegrityError(CALedgerError):
    """The ledger is inconsistent. Never retried, never ignored."""


class DuplicateSerial(LedgerIntegrityError):
    """A serial number is already present."""

    def __init__(self, serial_number: int):
        super().__init__(f"Serial {serial_number:X} already exists")
        self.serial_number = serial_number


class SerialExhausted(LedgerIntegrityError):
    """The serial number space is used up."""


class NotFound(CALedgerError, LookupError):
    """No entry for the requested serial number or identifier."""


class AlreadyRevoked(CALedgerError, ValueError):
    """The certificate has already been revoked."""


class ChainBroken(CALedgerError):
    """An issuer in a certificate chain cannot be resolved from the store."""

    def __init__(self, message: str, serial_number: Optional[int] = None, issuer_dn: Optional[str] = None):
        super().__init__(message)
        self.serial_number = serial_number
        self.issuer_dn = issuer_dn


class IssuanceCancelled(CALedgerError):
    """The caller abandoned an in-flight issuance."""

    def __init__(self, message: str, serial_number: Optional[int] = None, state: Optional[str] = None):
        super().__init__(message)
        self.serial_number = serial_number
        self.state = state


class InvalidTransition(CALedgerError):
    """An issuance workflow attempted an illegal state change."""


class ProviderError(CALedgerError):
    """Raised by a capability provider when a cryptographic operation fails."""
