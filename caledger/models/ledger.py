"""Ledger data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LedgerStatus(str, Enum):
    """Status of a ledger entry. Flag letters follow OpenSSL's index.txt."""

    VALID = "valid"
    REVOKED = "revoked"
    EXPIRED = "expired"

    @property
    def flag(self) -> str:
        return {"valid": "V", "revoked": "R", "expired": "E"}[self.value]

    @classmethod
    def from_flag(cls, flag: str) -> "LedgerStatus":
        return {"V": cls.VALID, "R": cls.REVOKED, "E": cls.EXPIRED}[flag]


class RevocationReason(str, Enum):
    """RFC 5280 CRL Reason Codes."""

    UNSPECIFIED = "unspecified"  # 0
    KEY_COMPROMISE = "keyCompromise"  # 1
    CA_COMPROMISE = "cACompromise"  # 2
    AFFILIATION_CHANGED = "affiliationChanged"  # 3
    SUPERSEDED = "superseded"  # 4
    CESSATION_OF_OPERATION = "cessationOfOperation"  # 5
    CERTIFICATE_HOLD = "certificateHold"  # 6
    PRIVILEGE_WITHDRAWN = "privilegeWithdrawn"  # 9
    AA_COMPROMISE = "aACompromise"  # 10


class LedgerEntry(BaseModel):
    """One line of the index: the authoritative record of an issued serial."""

    model_config = ConfigDict(frozen=True)

    serial_number: int
    common_name: str
    issued_at: datetime
    expires_at: datetime
    status: LedgerStatus = LedgerStatus.VALID
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[RevocationReason] = None

    @property
    def serial_hex(self) -> str:
        return format(self.serial_number, "X")


class LedgerEntryResponse(BaseModel):
    """API view of a ledger entry."""

    serial_number: str
    common_name: str
    issued_at: datetime
    expires_at: datetime
    status: LedgerStatus
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[RevocationReason] = None


class RevokeRequest(BaseModel):
    """Request model for revoking a certificate."""

    reason: RevocationReason = RevocationReason.UNSPECIFIED
    revoked_at: Optional[datetime] = Field(None, description="Defaults to now")
