"""Data models for caledger."""

from .ca import CAConfig, CARole, CAType, ECDSACurve, KeyAlgorithm, KeyConfig, Subject
from .certificate import BasicConstraints, CertificateSigningRequest, Extensions, IssuedCertificate
from .config import AppConfig
from .issuance import IssuanceState, KeyHandle, Signature, TBSCertificate, Validity
from .ledger import LedgerEntry, LedgerStatus, RevocationReason
from .policy import Policy, ValidatedRequest

__all__ = [
    "KeyAlgorithm",
    "ECDSACurve",
    "Subject",
    "KeyConfig",
    "CAConfig",
    "CAType",
    "CARole",
    "BasicConstraints",
    "Extensions",
    "CertificateSigningRequest",
    "IssuedCertificate",
    "IssuanceState",
    "KeyHandle",
    "Signature",
    "TBSCertificate",
    "Validity",
    "LedgerEntry",
    "LedgerStatus",
    "RevocationReason",
    "Policy",
    "ValidatedRequest",
    "AppConfig",
]
