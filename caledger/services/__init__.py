"""Service layer for business logic."""

from .authority import Authority
from .ca_service import CAService
from .cert_service import CertificateService
from .issuance_service import IssuanceEngine, IssuanceWorkflow
from .ledger_service import SerialLedger
from .parser_service import CertificateParser
from .policy_service import PolicyEngine
from .provider_service import CapabilityProvider, CryptographyProvider
from .store_service import CertificateStore
from .yaml_service import YAMLService

__all__ = [
    "YAMLService",
    "CertificateParser",
    "PolicyEngine",
    "SerialLedger",
    "CertificateStore",
    "CapabilityProvider",
    "CryptographyProvider",
    "IssuanceEngine",
    "IssuanceWorkflow",
    "Authority",
    "CAService",
    "CertificateService",
]
