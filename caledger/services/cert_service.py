"""Certificate issuance and lookup service."""

import logging
from datetime import datetime
from typing import List, Optional

from caledger.exceptions import NotFound
from caledger.models.certificate import CertResponse, CSRSignRequest, IssuedCertificate
from caledger.models.ledger import LedgerEntry, LedgerEntryResponse, RevocationReason
from caledger.services.ca_service import CAService
from caledger.services.parser_service import CertificateParser

logger = logging.getLogger("caledger")


def parse_serial(serial: str) -> int:
    """
    Parse a hex serial as shown in responses (optionally colon separated).

    Raises:
        ValueError: If serial is not hexadecimal
    """
    cleaned = serial.replace(":", "").strip()
    try:
        value = int(cleaned, 16)
    except ValueError:
        raise ValueError(f"Invalid serial number: {serial}")
    if value <= 0:
        raise ValueError(f"Invalid serial number: {serial}")
    return value


class CertificateService:
    """Service for certificate operations."""

    def __init__(self, ca_service: CAService):
        """
        Initialize certificate service.

        Args:
            ca_service: CA service used to resolve issuing CAs
        """
        self.ca_service = ca_service
        self.authority = ca_service.authority
        self.engine = self.authority.engine
        self.ledger = self.authority.ledger
        self.store = self.authority.store

    def sign_csr(self, request: CSRSignRequest) -> CertResponse:
        """
        Sign a CSR with one of the instance's CAs.

        Args:
            request: CSR signing request (must include issuing CA password)

        Returns:
            Certificate response

        Raises:
            ValueError: If the CSR cannot be parsed
            NotFound: If the issuing CA does not exist
            PolicyViolation: If the CSR breaks the issuing CA's policy
            SigningFailed: If the issuing key cannot sign (e.g. wrong password)
        """
        csr = CertificateParser.parse_csr(request.csr_content)

        issuer = self.ca_service.issuer_context(request.issuing_ca_id, request.issuing_ca_password)
        policy = self.ca_service.policy_for(self.ca_service.role_of(request.issuing_ca_id))

        cert = self.engine.issue(csr, issuer, policy, requested_days=request.validity_days)
        logger.info(f"Signed CSR for '{csr.subject.common_name}' with CA {request.issuing_ca_id}")
        return self._build_cert_response(cert)

    def get_certificate(self, serial: str) -> CertResponse:
        """
        Raises:
            NotFound: If no certificate with this serial is stored
        """
        return self._build_cert_response(self._get(parse_serial(serial)))

    def list_certificates(self) -> List[CertResponse]:
        """All certificates in the store, CA certificates included, in serial order."""
        return [self._build_cert_response(cert) for cert in self.store.all()]

    def build_certificate_chain(self, serial: str) -> str:
        """
        Build full certificate chain (cert + intermediates + root).

        Returns:
            Full chain PEM string, leaf first

        Raises:
            NotFound: If certificate not found
            ChainBroken: If an issuer is missing from the store
        """
        return self.store.chain_pem(parse_serial(serial))

    def revoke_certificate(
        self,
        serial: str,
        reason: RevocationReason = RevocationReason.UNSPECIFIED,
        revoked_at: Optional[datetime] = None,
    ) -> LedgerEntryResponse:
        """
        Mark a certificate revoked in the ledger.

        Raises:
            NotFound: If the serial has no ledger entry
            AlreadyRevoked: If it is already revoked
        """
        entry = self.ledger.mark_revoked(parse_serial(serial), reason, revoked_at)
        return self.build_entry_response(entry)

    def list_ledger(self) -> List[LedgerEntryResponse]:
        return [self.build_entry_response(entry) for entry in self.ledger.entries()]

    def get_ledger_entry(self, serial: str) -> LedgerEntryResponse:
        entry = self.ledger.lookup(parse_serial(serial))
        if entry is None:
            raise NotFound(f"Serial {serial} not found in ledger")
        return self.build_entry_response(entry)

    def _get(self, serial: int) -> IssuedCertificate:
        cert = self.store.get(serial)
        if cert is None:
            raise NotFound(f"Certificate not found: {serial:X}")
        return cert

    @staticmethod
    def build_entry_response(entry: LedgerEntry) -> LedgerEntryResponse:
        return LedgerEntryResponse(
            serial_number=entry.serial_hex,
            common_name=entry.common_name,
            issued_at=entry.issued_at,
            expires_at=entry.expires_at,
            status=entry.status,
            revoked_at=entry.revoked_at,
            revocation_reason=entry.revocation_reason,
        )

    def _build_cert_response(self, cert: IssuedCertificate) -> CertResponse:
        status_class, status_text = CertificateParser.get_validity_status(cert.not_before, cert.not_after)

        entry = self.ledger.lookup(cert.serial_number)
        status = entry.status.value if entry else "unknown"
        if status == "revoked":
            status_class, status_text = "danger", "Revoked"

        return CertResponse(
            serial_number=cert.serial_hex,
            subject=cert.subject,
            issuer=cert.issuer,
            sans=list(cert.sans),
            not_before=cert.not_before,
            not_after=cert.not_after,
            fingerprint_sha256=cert.fingerprint_sha256,
            is_ca=cert.is_ca,
            key_usage=list(cert.extensions.key_usage),
            extended_key_usage=list(cert.extensions.extended_key_usage),
            status=status,
            validity_status=status_class,
            validity_text=status_text,
            pem=cert.pem,
        )
