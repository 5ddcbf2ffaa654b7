"""Certificate and CSR parsing service."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import ExtensionOID, NameOID

from caledger.models.ca import Subject
from caledger.models.certificate import (
    BasicConstraints,
    CertificateSigningRequest,
    Extensions,
    IssuedCertificate,
    eku_to_name,
)
from caledger.utils.validators import is_ip_address

logger = logging.getLogger("caledger")

# Extensions mapped onto Extensions fields; anything else is kept as a dotted OID
_INTERPRETED_EXTENSIONS = {
    ExtensionOID.SUBJECT_ALTERNATIVE_NAME,
    ExtensionOID.KEY_USAGE,
    ExtensionOID.EXTENDED_KEY_USAGE,
    ExtensionOID.BASIC_CONSTRAINTS,
}

# Extensions every issued certificate carries that a CSR never asks for
_IDENTIFIER_EXTENSIONS = {ExtensionOID.SUBJECT_KEY_IDENTIFIER, ExtensionOID.AUTHORITY_KEY_IDENTIFIER}

_SUBJECT_OIDS = (
    ("country", NameOID.COUNTRY_NAME),
    ("state", NameOID.STATE_OR_PROVINCE_NAME),
    ("locality", NameOID.LOCALITY_NAME),
    ("organization", NameOID.ORGANIZATION_NAME),
    ("organizational_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
    ("common_name", NameOID.COMMON_NAME),
)


class CertificateParser:
    """Service for parsing X.509 certificates and PKCS#10 requests."""

    @staticmethod
    def parse_csr(csr_pem: str) -> CertificateSigningRequest:
        """
        Parse a PEM-encoded PKCS#10 request.

        The self-signature is checked and reported as signature_valid;
        rejecting a bad signature is the policy engine's job.

        Args:
            csr_pem: PEM-encoded CSR content

        Returns:
            Parsed, immutable certificate signing request

        Raises:
            ValueError: If the CSR cannot be parsed
        """
        try:
            csr = x509.load_pem_x509_csr(csr_pem.encode("utf-8"))
            key_info = CertificateParser._extract_key_info(csr.public_key())
            sans, unsupported_sans = CertificateParser._split_sans(csr.extensions)

            return CertificateSigningRequest(
                subject=CertificateParser.subject_from_name(csr.subject),
                subject_name=csr.subject,
                sans=sans,
                unsupported_sans=unsupported_sans,
                public_key_pem=CertificateParser._public_key_pem(csr.public_key()),
                public_key_algorithm=key_info["algorithm"],
                public_key_size=key_info["key_size"],
                extensions=CertificateParser._extract_extensions(csr.extensions),
                signature_valid=csr.is_signature_valid,
                pem=csr_pem,
            )

        except Exception as e:
            logger.error(f"CSR parsing failed: {e}")
            raise ValueError(f"Failed to parse CSR: {e}")

    @staticmethod
    def parse_certificate_pem(cert_pem: str) -> IssuedCertificate:
        """
        Parse X.509 Certificate from PEM content.

        Args:
            cert_pem: PEM-encoded certificate content

        Returns:
            Issued certificate model

        Raises:
            ValueError: If certificate cannot be parsed
        """
        try:
            cert = x509.load_pem_x509_certificate(cert_pem.encode("utf-8"))
            return CertificateParser.certificate_from_x509(cert)
        except Exception as e:
            logger.error(f"Error parsing certificate: {e}")
            raise ValueError(f"Failed to parse certificate: {e}")

    @staticmethod
    def certificate_from_x509(cert: x509.Certificate) -> IssuedCertificate:
        """Build an IssuedCertificate from a cryptography certificate object."""
        hash_algorithm = cert.signature_hash_algorithm
        return IssuedCertificate(
            serial_number=cert.serial_number,
            subject=CertificateParser.subject_from_name(cert.subject),
            issuer=CertificateParser.subject_from_name(cert.issuer),
            sans=CertificateParser._split_sans(cert.extensions)[0],
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            public_key_pem=CertificateParser._public_key_pem(cert.public_key()),
            extensions=CertificateParser._extract_extensions(cert.extensions),
            signature_algorithm=hash_algorithm.name if hash_algorithm else "ed25519",
            fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(":").upper(),
            pem=cert.public_bytes(serialization.Encoding.PEM).decode("utf-8"),
            self_signed=CertificateParser.is_issued_by(cert, cert),
        )

    @staticmethod
    def subject_from_name(name: x509.Name) -> Subject:
        """
        Extract Subject/Issuer DN.

        Args:
            name: X.509 Name object

        Returns:
            Subject model (missing CN becomes an empty string)
        """

        def get_attribute(oid):
            attrs = name.get_attributes_for_oid(oid)
            return attrs[0].value if attrs else None

        fields = {field: get_attribute(oid) for field, oid in _SUBJECT_OIDS}
        fields["common_name"] = fields["common_name"] or ""
        return Subject(**fields)

    @staticmethod
    def subject_to_name(subject: Subject) -> x509.Name:
        """Build an X.509 Name in C, ST, L, O, OU, CN order."""
        attributes = []
        for field, oid in _SUBJECT_OIDS:
            value = getattr(subject, field)
            if value:
                attributes.append(x509.NameAttribute(oid, value))
        return x509.Name(attributes)

    @staticmethod
    def is_issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
        """True if issuer's subject is cert's issuer name and issuer's key verifies cert's signature."""
        try:
            cert.verify_directly_issued_by(issuer)
        except (ValueError, TypeError, InvalidSignature):
            return False
        return True

    @staticmethod
    def issued_by(cert: IssuedCertificate, issuer: IssuedCertificate) -> bool:
        """is_issued_by for stored certificates."""
        return CertificateParser.is_issued_by(
            x509.load_pem_x509_certificate(cert.pem.encode("utf-8")),
            x509.load_pem_x509_certificate(issuer.pem.encode("utf-8")),
        )

    @staticmethod
    def subject_name_of(cert_pem: str) -> x509.Name:
        """The exact subject Name of a PEM certificate, attribute order included."""
        return x509.load_pem_x509_certificate(cert_pem.encode("utf-8")).subject

    @staticmethod
    def _public_key_pem(public_key) -> str:
        return public_key.public_bytes(
            encoding=serialization.Encoding.PEM, format=serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode("utf-8")

    @staticmethod
    def _extract_key_info(public_key) -> Dict[str, Any]:
        """
        Extract public key information.

        Args:
            public_key: Public key object

        Returns:
            Dictionary with key information
        """
        if isinstance(public_key, rsa.RSAPublicKey):
            return {"algorithm": "RSA", "key_size": public_key.key_size, "curve": None}
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            curve_map = {
                "secp256r1": "P-256",
                "secp384r1": "P-384",
                "secp521r1": "P-521",
            }
            return {
                "algorithm": "ECDSA",
                "key_size": public_key.curve.key_size,
                "curve": curve_map.get(public_key.curve.name, public_key.curve.name),
            }
        elif isinstance(public_key, ed25519.Ed25519PublicKey):
            return {"algorithm": "Ed25519", "key_size": None, "curve": None}
        else:
            return {"algorithm": "Unknown", "key_size": None, "curve": None}

    @staticmethod
    def _split_sans(extensions: x509.Extensions) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """
        Split Subject Alternative Names into issuable entries and the rest, in order.

        DNS names and IP addresses are issuable. Every other GeneralName
        type, and a DNS name that is really an IP literal, would change
        type or vanish when re-encoded, so it is returned as "Type:value"
        in the second tuple.

        Args:
            extensions: Certificate or CSR extensions

        Returns:
            (issuable SAN strings, unsupported SAN entries)
        """
        try:
            san_ext = extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        except x509.ExtensionNotFound:
            return (), ()

        sans = []
        unsupported = []
        for name in san_ext.value:
            if isinstance(name, x509.DNSName) and not is_ip_address(name.value):
                sans.append(name.value)
            elif isinstance(name, x509.IPAddress):
                sans.append(str(name.value))
            else:
                unsupported.append(f"{type(name).__name__}:{name.value}")
        return tuple(sans), tuple(unsupported)

    @staticmethod
    def _extract_key_usage(extensions: x509.Extensions) -> tuple[str, ...]:
        """
        Extract Key Usage extension values.

        Returns:
            Key Usage strings (e.g., ("digitalSignature", "keyEncipherment"))
        """
        try:
            ku = extensions.get_extension_for_oid(ExtensionOID.KEY_USAGE).value
        except x509.ExtensionNotFound:
            return ()

        usage_list = []
        if ku.digital_signature:
            usage_list.append("digitalSignature")
        if ku.content_commitment:  # Also known as nonRepudiation
            usage_list.append("nonRepudiation")
        if ku.key_encipherment:
            usage_list.append("keyEncipherment")
        if ku.data_encipherment:
            usage_list.append("dataEncipherment")
        if ku.key_agreement:
            usage_list.append("keyAgreement")
            # encipher_only and decipher_only are only defined with key_agreement
            if ku.encipher_only:
                usage_list.append("encipherOnly")
            if ku.decipher_only:
                usage_list.append("decipherOnly")
        if ku.key_cert_sign:
            usage_list.append("keyCertSign")
        if ku.crl_sign:
            usage_list.append("cRLSign")
        return tuple(usage_list)

    @staticmethod
    def _extract_extended_key_usage(extensions: x509.Extensions) -> tuple[str, ...]:
        """
        Extract Extended Key Usage values; unknown OIDs stay dotted strings.

        Returns:
            EKU strings (e.g., ("serverAuth", "clientAuth"))
        """
        try:
            eku_ext = extensions.get_extension_for_oid(ExtensionOID.EXTENDED_KEY_USAGE)
        except x509.ExtensionNotFound:
            return ()
        return tuple(eku_to_name(oid.dotted_string) for oid in eku_ext.value)

    @staticmethod
    def _extract_basic_constraints(extensions: x509.Extensions) -> Optional[BasicConstraints]:
        try:
            bc = extensions.get_extension_for_oid(ExtensionOID.BASIC_CONSTRAINTS).value
        except x509.ExtensionNotFound:
            return None
        return BasicConstraints(ca=bc.ca, path_length=bc.path_length)

    @staticmethod
    def _extract_extensions(extensions: x509.Extensions) -> Extensions:
        """Collect the extensions the policy engine reasons about."""
        other = tuple(
            ext.oid.dotted_string
            for ext in extensions
            if ext.oid not in _INTERPRETED_EXTENSIONS and ext.oid not in _IDENTIFIER_EXTENSIONS
        )
        return Extensions(
            key_usage=CertificateParser._extract_key_usage(extensions),
            extended_key_usage=CertificateParser._extract_extended_key_usage(extensions),
            basic_constraints=CertificateParser._extract_basic_constraints(extensions),
            other=other,
        )

    @staticmethod
    def get_validity_status(not_before: datetime, not_after: datetime) -> tuple[str, str]:
        """
        Get validity status of certificate.

        Args:
            not_before: Certificate start date
            not_after: Certificate end date

        Returns:
            Tuple of (status_class, status_text)
            status_class: success, warning or danger
            status_text: Human-readable status
        """
        now = datetime.now(not_after.tzinfo) if not_after.tzinfo else datetime.now()

        if now < not_before:
            return "warning", "Not yet valid"
        elif now > not_after:
            return "danger", "Expired"
        else:
            days_remaining = (not_after - now).days
            if days_remaining <= 30:
                return "warning", f"Expires in {days_remaining} days"
            else:
                return "success", "Valid"
