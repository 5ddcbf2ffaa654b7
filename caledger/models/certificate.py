"""Certificate and certificate-request data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from cryptography import x509
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .ca import Subject


class KeyUsageType(str, Enum):
    """Key Usage values, named as OpenSSL names them."""

    DIGITAL_SIGNATURE = "digitalSignature"
    NON_REPUDIATION = "nonRepudiation"
    KEY_ENCIPHERMENT = "keyEncipherment"
    DATA_ENCIPHERMENT = "dataEncipherment"
    KEY_AGREEMENT = "keyAgreement"
    KEY_CERT_SIGN = "keyCertSign"
    CRL_SIGN = "cRLSign"
    ENCIPHER_ONLY = "encipherOnly"
    DECIPHER_ONLY = "decipherOnly"


class ExtendedKeyUsageType(str, Enum):
    """Well-known Extended Key Usage values."""

    SERVER_AUTH = "serverAuth"
    CLIENT_AUTH = "clientAuth"
    CODE_SIGNING = "codeSigning"
    EMAIL_PROTECTION = "emailProtection"
    TIME_STAMPING = "timeStamping"
    OCSP_SIGNING = "OCSPSigning"
    ANY_EXTENDED_KEY_USAGE = "anyExtendedKeyUsage"


EKU_OIDS = {
    ExtendedKeyUsageType.SERVER_AUTH.value: "1.3.6.1.5.5.7.3.1",
    ExtendedKeyUsageType.CLIENT_AUTH.value: "1.3.6.1.5.5.7.3.2",
    ExtendedKeyUsageType.CODE_SIGNING.value: "1.3.6.1.5.5.7.3.3",
    ExtendedKeyUsageType.EMAIL_PROTECTION.value: "1.3.6.1.5.5.7.3.4",
    ExtendedKeyUsageType.TIME_STAMPING.value: "1.3.6.1.5.5.7.3.8",
    ExtendedKeyUsageType.OCSP_SIGNING.value: "1.3.6.1.5.5.7.3.9",
    ExtendedKeyUsageType.ANY_EXTENDED_KEY_USAGE.value: "2.5.29.37.0",
}
EKU_NAMES = {oid: name for name, oid in EKU_OIDS.items()}

# CA-only Key Usage values, forbidden for end-entity certificates
FORBIDDEN_KEY_USAGE = {KeyUsageType.KEY_CERT_SIGN.value, KeyUsageType.CRL_SIGN.value}

# Forbidden Extended Key Usage values
FORBIDDEN_EKU = {EKU_OIDS[ExtendedKeyUsageType.ANY_EXTENDED_KEY_USAGE.value]}

# Extension names understood by the policy engine
EXT_SUBJECT_ALT_NAME = "subjectAltName"
EXT_KEY_USAGE = "keyUsage"
EXT_EXTENDED_KEY_USAGE = "extendedKeyUsage"
EXT_BASIC_CONSTRAINTS = "basicConstraints"
KNOWN_EXTENSIONS = (EXT_SUBJECT_ALT_NAME, EXT_KEY_USAGE, EXT_EXTENDED_KEY_USAGE, EXT_BASIC_CONSTRAINTS)


def eku_to_oid(value: str) -> str:
    """Map an EKU name ("serverAuth") or dotted OID to its dotted OID."""
    return EKU_OIDS.get(value, value)


def eku_to_name(value: str) -> str:
    """Map a dotted EKU OID back to its well-known name, if it has one."""
    return EKU_NAMES.get(value, value)


class BasicConstraints(BaseModel):
    """basicConstraints extension value."""

    model_config = ConfigDict(frozen=True)

    ca: bool = False
    path_length: Optional[int] = Field(None, ge=0)


class Extensions(BaseModel):
    """Extensions requested in a CSR or finalized on a certificate."""

    model_config = ConfigDict(frozen=True)

    key_usage: tuple[str, ...] = ()
    extended_key_usage: tuple[str, ...] = ()
    basic_constraints: Optional[BasicConstraints] = None
    other: tuple[str, ...] = ()  # dotted OIDs of extensions this engine does not interpret

    def present(self, sans: tuple[str, ...] = ()) -> set[str]:
        """Names (or OIDs) of the extensions actually carried."""
        names = set(self.other)
        if sans:
            names.add(EXT_SUBJECT_ALT_NAME)
        if self.key_usage:
            names.add(EXT_KEY_USAGE)
        if self.extended_key_usage:
            names.add(EXT_EXTENDED_KEY_USAGE)
        if self.basic_constraints is not None:
            names.add(EXT_BASIC_CONSTRAINTS)
        return names


class CertificateSigningRequest(BaseModel):
    """A parsed PKCS#10 request. Consumed once by the issuance engine, never mutated."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    subject: Subject
    subject_name: Optional[x509.Name] = Field(None, exclude=True, repr=False)  # exact name from the CSR
    sans: tuple[str, ...] = ()
    unsupported_sans: tuple[str, ...] = ()  # "Type:value" of SAN entries that cannot be issued
    public_key_pem: str
    public_key_algorithm: str
    public_key_size: Optional[int] = None
    extensions: Extensions = Field(default_factory=Extensions)
    signature_valid: bool
    pem: str

    @field_validator("sans", mode="before")
    @classmethod
    def convert_sans_to_strings(cls, v):
        """Convert IP addresses or other types in SANs to strings."""
        if v is None:
            return ()
        return tuple(str(item) for item in v)

    @property
    def requests_ca(self) -> bool:
        bc = self.extensions.basic_constraints
        return bool(bc and bc.ca)


class IssuedCertificate(BaseModel):
    """A signed X.509v3 certificate. Immutable after creation."""

    model_config = ConfigDict(frozen=True)

    serial_number: int
    subject: Subject
    issuer: Subject
    sans: tuple[str, ...] = ()
    not_before: datetime
    not_after: datetime
    public_key_pem: str
    extensions: Extensions = Field(default_factory=Extensions)
    signature_algorithm: Optional[str] = None
    fingerprint_sha256: str
    pem: str
    self_signed: bool = False  # issuer name matches and the subject key verifies the signature

    @field_validator("sans", mode="before")
    @classmethod
    def convert_sans_to_strings(cls, v):
        """Convert IP addresses or other types in SANs to strings."""
        if v is None:
            return ()
        return tuple(str(item) for item in v)

    @property
    def serial_hex(self) -> str:
        return format(self.serial_number, "X")

    @property
    def subject_dn(self) -> str:
        return self.subject.distinguished_name

    @property
    def issuer_dn(self) -> str:
        return self.issuer.distinguished_name

    @property
    def is_ca(self) -> bool:
        bc = self.extensions.basic_constraints
        return bool(bc and bc.ca)

    @property
    def is_self_signed(self) -> bool:
        return self.self_signed


class CSRSignRequest(BaseModel):
    """Request model for signing a CSR."""

    issuing_ca_id: str
    csr_content: str  # PEM-encoded CSR content
    issuing_ca_password: str = Field(..., description="Password for issuing CA's private key")
    validity_days: Optional[int] = Field(None, gt=0)


class CertResponse(BaseModel):
    """Response model for certificate operations."""

    serial_number: str
    subject: Subject
    issuer: Subject
    sans: list[str]
    not_before: datetime
    not_after: datetime
    fingerprint_sha256: str
    is_ca: bool
    key_usage: list[str] = Field(default_factory=list)
    extended_key_usage: list[str] = Field(default_factory=list)
    status: str
    validity_status: str
    validity_text: str
    pem: str
