"""Signing policy models."""

from typing import Optional

from cryptography import x509
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .ca import CARole, Subject
from .certificate import KNOWN_EXTENSIONS, Extensions

SUPPORTED_DIGESTS = ("sha256", "sha384", "sha512")


class Policy(BaseModel):
    """
    What a CA instance is willing to sign.

    When copy_extensions is off, only key_usage / extended_key_usage (or
    ca_key_usage for CA requests) set here are emitted; CSR-supplied
    SAN, key usage and EKU are dropped.
    """

    model_config = ConfigDict(frozen=True)

    role: CARole = CARole.SUBORDINATE
    allow_ca_issuance: bool = False
    allowed_extended_key_usages: tuple[str, ...] = ("serverAuth", "clientAuth", "codeSigning")
    copy_extensions: bool = False
    default_validity_days: int = Field(365, gt=0)
    max_validity_days: Optional[int] = Field(None, gt=0)
    signature_digest: str = "sha256"
    permitted_extensions: tuple[str, ...] = KNOWN_EXTENSIONS
    mandatory_extensions: tuple[str, ...] = ()
    key_usage: tuple[str, ...] = ("digitalSignature", "keyEncipherment")
    extended_key_usage: tuple[str, ...] = ("serverAuth",)
    ca_key_usage: tuple[str, ...] = ("keyCertSign", "cRLSign", "digitalSignature")
    max_path_length: Optional[int] = Field(None, ge=0)

    @field_validator("signature_digest")
    @classmethod
    def validate_digest(cls, v):
        """Only SHA-2 digests are accepted."""
        v = v.lower().replace("-", "")
        if v not in SUPPORTED_DIGESTS:
            raise ValueError(f"Unsupported signature digest: {v}")
        return v

    @model_validator(mode="after")
    def leaf_signer_cannot_issue_cas(self):
        if self.role == CARole.LEAF_SIGNER and self.allow_ca_issuance:
            raise ValueError("A leaf_signer policy cannot allow CA issuance")
        if self.max_validity_days and self.default_validity_days > self.max_validity_days:
            raise ValueError("default_validity_days exceeds max_validity_days")
        return self

    @classmethod
    def for_role(cls, role: CARole, **overrides) -> "Policy":
        """Default policy for a CA role."""
        defaults = {
            CARole.ROOT: {
                "allow_ca_issuance": True,
                "default_validity_days": 1825,
                "allowed_extended_key_usages": (),
                "copy_extensions": False,
            },
            CARole.SUBORDINATE: {
                "allow_ca_issuance": True,
                "default_validity_days": 365,
                "max_path_length": 0,
            },
            CARole.LEAF_SIGNER: {"allow_ca_issuance": False, "default_validity_days": 365},
        }[role]
        return cls(role=role, **{**defaults, **overrides})


class ValidatedRequest(BaseModel):
    """A CSR that passed policy: exactly what will be signed."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    subject: Subject
    subject_name: Optional[x509.Name] = Field(None, exclude=True, repr=False)
    sans: tuple[str, ...] = ()
    public_key_pem: str
    extensions: Extensions
    validity_days: int
    signature_digest: str
