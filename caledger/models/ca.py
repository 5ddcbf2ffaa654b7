"""CA data models."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# RFC 4514 characters that must be escaped inside an attribute value
_DN_SPECIAL = set(',+"\\<>;=')


class KeyAlgorithm(str, Enum):
    """Supported key algorithms."""

    RSA = "RSA"
    ECDSA = "ECDSA"
    ED25519 = "Ed25519"


class ECDSACurve(str, Enum):
    """Supported ECDSA curves."""

    P256 = "P-256"
    P384 = "P-384"
    P521 = "P-521"


class CAType(str, Enum):
    """CA types."""

    ROOT_CA = "root_ca"
    INTERMEDIATE_CA = "intermediate_ca"


class CARole(str, Enum):
    """Signing role a CA instance plays; selects its policy."""

    ROOT = "root"
    SUBORDINATE = "subordinate"
    LEAF_SIGNER = "leaf_signer"


def _escape_dn_value(value: str) -> str:
    escaped = "".join(f"\\{ch}" if ch in _DN_SPECIAL else ch for ch in value)
    if escaped.startswith((" ", "#")):
        escaped = "\\" + escaped
    if escaped.endswith(" ") and not escaped.endswith("\\ "):
        escaped = escaped[:-1] + "\\ "
    return escaped


class Subject(BaseModel):
    """Certificate subject information (distinguished name)."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "common_name": "My Root CA",
                "organization": "ACME Corp",
                "organizational_unit": "IT Security",
                "country": "DE",
                "state": "Hessen",
                "locality": "Frankfurt",
            }
        },
    )

    common_name: str
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    state: Optional[str] = None
    locality: Optional[str] = None

    @property
    def distinguished_name(self) -> str:
        """RFC 4514 string form, most specific attribute first."""
        parts = [
            ("CN", self.common_name),
            ("OU", self.organizational_unit),
            ("O", self.organization),
            ("L", self.locality),
            ("ST", self.state),
            ("C", self.country),
        ]
        return ",".join(f"{key}={_escape_dn_value(value)}" for key, value in parts if value)


class KeyConfig(BaseModel):
    """Key configuration."""

    model_config = ConfigDict(json_schema_extra={"example": {"algorithm": "ECDSA", "curve": "P-256"}})

    algorithm: KeyAlgorithm = KeyAlgorithm.ECDSA
    key_size: Optional[int] = Field(None, ge=2048)  # for RSA
    curve: Optional[ECDSACurve] = None  # for ECDSA

    @property
    def bits(self) -> Optional[int]:
        """Bit size handed to the capability provider."""
        if self.algorithm == KeyAlgorithm.RSA:
            return self.key_size or 2048
        if self.algorithm == KeyAlgorithm.ECDSA:
            return int((self.curve or ECDSACurve.P256).value.split("-")[1])
        return None


class CAConfig(BaseModel):
    """CA configuration model, persisted as config.yaml in the CA directory."""

    type: CAType
    role: CARole
    created_at: datetime = Field(default_factory=datetime.now)
    subject: Subject
    key_config: KeyConfig
    validity_days: int = Field(..., gt=0)
    not_before: datetime = Field(default_factory=datetime.now)
    not_after: Optional[datetime] = None
    serial_number: Optional[int] = None  # Serial of this CA's own certificate
    parent_ca: Optional[str] = None  # Parent CA id
    key_file: str = "ca.key"
    fingerprint_sha256: Optional[str] = None

    def model_post_init(self, __context):
        """Calculate not_after if not set."""
        if self.not_after is None:
            self.not_after = self.not_before + timedelta(days=self.validity_days)


class CACreateRequest(BaseModel):
    """Request model for creating a CA."""

    type: CAType
    subject: Subject
    key_config: Optional[KeyConfig] = None  # falls back to the configured defaults for the CA type
    key_password: str = Field(..., min_length=1, description="Password protecting the new CA key (not stored)")
    validity_days: Optional[int] = Field(None, gt=0)
    role: Optional[CARole] = None
    path_length: Optional[int] = Field(None, ge=0)
    parent_ca_id: Optional[str] = None
    parent_ca_password: Optional[str] = None


class CAResponse(BaseModel):
    """Response model for CA operations."""

    id: str
    path: str
    type: CAType
    role: CARole
    subject: Subject
    serial_number: str
    not_before: datetime
    not_after: datetime
    fingerprint_sha256: Optional[str] = None
    parent_ca: Optional[str] = None
    validity_status: str
    validity_text: str
