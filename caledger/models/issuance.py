"""Issuance workflow and capability-provider data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from cryptography import x509
from pydantic import BaseModel, ConfigDict, Field

from .ca import Subject
from .certificate import Extensions, IssuedCertificate


class IssuanceState(str, Enum):
    """States of one issuance workflow."""

    RECEIVED = "received"
    POLICY_CHECKED = "policy_checked"
    SERIAL_ALLOCATED = "serial_allocated"
    SIGNED = "signed"
    RECORDED = "recorded"
    COMPLETE = "complete"
    REJECTED = "rejected"


TERMINAL_STATES = {IssuanceState.COMPLETE, IssuanceState.REJECTED}

# Forward edges; REJECTED is reachable from every non-terminal state
TRANSITIONS = {
    IssuanceState.RECEIVED: {IssuanceState.POLICY_CHECKED},
    IssuanceState.POLICY_CHECKED: {IssuanceState.SERIAL_ALLOCATED},
    IssuanceState.SERIAL_ALLOCATED: {IssuanceState.SIGNED},
    IssuanceState.SIGNED: {IssuanceState.RECORDED},
    IssuanceState.RECORDED: {IssuanceState.COMPLETE},
    IssuanceState.COMPLETE: set(),
    IssuanceState.REJECTED: set(),
}


class Validity(BaseModel):
    """Validity window of a certificate."""

    model_config = ConfigDict(frozen=True)

    not_before: datetime
    not_after: datetime


class KeyHandle(BaseModel):
    """Opaque reference to a private key held by a capability provider."""

    model_config = ConfigDict(frozen=True)

    key_id: str
    algorithm: str
    public_key_pem: Optional[str] = None
    source: Optional[str] = None  # file path for keys loaded from disk


class TBSCertificate(BaseModel):
    """The to-be-signed certificate structure assembled by the issuance engine."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    serial_number: int
    subject: Subject
    subject_name: Optional[x509.Name] = Field(None, exclude=True, repr=False)  # signed verbatim when set
    issuer: Subject
    issuer_name: Optional[x509.Name] = Field(None, exclude=True, repr=False)  # issuer certificate's exact subject
    sans: tuple[str, ...] = ()
    public_key_pem: str
    validity: Validity
    extensions: Extensions
    signature_digest: str


class Signature(BaseModel):
    """Provider output: the signature value and the DER/PEM it completes."""

    model_config = ConfigDict(frozen=True)

    value: bytes
    algorithm: str
    certificate_pem: str


class IssuerContext(BaseModel):
    """The CA certificate and key handle used to sign."""

    model_config = ConfigDict(frozen=True)

    certificate: IssuedCertificate
    key: KeyHandle
