"""Policy engine: decides what, if anything, may be signed for a CSR."""

import logging
from typing import Optional

from caledger.exceptions import PolicyViolation
from caledger.models.certificate import (
    EXT_BASIC_CONSTRAINTS,
    EXT_EXTENDED_KEY_USAGE,
    EXT_KEY_USAGE,
    FORBIDDEN_EKU,
    FORBIDDEN_KEY_USAGE,
    BasicConstraints,
    CertificateSigningRequest,
    Extensions,
    IssuedCertificate,
    eku_to_oid,
)
from caledger.models.ca import Subject
from caledger.models.policy import Policy, ValidatedRequest
from caledger.utils.validators import validate_common_name, validate_san

logger = logging.getLogger("caledger")


class ViolationKind:
    """PolicyViolation.kind values."""

    MISSING_COMMON_NAME = "missing_common_name"
    INVALID_SUBJECT = "invalid_subject"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_SAN = "invalid_san"
    CA_NOT_PERMITTED = "ca_not_permitted"
    PATH_LENGTH_NOT_PERMITTED = "path_length_not_permitted"
    EKU_NOT_PERMITTED = "eku_not_permitted"
    KEY_USAGE_NOT_PERMITTED = "key_usage_not_permitted"
    EXTENSION_NOT_PERMITTED = "extension_not_permitted"
    MISSING_EXTENSION = "missing_extension"
    VALIDITY_NOT_PERMITTED = "validity_not_permitted"
    ISSUER_NOT_CA = "issuer_not_ca"


class PolicyEngine:
    """
    Pure validation of certificate requests against a Policy.

    Nothing here touches the ledger, the store or the clock: the same CSR
    and policy always produce the same ValidatedRequest or the same
    PolicyViolation.
    """

    @staticmethod
    def validate(
        csr: CertificateSigningRequest, policy: Policy, requested_days: Optional[int] = None
    ) -> ValidatedRequest:
        """
        Check a CSR against policy and compute the extensions to sign.

        Args:
            csr: Parsed certificate signing request
            policy: Policy of the signing CA
            requested_days: Validity requested by the caller; defaults to policy.default_validity_days

        Returns:
            The validated request

        Raises:
            PolicyViolation: On the first rule the CSR breaks
        """
        PolicyEngine.validate_subject(csr.subject)

        if not csr.signature_valid:
            raise PolicyViolation(
                ViolationKind.INVALID_SIGNATURE,
                "CSR self-signature does not verify (proof of possession failed)",
                field="signature",
            )

        if csr.unsupported_sans:
            raise PolicyViolation(
                ViolationKind.INVALID_SAN,
                f"Unsupported SAN entry {csr.unsupported_sans[0]!r}: only DNS names and IP addresses can be issued",
                field="subjectAltName",
            )
        for san in csr.sans:
            try:
                validate_san(san)
            except ValueError as e:
                raise PolicyViolation(ViolationKind.INVALID_SAN, f"Invalid SAN {san!r}: {e}", field="subjectAltName")

        requested = csr.extensions
        bc = requested.basic_constraints
        is_ca = bool(bc and bc.ca)

        if is_ca and not policy.allow_ca_issuance:
            raise PolicyViolation(
                ViolationKind.CA_NOT_PERMITTED,
                f"Policy for role '{policy.role.value}' does not permit issuing CA certificates",
                field=EXT_BASIC_CONSTRAINTS,
            )
        if is_ca and bc.path_length is not None and policy.max_path_length is not None:
            if bc.path_length > policy.max_path_length:
                raise PolicyViolation(
                    ViolationKind.PATH_LENGTH_NOT_PERMITTED,
                    f"Requested path length {bc.path_length} exceeds maximum {policy.max_path_length}",
                    field=EXT_BASIC_CONSTRAINTS,
                )

        allowed_ekus = {eku_to_oid(eku) for eku in policy.allowed_extended_key_usages}
        for eku in requested.extended_key_usage:
            oid = eku_to_oid(eku)
            if oid in FORBIDDEN_EKU or oid not in allowed_ekus:
                raise PolicyViolation(
                    ViolationKind.EKU_NOT_PERMITTED,
                    f"Extended Key Usage '{eku}' is not permitted",
                    field=EXT_EXTENDED_KEY_USAGE,
                )

        if not is_ca:
            forbidden = [ku for ku in requested.key_usage if ku in FORBIDDEN_KEY_USAGE]
            if forbidden:
                raise PolicyViolation(
                    ViolationKind.KEY_USAGE_NOT_PERMITTED,
                    f"Key Usage '{forbidden[0]}' is forbidden for end-entity certificates (CA-only)",
                    field=EXT_KEY_USAGE,
                )

        validity_days = PolicyEngine.resolve_validity_days(policy, requested_days)
        path_length = None
        if is_ca:
            path_length = bc.path_length if bc.path_length is not None else policy.max_path_length
        basic_constraints = BasicConstraints(ca=is_ca, path_length=path_length)

        if policy.copy_extensions:
            PolicyEngine._check_permitted(csr, policy)
            sans = csr.sans
            extensions = Extensions(
                key_usage=requested.key_usage or (policy.ca_key_usage if is_ca else ()),
                extended_key_usage=requested.extended_key_usage,
                basic_constraints=basic_constraints,
            )
            if requested.other:
                logger.debug(f"Not carrying uninterpreted CSR extensions: {', '.join(requested.other)}")
        else:
            sans = ()
            extensions = Extensions(
                key_usage=policy.ca_key_usage if is_ca else policy.key_usage,
                extended_key_usage=() if is_ca else policy.extended_key_usage,
                basic_constraints=basic_constraints,
            )

        return ValidatedRequest(
            subject=csr.subject,
            subject_name=csr.subject_name,
            sans=sans,
            public_key_pem=csr.public_key_pem,
            extensions=extensions,
            validity_days=validity_days,
            signature_digest=policy.signature_digest,
        )

    @staticmethod
    def validate_subject(subject: Subject) -> None:
        """
        Raises:
            PolicyViolation: If the commonName is absent, blank or too long
        """
        if not subject.common_name or not subject.common_name.strip():
            raise PolicyViolation(ViolationKind.MISSING_COMMON_NAME, "Common name cannot be empty", field="commonName")
        try:
            validate_common_name(subject.common_name)
        except ValueError as e:
            raise PolicyViolation(ViolationKind.INVALID_SUBJECT, str(e), field="commonName")

    @staticmethod
    def check_issuer(issuer: IssuedCertificate, request: Optional[ValidatedRequest] = None) -> None:
        """
        A certificate without CA:true must never sign another certificate,
        and a CA certificate may only sign CAs its path length allows.

        Raises:
            PolicyViolation: If the issuer certificate may not sign this request
        """
        if not issuer.is_ca:
            raise PolicyViolation(
                ViolationKind.ISSUER_NOT_CA,
                f"Issuer '{issuer.subject_dn}' (serial {issuer.serial_hex}) is not a CA certificate",
                field=EXT_BASIC_CONSTRAINTS,
            )

        if request is None or request.extensions.basic_constraints is None:
            return
        child = request.extensions.basic_constraints
        limit = issuer.extensions.basic_constraints.path_length
        if child.ca and limit is not None:
            if limit == 0 or (child.path_length is not None and child.path_length >= limit):
                raise PolicyViolation(
                    ViolationKind.PATH_LENGTH_NOT_PERMITTED,
                    f"Issuer '{issuer.subject_dn}' path length {limit} does not allow this CA certificate",
                    field=EXT_BASIC_CONSTRAINTS,
                )

    @staticmethod
    def resolve_validity_days(policy: Policy, requested_days: Optional[int]) -> int:
        days = requested_days if requested_days is not None else policy.default_validity_days
        if days <= 0:
            raise PolicyViolation(
                ViolationKind.VALIDITY_NOT_PERMITTED, f"Validity must be positive, got {days}", field="validity"
            )
        if policy.max_validity_days is not None and days > policy.max_validity_days:
            raise PolicyViolation(
                ViolationKind.VALIDITY_NOT_PERMITTED,
                f"Requested validity {days} days exceeds maximum {policy.max_validity_days}",
                field="validity",
            )
        return days

    @staticmethod
    def _check_permitted(csr: CertificateSigningRequest, policy: Policy) -> None:
        present = csr.extensions.present(csr.sans)

        not_permitted = sorted(present - set(policy.permitted_extensions))
        if not_permitted:
            raise PolicyViolation(
                ViolationKind.EXTENSION_NOT_PERMITTED,
                f"Extension '{not_permitted[0]}' is not permitted by policy",
                field=not_permitted[0],
            )

        missing = [ext for ext in policy.mandatory_extensions if ext not in present]
        if missing:
            raise PolicyViolation(
                ViolationKind.MISSING_EXTENSION,
                f"Mandatory extension '{missing[0]}' is missing from the CSR",
                field=missing[0],
            )
