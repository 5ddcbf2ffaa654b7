"""Issuance engine: the state machine that turns a CSR into a recorded certificate."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from caledger.exceptions import (
    DuplicateSerial,
    InvalidTransition,
    IssuanceCancelled,
    LedgerIntegrityError,
    PolicyViolation,
    SigningFailed,
)
from caledger.models.ca import Subject
from caledger.models.certificate import BasicConstraints, CertificateSigningRequest, Extensions, IssuedCertificate
from caledger.models.issuance import (
    TERMINAL_STATES,
    TRANSITIONS,
    IssuanceState,
    IssuerContext,
    KeyHandle,
    TBSCertificate,
    Validity,
)
from caledger.models.policy import Policy
from caledger.services.ledger_service import SerialLedger
from caledger.services.parser_service import CertificateParser
from caledger.services.policy_service import PolicyEngine
from caledger.services.provider_service import CapabilityProvider
from caledger.services.store_service import CertificateStore

logger = logging.getLogger("caledger")


class IssuanceWorkflow:
    """
    One pass through the issuance state machine.

    received -> policy_checked -> serial_allocated -> signed -> recorded -> complete,
    with rejected reachable from any non-terminal state.
    """

    def __init__(self, subject: Optional[Subject] = None):
        self.subject = subject
        self.state = IssuanceState.RECEIVED
        self.history: List[IssuanceState] = [IssuanceState.RECEIVED]
        self.serial_number: Optional[int] = None
        self.certificate: Optional[IssuedCertificate] = None
        self.error: Optional[Exception] = None

    @property
    def label(self) -> str:
        cn = self.subject.common_name if self.subject else "?"
        serial = f"{self.serial_number:X}" if self.serial_number is not None else "-"
        return f"'{cn}' serial={serial}"

    def advance(self, new_state: IssuanceState) -> None:
        """
        Move to new_state.

        Raises:
            InvalidTransition: If the transition is not allowed from the current state
        """
        allowed = TRANSITIONS[self.state]
        if self.state not in TERMINAL_STATES and new_state == IssuanceState.REJECTED:
            allowed = allowed | {IssuanceState.REJECTED}
        if new_state not in allowed:
            raise InvalidTransition(f"Cannot move from {self.state.value} to {new_state.value} ({self.label})")

        logger.debug(f"Issuance {self.label}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def reject(self, error: Exception) -> None:
        self.error = error
        self.advance(IssuanceState.REJECTED)


class IssuanceEngine:
    """
    Orchestrates policy check, serial allocation, signing, recording and storing.

    The engine owns no persistent state: it works on the ledger and store it
    is given. Each transition's side effect is committed before the state
    advances, so a workflow abandoned at any boundary leaves no half-written
    ledger entry. Nothing is retried.
    """

    def __init__(
        self,
        ledger: SerialLedger,
        store: CertificateStore,
        provider: CapabilityProvider,
        signing_timeout: float = 30.0,
        max_workers: int = 8,
    ):
        self.ledger = ledger
        self.store = store
        self.provider = provider
        self.signing_timeout = signing_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="caledger-sign")

    def close(self) -> None:
        """Stop the signing pool. Calls still blocked in a provider are not waited for."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def issue(
        self,
        csr: CertificateSigningRequest,
        issuer: IssuerContext,
        policy: Policy,
        requested_days: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
        workflow: Optional[IssuanceWorkflow] = None,
    ) -> IssuedCertificate:
        """
        Sign a CSR under issuer according to policy.

        Args:
            csr: Parsed request, consumed as-is
            issuer: CA certificate and key handle to sign with
            policy: Policy of the issuing CA
            requested_days: Validity override, bounded by policy
            cancel: Set by the caller to abandon the issuance at the next state boundary
            workflow: Optional workflow object to drive, for callers that inspect its history

        Returns:
            The issued certificate, durably recorded in the ledger and store

        Raises:
            PolicyViolation: The CSR or issuer fails policy; no serial is consumed
            SigningFailed: The provider failed or timed out; the serial is retired
            IssuanceCancelled: cancel was set before the ledger record
            LedgerIntegrityError: Integrity alarm (duplicate serial, exhausted space)
        """
        wf = workflow or IssuanceWorkflow()
        wf.subject = csr.subject

        try:
            validated = PolicyEngine.validate(csr, policy, requested_days)
            PolicyEngine.check_issuer(issuer.certificate, validated)
        except PolicyViolation as e:
            logger.warning(f"Rejected CSR {wf.label}: {e.kind}: {e}")
            wf.reject(e)
            raise
        try:
            issuer_name = CertificateParser.subject_name_of(issuer.certificate.pem)
        except ValueError as e:
            logger.error(f"Unreadable issuer certificate {issuer.certificate.serial_hex}: {e}")
            wf.reject(e)
            raise
        wf.advance(IssuanceState.POLICY_CHECKED)

        self._allocate(wf, cancel)

        now = datetime.now(timezone.utc).replace(microsecond=0)
        tbs = TBSCertificate(
            serial_number=wf.serial_number,
            subject=validated.subject,
            subject_name=validated.subject_name,
            issuer=issuer.certificate.subject,
            issuer_name=issuer_name,
            sans=validated.sans,
            public_key_pem=validated.public_key_pem,
            validity=Validity(not_before=now, not_after=now + timedelta(days=validated.validity_days)),
            extensions=validated.extensions,
            signature_digest=validated.signature_digest,
        )

        def sign():
            signature = self.provider.sign(tbs, issuer.key)
            return CertificateParser.parse_certificate_pem(signature.certificate_pem)

        cert = self._call_provider(wf, sign)
        return self._finish(wf, cert, cancel)

    def self_sign(
        self,
        subject: Subject,
        key: KeyHandle,
        policy: Policy,
        validity_days: Optional[int] = None,
        path_length: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
        workflow: Optional[IssuanceWorkflow] = None,
    ) -> IssuedCertificate:
        """
        Issue a self-signed root certificate through the same state machine.

        Raises:
            PolicyViolation: Missing common name or validity out of bounds
            SigningFailed: The provider failed or timed out; the serial is retired
        """
        wf = workflow or IssuanceWorkflow(subject)
        wf.subject = subject

        try:
            PolicyEngine.validate_subject(subject)
            days = PolicyEngine.resolve_validity_days(policy, validity_days)
        except PolicyViolation as e:
            logger.warning(f"Rejected root {wf.label}: {e.kind}: {e}")
            wf.reject(e)
            raise
        wf.advance(IssuanceState.POLICY_CHECKED)

        self._allocate(wf, cancel)

        now = datetime.now(timezone.utc).replace(microsecond=0)
        validity = Validity(not_before=now, not_after=now + timedelta(days=days))
        extensions = Extensions(
            key_usage=policy.ca_key_usage,
            basic_constraints=BasicConstraints(ca=True, path_length=path_length),
        )

        cert = self._call_provider(
            wf,
            lambda: self.provider.self_sign(
                subject,
                key,
                validity,
                serial_number=wf.serial_number,
                extensions=extensions,
                signature_digest=policy.signature_digest,
            ),
        )
        return self._finish(wf, cert, cancel)

    # ----- transitions -----

    def _allocate(self, wf: IssuanceWorkflow, cancel: Optional[threading.Event]) -> None:
        """policy_checked -> serial_allocated."""
        self._check_cancel(wf, cancel)
        try:
            wf.serial_number = self.ledger.allocate_serial()
        except LedgerIntegrityError as e:
            logger.critical(f"Serial allocation failed for {wf.label}: {e}")
            wf.reject(e)
            raise
        wf.advance(IssuanceState.SERIAL_ALLOCATED)
        self._check_cancel(wf, cancel)

    def _call_provider(self, wf: IssuanceWorkflow, operation: Callable[[], IssuedCertificate]) -> IssuedCertificate:
        """
        serial_allocated -> signed, bounded by signing_timeout.

        The timeout starts when a worker picks the call up; time spent queued
        behind max_workers other signatures is not counted.
        """
        started = threading.Event()

        def run():
            started.set()
            return operation()

        try:
            future = self._executor.submit(run)
        except RuntimeError as e:
            error = SigningFailed(
                f"Signing pool unavailable: {e}", serial_number=wf.serial_number, state=wf.state.value
            )
            self._fail(wf, error, "signing pool closed")
            raise error from e
        # Also fires if the pool is shut down before the call starts
        future.add_done_callback(lambda _: started.set())
        started.wait()
        try:
            cert = future.result(timeout=self.signing_timeout)
        except FuturesTimeoutError:
            future.cancel()
            error = SigningFailed(
                f"Signing timed out after {self.signing_timeout}s",
                serial_number=wf.serial_number,
                state=wf.state.value,
            )
            self._fail(wf, error, "signing timed out")
            raise error
        except Exception as e:
            error = SigningFailed(f"Signing failed: {e}", serial_number=wf.serial_number, state=wf.state.value)
            self._fail(wf, error, "signing failed")
            raise error from e

        if cert.serial_number != wf.serial_number:
            error = SigningFailed(
                f"Provider returned serial {cert.serial_hex}, expected {wf.serial_number:X}",
                serial_number=wf.serial_number,
                state=wf.state.value,
            )
            self._fail(wf, error, "provider returned wrong serial")
            raise error

        wf.certificate = cert
        wf.advance(IssuanceState.SIGNED)
        return cert

    def _finish(
        self, wf: IssuanceWorkflow, cert: IssuedCertificate, cancel: Optional[threading.Event]
    ) -> IssuedCertificate:
        """signed -> recorded -> complete."""
        self._check_cancel(wf, cancel)

        try:
            self.ledger.record(wf.serial_number, cert.subject.common_name, cert.not_before, cert.not_after)
        except DuplicateSerial as e:
            logger.critical(f"LEDGER INTEGRITY ALARM: {e} while recording {wf.label}; certificate discarded")
            wf.reject(e)
            raise
        wf.advance(IssuanceState.RECORDED)

        try:
            self.store.put(cert)
        except DuplicateSerial as e:
            logger.critical(f"STORE INTEGRITY ALARM: {e} while storing {wf.label}")
            wf.reject(e)
            raise
        wf.advance(IssuanceState.COMPLETE)

        logger.info(
            f"Issued certificate {cert.serial_hex} for '{cert.subject.common_name}' "
            f"by '{cert.issuer.common_name}', valid until {cert.not_after.isoformat()}"
        )
        return cert

    def _check_cancel(self, wf: IssuanceWorkflow, cancel: Optional[threading.Event]) -> None:
        if cancel is None or not cancel.is_set():
            return
        error = IssuanceCancelled(
            f"Issuance {wf.label} cancelled in state {wf.state.value}",
            serial_number=wf.serial_number,
            state=wf.state.value,
        )
        self._fail(wf, error, "cancelled")
        logger.info(str(error))
        raise error

    def _fail(self, wf: IssuanceWorkflow, error: Exception, reason: str) -> None:
        """Reject the workflow, retiring its serial if one was allocated."""
        if wf.serial_number is not None:
            self.ledger.retire(wf.serial_number, reason)
        logger.error(f"Issuance {wf.label} failed in state {wf.state.value}: {error}")
        wf.reject(error)
