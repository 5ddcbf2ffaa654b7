"""Certificate API endpoints."""

from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from caledger.api.dependencies import get_cert_service
from caledger.models.certificate import CertResponse, CSRSignRequest
from caledger.models.ledger import LedgerEntryResponse, RevokeRequest
from caledger.services.cert_service import CertificateService

router = APIRouter(prefix="/api/certs", tags=["Certificates"])


@router.post("/sign-csr", response_model=CertResponse, status_code=201)
def sign_csr(
    request: CSRSignRequest,
    cert_service: CertificateService = Depends(get_cert_service),
):
    """
    Sign a PEM CSR with one of the instance's CAs.

    The issuing CA's policy decides which extensions end up in the certificate.
    """
    return cert_service.sign_csr(request)


@router.get("", response_model=List[CertResponse])
def list_certificates(cert_service: CertificateService = Depends(get_cert_service)):
    """
    List all stored certificates.
    """
    return cert_service.list_certificates()


@router.get("/{serial}", response_model=CertResponse)
def get_certificate(serial: str, cert_service: CertificateService = Depends(get_cert_service)):
    """
    Get certificate details by hex serial number.
    """
    return cert_service.get_certificate(serial)


@router.get("/{serial}/chain", response_class=PlainTextResponse)
def get_certificate_chain(serial: str, cert_service: CertificateService = Depends(get_cert_service)):
    """Download the full chain (certificate first, root last) as PEM."""
    chain = cert_service.build_certificate_chain(serial)
    return PlainTextResponse(
        content=chain,
        media_type="application/x-pem-file",
        headers={"Content-Disposition": f'attachment; filename="{serial.upper()}-chain.pem"'},
    )


@router.post("/{serial}/revoke", response_model=LedgerEntryResponse)
def revoke_certificate(
    serial: str,
    request: RevokeRequest,
    cert_service: CertificateService = Depends(get_cert_service),
):
    """
    Mark a certificate revoked in the ledger.
    """
    return cert_service.revoke_certificate(serial, request.reason, request.revoked_at)
