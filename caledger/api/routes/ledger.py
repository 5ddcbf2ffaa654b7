"""Ledger API endpoints."""

from typing import List

from fastapi import APIRouter, Depends

from caledger.api.dependencies import get_cert_service
from caledger.models.ledger import LedgerEntryResponse
from caledger.services.cert_service import CertificateService

router = APIRouter(prefix="/api/ledger", tags=["Ledger"])


@router.get("", response_model=List[LedgerEntryResponse])
def list_entries(cert_service: CertificateService = Depends(get_cert_service)):
    """
    List every recorded serial with its effective status.
    """
    return cert_service.list_ledger()


@router.get("/{serial}", response_model=LedgerEntryResponse)
def get_entry(serial: str, cert_service: CertificateService = Depends(get_cert_service)):
    """
    Look up one serial in the ledger.
    """
    return cert_service.get_ledger_entry(serial)
