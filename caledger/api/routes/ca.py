"""CA API endpoints."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from caledger.api.dependencies import get_ca_service
from caledger.models.ca import CACreateRequest, CAResponse, CAType
from caledger.services.ca_service import CAService

router = APIRouter(prefix="/api/cas", tags=["CA"])


@router.post("", response_model=CAResponse, status_code=201)
def create_ca(
    request: CACreateRequest,
    ca_service: CAService = Depends(get_ca_service),
):
    """
    Create a new CA (Root or Intermediate).

    For Root CA: Set type="root_ca"
    For Intermediate CA: Set type="intermediate_ca" and provide parent_ca_id and parent_ca_password
    """
    if request.type == CAType.ROOT_CA:
        return ca_service.create_root_ca(request)

    if not request.parent_ca_id:
        raise HTTPException(status_code=400, detail="parent_ca_id required for intermediate CA")
    return ca_service.create_intermediate_ca(request, request.parent_ca_id)


@router.get("", response_model=List[CAResponse])
def list_cas(ca_service: CAService = Depends(get_ca_service)):
    """
    List all CAs.
    """
    return ca_service.list_cas()


@router.get("/{ca_id}", response_model=CAResponse)
def get_ca(ca_id: str, ca_service: CAService = Depends(get_ca_service)):
    """
    Get CA details by ID.
    """
    return ca_service.get_ca(ca_id)
