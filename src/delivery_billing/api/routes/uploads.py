"""Upload endpoints: intake, address correction, processing and listings."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...errors import BillingError
from ...schemas.uploads import (
    AddressCorrectionRequest,
    AddressCorrectionResponse,
    ClientTotalsModel,
    InvalidAddressesResponse,
    InvalidAddressModel,
    LegModel,
    StartProcessingResponse,
    UploadCreateRequest,
    UploadCreateResponse,
    UploadListResponse,
    UploadSummaryModel,
)
from ...services.uploads import service as uploads
from ...services.uploads.service import StartOutcome
from ..deps import CurrentAccount, get_current_account
from ..errors import to_http_exception

router = APIRouter(prefix="/uploads", tags=["uploads"])

_START_STATUS = {
    StartOutcome.ACCEPTED: status.HTTP_202_ACCEPTED,
    StartOutcome.ALREADY_RUNNING: status.HTTP_200_OK,
    StartOutcome.ALREADY_DONE: status.HTTP_200_OK,
    StartOutcome.REJECTED: status.HTTP_409_CONFLICT,
    StartOutcome.INSUFFICIENT_CREDITS: status.HTTP_402_PAYMENT_REQUIRED,
    StartOutcome.PROFILE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    StartOutcome.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
}


@router.post("", response_model=UploadCreateResponse, status_code=status.HTTP_201_CREATED)
def create_upload(
    payload: UploadCreateRequest,
    account: CurrentAccount = Depends(get_current_account),
) -> UploadCreateResponse:
    try:
        result = uploads.create_upload(
            account.id,
            payload.filename,
            [row.to_leg() for row in payload.rows],
            warehouse_address=payload.warehouse_address,
        )
    except BillingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:
        logging.exception(f"Error creating upload: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create upload: {str(exc)}"
        ) from exc
    return UploadCreateResponse(
        upload_id=result.upload_id,
        total=result.total,
        valid_count=result.valid_count,
        invalid_count=result.invalid_count,
        needs_validation=result.needs_validation,
    )


@router.get("/mine", response_model=UploadListResponse, status_code=status.HTTP_200_OK)
def list_my_uploads(account: CurrentAccount = Depends(get_current_account)) -> UploadListResponse:
    rows = uploads.list_uploads(account.id)
    return UploadListResponse(uploads=[UploadSummaryModel.model_validate(row) for row in rows])


@router.get("/{upload_id}/status", status_code=status.HTTP_200_OK)
def get_upload_status(upload_id: str, account: CurrentAccount = Depends(get_current_account)) -> dict:
    try:
        return {"upload": uploads.get_status(upload_id, account.id)}
    except BillingError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{upload_id}/invalid-addresses", response_model=InvalidAddressesResponse, status_code=status.HTTP_200_OK)
def list_invalid_addresses(
    upload_id: str,
    account: CurrentAccount = Depends(get_current_account),
) -> InvalidAddressesResponse:
    try:
        uploads.get_owned_upload(upload_id, account.id)
        rows = uploads.get_invalid_addresses(upload_id)
    except BillingError as exc:
        raise to_http_exception(exc) from exc
    return InvalidAddressesResponse(
        upload_id=upload_id,
        invalid_count=len(rows),
        addresses=[InvalidAddressModel.model_validate(row) for row in rows],
    )


@router.patch(
    "/{upload_id}/addresses/{pending_id}",
    response_model=AddressCorrectionResponse,
    status_code=status.HTTP_200_OK,
)
def correct_address(
    upload_id: str,
    pending_id: str,
    payload: AddressCorrectionRequest,
    account: CurrentAccount = Depends(get_current_account),
) -> AddressCorrectionResponse:
    try:
        result = uploads.correct_address(upload_id, pending_id, payload.model_dump(), account_id=account.id)
    except BillingError as exc:
        raise to_http_exception(exc) from exc
    return AddressCorrectionResponse(
        success=result.success,
        issues=result.issues,
        remaining_invalid=result.remaining_invalid,
        all_valid=result.all_valid,
    )


@router.post("/{upload_id}/process", response_model=StartProcessingResponse)
def start_processing(
    upload_id: str,
    response: Response,
    account: CurrentAccount = Depends(get_current_account),
) -> StartProcessingResponse:
    """Start distance resolution in the background. Returns before the run ends."""
    try:
        result = uploads.start_processing(upload_id, account.id)
    except BillingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:
        logging.exception(f"Error starting processing for upload {upload_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to start processing: {str(exc)}"
        ) from exc

    body = StartProcessingResponse(
        outcome=result.outcome.value,
        upload_id=result.upload_id,
        message=result.message,
        invalid_count=result.invalid_count,
        total_deliveries=result.total_legs,
    )
    status_code = _START_STATUS[result.outcome]
    if status_code >= 400:
        raise HTTPException(status_code=status_code, detail=body.model_dump())
    response.status_code = status_code
    return body


@router.get("/{upload_id}/clients", response_model=List[ClientTotalsModel], status_code=status.HTTP_200_OK)
def list_clients(upload_id: str, account: CurrentAccount = Depends(get_current_account)) -> List[ClientTotalsModel]:
    try:
        uploads.get_owned_upload(upload_id, account.id)
        rows = uploads.list_clients_with_totals(upload_id)
    except BillingError as exc:
        raise to_http_exception(exc) from exc
    return [ClientTotalsModel.model_validate(row) for row in rows]


@router.get("/{upload_id}/legs", response_model=List[LegModel], status_code=status.HTTP_200_OK)
def list_legs(upload_id: str, account: CurrentAccount = Depends(get_current_account)) -> List[LegModel]:
    try:
        uploads.get_owned_upload(upload_id, account.id)
        rows = uploads.list_legs(upload_id)
    except BillingError as exc:
        raise to_http_exception(exc) from exc
    return [LegModel.model_validate(row) for row in rows]
