"""Pricing endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ...errors import BillingError
from ...schemas.pricing import (
    ApplyPricingRequest,
    ApplyPricingResponse,
    BillingClientModel,
    BillingSummaryResponse,
    PricingConfigResponse,
    PricingTierModel,
)
from ...services.pricing import service as pricing
from ...services.pricing.engine import tier_label
from ...services.uploads.service import get_owned_upload
from ..deps import CurrentAccount, get_current_account
from ..errors import to_http_exception

router = APIRouter(prefix="/pricing", tags=["pricing"])


def _summary_model(summary: pricing.BillingSummary) -> BillingSummaryResponse:
    return BillingSummaryResponse(
        upload=summary.upload,
        clients=[BillingClientModel.model_validate(row) for row in summary.clients],
    )


@router.post("/{upload_id}/apply", response_model=ApplyPricingResponse, status_code=status.HTTP_200_OK)
def apply_pricing(
    upload_id: str,
    payload: ApplyPricingRequest,
    account: CurrentAccount = Depends(get_current_account),
) -> ApplyPricingResponse:
    try:
        get_owned_upload(upload_id, account.id)
        result = pricing.apply_pricing(upload_id, [tier.model_dump() for tier in payload.tiers])
    except BillingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:
        logging.exception(f"Error applying pricing to upload {upload_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to apply pricing: {str(exc)}"
        ) from exc
    return ApplyPricingResponse(
        upload_id=upload_id,
        total_deliveries=result.total_legs,
        updated_deliveries=result.updated_legs,
        non_priced=result.non_priced,
        summary=_summary_model(result.summary),
    )


@router.get("/{upload_id}/config", response_model=PricingConfigResponse, status_code=status.HTTP_200_OK)
def get_pricing_config(upload_id: str, account: CurrentAccount = Depends(get_current_account)) -> PricingConfigResponse:
    try:
        get_owned_upload(upload_id, account.id)
        tiers = pricing.get_pricing_config(upload_id)
    except BillingError as exc:
        raise to_http_exception(exc) from exc
    return PricingConfigResponse(
        upload_id=upload_id,
        tiers=[
            PricingTierModel(
                range_start=tier.range_start,
                range_end=tier.range_end,
                price_ht=tier.unit_price,
                tva_rate=tier.tax_rate,
                label=tier_label(tier),
            )
            for tier in tiers
        ],
    )


@router.get("/{upload_id}/summary", response_model=BillingSummaryResponse, status_code=status.HTTP_200_OK)
def get_billing_summary(upload_id: str, account: CurrentAccount = Depends(get_current_account)) -> BillingSummaryResponse:
    try:
        get_owned_upload(upload_id, account.id)
        summary = pricing.get_billing_summary(upload_id)
    except BillingError as exc:
        raise to_http_exception(exc) from exc
    return _summary_model(summary)
