"""Pricing request/response schemas."""

from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, Field

# Spreadsheet-style inputs: "12,5" is accepted wherever a number is expected.
Number = Union[float, str]


class PricingTierInput(BaseModel):
    range_start: Optional[Number] = None
    range_end: Optional[Number] = None
    price_ht: Optional[Number] = None
    tva_rate: Optional[Number] = None


class ApplyPricingRequest(BaseModel):
    tiers: List[PricingTierInput] = Field(..., min_length=1)


class PricingTierModel(BaseModel):
    range_start: float
    range_end: Optional[float] = None
    price_ht: float
    tva_rate: float
    label: str


class PricingConfigResponse(BaseModel):
    upload_id: str
    tiers: List[PricingTierModel]


class BillingClientModel(BaseModel):
    id: str
    name: str
    total_deliveries: int = 0
    total_amount_ht: float = 0.0
    total_amount_ttc: float = 0.0


class BillingSummaryResponse(BaseModel):
    upload: dict
    clients: List[BillingClientModel]


class ApplyPricingResponse(BaseModel):
    upload_id: str
    total_deliveries: int
    updated_deliveries: int
    non_priced: int
    summary: BillingSummaryResponse
