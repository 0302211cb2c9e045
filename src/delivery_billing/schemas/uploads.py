"""Upload request/response schemas."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.domain import LegInput


class DeliveryRowModel(BaseModel):
    """One spreadsheet row as produced by the external parser."""

    client_name: str = ""
    number: str = ""
    street: str = ""
    postal_code: str = ""
    city: str = ""
    country: str = ""
    date: Optional[str] = None
    warehouse: Optional[str] = None
    warehouse_address: Optional[str] = None
    driver: Optional[str] = None
    task_id: Optional[str] = None
    service_type: Optional[str] = None
    status: Optional[str] = None

    @field_validator(
        "client_name",
        "number",
        "street",
        "postal_code",
        "city",
        "country",
        "date",
        "warehouse",
        "warehouse_address",
        "driver",
        "task_id",
        "service_type",
        "status",
        mode="before",
    )
    @classmethod
    def _cell_to_str(cls, value: Any) -> Any:
        """Spreadsheet cells may arrive as numbers (e.g. ``75002`` or ``12.0``)."""
        if isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        if isinstance(value, (int, float)):
            return str(value)
        return value

    def to_leg(self) -> LegInput:
        return LegInput(**self.model_dump())


class UploadCreateRequest(BaseModel):
    filename: Optional[str] = None
    warehouse_address: Optional[str] = Field(default=None, description="Default origin for every leg.")
    rows: List[DeliveryRowModel] = Field(..., min_length=1)


class UploadCreateResponse(BaseModel):
    upload_id: str
    total: int
    valid_count: int
    invalid_count: int
    needs_validation: bool


class UploadSummaryModel(BaseModel):
    id: str
    filename: Optional[str] = None
    status: str
    total_deliveries: int = 0
    total_clients: int = 0
    total_amount: float = 0.0
    created_at: Optional[str] = None


class UploadListResponse(BaseModel):
    uploads: List[UploadSummaryModel]


class InvalidAddressModel(BaseModel):
    id: str
    client_name: Optional[str] = None
    original_number: Optional[str] = None
    original_street: Optional[str] = None
    original_postal_code: Optional[str] = None
    original_city: Optional[str] = None
    original_country: Optional[str] = None
    full_address: Optional[str] = None
    issues: List[str] = Field(default_factory=list)


class InvalidAddressesResponse(BaseModel):
    upload_id: str
    invalid_count: int
    addresses: List[InvalidAddressModel]


class AddressCorrectionRequest(BaseModel):
    number: str = ""
    street: str = ""
    postal_code: str = ""
    city: str = ""
    country: str = ""


class AddressCorrectionResponse(BaseModel):
    success: bool
    issues: List[str] = Field(default_factory=list)
    remaining_invalid: int = 0
    all_valid: bool = False


class StartProcessingResponse(BaseModel):
    outcome: str
    upload_id: str
    message: str
    invalid_count: int = 0
    total_deliveries: int = 0


class ClientTotalsModel(BaseModel):
    id: str
    name: str
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    total_deliveries: int = 0
    total_amount_ht: float = 0.0
    total_amount_ttc: float = 0.0


class LegModel(BaseModel):
    id: str
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    task_id: Optional[str] = None
    service_type: Optional[str] = None
    delivery_date: Optional[str] = None
    origin_warehouse: Optional[str] = None
    origin_address: Optional[str] = None
    destination_address: Optional[str] = None
    distance_km: Optional[float] = None
    price_ht: Optional[float] = None
    price_ttc: Optional[float] = None
    tva_amount: Optional[float] = None
    tva_rate: Optional[float] = None
    applied_range: Optional[str] = None
    status: str
