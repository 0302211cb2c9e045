"""Domain models for uploads, clients, legs and price lists."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class UploadStatus(str, Enum):
    READY = "ready"
    PENDING_VALIDATION = "pending_validation"
    PROCESSING = "processing"
    DISTANCES_DONE = "distances_done"
    FAILED = "failed"


class LegStatus(str, Enum):
    DISTANCE_OK = "DISTANCE_OK"
    ADDRESS_NOT_FOUND = "ADDRESS_NOT_FOUND"
    CALCULATION_ERROR = "CALCULATION_ERROR"


class CacheStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


@dataclass(slots=True)
class Upload:
    id: str
    owner_id: Optional[str]
    status: UploadStatus
    filename: Optional[str] = None
    warehouse_address: Optional[str] = None
    total_legs: int = 0
    total_clients: int = 0
    total_amount: float = 0.0
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "Upload":
        return cls(
            id=str(row["id"]),
            owner_id=row.get("user_id"),
            status=UploadStatus(row.get("status") or UploadStatus.READY.value),
            filename=row.get("filename"),
            warehouse_address=row.get("warehouse_address"),
            total_legs=int(row.get("total_deliveries") or 0),
            total_clients=int(row.get("total_clients") or 0),
            total_amount=float(row.get("total_amount") or 0.0),
            created_at=row.get("created_at"),
        )


@dataclass(slots=True)
class LegInput:
    """One validated spreadsheet row handed to the orchestrator."""

    client_name: str
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


@dataclass(slots=True)
class ClientGroup:
    name: str
    address: str
    postal_code: Optional[str]
    city: Optional[str]
    country: Optional[str]
    legs: list[tuple[LegInput, str]] = field(default_factory=list)


@dataclass(slots=True)
class RouteCacheEntry:
    origin_norm: str
    destination_norm: str
    status: CacheStatus
    distance_meters: Optional[float] = None
    duration_seconds: Optional[float] = None
    error_message: Optional[str] = None


@dataclass(slots=True)
class DistanceResult:
    km: float
    from_cache: bool


@dataclass(slots=True, frozen=True)
class PricingTier:
    range_start: float
    range_end: Optional[float]
    unit_price: float
    tax_rate: float = 0.0


@dataclass(slots=True)
class PriceCalculation:
    price_ht: float
    tax_amount: float
    price_ttc: float
    tax_rate: float
    applied_tier: str
