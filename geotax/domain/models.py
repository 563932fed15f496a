"""
domain/models.py
──────────────────────────────────────────────────────────────────────────────
Pure domain objects — Pydantic models with no imports from adapters or ports.

These models are the lingua franca of the entire system:
  • adapters produce and consume them
  • services orchestrate them
  • interfaces (CLI, Streamlit) serialise them

Reference data (JurisdictionTax, TaxConfig) is frozen: it is loaded once at
startup and shared by every request and import thread.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# "Zero" datetime some clients send for an unset timestamp.
_ZERO_TIME = datetime(1, 1, 1)


# ── Enums ──────────────────────────────────────────────────────────────────────

class OrderStatus(str, Enum):
    """Outcome of jurisdiction resolution for an order."""
    COMPLETED     = "completed"      # a jurisdiction matched; tax applied
    OUT_OF_SCOPE  = "out_of_scope"   # no jurisdiction matched; zero tax


# ── Reference data ─────────────────────────────────────────────────────────────

class JurisdictionTaxBreakdown(BaseModel):
    """Per-level rates making up a composite rate."""

    model_config = ConfigDict(frozen=True)

    state:   float = 0.0
    county:  float = 0.0
    city:    float = 0.0
    special: float = 0.0


class JurisdictionTax(BaseModel):
    """Tax policy for one jurisdiction, keyed by its boundary NAME."""

    model_config = ConfigDict(frozen=True)

    composite_rate: float
    breakdown:      JurisdictionTaxBreakdown = Field(default_factory=JurisdictionTaxBreakdown)
    names:          tuple[str, ...] = ()
    code:           str = ""


class TaxConfig(BaseModel):
    """The jurisdictions.json document: name → JurisdictionTax."""

    model_config = ConfigDict(frozen=True)

    jurisdictions: dict[str, JurisdictionTax] = Field(default_factory=dict)


# ── Input ──────────────────────────────────────────────────────────────────────

class RawOrder(BaseModel):
    """Minimal parsed order, from a CSV row or a request body."""

    longitude: float
    latitude:  float
    subtotal:  float
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class OrderRequest(RawOrder):
    """Validated input for single-order creation."""

    longitude: float = Field(..., ge=-180, le=180)
    latitude:  float = Field(..., ge=-90, le=90)
    subtotal:  float = Field(..., ge=0)

    @field_validator("timestamp")
    @classmethod
    def timestamp_required(cls, v: datetime) -> datetime:
        if v.replace(tzinfo=None) == _ZERO_TIME:
            raise ValueError("timestamp is required")
        return v

    def to_raw(self) -> RawOrder:
        return RawOrder(**self.model_dump())


# ── Output ─────────────────────────────────────────────────────────────────────

class TaxRateBreakdown(BaseModel):
    """Rates applied to a priced order, copied from its JurisdictionTax."""

    state_rate:   float = 0.0
    county_rate:  float = 0.0
    city_rate:    float = 0.0
    special_rate: float = 0.0


class Order(BaseModel):
    """A classified, priced order.

    ``id`` stays 0 until the persistence layer assigns one (single-create
    path only; bulk imports never read ids back).
    """

    id:                 int = 0
    latitude:           float
    longitude:          float
    total_amount:       float
    tax_amount:         float = 0.0
    composite_tax_rate: float = 0.0
    breakdown:          TaxRateBreakdown = Field(default_factory=TaxRateBreakdown)
    jurisdictions:      list[str] = Field(default_factory=list)
    reporting_code:     str = ""
    status:             OrderStatus
    created_at:         datetime
    updated_at:         datetime

    def to_dict(self) -> dict:
        """Serialise to a plain dict (JSON-safe floats/strings)."""
        return self.model_dump(mode="json")


class ImportResult(BaseModel):
    """Aggregate outcome of one CSV import run."""

    processed:        int = 0
    failed:           int = 0
    completed:        int = 0
    out_of_scope:     int = 0
    batches_flushed:  int = 0
    batches_failed:   int = 0
    orders_persisted: int = 0
    timed_out:        bool = False
    read_error:       bool = False
    stopped:          bool = False
    elapsed_seconds:  float = 0.0

    @property
    def total_rows(self) -> int:
        return self.processed + self.failed

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


# ── Queries ────────────────────────────────────────────────────────────────────

class OrderFilters(BaseModel):
    """Filters, sorting and paging for listing stored orders."""

    status:           Optional[OrderStatus] = None
    reporting_code:   Optional[str] = None
    total_amount_min: Optional[float] = None
    total_amount_max: Optional[float] = None
    from_date:        Optional[datetime] = None
    to_date:          Optional[datetime] = None
    sort_by:    Literal["id", "created_at", "total_amount", "status"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    limit:  int = Field(50, ge=1, le=1000)
    offset: int = Field(0, ge=0)

    @field_validator("from_date", "to_date")
    @classmethod
    def dates_assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def check_ranges(self) -> "OrderFilters":
        if (
            self.total_amount_min is not None
            and self.total_amount_max is not None
            and self.total_amount_min > self.total_amount_max
        ):
            raise ValueError("total_amount_min must not exceed total_amount_max")
        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("from_date must not be after to_date")
        return self


class OrderList(BaseModel):
    """One page of stored orders plus the total matching count."""

    total:  int
    orders: list[Order]

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")
