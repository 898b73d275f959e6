"""Pydantic models for backend payloads and form state."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Users & session
# ---------------------------------------------------------------------------

class Role(str, Enum):
    admin = "admin"
    user = "user"


class User(BaseModel):
    id: str
    email: str
    role: Role = Role.user

    @property
    def is_admin(self) -> bool:
        return self.role is Role.admin

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> User:
        """Build from ``/auth/users/me``; role lives under ``user_metadata``."""
        metadata = data.get("user_metadata") or {}
        role = metadata.get("role") if isinstance(metadata, dict) else None
        return cls(
            id=str(data.get("id", "")),
            email=str(data.get("email", "")),
            role=Role.admin if role == "admin" else Role.user,
        )


class AdminUserRecord(BaseModel):
    id: str
    email: str
    created_at: dt.datetime | None = None
    last_sign_in_at: dt.datetime | None = None
    role: str = "user"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> AdminUserRecord:
        metadata = data.get("user_metadata") or {}
        return cls(
            id=str(data.get("id", "")),
            email=str(data.get("email", "")),
            created_at=data.get("created_at"),
            last_sign_in_at=data.get("last_sign_in_at"),
            role=str(metadata.get("role") or "user") if isinstance(metadata, dict) else "user",
        )


# ---------------------------------------------------------------------------
# Form line items
# ---------------------------------------------------------------------------

class LineItem(BaseModel):
    """One row of a fixed input catalog. Only ``raw_value`` ever changes."""
    code: str
    description: str = ""
    raw_value: str = ""

    @property
    def label(self) -> str:
        return self.description or f"Code {self.code}"


LIQUIDITY_ITEMS: tuple[LineItem, ...] = (
    LineItem(code="1010", description="Cash"),
    LineItem(code="1040", description="MLP Deposits HQLA1 Govt Bonds"),
    LineItem(code="1060", description="SDebt Security Instruments"),
    LineItem(code="1078", description="MLP Deposits HQLA1 CMB/MBS"),
    LineItem(code="1079", description="MLP Deposits HQLA2B"),
    LineItem(code="1100", description="Total Assets"),
    LineItem(code="2050", description="Borrowings"),
    LineItem(code="2180", description="Member Deposits"),
    LineItem(code="2255", description=""),
    LineItem(code="2295", description=""),
)

USD_EXPOSURE_ITEMS: tuple[LineItem, ...] = (
    LineItem(code="totalAssets", description="Total Assets"),
    LineItem(code="totalLiabilities", description="Total Liabilities"),
    LineItem(code="totalCapital", description="Total Capital"),
)


# ---------------------------------------------------------------------------
# Files & forecasts
# ---------------------------------------------------------------------------

class ProcessingStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    unknown = "unknown"


class UploadedFileRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    filename: str = Field(default="", alias="original_filename")
    currency: str | None = None
    upload_timestamp: dt.datetime
    processing_status: ProcessingStatus = ProcessingStatus.unknown
    processing_message: str | None = None
    forecast_date: dt.datetime | None = None

    @field_validator("processing_status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> ProcessingStatus:
        try:
            return ProcessingStatus(str(v).lower())
        except ValueError:
            return ProcessingStatus.unknown


class ForecastPoint(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: dt.date = Field(alias="Date")
    forecasted_amount: float | None = Field(default=None, alias="Forecasted Amount")
    forecasted_balance: float | None = Field(default=None, alias="Forecasted Cash Balance")
    actual_balance: float | None = Field(default=None, alias="Actual Cash Balance")


class SummaryPoint(BaseModel):
    """One row of ``/summary-output/usd``. Dates stay strings until filtered."""
    model_config = ConfigDict(populate_by_name=True)

    reporting_date: str | None = Field(default=None, alias="Reporting Date")
    previous_balance: float | None = Field(default=None, alias="Previous Balance")
    opening_balance: float | None = Field(default=None, alias="Opening Balance")
    net_activity: float | None = Field(default=None, alias="Net Activity")
    closing_balance: float | None = Field(default=None, alias="Closing Balance")
    currency: str | None = None


# ---------------------------------------------------------------------------
# Derived & saved ratios
# ---------------------------------------------------------------------------

class RatioResult(BaseModel):
    """Preview of the liquidity ratios. ``N/A`` means zero denominator."""
    reporting_date: str
    statutory_ratio: str
    core_ratio: str
    total_ratio: str


class ExposurePosition(str, Enum):
    long = "Long"
    short = "Short"
    neutral = "Neutral"


class ExposureResult(BaseModel):
    reporting_date: str
    usd_exposure: float
    position: ExposurePosition


class SavedLiquidityRatio(BaseModel):
    reporting_date: str
    statutory_ratio: float | None = None
    core_ratio: float | None = None
    total_ratio: float | None = None
    created_at: dt.datetime | None = None


class SavedUsdExposure(BaseModel):
    reporting_date: str
    usd_exposure: float | None = None
    created_at: dt.datetime | None = None


class ChartPoint(BaseModel):
    date: str
    balance: float
