"""
Shared data model.

Records exchanged between the calculators and with the data collaborator
that supplies facility financials.
"""

from enum import Enum
from typing import List, Optional
from datetime import date
from pydantic import BaseModel, ConfigDict, Field

# Ordered per-period net cash flows; index 0 is the initial outlay.
CashFlowSeries = List[float]


class AssetType(str, Enum):
    """Healthcare facility asset classes."""

    SNF = "SNF"  # Skilled nursing
    ALF = "ALF"  # Assisted living
    ILF = "ILF"  # Independent living


class FacilityMetrics(BaseModel):
    """Immutable operating snapshot of a single facility."""

    facility_id: str
    name: str
    asset_type: AssetType = AssetType.SNF
    beds: int = Field(gt=0)
    occupancy: float = Field(default=0.85, ge=0, le=1.5)

    revenue: float = 0.0
    expenses: float = 0.0
    noi: float
    ebitdar: float

    current_rent: Optional[float] = None
    state: Optional[str] = None
    city: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class MonthlyPaymentRow(BaseModel):
    """One monthly sub-period of a loan."""

    period: int
    period_date: Optional[date] = None
    beginning_balance: float
    payment: float
    interest: float
    principal: float
    ending_balance: float
    rate: float


class LoanScheduleRow(BaseModel):
    """One loan year, rolled up from its twelve monthly sub-periods."""

    year: int
    period_date: Optional[date] = None
    beginning_balance: float
    payment: float
    principal: float
    interest: float
    ending_balance: float
    rate: float
