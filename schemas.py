import datetime as dt
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import AccountType, ReviewStatus


def _as_day_string(value: object) -> object:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip()[:10]
    return value


class TransactionRecord(BaseModel):
    """One aggregator transaction as held in the local ledger.

    ``amount`` follows the aggregator convention: negative is money received,
    positive is money spent. ``date`` is a ``YYYY-MM-DD`` day string and is
    compared as a string.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    plaid_transaction_id: Optional[str] = None
    account_id: str = ""
    entity_id: Optional[str] = None
    tenant_id: Optional[str] = None
    amount: Optional[float] = 0.0
    iso_currency_code: Optional[str] = None
    date: str
    authorized_date: Optional[str] = None
    merchant_name: Optional[str] = None
    name: Optional[str] = None
    category: Optional[list[str]] = None
    pfc_primary: Optional[str] = None
    pfc_detailed: Optional[str] = None
    coa_keywords: Optional[str] = None
    categorization_source: Optional[str] = None
    categorized_at: Optional[datetime] = None
    institution_name: Optional[str] = None
    pending: bool = False
    review_status: Optional[ReviewStatus] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    @field_validator("date", "authorized_date", mode="before")
    @classmethod
    def _normalize_day(cls, value: object) -> object:
        return _as_day_string(value)

    @property
    def signed_amount(self) -> float:
        return float(self.amount or 0.0)

    @property
    def is_income(self) -> bool:
        return self.signed_amount < 0


class AccountRecord(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    plaid_account_id: str
    name: str = ""
    display_name: Optional[str] = None
    mask: Optional[str] = None
    type: AccountType = AccountType.other
    subtype: Optional[str] = None
    balance_current: Optional[float] = None
    institution_name: Optional[str] = None
    entity_id: Optional[str] = None

    @property
    def label(self) -> str:
        if self.display_name:
            return self.display_name
        if self.mask:
            return f"{self.name} ****{self.mask}"
        return self.name


class MonthlyDatum(BaseModel):
    period: str
    month: str
    revenue: int
    expenses: int
    profit: int


class CategoryDatum(BaseModel):
    category: str
    amount: int
    percentage: int


class CashFlowDatum(BaseModel):
    period: str
    month: str
    inflow: int
    outflow: int
    net: int


class KpiMetrics(BaseModel):
    total_revenue: int = 0
    total_expenses: int = 0
    net_profit: int = 0
    transaction_count: int = 0
    avg_transaction_size: int = 0


class MonthComparison(BaseModel):
    period: str
    month: str
    revenue: int
    expenses: int
    profit: int
    revenue_change: float
    expenses_change: float
    profit_change: float


class AggregatedData(BaseModel):
    monthly_revenue: list[MonthlyDatum] = Field(default_factory=list)
    expenses_by_category: list[CategoryDatum] = Field(default_factory=list)
    cash_flow: list[CashFlowDatum] = Field(default_factory=list)
    kpi_metrics: KpiMetrics = Field(default_factory=KpiMetrics)


class ReceiptMatch(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    vendor: Optional[str] = None
    amount: Optional[float] = None
    date: Optional[str] = None
    match_status: str = "unmatched"
    match_confidence: float = 0.0
    ocr_confidence: float = 0.0
    matched_transaction_id: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def _normalize_day(cls, value: object) -> object:
        return _as_day_string(value)


class BulkAction(str, Enum):
    categorize = "categorize"
    flag = "flag"
    approve = "approve"
    export = "export"


class BulkActionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ids: list[str] = Field(..., min_length=1)
    action: BulkAction
    category: Optional[str] = Field(default=None, max_length=200)


class CategoryChangeIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: str = Field(..., min_length=1, max_length=200)


class ReviewIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: ReviewStatus
    notes: Optional[str] = Field(default=None, max_length=2000)


class TagIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: Optional[str] = Field(None, max_length=9)
