from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


Cadence = Literal["weekly", "biweekly", "monthly"]


# Provider boundary


class AccountSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    account_id: str = Field(..., min_length=1)
    name: str
    mask: Optional[str] = None
    type: str = "other"
    subtype: Optional[str] = None
    current_balance: Optional[float] = None
    available_balance: Optional[float] = None
    iso_currency_code: Optional[str] = None
    unofficial_currency_code: Optional[str] = None


class TransactionSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transaction_id: str = Field(..., min_length=1)
    account_id: str
    amount: float
    date: date
    authorized_date: Optional[date] = None
    pending: bool = False
    pending_transaction_id: Optional[str] = None
    payment_channel: Optional[str] = None
    name: str = ""
    merchant_name: Optional[str] = None
    primary_category: Optional[str] = None
    detailed_category: Optional[str] = None
    iso_currency_code: Optional[str] = None
    unofficial_currency_code: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class RemovedTransaction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transaction_id: str


class TransactionDelta(BaseModel):
    added: list[TransactionSnapshot] = Field(default_factory=list)
    modified: list[TransactionSnapshot] = Field(default_factory=list)
    removed: list[RemovedTransaction] = Field(default_factory=list)
    next_cursor: str
    has_more: bool = False


class LinkMetadata(BaseModel):
    institution_id: Optional[str] = None
    institution_name: Optional[str] = None


# Sync results


class SyncStats(BaseModel):
    added: int = 0
    modified: int = 0
    removed: int = 0


class SyncFailure(BaseModel):
    link_id: int
    kind: str
    message: str
    stats: SyncStats


class SyncSummary(BaseModel):
    synced_links: int = 0
    total_added: int = 0
    total_modified: int = 0
    total_removed: int = 0
    failures: list[SyncFailure] = Field(default_factory=list)


class SyncRequest(BaseModel):
    link_id: Optional[int] = None


# Ledger reads


class LinkOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_link_id: str
    institution_id: Optional[str]
    institution_name: Optional[str]
    created_at: datetime
    updated_at: datetime
    last_synced_at: Optional[datetime]


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_account_id: str
    link_id: int
    name: str
    mask: Optional[str]
    type: str
    subtype: Optional[str]
    current_balance: float
    available_balance: Optional[float]
    iso_currency_code: Optional[str]
    unofficial_currency_code: Optional[str]


class TransactionOut(BaseModel):
    id: int
    external_transaction_id: str
    account_id: int
    account_name: str
    account_mask: Optional[str]
    account_type: str
    amount: float
    date: date
    authorized_date: Optional[date]
    pending: bool
    payment_channel: Optional[str]
    name: str
    merchant_name: Optional[str]
    primary_category: Optional[str]
    detailed_category: Optional[str]


class TransactionQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=200)
    account_id: Optional[int] = None
    category: Optional[str] = Field(default=None, min_length=1)
    start: Optional[date] = None
    end: Optional[date] = None


class TransactionPage(BaseModel):
    page: int
    page_size: int
    total_count: int
    transactions: list[TransactionOut]


# Subscriptions


class DetectedSubscription(BaseModel):
    merchant: str
    merchant_key: str
    cadence: Cadence
    average_amount: float
    estimated_monthly_cost: float
    last_charge_date: date
    next_expected_charge_date: date
    confidence: float
    charge_count: int


class SubscriptionOverview(BaseModel):
    subscriptions: list[DetectedSubscription]
    estimated_monthly_cost: float
    estimated_yearly_cost: float


class CancellationRequest(BaseModel):
    merchant_names: list[str] = Field(..., min_length=1)


class CancellationSimulationResult(BaseModel):
    merchants: list[str]
    monthly_savings: float
    yearly_savings: float


# Dashboard


class AccountTotals(BaseModel):
    assets: float
    liabilities: float
    net_worth: float
    cash: float
    investments: float
    debt: float


class CreditUtilization(BaseModel):
    # None means no credit limit is known; it is never reported as zero.
    utilization_pct: Optional[float]
    revolving_balance: float


class BurnRate(BaseModel):
    avg_daily_outflow: float
    projected_30d_outflow: float


class CashFlow(BaseModel):
    month_income: float
    month_spend: float
    month_net: float
    previous_month_spend: float
    spend_change_pct: Optional[float]
    avg_daily_outflow: float
    projected_30d_outflow: float


class CategoryBreakdown(BaseModel):
    category: str
    amount: float
    transaction_count: int


class SubscriptionSummary(BaseModel):
    detected_count: int
    estimated_monthly_total: float


class DashboardSummary(BaseModel):
    totals: AccountTotals
    cash_flow: CashFlow
    subscriptions: SubscriptionSummary
    credit: CreditUtilization
    top_spending_categories: list[CategoryBreakdown]
    accounts_count: int


# Demo data


class DemoSeedIn(BaseModel):
    reset_existing: bool = False


class DemoSeedResult(BaseModel):
    inserted_transactions: int
    inserted_accounts: int
    skipped: bool
