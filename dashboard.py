from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from ledger import LedgerStore
from models import LIABILITY_KINDS, AccountKind
from numeric import round_money, total
from periods import current_month, local_today, previous_month
from schemas import (
    AccountTotals,
    BurnRate,
    CashFlow,
    CategoryBreakdown,
    CreditUtilization,
    DashboardSummary,
    SubscriptionSummary,
)
from subscriptions import SubscriptionService

UNCATEGORIZED = "OTHER"


@dataclass(frozen=True)
class Balance:
    type: str
    current: float
    available: Optional[float] = None

    @property
    def kind(self) -> str:
        return (self.type or "").lower()


@dataclass(frozen=True)
class Flow:
    date: date
    amount: float
    category: Optional[str] = None


def account_totals(balances: Sequence[Balance]) -> AccountTotals:
    assets: list[float] = []
    liabilities: list[float] = []
    cash: list[float] = []
    investments: list[float] = []

    for balance in balances:
        if balance.kind in LIABILITY_KINDS:
            liabilities.append(max(balance.current, 0.0))
            continue

        if balance.current >= 0:
            assets.append(balance.current)
        else:
            liabilities.append(abs(balance.current))

        if balance.kind == AccountKind.depository.value:
            cash.append(max(balance.current, 0.0))
        elif balance.kind == AccountKind.investment.value:
            investments.append(max(balance.current, 0.0))

    total_assets = total(assets)
    total_liabilities = total(liabilities)
    return AccountTotals(
        assets=round_money(total_assets),
        liabilities=round_money(total_liabilities),
        net_worth=round_money(total_assets - total_liabilities),
        cash=round_money(total(cash)),
        investments=round_money(total(investments)),
        debt=round_money(total_liabilities),
    )


def credit_utilization(balances: Sequence[Balance]) -> CreditUtilization:
    credit = [b for b in balances if b.kind == AccountKind.credit.value]
    revolving = [max(b.current, 0.0) for b in credit]
    limits = [
        max(b.current, 0.0) + b.available for b in credit if b.available is not None
    ]
    revolving_balance = total(revolving)
    total_limit = total(limits)
    utilization = None
    if limits and total_limit > 0:
        utilization = round_money(revolving_balance / total_limit * 100)
    return CreditUtilization(
        utilization_pct=utilization, revolving_balance=round_money(revolving_balance)
    )


def forecast_burn_rate(flows: Sequence[Flow]) -> BurnRate:
    """Linear extrapolation of the observed daily outflow.

    No seasonality: the average over the observed span is projected over the
    next 30 days.
    """
    if not flows:
        return BurnRate(avg_daily_outflow=0.0, projected_30d_outflow=0.0)
    dates = [flow.date for flow in flows]
    observed_days = max(1, (max(dates) - min(dates)).days + 1)
    avg_daily = total(flow.amount for flow in flows if flow.amount > 0) / observed_days
    return BurnRate(
        avg_daily_outflow=round_money(avg_daily),
        projected_30d_outflow=round_money(avg_daily * 30),
    )


def cash_flow(flows: Sequence[Flow], today: date) -> CashFlow:
    this_month = current_month(today)
    last_month = previous_month(today)
    current = [flow for flow in flows if flow.date >= this_month.start]
    previous = [flow for flow in flows if last_month.contains(flow.date)]

    spend = total(flow.amount for flow in current if flow.amount > 0)
    income = total(abs(flow.amount) for flow in current if flow.amount < 0)
    previous_spend = total(flow.amount for flow in previous if flow.amount > 0)

    spend_change_pct = None
    if previous_spend > 0:
        spend_change_pct = round_money((spend - previous_spend) / previous_spend * 100)

    month_income = round_money(income)
    month_spend = round_money(spend)
    burn = forecast_burn_rate(current)
    return CashFlow(
        month_income=month_income,
        month_spend=month_spend,
        # Derived from the exposed figures so income - spend == net as shown.
        month_net=round_money(month_income - month_spend),
        previous_month_spend=round_money(previous_spend),
        spend_change_pct=spend_change_pct,
        avg_daily_outflow=burn.avg_daily_outflow,
        projected_30d_outflow=burn.projected_30d_outflow,
    )


def top_categories(
    flows: Sequence[Flow], today: date, limit: int = 5
) -> list[CategoryBreakdown]:
    start = current_month(today).start
    amounts: dict[str, list[float]] = {}
    for flow in flows:
        if flow.date < start or flow.amount <= 0:
            continue
        amounts.setdefault(flow.category or UNCATEGORIZED, []).append(flow.amount)

    breakdown = [
        CategoryBreakdown(
            category=category,
            amount=round_money(total(values)),
            transaction_count=len(values),
        )
        for category, values in amounts.items()
    ]
    breakdown.sort(key=lambda item: (-item.amount, item.category))
    return breakdown[:limit]


class DashboardService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id
        self.ledger = LedgerStore(session, user_id)

    def summary(self, today: Optional[date] = None) -> DashboardSummary:
        today = today or local_today()
        accounts = self.ledger.list_accounts()
        balances = [
            Balance(
                type=account.type,
                current=account.current_balance,
                available=account.available_balance,
            )
            for account in accounts
        ]
        flows = [
            Flow(date=txn.date, amount=txn.amount, category=txn.primary_category)
            for txn in self.ledger.posted_since(previous_month(today).start)
        ]
        subscriptions = SubscriptionService(self.session, self.user_id).detect(today)

        return DashboardSummary(
            totals=account_totals(balances),
            cash_flow=cash_flow(flows, today),
            subscriptions=SubscriptionSummary(
                detected_count=len(subscriptions),
                estimated_monthly_total=round_money(
                    total(sub.estimated_monthly_cost for sub in subscriptions)
                ),
            ),
            credit=credit_utilization(balances),
            top_spending_categories=top_categories(flows, today),
            accounts_count=len(accounts),
        )
