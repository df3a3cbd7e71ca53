"""Recurring-charge detection.

Charges are grouped by a normalized merchant key, the mean gap between
consecutive charges is matched against fixed cadence bands, and groups whose
amounts swing too much are dropped. Results are recomputed on every call.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from config import get_settings
from ledger import LedgerStore
from numeric import clamp, mean, pstdev, round_money, total
from periods import local_today
from schemas import (
    CancellationSimulationResult,
    DetectedSubscription,
    SubscriptionOverview,
)

MAX_AMOUNT_VOLATILITY = 0.35
AMOUNT_WEIGHT = 0.55
INTERVAL_WEIGHT = 0.45

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class CadenceBand:
    name: str
    interval_days: int
    tolerance: int
    monthly_factor: float

    def matches(self, mean_gap: float) -> bool:
        return abs(mean_gap - self.interval_days) <= self.tolerance


# Checked in order; the first band containing the mean gap wins.
CADENCE_BANDS: tuple[CadenceBand, ...] = (
    CadenceBand("weekly", 7, 2, 4.33),
    CadenceBand("biweekly", 14, 3, 2.17),
    CadenceBand("monthly", 30, 6, 1.0),
)


@dataclass(frozen=True)
class Charge:
    date: date
    amount: float
    label: str


def normalize_merchant_key(value: str) -> str:
    return _NON_ALNUM.sub(" ", (value or "").lower()).strip()


def classify_cadence(gaps: Sequence[int]) -> Optional[CadenceBand]:
    if not gaps:
        return None
    mean_gap = mean(gaps)
    for band in CADENCE_BANDS:
        if band.matches(mean_gap):
            return band
    return None


def _group_charges(charges: Iterable[Charge]) -> dict[str, list[Charge]]:
    groups: dict[str, list[Charge]] = {}
    for charge in charges:
        label = (charge.label or "").strip()
        key = normalize_merchant_key(label)
        if not key:
            continue
        groups.setdefault(key, []).append(Charge(charge.date, charge.amount, label))
    return groups


def _detect_group(key: str, group: list[Charge]) -> Optional[DetectedSubscription]:
    # sorted() is stable, so same-day charges keep their input order.
    ordered = sorted(group, key=lambda charge: charge.date)
    gaps = [
        (current.date - previous.date).days
        for previous, current in zip(ordered, ordered[1:])
    ]
    band = classify_cadence(gaps)
    if band is None:
        return None

    amounts = [charge.amount for charge in ordered]
    amount_mean = mean(amounts)
    if amount_mean <= 0:
        return None
    amount_volatility = pstdev(amounts) / amount_mean
    if amount_volatility > MAX_AMOUNT_VOLATILITY:
        return None

    interval_volatility = pstdev(gaps) / band.interval_days if len(gaps) > 1 else 0.0
    confidence = clamp(
        1 - AMOUNT_WEIGHT * amount_volatility - INTERVAL_WEIGHT * interval_volatility
    )
    last_charge = ordered[-1].date
    return DetectedSubscription(
        merchant=ordered[0].label,
        merchant_key=key,
        cadence=band.name,
        average_amount=round_money(amount_mean),
        estimated_monthly_cost=round_money(amount_mean * band.monthly_factor),
        last_charge_date=last_charge,
        next_expected_charge_date=last_charge + timedelta(days=band.interval_days),
        confidence=round_money(confidence, 3),
        charge_count=len(ordered),
    )


def detect_subscriptions(charges: Iterable[Charge]) -> list[DetectedSubscription]:
    """Classify groups of outflow charges as recurring subscriptions.

    Callers pass only posted outflows from the lookback window. Output is
    ordered by monthly-equivalent cost, highest first.
    """
    detected: list[DetectedSubscription] = []
    groups = _group_charges(charges)
    for key in sorted(groups):
        group = groups[key]
        if len(group) < 2:
            continue
        subscription = _detect_group(key, group)
        if subscription is not None:
            detected.append(subscription)
    detected.sort(key=lambda sub: (-sub.estimated_monthly_cost, sub.merchant_key))
    return detected


def simulate_cancellation(
    subscriptions: Sequence[DetectedSubscription], merchant_names: Iterable[str]
) -> CancellationSimulationResult:
    wanted = {normalize_merchant_key(name) for name in merchant_names}
    wanted.discard("")
    matched = [sub for sub in subscriptions if sub.merchant_key in wanted]
    monthly_savings = round_money(total(sub.estimated_monthly_cost for sub in matched))
    return CancellationSimulationResult(
        merchants=[sub.merchant for sub in matched],
        monthly_savings=monthly_savings,
        yearly_savings=round_money(monthly_savings * 12),
    )


class SubscriptionService:
    def __init__(
        self, session: Session, user_id: str, lookback_days: Optional[int] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.ledger = LedgerStore(session, user_id)
        self.lookback_days = lookback_days or get_settings().subscription_lookback_days

    def charges(self, today: Optional[date] = None) -> list[Charge]:
        today = today or local_today()
        start = today - timedelta(days=self.lookback_days)
        return [
            Charge(txn.date, txn.amount, txn.merchant_label)
            for txn in self.ledger.outflows_since(start)
        ]

    def detect(self, today: Optional[date] = None) -> list[DetectedSubscription]:
        return detect_subscriptions(self.charges(today))

    def overview(self, today: Optional[date] = None) -> SubscriptionOverview:
        subscriptions = self.detect(today)
        monthly = total(sub.estimated_monthly_cost for sub in subscriptions)
        return SubscriptionOverview(
            subscriptions=subscriptions,
            estimated_monthly_cost=round_money(monthly),
            estimated_yearly_cost=round_money(monthly * 12),
        )

    def simulate_cancellation(
        self, merchant_names: Iterable[str], today: Optional[date] = None
    ) -> CancellationSimulationResult:
        return simulate_cancellation(self.detect(today), merchant_names)
