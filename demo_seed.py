from __future__ import annotations

import logging
import random
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from credentials import AesGcmCredentialStore
from ledger import LedgerStore
from periods import local_today
from schemas import AccountSnapshot, DemoSeedResult, TransactionSnapshot

logger = logging.getLogger(__name__)

DEMO_DAYS = 120
DEMO_INSTITUTION = "Demo Community Bank"

CATEGORIES = {
    "income": ("INCOME", "INCOME_WAGES"),
    "rent": ("RENT_AND_UTILITIES", "RENT_AND_UTILITIES_RENT"),
    "groceries": ("FOOD_AND_DRINK", "FOOD_AND_DRINK_GROCERIES"),
    "dining": ("FOOD_AND_DRINK", "FOOD_AND_DRINK_RESTAURANT"),
    "utility": ("RENT_AND_UTILITIES", "RENT_AND_UTILITIES_ELECTRIC"),
    "streaming": ("ENTERTAINMENT", "ENTERTAINMENT_TV_AND_MOVIES"),
    "music": ("ENTERTAINMENT", "ENTERTAINMENT_MUSIC_AND_AUDIO"),
    "gym": ("PERSONAL_CARE", "PERSONAL_CARE_GYM_AND_FITNESS"),
    "transfer_out": ("TRANSFER_OUT", "TRANSFER_OUT_INVESTMENT_AND_RETIREMENT_FUNDS"),
    "transfer_in": ("TRANSFER_IN", "TRANSFER_IN_INVESTMENT_AND_RETIREMENT_FUNDS"),
}


def _stable_amount(seed: int, base: float, spread: float) -> float:
    return float(base + round(random.Random(seed).random() * spread))


class DemoSeedService:
    """Fills a user's ledger with a deterministic demo link, accounts and history."""

    def __init__(
        self, session: Session, user_id: str, credentials: AesGcmCredentialStore
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.credentials = credentials
        self.ledger = LedgerStore(session, user_id)

    def seed(
        self, reset_existing: bool = False, today: Optional[date] = None
    ) -> DemoSeedResult:
        today = today or local_today()
        link = self.ledger.create_link(
            f"demo_link_{self.user_id}",
            self.credentials.encrypt(f"demo_access_token_{self.user_id}"),
            institution_id="demo_sandbox",
            institution_name=DEMO_INSTITUTION,
        )

        if reset_existing:
            self.ledger.clear_link(link)
        elif self.ledger.count_transactions(link) > 0:
            self.session.commit()
            return DemoSeedResult(
                inserted_transactions=0, inserted_accounts=0, skipped=True
            )

        accounts = {
            snapshot.account_id: self.ledger.upsert_account(link, snapshot)
            for snapshot in self._account_snapshots()
        }
        transactions = self._transaction_snapshots(today)
        for snapshot in transactions:
            self.ledger.upsert_transaction(link, accounts[snapshot.account_id], snapshot)
        self.ledger.mark_synced(link)
        self.session.commit()

        logger.info(
            f"demo_seed: user_id={self.user_id} accounts={len(accounts)} "
            f"transactions={len(transactions)}"
        )
        return DemoSeedResult(
            inserted_transactions=len(transactions),
            inserted_accounts=len(accounts),
            skipped=False,
        )

    def _account_id(self, key: str) -> str:
        return f"demo_{self.user_id}_{key}"

    def _account_snapshots(self) -> list[AccountSnapshot]:
        return [
            AccountSnapshot(
                account_id=self._account_id("checking"),
                name="Everyday Checking",
                mask="0001",
                type="depository",
                subtype="checking",
                current_balance=7485.24,
                available_balance=7485.24,
                iso_currency_code="USD",
            ),
            AccountSnapshot(
                account_id=self._account_id("credit"),
                name="Rewards Card",
                mask="9001",
                type="credit",
                subtype="credit card",
                current_balance=1843.32,
                available_balance=5656.68,
                iso_currency_code="USD",
            ),
            AccountSnapshot(
                account_id=self._account_id("investment"),
                name="ETF Portfolio",
                mask="4301",
                type="investment",
                subtype="brokerage",
                current_balance=15240.45,
                available_balance=None,
                iso_currency_code="USD",
            ),
        ]

    def _draft(
        self,
        key: str,
        day: int,
        today: date,
        *,
        account: str,
        amount: float,
        name: str,
        merchant: str,
        category: str,
        channel: str = "online",
    ) -> TransactionSnapshot:
        txn_date = today - timedelta(days=day)
        primary, detailed = CATEGORIES[category]
        return TransactionSnapshot(
            transaction_id=f"demo_tx_{self.user_id}_{key}_{day}",
            account_id=self._account_id(account),
            amount=amount,
            date=txn_date,
            authorized_date=txn_date,
            pending=False,
            payment_channel=channel,
            name=name,
            merchant_name=merchant,
            primary_category=primary,
            detailed_category=detailed,
            iso_currency_code="USD",
            raw={"source": "demo-seed", "date": txn_date.isoformat()},
        )

    def _transaction_snapshots(self, today: date) -> list[TransactionSnapshot]:
        drafts: list[TransactionSnapshot] = []
        for day in range(DEMO_DAYS):
            seed = day + 41
            if day % 14 == 0:
                drafts.append(
                    self._draft(
                        "income", day, today, account="checking", amount=-3650.0,
                        name="Payroll Deposit", merchant="Acme Technologies Payroll",
                        category="income", channel="other",
                    )
                )
            if day % 30 == 2:
                drafts.append(
                    self._draft(
                        "rent", day, today, account="checking", amount=1725.0,
                        name="Apartment Rent", merchant="Lakeside Apartments",
                        category="rent",
                    )
                )
            if day % 7 == 3:
                drafts.append(
                    self._draft(
                        "grocery", day, today, account="credit",
                        amount=_stable_amount(seed, 95, 75),
                        name="Grocery Purchase", merchant="Whole Foods",
                        category="groceries", channel="in store",
                    )
                )
            if day % 5 == 1:
                drafts.append(
                    self._draft(
                        "dining", day, today, account="credit",
                        amount=_stable_amount(seed * 3, 22, 58),
                        name="Restaurant", merchant="Urban Bites",
                        category="dining", channel="in store",
                    )
                )
            if day % 30 == 6:
                drafts.append(
                    self._draft(
                        "electric", day, today, account="checking", amount=148.45,
                        name="Electric Bill", merchant="City Energy",
                        category="utility",
                    )
                )
            if day % 30 == 8:
                drafts.append(
                    self._draft(
                        "netflix", day, today, account="credit", amount=15.99,
                        name="Netflix Subscription", merchant="Netflix",
                        category="streaming",
                    )
                )
            if day % 30 == 10:
                drafts.append(
                    self._draft(
                        "spotify", day, today, account="credit", amount=11.99,
                        name="Spotify Premium", merchant="Spotify",
                        category="music",
                    )
                )
            if day % 30 == 12:
                drafts.append(
                    self._draft(
                        "gym", day, today, account="credit", amount=49.0,
                        name="Gym Membership", merchant="FitLife Gym",
                        category="gym",
                    )
                )
            if day % 30 == 13:
                drafts.append(
                    self._draft(
                        "invest", day, today, account="checking", amount=350.0,
                        name="Investment Transfer", merchant="Brokerage Transfer",
                        category="transfer_out",
                    )
                )
                drafts.append(
                    self._draft(
                        "invest_credit", day, today, account="investment",
                        amount=-350.0, name="Investment Contribution",
                        merchant="Brokerage Transfer", category="transfer_in",
                    )
                )
        return drafts
