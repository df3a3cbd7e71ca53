from __future__ import annotations

import json
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, joinedload

from errors import InconsistentReference, NotFound
from models import PLACEHOLDER_ACCOUNT_NAME, Account, AccountKind, Link, Transaction
from schemas import (
    AccountSnapshot,
    TransactionOut,
    TransactionPage,
    TransactionQuery,
    TransactionSnapshot,
)


class LedgerStore:
    """Keyed storage for links, accounts and transactions of one user.

    Accounts and transactions are keyed by the provider's external ids. Writes
    are flushed but not committed; callers decide the commit boundary.
    """

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    # Links

    def create_link(
        self,
        external_link_id: str,
        access_token_encrypted: str,
        *,
        institution_id: Optional[str] = None,
        institution_name: Optional[str] = None,
    ) -> Link:
        existing = self.session.scalar(
            select(Link).where(Link.external_link_id == external_link_id)
        )
        if existing and existing.user_id != self.user_id:
            raise InconsistentReference(
                f"Link {external_link_id} belongs to another user"
            )
        link = existing or Link(user_id=self.user_id, external_link_id=external_link_id)
        link.access_token_encrypted = access_token_encrypted
        link.institution_id = institution_id
        link.institution_name = institution_name
        if existing is None:
            self.session.add(link)
        self.session.flush()
        return link

    def get_link(self, link_id: int) -> Link:
        link = self.session.get(Link, link_id)
        if not link or link.user_id != self.user_id:
            raise NotFound("Link not found")
        return link

    def list_links(self) -> list[Link]:
        stmt = select(Link).where(Link.user_id == self.user_id).order_by(Link.id)
        return list(self.session.scalars(stmt).all())

    def advance_cursor(self, link: Link, cursor: Optional[str]) -> None:
        link.cursor = cursor
        self.session.flush()

    def mark_synced(self, link: Link, at: Optional[datetime] = None) -> None:
        link.last_synced_at = at or datetime.utcnow()
        self.session.flush()

    # Accounts

    def _account_by_external_id(self, external_account_id: str) -> Optional[Account]:
        return self.session.scalar(
            select(Account).where(Account.external_account_id == external_account_id)
        )

    def _check_owner(self, row: Account | Transaction, label: str) -> None:
        if row.user_id != self.user_id:
            raise InconsistentReference(f"{label} belongs to another user")

    def upsert_account(self, link: Link, snapshot: AccountSnapshot) -> Account:
        account = self._account_by_external_id(snapshot.account_id)
        if account is None:
            account = Account(
                user_id=self.user_id,
                link_id=link.id,
                external_account_id=snapshot.account_id,
            )
            self.session.add(account)
        else:
            self._check_owner(account, f"Account {snapshot.account_id}")

        account.link_id = link.id
        account.name = snapshot.name
        account.mask = snapshot.mask
        account.type = snapshot.type
        account.subtype = snapshot.subtype
        account.current_balance = snapshot.current_balance or 0.0
        account.available_balance = snapshot.available_balance
        account.iso_currency_code = snapshot.iso_currency_code
        account.unofficial_currency_code = snapshot.unofficial_currency_code
        self.session.flush()
        return account

    def ensure_account(self, link: Link, external_account_id: str) -> Account:
        """Return the account for an external id, creating a placeholder if unseen."""
        if not external_account_id:
            raise InconsistentReference("Transaction has no account reference")
        account = self._account_by_external_id(external_account_id)
        if account is not None:
            self._check_owner(account, f"Account {external_account_id}")
            return account

        account = Account(
            user_id=self.user_id,
            link_id=link.id,
            external_account_id=external_account_id,
            name=PLACEHOLDER_ACCOUNT_NAME,
            type=AccountKind.other.value,
            current_balance=0.0,
        )
        self.session.add(account)
        self.session.flush()
        return account

    def list_accounts(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.type.asc(), Account.name.asc())
        )
        return list(self.session.scalars(stmt).all())

    # Transactions

    def upsert_transaction(
        self, link: Link, account: Account, snapshot: TransactionSnapshot
    ) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.external_transaction_id == snapshot.transaction_id
            )
        )
        if txn is None:
            txn = Transaction(
                user_id=self.user_id,
                link_id=link.id,
                external_transaction_id=snapshot.transaction_id,
            )
            self.session.add(txn)
        else:
            self._check_owner(txn, f"Transaction {snapshot.transaction_id}")

        txn.link_id = link.id
        txn.account_id = account.id
        txn.pending_transaction_id = snapshot.pending_transaction_id
        txn.amount = snapshot.amount
        txn.iso_currency_code = snapshot.iso_currency_code
        txn.unofficial_currency_code = snapshot.unofficial_currency_code
        txn.date = snapshot.date
        txn.authorized_date = snapshot.authorized_date
        txn.pending = snapshot.pending
        txn.payment_channel = snapshot.payment_channel
        txn.name = snapshot.name
        txn.merchant_name = snapshot.merchant_name
        txn.primary_category = snapshot.primary_category
        txn.detailed_category = snapshot.detailed_category
        txn.raw_json = json.dumps(snapshot.raw, default=str, sort_keys=True)
        self.session.flush()
        return txn

    def delete_transactions_by_external_id(
        self, link: Link, external_ids: Iterable[str]
    ) -> int:
        ids = sorted(set(external_ids))
        if not ids:
            return 0
        result = self.session.execute(
            delete(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.link_id == link.id,
                Transaction.external_transaction_id.in_(ids),
            )
        )
        self.session.flush()
        return int(result.rowcount or 0)

    def count_transactions(self, link: Link) -> int:
        return int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.user_id == self.user_id,
                    Transaction.link_id == link.id,
                )
            ).scalar_one()
        )

    def clear_link(self, link: Link) -> None:
        """Drop every account and transaction stored under a link."""
        self.session.execute(
            delete(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.link_id == link.id
            )
        )
        self.session.execute(
            delete(Account).where(
                Account.user_id == self.user_id, Account.link_id == link.id
            )
        )
        self.session.flush()

    def outflows_since(self, start: date) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.pending.is_(False),
                Transaction.amount > 0,
                Transaction.date >= start,
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def posted_since(self, start: date) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.pending.is_(False),
                Transaction.date >= start,
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def query_transactions(self, query: TransactionQuery) -> TransactionPage:
        filters = [Transaction.user_id == self.user_id]
        if query.account_id is not None:
            filters.append(Transaction.account_id == query.account_id)
        if query.category:
            filters.append(Transaction.primary_category == query.category)
        if query.start:
            filters.append(Transaction.date >= query.start)
        if query.end:
            filters.append(Transaction.date <= query.end)

        total_count = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(*filters)
            ).scalar_one()
        )
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account))
            .where(*filters)
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
            .offset((query.page - 1) * query.page_size)
            .limit(query.page_size)
        )
        rows = self.session.scalars(stmt).all()
        return TransactionPage(
            page=query.page,
            page_size=query.page_size,
            total_count=total_count,
            transactions=[_transaction_out(txn) for txn in rows],
        )


def _transaction_out(txn: Transaction) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        external_transaction_id=txn.external_transaction_id,
        account_id=txn.account_id,
        account_name=txn.account.name,
        account_mask=txn.account.mask,
        account_type=txn.account.type,
        amount=txn.amount,
        date=txn.date,
        authorized_date=txn.authorized_date,
        pending=txn.pending,
        payment_channel=txn.payment_channel,
        name=txn.name,
        merchant_name=txn.merchant_name,
        primary_category=txn.primary_category,
        detailed_category=txn.detailed_category,
    )
