from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class AccountKind(str, Enum):
    depository = "depository"
    credit = "credit"
    loan = "loan"
    investment = "investment"
    other = "other"


LIABILITY_KINDS = frozenset({AccountKind.credit.value, AccountKind.loan.value})

PLACEHOLDER_ACCOUNT_NAME = "Unclassified Account"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Link(Base, TimestampMixin):
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    external_link_id: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True
    )
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    institution_id: Mapped[Optional[str]] = mapped_column(String(64))
    institution_name: Mapped[Optional[str]] = mapped_column(String(200))
    cursor: Mapped[Optional[str]] = mapped_column(Text)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    accounts: Mapped[list["Account"]] = relationship("Account", back_populates="link")


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    link_id: Mapped[int] = mapped_column(ForeignKey("links.id"), nullable=False)
    external_account_id: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    mask: Mapped[Optional[str]] = mapped_column(String(10))
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    subtype: Mapped[Optional[str]] = mapped_column(String(60))
    current_balance: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    available_balance: Mapped[Optional[float]] = mapped_column(Float)
    iso_currency_code: Mapped[Optional[str]] = mapped_column(String(3))
    unofficial_currency_code: Mapped[Optional[str]] = mapped_column(String(10))

    link: Mapped["Link"] = relationship("Link", back_populates="accounts")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_user_link", "user_id", "link_id"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    link_id: Mapped[int] = mapped_column(ForeignKey("links.id"), nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    external_transaction_id: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True
    )
    pending_transaction_id: Mapped[Optional[str]] = mapped_column(String(128))
    # Positive amounts are outflows, negative amounts are inflows.
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    iso_currency_code: Mapped[Optional[str]] = mapped_column(String(3))
    unofficial_currency_code: Mapped[Optional[str]] = mapped_column(String(10))
    # Declared before `date`, which shadows the type name in the class body.
    authorized_date: Mapped[Optional[date]] = mapped_column(Date)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    pending: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_channel: Mapped[Optional[str]] = mapped_column(String(40))
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    merchant_name: Mapped[Optional[str]] = mapped_column(String(300))
    primary_category: Mapped[Optional[str]] = mapped_column(String(100))
    detailed_category: Mapped[Optional[str]] = mapped_column(String(150))
    raw_json: Mapped[Optional[str]] = mapped_column(Text)

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index(
            "ix_transactions_user_category_date", "user_id", "primary_category", "date"
        ),
        Index("ix_transactions_link", "link_id"),
    )

    @property
    def merchant_label(self) -> str:
        return (self.merchant_name or self.name or "").strip()
