from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class PaymentStatus(str, Enum):
    completed = "completed"
    planned = "planned"
    skipped = "skipped"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(7))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )
    recurring_expenses: Mapped[list["RecurringExpense"]] = relationship(
        "RecurringExpense", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(120))
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __table_args__ = (
        # Guards the lazily created holding account against concurrent creation.
        UniqueConstraint("user_id", "external_id", name="uq_account_user_external"),
    )


class RecurringExpense(Base, TimestampMixin):
    __tablename__ = "recurring_expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    interval_months: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    match_keywords: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_occurrence_date: Mapped[Optional[date]] = mapped_column(Date)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="recurring_expenses"
    )
    overrides: Mapped[list["RecurringExpenseOverride"]] = relationship(
        "RecurringExpenseOverride",
        back_populates="recurring_expense",
        cascade="all, delete-orphan",
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="recurring_expense"
    )

    __table_args__ = (
        CheckConstraint("interval_months >= 1", name="ck_recurring_interval_positive"),
        CheckConstraint(
            "day_of_month IS NULL OR (day_of_month >= 1 AND day_of_month <= 31)",
            name="ck_recurring_day_of_month_range",
        ),
        CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
        Index("ix_recurring_expenses_user_active", "user_id", "is_active"),
    )


class RecurringExpenseOverride(Base, TimestampMixin):
    __tablename__ = "recurring_expense_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    recurring_expense_id: Mapped[int] = mapped_column(
        ForeignKey("recurring_expenses.id", ondelete="CASCADE"), nullable=False
    )
    # Always the first day of the month the override applies to.
    override_month: Mapped[date] = mapped_column(Date, nullable=False)
    override_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    is_skipped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_manually_confirmed: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    recurring_expense: Mapped["RecurringExpense"] = relationship(
        "RecurringExpense", back_populates="overrides"
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_expense_id",
            "override_month",
            name="uq_recurring_override_expense_month",
        ),
        Index("ix_recurring_override_user_month", "user_id", "override_month"),
        CheckConstraint(
            "override_amount_cents IS NULL OR override_amount_cents >= 0",
            name="ck_recurring_override_amount_positive",
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(200))
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    booking_date: Mapped[Optional[date]] = mapped_column(Date)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    merchant_name: Mapped[Optional[str]] = mapped_column(String(200))
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    recurring_expense_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_expenses.id", ondelete="SET NULL")
    )
    is_recurring_generated: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    payment_status: Mapped[Optional[PaymentStatus]] = mapped_column(
        SAEnum(PaymentStatus)
    )
    # YYYY-MM tag, set only on generated placeholders.
    generated_month: Mapped[Optional[str]] = mapped_column(String(7))
    is_excluded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")
    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    recurring_expense: Mapped[Optional["RecurringExpense"]] = relationship(
        "RecurringExpense", back_populates="transactions"
    )

    __table_args__ = (
        # One placeholder per expense per month. NULL generated_month (real
        # transactions) never collides.
        UniqueConstraint(
            "recurring_expense_id",
            "generated_month",
            name="uq_txn_recurring_generated_month",
        ),
        UniqueConstraint("user_id", "external_id", name="uq_txn_user_external"),
        Index("ix_transactions_user_date", "user_id", "transaction_date"),
        Index(
            "ix_transactions_recurring_date", "recurring_expense_id", "transaction_date"
        ),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class CategorizationRule(Base, TimestampMixin):
    __tablename__ = "categorization_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # NULL for system rules shared by every user.
    user_id: Mapped[Optional[int]] = mapped_column(Integer)
    keyword: Mapped[str] = mapped_column(String(200), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        Index("ix_categorization_rules_user_system", "user_id", "is_system"),
    )
