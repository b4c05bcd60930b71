from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from matching import MatchCandidate, MatchResult, RecurringMatcher
from models import (
    Account,
    CategorizationRule,
    Category,
    PaymentStatus,
    RecurringExpense,
    RecurringExpenseOverride,
    Transaction,
    TransactionType,
)
from months import Month
from projection import MonthProjection, project_month
from recurrence import (
    MaterializationResult,
    OverrideResolver,
    RecurringMaterializer,
    local_today,
)
from schemas import (
    CategorizationRuleIn,
    CategoryIn,
    ConvertToRecurringIn,
    ImportedTransactionIn,
    RecurringExpenseIn,
    RecurringOverrideIn,
)

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


class NotFoundError(ValueError):
    pass


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        exists = self.session.scalar(
            select(Category.id).where(
                Category.user_id == self.user_id, Category.name == name
            )
        )
        if exists:
            raise ValueError("Category with this name already exists")
        category = Category(user_id=self.user_id, name=name, color=data.color)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class CategorizationRuleService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[CategorizationRule]:
        """User rules first, then system rules; the order rules are consulted in."""
        stmt = (
            select(CategorizationRule)
            .options(joinedload(CategorizationRule.category))
            .where(
                (CategorizationRule.user_id == self.user_id)
                | CategorizationRule.is_system.is_(True)
            )
            .order_by(CategorizationRule.is_system.asc(), CategorizationRule.id.asc())
        )
        return self.session.scalars(stmt).all()

    def create(self, data: CategorizationRuleIn) -> CategorizationRule:
        CategoryService(self.session, self.user_id).get(data.category_id)
        rule = CategorizationRule(
            user_id=self.user_id,
            keyword=data.keyword.strip(),
            category_id=data.category_id,
            is_system=False,
        )
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        rule = self.session.get(CategorizationRule, rule_id)
        if not rule or rule.is_system or rule.user_id != self.user_id:
            raise NotFoundError("Rule not found")
        self.session.delete(rule)
        self.session.commit()


@dataclass
class MonthOverview:
    projection: MonthProjection
    transactions: list[Transaction]
    materialized: MaterializationResult

    @property
    def selected_month(self) -> str:
        return self.projection.month.tag


@dataclass
class RematchResult:
    matched: int = 0
    scanned: int = 0


class RecurringExpenseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, expense_id: int) -> RecurringExpense:
        expense = self.session.get(RecurringExpense, expense_id)
        if not expense or expense.user_id != self.user_id:
            raise NotFoundError("Recurring expense not found")
        return expense

    def list(self) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .options(joinedload(RecurringExpense.category))
            .where(RecurringExpense.user_id == self.user_id)
            .order_by(RecurringExpense.name, RecurringExpense.id)
        )
        return self.session.scalars(stmt).all()

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is not None:
            CategoryService(self.session, self.user_id).get(category_id)

    def create(self, data: RecurringExpenseIn) -> RecurringExpense:
        self._check_category(data.category_id)
        expense = RecurringExpense(
            user_id=self.user_id,
            name=data.name.strip(),
            amount_cents=data.amount_cents,
            currency_code=data.currency_code or get_settings().default_currency,
            category_id=data.category_id,
            day_of_month=data.day_of_month,
            interval_months=data.interval_months,
            start_date=data.start_date or local_today(),
            end_date=data.end_date,
            match_keywords=list(data.match_keywords),
            is_active=data.is_active,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: RecurringExpenseIn) -> RecurringExpense:
        expense = self.get(expense_id)
        if data.category_id != expense.category_id:
            self._check_category(data.category_id)
        expense.name = data.name.strip()
        expense.amount_cents = data.amount_cents
        if data.currency_code:
            expense.currency_code = data.currency_code
        expense.category_id = data.category_id
        expense.day_of_month = data.day_of_month
        expense.interval_months = data.interval_months
        if data.start_date:
            expense.start_date = data.start_date
        expense.end_date = data.end_date
        expense.match_keywords = list(data.match_keywords)
        expense.is_active = data.is_active
        if expense.end_date and expense.end_date < expense.start_date:
            self.session.rollback()
            raise ValueError("End date must not be before start date")
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        """Delete an expense, unlinking (not deleting) its transactions."""
        expense = self.get(expense_id)
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.recurring_expense_id == expense.id,
            )
            .values(recurring_expense_id=None)
            .execution_options(synchronize_session="fetch")
        )
        self.session.delete(expense)
        self.session.commit()

    def convert_transaction(
        self, transaction_id: int, data: ConvertToRecurringIn
    ) -> RecurringExpense:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        if txn.recurring_expense_id is not None:
            raise ValueError("Transaction is already linked to a recurring expense")

        category_id = txn.category_id
        if "category_id" in data.model_fields_set:
            category_id = data.category_id
        self._check_category(category_id)
        occurred = txn.transaction_date
        expense = RecurringExpense(
            user_id=self.user_id,
            name=(data.name or txn.merchant_name or txn.description or "").strip()
            or "Recurring expense",
            amount_cents=abs(
                data.amount_cents if data.amount_cents is not None else txn.amount_cents
            ),
            currency_code=data.currency_code or txn.currency_code,
            category_id=category_id,
            day_of_month=data.day_of_month or occurred.day,
            interval_months=data.interval_months,
            start_date=Month.from_date(occurred).start,
            match_keywords=list(data.match_keywords),
            is_active=True,
            last_occurrence_date=occurred,
        )
        self.session.add(expense)
        self.session.flush()

        txn.recurring_expense_id = expense.id
        txn.payment_status = PaymentStatus.completed
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def ensure_month(self, month: Month) -> MaterializationResult:
        """Materialize placeholders for ``month``; never raises storage errors."""
        try:
            result = RecurringMaterializer(self.session, self.user_id).ensure(month)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning(
                f"materialize: user_id={self.user_id} month={month.tag} "
                f"aborted error={exc.__class__.__name__}"
            )
            return MaterializationResult()
        return result

    def month_overview(
        self, month_key: Optional[str] = None, as_of: Optional[date] = None
    ) -> MonthOverview:
        """Materialize then project ``month_key`` (default: the current month)."""
        today = as_of or local_today()
        month = Month.from_key(month_key) if month_key else Month.from_date(today)
        materialized = self.ensure_month(month)

        overrides = OverrideResolver(self.session, self.user_id).for_month(month)
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.recurring_expense_id.is_not(None),
                Transaction.transaction_date >= month.start,
                Transaction.transaction_date <= month.end,
            )
            .order_by(Transaction.transaction_date, Transaction.id)
        )
        linked = list(self.session.scalars(stmt).all())
        projection = project_month(self.list(), overrides, linked, month, today)
        return MonthOverview(
            projection=projection, transactions=linked, materialized=materialized
        )

    def rematch(self) -> RematchResult:
        """Link existing unlinked expense transactions to recurring expenses."""
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.recurring_expense_id.is_(None),
                Transaction.is_recurring_generated.is_(False),
                Transaction.is_excluded.is_(False),
            )
            .order_by(Transaction.transaction_date, Transaction.id)
        )
        transactions = self.session.scalars(stmt).all()
        result = RematchResult(scanned=len(transactions))
        if not transactions:
            return result

        matcher = RecurringMatcher(self.session, self.user_id)
        if not matcher.expenses:
            return result

        for txn in transactions:
            match = matcher.match(MatchCandidate.from_transaction(txn))
            if not match.is_recurring:
                continue
            expense = matcher.expense(match.recurring_expense_id)
            txn.recurring_expense_id = expense.id
            if expense.category_id:
                txn.category_id = expense.category_id
            expense.last_occurrence_date = match.last_occurrence_date
            self.session.flush()
            result.matched += 1

        self.session.commit()
        logger.info(
            f"rematch: user_id={self.user_id} scanned={result.scanned} "
            f"matched={result.matched}"
        )
        return result


class RecurringOverrideService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _find(
        self, expense_id: int, month: Month
    ) -> Optional[RecurringExpenseOverride]:
        return self.session.scalar(
            select(RecurringExpenseOverride).where(
                RecurringExpenseOverride.user_id == self.user_id,
                RecurringExpenseOverride.recurring_expense_id == expense_id,
                RecurringExpenseOverride.override_month == month.start,
            )
        )

    def upsert(self, data: RecurringOverrideIn) -> RecurringExpenseOverride:
        expense = RecurringExpenseService(self.session, self.user_id).get(
            data.recurring_expense_id
        )
        month = Month.from_key(data.month)
        override = self._find(expense.id, month)
        if override is None:
            override = RecurringExpenseOverride(
                user_id=self.user_id,
                recurring_expense_id=expense.id,
                override_month=month.start,
            )
            self.session.add(override)
        override.override_amount_cents = data.override_amount_cents
        override.is_skipped = data.is_skipped
        override.is_manually_confirmed = data.is_manually_confirmed
        override.notes = (data.notes or "").strip() or None
        try:
            self.session.commit()
        except IntegrityError:
            # Inserted concurrently; update the row that won instead.
            self.session.rollback()
            override = self._find(expense.id, month)
            if override is None:
                raise
            override.override_amount_cents = data.override_amount_cents
            override.is_skipped = data.is_skipped
            override.is_manually_confirmed = data.is_manually_confirmed
            override.notes = (data.notes or "").strip() or None
            self.session.commit()
        self.session.refresh(override)
        return override

    def delete(self, expense_id: int, month_key: str) -> None:
        month = Month.from_key(month_key)
        override = self._find(expense_id, month)
        if override is None:
            raise NotFoundError("Override not found")
        self.session.delete(override)
        self.session.commit()


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    matched: int = 0
    total: int = 0
    transaction_ids: list[int] = field(default_factory=list)


class ImportService:
    """Stores parsed statement lines, reconciling them one at a time."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def import_transactions(
        self, account_id: int, rows: list[ImportedTransactionIn]
    ) -> ImportResult:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")

        result = ImportResult(total=len(rows))
        known_ids = set(
            self.session.scalars(
                select(Transaction.external_id).where(
                    Transaction.user_id == self.user_id,
                    Transaction.external_id.is_not(None),
                )
            ).all()
        )
        matcher = RecurringMatcher(self.session, self.user_id)

        for row in rows:
            if row.external_id and row.external_id in known_ids:
                result.skipped += 1
                continue

            txn_type = row.resolved_type
            candidate = MatchCandidate(
                date=row.date,
                description=row.description,
                merchant_name=row.merchant_name,
                amount_cents=abs(row.amount_cents),
            )
            if txn_type == TransactionType.expense:
                match = matcher.match(candidate)
            else:
                match = MatchResult(
                    category_id=matcher.categorizer.categorize(candidate.search_text)
                )

            txn = Transaction(
                user_id=self.user_id,
                account_id=account.id,
                external_id=row.external_id,
                transaction_date=row.date,
                booking_date=row.booking_date or row.date,
                type=txn_type,
                amount_cents=abs(row.amount_cents),
                currency_code=(row.currency_code or account.currency_code).upper(),
                description=row.description,
                merchant_name=row.merchant_name,
                category_id=match.category_id,
                recurring_expense_id=match.recurring_expense_id,
                is_recurring_generated=False,
                payment_status=PaymentStatus.completed,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(txn)
            except IntegrityError:
                matcher.release(match)
                result.skipped += 1
                continue

            result.imported += 1
            result.transaction_ids.append(txn.id)
            if row.external_id:
                known_ids.add(row.external_id)
            if match.is_recurring:
                expense = matcher.expense(match.recurring_expense_id)
                expense.last_occurrence_date = match.last_occurrence_date
                self.session.flush()
                result.matched += 1

        self.session.commit()
        logger.info(
            f"import: user_id={self.user_id} account_id={account.id} "
            f"imported={result.imported} skipped={result.skipped} "
            f"matched={result.matched}"
        )
        return result
