import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    Account,
    PaymentStatus,
    RecurringExpense,
    RecurringExpenseOverride,
    Transaction,
    TransactionType,
)
from months import Month, month_index

logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def effective_interval(interval_months: Optional[int]) -> int:
    # Missing or malformed intervals behave as monthly.
    try:
        value = int(interval_months or 1)
    except (TypeError, ValueError):
        return 1
    return value if value >= 1 else 1


def is_due_by_schedule_anchor(expense, year: int, month: int) -> bool:
    """Due every ``interval_months`` months counted from the start month.

    Never due before the start month; the start month itself is due.
    """
    start: date = expense.start_date
    elapsed = month_index(year, month) - month_index(start.year, start.month)
    interval = effective_interval(expense.interval_months)
    return elapsed >= 0 and elapsed % interval == 0


def is_due_by_last_occurrence_anchor(expense, year: int, month: int) -> bool:
    """Due once at least ``interval_months`` months passed since the last payment.

    Used by reconciliation only, after a real payment has been seen.
    """
    last: date = expense.last_occurrence_date
    elapsed = month_index(year, month) - month_index(last.year, last.month)
    return elapsed >= effective_interval(expense.interval_months)


def has_ended_before(expense, month: Month) -> bool:
    return expense.end_date is not None and expense.end_date < month.start


def is_expense_due_in_month(expense, month: Month) -> bool:
    if has_ended_before(expense, month):
        return False
    return is_due_by_schedule_anchor(expense, month.year, month.month)


@dataclass(frozen=True)
class EffectiveTerms:
    amount_cents: int
    is_skipped: bool
    is_manually_confirmed: bool


def resolve_override(
    expense: RecurringExpense, override: Optional[RecurringExpenseOverride]
) -> EffectiveTerms:
    if override is None:
        return EffectiveTerms(
            amount_cents=expense.amount_cents,
            is_skipped=False,
            is_manually_confirmed=False,
        )
    amount = (
        override.override_amount_cents
        if override.override_amount_cents is not None
        else expense.amount_cents
    )
    return EffectiveTerms(
        amount_cents=amount,
        is_skipped=bool(override.is_skipped),
        is_manually_confirmed=bool(override.is_manually_confirmed),
    )


class OverrideResolver:
    """Loads a user's overrides once per month and resolves effective terms."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self._by_month: dict[Month, dict[int, RecurringExpenseOverride]] = {}

    def for_month(self, month: Month) -> dict[int, RecurringExpenseOverride]:
        cached = self._by_month.get(month)
        if cached is not None:
            return cached
        stmt = select(RecurringExpenseOverride).where(
            RecurringExpenseOverride.user_id == self.user_id,
            RecurringExpenseOverride.override_month == month.start,
        )
        overrides = {o.recurring_expense_id: o for o in self.session.scalars(stmt)}
        self._by_month[month] = overrides
        return overrides

    def get(
        self, expense_id: int, month: Month
    ) -> Optional[RecurringExpenseOverride]:
        return self.for_month(month).get(expense_id)

    def resolve(self, expense: RecurringExpense, month: Month) -> EffectiveTerms:
        return resolve_override(expense, self.get(expense.id, month))

    def invalidate(self, month: Optional[Month] = None) -> None:
        if month is None:
            self._by_month.clear()
        else:
            self._by_month.pop(month, None)


def get_or_create_holding_account(session: Session, user_id: int) -> Account:
    """Account that owns generated placeholders, created lazily once per user."""
    settings = get_settings()
    stmt = select(Account).where(
        Account.user_id == user_id,
        Account.external_id == settings.generated_account_external_id,
    )
    account = session.scalar(stmt)
    if account is not None:
        return account
    try:
        with session.begin_nested():
            account = Account(
                user_id=user_id,
                name=settings.generated_account_name,
                external_id=settings.generated_account_external_id,
                currency_code=settings.default_currency,
                balance_cents=0,
            )
            session.add(account)
    except IntegrityError:
        # Created concurrently by another request.
        account = session.scalar(stmt)
        if account is None:
            raise
    return account


def _placeholder_in_month(month: Month):
    return or_(
        Transaction.generated_month == month.tag,
        and_(
            Transaction.generated_month.is_(None),
            Transaction.transaction_date >= month.start,
            Transaction.transaction_date <= month.end,
        ),
    )


@dataclass
class PendingGeneration:
    month: Month
    to_generate: list[RecurringExpense] = field(default_factory=list)
    already_present: set[int] = field(default_factory=set)
    removed: int = 0


@dataclass
class MaterializationResult:
    generated: int = 0
    skipped_already_present: int = 0
    removed: int = 0


class RecurringMaterializer:
    """Ensures one planned placeholder per due expense per month.

    Safe to run repeatedly and concurrently: the unique constraint on
    (recurring_expense_id, generated_month) decides which insert wins, and a
    losing insert is treated as "already present". Committing is left to the
    caller.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        overrides: Optional[OverrideResolver] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.overrides = overrides or OverrideResolver(session, user_id)

    def ensure(self, month: Month) -> MaterializationResult:
        return self.generate(self.prepare(month))

    def prepare(self, month: Month) -> PendingGeneration:
        """Run the skip cleanup pass and compute what still needs inserting."""
        expenses = self._active_expenses()
        if not expenses:
            return PendingGeneration(month=month)

        overrides = self.overrides.for_month(month)
        present = self._materialized_ids(month)

        skipped_present = {
            expense_id
            for expense_id in present
            if expense_id in overrides and overrides[expense_id].is_skipped
        }
        removed = 0
        if skipped_present:
            removed = self._remove_planned(skipped_present, month)
            if removed:
                present = self._materialized_ids(month)

        to_generate = [
            expense
            for expense in expenses
            if is_expense_due_in_month(expense, month)
            and expense.id not in present
            and not self.overrides.resolve(expense, month).is_skipped
        ]
        return PendingGeneration(
            month=month,
            to_generate=to_generate,
            already_present=present,
            removed=removed,
        )

    def generate(self, pending: PendingGeneration) -> MaterializationResult:
        month = pending.month
        result = MaterializationResult(
            skipped_already_present=len(pending.already_present),
            removed=pending.removed,
        )
        if not pending.to_generate:
            return result

        try:
            account = get_or_create_holding_account(self.session, self.user_id)
        except SQLAlchemyError as exc:
            logger.warning(
                f"materialize: user_id={self.user_id} month={month.tag} "
                f"holding_account_unavailable error={exc.__class__.__name__}"
            )
            return result

        for expense in pending.to_generate:
            terms = self.overrides.resolve(expense, month)
            occurs_on = month.day(expense.day_of_month)
            txn = Transaction(
                user_id=self.user_id,
                account_id=account.id,
                external_id=None,
                transaction_date=occurs_on,
                booking_date=occurs_on,
                type=TransactionType.expense,
                amount_cents=abs(terms.amount_cents),
                currency_code=expense.currency_code,
                description=expense.name,
                merchant_name=expense.name,
                category_id=expense.category_id,
                recurring_expense_id=expense.id,
                is_recurring_generated=True,
                payment_status=PaymentStatus.planned,
                generated_month=month.tag,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(txn)
            except IntegrityError:
                logger.debug(
                    f"materialize: user_id={self.user_id} month={month.tag} "
                    f"expense_id={expense.id} already_generated"
                )
                result.skipped_already_present += 1
                continue
            except SQLAlchemyError as exc:
                logger.warning(
                    f"materialize: user_id={self.user_id} month={month.tag} "
                    f"expense_id={expense.id} insert_failed "
                    f"error={exc.__class__.__name__}"
                )
                result.skipped_already_present += 1
                continue
            result.generated += 1

        if result.generated:
            logger.info(
                f"materialize: user_id={self.user_id} month={month.tag} "
                f"generated={result.generated}"
            )
        return result

    def _active_expenses(self) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .where(
                RecurringExpense.user_id == self.user_id,
                RecurringExpense.is_active.is_(True),
            )
            .order_by(RecurringExpense.id)
        )
        return list(self.session.scalars(stmt).all())

    def _materialized_ids(self, month: Month) -> set[int]:
        stmt = select(Transaction.recurring_expense_id).where(
            Transaction.user_id == self.user_id,
            Transaction.is_recurring_generated.is_(True),
            Transaction.recurring_expense_id.is_not(None),
            _placeholder_in_month(month),
        )
        return set(self.session.scalars(stmt).all())

    def _remove_planned(self, expense_ids: set[int], month: Month) -> int:
        stmt = select(Transaction.id).where(
            Transaction.user_id == self.user_id,
            Transaction.recurring_expense_id.in_(expense_ids),
            Transaction.is_recurring_generated.is_(True),
            Transaction.payment_status == PaymentStatus.planned,
            _placeholder_in_month(month),
        )
        txn_ids = list(self.session.scalars(stmt).all())
        if txn_ids:
            self.session.execute(
                delete(Transaction)
                .where(Transaction.id.in_(txn_ids))
                .execution_options(synchronize_session="fetch")
            )
        removed = len(txn_ids)
        if removed:
            logger.info(
                f"materialize: user_id={self.user_id} month={month.tag} "
                f"removed_skipped={removed}"
            )
        return removed


def ensure_for_all_users(session: Session, month: Month) -> int:
    """Materialize ``month`` for every user with active recurring expenses."""
    stmt = (
        select(RecurringExpense.user_id)
        .where(RecurringExpense.is_active.is_(True))
        .distinct()
    )
    generated = 0
    for user_id in session.scalars(stmt).all():
        try:
            with session.begin_nested():
                result = RecurringMaterializer(session, user_id).ensure(month)
        except SQLAlchemyError as exc:
            logger.warning(
                f"materialize: user_id={user_id} month={month.tag} "
                f"failed error={exc.__class__.__name__}"
            )
            continue
        generated += result.generated
    return generated
