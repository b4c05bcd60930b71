"""Reconciliation of incoming transactions against recurring expenses.

A statement line is linked to the first active recurring expense (in
registration order) whose keyword appears in the line's normalized text, that
is due in the line's month and that has no transaction linked for that month
yet, a planned placeholder included.
Lines that do not link fall back to flat keyword categorization rules.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from models import CategorizationRule, RecurringExpense, Transaction
from months import Month
from recurrence import (
    has_ended_before,
    is_due_by_last_occurrence_anchor,
    is_due_by_schedule_anchor,
)

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(*parts: Optional[str]) -> str:
    text = " ".join(part or "" for part in parts).lower()
    text = _NON_ALNUM.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


@dataclass(frozen=True)
class MatchCandidate:
    date: date
    description: str = ""
    merchant_name: Optional[str] = None
    # Carried along but not used as a matching signal.
    amount_cents: Optional[int] = None

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "MatchCandidate":
        return cls(
            date=txn.transaction_date,
            description=txn.description or "",
            merchant_name=txn.merchant_name,
            amount_cents=txn.amount_cents,
        )

    @property
    def search_text(self) -> str:
        return normalize_text(self.merchant_name, self.description)


@dataclass(frozen=True)
class MatchResult:
    recurring_expense_id: Optional[int] = None
    category_id: Optional[int] = None
    # Set on a recurring match; the caller stores it as the expense's
    # last_occurrence_date once the transaction is written.
    last_occurrence_date: Optional[date] = None

    @property
    def is_recurring(self) -> bool:
        return self.recurring_expense_id is not None


class KeywordCategorizer:
    """First-match substring categorizer over user rules, then system rules."""

    def __init__(self, rules: Sequence[CategorizationRule]) -> None:
        self._rules: list[tuple[str, int]] = []
        for rule in rules:
            keyword = normalize_text(rule.keyword)
            if keyword:
                self._rules.append((keyword, rule.category_id))

    @classmethod
    def for_user(cls, session: Session, user_id: int) -> "KeywordCategorizer":
        stmt = (
            select(CategorizationRule)
            .where(
                or_(
                    CategorizationRule.user_id == user_id,
                    CategorizationRule.is_system.is_(True),
                )
            )
            .order_by(CategorizationRule.is_system.asc(), CategorizationRule.id.asc())
        )
        return cls(session.scalars(stmt).all())

    def categorize(self, search_text: str) -> Optional[int]:
        if not search_text:
            return None
        for keyword, category_id in self._rules:
            if keyword in search_text:
                return category_id
        return None


def is_due_for_match(expense: RecurringExpense, on_date: date) -> bool:
    """Due-ness used when reconciling a real transaction dated ``on_date``.

    Once a real payment has been seen the cadence is anchored to it; before
    that it follows the schedule from the start date.
    """
    month = Month.from_date(on_date)
    if has_ended_before(expense, month):
        return False
    if expense.last_occurrence_date is not None:
        return is_due_by_last_occurrence_anchor(expense, month.year, month.month)
    return is_due_by_schedule_anchor(expense, month.year, month.month)


class RecurringMatcher:
    """Matches candidates for one user.

    Meant to live for one import or rematch run: it remembers what it has
    matched so far, on top of checking the database, so a batch never links
    two lines of the same month to the same expense.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        categorizer: Optional[KeywordCategorizer] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.categorizer = categorizer or KeywordCategorizer.for_user(
            session, user_id
        )
        stmt = (
            select(RecurringExpense)
            .where(
                RecurringExpense.user_id == user_id,
                RecurringExpense.is_active.is_(True),
            )
            .order_by(RecurringExpense.id)
        )
        self.expenses = [
            expense
            for expense in session.scalars(stmt).all()
            if _keywords(expense)
        ]
        self._by_id = {expense.id: expense for expense in self.expenses}
        self._matched: set[tuple[int, str]] = set()

    def expense(self, expense_id: int) -> RecurringExpense:
        return self._by_id[expense_id]

    def match(self, candidate: MatchCandidate) -> MatchResult:
        text = candidate.search_text
        if not text:
            return MatchResult()

        month = Month.from_date(candidate.date)
        for expense in self.expenses:
            if not any(keyword in text for keyword in _keywords(expense)):
                continue
            if not is_due_for_match(expense, candidate.date):
                continue
            if self._already_matched(expense, month):
                continue
            self._matched.add((expense.id, month.tag))
            logger.debug(
                f"match: user_id={self.user_id} expense_id={expense.id} "
                f"month={month.tag}"
            )
            return MatchResult(
                recurring_expense_id=expense.id,
                category_id=expense.category_id or self.categorizer.categorize(text),
                last_occurrence_date=candidate.date,
            )

        return MatchResult(category_id=self.categorizer.categorize(text))

    def release(self, result: MatchResult) -> None:
        """Forget a match whose transaction could not be written."""
        if result.is_recurring and result.last_occurrence_date is not None:
            month = Month.from_date(result.last_occurrence_date)
            self._matched.discard((result.recurring_expense_id, month.tag))

    def _already_matched(self, expense: RecurringExpense, month: Month) -> bool:
        if (expense.id, month.tag) in self._matched:
            return True
        stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.recurring_expense_id == expense.id,
                Transaction.transaction_date >= month.start,
                Transaction.transaction_date <= month.end,
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None


def _keywords(expense: RecurringExpense) -> list[str]:
    # Lowercased only; the text side is normalized.
    keywords = (str(k).strip().lower() for k in (expense.match_keywords or []))
    return [keyword for keyword in keywords if keyword]
