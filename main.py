import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from database import SessionLocal
from models import (
    CategorizationRule,
    Category,
    RecurringExpense,
    RecurringExpenseOverride,
    Transaction,
)
from months import Month
from projection import ExpenseStatus
from scheduler import SchedulerManager
from schemas import (
    CategorizationRuleIn,
    CategoryIn,
    ConvertToRecurringIn,
    GenerateMonthIn,
    ImportBatchIn,
    RecurringExpenseIn,
    RecurringOverrideIn,
)
from services import (
    CategorizationRuleService,
    CategoryService,
    ImportService,
    MonthOverview,
    NotFoundError,
    RecurringExpenseService,
    RecurringOverrideService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Recurring Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFoundError) else 400
    return HTTPException(status_code=status, detail=str(exc))


def category_payload(category: Category) -> dict:
    return {"id": category.id, "name": category.name, "color": category.color}


def rule_payload(rule: CategorizationRule) -> dict:
    return {
        "id": rule.id,
        "keyword": rule.keyword,
        "category_id": rule.category_id,
        "is_system": rule.is_system,
    }


def expense_payload(expense: RecurringExpense) -> dict:
    return {
        "id": expense.id,
        "name": expense.name,
        "amount_cents": expense.amount_cents,
        "currency_code": expense.currency_code,
        "category_id": expense.category_id,
        "day_of_month": expense.day_of_month,
        "interval_months": expense.interval_months,
        "start_date": expense.start_date.isoformat(),
        "end_date": expense.end_date.isoformat() if expense.end_date else None,
        "match_keywords": list(expense.match_keywords or []),
        "is_active": expense.is_active,
        "last_occurrence_date": (
            expense.last_occurrence_date.isoformat()
            if expense.last_occurrence_date
            else None
        ),
    }


def override_payload(override: RecurringExpenseOverride) -> dict:
    return {
        "id": override.id,
        "recurring_expense_id": override.recurring_expense_id,
        "month": Month.from_date(override.override_month).tag,
        "override_amount_cents": override.override_amount_cents,
        "is_skipped": override.is_skipped,
        "is_manually_confirmed": override.is_manually_confirmed,
        "notes": override.notes,
    }


def transaction_payload(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "date": txn.transaction_date.isoformat(),
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "currency_code": txn.currency_code,
        "description": txn.description,
        "merchant_name": txn.merchant_name,
        "category_id": txn.category_id,
        "recurring_expense_id": txn.recurring_expense_id,
        "is_recurring_generated": txn.is_recurring_generated,
        "payment_status": txn.payment_status.value if txn.payment_status else None,
        "generated_month": txn.generated_month,
    }


def status_payload(status: ExpenseStatus) -> dict:
    payload = expense_payload(status.expense)
    payload.update(
        {
            "due_date": status.due_date.isoformat(),
            "effective_amount_cents": status.effective_amount_cents,
            "is_due_this_month": status.is_due_this_month,
            "is_skipped": status.is_skipped,
            "is_manually_confirmed": status.is_manually_confirmed,
            "has_linked_transaction": status.has_linked_transaction,
            "has_completed_payment": status.has_completed_payment,
            "is_paid_this_month": status.is_paid_this_month,
            "is_due_date_passed": status.is_due_date_passed,
            "is_due_today": status.is_due_today,
            "is_overdue": status.is_overdue,
            "linked_transaction_id": (
                status.linked_transaction.id if status.linked_transaction else None
            ),
            "override": override_payload(status.override) if status.override else None,
        }
    )
    return payload


def overview_payload(overview: MonthOverview) -> dict:
    projection = overview.projection
    return {
        "selected_month": overview.selected_month,
        "as_of": projection.as_of.isoformat(),
        "items": [status_payload(status) for status in projection.statuses],
        "totals": {
            "due_cents": projection.total_due_cents,
            "paid_cents": projection.paid_cents,
            "overdue_cents": projection.overdue_cents,
            "pending_cents": projection.pending_cents,
            "monthly_equivalent": str(projection.monthly_equivalent),
        },
        "transactions": [transaction_payload(txn) for txn in overview.transactions],
        "generated": overview.materialized.generated,
    }


@app.get("/api/categories")
def api_categories(db: Session = Depends(get_db)):
    return [category_payload(c) for c in CategoryService(db).list_all()]


@app.post("/api/categories", status_code=201)
def api_create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return category_payload(category)


@app.get("/api/rules")
def api_rules(db: Session = Depends(get_db)):
    return [rule_payload(rule) for rule in CategorizationRuleService(db).list_all()]


@app.post("/api/rules", status_code=201)
def api_create_rule(data: CategorizationRuleIn, db: Session = Depends(get_db)):
    try:
        rule = CategorizationRuleService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return rule_payload(rule)


@app.delete("/api/rules/{rule_id}", status_code=204)
def api_delete_rule(rule_id: int, db: Session = Depends(get_db)):
    try:
        CategorizationRuleService(db).delete(rule_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/recurring")
def api_recurring(month: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        overview = RecurringExpenseService(db).month_overview(month)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return overview_payload(overview)


@app.post("/api/recurring", status_code=201)
def api_create_recurring(data: RecurringExpenseIn, db: Session = Depends(get_db)):
    try:
        expense = RecurringExpenseService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return expense_payload(expense)


@app.put("/api/recurring/{expense_id}")
def api_update_recurring(
    expense_id: int, data: RecurringExpenseIn, db: Session = Depends(get_db)
):
    try:
        expense = RecurringExpenseService(db).update(expense_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return expense_payload(expense)


@app.delete("/api/recurring/overrides", status_code=204)
def api_delete_override(
    recurring_expense_id: int, month: str, db: Session = Depends(get_db)
):
    try:
        RecurringOverrideService(db).delete(recurring_expense_id, month)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/recurring/{expense_id}", status_code=204)
def api_delete_recurring(expense_id: int, db: Session = Depends(get_db)):
    try:
        RecurringExpenseService(db).delete(expense_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/recurring/generate")
def api_generate_recurring(data: GenerateMonthIn, db: Session = Depends(get_db)):
    try:
        month = Month.from_key(data.month)
    except ValueError as exc:
        raise _http_error(exc) from exc
    result = RecurringExpenseService(db).ensure_month(month)
    return {
        "month": month.tag,
        "generated": result.generated,
        "already_present": result.skipped_already_present,
        "removed": result.removed,
    }


@app.post("/api/recurring/overrides")
def api_upsert_override(data: RecurringOverrideIn, db: Session = Depends(get_db)):
    try:
        override = RecurringOverrideService(db).upsert(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return override_payload(override)


@app.post("/api/recurring/rematch")
def api_rematch(db: Session = Depends(get_db)):
    result = RecurringExpenseService(db).rematch()
    return {"matched": result.matched, "scanned": result.scanned}


@app.post("/api/transactions/import")
def api_import_transactions(data: ImportBatchIn, db: Session = Depends(get_db)):
    try:
        result = ImportService(db).import_transactions(
            data.account_id, data.transactions
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "imported": result.imported,
        "skipped": result.skipped,
        "matched": result.matched,
        "total": result.total,
    }


@app.post("/api/transactions/{transaction_id}/convert-to-recurring", status_code=201)
def api_convert_to_recurring(
    transaction_id: int, data: ConvertToRecurringIn, db: Session = Depends(get_db)
):
    try:
        expense = RecurringExpenseService(db).convert_transaction(transaction_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return expense_payload(expense)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
