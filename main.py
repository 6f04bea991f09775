import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Response
from sqlalchemy.orm import Session

from auth import current_user_id, require_cron_secret
from config import get_settings
from database import get_db
from models import RecurringType
from notifications import NotificationDispatcher
from recurrence import (
    CardBillingProcessor,
    RecurringIncomeScheduler,
    RecurringTransactionScheduler,
)
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    CardTransactionIn,
    ContributionIn,
    ContributionOut,
    CreditCardIn,
    HouseholdIn,
    HouseholdMemberIn,
    ProcessOut,
    RecalculateOut,
    RecurringIncomeIn,
    RecurringIncomeOut,
    RecurringIncomeUpdate,
    RecurringTransactionIn,
    RecurringTransactionOut,
    RecurringTransactionUpdate,
    SavingsGoalIn,
    SavingsGoalOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    AccountService,
    BalanceService,
    CreditCardService,
    GoalService,
    HouseholdService,
    NotFoundError,
    PermissionDenied,
    RecurringIncomeService,
    RecurringTransactionService,
    TransactionService,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="Household Ledger")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

scheduler_manager: Optional[SchedulerManager] = None


@app.on_event("startup")
def startup_event():
    global scheduler_manager
    if not get_settings().scheduler_enabled:
        logger.info("Embedded scheduler disabled")
        return
    scheduler_manager = SchedulerManager()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    if scheduler_manager is not None:
        scheduler_manager.stop()


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PermissionDenied):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/healthz")
def healthz():
    return {"status": "ok", "app_version": APP_VERSION}


# Batch triggers. Called by an external cron; they act on every user.


@app.post(
    "/api/recurring-income/process",
    response_model=ProcessOut,
    dependencies=[Depends(require_cron_secret)],
)
def process_recurring_income(db: Session = Depends(get_db)):
    report = RecurringIncomeScheduler(db).process_due()
    return report.as_dict()


@app.post(
    "/api/recurring-transactions/process",
    response_model=ProcessOut,
    dependencies=[Depends(require_cron_secret)],
)
def process_recurring_transactions(db: Session = Depends(get_db)):
    report = RecurringTransactionScheduler(db).process_due()
    return report.as_dict()


@app.post(
    "/api/credit-cards/process-billing",
    dependencies=[Depends(require_cron_secret)],
)
def process_card_billing(db: Session = Depends(get_db)):
    return CardBillingProcessor(db).process_billing()


@app.post("/api/events/dispatch", dependencies=[Depends(require_cron_secret)])
def dispatch_events(db: Session = Depends(get_db)):
    delivered = NotificationDispatcher(db).dispatch_pending()
    return {"delivered": delivered}


# Per-user endpoints


@app.post("/api/accounts/recalculate-balances", response_model=RecalculateOut)
def recalculate_balances(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    outcome = BalanceService(db, user_id).recalculate_for_user()
    return {
        "success": True,
        "results": [result.as_dict() for result in outcome.results],
        "errors": outcome.errors,
    }


@app.get("/api/accounts", response_model=list[AccountOut])
def list_accounts(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    return AccountService(db, user_id).list_all()


@app.post("/api/accounts", response_model=AccountOut, status_code=201)
def create_account(
    payload: AccountIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return AccountService(db, user_id).create(payload)


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        return TransactionService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/recurring-income", response_model=list[RecurringIncomeOut])
def list_recurring_income(
    db: Session = Depends(get_db), user_id: str = Depends(current_user_id)
):
    return RecurringIncomeService(db, user_id).list_all()


@app.post("/api/recurring-income", response_model=RecurringIncomeOut, status_code=201)
def create_recurring_income(
    payload: RecurringIncomeIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        return RecurringIncomeService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/api/recurring-income/{income_id}", response_model=RecurringIncomeOut)
def update_recurring_income(
    income_id: int,
    payload: RecurringIncomeUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        return RecurringIncomeService(db, user_id).update(income_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/recurring-income/{income_id}")
def delete_recurring_income(
    income_id: int,
    delete_transactions: bool = False,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        removed = RecurringIncomeService(db, user_id).delete(
            income_id, delete_transactions=delete_transactions
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"deleted": True, "transactions_deleted": removed}


@app.get(
    "/api/recurring-transactions", response_model=list[RecurringTransactionOut]
)
def list_recurring_transactions(
    type: Optional[RecurringType] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return RecurringTransactionService(db, user_id).list_all(type=type)


@app.post(
    "/api/recurring-transactions",
    response_model=RecurringTransactionOut,
    status_code=201,
)
def create_recurring_transaction(
    payload: RecurringTransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        return RecurringTransactionService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch(
    "/api/recurring-transactions/{recurring_id}",
    response_model=RecurringTransactionOut,
)
def update_recurring_transaction(
    recurring_id: int,
    payload: RecurringTransactionUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        return RecurringTransactionService(db, user_id).update(recurring_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/recurring-transactions/{recurring_id}")
def delete_recurring_transaction(
    recurring_id: int,
    delete_transactions: bool = False,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        removed = RecurringTransactionService(db, user_id).delete(
            recurring_id, delete_transactions=delete_transactions
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"deleted": True, "transactions_deleted": removed}


@app.post("/api/households", status_code=201)
def create_household(
    payload: HouseholdIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    household = HouseholdService(db, user_id).create(payload)
    return {"id": household.id, "name": household.name, "owner_id": household.owner_id}


@app.post("/api/households/{household_id}/members", status_code=201)
def add_household_member(
    household_id: int,
    payload: HouseholdMemberIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        member = HouseholdService(db, user_id).add_member(household_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "id": member.id,
        "household_id": member.household_id,
        "user_id": member.user_id,
        "role": member.role.value,
    }


@app.post("/api/goals", response_model=SavingsGoalOut, status_code=201)
def create_goal(
    payload: SavingsGoalIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        return GoalService(db, user_id).create_goal(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post(
    "/api/goals/{goal_id}/contributions",
    response_model=ContributionOut,
    status_code=201,
)
def add_goal_contribution(
    goal_id: int,
    payload: ContributionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        return GoalService(db, user_id).add_contribution(goal_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/credit-cards", status_code=201)
def create_credit_card(
    payload: CreditCardIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        card = CreditCardService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "id": card.id,
        "name": card.name,
        "last_four_digits": card.last_four_digits,
        "billing_day": card.billing_day,
        "linked_account_id": card.linked_account_id,
    }


@app.post("/api/credit-cards/{card_id}/transactions", status_code=201)
def add_card_transaction(
    card_id: int,
    payload: CardTransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        card_txn = CreditCardService(db, user_id).add_transaction(card_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "id": card_txn.id,
        "card_id": card_txn.card_id,
        "amount_cents": card_txn.amount_cents,
        "date": card_txn.date.isoformat(),
        "status": card_txn.status.value,
    }


@app.delete(
    "/api/credit-cards/{card_id}/transactions/{card_transaction_id}", status_code=204
)
def delete_card_transaction(
    card_id: int,
    card_transaction_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    try:
        CreditCardService(db, user_id).delete_transaction(card_id, card_transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)
