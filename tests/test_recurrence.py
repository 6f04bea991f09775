from datetime import date, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

import recurrence
from database import Base, make_engine
from models import (
    Account,
    RecurringIncome,
    RecurringTransaction,
    RecurringType,
    Transaction,
    TransactionType,
)
from recurrence import (
    RecurringIncomeScheduler,
    RecurringTransactionScheduler,
    _DueScheduler,
)
from schemas import (
    RecurringIncomeIn,
    RecurringIncomeUpdate,
    RecurringTransactionIn,
    RecurringTransactionUpdate,
)
from services import RecurringIncomeService, RecurringTransactionService

TODAY = date(2026, 10, 19)


def make_session():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _account(session, user_id: str = "u1", balance_cents: int = 0) -> Account:
    account = Account(user_id=user_id, name="Checking", balance_cents=balance_cents)
    session.add(account)
    session.commit()
    return account


def _recurring(session, account: Account, **overrides) -> RecurringTransaction:
    values = dict(
        user_id=account.user_id,
        account_id=account.id,
        type=RecurringType.expense,
        amount_cents=5_000,
        description="Rent",
        day_of_month=10,
        next_run_date=date(2026, 10, 10),
    )
    values.update(overrides)
    recurring = RecurringTransaction(**values)
    session.add(recurring)
    session.commit()
    return recurring


def _postings(session, recurring_id: int) -> int:
    return session.scalar(
        select(func.count(Transaction.id)).where(
            Transaction.recurring_transaction_id == recurring_id
        )
    )


def test_future_definition_is_not_posted():
    session = make_session()
    account = _account(session)
    recurring = _recurring(
        session, account, day_of_month=25, next_run_date=date(2026, 10, 25)
    )

    report = RecurringTransactionScheduler(session).process_due(TODAY)

    assert report.processed == 0
    assert _postings(session, recurring.id) == 0
    session.refresh(recurring)
    assert recurring.next_run_date == date(2026, 10, 25)


def test_income_scheduler_posts_and_advances_pointer():
    session = make_session()
    account = _account(session, balance_cents=1_000)
    income = RecurringIncome(
        user_id="u1",
        account_id=account.id,
        amount_cents=250_000,
        description="Salary",
        day_of_month=1,
        next_run_date=date(2026, 10, 1),
    )
    session.add(income)
    session.commit()

    report = RecurringIncomeScheduler(session).process_due(TODAY)

    assert report.as_dict()["processed"] == 1
    item = report.results[0]
    assert item.status == "success"
    txn = session.get(Transaction, item.transaction_id)
    assert txn.type == TransactionType.income
    assert txn.date == TODAY
    assert txn.recurring_income_id == income.id

    session.refresh(account)
    session.refresh(income)
    assert account.balance_cents == 251_000
    assert income.last_run_date == TODAY
    assert income.next_run_date == date(2026, 11, 1)


def test_income_scheduler_relies_only_on_date_pointer():
    session = make_session()
    account = _account(session)
    income = RecurringIncome(
        user_id="u1",
        account_id=account.id,
        amount_cents=100,
        description="Allowance",
        day_of_month=1,
        next_run_date=date(2026, 10, 1),
    )
    session.add(income)
    session.commit()

    scheduler = RecurringIncomeScheduler(session)
    scheduler.process_due(TODAY)
    income.next_run_date = TODAY
    session.commit()
    second = scheduler.process_due(TODAY)

    # no per-month check for incomes: a rewound pointer posts again
    assert second.processed == 1
    count = session.scalar(
        select(func.count(Transaction.id)).where(
            Transaction.recurring_income_id == income.id
        )
    )
    assert count == 2


def test_second_run_in_same_month_posts_nothing():
    session = make_session()
    account = _account(session, balance_cents=10_000)
    recurring = _recurring(session, account)
    scheduler = RecurringTransactionScheduler(session)

    first = scheduler.process_due(TODAY)
    assert [r.status for r in first.results] == ["success"]

    session.refresh(recurring)
    assert recurring.next_run_date == date(2026, 11, 10)
    recurring.next_run_date = TODAY
    session.commit()

    second = scheduler.process_due(TODAY)

    assert second.processed == 0
    assert _postings(session, recurring.id) == 1
    session.refresh(recurring)
    session.refresh(account)
    assert recurring.next_run_date == date(2026, 11, 10)
    assert recurring.is_active is True
    assert account.balance_cents == 5_000


def test_period_constraint_rejects_second_posting():
    session = make_session()
    account = _account(session)
    recurring = _recurring(session, account)

    for _ in range(2):
        session.add(
            Transaction(
                user_id="u1",
                account_id=account.id,
                type=TransactionType.expense,
                amount_cents=5_000,
                description="Rent",
                date=date(2026, 10, 10),
                occurred_at=datetime(2026, 10, 10, 12, 0),
                recurring_transaction_id=recurring.id,
                occurrence_period="2026-10",
            )
        )
    with pytest.raises(IntegrityError):
        session.commit()


def _october_posting(session, account: Account, recurring: RecurringTransaction):
    session.add(
        Transaction(
            user_id="u1",
            account_id=account.id,
            type=TransactionType.expense,
            amount_cents=5_000,
            description="Rent",
            date=date(2026, 10, 10),
            occurred_at=datetime(2026, 10, 10, 12, 0),
            recurring_transaction_id=recurring.id,
            occurrence_period="2026-10",
        )
    )
    session.commit()


def _miss_first_lookup(monkeypatch) -> None:
    # a concurrent run inserts between our lookup and our insert
    original = recurrence.find_posting_in_period
    calls = []

    def lookup(session, recurring, on_date):
        calls.append(on_date)
        if len(calls) == 1:
            return None
        return original(session, recurring, on_date)

    monkeypatch.setattr(recurrence, "find_posting_in_period", lookup)


def test_concurrent_posting_in_same_month_is_skipped(monkeypatch):
    session = make_session()
    account = _account(session, balance_cents=10_000)
    recurring = _recurring(session, account)
    _october_posting(session, account, recurring)
    _miss_first_lookup(monkeypatch)

    report = RecurringTransactionScheduler(session).process_due(TODAY)

    assert report.results == []
    assert _postings(session, recurring.id) == 1
    session.refresh(account)
    session.refresh(recurring)
    assert account.balance_cents == 10_000
    assert recurring.next_run_date == date(2026, 11, 10)
    assert recurring.is_active is True


def test_skipped_posting_past_end_date_deactivates(monkeypatch):
    session = make_session()
    account = _account(session, balance_cents=10_000)
    recurring = _recurring(session, account, end_date=date(2026, 11, 1))
    _october_posting(session, account, recurring)
    _miss_first_lookup(monkeypatch)

    report = RecurringTransactionScheduler(session).process_due(TODAY)

    assert report.results == []
    assert _postings(session, recurring.id) == 1
    session.refresh(account)
    session.refresh(recurring)
    assert account.balance_cents == 10_000
    assert recurring.is_active is False
    assert recurring.next_run_date == date(2026, 10, 10)


def test_expired_definition_is_deactivated_without_posting():
    session = make_session()
    account = _account(session)
    recurring = _recurring(
        session,
        account,
        day_of_month=5,
        next_run_date=date(2026, 10, 5),
        end_date=date(2026, 10, 10),
    )

    report = RecurringTransactionScheduler(session).process_due(TODAY)

    assert report.processed == 0
    assert _postings(session, recurring.id) == 0
    session.refresh(recurring)
    assert recurring.is_active is False


def test_last_occurrence_deactivates_instead_of_rescheduling():
    session = make_session()
    account = _account(session)
    recurring = _recurring(
        session,
        account,
        day_of_month=15,
        next_run_date=date(2026, 10, 15),
        end_date=date(2026, 11, 1),
    )

    report = RecurringTransactionScheduler(session).process_due(TODAY)

    assert report.processed == 1
    assert _postings(session, recurring.id) == 1
    session.refresh(recurring)
    assert recurring.is_active is False
    assert recurring.next_run_date == date(2026, 10, 15)

    later = RecurringTransactionScheduler(session).process_due(date(2026, 11, 20))
    assert later.processed == 0
    assert _postings(session, recurring.id) == 1


def test_failing_definition_does_not_stop_the_batch():
    session = make_session()
    healthy = _account(session)
    closed = Account(user_id="u1", name="Old savings", is_active=False)
    session.add(closed)
    session.commit()

    first = _recurring(session, healthy, description="Gym")
    broken = _recurring(session, closed, description="Insurance")
    last = _recurring(session, healthy, description="Phone")

    report = RecurringTransactionScheduler(session).process_due(TODAY)

    by_id = {r.id: r for r in report.results}
    assert by_id[first.id].status == "success"
    assert by_id[last.id].status == "success"
    assert by_id[broken.id].status == "error"
    assert by_id[broken.id].error
    assert report.failed == 1

    assert _postings(session, broken.id) == 0
    session.refresh(broken)
    assert broken.next_run_date == date(2026, 10, 10)
    session.refresh(healthy)
    assert healthy.balance_cents == -10_000


def test_backfill_then_scheduler_posts_once():
    session = make_session()
    account = _account(session, balance_cents=20_000)
    service = RecurringTransactionService(session, "u1")

    recurring = service.create(
        RecurringTransactionIn(
            account_id=account.id,
            type=RecurringType.expense,
            amount_cents=7_500,
            description="Internet",
            day_of_month=5,
        ),
        today=TODAY,
    )

    txns = session.scalars(
        select(Transaction).where(Transaction.recurring_transaction_id == recurring.id)
    ).all()
    assert len(txns) == 1
    assert txns[0].date == date(2026, 10, 5)
    assert txns[0].occurrence_period == "2026-10"
    assert recurring.last_run_date == date(2026, 10, 5)
    assert recurring.next_run_date == date(2026, 11, 5)

    report = RecurringTransactionScheduler(session).process_due(TODAY)
    assert report.processed == 0

    # even with the pointer forced back, the month already has its posting
    recurring.next_run_date = TODAY
    session.commit()
    RecurringTransactionScheduler(session).process_due(TODAY)
    assert _postings(session, recurring.id) == 1

    session.refresh(account)
    assert account.balance_cents == 12_500

    november = RecurringTransactionScheduler(session).process_due(date(2026, 11, 5))
    assert november.processed == 1
    assert _postings(session, recurring.id) == 2


def test_upcoming_day_is_scheduled_without_backfill():
    session = make_session()
    account = _account(session)
    recurring = RecurringTransactionService(session, "u1").create(
        RecurringTransactionIn(
            account_id=account.id,
            type=RecurringType.income,
            amount_cents=1_000,
            description="Side gig",
            day_of_month=25,
        ),
        today=TODAY,
    )

    assert _postings(session, recurring.id) == 0
    assert recurring.last_run_date is None
    assert recurring.next_run_date == date(2026, 10, 25)


def test_create_rejects_end_date_in_the_past():
    session = make_session()
    account = _account(session)
    with pytest.raises(ValueError):
        RecurringTransactionService(session, "u1").create(
            RecurringTransactionIn(
                account_id=account.id,
                type=RecurringType.expense,
                amount_cents=1_000,
                description="Old plan",
                day_of_month=3,
                end_date=date(2026, 9, 30),
            ),
            today=TODAY,
        )
    assert session.scalar(select(func.count(RecurringTransaction.id))) == 0


def test_income_backfill_is_dated_on_the_passed_day():
    session = make_session()
    account = _account(session)
    income = RecurringIncomeService(session, "u1").create(
        RecurringIncomeIn(
            account_id=account.id,
            amount_cents=300_000,
            description="Salary",
            day_of_month=1,
        ),
        today=TODAY,
    )

    txn = session.scalars(
        select(Transaction).where(Transaction.recurring_income_id == income.id)
    ).one()
    assert txn.date == date(2026, 10, 1)
    assert txn.notes == "Automatic recurring income"
    assert income.next_run_date == date(2026, 11, 1)
    session.refresh(account)
    assert account.balance_cents == 300_000


def test_changing_day_of_month_recomputes_next_run():
    session = make_session()
    account = _account(session)
    service = RecurringTransactionService(session, "u1")
    recurring = _recurring(
        session, account, day_of_month=25, next_run_date=date(2026, 10, 25)
    )

    updated = service.update(
        recurring.id, RecurringTransactionUpdate(day_of_month=2), today=TODAY
    )
    assert updated.next_run_date == date(2026, 11, 2)

    updated = service.update(
        recurring.id, RecurringTransactionUpdate(day_of_month=27), today=TODAY
    )
    assert updated.next_run_date == date(2026, 10, 27)


def test_update_rejects_null_for_required_income_fields():
    session = make_session()
    account = _account(session)
    service = RecurringIncomeService(session, "u1")
    income = service.create(
        RecurringIncomeIn(
            account_id=account.id,
            amount_cents=300_000,
            description="Salary",
            day_of_month=25,
        ),
        today=TODAY,
    )

    for field_name in ("description", "amount_cents", "day_of_month", "account_id"):
        with pytest.raises(ValueError, match=field_name):
            service.update(
                income.id,
                RecurringIncomeUpdate.model_validate({field_name: None}),
                today=TODAY,
            )

    session.refresh(income)
    assert income.description == "Salary"
    assert income.amount_cents == 300_000
    assert income.day_of_month == 25


def test_update_clears_only_optional_fields():
    session = make_session()
    account = _account(session)
    service = RecurringTransactionService(session, "u1")
    recurring = _recurring(
        session,
        account,
        day_of_month=25,
        next_run_date=date(2026, 10, 25),
        end_date=date(2026, 12, 31),
    )

    with pytest.raises(ValueError, match="type"):
        service.update(
            recurring.id,
            RecurringTransactionUpdate.model_validate({"type": None}),
            today=TODAY,
        )
    with pytest.raises(ValueError, match="amount_cents"):
        service.update(
            recurring.id,
            RecurringTransactionUpdate.model_validate(
                {"amount_cents": None, "end_date": None}
            ),
            today=TODAY,
        )
    session.refresh(recurring)
    assert recurring.end_date == date(2026, 12, 31)

    updated = service.update(
        recurring.id,
        RecurringTransactionUpdate.model_validate(
            {"end_date": None, "category_id": None}
        ),
        today=TODAY,
    )
    assert updated.end_date is None
    assert updated.category_id is None
    assert updated.amount_cents == 5_000


def test_due_scheduler_base_cannot_be_instantiated():
    session = make_session()
    with pytest.raises(TypeError):
        _DueScheduler(session)


def test_delete_with_transactions_reverses_balances():
    session = make_session()
    account = _account(session, balance_cents=10_000)
    service = RecurringTransactionService(session, "u1")
    recurring = service.create(
        RecurringTransactionIn(
            account_id=account.id,
            type=RecurringType.expense,
            amount_cents=4_000,
            description="Streaming",
            day_of_month=2,
        ),
        today=TODAY,
    )
    session.refresh(account)
    assert account.balance_cents == 6_000

    removed = service.delete(recurring.id, delete_transactions=True)

    assert removed == 1
    session.refresh(account)
    assert account.balance_cents == 10_000
    assert session.get(RecurringTransaction, recurring.id) is None
