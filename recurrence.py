import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Optional, Type, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import (
    CardTransactionStatus,
    CreditCard,
    CreditCardTransaction,
    RecurringIncome,
    RecurringTransaction,
    RecurringType,
    Transaction,
    TransactionType,
)
from notifications import (
    CREDIT_CARD_TRANSACTION,
    TRANSACTION_CREATED,
    publish_event,
)
from periods import local_now, month_period, next_monthly_run


logger = logging.getLogger(__name__)


@dataclass
class ItemResult:
    id: int
    status: str
    transaction_id: Optional[int] = None
    error: Optional[str] = None

    def as_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"id": self.id, "status": self.status}
        if self.transaction_id is not None:
            data["transaction_id"] = self.transaction_id
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BatchReport:
    results: list[ItemResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == "error")

    def as_dict(self) -> dict[str, object]:
        return {
            "processed": self.processed,
            "results": [r.as_dict() for r in self.results],
        }


def _occurred_at(today: Optional[date]) -> tuple[date, datetime]:
    if today is None:
        now = local_now()
        return now.date(), now
    return today, datetime.combine(today, time(12, 0))


def balance_delta(txn_type: Union[TransactionType, RecurringType], amount: int) -> int:
    if txn_type.value == TransactionType.income.value:
        return amount
    return -amount


def find_posting_in_period(
    session: Session, recurring: RecurringTransaction, on_date: date
) -> Optional[int]:
    period = month_period(on_date)
    stmt = (
        select(Transaction.id)
        .where(
            Transaction.user_id == recurring.user_id,
            Transaction.recurring_transaction_id == recurring.id,
            Transaction.date.between(period.start, period.end),
        )
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


def post_income_occurrence(
    session: Session,
    income: RecurringIncome,
    on_date: date,
    occurred_at: datetime,
) -> Transaction:
    from services import apply_balance_delta

    txn = Transaction(
        user_id=income.user_id,
        account_id=income.account_id,
        category_id=income.category_id,
        type=TransactionType.income,
        amount_cents=income.amount_cents,
        description=income.description,
        date=on_date,
        occurred_at=occurred_at,
        notes="Automatic recurring income",
        recurring_income_id=income.id,
    )
    session.add(txn)
    session.flush()
    apply_balance_delta(session, income.account_id, income.amount_cents)
    publish_event(
        session,
        income.user_id,
        TRANSACTION_CREATED,
        {"transaction_id": txn.id, "recurring_income_id": income.id},
    )
    return txn


def post_recurring_occurrence(
    session: Session,
    recurring: RecurringTransaction,
    on_date: date,
    occurred_at: datetime,
) -> Optional[Transaction]:
    """Post one occurrence, or return None when the month already has one.

    The check is repeated by the ``uq_txn_recurring_period`` constraint, so two
    overlapping runs cannot both insert for the same month.
    """
    from services import apply_balance_delta

    if find_posting_in_period(session, recurring, on_date) is not None:
        return None

    txn = Transaction(
        user_id=recurring.user_id,
        account_id=recurring.account_id,
        category_id=recurring.category_id,
        type=TransactionType(recurring.type.value),
        amount_cents=recurring.amount_cents,
        description=recurring.description,
        date=on_date,
        occurred_at=occurred_at,
        notes=f"Automatic recurring {recurring.type.value}",
        recurring_transaction_id=recurring.id,
        occurrence_period=month_period(on_date).slug,
        household_id=recurring.household_id,
        is_shared=recurring.is_shared,
    )
    try:
        with session.begin_nested():
            session.add(txn)
            session.flush()
    except IntegrityError:
        if find_posting_in_period(session, recurring, on_date) is None:
            raise
        logger.info(
            f"recurring_posting_race: recurring_transaction_id={recurring.id} "
            f"period={month_period(on_date).slug}"
        )
        return None

    apply_balance_delta(
        session,
        recurring.account_id,
        balance_delta(recurring.type, recurring.amount_cents),
    )
    publish_event(
        session,
        recurring.user_id,
        TRANSACTION_CREATED,
        {"transaction_id": txn.id, "recurring_transaction_id": recurring.id},
        household_id=recurring.household_id if recurring.is_shared else None,
    )
    return txn


def advance_or_expire(recurring: RecurringTransaction, next_run: date) -> None:
    if recurring.end_date and next_run > recurring.end_date:
        recurring.is_active = False
    else:
        recurring.next_run_date = next_run


class _DueScheduler(ABC):
    model: Type
    name: str

    def __init__(self, session: Session) -> None:
        self.session = session

    def due_ids(self, today: date) -> list[int]:
        stmt = (
            select(self.model.id)
            .where(
                self.model.is_active.is_(True),
                self.model.next_run_date <= today,
            )
            .order_by(self.model.next_run_date, self.model.id)
        )
        return list(self.session.scalars(stmt).all())

    def _lock_due(self, definition_id: int, today: date):
        # skip rows another run holds; they are being processed there
        stmt = (
            select(self.model)
            .where(
                self.model.id == definition_id,
                self.model.is_active.is_(True),
                self.model.next_run_date <= today,
            )
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    @abstractmethod
    def _process_one(
        self, definition_id: int, today: date, now: datetime
    ) -> Optional[ItemResult]:
        """Process one locked definition inside the caller's savepoint."""

    def process_due(self, today: Optional[date] = None) -> BatchReport:
        today, now = _occurred_at(today)
        report = BatchReport()
        for definition_id in self.due_ids(today):
            try:
                with self.session.begin_nested():
                    result = self._process_one(definition_id, today, now)
                self.session.commit()
            except Exception as exc:
                logger.exception(
                    f"{self.name}_item_failed: id={definition_id} error={exc}"
                )
                report.results.append(
                    ItemResult(id=definition_id, status="error", error=str(exc))
                )
                continue
            if result is not None:
                report.results.append(result)
        self.session.commit()
        logger.info(
            f"{self.name}_run: today={today.isoformat()} "
            f"processed={report.processed} failed={report.failed}"
        )
        return report


class RecurringIncomeScheduler(_DueScheduler):
    """Posts due recurring incomes.

    Driven only by ``next_run_date``; there is no per-month duplicate check
    here, unlike :class:`RecurringTransactionScheduler`.
    """

    model = RecurringIncome
    name = "recurring_income"

    def _process_one(
        self, definition_id: int, today: date, now: datetime
    ) -> Optional[ItemResult]:
        income = self._lock_due(definition_id, today)
        if income is None:
            return None
        txn = post_income_occurrence(self.session, income, today, now)
        income.last_run_date = today
        income.next_run_date = next_monthly_run(today, income.day_of_month)
        return ItemResult(id=income.id, status="success", transaction_id=txn.id)


class RecurringTransactionScheduler(_DueScheduler):
    model = RecurringTransaction
    name = "recurring_transactions"

    def _process_one(
        self, definition_id: int, today: date, now: datetime
    ) -> Optional[ItemResult]:
        recurring = self._lock_due(definition_id, today)
        if recurring is None:
            return None

        if recurring.end_date and recurring.end_date < today:
            recurring.is_active = False
            logger.info(
                f"recurring_transaction_expired: id={recurring.id} "
                f"end_date={recurring.end_date.isoformat()}"
            )
            return None

        next_run = next_monthly_run(today, recurring.day_of_month)
        txn = post_recurring_occurrence(self.session, recurring, today, now)
        recurring.last_run_date = today
        advance_or_expire(recurring, next_run)
        if txn is None:
            logger.info(
                f"recurring_transaction_skipped: id={recurring.id} "
                f"period={month_period(today).slug} reason=already_posted"
            )
            return None
        return ItemResult(id=recurring.id, status="success", transaction_id=txn.id)


class CardBillingProcessor:
    """Charges pending card purchases to the linked account on billing day."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def cards_due(self, today: date) -> list[CreditCard]:
        stmt = (
            select(CreditCard)
            .where(
                CreditCard.is_active.is_(True),
                CreditCard.billing_day == today.day,
            )
            .order_by(CreditCard.id)
        )
        return list(self.session.scalars(stmt).all())

    def _bill_card(self, card: CreditCard, today: date, now: datetime) -> dict:
        from services import apply_balance_delta

        pending = self.session.scalars(
            select(CreditCardTransaction)
            .where(
                CreditCardTransaction.card_id == card.id,
                CreditCardTransaction.status == CardTransactionStatus.pending,
            )
            .order_by(CreditCardTransaction.date, CreditCardTransaction.id)
            .with_for_update()
        ).all()
        if not pending:
            return {
                "card_id": card.id,
                "card_name": card.name,
                "status": "skipped",
                "reason": "No pending transactions",
            }

        total = sum(p.amount_cents for p in pending)
        bank_txn = Transaction(
            user_id=card.user_id,
            account_id=card.linked_account_id,
            type=TransactionType.expense,
            amount_cents=total,
            description=f"Credit card charge - {card.name} ****{card.last_four_digits}",
            date=today,
            occurred_at=now,
            notes=f"Automatic charge for {len(pending)} credit card transactions",
            household_id=card.household_id,
        )
        self.session.add(bank_txn)
        self.session.flush()
        apply_balance_delta(self.session, card.linked_account_id, -total)
        for purchase in pending:
            purchase.status = CardTransactionStatus.billed
            purchase.billed_date = today
            purchase.bank_transaction_id = bank_txn.id
        publish_event(
            self.session,
            card.user_id,
            CREDIT_CARD_TRANSACTION,
            {
                "card_id": card.id,
                "amount_cents": total,
                "transaction_count": len(pending),
                "bank_transaction_id": bank_txn.id,
            },
        )
        return {
            "card_id": card.id,
            "card_name": card.name,
            "status": "success",
            "transaction_id": bank_txn.id,
            "amount_cents": total,
            "billed_count": len(pending),
        }

    def process_billing(self, today: Optional[date] = None) -> dict[str, object]:
        today, now = _occurred_at(today)
        results: list[dict] = []
        for card in self.cards_due(today):
            card_id, card_name = card.id, card.name
            try:
                with self.session.begin_nested():
                    result = self._bill_card(card, today, now)
                self.session.commit()
            except Exception as exc:
                logger.exception(f"card_billing_failed: card_id={card_id} error={exc}")
                result = {
                    "card_id": card_id,
                    "card_name": card_name,
                    "status": "error",
                    "error": str(exc),
                }
            results.append(result)
        self.session.commit()
        logger.info(
            f"card_billing_run: today={today.isoformat()} cards={len(results)}"
        )
        return {"processed": len(results), "results": results}
