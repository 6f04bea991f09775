from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, joinedload

from models import (
    Account,
    CardTransactionStatus,
    Category,
    CreditCard,
    CreditCardTransaction,
    GoalContribution,
    Household,
    HouseholdMember,
    HouseholdRole,
    PaymentMethod,
    RecurringIncome,
    RecurringTransaction,
    RecurringType,
    SavingsGoal,
    Transaction,
    TransactionType,
)
from notifications import (
    CREDIT_CARD_TRANSACTION,
    DASHBOARD_UPDATE,
    GOAL_CONTRIBUTION,
    RECURRING_CHANGED,
    TRANSACTION_CREATED,
    TRANSACTION_DELETED,
    publish_event,
)
from periods import first_run_for, local_today, next_monthly_run
from recurrence import (
    advance_or_expire,
    balance_delta,
    post_income_occurrence,
    post_recurring_occurrence,
)
from schemas import (
    AccountIn,
    CardTransactionIn,
    ContributionIn,
    CreditCardIn,
    HouseholdIn,
    HouseholdMemberIn,
    RecurringIncomeIn,
    RecurringIncomeUpdate,
    RecurringTransactionIn,
    RecurringTransactionUpdate,
    SavingsGoalIn,
    TransactionIn,
)


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class PermissionDenied(ValueError):
    pass


def apply_balance_delta(
    session: Session, account_id: int, delta_cents: int, *, require_active: bool = True
) -> None:
    """Move an account balance by ``delta_cents`` in a single UPDATE."""
    stmt = (
        update(Account)
        .where(Account.id == account_id)
        .values(balance_cents=Account.balance_cents + delta_cents)
    )
    if require_active:
        stmt = stmt.where(Account.is_active.is_(True))
    result = session.execute(stmt)
    if result.rowcount == 0:
        raise NotFoundError(f"Account {account_id} not found or closed")


def _noon(on_date: date) -> datetime:
    return datetime.combine(on_date, time(12, 0))


CLEARABLE_RECURRING_FIELDS = frozenset({"category_id", "end_date"})


def _reject_cleared_fields(changes: dict) -> None:
    """Only optional columns may be patched to null."""
    for field_name, value in changes.items():
        if value is None and field_name not in CLEARABLE_RECURRING_FIELDS:
            raise ValueError(f"{field_name} cannot be null")


class _OwnedLookups:
    session: Session
    user_id: str

    def _owned_account(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        if not account.is_active:
            raise ValueError("Account is closed")
        return account

    def _owned_category(self, category_id: Optional[int]) -> Optional[Category]:
        if category_id is None:
            return None
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def _member_household(self, household_id: Optional[int]) -> Optional[int]:
        if household_id is None:
            return None
        if not HouseholdService(self.session, self.user_id).is_member(household_id):
            raise NotFoundError("Household not found")
        return household_id


class AccountService(_OwnedLookups):
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            kind=data.kind,
            currency=data.currency.upper(),
            balance_cents=data.balance_cents,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def close(self, account_id: int) -> None:
        account = self.get(account_id)
        account.is_active = False
        self.session.commit()


class HouseholdService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def household_ids(self) -> list[int]:
        stmt = select(HouseholdMember.household_id).where(
            HouseholdMember.user_id == self.user_id
        )
        return list(self.session.scalars(stmt).all())

    def is_member(self, household_id: int) -> bool:
        stmt = select(HouseholdMember.id).where(
            HouseholdMember.household_id == household_id,
            HouseholdMember.user_id == self.user_id,
        )
        return self.session.scalar(stmt) is not None

    def create(self, data: HouseholdIn) -> Household:
        household = Household(name=data.name.strip(), owner_id=self.user_id)
        household.members.append(
            HouseholdMember(user_id=self.user_id, role=HouseholdRole.owner)
        )
        self.session.add(household)
        self.session.commit()
        self.session.refresh(household)
        return household

    def add_member(self, household_id: int, data: HouseholdMemberIn) -> HouseholdMember:
        membership = self.session.scalar(
            select(HouseholdMember).where(
                HouseholdMember.household_id == household_id,
                HouseholdMember.user_id == self.user_id,
            )
        )
        if membership is None:
            raise NotFoundError("Household not found")
        if membership.role not in (HouseholdRole.owner, HouseholdRole.admin):
            raise PermissionDenied("Only owners and admins can add members")
        if data.role == HouseholdRole.owner:
            raise ValueError("A household has exactly one owner")

        existing = self.session.scalar(
            select(HouseholdMember).where(
                HouseholdMember.household_id == household_id,
                HouseholdMember.user_id == data.user_id,
            )
        )
        if existing:
            raise ValueError("User is already a member")

        member = HouseholdMember(
            household_id=household_id, user_id=data.user_id, role=data.role
        )
        self.session.add(member)
        self.session.commit()
        self.session.refresh(member)
        return member


class TransactionService(_OwnedLookups):
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def list_for_account(self, account_id: int) -> list[Transaction]:
        self._owned_account(account_id)
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                or_(
                    Transaction.account_id == account_id,
                    Transaction.transfer_to_account_id == account_id,
                ),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def create(self, data: TransactionIn) -> Transaction:
        self._owned_account(data.account_id)
        self._owned_category(data.category_id)

        if data.type == TransactionType.transfer:
            if data.transfer_to_account_id is None:
                raise ValueError("Transfers need a destination account")
            if data.transfer_to_account_id == data.account_id:
                raise ValueError("Cannot transfer to the same account")
            try:
                self._owned_account(data.transfer_to_account_id)
            except NotFoundError as exc:
                raise NotFoundError("Transfer destination account not found") from exc
        elif data.transfer_to_account_id is not None:
            raise ValueError("Only transfers can have a destination account")

        txn = Transaction(
            user_id=self.user_id,
            account_id=data.account_id,
            category_id=data.category_id,
            type=data.type,
            amount_cents=data.amount_cents,
            description=data.description.strip(),
            date=data.date,
            occurred_at=_noon(data.date),
            notes=data.notes,
            transfer_to_account_id=data.transfer_to_account_id,
        )
        self.session.add(txn)
        self.session.flush()

        # a transfer is one record: source debited, destination credited
        if data.type == TransactionType.transfer:
            apply_balance_delta(self.session, data.account_id, -data.amount_cents)
            apply_balance_delta(
                self.session, data.transfer_to_account_id, data.amount_cents
            )
        else:
            apply_balance_delta(
                self.session,
                data.account_id,
                balance_delta(data.type, data.amount_cents),
            )

        publish_event(
            self.session,
            self.user_id,
            TRANSACTION_CREATED,
            {"transaction_id": txn.id, "type": txn.type.value},
        )
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        billed = self.session.scalar(
            select(CreditCardTransaction.id)
            .where(CreditCardTransaction.bank_transaction_id == txn.id)
            .limit(1)
        )
        if billed is not None:
            raise PermissionDenied("Card charges cannot be deleted once billed")

        reverse_transaction(self.session, txn)
        self.session.delete(txn)
        publish_event(
            self.session,
            self.user_id,
            TRANSACTION_DELETED,
            {"transaction_id": transaction_id},
        )
        self.session.commit()


def reverse_transaction(session: Session, txn: Transaction) -> None:
    if txn.type == TransactionType.transfer:
        apply_balance_delta(
            session, txn.account_id, txn.amount_cents, require_active=False
        )
        if txn.transfer_to_account_id is not None:
            apply_balance_delta(
                session,
                txn.transfer_to_account_id,
                -txn.amount_cents,
                require_active=False,
            )
        return
    apply_balance_delta(
        session,
        txn.account_id,
        -balance_delta(txn.type, txn.amount_cents),
        require_active=False,
    )


@dataclass
class BalanceResult:
    account_id: int
    account_name: str
    old_balance_cents: int
    new_balance_cents: int

    @property
    def difference_cents(self) -> int:
        return self.new_balance_cents - self.old_balance_cents

    def as_dict(self) -> dict[str, object]:
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "old_balance_cents": self.old_balance_cents,
            "new_balance_cents": self.new_balance_cents,
            "difference_cents": self.difference_cents,
        }


@dataclass
class BalanceRecalculation:
    results: list[BalanceResult] = field(default_factory=list)
    errors: list[dict[str, object]] = field(default_factory=list)


class BalanceService:
    """Rebuilds cached account balances from the transaction ledger."""

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def ledger_balance(self, account: Account) -> int:
        """Replay the ledger for ``account``.

        Income adds, expense subtracts, and a transfer subtracts only when the
        record names this account as ``account_id`` and carries a destination.
        Incoming transfers are collected separately from records of other
        accounts that point here via ``transfer_to_account_id``.
        """
        stmt = (
            select(Transaction)
            .where(
                Transaction.account_id == account.id,
                Transaction.user_id == self.user_id,
            )
            .order_by(Transaction.date, Transaction.id)
        )
        calculated = 0
        for txn in self.session.scalars(stmt):
            if txn.type == TransactionType.income:
                calculated += txn.amount_cents
            elif txn.type == TransactionType.expense:
                calculated -= txn.amount_cents
            elif (
                txn.type == TransactionType.transfer
                and txn.account_id == account.id
                and txn.transfer_to_account_id is not None
            ):
                calculated -= txn.amount_cents

        incoming = select(Transaction).where(
            Transaction.type == TransactionType.transfer,
            Transaction.transfer_to_account_id == account.id,
            Transaction.account_id != account.id,
            Transaction.user_id == self.user_id,
        )
        for transfer in self.session.scalars(incoming):
            calculated += transfer.amount_cents
        return calculated

    def _recalculate_account(self, account: Account) -> BalanceResult:
        old_balance = account.balance_cents
        new_balance = self.ledger_balance(account)
        account.balance_cents = new_balance
        self.session.flush()
        return BalanceResult(
            account_id=account.id,
            account_name=account.name,
            old_balance_cents=old_balance,
            new_balance_cents=new_balance,
        )

    def recalculate_for_user(self) -> BalanceRecalculation:
        accounts = self.session.scalars(
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.id)
            .execution_options(populate_existing=True)
        ).all()
        outcome = BalanceRecalculation()
        for account in accounts:
            account_id = account.id
            try:
                with self.session.begin_nested():
                    result = self._recalculate_account(account)
            except Exception as exc:
                logger.exception(
                    f"balance_recalculate_failed: account_id={account_id} error={exc}"
                )
                outcome.errors.append({"account_id": account_id, "error": str(exc)})
                continue
            if result.difference_cents:
                logger.info(
                    f"balance_drift: account_id={account_id} "
                    f"old={result.old_balance_cents} new={result.new_balance_cents}"
                )
            outcome.results.append(result)
        publish_event(
            self.session,
            self.user_id,
            DASHBOARD_UPDATE,
            {"action": "balances_recalculated"},
        )
        self.session.commit()
        return outcome


class RecurringIncomeService(_OwnedLookups):
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, income_id: int) -> RecurringIncome:
        income = self.session.get(RecurringIncome, income_id)
        if not income or income.user_id != self.user_id:
            raise NotFoundError("Recurring income not found")
        return income

    def list_all(self) -> list[RecurringIncome]:
        stmt = (
            select(RecurringIncome)
            .options(joinedload(RecurringIncome.account))
            .where(RecurringIncome.user_id == self.user_id)
            .order_by(RecurringIncome.created_at.desc(), RecurringIncome.id.desc())
        )
        return self.session.scalars(stmt).all()

    def create(
        self, data: RecurringIncomeIn, today: Optional[date] = None
    ) -> RecurringIncome:
        today = today or local_today()
        self._owned_account(data.account_id)
        self._owned_category(data.category_id)

        this_month, passed = first_run_for(data.day_of_month, today=today)
        income = RecurringIncome(
            user_id=self.user_id,
            account_id=data.account_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            description=data.description.strip(),
            day_of_month=data.day_of_month,
            next_run_date=(
                next_monthly_run(today, data.day_of_month) if passed else this_month
            ),
        )
        self.session.add(income)
        self.session.flush()

        if passed:
            # backfill: the occurrence already passed this month, dated on that day
            post_income_occurrence(self.session, income, this_month, _noon(this_month))
            income.last_run_date = this_month
            logger.info(
                f"recurring_income_backfill: id={income.id} date={this_month.isoformat()}"
            )

        publish_event(
            self.session,
            self.user_id,
            RECURRING_CHANGED,
            {"action": "created", "recurring_income_id": income.id},
        )
        self.session.commit()
        self.session.refresh(income)
        return income

    def update(
        self,
        income_id: int,
        data: RecurringIncomeUpdate,
        today: Optional[date] = None,
    ) -> RecurringIncome:
        today = today or local_today()
        income = self.get(income_id)
        changes = data.model_dump(exclude_unset=True)
        _reject_cleared_fields(changes)

        if "account_id" in changes and changes["account_id"] != income.account_id:
            self._owned_account(changes["account_id"])
        if changes.get("category_id") is not None:
            self._owned_category(changes["category_id"])

        new_day = changes.get("day_of_month")
        if new_day is not None and new_day != income.day_of_month:
            this_month, passed = first_run_for(new_day, today=today)
            income.next_run_date = (
                next_monthly_run(today, new_day) if passed else this_month
            )

        for field_name, value in changes.items():
            if field_name == "description" and value is not None:
                value = value.strip()
            setattr(income, field_name, value)

        publish_event(
            self.session,
            self.user_id,
            RECURRING_CHANGED,
            {"action": "updated", "recurring_income_id": income.id},
        )
        self.session.commit()
        self.session.refresh(income)
        return income

    def delete(self, income_id: int, delete_transactions: bool = False) -> int:
        income = self.get(income_id)
        removed = 0
        if delete_transactions:
            linked = self.session.scalars(
                select(Transaction).where(
                    Transaction.user_id == self.user_id,
                    Transaction.recurring_income_id == income.id,
                )
            ).all()
            for txn in linked:
                reverse_transaction(self.session, txn)
                self.session.delete(txn)
                removed += 1
        self.session.delete(income)
        publish_event(
            self.session,
            self.user_id,
            RECURRING_CHANGED,
            {"action": "deleted", "recurring_income_id": income_id},
        )
        self.session.commit()
        return removed


class RecurringTransactionService(_OwnedLookups):
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, recurring_id: int) -> RecurringTransaction:
        recurring = self.session.get(RecurringTransaction, recurring_id)
        if not recurring or recurring.user_id != self.user_id:
            raise NotFoundError("Recurring transaction not found")
        return recurring

    def list_all(
        self, type: Optional[RecurringType] = None
    ) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .options(joinedload(RecurringTransaction.account))
            .where(RecurringTransaction.user_id == self.user_id)
            .order_by(
                RecurringTransaction.created_at.desc(), RecurringTransaction.id.desc()
            )
        )
        if type is not None:
            stmt = stmt.where(RecurringTransaction.type == type)
        return self.session.scalars(stmt).all()

    def create(
        self, data: RecurringTransactionIn, today: Optional[date] = None
    ) -> RecurringTransaction:
        today = today or local_today()
        if data.end_date is not None and data.end_date < today:
            raise ValueError("End date cannot be in the past")
        self._owned_account(data.account_id)
        self._owned_category(data.category_id)
        household_id = self._member_household(data.household_id)

        this_month, passed = first_run_for(data.day_of_month, today=today)
        recurring = RecurringTransaction(
            user_id=self.user_id,
            account_id=data.account_id,
            category_id=data.category_id,
            type=data.type,
            amount_cents=data.amount_cents,
            description=data.description.strip(),
            day_of_month=data.day_of_month,
            next_run_date=this_month,
            end_date=data.end_date,
            household_id=household_id,
            is_shared=data.is_shared and household_id is not None,
        )
        self.session.add(recurring)
        self.session.flush()

        if passed:
            txn = post_recurring_occurrence(
                self.session, recurring, this_month, _noon(this_month)
            )
            if txn is not None:
                recurring.last_run_date = this_month
                logger.info(
                    f"recurring_transaction_backfill: id={recurring.id} "
                    f"date={this_month.isoformat()} transaction_id={txn.id}"
                )
            advance_or_expire(recurring, next_monthly_run(today, data.day_of_month))

        publish_event(
            self.session,
            self.user_id,
            RECURRING_CHANGED,
            {"action": "created", "recurring_transaction_id": recurring.id},
        )
        self.session.commit()
        self.session.refresh(recurring)
        return recurring

    def update(
        self,
        recurring_id: int,
        data: RecurringTransactionUpdate,
        today: Optional[date] = None,
    ) -> RecurringTransaction:
        today = today or local_today()
        recurring = self.get(recurring_id)
        changes = data.model_dump(exclude_unset=True)
        _reject_cleared_fields(changes)

        end_date = changes.get("end_date")
        if end_date is not None and end_date < today:
            raise ValueError("End date cannot be in the past")
        if "account_id" in changes and changes["account_id"] != recurring.account_id:
            self._owned_account(changes["account_id"])
        if changes.get("category_id") is not None:
            self._owned_category(changes["category_id"])

        new_day = changes.get("day_of_month")
        if new_day is not None and new_day != recurring.day_of_month:
            this_month, passed = first_run_for(new_day, today=today)
            recurring.next_run_date = (
                next_monthly_run(today, new_day) if passed else this_month
            )

        for field_name, value in changes.items():
            if field_name == "description" and value is not None:
                value = value.strip()
            setattr(recurring, field_name, value)

        publish_event(
            self.session,
            self.user_id,
            RECURRING_CHANGED,
            {"action": "updated", "recurring_transaction_id": recurring.id},
        )
        self.session.commit()
        self.session.refresh(recurring)
        return recurring

    def delete(self, recurring_id: int, delete_transactions: bool = False) -> int:
        recurring = self.get(recurring_id)
        removed = 0
        if delete_transactions:
            linked = self.session.scalars(
                select(Transaction).where(
                    Transaction.user_id == self.user_id,
                    Transaction.recurring_transaction_id == recurring.id,
                )
            ).all()
            for txn in linked:
                reverse_transaction(self.session, txn)
                self.session.delete(txn)
                removed += 1
        self.session.delete(recurring)
        publish_event(
            self.session,
            self.user_id,
            RECURRING_CHANGED,
            {"action": "deleted", "recurring_transaction_id": recurring_id},
        )
        self.session.commit()
        return removed


class GoalService(_OwnedLookups):
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get_visible(self, goal_id: int) -> SavingsGoal:
        goal = self.session.get(SavingsGoal, goal_id)
        if goal is None:
            raise NotFoundError("Goal not found")
        if goal.user_id == self.user_id:
            return goal
        if goal.household_id is not None and HouseholdService(
            self.session, self.user_id
        ).is_member(goal.household_id):
            return goal
        raise NotFoundError("Goal not found")

    def create_goal(self, data: SavingsGoalIn) -> SavingsGoal:
        household_id = self._member_household(data.household_id)
        goal = SavingsGoal(
            user_id=self.user_id,
            household_id=household_id,
            name=data.name.strip(),
            target_cents=data.target_cents,
            current_cents=data.initial_saved_cents,
            target_date=data.target_date,
        )
        self.session.add(goal)
        self.session.flush()
        if data.initial_saved_cents > 0:
            self.session.add(
                GoalContribution(
                    goal_id=goal.id,
                    user_id=self.user_id,
                    amount_cents=data.initial_saved_cents,
                    date=local_today(),
                    note="Initial deposit",
                    payment_method=PaymentMethod.cash,
                )
            )
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def _owned_card(self, card_id: int) -> CreditCard:
        card = self.session.get(CreditCard, card_id)
        if not card or card.user_id != self.user_id:
            raise NotFoundError("Credit card not found")
        if not card.is_active:
            raise ValueError("Credit card is inactive")
        return card

    def add_contribution(self, goal_id: int, data: ContributionIn) -> GoalContribution:
        goal = self.get_visible(goal_id)
        method = data.payment_method

        # resolve the payment source before anything is written
        account = card = None
        if method == PaymentMethod.account and data.source_id is not None:
            account = self._owned_account(data.source_id)
        elif method == PaymentMethod.credit_card and data.source_id is not None:
            card = self._owned_card(data.source_id)

        contribution = GoalContribution(
            goal_id=goal.id,
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            date=data.date,
            note=data.note,
            payment_method=method,
            source_id=data.source_id,
        )
        self.session.add(contribution)
        self.session.execute(
            update(SavingsGoal)
            .where(SavingsGoal.id == goal.id)
            .values(current_cents=SavingsGoal.current_cents + data.amount_cents)
        )

        description = f"Savings contribution: {goal.name}"
        if account is not None:
            txn = Transaction(
                user_id=self.user_id,
                account_id=account.id,
                type=TransactionType.expense,
                amount_cents=data.amount_cents,
                description=description,
                date=data.date,
                occurred_at=_noon(data.date),
                notes=data.note,
                goal_id=goal.id,
                household_id=goal.household_id,
            )
            self.session.add(txn)
            self.session.flush()
            apply_balance_delta(self.session, account.id, -data.amount_cents)
            contribution.transaction_id = txn.id
        elif card is not None:
            card_txn = CreditCardTransaction(
                card_id=card.id,
                user_id=self.user_id,
                amount_cents=data.amount_cents,
                description=description,
                date=data.date,
                notes=data.note,
                status=CardTransactionStatus.pending,
                goal_id=goal.id,
            )
            self.session.add(card_txn)
            self.session.flush()
            contribution.card_transaction_id = card_txn.id

        publish_event(
            self.session,
            self.user_id,
            GOAL_CONTRIBUTION,
            {
                "goal_id": goal.id,
                "amount_cents": data.amount_cents,
                "payment_method": method.value,
            },
            household_id=goal.household_id,
        )
        self.session.commit()
        self.session.refresh(contribution)
        return contribution


class CreditCardService(_OwnedLookups):
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, card_id: int) -> CreditCard:
        card = self.session.get(CreditCard, card_id)
        if not card or card.user_id != self.user_id:
            raise NotFoundError("Credit card not found")
        return card

    def create(self, data: CreditCardIn) -> CreditCard:
        self._owned_account(data.linked_account_id)
        household_id = self._member_household(data.household_id)
        card = CreditCard(
            user_id=self.user_id,
            household_id=household_id,
            name=data.name.strip(),
            last_four_digits=data.last_four_digits,
            billing_day=data.billing_day,
            linked_account_id=data.linked_account_id,
        )
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def add_transaction(
        self, card_id: int, data: CardTransactionIn
    ) -> CreditCardTransaction:
        card = self.get(card_id)
        if not card.is_active:
            raise ValueError("Credit card is inactive")
        self._owned_category(data.category_id)
        card_txn = CreditCardTransaction(
            card_id=card.id,
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            description=data.description.strip(),
            date=data.date,
            category_id=data.category_id,
            notes=data.notes,
            status=CardTransactionStatus.pending,
        )
        self.session.add(card_txn)
        self.session.flush()
        publish_event(
            self.session,
            self.user_id,
            CREDIT_CARD_TRANSACTION,
            {"card_id": card.id, "card_transaction_id": card_txn.id},
            household_id=card.household_id,
        )
        self.session.commit()
        self.session.refresh(card_txn)
        return card_txn

    def delete_transaction(self, card_id: int, card_transaction_id: int) -> None:
        card = self.get(card_id)
        card_txn = self.session.get(CreditCardTransaction, card_transaction_id)
        if not card_txn or card_txn.card_id != card.id:
            raise NotFoundError("Card transaction not found")
        if card_txn.status == CardTransactionStatus.billed:
            raise PermissionDenied("Billed card transactions cannot be deleted")
        self.session.delete(card_txn)
        self.session.commit()
