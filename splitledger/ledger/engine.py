"""
Balance Update Engine

Applies a validated expense (or settlement) to a group's balances.

THE ALGORITHM:
1. delta starts at 0 for every member
2. delta[payer] += amount
3. delta[member] -= split amount, for every split line
4. balances[member] += delta[member]

A settlement is the same update with payer = debtor and a single split
line (creditor, amount): the debtor's balance rises, the creditor's falls.

DESIGN DECISION: The ledger is kept exactly zero-sum.
The split validator lets |amount - sum(splits)| up to a small tolerance
through. That residual would otherwise leak into the group total, so it
is reported (warning log, audit event, Expense.unallocated_amount) and
taken off the payer's delta. After every update the balance total is
checked; a non-zero total raises InvariantViolationError and nothing
is committed.

CONCURRENCY:
- One asyncio.Lock per group serializes read-modify-write within a process
- Storage checks the group version on commit; when another writer got
  there first the cycle is re-run from a fresh read
"""

import asyncio
import weakref
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from splitledger.audit import AuditLogger
from splitledger.config import get_settings
from splitledger.ledger.errors import (
    GroupNotFoundError,
    IdempotencyConflictError,
    InvariantViolationError,
    ValidationError,
)
from splitledger.models.ledger import (
    Expense,
    ExpenseKind,
    Group,
    SplitLine,
    utc_now,
)
from splitledger.services.storage import ConflictError, LedgerStorageInterface


logger = structlog.get_logger(__name__)


def compute_deltas(
    members: Iterable[str],
    paid_by: str,
    amount: Decimal,
    splits: Iterable[SplitLine],
) -> dict[str, Decimal]:
    """
    Per-member balance change for one expense (steps 1-3).

    The deltas sum to amount - sum(splits).

    Raises:
        ValidationError: "non-member" if the payer or a split member
                         is not in members
    """
    deltas = {member: Decimal("0") for member in members}

    if paid_by not in deltas:
        raise ValidationError("non-member", f"Payer {paid_by} is not a group member")
    deltas[paid_by] += amount

    for line in splits:
        if line.member_id not in deltas:
            raise ValidationError(
                "non-member", f"Split member {line.member_id} is not a group member"
            )
        deltas[line.member_id] -= line.amount

    return deltas


def apply_deltas(group: Group, deltas: dict[str, Decimal]) -> Group:
    """Return a copy of group with deltas added to its balances (step 4)."""
    balances = dict(group.balances)
    for member, delta in deltas.items():
        if delta != 0:
            balances[member] = balances[member] + delta
    return group.model_copy(update={"balances": balances})


class BalanceUpdateEngine:
    """
    Turns validated expenses into committed balance changes.

    All expense and settlement writes for a group go through one engine
    instance, so its per-group locks actually serialize them.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        balance_tolerance: Optional[Decimal] = None,
        conflict_retry_attempts: Optional[int] = None,
        idempotency_window: Optional[timedelta] = None,
    ):
        settings = get_settings().ledger

        self._storage = storage
        self._audit_logger = audit_logger
        self._balance_tolerance = (
            balance_tolerance
            if balance_tolerance is not None
            else Decimal(str(settings.balance_tolerance))
        )
        self._retry_attempts = conflict_retry_attempts or settings.conflict_retry_attempts
        self._idempotency_window = (
            idempotency_window
            if idempotency_window is not None
            else timedelta(seconds=settings.idempotency_window_seconds)
        )
        # A lock lives only while someone holds or awaits it
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, group_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(group_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[group_id] = lock
        return lock

    def check_zero_sum(self, group: Group) -> None:
        """
        Raises:
            InvariantViolationError: If the balances do not sum to zero
        """
        total = group.balance_total
        if abs(total) > self._balance_tolerance:
            raise InvariantViolationError(group.id, total)

    async def apply(
        self,
        group_id: UUID,
        kind: ExpenseKind,
        description: str,
        amount: Decimal,
        paid_by: str,
        splits: list[SplitLine],
        date: Optional[datetime] = None,
        idempotency_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Apply a validated expense and record it.

        Returns:
            The committed expense, or the previously committed one when
            idempotency_key repeats a submission inside the window

        Raises:
            GroupNotFoundError: If the group does not exist
            IdempotencyConflictError: If the key was used for another payload
            InvariantViolationError: If the update would break zero-sum
            StorageError: If the commit failed (nothing was applied)
        """
        async with self._lock_for(group_id):
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._retry_attempts),
                wait=wait_exponential(multiplier=0.05, max=1),
                retry=retry_if_exception_type(ConflictError),
                reraise=True,
            ):
                with attempt:
                    return await self._apply_once(
                        group_id=group_id,
                        kind=kind,
                        description=description,
                        amount=amount,
                        paid_by=paid_by,
                        splits=splits,
                        date=date,
                        idempotency_key=idempotency_key,
                        correlation_id=correlation_id,
                    )

    async def _apply_once(
        self,
        group_id: UUID,
        kind: ExpenseKind,
        description: str,
        amount: Decimal,
        paid_by: str,
        splits: list[SplitLine],
        date: Optional[datetime],
        idempotency_key: Optional[str],
        correlation_id: Optional[UUID],
    ) -> Expense:
        group = await self._storage.get_group(group_id)
        if group is None:
            raise GroupNotFoundError(group_id)

        deltas = compute_deltas(group.members, paid_by, amount, splits)
        drift = sum(deltas.values(), Decimal("0"))

        expense_fields = dict(
            group_id=group_id,
            kind=kind,
            description=description,
            amount=amount,
            paid_by=paid_by,
            splits=tuple(splits),
            idempotency_key=idempotency_key,
            unallocated_amount=drift,
        )
        if date is not None:
            expense_fields["date"] = date
        try:
            expense = Expense(**expense_fields)
        except PydanticValidationError as e:
            raise ValidationError("invalid expense", str(e))

        if idempotency_key:
            previous = await self._find_recent(group_id, idempotency_key)
            if previous is not None:
                if previous.payload_fingerprint() != expense.payload_fingerprint():
                    raise IdempotencyConflictError(
                        f"Idempotency key {idempotency_key!r} was already used "
                        f"for a different {previous.kind.value}"
                    )
                logger.info(
                    "duplicate_submission",
                    group_id=str(group_id),
                    expense_id=str(previous.id),
                    idempotency_key=idempotency_key,
                )
                if self._audit_logger:
                    await self._audit_logger.log_duplicate_submission(
                        expense_id=previous.id,
                        idempotency_key=idempotency_key,
                        actor_id=paid_by,
                        correlation_id=correlation_id,
                    )
                return previous

        if drift != 0:
            deltas[paid_by] -= drift
            logger.warning(
                "rounding_drift",
                group_id=str(group_id),
                expense_id=str(expense.id),
                drift=str(drift),
                payer=paid_by,
            )
            if self._audit_logger:
                await self._audit_logger.log_rounding_drift(
                    expense_id=expense.id,
                    group_id=group_id,
                    drift=drift,
                    payer=paid_by,
                    correlation_id=correlation_id,
                )

        updated = apply_deltas(group, deltas)
        try:
            self.check_zero_sum(updated)
        except InvariantViolationError:
            logger.error(
                "invariant_violation",
                group_id=str(group_id),
                balance_total=str(updated.balance_total),
            )
            if self._audit_logger:
                await self._audit_logger.log_invariant_violation(
                    group_id=group_id,
                    balance_total=updated.balance_total,
                    correlation_id=correlation_id,
                )
            raise

        try:
            await self._storage.commit_expense(updated, group.version, expense)
        except ConflictError:
            logger.info("commit_conflict", group_id=str(group_id), version=group.version)
            raise

        applied_deltas = {m: d for m, d in deltas.items() if d != 0}
        logger.info(
            "expense_applied",
            group_id=str(group_id),
            expense_id=str(expense.id),
            kind=kind.value,
            amount=str(amount),
        )
        if self._audit_logger:
            await self._audit_logger.log_expense_applied(
                expense_id=expense.id,
                group_id=group_id,
                kind=kind.value,
                amount=amount,
                paid_by=paid_by,
                deltas=applied_deltas,
                correlation_id=correlation_id,
            )

        return expense

    async def _find_recent(self, group_id: UUID, idempotency_key: str) -> Optional[Expense]:
        previous = await self._storage.find_by_idempotency_key(group_id, idempotency_key)
        if previous is None:
            return None
        if utc_now() - previous.created_at > self._idempotency_window:
            return None
        return previous
