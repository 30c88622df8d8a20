"""
Budget ledger – two-phase admission control for AI spend.

Callers ``reserve()`` an estimated cost before a provider call and then
either ``commit()`` the actual cost or ``release()`` the reservation when the
call fails. Admission is decided against committed spend *plus* every
outstanding reservation, so two concurrent requests that are each within
budget but jointly exceed it cannot both be admitted.

Periods are aligned to multiples of ``period`` since the Unix epoch (UTC
midnight for the default one-day period). Any accessor that observes the
clock past the current period boundary rolls the whole ledger over first.
"""

import abc
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from typing import Callable, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from study.services.base import InvalidArgument

from .pricing import ZERO, to_decimal

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(tz=dt_timezone.utc)


def period_start_for(now: datetime, period: timedelta) -> datetime:
    """Return the start of the period containing *now*."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_timezone.utc)
    elapsed = now - _EPOCH
    return _EPOCH + (elapsed // period) * period


@dataclass(frozen=True)
class Reservation:
    """Token for provisionally held budget. Settle with commit() or release()."""

    reservation_id: str
    amount: Decimal
    period_start: datetime


@dataclass(frozen=True)
class Admission:
    """Outcome of :meth:`BudgetLedger.reserve`."""

    admitted: bool
    reservation: Optional[Reservation] = None
    remaining: Optional[Decimal] = None

    def __bool__(self) -> bool:
        return self.admitted


@dataclass(frozen=True)
class LedgerSnapshot:
    period_start: datetime
    spend: Decimal
    reserved: Decimal
    ceiling: Optional[Decimal]


class LedgerStore(abc.ABC):
    """Durable backing store for per-period spend totals."""

    @abc.abstractmethod
    def load(self, period_start: datetime) -> Optional[Decimal]:
        """Return the persisted spend for *period_start*, or ``None``."""

    @abc.abstractmethod
    def add(self, period_start: datetime, amount: Decimal) -> Decimal:
        """Add *amount* to the spend for *period_start* and return the new total.

        Stores shared by several processes must apply the increment
        atomically so concurrent writers never overwrite each other.
        """


class DatabaseLedgerStore(LedgerStore):
    """Stores one :class:`~study.models.BudgetPeriod` row per period."""

    def load(self, period_start: datetime) -> Optional[Decimal]:
        from study.models import BudgetPeriod  # local import avoids app-registry import cycles

        row = BudgetPeriod.objects.filter(period_start=period_start).only('spend').first()
        return row.spend if row is not None else None

    def add(self, period_start: datetime, amount: Decimal) -> Decimal:
        from study.models import BudgetPeriod  # local import

        with transaction.atomic():
            BudgetPeriod.objects.get_or_create(period_start=period_start)
            rows = BudgetPeriod.objects.filter(period_start=period_start)
            rows.update(spend=F('spend') + amount, updated_at=timezone.now())
            return rows.values_list('spend', flat=True).get()


class BudgetLedger:
    """Process-wide spend tracker. Construct once and inject where needed.

    Args:
        ceiling: Monetary ceiling per period. ``None`` means unmetered
            (every reservation is admitted, spend is still tracked).
        period: Length of a routing period (default: one day).
        clock: Callable returning an aware ``datetime``; injectable for tests.
        store: Optional :class:`LedgerStore` for durable totals.
    """

    def __init__(
        self,
        ceiling=None,
        *,
        period: timedelta = timedelta(days=1),
        clock: Optional[Callable[[], datetime]] = None,
        store: Optional[LedgerStore] = None,
    ) -> None:
        ceiling = to_decimal(ceiling)
        if ceiling is not None and ceiling < 0:
            raise InvalidArgument('Budget ceiling must not be negative.')
        if period <= timedelta(0):
            raise InvalidArgument('Budget period must be positive.')

        self._ceiling = ceiling
        self._period = period
        self._clock = clock or _utcnow
        self._store = store
        self._lock = threading.Lock()

        self._period_start = period_start_for(self._clock(), period)
        self._spend = self._load(self._period_start)
        self._reservations: dict[str, Decimal] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def ceiling(self) -> Optional[Decimal]:
        return self._ceiling

    @property
    def is_metered(self) -> bool:
        return self._ceiling is not None

    def reserve(self, estimated_cost) -> Admission:
        """Admit or deny a call whose cost is estimated at *estimated_cost*."""
        amount = self._validate_amount(estimated_cost)
        with self._lock:
            self._roll_over_if_needed()
            committed_and_held = self._spend + sum(self._reservations.values(), ZERO)

            if self._ceiling is not None and committed_and_held + amount > self._ceiling:
                remaining = max(self._ceiling - committed_and_held, ZERO)
                logger.info(
                    'Budget admission denied: estimate=%s remaining=%s ceiling=%s',
                    amount, remaining, self._ceiling,
                )
                return Admission(admitted=False, remaining=remaining)

            reservation = Reservation(
                reservation_id=uuid.uuid4().hex,
                amount=amount,
                period_start=self._period_start,
            )
            self._reservations[reservation.reservation_id] = amount
            remaining = None
            if self._ceiling is not None:
                remaining = self._ceiling - committed_and_held - amount
            return Admission(admitted=True, reservation=reservation, remaining=remaining)

    def commit(self, actual_cost, reservation: Optional[Reservation] = None) -> Decimal:
        """Record the true cost of a completed call and settle its reservation.

        Returns:
            Cumulative spend for the current period after the commit.

        Raises:
            InvalidArgument: If *reservation* belongs to the current period
                but was already committed or released.
        """
        amount = self._validate_amount(actual_cost)
        with self._lock:
            self._roll_over_if_needed()
            if reservation is not None and reservation.period_start == self._period_start:
                if self._reservations.pop(reservation.reservation_id, None) is None:
                    raise InvalidArgument(f'Reservation {reservation.reservation_id} is already settled.')
            # Reservations from an earlier period were discarded at rollover;
            # their actual cost lands in the period in which it completed.
            self._persist(amount)
            logger.debug('Budget commit: cost=%s spend=%s', amount, self._spend)
            return self._spend

    def release(self, reservation: Optional[Reservation]) -> None:
        """Drop a reservation without spending. Idempotent."""
        if reservation is None:
            return
        with self._lock:
            self._roll_over_if_needed()
            self._reservations.pop(reservation.reservation_id, None)

    def current_spend(self) -> Decimal:
        with self._lock:
            self._roll_over_if_needed()
            return self._spend

    def remaining(self) -> Optional[Decimal]:
        """Budget left after committed spend and outstanding reservations (``None`` if unmetered)."""
        with self._lock:
            self._roll_over_if_needed()
            if self._ceiling is None:
                return None
            held = self._spend + sum(self._reservations.values(), ZERO)
            return max(self._ceiling - held, ZERO)

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            self._roll_over_if_needed()
            return LedgerSnapshot(
                period_start=self._period_start,
                spend=self._spend,
                reserved=sum(self._reservations.values(), ZERO),
                ceiling=self._ceiling,
            )

    # ------------------------------------------------------------------
    # Internal helpers (call with self._lock held)
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_amount(value) -> Decimal:
        amount = to_decimal(value)
        if amount is None or amount < 0:
            raise InvalidArgument(f'Cost must be a non-negative amount, got {value!r}')
        return amount

    def _roll_over_if_needed(self) -> None:
        now = self._clock()
        if now < self._period_start + self._period:
            return
        new_start = period_start_for(now, self._period)
        logger.info(
            'Budget period rollover: %s -> %s (closing spend=%s)',
            self._period_start.isoformat(), new_start.isoformat(), self._spend,
        )
        self._period_start = new_start
        self._spend = self._load(new_start)
        self._reservations.clear()

    def _load(self, period_start: datetime) -> Decimal:
        if self._store is None:
            return ZERO
        persisted = self._store.load(period_start)
        return persisted if persisted is not None else ZERO

    def _persist(self, amount: Decimal) -> None:
        if self._store is None:
            self._spend += amount
            return
        # The store total includes spend committed by other processes.
        self._spend = self._store.add(self._period_start, amount)
