# ABOUTME: Implements the prepaid credit ledger with reserve, commit and release semantics.
# ABOUTME: Guards balance checks with an asyncio lock so concurrent reservations never overdraw an account.

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
import time
from typing import AsyncIterator, Callable

from deckforge.credits.costs import FREE_SIGNUP_CREDITS, TierLimits, tier_limits
from deckforge.runtime.contracts import CreditReservation, CreditTransaction, new_id
from deckforge.runtime.errors import AccountNotFound, InsufficientCredit, ReservationNotFound


logger = logging.getLogger(__name__)

DEFAULT_RESERVATION_TTL_SEC = 30 * 60


@dataclass
class CreditAccount:
    user_id: str
    balance: int
    tier: str = "FREE"

    @property
    def limits(self) -> TierLimits:
        return tier_limits(self.tier)


class CreditLedger:
    """Holds balances and reservations for every account in the process.

    A reservation moves RESERVED -> COMMITTED or RESERVED -> RELEASED exactly
    once. The balance is only debited on commit; until then the reserved amount
    is subtracted from what the account can still reserve.
    """

    def __init__(
        self,
        *,
        reservation_ttl_sec: float = DEFAULT_RESERVATION_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._reservation_ttl_sec = float(reservation_ttl_sec)
        self._clock = clock
        self._accounts: dict[str, CreditAccount] = {}
        self._reservations: dict[str, CreditReservation] = {}
        self._transactions: list[CreditTransaction] = []
        self._lock = asyncio.Lock()

    def open_account(self, user_id: str, *, balance: int = FREE_SIGNUP_CREDITS, tier: str = "FREE") -> CreditAccount:
        if balance < 0:
            raise ValueError("balance must be >= 0.")
        account = CreditAccount(user_id=user_id, balance=int(balance), tier=tier.upper())
        self._accounts[user_id] = account
        return account

    def get_account(self, user_id: str) -> CreditAccount:
        account = self._accounts.get(user_id)
        if account is None:
            raise AccountNotFound(f"No credit account for user {user_id}.")
        return account

    def get_reservation(self, reservation_id: str) -> CreditReservation:
        reservation = self._reservations.get(reservation_id)
        if reservation is None:
            raise ReservationNotFound(f"Unknown reservation {reservation_id}.")
        return reservation

    def transactions(self, user_id: str | None = None) -> list[CreditTransaction]:
        return [item for item in self._transactions if user_id is None or item.user_id == user_id]

    def _reserved_total(self, user_id: str, now: float) -> int:
        return sum(
            item.amount
            for item in self._reservations.values()
            if item.user_id == user_id and item.state == "RESERVED" and item.expires_at_monotonic > now
        )

    async def balance(self, user_id: str) -> int:
        return self.get_account(user_id).balance

    async def available_balance(self, user_id: str) -> int:
        account = self.get_account(user_id)
        return account.balance - self._reserved_total(user_id, self._clock())

    async def grant(self, user_id: str, amount: int) -> int:
        if amount <= 0:
            raise ValueError("amount must be > 0.")
        async with self._lock:
            account = self.get_account(user_id)
            account.balance += int(amount)
            return account.balance

    async def reserve(
        self,
        user_id: str,
        amount: int,
        reason: str,
        subject_id: str | None = None,
    ) -> CreditReservation:
        if amount <= 0:
            raise ValueError("amount must be > 0.")
        async with self._lock:
            account = self.get_account(user_id)
            now = self._clock()
            self._release_expired(now)
            available = account.balance - self._reserved_total(user_id, now)
            if available < amount:
                raise InsufficientCredit(user_id=user_id, required=amount, available=available)
            reservation = CreditReservation(
                id=new_id(),
                user_id=user_id,
                amount=int(amount),
                reason=reason,
                subject_id=subject_id,
                state="RESERVED",
                created_at_monotonic=now,
                expires_at_monotonic=now + self._reservation_ttl_sec,
            )
            self._reservations[reservation.id] = reservation
        logger.info(
            "Reserved %d credit(s) for user %s (%s, subject=%s, reservation=%s)",
            amount,
            user_id,
            reason,
            subject_id,
            reservation.id,
        )
        return reservation

    async def commit(self, reservation_id: str) -> CreditReservation:
        async with self._lock:
            reservation = self.get_reservation(reservation_id)
            if reservation.state != "RESERVED":
                logger.warning("Cannot commit reservation %s in state %s", reservation_id, reservation.state)
                return reservation
            account = self.get_account(reservation.user_id)
            account.balance -= reservation.amount
            reservation.state = "COMMITTED"
            self._transactions.append(
                CreditTransaction(
                    user_id=reservation.user_id,
                    amount=-reservation.amount,
                    balance_after=account.balance,
                    reason=reservation.reason,
                    reservation_id=reservation.id,
                    subject_id=reservation.subject_id,
                )
            )
        logger.info(
            "Committed reservation %s: %d credit(s) deducted from user %s",
            reservation_id,
            reservation.amount,
            reservation.user_id,
        )
        return reservation

    async def release(self, reservation_id: str) -> CreditReservation:
        async with self._lock:
            reservation = self.get_reservation(reservation_id)
            if reservation.state != "RESERVED":
                logger.warning("Cannot release reservation %s in state %s", reservation_id, reservation.state)
                return reservation
            reservation.state = "RELEASED"
        logger.info(
            "Released reservation %s: %d credit(s) returned to user %s",
            reservation_id,
            reservation.amount,
            reservation.user_id,
        )
        return reservation

    @asynccontextmanager
    async def hold(
        self,
        user_id: str,
        amount: int,
        reason: str,
        subject_id: str | None = None,
    ) -> AsyncIterator[CreditReservation]:
        """Reserve for the duration of the block; commit on success, release on any failure."""
        reservation = await self.reserve(user_id, amount, reason, subject_id)
        try:
            yield reservation
        except BaseException:
            await self.release(reservation.id)
            raise
        await self.commit(reservation.id)

    def _release_expired(self, now: float) -> int:
        expired = [
            item
            for item in self._reservations.values()
            if item.state == "RESERVED" and item.expires_at_monotonic <= now
        ]
        for item in expired:
            item.state = "RELEASED"
        if expired:
            logger.info("Released %d expired credit reservation(s)", len(expired))
        return len(expired)

    async def cleanup_expired(self) -> int:
        async with self._lock:
            return self._release_expired(self._clock())
