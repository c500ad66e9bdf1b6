from __future__ import annotations

import dataclasses
import logging
import time
from typing import Callable, List, Optional

from application.coin_ledger import CoinLedger
from domain.errors import ErrorCode, PersistenceError, Result
from domain.models import (
    SECONDS_PER_DAY,
    UINT32_MAX,
    Account,
    AccountType,
    CoinTransaction,
    Player,
)
from domain.repositories import AccountGateway, WriteScheduler


logger = logging.getLogger(__name__)


def _is_valid_id(account_id: object) -> bool:
    return (
        isinstance(account_id, int)
        and not isinstance(account_id, bool)
        and 0 < account_id <= UINT32_MAX
    )


def _is_valid_day_count(days: object) -> bool:
    return isinstance(days, int) and not isinstance(days, bool) and 0 <= days <= UINT32_MAX


def _validate_premium(remaining_days: int, last_day: int, now: float) -> Optional[ErrorCode]:
    """
    Check a (remaining days, last day) pair.

    A negative last day is never valid. While days remain, the last day may
    not precede `now - remaining_days` days; with no days remaining any
    non-negative timestamp is accepted (0 means never premium).
    """

    if isinstance(last_day, bool) or not isinstance(last_day, int) or last_day < 0:
        return ErrorCode.INVALID_LAST_DAY
    if remaining_days > 0 and last_day < now - remaining_days * SECONDS_PER_DAY:
        return ErrorCode.INVALID_LAST_DAY
    return None


class AccountService:
    """
    Single point of access for one account's lifecycle.

    Typical use::

        service = AccountService(account_id=42)
        service.bind_persistence(gateway)
        service.bind_scheduler(scheduler)
        if service.load() is ErrorCode.OK:
            service.set_email("new@example.com")
            service.save()

    Every fallible method returns an `ErrorCode` (or a `Result` carrying one)
    instead of raising. Field setters only touch memory; `save` writes the
    scalar fields while coins are written through immediately by the
    `CoinLedger`.

    An instance has no internal locking. Calls on the same instance must be
    serialised by its owner.
    """

    def __init__(
        self,
        account_id: Optional[int] = None,
        name: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._account = Account(
            id=account_id if _is_valid_id(account_id) else None,
            name=name or "",
        )
        self._players_loaded = False
        self._gateway: Optional[AccountGateway] = None
        self._scheduler: Optional[WriteScheduler] = None
        self._clock = clock

    def bind_persistence(self, gateway: Optional[AccountGateway]) -> ErrorCode:
        if gateway is None:
            return ErrorCode.NULL_REFERENCE
        self._gateway = gateway
        return ErrorCode.OK

    def bind_scheduler(self, scheduler: Optional[WriteScheduler]) -> ErrorCode:
        if scheduler is None:
            return ErrorCode.NULL_REFERENCE
        self._scheduler = scheduler
        return ErrorCode.OK

    def _is_initialized(self) -> bool:
        return self._gateway is not None and self._scheduler is not None

    def load(self) -> ErrorCode:
        """Load using the id given at construction, or else the name."""

        if self._account.id is not None:
            return self.load_by_id(self._account.id)
        if self._account.name:
            return self.load_by_name(self._account.name)
        return ErrorCode.INVALID_ID

    def load_by_id(self, account_id: int) -> ErrorCode:
        if not _is_valid_id(account_id):
            return ErrorCode.INVALID_ID
        if self._account.id is not None and self._account.id != account_id:
            logger.warning(
                "Account %s cannot be reloaded as account %s", self._account.id, account_id
            )
            return ErrorCode.INVALID_ID
        if not self._is_initialized():
            return ErrorCode.NOT_INITIALIZED

        return self._load(lambda gateway: gateway.get_account_by_id(account_id))

    def load_by_name(self, name: str) -> ErrorCode:
        if not isinstance(name, str) or not name:
            return ErrorCode.INVALID_ID
        if not self._is_initialized():
            return ErrorCode.NOT_INITIALIZED

        return self._load(lambda gateway: gateway.get_account_by_name(name))

    def _load(self, fetch: Callable[[AccountGateway], Optional[Account]]) -> ErrorCode:
        try:
            row = fetch(self._gateway)
        except PersistenceError:
            logger.exception("Failed to fetch account row")
            return ErrorCode.DATABASE_FAILURE

        if row is None or row.id is None:
            return ErrorCode.INVALID_ID
        if self._account.id is not None and self._account.id != row.id:
            logger.warning(
                "Account %s cannot be reloaded as account %s", self._account.id, row.id
            )
            return ErrorCode.INVALID_ID

        try:
            players = self._gateway.get_players(row.id)
        except PersistenceError:
            logger.exception("Failed to fetch players for account %s", row.id)
            return ErrorCode.DATABASE_FAILURE

        # Nothing is applied until both reads have succeeded.
        self._account = dataclasses.replace(
            row,
            name=row.name or self._account.name,
            players=list(players),
        )
        self._players_loaded = True
        logger.debug("Loaded account %s with %d players", row.id, len(players))
        return ErrorCode.OK

    def save(self) -> ErrorCode:
        """Write the scalar fields synchronously. Coins and roster are not touched."""

        if not self._is_initialized() or self._account.id is None:
            return ErrorCode.NOT_INITIALIZED

        try:
            self._gateway.update_account(self._scalar_snapshot())
        except PersistenceError:
            logger.exception("Failed to save account %s", self._account.id)
            return ErrorCode.DATABASE_FAILURE

        logger.info("Saved account %s", self._account.id)
        return ErrorCode.OK

    def save_deferred(self) -> ErrorCode:
        """
        Hand the scalar fields to the write scheduler and return immediately.

        The job carries its own copy of the fields, so later setter calls do
        not leak into it. Its outcome is not reported back.
        """

        if not self._is_initialized() or self._account.id is None:
            return ErrorCode.NOT_INITIALIZED

        snapshot = self._scalar_snapshot()
        gateway = self._gateway
        self._scheduler.enqueue(lambda: gateway.update_account(snapshot))
        logger.debug("Queued deferred save for account %s", snapshot.id)
        return ErrorCode.OK

    def _scalar_snapshot(self) -> Account:
        return dataclasses.replace(self._account, players=[])

    def get_id(self) -> Result[int]:
        if self._account.id is None:
            return Result.failure(ErrorCode.NOT_INITIALIZED)
        return Result.success(self._account.id)

    def get_email(self) -> Result[str]:
        return Result.success(self._account.email)

    def set_email(self, email: str) -> ErrorCode:
        if not isinstance(email, str) or not email:
            return ErrorCode.INVALID_EMAIL
        self._account.email = email
        return ErrorCode.OK

    def get_password(self) -> Result[str]:
        return Result.success(self._account.password)

    def set_password(self, password: str) -> ErrorCode:
        if not isinstance(password, str) or not password:
            return ErrorCode.INVALID_PASSWORD
        self._account.password = password
        return ErrorCode.OK

    def get_premium_remaining_days(self) -> Result[int]:
        return Result.success(self._account.premium_remaining_days)

    def set_premium_remaining_days(self, days: int) -> ErrorCode:
        """
        Change the remaining days, keeping the current last day.

        The new count must still agree with the stored last day; use
        `set_premium` to move both at once.
        """

        if not _is_valid_day_count(days):
            return ErrorCode.INVALID_LAST_DAY
        error = _validate_premium(days, self._account.premium_last_day, self._clock())
        if error is not None:
            return error
        self._account.premium_remaining_days = days
        return ErrorCode.OK

    def get_premium_last_day(self) -> Result[int]:
        return Result.success(self._account.premium_last_day)

    def set_premium_last_day(self, last_day: int) -> ErrorCode:
        error = _validate_premium(
            self._account.premium_remaining_days, last_day, self._clock()
        )
        if error is not None:
            return error
        self._account.premium_last_day = last_day
        return ErrorCode.OK

    def set_premium(self, remaining_days: int, last_day: int) -> ErrorCode:
        """Set both premium fields, validating them as a pair."""

        if not _is_valid_day_count(remaining_days):
            return ErrorCode.INVALID_LAST_DAY
        error = _validate_premium(remaining_days, last_day, self._clock())
        if error is not None:
            return error
        self._account.premium_remaining_days = remaining_days
        self._account.premium_last_day = last_day
        return ErrorCode.OK

    def get_account_type(self) -> Result[AccountType]:
        return Result.success(self._account.account_type)

    def set_account_type(self, account_type: AccountType) -> ErrorCode:
        if isinstance(account_type, bool):
            return ErrorCode.INVALID_ACCOUNT_TYPE
        try:
            self._account.account_type = AccountType(account_type)
        except ValueError:
            return ErrorCode.INVALID_ACCOUNT_TYPE
        return ErrorCode.OK

    def get_player(self, name: str) -> Result[Player]:
        if not self._players_loaded:
            return Result.failure(ErrorCode.PLAYERS_LOAD_FAILURE)
        for player in self._account.players:
            if player.name == name:
                return Result.success(dataclasses.replace(player))
        return Result.failure(ErrorCode.PLAYER_NOT_FOUND)

    def get_players(self) -> Result[List[Player]]:
        """Return the roster captured by the last successful load."""

        if not self._players_loaded:
            return Result.failure(ErrorCode.PLAYERS_LOAD_FAILURE)
        return Result.success([dataclasses.replace(p) for p in self._account.players])

    def coin_ledger(self) -> Result[CoinLedger]:
        if not self._is_initialized() or self._account.id is None:
            return Result.failure(ErrorCode.NOT_INITIALIZED)
        return Result.success(CoinLedger(self._gateway, self._account.id, clock=self._clock))

    def get_coins(self) -> Result[int]:
        ledger = self.coin_ledger()
        if not ledger.ok:
            return Result.failure(ledger.error)
        return ledger.value.get_balance()

    def add_coins(self, amount: int, description: str = "") -> ErrorCode:
        ledger = self.coin_ledger()
        if not ledger.ok:
            return ledger.error
        return ledger.value.add(amount, description)

    def remove_coins(self, amount: int, description: str = "") -> ErrorCode:
        ledger = self.coin_ledger()
        if not ledger.ok:
            return ledger.error
        return ledger.value.remove(amount, description)

    def get_coin_history(self) -> Result[List[CoinTransaction]]:
        ledger = self.coin_ledger()
        if not ledger.ok:
            return Result.failure(ledger.error)
        return ledger.value.history()
