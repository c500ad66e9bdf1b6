from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from domain.errors import ErrorCode, PersistenceError, Result
from domain.models import UINT32_MAX, CoinTransaction, CoinTransactionType
from domain.repositories import AccountGateway


logger = logging.getLogger(__name__)


def _validate_amount(amount: int) -> Optional[ErrorCode]:
    # bool is an int subclass but never a meaningful coin amount.
    if isinstance(amount, bool) or not isinstance(amount, int):
        return ErrorCode.COIN_OVERFLOW
    if amount < 0 or amount > UINT32_MAX:
        return ErrorCode.COIN_OVERFLOW
    return None


class CoinLedger:
    """
    Audited coin balance mutation for one account.

    The ledger keeps no balance of its own: every call reads storage, and
    each add/remove runs its read, limit check, balance write and audit
    entry inside a single gateway transaction. There is no public way to
    log a transaction without changing the balance.
    """

    def __init__(
        self,
        gateway: Optional[AccountGateway],
        account_id: Optional[int],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._account_id = account_id
        self._clock = clock

    @property
    def account_id(self) -> Optional[int]:
        return self._account_id

    def _is_bound(self) -> bool:
        return self._gateway is not None and self._account_id is not None

    def get_balance(self) -> Result[int]:
        if not self._is_bound():
            return Result.failure(ErrorCode.NOT_INITIALIZED)

        try:
            coins = self._gateway.get_coins(self._account_id)
        except PersistenceError:
            logger.exception("Failed to read coins for account %s", self._account_id)
            return Result.failure(ErrorCode.DATABASE_FAILURE)
        return Result.success(coins)

    def add(self, amount: int, description: str = "") -> ErrorCode:
        """Credit `amount` coins, failing with COIN_OVERFLOW past 2**32 - 1."""

        return self._apply(CoinTransactionType.ADD, amount, description)

    def remove(self, amount: int, description: str = "") -> ErrorCode:
        """Debit `amount` coins, failing with INSUFFICIENT_COINS below zero."""

        return self._apply(CoinTransactionType.REMOVE, amount, description)

    def history(self) -> Result[List[CoinTransaction]]:
        if not self._is_bound():
            return Result.failure(ErrorCode.NOT_INITIALIZED)

        try:
            entries = self._gateway.get_coin_transactions(self._account_id)
        except PersistenceError:
            logger.exception(
                "Failed to read coin transactions for account %s", self._account_id
            )
            return Result.failure(ErrorCode.DATABASE_FAILURE)
        return Result.success(entries)

    def _apply(
        self,
        transaction_type: CoinTransactionType,
        amount: int,
        description: str,
    ) -> ErrorCode:
        if not self._is_bound():
            return ErrorCode.NOT_INITIALIZED

        error = _validate_amount(amount)
        if error is not None:
            return error
        if amount == 0:
            return ErrorCode.OK

        try:
            with self._gateway.transaction():
                current = self._gateway.get_coins(self._account_id)
                if transaction_type is CoinTransactionType.ADD:
                    if current + amount > UINT32_MAX:
                        logger.warning(
                            "Refusing to add %s coins to account %s: balance %s would overflow",
                            amount,
                            self._account_id,
                            current,
                        )
                        return ErrorCode.COIN_OVERFLOW
                    new_balance = current + amount
                else:
                    if current < amount:
                        logger.warning(
                            "Refusing to remove %s coins from account %s: balance is %s",
                            amount,
                            self._account_id,
                            current,
                        )
                        return ErrorCode.INSUFFICIENT_COINS
                    new_balance = current - amount

                self._record_transaction(new_balance, transaction_type, amount, description)
        except PersistenceError:
            logger.exception(
                "Coin %s of %s failed for account %s",
                transaction_type.name.lower(),
                amount,
                self._account_id,
            )
            return ErrorCode.DATABASE_FAILURE

        logger.info(
            "Account %s coins %s %s -> %s",
            self._account_id,
            transaction_type.name.lower(),
            amount,
            new_balance,
        )
        return ErrorCode.OK

    def _record_transaction(
        self,
        new_balance: int,
        transaction_type: CoinTransactionType,
        amount: int,
        description: str,
    ) -> None:
        # Only ever called inside the transaction opened by `_apply`.
        entry = CoinTransaction(
            type=transaction_type,
            amount=amount,
            description=description,
            timestamp=int(self._clock()),
        )
        self._gateway.update_coins_and_log(self._account_id, new_balance, entry)
