from __future__ import annotations

from typing import Callable, ContextManager, List, Optional, Protocol

from .models import Account, CoinTransaction, Player


class AccountGateway(Protocol):
    """
    Abstraction over account persistence.

    Implementations are responsible for:
    - Mapping between database rows and the `Account` / `Player` /
      `CoinTransaction` domain models.
    - Hiding any SQL / driver details from the application layer.
    - Raising `PersistenceError` for every storage failure.
    """

    def transaction(self) -> ContextManager[None]:
        """
        Open an atomic unit of work.

        Every gateway call made on the same thread inside the `with` block
        runs in one storage transaction, and the balance read inside it is
        protected against concurrent writers until the block exits.
        Leaving the block with an exception rolls everything back.
        """

        ...

    def get_account_by_id(self, account_id: int) -> Optional[Account]:
        """Return the account row with the given ID, or None if not found."""

        ...

    def get_account_by_name(self, name: str) -> Optional[Account]:
        """Return the account whose name (or email) matches, or None."""

        ...

    def update_account(self, account: Account) -> None:
        """Write email, password, premium fields and type for `account.id`."""

        ...

    def get_coins(self, account_id: int) -> int:
        ...

    def update_coins_and_log(
        self,
        account_id: int,
        new_balance: int,
        transaction: CoinTransaction,
    ) -> None:
        """
        Store the new balance and append `transaction` to the audit log.

        Either both writes persist or neither does.
        """

        ...

    def get_players(self, account_id: int) -> List[Player]:
        """Return the roster in storage order."""

        ...

    def get_coin_transactions(self, account_id: int) -> List[CoinTransaction]:
        """Return the audit log for the account, oldest entry first."""

        ...


class WriteScheduler(Protocol):
    """
    Runs deferred writes away from the caller's thread.

    Fire-and-forget: callers never observe the outcome of a job. Retry and
    failure reporting are the scheduler's own concern.
    """

    def enqueue(self, job: Callable[[], None]) -> None:
        ...
