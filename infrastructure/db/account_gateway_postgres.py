from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

import psycopg2

from domain.errors import PersistenceError
from domain.models import Account, AccountType, CoinTransaction, CoinTransactionType, Player
from domain.repositories import AccountGateway


logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = "id, name, email, password, premdays, lastday, type"


class PostgresAccountGateway(AccountGateway):
    """
    Postgres-backed implementation of `AccountGateway`.

    Uses the same schema as the SQLite gateway. Inside `transaction()` the
    calling thread keeps a single connection, and `get_coins` locks the
    account row with `SELECT ... FOR UPDATE` so the balance cannot change
    under the caller before the block commits.
    """

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params
        self._local = threading.local()
        with self._connection() as cur:
            self._ensure_tables(cur)

    def _get_connection(self):
        return psycopg2.connect(**self._db_params)

    def _in_transaction(self) -> bool:
        return getattr(self._local, "conn", None) is not None

    @contextmanager
    def _connection(self) -> Iterator["psycopg2.extensions.cursor"]:
        """Yield a cursor, committing on success unless a transaction is open."""

        if self._in_transaction():
            with self._local.conn.cursor() as cur:
                yield cur
            return

        try:
            conn = self._get_connection()
        except psycopg2.Error as exc:
            raise PersistenceError(str(exc)) from exc
        try:
            with conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg2.Error as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._in_transaction():
            yield
            return

        try:
            conn = self._get_connection()
        except psycopg2.Error as exc:
            raise PersistenceError(str(exc)) from exc

        self._local.conn = conn
        try:
            # The connection context manager commits on success and rolls
            # back on any exception.
            with conn:
                yield
        except psycopg2.Error as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            self._local.conn = None
            conn.close()

    @staticmethod
    def _ensure_tables(cur) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS accounts (
                id SERIAL PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                email TEXT NOT NULL DEFAULT '',
                password TEXT NOT NULL DEFAULT '',
                premdays BIGINT NOT NULL DEFAULT 0,
                lastday BIGINT NOT NULL DEFAULT 0,
                type SMALLINT NOT NULL DEFAULT 1,
                coins BIGINT NOT NULL DEFAULT 0
                    CHECK (coins >= 0 AND coins <= 4294967295)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS players (
                id SERIAL PRIMARY KEY,
                account_id INTEGER NOT NULL REFERENCES accounts (id),
                name TEXT NOT NULL UNIQUE,
                deletion BIGINT NOT NULL DEFAULT 0
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS coins_transactions (
                id SERIAL PRIMARY KEY,
                account_id INTEGER NOT NULL REFERENCES accounts (id),
                type SMALLINT NOT NULL,
                amount BIGINT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                timestamp BIGINT NOT NULL
            )
            """
        )

    @staticmethod
    def _to_domain(row: tuple) -> Account:
        try:
            account_type = AccountType(int(row[6]))
        except ValueError as exc:
            raise PersistenceError(f"Account {row[0]} has unknown type {row[6]}") from exc
        return Account(
            id=int(row[0]),
            name=row[1],
            email=row[2],
            password=row[3],
            premium_remaining_days=int(row[4]),
            premium_last_day=int(row[5]),
            account_type=account_type,
        )

    def get_account_by_id(self, account_id: int) -> Optional[Account]:
        with self._connection() as cur:
            cur.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE id = %s",
                (account_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return self._to_domain(row)

    def get_account_by_name(self, name: str) -> Optional[Account]:
        with self._connection() as cur:
            cur.execute(
                f"""
                SELECT {_ACCOUNT_COLUMNS}
                FROM accounts
                WHERE name = %s OR email = %s
                ORDER BY (name = %s) DESC, id
                LIMIT 1
                """,
                (name, name, name),
            )
            row = cur.fetchone()
        if not row:
            return None
        return self._to_domain(row)

    def update_account(self, account: Account) -> None:
        with self._connection() as cur:
            cur.execute(
                """
                UPDATE accounts
                SET email = %s, password = %s, premdays = %s, lastday = %s, type = %s
                WHERE id = %s
                """,
                (
                    account.email,
                    account.password,
                    account.premium_remaining_days,
                    account.premium_last_day,
                    int(account.account_type),
                    account.id,
                ),
            )
            if cur.rowcount != 1:
                raise PersistenceError(f"Account {account.id} does not exist")

    def get_coins(self, account_id: int) -> int:
        query = "SELECT coins FROM accounts WHERE id = %s"
        if self._in_transaction():
            query += " FOR UPDATE"
        with self._connection() as cur:
            cur.execute(query, (account_id,))
            row = cur.fetchone()
        if not row:
            raise PersistenceError(f"Account {account_id} does not exist")
        return int(row[0])

    def update_coins_and_log(
        self,
        account_id: int,
        new_balance: int,
        transaction: CoinTransaction,
    ) -> None:
        with self.transaction():
            with self._connection() as cur:
                cur.execute(
                    "UPDATE accounts SET coins = %s WHERE id = %s",
                    (new_balance, account_id),
                )
                if cur.rowcount != 1:
                    raise PersistenceError(f"Account {account_id} does not exist")
                cur.execute(
                    """
                    INSERT INTO coins_transactions
                        (account_id, type, amount, description, timestamp)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (
                        account_id,
                        int(transaction.type),
                        transaction.amount,
                        transaction.description,
                        transaction.timestamp,
                    ),
                )

    def get_players(self, account_id: int) -> List[Player]:
        with self._connection() as cur:
            cur.execute(
                "SELECT name, deletion FROM players WHERE account_id = %s ORDER BY id",
                (account_id,),
            )
            rows = cur.fetchall()
        return [Player(name=row[0], deletion=int(row[1])) for row in rows]

    def get_coin_transactions(self, account_id: int) -> List[CoinTransaction]:
        with self._connection() as cur:
            cur.execute(
                """
                SELECT type, amount, description, timestamp
                FROM coins_transactions
                WHERE account_id = %s
                ORDER BY id
                """,
                (account_id,),
            )
            rows = cur.fetchall()
        return [
            CoinTransaction(
                type=CoinTransactionType(int(row[0])),
                amount=int(row[1]),
                description=row[2],
                timestamp=int(row[3]),
            )
            for row in rows
        ]

    def create_account(self, account: Account, coins: int = 0) -> int:
        """Insert a new account row and return the id storage assigned to it."""

        with self._connection() as cur:
            cur.execute(
                """
                INSERT INTO accounts (name, email, password, premdays, lastday, type, coins)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    account.name,
                    account.email,
                    account.password,
                    account.premium_remaining_days,
                    account.premium_last_day,
                    int(account.account_type),
                    coins,
                ),
            )
            account_id = int(cur.fetchone()[0])
        logger.info("Created account %s", account_id)
        return account_id

    def add_player(self, account_id: int, player: Player) -> None:
        with self._connection() as cur:
            cur.execute(
                "INSERT INTO players (account_id, name, deletion) VALUES (%s, %s, %s)",
                (account_id, player.name, player.deletion),
            )
