from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from domain.errors import PersistenceError
from domain.models import Account, AccountType, CoinTransaction, CoinTransactionType, Player
from domain.repositories import AccountGateway


logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = "id, name, email, password, premdays, lastday, type"


class SqliteAccountGateway(AccountGateway):
    """
    SQLite-backed implementation of `AccountGateway`.

    Owns the `accounts`, `players` and `coins_transactions` tables and is
    self-initialising: the tables are created if needed.

    Each call opens its own connection, except inside `transaction()`, where
    the calling thread reuses one connection that holds the database write
    lock (`BEGIN IMMEDIATE`) until the block exits.
    """

    def __init__(self, db_path: str, timeout: float = 30.0) -> None:
        self._db_path = db_path
        self._timeout = timeout
        self._local = threading.local()
        try:
            self._ensure_tables()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot initialise {db_path}: {exc}") from exc

    def _get_connection(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below.
        return sqlite3.connect(self._db_path, timeout=self._timeout, isolation_level=None)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        active = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return

        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            # Nested: the outer block owns commit/rollback.
            yield
            return

        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            conn.close()
            raise PersistenceError(str(exc)) from exc

        self._local.conn = conn
        try:
            yield
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            self._rollback(conn)
            raise PersistenceError(str(exc)) from exc
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            self._local.conn = None
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        # SQLite may already have rolled back on its own (I/O errors, SQLITE_FULL).
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("Rollback failed; the original error is re-raised")

    def _ensure_tables(self) -> None:
        conn = self._get_connection()
        try:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL DEFAULT '',
                    email TEXT NOT NULL DEFAULT '',
                    password TEXT NOT NULL DEFAULT '',
                    premdays INTEGER NOT NULL DEFAULT 0,
                    lastday INTEGER NOT NULL DEFAULT 0,
                    type INTEGER NOT NULL DEFAULT 1,
                    coins INTEGER NOT NULL DEFAULT 0
                        CHECK (coins >= 0 AND coins <= 4294967295)
                );

                CREATE TABLE IF NOT EXISTS players (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL REFERENCES accounts (id),
                    name TEXT NOT NULL UNIQUE,
                    deletion INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS coins_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL REFERENCES accounts (id),
                    type INTEGER NOT NULL,
                    amount INTEGER NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    timestamp INTEGER NOT NULL
                );
                """
            )
        finally:
            conn.close()

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
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE id = ?",
                (account_id,),
            ).fetchone()
        if not row:
            return None
        return self._to_domain(row)

    def get_account_by_name(self, name: str) -> Optional[Account]:
        with self._connection() as conn:
            row = conn.execute(
                f"""
                SELECT {_ACCOUNT_COLUMNS}
                FROM accounts
                WHERE name = ? OR email = ?
                ORDER BY name = ? DESC, id
                LIMIT 1
                """,
                (name, name, name),
            ).fetchone()
        if not row:
            return None
        return self._to_domain(row)

    def update_account(self, account: Account) -> None:
        with self._connection() as conn:
            cur = conn.execute(
                """
                UPDATE accounts
                SET email = ?, password = ?, premdays = ?, lastday = ?, type = ?
                WHERE id = ?
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
        with self._connection() as conn:
            row = conn.execute(
                "SELECT coins FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
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
            with self._connection() as conn:
                cur = conn.execute(
                    "UPDATE accounts SET coins = ? WHERE id = ?",
                    (new_balance, account_id),
                )
                if cur.rowcount != 1:
                    raise PersistenceError(f"Account {account_id} does not exist")
                conn.execute(
                    """
                    INSERT INTO coins_transactions
                        (account_id, type, amount, description, timestamp)
                    VALUES (?, ?, ?, ?, ?)
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
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT name, deletion FROM players WHERE account_id = ? ORDER BY id",
                (account_id,),
            ).fetchall()
        return [Player(name=row[0], deletion=int(row[1])) for row in rows]

    def get_coin_transactions(self, account_id: int) -> List[CoinTransaction]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT type, amount, description, timestamp
                FROM coins_transactions
                WHERE account_id = ?
                ORDER BY id
                """,
                (account_id,),
            ).fetchall()
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

        with self._connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO accounts (name, email, password, premdays, lastday, type, coins)
                VALUES (?, ?, ?, ?, ?, ?, ?)
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
            account_id = int(cur.lastrowid)
        logger.info("Created account %s", account_id)
        return account_id

    def add_player(self, account_id: int, player: Player) -> None:
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO players (account_id, name, deletion) VALUES (?, ?, ?)",
                (account_id, player.name, player.deletion),
            )
