import logging
import os
import sys
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from application.account_service import AccountService
from domain.errors import ErrorCode
from domain.repositories import AccountGateway, WriteScheduler
from infrastructure.db.account_gateway_sqlite import SqliteAccountGateway
from infrastructure.tasks.write_scheduler import ThreadedWriteScheduler


load_dotenv()

DB_BACKEND = os.environ.get("DB_BACKEND", "sqlite")
DB_PATH = os.environ.get("DB_PATH", "accounts.db")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logger = logging.getLogger(__name__)


def postgres_params() -> dict:
    return {
        "host": os.environ.get("PG_HOST", "localhost"),
        "port": int(os.environ.get("PG_PORT", "5432")),
        "dbname": os.environ.get("PG_DBNAME", "accounts"),
        "user": os.environ.get("PG_USER", "postgres"),
        "password": os.environ.get("PG_PASSWORD", ""),
    }


def build_gateway(backend: Optional[str] = None, db_path: Optional[str] = None) -> AccountGateway:
    backend = (backend or DB_BACKEND).lower()
    if backend == "sqlite":
        return SqliteAccountGateway(db_path or DB_PATH)
    if backend == "postgres":
        # Imported lazily so the SQLite setup works without a Postgres driver.
        from infrastructure.db.account_gateway_postgres import PostgresAccountGateway

        return PostgresAccountGateway(postgres_params())
    raise RuntimeError(f"Unsupported DB_BACKEND {backend!r}; expected 'sqlite' or 'postgres'.")


def build_scheduler() -> ThreadedWriteScheduler:
    return ThreadedWriteScheduler()


def open_account(
    identity: str,
    gateway: AccountGateway,
    scheduler: WriteScheduler,
) -> Tuple[AccountService, ErrorCode]:
    """Bind and load an account from a numeric id or an account name/email."""

    if identity.isdigit():
        service = AccountService(account_id=int(identity))
    else:
        service = AccountService(name=identity)
    service.bind_persistence(gateway)
    service.bind_scheduler(scheduler)
    return service, service.load()


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("usage: account_main.py <account id | name>", file=sys.stderr)
        return 2

    gateway = build_gateway()
    scheduler = build_scheduler()
    try:
        service, error = open_account(args[0], gateway, scheduler)
        if error is not ErrorCode.OK:
            logger.error("Could not load account %s: %s", args[0], error.name)
            return 1

        coins = service.get_coins()
        players = service.get_players()
        logger.info(
            "Account %s: type=%s premium_days=%s coins=%s players=%s",
            service.get_id().value,
            service.get_account_type().value.name,
            service.get_premium_remaining_days().value,
            coins.value if coins.ok else coins.error.name,
            [p.name for p in players.value or []],
        )
        return 0
    finally:
        scheduler.shutdown()


if __name__ == "__main__":
    sys.exit(main())
