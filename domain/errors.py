from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Generic, Optional, TypeVar


T = TypeVar("T")


class ErrorCode(IntEnum):
    """
    Result codes returned by every fallible account operation.

    The set is closed and flat: callers branch on the code instead of
    catching exceptions.
    """

    OK = 0
    DATABASE_FAILURE = 1
    INVALID_EMAIL = 2
    INVALID_PASSWORD = 3
    INVALID_ACCOUNT_TYPE = 4
    INVALID_ID = 5
    INVALID_LAST_DAY = 6
    PLAYERS_LOAD_FAILURE = 7
    NOT_INITIALIZED = 8
    NULL_REFERENCE = 9
    INSUFFICIENT_COINS = 10
    COIN_OVERFLOW = 11
    PLAYER_NOT_FOUND = 12


@dataclass
class Result(Generic[T]):
    """Either a value (with `ErrorCode.OK`) or the code explaining why not."""

    error: ErrorCode = ErrorCode.OK
    value: Optional[T] = None

    @property
    def ok(self) -> bool:
        return self.error is ErrorCode.OK

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(error=ErrorCode.OK, value=value)

    @classmethod
    def failure(cls, error: ErrorCode) -> "Result[T]":
        return cls(error=error)


class PersistenceError(Exception):
    """
    Raised by gateway implementations when storage cannot complete a call.

    Connection, query and constraint failures all surface as this type;
    the application layer turns it into `ErrorCode.DATABASE_FAILURE`.
    """
