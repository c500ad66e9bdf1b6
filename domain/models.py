from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional


UINT32_MAX = 2**32 - 1
SECONDS_PER_DAY = 86400


class AccountType(IntEnum):
    """Account tier stored in the `type` column of `accounts`."""

    NORMAL = 1
    TUTOR = 2
    SENIOR_TUTOR = 3
    GAME_MASTER = 4
    GOD = 5


class GroupType(IntEnum):
    """
    Permission group tier used by the group subsystem.

    Deliberately separate from `AccountType`: an account's tier and the
    group of its players are assigned independently.
    """

    NORMAL = 1
    TUTOR = 2
    SENIOR_TUTOR = 3
    GAME_MASTER = 4
    COMMUNITY_MANAGER = 5
    GOD = 6


class CoinTransactionType(IntEnum):
    ADD = 1
    REMOVE = 2


@dataclass
class Player:
    """A roster entry. `deletion` of 0 means not marked for deletion."""

    name: str
    deletion: int = 0


@dataclass(frozen=True)
class CoinTransaction:
    """Audit entry written alongside every coin balance change."""

    type: CoinTransactionType
    amount: int
    description: str
    timestamp: int


@dataclass
class Account:
    """
    Persisted account record.

    The coin balance is not part of this model: it lives only in storage
    and is always read through the gateway. `players` is the roster snapshot
    taken when the account was loaded.
    """

    id: Optional[int] = None
    name: str = ""
    email: str = ""
    password: str = ""
    premium_remaining_days: int = 0
    premium_last_day: int = 0
    account_type: AccountType = AccountType.NORMAL
    players: List[Player] = field(default_factory=list)
