"""
services/types.py — Plain value types shared by the balance engine.

Layer rules:
  - No Flask, no SQLAlchemy. These objects are built by query_service from
    ORM rows (or directly by tests) and flow through the pure services.
  - Everything is frozen: a computation never mutates its inputs, and every
    output is derived fresh on each call.
  - Monetary amounts are Decimal. Never float.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from fairshare.app.errors import ComputationIssue


# Sentinel passed to rate providers instead of a date for "the newest rate".
LATEST = "latest"


class ConversionMode(str, enum.Enum):
    """How original-currency amounts are brought into the display currency."""
    OFF    = "off"     # show original currencies; math still converts (latest rate)
    SIMPLE = "simple"  # latest available rate
    SMART  = "smart"   # rate as of the expense's own date


class RateSource(str, enum.Enum):
    CURRENT            = "current"
    HISTORICAL         = "historical"
    # Smart mode, but the provider answered with an earlier date's rate.
    HISTORICAL_NEAREST = "historical_nearest"


@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency: str

    def to_dict(self) -> dict:
        return {"amount": str(self.amount), "currency": self.currency}


@dataclass(frozen=True)
class SplitShare:
    user_id: int
    share_amount: Decimal
    # Repaid outside the ledger; excluded from both sides of the balance.
    is_settled: bool = False


@dataclass(frozen=True)
class ExpenseRecord:
    """
    One raw expense as supplied by the persistence layer.

    `splits` sum to `amount` (within rounding) for valid group expenses.
    Personal expenses have no group and never reach a group balance.
    """
    id: int
    payer_id: int
    amount: Decimal
    currency: str
    date: date
    splits: tuple[SplitShare, ...] = ()
    group_id: int | None = None
    category_id: int | None = None
    is_personal: bool = False
    description: str = ""

    @property
    def counts_toward_group(self) -> bool:
        return not self.is_personal and self.group_id is not None


@dataclass(frozen=True)
class UserInfo:
    id: int
    username: str
    is_shadow: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "is_shadow": self.is_shadow,
        }


@dataclass(frozen=True)
class Member:
    """A group participant. Shadow (invited, unregistered) users need no special math."""
    user_id: int
    user: UserInfo | None = None

    @property
    def is_shadow(self) -> bool:
        return self.user is not None and self.user.is_shadow


@dataclass(frozen=True)
class CategoryInfo:
    id: int
    name: str
    color: str | None = None
    icon: str | None = None


@dataclass(frozen=True)
class GroupInfo:
    id: int
    name: str = ""


@dataclass(frozen=True)
class NetBalance:
    """Positive = is owed money. Negative = owes money. Display currency."""
    user_id: int
    net_balance: Decimal


@dataclass(frozen=True)
class Debt:
    from_user_id: int
    to_user_id: int
    amount: Decimal


@dataclass(frozen=True)
class RateQuote:
    """A provider's answer: `rate` converts 1 unit of base into target, valid `as_of`."""
    rate: Decimal
    as_of: date


@dataclass(frozen=True)
class ConvertedAmount:
    """
    The result of resolving one amount into the display currency.

    `converted` is None when no rate could be found. An identity conversion
    (same currency) carries the original amount unchanged with rate 1 and no
    rate_source, and is not counted as a conversion.
    """
    original: Money
    converted: Money | None
    rate: Decimal | None = None
    rate_date: date | None = None
    rate_source: RateSource | None = None

    @property
    def is_identity(self) -> bool:
        return (
            self.converted is not None
            and self.converted.currency == self.original.currency
        )

    @property
    def is_converted(self) -> bool:
        return self.converted is not None and not self.is_identity

    @property
    def is_unavailable(self) -> bool:
        return self.converted is None

    def to_dict(self) -> dict:
        return {
            "original": self.original.to_dict(),
            "converted": self.converted.to_dict() if self.converted else None,
            "rate": str(self.rate) if self.rate is not None else None,
            "rate_date": self.rate_date.isoformat() if self.rate_date else None,
            "rate_source": self.rate_source.value if self.rate_source else None,
        }


@dataclass
class AggregationResult:
    net_balances: list[NetBalance]
    conversions: dict[int, ConvertedAmount]
    # Exact display-currency amount used for netting, per included expense.
    display_amounts: dict[int, Decimal] = field(default_factory=dict)
    total_paid: dict[int, Decimal] = field(default_factory=dict)
    total_owed: dict[int, Decimal] = field(default_factory=dict)
    issues: list[ComputationIssue] = field(default_factory=list)

    @property
    def warnings(self) -> list[ComputationIssue]:
        return [i for i in self.issues if not i.is_error]

    @property
    def errors(self) -> list[ComputationIssue]:
        return [i for i in self.issues if i.is_error]

    def balance_map(self) -> dict[int, Decimal]:
        return {b.user_id: b.net_balance for b in self.net_balances}
