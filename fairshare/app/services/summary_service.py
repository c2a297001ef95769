"""
services/summary_service.py — Balance summary assembly.

Orchestrates one computation for a group:

    prefetch rates (fan-out) → aggregate_balances → simplify_debts
        → totals, category / month breakdowns, conversion stats

and packages the result as a BalanceSummary. summarize() is pure: same
inputs, same rate answers, same output. build_summary() is the only
function here that touches the database, through query_service.

Percentages and rankings always use display-currency amounts, even in OFF
mode, so that a category paid in yen never outranks one paid in euros just
because its number is bigger. OFF mode additionally reports per-original-
currency totals for display.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.orm import Session

from fairshare.app.errors import AppError, ComputationIssue, ErrorCode
from fairshare.app.services import query_service
from fairshare.app.services.balance_service import (
    aggregate_balances,
    prefetch_rates,
    simplify_debts,
)
from fairshare.app.services.currency_service import CurrencyResolver, rate_key
from fairshare.app.services.money import quantize, zero_epsilon
from fairshare.app.services.rate_provider import RateProvider
from fairshare.app.services.types import (
    CategoryInfo,
    ConversionMode,
    ConvertedAmount,
    Debt,
    ExpenseRecord,
    GroupInfo,
    Member,
    UserInfo,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED_NAME = "Other"


@dataclass(frozen=True)
class UserBalance:
    user_id: int
    user: UserInfo | None
    net_balance: Decimal
    total_paid: Decimal
    total_owed: Decimal


@dataclass(frozen=True)
class CategoryShare:
    category_id: int | None
    name: str
    color: str | None
    amount: Decimal
    percentage: Decimal
    count: int
    original_totals: dict[str, Decimal]


@dataclass(frozen=True)
class ConversionStats:
    converted_count: int
    total_count: int
    unconverted_expense_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class SpendingSplit:
    group_total: Decimal
    personal_total: Decimal
    group_percentage: Decimal
    personal_percentage: Decimal


@dataclass
class BalanceSummary:
    group: GroupInfo
    display_currency: str
    conversion_mode: ConversionMode
    total_expenses: Decimal
    user_balances: list[UserBalance]
    simplified_debts: list[Debt]
    conversion_stats: ConversionStats
    spending_split: SpendingSplit
    category_breakdown: list[CategoryShare]
    monthly_breakdown: list[tuple[str, Decimal]]
    totals_by_currency: dict[str, Decimal]
    conversions: dict[int, ConvertedAmount]
    issues: list[ComputationIssue] = field(default_factory=list)

    @property
    def warnings(self) -> list[ComputationIssue]:
        return [i for i in self.issues if not i.is_error]

    @property
    def errors(self) -> list[ComputationIssue]:
        return [i for i in self.issues if i.is_error]

    @property
    def balance_sum(self) -> Decimal:
        return sum((b.net_balance for b in self.user_balances), Decimal("0"))

    def to_dict(self) -> dict:
        """JSON-ready payload: amounts as strings, dates as ISO-8601."""
        users = {b.user_id: b.user for b in self.user_balances}

        def _name(uid):
            user = users.get(uid)
            return user.username if user else f"user_{uid}"

        return {
            "group_id": self.group.id,
            "group_name": self.group.name,
            "display_currency": self.display_currency,
            "conversion_mode": self.conversion_mode.value,
            "total_expenses": str(self.total_expenses),
            "balances": [
                {
                    "user_id": b.user_id,
                    "name": _name(b.user_id),
                    "is_shadow": bool(b.user and b.user.is_shadow),
                    "balance": str(b.net_balance),
                    "total_paid": str(b.total_paid),
                    "total_owed": str(b.total_owed),
                }
                for b in self.user_balances
            ],
            "simplified_debts": [
                {
                    "from_user_id": d.from_user_id,
                    "from_name": _name(d.from_user_id),
                    "to_user_id": d.to_user_id,
                    "to_name": _name(d.to_user_id),
                    "amount": str(d.amount),
                }
                for d in self.simplified_debts
            ],
            "balance_sum": str(self.balance_sum),
            "conversion_stats": {
                "converted_count": self.conversion_stats.converted_count,
                "total_count": self.conversion_stats.total_count,
                "unconverted_expense_ids": list(self.conversion_stats.unconverted_expense_ids),
            },
            "spending_split": {
                "group_total": str(self.spending_split.group_total),
                "personal_total": str(self.spending_split.personal_total),
                "group_percentage": str(self.spending_split.group_percentage),
                "personal_percentage": str(self.spending_split.personal_percentage),
            },
            "category_breakdown": [
                {
                    "category_id": c.category_id,
                    "name": c.name,
                    "color": c.color,
                    "amount": str(c.amount),
                    "percentage": str(c.percentage),
                    "count": c.count,
                    "original_totals": {k: str(v) for k, v in c.original_totals.items()},
                }
                for c in self.category_breakdown
            ],
            "monthly_breakdown": [
                {"month": month, "amount": str(amount)}
                for month, amount in self.monthly_breakdown
            ],
            "totals_by_currency": {k: str(v) for k, v in self.totals_by_currency.items()},
            "conversions": {
                str(expense_id): conversion.to_dict()
                for expense_id, conversion in self.conversions.items()
            },
            "warnings": [i.to_dict() for i in self.warnings],
            "errors": [i.to_dict() for i in self.errors],
        }


# ── Helpers ────────────────────────────────────────────────────────────────

def _percentage(part: Decimal, whole: Decimal) -> Decimal:
    if whole == 0:
        return Decimal("0.00")
    return (part / whole * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _display_amount(conversion: ConvertedAmount) -> Decimal:
    """Converted amount, or the original one when no rate was available."""
    if conversion.converted is not None:
        return conversion.converted.amount
    return conversion.original.amount


def _order_members(
        members: list[Member],
        current_user_id: int | None,
        self_first: bool,
) -> list[Member]:
    if not self_first or current_user_id is None:
        return list(members)
    own = [m for m in members if m.user_id == current_user_id]
    others = [m for m in members if m.user_id != current_user_id]
    return own + others


def _category_breakdown(
        expenses: list[ExpenseRecord],
        display_amounts: dict[int, Decimal],
        total: Decimal,
        categories: dict[int, CategoryInfo],
) -> list[CategoryShare]:
    amounts: dict[int | None, Decimal] = defaultdict(Decimal)
    counts: dict[int | None, int] = defaultdict(int)
    originals: dict[int | None, dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))

    for expense in expenses:
        key = expense.category_id
        amounts[key] += display_amounts[expense.id]
        counts[key] += 1
        originals[key][expense.currency] += expense.amount

    shares = []
    for key, amount in amounts.items():
        info = categories.get(key) if key is not None else None
        shares.append(CategoryShare(
            category_id=key,
            name=info.name if info else UNCATEGORIZED_NAME,
            color=info.color if info else None,
            amount=amount,
            percentage=_percentage(amount, total),
            count=counts[key],
            original_totals=dict(sorted(originals[key].items())),
        ))

    # Largest first; ties by category id (uncategorized last).
    shares.sort(key=lambda c: (-c.amount, c.category_id is None, c.category_id or 0))
    return shares


def _monthly_breakdown(
        expenses: list[ExpenseRecord],
        display_amounts: dict[int, Decimal],
) -> list[tuple[str, Decimal]]:
    by_month: dict[str, Decimal] = defaultdict(Decimal)
    for expense in expenses:
        by_month[expense.date.strftime("%Y-%m")] += display_amounts[expense.id]
    return sorted(by_month.items())


# ── Assembly ───────────────────────────────────────────────────────────────

def summarize(
        group: GroupInfo,
        expenses: list[ExpenseRecord],
        members: list[Member],
        display_currency: str,
        mode: ConversionMode,
        resolver: CurrencyResolver,
        categories: dict[int, CategoryInfo] | None = None,
        current_user_id: int | None = None,
        self_first: bool = False,
        max_workers: int = 4,
        timeout: float | None = None,
) -> BalanceSummary:
    """
    Builds the full balance summary for one group.

    `expenses` may include personal expenses of the viewer; they are
    converted and reported in `spending_split` but never netted.
    """
    categories = categories or {}

    # One lookup per distinct (currency, date) pair across everything shown.
    rates = prefetch_rates(
        expenses, display_currency, mode, resolver,
        max_workers=max_workers, timeout=timeout,
    )

    aggregation = aggregate_balances(
        expenses, members, display_currency, mode, resolver, rates=rates,
    )
    debts = simplify_debts(
        aggregation.net_balances,
        epsilon=zero_epsilon(display_currency),
    )

    included = [e for e in expenses if e.id in aggregation.conversions]
    personal = [e for e in expenses if not e.counts_toward_group]

    conversions: dict[int, ConvertedAmount] = dict(aggregation.conversions)
    for expense in personal:
        conversions[expense.id] = resolver.apply(
            expense.amount,
            expense.currency,
            display_currency,
            expense.date,
            mode,
            rates.get((expense.currency, rate_key(expense.date, mode))),
        )

    display_amounts = {
        expense_id: _display_amount(conversion)
        for expense_id, conversion in conversions.items()
    }

    group_total = sum((display_amounts[e.id] for e in included), Decimal("0"))
    personal_total = sum((display_amounts[e.id] for e in personal), Decimal("0"))
    overall = group_total + personal_total

    # Stats describe the group expenses only; personal spending is extra.
    group_conversions = {e.id: conversions[e.id] for e in included}
    foreign = [
        c for c in group_conversions.values() if c.original.currency != display_currency
    ]
    stats = ConversionStats(
        converted_count=sum(1 for c in foreign if c.is_converted),
        total_count=len(foreign),
        unconverted_expense_ids=tuple(
            expense_id for expense_id, c in group_conversions.items() if c.is_unavailable
        ),
    )

    totals_by_currency: dict[str, Decimal] = defaultdict(Decimal)
    for expense in included:
        totals_by_currency[expense.currency] += expense.amount

    balances = {b.user_id: b.net_balance for b in aggregation.net_balances}
    user_balances = [
        UserBalance(
            user_id=m.user_id,
            user=m.user,
            net_balance=balances[m.user_id],
            total_paid=aggregation.total_paid[m.user_id],
            total_owed=aggregation.total_owed[m.user_id],
        )
        for m in _order_members(members, current_user_id, self_first)
    ]

    summary = BalanceSummary(
        group=group,
        display_currency=display_currency,
        conversion_mode=mode,
        total_expenses=quantize(group_total, display_currency),
        user_balances=user_balances,
        simplified_debts=debts,
        conversion_stats=stats,
        spending_split=SpendingSplit(
            group_total=quantize(group_total, display_currency),
            personal_total=quantize(personal_total, display_currency),
            group_percentage=_percentage(group_total, overall),
            personal_percentage=_percentage(personal_total, overall),
        ),
        category_breakdown=_category_breakdown(
            included, display_amounts, group_total, categories,
        ),
        monthly_breakdown=_monthly_breakdown(included, display_amounts),
        totals_by_currency=dict(sorted(totals_by_currency.items())),
        conversions=conversions,
        issues=list(aggregation.issues),
    )

    logger.info(
        "Balance summary computed",
        extra={"extra_data": {
            "group_id": group.id,
            "display_currency": display_currency,
            "conversion_mode": mode.value,
            "expenses": len(included),
            "debts": len(debts),
            "converted_count": stats.converted_count,
            "total_count": stats.total_count,
            "issues": len(summary.issues),
        }},
    )
    return summary


def get_balance_between_users(summary: BalanceSummary, user_a: int, user_b: int) -> Decimal:
    """
    Signed amount settled between two users in the simplified debts.

    Positive: user_a is owed by user_b. Negative: user_a owes user_b.
    Zero when no simplified debt links them.
    """
    for debt in summary.simplified_debts:
        if debt.from_user_id == user_a and debt.to_user_id == user_b:
            return -debt.amount
        if debt.from_user_id == user_b and debt.to_user_id == user_a:
            return debt.amount
    return Decimal("0")


# ── Database-backed entry points ───────────────────────────────────────────

def _resolve_settings(
        caller_id: int,
        session: Session,
        config,
        display_currency: str | None,
        conversion_mode: str | None,
) -> tuple[str, ConversionMode]:
    """Request value, then the caller's stored preference, then the config default."""
    stored_currency, stored_mode = query_service.get_user_preferences(caller_id, session)

    currency = (
        display_currency
        or stored_currency
        or config.get("DEFAULT_DISPLAY_CURRENCY", "ILS")
    )
    mode = (
        conversion_mode
        or stored_mode
        or config.get("DEFAULT_CONVERSION_MODE", ConversionMode.OFF.value)
    )
    return currency.upper(), ConversionMode(mode)


def build_summary(
        group_id: int,
        caller_id: int,
        session: Session,
        rate_provider: RateProvider,
        config,
        display_currency: str | None = None,
        conversion_mode: str | None = None,
        self_first: bool = False,
        include_personal: bool = False,
) -> BalanceSummary:
    """
    Loads a group's data and summarizes it for the caller. With
    `include_personal`, the caller's personal expenses are added to the
    spending split (they never affect balances).

    Raises:
        AppError(GROUP_NOT_FOUND, 404) -- group does not exist.
        AppError(FORBIDDEN, 403)       -- caller is not a member.
    """
    group = query_service.get_group(group_id, session)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )

    members = query_service.list_members(group_id, session)
    if caller_id not in {m.user_id for m in members}:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )

    currency, mode = _resolve_settings(
        caller_id, session, config, display_currency, conversion_mode,
    )

    expenses = query_service.list_expenses(group_id, session)
    if include_personal:
        expenses = expenses + query_service.list_personal_expenses(caller_id, session)

    return summarize(
        group=group,
        expenses=expenses,
        members=members,
        display_currency=currency,
        mode=mode,
        resolver=CurrencyResolver(rate_provider),
        categories=query_service.list_categories(session),
        current_user_id=caller_id,
        self_first=self_first,
        max_workers=config.get("RATE_LOOKUP_MAX_WORKERS", 4),
        timeout=config.get("EXCHANGE_RATE_TIMEOUT_SECONDS"),
    )


def get_balance_response(group_id: int, caller_id: int, session: Session, **kwargs) -> dict:
    """Builds the GET /groups/:id/balances payload."""
    return build_summary(group_id, caller_id, session, **kwargs).to_dict()
