"""
services/balance_service.py — Balance aggregation and debt simplification.

This file is the SINGLE SOURCE OF TRUTH for how net balances are computed.
The formula must not be reimplemented elsewhere in the codebase.

Layer rules:
  - No Flask imports, no SQLAlchemy. Inputs are the plain records from
    services/types.py; outputs are fresh objects. Nothing is persisted.
  - Fully unit-testable with a fake rate provider.

Zero-sum guarantee:
  Every included expense credits its payer with the amount minus any settled
  shares and debits each participant with their unsettled share, both scaled
  by the same rate. When the splits add up to the amount, the expense nets
  to exactly zero, so the group's balances do too. Rounding to the display
  currency is done once, at the end, with round_preserving_sum() targeting
  zero, so the rounded balances sum to exactly zero even when the exact sum
  carries a sub-unit residue within tolerance. A larger non-zero sum means
  bad source data and is reported as a BALANCE_SUM_NONZERO warning, never
  corrected.
"""

from __future__ import annotations

import heapq
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from decimal import Decimal

from fairshare.app.errors import ComputationIssue, ErrorCode, Severity, WarningCode
from fairshare.app.services.currency_service import CurrencyResolver, rate_key
from fairshare.app.services.money import (
    is_zero,
    quantize,
    round_preserving_sum,
    zero_epsilon,
)
from fairshare.app.services.types import (
    AggregationResult,
    ConversionMode,
    Debt,
    ExpenseRecord,
    Member,
    NetBalance,
    RateQuote,
)

logger = logging.getLogger(__name__)


# ── Rate fan-out ───────────────────────────────────────────────────────────

def prefetch_rates(
        expenses: list[ExpenseRecord],
        display_currency: str,
        mode: ConversionMode,
        resolver: CurrencyResolver,
        max_workers: int = 4,
        timeout: float | None = None,
) -> dict[tuple, RateQuote | None]:
    """
    Looks up every rate a computation will need, once per distinct
    (currency, date-or-LATEST) pair, concurrently.

    Returns {(currency, rate_key): quote_or_None}. Aggregation only starts
    after every lookup has completed, failed, or run past `timeout`; a
    lookup still running at the deadline counts as failed.
    """
    pairs: dict[tuple, ExpenseRecord] = {}
    for expense in expenses:
        if expense.currency == display_currency:
            continue
        pairs.setdefault((expense.currency, rate_key(expense.date, mode)), expense)

    if not pairs:
        return {}

    executor = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(pairs))))
    try:
        futures = {
            executor.submit(
                resolver.quote,
                pair[0],
                display_currency,
                sample.date,
                mode,
            ): pair
            for pair, sample in pairs.items()
        }
        done, _ = wait(futures, timeout=timeout)

        rates: dict[tuple, RateQuote | None] = {}
        for future, pair in futures.items():
            if future in done:
                try:
                    rates[pair] = future.result()
                except Exception:
                    logger.exception(
                        "Exchange rate lookup failed",
                        extra={"extra_data": {
                            "from": pair[0],
                            "to": display_currency,
                            "as_of": str(pair[1]),
                        }},
                    )
                    rates[pair] = None
            else:
                logger.warning(
                    "Exchange rate lookup timed out",
                    extra={"extra_data": {
                        "from": pair[0],
                        "to": display_currency,
                        "as_of": str(pair[1]),
                        "timeout_seconds": timeout,
                    }},
                )
                rates[pair] = None
        return rates
    finally:
        # Never block on a hung lookup; its result is already counted as failed.
        executor.shutdown(wait=False, cancel_futures=True)


# ── Validation ─────────────────────────────────────────────────────────────

def _invalid_input(expense: ExpenseRecord, member_ids: set) -> ComputationIssue | None:
    """Returns the error that excludes `expense` from aggregation, or None."""
    if expense.amount <= Decimal("0"):
        return ComputationIssue(
            ErrorCode.INVALID_EXPENSE_AMOUNT,
            f"Expense {expense.id} has a non-positive amount ({expense.amount}).",
            Severity.ERROR,
            expense_id=expense.id,
        )

    if expense.payer_id not in member_ids:
        return ComputationIssue(
            ErrorCode.PAYER_NOT_MEMBER,
            f"Expense {expense.id} was paid by user {expense.payer_id}, "
            f"who is not a member of the group.",
            Severity.ERROR,
            expense_id=expense.id,
            user_id=expense.payer_id,
        )

    for split in expense.splits:
        if split.user_id not in member_ids:
            return ComputationIssue(
                ErrorCode.SPLIT_USER_NOT_MEMBER,
                f"Expense {expense.id} has a split for user {split.user_id}, "
                f"who is not a member of the group.",
                Severity.ERROR,
                expense_id=expense.id,
                user_id=split.user_id,
            )

    return None


def _record(issues: list[ComputationIssue], issue: ComputationIssue) -> None:
    issues.append(issue)
    logger.warning(
        issue.message,
        extra={"extra_data": {"issue": issue.to_dict()}},
    )


# ── Core algorithms ────────────────────────────────────────────────────────

def aggregate_balances(
        expenses: list[ExpenseRecord],
        members: list[Member],
        display_currency: str,
        mode: ConversionMode,
        resolver: CurrencyResolver,
        rates: dict[tuple, RateQuote | None] | None = None,
        max_workers: int = 4,
        timeout: float | None = None,
) -> AggregationResult:
    """
    Computes every member's signed net balance in the display currency.

    Algorithm:
      1. Drop personal expenses (is_personal, or no group) — they never
         touch a group balance.
      2. Drop expenses that reference non-members or have a non-positive
         amount; each becomes an ERROR issue.
      3. Convert each remaining expense into the display currency. If no
         rate is available the original amount is used unchanged (the
         expense is never hidden) and a CONVERSION_UNAVAILABLE warning is
         recorded.
      4. Credit the payer with the converted amount less settled shares;
         debit each unsettled split participant with their share scaled by
         the same rate. total_paid still reports the full amount fronted.
      5. Round once and check that the balances sum to zero.

    `rates` may be supplied by a caller that already fetched them (see
    prefetch_rates); otherwise they are fetched here.

    Returns net balances in member order; members with no activity are 0.
    """
    issues: list[ComputationIssue] = []
    member_ids = [m.user_id for m in members]
    member_set = set(member_ids)

    group_expenses = [e for e in expenses if e.counts_toward_group]

    if rates is None:
        rates = prefetch_rates(
            group_expenses, display_currency, mode, resolver,
            max_workers=max_workers, timeout=timeout,
        )

    balances: dict[int, Decimal] = {uid: Decimal("0") for uid in member_ids}
    total_paid: dict[int, Decimal] = {uid: Decimal("0") for uid in member_ids}
    total_owed: dict[int, Decimal] = {uid: Decimal("0") for uid in member_ids}
    conversions = {}
    display_amounts: dict[int, Decimal] = {}

    for expense in group_expenses:
        problem = _invalid_input(expense, member_set)
        if problem is not None:
            _record(issues, problem)
            continue

        conversion = resolver.apply(
            expense.amount,
            expense.currency,
            display_currency,
            expense.date,
            mode,
            rates.get((expense.currency, rate_key(expense.date, mode))),
        )
        conversions[expense.id] = conversion

        if conversion.is_unavailable:
            ratio = Decimal("1")
            _record(issues, ComputationIssue(
                WarningCode.CONVERSION_UNAVAILABLE,
                f"No {expense.currency}->{display_currency} rate for expense "
                f"{expense.id}; its original amount was used.",
                expense_id=expense.id,
            ))
        else:
            ratio = conversion.rate

        split_total = sum((s.share_amount for s in expense.splits), Decimal("0"))
        if abs(split_total - expense.amount) > zero_epsilon(expense.currency):
            _record(issues, ComputationIssue(
                WarningCode.SPLIT_SUM_MISMATCH,
                f"Splits of expense {expense.id} add up to {split_total}, "
                f"not {expense.amount} {expense.currency}.",
                expense_id=expense.id,
            ))

        amount_display = expense.amount * ratio
        display_amounts[expense.id] = amount_display

        # Settled shares were repaid outside the ledger: neither side carries them.
        settled_total = sum(
            (s.share_amount for s in expense.splits if s.is_settled), Decimal("0")
        )
        balances[expense.payer_id] += (expense.amount - settled_total) * ratio
        total_paid[expense.payer_id] += amount_display

        for split in expense.splits:
            if split.is_settled:
                continue
            share_display = split.share_amount * ratio
            balances[split.user_id] -= share_display
            total_owed[split.user_id] += share_display

    exact_sum = sum(balances.values(), Decimal("0"))
    if is_zero(exact_sum, display_currency):
        rounded = round_preserving_sum(balances, display_currency, target=Decimal("0"))
    else:
        _record(issues, ComputationIssue(
            WarningCode.BALANCE_SUM_NONZERO,
            f"Net balances sum to {quantize(exact_sum, display_currency)} "
            f"{display_currency} instead of zero; source data is inconsistent.",
        ))
        rounded = {uid: quantize(bal, display_currency) for uid, bal in balances.items()}

    return AggregationResult(
        net_balances=[NetBalance(uid, rounded[uid]) for uid in member_ids],
        conversions=conversions,
        display_amounts=display_amounts,
        total_paid={uid: quantize(v, display_currency) for uid, v in total_paid.items()},
        total_owed={uid: quantize(v, display_currency) for uid, v in total_owed.items()},
        issues=issues,
    )


def simplify_debts(
        net_balances: list[NetBalance],
        epsilon: Decimal = Decimal("0.005"),
) -> list[Debt]:
    """
    Greedy largest-magnitude debt simplification.

    Repeatedly matches the largest creditor with the largest debtor and
    settles the smaller of the two amounts. For N members this produces at
    most N-1 transactions. It is not guaranteed to be the minimum possible
    count (that problem is NP-hard); it always zeroes every balance and is
    fully deterministic.

    Args:
        net_balances: should sum to zero. Members within `epsilon` of zero
                      are ignored.
        epsilon:      residue at or below this is clamped to zero rather
                      than emitted as a dust transaction.

    Ties between equal magnitudes are broken by the smaller user id.

    Returns:
        Debts in emission order. Empty when everyone is already settled.
    """
    # Heaps keyed by (-magnitude, user_id): largest first, then lowest id.
    creditors = [
        (-b.net_balance, b.user_id) for b in net_balances if b.net_balance > epsilon
    ]
    debtors = [
        (b.net_balance, b.user_id) for b in net_balances if b.net_balance < -epsilon
    ]
    heapq.heapify(creditors)
    heapq.heapify(debtors)

    transactions: list[Debt] = []

    while creditors and debtors:
        neg_credit, cid = heapq.heappop(creditors)
        neg_debt, did = heapq.heappop(debtors)
        credit, debt = -neg_credit, -neg_debt

        transfer = min(credit, debt)
        transactions.append(Debt(from_user_id=did, to_user_id=cid, amount=transfer))

        credit -= transfer
        debt -= transfer

        if credit > epsilon:
            heapq.heappush(creditors, (-credit, cid))
        if debt > epsilon:
            heapq.heappush(debtors, (-debt, did))

    return transactions
