"""
tests/unit/test_debt_simplification.py — Unit tests for balance_service.simplify_debts.

What this file proves:
  - Two-person debt → single transaction
  - Three members, two creditors → one debtor pays both, largest first
  - All-zero (fully settled) balances → empty transaction list
  - Large group (4+ members) → at most N-1 transactions
  - Every transaction runs debtor → creditor and the set of transactions
    reproduces the original net positions exactly
  - Equal magnitudes are tie-broken by the smaller user id, so the output
    does not depend on input order
  - Residue at or below epsilon is clamped, never emitted as dust

Unit test constraints:
  - No database, no Flask.
  - simplify_debts takes plain NetBalance records; no mocking required.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from fairshare.app.services.balance_service import simplify_debts
from fairshare.app.services.types import Debt, NetBalance


# ── Helpers ────────────────────────────────────────────────────────────────

def _balances(mapping: dict[int, str]) -> list[NetBalance]:
    return [NetBalance(uid, Decimal(amount)) for uid, amount in mapping.items()]


def _verify_correctness(balances: list[NetBalance], debts: list[Debt]) -> None:
    """
    Applies the debts and asserts the resulting net positions match the input.

    simplify_debts must not invent money, lose money or misroute payments.
    """
    net = defaultdict(lambda: Decimal("0.00"))
    for debt in debts:
        net[debt.from_user_id] -= debt.amount
        net[debt.to_user_id] += debt.amount

    for b in balances:
        assert net[b.user_id] == b.net_balance, (
            f"Simplification incorrect for user {b.user_id}: "
            f"expected {b.net_balance}, got {net[b.user_id]}"
        )


# ── Tests ──────────────────────────────────────────────────────────────────

def test_all_zero_returns_empty_list():
    """Fully settled group → nothing to pay."""
    assert simplify_debts(_balances({1: "0.00", 2: "0.00", 3: "0.00"})) == []


def test_empty_input_returns_empty_list():
    assert simplify_debts([]) == []


def test_two_person_debt():
    """A is owed 50, B owes 50 → B pays A 50."""
    balances = _balances({1: "50.00", 2: "-50.00"})

    debts = simplify_debts(balances)

    assert debts == [Debt(from_user_id=2, to_user_id=1, amount=Decimal("50.00"))]


def test_one_debtor_two_creditors_largest_first():
    """
    A +40, B +20, C -60.
    C pays the largest creditor first: C→A 40, then C→B 20.
    """
    balances = _balances({1: "40.00", 2: "20.00", 3: "-60.00"})

    debts = simplify_debts(balances)

    assert debts == [
        Debt(from_user_id=3, to_user_id=1, amount=Decimal("40.00")),
        Debt(from_user_id=3, to_user_id=2, amount=Decimal("20.00")),
    ]
    _verify_correctness(balances, debts)


def test_large_group_at_most_n_minus_one_transactions():
    balances = _balances({
        1: "120.00",
        2: "-45.50",
        3: "-30.25",
        4: "10.00",
        5: "-54.25",
    })

    debts = simplify_debts(balances)

    assert len(debts) <= len(balances) - 1
    _verify_correctness(balances, debts)


def test_transactions_flow_from_debtor_to_creditor():
    balances = _balances({1: "-25.00", 2: "75.00", 3: "-50.00"})
    debtors = {1, 3}
    creditors = {2}

    for debt in simplify_debts(balances):
        assert debt.from_user_id in debtors
        assert debt.to_user_id in creditors
        assert debt.amount > 0


def test_amounts_are_decimal():
    debts = simplify_debts(_balances({1: "33.33", 2: "-33.33"}))
    assert all(isinstance(d.amount, Decimal) for d in debts)


def test_equal_magnitudes_tie_broken_by_lower_user_id():
    """Creditors 3 and 2 are owed the same amount; user 2 is paid first."""
    balances = _balances({3: "10.00", 2: "10.00", 1: "-20.00"})

    debts = simplify_debts(balances)

    assert debts == [
        Debt(from_user_id=1, to_user_id=2, amount=Decimal("10.00")),
        Debt(from_user_id=1, to_user_id=3, amount=Decimal("10.00")),
    ]


def test_output_does_not_depend_on_input_order():
    mapping = {1: "15.00", 2: "15.00", 3: "-10.00", 4: "-10.00", 5: "-10.00"}
    forward = _balances(mapping)
    backward = list(reversed(forward))

    assert simplify_debts(forward) == simplify_debts(backward)


def test_repeated_calls_return_identical_results():
    balances = _balances({1: "12.34", 2: "-6.17", 3: "-6.17"})
    assert simplify_debts(balances) == simplify_debts(balances)


def test_dust_balances_are_ignored():
    """Magnitudes at or below half a cent count as settled."""
    assert simplify_debts(_balances({1: "0.005", 2: "-0.005"})) == []


def test_residue_below_epsilon_is_not_emitted():
    """
    After paying 5.00 and 4.996 the creditor has 0.004 left, which is dust.
    Exactly two transactions are produced.
    """
    balances = _balances({1: "10.000", 2: "-5.000", 3: "-4.996"})

    debts = simplify_debts(balances)

    assert debts == [
        Debt(from_user_id=2, to_user_id=1, amount=Decimal("5.000")),
        Debt(from_user_id=3, to_user_id=1, amount=Decimal("4.996")),
    ]


def test_custom_epsilon_for_zero_decimal_currency():
    """With a yen epsilon of 0.5, a 0.4 residue is dust."""
    balances = _balances({1: "0.4", 2: "-0.4"})
    assert simplify_debts(balances, epsilon=Decimal("0.5")) == []


def test_shadow_members_are_plain_participants():
    """Simplification only sees ids and amounts; shadow status is irrelevant."""
    balances = _balances({7: "-12.00", 8: "12.00"})
    assert simplify_debts(balances) == [Debt(7, 8, Decimal("12.00"))]
