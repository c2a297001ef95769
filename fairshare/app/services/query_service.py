"""
services/query_service.py — Read-only access to the persistence layer.

These are the ONLY sanctioned ways for the balance engine to read group,
member, expense and category data. Each helper maps ORM rows into the
plain records of services/types.py so that nothing downstream depends on
SQLAlchemy. Nothing here writes.

Soft-deleted expenses and groups (deleted_at IS NOT NULL) are filtered at
the query level and never reach the engine.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from fairshare.app.models.expense import Category, Expense
from fairshare.app.models.group import Group
from fairshare.app.models.membership import Membership
from fairshare.app.models.user import User
from fairshare.app.services.types import (
    CategoryInfo,
    ExpenseRecord,
    GroupInfo,
    Member,
    SplitShare,
    UserInfo,
)


def _to_record(expense: Expense) -> ExpenseRecord:
    return ExpenseRecord(
        id=expense.id,
        payer_id=expense.paid_by_user_id,
        amount=expense.amount,
        currency=expense.currency,
        date=expense.date,
        splits=tuple(
            SplitShare(user_id=s.user_id, share_amount=s.amount, is_settled=bool(s.is_settled))
            for s in expense.splits
        ),
        group_id=expense.group_id,
        category_id=expense.category_id,
        is_personal=expense.group_id is None,
        description=expense.description,
    )


def get_group(group_id: int, session: Session) -> GroupInfo | None:
    """Returns the group, or None if it does not exist or was soft-deleted."""
    group = session.get(Group, group_id)
    if group is None or group.deleted_at is not None:
        return None
    return GroupInfo(id=group.id, name=group.name)


def list_expenses(group_id: int, session: Session) -> list[ExpenseRecord]:
    """Active expenses of a group with their splits, oldest first."""
    stmt = (
        select(Expense)
        .options(selectinload(Expense.splits))
        .where(
            Expense.group_id == group_id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.date, Expense.id)
    )
    return [_to_record(e) for e in session.execute(stmt).scalars().all()]


def list_personal_expenses(user_id: int, session: Session) -> list[ExpenseRecord]:
    """Active expenses the user paid outside of any group."""
    stmt = (
        select(Expense)
        .options(selectinload(Expense.splits))
        .where(
            Expense.group_id.is_(None),
            Expense.paid_by_user_id == user_id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.date, Expense.id)
    )
    return [_to_record(e) for e in session.execute(stmt).scalars().all()]


def list_members(group_id: int, session: Session) -> list[Member]:
    """Members of a group with their user info, in join order."""
    stmt = (
        select(User)
        .join(Membership, User.id == Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at, Membership.id)
    )
    return [
        Member(
            user_id=u.id,
            user=UserInfo(id=u.id, username=u.username, is_shadow=bool(u.is_shadow)),
        )
        for u in session.execute(stmt).scalars().all()
    ]


def list_categories(session: Session) -> dict[int, CategoryInfo]:
    stmt = select(Category)
    return {
        c.id: CategoryInfo(id=c.id, name=c.name, color=c.color, icon=c.icon)
        for c in session.execute(stmt).scalars().all()
    }


def get_user_preferences(user_id: int, session: Session) -> tuple[str | None, str | None]:
    """Returns the user's stored (display_currency, conversion_mode); either may be None."""
    user = session.get(User, user_id)
    if user is None:
        return None, None
    return user.display_currency, user.conversion_mode
