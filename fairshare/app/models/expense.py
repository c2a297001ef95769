"""
models/expense.py — Expense and Category table definitions.

No business logic. No imports from services or routes.

Key design points:
  - `group_id` is NULL for personal expenses. Personal expenses never
    contribute to a group balance.
  - `amount` uses Numeric(12, 2) — never Float — and is in `currency`.
  - `date` is the day the expense happened; smart conversion uses the
    exchange rate of that day.
  - Soft-deleted expenses (`deleted_at` set) are invisible to the engine.
"""

from __future__ import annotations

from datetime import date as date_type, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fairshare.app.extensions import db


class Category(db.Model):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(50), nullable=False)

    # Hex colour and icon name used by the UI; opaque to the engine.
    color: Mapped[str | None] = mapped_column(String(7), nullable=True)
    icon: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Category id={self.id} name={self.name!r}>"


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint("LENGTH(currency) = 3", name="ck_expenses_currency_code"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # NULL = personal expense.
    group_id: Mapped[int | None] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    paid_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    # ISO 4217 code.
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )

    date: Mapped[date_type] = mapped_column(
        Date,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Eager-loaded by the query layer with selectinload.
    splits: Mapped[list["Split"]] = relationship(  # noqa: F821
        "Split",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_personal(self) -> bool:
        return self.group_id is None

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"group_id={self.group_id} "
            f"amount={self.amount} {self.currency}>"
        )
