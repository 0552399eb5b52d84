"""
ERP Payroll Engine - Tax Bracket Model

Progressive annual PAYE brackets. The active set, ordered by ``order``,
must cover [0, infinity) without gaps; only the last bracket may be open
ended (``max_amount`` NULL).
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, AuditMixin


class TaxBracket(BaseModel, AuditMixin):
    """Annual income tax bracket."""

    __tablename__ = "tax_brackets"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    max_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2), nullable=True,
        comment="NULL for the open-ended top bracket",
    )
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, comment="Percent")
    additional_tax: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0"), nullable=False,
        comment="Flat amount added when income reaches this bracket",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("tax_rate >= 0 AND tax_rate <= 100", name="rate_range"),
        CheckConstraint("min_amount >= 0 AND additional_tax >= 0", name="non_negative"),
        Index(
            "uq_tax_brackets_active_order",
            "order",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def __repr__(self) -> str:
        upper = "inf" if self.max_amount is None else self.max_amount
        return f"<TaxBracket(order={self.order}, {self.min_amount}-{upper} @ {self.tax_rate}%)>"
