from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Text, func, true
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base, BigIntPK


class EventVoucher(Base):
    __tablename__ = "event_vouchers"
    __table_args__ = (
        CheckConstraint(
            "discount_type IN ('percentage','fixed')",
            name="event_vouchers_discount_type_check",
        ),
        CheckConstraint("used_count >= 0", name="event_vouchers_used_count_check"),
        CheckConstraint("max_usage >= 1", name="event_vouchers_max_usage_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    event_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    voucher_code: Mapped[str] = mapped_column(Text, nullable=False)
    voucher_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    discount_type: Mapped[str] = mapped_column(Text, nullable=False)
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)
    max_discount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    max_usage: Mapped[int] = mapped_column(Integer, nullable=False)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class EventVoucherUsage(Base):
    __tablename__ = "event_voucher_usages"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    voucher_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("event_vouchers.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id"),
        nullable=False,
    )
    transaction_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    discount_applied: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
