# app/models/coupon.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Text, false, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base, BigIntPK


class UserCoupon(Base):
    __tablename__ = "user_coupons"
    __table_args__ = (
        CheckConstraint(
            "discount_type IN ('percentage','fixed')",
            name="user_coupons_discount_type_check",
        ),
        CheckConstraint("discount_value >= 0", name="user_coupons_discount_value_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    coupon_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    discount_type: Mapped[str] = mapped_column(Text, nullable=False)
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)

    # reserved by a transaction as soon as it is applied
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    expired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
