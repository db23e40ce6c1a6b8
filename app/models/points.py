from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, false, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base, BigIntPK


class UserPoint(Base):
    """
    One point grant (e.g. a referral reward).

    ``amount`` is the remaining balance. A grant can be drawn down across
    several purchases; ``is_used`` flips only when the balance reaches 0.
    """

    __tablename__ = "user_points"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="user_points_amount_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    expired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class PointUsage(Base):
    __tablename__ = "point_usages"
    __table_args__ = (
        CheckConstraint("amount_used > 0", name="point_usages_amount_used_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    user_point_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("user_points.id", ondelete="CASCADE"),
        nullable=False,
    )
    transaction_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount_used: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


Index("ix_user_points_user_expired", UserPoint.user_id, UserPoint.expired_at)
