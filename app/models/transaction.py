from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db import Base, BigIntPK
from app.models.transaction_item import TransactionItem


class PaymentStatus(str, enum.Enum):
    WAITING_FOR_PAYMENT = "waiting_for_payment"
    WAITING_FOR_ADMIN_CONFIRMATION = "waiting_for_admin_confirmation"
    DONE = "done"
    CANCELED = "canceled"
    EXPIRED = "expired"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        PaymentStatus.DONE,
        PaymentStatus.CANCELED,
        PaymentStatus.EXPIRED,
        PaymentStatus.REJECTED,
    }
)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint(
            "payment_status IN ('waiting_for_payment','waiting_for_admin_confirmation',"
            "'done','canceled','expired','rejected')",
            name="transactions_payment_status_check",
        ),
        CheckConstraint("total_amount >= 0", name="transactions_total_amount_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    event_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("events.id"),
        nullable=False,
        index=True,
    )

    # money fields, minor currency units
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    points_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    coupon_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    voucher_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    payment_status: Mapped[str] = mapped_column(String(40), nullable=False)

    payment_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confirmation_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    payment_proof_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    proof_uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # set once reservations are returned; guards against double rollback
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user_coupon_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("user_coupons.id"),
        nullable=True,
    )
    event_voucher_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("event_vouchers.id"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[List["TransactionItem"]] = relationship(
        "TransactionItem",
        back_populates="transaction",
        lazy="selectin",
        order_by="TransactionItem.id",
    )

    event = relationship("Event", lazy="selectin")
    user = relationship("User", lazy="selectin")

    @property
    def status(self) -> PaymentStatus:
        return PaymentStatus(self.payment_status)


Index("ix_transactions_status_payment_deadline", Transaction.payment_status, Transaction.payment_deadline)
Index(
    "ix_transactions_status_confirmation_deadline",
    Transaction.payment_status,
    Transaction.confirmation_deadline,
)
