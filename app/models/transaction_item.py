from __future__ import annotations

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db import Base, BigIntPK


class TransactionItem(Base):
    __tablename__ = "transaction_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="transaction_items_quantity_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    transaction_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ticket_tier_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("ticket_tiers.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    line_subtotal: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction = relationship("Transaction", back_populates="items")
    ticket_tier = relationship("TicketTier", lazy="selectin")
