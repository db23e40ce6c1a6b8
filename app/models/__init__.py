# app/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from app.models.user import User  # noqa: F401

from app.models.event import Event, TicketTier  # noqa: F401

from app.models.coupon import UserCoupon  # noqa: F401
from app.models.points import PointUsage, UserPoint  # noqa: F401
from app.models.voucher import EventVoucher, EventVoucherUsage  # noqa: F401

from app.models.transaction import PaymentStatus, Transaction  # noqa: F401
from app.models.transaction_item import TransactionItem  # noqa: F401
