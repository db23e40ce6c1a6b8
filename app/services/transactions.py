from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Protocol

from sqlalchemy import select

from app.core.uow import SessionFactory, UnitOfWork
from app.integrations.proof_storage import StorageError, StoredBlob, build_folder
from app.models.event import Event
from app.models.transaction import PaymentStatus, Transaction
from app.models.transaction_item import TransactionItem
from app.models.user import User
from app.services.discounts import DiscountResolver, as_utc
from app.services.errors import (
    DeadlinePassed,
    Forbidden,
    InvalidRequest,
    NotFound,
    ProofUploadFailed,
    TransactionError,
)
from app.services.inventory import InventoryLedger
from app.services.lifecycle import RELEASING_ACTIONS, Action, next_status

logger = logging.getLogger(__name__)


class ProofStorage(Protocol):
    async def upload(self, data: bytes, folder: str, filename: str = ..., content_type: str = ...) -> StoredBlob: ...

    async def delete(self, public_id: str) -> None: ...


class Notifier(Protocol):
    async def send(self, *, to: str, subject: str, template: str, context: dict) -> None: ...


@dataclass(frozen=True)
class OrderLine:
    ticket_tier_id: int
    quantity: int


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


_INVOICE_ALPHABET = string.ascii_uppercase + string.digits

PROOF_MAX_BYTES = 1024 * 1024
PROOF_ALLOWED_EXTENSIONS = ("jpg", "jpeg", "png", "webp")


def _generate_invoice_number(now: datetime) -> str:
    suffix = "".join(secrets.choice(_INVOICE_ALPHABET) for _ in range(6))
    return f"INV-{now:%Y%m%d}-{suffix}"


class TransactionService:
    """
    Lifecycle of a purchase:

        waiting_for_payment -> waiting_for_admin_confirmation -> done
                            \\-> canceled / expired        \\-> rejected / canceled

    Every transition runs in its own UnitOfWork and re-reads the row under
    lock before checking the current state, so a sweep and a user action on
    the same transaction cannot both win. Transitions into canceled, expired
    or rejected give back inventory, points, coupon and voucher in the same
    unit.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        storage: ProofStorage,
        mailer: Notifier,
        frontend_url: str = "",
        payment_window_minutes: int = 120,
        confirmation_window_minutes: int = 3 * 24 * 60,
        proof_max_bytes: int = PROOF_MAX_BYTES,
        proof_allowed_extensions: Iterable[str] = PROOF_ALLOWED_EXTENSIONS,
        clock: Callable[[], datetime] | None = None,
        inventory: InventoryLedger | None = None,
        discounts: DiscountResolver | None = None,
    ):
        self._session_factory = session_factory
        self.storage = storage
        self.mailer = mailer
        self.frontend_url = frontend_url.rstrip("/")
        self.payment_window = timedelta(minutes=payment_window_minutes)
        self.confirmation_window = timedelta(minutes=confirmation_window_minutes)
        self.proof_max_bytes = proof_max_bytes
        self.proof_allowed_extensions = frozenset(ext.lower().lstrip(".") for ext in proof_allowed_extensions)
        self._clock = clock or _now_utc
        self.inventory = inventory or InventoryLedger()
        self.discounts = discounts or DiscountResolver()

    def now(self) -> datetime:
        return self._clock()

    def unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self._session_factory)

    # -------------------------
    # Loading helpers
    # -------------------------
    async def _get_transaction(self, uow: UnitOfWork, transaction_id: int, *, lock: bool = False) -> Transaction:
        stmt = (
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        trx = await (uow.lock_one_or_none(stmt) if lock else uow.scalar_one_or_none(stmt))
        if trx is None or trx.deleted_at is not None:
            raise NotFound("Transaction not found")
        return trx

    async def _reload(self, uow: UnitOfWork, transaction_id: int) -> Transaction:
        await uow.flush()
        return await self._get_transaction(uow, transaction_id)

    async def _get_published_event(self, uow: UnitOfWork, event_id: int) -> Event:
        event = await uow.scalar_one_or_none(select(Event).where(Event.id == event_id))
        if event is None or event.deleted_at is not None:
            raise NotFound("Event not found")
        if event.status != "published":
            raise InvalidRequest("Event is not available for purchase")
        return event

    async def _unique_invoice_number(self, uow: UnitOfWork, now: datetime) -> str:
        # pre-check for collisions instead of retrying after a failed insert
        for _attempt in range(20):
            candidate = _generate_invoice_number(now)
            exists = await uow.scalar_one_or_none(
                select(Transaction.id).where(Transaction.invoice_number == candidate)
            )
            if exists is None:
                return candidate
        raise TransactionError("Failed to generate unique invoice number.")

    @staticmethod
    def _check_buyer(trx: Transaction, user_id: int) -> None:
        if trx.user_id != user_id:
            raise Forbidden("This transaction does not belong to you")

    @staticmethod
    def _check_organizer(trx: Transaction, actor: User) -> None:
        if actor.role == "admin":
            return
        if trx.event is None or trx.event.organizer_user_id != actor.id:
            raise Forbidden("You do not have access to this transaction")

    # -------------------------
    # Create
    # -------------------------
    async def create_transaction(
        self,
        *,
        user_id: int,
        event_id: int,
        items: Iterable[OrderLine],
        use_points: bool = False,
        user_coupon_id: int | None = None,
        event_voucher_id: int | None = None,
    ) -> Transaction:
        lines = list(items)
        if not lines:
            raise InvalidRequest("At least one ticket item is required")
        for line in lines:
            if line.quantity < 1:
                raise InvalidRequest("Ticket quantity must be at least 1")

        now = self.now()

        async with self.unit_of_work() as uow:
            await self._get_published_event(uow, event_id)

            # 1) inventory + subtotal
            subtotal = 0
            priced: list[tuple[OrderLine, int]] = []

            for line in lines:
                tier = await self.inventory.get_tier(uow, line.ticket_tier_id)
                if tier.event_id != event_id:
                    raise InvalidRequest(f"Ticket type {tier.name} does not belong to this event")

                await self.inventory.reserve(uow, tier.id, line.quantity)

                subtotal += tier.price * line.quantity
                priced.append((line, tier.price))

            # 2) points, coupon, voucher
            applied = await self.discounts.apply(
                uow,
                user_id=user_id,
                event_id=event_id,
                subtotal=subtotal,
                now=now,
                use_points=use_points,
                user_coupon_id=user_coupon_id,
                event_voucher_id=event_voucher_id,
            )

            total_amount = applied.total_amount
            is_free = total_amount == 0

            trx = Transaction(
                invoice_number=await self._unique_invoice_number(uow, now),
                user_id=user_id,
                event_id=event_id,
                subtotal=subtotal,
                points_used=applied.points_used,
                coupon_discount=applied.coupon_discount,
                voucher_discount=applied.voucher_discount,
                total_amount=total_amount,
                payment_status=(PaymentStatus.DONE if is_free else PaymentStatus.WAITING_FOR_PAYMENT).value,
                payment_deadline=now + self.payment_window,
                confirmed_at=now if is_free else None,
                user_coupon_id=applied.user_coupon_id,
                event_voucher_id=applied.event_voucher_id,
            )
            uow.add(trx)
            await uow.flush()  # ensures trx.id

            for line, unit_price in priced:
                uow.add(
                    TransactionItem(
                        transaction_id=trx.id,
                        ticket_tier_id=line.ticket_tier_id,
                        quantity=line.quantity,
                        unit_price=unit_price,
                        line_subtotal=unit_price * line.quantity,
                    )
                )

            await self.discounts.record_usages(uow, trx, applied)

            trx = await self._reload(uow, trx.id)

        logger.info(
            "Transaction %s created: invoice=%s status=%s subtotal=%s total=%s",
            trx.id,
            trx.invoice_number,
            trx.payment_status,
            trx.subtotal,
            trx.total_amount,
        )
        return trx

    # -------------------------
    # Payment proof
    # -------------------------
    def _check_payment_deadline(self, trx: Transaction, now: datetime) -> None:
        if as_utc(trx.payment_deadline) < now:
            raise DeadlinePassed("Payment deadline has passed")

    def _check_confirmation_deadline(self, trx: Transaction, now: datetime) -> None:
        if trx.confirmation_deadline is not None and as_utc(trx.confirmation_deadline) < now:
            raise DeadlinePassed("Confirmation deadline has passed")

    def _check_proof_file(self, data: bytes, filename: str, content_type: str) -> None:
        if not data:
            raise InvalidRequest("Payment proof image is required")
        if len(data) > self.proof_max_bytes:
            raise InvalidRequest(f"Payment proof must not exceed {self.proof_max_bytes} bytes")

        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        if ext not in self.proof_allowed_extensions:
            allowed = ", ".join(sorted(self.proof_allowed_extensions))
            raise InvalidRequest(f"Payment proof must be one of: {allowed}")
        if not content_type.startswith("image/"):
            raise InvalidRequest("Payment proof must be an image")

    async def upload_payment_proof(
        self,
        *,
        transaction_id: int,
        user_id: int,
        data: bytes,
        filename: str,
        content_type: str,
    ) -> Transaction:
        self._check_proof_file(data, filename, content_type)

        # Fail fast before touching the blob store.
        async with self.unit_of_work() as uow:
            trx = await self._get_transaction(uow, transaction_id)
            self._check_buyer(trx, user_id)
            next_status(trx.payment_status, Action.UPLOAD_PROOF)
            self._check_payment_deadline(trx, self.now())

        try:
            blob = await self.storage.upload(
                data,
                build_folder("transactions", transaction_id, "payment-proof"),
                filename,
                content_type,
            )
        except StorageError as e:
            logger.error("Payment proof upload failed for transaction %s: %s", transaction_id, e)
            raise ProofUploadFailed("Failed to upload payment proof") from e

        try:
            async with self.unit_of_work() as uow:
                trx = await self._get_transaction(uow, transaction_id, lock=True)
                now = self.now()
                target = next_status(trx.payment_status, Action.UPLOAD_PROOF)
                self._check_payment_deadline(trx, now)

                trx.payment_proof_url = blob.url
                trx.proof_uploaded_at = now
                trx.confirmation_deadline = now + self.confirmation_window
                trx.payment_status = target.value
                trx.updated_at = now

                trx = await self._reload(uow, transaction_id)
        except Exception:
            await self._discard_blob(blob)
            raise

        logger.info("Transaction %s: payment proof uploaded, awaiting confirmation", transaction_id)
        return trx

    async def _discard_blob(self, blob: StoredBlob) -> None:
        try:
            await self.storage.delete(blob.public_id)
            logger.info("Deleted orphaned payment proof %s", blob.public_id)
        except StorageError:
            logger.exception("Failed to delete orphaned payment proof %s", blob.public_id)

    # -------------------------
    # Organizer decisions
    # -------------------------
    async def accept_transaction(self, *, transaction_id: int, actor: User) -> Transaction:
        async with self.unit_of_work() as uow:
            trx = await self._get_transaction(uow, transaction_id, lock=True)
            self._check_organizer(trx, actor)

            now = self.now()
            target = next_status(trx.payment_status, Action.ACCEPT)
            self._check_confirmation_deadline(trx, now)

            trx.payment_status = target.value
            trx.confirmed_at = now
            trx.updated_at = now

            trx = await self._reload(uow, transaction_id)

        logger.info("Transaction %s accepted by user %s", transaction_id, actor.id)
        await self._notify_accepted(trx)
        return trx

    async def reject_transaction(self, *, transaction_id: int, actor: User) -> Transaction:
        async with self.unit_of_work() as uow:
            trx = await self._get_transaction(uow, transaction_id, lock=True)
            self._check_organizer(trx, actor)

            now = self.now()
            next_status(trx.payment_status, Action.REJECT)
            self._check_confirmation_deadline(trx, now)

            await self._transition(uow, trx, Action.REJECT, now)
            trx = await self._reload(uow, transaction_id)

        logger.info("Transaction %s rejected by user %s", transaction_id, actor.id)
        await self._notify_rejected(trx)
        return trx

    # -------------------------
    # Buyer cancel
    # -------------------------
    async def cancel_transaction(self, *, transaction_id: int, user_id: int) -> Transaction:
        async with self.unit_of_work() as uow:
            trx = await self._get_transaction(uow, transaction_id, lock=True)
            self._check_buyer(trx, user_id)

            await self._transition(uow, trx, Action.CANCEL, self.now())
            trx = await self._reload(uow, transaction_id)

        logger.info("Transaction %s canceled by buyer", transaction_id)
        return trx

    # -------------------------
    # Timeouts (driven by the sweeper)
    # -------------------------
    async def expire_transaction(self, transaction_id: int) -> bool:
        """Expire one unpaid transaction past its payment deadline. False if no longer due."""
        async with self.unit_of_work() as uow:
            trx = await self._get_transaction(uow, transaction_id, lock=True)
            now = self.now()

            # state may have moved since the sweep selected it
            if trx.status != PaymentStatus.WAITING_FOR_PAYMENT or as_utc(trx.payment_deadline) >= now:
                return False

            await self._transition(uow, trx, Action.EXPIRE, now)

        logger.info("Transaction %s expired", transaction_id)
        return True

    async def cancel_unconfirmed_transaction(self, transaction_id: int) -> bool:
        """Cancel one proof-uploaded transaction nobody confirmed in time. False if no longer due."""
        async with self.unit_of_work() as uow:
            trx = await self._get_transaction(uow, transaction_id, lock=True)
            now = self.now()

            if (
                trx.status != PaymentStatus.WAITING_FOR_ADMIN_CONFIRMATION
                or trx.confirmation_deadline is None
                or as_utc(trx.confirmation_deadline) >= now
            ):
                return False

            await self._transition(uow, trx, Action.CONFIRMATION_TIMEOUT, now)

        logger.info("Transaction %s canceled: confirmation deadline passed", transaction_id)
        return True

    # -------------------------
    # Transition core
    # -------------------------
    async def _transition(self, uow: UnitOfWork, trx: Transaction, action: Action, now: datetime) -> PaymentStatus:
        previous = trx.payment_status
        target = next_status(previous, action)

        if action in RELEASING_ACTIONS:
            await self.release_reservations(uow, trx, now)

        trx.payment_status = target.value
        trx.updated_at = now

        logger.debug("Transaction %s: %s -> %s (%s)", trx.id, previous, target.value, action.name)
        return target

    async def release_reservations(self, uow: UnitOfWork, trx: Transaction, now: datetime | None = None) -> bool:
        """
        Return seats, points, coupon and voucher held by ``trx``.

        Idempotent: the first call stamps ``released_at`` and later calls
        do nothing. Returns whether anything was released.
        """
        if trx.released_at is not None:
            logger.warning("Transaction %s already released at %s; skipping", trx.id, trx.released_at)
            return False

        for item in trx.items:
            await self.inventory.release(uow, item.ticket_tier_id, item.quantity)

        await self.discounts.rollback(uow, trx)

        trx.released_at = now or self.now()
        logger.info("Transaction %s reservations released", trx.id)
        return True

    # -------------------------
    # Notifications (best effort)
    # -------------------------
    async def _notify(self, trx: Transaction, *, subject: str, template: str, context: dict) -> None:
        to = trx.user.email if trx.user is not None else None
        if not to:
            logger.warning("Transaction %s: buyer has no email, skipping %s", trx.id, template)
            return

        try:
            await self.mailer.send(to=to, subject=subject, template=template, context=context)
        except Exception:
            logger.exception("Failed to send %s for transaction %s", template, trx.id)

    async def _notify_accepted(self, trx: Transaction) -> None:
        event = trx.event
        event_date = event.event_date.strftime("%A, %B %d, %Y") if event.event_date else ""
        await self._notify(
            trx,
            subject=f"Your tickets for {event.name} are confirmed!",
            template="transaction_accepted.html",
            context={
                "user_name": trx.user.full_name or trx.user.username,
                "event_name": event.name,
                "order_id": trx.invoice_number,
                "event_date": event_date,
                "ticket_quantity": sum(it.quantity for it in trx.items),
                "ticket_type": ", ".join(it.ticket_tier.name for it in trx.items),
                "ticket_link": f"{self.frontend_url}/transactions/{trx.id}",
            },
        )

    async def _notify_rejected(self, trx: Transaction) -> None:
        event = trx.event
        await self._notify(
            trx,
            subject=f"Transaction update for {event.name}",
            template="transaction_rejected.html",
            context={
                "user_name": trx.user.full_name or trx.user.username,
                "event_name": event.name,
                "retry_link": f"{self.frontend_url}/events/{event.slug}",
            },
        )
