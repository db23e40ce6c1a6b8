"""
Shared fixtures.

Each test gets its own SQLite file database (aiosqlite), a controllable
clock, and in-memory stand-ins for the blob store and the mailer.
"""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("SWEEPER_ENABLED", "false")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

import app.models  # noqa: E402,F401
from app.core.db import Base  # noqa: E402
from app.integrations.proof_storage import StorageError, StoredBlob  # noqa: E402
from app.models.coupon import UserCoupon  # noqa: E402
from app.models.event import Event, TicketTier  # noqa: E402
from app.models.points import UserPoint  # noqa: E402
from app.models.user import User  # noqa: E402
from app.models.voucher import EventVoucher  # noqa: E402
from app.services.sweeper import TransactionSweeper  # noqa: E402
from app.services.transactions import TransactionService  # noqa: E402

START = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class RecordingStorage:
    def __init__(self):
        self.uploads: list[tuple[str, bytes]] = []
        self.deleted: list[str] = []
        self.fail_upload = False

    async def upload(self, data, folder, filename="proof", content_type="application/octet-stream"):
        if self.fail_upload:
            raise StorageError("storage down")
        public_id = f"{folder}/{len(self.uploads) + 1}"
        self.uploads.append((folder, data))
        return StoredBlob(url=f"https://blobs.test/{public_id}", public_id=public_id)

    async def delete(self, public_id):
        self.deleted.append(public_id)


class RecordingMailer:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def send(self, *, to, subject, template, context):
        if self.fail:
            raise RuntimeError("smtp relay unreachable")
        self.sent.append({"to": to, "subject": subject, "template": template, "context": context})


class Seeder:
    def __init__(self, session_factory, clock: FakeClock):
        self._session_factory = session_factory
        self._clock = clock
        self._n = 0

    async def _add(self, obj):
        async with self._session_factory() as session:
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
            return obj

    async def user(self, role: str = "customer", email: str | None = "buyer@example.com") -> User:
        self._n += 1
        return await self._add(
            User(username=f"{role}{self._n}", role=role, full_name=f"{role.title()} {self._n}", email=email)
        )

    async def event(self, organizer: User, status: str = "published") -> Event:
        self._n += 1
        return await self._add(
            Event(
                organizer_user_id=organizer.id,
                name=f"Concert {self._n}",
                slug=f"concert-{self._n}",
                status=status,
                event_date=self._clock() + timedelta(days=30),
                venue_name="Main Hall",
            )
        )

    async def tier(self, event: Event, price: int = 100000, quota: int = 10, sold_count: int = 0, name: str = "Regular") -> TicketTier:
        return await self._add(
            TicketTier(event_id=event.id, name=name, price=price, quota=quota, sold_count=sold_count)
        )

    async def point(self, user: User, amount: int, expires_in_days: int = 90) -> UserPoint:
        return await self._add(
            UserPoint(user_id=user.id, amount=amount, expired_at=self._clock() + timedelta(days=expires_in_days))
        )

    async def coupon(self, user: User, discount_type: str = "percentage", value: int = 10, expires_in_days: int = 30) -> UserCoupon:
        self._n += 1
        return await self._add(
            UserCoupon(
                user_id=user.id,
                coupon_code=f"REF-{self._n:04d}",
                discount_type=discount_type,
                discount_value=value,
                expired_at=self._clock() + timedelta(days=expires_in_days),
            )
        )

    async def voucher(
        self,
        event: Event,
        discount_type: str = "percentage",
        value: int = 20,
        max_discount: int | None = None,
        max_usage: int = 5,
        used_count: int = 0,
        is_active: bool = True,
        starts_in_days: int = -1,
        expires_in_days: int = 10,
    ) -> EventVoucher:
        self._n += 1
        return await self._add(
            EventVoucher(
                event_id=event.id,
                voucher_code=f"EARLY{self._n}",
                discount_type=discount_type,
                discount_value=value,
                max_discount=max_discount,
                max_usage=max_usage,
                used_count=used_count,
                is_active=is_active,
                start_date=self._clock() + timedelta(days=starts_in_days),
                expired_at=self._clock() + timedelta(days=expires_in_days),
            )
        )

    async def get(self, model, obj_id):
        async with self._session_factory() as session:
            res = await session.execute(select(model).where(model.id == obj_id))
            return res.scalar_one()

    async def all(self, model, **filters):
        async with self._session_factory() as session:
            stmt = select(model)
            for key, value in filters.items():
                stmt = stmt.where(getattr(model, key) == value)
            res = await session.execute(stmt)
            return list(res.scalars().all())


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ticketing.db'}",
        connect_args={"timeout": 30},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return RecordingStorage()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def service(session_factory, storage, mailer, clock):
    return TransactionService(
        session_factory,
        storage=storage,
        mailer=mailer,
        frontend_url="https://tickets.test",
        clock=clock,
    )


@pytest.fixture
def sweeper(session_factory, service):
    return TransactionSweeper(session_factory, service)


@pytest.fixture
def seed(session_factory, clock):
    return Seeder(session_factory, clock)


@pytest_asyncio.fixture
async def world(seed):
    """A published event with one tier, its organizer and a buyer."""
    organizer = await seed.user("organizer", email="org@example.com")
    buyer = await seed.user("customer", email="buyer@example.com")
    event = await seed.event(organizer)
    tier = await seed.tier(event, price=100000, quota=10)
    return {"organizer": organizer, "buyer": buyer, "event": event, "tier": tier}
