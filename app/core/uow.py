from __future__ import annotations

from typing import Callable

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession


SessionFactory = Callable[[], AsyncSession]


class UnitOfWork:
    """
    A set of storage mutations that commit or roll back together.

        async with UnitOfWork(session_factory) as uow:
            await ledger.reserve(uow, tier_id, 2)
            ...

    Leaving the block normally commits. Any exception rolls everything back
    and propagates. Components never commit on their own; they only receive
    the unit and write through ``uow.session``.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory
        self._session: AsyncSession | None = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("UnitOfWork is not active.")
        return self._session

    async def __aenter__(self) -> "UnitOfWork":
        self._session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        session = self.session
        try:
            if exc_type is None:
                await session.commit()
            else:
                await session.rollback()
        finally:
            await session.close()
            self._session = None

    def add(self, obj) -> None:
        self.session.add(obj)

    async def flush(self) -> None:
        await self.session.flush()

    async def scalar_one_or_none(self, stmt: Select):
        res = await self.session.execute(stmt)
        return res.scalar_one_or_none()

    async def lock_one_or_none(self, stmt: Select):
        # FOR UPDATE is a no-op on SQLite
        return await self.scalar_one_or_none(stmt.with_for_update())

    async def lock_all(self, stmt: Select) -> list:
        res = await self.session.execute(stmt.with_for_update())
        return list(res.scalars().all())
