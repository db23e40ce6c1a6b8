from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import SessionLocal, get_db
from app.core.security import decode_token, TokenError
from app.integrations.mailer import Mailer
from app.integrations.proof_storage import ProofStorageClient
from app.models.user import User
from app.services.sweeper import TransactionSweeper
from app.services.transactions import TransactionService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        payload = decode_token(token)
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Token missing user id (sub)")

    try:
        user_id_int = int(user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid user id in token")

    res = await db.execute(select(User).where(User.id == user_id_int))
    user = res.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User inactive")

    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return current_user


def require_organizer(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role not in ("organizer", "admin"):
        raise HTTPException(status_code=403, detail="Organizer only")
    return current_user


@lru_cache
def get_transaction_service() -> TransactionService:
    return TransactionService(
        SessionLocal,
        storage=ProofStorageClient(
            base_url=settings.STORAGE_API_URL,
            token=settings.STORAGE_API_TOKEN,
            timeout=settings.STORAGE_TIMEOUT_SECONDS,
        ),
        mailer=Mailer(
            base_url=settings.MAIL_API_URL,
            token=settings.MAIL_API_TOKEN,
            sender=settings.MAIL_FROM,
        ),
        frontend_url=settings.FRONTEND_URL,
        payment_window_minutes=settings.PAYMENT_WINDOW_MINUTES,
        confirmation_window_minutes=settings.CONFIRMATION_WINDOW_MINUTES,
        proof_max_bytes=settings.PROOF_MAX_BYTES,
        proof_allowed_extensions=settings.PROOF_ALLOWED_EXTENSIONS,
    )


@lru_cache
def get_sweeper() -> TransactionSweeper:
    return TransactionSweeper(SessionLocal, get_transaction_service())
