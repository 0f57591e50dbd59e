"""Default UserResolver: find-or-create a user by payer email."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from models.user import User


logger = logging.getLogger(__name__)


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


async def _find_user_id(db: AsyncSession, email: str) -> Optional[str]:
    result = await db.execute(select(User.id).where(func.lower(User.email) == email).limit(1))
    return result.scalar_one_or_none()


class EmailUserResolver:
    """Case-insensitive upsert-by-email against the users table."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def resolve(self, email: str) -> str:
        normalized = normalize_email(email)
        if not normalized:
            raise ValueError("email is required to resolve a user")

        async with self._session_maker() as db:
            user_id = await _find_user_id(db, normalized)
            if user_id:
                return user_id

            user = User(email=normalized)
            db.add(user)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info("Detected race creating user for %s; re-reading", normalized)
                user_id = await _find_user_id(db, normalized)
                if user_id is None:
                    raise
                return user_id
            logger.info("Created user %s for payer email %s", user.id, normalized)
            return user.id
