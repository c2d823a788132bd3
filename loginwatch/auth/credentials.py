"""Credential verification backends for the login endpoint."""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.user import User
from ..utils.security import hash_password, verify_password

CredentialVerifier = Callable[[str, str], Awaitable[bool]]


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Checked when the account does not exist so both paths cost one bcrypt round
    return hash_password("loginwatch-timing-equalizer")


class DatabaseCredentialVerifier:
    """Checks a username/password pair against bcrypt hashes in the users table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def __call__(self, username: str, password: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.username == username.strip()))
            user = result.scalar_one_or_none()

            if user is None:
                verify_password(password, _dummy_hash())
                return False
            if not verify_password(password, user.password_hash):
                return False

            user.last_login = datetime.now(timezone.utc).replace(tzinfo=None)
            await session.commit()
            return True


async def ensure_user(
    session_factory: async_sessionmaker[AsyncSession],
    username: str,
    password: str,
) -> bool:
    """Create a user if it does not exist yet. Returns True if created."""
    async with session_factory() as session:
        result = await session.execute(select(User).where(User.username == username))
        if result.scalar_one_or_none() is not None:
            return False
        session.add(User(username=username, password_hash=hash_password(password)))
        await session.commit()
        return True
