"""Audit sink: append-only record of authentication attempts."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.login_activity import STATUS_FAILURE, STATUS_SUCCESS, LoginActivity
from .errors import AuditWriteError
from .identity import PACKED_ADDRESS_SIZE, unpack_address


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class AuditRecord:
    """A single authentication attempt as written to the audit log."""

    login: str
    login_url: str
    ip: bytes
    outcome: Outcome
    timestamp: datetime

    def __post_init__(self) -> None:
        if len(self.ip) != PACKED_ADDRESS_SIZE:
            raise ValueError(f"ip must be {PACKED_ADDRESS_SIZE} packed bytes")

    @property
    def address(self) -> str | None:
        return unpack_address(self.ip)


class AuditSink(ABC):
    """Destination for audit records."""

    @abstractmethod
    async def append(self, record: AuditRecord) -> None:
        """Persist one record. Raises AuditWriteError on failure."""


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class DatabaseAuditSink(AuditSink):
    """Writes audit records to the login_activity table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(self, record: AuditRecord) -> None:
        row = LoginActivity(
            login=record.login,
            login_url=record.login_url[:255],
            ip=record.ip,
            status=STATUS_SUCCESS if record.outcome is Outcome.SUCCESS else STATUS_FAILURE,
            log_date=_naive_utc(record.timestamp),
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise AuditWriteError(f"login_activity insert failed: {e}") from e
