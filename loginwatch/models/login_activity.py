"""Login activity model, one row per authentication attempt."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, LargeBinary, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

STATUS_FAILURE = 0
STATUS_SUCCESS = 1


class LoginActivity(Base):
    __tablename__ = "login_activity"
    __table_args__ = (Index("idx_status_date", "status", "log_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    login: Mapped[str] = mapped_column(String(191), nullable=False, index=True)
    login_url: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    ip: Mapped[bytes] = mapped_column(LargeBinary(16), nullable=False)  # packed, zero-filled if unknown
    status: Mapped[int] = mapped_column(SmallInteger, nullable=False, index=True)
    log_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
