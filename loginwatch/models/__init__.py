"""SQLAlchemy models package."""

from .base import Base
from .login_activity import LoginActivity
from .user import User

__all__ = [
    "Base",
    "LoginActivity",
    "User",
]
