"""Rate-limiting and lockout engine."""

from .audit_sink import AuditRecord, AuditSink, DatabaseAuditSink, Outcome
from .auth_gate import ALLOW, AttemptIdentity, AuthGate, GateDecision
from .counter_store import CounterStore, MemoryCounterStore, RedisCounterStore, create_counter_store
from .errors import AuditWriteError, InvalidIdentityError, LoginWatchError, StoreUnavailableError
from .identity import Scope
from .rate_limiter import RateLimiter, RateLimitPolicy

__all__ = [
    "ALLOW",
    "AttemptIdentity",
    "AuditRecord",
    "AuditSink",
    "AuditWriteError",
    "AuthGate",
    "CounterStore",
    "DatabaseAuditSink",
    "GateDecision",
    "InvalidIdentityError",
    "LoginWatchError",
    "MemoryCounterStore",
    "Outcome",
    "RateLimitPolicy",
    "RateLimiter",
    "RedisCounterStore",
    "Scope",
    "StoreUnavailableError",
    "create_counter_store",
]
