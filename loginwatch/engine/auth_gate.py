"""Authentication gate: lockout checks before every login and bookkeeping after it.

The host authentication pipeline calls ``on_attempt_start`` before it checks
credentials and must stop on a deny. Once credentials have been verified it
calls ``on_outcome``, which updates both rate-limit scopes and appends exactly
one audit record.
"""

import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from ..utils.logging import get_logger
from ..utils.timefmt import human_time_diff
from .audit_sink import AuditRecord, AuditSink, Outcome
from .counter_store import Clock
from .errors import InvalidIdentityError
from .identity import Scope, identity_digest, normalize_address, normalize_username, pack_address
from .rate_limiter import RateLimiter

logger = get_logger("engine.auth_gate")

DENY_MESSAGES = {
    Scope.IP: "Too many failed login attempts. Please try again in {remaining}.",
    Scope.USER: "This account is temporarily locked due to too many failed attempts. Try again in {remaining}.",
}


@dataclass(frozen=True)
class AttemptIdentity:
    """Normalized identities for one attempt. Empty string means the scope is disabled."""

    address: str
    username: str

    def scopes(self) -> list[tuple[Scope, str]]:
        pairs = [(Scope.IP, self.address), (Scope.USER, self.username)]
        return [(scope, identity) for scope, identity in pairs if identity]


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    scope: Scope | None = None
    unlock_at: float | None = None
    retry_after: int = 0
    message: str | None = None


ALLOW = GateDecision(allowed=True)


class AuthGate:
    """Interception point between the login pipeline and the rate limiter."""

    def __init__(self, limiter: RateLimiter, sink: AuditSink, clock: Clock = time.time):
        self._limiter = limiter
        self._sink = sink
        self._clock = clock

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    def resolve_identity(self, username: str | None, address: str | None) -> AttemptIdentity:
        try:
            ip = normalize_address(address)
        except InvalidIdentityError as e:
            logger.debug("ip_scope_disabled", reason=str(e))
            ip = ""
        try:
            uname = normalize_username(username)
        except InvalidIdentityError as e:
            logger.debug("user_scope_disabled", reason=str(e))
            uname = ""
        return AttemptIdentity(address=ip, username=uname)

    async def on_attempt_start(self, username: str | None, address: str | None) -> GateDecision:
        """Decide whether the attempt may proceed to credential verification."""
        identity = self.resolve_identity(username, address)

        # IP first: when both scopes are locked the IP lock is reported
        for scope, value in identity.scopes():
            blocked, unlock_at = await self._limiter.is_blocked(scope, value)
            if not blocked:
                continue

            remaining = max(0.0, unlock_at - self._clock())
            decision = GateDecision(
                allowed=False,
                scope=scope,
                unlock_at=unlock_at,
                retry_after=max(1, math.ceil(remaining)),
                message=DENY_MESSAGES[scope].format(remaining=human_time_diff(remaining)),
            )
            logger.warning(
                "login_denied",
                scope=scope.value,
                identity=identity_digest(value)[:16],
                retry_after=decision.retry_after,
            )
            return decision

        return ALLOW

    async def on_outcome(
        self,
        username: str | None,
        address: str | None,
        outcome: Outcome,
        login_url: str = "",
    ) -> AuditRecord:
        """Feed a verification outcome into both scopes and the audit log."""
        identity = self.resolve_identity(username, address)

        for scope, value in identity.scopes():
            if outcome is Outcome.SUCCESS:
                await self._limiter.record_success(scope, value)
            else:
                await self._limiter.record_failure(scope, value)

        record = AuditRecord(
            login=identity.username,
            login_url=login_url,
            ip=pack_address(identity.address),
            outcome=outcome,
            timestamp=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
        )

        try:
            await self._sink.append(record)
        except Exception as e:
            logger.error("audit_write_failed", outcome=outcome.value, error=str(e), exc_info=True)

        if outcome is Outcome.SUCCESS:
            logger.info("login_succeeded", ip=identity.address or None)
        else:
            logger.info("login_failed", ip=identity.address or None)
        return record
