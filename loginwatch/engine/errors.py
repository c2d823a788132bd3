"""Exception hierarchy for the lockout engine."""


class LoginWatchError(Exception):
    """Base class for LoginWatch errors."""


class InvalidIdentityError(LoginWatchError, ValueError):
    """An address or account identifier cannot be used as a rate-limit identity."""


class StoreUnavailableError(LoginWatchError):
    """The counter/lock backing store could not be reached."""


class AuditWriteError(LoginWatchError):
    """An audit record could not be appended."""
