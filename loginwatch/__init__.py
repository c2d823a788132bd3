"""LoginWatch: login activity auditing and brute-force lockout service."""

__version__ = "1.0.0"
