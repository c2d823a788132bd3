"""Identity normalization and counter key derivation.

Two independent scopes are tracked for every attempt: the source address
(``ip``) and the account identifier (``user``). Identities are normalized,
then hashed into fixed-length store keys of the form
``<prefix>_<kind>_<scope>_<sha256>`` so raw identifiers never reach the store.
"""

import hashlib
import ipaddress
import re
import unicodedata
from enum import Enum
from typing import NamedTuple

from .errors import InvalidIdentityError

# Matches the login column width of the activity table
MAX_LOGIN_LENGTH = 191

PACKED_ADDRESS_SIZE = 16
ZERO_ADDRESS = b"\x00" * PACKED_ADDRESS_SIZE
_IPV4_MAPPED_PREFIX = b"\x00" * 10 + b"\xff\xff"

_TAG_RE = re.compile(r"<[^>]*>")
_OCTET_RE = re.compile(r"%[a-fA-F0-9]{2}")
_ENTITY_RE = re.compile(r"&.+?;")
_SAFE_ASCII = frozenset("abcdefghijklmnopqrstuvwxyz0123456789 _.-@")
_SPACE_RE = re.compile(r"\s+")


class Scope(str, Enum):
    """Rate-limiting namespace."""

    IP = "ip"
    USER = "user"

    @property
    def key_token(self) -> str:
        return "ip" if self is Scope.IP else "u"


class KeyPair(NamedTuple):
    attempts: str
    lock: str


def normalize_address(raw: str | None) -> str:
    """Validate an IPv4/IPv6 address and return its canonical text form.

    IPv4-mapped IPv6 addresses collapse to plain IPv4 so a dual-stack socket
    and a v4 socket produce the same identity.
    """
    value = (raw or "").strip()
    if not value:
        raise InvalidIdentityError("empty source address")
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        raise InvalidIdentityError(f"Invalid IP address: {value!r}")
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return str(addr.ipv4_mapped)
    return str(addr)


def _fold_latin(ch: str) -> str:
    # Accents come off letters that decompose to ASCII; other scripts keep their marks
    base = "".join(c for c in unicodedata.normalize("NFKD", ch) if not unicodedata.combining(c))
    return base if base and base.isascii() else ch


def _is_allowed(ch: str) -> bool:
    if ch.isascii():
        return ch in _SAFE_ASCII
    return ch.isspace() or unicodedata.category(ch)[0] in "LMN"


def normalize_username(raw: str | None) -> str:
    """Lowercase, strip markup and Latin accents, and drop unsafe characters.

    ASCII is limited to letters, digits, space and ``_.-@``. Letters, marks
    and digits of other scripts are kept, so distinct non-Latin accounts keep
    distinct identities. Control, format and symbol characters are removed.

    Raises InvalidIdentityError when nothing usable remains.
    """
    value = str(raw or "").lower()
    value = _TAG_RE.sub("", value)
    value = unicodedata.normalize("NFC", value)
    value = "".join(_fold_latin(ch) for ch in value)
    value = _OCTET_RE.sub("", value)
    value = _ENTITY_RE.sub("", value)
    value = "".join(ch for ch in value if _is_allowed(ch))
    value = _SPACE_RE.sub(" ", value).strip()
    value = value[:MAX_LOGIN_LENGTH].rstrip()
    if not value:
        raise InvalidIdentityError("account identifier is empty after normalization")
    return value


def identity_digest(identity: str) -> str:
    return hashlib.sha256(identity.encode("utf-8")).hexdigest()


def derive_keys(prefix: str, scope: Scope, identity: str) -> KeyPair:
    """Build the attempts/lock key pair for a normalized identity."""
    digest = identity_digest(identity)
    token = scope.key_token
    return KeyPair(
        attempts=f"{prefix}_atm_{token}_{digest}",
        lock=f"{prefix}_lck_{token}_{digest}",
    )


def pack_address(address: str | None) -> bytes:
    """Pack an address into 16 bytes; IPv4 is stored IPv4-mapped.

    Missing or invalid input yields sixteen zero bytes.
    """
    if not address:
        return ZERO_ADDRESS
    try:
        addr = ipaddress.ip_address(address.strip())
    except ValueError:
        return ZERO_ADDRESS
    if isinstance(addr, ipaddress.IPv4Address):
        return _IPV4_MAPPED_PREFIX + addr.packed
    return addr.packed


def unpack_address(packed: bytes | None) -> str | None:
    """Inverse of pack_address. Zero-filled values map to None."""
    if not packed or packed == ZERO_ADDRESS:
        return None
    if len(packed) == 4:
        return str(ipaddress.IPv4Address(packed))
    if len(packed) != PACKED_ADDRESS_SIZE:
        return None
    addr = ipaddress.IPv6Address(packed)
    if addr.ipv4_mapped is not None:
        return str(addr.ipv4_mapped)
    return str(addr)
