"""
permproxy.permissions
~~~~~~~~~~~~~~~~~~~~~
Bit-packed permission vector.  Every resource owns two adjacent bits of a
64-bit word: bit ``2k`` grants read and bit ``2k+1`` grants write on
resource ``k``.  Resource ``0`` is the wildcard ("all resources").

The numbers below are baked into every credential ever issued, so they are
append-only: never renumber, never reuse.
"""

from __future__ import annotations

import enum
from typing import Iterable, Iterator, List, Tuple

PERMISSION_BITS = 64
PERMISSION_BYTES = PERMISSION_BITS // 8
MAX_RESOURCES = PERMISSION_BITS // 2
_ACCESS_BITS = 2
_ACCESS_MASK = (1 << _ACCESS_BITS) - 1


class Resource(enum.IntEnum):
    ALL = 0

    # core resources
    BALANCE = 1
    CHARGES = 2
    CUSTOMERS = 3
    DISPUTES = 4
    EVENTS = 5
    FILE_UPLOADS = 6
    REFUNDS = 7
    TOKENS = 8
    TRANSFERS = 9
    TRANSFER_REVERSALS = 10

    # connect resources
    ACCOUNT = 11
    APPLICATION_FEE_REFUND = 12
    APPLICATION_FEE = 13
    RECIPIENT = 14
    COUNTRY_SPEC = 15
    EXTERNAL_ACCOUNT = 16

    # payment methods
    SOURCE = 17

    # relay resources
    ORDER = 18
    ORDER_RETURN = 19
    PRODUCT = 20
    SKU = 21

    # subscription resources
    COUPON = 22
    INVOICE = 23
    INVOICE_ITEM = 24
    PLAN = 25
    SUBSCRIPTION = 26
    SUBSCRIPTION_ITEM = 27

    # radar resources
    RADAR_REVIEW = 28
    RADAR_RULE = 29


class Access(enum.IntFlag):
    NONE = 0
    READ = 1
    WRITE = 2
    READ_WRITE = 3


def _check_capacity() -> None:
    top = max(Resource)
    if top >= MAX_RESOURCES:
        raise RuntimeError(
            f"Resource.{top.name}={int(top)} does not fit a {PERMISSION_BITS}-bit "
            f"permission vector (max {MAX_RESOURCES - 1}); widen the encoding"
        )


_check_capacity()


def _mask(access: int, resources: Iterable[int]) -> int:
    access = int(access)
    if not 0 <= access <= _ACCESS_MASK:
        raise ValueError(f"invalid access level {access!r}")
    mask = 0
    for res in resources:
        res = int(res)
        if not 0 <= res < MAX_RESOURCES:
            raise ValueError(f"resource id {res} outside 0..{MAX_RESOURCES - 1}")
        mask |= access << (res * _ACCESS_BITS)
    return mask


class Permission:
    """Grant table for one credential.

    Grants only accumulate: :meth:`set_access` ORs bits in and nothing
    ever clears them.
    """

    __slots__ = ("_encoded",)

    def __init__(self, encoded: int = 0) -> None:
        encoded = int(encoded)
        if not 0 <= encoded < 1 << PERMISSION_BITS:
            raise ValueError(f"permission vector must fit in {PERMISSION_BITS} bits")
        self._encoded = encoded

    @property
    def encoded(self) -> int:
        return self._encoded

    # ------------------------------------------------------------------ #
    # grants
    # ------------------------------------------------------------------ #

    def set_access(self, access: Access, *resources: Resource) -> None:
        self._encoded |= _mask(access, resources)

    def can(self, access: Access, *resources: Resource) -> bool:
        """True if every resource holds at least *access*, or the wildcard does."""
        if int(access) == Access.NONE:
            return False
        all_mask = _mask(access, (Resource.ALL,))
        if all_mask & self._encoded == all_mask:
            return True
        if not resources:
            return False
        mask = _mask(access, resources)
        return mask & self._encoded == mask

    def grants(self) -> Iterator[Tuple[Resource | int, Access]]:
        for res in range(MAX_RESOURCES):
            bits = (self._encoded >> (res * _ACCESS_BITS)) & _ACCESS_MASK
            if bits:
                try:
                    yield Resource(res), Access(bits)
                except ValueError:
                    # id not (yet) known to this build
                    yield res, Access(bits)

    # ------------------------------------------------------------------ #
    # wire form
    # ------------------------------------------------------------------ #

    def to_bytes(self) -> bytes:
        return self._encoded.to_bytes(PERMISSION_BYTES, "big")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Permission":
        if len(data) != PERMISSION_BYTES:
            raise ValueError(
                f"permission vector must be {PERMISSION_BYTES} bytes, got {len(data)}"
            )
        return cls(int.from_bytes(data, "big"))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Permission):
            return NotImplemented
        return self._encoded == other._encoded

    def __hash__(self) -> int:
        return hash(self._encoded)

    def __repr__(self) -> str:
        return f"Permission({self._encoded:#x})"


_ACCESS_WORDS = {
    "r": Access.READ,
    "read": Access.READ,
    "w": Access.WRITE,
    "write": Access.WRITE,
    "rw": Access.READ_WRITE,
    "readwrite": Access.READ_WRITE,
    "read_write": Access.READ_WRITE,
}


def parse_grant(text: str) -> Tuple[Access, Resource]:
    """Parse ``"read:customers"`` into ``(Access.READ, Resource.CUSTOMERS)``."""
    access_word, sep, resource_word = text.strip().partition(":")
    if not sep:
        raise ValueError(f"grant {text!r} is not of the form ACCESS:RESOURCE")

    access = _ACCESS_WORDS.get(access_word.strip().lower())
    if access is None:
        raise ValueError(f"unknown access level {access_word!r}")

    resource_word = resource_word.strip()
    try:
        if resource_word.isdigit():
            return access, Resource(int(resource_word))
        return access, Resource[resource_word.upper().replace("-", "_")]
    except (KeyError, ValueError):
        raise ValueError(f"unknown resource {resource_word!r}") from None


def parse_grants(text: str) -> List[Tuple[Access, Resource]]:
    return [parse_grant(g) for g in text.split(",") if g.strip()]
