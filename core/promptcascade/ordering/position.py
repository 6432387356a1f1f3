"""
Fractional position keys for ordering sibling nodes.

Keys are base-62 strings made of an integer part (whose first character
encodes its length) followed by an unbounded fractional part. Plain string
comparison gives the sibling order, so a new key can always be generated
between any two existing keys without renumbering anything.

    "a0" < "a1" < "a1V" < "a2" < "b10"

The baseline key for an empty sibling list is "a0".
"""

import logging

from promptcascade.errors import PositionKeyError

logger = logging.getLogger(__name__)

BASE_62_DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
INTEGER_ZERO = "a0"
SMALLEST_INTEGER = "A" + "0" * 26

# Appended to a corrupt key so the result still sorts after it.
FALLBACK_SUFFIX = "V"


# ---------------------------------------------------------------------------
# Integer part helpers
# ---------------------------------------------------------------------------


def _integer_length(head: str) -> int:
    if "a" <= head <= "z":
        return ord(head) - ord("a") + 2
    if "A" <= head <= "Z":
        return ord("Z") - ord(head) + 2
    raise PositionKeyError(f"Invalid position key head: {head!r}")


def _integer_part(key: str) -> str:
    length = _integer_length(key[0])
    if length > len(key):
        raise PositionKeyError(f"Invalid position key: {key!r}")
    return key[:length]


def _validate_integer(value: str) -> None:
    if len(value) != _integer_length(value[0]):
        raise PositionKeyError(f"Invalid integer part of position key: {value!r}")


def _increment_integer(value: str) -> str | None:
    _validate_integer(value)
    head, digits = value[0], list(value[1:])
    carry = True
    for i in range(len(digits) - 1, -1, -1):
        d = BASE_62_DIGITS.index(digits[i]) + 1
        if d == len(BASE_62_DIGITS):
            digits[i] = "0"
        else:
            digits[i] = BASE_62_DIGITS[d]
            carry = False
            break
    if not carry:
        return head + "".join(digits)
    if head == "Z":
        return INTEGER_ZERO
    if head == "z":
        return None
    new_head = chr(ord(head) + 1)
    if new_head > "a":
        digits.append("0")
    else:
        digits.pop()
    return new_head + "".join(digits)


def _decrement_integer(value: str) -> str | None:
    _validate_integer(value)
    head, digits = value[0], list(value[1:])
    borrow = True
    for i in range(len(digits) - 1, -1, -1):
        d = BASE_62_DIGITS.index(digits[i]) - 1
        if d == -1:
            digits[i] = BASE_62_DIGITS[-1]
        else:
            digits[i] = BASE_62_DIGITS[d]
            borrow = False
            break
    if not borrow:
        return head + "".join(digits)
    if head == "a":
        return "Z" + BASE_62_DIGITS[-1]
    if head == "A":
        return None
    new_head = chr(ord(head) - 1)
    if new_head < "Z":
        digits.append(BASE_62_DIGITS[-1])
    else:
        digits.pop()
    return new_head + "".join(digits)


def _midpoint(a: str, b: str | None) -> str:
    """Fractional part strictly between a and b (b=None means no upper bound)."""
    if b is not None and a >= b:
        raise PositionKeyError(f"{a!r} >= {b!r}")
    if a.endswith("0") or (b is not None and b.endswith("0")):
        raise PositionKeyError("Fractional part must not end with 0")

    if b:
        # Shared prefix, reading a missing digit of a as "0"
        n = 0
        while n < len(b) and (a[n] if n < len(a) else "0") == b[n]:
            n += 1
        if n > 0:
            return b[:n] + _midpoint(a[n:], b[n:])

    digit_a = BASE_62_DIGITS.index(a[0]) if a else 0
    digit_b = BASE_62_DIGITS.index(b[0]) if b is not None else len(BASE_62_DIGITS)
    if digit_b - digit_a > 1:
        return BASE_62_DIGITS[(digit_a + digit_b + 1) // 2]
    if b is not None and len(b) > 1:
        return b[0]
    return BASE_62_DIGITS[digit_a] + _midpoint(a[1:], None)


def validate_key(key: str) -> None:
    """Raise PositionKeyError if key is not a well formed position key."""
    if not key:
        raise PositionKeyError("Position key must not be empty")
    if key == SMALLEST_INTEGER:
        raise PositionKeyError(f"Invalid position key: {key!r}")
    if any(ch not in BASE_62_DIGITS for ch in key):
        raise PositionKeyError(f"Invalid characters in position key: {key!r}")
    integer = _integer_part(key)
    if key[len(integer) :].endswith("0"):
        raise PositionKeyError(f"Invalid position key: {key!r}")


def is_valid_key(key: str | None) -> bool:
    if key is None:
        return False
    try:
        validate_key(key)
    except PositionKeyError:
        return False
    return True


def _generate_between(a: str | None, b: str | None) -> str:
    if a is not None:
        validate_key(a)
    if b is not None:
        validate_key(b)
    if a is not None and b is not None and a >= b:
        raise PositionKeyError(f"{a!r} >= {b!r}")

    if a is None:
        if b is None:
            return INTEGER_ZERO
        ib = _integer_part(b)
        fb = b[len(ib) :]
        if ib == SMALLEST_INTEGER:
            return ib + _midpoint("", fb)
        if ib < b:
            return ib
        decremented = _decrement_integer(ib)
        if decremented is None:
            raise PositionKeyError("Cannot decrement any further")
        return decremented

    if b is None:
        ia = _integer_part(a)
        fa = a[len(ia) :]
        incremented = _increment_integer(ia)
        return ia + _midpoint(fa, None) if incremented is None else incremented

    ia = _integer_part(a)
    fa = a[len(ia) :]
    ib = _integer_part(b)
    fb = b[len(ib) :]
    if ia == ib:
        return ia + _midpoint(fa, fb)
    incremented = _increment_integer(ia)
    if incremented is None:
        raise PositionKeyError("Cannot increment any further")
    if incremented < b:
        return incremented
    return ia + _midpoint(fa, None)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def key_after(key: str | None) -> str:
    """
    Return a key that sorts strictly after ``key``.

    Never raises: a corrupt stored key gets FALLBACK_SUFFIX appended, which
    is deterministic and still strictly greater.
    """
    if not key:
        return INTEGER_ZERO
    try:
        return _generate_between(key, None)
    except PositionKeyError as e:
        logger.warning(f"Corrupt position key {key!r}, using fallback: {e}")
        return key + FALLBACK_SUFFIX


def key_before(key: str | None) -> str:
    """Return a key that sorts strictly before ``key``."""
    if not key:
        return INTEGER_ZERO
    return _generate_between(None, key)


def key_between(lower: str | None, upper: str | None) -> str:
    """
    Return a key strictly between ``lower`` and ``upper``.

    Either bound may be None for "unbounded". Raises PositionKeyError when
    ``lower >= upper``. If a bound is malformed but the pair is still ordered,
    ``lower + FALLBACK_SUFFIX`` is used when it fits below ``upper``.
    """
    if lower is not None and upper is not None and lower >= upper:
        raise PositionKeyError(f"Lower bound {lower!r} is not below upper bound {upper!r}")
    try:
        return _generate_between(lower, upper)
    except PositionKeyError:
        if lower is None:
            raise
        candidate = lower + FALLBACK_SUFFIX
        if upper is None or candidate < upper:
            logger.warning(
                f"Malformed position key between {lower!r} and {upper!r}, using fallback"
            )
            return candidate
        raise


def keys_after(key: str | None, count: int) -> list[str]:
    """Return ``count`` strictly increasing keys, all after ``key``."""
    keys: list[str] = []
    current = key
    for _ in range(count):
        current = key_after(current)
        keys.append(current)
    return keys


def compare_keys(a: str | None, b: str | None) -> int:
    """Three-way comparison. Missing keys sort first."""
    if a == b:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    return -1 if a < b else 1


def last_key(keys: list[str | None]) -> str | None:
    """Greatest key in ``keys``, ignoring missing ones."""
    present = [k for k in keys if k]
    return max(present) if present else None
