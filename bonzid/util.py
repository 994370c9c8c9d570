from __future__ import annotations

import os
import random
import re

_LEADING_INT_RE = re.compile(r"\s*([+-]?)(?:0[xX]([0-9a-fA-F]*)|(\d+))")


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def guid_gen() -> str:
    return os.urandom(8).hex()


def random_range_int(lo: int, hi: int) -> int:
    if lo > hi:
        lo, hi = hi, lo
    return random.randint(int(lo), int(hi))


def args_string(args) -> str:
    return " ".join(str(a) for a in args)


def parse_leading_int(value) -> int | None:
    """Parse the integer prefix of ``value`` ("12abc" -> 12, "0x1f" -> 31); None if absent."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return None
    m = _LEADING_INT_RE.match(value)
    if m is None:
        return None
    sign, hex_digits, digits = m.groups()
    if digits is not None:
        n = int(digits)
    elif hex_digits:
        n = int(hex_digits, 16)
    else:
        return None
    return -n if sign == "-" else n


def clamp(value: int, lo: int, hi: int) -> int:
    return max(min(value, hi), lo)
