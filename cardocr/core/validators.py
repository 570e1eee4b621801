"""Acceptance heuristics for candidate lines, card numbers and expiry dates."""
from __future__ import annotations
from typing import List, Optional, Sequence, Tuple

MAX_SPACING_SPREAD = 2
MIN_AMEX_GAP_RATIO = 2.0
MIN_CARD_DIGITS = 12
MAX_CARD_DIGITS = 19


def consecutive_deltas(positions: Sequence[int]) -> List[int]:
    return [b - a for a, b in zip(positions, positions[1:])]


def is_evenly_spaced(positions: Sequence[int], max_spread: int = MAX_SPACING_SPREAD) -> bool:
    """Boxes of a printed number are roughly evenly spaced.

    ``positions`` are the columns (horizontal) or rows (vertical) of a line.
    """
    deltas = consecutive_deltas(positions)
    if not deltas:
        return False
    return max(deltas) - min(deltas) <= max_spread


def has_amex_gaps(columns: Sequence[int], min_ratio: float = MIN_AMEX_GAP_RATIO) -> bool:
    """Gaps between Amex digit groups must be at least ``min_ratio`` times the gaps inside a group.

    Even-indexed column deltas are between groups, odd-indexed ones inside a
    group. A zero inner gap rejects the line.
    """
    deltas = consecutive_deltas(columns)
    even = deltas[0::2]
    odd = deltas[1::2]
    if not even or len(odd) < len(even):
        return False
    for between, inside in zip(even, odd):
        if inside == 0:
            return False
        if float(between) / float(inside) < min_ratio:
            return False
    return True


def luhn_checksum_ok(digits: str) -> bool:
    total = 0
    for i, ch in enumerate(reversed(digits)):
        d = ord(ch) - ord("0")
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


def is_valid_card_number(number: Optional[str]) -> bool:
    """Digits only, plausible length and a passing Luhn checksum."""
    if not number or not number.isdigit():
        return False
    if not MIN_CARD_DIGITS <= len(number) <= MAX_CARD_DIGITS:
        return False
    return luhn_checksum_ok(number)


def parse_expiry(digits: Optional[str]) -> Optional[Tuple[str, str]]:
    """Split ``MMYY`` digits into (month, year); None unless the month is 01..12."""
    if not digits:
        return None
    digits = "".join(ch for ch in digits if ch.isdigit())
    if len(digits) != 4:
        return None
    month, year = digits[:2], digits[2:]
    if not 1 <= int(month) <= 12:
        return None
    return month, year
