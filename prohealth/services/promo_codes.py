"""
Partner discount code helpers.

Codes are compared case-insensitively everywhere: the stored code and
the code typed at checkout both go through normalize_code before any
equality check.
"""
import time
from typing import Iterable

BASE36_DIGITS = '0123456789abcdefghijklmnopqrstuvwxyz'


def normalize_code(code) -> str:
    """Trim and uppercase a code. None becomes ''."""
    if code is None:
        return ''
    return str(code).strip().upper()


def _first_two(value: str) -> str:
    return (value or '').strip()[:2].upper()


def generate_promo_code(first_name: str, last_name: str, prefix: str = 'PRO_',
                        existing_codes: Iterable[str] = ()) -> str:
    """
    Build a unique partner code.

    prefix + first two letters of the last name + first two letters of the
    first name, with a missing part replaced by 'XX'. When the candidate is
    already taken, a counter (1, 2, ...) is appended until it is free.

    Args:
        first_name: Partner first name
        last_name: Partner last name
        prefix: Code prefix, e.g. 'PRO_'
        existing_codes: Codes already in use, any casing

    Returns:
        A code not present in existing_codes
    """
    taken = {normalize_code(c) for c in existing_codes if c}
    base = f"{normalize_code(prefix)}{_first_two(last_name) or 'XX'}{_first_two(first_name) or 'XX'}"

    candidate = base
    counter = 1
    while candidate in taken:
        candidate = f'{base}{counter}'
        counter += 1
    return candidate


def to_base36(number: int) -> str:
    if number == 0:
        return '0'
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_DIGITS[remainder])
    return ''.join(reversed(digits))


def generate_identification(first_name: str, last_name: str, now_ms: int = None,
                            existing: Iterable[str] = ()) -> str:
    """
    Internal partner reference: initials plus a time-based suffix.

    'Jean', 'Dupont' gives 'JEDU' followed by the last four base-36 digits
    of the millisecond timestamp. The timestamp is bumped until the result
    is not in existing.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    taken = {str(ref).upper() for ref in existing if ref}
    initials = f'{_first_two(first_name)}{_first_two(last_name)}'
    while True:
        candidate = f'{initials}{to_base36(now_ms)[-4:].upper()}'
        if candidate not in taken:
            return candidate
        now_ms += 1
