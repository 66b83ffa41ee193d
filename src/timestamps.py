"""Conversion between human time specifications and whole seconds."""
from typing import Optional

_UNIT_WEIGHTS = {
    1: (1,),
    2: (60, 1),
    3: (3600, 60, 1),
}

# Stays below CPython's smallest allowed int<->str digit limit (640), so
# arbitrarily long values convert piecewise instead of raising ValueError.
_CHUNK_DIGITS = 600
_CHUNK_BASE = 10 ** _CHUNK_DIGITS


def _is_number(group: str) -> bool:
    # str.isdigit() alone also accepts superscripts, which int() rejects
    return group.isascii() and group.isdigit()


def _digits_to_int(text: str) -> int:
    value = 0
    for offset in range(0, len(text), _CHUNK_DIGITS):
        chunk = text[offset:offset + _CHUNK_DIGITS]
        value = value * 10 ** len(chunk) + int(chunk)
    return value


def decimal_text(value: int) -> str:
    """``str(value)`` for non-negative ints of any size."""
    if value < _CHUNK_BASE:
        return str(value)
    chunks = []
    while value >= _CHUNK_BASE:
        value, chunk = divmod(value, _CHUNK_BASE)
        chunks.append(f"{chunk:0{_CHUNK_DIGITS}d}")
    chunks.append(str(value))
    return "".join(reversed(chunks))


def parse_timestamp(value: Optional[str]) -> Optional[int]:
    """Parse ``SS``, ``MM:SS`` or ``HH:MM:SS`` into seconds.

    Returns None for empty or malformed input instead of raising.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None

    groups = text.split(":")
    weights = _UNIT_WEIGHTS.get(len(groups))
    if weights is None or not all(_is_number(group) for group in groups):
        return None
    try:
        return sum(_digits_to_int(group) * weight for group, weight in zip(groups, weights))
    except ValueError:
        return None


def format_timestamp(seconds: int) -> str:
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{decimal_text(hours):0>2}:{minutes:02d}:{secs:02d}"
