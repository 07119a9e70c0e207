"""SCPI number parsing and formatting utilities.

Handles NR1 (integer), NR2 (fixed-point), and NR3 (scientific notation)
decimal formats, the IEEE 488.2 non-decimal integer formats (``#H``, ``#Q``,
``#B``), optional unit/multiplier suffixes, and the special values defined
by SCPI (NAN, INF, NINF, MIN, MAX, DEF, UP, DOWN).
"""

from __future__ import annotations

import math
import re
from enum import Enum


class ScpiSpecial(Enum):
    """SCPI special parameter values."""

    MIN = "MIN"
    MAX = "MAX"
    DEF = "DEF"
    UP = "UP"
    DOWN = "DOWN"
    NAN = "NAN"
    INF = "INF"
    NINF = "NINF"


_SPECIAL_FLOAT_MAP: dict[str, float] = {
    "NAN": float("nan"),
    "INF": float("inf"),
    "+INF": float("inf"),
    "NINF": float("-inf"),
    "-INF": float("-inf"),
}

_SPECIAL_KEYWORDS: frozenset[str] = frozenset({"MIN", "MAX", "DEF", "UP", "DOWN"})

# IEEE 488.2 recommended representations for not-a-number and infinities.
IEEE_NAN = 9.91e37
IEEE_INF = 9.9e37

_RADIX: dict[str, int] = {"H": 16, "Q": 8, "B": 2}

_NON_DECIMAL_RE = re.compile(r"^#([HQB])([0-9A-F]+)$", re.IGNORECASE)

# Decimal mantissa, optional exponent, optional suffix separated by optional whitespace.
_DECIMAL_RE = re.compile(
    r"""^(?P<number>[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE]\s*[+-]?\d+)?)
        \s*(?P<suffix>[A-Za-z%/][A-Za-z0-9/%.]*)?$""",
    re.VERBOSE,
)


def _map_sentinel(value: float) -> float:
    if value == IEEE_NAN:
        return float("nan")
    if value == IEEE_INF:
        return float("inf")
    if value == -IEEE_INF:
        return float("-inf")
    return value


def parse_non_decimal(text: str) -> int | None:
    """Parse ``#H``/``#Q``/``#B`` non-decimal numeric data.

    Returns:
        The integer value, or ``None`` if *text* is not in a non-decimal format.

    Raises:
        ValueError: If the digits are invalid for the declared radix.
    """
    match = _NON_DECIMAL_RE.match(text.strip())
    if match is None:
        return None
    radix = _RADIX[match.group(1).upper()]
    try:
        return int(match.group(2), radix)
    except ValueError:
        raise ValueError(f"Invalid SCPI non-decimal number: {text!r}") from None


def split_suffix(text: str) -> tuple[str, str]:
    """Split decimal numeric text into its number and suffix parts.

    Args:
        text: Text such as ``"5.0"``, ``"-1.5E-3 MV"`` or ``"10KHZ"``.

    Returns:
        ``(number, suffix)``; the suffix is ``""`` when absent.

    Raises:
        ValueError: If *text* is not decimal numeric data.
    """
    match = _DECIMAL_RE.match(text.strip())
    if match is None:
        raise ValueError(f"Invalid SCPI number: {text!r}")
    number = re.sub(r"\s+", "", match.group("number"))
    return number, match.group("suffix") or ""


def parse_number(text: str, *, ieee_sentinels: bool = False) -> float:
    """Parse a SCPI numeric response into a float.

    Accepts NR1 (``"42"``), NR2 (``"1.23"``), NR3 (``"1.23E+4"``), the
    non-decimal formats (``"#H2A"``), and the special tokens ``NAN``,
    ``INF``, ``NINF``, and ``-INF``.

    Args:
        text: The raw response string (leading/trailing whitespace is stripped).
        ieee_sentinels: Map ``9.91E37`` to NaN and ``±9.9E37`` to ±infinity.

    Returns:
        The parsed float value.

    Raises:
        ValueError: If *text* cannot be parsed as a SCPI number.
    """
    token = text.strip().upper()
    special = _SPECIAL_FLOAT_MAP.get(token)
    if special is not None:
        return special
    non_decimal = parse_non_decimal(token)
    if non_decimal is not None:
        return float(non_decimal)
    try:
        value = float(token)
    except ValueError:
        raise ValueError(f"Invalid SCPI number: {text!r}") from None
    return _map_sentinel(value) if ieee_sentinels else value


def parse_numbers(text: str, *, ieee_sentinels: bool = False) -> tuple[float, ...]:
    """Parse a comma-separated list of SCPI numbers.

    Args:
        text: Comma-separated numeric values (e.g. ``"1.0,2.0,3.0"``).
        ieee_sentinels: Map the IEEE 488.2 NaN and infinity sentinels.

    Returns:
        A tuple of parsed float values.

    Raises:
        ValueError: If any element cannot be parsed.
    """
    return tuple(parse_number(part, ieee_sentinels=ieee_sentinels) for part in text.split(","))


def parse_int(text: str) -> int:
    """Parse a SCPI integer response (NR1 or non-decimal).

    Args:
        text: The raw response string.

    Returns:
        The parsed integer.

    Raises:
        ValueError: If *text* is not a valid integer.
    """
    token = text.strip()
    non_decimal = parse_non_decimal(token)
    if non_decimal is not None:
        return non_decimal
    try:
        return int(token)
    except ValueError:
        raise ValueError(f"Invalid SCPI integer: {text!r}") from None


def parse_bool(text: str) -> bool:
    """Parse a SCPI boolean response.

    Accepts ``"1"`` / ``"0"`` and ``"ON"`` / ``"OFF"`` (case-insensitive).

    Args:
        text: The raw response string.

    Returns:
        The parsed boolean.

    Raises:
        ValueError: If *text* is not a recognized boolean token.
    """
    token = text.strip().upper()
    if token in ("1", "ON"):
        return True
    if token in ("0", "OFF"):
        return False
    raise ValueError(f"Invalid SCPI boolean: {text!r}")


def parse_special(text: str) -> float | ScpiSpecial:
    """Parse a SCPI value that may be numeric or a special keyword.

    Returns a :class:`ScpiSpecial` member for ``MIN``, ``MAX``, ``DEF``,
    ``UP`` and ``DOWN``. Numeric values (including ``NAN``, ``INF``,
    ``NINF``) are returned as ``float``.

    Args:
        text: The raw response string.

    Returns:
        A float for numeric values, or a :class:`ScpiSpecial` for keywords.

    Raises:
        ValueError: If *text* cannot be parsed.
    """
    token = text.strip().upper()
    if token in _SPECIAL_KEYWORDS:
        return ScpiSpecial(token)
    return parse_number(text)


def format_number(value: float, precision: int | None = None) -> str:
    """Format a number for use in a SCPI command.

    ``nan``, ``inf``, and ``-inf`` are rendered as ``NAN``, ``INF``, and
    ``NINF`` respectively. Integers are rendered in NR1 form. Finite floats
    use the shortest representation that round-trips (``repr``), or at most
    *precision* significant digits when given, with an upper-case exponent.

    Args:
        value: The numeric value to format.
        precision: Maximum number of significant digits, or ``None`` for the
            shortest round-trip form.

    Returns:
        A SCPI-compatible string representation.

    Raises:
        ValueError: If *precision* is less than 1.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if math.isnan(value):
        return "NAN"
    if math.isinf(value):
        return "NINF" if value < 0 else "INF"
    if precision is None:
        return repr(float(value)).upper()
    if precision < 1:
        raise ValueError(f"precision must be >= 1, got {precision}")
    text = format(value, f".{precision}g").upper()
    if "E" not in text and "." not in text:
        # Integral floats keep a decimal point.
        text += ".0"
    return text


def format_bool(value: bool) -> str:
    """Format a boolean for use in a SCPI command.

    Args:
        value: The boolean to format.

    Returns:
        ``"1"`` for True, ``"0"`` for False.
    """
    return "1" if value else "0"
