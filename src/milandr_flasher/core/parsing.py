"""
Parsing helpers for CLI option values.

Raise ValueError; the CLI converts it to typer.BadParameter.
"""

from typing import Optional

DEFAULT_BAUD_RATE = 115200
SUPPORTED_BAUD_RATES = (9600, 19200, 57600, 115200)


def parse_int(value: Optional[str]) -> Optional[int]:
    """Read a numeric option such as a baud rate; ``0x`` or a trailing ``h`` marks hex."""
    text = (value or "").strip().lower()
    if not text:
        return None

    digits, base = text, 10
    if text.startswith("0x"):
        digits, base = text[2:], 16
    elif text.endswith("h"):
        digits, base = text[:-1], 16
    try:
        return int(digits, base)
    except ValueError:
        raise ValueError(
            f"Invalid baud rate '{value}'. Use decimal (115200) or hex (0x1C200, 1C200h)."
        )


def parse_baud_rate(value: str) -> int:
    """
    Parse a baud rate the 1986 loader accepts.

    Raises:
        ValueError: If not a number or not one of SUPPORTED_BAUD_RATES
    """
    rate = parse_int(value)
    if rate is None:
        raise ValueError("Baud rate is required")
    if rate not in SUPPORTED_BAUD_RATES:
        supported = ", ".join(str(r) for r in SUPPORTED_BAUD_RATES)
        raise ValueError(f"Unsupported baud rate {rate}. Use one of: {supported}")
    return rate
