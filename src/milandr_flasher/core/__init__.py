"""
Core workflows shared by the CLI and tests.

- Option parsing (parsing.py)
- Result objects (results.py)
- Upload workflows owning the port lifecycle (actions.py)
"""

from .parsing import parse_int, parse_baud_rate, DEFAULT_BAUD_RATE, SUPPORTED_BAUD_RATES
from .results import OperationResult
from .actions import FlashSettings, flash_firmware, identify_device

__all__ = [
    # Parsing
    "parse_int",
    "parse_baud_rate",
    "DEFAULT_BAUD_RATE",
    "SUPPORTED_BAUD_RATES",
    # Results
    "OperationResult",
    # Actions
    "FlashSettings",
    "flash_firmware",
    "identify_device",
]
