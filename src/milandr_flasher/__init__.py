"""
Milandr Flasher - firmware uploader for Milandr 1986 microcontrollers

Drives the UART bootloader: baud switch, RAM boot loader injection,
chip erase, programming and read-back verification.
"""

__version__ = "0.1.0"

from milandr_flasher.firmware import FirmwareImage, decode_hex, read_hex_file
from milandr_flasher.protocol import BootloaderSession, SerialTransport

__all__ = [
    "FirmwareImage",
    "decode_hex",
    "read_hex_file",
    "BootloaderSession",
    "SerialTransport",
    "__version__",
]
