"""
Serial port discovery.

Auto-detection is deliberately simple: if exactly one USB serial port is
present, use it. With none or several, the user must name the port.
"""

import logging
from typing import List, Optional, Sequence

import serial.tools.list_ports
from serial.tools.list_ports_common import ListPortInfo

from .errors import PortSelectionError

logger = logging.getLogger(__name__)

AUTO_PORT = "auto"


def list_serial_ports() -> List[ListPortInfo]:
    """All serial ports known to the OS, sorted by device name."""
    return sorted(serial.tools.list_ports.comports(), key=lambda p: p.device)


def is_usb_port(port: ListPortInfo) -> bool:
    return port.vid is not None


def usb_ports(ports: Optional[Sequence[ListPortInfo]] = None) -> List[ListPortInfo]:
    if ports is None:
        ports = list_serial_ports()
    found = []
    for port in ports:
        if not is_usb_port(port):
            continue
        logger.debug(
            f"USB port {port.device}: VID:{port.vid:04x} PID:{port.pid or 0:04x} "
            f"serial={port.serial_number or '-'} "
            f"manufacturer={port.manufacturer or '-'} product={port.product or '-'}"
        )
        found.append(port)
    return found


def probe_port(ports: Optional[Sequence[ListPortInfo]] = None) -> str:
    """
    Pick the only USB serial port.

    Raises:
        PortSelectionError: If no USB port or more than one is present
    """
    candidates = usb_ports(ports)
    if not candidates:
        raise PortSelectionError("COM port not found")
    if len(candidates) > 1:
        names = ", ".join(p.device for p in candidates)
        raise PortSelectionError(
            f"{len(candidates)} COM ports found, choose the right one with --port: {names}"
        )
    return candidates[0].device


def resolve_port(name: str) -> str:
    """Return ``name`` unless it is "auto", in which case probe for one."""
    if name.strip().lower() == AUTO_PORT:
        return probe_port()
    return name
