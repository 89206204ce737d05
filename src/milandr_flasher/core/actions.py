"""
Upload workflows composed from the bootloader protocol steps.

The protocol session itself never opens or closes ports. These functions
own the port lifecycle: open at 9600 baud, switch the loader to the target
rate, reopen the port at that rate, then run the remaining steps.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from milandr_flasher.errors import FlasherError
from milandr_flasher.firmware import FirmwareImage, read_hex_file
from milandr_flasher.protocol.bootloader import (
    EXPECTED_IDENTITY,
    BootloaderSession,
    ProgressCallback,
    SessionObserver,
)
from milandr_flasher.protocol.transport import (
    DEFAULT_TIMEOUT,
    INITIAL_BAUD_RATE,
    open_serial,
)
from .parsing import DEFAULT_BAUD_RATE
from .results import OperationResult

logger = logging.getLogger(__name__)

# (port, baudrate, timeout) -> opened transport with write/read/close
TransportFactory = Callable[[str, int, float], object]


@dataclass(frozen=True)
class FlashSettings:
    """
    User-selected options for one upload run.

    Attributes:
        port: Serial port name (already resolved, not "auto")
        boot_loader_path: HEX file of the RAM boot loader
        firmware_path: HEX file to program (None for identify only)
        baud_rate: Rate to switch the loader to after the liveness check
        timeout: Per-call read/write timeout in seconds
        verify: Read back and compare after programming
        dry_run: Decode files only, do not touch the port
    """
    port: str
    boot_loader_path: Optional[Path] = None
    firmware_path: Optional[Path] = None
    baud_rate: int = DEFAULT_BAUD_RATE
    timeout: float = DEFAULT_TIMEOUT
    verify: bool = True
    dry_run: bool = False


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "milandr_flasher"):
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


class _StepRecorder(SessionObserver):
    """Record started steps and forward events to the caller's observer."""

    def __init__(self, result: OperationResult, observer: Optional[SessionObserver]):
        self.result = result
        self.observer = observer

    def on_step(self, step: str) -> None:
        self.result.steps.append(step)
        if self.observer:
            self.observer.on_step(step)

    def on_progress(self, step: str, done: int, total: int) -> None:
        if self.observer:
            self.observer.on_progress(step, done, total)


def _load_image(image: Optional[FirmwareImage], path: Optional[Path], label: str) -> FirmwareImage:
    if image is not None:
        return image
    if path is None:
        raise FlasherError(f"No {label} HEX file given")
    return read_hex_file(path)


def _describe_image(result: OperationResult, prefix: str, image: FirmwareImage) -> None:
    result.metadata[f"{prefix}_address"] = f"0x{image.load_address:08X}"
    result.metadata[f"{prefix}_size"] = image.size


def _run_session(
    operation: str,
    settings: FlashSettings,
    boot_loader: Optional[FirmwareImage],
    firmware: Optional[FirmwareImage],
    observer: Optional[SessionObserver],
    progress_cb: Optional[ProgressCallback],
    transport_factory: TransportFactory,
) -> OperationResult:
    program = operation == "flash"

    with _capture_logs() as logs:
        try:
            boot_image = _load_image(boot_loader, settings.boot_loader_path, "boot loader")
            image = _load_image(firmware, settings.firmware_path, "firmware") if program else None
        except FlasherError as exc:
            logger.error(f"{operation} failed: {exc}")
            return OperationResult.failure(operation, str(exc), port=settings.port, logs=logs)

        result = OperationResult(ok=True, operation=operation, port=settings.port, logs=logs)
        _describe_image(result, "boot_loader", boot_image)
        if image is not None:
            _describe_image(result, "firmware", image)
            result.bytes_len = image.size

        if settings.dry_run:
            result.add_warning("Dry run: files decoded, device not touched")
            return result

        transport = None
        try:
            transport = transport_factory(settings.port, INITIAL_BAUD_RATE, settings.timeout)
            session = BootloaderSession(transport, _StepRecorder(result, observer))
            session.check_link()
            session.set_baud(settings.baud_rate)

            transport.close()
            transport = transport_factory(settings.port, settings.baud_rate, settings.timeout)
            session.replace_transport(transport)

            session.confirm_baud()
            session.inject_boot_loader(boot_image)
            identity = session.read_identity()
            result.metadata["identity"] = identity
            if identity != EXPECTED_IDENTITY:
                result.add_warning(
                    f"Unexpected boot loader identity {identity!r} (expected {EXPECTED_IDENTITY!r})"
                )

            if program:
                session.erase_chip()
                session.program(image, progress_cb)
                if settings.verify:
                    session.verify(image, progress_cb)
                else:
                    result.add_warning("Verification skipped")
        except FlasherError as exc:
            logger.error(f"{operation} failed: {exc}")
            result.add_error(str(exc))
        finally:
            if transport is not None:
                transport.close()
    return result


def identify_device(
    settings: FlashSettings,
    boot_loader: Optional[FirmwareImage] = None,
    observer: Optional[SessionObserver] = None,
    transport_factory: TransportFactory = open_serial,
) -> OperationResult:
    """
    Bring the boot loader up and read its identity, without erasing.

    Returns:
        OperationResult with metadata["identity"] on success
    """
    return _run_session("identify", settings, boot_loader, None, observer, None, transport_factory)


def flash_firmware(
    settings: FlashSettings,
    firmware: Optional[FirmwareImage] = None,
    boot_loader: Optional[FirmwareImage] = None,
    observer: Optional[SessionObserver] = None,
    progress_cb: Optional[ProgressCallback] = None,
    transport_factory: TransportFactory = open_serial,
) -> OperationResult:
    """
    Full upload: liveness, baud switch, boot loader, erase, program, verify.

    Images passed directly take precedence over the paths in ``settings``.
    Any failure stops the run; the device must be power-cycled and the
    upload restarted from the beginning.

    Returns:
        OperationResult; ``ok`` is False and ``errors`` holds the reason on failure
    """
    return _run_session(
        "flash", settings, boot_loader, firmware, observer, progress_cb, transport_factory
    )
