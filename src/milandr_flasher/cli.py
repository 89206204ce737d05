"""
Milandr Flasher CLI

Command-line front end for uploading firmware through the 1986 UART bootloader.
"""

import sys
import json
import logging
from pathlib import Path
from typing import Dict, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn, TaskID

from milandr_flasher import __version__
from milandr_flasher.errors import FlasherError, ParseError, PortSelectionError
from milandr_flasher.firmware import read_hex_file, iter_records
from milandr_flasher.ports import AUTO_PORT, list_serial_ports, is_usb_port, resolve_port
from milandr_flasher.protocol import DEFAULT_TIMEOUT, SessionObserver
from milandr_flasher.core.parsing import (
    DEFAULT_BAUD_RATE,
    parse_baud_rate as _parse_baud_rate_core,
)
from milandr_flasher.core.results import OperationResult
from milandr_flasher.core.actions import (
    FlashSettings,
    flash_firmware,
    identify_device,
)

# Setup logging
_log_handler = RichHandler(rich_tracebacks=True, level=logging.WARNING)
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    handlers=[_log_handler],
)
logger = logging.getLogger("milandr_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="Milandr 1986 firmware uploader (UART bootloader)")

STEP_TITLES: Dict[str, str] = {
    "check_link": "Check COM port",
    "set_baud": "Set baud rate",
    "confirm_baud": "Confirm baud rate",
    "inject_boot_loader": "Write boot loader",
    "read_identity": "Read boot loader identity",
    "erase_chip": "Erase chip",
    "program": "Write firmware",
    "verify": "Verify",
}


def print_header(text: str) -> None:
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def parse_baud_rate(value: str) -> int:
    """CLI wrapper converting ValueError to typer.BadParameter."""
    try:
        return _parse_baud_rate_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


class ConsoleObserver(SessionObserver):
    """Print numbered step headers and drive a progress bar per data step."""

    def __init__(self, total_steps: int, progress: Optional[Progress] = None):
        self.total_steps = total_steps
        self.progress = progress
        self.index = 0
        self.tasks: Dict[str, TaskID] = {}

    def on_step(self, step: str) -> None:
        self.index += 1
        title = STEP_TITLES.get(step, step)
        console.print(f"[bold dim][{self.index}/{self.total_steps}][/bold dim] {title}")

    def on_progress(self, step: str, done: int, total: int) -> None:
        if self.progress is None:
            return
        if step not in self.tasks:
            self.tasks[step] = self.progress.add_task(STEP_TITLES.get(step, step), total=total)
        self.progress.update(self.tasks[step], completed=done, total=total)


def _resolve_port_or_exit(port: str, dry_run: bool = False, output_json: bool = False) -> str:
    if dry_run and port.lower() == AUTO_PORT:
        return port
    try:
        resolved = resolve_port(port)
    except PortSelectionError as exc:
        if output_json:
            typer.echo(json.dumps(OperationResult.failure("resolve_port", str(exc)).to_dict(), indent=2))
        else:
            print_error(str(exc))
        sys.exit(1)
    if not output_json:
        console.print(f"Using COM port [cyan]{resolved}[/cyan]")
    return resolved


def _quiet_for_json(output_json: bool) -> None:
    # Log lines would corrupt stdout; they are still kept in result.logs.
    if output_json:
        _log_handler.setLevel(logging.CRITICAL + 1)


def _finish(result: OperationResult, output_json: bool) -> None:
    if output_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        console.print(
            result.to_summary(),
            style="green" if result.ok else "red",
            markup=False,
            highlight=False,
        )
    if not result.ok:
        sys.exit(1)


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol debug log"),
) -> None:
    """Milandr 1986 firmware uploader."""
    logger.setLevel(logging.DEBUG if verbose else logging.NOTSET)
    _log_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"milandr-flasher {__version__}")


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list_serial_ports()
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Description", style="green")
    table.add_column("USB", style="magenta")

    for port in ports_list:
        usb = f"{port.vid:04X}:{port.pid or 0:04X}" if is_usb_port(port) else "-"
        table.add_row(port.device, port.description or "-", usb)

    console.print(table)


@app.command()
def inspect(
    firmware: Path = typer.Argument(..., help="Intel-HEX file", exists=True, dir_okay=False),
    records: bool = typer.Option(False, "--records", "-r", help="List every record"),
) -> None:
    """Decode a HEX file and show the image the bootloader would receive."""
    print_header(f"Firmware Image: {firmware.name}")

    try:
        image = read_hex_file(firmware)
    except ParseError as exc:
        print_error(str(exc))
        sys.exit(1)

    table = Table(title="Image")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Load Address", f"0x{image.load_address:08X}")
    table.add_row("End Address", f"0x{image.end_address:08X}")
    table.add_row("Size", f"{image.size:,} bytes")
    table.add_row("Chunks", str((image.size + 255) // 256))
    console.print(table)

    if records:
        record_table = Table(title="Records")
        record_table.add_column("Line", style="dim")
        record_table.add_column("Type", style="magenta")
        record_table.add_column("Detail", style="green")
        for record in iter_records(firmware.read_text(encoding="ascii")):
            record_table.add_row(str(record.line), record.record_type.name, record.describe())
        console.print(record_table)


@app.command()
def identify(
    port: str = typer.Option(AUTO_PORT, "--port", "-p", envvar="MILANDR_PORT", help="Serial port or 'auto'"),
    baud: str = typer.Option(str(DEFAULT_BAUD_RATE), "--baud", "-b", help="Baud rate after handshake"),
    boot_loader: Path = typer.Option(
        ...,
        "--boot-loader",
        "-l",
        envvar="MILANDR_BOOT_LOADER",
        exists=True,
        dir_okay=False,
        help="RAM boot loader HEX file (1986_BOOT_UART.hex)",
    ),
    timeout: float = typer.Option(DEFAULT_TIMEOUT, "--timeout", help="Read/write timeout in seconds"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Start the boot loader and print its identity string. Flash is not touched."""
    baud_rate = parse_baud_rate(baud)
    _quiet_for_json(output_json)
    if not output_json:
        print_header("Identify Boot Loader")
    settings = FlashSettings(
        port=_resolve_port_or_exit(port, output_json=output_json),
        boot_loader_path=boot_loader,
        baud_rate=baud_rate,
        timeout=timeout,
    )

    observer = None if output_json else ConsoleObserver(total_steps=5)
    result = identify_device(settings, observer=observer)
    if result.ok and not output_json:
        print_success(f"Boot loader identity: {result.metadata.get('identity', '')}")
    _finish(result, output_json)


@app.command()
def flash(
    firmware: Path = typer.Argument(..., help="Firmware Intel-HEX file", exists=True, dir_okay=False),
    port: str = typer.Option(AUTO_PORT, "--port", "-p", envvar="MILANDR_PORT", help="Serial port or 'auto'"),
    baud: str = typer.Option(str(DEFAULT_BAUD_RATE), "--baud", "-b", help="Baud rate after handshake"),
    boot_loader: Path = typer.Option(
        ...,
        "--boot-loader",
        "-l",
        envvar="MILANDR_BOOT_LOADER",
        exists=True,
        dir_okay=False,
        help="RAM boot loader HEX file (1986_BOOT_UART.hex)",
    ),
    verify: bool = typer.Option(True, "--verify/--no-verify", help="Read back after programming"),
    timeout: float = typer.Option(DEFAULT_TIMEOUT, "--timeout", help="Read/write timeout in seconds"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Decode files only, no serial I/O"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Erase the chip and program FIRMWARE."""
    baud_rate = parse_baud_rate(baud)
    _quiet_for_json(output_json)
    if not output_json:
        print_header("Flash Firmware")
    settings = FlashSettings(
        port=_resolve_port_or_exit(port, dry_run=dry_run, output_json=output_json),
        boot_loader_path=boot_loader,
        firmware_path=firmware,
        baud_rate=baud_rate,
        timeout=timeout,
        verify=verify,
        dry_run=dry_run,
    )

    if output_json:
        result = flash_firmware(settings)
    else:
        with Progress(
            TextColumn("[{task.description}]"),
            BarColumn(),
            TextColumn("[{task.percentage:.0f}%]"),
            console=console,
        ) as progress:
            observer = ConsoleObserver(total_steps=8 if verify else 7, progress=progress)
            result = flash_firmware(settings, observer=observer)

        if result.ok:
            if dry_run:
                print_success(
                    f"Firmware {result.metadata['firmware_size']:,} bytes "
                    f"at {result.metadata['firmware_address']}"
                )
            else:
                print_success("Firmware uploaded")
    _finish(result, output_json)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except FlasherError as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
