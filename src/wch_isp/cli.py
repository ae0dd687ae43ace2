"""
WCH ISP CLI

Command-line interface for flashing WCH RISC-V microcontrollers through their
factory ISP bootloader over serial or USB.
"""

import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from wch_isp import __version__
from wch_isp.core.actions import (
    erase_flash as core_erase_flash,
    flash_firmware as core_flash_firmware,
    read_config as core_read_config,
    verify_firmware as core_verify_firmware,
    write_config as core_write_config,
)
from wch_isp.core.parsing import parse_config_bytes, parse_vid_pid
from wch_isp.core.results import OperationResult
from wch_isp.core.safety import (
    SafetyContext,
    WritePermissionError,
    require_write_permission,
)
from wch_isp.errors import DeviceNotFoundError, TransportError, WCHISPError
from wch_isp.firmware import Firmware
from wch_isp.models import Connection, DeviceInfo, get_device, list_families
from wch_isp.protocol.session import SECTOR_SIZE
from wch_isp.transport import (
    DEFAULT_TIMEOUT,
    SerialTransceiver,
    Transceiver,
    UsbTransceiver,
    find_usb_devices,
    list_serial_ports,
)
from wch_isp.utils.formatting import byte_size, hex_bytes, hex_listing

# Setup Rich console
console = Console()

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
)
logger = logging.getLogger("wch_isp")

app = typer.Typer(help="WCH RISC-V microcontroller ISP flasher (serial and USB bootloader)")

OPTION_BYTE_NAMES = ["RDPR", "USER", "DATA0", "DATA1", "WRPR0", "WRPR1", "WRPR2", "WRPR3"]


@app.callback()
def _main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log protocol traffic (DEBUG)"),
) -> None:
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def resolve_device(name: str) -> DeviceInfo:
    """Look up --device by name or "family:device" index."""
    try:
        return get_device(name)
    except DeviceNotFoundError as e:
        print_error(str(e))
        console.print("[dim]Use list-devices to see known devices[/dim]")
        sys.exit(1)


def make_transceiver(
    device: DeviceInfo,
    port: Optional[str],
    use_usb: bool,
    usb_id: Optional[str],
    timeout: float,
    no_flush: bool,
) -> Transceiver:
    """Build the serial or USB transceiver selected on the command line."""
    if use_usb or usb_id:
        if port:
            raise typer.BadParameter("Use either --port or --usb, not both")
        if not device.supports(Connection.USB):
            print_warning(f"{device.name} is not listed as supporting a USB bootloader")
        try:
            vid_pid = parse_vid_pid(usb_id)
        except ValueError as e:
            raise typer.BadParameter(str(e))
        return UsbTransceiver(vid_pid=vid_pid, timeout=timeout)

    if not port:
        raise typer.BadParameter("Specify a serial port with --port, or --usb")
    return SerialTransceiver(port, flush=not no_flush, timeout=timeout)


def load_firmware(source: str) -> Firmware:
    """Load and decode a firmware file or URL, padded to whole sectors."""
    try:
        if source.startswith(("http://", "https://")):
            fw = Firmware.from_url(source)
        else:
            fw = Firmware.from_file(source)
        fw.parse()
        fw.fill_to_end_of_segment(SECTOR_SIZE)
    except WCHISPError as e:
        print_error(f"Failed to load firmware from \"{source}\"")
        print_error(str(e))
        sys.exit(1)
    return fw


def print_result(result: OperationResult) -> None:
    """Print warnings/errors of a result and exit non-zero on failure."""
    for warning in result.warnings:
        print_warning(warning)
    if not result.ok:
        for error in result.errors:
            print_error(error)
        sys.exit(1)


def _progress_callback(progress: Progress, task_id):
    def update(increment: Optional[int], total: Optional[int]) -> None:
        if increment is None or total is None:
            # Indeterminate step; show an empty bar until it reports completion.
            progress.update(task_id, total=100, completed=0)
        else:
            progress.update(task_id, total=total, completed=min(increment, total))
    return update


def _run_with_progress(description: str, action, *args, **kwargs) -> OperationResult:
    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        task = progress.add_task(description, total=None)
        return action(*args, progress_cb=_progress_callback(progress, task), **kwargs)


def confirm_write(
    operation: str,
    device: DeviceInfo,
    write: bool,
    yes: bool = False,
    needs_confirmation: bool = False,
    bytes_length: int = 0,
) -> None:
    """Apply the shared write gate; abort with a message if refused."""
    ctx = SafetyContext(
        write_enabled=write,
        assume_yes=yes,
        device_name=device.name,
        prompt_confirmation=(lambda prompt: typer.prompt(prompt)) if sys.stdin.isatty() else None,
    )
    try:
        require_write_permission(
            ctx,
            operation,
            confirm=needs_confirmation,
            bytes_length=bytes_length,
        )
    except WritePermissionError as e:
        print_error(e.reason)
        sys.exit(1)


# Shared option declarations
PORT_OPTION = typer.Option(None, "--port", "-p", help="Serial port (e.g. /dev/ttyUSB0, COM3)")
USB_OPTION = typer.Option(False, "--usb", "-u", help="Use the USB bootloader instead of serial")
USB_ID_OPTION = typer.Option(None, "--usb-id", help="USB VID:PID to open (implies --usb)")
DEVICE_OPTION = typer.Option(..., "--device", "-d", help="Device name (e.g. CH32V003F4P6) or family:device index")
TIMEOUT_OPTION = typer.Option(DEFAULT_TIMEOUT, "--timeout", "-t", help="Response timeout in seconds")
NO_FLUSH_OPTION = typer.Option(False, "--no-flush", help="Do not drain stale serial input after opening")
NO_RESET_OPTION = typer.Option(False, "--no-reset", help="Leave the device in the bootloader afterwards")


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"wch-isp {__version__}")


@app.command()
def ports() -> None:
    """List serial ports and connected USB bootloader devices."""
    print_header("Available Ports")

    ports_list = list_serial_ports()
    if not ports_list:
        print_warning("No serial ports found")
    else:
        table = Table(title="Serial Ports")
        table.add_column("Port", style="cyan")
        table.add_column("USB ID", style="magenta")
        table.add_column("Description", style="green")
        for port in ports_list:
            usb_id = f"{port.vid:04X}:{port.pid:04X}" if port.vid is not None else "-"
            table.add_row(port.device, usb_id, port.description or "-")
        console.print(table)

    try:
        usb_devices = find_usb_devices()
    except TransportError as e:
        print_warning(str(e))
        return

    if not usb_devices:
        console.print("[dim]No USB bootloader devices found[/dim]")
        return

    table = Table(title="USB Bootloader Devices")
    table.add_column("USB ID", style="cyan")
    table.add_column("Bus", style="magenta")
    table.add_column("Address", style="green")
    for dev in usb_devices:
        table.add_row(f"{dev.idVendor:04X}:{dev.idProduct:04X}", str(dev.bus), str(dev.address))
    console.print(table)


@app.command("list-devices")
def list_devices() -> None:
    """List supported devices."""
    print_header("Supported Devices")

    table = Table()
    table.add_column("Index", style="dim")
    table.add_column("Device", style="cyan")
    table.add_column("Package", style="magenta")
    table.add_column("Flash", style="green")
    table.add_column("Variant/Type", style="yellow")
    table.add_column("Connections", style="blue")

    for fam_idx, family in enumerate(list_families()):
        table.add_section()
        for dev_idx, dev in enumerate(family.devices):
            table.add_row(
                f"{fam_idx}:{dev_idx}",
                dev.name,
                dev.package,
                byte_size(dev.flash_size),
                f"0x{dev.variant:02X}/0x{dev.type:02X}",
                ", ".join(c.value for c in dev.connections),
            )

    console.print(table)


@app.command()
def info(
    source: str = typer.Argument(..., help="Firmware file path or http(s) URL"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Check the image fits this device"),
    dump: bool = typer.Option(False, "--dump", help="Print a hex listing of the decoded image"),
) -> None:
    """Decode a firmware file and summarise it."""
    print_header("Firmware Info")

    fw = load_firmware(source)

    table = Table()
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("File", fw.name)
    table.add_row("Format", fw.format)
    table.add_row("Size", f"{fw.size:,} bytes ({byte_size(fw.size)})")
    table.add_row("Sectors", f"{fw.sector_count(SECTOR_SIZE)} x {SECTOR_SIZE} bytes")
    console.print(table)

    if dump:
        for line in hex_listing(fw.bytes):
            console.print(line, highlight=False)

    if device:
        dev = resolve_device(device)
        if fw.size > dev.flash_size:
            print_error(
                f"Firmware size ({byte_size(fw.size)}) is LARGER than "
                f"{dev.name} flash size ({byte_size(dev.flash_size)})"
            )
            sys.exit(1)
        print_success(f"Fits {dev.label}")


@app.command("config-read")
def config_read(
    device: str = DEVICE_OPTION,
    port: Optional[str] = PORT_OPTION,
    usb: bool = USB_OPTION,
    usb_id: Optional[str] = USB_ID_OPTION,
    timeout: float = TIMEOUT_OPTION,
    no_flush: bool = NO_FLUSH_OPTION,
    no_reset: bool = NO_RESET_OPTION,
) -> None:
    """Read option bytes, bootloader version and chip unique ID."""
    print_header("Read Configuration")

    dev = resolve_device(device)
    trx = make_transceiver(dev, port, usb, usb_id, timeout, no_flush)

    result = _run_with_progress(
        "Reading config", core_read_config, trx, dev, timeout=timeout, do_reset=not no_reset
    )
    print_result(result)

    config = result.config

    table = Table(title=f"{dev.name} Configuration")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for name, value in zip(OPTION_BYTE_NAMES, config.option_bytes):
        table.add_row(name, f"0x{value:02X}")
    table.add_row("Bootloader", str(config.bootloader_version))
    table.add_row("Unique ID", hex_bytes(config.chip_unique_id, " "))
    console.print(table)

    print_success("Configuration read")


@app.command("config-write")
def config_write(
    config: str = typer.Argument(..., help='8 option bytes: RDPR USER DATA0 DATA1 WRPR0-3 (e.g. "A5 3F FF FF FF FF FF FF")'),
    device: str = DEVICE_OPTION,
    port: Optional[str] = PORT_OPTION,
    usb: bool = USB_OPTION,
    usb_id: Optional[str] = USB_ID_OPTION,
    timeout: float = TIMEOUT_OPTION,
    no_flush: bool = NO_FLUSH_OPTION,
    no_reset: bool = NO_RESET_OPTION,
    write: bool = typer.Option(False, "--write", help="Required flag to enable writing to the device"),
) -> None:
    """Write option bytes."""
    print_header("Write Configuration")

    try:
        config_bytes = parse_config_bytes(config)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    dev = resolve_device(device)
    confirm_write("Config write", dev, write)
    trx = make_transceiver(dev, port, usb, usb_id, timeout, no_flush)

    result = _run_with_progress(
        "Writing config", core_write_config, trx, dev, config_bytes,
        timeout=timeout, do_reset=not no_reset,
    )
    print_result(result)

    table = Table(title=f"{dev.name} Option Bytes")
    table.add_column("Field", style="cyan")
    table.add_column("Before", style="magenta")
    table.add_column("After", style="green")
    for name, before, after in zip(OPTION_BYTE_NAMES, result.config.option_bytes, result.written_config):
        table.add_row(name, f"0x{before:02X}", f"0x{after:02X}")
    console.print(table)

    print_success("Configuration written")


@app.command()
def flash(
    source: str = typer.Argument(..., help="Firmware file path or http(s) URL"),
    device: str = DEVICE_OPTION,
    port: Optional[str] = PORT_OPTION,
    usb: bool = USB_OPTION,
    usb_id: Optional[str] = USB_ID_OPTION,
    timeout: float = TIMEOUT_OPTION,
    no_flush: bool = NO_FLUSH_OPTION,
    no_reset: bool = NO_RESET_OPTION,
    write: bool = typer.Option(False, "--write", help="Required flag to enable writing to the device"),
) -> None:
    """
    Erase, write and verify firmware.

    Steps:
    1. Identify device and read its configuration
    2. Erase the sectors covered by the image
    3. Write the image
    4. Verify the image
    5. Reset into the application (unless --no-reset)
    """
    print_header("Flash Firmware")

    dev = resolve_device(device)
    fw = load_firmware(source)

    console.print(f"Device: {dev.label}")
    console.print(f"Firmware: {fw.name} ({fw.format}, {fw.size:,} bytes)")

    confirm_write("Flash write", dev, write, bytes_length=fw.size)
    trx = make_transceiver(dev, port, usb, usb_id, timeout, no_flush)

    result = _run_with_progress(
        "Flashing", core_flash_firmware, trx, dev, fw, timeout=timeout, do_reset=not no_reset
    )
    print_result(result)

    table = Table(title="Flash Results")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Device", dev.name)
    table.add_row("Bytes", f"{result.image_size:,}")
    table.add_row("SHA-256", result.image_sha256)
    table.add_row("Verified", "Yes" if result.verified else "No")
    console.print(table)

    print_success("Firmware flashed and verified")


@app.command()
def verify(
    source: str = typer.Argument(..., help="Firmware file path or http(s) URL"),
    device: str = DEVICE_OPTION,
    port: Optional[str] = PORT_OPTION,
    usb: bool = USB_OPTION,
    usb_id: Optional[str] = USB_ID_OPTION,
    timeout: float = TIMEOUT_OPTION,
    no_flush: bool = NO_FLUSH_OPTION,
    no_reset: bool = NO_RESET_OPTION,
) -> None:
    """Verify flash contents against a firmware file."""
    print_header("Verify Firmware")

    dev = resolve_device(device)
    fw = load_firmware(source)
    trx = make_transceiver(dev, port, usb, usb_id, timeout, no_flush)

    result = _run_with_progress(
        "Verifying", core_verify_firmware, trx, dev, fw, timeout=timeout, do_reset=not no_reset
    )
    print_result(result)
    print_success("Flash contents match firmware")


@app.command()
def erase(
    device: str = DEVICE_OPTION,
    port: Optional[str] = PORT_OPTION,
    usb: bool = USB_OPTION,
    usb_id: Optional[str] = USB_ID_OPTION,
    timeout: float = TIMEOUT_OPTION,
    no_flush: bool = NO_FLUSH_OPTION,
    no_reset: bool = NO_RESET_OPTION,
    write: bool = typer.Option(False, "--write", help="Required flag to enable erasing the device"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
) -> None:
    """Erase the entire flash of the device."""
    print_header("Erase Flash")

    dev = resolve_device(device)
    confirm_write("Erase", dev, write, yes=yes, needs_confirmation=True, bytes_length=dev.flash_size)
    trx = make_transceiver(dev, port, usb, usb_id, timeout, no_flush)

    result = _run_with_progress(
        "Erasing", core_erase_flash, trx, dev, timeout=timeout, do_reset=not no_reset
    )
    print_result(result)
    print_success(f"Erased {result.sectors_erased} sectors")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
