"""boardlink CLI - connect to a board and push MicroPython programs."""

from __future__ import annotations

import json
import sys
import threading
from pathlib import Path

import click

from boardlink.utils.logging import setup_logging


def _parse_usb_id(value: str) -> int:
    try:
        return int(value, 0)
    except ValueError as exc:
        raise click.BadParameter(f"Invalid USB id: {value!r} (use hex like 0x2E8A or decimal)") from exc


def _make_manager(port: str | None):
    """Build a SerialManager for an explicit port path, or the first known board."""
    from boardlink.transport import SerialManager, select_by_device, select_known_board

    selector = select_by_device(port) if port else select_known_board
    return SerialManager(port_selector=selector)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--json-output", is_flag=True, help="Output in JSON format")
@click.pass_context
def cli(ctx: click.Context, debug: bool, json_output: bool) -> None:
    """boardlink - upload generated MicroPython code to a board over serial."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["json_output"] = json_output
    setup_logging(level="DEBUG" if debug else "WARNING", json_output=json_output)


@cli.command()
@click.pass_context
def ports(ctx: click.Context) -> None:
    """List serial ports and the boards behind them."""
    from boardlink.transport import list_ports

    found = list_ports()
    if ctx.obj.get("json_output"):
        click.echo(json.dumps([p.model_dump() for p in found], indent=2))
        return
    if not found:
        click.echo("No serial ports found.")
        return
    click.echo(f"{'Device':<20}  {'VID:PID':<9}  Board")
    click.echo("-" * 56)
    for p in found:
        ids = (
            f"{p.usb_vendor_id:04X}:{p.usb_product_id:04X}"
            if p.usb_vendor_id is not None and p.usb_product_id is not None
            else "-"
        )
        click.echo(f"{p.device:<20}  {ids:<9}  {p.board_type}")


@cli.command()
@click.argument("vendor_id")
@click.argument("product_id")
@click.pass_context
def identify(ctx: click.Context, vendor_id: str, product_id: str) -> None:
    """Show the board label for a USB VENDOR_ID and PRODUCT_ID."""
    from boardlink.models import PortInfo

    info = PortInfo.from_ids(_parse_usb_id(vendor_id), _parse_usb_id(product_id))
    if ctx.obj.get("json_output"):
        click.echo(info.model_dump_json(indent=2))
    else:
        click.echo(info.board_type)


@cli.command()
@click.argument("program", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--port", "-p", envvar="BOARDLINK_PORT", help="Serial port (e.g. /dev/ttyUSB0 or COM3)")
@click.option("--baud", type=int, default=115200, show_default=True, help="Baud rate")
@click.option(
    "--board",
    type=click.Choice(["esp32", "rp2040", "arduino"]),
    default="esp32",
    show_default=True,
    help="Board family",
)
@click.pass_context
def upload(ctx: click.Context, program: Path, port: str | None, baud: int, board: str) -> None:
    """Upload PROGRAM to the board's raw REPL and run it."""
    from boardlink.exceptions import BoardlinkError
    from boardlink.models import BoardFamily
    from boardlink.upload import FirmwareUploader

    program_text = program.read_text(encoding="utf-8")
    if not program_text.strip():
        raise click.UsageError(f"{program} is empty; nothing to upload")

    manager = _make_manager(port)
    try:
        manager.connect(baud_rate=baud)
    except BoardlinkError as exc:
        click.echo(f"ERROR: Failed to connect: {exc}", err=True)
        ctx.exit(1)
        return

    uploader = FirmwareUploader(manager)
    json_output = ctx.obj.get("json_output")
    if not json_output:
        uploader.set_progress_callback(lambda p: click.echo(f"[{p.percent:>3}%] {p.message}"))

    try:
        result = uploader.upload_program(BoardFamily(board), program_text)
    except BoardlinkError as exc:
        click.echo(f"ERROR: {exc}", err=True)
        ctx.exit(1)
        return
    finally:
        manager.disconnect()

    if json_output:
        click.echo(result.model_dump_json(indent=2))
    else:
        click.echo(f"Sent {result.lines_sent} line(s), {result.bytes_sent} bytes in {result.elapsed_s:.2f}s")


@cli.command()
@click.option("--port", "-p", envvar="BOARDLINK_PORT", help="Serial port (e.g. /dev/ttyUSB0 or COM3)")
@click.option("--baud", type=int, default=115200, show_default=True, help="Baud rate")
@click.pass_context
def monitor(ctx: click.Context, port: str | None, baud: int) -> None:
    """Print text received from the board; lines typed on stdin are sent.

    Stops on end of input or Ctrl+C.
    """
    from boardlink.exceptions import BoardlinkError

    manager = _make_manager(port)
    closed = threading.Event()

    manager.on_receive(lambda text: click.echo(text, nl=False))
    manager.on_disconnect(closed.set)

    try:
        info = manager.connect(baud_rate=baud)
    except BoardlinkError as exc:
        click.echo(f"ERROR: Failed to connect: {exc}", err=True)
        ctx.exit(1)
        return

    # registered after connect so connect failures are printed once
    manager.on_error(lambda exc: click.echo(f"\n[error] {exc}", err=True))
    exit_code = 0

    click.echo(f"Connected to {info.device} ({info.board_type}). Ctrl+C to quit.", err=True)
    try:
        for line in sys.stdin:
            if closed.is_set():
                break
            manager.send(line.rstrip("\r\n") + "\n")
    except KeyboardInterrupt:
        pass
    except BoardlinkError:
        exit_code = 1
    finally:
        manager.disconnect()
    ctx.exit(exit_code)


if __name__ == "__main__":
    cli()
