"""Command-line front end for an fcserver instance."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from .config import CONFIG_ENV_PREFIX, Config, load_config
from .connection import Connection
from .devices import LEDS_PER_DEVICE
from .errors import FadecandyError
from .logging import configure_logging, get_logger
from .mapping import (
    MappingCompiler,
    fleet_descriptors,
    led_descriptor,
    read_config,
    write_config,
)

Command = Callable[[Config, Connection, argparse.Namespace], Awaitable[None]]

console = Console()


class CliError(Exception):
    """Raised when the CLI encounters an expected error condition."""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fadecandy-client",
        description=(
            "Talk to fcserver over its WebSocket API. Uses FADECANDY_* env vars and an "
            "optional TOML file for defaults. Examples: `fadecandy-client devices`, "
            "`fadecandy-client identify FFGWNFNGOTKTNFLD 130`, "
            "`fadecandy-client map --out fcserver.json`."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=f"Path to TOML config file (env: {CONFIG_ENV_PREFIX}CONFIG).",
    )
    parser.add_argument("--server-url", help="fcserver WebSocket URL, e.g. ws://127.0.0.1:7890.")
    parser.add_argument(
        "--timeout",
        type=float,
        dest="request_timeout",
        help="Seconds to wait for each fcserver reply.",
    )
    parser.add_argument(
        "--log-format",
        choices=["plain", "json"],
        help="Structured logging format.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log verbosity level.",
    )
    parser.add_argument(
        "--output",
        choices=["table", "json"],
        default="table",
        help="Output format for command results.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    devices = subparsers.add_parser("devices", help="List devices attached to fcserver")
    devices.set_defaults(func=_cmd_devices)

    off = subparsers.add_parser("off", help="Turn every LED on every device off")
    off.set_defaults(func=_cmd_off)

    identify = subparsers.add_parser(
        "identify",
        help="Light a single LED at full white, all others off",
    )
    identify.add_argument("serial", help="Device serial number")
    identify.add_argument("index", type=int, help=f"LED index (0-{LEDS_PER_DEVICE - 1})")
    identify.set_defaults(func=_cmd_identify)

    walk = subparsers.add_parser(
        "walk",
        help="Light every LED in turn and print its label",
    )
    walk.add_argument(
        "--serial",
        action="append",
        dest="serials",
        help="Restrict the walk to this device (repeatable).",
    )
    walk.add_argument("--start", type=int, default=0, help="Device-local index to start from.")
    walk.add_argument(
        "--interval",
        type=float,
        dest="identify_interval",
        help="Seconds to hold each LED before moving on.",
    )
    walk.set_defaults(func=_cmd_walk)

    map_cmd = subparsers.add_parser(
        "map",
        help="Compile a linear pixel map of every attached device",
        description=(
            "Registers LEDs 0..COUNT-1 of each device, in serial order, and prints "
            "or writes an fcserver configuration."
        ),
    )
    map_cmd.add_argument(
        "--count",
        type=int,
        default=LEDS_PER_DEVICE,
        help="LEDs to map per device.",
    )
    map_cmd.add_argument("--out", type=Path, help="Write the configuration to this file.")
    map_cmd.add_argument(
        "--append",
        action="store_true",
        help="Extend the mapping already stored in --out instead of replacing it.",
    )
    map_cmd.set_defaults(func=_cmd_map)

    return parser


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    keys = ("server_url", "request_timeout", "log_format", "log_level", "identify_interval")
    return {key: getattr(args, key, None) for key in keys if getattr(args, key, None) is not None}


def _print_output(data: Any, output: str, table: Optional[Table] = None) -> None:
    if output == "table" and table is not None:
        console.print(table)
    else:
        json.dump(data, sys.stdout, indent=2)
        sys.stdout.write("\n")


async def _cmd_devices(config: Config, connection: Connection, args: argparse.Namespace) -> None:
    table = Table(title="Fadecandy devices", header_style="bold cyan", box=box.ROUNDED)
    table.add_column("Serial", style="cyan", no_wrap=True)
    table.add_column("Type", style="green")
    table.add_column("Version", style="yellow")
    for device in connection.devices:
        table.add_row(device.serial, device.type, device.version or "-")
    _print_output([device.as_dict() for device in connection.devices], args.output, table)


async def _cmd_off(config: Config, connection: Connection, args: argparse.Namespace) -> None:
    await connection.all_lights_off()
    table = Table(title="All lights off", header_style="bold cyan", box=box.ROUNDED)
    table.add_column("Serial", style="cyan", no_wrap=True)
    table.add_column("Status", style="green")
    for device in connection.devices:
        table.add_row(device.serial, "off")
    _print_output({"status": "off", "devices": len(connection.devices)}, args.output, table)


async def _cmd_identify(config: Config, connection: Connection, args: argparse.Namespace) -> None:
    if not 0 <= args.index < LEDS_PER_DEVICE:
        raise CliError(f"Index must be between 0 and {LEDS_PER_DEVICE - 1}.")
    try:
        connection.device(args.serial)
    except KeyError as exc:
        raise CliError(f"No device with serial {args.serial} is attached.") from exc
    await connection.identify_light(args.serial, args.index)
    descriptor = led_descriptor(args.serial, args.index)
    table = Table(title="Identified LED", header_style="bold cyan", box=box.ROUNDED)
    table.add_column("Label", style="cyan", no_wrap=True)
    table.add_column("Strip", style="yellow", justify="right")
    table.add_column("Position", style="yellow", justify="right")
    table.add_row(descriptor.label, str(descriptor.strip_index), str(descriptor.strip_position))
    _print_output(
        {"status": "lit", "serial": args.serial, "index": args.index}, args.output, table
    )


async def _cmd_walk(config: Config, connection: Connection, args: argparse.Namespace) -> None:
    devices = list(connection.devices)
    if args.serials:
        unknown = sorted(set(args.serials) - {device.serial for device in devices})
        if unknown:
            raise CliError(f"Unknown device serial(s): {', '.join(unknown)}")
        devices = [device for device in devices if device.serial in args.serials]
    logger = get_logger("fadecandy.cli")
    try:
        for descriptor in fleet_descriptors(devices):
            if descriptor.index < args.start:
                continue
            await connection.identify_light(descriptor.device, descriptor.index)
            console.print(
                f"[cyan]{descriptor.label}[/cyan] strip {descriptor.strip_index} "
                f"position {descriptor.strip_position}"
            )
            await asyncio.sleep(config.identify_interval)
    except BaseException:
        if connection.is_ready:
            try:
                await connection.all_lights_off()
            except FadecandyError:
                logger.warning("Could not turn lights off after the walk failed", exc_info=True)
        raise
    if connection.is_ready:
        logger.debug("Walk finished; turning lights off")
        await connection.all_lights_off()


async def _cmd_map(config: Config, connection: Connection, args: argparse.Namespace) -> None:
    if not 0 <= args.count <= LEDS_PER_DEVICE:
        raise CliError(f"Count must be between 0 and {LEDS_PER_DEVICE}.")
    if args.append and args.out is None:
        raise CliError("--append requires --out")

    compiler = MappingCompiler()
    if args.append:
        try:
            existing = read_config(args.out)
            if existing:
                compiler = MappingCompiler.from_config(existing)
        except (OSError, ValueError) as exc:
            raise CliError(f"Could not load existing map from {args.out}: {exc}") from exc
    for device in connection.devices:
        compiler.register_device(device.serial, args.count)
    compiled = compiler.to_config(
        listen=config.listen,
        verbose=config.verbose,
        gamma=config.gamma,
        whitepoint=config.whitepoint,
    )
    if args.out is not None:
        write_config(args.out, compiled)

    table = Table(title="Pixel map", header_style="bold cyan", box=box.ROUNDED)
    table.add_column("Serial", style="cyan", no_wrap=True)
    table.add_column("Entries", style="yellow", justify="right")
    table.add_column("Map", style="white")
    for device_map in compiler.devices:
        rows: List[str] = [str(entry.as_list()) for entry in device_map.entries]
        table.add_row(device_map.serial, str(len(rows)), "\n".join(rows))
    table.caption = f"{compiler.pixel_count} output pixels"
    _print_output(compiled, args.output, table)


async def _run_command(config: Config, args: argparse.Namespace) -> None:
    connection = await Connection.open(config.server_url, timeout=config.request_timeout)
    async with connection:
        func: Command = args.func
        await func(config, connection, args)


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(args=argv)

    try:
        config = load_config(args.config, _cli_overrides(args))
    except (OSError, ValueError) as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return 1
    configure_logging(config)
    logger = get_logger("fadecandy.cli")
    logger.debug("Loaded configuration", extra={"config": config.logging_dict()})

    try:
        asyncio.run(_run_command(config, args))
    except CliError as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return 1
    except FadecandyError as exc:
        sys.stderr.write(f"fcserver request failed: {exc}\n")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    return 0
