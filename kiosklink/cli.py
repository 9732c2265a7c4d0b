"""kiosklink command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from typing import Any, List, Optional

from rich.console import Console
from rich.table import Table

from kiosklink.config import Settings
from kiosklink.errors import AddressChangeError, KioskLinkError, NoOpenPortError
from kiosklink.portscan import PortScanConfig, scan_for_port
from kiosklink.runtime import KioskRuntime, build_manager, build_metrics

logger = logging.getLogger("kiosklink.cli")


def _settings_from_args(args: argparse.Namespace) -> Settings:
	settings = Settings.from_env()
	if args.device:
		settings.device = args.device
	if args.adb_path:
		settings.adb_path = args.adb_path
	if args.metrics_log:
		settings.metrics_log = args.metrics_log
	return settings


async def _cmd_status(args: argparse.Namespace) -> int:
	manager = build_manager(_settings_from_args(args))
	status = (await manager.get_status()).to_dict()
	if args.json:
		json.dump(status, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return 0
	table = Table(title=f"Tablet {manager.address}", show_lines=False)
	table.add_column("FIELD")
	table.add_column("VALUE")
	for key, value in status.items():
		table.add_row(key, str(value))
	Console().print(table)
	return 0 if status["connected"] else 1


async def _cmd_wake(args: argparse.Namespace) -> int:
	await build_manager(_settings_from_args(args)).wake_screen()
	return 0


async def _cmd_sleep(args: argparse.Namespace) -> int:
	await build_manager(_settings_from_args(args)).sleep_screen()
	return 0


async def _cmd_brightness(args: argparse.Namespace) -> int:
	applied = await build_manager(_settings_from_args(args)).set_brightness(args.level)
	sys.stdout.write(f"{applied}\n")
	return 0


async def _cmd_timeout(args: argparse.Namespace) -> int:
	await build_manager(_settings_from_args(args)).set_screen_timeout(args.seconds)
	return 0


async def _cmd_address(args: argparse.Namespace) -> int:
	manager = build_manager(_settings_from_args(args))
	try:
		await manager.set_address(args.address)
	except AddressChangeError as exc:
		sys.stderr.write(f"{exc}\n")
		return 1
	sys.stdout.write(f"{manager.address}\n")
	return 0


async def _cmd_scan_port(args: argparse.Namespace) -> int:
	settings = _settings_from_args(args)
	ip = args.ip or settings.device_address().host
	config = PortScanConfig(use_nmap=not args.no_nmap, fallback_timeout=args.timeout)
	metrics = build_metrics(settings)
	timed = metrics.timer("port_scan", ip=ip) if metrics else contextlib.nullcontext()
	try:
		with timed:
			port = await scan_for_port(ip, config=config)
	except NoOpenPortError as exc:
		sys.stderr.write(f"{exc}\n")
		return 1
	sys.stdout.write(f"{ip}:{port}\n")
	return 0


async def _cmd_monitor(args: argparse.Namespace) -> int:
	settings = _settings_from_args(args)
	if args.no_auto_brightness:
		settings.auto_brightness = False
	metrics = build_metrics(settings)
	manager = build_manager(settings, metrics=metrics)
	runtime = KioskRuntime(manager, settings, metrics=metrics)
	if args.wake_on_approach:
		runtime.wake_on_approach()
	if args.sleep_on_depart:
		runtime.sleep_on_depart()
	manager.on_reconnect(lambda: logger.info("Device %s is reachable again", manager.address))

	stop_event = asyncio.Event()

	def _signal_handler(*_: Any) -> None:
		stop_event.set()

	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, _signal_handler)

	runtime.start()
	try:
		if args.runtime:
			with contextlib.suppress(asyncio.TimeoutError):
				await asyncio.wait_for(stop_event.wait(), timeout=args.runtime)
		else:
			await stop_event.wait()
	finally:
		await runtime.stop()
	return 0


def _add_device_options(parser: argparse.ArgumentParser) -> None:
	parser.add_argument("--device", help="host:port of the tablet (default: $KIOSKLINK_DEVICE)")
	parser.add_argument("--adb-path", help="Path to the adb executable")
	parser.add_argument("--metrics-log", help="Path to metrics CSV")


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="kiosklink tablet control")
	parser.add_argument("--log-level", default="INFO", help="Python logging level")
	sub = parser.add_subparsers(dest="command", required=True)

	status = sub.add_parser("status", help="Show a device status snapshot")
	_add_device_options(status)
	status.add_argument("--json", action="store_true", help="Output JSON")
	status.set_defaults(handler=_cmd_status)

	wake = sub.add_parser("wake", help="Turn the screen on")
	_add_device_options(wake)
	wake.set_defaults(handler=_cmd_wake)

	sleep = sub.add_parser("sleep", help="Turn the screen off")
	_add_device_options(sleep)
	sleep.set_defaults(handler=_cmd_sleep)

	brightness = sub.add_parser("brightness", help="Set screen brightness (0-255)")
	_add_device_options(brightness)
	brightness.add_argument("level", type=int)
	brightness.set_defaults(handler=_cmd_brightness)

	timeout = sub.add_parser("timeout", help="Set the screen-off timeout")
	_add_device_options(timeout)
	timeout.add_argument("seconds", type=int)
	timeout.set_defaults(handler=_cmd_timeout)

	address = sub.add_parser("address", help="Verify and switch to a new device address")
	_add_device_options(address)
	address.add_argument("address", help="New host:port")
	address.set_defaults(handler=_cmd_address)

	scan = sub.add_parser("scan-port", help="Find the wireless debugging port")
	_add_device_options(scan)
	scan.add_argument("--ip", help="Host to scan (default: device host)")
	scan.add_argument("--no-nmap", action="store_true", help="Skip nmap and probe sockets directly")
	scan.add_argument("--timeout", type=float, default=60.0, help="Socket scan budget in seconds")
	scan.set_defaults(handler=_cmd_scan_port)

	monitor = sub.add_parser("monitor", help="Keep the tablet connected and drive its sensors")
	_add_device_options(monitor)
	monitor.add_argument("--wake-on-approach", action="store_true", help="Wake the screen on approach")
	monitor.add_argument("--sleep-on-depart", action="store_true", help="Sleep the screen on depart")
	monitor.add_argument("--no-auto-brightness", action="store_true", help="Start with brightness control off")
	monitor.add_argument("--runtime", type=float, help="Optional monitor duration seconds")
	monitor.set_defaults(handler=_cmd_monitor)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(
		level=getattr(logging, str(args.log_level).upper(), logging.INFO),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	try:
		return asyncio.run(args.handler(args))
	except ValueError as exc:
		parser.error(str(exc))
	except KioskLinkError as exc:
		sys.stderr.write(f"error: {exc}\n")
		return 1
	except KeyboardInterrupt:
		return 130


if __name__ == "__main__":
	sys.exit(main())
