"""Serialized execution of adb commands against one device address."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Awaitable, Callable, Optional, Sequence, Tuple

from kiosklink.errors import CommandError, CommandTimeoutError
from kiosklink.metrics import MetricsLogger, record
from kiosklink.models import DeviceAddress

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CommandResult:
	"""Captured output of one finished command."""

	args: Tuple[str, ...]
	stdout: str
	stderr: str
	returncode: int

	@property
	def ok(self) -> bool:
		return self.returncode == 0


CommandRunner = Callable[[Sequence[str], float], Awaitable[CommandResult]]


async def run_adb(args: Sequence[str], timeout: float, *, adb_path: str = "adb") -> CommandResult:
	"""Run ``adb <args>`` and capture its output.

	The child process is killed when ``timeout`` expires or the calling task
	is cancelled, so no orphaned adb invocations outlive their caller.
	"""
	argv = (adb_path, *args)
	try:
		proc = await asyncio.create_subprocess_exec(
			*argv,
			stdout=asyncio.subprocess.PIPE,
			stderr=asyncio.subprocess.PIPE,
		)
	except FileNotFoundError as exc:
		raise CommandError(f"{adb_path} executable not found", args=argv) from exc
	except OSError as exc:
		raise CommandError(f"failed to start {adb_path}: {exc}", args=argv) from exc

	try:
		stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
	except asyncio.TimeoutError as exc:
		await _kill(proc)
		raise CommandTimeoutError(f"command timed out after {timeout:.1f}s", args=argv) from exc
	except asyncio.CancelledError:
		await _kill(proc)
		raise

	return CommandResult(
		args=tuple(argv),
		stdout=stdout.decode("utf-8", errors="replace"),
		stderr=stderr.decode("utf-8", errors="replace"),
		returncode=proc.returncode if proc.returncode is not None else -1,
	)


async def _kill(proc: asyncio.subprocess.Process) -> None:
	if proc.returncode is not None:
		return
	with contextlib.suppress(ProcessLookupError):
		proc.kill()
	with contextlib.suppress(Exception):
		await proc.wait()


def adb_runner(adb_path: str = "adb") -> CommandRunner:
	"""Return a :data:`CommandRunner` bound to a specific adb binary."""

	async def _runner(args: Sequence[str], timeout: float) -> CommandResult:
		return await run_adb(args, timeout, adb_path=adb_path)

	return _runner


class CommandExecutor:
	"""Issue commands one at a time against the current device address.

	A single :class:`asyncio.Lock` guards both command execution and address
	replacement, so the address never changes underneath an in-flight command.
	"""

	def __init__(
		self,
		address: DeviceAddress,
		*,
		runner: Optional[CommandRunner] = None,
		timeout: float = 10.0,
		metrics: Optional[MetricsLogger] = None,
	) -> None:
		self._address = address
		self._runner: CommandRunner = runner or adb_runner()
		self.timeout = max(0.1, timeout)
		self.metrics = metrics
		self._lock = asyncio.Lock()

	@property
	def address(self) -> DeviceAddress:
		return self._address

	@property
	def busy(self) -> bool:
		return self._lock.locked()

	async def replace_address(self, address: DeviceAddress) -> DeviceAddress:
		"""Swap the target address once no command is in flight; return the old one."""
		async with self._lock:
			previous = self._address
			self._address = address
			return previous

	async def run(self, *args: str, target: bool = True) -> str:
		"""Run one adb command and return its stripped stdout.

		With ``target=True`` the command is scoped to the current device
		(``adb -s <address> ...``). Non-zero exit statuses raise
		:class:`CommandError` carrying the captured stderr.
		"""
		return await self._execute(lambda address: (("-s", str(address)) if target else ()) + tuple(args))

	async def shell(self, command: str) -> str:
		return await self.run("shell", command)

	async def connect(self) -> str:
		"""Run ``adb connect`` for whatever address is current when the lock is taken."""
		return await self._execute(lambda address: ("connect", str(address)))

	async def _execute(self, build_argv: Callable[[DeviceAddress], Tuple[str, ...]]) -> str:
		async with self._lock:
			argv = build_argv(self._address)
			started = perf_counter()
			try:
				result = await self._runner(argv, self.timeout)
			except CommandError as exc:
				await self._record(argv, "error", perf_counter() - started, str(exc))
				raise

			elapsed = perf_counter() - started
			if not result.ok:
				stderr = result.stderr.strip()
				await self._record(argv, "error", elapsed, stderr)
				raise CommandError(
					f"adb command failed with exit status {result.returncode}: {stderr}",
					args=argv,
					returncode=result.returncode,
					stderr=stderr,
				)

			await self._record(argv, "ok", elapsed)
			return result.stdout.strip()

	async def _record(self, argv: Sequence[str], status: str, elapsed: float, message: Optional[str] = None) -> None:
		if status != "ok":
			logger.debug("Command %s failed: %s", " ".join(argv), message)
		await record(
			self.metrics,
			"command",
			status=status,
			value=elapsed,
			message=message,
			extra={"args": " ".join(argv)},
		)


__all__ = [
	"CommandExecutor",
	"CommandResult",
	"CommandRunner",
	"adb_runner",
	"run_adb",
]
