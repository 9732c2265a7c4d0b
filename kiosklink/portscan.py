"""Rediscovery of the tablet's wireless-debugging port."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from kiosklink.errors import NoOpenPortError, PortScanTimeoutError

logger = logging.getLogger(__name__)

PORT_RANGE_START = 35000
PORT_RANGE_END = 50000

_NMAP_OPEN_PORT = re.compile(r"^\s*(\d+)/tcp\s+open\b", re.MULTILINE)

NmapRunner = Callable[[Sequence[str], float], Awaitable[Optional[str]]]
Prober = Callable[[str, int, float], Awaitable[bool]]


@dataclass(slots=True)
class PortScanConfig:
	"""Configuration bundle used by :class:`PortScanner`."""

	start: int = PORT_RANGE_START
	end: int = PORT_RANGE_END
	workers: int = 50
	probe_timeout: float = 0.05
	fallback_timeout: float = 60.0
	nmap_timeout: float = 30.0
	nmap_path: str = "nmap"
	use_nmap: bool = True

	def __post_init__(self) -> None:
		if not 0 < self.start <= self.end <= 65535:
			raise ValueError(f"invalid port range {self.start}-{self.end}")
		if self.workers <= 0:
			raise ValueError("workers must be positive")
		if self.probe_timeout <= 0 or self.fallback_timeout <= 0:
			raise ValueError("timeouts must be positive")

	def contains(self, port: int) -> bool:
		return self.start <= port <= self.end

	def nmap_argv(self, ip: str) -> List[str]:
		# TCP connect scan, no host discovery, aggressive timing.
		return [self.nmap_path, "-Pn", "-sT", "-p", f"{self.start}-{self.end}", "--open", "-T5", ip]


def parse_nmap_output(text: str, start: int = PORT_RANGE_START, end: int = PORT_RANGE_END) -> List[int]:
	"""Return in-range ports from lines such as ``43313/tcp open  unknown``."""
	ports: List[int] = []
	for match in _NMAP_OPEN_PORT.finditer(text):
		port = int(match.group(1))
		if start <= port <= end:
			ports.append(port)
	return ports


async def run_nmap(argv: Sequence[str], timeout: float) -> Optional[str]:
	"""Run nmap and return stdout, or ``None`` when it is missing or fails."""
	try:
		proc = await asyncio.create_subprocess_exec(
			*argv,
			stdout=asyncio.subprocess.PIPE,
			stderr=asyncio.subprocess.PIPE,
		)
	except OSError as exc:
		logger.info("nmap unavailable (%s), falling back to socket scan", exc)
		return None

	try:
		stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
	except (asyncio.TimeoutError, asyncio.CancelledError) as exc:
		with contextlib.suppress(ProcessLookupError):
			proc.kill()
		with contextlib.suppress(Exception):
			await proc.wait()
		if isinstance(exc, asyncio.CancelledError):
			raise
		logger.info("nmap timed out after %.0fs, falling back to socket scan", timeout)
		return None

	if proc.returncode != 0:
		logger.info(
			"nmap exited with %s (%s), falling back to socket scan",
			proc.returncode,
			stderr.decode("utf-8", errors="replace").strip(),
		)
		return None
	return stdout.decode("utf-8", errors="replace")


async def tcp_probe(ip: str, port: int, timeout: float) -> bool:
	"""Return True if a TCP connection to ``ip:port`` opens within ``timeout``."""
	try:
		_, writer = await asyncio.wait_for(asyncio.open_connection(ip, port), timeout=timeout)
	except (OSError, asyncio.TimeoutError):
		return False
	writer.close()
	with contextlib.suppress(Exception):
		await writer.wait_closed()
	return True


class PortScanner:
	"""Find the listening remote-control port on a host.

	The nmap fast path is tried first; when nmap is missing or reports nothing,
	a pool of asyncio probers works through the range instead. Whichever probe
	connects first wins.
	"""

	def __init__(
		self,
		config: PortScanConfig | None = None,
		*,
		nmap_runner: Optional[NmapRunner] = None,
		prober: Optional[Prober] = None,
	) -> None:
		self.config = config or PortScanConfig()
		self._nmap_runner: NmapRunner = nmap_runner or run_nmap
		self._prober: Prober = prober or tcp_probe

	async def scan(self, ip: str) -> int:
		cfg = self.config
		logger.info("Scanning %s for the remote-control port (%d-%d)", ip, cfg.start, cfg.end)
		if cfg.use_nmap:
			port = await self._scan_nmap(ip)
			if port is not None:
				logger.info("Found port %d on %s via nmap", port, ip)
				return port
		port = await self._scan_sockets(ip)
		logger.info("Found port %d on %s via socket scan", port, ip)
		return port

	async def _scan_nmap(self, ip: str) -> Optional[int]:
		output = await self._nmap_runner(self.config.nmap_argv(ip), self.config.nmap_timeout)
		if output is None:
			return None
		ports = parse_nmap_output(output, self.config.start, self.config.end)
		if not ports:
			logger.info("nmap completed but found no open ports on %s", ip)
			return None
		return ports[0]

	async def _scan_sockets(self, ip: str) -> int:
		cfg = self.config
		queue: asyncio.Queue[Optional[int]] = asyncio.Queue(maxsize=cfg.workers * 2)
		found: asyncio.Future[int] = asyncio.get_running_loop().create_future()

		async def _produce() -> None:
			for port in range(cfg.start, cfg.end + 1):
				if found.done():
					return
				await queue.put(port)
			for _ in range(cfg.workers):
				await queue.put(None)

		async def _probe() -> None:
			while not found.done():
				port = await queue.get()
				if port is None:
					return
				if await self._prober(ip, port, cfg.probe_timeout) and not found.done():
					found.set_result(port)
					return

		producer = asyncio.create_task(_produce())
		workers = [asyncio.create_task(_probe()) for _ in range(cfg.workers)]
		exhausted = asyncio.gather(*workers, return_exceptions=True)
		try:
			done, _ = await asyncio.wait(
				{found, exhausted},
				timeout=cfg.fallback_timeout,
				return_when=asyncio.FIRST_COMPLETED,
			)
			if found.done():
				return found.result()
			if not done:
				raise PortScanTimeoutError(
					f"no open port on {ip} within {cfg.fallback_timeout:.0f}s"
				)
			for outcome in exhausted.result():
				if isinstance(outcome, Exception):
					logger.warning("Port prober for %s failed: %s", ip, outcome)
			raise NoOpenPortError(f"no open port on {ip} in {cfg.start}-{cfg.end}")
		finally:
			producer.cancel()
			for task in workers:
				task.cancel()
			await asyncio.gather(producer, *workers, return_exceptions=True)
			if not found.done():
				found.cancel()


async def scan_for_port(ip: str, *, config: PortScanConfig | None = None) -> int:
	"""Return an open remote-control port on ``ip`` or raise :class:`NoOpenPortError`."""
	return await PortScanner(config).scan(ip)


__all__ = [
	"PORT_RANGE_START",
	"PORT_RANGE_END",
	"PortScanConfig",
	"PortScanner",
	"parse_nmap_output",
	"run_nmap",
	"scan_for_port",
	"tcp_probe",
]
