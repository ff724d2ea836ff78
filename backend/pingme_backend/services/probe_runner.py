from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from ipaddress import IPv4Address, IPv6Address
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

from ..config import AppConfig
from ..models.probe import ProbeSample
from .ping_parser import PingLineParser, create_line_parser

LOGGER = logging.getLogger(__name__)

SpawnFn = Callable[..., Awaitable[Any]]


class ProbeError(RuntimeError):
    """The probe utility could not be started or exited unsuccessfully."""


def probe_count(period: timedelta, duration: timedelta) -> int:
    return duration // period


class ProbeRunner:
    """
    Runs the platform ping utility against one target and parses its replies.

    At most ``max_concurrent`` utility processes run at once. The slot is held
    from just before spawn until the process has been reaped; callers beyond
    the cap wait on the semaphore with no queue limit.
    """

    def __init__(
        self,
        parser: PingLineParser,
        ping_command: Sequence[str] = ("ping",),
        ping6_command: Sequence[str] = ("ping6",),
        max_concurrent: int = 10,
        spawn: SpawnFn | None = None,
    ) -> None:
        self.parser = parser
        self.ping_command = list(ping_command)
        self.ping6_command = list(ping6_command)
        self.max_concurrent = max_concurrent
        self._slots = asyncio.Semaphore(max_concurrent)
        self._busy = 0
        self._spawn = spawn or asyncio.create_subprocess_exec

    @classmethod
    def from_settings(cls, settings: AppConfig, spawn: SpawnFn | None = None) -> "ProbeRunner":
        return cls(
            create_line_parser(settings.platform),
            ping_command=settings.ping_command,
            ping6_command=settings.ping6_command,
            max_concurrent=settings.max_concurrent_probes,
            spawn=spawn,
        )

    @property
    def free_slots(self) -> int:
        return self.max_concurrent - self._busy

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        async with self._slots:
            self._busy += 1
            try:
                yield
            finally:
                self._busy -= 1

    def probe_args(
        self,
        target: IPv4Address | IPv6Address,
        period: timedelta,
        duration: timedelta,
    ) -> list[str]:
        ipv6 = target.version == 6
        return [
            *self.parser.timestamp_args(ipv6),
            "-i",
            f"{period.total_seconds():.2f}",
            "-c",
            str(probe_count(period, duration)),
            str(target),
        ]

    def probe_command(
        self,
        target: IPv4Address | IPv6Address,
        period: timedelta,
        duration: timedelta,
    ) -> list[str]:
        executable = self.ping6_command if target.version == 6 else self.ping_command
        return [*executable, *self.probe_args(target, period, duration)]

    async def stream(
        self,
        target: IPv4Address | IPv6Address,
        period: timedelta,
        duration: timedelta,
        timeout: float | None = None,
    ) -> AsyncIterator[ProbeSample]:
        """
        Yield samples as the utility reports them; raise ProbeError on failure.

        ``timeout`` bounds the utility's run time once it has a slot, not the
        wait for the slot itself.
        """
        command = self.probe_command(target, period, duration)
        ipv6 = target.version == 6

        async with self._slot():
            LOGGER.info("Running %s", " ".join(command))
            try:
                process = await self._spawn(
                    *command,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise ProbeError(f"could not start {command[0]}: {exc}") from exc

            loop = asyncio.get_running_loop()
            deadline = None if timeout is None else loop.time() + timeout
            stderr_task = asyncio.ensure_future(process.stderr.read())
            try:
                last_at: datetime | None = None
                while True:
                    raw = await _before(process.stdout.readline(), deadline, loop)
                    if not raw:
                        break
                    arrived_at = datetime.now(timezone.utc)
                    line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                    sample = self.parser.parse(line, arrived_at, ipv6=ipv6)
                    if sample is None:
                        continue
                    if last_at is not None and sample.at < last_at:
                        sample = sample.model_copy(update={"at": last_at})
                    last_at = sample.at
                    yield sample

                returncode = await _before(process.wait(), deadline, loop)
                stderr = await stderr_task
            except asyncio.TimeoutError:
                raise ProbeError(f"{command[0]} did not finish within {timeout:.0f}s") from None
            finally:
                if process.returncode is None:
                    LOGGER.warning("Killing %s for %s before it finished", command[0], target)
                    process.kill()
                    await process.wait()
                if not stderr_task.done():
                    stderr_task.cancel()

        if returncode != 0:
            detail = _last_line(stderr)
            message = f"{command[0]} exited with status {returncode}"
            raise ProbeError(f"{message}: {detail}" if detail else message)

    async def run(
        self,
        target: IPv4Address | IPv6Address,
        period: timedelta,
        duration: timedelta,
        timeout: float | None = None,
    ) -> list[ProbeSample]:
        samples = [sample async for sample in self.stream(target, period, duration, timeout)]
        LOGGER.info("Probe of %s finished with %d samples", target, len(samples))
        return samples


async def _before(awaitable: Awaitable[Any], deadline: float | None, loop: asyncio.AbstractEventLoop) -> Any:
    if deadline is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=max(deadline - loop.time(), 0))


def _last_line(output: bytes) -> str:
    lines = [line.strip() for line in output.decode("utf-8", errors="replace").splitlines()]
    lines = [line for line in lines if line]
    return lines[-1] if lines else ""
