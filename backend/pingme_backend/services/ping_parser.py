from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import ClassVar

from ..config import PlatformVariant
from ..models.probe import ProbeSample

_REPLY4 = r"\d+ bytes from (?P<addr>[^:]+): icmp_seq=(?P<seq>\d+) ttl=\d+ time=(?P<rtt>\d+(?:\.\d+)?) ms"
_REPLY6 = r"\d+ bytes from (?P<addr>.+?)[,:] icmp_seq=(?P<seq>\d+) (?:hlim|ttl)=\d+ time=(?P<rtt>\d+(?:\.\d+)?) ms"


class PingLineParser:
    """
    Turns one line of ping output into a ProbeSample.

    Subclasses differ in how (and whether) the utility stamps each reply with a
    time. Lines that do not describe an echo reply, such as the banner and the
    statistics footer, produce None.
    """

    variant: ClassVar[PlatformVariant] = "plain"
    stamp_pattern: ClassVar[str] = ""

    def __init__(self) -> None:
        self._pattern4 = re.compile(self.stamp_pattern + _REPLY4)
        self._pattern6 = re.compile(self.stamp_pattern + _REPLY6)

    def timestamp_args(self, ipv6: bool = False) -> list[str]:
        """Extra utility flags that make it emit the stamp this parser reads."""
        return []

    def parse(self, line: str, arrived_at: datetime, ipv6: bool = False) -> ProbeSample | None:
        pattern = self._pattern6 if ipv6 else self._pattern4
        match = pattern.search(line)
        if match is None:
            return None
        try:
            seq = int(match.group("seq"))
            rtt = float(match.group("rtt"))
        except ValueError:
            return None
        stamp = match.groupdict().get("stamp")
        at = self._stamp_to_datetime(stamp, arrived_at) if stamp else None
        return ProbeSample(seq=seq, at=at or arrived_at, rtt=rtt)

    def _stamp_to_datetime(self, stamp: str, arrived_at: datetime) -> datetime | None:
        return None


class PlainPingParser(PingLineParser):
    pass


class LinuxPingParser(PingLineParser):
    """iputils ping with -D: ``[1700000000.123456] 64 bytes from ...``."""

    variant = "linux"
    stamp_pattern = r"(?:\[(?P<stamp>\d+(?:\.\d+)?)\]\s*)?"

    def timestamp_args(self, ipv6: bool = False) -> list[str]:
        return ["-D"]

    def _stamp_to_datetime(self, stamp: str, arrived_at: datetime) -> datetime | None:
        try:
            return datetime.fromtimestamp(float(stamp), tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None


class DarwinPingParser(PingLineParser):
    """BSD ping with --apple-time: ``14:03:21.123456 64 bytes from ...`` in local time."""

    variant = "darwin"
    stamp_pattern = r"(?:(?P<stamp>\d{2}:\d{2}:\d{2}\.\d+)\s+)?"

    def timestamp_args(self, ipv6: bool = False) -> list[str]:
        # ping6 on macOS has no --apple-time
        return [] if ipv6 else ["--apple-time"]

    def _stamp_to_datetime(self, stamp: str, arrived_at: datetime) -> datetime | None:
        try:
            clock = datetime.strptime(stamp, "%H:%M:%S.%f").time()
        except ValueError:
            return None
        local_arrival = arrived_at.astimezone()
        stamped = local_arrival.replace(
            hour=clock.hour,
            minute=clock.minute,
            second=clock.second,
            microsecond=clock.microsecond,
        )
        # a reply stamped just before midnight but read just after
        if stamped - local_arrival > timedelta(hours=12):
            stamped -= timedelta(days=1)
        return stamped.astimezone(timezone.utc)


_PARSERS: dict[str, type[PingLineParser]] = {
    "linux": LinuxPingParser,
    "darwin": DarwinPingParser,
    "plain": PlainPingParser,
}


def create_line_parser(variant: PlatformVariant) -> PingLineParser:
    try:
        return _PARSERS[variant]()
    except KeyError:
        raise ValueError(f"Unsupported ping platform variant: {variant}") from None
