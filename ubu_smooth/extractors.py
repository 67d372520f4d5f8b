"""Pull one number out of a benchmark tool's human-readable report.

Report layouts drift between sysbench/fio/systemd releases, so each extractor
tries a primary pattern and then a fallback one.  Patterns expose a ``value``
group and optionally a ``unit`` group, which is scaled with the extractor's
unit table (fio bandwidths are normalised to MiB/s).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Pattern

# fio 2.x and sysbench 0.4 print binary multiples with KB/MB/GB suffixes.
BANDWIDTH_UNITS: Dict[str, float] = {
    "B": 1 / 1024**2,
    "KiB": 1 / 1024,
    "KB": 1 / 1024,
    "MiB": 1.0,
    "MB": 1.0,
    "GiB": 1024.0,
    "GB": 1024.0,
}


@dataclass(frozen=True)
class Extractor:
    name: str
    primary: Pattern[str]
    fallback: Optional[Pattern[str]] = None
    units: Dict[str, float] = field(default_factory=dict)
    convert: Optional[Callable[[str], Optional[float]]] = None

    def extract(self, text: str) -> Optional[float]:
        for pattern in (self.primary, self.fallback):
            if pattern is None:
                continue
            match = pattern.search(text)
            if match is None:
                continue
            value = self._value(match)
            if value is not None:
                return value
        return None

    def _value(self, match: re.Match) -> Optional[float]:
        raw = match.group("value")
        if self.convert is not None:
            return self.convert(raw)
        try:
            value = float(raw)
        except ValueError:
            return None
        unit = match.groupdict().get("unit")
        if unit:
            scale = self.units.get(unit)
            if scale is None:
                return None
            value *= scale
        return value


_DURATION_PART = re.compile(r"(?P<amount>\d+(?:\.\d+)?)\s*(?P<unit>min|ms|us|h|s)\b")
_DURATION_SECONDS = {"h": 3600.0, "min": 60.0, "s": 1.0, "ms": 0.001, "us": 0.000001}


def parse_systemd_duration(text: str) -> Optional[float]:
    """Convert a systemd timespan such as ``1min 2.345s`` or ``850ms`` to seconds."""
    parts = _DURATION_PART.findall(text)
    if not parts:
        return None
    return round(sum(float(amount) * _DURATION_SECONDS[unit] for amount, unit in parts), 3)


CPU_EVENTS = Extractor(
    name="cpu_events",
    primary=re.compile(r"events per second:\s*(?P<value>\d+(?:\.\d+)?)"),
    fallback=re.compile(r"events/s \(eps\):\s*(?P<value>\d+(?:\.\d+)?)"),
)

MEMORY_THROUGHPUT = Extractor(
    name="mem_throughput_mb_s",
    primary=re.compile(r"transferred \((?P<value>\d+(?:\.\d+)?) MiB/sec\)"),
    fallback=re.compile(r"\((?P<value>\d+(?:\.\d+)?)\s*(?P<unit>MB|MiB|GiB|KiB)/sec\)"),
    units=BANDWIDTH_UNITS,
)


def _fio_extractor(name: str, direction: str) -> Extractor:
    return Extractor(
        name=name,
        # Group summary: "WRITE: bw=512MiB/s (537MB/s), 512MiB/s-512MiB/s ..."
        primary=re.compile(
            rf"{direction.upper()}: bw=(?P<value>\d+(?:\.\d+)?)(?P<unit>[KMG]i?B|B)/s"
        ),
        # Per-job line, fio 3: "write: IOPS=512, BW=512MiB/s (537MB/s)(1024MiB/2001msec)"
        # and fio 2: "write: io=1024.0MB, bw=524288KB/s, iops=512, runt= 2000msec"
        fallback=re.compile(
            rf"{direction.lower()}\s*:\s*(?:IOPS=[^,]+,\s*)?(?:io=[^,]+,\s*)?[bB][wW]="
            r"(?P<value>\d+(?:\.\d+)?)(?P<unit>[KMG]i?B|B)/s"
        ),
        units=BANDWIDTH_UNITS,
    )


FIO_WRITE = _fio_extractor("fio_write_mb_s", "write")
FIO_READ = _fio_extractor("fio_read_mb_s", "read")

BOOT_TIME = Extractor(
    name="boot_time_sec",
    # "Startup finished in 2.1s (kernel) + 9.8s (userspace) = 11.9s"
    primary=re.compile(r"Startup finished in .*=\s*(?P<value>[\d.]+\s*(?:min|ms|s)(?:\s+[\d.]+\s*(?:ms|s))?)\s*$", re.M),
    # "graphical.target reached after 9.2s in userspace"
    fallback=re.compile(r"reached after (?P<value>[\d.]+\s*(?:min|ms|s)(?:\s+[\d.]+\s*(?:ms|s))?) in userspace"),
    convert=parse_systemd_duration,
)
