"""Collect a read-only inventory of the host: kernel, CPUs, memory, swap and desktop session."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import os
from pathlib import Path
import platform
from typing import List, Optional

import psutil

PROC_SWAPS = Path("/proc/swaps")
MIB = 1024**2


@dataclass
class SwapDevice:
    name: str
    kind: str
    size_bytes: int
    used_bytes: int
    priority: int


@dataclass
class SystemInfo:
    timestamp: datetime
    kernel: str
    cpu_count: Optional[int]
    memory_total: int
    memory_free: int
    memory_used: int
    swap_total: int
    swap_used: int
    desktop_session: Optional[str]
    swap_devices: List[SwapDevice] = field(default_factory=list)

    @property
    def memory_total_mb(self) -> int:
        return self.memory_total // MIB

    @property
    def memory_free_mb(self) -> int:
        return self.memory_free // MIB

    @property
    def swap_total_mb(self) -> int:
        return self.swap_total // MIB

    @property
    def swap_used_mb(self) -> int:
        return self.swap_used // MIB


def gather_info() -> SystemInfo:
    """Collect a snapshot of the host without side effects."""
    memory = psutil.virtual_memory()
    swap = psutil.swap_memory()
    return SystemInfo(
        timestamp=datetime.now(),
        kernel=platform.release(),
        cpu_count=psutil.cpu_count(logical=True),
        memory_total=memory.total,
        memory_free=memory.free,
        memory_used=memory.used,
        swap_total=swap.total,
        swap_used=swap.used,
        desktop_session=os.environ.get("XDG_CURRENT_DESKTOP") or None,
        swap_devices=read_swap_devices(),
    )


def read_swap_devices(path: Path = PROC_SWAPS) -> List[SwapDevice]:
    try:
        lines = path.read_text().splitlines()
    except OSError:
        return []
    return parse_swaps(lines)


def parse_swaps(lines: List[str]) -> List[SwapDevice]:
    devices: List[SwapDevice] = []
    # First line is the "Filename Type Size Used Priority" header; sizes are KiB.
    for line in lines[1:]:
        parts = line.split()
        if len(parts) < 5:
            continue
        try:
            devices.append(
                SwapDevice(
                    name=parts[0],
                    kind=parts[1],
                    size_bytes=int(parts[2]) * 1024,
                    used_bytes=int(parts[3]) * 1024,
                    priority=int(parts[4]),
                )
            )
        except ValueError:
            continue
    return devices
