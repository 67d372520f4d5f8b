"""Repeatable before/after benchmarks: run the probe battery and append one results row."""

from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import psutil

from .config import Settings
from .extractors import BOOT_TIME, CPU_EVENTS, FIO_READ, FIO_WRITE, MEMORY_THROUGHPUT, Extractor
from .host import NOT_FOUND, CommandRunner, PackageManager
from .log import LOGGER_NAME, file_handler
from .results import COLUMNS, BenchmarkRecord, ResultsTable, format_value
from .system_state import SystemInfo, gather_info

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("sysbench", "fio", "systemd-analyze")
INSTALLABLE_TOOLS = ("sysbench", "fio")


class ProbeStatus(str, Enum):
    OK = "ok"
    UNSUPPORTED = "unsupported"
    PARSE_FAILED = "parse_failed"
    FAILED = "failed"


@dataclass
class ProbeResult:
    probe: str
    status: ProbeStatus
    values: Dict[str, object] = field(default_factory=dict)
    detail: str = ""


class RunDirectory:
    """Per-run evidence: raw tool output, a kv.csv dump and the narrative run.log."""

    def __init__(self, root: Path, label: str, started: datetime) -> None:
        self.label = label
        self.path = root / "logs" / f"{label}-{started:%Y%m%d-%H%M%S}"

    @property
    def fio_dir(self) -> Path:
        return self.path / "fio"

    @property
    def kv_path(self) -> Path:
        return self.path / "kv.csv"

    @property
    def log_path(self) -> Path:
        return self.path / "run.log"

    def create(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)

    def save_raw(self, name: str, text: str) -> Path:
        target = self.path / name
        target.write_text(text, encoding="utf-8")
        return target

    def kv(self, key: str, value: object) -> None:
        with self.kv_path.open("a", encoding="utf-8") as handle:
            handle.write(f"{key},{format_value(value)}\n")

    @contextmanager
    def narrative(self) -> Iterator[None]:
        """Mirror everything the package logs into run.log while the block runs."""
        package_logger = logging.getLogger(LOGGER_NAME)
        handler = file_handler(self.log_path, level=logging.INFO)
        previous_level = package_logger.level
        if package_logger.getEffectiveLevel() > logging.INFO:
            package_logger.setLevel(logging.INFO)
        package_logger.addHandler(handler)
        try:
            yield
        finally:
            package_logger.removeHandler(handler)
            package_logger.setLevel(previous_level)
            handler.close()


class Probe:
    name = ""
    fields: Sequence[str] = ()

    def run(self, run_dir: RunDirectory) -> ProbeResult:
        raise NotImplementedError

    def empty(self, status: ProbeStatus, detail: str = "") -> ProbeResult:
        return ProbeResult(self.name, status, {name: None for name in self.fields}, detail)


class InventoryProbe(Probe):
    name = "inventory"
    fields = ("kernel", "cpus", "mem_total_mb", "mem_free_mb", "swap_total_mb", "swap_used_mb")

    def __init__(self, gather: Callable[[], SystemInfo] = gather_info) -> None:
        self.gather = gather

    def run(self, run_dir: RunDirectory) -> ProbeResult:
        info = self.gather()
        values: Dict[str, object] = {
            "kernel": info.kernel or None,
            "cpus": info.cpu_count,
            "mem_total_mb": info.memory_total_mb,
            "mem_free_mb": info.memory_free_mb,
            "swap_total_mb": info.swap_total_mb,
            "swap_used_mb": info.swap_used_mb,
        }
        return ProbeResult(self.name, ProbeStatus.OK, values)


class CommandProbe(Probe):
    """Run one tool, keep its raw report and extract a single number from it."""

    extractor: Extractor
    raw_name = ""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    @property
    def fields(self) -> Sequence[str]:
        return (self.extractor.name,)

    def argv(self, run_dir: RunDirectory) -> List[str]:
        raise NotImplementedError

    def run(self, run_dir: RunDirectory) -> ProbeResult:
        argv = self.argv(run_dir)
        logger.info("%s: %s", self.name, " ".join(argv))
        outcome = self.runner.run(argv)
        run_dir.save_raw(self.raw_name, outcome.output)
        if outcome.returncode == NOT_FOUND:
            return self.empty(ProbeStatus.UNSUPPORTED, outcome.stderr)
        value = self.extractor.extract(outcome.output)
        if value is None:
            status = ProbeStatus.PARSE_FAILED if outcome.ok else ProbeStatus.FAILED
            detail = "no known report line" if outcome.ok else f"exit status {outcome.returncode}"
            return self.empty(status, detail)
        return ProbeResult(self.name, ProbeStatus.OK, {self.extractor.name: value})


class BootTimeProbe(CommandProbe):
    name = "boot"
    extractor = BOOT_TIME
    raw_name = "systemd-analyze.txt"

    def argv(self, run_dir: RunDirectory) -> List[str]:
        return ["systemd-analyze", "time"]

    def run(self, run_dir: RunDirectory) -> ProbeResult:
        result = super().run(run_dir)
        # No systemd (containers, WSL) or boot not finished: the feature is absent, not broken.
        if result.status is ProbeStatus.FAILED:
            result.status = ProbeStatus.UNSUPPORTED
        return result


def _threads() -> int:
    return psutil.cpu_count(logical=True) or 1


class CpuProbe(CommandProbe):
    name = "cpu"
    extractor = CPU_EVENTS
    raw_name = "sysbench-cpu.txt"

    def __init__(self, runner: CommandRunner, seconds: int = 10, threads: Optional[int] = None) -> None:
        super().__init__(runner)
        self.seconds = seconds
        self.threads = threads

    def argv(self, run_dir: RunDirectory) -> List[str]:
        threads = self.threads or _threads()
        return ["sysbench", "cpu", f"--threads={threads}", f"--time={self.seconds}", "run"]


class MemoryProbe(CpuProbe):
    name = "memory"
    extractor = MEMORY_THROUGHPUT
    raw_name = "sysbench-mem.txt"

    def argv(self, run_dir: RunDirectory) -> List[str]:
        threads = self.threads or _threads()
        return ["sysbench", "memory", f"--threads={threads}", f"--time={self.seconds}", "run"]


class DiskProbe(CommandProbe):
    """Direct, single-job sequential fio pass against a throwaway file in the run directory."""

    def __init__(self, runner: CommandRunner, mode: str, size: str = "1G", block_size: str = "1M", iodepth: int = 8) -> None:
        super().__init__(runner)
        if mode not in ("write", "read"):
            raise ValueError(f"unsupported fio mode: {mode}")
        self.mode = mode
        self.name = f"disk-{mode}"
        self.extractor = FIO_WRITE if mode == "write" else FIO_READ
        self.raw_name = f"fio-{mode}.txt"
        self.size = size
        self.block_size = block_size
        self.iodepth = iodepth

    def argv(self, run_dir: RunDirectory) -> List[str]:
        return [
            "fio",
            f"--name={self.mode}",
            f"--directory={run_dir.fio_dir}",
            f"--size={self.size}",
            f"--bs={self.block_size}",
            f"--rw={self.mode}",
            f"--iodepth={self.iodepth}",
            "--numjobs=1",
            "--direct=1",
            "--group_reporting",
        ]

    def run(self, run_dir: RunDirectory) -> ProbeResult:
        run_dir.fio_dir.mkdir(parents=True, exist_ok=True)
        return super().run(run_dir)


def default_probes(settings: Settings, runner: CommandRunner) -> List[Probe]:
    disk = dict(size=settings.fio_size, block_size=settings.fio_block_size, iodepth=settings.fio_iodepth)
    return [
        InventoryProbe(),
        BootTimeProbe(runner),
        CpuProbe(runner, seconds=settings.cpu_seconds),
        MemoryProbe(runner, seconds=settings.memory_seconds),
        DiskProbe(runner, "write", **disk),
        DiskProbe(runner, "read", **disk),
    ]


class Harness:
    def __init__(
        self,
        settings: Settings,
        runner: CommandRunner,
        table: Optional[ResultsTable] = None,
        probes: Optional[Sequence[Probe]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings
        self.table = table or ResultsTable(settings.bench_dir / "results.csv")
        self.probes = list(probes) if probes is not None else default_probes(settings, runner)
        self.clock = clock

    def run(self, label: str) -> BenchmarkRecord:
        """Run every probe once and append exactly one row labelled ``label``."""
        if not label:
            raise ValueError("a benchmark label is required")
        if "/" in label or "\\" in label or label in (".", ".."):
            raise ValueError(f"benchmark label must not contain path separators: {label!r}")
        run_dir = RunDirectory(self.settings.bench_dir, label, self.clock())
        run_dir.create()
        values: Dict[str, object] = {}
        with run_dir.narrative():
            logger.info("Benchmark run '%s' -> %s", label, run_dir.path)
            try:
                for probe in self.probes:
                    result = self._run_probe(probe, run_dir)
                    for key, value in result.values.items():
                        values[key] = value
                        run_dir.kv(key, value)
                    run_dir.kv(f"{probe.name}_status", result.status.value)
            finally:
                shutil.rmtree(run_dir.fio_dir, ignore_errors=True)

            record = BenchmarkRecord(
                timestamp=self.clock().astimezone().isoformat(timespec="seconds"),
                label=label,
                **{key: value for key, value in values.items() if key in COLUMNS[2:]},
            )
            self.table.append(record)
            logger.info("Done. Summary appended to %s", self.table.path)
        return record

    def _run_probe(self, probe: Probe, run_dir: RunDirectory) -> ProbeResult:
        try:
            result = probe.run(run_dir)
        except Exception as exc:
            # A broken probe costs its own columns, never the results row.
            logger.error("%s probe failed: %s", probe.name, exc, exc_info=not isinstance(exc, OSError))
            return probe.empty(ProbeStatus.FAILED, str(exc))
        if result.status is ProbeStatus.OK:
            logger.info("%s probe: %s", probe.name, _describe(result.values))
        else:
            logger.warning("%s probe: %s%s", probe.name, result.status.value, f" ({result.detail})" if result.detail else "")
        return result


def _describe(values: Dict[str, object]) -> str:
    return ", ".join(f"{key}={format_value(value)}" for key, value in values.items())


def ensure_tools(packages: PackageManager, which: Callable[[str], Optional[str]] = shutil.which) -> List[str]:
    """Install sysbench/fio when missing; returns the tools still unavailable afterwards."""
    missing = [tool for tool in REQUIRED_TOOLS if which(tool) is None]
    if not any(tool in INSTALLABLE_TOOLS for tool in missing):
        return missing
    logger.info("Installing missing tools: %s", " ".join(missing))
    packages.update()
    result = packages.install(*INSTALLABLE_TOOLS)
    if not result.ok:
        logger.warning("Could not install %s; affected probes will record empty values", " ".join(INSTALLABLE_TOOLS))
    return [tool for tool in REQUIRED_TOOLS if which(tool) is None]
