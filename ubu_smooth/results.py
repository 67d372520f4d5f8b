"""Benchmark records and the append-only CSV table that accumulates them."""

from __future__ import annotations

import csv
from dataclasses import astuple, dataclass, fields
from pathlib import Path
from typing import Dict, List, Optional

from .fileops import file_lock


@dataclass(frozen=True)
class BenchmarkRecord:
    timestamp: str
    label: str
    kernel: Optional[str] = None
    cpus: Optional[int] = None
    mem_total_mb: Optional[int] = None
    mem_free_mb: Optional[int] = None
    swap_total_mb: Optional[int] = None
    swap_used_mb: Optional[int] = None
    boot_time_sec: Optional[float] = None
    cpu_events: Optional[float] = None
    mem_throughput_mb_s: Optional[float] = None
    fio_write_mb_s: Optional[float] = None
    fio_read_mb_s: Optional[float] = None

    def as_row(self) -> List[str]:
        return [format_value(value) for value in astuple(self)]


COLUMNS = tuple(f.name for f in fields(BenchmarkRecord))
METRIC_COLUMNS = COLUMNS[3:]


def format_value(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


class ResultsTable:
    """CSV file with a lazily written header; rows are only ever appended."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, record: BenchmarkRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with file_lock(self.path):
            needs_header = not self.path.exists() or self.path.stat().st_size == 0
            with self.path.open("a", encoding="utf-8", newline="") as handle:
                writer = csv.writer(handle)
                if needs_header:
                    writer.writerow(COLUMNS)
                writer.writerow(record.as_row())

    def read(self) -> List[Dict[str, str]]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8", newline="") as handle:
            return list(csv.DictReader(handle))

    def latest(self, label: str) -> Optional[Dict[str, str]]:
        rows = [row for row in self.read() if row.get("label") == label]
        return rows[-1] if rows else None


@dataclass
class MetricDelta:
    column: str
    baseline: Optional[float]
    candidate: Optional[float]

    @property
    def change(self) -> Optional[float]:
        if self.baseline is None or self.candidate is None:
            return None
        return self.candidate - self.baseline

    @property
    def percent(self) -> Optional[float]:
        if self.change is None or not self.baseline:
            return None
        return self.change / self.baseline * 100


def compare(table: ResultsTable, baseline: str, candidate: str) -> List[MetricDelta]:
    """Compare the most recent rows recorded under two labels, column by column."""
    base_row = table.latest(baseline)
    if base_row is None:
        raise LookupError(f"no results recorded for label '{baseline}'")
    new_row = table.latest(candidate)
    if new_row is None:
        raise LookupError(f"no results recorded for label '{candidate}'")
    return [
        MetricDelta(column, _to_number(base_row.get(column)), _to_number(new_row.get(column)))
        for column in METRIC_COLUMNS
    ]


def _to_number(raw: Optional[str]) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        return None
