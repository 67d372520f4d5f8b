import csv

import pytest

from ubu_smooth.results import COLUMNS, BenchmarkRecord, ResultsTable, compare


def make_record(label="baseline", **overrides):
    values = dict(
        timestamp="2026-10-19T12:00:00+00:00",
        label=label,
        kernel="5.15.0",
        cpus=4,
        mem_total_mb=8000,
        mem_free_mb=5000,
        swap_total_mb=2047,
        swap_used_mb=0,
        boot_time_sec=11.9,
        cpu_events=4321.09,
        mem_throughput_mb_s=10238.59,
        fio_write_mb_s=512.0,
        fio_read_mb_s=1536.0,
    )
    values.update(overrides)
    return BenchmarkRecord(**values)


def read_rows(path):
    with path.open(newline="") as handle:
        return list(csv.reader(handle))


def test_header_written_once(tmp_path):
    table = ResultsTable(tmp_path / "bench" / "results.csv")

    for index in range(3):
        table.append(make_record(label=f"run-{index}"))

    rows = read_rows(table.path)
    assert rows[0] == list(COLUMNS)
    assert len(rows) == 4
    assert all(len(row) == len(COLUMNS) for row in rows)
    assert [row[1] for row in rows[1:]] == ["run-0", "run-1", "run-2"]


def test_header_written_into_empty_file(tmp_path):
    path = tmp_path / "results.csv"
    path.touch()

    ResultsTable(path).append(make_record())

    assert read_rows(path)[0] == list(COLUMNS)


def test_missing_values_keep_their_columns(tmp_path):
    table = ResultsTable(tmp_path / "results.csv")

    table.append(make_record(boot_time_sec=None, cpu_events=None, fio_read_mb_s=None))

    row = read_rows(table.path)[1]
    assert len(row) == len(COLUMNS)
    record = dict(zip(COLUMNS, row))
    assert record["boot_time_sec"] == ""
    assert record["cpu_events"] == ""
    assert record["fio_read_mb_s"] == ""
    assert record["fio_write_mb_s"] == "512.00"
    assert record["cpus"] == "4"


def test_compare_uses_latest_row_per_label(tmp_path):
    table = ResultsTable(tmp_path / "results.csv")
    table.append(make_record(label="baseline", cpu_events=1000.0))
    table.append(make_record(label="baseline", cpu_events=2000.0))
    table.append(make_record(label="tuned", cpu_events=2200.0, boot_time_sec=None))

    deltas = {delta.column: delta for delta in compare(table, "baseline", "tuned")}

    assert deltas["cpu_events"].change == pytest.approx(200.0)
    assert deltas["cpu_events"].percent == pytest.approx(10.0)
    assert deltas["boot_time_sec"].change is None
    assert "label" not in deltas


def test_compare_unknown_label(tmp_path):
    table = ResultsTable(tmp_path / "results.csv")
    table.append(make_record())

    with pytest.raises(LookupError):
        compare(table, "baseline", "missing")
