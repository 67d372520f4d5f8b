import csv
from datetime import datetime

import pytest

from conftest import FakeRunner
from samples import FIO_READ_REPORT, FIO_WRITE_REPORT, SYSBENCH_CPU, SYSBENCH_MEMORY
from ubu_smooth.bench import (
    BootTimeProbe,
    CpuProbe,
    DiskProbe,
    Harness,
    InventoryProbe,
    MemoryProbe,
    Probe,
    ProbeStatus,
    RunDirectory,
    ensure_tools,
)
from ubu_smooth.host import PackageManager
from ubu_smooth.results import COLUMNS
from ubu_smooth.system_state import MIB, SystemInfo

STARTED = datetime(2026, 10, 19, 12, 0, 0)

HEALTHY = {
    ("systemd-analyze",): (0, "Startup finished in 2.134s (kernel) + 9.766s (userspace) = 11.900s\n"),
    ("sysbench", "cpu"): (0, SYSBENCH_CPU),
    ("sysbench", "memory"): (0, SYSBENCH_MEMORY),
    ("fio", "--name=write"): (0, FIO_WRITE_REPORT),
    ("fio", "--name=read"): (0, FIO_READ_REPORT),
}


def make_info(**overrides):
    values = dict(
        timestamp=STARTED,
        kernel="5.15.0",
        cpu_count=4,
        memory_total=8000 * MIB,
        memory_free=5000 * MIB,
        memory_used=3000 * MIB,
        swap_total=2048 * MIB,
        swap_used=0,
        desktop_session="ubuntu:GNOME",
    )
    values.update(overrides)
    return SystemInfo(**values)


def make_probes(runner, info=None):
    return [
        InventoryProbe(gather=lambda: info or make_info()),
        BootTimeProbe(runner),
        CpuProbe(runner, seconds=1, threads=4),
        MemoryProbe(runner, seconds=1, threads=4),
        DiskProbe(runner, "write", size="4M"),
        DiskProbe(runner, "read", size="4M"),
    ]


def make_harness(settings, runner, probes=None):
    return Harness(settings, runner, probes=probes or make_probes(runner), clock=lambda: STARTED)


def read_table(settings):
    with (settings.bench_dir / "results.csv").open(newline="") as handle:
        return list(csv.reader(handle))


def test_baseline_run_appends_one_row(settings):
    runner = FakeRunner(HEALTHY)

    record = make_harness(settings, runner).run("baseline")

    assert record.label == "baseline"
    assert record.kernel == "5.15.0"
    assert record.cpus == 4
    assert record.mem_total_mb == 8000
    assert record.boot_time_sec == pytest.approx(11.9)
    assert record.cpu_events == pytest.approx(4321.09)
    assert record.fio_read_mb_s == pytest.approx(1536.0)

    rows = read_table(settings)
    assert rows[0] == list(COLUMNS)
    assert len(rows) == 2
    row = dict(zip(COLUMNS, rows[1]))
    assert row["label"] == "baseline"
    assert row["cpus"] == "4"
    assert row["mem_total_mb"] == "8000"
    assert row["mem_throughput_mb_s"] == "10238.59"


def test_run_directory_keeps_raw_evidence(settings):
    runner = FakeRunner(HEALTHY)
    make_harness(settings, runner).run("baseline")

    run_dir = RunDirectory(settings.bench_dir, "baseline", STARTED)
    assert run_dir.path.name == "baseline-20261019-120000"
    assert (run_dir.path / "sysbench-cpu.txt").read_text() == SYSBENCH_CPU
    assert (run_dir.path / "fio-write.txt").exists()
    assert not run_dir.fio_dir.exists()

    kv = dict(line.split(",", 1) for line in run_dir.kv_path.read_text().splitlines())
    assert kv["cpus"] == "4"
    assert kv["cpu_events"] == "4321.09"
    assert kv["boot_status"] == "ok"
    assert "Summary appended" in run_dir.log_path.read_text()


def test_probes_use_fixed_tool_options(settings):
    runner = FakeRunner(HEALTHY)
    make_harness(settings, runner).run("baseline")

    assert ["sysbench", "cpu", "--threads=4", "--time=1", "run"] in runner.calls
    fio_write = next(call for call in runner.calls if call[:2] == ["fio", "--name=write"])
    assert "--direct=1" in fio_write
    assert "--numjobs=1" in fio_write
    assert "--rw=write" in fio_write


def test_unparseable_output_leaves_empty_columns(settings):
    runner = FakeRunner(
        {
            ("systemd-analyze",): (0, "Bootup is not yet finished.\n"),
            ("sysbench",): (0, "sysbench: unknown output\n"),
            ("fio",): (1, "fio: failed to open file\n"),
        }
    )

    record = make_harness(settings, runner).run("broken")

    assert record.cpu_events is None
    assert record.fio_write_mb_s is None
    assert record.boot_time_sec is None
    rows = read_table(settings)
    assert len(rows) == 2
    assert len(rows[1]) == len(COLUMNS)
    row = dict(zip(COLUMNS, rows[1]))
    assert row["cpus"] == "4"
    assert row["cpu_events"] == row["mem_throughput_mb_s"] == row["fio_read_mb_s"] == ""


def test_boot_time_distinguishes_unsupported_from_parse_failure(settings, tmp_path):
    run_dir = RunDirectory(tmp_path, "x", STARTED)
    run_dir.create()

    missing = BootTimeProbe(FakeRunner({("systemd-analyze",): (127, "")})).run(run_dir)
    no_systemd = BootTimeProbe(FakeRunner({("systemd-analyze",): (1, "System has not been booted with systemd")})).run(run_dir)
    odd = BootTimeProbe(FakeRunner({("systemd-analyze",): (0, "Startup took a while")})).run(run_dir)

    assert missing.status is ProbeStatus.UNSUPPORTED
    assert no_systemd.status is ProbeStatus.UNSUPPORTED
    assert odd.status is ProbeStatus.PARSE_FAILED
    assert odd.values == {"boot_time_sec": None}


class ExplodingProbe(Probe):
    name = "exploding"
    fields = ("cpu_events",)

    def __init__(self, error):
        self.error = error

    def run(self, run_dir):
        run_dir.fio_dir.mkdir(parents=True, exist_ok=True)
        raise self.error


def test_io_failure_in_a_probe_still_appends_row(settings):
    runner = FakeRunner(HEALTHY)
    probes = [InventoryProbe(gather=make_info), ExplodingProbe(OSError("No space left on device"))]

    record = make_harness(settings, runner, probes).run("full-disk")

    assert record.cpu_events is None
    assert len(read_table(settings)) == 2
    run_dir = RunDirectory(settings.bench_dir, "full-disk", STARTED)
    assert not run_dir.fio_dir.exists()
    assert "No space left on device" in run_dir.log_path.read_text()


def test_crashing_probe_still_appends_row(settings):
    runner = FakeRunner(HEALTHY)
    probes = [
        InventoryProbe(gather=make_info),
        ExplodingProbe(UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")),
        CpuProbe(runner, seconds=1, threads=4),
    ]

    record = make_harness(settings, runner, probes).run("crash")

    assert record.cpus == 4
    assert record.cpu_events == pytest.approx(4321.09)
    rows = read_table(settings)
    assert [row[1] for row in rows[1:]] == ["crash"]
    run_dir = RunDirectory(settings.bench_dir, "crash", STARTED)
    assert not run_dir.fio_dir.exists()
    kv = dict(line.split(",", 1) for line in run_dir.kv_path.read_text().splitlines())
    assert kv["exploding_status"] == "failed"


def test_repeated_runs_share_one_header(settings):
    runner = FakeRunner(HEALTHY)
    harness = make_harness(settings, runner)

    harness.run("baseline")
    harness.run("ubusmooth")

    rows = read_table(settings)
    assert rows.count(list(COLUMNS)) == 1
    assert [row[1] for row in rows[1:]] == ["baseline", "ubusmooth"]


def test_label_is_required(settings):
    with pytest.raises(ValueError):
        make_harness(settings, FakeRunner(HEALTHY)).run("")


@pytest.mark.parametrize("label", ["../escape", "a/b", ".."])
def test_label_cannot_leave_the_logs_directory(settings, label):
    with pytest.raises(ValueError):
        make_harness(settings, FakeRunner(HEALTHY)).run(label)

    assert not settings.bench_dir.exists()


def test_ensure_tools_installs_missing_benchmarks():
    runner = FakeRunner()
    available = {"systemd-analyze"}

    missing = ensure_tools(PackageManager(runner, sudo=True), which=lambda tool: tool if tool in available else None)

    assert ["sudo", "apt-get", "install", "-y", "sysbench", "fio"] in runner.calls
    assert missing == ["sysbench", "fio"]


def test_ensure_tools_skips_install_when_present():
    runner = FakeRunner()

    missing = ensure_tools(PackageManager(runner), which=lambda tool: f"/usr/bin/{tool}")

    assert missing == []
    assert runner.calls == []
