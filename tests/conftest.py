from pathlib import Path

import pytest

from ubu_smooth.config import Settings
from ubu_smooth.host import CommandResult, Host


class FakeRunner:
    """Stands in for CommandRunner: records argv and answers from a prefix table."""

    def __init__(self, responses=None):
        self.calls = []
        self.responses = dict(responses or {})

    def run(self, argv, timeout=None):
        argv = list(argv)
        self.calls.append(argv)
        for prefix, (code, output) in self.responses.items():
            if tuple(argv[: len(prefix)]) == prefix:
                return CommandResult(argv, code, output)
        return CommandResult(argv, 0, "")

    def called(self, *prefix):
        return any(tuple(call[: len(prefix)]) == prefix for call in self.calls)


def make_settings(root: Path, **overrides) -> Settings:
    values = dict(
        sysctl_conf=root / "etc" / "sysctl.d" / "99-ubusmooth.conf",
        zram_conf=root / "etc" / "default" / "zramswap",
        log_file=root / "var" / "log" / "ubusmooth.log",
        bench_dir=root / "bench",
        cpu_seconds=1,
        memory_seconds=1,
        fio_size="4M",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def host(runner):
    return Host.from_runner(runner)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)
