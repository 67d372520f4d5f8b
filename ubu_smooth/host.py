"""Thin wrappers around the package, service and sysctl tools of an Ubuntu host."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

NOT_FOUND = 127
NOT_EXECUTABLE = 126
TIMED_OUT = 124


@dataclass
class CommandResult:
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, the way `cmd 2>&1` would show them."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


class CommandRunner:
    """Run external commands without ever raising for a failed or missing tool."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = timeout

    def run(self, argv: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        argv = list(argv)
        logger.debug("$ %s", " ".join(argv))
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout if timeout is not None else self.timeout,
            )
        except FileNotFoundError:
            return CommandResult(argv, NOT_FOUND, stderr=f"command not found: {argv[0]}")
        except PermissionError as exc:
            return CommandResult(argv, NOT_EXECUTABLE, stderr=f"cannot execute {argv[0]}: {exc}")
        except OSError as exc:
            return CommandResult(argv, NOT_EXECUTABLE, stderr=f"{argv[0]}: {exc}")
        except subprocess.TimeoutExpired:
            return CommandResult(argv, TIMED_OUT, stderr="timeout")
        result = CommandResult(argv, proc.returncode, proc.stdout, proc.stderr)
        if result.output:
            logger.debug(result.output.rstrip())
        return result


class PackageManager:
    def __init__(self, runner: CommandRunner, sudo: bool = False) -> None:
        self.runner = runner
        self.sudo = sudo

    def _apt(self, *args: str) -> CommandResult:
        prefix = ["sudo"] if self.sudo else []
        return self.runner.run([*prefix, "apt-get", *args])

    def update(self) -> CommandResult:
        return self._apt("update", "-y")

    def install(self, *names: str) -> CommandResult:
        return self._apt("install", "-y", *names)

    def autoremove(self) -> CommandResult:
        return self._apt("-y", "autoremove")

    def autoclean(self) -> CommandResult:
        return self._apt("-y", "autoclean")


class ServiceManager:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def enable_now(self, unit: str) -> CommandResult:
        return self.runner.run(["systemctl", "enable", "--now", unit])

    def disable_now(self, unit: str) -> CommandResult:
        return self.runner.run(["systemctl", "disable", "--now", unit])

    def is_enabled(self, unit: str) -> bool:
        return self.runner.run(["systemctl", "is-enabled", unit]).ok

    def unit_exists(self, unit: str) -> bool:
        result = self.runner.run(["systemctl", "list-unit-files", "--no-legend", unit])
        return result.ok and unit in result.stdout


class KernelParams:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def reload(self) -> CommandResult:
        return self.runner.run(["sysctl", "--system"])

    def read(self, name: str) -> Optional[str]:
        result = self.runner.run(["sysctl", "-n", name])
        return result.stdout.strip() if result.ok else None


def is_root() -> bool:
    return os.geteuid() == 0


@dataclass
class Host:
    """The external tools a tweak or probe talks to, bundled for injection."""

    runner: CommandRunner
    packages: PackageManager
    services: ServiceManager
    kernel: KernelParams

    @classmethod
    def from_runner(cls, runner: CommandRunner) -> "Host":
        return cls(
            runner=runner,
            packages=PackageManager(runner),
            services=ServiceManager(runner),
            kernel=KernelParams(runner),
        )
