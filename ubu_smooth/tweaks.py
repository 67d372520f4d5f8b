"""Apply and revert the catalog of reversible Ubuntu tuning tweaks.

Every file-based tweak follows the same lifecycle: the first apply copies the
live file to ``<path>.bak`` (only if no backup exists yet), later applies only
rewrite the desired content, and revert moves the backup back over the live
file.  When there was no original, an empty ``<path>.bak.absent`` marker is
recorded instead and revert removes the live file.  Without either, revert
also removes the live file, so reverting a tweak that was never applied is a
no-op.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .config import Settings
from .fileops import atomic_write
from .host import NOT_FOUND, CommandResult, Host
from .system_state import SystemInfo, gather_info

logger = logging.getLogger(__name__)

APPLY_ORDER = ("zram", "kernel-vm", "tlp", "trim", "cleanup")
REVERT_ORDER = ("kernel-vm", "zram", "tlp", "trim", "cleanup")


class UnknownSettingError(KeyError):
    pass


@dataclass(frozen=True)
class Unmanaged:
    """No backup on disk: the tool has not captured this file's original state."""


@dataclass(frozen=True)
class Applied:
    """Original captured; ``backup`` is None when there was no original file."""

    backup: Optional[Path]


FileState = Union[Unmanaged, Applied]


class ManagedFile:
    def __init__(self, path: Path, suffix: str = ".bak") -> None:
        self.path = path
        self.backup_path = path.with_name(path.name + suffix)
        # Empty marker standing in for the backup of a file that did not exist.
        self.absent_marker = path.with_name(path.name + suffix + ".absent")

    def state(self) -> FileState:
        if self.backup_path.exists():
            return Applied(self.backup_path)
        if self.absent_marker.exists():
            return Applied(None)
        return Unmanaged()

    def take_backup(self) -> bool:
        """Capture the original once; never overwrite an existing backup."""
        if isinstance(self.state(), Applied):
            return False
        if self.path.exists():
            shutil.copy2(self.path, self.backup_path)
        else:
            self.absent_marker.parent.mkdir(parents=True, exist_ok=True)
            self.absent_marker.touch()
        return True

    def write(self, content: str) -> None:
        atomic_write(self.path, content)

    def restore(self) -> str:
        state = self.state()
        if isinstance(state, Applied) and state.backup is not None:
            os.replace(state.backup, self.path)
            self.absent_marker.unlink(missing_ok=True)
            return f"restored {self.path} from {state.backup.name}"
        self.absent_marker.unlink(missing_ok=True)
        if self.path.exists():
            self.path.unlink()
            return f"removed {self.path}"
        return f"{self.path} already absent"


@dataclass
class StepOutcome:
    step: str
    ok: bool
    detail: str = ""
    optional: bool = False


@dataclass
class SettingResult:
    setting: str
    action: str
    steps: List[StepOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(step.ok or step.optional for step in self.steps)

    def record(self, step: str, ok: bool, detail: str = "", optional: bool = False) -> bool:
        self.steps.append(StepOutcome(step, ok, detail, optional))
        if ok:
            logger.info("[%s] %s: ok%s", self.setting, step, f" ({detail})" if detail else "")
        elif optional:
            logger.info("[%s] %s: skipped (%s)", self.setting, step, detail or "not available")
        else:
            logger.error("[%s] %s: failed (%s)", self.setting, step, detail or "unknown error")
        return ok

    def check(self, step: str, result: CommandResult, optional: bool = False) -> bool:
        detail = "" if result.ok else _last_line(result.output) or f"exit status {result.returncode}"
        return self.record(step, result.ok, detail, optional)


@dataclass
class BatchResult:
    action: str
    results: List[SettingResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.results)

    @property
    def failed(self) -> List[SettingResult]:
        return [result for result in self.results if not result.ok]


def _last_line(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return lines[-1].strip() if lines else ""


class Tweak:
    id = ""
    title = ""
    packages: Tuple[str, ...] = ()

    def __init__(self, settings: Settings, host: Host) -> None:
        self.settings = settings
        self.host = host

    def managed_files(self) -> Sequence[ManagedFile]:
        return ()

    def apply(self, result: SettingResult) -> None:
        raise NotImplementedError

    def revert(self, result: SettingResult) -> None:
        raise NotImplementedError

    def install_packages(self, result: SettingResult) -> bool:
        if not self.packages:
            return True
        result.check("apt-get update", self.host.packages.update(), optional=True)
        return result.check(f"install {' '.join(self.packages)}", self.host.packages.install(*self.packages))

    def write_managed(self, result: SettingResult, managed: ManagedFile, content: str) -> bool:
        try:
            if managed.take_backup():
                target = managed.backup_path if managed.backup_path.exists() else managed.absent_marker
                result.record("backup", True, f"{managed.path} -> {target.name}")
            managed.write(content)
        except OSError as exc:
            return result.record(f"write {managed.path}", False, str(exc))
        return result.record(f"write {managed.path}", True)

    def restore_managed(self, result: SettingResult, managed: ManagedFile) -> bool:
        try:
            detail = managed.restore()
        except OSError as exc:
            return result.record(f"restore {managed.path}", False, str(exc))
        return result.record(f"restore {managed.path}", True, detail)


class ZramTweak(Tweak):
    id = "zram"
    title = "zram 压缩内存交换"
    packages = ("zram-tools",)
    unit = "zramswap.service"

    def managed_files(self) -> Sequence[ManagedFile]:
        return (ManagedFile(self.settings.zram_conf, self.settings.backup_suffix),)

    def desired(self) -> str:
        return (
            "# UbuSmooth defaults: use part of RAM as zram, higher priority than disk swap\n"
            f"ALGO={self.settings.zram_algorithm}\n"
            f"PERCENT={self.settings.zram_percent}\n"
            f"PRIORITY={self.settings.zram_priority}\n"
        )

    def apply(self, result: SettingResult) -> None:
        if not self.install_packages(result):
            return
        (managed,) = self.managed_files()
        if not self.write_managed(result, managed, self.desired()):
            return
        if result.check(f"enable {self.unit}", self.host.services.enable_now(self.unit)):
            swaps = self.host.runner.run(["swapon", "--show"])
            if swaps.ok and swaps.stdout.strip():
                logger.info("Current swap:\n%s", swaps.stdout.rstrip())

    def revert(self, result: SettingResult) -> None:
        result.check(f"disable {self.unit}", self.host.services.disable_now(self.unit), optional=True)
        (managed,) = self.managed_files()
        self.restore_managed(result, managed)


class KernelVmTweak(Tweak):
    id = "kernel-vm"
    title = "内核内存参数"

    def managed_files(self) -> Sequence[ManagedFile]:
        return (ManagedFile(self.settings.sysctl_conf, self.settings.backup_suffix),)

    def desired(self) -> str:
        return (
            "# UbuSmooth: gentle memory tuning\n"
            f"vm.swappiness={self.settings.swappiness}\n"
            f"vm.vfs_cache_pressure={self.settings.vfs_cache_pressure}\n"
        )

    def apply(self, result: SettingResult) -> None:
        (managed,) = self.managed_files()
        if not self.write_managed(result, managed, self.desired()):
            return
        if result.check("sysctl --system", self.host.kernel.reload()):
            logger.info(
                "Tuning applied: swappiness=%s, vfs_cache_pressure=%s",
                self.host.kernel.read("vm.swappiness"),
                self.host.kernel.read("vm.vfs_cache_pressure"),
            )

    def revert(self, result: SettingResult) -> None:
        (managed,) = self.managed_files()
        self.restore_managed(result, managed)
        result.check("sysctl --system", self.host.kernel.reload(), optional=True)


class TlpTweak(Tweak):
    id = "tlp"
    title = "TLP 电源管理"
    packages = ("tlp", "tlp-rdw")
    unit = "tlp"
    conflicting_unit = "power-profiles-daemon"

    def apply(self, result: SettingResult) -> None:
        # Leave power-profiles-daemon alone when TLP could not be installed.
        if not self.install_packages(result):
            return
        services = self.host.services
        if services.is_enabled(self.conflicting_unit):
            result.check(f"disable {self.conflicting_unit}", services.disable_now(self.conflicting_unit))
        if result.check(f"enable {self.unit}", services.enable_now(self.unit)):
            result.check("tlp start", self.host.runner.run(["tlp", "start"]), optional=True)

    def revert(self, result: SettingResult) -> None:
        services = self.host.services
        if services.unit_exists(self.conflicting_unit):
            result.check(f"enable {self.conflicting_unit}", services.enable_now(self.conflicting_unit), optional=True)
        result.check(f"disable {self.unit}", services.disable_now(self.unit), optional=True)


class TrimTweak(Tweak):
    id = "trim"
    title = "每周 SSD TRIM"
    unit = "fstrim.timer"

    def apply(self, result: SettingResult) -> None:
        result.check(f"enable {self.unit}", self.host.services.enable_now(self.unit))

    def revert(self, result: SettingResult) -> None:
        # Distro default keeps the weekly timer enabled.
        result.check(f"enable {self.unit}", self.host.services.enable_now(self.unit), optional=True)


class CleanupTweak(Tweak):
    id = "cleanup"
    title = "清理 apt 缓存与孤立包"

    def apply(self, result: SettingResult) -> None:
        result.check("apt-get autoremove", self.host.packages.autoremove())
        result.check("apt-get autoclean", self.host.packages.autoclean())

    def revert(self, result: SettingResult) -> None:
        result.record("nothing to revert", True)


CATALOG = (ZramTweak, KernelVmTweak, TlpTweak, TrimTweak, CleanupTweak)


def build_catalog(settings: Settings, host: Host) -> Dict[str, Tweak]:
    return {tweak_cls.id: tweak_cls(settings, host) for tweak_cls in CATALOG}


class TweakManager:
    def __init__(self, settings: Settings, host: Host) -> None:
        self.settings = settings
        self.host = host
        self.tweaks = build_catalog(settings, host)

    def get(self, setting_id: str) -> Tweak:
        try:
            return self.tweaks[setting_id]
        except KeyError:
            raise UnknownSettingError(setting_id) from None

    def apply(self, setting_id: str) -> SettingResult:
        tweak = self.get(setting_id)
        logger.info("Applying %s (%s)", tweak.id, tweak.title)
        result = SettingResult(tweak.id, "apply")
        tweak.apply(result)
        return result

    def revert(self, setting_id: str) -> SettingResult:
        tweak = self.get(setting_id)
        logger.info("Reverting %s (%s)", tweak.id, tweak.title)
        result = SettingResult(tweak.id, "revert")
        tweak.revert(result)
        return result

    def apply_all(self) -> BatchResult:
        batch = self._sweep("apply", APPLY_ORDER, self.apply)
        logger.info("All tweaks processed. Consider logging out/in or rebooting.")
        return batch

    def revert_all(self) -> BatchResult:
        batch = self._sweep("revert", REVERT_ORDER, self.revert)
        logger.info("Revert complete. You may reboot to fully apply.")
        return batch

    def _sweep(self, action: str, order: Iterable[str], step) -> BatchResult:
        batch = BatchResult(action)
        for setting_id in order:
            result = step(setting_id)
            if not result.ok:
                logger.warning("%s %s did not complete; continuing with the next tweak", action, setting_id)
            batch.results.append(result)
        return batch

    def states(self) -> Dict[str, Optional[FileState]]:
        """Backup state of each file-based tweak; service-only tweaks map to None."""
        states: Dict[str, Optional[FileState]] = {}
        for setting_id, tweak in self.tweaks.items():
            files = tweak.managed_files()
            states[setting_id] = files[0].state() if files else None
        return states

    def info(self) -> SystemInfo:
        return gather_info()


def set_compositor(host: Host, mode: str) -> SettingResult:
    """Toggle XFCE compositing; skipped when xfconf-query is not installed."""
    if mode not in ("on", "off"):
        raise ValueError(f"compositor mode must be 'on' or 'off', not {mode!r}")
    result = SettingResult("xfce-compositor", mode)
    value = "true" if mode == "on" else "false"
    outcome = host.runner.run(["xfconf-query", "-c", "xfwm4", "-p", "/general/use_compositing", "-s", value])
    if outcome.returncode == NOT_FOUND:
        result.record("xfconf-query", False, "XFCE not detected", optional=True)
    else:
        result.check(f"compositing {mode}", outcome, optional=True)
    return result
