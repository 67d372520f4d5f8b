"""Console-friendly formatting utilities."""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Sequence

from .results import MetricDelta, format_value
from .system_state import SwapDevice, SystemInfo
from .tweaks import Applied, BatchResult, FileState, SettingResult


def format_bytes(num: float) -> str:
    suffixes = ["B", "KiB", "MiB", "GiB", "TiB"]
    value = float(num)
    for suffix in suffixes:
        if value < 1024 or suffix == suffixes[-1]:
            return f"{value:.1f} {suffix}"
        value /= 1024
    return f"{value:.1f} TiB"


def render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))
    lines = []
    lines.append(_format_row(headers, widths))
    lines.append(_format_row(["-" * w for w in widths], widths))
    for row in rows:
        lines.append(_format_row(row, widths))
    return "\n".join(lines)


def format_swap_table(devices: Iterable[SwapDevice]) -> str:
    rows = [
        [device.name, device.kind, format_bytes(device.size_bytes), format_bytes(device.used_bytes), str(device.priority)]
        for device in devices
    ]
    return render_table(["设备", "类型", "大小", "已用", "优先级"], rows) if rows else "无交换设备"


def format_state(state: Optional[FileState]) -> str:
    if state is None:
        return "服务型"
    if isinstance(state, Applied):
        if state.backup is None:
            return "已应用（原文件不存在）"
        return f"已应用（备份 {state.backup}）"
    return "未管理"


def format_info(info: SystemInfo, states: Optional[Dict[str, Optional[FileState]]] = None) -> str:
    lines = [
        "=== 系统信息 ===",
        f"时间：{info.timestamp:%Y-%m-%d %H:%M:%S}",
        f"内核：{info.kernel}",
        f"CPU：{info.cpu_count if info.cpu_count is not None else '未知'} 个逻辑核心",
        f"内存：已用 {format_bytes(info.memory_used)} / {format_bytes(info.memory_total)}，空闲 {format_bytes(info.memory_free)}",
        f"Swap：已用 {format_bytes(info.swap_used)} / {format_bytes(info.swap_total)}",
        format_swap_table(info.swap_devices),
        f"桌面会话：{info.desktop_session or '未设置'}",
    ]
    if states:
        lines.append("调优状态：")
        lines.append(render_table(["设置", "状态"], [[key, format_state(value)] for key, value in states.items()]))
    lines.append("================")
    return "\n".join(lines)


def setting_rows(results: Iterable[SettingResult]) -> list[list[str]]:
    rows = []
    for result in results:
        problems = [f"{step.step}: {step.detail}" for step in result.steps if not step.ok]
        rows.append([result.setting, result.action, "成功" if result.ok else "失败", " / ".join(problems)])
    return rows


def format_batch(batch: BatchResult) -> str:
    return render_table(["设置", "操作", "结果", "未完成的步骤"], setting_rows(batch.results))


def delta_rows(deltas: Iterable[MetricDelta]) -> list[list[str]]:
    rows = []
    for delta in deltas:
        percent = f"{delta.percent:+.1f}%" if delta.percent is not None else ""
        rows.append([delta.column, format_value(delta.baseline), format_value(delta.candidate), percent])
    return rows


def format_deltas(baseline: str, candidate: str, deltas: Iterable[MetricDelta]) -> str:
    return render_table(["指标", baseline, candidate, "变化"], delta_rows(deltas))


def _format_row(row: Sequence[str], widths: Sequence[int]) -> str:
    padded = [cell.ljust(width) for cell, width in zip(row, widths)]
    return " | ".join(padded)
