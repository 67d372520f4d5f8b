"""Entry points for the ubusmooth (tweaks) and ubusmooth-bench (benchmarks) commands."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .bench import Harness, ensure_tools
from .config import ConfigError, Settings, load_settings, with_overrides
from .formatting import (
    delta_rows,
    format_batch,
    format_bytes,
    format_deltas,
    format_info,
    format_state,
    format_swap_table,
    setting_rows,
)
from .host import CommandRunner, Host, PackageManager, is_root
from .log import setup_logging
from .results import COLUMNS, BenchmarkRecord, MetricDelta, ResultsTable, compare
from .system_state import SystemInfo
from .tweaks import APPLY_ORDER, BatchResult, FileState, TweakManager, set_compositor

REVERT_ALL = "all"


def _tweak_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ubusmooth",
        description="UbuSmooth：轻量、可回滚的 Ubuntu 调优。",
    )
    actions = parser.add_mutually_exclusive_group()
    actions.add_argument("--all", action="store_true", help="应用全部推荐调优")
    actions.add_argument("--apply", choices=APPLY_ORDER, help="应用单项调优")
    actions.add_argument("--zram", dest="apply", action="store_const", const="zram", help="启用并配置 zram")
    actions.add_argument("--kernel", dest="apply", action="store_const", const="kernel-vm", help="应用内核内存参数")
    actions.add_argument("--tlp", dest="apply", action="store_const", const="tlp", help="安装并启用 TLP")
    actions.add_argument("--trim", dest="apply", action="store_const", const="trim", help="启用每周 SSD TRIM")
    actions.add_argument("--cleanup", dest="apply", action="store_const", const="cleanup", help="清理 apt 缓存")
    actions.add_argument(
        "--revert",
        nargs="?",
        const=REVERT_ALL,
        choices=[*APPLY_ORDER, REVERT_ALL],
        help="撤销 UbuSmooth 的改动（默认全部）",
    )
    actions.add_argument("--info", action="store_true", help="显示系统信息")
    actions.add_argument("--xfce-compositor", choices=["on", "off"], help="切换 XFCE 合成器")
    parser.add_argument("--json", action="store_true", help="以 JSON 输出系统信息")
    parser.add_argument("--ui", action="store_true", help="以 Rich 风格输出更美观的终端 UI")
    parser.add_argument("--config", type=Path, help="TOML 配置文件（也可用 UBUSMOOTH_CONFIG 指定）")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _tweak_parser()
    args = parser.parse_args(argv)
    if not (args.all or args.apply or args.revert or args.info or args.xfce_compositor):
        parser.print_help()
        return 0

    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        parser.error(str(exc))

    if args.info:
        return _show_info(settings, as_json=args.json, rich_ui=args.ui)

    if not is_root():
        print(f"请以 root 身份运行：sudo {parser.prog} [选项]", file=sys.stderr)
        return 1

    setup_logging(settings.log_file, args.verbose)
    host = Host.from_runner(CommandRunner(settings.command_timeout))

    if args.xfce_compositor:
        result = set_compositor(host, args.xfce_compositor)
        _print_batch(BatchResult(result.action, [result]), rich_ui=args.ui)
        return 0

    manager = TweakManager(settings, host)
    if args.all:
        _print_batch(manager.apply_all(), rich_ui=args.ui)
        return 0
    if args.revert == REVERT_ALL:
        _print_batch(manager.revert_all(), rich_ui=args.ui)
        return 0
    if args.revert:
        result = manager.revert(args.revert)
    else:
        result = manager.apply(args.apply)
    _print_batch(BatchResult(result.action, [result]), rich_ui=args.ui)
    return 0 if result.ok else 1


def _show_info(settings: Settings, as_json: bool, rich_ui: bool) -> int:
    manager = TweakManager(settings, Host.from_runner(CommandRunner(settings.command_timeout)))
    info = manager.info()
    states = manager.states()
    if as_json:
        print(_info_json(info, states))
    elif rich_ui:
        _render_rich_info(info, states)
    else:
        print(format_info(info, states))
    return 0


def _info_json(info: SystemInfo, states: Dict[str, Optional[FileState]]) -> str:
    payload: Dict[str, Any] = asdict(info)
    payload["timestamp"] = info.timestamp.isoformat()
    payload["tweaks"] = {key: format_state(value) for key, value in states.items()}
    return json.dumps(payload, ensure_ascii=False, indent=2)


def _render_rich_info(info: SystemInfo, states: Dict[str, Optional[FileState]]) -> None:
    console = Console()
    console.print(Panel(f"系统信息 - {info.timestamp:%Y-%m-%d %H:%M:%S}", style="bold cyan"))

    summary = Table(show_header=False, box=box.ROUNDED)
    summary.add_row("内核", info.kernel)
    summary.add_row("CPU", f"{info.cpu_count or '未知'} 个逻辑核心")
    summary.add_row("内存", f"已用 {format_bytes(info.memory_used)} / {format_bytes(info.memory_total)}")
    summary.add_row("Swap", f"已用 {format_bytes(info.swap_used)} / {format_bytes(info.swap_total)}")
    summary.add_row("桌面会话", info.desktop_session or "未设置")
    console.print(summary)
    console.print(format_swap_table(info.swap_devices))

    tweaks = Table(title="调优状态", box=box.SIMPLE_HEAD)
    tweaks.add_column("设置", style="bold")
    tweaks.add_column("状态")
    for key, value in states.items():
        tweaks.add_row(key, format_state(value))
    console.print(tweaks)


def _print_batch(batch: BatchResult, rich_ui: bool) -> None:
    if not rich_ui:
        print(format_batch(batch))
        return
    table = Table(title="执行结果", box=box.SIMPLE_HEAD)
    table.add_column("设置", style="bold")
    table.add_column("操作")
    table.add_column("结果")
    table.add_column("未完成的步骤")
    for row in setting_rows(batch.results):
        style = "green" if row[2] == "成功" else "bold red"
        table.add_row(row[0], row[1], f"[{style}]{row[2]}[/{style}]", escape(row[3]))
    Console().print(table)


def _bench_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ubusmooth-bench",
        description="可重复的基准测试，用于对比调优前后的性能。",
    )
    parser.add_argument("label", nargs="?", help="本次运行的标签，例如 baseline 或 ubusmooth")
    parser.add_argument("--out", type=Path, help="结果目录（默认 ./bench）")
    parser.add_argument("--compare", nargs=2, metavar=("BASE", "NEW"), help="对比两个标签最近一次的结果")
    parser.add_argument("--no-install", action="store_true", help="不自动安装缺失的 sysbench/fio")
    parser.add_argument("--ui", action="store_true", help="以 Rich 风格输出更美观的终端 UI")
    parser.add_argument("--config", type=Path, help="TOML 配置文件（也可用 UBUSMOOTH_CONFIG 指定）")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    return parser


def bench_main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _bench_parser()
    args = parser.parse_args(argv)
    try:
        settings = with_overrides(load_settings(args.config), bench_dir=args.out)
    except ConfigError as exc:
        parser.error(str(exc))
    table = ResultsTable(settings.bench_dir / "results.csv")

    if args.compare:
        baseline, candidate = args.compare
        try:
            deltas = compare(table, baseline, candidate)
        except LookupError as exc:
            print(f"无法对比：{exc}", file=sys.stderr)
            return 1
        _print_deltas(baseline, candidate, deltas, rich_ui=args.ui)
        return 0

    if not args.label:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: 需要提供标签，例如 {parser.prog} baseline", file=sys.stderr)
        return 1

    if "/" in args.label or "\\" in args.label or args.label in (".", ".."):
        print(f"{parser.prog}: 标签不能包含路径分隔符：{args.label}", file=sys.stderr)
        return 1

    setup_logging(verbose=args.verbose)
    runner = CommandRunner(settings.command_timeout)
    if not args.no_install:
        ensure_tools(PackageManager(runner, sudo=not is_root()))
    record = Harness(settings, runner, table).run(args.label)
    _print_record(record, rich_ui=args.ui)
    return 0


def _record_rows(record: BenchmarkRecord) -> List[List[str]]:
    return [[column, value or "-"] for column, value in zip(COLUMNS, record.as_row())]


def _print_record(record: BenchmarkRecord, rich_ui: bool) -> None:
    if not rich_ui:
        for column, value in _record_rows(record):
            print(f"{column:<22} {value}")
        return
    table = Table(title=f"基准结果 - {record.label}", show_header=False, box=box.ROUNDED)
    for column, value in _record_rows(record):
        table.add_row(column, value)
    Console().print(table)


def _print_deltas(baseline: str, candidate: str, deltas: List[MetricDelta], rich_ui: bool) -> None:
    if not rich_ui:
        print(format_deltas(baseline, candidate, deltas))
        return
    table = Table(title=f"{baseline} → {candidate}", box=box.SIMPLE_HEAD)
    table.add_column("指标", style="bold")
    table.add_column(baseline, justify="right")
    table.add_column(candidate, justify="right")
    table.add_column("变化", justify="right")
    for row in delta_rows(deltas):
        table.add_row(*row)
    Console().print(table)


if __name__ == "__main__":
    sys.exit(main())
