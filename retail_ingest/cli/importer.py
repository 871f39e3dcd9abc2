"""批量导入 CLI。

在不启动 HTTP 服务的情况下导入文件、做重复预检、查看导入历史。

用法：
    # 导入销售报表
    python -m retail_ingest.cli.importer import sales data/sales_march.xlsx

    # 导入前预检重复风险
    python -m retail_ingest.cli.importer check sales data/sales_march.xlsx --days 60

    # 查看最近的导入批次 / 单个批次详情
    python -m retail_ingest.cli.importer history --type sales --limit 10
    python -m retail_ingest.cli.importer history --batch <batch-id>

退出码：0=成功；4=参数 / 文件 / 列错误；5=其他失败。
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from retail_ingest.app.wiring import DependencyContainer
from retail_ingest.core.config import get_log_level
from retail_ingest.core.errors import ColumnError, FileError, ImportFailure
from retail_ingest.core.models import IMPORT_TYPES, BatchImportResult, DuplicateSignal, ImportBatch
from retail_ingest.flows.batch_import import import_file
from retail_ingest.flows.duplicate_check import check_duplicates
from retail_ingest.flows.import_history import BatchPage, get_batch, list_batches

console = Console()
logger = logging.getLogger(__name__)

_RISK_COLORS = {"none": "green", "low": "cyan", "medium": "yellow", "high": "red"}
_STATUS_COLORS = {"completed": "green", "partial": "yellow", "failed": "red", "processing": "blue"}
_MAX_ERRORS_SHOWN = 20


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """解析命令行参数。"""
    parser = argparse.ArgumentParser(
        description="零售运营报表批量导入",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  python -m retail_ingest.cli.importer import sales data/sales_march.xlsx
  python -m retail_ingest.cli.importer check advertising data/ads_w12.csv --days 60
  python -m retail_ingest.cli.importer history --type sales --limit 10
""",
    )
    parser.add_argument("--db", help="SQLite 路径（默认读取 DB_PATH）")
    parser.add_argument("--rules", help="导入规则覆盖 JSON（默认读取 IMPORT_RULES_PATH）")
    parser.add_argument("--debug", action="store_true", help="启用调试日志")

    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="导入文件")
    p_import.add_argument("import_type", choices=IMPORT_TYPES, help="导入类型")
    p_import.add_argument("file", help="xlsx / xls / csv 文件路径")
    p_import.add_argument("--chunk-size", type=int, help="每个写入事务的记录数（默认 IMPORT_CHUNK_SIZE）")

    p_check = sub.add_parser("check", help="导入前重复风险预检")
    p_check.add_argument("import_type", choices=IMPORT_TYPES, help="导入类型")
    p_check.add_argument("file", help="xlsx / xls / csv 文件路径")
    p_check.add_argument("--days", type=int, help="回看天数（默认 DUPLICATE_LOOKBACK_DAYS）")

    p_history = sub.add_parser("history", help="查看导入历史")
    p_history.add_argument("--type", dest="import_type", choices=IMPORT_TYPES, help="仅列出该类型")
    p_history.add_argument("--limit", type=int, default=20, help="每页条数（默认 20，最大 100）")
    p_history.add_argument("--offset", type=int, default=0, help="偏移量")
    p_history.add_argument("--batch", help="查看单个批次详情（含错误明细）")

    return parser.parse_args(argv)


def _print_errors(batch: ImportBatch) -> None:
    if not batch.error_details:
        return
    table = Table(title=f"错误明细（共 {len(batch.error_details)} 条）", show_lines=False)
    table.add_column("行号", justify="right")
    table.add_column("字段")
    table.add_column("值")
    table.add_column("原因")
    for error in batch.error_details[:_MAX_ERRORS_SHOWN]:
        table.add_row(str(error.row), error.field, "" if error.value is None else str(error.value), error.message)
    console.print(table)
    if len(batch.error_details) > _MAX_ERRORS_SHOWN:
        console.print(f"[dim]... 还有 {len(batch.error_details) - _MAX_ERRORS_SHOWN} 条，使用 history --batch {batch.id} 查看[/dim]")


def _format_import(result: BatchImportResult) -> None:
    batch = result.batch
    color = _STATUS_COLORS.get(batch.status, "white")
    console.print(
        Panel(
            f"文件: {batch.file_name}\n"
            f"总行数: {batch.total_rows}\n"
            f"新增: {result.inserted}    更新: {result.updated}    失败: {batch.invalid_rows}\n"
            f"批次: {batch.id}",
            title=f"{batch.label}  |  [{color}]{batch.status}[/]",
            border_style=color,
        )
    )
    _print_errors(batch)


def _format_signal(signal: DuplicateSignal) -> None:
    color = _RISK_COLORS.get(signal.risk_level, "white")
    headline = "[red]确定重复（内容完全一致）[/red]" if signal.is_duplicate else f"[{color}]风险: {signal.risk_level}[/]"
    console.print(Panel(f"SHA-256: {signal.file_hash}", title=headline, border_style=color))

    if signal.matched_batches:
        table = Table(title="命中的历史批次")
        table.add_column("导入时间")
        table.add_column("文件名")
        table.add_column("命中方式")
        table.add_column("名称相似度", justify="right")
        for previous in signal.matched_batches:
            table.add_row(
                f"{previous.imported_at:%Y-%m-%d %H:%M}",
                previous.file_name,
                ", ".join(previous.matches),
                f"{previous.name_similarity:.0%}",
            )
        console.print(table)
    for warning in signal.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")
    for tip in signal.recommendations:
        console.print(f"[dim]• {tip}[/dim]")


def _format_page(page: BatchPage) -> None:
    table = Table(title=f"导入历史（{page.offset + 1}~{page.offset + len(page.items)} / {page.total}）")
    table.add_column("创建时间")
    table.add_column("类型")
    table.add_column("文件名")
    table.add_column("状态")
    table.add_column("总行数", justify="right")
    table.add_column("导入", justify="right")
    table.add_column("失败", justify="right")
    table.add_column("批次 ID")
    for batch in page.items:
        color = _STATUS_COLORS.get(batch.status, "white")
        table.add_row(
            f"{batch.created_at:%Y-%m-%d %H:%M}",
            batch.import_type,
            batch.file_name,
            f"[{color}]{batch.status}[/]",
            str(batch.total_rows),
            str(batch.imported_rows),
            str(batch.invalid_rows),
            batch.id,
        )
    console.print(table)
    if page.has_more:
        console.print(f"[dim]还有更多，使用 --offset {page.offset + page.limit} 翻页[/dim]")


def _format_batch(batch: ImportBatch) -> None:
    color = _STATUS_COLORS.get(batch.status, "white")
    date_range = f"{batch.date_range[0]} ~ {batch.date_range[1]}" if batch.date_range else "（无）"
    console.print(
        Panel(
            f"类型: {batch.import_type}\n"
            f"文件: {batch.file_name}（{batch.file_kind}，{batch.file_size} 字节）\n"
            f"创建: {batch.created_at:%Y-%m-%d %H:%M:%S}\n"
            f"总行数: {batch.total_rows}    新增: {batch.inserted_rows}    "
            f"更新: {batch.updated_rows}    失败: {batch.invalid_rows}\n"
            f"数据日期: {date_range}\n"
            f"SHA-256: {batch.file_hash or '（无）'}",
            title=f"{batch.label}  |  [{color}]{batch.status}[/]",
            border_style=color,
        )
    )
    _print_errors(batch)


def _do_import(args: argparse.Namespace, container: DependencyContainer) -> int:
    path = Path(args.file)
    if not path.is_file():
        raise FileNotFoundError(args.file)
    spec = container.get_spec(args.import_type)
    result = import_file(
        path=path,
        spec=spec,
        batch_repo=container.get_batch_repo(),
        record_repo=container.get_record_repo(spec),
        stock_repo=container.stock_repo,
        chunk_size=args.chunk_size,
        delete_after=False,
    )
    _format_import(result)
    return 0 if result.succeeded else 5


def _do_check(args: argparse.Namespace, container: DependencyContainer) -> int:
    path = Path(args.file)
    if not path.is_file():
        raise FileNotFoundError(args.file)
    if args.days is not None and args.days <= 0:
        raise ValueError("--days 必须为正整数")
    signal = check_duplicates(
        spec=container.get_spec(args.import_type),
        file_name=path.name,
        content=path.read_bytes(),
        check_period_days=args.days,
        batch_repo=container.get_batch_repo(),
        log_repo=container.check_log_repo,
    )
    _format_signal(signal)
    return 0


def _do_history(args: argparse.Namespace, container: DependencyContainer) -> int:
    if args.batch:
        try:
            batch = get_batch(batch_id=args.batch, batch_repo=container.get_batch_repo())
        except LookupError as err:
            console.print(f"[red]✗ {err}[/red]")
            return 4
        _format_batch(batch)
        return 0
    page = list_batches(
        batch_repo=container.get_batch_repo(),
        import_type=args.import_type,
        limit=args.limit,
        offset=args.offset,
    )
    _format_page(page)
    return 0


_COMMANDS = {"import": _do_import, "check": _do_check, "history": _do_history}


def main(argv: list[str] | None = None) -> int:
    """
    CLI 主入口。

    Returns:
        退出码：0=成功；4=参数 / 文件 / 列错误；5=其他失败。
    """
    load_dotenv()
    args = _parse_args(argv)

    if args.debug:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s - %(message)s")
    else:
        logging.basicConfig(level=get_log_level(), format="%(name)s - %(message)s")

    try:
        with DependencyContainer(db_path=args.db, rules_path=args.rules) as container:
            return _COMMANDS[args.command](args, container)
    except FileNotFoundError as err:
        console.print(f"[red]✗ 文件不存在：{err}[/red]")
        return 4
    except ColumnError as err:
        console.print(f"[red]✗ 列校验失败：{err.message}[/red]")
        return 4
    except FileError as err:
        console.print(f"[red]✗ 文件无法处理：{err.message}[/red]")
        return 4
    except ValueError as err:
        console.print(f"[red]✗ 参数错误：{err}[/red]")
        return 4
    except ImportFailure as err:
        logger.exception("[CLI:Importer] 执行失败")
        console.print(f"[red]✗ 执行失败：{err.message}[/red]")
        return 5
    except Exception as err:  # noqa: BLE001
        logger.exception("[CLI:Importer] 未预期的错误")
        console.print(f"[red]✗ 执行失败：{err}[/red]")
        return 5


def run() -> None:
    """console_scripts 入口。"""
    sys.exit(main())


if __name__ == "__main__":
    run()
