from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

from sheetload.config.loader import ConfigError, load_config_or_default
from sheetload.db.pool import ConnectionPoolRegistry, PoolError
from sheetload.excel.reader import SheetHeaderError, WorkbookReadError, WorksheetNotFoundError, open_row_stream
from sheetload.logging.error_log import ErrorLogBuffer
from sheetload.logging.init import enable_debug, log_summary, setup_logging
from sheetload.models.config_models import ImportConfig
from sheetload.services.error_report import ErrorReportError, write_error_report
from sheetload.services.orchestrator import ImportAbortedError, ImportValidationError, import_table
from sheetload.services.progress import RowProgress
from sheetload.services.summary import render_summary_line

"""CLI entrypoint.

    sheetload FILE --table [SCHEMA.]TABLE [--sheet NAME] [--database DB]
              [--config PATH] [--batch-size N] [--ignore-extra-headers]
              [--error-report PATH] [--inspect-data] [--debug]

Exit codes:
    0  every row committed
    2  committed, but some rows were rejected (see the error log)
    1  nothing committed (config / validation / infrastructure failure)
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

INSPECT_SAMPLE_ROWS = 3


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True により .env の値で既存環境変数を上書きし、PostgreSQL 接続情報を最優先化。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="sheetload", description="Excel worksheet -> PostgreSQL table loader")
    p.add_argument("file", type=Path, help="Source .xlsx workbook")
    p.add_argument("--table", help="Destination table (table or schema.table)")
    p.add_argument("--sheet", default=None, help="Worksheet name (default: first worksheet)")
    p.add_argument("--database", default=None, help="Destination database (default: configured database)")
    p.add_argument("--config", type=Path, default=None, help="Config YAML (default: config/import.yml if present)")
    p.add_argument("--batch-size", type=int, default=None, help="Rows per multi-row INSERT")
    p.add_argument(
        "--ignore-extra-headers",
        action="store_true",
        default=None,
        help="Skip worksheet columns that do not exist in the table instead of refusing the import",
    )
    p.add_argument("--error-report", type=Path, default=None, help="Write rejected rows to this .xlsx/.csv file")
    p.add_argument("--inspect-data", action="store_true", help="Print sheet headers & first rows then exit")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = p.parse_args(argv)
    if not args.inspect_data and not args.table:
        p.error("--table is required unless --inspect-data is given")
    return args


def _make_pools(cfg: ImportConfig) -> ConnectionPoolRegistry:  # pragma: no cover (patched in tests)
    return ConnectionPoolRegistry(cfg.database)


def _inspect_data(path: Path, sheet_name: str | None) -> int:
    try:
        stream = open_row_stream(path, sheet_name)
    except (WorkbookReadError, WorksheetNotFoundError, SheetHeaderError) as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    with stream:
        print(f"FILE: {path.name}")
        print(f"  SHEET: {stream.sheet_name} cols={list(stream.headers)}")
        sample = []
        for raw in stream:
            sample.append({h: c.display() for h, c in zip(stream.headers, raw.values)})
            if len(sample) >= INSPECT_SAMPLE_ROWS:
                break
        print("    sample_rows=", sample)
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # 空リスト [] を渡されたときに sys.argv を読まないよう None のときのみ参照
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        enable_debug(logger)

    if args.inspect_data:
        return _inspect_data(args.file, args.sheet)

    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config_or_default(args.config)
        options = cfg.to_options(batch_size=args.batch_size, ignore_extra_headers=args.ignore_extra_headers)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    except ValueError as e:
        logger.error(f"options: {e}")
        return EXIT_FATAL

    if not args.file.exists():
        logger.error(f"file not found: {args.file}")
        return EXIT_FATAL

    error_log = ErrorLogBuffer(cfg.error_log_dir)
    try:
        with _make_pools(cfg) as pools, RowProgress() as progress:
            report = import_table(
                pools,
                args.table,
                args.file,
                args.sheet,
                database=args.database,
                options=options,
                progress=progress,
                error_log=error_log,
            )
    except ImportValidationError as e:
        logger.error(f"validation: {e}")
        if e.missing_columns:
            logger.error(f"missing required columns: {', '.join(e.missing_columns)}")
        if e.extra_headers:
            logger.error(f"headers not in table: {', '.join(e.extra_headers)}")
        return EXIT_FATAL
    except ImportAbortedError as e:
        logger.error(f"aborted: {e}")
        log_summary(render_summary_line(e.report)[len("SUMMARY "):])
        _flush_error_log(logger, error_log)
        return EXIT_FATAL
    except PoolError as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL

    logger.info(f"rows={report.total_rows} ok={report.ok_rows} errors={report.error_rows}")
    # log_summary が "SUMMARY " を付与するので本文のみ渡す
    log_summary(render_summary_line(report)[len("SUMMARY "):])
    _flush_error_log(logger, error_log)

    if args.error_report is not None and report.has_errors:
        try:
            write_error_report(report, args.error_report)
        except ErrorReportError as e:
            logger.warning(f"error report: {e}")

    return EXIT_PARTIAL_FAILURE if report.has_errors else EXIT_SUCCESS_ALL


def _flush_error_log(logger, error_log: ErrorLogBuffer) -> None:
    try:
        path = error_log.flush()
    except OSError as e:
        logger.error(f"cannot write error log: {e}")
        return
    if path is not None:
        logger.warning(f"row errors written to {path}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
