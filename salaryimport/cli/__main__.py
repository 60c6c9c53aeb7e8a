from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pandas as pd
import psycopg2
from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from ..logging.init import enable_debug, log_summary, setup_logging
from ..models.config_models import ImportConfig
from ..models.processing_result import ImportResult, ImportStatus
from ..models.run_log import Level
from ..services.import_service import SalaryImportService
from ..services.summary import render_summary_line

"""CLI entrypoint.

    python -m salaryimport.cli preview salaries.xlsx --zip payslips.zip --output preview.json
    python -m salaryimport.cli import --from-preview preview.json
    python -m salaryimport.cli import salaries.xlsx --zip payslips.zip

Exit codes: 0 all rows imported (or previewed) without error, 2 finished with
row errors, 1 fatal (config, input file, archive, database).
"""

EXIT_SUCCESS_ALL = 0
EXIT_FATAL = 1
EXIT_ROW_ERRORS = 2

_EXIT_CODES = {
    ImportStatus.OK: EXIT_SUCCESS_ALL,
    ImportStatus.ROW_ERRORS: EXIT_ROW_ERRORS,
    ImportStatus.FATAL: EXIT_FATAL,
}


def _resolve_dsn(cfg: ImportConfig) -> str:
    """Build the libpq DSN.

    優先順位:
        1. 環境変数 (.env は main() 冒頭で上書きモードで読み込み済み)
             - DATABASE_URL / PGDSN があれば DSN 全体をそのまま使用
             - 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        2. config の database セクション (不足分のフォールバック)
    """
    db_cfg = cfg.database
    dsn_env = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn_env:
        return dsn_env
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Yield a psycopg2 cursor.

    The connection is in autocommit mode: the persister issues BEGIN / COMMIT /
    ROLLBACK itself, lookups run outside any transaction.
    """
    conn = psycopg2.connect(_resolve_dsn(cfg))
    conn.autocommit = True
    cur = conn.cursor()
    try:
        yield cur
    finally:
        cur.close()
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env (its values override the process environment)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="salaryimport", description="Import salaries and payslips from a spreadsheet"
    )
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    preview = sub.add_parser("preview", help="Validate and match without writing anything")
    preview.add_argument("xlsx", type=Path, help="Salary spreadsheet (.xlsx)")
    preview.add_argument("--zip", type=Path, default=None, help="Payslip archive (.zip)")
    preview.add_argument("--output", type=Path, default=None, help="Save the preview as JSON")

    imp = sub.add_parser("import", help="Import a spreadsheet or a saved preview")
    source = imp.add_mutually_exclusive_group(required=True)
    source.add_argument("xlsx", type=Path, nargs="?", help="Salary spreadsheet (.xlsx)")
    source.add_argument("--from-preview", type=Path, default=None, help="Preview JSON to import")
    imp.add_argument("--zip", type=Path, default=None, help="Payslip archive (.zip)")
    return p.parse_args(argv)


def _print_preview(service: SalaryImportService) -> None:
    table = service.preview_table()
    if not table:
        return
    df = pd.DataFrame(table).set_index("row")
    print(df.to_string())


def _report(result: ImportResult) -> int:
    logger = setup_logging()
    for message in result.log.messages:
        if message.level is Level.ERROR:
            logger.error(message.text)
        else:
            logger.warning(message.text)
    if result.error_log_path is not None:
        logger.info(f"error log: {result.error_log_path}")
    # log_summary が "SUMMARY " を付与するので除去
    log_summary(render_summary_line(result)[len("SUMMARY "):])
    return _EXIT_CODES[result.status]


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # NOTE: [] が渡された場合に sys.argv が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        enable_debug()
        logger.debug("debug mode enabled")

    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        with _db_connection(cfg) as cur:
            service = SalaryImportService(cfg, cur)
            if args.command == "preview":
                logger.info(f"preview: {args.xlsx}")
                result = service.run(args.xlsx, args.zip, dry_run=True)
                _print_preview(service)
                if args.output is not None and service.preview:
                    logger.info(f"preview saved: {service.save_preview(args.output)}")
                else:
                    # 保存しない preview は staging を残さない
                    service.cleanup()
            elif args.from_preview is not None:
                logger.info(f"import from preview: {args.from_preview}")
                result = service.import_preview(args.from_preview)
            else:
                logger.info(f"import: {args.xlsx}")
                result = service.run(args.xlsx, args.zip, dry_run=False)
    except psycopg2.Error as e:
        logger.error(f"database: {e}".strip())
        return EXIT_FATAL

    return _report(result)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
