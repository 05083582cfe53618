from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path

from batch_export.core import (
    ConfigError,
    bind,
    configure_logging,
    get_logger,
    load_settings,
    new_run_id,
)
from batch_export.core.config import Settings
from batch_export.encode import read_footer, read_frame
from batch_export.pipeline import ExportConfig, ExportPipeline, load_export_config
from batch_export.source import CursorFactory, sqlite_cursor
from batch_export.upload import (
    Destination,
    LocalObjectStore,
    ObjectStore,
    S3ObjectStore,
    make_s3_client,
)
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

console = Console()


@dataclass(frozen=True, slots=True)
class _RunArgs:
    config: Path
    sqlite: Path | None
    postgres: str | None
    query: str
    destination: str
    run_id: str | None
    work_root: Path | None
    run_root: Path | None


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="batch-export")
    sub = p.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Export a query result to Parquet and upload it")
    run.add_argument("--config", required=True, type=Path, help="Export config (JSON)")
    src = run.add_mutually_exclusive_group(required=True)
    src.add_argument("--sqlite", type=Path, help="SQLite database file (opened read-only)")
    src.add_argument("--postgres", help="PostgreSQL DSN")
    run.add_argument("--query", required=True, help="SQL query producing the rows")
    run.add_argument(
        "--destination",
        required=True,
        help="s3://bucket/prefix, file:///dir or a local directory",
    )
    run.add_argument("--run-id", default=None, help="Run id (default: random)")
    run.add_argument("--work-root", type=Path, default=None, help="Override work_root")
    run.add_argument("--run-root", type=Path, default=None, help="Override run_root")

    ins = sub.add_parser("inspect", help="Print the footer and first rows of a Parquet file")
    ins.add_argument("file", type=Path)
    ins.add_argument("--rows", type=int, default=10, help="Rows to show (default: 10)")

    return p


def _run_args(args: argparse.Namespace) -> _RunArgs:
    return _RunArgs(
        config=Path(args.config),
        sqlite=Path(args.sqlite) if args.sqlite else None,
        postgres=str(args.postgres) if args.postgres else None,
        query=str(args.query),
        destination=str(args.destination),
        run_id=str(args.run_id) if args.run_id else None,
        work_root=args.work_root,
        run_root=args.run_root,
    )


def _cursor_factory(a: _RunArgs, cfg: ExportConfig) -> CursorFactory:
    if a.sqlite is not None:
        path = a.sqlite

        def _open_sqlite():
            return sqlite_cursor(path, a.query, batch_size=cfg.fetch_batch_size)

        return _open_sqlite

    from batch_export.source.postgres import postgres_cursor

    dsn = a.postgres
    assert dsn is not None

    def _open_postgres():
        return postgres_cursor(dsn, a.query, batch_size=cfg.fetch_batch_size)

    return _open_postgres


def _object_store(dest: Destination, s: Settings) -> ObjectStore:
    if dest.scheme == "s3":
        client = make_s3_client(
            region=s.aws_region,
            endpoint_url=s.aws_endpoint_url,
            profile=s.aws_profile,
        )
        return S3ObjectStore(client, dest.bucket)
    return LocalObjectStore(Path(dest.bucket))


def _cmd_run(args: argparse.Namespace) -> int:
    a = _run_args(args)
    s = load_settings()
    configure_logging(level=s.log_level, fmt=s.log_format)
    log = get_logger("batch_export")

    try:
        cfg = load_export_config(a.config)
        dest = Destination.parse(a.destination)
    except ConfigError as e:
        console.print(f"[red]config error:[/red] {e}")
        return 2

    run_id = a.run_id or new_run_id()
    bind(run_id=run_id, command="run")

    pipeline = ExportPipeline(
        cfg,
        open_cursor=_cursor_factory(a, cfg),
        store=_object_store(dest, s),
        destination=dest,
        work_root=a.work_root or s.work_root,
        run_root=a.run_root or s.run_root,
        logger=log,
    )

    console.print(
        Panel.fit(
            Text(
                f"batch-export - run\nrun_id={run_id}\ndestination={dest.uri()}",
                style="bold",
            ),
            title="Run",
        )
    )

    with console.status("[bold]exporting[/]", spinner="dots"):
        summary = pipeline.run(
            run_id=run_id,
            meta={"config": str(a.config), "query": a.query},
        )

    tbl = Table(title="Result", show_header=False, box=None)
    tbl.add_row(
        "status",
        "[green]DONE[/green]" if summary.exit_code == 0 else f"[red]{summary.state}[/red]",
    )
    tbl.add_row("rows read", str(summary.rows_read))
    tbl.add_row("rows mapped", str(summary.rows_mapped))
    tbl.add_row("rows rejected", str(summary.rows_rejected))
    for reason, n in summary.rejections.get("by_reason", {}).items():
        tbl.add_row(f"  {reason}", str(n))
    tbl.add_row("upload", summary.upload_status)
    for r in summary.receipts:
        tbl.add_row("  uploaded", f"{r.location} ({r.bytes} bytes, {r.attempts} attempt(s))")
    if summary.error is not None:
        tbl.add_row("error", f"[red]{summary.failed_stage}: {summary.error.message}[/red]")
    if summary.events_jsonl:
        tbl.add_row("report", str(Path(summary.events_jsonl).with_name("run_report.json")))
    console.print(tbl)

    return summary.exit_code


def _cmd_inspect(args: argparse.Namespace) -> int:
    path = Path(args.file)
    footer = read_footer(path)

    fields = Table(title=f"{path.name}: {footer.num_rows} rows")
    fields.add_column("field")
    fields.add_column("type")
    fields.add_column("nullable")
    fields.add_column("codec")
    for f in footer.schema:
        fields.add_row(
            f.name, f.type.value, "yes" if f.nullable else "no", footer.codecs.get(f.name, "")
        )
    console.print(fields)

    groups = Table(title="Row groups")
    for col in ("index", "seq", "rows", "offset", "bytes"):
        groups.add_column(col, justify="right")
    for g in footer.row_groups:
        groups.add_row(
            str(g.index),
            "" if g.seq is None else str(g.seq),
            str(g.num_rows),
            str(g.offset),
            str(g.total_byte_size),
        )
    console.print(groups)

    if args.rows > 0:
        console.print(str(read_frame(path).head(args.rows)))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.cmd == "inspect":
        return _cmd_inspect(args)
    return _cmd_run(args)


if __name__ == "__main__":
    raise SystemExit(main())
