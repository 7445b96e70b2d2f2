from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import parsers, services
from .config import settings
from .database import build_engine, build_session_factory, db_session, init_db
from .exceptions import WorkTrackerError
from .schemas import UNKNOWN, ReportFilter, TimeTotals
from .state import RuntimeState
from .timeutils import format_duration, format_elapsed, format_system_time, parse_system_date

logger = logging.getLogger("worktracker")

IMPORT_KINDS = ("time_list", "time_edit", "report_form", "report")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="worktracker", description="Mirror time tracker pages locally.")
    parser.add_argument("--db", type=Path, default=settings.sqlite_path, help="SQLite database path")
    sub = parser.add_subparsers(dest="command", required=True)

    import_cmd = sub.add_parser("import", help="Reconcile a saved HTML page into the local store")
    import_cmd.add_argument("kind", choices=IMPORT_KINDS)
    import_cmd.add_argument("file", type=Path)
    import_cmd.add_argument("--start", help="report start date, yyyy-MM-dd")
    import_cmd.add_argument("--finish", help="report finish date, yyyy-MM-dd")

    day_cmd = sub.add_parser("day", help="Print the cached records of a day")
    day_cmd.add_argument("date", help="yyyy-MM-dd")
    return parser


def _import(args: argparse.Namespace, factory) -> int:
    text = args.file.read_text(encoding="utf-8")
    with db_session(factory) as session:
        if args.kind == "report":
            report_filter = ReportFilter(
                start=parse_system_date(args.start),
                finish=parse_system_date(args.finish),
            )
            page = parsers.parse_report_page(
                text, report_filter, services.load_projects(session), settings.editor_page, settings.base_url
            )
        elif args.kind == "time_list":
            page = parsers.parse_time_list_page(text, settings.editor_page, settings.base_url)
        else:
            page = parsers.PAGE_PARSERS[args.kind](text)
        if getattr(page, "error_message", None):
            print(f"server error: {page.error_message}", file=sys.stderr)
        result = services.save_page(session, page)
    print(result.describe() or "nothing to reconcile")
    return 0


def _total(elapsed: int) -> str:
    return "n/a" if elapsed == UNKNOWN else format_elapsed(elapsed)


def _totals_line(totals: TimeTotals) -> str:
    return (
        f"day {_total(totals.daily)}  week {_total(totals.weekly)}  "
        f"month {_total(totals.monthly)}  remaining {_total(totals.remaining)}"
    )


def _day(args: argparse.Namespace, factory) -> int:
    date = parse_system_date(args.date)
    if date is None:
        print(f"invalid date: {args.date}", file=sys.stderr)
        return 2
    state = RuntimeState(settings)
    with db_session(factory) as session:
        state.load_from_db(session)
        page = services.load_time_list_page(session, date, state.preferences())
    for record in page.records:
        print(
            f"{record.id:>8}  {record.project.name:<24} {record.task.name:<24} "
            f"{format_system_time(record.start):>5} {format_system_time(record.finish):>5} "
            f"{format_duration(record.duration)}  {record.note}"
        )
    print(_totals_line(page.totals))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = _build_parser().parse_args(argv)
    args.db.parent.mkdir(parents=True, exist_ok=True)
    engine = build_engine(f"sqlite:///{args.db}")
    init_db(engine)
    factory = build_session_factory(engine)
    try:
        if args.command == "import":
            return _import(args, factory)
        return _day(args, factory)
    except WorkTrackerError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
