from __future__ import annotations

import argparse
import datetime
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import EmployeeSessionLocal, SessionLocal, init_database  # noqa: E402
from errors import SchedulingError  # noqa: E402
from exporter import export_month, export_week_grid  # noqa: E402
from policy import ensure_default_policy, load_active_policy, week_start_weekday  # noqa: E402
from scheduling.grid import build_week_grid  # noqa: E402
from scheduling.month import build_month  # noqa: E402
from scheduling.suggestions import build_suggestions, monthly_override_counts  # noqa: E402
from scheduling.weeks import format_week_label, normalize_week_start, parse_iso_date  # noqa: E402
from shifts import shift_label  # noqa: E402
from validation import validate_grid  # noqa: E402


def run_smoke(week_start: datetime.date, location: str | None, export: bool) -> int:
    ensure_default_policy(SessionLocal)
    with SessionLocal() as session, EmployeeSessionLocal() as employee_session:
        policy = load_active_policy(session)
        week_start = normalize_week_start(week_start, week_start_weekday(policy))
        print(f"[schedule] Target week: {format_week_label(week_start)}")
        grid = build_week_grid(
            session,
            week_start,
            location=location,
            include_guests=True,
            employee_session=employee_session,
            policy=policy,
        )
        validations = validate_grid(grid)
        suggestions = build_suggestions(grid, monthly_override_counts(session, grid.dates))
        rollup = build_month(
            session,
            week_start.strftime("%Y-%m"),
            location=location,
            employee_session=employee_session,
            policy=policy,
        )

    header = " ".join(f"{date_:%a %d}".ljust(9) for date_ in grid.dates)
    print(f"[schedule] {'Employee'.ljust(22)} T  {header}")
    for row in grid.rows:
        cells = " ".join(shift_label(cell.effective_shift).ljust(9) for cell in row.cells)
        suffix = " (guest)" if row.is_guest else ""
        print(f"[schedule] {(row.name + suffix)[:22].ljust(22)} {row.team.value}  {cells}")
    for day, counts in zip(grid.days, grid.counts):
        line = f"AM {counts.am} / PM {counts.pm} / cover {counts.ext_am}+{counts.ext_pm}"
        print(f"[schedule] {day.date.isoformat()} {line}")
        for result in validations[day.date]:
            print(f"[schedule][{result.severity}] {day.date.isoformat()} {result.message}")
    for warning in grid.integrity_warnings:
        print(f"[schedule][integrity] {warning.message}")
    for suggestion in suggestions:
        print(f"[schedule][suggestion] {suggestion.id}: {suggestion.reason}")
    print(f"[schedule] Month {rollup.key}: {len(rollup.days)} days rolled up.")

    if export:
        print(f"[schedule] Exported week -> {export_week_grid(grid, 'csv')}")
        print(f"[schedule] Exported month -> {export_month(rollup, 'json')}")
    return sum(1 for results in validations.values() for result in results if result.is_violation)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Build one week's grid and month rollup, print counts, warnings and suggestions."
    )
    parser.add_argument("--week-start", help="ISO date (YYYY-MM-DD) inside the target week. Defaults to today.")
    parser.add_argument("--location", help="Limit the roster to one boutique and fold in guest shifts.")
    parser.add_argument("--export", action="store_true", help="Write CSV/JSON exports after printing.")
    parser.add_argument("--strict", action="store_true", help="Exit non-zero when any coverage warning exists.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_database()
    try:
        week_start = parse_iso_date(args.week_start) if args.week_start else datetime.date.today()
        violations = run_smoke(week_start, args.location, args.export)
    except SchedulingError as exc:
        raise SystemExit(f"[schedule][error] {exc.code}: {exc.message}") from exc
    if violations and args.strict:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
