from __future__ import annotations

import csv
import datetime
import json
from pathlib import Path
from typing import Optional

from scheduling.grid import WeekGrid
from scheduling.month import MonthRollup
from shifts import shift_label


DATA_DIR = Path(__file__).resolve().parent / "data" / "exports"
EXPORT_FORMATS = {"csv", "json"}


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def _target_dir(directory: Optional[Path]) -> Path:
    target = Path(directory) if directory is not None else DATA_DIR
    target.mkdir(parents=True, exist_ok=True)
    return target


def _check_format(format: str) -> str:
    format = (format or "").lower()
    if format not in EXPORT_FORMATS:
        raise ValueError("format must be 'csv' or 'json'")
    return format


def export_week_grid(grid: WeekGrid, format: str = "csv", directory: Optional[Path] = None) -> Path:
    """Write one week's grid and its day counts; returns the file path."""
    format = _check_format(format)
    filename = _target_dir(directory) / f"week_{grid.week_start.isoformat()}_{_timestamp()}.{format}"
    if format == "json":
        payload = grid.to_dict()
        payload["generated_at"] = datetime.datetime.now(datetime.timezone.utc).isoformat()
        filename.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return filename

    dates = grid.dates
    with filename.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(["employee_id", "name", "team", "guest"] + [date_.isoformat() for date_ in dates])
        for row in grid.rows:
            writer.writerow(
                [row.employee_id, row.name, row.team.value, "yes" if row.is_guest else ""]
                + [shift_label(cell.effective_shift) for cell in row.cells]
            )
        writer.writerow([])
        for label, attr in (("AM", "am"), ("PM", "pm"), ("Cover AM", "ext_am"), ("Cover PM", "ext_pm")):
            writer.writerow(["", label, "", ""] + [getattr(counts, attr) for counts in grid.counts])
    return filename


def export_month(rollup: MonthRollup, format: str = "csv", directory: Optional[Path] = None) -> Path:
    """Write the month's per-day counts and warning types."""
    format = _check_format(format)
    filename = _target_dir(directory) / f"month_{rollup.key}_{_timestamp()}.{format}"
    if format == "json":
        payload = rollup.to_dict()
        payload["generated_at"] = datetime.datetime.now(datetime.timezone.utc).isoformat()
        filename.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return filename

    with filename.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(["date", "weekday", "am", "pm", "cover_am", "cover_pm", "min_am", "min_pm", "warnings"])
        for day in rollup.days:
            writer.writerow(
                [
                    day.date.isoformat(),
                    day.date.strftime("%a"),
                    day.counts.am,
                    day.counts.pm,
                    day.counts.ext_am,
                    day.counts.ext_pm,
                    day.day.min_am,
                    day.day.min_pm,
                    ";".join(result.type.value for result in day.validations if result.is_violation),
                ]
            )
    return filename
