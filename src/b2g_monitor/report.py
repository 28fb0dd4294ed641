"""Spreadsheet report for tracked apps.

One worksheet per tracked app:

    row 1        Name | PID | PSS | USS
    rows 2..n+1  one row per poll
    (2 blank)    Average PSS / Average USS
    (2 blank)    MAX PSS / MAX USS
    (2 blank)    Time spent for report collection

Summary values are formulas over rows 2..n+1 so the file can be recomputed
in any spreadsheet application.
"""

import re
from pathlib import Path

import structlog
from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.worksheet.worksheet import Worksheet

from b2g_monitor.formatting import format_elapsed
from b2g_monitor.session import SessionState, TrackedAppSeries

log = structlog.get_logger()

HEADERS = ("Name", "PID", "PSS", "USS")
PSS_COLUMN = "C"
USS_COLUMN = "D"
ELAPSED_LABEL = "Time spent for report collection"

# Excel forbids these in sheet titles and caps them at 31 characters
_INVALID_TITLE_CHARS = re.compile(r"[\\/*?:\[\]]")


def _sheet_title(name: str, used: set[str]) -> str:
    base = _INVALID_TITLE_CHARS.sub("_", name)[:31] or "app"
    title = base
    n = 2
    while title.lower() in used:
        suffix = f"~{n}"
        title = base[: 31 - len(suffix)] + suffix
        n += 1
    used.add(title.lower())
    return title


def summary_formulas(sample_count: int) -> list[tuple[str, str]]:
    """Return (label, formula) pairs over data rows 2..sample_count+1."""
    last = sample_count + 1
    pss = f"{PSS_COLUMN}2:{PSS_COLUMN}{last}"
    uss = f"{USS_COLUMN}2:{USS_COLUMN}{last}"
    return [
        ("Average PSS", f"=AVERAGE({pss})"),
        ("Average USS", f"=AVERAGE({uss})"),
        ("MAX PSS", f"=MAX({pss})"),
        ("MAX USS", f"=MAX({uss})"),
    ]


def _write_series(ws: Worksheet, series: TrackedAppSeries, elapsed: str) -> None:
    ws.append(HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for sample in series.samples:
        ws.append((series.name, sample.pid, sample.pss, sample.uss))

    if not series.samples:
        return

    average_pss, average_uss, max_pss, max_uss = summary_formulas(len(series.samples))
    for group in ((average_pss, average_uss), (max_pss, max_uss), ((ELAPSED_LABEL, elapsed),)):
        ws.append(())
        ws.append(())
        for label, value in group:
            ws.append((None, label, value))


def build_report(state: SessionState, finished_at: float) -> Workbook:
    """Build the report workbook from accumulated session state."""
    wb = Workbook()
    wb.remove(wb.active)

    elapsed = format_elapsed(state.started_at, finished_at)
    used: set[str] = set()
    for series in state.series.values():
        ws = wb.create_sheet(title=_sheet_title(series.name, used))
        _write_series(ws, series, elapsed)

    return wb


def write_report(workbook: Workbook, path: Path) -> Path:
    """Save the workbook in a single write, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(path)
    log.info("report_written", path=str(path), sheets=len(workbook.sheetnames))
    return path
