"""
Issue report export for import sessions.

Renders a session's errors and warnings as a downloadable document, one
row per issue: errors first, then warnings, each by ascending row index
(ties keep their issue-list order). A session without issues yields a
header-only document.
"""

from io import BytesIO

import pandas as pd
import structlog
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from models.import_session import ImportIssues, IssueSeverity

logger = structlog.get_logger(__name__)

REPORT_COLUMNS = ["row_index", "field", "severity", "code", "message"]

REPORT_CONTENT_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def report_rows(issues: ImportIssues) -> list[dict]:
    """Issues as ordered report rows."""
    rows = []
    for severity, items in (
        (IssueSeverity.ERROR, issues.errors),
        (IssueSeverity.WARNING, issues.warnings),
    ):
        # sorted() is stable, so equal row indexes keep their order
        for issue in sorted(items, key=lambda i: i.row_index):
            rows.append({
                "row_index": issue.row_index,
                "field": issue.field,
                "severity": severity.value,
                "code": issue.code,
                "message": issue.message,
            })
    return rows


def render_report_csv(issues: ImportIssues) -> bytes:
    """
    Render issues as CSV.

    Columns: row_index, field, severity, code, message
    """
    rows = report_rows(issues)
    df = pd.DataFrame(rows, columns=REPORT_COLUMNS)
    content = df.to_csv(index=False, lineterminator="\n").encode("utf-8")

    logger.debug("import_report_rendered", format="csv", rows=len(rows))
    return content


def render_report_xlsx(issues: ImportIssues) -> bytes:
    """Render issues as a single-sheet Excel workbook."""
    rows = report_rows(issues)

    wb = Workbook()
    ws = wb.active
    ws.title = "Issues"

    header_font = Font(bold=True)
    header_fill = PatternFill(start_color="E0E8FF", end_color="E0E8FF", fill_type="solid")
    error_fill = PatternFill(start_color="FFE0E0", end_color="FFE0E0", fill_type="solid")
    warning_fill = PatternFill(start_color="FFF0E0", end_color="FFF0E0", fill_type="solid")

    ws.append(REPORT_COLUMNS)
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill

    for row in rows:
        ws.append([row[column] for column in REPORT_COLUMNS])
        fill = error_fill if row["severity"] == IssueSeverity.ERROR.value else warning_fill
        ws.cell(row=ws.max_row, column=3).fill = fill

    ws.column_dimensions["A"].width = 10
    ws.column_dimensions["B"].width = 20
    ws.column_dimensions["C"].width = 10
    ws.column_dimensions["D"].width = 24
    ws.column_dimensions["E"].width = 80
    ws.freeze_panes = "A2"

    output = BytesIO()
    wb.save(output)

    logger.debug("import_report_rendered", format="xlsx", rows=len(rows))
    return output.getvalue()


def render_report(issues: ImportIssues, fmt: str = "csv") -> bytes:
    """Render issues in the requested format ("csv" or "xlsx")."""
    if fmt == "xlsx":
        return render_report_xlsx(issues)
    return render_report_csv(issues)
