import csv
import io
import json
import logging
import os
import zipfile
from datetime import date, datetime, timezone
from typing import Protocol

from flask import current_app
from openpyxl import Workbook
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from dossier_exports.services.column_values import row_for

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="000091", end_color="000091", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)


class ArtifactBuilder(Protocol):
    """Writes a dataset somewhere durable and returns a reference to it."""

    def build(self, dossiers, columns) -> str:
        ...


def storage_dir() -> str:
    return current_app.config["EXPORT_STORAGE_DIR"]


def artifact_path(artifact_ref: str) -> str:
    return os.path.join(storage_dir(), artifact_ref)


def remove_artifact(artifact_ref):
    """Delete a stored artifact; a missing file is not an error."""
    if not artifact_ref:
        return
    path = artifact_path(artifact_ref)
    if os.path.exists(path):
        os.remove(path)
        logger.debug("Removed artifact %s", artifact_ref)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _text(value):
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Oui" if value else "Non"
    if isinstance(value, datetime):
        return _naive_utc(value).isoformat(sep=" ", timespec="seconds")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _xlsx_cell(value):
    if isinstance(value, bool):
        return "Oui" if value else "Non"
    if isinstance(value, datetime):
        return _naive_utc(value)
    return value


def _json_value(value):
    if isinstance(value, datetime):
        return _naive_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


class TabularArtifactBuilder:
    """One header row of column labels, then one row per dossier.

    Formats:
        csv  → UTF-8 CSV
        xlsx → single styled sheet (openpyxl)
        json → {"columns": [...], "rows": [...]}
        zip  → archive holding the CSV
    """

    EXTENSIONS = {"csv": "csv", "xlsx": "xlsx", "json": "json", "zip": "zip"}

    def __init__(self, format: str, basename: str, directory: str | None = None):
        if format not in self.EXTENSIONS:
            raise ValueError(f"Unsupported export format: {format!r}")
        self.format = format
        self.basename = basename
        self.directory = directory

    @classmethod
    def for_export(cls, export) -> "TabularArtifactBuilder":
        procedure = export.procedure
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        basename = f"dossiers_{procedure.id if procedure else 'x'}_{export.id}_{stamp}"
        return cls(export.format, basename)

    @property
    def filename(self) -> str:
        return f"{self.basename}.{self.EXTENSIONS[self.format]}"

    def build(self, dossiers, columns) -> str:
        headers = [c.label for c in columns]
        rows = [row_for(columns, d) for d in dossiers]
        payload = getattr(self, f"_render_{self.format}")(headers, rows, columns)

        directory = self.directory or storage_dir()
        os.makedirs(directory, exist_ok=True)
        with open(os.path.join(directory, self.filename), "wb") as fh:
            fh.write(payload)
        logger.info("Wrote %s (%d rows, %d columns)", self.filename, len(rows), len(columns))
        return self.filename

    # ── Renderers ────────────────────────────────────────────────────────

    def _render_csv(self, headers, rows, columns) -> bytes:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(headers)
        for row in rows:
            writer.writerow([_text(v) for v in row])
        return buf.getvalue().encode("utf-8")

    def _render_zip(self, headers, rows, columns) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(f"{self.basename}.csv", self._render_csv(headers, rows, columns))
        return buf.getvalue()

    def _render_json(self, headers, rows, columns) -> bytes:
        document = {
            "columns": [{"h_id": c.h_id, "label": c.label} for c in columns],
            "rows": [[_json_value(v) for v in row] for row in rows],
        }
        return json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")

    def _render_xlsx(self, headers, rows, columns) -> bytes:
        wb = Workbook()
        ws = wb.active
        ws.title = "Dossiers"

        for col, header in enumerate(headers, 1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.border = THIN_BORDER

        for r, row in enumerate(rows, 2):
            for col, value in enumerate(row, 1):
                ws.cell(row=r, column=col, value=_xlsx_cell(value)).border = THIN_BORDER

        for col, header in enumerate(headers, 1):
            width = max([len(header)] + [len(_text(row[col - 1])) for row in rows])
            ws.column_dimensions[get_column_letter(col)].width = min(max(width + 4, 12), 60)
        ws.freeze_panes = "A2"

        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()
