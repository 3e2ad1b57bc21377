"""
Export of extraction results.

The export document is ``{jobId, generatedAt, items, errors}``; sinks decide
where it goes (JSON file, Excel workbook, memory).
"""

import json
import logging
from pathlib import Path
from typing import Any

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill

from models import OperationSnapshot, utc_now

logger = logging.getLogger(__name__)


def build_export_document(snapshot: OperationSnapshot) -> dict[str, Any]:
    """Serialize a snapshot's results. Partial runs export what was collected."""
    return {
        "jobId": snapshot.target.job_id if snapshot.target else None,
        "generatedAt": utc_now().isoformat(),
        "items": [item.to_dict() for item in snapshot.processed_items],
        "errors": [err.to_dict() for err in snapshot.errors],
    }


class MemorySink:
    """Keeps every written document; handy for tests and embedding."""

    def __init__(self):
        self.documents: list[dict[str, Any]] = []

    @property
    def last(self) -> dict[str, Any] | None:
        return self.documents[-1] if self.documents else None

    def write(self, document: dict[str, Any]) -> None:
        self.documents.append(document)


class JsonFileSink:
    """Write the export document as indented UTF-8 JSON"""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def write(self, document: dict[str, Any]) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        logger.info(f"Exported {len(document['items'])} applicants to {self.path}")
        return self.path


class ExcelResultsSink:
    """Write applicants and errors to an Excel workbook with formatting"""

    APPLICANT_HEADERS = [
        "Profile ID",
        "Name",
        "Headline",
        "Location",
        "Profile URL",
        "Success",
        "Attempts",
        "CV File",
        "Error",
        "Timestamp",
    ]
    APPLICANT_WIDTHS = {
        "A": 25,
        "B": 25,
        "C": 40,
        "D": 20,
        "E": 45,
        "F": 10,
        "G": 10,
        "H": 40,
        "I": 40,
        "J": 28,
    }
    ERROR_HEADERS = ["Profile ID", "Name", "Kind", "Code", "Recoverable", "Message", "Timestamp"]
    ERROR_WIDTHS = {"A": 25, "B": 25, "C": 12, "D": 22, "E": 12, "F": 60, "G": 28}

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def write(self, document: dict[str, Any]) -> Path:
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "Applicants"
        ws.append(self.APPLICANT_HEADERS)
        self._style_header(ws, "4472C4")

        for item in document["items"]:
            ref = item.get("sourceRef") or {}
            profile = item.get("profile") or {}
            cv = item.get("cvDownload") or {}
            ws.append(
                [
                    ref.get("profileId", ""),
                    profile.get("name") or ref.get("name", ""),
                    profile.get("headline") or ref.get("headline", ""),
                    profile.get("location") or ref.get("location", ""),
                    ref.get("profileUrl", ""),
                    "Yes" if item.get("success") else "No",
                    item.get("attempts", 0),
                    cv.get("filePath") or "",
                    item.get("error") or "",
                    item.get("timestamp", ""),
                ]
            )
        self._set_widths(ws, self.APPLICANT_WIDTHS)

        for row in range(2, len(document["items"]) + 2):
            url_cell = ws[f"E{row}"]
            if url_cell.value:
                url_cell.hyperlink = url_cell.value
                url_cell.font = Font(color="0563C1", underline="single")

        errors_ws = wb.create_sheet("Errors")
        errors_ws.append(self.ERROR_HEADERS)
        self._style_header(errors_ws, "C0504D")
        for err in document["errors"]:
            ref = err.get("itemRef") or {}
            errors_ws.append(
                [
                    ref.get("profileId", ""),
                    ref.get("name", ""),
                    err.get("errorKind", ""),
                    err.get("errorCode", ""),
                    "Yes" if err.get("recoverable") else "No",
                    err.get("message", ""),
                    err.get("timestamp", ""),
                ]
            )
        self._set_widths(errors_ws, self.ERROR_WIDTHS)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        wb.save(self.path)
        logger.info(
            f"Exported {len(document['items'])} applicants and "
            f"{len(document['errors'])} errors to {self.path}"
        )
        return self.path

    @staticmethod
    def _style_header(ws, color: str) -> None:
        header_fill = PatternFill(start_color=color, end_color=color, fill_type="solid")
        header_font = Font(bold=True, color="FFFFFF")
        for cell in ws[1]:
            cell.fill = header_fill
            cell.font = header_font
            cell.alignment = Alignment(horizontal="center", vertical="center")

    @staticmethod
    def _set_widths(ws, widths: dict[str, int]) -> None:
        for col, width in widths.items():
            ws.column_dimensions[col].width = width


def sink_for_path(path: str | Path) -> JsonFileSink | ExcelResultsSink:
    """Pick a file sink from the extension (.xlsx for Excel, anything else JSON)."""
    path = Path(path)
    if path.suffix.lower() == ".xlsx":
        return ExcelResultsSink(path)
    return JsonFileSink(path)
