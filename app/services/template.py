"""Excel template for employee uploads."""
import logging
from io import BytesIO
from typing import Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from app.services.row_validator import REQUIRED_HEADERS

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
TEMPLATE_FILENAME = "employee_template.xlsx"

SAMPLE_ROWS = [
    ["John", "Doe", "Male", "USA", 25, "2024-01-15"],
    ["Jane", "Smith", "Female", "Canada", 30, "2024-01-16"],
    ["Mike", "Johnson", "Male", "UK", 28, "2024-01-17"],
]

COLUMN_WIDTHS = {"A": 12, "B": 12, "C": 8, "D": 15, "E": 5, "F": 12}

logger = logging.getLogger(__name__)


def build_workbook(rows: Optional[Sequence[Sequence]] = None, title: str = "Employee Template") -> Workbook:
    """Workbook with the upload headers, a styled header row and ``rows`` below it."""
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = title

    worksheet.append(REQUIRED_HEADERS)
    header_fill = PatternFill(fill_type="solid", fgColor="E6E6FA")
    header_font = Font(bold=True)
    for cell in worksheet[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center")
    worksheet.freeze_panes = "A2"

    for column, width in COLUMN_WIDTHS.items():
        worksheet.column_dimensions[column].width = width

    for row in SAMPLE_ROWS if rows is None else rows:
        worksheet.append(list(row))
    return workbook


def generate_template() -> bytes:
    """Serialized ``.xlsx`` template with sample rows."""
    buffer = BytesIO()
    build_workbook().save(buffer)
    data = buffer.getvalue()
    logger.info(f"📄 Employee template generated: {len(data)} bytes")
    return data
