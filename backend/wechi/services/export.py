import csv
import io
from datetime import date
from decimal import Decimal
from typing import Any

from fpdf import FPDF
from openpyxl import Workbook
from openpyxl.styles import Font

EXPORT_HEADERS = ["Date", "Type", "Amount", "Category", "Description"]
EXPORT_FORMATS = {
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "csv": "text/csv",
    "pdf": "application/pdf",
}


def format_amount(amount: Any, currency: str) -> str:
    return f"{Decimal(str(amount or 0)):.2f} {currency}"


def format_row_date(value: Any) -> str:
    if isinstance(value, date):
        return value.isoformat()[:10]
    return str(value or "")[:10]


def export_cells(row: dict[str, Any], currency: str) -> list[str]:
    tx_type = str(row.get("type") or "")
    return [
        format_row_date(row.get("date")),
        tx_type[:1].upper() + tx_type[1:],
        format_amount(row.get("amount"), currency),
        str(row.get("category") or ""),
        str(row.get("description") or ""),
    ]


def safe_pdf_text(value: Any) -> str:
    text = str(value or "").replace("\n", " ").replace("\r", " ")
    return text.encode("latin-1", "replace").decode("latin-1")


def build_xlsx(rows: list[dict[str, Any]], currency: str) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Transactions"
    sheet.append(EXPORT_HEADERS)
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for row in rows:
        sheet.append(export_cells(row, currency))
    for column, width in zip("ABCDE", (12, 10, 18, 20, 48)):
        sheet.column_dimensions[column].width = width

    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


def build_csv(rows: list[dict[str, Any]], currency: str) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADERS)
    for row in rows:
        writer.writerow(export_cells(row, currency))
    return output.getvalue()


def build_pdf(rows: list[dict[str, Any]], currency: str, owner: str, exported_on: date) -> bytes:
    pdf = FPDF(orientation="P", unit="mm", format="A4")
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()
    pdf.set_font("Helvetica", "B", 14)
    pdf.cell(0, 8, "Transactions Export", new_x="LMARGIN", new_y="NEXT")
    pdf.set_font("Helvetica", size=10)
    pdf.multi_cell(0, 6, safe_pdf_text(f"User: {owner} | Exported: {exported_on.isoformat()}"))
    pdf.ln(2)

    widths = [24, 20, 34, 36, 76]
    pdf.set_font("Helvetica", "B", 9)
    for width, label in zip(widths, EXPORT_HEADERS):
        pdf.cell(width, 7, label, border=1)
    pdf.ln()

    pdf.set_font("Helvetica", size=9)
    for row in rows:
        for width, value in zip(widths, export_cells(row, currency)):
            text = safe_pdf_text(value)
            if len(text) > 44:
                text = text[:41] + "..."
            pdf.cell(width, 6, text, border=1)
        pdf.ln()

    return bytes(pdf.output())


def export_transactions_file(
    rows: list[dict[str, Any]],
    export_format: str,
    currency: str,
    owner: str,
    exported_on: date,
) -> dict[str, Any]:
    if export_format == "csv":
        content: bytes | str = build_csv(rows, currency)
    elif export_format == "pdf":
        content = build_pdf(rows, currency, owner, exported_on)
    else:
        export_format = "xlsx"
        content = build_xlsx(rows, currency)
    return {
        "content": content,
        "media_type": EXPORT_FORMATS[export_format],
        "filename": f"wechi-gebi-transactions-{exported_on.isoformat()}.{export_format}",
    }
