"""
Export Service - XLSX reports (openpyxl)

One row per order with its items flattened into joined cells, and a remittance
ledger sheet. Text cells are neutralized against formula injection.
"""
import io
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from app.db.models.order import Order
from app.db.models.remittance import Remittance
from app.state_machine.states import RemittanceStatus


# ==================== Styles ====================

_HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
_HEADER_FONT = Font(name="Arial", bold=True, color="FFFFFF", size=11)
_TITLE_FONT = Font(name="Arial", bold=True, size=14)
_SUBTITLE_FONT = Font(name="Arial", bold=False, size=10, color="666666")
_TOTAL_FONT = Font(name="Arial", bold=True, size=11)
_TOTAL_FILL = PatternFill(start_color="D9E2F3", end_color="D9E2F3", fill_type="solid")
_AMOUNT_FORMAT = "#,##0.00"

_THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

_TEXT_ALIGN = Alignment(horizontal="left", vertical="center", wrap_text=True)
_NUMBER_ALIGN = Alignment(horizontal="right", vertical="center")

ORDER_HEADERS = [
    "Invoice",
    "Order ID",
    "Created",
    "Country",
    "City",
    "Customer",
    "Status",
    "Driver",
    "Created by",
    "Products",
    "Quantities",
    "Currency",
    "Discount",
    "Total",
    "Collected",
    "Delivered at",
]

REMITTANCE_HEADERS = [
    "Remittance ID",
    "Requester",
    "Role",
    "Status",
    "Currency",
    "Requested",
    "Sent amount",
    "Created",
    "Approved at",
    "Sent at",
    "Note",
]

# Leading characters that make Excel evaluate a cell as a formula
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_text(value: str) -> str:
    """Prefix a quote to text Excel would otherwise run as a formula."""
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


def _auto_fit_columns(ws: Any) -> None:
    for col_cells in ws.columns:
        col_letter = get_column_letter(col_cells[0].column)
        max_length = max((len(str(c.value)) for c in col_cells if c.value is not None), default=0)
        ws.column_dimensions[col_letter].width = min(max(max_length + 4, 10), 50)


def _style_row(ws: Any, row: int, col_count: int, font=None, fill=None) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        if font is not None:
            cell.font = font
        if fill is not None:
            cell.fill = fill
        if cell.number_format != _AMOUNT_FORMAT:
            cell.alignment = _TEXT_ALIGN
        cell.border = _THIN_BORDER


def _write_title(ws: Any, title: str, subtitle: str) -> int:
    """Title and subtitle in the first rows; returns the header row"""
    ws.cell(row=1, column=1, value=title).font = _TITLE_FONT
    ws.cell(row=2, column=1, value=subtitle).font = _SUBTITLE_FONT
    return 4


def _write_headers(ws: Any, row: int, headers: list[str]) -> None:
    for col, header in enumerate(headers, 1):
        ws.cell(row=row, column=col, value=header)
    _style_row(ws, row, len(headers), font=_HEADER_FONT, fill=_HEADER_FILL)


def _amount_cell(ws: Any, row: int, column: int, value) -> None:
    cell = ws.cell(row=row, column=column, value=float(value) if value is not None else None)
    cell.number_format = _AMOUNT_FORMAT
    cell.alignment = _NUMBER_ALIGN


def _fmt_dt(value: datetime | None) -> str | None:
    return value.strftime("%Y-%m-%d %H:%M") if value else None


def _workbook_bytes(wb: Workbook) -> bytes:
    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def order_export_row(order: Order) -> list[Any]:
    """Flatten an order: item products and quantities joined with ", "."""
    products = ", ".join(
        (item.product.name if item.product is not None else f"#{item.product_id}")
        for item in order.items
    )
    quantities = ", ".join(str(item.quantity) for item in order.items)
    return [
        order.invoice_number,
        order.id,
        _fmt_dt(order.created_at),
        order.country,
        _sanitize_text(order.city or ""),
        _sanitize_text(order.customer_name or ""),
        order.status.value,
        _sanitize_text(order.driver.name) if order.driver is not None else "",
        _sanitize_text(order.created_by.name) if order.created_by is not None else "",
        _sanitize_text(products),
        quantities,
        order.currency,
        order.discount,
        order.total,
        order.collected_amount,
        _fmt_dt(order.delivered_at),
    ]


def generate_orders_excel(
    orders: Iterable[Order],
    total_amount: Decimal,
    total_currency: str,
) -> bytes:
    """
    Orders workbook, one row per order, with a totals row.

    Args:
        orders: orders with items, driver and creator loaded
        total_amount: grand total of the exported orders, already converted
        total_currency: currency of ``total_amount``
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Orders"

    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    header_row = _write_title(ws, "Orders export", f"Generated {generated}")
    _write_headers(ws, header_row, ORDER_HEADERS)
    col_count = len(ORDER_HEADERS)
    amount_columns = {13, 14, 15}

    row = header_row
    count = 0
    for order in orders:
        row += 1
        count += 1
        for col, value in enumerate(order_export_row(order), 1):
            if col in amount_columns:
                _amount_cell(ws, row, col, value)
            else:
                ws.cell(row=row, column=col, value=value)
        _style_row(ws, row, col_count)

    total_row = row + 1
    ws.cell(row=total_row, column=1, value="Total")
    ws.cell(row=total_row, column=2, value=count)
    ws.cell(row=total_row, column=12, value=total_currency)
    _amount_cell(ws, total_row, 14, total_amount)
    _style_row(ws, total_row, col_count, font=_TOTAL_FONT, fill=_TOTAL_FILL)

    _auto_fit_columns(ws)
    return _workbook_bytes(wb)


def generate_remittances_excel(remittances: Iterable[Remittance]) -> bytes:
    """Remittance ledger with a per-currency sent total"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Remittances"

    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    header_row = _write_title(ws, "Remittances", f"Generated {generated}")
    _write_headers(ws, header_row, REMITTANCE_HEADERS)
    col_count = len(REMITTANCE_HEADERS)

    sent_totals: dict[str, Decimal] = {}
    row = header_row
    for r in remittances:
        row += 1
        requester = r.requester.name if r.requester is not None else f"#{r.requester_id}"
        values = [
            r.id,
            _sanitize_text(requester),
            r.role.value,
            r.status.value,
            r.currency,
            None,
            None,
            _fmt_dt(r.created_at),
            _fmt_dt(r.approved_at),
            _fmt_dt(r.sent_at),
            _sanitize_text(r.note or ""),
        ]
        for col, value in enumerate(values, 1):
            ws.cell(row=row, column=col, value=value)
        _amount_cell(ws, row, 6, r.requested_amount)
        _amount_cell(ws, row, 7, r.amount if r.status == RemittanceStatus.SENT else None)
        _style_row(ws, row, col_count)
        if r.status == RemittanceStatus.SENT:
            sent_totals[r.currency] = sent_totals.get(r.currency, Decimal("0")) + Decimal(str(r.amount))

    for currency, amount in sorted(sent_totals.items()):
        row += 1
        ws.cell(row=row, column=1, value="Total sent")
        ws.cell(row=row, column=5, value=currency)
        _amount_cell(ws, row, 7, amount)
        _style_row(ws, row, col_count, font=_TOTAL_FONT, fill=_TOTAL_FILL)

    _auto_fit_columns(ws)
    return _workbook_bytes(wb)
