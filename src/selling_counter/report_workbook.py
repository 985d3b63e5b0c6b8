"""Excel report of the sales ledger and its running totals.

The report is a read-only snapshot for the operator; the CSV artifact stays
the system of record.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Mapping, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from .constants import CSV_COLUMNS, CsvColumn
from .data_manager import serialize_sale

if TYPE_CHECKING:
    from .core_logic import LedgerSnapshot


SALES_SHEET = "Sales"
BY_PRODUCT_SHEET = "ByProduct"
BY_PAYMENT_SHEET = "ByPayment"

REPORT_COLUMNS: Mapping[str, Sequence[str]] = {
    SALES_SHEET: CSV_COLUMNS,
    BY_PRODUCT_SHEET: [CsvColumn.PRODUCT_NAME.value, CsvColumn.QUANTITY.value, CsvColumn.PRICE.value],
    BY_PAYMENT_SHEET: [CsvColumn.PAYMENT_METHOD.value, CsvColumn.QUANTITY.value],
}


def _write_sheet(workbook: Workbook, title: str, rows: Iterable[Sequence[object]]) -> None:
    sheet = workbook.create_sheet(title=title)
    bold_font = Font(bold=True)
    for col_idx, column_name in enumerate(REPORT_COLUMNS[title], 1):
        cell = sheet.cell(row=1, column=col_idx)
        cell.value = column_name
        cell.font = bold_font
    for row in rows:
        sheet.append(list(row))


def build_report_workbook(snapshot: "LedgerSnapshot") -> Workbook:
    """Lay out rows, per-product totals, and per-payment totals on three sheets."""

    workbook = openpyxl.Workbook()
    # Remove the default sheet openpyxl generates so we can create ours.
    if "Sheet" in workbook.sheetnames:
        del workbook["Sheet"]

    _write_sheet(workbook, SALES_SHEET, (serialize_sale(row) for row in snapshot.rows))
    _write_sheet(
        workbook,
        BY_PRODUCT_SHEET,
        ([total.product_name, total.total_quantity, total.price] for total in snapshot.by_product),
    )
    _write_sheet(
        workbook,
        BY_PAYMENT_SHEET,
        ([total.payment_method, total.total_quantity] for total in snapshot.by_payment),
    )
    return workbook


def save_report_workbook(workbook: Workbook, destination: Path, *, overwrite: bool = False) -> Path:
    """Persist ``workbook`` at ``destination``, creating parent directories.

    Raises:
        FileExistsError: If the file exists and ``overwrite`` is ``False``.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing report: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(destination)
    return destination
