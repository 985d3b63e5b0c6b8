"""Domain constants shared across the Selling Counter layers.

The CSV column labels and payment method values are part of the on-disk
format. Changing them requires migrating every existing ``sales.csv``.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


BOM = "\ufeff"
LEDGER_FILE_NAME = "sales.csv"
DOWNLOAD_FILE_NAME = "sales.csv"
REPORT_FILE_NAME = "sales_report.xlsx"

# Directory used when the host only allows writes under the temp dir.
RESTRICTED_DATA_DIR_NAME = "selling_counter_data"
DEFAULT_DATA_DIR_NAME = "data"

DEFAULT_MIRROR_KEY = LEDGER_FILE_NAME
DEFAULT_MIRROR_TIMEOUT = 5.0

ENV_DATA_DIR = "SALES_DATA_DIR"
ENV_MIRROR_URL = "SALES_MIRROR_URL"
ENV_MIRROR_KEY = "SALES_MIRROR_KEY"
ENV_MIRROR_TOKEN = "SALES_MIRROR_TOKEN"
ENV_MIRROR_TIMEOUT = "SALES_MIRROR_TIMEOUT"
ENV_RESTRICTED_FS = "VERCEL"


class CsvColumn(str, Enum):
    """Enumerate the ledger columns in their fixed on-disk order."""

    PRODUCT_NAME = "상품명"
    PRICE = "가격"
    QUANTITY = "수량"
    PAYMENT_METHOD = "현금/카드"


CSV_COLUMNS: tuple[str, ...] = tuple(column.value for column in CsvColumn)


class PaymentMethod(str, Enum):
    """Enumerate the payment methods accepted for new sales."""

    CASH = "현금"
    CARD = "카드"

    @classmethod
    def parse(cls, raw: object) -> Optional["PaymentMethod"]:
        """Match either a stored value (``현금``) or a member name (``CASH``)."""

        if not isinstance(raw, str):
            return None
        for member in cls:
            if raw == member.value or raw == member.name:
                return member
        return None


__all__ = [
    "BOM",
    "LEDGER_FILE_NAME",
    "DOWNLOAD_FILE_NAME",
    "REPORT_FILE_NAME",
    "RESTRICTED_DATA_DIR_NAME",
    "DEFAULT_DATA_DIR_NAME",
    "DEFAULT_MIRROR_KEY",
    "DEFAULT_MIRROR_TIMEOUT",
    "ENV_DATA_DIR",
    "ENV_MIRROR_URL",
    "ENV_MIRROR_KEY",
    "ENV_MIRROR_TOKEN",
    "ENV_MIRROR_TIMEOUT",
    "ENV_RESTRICTED_FS",
    "CsvColumn",
    "CSV_COLUMNS",
    "PaymentMethod",
]
