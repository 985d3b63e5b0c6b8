"""Business logic layer for Selling Counter.

This module validates operator input, delegates every read and write to the
:class:`~selling_counter.data_manager.LedgerStore`, and derives the running
totals shown to the operator. Aggregates are recomputed from the full ledger
on each read and are never persisted.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Real
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional

from . import data_manager, log, mirror, report_workbook
from .constants import PaymentMethod


class ValidationError(ValueError):
    """Raised when a sale payload does not have the required shape."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for the resolved settings and the ledger store."""

    settings: data_manager.StoreSettings
    store: data_manager.LedgerStore


@dataclass(frozen=True)
class SaleCommand:
    """Validated operator intent for recording one sale."""

    product_name: str
    price: int
    quantity: int
    payment_method: PaymentMethod


@dataclass(frozen=True)
class ProductTotal:
    """Quantity sold per product; ``price`` is taken from its first sale."""

    product_name: str
    total_quantity: int
    price: int


@dataclass(frozen=True)
class PaymentTotal:
    """Quantity sold per payment method."""

    payment_method: str
    total_quantity: int


@dataclass(frozen=True)
class LedgerSnapshot:
    """Rows and both aggregates computed from a single ledger read."""

    rows: List[data_manager.SaleRow]
    by_product: List[ProductTotal]
    by_payment: List[PaymentTotal]


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> RuntimeContext:
    """Resolve configuration and build the store used by every operation.

    ``config.ini`` is optional: when none is found the environment and
    built-in defaults decide where the ledger lives.

    Args:
        config_path (Path | None): Explicit configuration file. When omitted
            the data layer searches upward from the working directory.
        environ (Mapping[str, str] | None): Environment override, mainly for
            tests. Defaults to :data:`os.environ`.

    Returns:
        RuntimeContext: Settings plus a ready-to-use ledger store.

    Raises:
        FileNotFoundError: If an explicit ``config_path`` does not exist.
        ValueError: If the configured mirror timeout is invalid.
    """

    located_config = data_manager.find_config_file(config_path)
    parser = None
    base_path = None
    if located_config is not None:
        resolved_config = Path(located_config).expanduser().resolve()
        parser = data_manager.read_config(resolved_config)
        base_path = resolved_config.parent

    settings = data_manager.resolve_settings(parser, environ=environ, base_path=base_path)
    store = data_manager.LedgerStore(settings, mirror.build_sink(settings))
    log.info("Loaded runtime context for ledger '%s'", settings.ledger_path)
    return RuntimeContext(settings=settings, store=store)


def _require_number(payload: Mapping[str, Any], field: str) -> int:
    value = payload.get(field)
    # bool is an int subclass but never a valid amount.
    if isinstance(value, bool) or not isinstance(value, Real):
        log.warning("Sale payload rejected: '%s' is not a number", field)
        raise ValidationError(f"'{field}' must be a number")
    try:
        finite = math.isfinite(value)
    except OverflowError:
        # Integers too large for a float are valid JSON but not a usable amount.
        finite = False
    if not finite:
        log.warning("Sale payload rejected: '%s' is not finite", field)
        raise ValidationError(f"'{field}' must be a finite number")
    return math.trunc(value)


def parse_sale_payload(payload: object) -> SaleCommand:
    """Validate a request body and turn it into a :class:`SaleCommand`.

    The payload must carry ``productName`` (a string that is not blank),
    ``price`` and ``quantity`` (finite numbers, truncated toward zero), and
    ``paymentMethod`` (a :class:`PaymentMethod` value or member name).

    Raises:
        ValidationError: If any field is missing or has the wrong type.
    """

    if not isinstance(payload, Mapping):
        log.warning("Sale payload rejected: body is not an object")
        raise ValidationError("Payload must be an object")

    product_name = payload.get("productName")
    if not isinstance(product_name, str) or not product_name.strip():
        log.warning("Sale payload rejected: missing product name")
        raise ValidationError("'productName' must be a non-empty string")

    price = _require_number(payload, "price")
    quantity = _require_number(payload, "quantity")

    payment_method = PaymentMethod.parse(payload.get("paymentMethod"))
    if payment_method is None:
        log.warning("Sale payload rejected: unsupported payment method %r", payload.get("paymentMethod"))
        raise ValidationError(
            "'paymentMethod' must be one of: " + ", ".join(member.value for member in PaymentMethod)
        )

    return SaleCommand(
        product_name=product_name.strip(),
        price=price,
        quantity=quantity,
        payment_method=payment_method,
    )


def build_sale_row(command: SaleCommand) -> data_manager.SaleRow:
    return data_manager.SaleRow(
        product_name=command.product_name,
        price=command.price,
        quantity=command.quantity,
        payment_method=command.payment_method.value,
    )


def record_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.SaleRow:
    """Append a validated sale to the ledger and return the stored row."""

    row = build_sale_row(command)
    context.store.append(row)
    return row


def calculate_product_totals(rows: Iterable[data_manager.SaleRow]) -> List[ProductTotal]:
    """Group quantities by product name in first-seen order.

    The price reported for a product is the one on its first row; later rows
    with a different price only add to the quantity. Names are compared
    exactly, without trimming or case folding.
    """

    quantities: dict[str, int] = {}
    prices: dict[str, int] = {}
    for row in rows:
        if row.product_name not in quantities:
            quantities[row.product_name] = 0
            prices[row.product_name] = row.price
        quantities[row.product_name] += row.quantity

    totals = [
        ProductTotal(product_name=name, total_quantity=quantity, price=prices[name])
        for name, quantity in quantities.items()
    ]
    log.debug("Calculated totals for %d products", len(totals))
    return totals


def calculate_payment_totals(rows: Iterable[data_manager.SaleRow]) -> List[PaymentTotal]:
    """Group quantities by payment method text in first-seen order."""

    quantities: dict[str, int] = {}
    for row in rows:
        quantities[row.payment_method] = quantities.get(row.payment_method, 0) + row.quantity
    return [
        PaymentTotal(payment_method=method, total_quantity=quantity)
        for method, quantity in quantities.items()
    ]


def list_sales(context: RuntimeContext) -> LedgerSnapshot:
    """Load the ledger once and derive both aggregates from that read."""

    rows = context.store.load_all()
    return LedgerSnapshot(
        rows=rows,
        by_product=calculate_product_totals(rows),
        by_payment=calculate_payment_totals(rows),
    )


def reset_ledger(context: RuntimeContext) -> None:
    context.store.reset()


def export_ledger_csv(context: RuntimeContext) -> bytes:
    """Return the downloadable CSV artifact; never empty."""

    return context.store.export_raw()


def probe_ledger_size(context: RuntimeContext) -> int:
    return context.store.artifact_size()


def export_report_workbook(
    context: RuntimeContext,
    destination: Path,
    *,
    overwrite: bool = False,
) -> Path:
    """Write the current rows and aggregates to an ``.xlsx`` report.

    Args:
        context (RuntimeContext): Runtime context providing the store.
        destination (Path): Target workbook path.
        overwrite (bool): Replace an existing file at ``destination``.

    Returns:
        Path: Absolute path of the written workbook.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    snapshot = list_sales(context)
    workbook = report_workbook.build_report_workbook(snapshot)
    saved = report_workbook.save_report_workbook(workbook, destination, overwrite=overwrite)
    log.info("Exported %d sales to report '%s'", len(snapshot.rows), saved)
    return saved
