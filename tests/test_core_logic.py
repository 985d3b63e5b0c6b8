"""Unit tests verifying the business logic layer."""

from __future__ import annotations

from unittest.mock import Mock

import openpyxl
import pytest

from selling_counter import core_logic, data_manager, mirror
from selling_counter.constants import PaymentMethod

CASH = PaymentMethod.CASH.value
CARD = PaymentMethod.CARD.value


def _valid_payload(**overrides):
    payload = {"productName": "Latte", "price": 4500, "quantity": 2, "paymentMethod": CARD}
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_reads_explicit_config(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[Storage]\nDataDir = ledger\n", encoding="utf-8")

    context = core_logic.load_runtime_context(config_path, environ={})

    assert context.settings.data_dir == (tmp_path / "ledger").resolve()
    assert context.store.settings is context.settings
    assert context.store.sink is None


def test_load_runtime_context_without_config_uses_environment(tmp_path, monkeypatch):
    monkeypatch.setattr(data_manager, "find_config_file", Mock(return_value=None))
    environ = {
        "SALES_DATA_DIR": str(tmp_path / "env"),
        "SALES_MIRROR_URL": "https://blob.example",
    }

    context = core_logic.load_runtime_context(environ=environ)

    assert context.settings.data_dir == (tmp_path / "env").resolve()
    assert isinstance(context.store.sink, mirror.HttpObjectSink)


def test_load_runtime_context_missing_explicit_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        core_logic.load_runtime_context(tmp_path / "missing.ini", environ={})


# ---------------------------------------------------------------------------
# Payload validation
# ---------------------------------------------------------------------------


def test_parse_sale_payload_builds_command():
    command = core_logic.parse_sale_payload(_valid_payload(productName="  Latte ", price=4500.9, quantity=2.7))

    assert command == core_logic.SaleCommand(
        product_name="Latte",
        price=4500,
        quantity=2,
        payment_method=PaymentMethod.CARD,
    )


def test_parse_sale_payload_accepts_member_names():
    command = core_logic.parse_sale_payload(_valid_payload(paymentMethod="CASH"))
    assert command.payment_method is PaymentMethod.CASH


@pytest.mark.parametrize(
    "payload",
    [
        None,
        ["Latte", 4500, 2, CARD],
        _valid_payload(productName=None),
        _valid_payload(productName="   "),
        _valid_payload(productName=42),
        _valid_payload(price="4500"),
        _valid_payload(price=None),
        _valid_payload(quantity=True),
        _valid_payload(quantity=float("nan")),
        _valid_payload(price=float("inf")),
        _valid_payload(price=10**400),
        _valid_payload(quantity=-(10**400)),
        _valid_payload(paymentMethod="bitcoin"),
        _valid_payload(paymentMethod=None),
        {"productName": "Latte", "price": 4500, "quantity": 2},
    ],
)
def test_parse_sale_payload_rejects_invalid_input(payload):
    with pytest.raises(core_logic.ValidationError):
        core_logic.parse_sale_payload(payload)


def test_invalid_payload_never_reaches_storage(context):
    with pytest.raises(core_logic.ValidationError):
        core_logic.record_sale(context, core_logic.parse_sale_payload(_valid_payload(price="free")))

    assert not context.store.ledger_path.exists()


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def test_aggregates_match_documented_example():
    rows = [
        data_manager.SaleRow("A", 1000, 2, "CASH"),
        data_manager.SaleRow("B", 500, 1, "CARD"),
        data_manager.SaleRow("A", 1000, 3, "CARD"),
    ]

    assert core_logic.calculate_product_totals(rows) == [
        core_logic.ProductTotal("A", total_quantity=5, price=1000),
        core_logic.ProductTotal("B", total_quantity=1, price=500),
    ]
    assert core_logic.calculate_payment_totals(rows) == [
        core_logic.PaymentTotal("CASH", total_quantity=2),
        core_logic.PaymentTotal("CARD", total_quantity=4),
    ]


def test_product_price_is_frozen_from_first_row():
    rows = [
        data_manager.SaleRow("Latte", 4500, 1, CASH),
        data_manager.SaleRow("Latte", 5000, 2, CASH),
    ]

    assert core_logic.calculate_product_totals(rows) == [core_logic.ProductTotal("Latte", 3, 4500)]


def test_grouping_uses_exact_string_equality():
    rows = [
        data_manager.SaleRow("Latte", 4500, 1, CASH),
        data_manager.SaleRow("latte", 4500, 1, CASH + " "),
    ]

    assert [total.product_name for total in core_logic.calculate_product_totals(rows)] == ["Latte", "latte"]
    assert [total.payment_method for total in core_logic.calculate_payment_totals(rows)] == [CASH, CASH + " "]


def test_aggregates_of_empty_ledger_are_empty():
    assert core_logic.calculate_product_totals([]) == []
    assert core_logic.calculate_payment_totals([]) == []


# ---------------------------------------------------------------------------
# Ledger operations
# ---------------------------------------------------------------------------


def test_record_sale_appends_row(context):
    row = core_logic.record_sale(context, core_logic.parse_sale_payload(_valid_payload()))

    assert row == data_manager.SaleRow("Latte", 4500, 2, CARD)
    assert context.store.load_all() == [row]


def test_list_sales_returns_rows_and_aggregates(context):
    for payload in (
        _valid_payload(productName="A", price=1000, quantity=2, paymentMethod=CASH),
        _valid_payload(productName="B", price=500, quantity=1, paymentMethod=CARD),
        _valid_payload(productName="A", price=1000, quantity=3, paymentMethod=CARD),
    ):
        core_logic.record_sale(context, core_logic.parse_sale_payload(payload))

    snapshot = core_logic.list_sales(context)

    assert [row.product_name for row in snapshot.rows] == ["A", "B", "A"]
    assert snapshot.by_product == [
        core_logic.ProductTotal("A", 5, 1000),
        core_logic.ProductTotal("B", 1, 500),
    ]
    assert snapshot.by_payment == [
        core_logic.PaymentTotal(CASH, 2),
        core_logic.PaymentTotal(CARD, 4),
    ]


def test_list_sales_reads_the_store_once():
    rows = [data_manager.SaleRow("A", 1, 1, CASH)]
    store = Mock(name="store")
    store.load_all.return_value = rows
    context = core_logic.RuntimeContext(settings=Mock(name="settings"), store=store)

    snapshot = core_logic.list_sales(context)

    store.load_all.assert_called_once_with()
    assert snapshot.rows == rows


def test_reset_export_and_probe(context):
    core_logic.record_sale(context, core_logic.parse_sale_payload(_valid_payload()))
    assert core_logic.probe_ledger_size(context) == len(core_logic.export_ledger_csv(context))

    core_logic.reset_ledger(context)

    assert core_logic.list_sales(context).rows == []
    assert core_logic.export_ledger_csv(context) == data_manager.empty_artifact()


def test_export_report_workbook_writes_three_sheets(context, tmp_path):
    for payload in (
        _valid_payload(productName="A", price=1000, quantity=2, paymentMethod=CASH),
        _valid_payload(productName="A", price=1000, quantity=3, paymentMethod=CARD),
    ):
        core_logic.record_sale(context, core_logic.parse_sale_payload(payload))

    destination = core_logic.export_report_workbook(context, tmp_path / "reports" / "sales.xlsx")

    workbook = openpyxl.load_workbook(destination)
    assert workbook.sheetnames == ["Sales", "ByProduct", "ByPayment"]
    sales = list(workbook["Sales"].iter_rows(values_only=True))
    assert sales == [
        ("상품명", "가격", "수량", "현금/카드"),
        ("A", 1000, 2, CASH),
        ("A", 1000, 3, CARD),
    ]
    assert list(workbook["ByProduct"].iter_rows(min_row=2, values_only=True)) == [("A", 5, 1000)]
    assert list(workbook["ByPayment"].iter_rows(min_row=2, values_only=True)) == [(CASH, 2), (CARD, 3)]
    assert workbook["Sales"].cell(row=1, column=1).font.bold


def test_export_report_workbook_refuses_to_overwrite(context, tmp_path):
    destination = tmp_path / "sales.xlsx"
    destination.write_bytes(b"existing")

    with pytest.raises(FileExistsError):
        core_logic.export_report_workbook(context, destination)

    core_logic.export_report_workbook(context, destination, overwrite=True)
    assert openpyxl.load_workbook(destination).sheetnames == ["Sales", "ByProduct", "ByPayment"]
