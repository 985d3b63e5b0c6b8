"""Shared pytest fixtures and utilities for Selling Counter tests."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Callable, Iterator, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from selling_counter import cli, core_logic, data_manager, mirror  # noqa: E402
from selling_counter.constants import PaymentMethod  # noqa: E402

CASH = PaymentMethod.CASH.value
CARD = PaymentMethod.CARD.value


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.StoreSettings:
    """Local-only settings pointing at an isolated data directory."""

    return data_manager.StoreSettings(data_dir=tmp_path / "data")


@pytest.fixture
def store(settings: data_manager.StoreSettings) -> data_manager.LedgerStore:
    return data_manager.LedgerStore(settings)


@pytest.fixture
def memory_sink() -> mirror.MemoryObjectSink:
    return mirror.MemoryObjectSink()


@pytest.fixture
def mirrored_store(
    settings: data_manager.StoreSettings, memory_sink: mirror.MemoryObjectSink
) -> data_manager.LedgerStore:
    return data_manager.LedgerStore(settings, memory_sink)


@pytest.fixture
def context(
    settings: data_manager.StoreSettings, store: data_manager.LedgerStore
) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and store."""

    return core_logic.RuntimeContext(settings=settings, store=store)


@pytest.fixture
def sale_row_factory() -> Callable[..., data_manager.SaleRow]:
    """Factory producing sale rows with sensible defaults."""

    def _make(
        product_name: str = "아메리카노",
        price: int = 3000,
        quantity: int = 1,
        payment_method: Optional[str] = None,
    ) -> data_manager.SaleRow:
        return data_manager.SaleRow(
            product_name=product_name,
            price=price,
            quantity=quantity,
            payment_method=CASH if payment_method is None else payment_method,
        )

    return _make


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="selling-counter", description="Selling Counter")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
