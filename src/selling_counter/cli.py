"""Command-line entry points for Selling Counter.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into calls on the business layer. The same parser
configuration can be reused by tests, scripts, or the ``serve`` command that
exposes the HTTP handlers.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

import uvicorn

from . import core_logic, data_manager, log, web
from .constants import PaymentMethod


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="selling-counter",
        description="Record sales and inspect the Selling Counter ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that modify the ledger."""
    specs = {
        "record": register_record_command(subparsers),
        "reset-all": register_reset_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands such as listings and exports."""
    specs = {
        "list": register_list_command(subparsers),
        "export": register_export_command(subparsers),
        "export-xlsx": register_export_xlsx_command(subparsers),
        "probe": register_probe_command(subparsers),
        "serve": register_serve_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_amount(raw: str) -> int | float:
    """Parse a CLI amount, keeping integers exact and accepting decimals."""
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid amount: '{raw}'") from None


def register_record_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``record``."""
    name = "record"
    help_text = "Record a sale in the ledger."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-name", required=True)
        parser.add_argument("--price", type=parse_amount, required=True)
        parser.add_argument("--quantity", type=parse_amount, required=True)
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod] + [member.name for member in PaymentMethod],
            required=True,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_record)


def register_reset_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reset-all``."""
    name = "reset-all"
    help_text = "Delete every recorded sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reset)


def register_list_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``list``."""
    name = "list"
    help_text = "Print recorded sales and running totals as JSON."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write the raw CSV ledger to a file or stdout."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, default=None, help="Destination file (stdout when omitted).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def register_export_xlsx_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-xlsx``."""
    name = "export-xlsx"
    help_text = "Write sales and totals to an Excel report."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, required=True)
        parser.add_argument("--overwrite", action="store_true", help="Replace an existing report.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_xlsx)


def register_probe_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``probe``."""
    name = "probe"
    help_text = "Print the size in bytes of the downloadable ledger."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_probe)


def register_serve_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``serve``."""
    name = "serve"
    help_text = "Serve the HTTP API used by the browser UI."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--host", default="127.0.0.1")
        parser.add_argument("--port", type=int, default=8000)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_serve)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_record(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into the same payload shape the HTTP API accepts."""
    return {
        "productName": args.product_name,
        "price": args.price,
        "quantity": args.quantity,
        "paymentMethod": args.payment_method,
    }


def run_record(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Validate and record a sale via the BLL."""
    command = core_logic.parse_sale_payload(translate_record(args))
    core_logic.record_sale(context, command)
    return 0


def run_reset(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.reset_ledger(context)
    return 0


def run_list(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the ledger snapshot as JSON."""
    snapshot = core_logic.list_sales(context)
    print(json.dumps(web.snapshot_payload(snapshot), ensure_ascii=False, indent=2))
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the CSV artifact to ``--output`` or to stdout."""
    content = core_logic.export_ledger_csv(context)
    output: Optional[Path] = getattr(args, "output", None)
    if output is None:
        sys.stdout.buffer.write(content)
        sys.stdout.buffer.flush()
    else:
        output = output.expanduser().resolve()
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(content)
        log.info("Exported sales ledger to '%s'", output)
    return 0


def run_export_xlsx(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.export_report_workbook(context, args.output, overwrite=args.overwrite)
    return 0


def run_probe(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(core_logic.probe_ledger_size(context))
    return 0


def run_serve(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Run the HTTP API until interrupted."""
    log.info("Serving sales API on http://%s:%d", args.host, args.port)
    uvicorn.run(web.create_app(context), host=args.host, port=args.port)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.ValidationError):
        log.error("%s", error)
        return 2
    if isinstance(error, (data_manager.StorageUnavailable, FileNotFoundError)):
        log.error("%s", error)
        return 3
    if isinstance(error, FileExistsError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":
    sys.exit(main())
