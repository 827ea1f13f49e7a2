"""Command-line entry points for the inventory tracker.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the calls consumed by the business layer, and
printing plain-text tables of the results.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, reports, setup_db
from .data_manager import ProductRow, SaleRow, StorageError


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
        prog="inventory-tracker",
        description="Track product stock and record sales.",
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
    """Declare mutating CLI commands such as sales and product edits."""
    specs = {
        "init-db": register_init_db_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "set-quantity": register_set_quantity_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "sale": register_sale_command(subparsers),
        "delete-sale": register_delete_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "products": register_products_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "sales": register_sales_command(subparsers),
        "monthly-revenue": register_monthly_revenue_command(subparsers),
        "yearly-revenue": register_yearly_revenue_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_init_db_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``init-db``."""
    name = "init-db"
    help_text = "Create the database tables."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sample-data", action="store_true", help="Seed demonstration products and sales.")
        parser.add_argument("--force", action="store_true", help="Drop existing tables first.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init_db)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--quantity", type=int, default=0)
        parser.add_argument("--threshold", type=int, default=None, help="Low stock threshold (default: 10).")
        parser.add_argument("--category", default=None)
        parser.add_argument("--description", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Change the details of an existing product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--price", default=None)
        parser.add_argument("--quantity", type=int, default=None)
        parser.add_argument("--threshold", type=int, default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--description", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_set_quantity_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-quantity``."""
    name = "set-quantity"
    help_text = "Overwrite the stock level of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_quantity)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Delete a product that has no recorded sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale and deduct its stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_delete_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-sale``."""
    name = "delete-sale"
    help_text = "Delete a sale and return its units to stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_sale)


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List products, optionally filtered."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        group = parser.add_mutually_exclusive_group()
        group.add_argument("--category", default=None)
        group.add_argument("--search", default=None, help="Case-insensitive name substring.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "List products at or below their low stock threshold."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "List recorded sales, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, default=None)
        parser.add_argument("--start", type=date.fromisoformat, default=None, help="First day (YYYY-MM-DD).")
        parser.add_argument("--end", type=date.fromisoformat, default=None, help="Last day (YYYY-MM-DD).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales)


def register_monthly_revenue_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``monthly-revenue``."""
    name = "monthly-revenue"
    help_text = "Show revenue figures for one month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--year", type=int, required=True)
        parser.add_argument("--month", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_monthly_revenue)


def register_yearly_revenue_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``yearly-revenue``."""
    name = "yearly-revenue"
    help_text = "Show revenue figures for every month of a year."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--year", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_yearly_revenue)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write inventory and revenue sheets to an Excel workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, required=True)
        parser.add_argument("--year", type=int, default=None, help="Revenue year (default: current year).")
        parser.add_argument("--overwrite", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else None
    return core_logic.load_runtime_context(target)


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


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    payload: Dict[str, Any] = {
        "name": args.name,
        "price": args.price,
        "quantity": args.quantity,
        "category": args.category,
        "description": args.description,
    }
    if args.threshold is not None:
        payload["low_stock_threshold"] = args.threshold
    return payload


def translate_update_product(args: argparse.Namespace, current: ProductRow) -> ProductRow:
    """Overlay the options given on the command line onto ``current``."""
    changes = {
        "name": args.name,
        "price": args.price,
        "quantity": args.quantity,
        "low_stock_threshold": args.threshold,
        "category": args.category,
        "description": args.description,
    }
    return replace(current, **{field: value for field, value in changes.items() if value is not None})


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(product_id=args.product_id, quantity=args.quantity)


def format_product_table(products: Sequence[ProductRow]) -> str:
    """Render products as a fixed-width text table."""
    lines = [f"{'ID':>5}  {'Name':<24} {'Category':<14} {'Price':>10} {'Qty':>6} {'Min':>5}  Status"]
    for product in products:
        lines.append(
            f"{product.product_id:>5}  {product.name[:24]:<24} {(product.category or '-')[:14]:<14} "
            f"{product.price:>10} {product.quantity:>6} {product.low_stock_threshold:>5}  "
            f"{product.stock_status.value}"
        )
    return "\n".join(lines)


def format_sale_table(sales: Sequence[SaleRow]) -> str:
    """Render sales as a fixed-width text table."""
    lines = [f"{'ID':>5}  {'Date':<19} {'Product':<24} {'Qty':>6} {'Total':>12}"]
    for sale in sales:
        when = sale.sale_date.strftime("%Y-%m-%d %H:%M:%S") if sale.sale_date else "-"
        product = sale.product_name or f"<deleted #{sale.product_id}>"
        lines.append(
            f"{sale.sale_id:>5}  {when:<19} {product[:24]:<24} {sale.quantity_sold:>6} {sale.total_amount:>12}"
        )
    return "\n".join(lines)


def format_revenue_table(summaries: Sequence[reports.RevenueSummary]) -> str:
    """Render monthly revenue summaries as a fixed-width text table."""
    lines = [f"{'Month':<10} {'Transactions':>12} {'Items':>8} {'Revenue':>14}"]
    for summary in summaries:
        lines.append(
            f"{summary.month_name:<10} {summary.total_transactions:>12} "
            f"{summary.total_items_sold:>8} {summary.total_revenue:>14}"
        )
    return "\n".join(lines)


def run_init_db(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Create the schema, optionally after dropping it."""
    setup_db.initialize_database(context.engine, force=args.force, sample_data=args.sample_data)
    print(f"Database ready for store '{context.settings.store_name}'.")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    payload = translate_add_product(args)
    product = core_logic.add_product(context, **payload)
    print(f"Added product {product.product_id}: {product.name}")
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the BLL."""
    current = core_logic.get_product(context, args.product_id)
    product = core_logic.update_product(context, translate_update_product(args, current))
    print(format_product_table([product]))
    return 0


def run_set_quantity(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the quantity correction workflow in the BLL."""
    product = core_logic.update_quantity(context, args.product_id, args.quantity)
    print(f"Product {product.product_id} now holds {product.quantity} unit(s).")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-product workflow in the BLL."""
    product = core_logic.delete_product(context, args.product_id)
    print(f"Deleted product {product.product_id}: {product.name}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    command = translate_sale(args)
    sale = core_logic.process_sale(context, command)
    print(f"Recorded sale {sale.sale_id}: {sale.quantity_sold} unit(s) for {sale.total_amount}")
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-sale workflow via the BLL."""
    sale = core_logic.delete_sale(context, args.sale_id)
    print(f"Deleted sale {sale.sale_id}.")
    return 0


def run_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the product listing workflow."""
    if args.category is not None:
        products = core_logic.list_products_by_category(context, args.category)
    elif args.search is not None:
        products = core_logic.search_products(context, args.search)
    else:
        products = core_logic.list_products(context)
    print(format_product_table(products))
    return 0


def run_low_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the low stock listing workflow."""
    products = core_logic.check_low_stock_alerts(context)
    if not products:
        print("No products are low on stock.")
        return 0
    print(format_product_table(products))
    return 0


def run_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale listing workflow."""
    if args.product_id is not None:
        sales = core_logic.list_sales_by_product(context, args.product_id)
    elif args.start is not None or args.end is not None:
        start = args.start or date.min
        end = args.end or date.max
        sales = core_logic.list_sales_in_range(context, start, end)
    else:
        sales = core_logic.list_sales(context)
    print(format_sale_table(sales))
    return 0


def run_monthly_revenue(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the monthly revenue report."""
    summary = reports.monthly_revenue(context, args.year, args.month)
    if summary is None:
        print(f"No sales recorded in {args.year}-{args.month:02d}.")
        return 0
    print(format_revenue_table([summary]))
    return 0


def run_yearly_revenue(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the yearly revenue report."""
    summaries = reports.yearly_revenue(context, args.year)
    totals = reports.summarize_year(args.year, summaries)
    print(format_revenue_table(summaries))
    print(
        f"{'TOTAL':<10} {totals.total_transactions:>12} "
        f"{totals.total_items_sold:>8} {totals.total_revenue:>14}"
    )
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the workbook export."""
    year = args.year if args.year is not None else date.today().year
    destination = reports.export_report(context, args.output, year=year, overwrite=args.overwrite)
    print(f"Report written to {destination}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (core_logic.BusinessRuleViolation, core_logic.ValidationError)):
        log.error("%s", error)
        return 2
    if isinstance(error, (FileNotFoundError, FileExistsError, KeyError)):
        log.error("%s", error)
        return 3
    if isinstance(error, StorageError):
        log.error("Storage failure: %s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    context: Optional[core_logic.RuntimeContext] = None
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
    finally:
        if context is not None:
            core_logic.close_context(context)
