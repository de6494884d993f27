"""Command-line entry points for the store ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing report rows. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, ledger, log, reporting
from .constants import ExpenseCategory
from .exceptions import BusinessRuleViolation, LedgerError, NotFoundError, ValidationError


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutating: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="store-ledger",
        description="Inventory, sales, and expense ledger for a single store.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini upwards).",
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


def _simple_spec(
    name: str,
    help_text: str,
    arguments: Sequence[tuple[Sequence[str], Dict[str, Any]]],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    mutating: bool,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        for flags, options in arguments:
            parser.add_argument(*flags, **options)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutating=mutating)


RANGE_ARGUMENTS = [
    (("--from",), {"dest": "date_from", "default": None, "help": "First day to include (YYYY-MM-DD)."}),
    (("--to",), {"dest": "date_to", "default": None, "help": "Last day to include (YYYY-MM-DD)."}),
]

SEARCH_ARGUMENT = (("--search",), {"default": None, "help": "Case-insensitive substring filter."})


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as checkout and replenishment."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "checkout": register_checkout_command(subparsers),
        "replenish": register_replenish_command(subparsers),
        "correct": register_correct_command(subparsers),
        "delete-sale": register_delete_sale_command(subparsers),
        "update-sale": register_update_sale_command(subparsers),
        "add-expense": register_add_expense_command(subparsers),
        "update-expense": register_update_expense_command(subparsers),
        "delete-expense": register_delete_expense_command(subparsers),
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
        "sales": register_sales_command(subparsers),
        "expenses": register_expenses_command(subparsers),
        "summary": register_summary_command(subparsers),
        "top-products": register_top_products_command(subparsers),
        "weekly": register_weekly_command(subparsers),
        "composition": register_composition_command(subparsers),
        "valuation": register_valuation_command(subparsers),
        "movement": register_movement_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    return _simple_spec(
        "add-product",
        "Register a new product with zero stock.",
        [
            (("--name",), {"required": True}),
            (("--buy-price",), {"required": True}),
            (("--sell-price",), {"required": True}),
        ],
        run_add_product,
        mutating=True,
    )


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    return _simple_spec(
        "update-product",
        "Change a product's name or prices (stock moves via replenish/correct).",
        [
            (("--product-id",), {"required": True}),
            (("--name",), {"default": None}),
            (("--buy-price",), {"default": None}),
            (("--sell-price",), {"default": None}),
        ],
        run_update_product,
        mutating=True,
    )


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    return _simple_spec(
        "delete-product",
        "Remove a product; sales and expenses keep their history.",
        [(("--product-id",), {"required": True})],
        run_delete_product,
        mutating=True,
    )


def register_checkout_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``checkout``."""
    return _simple_spec(
        "checkout",
        "Record a sale from one or more cart lines.",
        [
            (("--customer",), {"default": None, "help": "Customer name (defaults to General)."}),
            (
                ("--item",),
                {
                    "dest": "items",
                    "action": "append",
                    "required": True,
                    "metavar": "PRODUCT_ID:QTY[:DISCOUNT]",
                    "help": "Cart line; repeat for several products. DISCOUNT is per unit.",
                },
            ),
        ],
        run_checkout,
        mutating=True,
    )


def register_replenish_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``replenish``."""
    return _simple_spec(
        "replenish",
        "Add purchased units to stock and record their cost.",
        [
            (("--product-id",), {"required": True}),
            (("--quantity",), {"required": True}),
            (("--note",), {"default": None}),
            (("--date",), {"dest": "expense_date", "default": None, "help": "Purchase date (YYYY-MM-DD)."}),
        ],
        run_replenish,
        mutating=True,
    )


def register_correct_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``correct``."""
    return _simple_spec(
        "correct",
        "Take mis-entered units out of stock and reverse their cost.",
        [
            (("--product-id",), {"required": True}),
            (("--quantity",), {"required": True}),
            (("--reason",), {"required": True}),
        ],
        run_correct,
        mutating=True,
    )


def register_delete_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-sale``."""
    return _simple_spec(
        "delete-sale",
        "Delete a sale and its lines (stock is not restored).",
        [(("--sale-id",), {"required": True})],
        run_delete_sale,
        mutating=True,
    )


def register_update_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-sale``."""
    return _simple_spec(
        "update-sale",
        "Correct the customer name on a sale.",
        [
            (("--sale-id",), {"required": True}),
            (("--customer",), {"required": True}),
        ],
        run_update_sale,
        mutating=True,
    )


def register_add_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-expense``."""
    return _simple_spec(
        "add-expense",
        "Record a manual expense.",
        [
            (("--name",), {"required": True}),
            (("--amount",), {"required": True}),
            (
                ("--category",),
                {"choices": [member.value for member in ExpenseCategory], "default": ExpenseCategory.OPERATIONAL.value},
            ),
            (("--note",), {"default": None}),
            (("--date",), {"dest": "expense_date", "default": None, "help": "Expense date (YYYY-MM-DD)."}),
        ],
        run_add_expense,
        mutating=True,
    )


def register_update_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-expense``."""
    return _simple_spec(
        "update-expense",
        "Edit an expense entry.",
        [
            (("--expense-id",), {"required": True}),
            (("--name",), {"default": None}),
            (("--amount",), {"default": None}),
            (("--category",), {"choices": [member.value for member in ExpenseCategory], "default": None}),
            (("--note",), {"default": None}),
            (("--date",), {"dest": "expense_date", "default": None}),
        ],
        run_update_expense,
        mutating=True,
    )


def register_delete_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-expense``."""
    return _simple_spec(
        "delete-expense",
        "Remove an expense entry.",
        [(("--expense-id",), {"required": True})],
        run_delete_expense,
        mutating=True,
    )


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    return _simple_spec("products", "List products and stock levels.", [SEARCH_ARGUMENT], run_products, mutating=False)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    return _simple_spec(
        "sales",
        "List sales, optionally within a date range.",
        [SEARCH_ARGUMENT, *RANGE_ARGUMENTS],
        run_sales,
        mutating=False,
    )


def register_expenses_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expenses``."""
    return _simple_spec(
        "expenses",
        "List expenses, optionally within a date range.",
        [SEARCH_ARGUMENT, *RANGE_ARGUMENTS],
        run_expenses,
        mutating=False,
    )


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    return _simple_spec(
        "summary", "Display revenue, cost, expense, and profit totals.", RANGE_ARGUMENTS, run_summary, mutating=False
    )


def register_top_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``top-products``."""
    return _simple_spec(
        "top-products",
        "Display best-selling products by units sold.",
        [(("--limit",), {"type": int, "default": 5}), *RANGE_ARGUMENTS],
        run_top_products,
        mutating=False,
    )


def register_weekly_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``weekly``."""
    return _simple_spec(
        "weekly",
        "Display daily sales totals for the seven days ending at --end-date.",
        [(("--end-date",), {"default": None, "help": "Last day (YYYY-MM-DD); defaults to today."})],
        run_weekly,
        mutating=False,
    )


def register_composition_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``composition``."""
    return _simple_spec(
        "composition", "Display expense totals per category.", RANGE_ARGUMENTS, run_composition, mutating=False
    )


def register_valuation_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``valuation``."""
    return _simple_spec("valuation", "Display the value of stock on hand.", [], run_valuation, mutating=False)


def register_movement_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``movement``."""
    return _simple_spec(
        "movement",
        "Reconcile a product's stock against its purchases and sales.",
        [(("--product-id",), {"required": True})],
        run_movement,
        mutating=False,
    )


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


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


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def _optional_date(raw: Optional[str], *, label: str) -> Optional[date]:
    if raw is None:
        return None
    return core_logic.to_date(raw, label=label)


def translate_date_range(args: argparse.Namespace) -> reporting.DateRange:
    """Translate ``--from``/``--to`` into an inclusive date range."""
    return reporting.DateRange(
        date_from=_optional_date(getattr(args, "date_from", None), label="--from"),
        date_to=_optional_date(getattr(args, "date_to", None), label="--to"),
    )


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into a register-product request."""
    return {
        "name": args.name,
        "buy_price": core_logic.to_money(args.buy_price, label="Buy price"),
        "sell_price": core_logic.to_money(args.sell_price, label="Sell price"),
    }


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into the product fields to change."""
    fields: Dict[str, Any] = {}
    if args.name is not None:
        fields["name"] = args.name
    if args.buy_price is not None:
        fields["buy_price"] = args.buy_price
    if args.sell_price is not None:
        fields["sell_price"] = args.sell_price
    return fields


def translate_checkout(args: argparse.Namespace) -> ledger.CheckoutCommand:
    """Translate CLI args into a checkout command object."""
    return ledger.CheckoutCommand(
        customer_name=args.customer,
        lines=[ledger.parse_cart_line(raw) for raw in args.items],
    )


def translate_replenish(args: argparse.Namespace) -> ledger.ReplenishCommand:
    """Translate CLI args into a replenish command object."""
    return ledger.ReplenishCommand(
        product_id=args.product_id,
        qty=core_logic.to_quantity(args.quantity),
        note=args.note,
        expense_date=_optional_date(args.expense_date, label="--date"),
    )


def translate_correct(args: argparse.Namespace) -> ledger.CorrectionCommand:
    """Translate CLI args into a stock correction command object."""
    return ledger.CorrectionCommand(
        product_id=args.product_id,
        qty=core_logic.to_quantity(args.quantity),
        reason=args.reason,
    )


def translate_add_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    """Translate CLI args into a manual expense command object."""
    return core_logic.ExpenseCommand(
        name=args.name,
        amount=core_logic.to_money(args.amount),
        category=ExpenseCategory(args.category),
        note=args.note,
        expense_date=_optional_date(args.expense_date, label="--date"),
    )


def translate_update_expense(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into the expense fields to change."""
    fields: Dict[str, Any] = {}
    for key in ("name", "amount", "category", "note", "expense_date"):
        value = getattr(args, key)
        if value is not None:
            fields[key] = value
    return fields


# ---------------------------------------------------------------------------
# Write executors
# ---------------------------------------------------------------------------


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the register-product workflow in the BLL."""
    product = core_logic.register_product(context, **translate_add_product(args))
    print(f"Registered product {product.product_id} ({product.name})")
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the BLL."""
    product = core_logic.update_product(context, args.product_id, translate_update_product(args))
    print(f"Updated product {product.product_id}: {_format_product(product)}")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-product workflow in the BLL."""
    product = core_logic.delete_product(context, args.product_id)
    print(f"Deleted product {product.product_id} ({product.name})")
    return 0


def run_checkout(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the checkout workflow via the ledger writer."""
    receipt = ledger.checkout(context, translate_checkout(args))
    sale = receipt.sale
    print(f"Sale {sale.sale_id} for {sale.customer_name}")
    for item in receipt.items:
        print(f"  {item.product_name} x{item.qty} @ {item.sell_price} = {item.subtotal}")
    print(f"  total={sale.total} cost={sale.cost} profit={sale.profit}")
    return 0


def run_replenish(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the replenish workflow via the ledger writer."""
    change = ledger.replenish_stock(context, translate_replenish(args))
    print(
        f"Stock of {change.product.product_id} is now {change.product.stock}; "
        f"expense {change.expense.expense_id} amount={change.expense.amount}"
    )
    return 0


def run_correct(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock correction workflow via the ledger writer."""
    change = ledger.correct_stock(context, translate_correct(args))
    print(
        f"Stock of {change.product.product_id} is now {change.product.stock}; "
        f"reversal {change.expense.expense_id} amount={change.expense.amount}"
    )
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-sale workflow via the ledger writer."""
    deleted = ledger.delete_sale(context, args.sale_id)
    print(f"Deleted sale {deleted.sale.sale_id} and {len(deleted.items)} item(s); stock unchanged")
    return 0


def run_update_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-sale workflow in the BLL."""
    sale = core_logic.update_sale(context, args.sale_id, args.customer)
    print(f"Sale {sale.sale_id} customer is now {sale.customer_name}")
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-expense workflow in the BLL."""
    expense = core_logic.add_expense(context, translate_add_expense(args))
    print(f"Recorded expense {expense.expense_id}: {_format_expense(expense)}")
    return 0


def run_update_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-expense workflow in the BLL."""
    expense = core_logic.update_expense(context, args.expense_id, translate_update_expense(args))
    print(f"Updated expense {expense.expense_id}: {_format_expense(expense)}")
    return 0


def run_delete_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-expense workflow in the BLL."""
    expense = core_logic.delete_expense(context, args.expense_id)
    print(f"Deleted expense {expense.expense_id} ({expense.name})")
    return 0


# ---------------------------------------------------------------------------
# Read executors
# ---------------------------------------------------------------------------


def _format_product(product: Any) -> str:
    return f"{product.name} buy={product.buy_price} sell={product.sell_price} stock={product.stock}"


def _format_expense(expense: Any) -> str:
    note = f" ({expense.note})" if expense.note else ""
    return f"{expense.expense_date} {expense.category} {expense.name} {expense.amount}{note}"


def run_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List catalog products."""
    if args.search:
        products = core_logic.search_products(context, args.search)
    else:
        products = core_logic.list_products(context)
    for product in products:
        print(f"{product.product_id}  {_format_product(product)}")
    return 0


def run_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List sales within the requested range."""
    date_range = translate_date_range(args)
    snapshot = reporting.take_snapshot(context)
    sales = reporting.sales_in_range(snapshot, date_range)
    if args.search:
        matching = {sale.sale_id for sale in core_logic.search_sales(context, args.search)}
        sales = [sale for sale in sales if sale.sale_id in matching]
    for sale in sales:
        print(
            f"{sale.sale_id}  {sale.created_at} {sale.customer_name} "
            f"total={sale.total} cost={sale.cost} profit={sale.profit}"
        )
    return 0


def run_expenses(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List expenses within the requested range."""
    date_range = translate_date_range(args)
    snapshot = reporting.take_snapshot(context)
    expenses = reporting.expenses_in_range(snapshot, date_range)
    if args.search:
        matching = {expense.expense_id for expense in core_logic.search_expenses(context, args.search)}
        expenses = [expense for expense in expenses if expense.expense_id in matching]
    for expense in expenses:
        print(f"{expense.expense_id}  {_format_expense(expense)}")
    return 0


def _print_figures(figures: Mapping[str, Any]) -> None:
    width = max((len(key) for key in figures), default=0)
    for key, value in figures.items():
        print(f"{key.ljust(width)}  {value}")


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the financial summary."""
    date_range = translate_date_range(args)
    _print_figures(reporting.financial_summary(reporting.take_snapshot(context), date_range))
    return 0


def run_top_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the best sellers."""
    date_range = translate_date_range(args)
    rows = reporting.top_products(reporting.take_snapshot(context), date_range, args.limit)
    for rank, row in enumerate(rows, start=1):
        print(f"{rank}. {row.product_name} ({row.product_id}) qty={row.qty} revenue={row.revenue}")
    return 0


def run_weekly(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print seven days of sales totals."""
    end_date = _optional_date(args.end_date, label="--end-date") or core_logic.now_local(context).date()
    for row in reporting.weekly_trend(reporting.take_snapshot(context), end_date):
        print(f"{row.day.isoformat()}  {row.total}  ({row.sale_count} sale(s))")
    return 0


def run_composition(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print expense totals per category."""
    date_range = translate_date_range(args)
    _print_figures(reporting.expense_composition(reporting.take_snapshot(context), date_range))
    return 0


def run_valuation(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the value of stock on hand."""
    _print_figures(reporting.stock_valuation(reporting.take_snapshot(context)))
    return 0


def run_movement(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the purchase/sale reconciliation for one product."""
    movement = reporting.stock_movement(reporting.take_snapshot(context), args.product_id)
    _print_figures(
        {
            "product_id": movement.product_id,
            "purchased_qty": movement.purchased_qty,
            "purchase_amount": movement.purchase_amount,
            "sold_qty": movement.sold_qty,
            "current_stock": "deleted" if movement.current_stock is None else movement.current_stock,
            "discrepancy": "n/a" if movement.discrepancy is None else movement.discrepancy,
        }
    )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, LedgerError):
        log.error("%s", error)
        print(f"Error: {error.user_message}", file=sys.stderr)
        if isinstance(error, (ValidationError, NotFoundError, BusinessRuleViolation)):
            return 2
        return 1
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        # Writes already saved inside their transaction when AutoSave is on.
        if exit_code == 0 and command_table[args.command].mutating and not context.settings.auto_save:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
