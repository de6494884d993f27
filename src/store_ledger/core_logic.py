"""Business logic layer for the store ledger.

This module owns the runtime context and the three record-owning stores:
the product catalog, the sales store, and the expense journal. Every read
goes through a per-context cache and every write goes through
:func:`write_transaction`, which keeps a journal of compensating actions so
that a failure part-way through leaves no partial rows behind. The
stock-moving operations that span several stores live in
:mod:`store_ledger.ledger`.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import DEFAULT_CUSTOMER_NAME, EXPECTED_SCHEMA_VERSION, ExpenseCategory, IdPrefix
from .exceptions import ContentionError, LedgerError, NotFoundError, PersistenceError, ValidationError
from .locks import ProductLockManager


PRODUCT_FIELD_COLUMNS: Mapping[str, str] = {
    "name": "Name",
    "buy_price": "BuyPrice",
    "sell_price": "SellPrice",
}

EXPENSE_FIELD_COLUMNS: Mapping[str, str] = {
    "name": "Name",
    "amount": "Amount",
    "category": "Category",
    "note": "Note",
    "expense_date": "ExpenseDate",
}


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration, the live workbook, and the concurrency primitives.

    ``guard`` serializes access to the workbook object, which openpyxl does
    not make thread-safe. ``locks`` holds the per-product locks the ledger
    writer takes around its check-then-act sequences.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    locks: Optional[ProductLockManager] = None
    guard: Any = field(default_factory=threading.RLock, repr=False, compare=False)
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.locks is None:
            object.__setattr__(self, "locks", ProductLockManager(self.settings.lock_timeout))


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent for a manually entered expense."""

    name: str
    amount: Decimal
    category: ExpenseCategory
    note: Optional[str] = None
    expense_date: Optional[date] = None
    timestamp: Optional[datetime] = None


class WriteJournal:
    """Ordered record of compensating actions for one write operation."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self._steps: List[tuple[str, Callable[[], None]]] = []

    def __len__(self) -> int:
        return len(self._steps)

    def record(self, description: str, undo: Callable[[], None]) -> None:
        self._steps.append((description, undo))

    def rollback(self) -> None:
        """Replay compensations newest first.

        A compensation that itself fails is logged and the remaining ones
        still run; the caller re-raises the original error afterwards.
        """

        if not self._steps:
            return
        log.warning("Rolling back %d write(s) of '%s'", len(self._steps), self.operation)
        while self._steps:
            description, undo = self._steps.pop()
            try:
                undo()
                log.warning("Rolled back: %s", description)
            except Exception:
                log.exception("Compensation failed during '%s': %s", self.operation, description)


@contextmanager
def store_guard(context: RuntimeContext) -> Iterator[None]:
    """Hold the workbook guard, waiting at most ``LockTimeout`` seconds.

    Raises:
        ContentionError: If another thread keeps the workbook past the timeout.
    """

    if not context.guard.acquire(timeout=context.settings.lock_timeout):
        log.warning("Timed out after %.2fs waiting for the workbook", context.settings.lock_timeout)
        raise ContentionError("The record store is busy with another operation")
    try:
        yield
    finally:
        context.guard.release()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after mutating workbook state.

    With no names every bucket is dropped.
    """

    with store_guard(context):
        if not names:
            context._cache.clear()
            return
        log.debug("Invalidating cache buckets: %s", ", ".join(names))
        for name in names:
            context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "sales")
    if "all" not in bucket:
        all_sales = list(data_manager.iter_sales(context.workbook))
        all_items = list(data_manager.iter_sale_items(context.workbook))
        items_by_sale: Dict[str, List[data_manager.SaleItemRow]] = {}
        for item in all_items:
            items_by_sale.setdefault(item.sale_id, []).append(item)
        bucket["all"] = all_sales
        bucket["by_id"] = {sale.sale_id: sale for sale in all_sales}
        bucket["items"] = all_items
        bucket["items_by_sale"] = items_by_sale
        log.debug(
            "Populated sales cache with %d sales and %d items",
            len(all_sales),
            len(all_items),
        )
    return bucket


def _ensure_expenses_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "expenses")
    if "all" not in bucket:
        all_expenses = list(data_manager.iter_expenses(context.workbook))
        bucket["all"] = all_expenses
        bucket["by_id"] = {expense.expense_id: expense for expense in all_expenses}
        log.debug("Populated expenses cache with %d entries", len(all_expenses))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to operate on a workbook declared with another schema version.

    Raises:
        RuntimeError: If ``config.ini`` declares a version other than
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Save the in-memory workbook to the configured data file."""

    with store_guard(context):
        data_manager.save_workbook(
            context.workbook,
            destination=context.settings.data_file,
        )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook from disk, dropping unsaved edits and caches.

    The product locks carry over so that operations still running against
    the old context keep excluding new ones.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook, locks=context.locks)


@contextmanager
def write_transaction(context: RuntimeContext, operation: str) -> Iterator[WriteJournal]:
    """Run a group of sub-writes as one all-or-nothing unit.

    The block records a compensation for each sub-write on the yielded
    journal. When the block finishes the workbook is saved if ``AutoSave`` is
    on. Any exception replays the journal before propagating; errors that are
    not already :class:`LedgerError` surface as :class:`PersistenceError`.
    """

    journal = WriteJournal(operation)
    with store_guard(context):
        try:
            yield journal
            if context.settings.auto_save:
                persist_context(context)
        except LedgerError:
            journal.rollback()
            raise
        except Exception as exc:
            journal.rollback()
            log.error("'%s' failed in the record store: %s", operation, exc)
            raise PersistenceError(f"{operation} failed: {exc}") from exc
        finally:
            _invalidate_cache(context)


def now_local(context: RuntimeContext) -> datetime:
    """Return the current time in the store's timezone."""

    return datetime.now(context.settings.timezone)


def resolve_timestamp(context: RuntimeContext, candidate: Optional[datetime]) -> datetime:
    if candidate is None:
        return now_local(context)
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=context.settings.timezone)
    return candidate


def generate_id(prefix: IdPrefix, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier such as ``S20250105093000123456`` + 32 hex.

    The timestamp part keeps ids in creation order; the full UUID4 suffix
    keeps ids minted in the same microsecond apart.
    """

    when = when or datetime.now().astimezone()
    return f"{prefix.value}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex.upper()}"


def to_money(value: Any, *, label: str = "Amount") -> Decimal:
    """Coerce user input into a finite :class:`Decimal`."""

    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{label} must be a number, got {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(f"{label} must be a finite number")
    return amount


def to_quantity(value: Any) -> int:
    """Coerce user input into a whole number of units."""

    if isinstance(value, bool):
        raise ValidationError("Quantity must be a whole number")
    if isinstance(value, int):
        return value
    amount = to_money(value, label="Quantity")
    if amount != amount.to_integral_value():
        raise ValidationError(f"Quantity must be a whole number, got {value!r}")
    return int(amount)


def require_positive_quantity(quantity: int) -> None:
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal, *, label: str = "Amount") -> None:
    if amount < Decimal("0"):
        log.error("%s validation failed: %s", label, amount)
        raise ValidationError(f"{label} must be zero or positive")


def require_text(value: Optional[str], *, label: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{label} must not be empty")
    return text


def _matches(haystack: str, query: str) -> bool:
    return query.strip().casefold() in haystack.casefold()


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return every product in sheet order."""

    with store_guard(context):
        return list(_ensure_products_cache(context)["all"])


def search_products(context: RuntimeContext, query: str) -> List[data_manager.ProductRow]:
    """Return products whose name contains ``query``, ignoring case."""

    return [product for product in list_products(context) if _matches(product.name, query)]


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product by id.

    Raises:
        NotFoundError: If the catalog has no such product.
    """

    with store_guard(context):
        product = _ensure_products_cache(context)["by_id"].get(product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise NotFoundError(f"Unknown product id: {product_id}")
    return product


def register_product(
    context: RuntimeContext,
    *,
    name: str,
    buy_price: Any,
    sell_price: Any,
    timestamp: Optional[datetime] = None,
) -> data_manager.ProductRow:
    """Add a product to the catalog with zero stock.

    Stock only ever enters through :func:`store_ledger.ledger.replenish_stock`,
    which also records what it cost.

    Raises:
        ValidationError: If the name is blank or a price is negative.
    """

    clean_name = require_text(name, label="Product name")
    buy = to_money(buy_price, label="Buy price")
    sell = to_money(sell_price, label="Sell price")
    require_nonnegative_money(buy, label="Buy price")
    require_nonnegative_money(sell, label="Sell price")

    moment = resolve_timestamp(context, timestamp)
    product = data_manager.ProductRow(
        product_id=generate_id(IdPrefix.PRODUCT, when=moment),
        name=clean_name,
        buy_price=buy,
        sell_price=sell,
        stock=0,
        created_at=moment.isoformat(),
        updated_at=moment.isoformat(),
    )
    with write_transaction(context, "register product") as journal:
        data_manager.append_product(context.workbook, product)
        journal.record(
            f"remove product {product.product_id}",
            lambda: data_manager.delete_product(context.workbook, product.product_id),
        )
    log.info(
        "Registered product '%s' (%s) buy=%s sell=%s",
        product.product_id,
        product.name,
        product.buy_price,
        product.sell_price,
    )
    return product


def update_product(
    context: RuntimeContext,
    product_id: str,
    fields: Mapping[str, Any],
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.ProductRow:
    """Change a product's name and/or prices.

    Stock cannot be set here; it moves only through checkout, replenishment,
    and correction so their sale and expense rows are never skipped. Past
    sale items keep the name and prices they were sold with.

    Raises:
        ValidationError: For unknown fields, ``stock``, blank names, or
            negative prices.
        NotFoundError: If ``product_id`` is unknown.
    """

    if "stock" in fields:
        raise ValidationError(
            "Stock cannot be edited directly; use replenish or correct stock"
        )
    unknown = sorted(set(fields) - set(PRODUCT_FIELD_COLUMNS))
    if unknown:
        raise ValidationError(f"Unknown product field(s): {', '.join(unknown)}")
    if not fields:
        raise ValidationError("No product fields to update")

    values: Dict[str, Any] = {}
    if "name" in fields:
        values["name"] = require_text(fields["name"], label="Product name")
    for key in ("buy_price", "sell_price"):
        if key in fields:
            label = "Buy price" if key == "buy_price" else "Sell price"
            price = to_money(fields[key], label=label)
            require_nonnegative_money(price, label=label)
            values[key] = price

    with context.locks.hold([product_id]):
        before = get_product(context, product_id)
        moment = resolve_timestamp(context, timestamp)
        column_values = {PRODUCT_FIELD_COLUMNS[key]: value for key, value in values.items()}
        column_values["UpdatedAt"] = moment.isoformat()
        previous = {
            "Name": before.name,
            "BuyPrice": before.buy_price,
            "SellPrice": before.sell_price,
            "UpdatedAt": before.updated_at,
        }
        with write_transaction(context, "update product") as journal:
            data_manager.update_product(context.workbook, product_id, field_values=column_values)
            journal.record(
                f"restore product {product_id}",
                lambda: data_manager.update_product(context.workbook, product_id, field_values=previous),
            )
        updated = get_product(context, product_id)

    log.info("Updated product '%s': %s", product_id, ", ".join(sorted(values)))
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Remove a product from the catalog.

    Sale items and expenses that mention it keep their snapshot data.

    Raises:
        NotFoundError: If ``product_id`` is unknown.
    """

    with context.locks.hold([product_id]):
        product = get_product(context, product_id)
        with write_transaction(context, "delete product") as journal:
            data_manager.delete_product(context.workbook, product_id)
            journal.record(
                f"re-insert product {product_id}",
                lambda: data_manager.append_product(context.workbook, product),
            )
        context.locks.forget(product_id)
    log.info("Deleted product '%s' (%s, stock=%d)", product_id, product.name, product.stock)
    return product


# ---------------------------------------------------------------------------
# Sales store
# ---------------------------------------------------------------------------


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    """Return every sale header in sheet (creation) order."""

    with store_guard(context):
        return list(_ensure_sales_cache(context)["all"])


def search_sales(context: RuntimeContext, query: str) -> List[data_manager.SaleRow]:
    """Return sales whose customer name contains ``query``, ignoring case."""

    return [sale for sale in list_sales(context) if _matches(sale.customer_name, query)]


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRow:
    """Resolve a sale header by id.

    Raises:
        NotFoundError: If no sale has ``sale_id``.
    """

    with store_guard(context):
        sale = _ensure_sales_cache(context)["by_id"].get(sale_id)
    if sale is None:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise NotFoundError(f"Unknown sale id: {sale_id}")
    return sale


def list_sale_items(context: RuntimeContext, sale_id: Optional[str] = None) -> List[data_manager.SaleItemRow]:
    """Return sale lines, either all of them or those owned by ``sale_id``."""

    with store_guard(context):
        bucket = _ensure_sales_cache(context)
        if sale_id is None:
            return list(bucket["items"])
        return list(bucket["items_by_sale"].get(sale_id, []))


def normalize_customer_name(customer_name: Optional[str]) -> str:
    return (customer_name or "").strip() or DEFAULT_CUSTOMER_NAME


def update_sale(context: RuntimeContext, sale_id: str, customer_name: Optional[str]) -> data_manager.SaleRow:
    """Correct the customer name on a sale; financial fields never change."""

    before = get_sale(context, sale_id)
    name = normalize_customer_name(customer_name)
    with write_transaction(context, "update sale") as journal:
        data_manager.update_sale(context.workbook, sale_id, field_values={"CustomerName": name})
        journal.record(
            f"restore customer on sale {sale_id}",
            lambda: data_manager.update_sale(
                context.workbook, sale_id, field_values={"CustomerName": before.customer_name}
            ),
        )
    log.info("Renamed customer on sale '%s' from '%s' to '%s'", sale_id, before.customer_name, name)
    return get_sale(context, sale_id)


# ---------------------------------------------------------------------------
# Expense store
# ---------------------------------------------------------------------------


def list_expenses(context: RuntimeContext) -> List[data_manager.ExpenseRow]:
    """Return every expense entry in sheet order."""

    with store_guard(context):
        return list(_ensure_expenses_cache(context)["all"])


def search_expenses(context: RuntimeContext, query: str) -> List[data_manager.ExpenseRow]:
    """Return expenses whose name contains ``query``, ignoring case."""

    return [expense for expense in list_expenses(context) if _matches(expense.name, query)]


def get_expense(context: RuntimeContext, expense_id: str) -> data_manager.ExpenseRow:
    """Resolve an expense by id.

    Raises:
        NotFoundError: If no expense has ``expense_id``.
    """

    with store_guard(context):
        expense = _ensure_expenses_cache(context)["by_id"].get(expense_id)
    if expense is None:
        log.warning("Expense lookup failed for id '%s'", expense_id)
        raise NotFoundError(f"Unknown expense id: {expense_id}")
    return expense


def to_category(value: Any) -> ExpenseCategory:
    if isinstance(value, ExpenseCategory):
        return value
    try:
        return ExpenseCategory(str(value))
    except ValueError as exc:
        allowed = ", ".join(member.value for member in ExpenseCategory)
        raise ValidationError(f"Unsupported expense category {value!r}; expected one of {allowed}") from exc


def to_date(value: Any, *, label: str = "Date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"{label} must be an ISO date (YYYY-MM-DD), got {value!r}") from exc


def is_ledger_generated(expense: data_manager.ExpenseRow) -> bool:
    """True for purchase entries tagged with the product whose stock they moved."""

    return bool(expense.product_id)


def build_expense_row(
    context: RuntimeContext,
    *,
    name: str,
    amount: Decimal,
    category: ExpenseCategory,
    note: Optional[str],
    expense_date: Optional[date],
    timestamp: datetime,
    product_id: Optional[str] = None,
    quantity: Optional[int] = None,
) -> data_manager.ExpenseRow:
    """Assemble an expense row; the date defaults to the timestamp's local day."""

    day = expense_date or timestamp.astimezone(context.settings.timezone).date()
    return data_manager.ExpenseRow(
        expense_id=generate_id(IdPrefix.EXPENSE, when=timestamp),
        name=name,
        amount=amount,
        category=category.value,
        note=note or None,
        expense_date=day.isoformat(),
        created_at=timestamp.isoformat(),
        product_id=product_id,
        quantity=quantity,
    )


def add_expense(context: RuntimeContext, command: ExpenseCommand) -> data_manager.ExpenseRow:
    """Record a user-entered expense.

    Manual entries are outflows; negative amounts are reserved for the
    reversals the ledger writer generates.

    Raises:
        ValidationError: If the name is blank, the amount is negative or not a
            number, or the category is unsupported.
    """

    name = require_text(command.name, label="Expense name")
    amount = to_money(command.amount)
    require_nonnegative_money(amount)
    category = to_category(command.category)
    expense_date = to_date(command.expense_date, label="Expense date") if command.expense_date else None

    moment = resolve_timestamp(context, command.timestamp)
    expense = build_expense_row(
        context,
        name=name,
        amount=amount,
        category=category,
        note=(command.note or "").strip() or None,
        expense_date=expense_date,
        timestamp=moment,
    )
    with write_transaction(context, "add expense") as journal:
        data_manager.append_expense(context.workbook, expense)
        journal.record(
            f"remove expense {expense.expense_id}",
            lambda: data_manager.delete_expense(context.workbook, expense.expense_id),
        )
    log.info(
        "Recorded %s expense '%s' (%s) amount=%s",
        expense.category,
        expense.expense_id,
        expense.name,
        expense.amount,
    )
    return expense


def update_expense(context: RuntimeContext, expense_id: str, fields: Mapping[str, Any]) -> data_manager.ExpenseRow:
    """Edit a journal entry's name, amount, category, note, or date.

    Entries written by replenish or correct stock only accept a new note;
    their amount and tags must keep matching the stock they moved.

    Raises:
        ValidationError: For unknown fields, invalid values, or a non-note
            edit of a ledger-generated entry.
        NotFoundError: If ``expense_id`` is unknown.
    """

    unknown = sorted(set(fields) - set(EXPENSE_FIELD_COLUMNS))
    if unknown:
        raise ValidationError(f"Unknown expense field(s): {', '.join(unknown)}")
    if not fields:
        raise ValidationError("No expense fields to update")

    before = get_expense(context, expense_id)
    if is_ledger_generated(before) and set(fields) - {"note"}:
        log.warning("Refused edit of ledger-generated expense '%s': %s", expense_id, ", ".join(sorted(fields)))
        raise ValidationError(
            "Stock purchase entries only accept a new note; use replenish or correct stock instead"
        )

    values: Dict[str, Any] = {}
    if "name" in fields:
        values["name"] = require_text(fields["name"], label="Expense name")
    if "amount" in fields:
        amount = to_money(fields["amount"])
        require_nonnegative_money(amount)
        values["amount"] = amount
    if "category" in fields:
        values["category"] = to_category(fields["category"]).value
    if "note" in fields:
        values["note"] = (fields["note"] or "").strip() or None
    if "expense_date" in fields:
        values["expense_date"] = to_date(fields["expense_date"], label="Expense date").isoformat()

    column_values = {EXPENSE_FIELD_COLUMNS[key]: value for key, value in values.items()}
    previous = {
        "Name": before.name,
        "Amount": before.amount,
        "Category": before.category,
        "Note": before.note,
        "ExpenseDate": before.expense_date,
    }
    with write_transaction(context, "update expense") as journal:
        data_manager.update_expense(context.workbook, expense_id, field_values=column_values)
        journal.record(
            f"restore expense {expense_id}",
            lambda: data_manager.update_expense(context.workbook, expense_id, field_values=previous),
        )
    log.info("Updated expense '%s': %s", expense_id, ", ".join(sorted(values)))
    return get_expense(context, expense_id)


def delete_expense(context: RuntimeContext, expense_id: str) -> data_manager.ExpenseRow:
    """Remove a manually entered expense.

    Raises:
        NotFoundError: If ``expense_id`` is unknown.
        ValidationError: If the entry was written by replenish or correct
            stock.
    """

    expense = get_expense(context, expense_id)
    if is_ledger_generated(expense):
        log.warning("Refused delete of ledger-generated expense '%s'", expense_id)
        raise ValidationError(
            "Stock purchase entries cannot be deleted; use correct stock to reverse them"
        )
    with write_transaction(context, "delete expense") as journal:
        data_manager.delete_expense(context.workbook, expense_id)
        journal.record(
            f"re-insert expense {expense_id}",
            lambda: data_manager.append_expense(context.workbook, expense),
        )
    log.info("Deleted expense '%s' (%s, amount=%s)", expense_id, expense.name, expense.amount)
    return expense
