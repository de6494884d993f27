"""Data access layer for the store ledger.

This module reads from and writes to the ledger workbook. It knows about
sheets, columns, and cell types; it knows nothing about stock rules or
profit. Business logic belongs in :mod:`store_ledger.core_logic` and
:mod:`store_ledger.ledger`.

The public API covers three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading typed records and appending, updating, or
   deleting individual rows.
"""


from __future__ import annotations

import configparser
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_LOCK_TIMEOUT_SECONDS, SheetName


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
SALES_SHEET = SheetName.SALES.value
SALE_ITEMS_SHEET = SheetName.SALE_ITEMS.value
EXPENSES_SHEET = SheetName.EXPENSES.value

_OFFSET_PATTERN = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


@dataclass(frozen=True)
class StoreProfile:
    """Store identity handed to export collaborators as read-only context."""

    name: str
    address: str = ""
    phone: str = ""
    logo: Optional[Path] = None


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    store: StoreProfile
    timezone: tzinfo = timezone.utc
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    auto_save: bool = True


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    buy_price: Decimal
    sell_price: Decimal
    stock: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    customer_name: str
    total: Decimal
    cost: Decimal
    profit: Decimal
    created_at: str


@dataclass(frozen=True)
class SaleItemRow:
    """In-memory view of a row from the ``SaleItems`` sheet."""

    item_id: str
    sale_id: str
    product_id: str
    product_name: str
    qty: int
    buy_price: Decimal
    sell_price: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class ExpenseRow:
    """In-memory view of a row from the ``Expenses`` sheet."""

    expense_id: str
    name: str
    amount: Decimal
    category: str
    note: Optional[str]
    expense_date: str
    created_at: str
    product_id: Optional[str] = None
    quantity: Optional[int] = None


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned as-is,
    which lets callers target a non-standard location on purpose. Otherwise
    the function walks up from the current working directory toward the
    filesystem root and returns the first ``CONFIG_FILE_NAME`` it finds.

    Args:
        explicit_path (Path | None): Optional path to use instead of the
            upward search.

    Returns:
        Path: The explicit path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Required entries are validated later by :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion
            and resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_timezone(raw: Optional[str]) -> tzinfo:
    """Interpret the ``Timezone`` option.

    Accepts ``UTC`` (or blank), a fixed offset such as ``+07:00``, or an IANA
    zone name such as ``Asia/Jakarta``.

    Raises:
        ValueError: If the value is none of the above.
    """

    value = (raw or "").strip()
    if not value or value.upper() in {"UTC", "Z"}:
        return timezone.utc

    match = _OFFSET_PATTERN.match(value)
    if match:
        sign, hours, minutes = match.groups()
        offset = timedelta(hours=int(hours), minutes=int(minutes))
        return timezone(-offset if sign == "-" else offset)

    try:
        return ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {value}") from exc


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``System.DataFile``, ``System.SchemaVersion`` and ``Store.Name`` are
    mandatory. Relative data file paths are anchored at ``base_path`` (the
    config file's directory in practice) or the current working directory.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Anchor for relative ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings with a resolved data file path.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If an optional value cannot be interpreted.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
        store_name = parser.get("Store", "Name")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (base_path / data_file_path).resolve()

    logo_raw = parser.get("Store", "Logo", fallback="").strip()
    logo_path: Optional[Path] = None
    if logo_raw:
        logo_path = Path(logo_raw)
        if not logo_path.is_absolute():
            logo_path = (base_path / logo_path).resolve()

    lock_timeout = parser.getfloat("System", "LockTimeout", fallback=DEFAULT_LOCK_TIMEOUT_SECONDS)
    if lock_timeout <= 0:
        raise ValueError("LockTimeout must be greater than zero")

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        store=StoreProfile(
            name=store_name,
            address=parser.get("Store", "Address", fallback=""),
            phone=parser.get("Store", "Phone", fallback=""),
            logo=logo_path,
        ),
        timezone=parse_timezone(parser.get("System", "Timezone", fallback="UTC")),
        lock_timeout=lock_timeout,
        auto_save=parser.getboolean("System", "AutoSave", fallback=True),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        KeyError: If one of the ledger sheets is missing from the file.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    missing = [sheet.value for sheet in SheetName if sheet.value not in wb.sheetnames]
    if missing:
        raise KeyError(f"Workbook {data_file} is missing sheets: {', '.join(missing)}")
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)
    log.debug("Saved workbook to %s", dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    for raw in _iter_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Iterate over sale headers stored on the ``Sales`` worksheet."""

    for raw in _iter_rows(workbook, SALES_SHEET):
        yield deserialize_sale(raw)


def iter_sale_items(workbook: Workbook) -> Iterable[SaleItemRow]:
    """Iterate over sale lines stored on the ``SaleItems`` worksheet."""

    for raw in _iter_rows(workbook, SALE_ITEMS_SHEET):
        yield deserialize_sale_item(raw)


def iter_expenses(workbook: Workbook) -> Iterable[ExpenseRow]:
    """Stream expense journal entries from the ``Expenses`` worksheet.

    Amounts become :class:`~decimal.Decimal` instances and optional columns
    stay ``None`` when the sheet leaves them blank.
    """

    for raw in _iter_rows(workbook, EXPENSES_SHEET):
        yield deserialize_expense(raw)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    """Append a sale header to the ``Sales`` worksheet."""

    workbook[SALES_SHEET].append(serialize_sale(record))


def append_sale_item(workbook: Workbook, record: SaleItemRow) -> None:
    """Append a sale line to the ``SaleItems`` worksheet."""

    workbook[SALE_ITEMS_SHEET].append(serialize_sale_item(record))


def append_expense(workbook: Workbook, record: ExpenseRow) -> None:
    """Append an expense entry to the ``Expenses`` worksheet.

    Numerical fields remain :class:`~decimal.Decimal` instances so that Excel
    keeps their precision when the workbook is saved.
    """

    workbook[EXPENSES_SHEET].append(serialize_expense(record))


def _header_map(workbook: Workbook, sheet_name: str) -> dict[Any, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    *,
    field_values: dict[str, Any],
) -> None:
    """Update selected columns for the row whose ``key_column`` matches.

    Only the named columns are written; the rest of the row is untouched.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(workbook, sheet_name)

    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


def update_product(workbook: Workbook, product_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected ``Products`` columns for ``product_id``."""

    update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values=field_values)


def update_sale(workbook: Workbook, sale_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected ``Sales`` columns for ``sale_id``."""

    update_row(workbook, SALES_SHEET, "SaleID", sale_id, field_values=field_values)


def update_expense(workbook: Workbook, expense_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected ``Expenses`` columns for ``expense_id``."""

    update_row(workbook, EXPENSES_SHEET, "ExpenseID", expense_id, field_values=field_values)


def delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> None:
    """Remove the first row whose ``key_column`` equals ``key_value``.

    Raises:
        KeyError: If no row matches.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


def delete_product(workbook: Workbook, product_id: str) -> None:
    delete_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)


def delete_sale(workbook: Workbook, sale_id: str) -> None:
    delete_row(workbook, SALES_SHEET, "SaleID", sale_id)


def delete_sale_item(workbook: Workbook, item_id: str) -> None:
    delete_row(workbook, SALE_ITEMS_SHEET, "SaleItemID", item_id)


def delete_expense(workbook: Workbook, expense_id: str) -> None:
    delete_row(workbook, EXPENSES_SHEET, "ExpenseID", expense_id)


def delete_sale_items_for(workbook: Workbook, sale_id: str) -> List[SaleItemRow]:
    """Remove every sale line owned by ``sale_id`` and return what was removed.

    Rows are deleted bottom-up so earlier indices stay valid while deleting.
    """

    sheet = workbook[SALE_ITEMS_SHEET]
    header_map = _header_map(workbook, SALE_ITEMS_SHEET)
    sale_col = header_map["SaleID"]

    matches: List[tuple[int, SaleItemRow]] = []
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[sale_col - 1] == sale_id:
            matches.append((row_idx, deserialize_sale_item(row)))

    for row_idx, _ in reversed(matches):
        sheet.delete_rows(row_idx)
    log.debug("Deleted %d sale item rows for sale %s", len(matches), sale_id)
    return [record for _, record in matches]


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title of the column holding the lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def serialize_product(record: ProductRow) -> list[object]:
    """Arrange a product as ``[ProductID, Name, BuyPrice, SellPrice, Stock,
    CreatedAt, UpdatedAt]``."""

    return [
        record.product_id,
        record.name,
        record.buy_price,
        record.sell_price,
        record.stock,
        record.created_at,
        record.updated_at,
    ]


def serialize_sale(record: SaleRow) -> list[object]:
    """Arrange a sale as ``[SaleID, CustomerName, Total, Cost, Profit,
    CreatedAt]``."""

    return [
        record.sale_id,
        record.customer_name,
        record.total,
        record.cost,
        record.profit,
        record.created_at,
    ]


def serialize_sale_item(record: SaleItemRow) -> list[object]:
    return [
        record.item_id,
        record.sale_id,
        record.product_id,
        record.product_name,
        record.qty,
        record.buy_price,
        record.sell_price,
        record.subtotal,
    ]


def serialize_expense(record: ExpenseRow) -> list[object]:
    return [
        record.expense_id,
        record.name,
        record.amount,
        record.category,
        record.note,
        record.expense_date,
        record.created_at,
        record.product_id,
        record.quantity,
    ]


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    if raw is None or raw == "":
        return Decimal(default)
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"Not a decimal value: {raw!r}") from exc


def _to_int(raw: object) -> int:
    return int(_to_decimal(raw))


def _to_optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def _to_iso_text(raw: object) -> str:
    # Cells typed by hand in Excel come back as datetime/date objects.
    if raw is None:
        return ""
    if isinstance(raw, (datetime, date)):
        return raw.isoformat()
    return str(raw)


def _to_iso_date(raw: object) -> str:
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    return _to_iso_text(raw)


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Prices become :class:`~decimal.Decimal`, stock becomes ``int``, and id or
    name cells are coerced to ``str`` because Excel turns numeric-looking
    identifiers into numbers.
    """

    product_id, name, buy_raw, sell_raw, stock_raw, created_at, updated_at = raw_row[:7]
    return ProductRow(
        product_id=str(product_id),
        name=str(name) if name is not None else "",
        buy_price=_to_decimal(buy_raw),
        sell_price=_to_decimal(sell_raw),
        stock=_to_int(stock_raw),
        created_at=_to_iso_text(created_at),
        updated_at=_to_iso_text(updated_at),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    sale_id, customer_name, total_raw, cost_raw, profit_raw, created_at = raw_row[:6]
    return SaleRow(
        sale_id=str(sale_id),
        customer_name=str(customer_name) if customer_name is not None else "",
        total=_to_decimal(total_raw),
        cost=_to_decimal(cost_raw),
        profit=_to_decimal(profit_raw),
        created_at=_to_iso_text(created_at),
    )


def deserialize_sale_item(raw_row: Sequence[object]) -> SaleItemRow:
    (
        item_id,
        sale_id,
        product_id,
        product_name,
        qty_raw,
        buy_raw,
        sell_raw,
        subtotal_raw,
    ) = raw_row[:8]
    return SaleItemRow(
        item_id=str(item_id),
        sale_id=str(sale_id),
        product_id=str(product_id),
        product_name=str(product_name) if product_name is not None else "",
        qty=_to_int(qty_raw),
        buy_price=_to_decimal(buy_raw),
        sell_price=_to_decimal(sell_raw),
        subtotal=_to_decimal(subtotal_raw),
    )


def deserialize_expense(raw_row: Sequence[object]) -> ExpenseRow:
    """Convert a raw worksheet row into a strongly typed expense record.

    Blank optional cells (note, product tag, quantity tag) stay ``None``.
    """

    (
        expense_id,
        name,
        amount_raw,
        category,
        note,
        expense_date,
        created_at,
        product_id,
        quantity_raw,
    ) = raw_row[:9]
    return ExpenseRow(
        expense_id=str(expense_id),
        name=str(name) if name is not None else "",
        amount=_to_decimal(amount_raw),
        category=str(category) if category is not None else "",
        note=_to_optional_str(note),
        expense_date=_to_iso_date(expense_date),
        created_at=_to_iso_text(created_at),
        product_id=_to_optional_str(product_id),
        quantity=_to_int(quantity_raw) if quantity_raw not in (None, "") else None,
    )
