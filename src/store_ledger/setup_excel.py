"""Utility for initializing the store ledger workbook.

Runs as a console script (``store-ledger-setup``) and doubles as a library
used by tests. The same helpers build the workbook regardless of the entry
point so the sheet layout cannot drift.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import data_manager
from .constants import EXPECTED_SCHEMA_VERSION, SheetName

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "Name",
        "BuyPrice",
        "SellPrice",
        "Stock",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.SALES.value: [
        "SaleID",
        "CustomerName",
        "Total",
        "Cost",
        "Profit",
        "CreatedAt",
    ],
    SheetName.SALE_ITEMS.value: [
        "SaleItemID",
        "SaleID",
        "ProductID",
        "ProductName",
        "Quantity",
        "BuyPrice",
        "SellPrice",
        "Subtotal",
    ],
    SheetName.EXPENSES.value: [
        "ExpenseID",
        "Name",
        "Amount",
        "Category",
        "Note",
        "ExpenseDate",
        "CreatedAt",
        "ProductID",
        "Quantity",
    ],
}

CONFIG_FILE = data_manager.CONFIG_FILE_NAME

CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n"
    "Timezone = {timezone}\n"
    "LockTimeout = 5\n"
    "AutoSave = true\n\n"
    "[Store]\n"
    "Name = {store_name}\n"
    "Address =\n"
    "Phone =\n"
    "Logo =\n"
)


def build_master_workbook(sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS) -> Workbook:
    """Return an in-memory workbook with one bold-headed sheet per entity."""

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    return workbook


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the ledger workbook at ``destination``.

    Raises ``FileExistsError`` when the target exists and ``overwrite`` is
    ``False``.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing ledger workbook: {destination}"
        )

    data_manager.save_workbook(build_master_workbook(sheet_columns), destination)
    return destination


def write_default_config(
    config_path: Path,
    *,
    store_name: str,
    data_file: str = "store_ledger.xlsx",
    timezone: str = "UTC",
) -> Path:
    """Write a starter ``config.ini`` next to where the workbook will live."""

    config_path = config_path.expanduser().resolve()
    if config_path.exists():
        raise FileExistsError(f"Refusing to overwrite existing configuration: {config_path}")
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        CONFIG_TEMPLATE.format(
            data_file=data_file,
            schema_version=EXPECTED_SCHEMA_VERSION,
            timezone=timezone,
            store_name=store_name,
        ),
        encoding="utf-8",
    )
    return config_path


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``System.DataFile`` in ``config_path``."""

    resolved = config_path.expanduser().resolve()
    parser = data_manager.read_config(resolved)
    settings = data_manager.parse_settings(parser, base_path=resolved.parent)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the store ledger workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    parser.add_argument(
        "--init-config",
        metavar="STORE_NAME",
        default=None,
        help="Write a starter config.ini for STORE_NAME before creating the workbook.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Store Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        if args.init_config:
            write_default_config(config_path, store_name=args.init_config)
            print(f"Wrote starter configuration for '{args.init_config}'.")
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
