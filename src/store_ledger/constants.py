"""Enumerations and fixed values shared across the store ledger modules.

The data access layer, the ledger rules, and the reporting layer all key off
these identifiers, so sheet names and category labels live in one place.
"""

from __future__ import annotations

from enum import Enum


# Workbook schema version the code expects config.ini to declare.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_CUSTOMER_NAME = "General"
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0
WEEKLY_TREND_DAYS = 7


class ExpenseCategory(str, Enum):
    """Enumerate the expense journal categories."""

    OPERATIONAL = "Operational"
    PRODUCT_PURCHASE = "ProductPurchase"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    SALES = "Sales"
    SALE_ITEMS = "SaleItems"
    EXPENSES = "Expenses"


class IdPrefix(str, Enum):
    """Prefixes used when generating record identifiers."""

    PRODUCT = "P"
    SALE = "S"
    EXPENSE = "E"


__all__ = [
    "DEFAULT_CUSTOMER_NAME",
    "DEFAULT_LOCK_TIMEOUT_SECONDS",
    "EXPECTED_SCHEMA_VERSION",
    "WEEKLY_TREND_DAYS",
    "ExpenseCategory",
    "IdPrefix",
    "SheetName",
]
