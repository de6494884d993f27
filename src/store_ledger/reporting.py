"""Read-only aggregation over a snapshot of the ledger.

Reports never touch the workbook directly: :func:`take_snapshot` copies the
four record sets under the store guard and every other function here is a
pure computation over that copy, so reports can run alongside writers.
Empty ranges produce zero-valued results rather than errors.

Date filters are inclusive on both ends and compare store-local calendar
days: a sale belongs to the day of its ``created_at`` in the store timezone,
an expense to its ``expense_date``, and a sale item to its parent sale.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from . import core_logic, data_manager, log
from .constants import WEEKLY_TREND_DAYS, ExpenseCategory
from .exceptions import ValidationError


ZERO = Decimal("0")


@dataclass(frozen=True)
class DateRange:
    """Inclusive ``[date_from, date_to]`` filter; a missing bound is open."""

    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def __post_init__(self) -> None:
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError(
                f"Date range start {self.date_from} is after its end {self.date_to}"
            )

    def contains(self, day: date) -> bool:
        if self.date_from is not None and day < self.date_from:
            return False
        if self.date_to is not None and day > self.date_to:
            return False
        return True


ALL_TIME = DateRange()


@dataclass(frozen=True)
class LedgerSnapshot:
    products: Tuple[data_manager.ProductRow, ...] = ()
    sales: Tuple[data_manager.SaleRow, ...] = ()
    sale_items: Tuple[data_manager.SaleItemRow, ...] = ()
    expenses: Tuple[data_manager.ExpenseRow, ...] = ()
    timezone: tzinfo = timezone.utc


@dataclass(frozen=True)
class TopProduct:
    product_id: str
    product_name: str
    qty: int
    revenue: Decimal


@dataclass(frozen=True)
class DailySales:
    day: date
    total: Decimal
    sale_count: int


@dataclass(frozen=True)
class StockMovement:
    """Purchase and sale volume recorded against one product.

    ``discrepancy`` is current stock minus ``purchased_qty - sold_qty``; it is
    non-zero when units left the shelf without a sale or correction, or when
    a sale was deleted. ``None`` when the product no longer exists.
    """

    product_id: str
    purchased_qty: int
    purchase_amount: Decimal
    sold_qty: int
    current_stock: Optional[int]

    @property
    def discrepancy(self) -> Optional[int]:
        if self.current_stock is None:
            return None
        return self.current_stock - (self.purchased_qty - self.sold_qty)


def take_snapshot(context: core_logic.RuntimeContext) -> LedgerSnapshot:
    """Copy products, sales, sale items, and expenses in one consistent read."""

    with core_logic.store_guard(context):
        snapshot = LedgerSnapshot(
            products=tuple(core_logic.list_products(context)),
            sales=tuple(core_logic.list_sales(context)),
            sale_items=tuple(core_logic.list_sale_items(context)),
            expenses=tuple(core_logic.list_expenses(context)),
            timezone=context.settings.timezone,
        )
    log.debug(
        "Snapshot taken: %d products, %d sales, %d items, %d expenses",
        len(snapshot.products),
        len(snapshot.sales),
        len(snapshot.sale_items),
        len(snapshot.expenses),
    )
    return snapshot


def parse_moment(text: str, tz: tzinfo) -> datetime:
    """Parse an ISO timestamp; naive values are taken as store-local."""

    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment


def sale_day(sale: data_manager.SaleRow, tz: tzinfo) -> date:
    """Store-local calendar day on which ``sale`` was recorded."""

    return parse_moment(sale.created_at, tz).astimezone(tz).date()


def expense_day(expense: data_manager.ExpenseRow) -> Optional[date]:
    """Calendar day of ``expense``, or ``None`` when the cell is blank or unreadable."""

    try:
        return date.fromisoformat(expense.expense_date[:10])
    except ValueError:
        return None


def sales_in_range(snapshot: LedgerSnapshot, date_range: DateRange = ALL_TIME) -> List[data_manager.SaleRow]:
    return [sale for sale in snapshot.sales if date_range.contains(sale_day(sale, snapshot.timezone))]


def sale_items_in_range(
    snapshot: LedgerSnapshot, date_range: DateRange = ALL_TIME
) -> List[data_manager.SaleItemRow]:
    """Sale items whose parent sale falls in ``date_range``.

    Items whose parent sale is missing have no date and are left out.
    """

    sale_ids = {sale.sale_id for sale in sales_in_range(snapshot, date_range)}
    return [item for item in snapshot.sale_items if item.sale_id in sale_ids]


def expenses_in_range(
    snapshot: LedgerSnapshot, date_range: DateRange = ALL_TIME
) -> List[data_manager.ExpenseRow]:
    selected = []
    for expense in snapshot.expenses:
        day = expense_day(expense)
        if day is None:
            log.warning(
                "Expense '%s' has unreadable date %r; left out of dated reports",
                expense.expense_id,
                expense.expense_date,
            )
            continue
        if date_range.contains(day):
            selected.append(expense)
    return selected


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def expense_composition(snapshot: LedgerSnapshot, date_range: DateRange = ALL_TIME) -> Dict[str, Decimal]:
    """Total expense amount per category, every category present."""

    composition = {category.value: ZERO for category in ExpenseCategory}
    for expense in expenses_in_range(snapshot, date_range):
        if expense.category in composition:
            composition[expense.category] += expense.amount
        else:
            log.warning(
                "Expense '%s' has unknown category '%s'; left out of totals",
                expense.expense_id,
                expense.category,
            )
    return composition


def financial_summary(snapshot: LedgerSnapshot, date_range: DateRange = ALL_TIME) -> Dict[str, Decimal]:
    """Revenue, cost, and profit figures for ``date_range``.

    ``net_profit`` subtracts every expense, purchase costs included, from
    revenue; it does not start from ``gross_profit``. Both figures are
    reported so the reader can pick the convention they need.
    """

    sales = sales_in_range(snapshot, date_range)
    composition = expense_composition(snapshot, date_range)

    revenue = _sum(sale.total for sale in sales)
    opex = composition[ExpenseCategory.OPERATIONAL.value]
    purchase_expense = composition[ExpenseCategory.PRODUCT_PURCHASE.value]
    total_expense = opex + purchase_expense
    return {
        "revenue": revenue,
        "cost": _sum(sale.cost for sale in sales),
        "gross_profit": _sum(sale.profit for sale in sales),
        "opex": opex,
        "purchase_expense": purchase_expense,
        "total_expense": total_expense,
        "net_profit": revenue - total_expense,
    }


def top_products(snapshot: LedgerSnapshot, date_range: DateRange = ALL_TIME, n: int = 5) -> List[TopProduct]:
    """Best sellers in ``date_range`` by units sold.

    Ties on quantity go to the higher revenue, then to the product sold
    first: earliest parent sale, then earliest cart position within it.
    The ordering depends only on the data, never on the order rows were
    read in.
    """

    if isinstance(n, bool) or not isinstance(n, int) or n < 0:
        raise ValidationError(f"Number of products must be a non-negative whole number, got {n!r}")

    sale_moments = {
        sale.sale_id: parse_moment(sale.created_at, snapshot.timezone)
        for sale in sales_in_range(snapshot, date_range)
    }

    totals: Dict[str, Dict[str, object]] = {}
    for item in snapshot.sale_items:
        moment = sale_moments.get(item.sale_id)
        if moment is None:
            continue
        # Item ids are the sale id plus a zero-padded cart position.
        first_seen = (moment, item.item_id)
        entry = totals.get(item.product_id)
        if entry is None:
            totals[item.product_id] = {
                "name": item.product_name,
                "qty": item.qty,
                "revenue": item.subtotal,
                "first_seen": first_seen,
            }
            continue
        entry["qty"] += item.qty
        entry["revenue"] += item.subtotal
        if first_seen < entry["first_seen"]:
            entry["first_seen"] = first_seen
            entry["name"] = item.product_name

    ranked = sorted(
        totals.items(),
        key=lambda pair: (-pair[1]["qty"], -pair[1]["revenue"], pair[1]["first_seen"]),
    )
    return [
        TopProduct(
            product_id=product_id,
            product_name=str(entry["name"]),
            qty=int(entry["qty"]),
            revenue=entry["revenue"],
        )
        for product_id, entry in ranked[:n]
    ]


def weekly_trend(snapshot: LedgerSnapshot, end_date: date) -> List[DailySales]:
    """Sales totals for the seven store-local days ending at ``end_date``.

    Days are returned oldest first and days without sales report zero.
    """

    days = [end_date - timedelta(days=offset) for offset in range(WEEKLY_TREND_DAYS - 1, -1, -1)]
    totals = {day: ZERO for day in days}
    counts = {day: 0 for day in days}
    for sale in snapshot.sales:
        day = sale_day(sale, snapshot.timezone)
        if day in totals:
            totals[day] += sale.total
            counts[day] += 1
    return [DailySales(day=day, total=totals[day], sale_count=counts[day]) for day in days]


def stock_valuation(snapshot: LedgerSnapshot) -> Dict[str, Decimal]:
    """Value of stock on hand at cost and at sell price."""

    total_cost_value = _sum(product.buy_price * product.stock for product in snapshot.products)
    total_sell_value = _sum(product.sell_price * product.stock for product in snapshot.products)
    return {
        "total_cost_value": total_cost_value,
        "total_sell_value": total_sell_value,
        "estimated_profit_if_sold": total_sell_value - total_cost_value,
    }


def stock_movement(snapshot: LedgerSnapshot, product_id: str) -> StockMovement:
    """Reconcile a product's stock with its tagged purchases and its sales.

    Only ``ProductPurchase`` expenses written by the ledger writer carry a
    product tag; manual purchase entries are not attributed to a product.
    """

    purchases = [
        expense
        for expense in snapshot.expenses
        if expense.product_id == product_id
        and expense.category == ExpenseCategory.PRODUCT_PURCHASE.value
        and expense.quantity is not None
    ]
    current = next((p.stock for p in snapshot.products if p.product_id == product_id), None)
    return StockMovement(
        product_id=product_id,
        purchased_qty=sum(expense.quantity for expense in purchases),
        purchase_amount=_sum(expense.amount for expense in purchases),
        sold_qty=sum(item.qty for item in snapshot.sale_items if item.product_id == product_id),
        current_stock=current,
    )
