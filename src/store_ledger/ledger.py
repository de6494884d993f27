"""Ledger writer: the only operations that move stock.

Checkout, replenishment, and stock correction each touch the catalog and at
least one of the sales store or the expense journal. Each one:

1. validates input shape before taking any lock,
2. takes the locks of every product it touches,
3. re-reads those products and checks stock against the fresh values,
4. writes its rows inside :func:`core_logic.write_transaction`, so a failure
   in any sub-write rolls the earlier ones back,
5. releases the locks only after the rows (and, with ``AutoSave``, the
   workbook file) are written.

Deleting a sale also lives here because it is the reverse of checkout, even
though it deliberately leaves stock alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from . import core_logic, data_manager, log
from .constants import ExpenseCategory, IdPrefix
from .exceptions import EmptyCartError, InsufficientStockError, OverCorrectionError, ValidationError


ZERO = Decimal("0")


@dataclass(frozen=True)
class CartLine:
    """One product line in a checkout cart; ``discount`` is per unit."""

    product_id: str
    qty: int
    discount: Decimal = ZERO


@dataclass(frozen=True)
class CheckoutCommand:
    """User intent for converting a cart into a sale."""

    customer_name: Optional[str]
    lines: Sequence[CartLine]
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ReplenishCommand:
    """User intent for adding purchased units to stock."""

    product_id: str
    qty: int
    note: Optional[str] = None
    expense_date: Optional[date] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CorrectionCommand:
    """User intent for taking mis-entered units back out of stock."""

    product_id: str
    qty: int
    reason: str
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CheckoutReceipt:
    """The sale header and its lines as written by :func:`checkout`."""

    sale: data_manager.SaleRow
    items: Tuple[data_manager.SaleItemRow, ...]


@dataclass(frozen=True)
class StockChange:
    """Product state after a stock movement and the expense it generated."""

    product: data_manager.ProductRow
    expense: data_manager.ExpenseRow


@dataclass(frozen=True)
class DeletedSale:
    sale: data_manager.SaleRow
    items: Tuple[data_manager.SaleItemRow, ...]


@dataclass(frozen=True)
class _PricedLine:
    product: data_manager.ProductRow
    qty: int
    effective_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.effective_price * self.qty

    @property
    def line_cost(self) -> Decimal:
        return self.product.buy_price * self.qty


def effective_price(sell_price: Decimal, discount: Decimal) -> Decimal:
    """Unit price after discount, floored at zero."""

    return max(ZERO, sell_price - discount)


def _normalize_lines(lines: Sequence[CartLine]) -> List[Tuple[str, int, Decimal]]:
    normalized: List[Tuple[str, int, Decimal]] = []
    for line in lines:
        product_id = core_logic.require_text(line.product_id, label="Product id")
        qty = core_logic.to_quantity(line.qty)
        core_logic.require_positive_quantity(qty)
        discount = core_logic.to_money(line.discount, label="Discount")
        core_logic.require_nonnegative_money(discount, label="Discount")
        normalized.append((product_id, qty, discount))
    return normalized


def sale_item_id(sale_id: str, position: int) -> str:
    """Id of the line at 1-based cart ``position``; sorts in cart order within a sale."""

    return f"{sale_id}-{position:04d}"


def _set_stock(
    context: core_logic.RuntimeContext,
    journal: core_logic.WriteJournal,
    product: data_manager.ProductRow,
    new_stock: int,
    moment: datetime,
) -> None:
    """Write a product's stock and register the compensation restoring it."""

    data_manager.update_product(
        context.workbook,
        product.product_id,
        field_values={"Stock": new_stock, "UpdatedAt": moment.isoformat()},
    )
    journal.record(
        f"restore stock of {product.product_id} to {product.stock}",
        lambda: data_manager.update_product(
            context.workbook,
            product.product_id,
            field_values={"Stock": product.stock, "UpdatedAt": product.updated_at},
        ),
    )


def _append_expense(
    context: core_logic.RuntimeContext,
    journal: core_logic.WriteJournal,
    expense: data_manager.ExpenseRow,
) -> None:
    data_manager.append_expense(context.workbook, expense)
    journal.record(
        f"remove expense {expense.expense_id}",
        lambda: data_manager.delete_expense(context.workbook, expense.expense_id),
    )


def checkout(context: core_logic.RuntimeContext, command: CheckoutCommand) -> CheckoutReceipt:
    """Turn a cart into a sale, its lines, and the matching stock decrements.

    Every line is checked against the stock read under the product locks.
    Several lines for the same product draw on the same stock, in cart
    order. Discounts are folded into the stored ``sell_price``.

    Raises:
        EmptyCartError: If the cart has no lines.
        ValidationError: If a quantity is not a positive whole number or a
            discount is negative.
        NotFoundError: If a line references an unknown product.
        InsufficientStockError: If a line asks for more than remains.
        ContentionError: If the product locks stay busy past the timeout.
        PersistenceError: If the record store fails; nothing is kept.
    """

    if not command.lines:
        log.warning("Checkout rejected: empty cart")
        raise EmptyCartError("Cart is empty; add at least one product")

    lines = _normalize_lines(command.lines)
    customer_name = core_logic.normalize_customer_name(command.customer_name)

    with context.locks.hold(product_id for product_id, _, _ in lines):
        products: Dict[str, data_manager.ProductRow] = {}
        remaining: Dict[str, int] = {}
        priced: List[_PricedLine] = []
        for product_id, qty, discount in lines:
            if product_id not in products:
                products[product_id] = core_logic.get_product(context, product_id)
                remaining[product_id] = products[product_id].stock
            product = products[product_id]
            if qty > remaining[product_id]:
                log.warning(
                    "Checkout rejected: product '%s' requested %d, available %d",
                    product_id,
                    qty,
                    remaining[product_id],
                )
                raise InsufficientStockError(product_id, qty, remaining[product_id])
            remaining[product_id] -= qty
            priced.append(_PricedLine(product, qty, effective_price(product.sell_price, discount)))

        total = sum((line.subtotal for line in priced), ZERO)
        cost = sum((line.line_cost for line in priced), ZERO)
        moment = core_logic.resolve_timestamp(context, command.timestamp)

        sale = data_manager.SaleRow(
            sale_id=core_logic.generate_id(IdPrefix.SALE, when=moment),
            customer_name=customer_name,
            total=total,
            cost=cost,
            profit=total - cost,
            created_at=moment.isoformat(),
        )
        items = tuple(
            data_manager.SaleItemRow(
                item_id=sale_item_id(sale.sale_id, position),
                sale_id=sale.sale_id,
                product_id=line.product.product_id,
                product_name=line.product.name,
                qty=line.qty,
                buy_price=line.product.buy_price,
                sell_price=line.effective_price,
                subtotal=line.subtotal,
            )
            for position, line in enumerate(priced, start=1)
        )

        with core_logic.write_transaction(context, "checkout") as journal:
            data_manager.append_sale(context.workbook, sale)
            journal.record(
                f"remove sale {sale.sale_id}",
                lambda: data_manager.delete_sale(context.workbook, sale.sale_id),
            )
            for item in items:
                data_manager.append_sale_item(context.workbook, item)
                journal.record(
                    f"remove sale item {item.item_id}",
                    lambda item_id=item.item_id: data_manager.delete_sale_item(context.workbook, item_id),
                )
            for product_id, product in products.items():
                _set_stock(context, journal, product, remaining[product_id], moment)

    log.info(
        "Checkout '%s' for '%s': %d line(s), total=%s cost=%s profit=%s",
        sale.sale_id,
        sale.customer_name,
        len(items),
        sale.total,
        sale.cost,
        sale.profit,
    )
    return CheckoutReceipt(sale=sale, items=items)


def replenish_stock(context: core_logic.RuntimeContext, command: ReplenishCommand) -> StockChange:
    """Add purchased units to stock and journal their cost.

    The generated expense is a ``ProductPurchase`` of ``buy_price * qty``
    named after the product and tagged with its id and quantity.

    Raises:
        ValidationError: If the quantity is not a positive whole number.
        NotFoundError: If the product is unknown.
        ContentionError: If the product lock stays busy past the timeout.
        PersistenceError: If the record store fails; nothing is kept.
    """

    qty = core_logic.to_quantity(command.qty)
    core_logic.require_positive_quantity(qty)
    expense_date = (
        core_logic.to_date(command.expense_date, label="Expense date") if command.expense_date else None
    )

    with context.locks.hold([command.product_id]):
        product = core_logic.get_product(context, command.product_id)
        moment = core_logic.resolve_timestamp(context, command.timestamp)
        expense = core_logic.build_expense_row(
            context,
            name=f"Purchase: {product.name}",
            amount=product.buy_price * qty,
            category=ExpenseCategory.PRODUCT_PURCHASE,
            note=(command.note or "").strip() or f"Added {qty} units",
            expense_date=expense_date,
            timestamp=moment,
            product_id=product.product_id,
            quantity=qty,
        )
        with core_logic.write_transaction(context, "replenish stock") as journal:
            _set_stock(context, journal, product, product.stock + qty, moment)
            _append_expense(context, journal, expense)
        updated = core_logic.get_product(context, product.product_id)

    log.info(
        "Replenished '%s' by %d (stock %d -> %d), purchase expense '%s' amount=%s",
        product.product_id,
        qty,
        product.stock,
        updated.stock,
        expense.expense_id,
        expense.amount,
    )
    return StockChange(product=updated, expense=expense)


def correct_stock(context: core_logic.RuntimeContext, command: CorrectionCommand) -> StockChange:
    """Take mis-entered units back out of stock and reverse their cost.

    No sale is created: the units were never sold, so the purchase cost is
    refunded with a negative ``ProductPurchase`` entry carrying ``reason``.

    Raises:
        ValidationError: If the quantity is not a positive whole number or
            the reason is blank.
        NotFoundError: If the product is unknown.
        OverCorrectionError: If ``qty`` exceeds current stock.
        ContentionError: If the product lock stays busy past the timeout.
        PersistenceError: If the record store fails; nothing is kept.
    """

    qty = core_logic.to_quantity(command.qty)
    core_logic.require_positive_quantity(qty)
    reason = core_logic.require_text(command.reason, label="Correction reason")

    with context.locks.hold([command.product_id]):
        product = core_logic.get_product(context, command.product_id)
        if qty > product.stock:
            log.warning(
                "Correction rejected: product '%s' requested %d, available %d",
                product.product_id,
                qty,
                product.stock,
            )
            raise OverCorrectionError(product.product_id, qty, product.stock)

        moment = core_logic.resolve_timestamp(context, command.timestamp)
        expense = core_logic.build_expense_row(
            context,
            name=f"Purchase reversal: {product.name}",
            amount=-(product.buy_price * qty),
            category=ExpenseCategory.PRODUCT_PURCHASE,
            note=reason,
            expense_date=None,
            timestamp=moment,
            product_id=product.product_id,
            quantity=-qty,
        )
        with core_logic.write_transaction(context, "correct stock") as journal:
            _set_stock(context, journal, product, product.stock - qty, moment)
            _append_expense(context, journal, expense)
        updated = core_logic.get_product(context, product.product_id)

    log.info(
        "Corrected '%s' by -%d (stock %d -> %d), reversal expense '%s' amount=%s",
        product.product_id,
        qty,
        product.stock,
        updated.stock,
        expense.expense_id,
        expense.amount,
    )
    return StockChange(product=updated, expense=expense)


def delete_sale(context: core_logic.RuntimeContext, sale_id: str) -> DeletedSale:
    """Remove a sale and its lines as a record correction.

    Product stock is left as it is; the units sold are not put back.

    Raises:
        NotFoundError: If ``sale_id`` is unknown.
        PersistenceError: If the record store fails; nothing is kept.
    """

    sale = core_logic.get_sale(context, sale_id)
    removed: List[data_manager.SaleItemRow] = []
    with core_logic.write_transaction(context, "delete sale") as journal:
        removed.extend(data_manager.delete_sale_items_for(context.workbook, sale_id))
        journal.record(
            f"re-insert {len(removed)} item(s) of sale {sale_id}",
            lambda: _reinsert_items(context, removed),
        )
        data_manager.delete_sale(context.workbook, sale_id)
        journal.record(
            f"re-insert sale {sale_id}",
            lambda: data_manager.append_sale(context.workbook, sale),
        )

    log.warning(
        "Deleted sale '%s' (%d item(s), total=%s); product stock was not restored",
        sale_id,
        len(removed),
        sale.total,
    )
    return DeletedSale(sale=sale, items=tuple(removed))


def _reinsert_items(context: core_logic.RuntimeContext, items: Sequence[data_manager.SaleItemRow]) -> None:
    for item in items:
        data_manager.append_sale_item(context.workbook, item)


def parse_cart_line(raw: str) -> CartLine:
    """Parse ``PRODUCT_ID:QTY[:DISCOUNT]`` as typed on a command line."""

    parts = [part.strip() for part in raw.split(":")]
    if len(parts) not in (2, 3) or not parts[0]:
        raise ValidationError(
            f"Cart line must look like PRODUCT_ID:QTY[:DISCOUNT], got {raw!r}"
        )
    discount: Any = parts[2] if len(parts) == 3 and parts[2] else ZERO
    return CartLine(
        product_id=parts[0],
        qty=core_logic.to_quantity(parts[1]),
        discount=core_logic.to_money(discount, label="Discount"),
    )
