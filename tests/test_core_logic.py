"""Unit tests for the runtime context, catalog, sales store, and expense journal."""

from __future__ import annotations

import dataclasses
import threading
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from store_ledger import constants, core_logic, data_manager, ledger
from store_ledger.exceptions import ContentionError, NotFoundError, PersistenceError, ValidationError
from store_ledger.setup_excel import build_master_workbook


JAKARTA = timezone(timedelta(hours=7))


def _sale(sale_id: str = "S1", customer: str = "General") -> data_manager.SaleRow:
    return data_manager.SaleRow(
        sale_id=sale_id,
        customer_name=customer,
        total=Decimal("240000"),
        cost=Decimal("150000"),
        profit=Decimal("90000"),
        created_at="2025-01-05T10:00:00+00:00",
    )


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def test_runtime_context_builds_lock_manager_from_settings(context):
    assert context.locks is not None
    assert context.locks.timeout == context.settings.lock_timeout


def test_load_runtime_context_reads_config_and_workbook(config_factory):
    bundle = config_factory(make_relative=True, timezone="+07:00")
    context = core_logic.load_runtime_context(bundle.config_path)

    assert context.settings.data_file == bundle.workbook_path.resolve()
    assert context.settings.timezone.utcoffset(None) == timedelta(hours=7)
    assert context.settings.store.name == "Test Store"


def test_load_runtime_context_missing_workbook_raises(config_factory):
    bundle = config_factory()
    bundle.workbook_path.unlink()
    with pytest.raises(FileNotFoundError):
        core_logic.load_runtime_context(bundle.config_path)


def test_ensure_schema_version_rejects_mismatch(config_factory):
    bundle = config_factory(schema_version="0.9.0")
    context = core_logic.load_runtime_context(bundle.config_path)
    with pytest.raises(RuntimeError, match="schema mismatch"):
        core_logic.ensure_schema_version(context)


def test_persist_and_refresh_context_round_trip(runtime_context):
    product = core_logic.register_product(runtime_context, name="Cap", buy_price="10", sell_price="15")
    core_logic.persist_context(runtime_context)

    refreshed = core_logic.refresh_context(runtime_context)

    assert refreshed.workbook is not runtime_context.workbook
    assert refreshed.locks is runtime_context.locks
    assert core_logic.get_product(refreshed, product.product_id) == product


# ---------------------------------------------------------------------------
# Write transactions
# ---------------------------------------------------------------------------


def test_write_transaction_rolls_back_and_wraps_store_errors(context):
    undone = []

    with pytest.raises(PersistenceError) as excinfo:
        with core_logic.write_transaction(context, "test op") as journal:
            journal.record("first", lambda: undone.append("first"))
            journal.record("second", lambda: undone.append("second"))
            raise OSError("disk full")

    assert undone == ["second", "first"]
    assert isinstance(excinfo.value.__cause__, OSError)
    assert excinfo.value.user_message == "Operation failed, please retry."


def test_write_transaction_lets_ledger_errors_through(context):
    undone = []

    with pytest.raises(ValidationError):
        with core_logic.write_transaction(context, "test op") as journal:
            journal.record("only", lambda: undone.append("only"))
            raise ValidationError("bad")

    assert undone == ["only"]


def test_write_journal_keeps_going_when_a_compensation_fails(caplog):
    journal = core_logic.WriteJournal("op")
    undone = []

    def broken():
        raise KeyError("gone")

    journal.record("a", lambda: undone.append("a"))
    journal.record("b", broken)
    journal.rollback()

    assert undone == ["a"]
    assert len(journal) == 0
    assert "Compensation failed" in caplog.text


def test_write_transaction_autosaves_when_enabled(runtime_context):
    core_logic.register_product(runtime_context, name="Cap", buy_price="10", sell_price="15")

    reloaded = data_manager.open_workbook(runtime_context.settings.data_file)
    assert [row.name for row in data_manager.iter_products(reloaded)] == ["Cap"]


def test_failed_autosave_rolls_back_in_memory_rows(runtime_context, monkeypatch):
    def fail_save(workbook, destination):
        raise PermissionError("read-only")

    monkeypatch.setattr(data_manager, "save_workbook", fail_save)

    with pytest.raises(PersistenceError):
        core_logic.register_product(runtime_context, name="Cap", buy_price="10", sell_price="15")

    assert core_logic.list_products(runtime_context) == []


def test_busy_workbook_times_out_with_contention_error(context):
    holding = threading.Event()
    release = threading.Event()

    def saver():
        with core_logic.store_guard(context):
            holding.set()
            release.wait(2)

    thread = threading.Thread(target=saver)
    thread.start()
    try:
        assert holding.wait(2)
        with pytest.raises(ContentionError):
            core_logic.list_products(context)
        with pytest.raises(ContentionError):
            core_logic.register_product(context, name="Cap", buy_price="1", sell_price="2")
    finally:
        release.set()
        thread.join(2)

    assert core_logic.list_products(context) == []


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------


def test_generate_id_is_prefixed_and_time_ordered():
    early = core_logic.generate_id(constants.IdPrefix.SALE, when=datetime(2025, 1, 5, 9, 0))
    late = core_logic.generate_id(constants.IdPrefix.SALE, when=datetime(2025, 1, 5, 9, 1))

    assert early.startswith("S20250105090000")
    assert len(early) == 1 + 20 + 32
    assert early < late


def test_generate_id_is_unique_within_the_same_instant():
    moment = datetime(2025, 1, 5, 9, 0)
    ids = {core_logic.generate_id(constants.IdPrefix.EXPENSE, when=moment) for _ in range(2000)}
    assert len(ids) == 2000


@pytest.mark.parametrize("raw, expected", [("12.50", Decimal("12.50")), (3, Decimal("3")), (Decimal("1"), Decimal("1"))])
def test_to_money_accepts_numbers(raw, expected):
    assert core_logic.to_money(raw) == expected


@pytest.mark.parametrize("raw", ["abc", True, "NaN", "Infinity", None])
def test_to_money_rejects_non_numbers(raw):
    with pytest.raises(ValidationError):
        core_logic.to_money(raw)


def test_to_quantity_rejects_fractions_and_booleans():
    assert core_logic.to_quantity("4") == 4
    with pytest.raises(ValidationError):
        core_logic.to_quantity("1.5")
    with pytest.raises(ValidationError):
        core_logic.to_quantity(True)


def test_resolve_timestamp_attaches_store_timezone(context):
    moment = core_logic.resolve_timestamp(context, datetime(2025, 1, 5, 9, 0))
    assert moment.tzinfo is context.settings.timezone


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def test_register_product_starts_with_zero_stock(context):
    product = core_logic.register_product(context, name="  Shirt ", buy_price="50000", sell_price="80000")

    assert product.stock == 0
    assert product.name == "Shirt"
    assert product.product_id.startswith("P")
    assert core_logic.list_products(context) == [product]


@pytest.mark.parametrize(
    "name, buy, sell",
    [("", "1", "2"), ("   ", "1", "2"), ("Shirt", "-1", "2"), ("Shirt", "1", "-0.01"), ("Shirt", "x", "2")],
)
def test_register_product_validates_input(context, name, buy, sell):
    with pytest.raises(ValidationError):
        core_logic.register_product(context, name=name, buy_price=buy, sell_price=sell)
    assert core_logic.list_products(context) == []


def test_get_product_unknown_id_raises(context):
    with pytest.raises(NotFoundError):
        core_logic.get_product(context, "P-missing")


def test_search_products_is_case_insensitive_substring(context):
    core_logic.register_product(context, name="Blue Shirt", buy_price="1", sell_price="2")
    core_logic.register_product(context, name="Cap", buy_price="1", sell_price="2")

    assert [p.name for p in core_logic.search_products(context, "SHIRT")] == ["Blue Shirt"]
    assert core_logic.search_products(context, "sock") == []


def test_update_product_changes_name_and_prices_only(context, set_fixed_datetime):
    product = core_logic.register_product(context, name="Shirt", buy_price="50000", sell_price="80000")
    later = set_fixed_datetime(datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc))

    updated = core_logic.update_product(context, product.product_id, {"sell_price": "85000", "name": "Tee"})

    assert updated.sell_price == Decimal("85000")
    assert updated.buy_price == Decimal("50000")
    assert updated.name == "Tee"
    assert updated.stock == 0
    assert updated.updated_at == later.isoformat()
    assert updated.created_at == product.created_at


def test_update_product_refuses_direct_stock_edits(context):
    product = core_logic.register_product(context, name="Shirt", buy_price="1", sell_price="2")
    with pytest.raises(ValidationError, match="Stock cannot be edited"):
        core_logic.update_product(context, product.product_id, {"stock": 10})
    assert core_logic.get_product(context, product.product_id).stock == 0


def test_update_product_rejects_unknown_fields_and_ids(context):
    product = core_logic.register_product(context, name="Shirt", buy_price="1", sell_price="2")
    with pytest.raises(ValidationError):
        core_logic.update_product(context, product.product_id, {"colour": "red"})
    with pytest.raises(ValidationError):
        core_logic.update_product(context, product.product_id, {})
    with pytest.raises(NotFoundError):
        core_logic.update_product(context, "P-missing", {"name": "x"})


def test_delete_product_keeps_history(context):
    product = core_logic.register_product(context, name="Shirt", buy_price="1", sell_price="2")
    data_manager.append_sale(context.workbook, _sale())
    core_logic._invalidate_cache(context)

    removed = core_logic.delete_product(context, product.product_id)

    assert removed == product
    assert core_logic.list_products(context) == []
    assert core_logic.list_sales(context) == [_sale()]
    with pytest.raises(NotFoundError):
        core_logic.delete_product(context, product.product_id)


def test_delete_product_drops_its_lock(context):
    product = core_logic.register_product(context, name="Shirt", buy_price="1", sell_price="2")
    core_logic.update_product(context, product.product_id, {"name": "Tee"})
    assert product.product_id in context.locks

    core_logic.delete_product(context, product.product_id)

    assert product.product_id not in context.locks


# ---------------------------------------------------------------------------
# Sales store
# ---------------------------------------------------------------------------


def test_update_sale_changes_customer_only(context):
    data_manager.append_sale(context.workbook, _sale(customer="Umum"))
    core_logic._invalidate_cache(context)

    updated = core_logic.update_sale(context, "S1", "Budi")

    assert updated.customer_name == "Budi"
    assert updated.total == Decimal("240000")
    assert updated.profit == Decimal("90000")


def test_update_sale_blank_name_falls_back_to_default(context):
    data_manager.append_sale(context.workbook, _sale(customer="Budi"))
    core_logic._invalidate_cache(context)

    assert core_logic.update_sale(context, "S1", "  ").customer_name == constants.DEFAULT_CUSTOMER_NAME


def test_update_sale_unknown_id_raises(context):
    with pytest.raises(NotFoundError):
        core_logic.update_sale(context, "S-missing", "Budi")


def test_search_sales_matches_customer_names(context):
    data_manager.append_sale(context.workbook, _sale("S1", "Budi Santoso"))
    data_manager.append_sale(context.workbook, _sale("S2", "Ani"))
    core_logic._invalidate_cache(context)

    assert [sale.sale_id for sale in core_logic.search_sales(context, "budi")] == ["S1"]


# ---------------------------------------------------------------------------
# Expense store
# ---------------------------------------------------------------------------


def test_add_expense_defaults_date_to_store_local_day(settings, set_fixed_datetime):
    context = core_logic.RuntimeContext(
        settings=dataclasses.replace(settings, timezone=JAKARTA),
        workbook=build_master_workbook(),
    )
    # 20:00 UTC on the 4th is already the 5th in Jakarta.
    set_fixed_datetime(datetime(2025, 1, 4, 20, 0, tzinfo=timezone.utc))

    expense = core_logic.add_expense(
        context,
        core_logic.ExpenseCommand(name="Electricity", amount=Decimal("350000"), category=constants.ExpenseCategory.OPERATIONAL),
    )

    assert expense.expense_date == "2025-01-05"
    assert expense.category == "Operational"
    assert expense.product_id is None
    assert core_logic.get_expense(context, expense.expense_id) == expense


def test_add_expense_accepts_explicit_date_and_string_category(context):
    expense = core_logic.add_expense(
        context,
        core_logic.ExpenseCommand(
            name="Stock from market",
            amount="120000",
            category="ProductPurchase",
            note=" cash ",
            expense_date=date(2025, 1, 2),
        ),
    )
    assert expense.expense_date == "2025-01-02"
    assert expense.category == "ProductPurchase"
    assert expense.note == "cash"


@pytest.mark.parametrize(
    "name, amount, category",
    [("", "1", "Operational"), ("Rent", "-5", "Operational"), ("Rent", "5", "Payroll")],
)
def test_add_expense_validates_input(context, name, amount, category):
    with pytest.raises(ValidationError):
        core_logic.add_expense(context, core_logic.ExpenseCommand(name=name, amount=amount, category=category))
    assert core_logic.list_expenses(context) == []


def test_update_expense_edits_selected_fields(context):
    expense = core_logic.add_expense(
        context, core_logic.ExpenseCommand(name="Rent", amount="1000", category="Operational")
    )

    updated = core_logic.update_expense(
        context, expense.expense_id, {"amount": "1500", "expense_date": "2025-03-01", "note": "March"}
    )

    assert updated.amount == Decimal("1500")
    assert updated.expense_date == "2025-03-01"
    assert updated.note == "March"
    assert updated.name == "Rent"


def test_update_expense_rejects_bad_values(context):
    expense = core_logic.add_expense(
        context, core_logic.ExpenseCommand(name="Rent", amount="1000", category="Operational")
    )
    with pytest.raises(ValidationError):
        core_logic.update_expense(context, expense.expense_id, {"amount": "-1"})
    with pytest.raises(ValidationError):
        core_logic.update_expense(context, expense.expense_id, {"expense_date": "05/01/2025"})
    with pytest.raises(ValidationError):
        core_logic.update_expense(context, expense.expense_id, {"product_id": "P1"})
    assert core_logic.get_expense(context, expense.expense_id) == expense


def test_delete_and_search_expenses(context):
    rent = core_logic.add_expense(context, core_logic.ExpenseCommand(name="Rent", amount="1", category="Operational"))
    core_logic.add_expense(context, core_logic.ExpenseCommand(name="Water", amount="1", category="Operational"))

    assert [e.name for e in core_logic.search_expenses(context, "RENT")] == ["Rent"]

    core_logic.delete_expense(context, rent.expense_id)

    assert [e.name for e in core_logic.list_expenses(context)] == ["Water"]
    with pytest.raises(NotFoundError):
        core_logic.delete_expense(context, rent.expense_id)


def _stock_purchase(context) -> data_manager.ExpenseRow:
    product = core_logic.register_product(context, name="Shirt", buy_price="50000", sell_price="80000")
    return ledger.replenish_stock(context, ledger.ReplenishCommand(product_id=product.product_id, qty=10)).expense


@pytest.mark.parametrize(
    "fields",
    [{"amount": "1"}, {"category": "Operational"}, {"name": "Other"}, {"expense_date": "2025-01-01"}, {"note": "x", "amount": "1"}],
)
def test_update_expense_refuses_to_rewrite_stock_purchases(context, fields):
    purchase = _stock_purchase(context)

    with pytest.raises(ValidationError):
        core_logic.update_expense(context, purchase.expense_id, fields)

    assert core_logic.get_expense(context, purchase.expense_id) == purchase


def test_update_expense_allows_notes_on_stock_purchases(context):
    purchase = _stock_purchase(context)

    updated = core_logic.update_expense(context, purchase.expense_id, {"note": "invoice 42"})

    assert updated.note == "invoice 42"
    assert (updated.amount, updated.product_id, updated.quantity) == (purchase.amount, purchase.product_id, 10)


def test_delete_expense_refuses_stock_purchases(context):
    purchase = _stock_purchase(context)

    with pytest.raises(ValidationError):
        core_logic.delete_expense(context, purchase.expense_id)

    assert core_logic.list_expenses(context) == [purchase]
