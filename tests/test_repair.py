import pytest

from glsync.database.repair import ESTIMATE_LINES_PLAN, RepairPass

LINES = "gl_estimate_lines"
ESTIMATES = "gl_estimates"
PRODUCTS = "gl_products"


@pytest.fixture
def repair(db):
    return RepairPass(db, ESTIMATE_LINES_PLAN)


def _by_id(fake_supabase, table):
    return {row["glide_row_id"]: row for row in fake_supabase.rows(table)}


def test_placeholders_are_created_once_per_missing_parent(repair, fake_supabase):
    fake_supabase.seed(ESTIMATES, {"glide_row_id": "e-existing"})
    fake_supabase.seed(
        LINES,
        {"glide_row_id": "l1", "rowid_estimates": "e1", "rowid_products": "p1"},
        {"glide_row_id": "l2", "rowid_estimates": "e1", "rowid_products": "p1"},
        {"glide_row_id": "l3", "rowid_estimates": "e2"},
        {"glide_row_id": "l4", "rowid_estimates": "e-existing", "rowid_products": ""},
    )

    report = repair.run()

    assert report.placeholders_created == {ESTIMATES: 2, PRODUCTS: 1}
    estimate_ids = [r["glide_row_id"] for r in fake_supabase.rows(ESTIMATES)]
    assert sorted(estimate_ids) == ["e-existing", "e1", "e2"]
    placeholder = _by_id(fake_supabase, PRODUCTS)["p1"]
    assert placeholder["created_at"] and placeholder["updated_at"]
    assert placeholder.get("new_product_name") is None


def test_display_name_fallback_order(repair, fake_supabase):
    fake_supabase.seed(
        PRODUCTS,
        {"glide_row_id": "p1", "new_product_name": "Deluxe Widget", "vendor_product_name": "ACME DW"},
        {"glide_row_id": "p2", "vendor_product_name": "Vendor Widget"},
    )
    fake_supabase.seed(
        LINES,
        {"glide_row_id": "l1", "rowid_products": "p1", "sale_product_name": "Custom"},
        {"glide_row_id": "l2", "rowid_products": "p1"},
        {"glide_row_id": "l3", "rowid_products": "p2", "display_name": ""},
        {"glide_row_id": "l4", "rowid_products": "p9"},
        {"glide_row_id": "l5", "rowid_products": "p1", "display_name": "Keep Me"},
        {"glide_row_id": "l6"},
    )

    report = repair.run()

    names = {k: v.get("display_name") for k, v in _by_id(fake_supabase, LINES).items()}
    assert names == {
        "l1": "Custom",
        "l2": "Deluxe Widget",
        "l3": "Vendor Widget",
        "l4": "Product p9",
        "l5": "Keep Me",
        "l6": None,
    }
    assert report.display_names_fixed == 4


def test_totals_are_recomputed_from_lines(repair, fake_supabase):
    fake_supabase.seed(
        ESTIMATES,
        {"glide_row_id": "e1", "total_amount": 999},
        {"glide_row_id": "e2", "total_amount": 40},
    )
    fake_supabase.seed(
        LINES,
        {"glide_row_id": "l1", "rowid_estimates": "e1", "qty_sold": 2, "selling_price": 10},
        {"glide_row_id": "l2", "rowid_estimates": "e1", "qty_sold": 1, "selling_price": 5},
        {"glide_row_id": "l3", "rowid_estimates": "e1", "qty_sold": 0, "selling_price": 100},
    )

    repair.run()

    estimates = _by_id(fake_supabase, ESTIMATES)
    assert estimates["e1"]["total_amount"] == pytest.approx(25)
    assert estimates["e2"]["total_amount"] == 0


def test_missing_quantities_count_as_zero(repair, fake_supabase):
    fake_supabase.seed(
        LINES,
        {"glide_row_id": "l1", "rowid_estimates": "e1", "qty_sold": "3", "selling_price": "2.5"},
        {"glide_row_id": "l2", "rowid_estimates": "e1", "qty_sold": None, "selling_price": 100},
    )

    repair.run()

    assert _by_id(fake_supabase, ESTIMATES)["e1"]["total_amount"] == pytest.approx(7.5)


def test_second_run_touches_nothing(repair, fake_supabase):
    fake_supabase.seed(PRODUCTS, {"glide_row_id": "p1", "new_product_name": "Widget"})
    fake_supabase.seed(
        LINES,
        {"glide_row_id": "l1", "rowid_estimates": "e1", "rowid_products": "p1", "qty_sold": 2, "selling_price": 10},
        {"glide_row_id": "l2", "rowid_estimates": "e2", "rowid_products": "p7", "qty_sold": 1, "selling_price": 5},
    )

    first = repair.run()
    assert first.rows_touched > 0

    writes_before = len(fake_supabase.calls)
    second = repair.run()
    new_calls = fake_supabase.calls[writes_before:]

    assert second.rows_touched == 0
    assert [c for c in new_calls if c[1] in ("insert", "upsert", "update", "delete")] == []


def test_placeholder_is_healed_by_real_parent(repair, db, fake_supabase):
    fake_supabase.seed(LINES, {"glide_row_id": "l1", "rowid_products": "p1"})
    repair.run()
    assert len(fake_supabase.rows(PRODUCTS)) == 1

    db.upsert_rows(PRODUCTS, [{"glide_row_id": "p1", "new_product_name": "Real Product"}])

    products = fake_supabase.rows(PRODUCTS)
    assert len(products) == 1
    assert products[0]["new_product_name"] == "Real Product"


def test_create_placeholders_does_not_touch_existing_parents(repair, fake_supabase):
    fake_supabase.seed(PRODUCTS, {"glide_row_id": "p1", "new_product_name": "Widget"})

    created = repair.create_missing_parents(ESTIMATE_LINES_PLAN.parent_links[1], ["p1", "p2", "p2", None])

    assert created == 1
    products = _by_id(fake_supabase, PRODUCTS)
    assert products["p1"]["new_product_name"] == "Widget"
    assert set(products) == {"p1", "p2"}
