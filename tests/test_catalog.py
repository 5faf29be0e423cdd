import pytest

from catalog import CatalogService
from errors import InvalidInput, NotFound


@pytest.fixture
def catalog(db):
    return CatalogService(db)


def add(catalog, name, **extra):
    data = {"name": name, "description": f"{name} from the cellar", "price": 12.0, "category": "red", "stock": 5}
    return catalog.create_product(data | extra)


def test_create_requires_core_fields(catalog):
    with pytest.raises(InvalidInput):
        catalog.create_product({"name": "Nameless", "price": 3.0})
    with pytest.raises(InvalidInput):
        catalog.create_product({"name": "Cheap", "description": "d", "price": -1, "category": "red"})
    assert add(catalog, "Free sample", price=0)["price"] == 0


def test_list_filters_and_pages(catalog):
    add(catalog, "Malbec", tags=["argentina"])
    add(catalog, "Chablis", category="white")
    add(catalog, "Barolo")

    reds = catalog.list_products(category="red")
    assert reds["total"] == 2

    tagged = catalog.list_products(search="argentina")
    assert [p["name"] for p in tagged["items"]] == ["Malbec"]

    page = catalog.list_products(page=1, page_size=2)
    assert len(page["items"]) == 2
    assert page["hasMore"] is True


def test_zero_page_size_falls_back_to_default(catalog):
    for i in range(3):
        add(catalog, f"Wine {i}")
    page = catalog.list_products(page=0, page_size=0)
    assert page["page"] == 1
    assert page["pageSize"] == 20
    assert len(page["items"]) == 3


def test_search_is_literal(catalog):
    add(catalog, "Cote (Rhone)")
    assert catalog.list_products(search="(rhone")["total"] == 1


def test_trending_skips_out_of_stock(catalog):
    add(catalog, "Popular", reviews=40)
    add(catalog, "Gone", reviews=99, stock=0)
    add(catalog, "Quiet", reviews=1)
    assert [p["name"] for p in catalog.trending()] == ["Popular", "Quiet"]


def test_update_and_delete(catalog):
    product = add(catalog, "Merlot")

    updated = catalog.update_product(product["id"], {"price": 15.5, "stock": 2, "unknown": "ignored"})
    assert updated["price"] == 15.5
    assert "unknown" not in updated
    with pytest.raises(InvalidInput):
        catalog.update_product(product["id"], {"stock": -4})

    catalog.delete_product(product["id"])
    with pytest.raises(NotFound):
        catalog.get_product(product["id"])
    with pytest.raises(NotFound):
        catalog.delete_product(product["id"])
