from pathlib import Path

import pytest

from inventory_suite.inventory.db import DuplicateRecord, InventoryDatabase, RecordNotFound
from inventory_suite.inventory.service import InventoryService


def _service(root: Path) -> InventoryService:
    return InventoryService(InventoryDatabase(str(root / "inventory.sqlite3")))


def _seed_rice(service: InventoryService) -> int:
    bill_no = service.create_bill({"vendor_name": "Acme", "created_on": "2024-03-01", "exchange_rate": 2})["bill_no"]
    service.add_bill_item(bill_no, {"name": "Rice", "price": 10, "quantity": 3})
    return bill_no


def test_names_are_unique_case_insensitively(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.create_base_item({"name": "Rice", "brand": "Gold"})

    with pytest.raises(DuplicateRecord):
        service.create_base_item({"name": "RICE"})


def test_creating_base_item_applies_carrying_to_existing_purchases(tmp_path: Path) -> None:
    service = _service(tmp_path)
    bill_no = _seed_rice(service)
    assert service.db.fetch_bill(bill_no)["total_price"] == 60.0

    service.create_base_item({"name": "rice", "brand": "Gold", "carrying": 1})

    assert service.db.fetch_bill(bill_no)["total_price"] == 63.0
    final = service.db.fetch_final_entry("Rice")
    assert final["ppp"] == 21.0
    assert final["brand"] == "Gold"


def test_carrying_change_cascades_by_id_and_by_name(tmp_path: Path) -> None:
    service = _service(tmp_path)
    base = service.create_base_item({"name": "Rice", "carrying": 1})
    bill_no = _seed_rice(service)
    item = service.create_item({"name": "Rice", "ch_price": 4})
    assert item["ppp"] == 5.0

    service.update_base_item(base["id"], {"carrying": 2})
    assert service.db.fetch_bill(bill_no)["total_price"] == 66.0
    assert service.db.fetch_item(item["id"])["ppp"] == 6.0

    updated = service.update_base_item("rice", {"brand": "Silver", "carrying": 0})
    assert updated["brand"] == "Silver"
    final = service.db.fetch_final_entry("Rice")
    assert final["ppp"] == 20.0
    assert final["brand"] == "Silver"
    assert final["carrying"] == 0.0


def test_delete_base_item_drops_carrying_from_prices(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.create_base_item({"name": "Rice", "brand": "Gold", "carrying": 1})
    bill_no = _seed_rice(service)
    item = service.create_item({"name": "Rice", "ch_price": 4})
    assert service.db.fetch_bill(bill_no)["total_price"] == 63.0

    service.delete_base_item("Rice")

    assert service.db.fetch_base_item_by_name("Rice") is None
    assert service.db.fetch_bill(bill_no)["total_price"] == 60.0
    assert [p["ppp"] for p in service.db.fetch_purchases()] == [20.0]
    assert service.db.fetch_item(item["id"])["ppp"] == 4.0
    final = service.db.fetch_final_entry("Rice")
    assert final["ppp"] == 20.0
    assert final["brand"] == ""
    assert final["carrying"] == 0.0
    with pytest.raises(RecordNotFound):
        service.delete_base_item("Rice")


def test_brand_search_is_distinct_and_skips_blank(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.create_base_item({"name": "Rice", "brand": "Golden"})
    service.create_base_item({"name": "Oil", "brand": "Golden"})
    service.create_base_item({"name": "Salt", "brand": ""})
    service.create_base_item({"name": "Tea", "brand": "Goldfinch"})

    assert service.db.search_brands("gold") == ["Golden", "Goldfinch"]
    assert [row["name"] for row in service.db.search_base_items("i")] == ["Oil", "Rice"]
