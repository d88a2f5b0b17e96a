"""
Table labels, menu lookup and error payload tests.
"""
import pytest

from conftest import menu_items
from tableside.core.exceptions import (
    InvalidTable,
    ItemsPreparing,
    NoActiveOrder,
    PendingConfirmationRequired,
)
from tableside.models import AlertType
from tableside.services.alerts import parse_alert_type
from tableside.services.menu import filter_menu, find_menu_item
from tableside.services.tables import normalize_table, table_labels


class TestTableLabels:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Table 3", "Table 3"),
            ("table 3", "Table 3"),
            ("3", "Table 3"),
            ("  Table10 ", "Table 10"),
            ("online", "Online"),
            ("ONLINE", "Online"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_table(raw, 10) == expected

    @pytest.mark.parametrize("raw", ["Table 0", "Table 11", "patio", "", "Table -1"])
    def test_rejected(self, raw):
        with pytest.raises(InvalidTable):
            normalize_table(raw, 10)

    def test_labels(self):
        assert table_labels(3) == ["Table 1", "Table 2", "Table 3", "Online"]


class TestMenuLookup:

    def test_case_insensitive_substring(self):
        assert find_menu_item(menu_items().values(), "CHICKEN").name == "Butter Chicken"

    def test_exact_match_first(self):
        assert find_menu_item(menu_items().values(), "tea").name == "Tea"
        assert find_menu_item(menu_items().values(), "iced").name == "Iced Tea"

    def test_no_match(self):
        assert find_menu_item(menu_items().values(), "pizza") is None
        assert find_menu_item(menu_items().values(), "") is None

    def test_filters_combine(self):
        items = filter_menu(menu_items().values(), category="main course", meal_type="non-veg")
        assert sorted(i.name for i in items) == ["Butter Chicken", "Lobster Thermidor"]

    def test_attribute_searches_description(self):
        items = filter_menu(menu_items().values(), attribute="gluten-free")
        assert [i.name for i in items] == ["Butter Chicken"]


class TestAlertTypes:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("water", AlertType.WATER),
            ("Send Someone", AlertType.SEND_SOMEONE),
            ("room service", AlertType.ROOM_SERVICE),
            ("a towel", AlertType.CUSTOM),
        ],
    )
    def test_parse(self, raw, expected):
        assert parse_alert_type(raw) == expected


class TestErrorPayloads:

    def test_soft_error(self):
        assert NoActiveOrder("Table 2").to_dict() == {
            "success": False,
            "code": "NO_ACTIVE_ORDER",
            "severity": "soft",
            "message": "No active orders found for Table 2.",
        }

    def test_hard_error(self):
        data = ItemsPreparing(["Dal"]).to_dict()
        assert (data["code"], data["severity"]) == ("ITEMS_PREPARING", "hard")

    def test_pending_items_are_listed(self):
        data = PendingConfirmationRequired(["Tea", "Dal"]).to_dict()
        assert data["pending_items"] == ["Tea", "Dal"]
        assert data["severity"] == "soft"
