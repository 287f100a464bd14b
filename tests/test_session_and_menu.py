"""
Tests for the session store and the menu catalog.
"""
from unittest.mock import patch

import pytest

from chow_bot import config
from chow_bot.errors import DuplicateSessionError, InvalidTransition, NotFound
from chow_bot.menu_catalog import DEFAULT_MENU, MenuCatalog, seed_menu
from chow_bot.services.session import get_or_create_user, normalize_session_id
from chow_bot.seed_menu import main as seed_command
from chow_bot.storage import MemoryStorage, set_storage


class TestSessionStore:
    def test_first_contact_creates_user(self, storage):
        user = get_or_create_user(storage, "session-1")

        assert user.session_id == "session-1"
        assert user.current_order_id is None
        assert user.order_history == []
        assert storage.get_user("session-1") is not None

    def test_second_contact_returns_same_user(self, storage):
        first = get_or_create_user(storage, "session-1")
        second = get_or_create_user(storage, "session-1")

        assert second.id == first.id

    def test_second_contact_touches_last_active(self, storage):
        first = get_or_create_user(storage, "session-1")
        get_or_create_user(storage, "session-1")

        assert storage.get_user("session-1").last_active >= first.last_active

    def test_session_id_is_trimmed(self, storage):
        get_or_create_user(storage, "  session-1 ")
        assert storage.get_user("session-1") is not None

    @pytest.mark.parametrize("blank", ["", "   ", None])
    def test_blank_session_rejected(self, storage, blank):
        with pytest.raises(InvalidTransition):
            get_or_create_user(storage, blank)

    def test_normalize(self):
        assert normalize_session_id(" abc ") == "abc"

    def test_concurrent_creation_resolves_to_winner(self):
        storage = MemoryStorage()
        winner = storage.create_user("session-1")
        real_get_user = storage.get_user
        lookups = []

        def get_user_missing_once(session_id):
            # First lookup misses as if the other request had not committed yet
            lookups.append(session_id)
            if len(lookups) == 1:
                return None
            return real_get_user(session_id)

        with patch.object(storage, "get_user", side_effect=get_user_missing_once):
            user = get_or_create_user(storage, "session-1")

        assert user.id == winner.id
        assert len(lookups) == 2

    def test_duplicate_create_raises(self, storage):
        storage.create_user("session-1")
        with pytest.raises(DuplicateSessionError) as exc_info:
            storage.create_user("session-1")
        assert exc_info.value.session_id == "session-1"


class TestMenuCatalog:
    def test_seed_is_idempotent(self):
        storage = MemoryStorage()

        assert seed_menu(storage) == len(DEFAULT_MENU)
        assert seed_menu(storage) == 0
        assert storage.count_menu_items() == len(DEFAULT_MENU)

    def test_seed_command_exits_cleanly(self, monkeypatch, capsys):
        monkeypatch.setattr(config, "STORAGE_BACKEND", "memory")
        try:
            assert not seed_command()
            assert f"Seeded {len(DEFAULT_MENU)} menu items" in capsys.readouterr().out
        finally:
            set_storage(None)

    def test_categories(self, catalog):
        assert catalog.list_categories() == {"Main Course", "Starter", "Drinks", "Dessert"}
        assert catalog.sorted_categories() == ["Dessert", "Drinks", "Main Course", "Starter"]

    def test_list_items_by_category(self, catalog):
        items = catalog.list_items("Drinks")

        assert [(i.name, i.price) for i in items] == [("Chapman Drink", 800)]

    def test_unknown_category_is_empty(self, catalog):
        assert catalog.list_items("Breakfast") == []

    def test_items_ordered_by_name(self, catalog):
        names = [item.name for item in catalog.list_items()]
        assert names == sorted(names)

    def test_unavailable_items_hidden(self, catalog, menu):
        catalog.set_availability(menu["Pepper Soup"].id, False)

        assert "Pepper Soup" not in [i.name for i in catalog.list_items()]
        assert catalog.list_items("Starter") == []
        assert catalog.get_item(menu["Pepper Soup"].id).available is False

    def test_get_item(self, catalog, menu):
        item = catalog.get_item(menu["Chocolate Cake"].id)

        assert item.name == "Chocolate Cake"
        assert item.price == 1200
        assert item.category == "Dessert"
        assert item.description == "Rich chocolate cake slice"

    def test_get_missing_item(self, catalog):
        with pytest.raises(NotFound) as exc_info:
            catalog.get_item(9999)
        assert exc_info.value.key == 9999

    def test_set_availability_missing_item(self, catalog):
        with pytest.raises(NotFound):
            catalog.set_availability(9999, True)
