import json

import pytest

from client import CART_KEY, TOKEN_KEY, ApiClient, ApiError, ClientStore, FileStorage, MemoryStorage
from settings import API_PREFIX


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def make_client_store(client, storage):
    def factory(storage=storage):
        api = ApiClient(base_url=f"http://testserver{API_PREFIX}", session=client)
        shop = ClientStore(api=api, storage=storage)
        shop.load_products()
        return shop
    return factory


@pytest.fixture
def shop(make_client_store):
    return make_client_store()


def stored_cart(storage):
    raw = storage.get_item(CART_KEY)
    return json.loads(raw) if raw else None


def test_api_client_raises_server_message(client):
    api = ApiClient(base_url=f"http://testserver{API_PREFIX}", session=client)
    with pytest.raises(ApiError) as info:
        api.get("/products/product99")
    assert info.value.status_code == 404
    assert info.value.message == "Product not found"


def test_anonymous_cart_accumulates_and_persists(shop, storage):
    assert shop.add_to_cart(1, 2)
    assert shop.add_to_cart(1, 3)
    assert shop.cart_count() == 5
    assert [(i["productId"], i["quantity"]) for i in stored_cart(storage)] == [(1, 5)]


def test_anonymous_cart_survives_a_new_store(shop, storage, make_client_store):
    shop.add_to_cart(3)
    restored = make_client_store()
    restored.load_cart()
    assert [i["productId"] for i in restored.cart] == [3]


def test_anonymous_update_and_remove(shop, storage):
    shop.add_to_cart(1)
    shop.add_to_cart(2)
    assert shop.update_cart_quantity(1, 4)
    assert shop.update_cart_quantity(2, 0)
    assert [(i["productId"], i["quantity"]) for i in stored_cart(storage)] == [(1, 4)]
    assert not shop.update_cart_quantity(5, 1)


def test_unknown_product_is_not_added(shop):
    assert not shop.add_to_cart(999)
    assert shop.cart == []


def test_cart_items_and_total(shop):
    shop.add_to_cart(2, 2)
    shop.add_to_cart(3, 1)
    items = shop.get_cart_items()
    assert [i["product"]["name"] for i in items] == ["Wireless Bluetooth Headphones", "Designer Cotton T-Shirt"]
    assert shop.get_cart_total() == 2 * 199 + 35


def test_login_replays_anonymous_cart(shop, storage, client):
    shop.add_to_cart(1, 2)
    shop.add_to_cart("product4", 1)
    assert shop.login("user@example.com", "password123")

    assert storage.get_item(CART_KEY) is None
    assert json.loads(storage.get_item(TOKEN_KEY)) == shop.token
    assert sorted((i["productId"], i["quantity"]) for i in shop.cart) == [(1, 2), (4, 1)]

    server = client.get(f"{API_PREFIX}/cart", headers={"Authorization": f"Bearer {shop.token}"}).json()
    assert sorted(i["productId"] for i in server["items"]) == [1, 4]


def test_replay_merges_into_existing_server_cart(shop, client, login_as):
    headers = login_as("user@example.com", "password123")
    client.post(f"{API_PREFIX}/cart/add", json={"productId": 1, "quantity": 1}, headers=headers)
    shop.add_to_cart(1, 2)
    shop.login("user@example.com", "password123")
    assert [(i["productId"], i["quantity"]) for i in shop.cart] == [(1, 3)]


def test_replay_failures_do_not_abort_or_keep_local_cart(shop, storage, store):
    shop.add_to_cart(1, 1)
    shop.add_to_cart(2, 1)
    shop.add_to_cart(3, 1)
    store.delete_product(2)

    assert shop.login("user@example.com", "password123")
    assert storage.get_item(CART_KEY) is None
    assert [i["productId"] for i in shop.cart] == [1, 3]


def test_migrate_reports_failed_items(shop, store):
    shop.add_to_cart(5, 1)
    shop.add_to_cart(6, 1)
    shop.login("user@example.com", "password123")
    shop.cart = [{"productId": 99, "quantity": 1}, {"productId": 5, "quantity": 1}]
    failed = shop.migrate_cart_to_server()
    assert [i["productId"] for i in failed] == [99]


def test_signup_replays_cart(shop, storage):
    shop.add_to_cart(6, 2)
    assert shop.signup("Ada", "Lovelace", "ada@techmart.io", "secret1")
    assert shop.current_user["email"] == "ada@techmart.io"
    assert [(i["productId"], i["quantity"]) for i in shop.cart] == [(6, 2)]
    assert storage.get_item(CART_KEY) is None


def test_failed_login_keeps_state_and_notifies(shop, storage):
    shop.add_to_cart(1)
    assert not shop.login("user@example.com", "nope")
    assert shop.current_user is None
    assert shop.cart_count() == 1
    assert stored_cart(storage)
    note = shop.notifications[-1]
    assert note == {"id": note["id"], "message": "Invalid email or password", "level": "error"}
    shop.dismiss_notification(note["id"])
    assert note not in shop.notifications


def test_logout_discards_cart_without_repopulating_storage(shop, storage):
    shop.add_to_cart(1)
    shop.login("user@example.com", "password123")
    shop.logout()
    assert shop.cart == []
    assert shop.current_user is None
    assert storage.get_item(TOKEN_KEY) is None
    assert storage.get_item(CART_KEY) is None
    shop.load_cart()
    assert shop.cart == []


def test_authenticated_cart_operations_go_to_server(shop, client):
    shop.login("user@example.com", "password123")
    shop.add_to_cart(2, 1)
    shop.add_to_cart(2, 1)
    assert shop.cart[0]["quantity"] == 2
    assert shop.update_cart_quantity(2, 5)
    assert shop.cart[0]["quantity"] == 5
    assert shop.remove_from_cart(2)
    assert shop.cart == []
    shop.add_to_cart(3)
    shop.clear_cart()
    assert shop.cart == []


def test_authenticated_update_of_missing_item_notifies(shop):
    shop.login("user@example.com", "password123")
    assert not shop.update_cart_quantity(1, 2)
    assert shop.notifications[-1]["level"] == "error"


def test_session_restored_from_storage(shop, storage, make_client_store):
    shop.login("user@example.com", "password123")
    restored = make_client_store()
    restored.load_session()
    assert restored.current_user["email"] == "user@example.com"


def test_bad_stored_token_is_dropped(storage, make_client_store):
    storage.set_item(TOKEN_KEY, json.dumps("bogus"))
    shop = make_client_store()
    shop.load_session()
    assert shop.current_user is None
    assert shop.token is None
    assert storage.get_item(TOKEN_KEY) is None


def test_change_events(shop):
    events = []
    shop.subscribe(lambda event, store: events.append(event))
    shop.add_to_cart(1)
    shop.login("user@example.com", "password123")
    assert "cart" in events
    assert "auth" in events
    assert "notification" in events


def test_filters_reload_products(shop):
    assert shop.set_filters(search="laptop", sortBy="price-desc")
    assert [p["name"] for p in shop.products] == ["MacBook Pro 16-inch"]
    assert shop.current_page == 1
    with pytest.raises(KeyError):
        shop.set_filters(colour="red")


def test_pages(make_client_store, storage, client):
    api = ApiClient(base_url=f"http://testserver{API_PREFIX}", session=client)
    shop = ClientStore(api=api, storage=storage, items_per_page=4)
    shop.load_products()
    assert shop.pagination["totalPages"] == 2
    assert shop.go_to_page(2)
    assert len(shop.products) == 2
    assert not shop.go_to_page(3)


def test_local_filtering_matches_category(shop):
    shop.filters.update({"search": "books", "categories": []})
    assert [p["name"] for p in shop.get_filtered_products()] == ["JavaScript: The Complete Guide"]
    shop.filters.update({"search": "", "categories": ["Electronics"], "sortBy": "price-asc"})
    assert [p["price"] for p in shop.get_filtered_products()] == [199, 2499]


def test_load_categories(shop):
    assert shop.load_categories()
    assert "Sports" in shop.categories


def test_admin_product_management(shop):
    shop.login("admin@ecommerce.com", "admin123")
    created = shop.add_product({"name": "Yoga Mat", "category": "Sports", "price": 25})
    assert created["_id"] == "product7"
    assert shop.update_product("product7", {"stock": 9})["stock"] == 9
    assert shop.delete_product(7)
    assert shop.find_product(7) is None


def test_non_admin_cannot_manage_products(shop):
    shop.login("user@example.com", "password123")
    assert shop.add_product({"name": "Yoga Mat", "category": "Sports", "price": 25}) is None
    assert shop.notifications[-1]["message"] == "Admin access required"


def test_file_storage_round_trip(tmp_path):
    storage = FileStorage(str(tmp_path / "storage.json"))
    assert storage.get_item(TOKEN_KEY) is None
    storage.set_item(TOKEN_KEY, '"abc"')
    assert FileStorage(str(tmp_path / "storage.json")).get_item(TOKEN_KEY) == '"abc"'
    storage.remove_item(TOKEN_KEY)
    assert storage.get_item(TOKEN_KEY) is None


def test_fresh_store_picks_up_and_replays_a_stored_anonymous_cart(storage, make_client_store, client):
    storage.set_item(CART_KEY, json.dumps([{"productId": 1, "quantity": 2, "addedAt": "2026-01-01T00:00:00+00:00"}]))
    shop = make_client_store()
    assert [(i["productId"], i["quantity"]) for i in shop.cart] == [(1, 2)]

    assert shop.login("user@example.com", "password123")
    assert storage.get_item(CART_KEY) is None
    server = client.get(f"{API_PREFIX}/cart", headers={"Authorization": f"Bearer {shop.token}"}).json()
    assert [(i["productId"], i["quantity"]) for i in server["items"]] == [(1, 2)]

    shop.logout()
    shop.load_cart()
    assert shop.cart == []


def test_login_replays_cart_written_to_storage_after_construction(shop, storage):
    storage.set_item(CART_KEY, json.dumps([{"productId": 5, "quantity": 1, "addedAt": "x"}]))
    assert shop.signup("Grace", "Hopper", "grace@techmart.io", "cobol60")
    assert storage.get_item(CART_KEY) is None
    assert [(i["productId"], i["quantity"]) for i in shop.cart] == [(5, 1)]


def test_stored_token_takes_precedence_over_stored_cart(storage, make_client_store):
    storage.set_item(TOKEN_KEY, json.dumps("some-token"))
    storage.set_item(CART_KEY, json.dumps([{"productId": 1, "quantity": 1, "addedAt": "x"}]))
    shop = make_client_store()
    assert shop.cart == []


def test_cart_total_includes_products_outside_the_cached_page(storage, client):
    api = ApiClient(base_url=f"http://testserver{API_PREFIX}", session=client)
    shop = ClientStore(api=api, storage=storage, items_per_page=1)
    shop.login("user@example.com", "password123")
    client.post(f"{API_PREFIX}/cart/add", json={"productId": 2, "quantity": 2},
                headers={"Authorization": f"Bearer {shop.token}"})
    client.post(f"{API_PREFIX}/cart/add", json={"productId": 3, "quantity": 1},
                headers={"Authorization": f"Bearer {shop.token}"})
    shop.load_products()
    shop.load_cart()
    assert len(shop.products) == 1
    assert [i["product"]["name"] for i in shop.get_cart_items()] == ["Wireless Bluetooth Headphones", "Designer Cotton T-Shirt"]
    assert shop.get_cart_total() == 2 * 199 + 35
