"""
Client-side store for the TechMart frontend.

ClientStore mirrors the browser application's session state (current user,
product page, cart) without any rendering. Views subscribe to change events
and redraw themselves; the store never touches a DOM.

While nobody is logged in the cart lives only in local storage. On login or
signup it is replayed item by item into the server cart, then the local copy
is dropped and the server cart becomes authoritative.
"""

import itertools
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from catalog import filter_products, sort_products

logger = logging.getLogger(__name__)

TOKEN_KEY = "techmart_token"
CART_KEY = "techmart_cart"

DEFAULT_API_URL = os.getenv("TECHMART_API_URL", "http://localhost:8000/api")

Listener = Callable[[str, "ClientStore"], None]


class ApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# Local storage

class MemoryStorage:
    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage:
    """Key/value strings persisted in a single JSON file."""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, encoding="utf-8") as fh:
            return json.load(fh)

    def _write(self, items: Dict[str, str]) -> None:
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump(items, fh)

    def get_item(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._read()
        items[key] = value
        self._write(items)

    def remove_item(self, key: str) -> None:
        items = self._read()
        if key in items:
            del items[key]
            self._write(items)


# HTTP

class ApiClient:
    def __init__(self, base_url: str = DEFAULT_API_URL, session=None, token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.token = token

    def request(self, method: str, endpoint: str, json_body: Any = None, params: Optional[dict] = None) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = self.session.request(
                method, f"{self.base_url}{endpoint}", json=json_body, params=params, headers=headers
            )
        except requests.RequestException as exc:
            logger.warning("API request %s %s failed: %s", method, endpoint, exc)
            raise ApiError("Network error") from exc
        try:
            data = response.json()
        except ValueError:
            data = None
        if response.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            logger.warning("API %s %s returned %d: %s", method, endpoint, response.status_code, message)
            raise ApiError(message or "API request failed", response.status_code)
        return data

    def get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        return self.request("GET", endpoint, params=params)

    def post(self, endpoint: str, body: Any = None) -> Any:
        return self.request("POST", endpoint, json_body=body)

    def put(self, endpoint: str, body: Any = None) -> Any:
        return self.request("PUT", endpoint, json_body=body)

    def delete(self, endpoint: str) -> Any:
        return self.request("DELETE", endpoint)


class ClientStore:
    def __init__(self, api: Optional[ApiClient] = None, storage=None, items_per_page: int = 12):
        self.api = api or ApiClient()
        self.storage = storage if storage is not None else MemoryStorage()
        self.current_user: Optional[dict] = None
        self.products: List[dict] = []
        self.categories: List[str] = []
        self.pagination: Optional[dict] = None
        self.cart: List[dict] = []
        self.current_page = 1
        self.items_per_page = items_per_page
        self.filters = {
            "search": "",
            "categories": [],
            "minPrice": 0,
            "maxPrice": 3000,
            "sortBy": "name-asc",
        }
        self.notifications: List[dict] = []
        self._listeners: List[Listener] = []
        self._notification_ids = itertools.count(1)
        self.api.token = self._load_json(TOKEN_KEY)
        if not self.api.token:
            self.cart = self._load_json(CART_KEY) or []

    # Observers

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event, self)

    def notify(self, message: str, level: str = "info") -> dict:
        note = {"id": next(self._notification_ids), "message": message, "level": level}
        self.notifications.append(note)
        self.emit("notification")
        return note

    def dismiss_notification(self, note_id: int) -> None:
        self.notifications = [n for n in self.notifications if n["id"] != note_id]
        self.emit("notification")

    # Storage helpers

    def _load_json(self, key: str) -> Any:
        raw = self.storage.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable %s from local storage", key)
            self.storage.remove_item(key)
            return None

    def _save_json(self, key: str, value: Any) -> None:
        self.storage.set_item(key, json.dumps(value))

    @property
    def token(self) -> Optional[str]:
        return self.api.token

    @property
    def is_authenticated(self) -> bool:
        return bool(self.api.token and self.current_user)

    # Session

    def start(self) -> None:
        """Restore the session, then load the first product page and the cart."""
        self.load_session()
        self.load_products()
        self.load_categories()
        self.load_cart()

    def load_session(self) -> None:
        if not self.api.token:
            return
        try:
            data = self.api.get("/auth/me")
            self.current_user = data["user"]
        except ApiError as exc:
            logger.warning("Stored session rejected: %s", exc.message)
            self.storage.remove_item(TOKEN_KEY)
            self.api.token = None
            self.current_user = None
        self.emit("auth")

    def _start_session(self, data: dict) -> None:
        self.api.token = data["token"]
        self._save_json(TOKEN_KEY, data["token"])
        self.current_user = data["user"]
        self.emit("auth")

    def login(self, email: str, password: str) -> bool:
        try:
            data = self.api.post("/auth/login", {"email": email, "password": password})
        except ApiError as exc:
            self.notify(exc.message or "Login failed", "error")
            return False
        self._start_session(data)
        self.notify("Login successful!", "success")
        self._reconcile_cart()
        return True

    def signup(self, first_name: str, last_name: str, email: str, password: str) -> bool:
        body = {"firstName": first_name, "lastName": last_name, "email": email, "password": password}
        try:
            data = self.api.post("/auth/register", body)
        except ApiError as exc:
            self.notify(exc.message or "Registration failed", "error")
            return False
        self._start_session(data)
        self.notify("Account created successfully!", "success")
        self._reconcile_cart()
        return True

    def _reconcile_cart(self) -> None:
        if not self.cart:
            self.cart = self._load_json(CART_KEY) or []
        if self.cart:
            self.migrate_cart_to_server()
        # the server cart is authoritative from here on
        self.storage.remove_item(CART_KEY)
        self.load_cart()

    def migrate_cart_to_server(self) -> List[dict]:
        """Replay the anonymous cart into the server cart, one item at a time.

        Returns the items that failed. Failures are logged and skipped; the
        local cart is cleared whatever happens.
        """
        failed = []
        for item in list(self.cart):
            try:
                self.api.post("/cart/add", {"productId": item["productId"], "quantity": item["quantity"]})
            except ApiError as exc:
                logger.warning("Error migrating cart item %s: %s", item["productId"], exc.message)
                failed.append(item)
        self.storage.remove_item(CART_KEY)
        return failed

    def logout(self) -> None:
        self.storage.remove_item(TOKEN_KEY)
        self.api.token = None
        self.current_user = None
        self.cart = []
        self.emit("auth")
        self.emit("cart")
        self.notify("Logged out successfully", "info")

    # Products

    def _sort_params(self):
        field, _, order = self.filters["sortBy"].partition("-")
        return field or "name", order or "asc"

    def load_products(self) -> bool:
        sort_by, sort_order = self._sort_params()
        params = {
            "page": self.current_page,
            "limit": self.items_per_page,
            "search": self.filters["search"],
            "minPrice": self.filters["minPrice"],
            "maxPrice": self.filters["maxPrice"],
            "sortBy": sort_by,
            "sortOrder": sort_order,
        }
        if self.filters["categories"]:
            params["category"] = self.filters["categories"][0]
        try:
            data = self.api.get("/products", params=params)
        except ApiError:
            self.notify("Failed to load products", "error")
            return False
        self.products = data["products"]
        self.pagination = data["pagination"]
        self.emit("products")
        return True

    def load_categories(self) -> bool:
        try:
            self.categories = self.api.get("/products/categories")
        except ApiError:
            self.notify("Failed to load categories", "error")
            return False
        self.emit("products")
        return True

    def set_filters(self, **changes) -> bool:
        unknown = set(changes) - set(self.filters)
        if unknown:
            raise KeyError(f"Unknown filters: {', '.join(sorted(unknown))}")
        self.filters.update(changes)
        self.current_page = 1
        return self.load_products()

    def go_to_page(self, page: int) -> bool:
        total = (self.pagination or {}).get("totalPages") or 1
        if page < 1 or page > total:
            return False
        self.current_page = page
        return self.load_products()

    def get_filtered_products(self) -> List[dict]:
        """Filter and sort the cached page locally; search also matches category."""
        sort_by, sort_order = self._sort_params()
        filtered = filter_products(
            self.products,
            search=self.filters["search"],
            categories=self.filters["categories"],
            min_price=self.filters["minPrice"],
            max_price=self.filters["maxPrice"],
            search_category=True,
        )
        return sort_products(filtered, sort_by, sort_order)

    def find_product(self, product_id) -> Optional[dict]:
        return next((p for p in self.products if p["id"] == product_id or p.get("_id") == product_id), None)

    # Admin

    def add_product(self, product_data: dict) -> Optional[dict]:
        try:
            data = self.api.post("/products", product_data)
        except ApiError as exc:
            self.notify(exc.message or "Failed to add product", "error")
            return None
        self.notify("Product added successfully!", "success")
        self.load_products()
        return data

    def update_product(self, product_id, product_data: dict) -> Optional[dict]:
        try:
            data = self.api.put(f"/products/{product_id}", product_data)
        except ApiError as exc:
            self.notify(exc.message or "Failed to update product", "error")
            return None
        self.notify("Product updated successfully!", "success")
        self.load_products()
        return data

    def delete_product(self, product_id) -> bool:
        try:
            self.api.delete(f"/products/{product_id}")
        except ApiError as exc:
            self.notify(exc.message or "Failed to delete product", "error")
            return False
        self.notify("Product deleted successfully!", "success")
        self.load_products()
        return True

    # Cart

    def load_cart(self) -> None:
        if self.is_authenticated:
            try:
                data = self.api.get("/cart")
                self.cart = [
                    {
                        "productId": item["productId"],
                        "quantity": item["quantity"],
                        "addedAt": item["addedAt"],
                        "product": item.get("product"),
                    }
                    for item in data["items"]
                ]
            except ApiError as exc:
                logger.warning("Error loading cart: %s", exc.message)
                self.cart = []
        else:
            self.cart = self._load_json(CART_KEY) or []
        self.emit("cart")

    def _save_local_cart(self) -> None:
        if not self.api.token:
            self._save_json(CART_KEY, self.cart)
        self.emit("cart")

    def _local_line(self, product_id) -> Optional[dict]:
        return next((item for item in self.cart if item["productId"] == product_id), None)

    def add_to_cart(self, product_id, quantity: int = 1) -> bool:
        product = self.find_product(product_id)
        if product is None:
            return False
        if self.is_authenticated:
            try:
                self.api.post("/cart/add", {"productId": product["id"], "quantity": quantity})
            except ApiError as exc:
                self.notify(exc.message or "Failed to add to cart", "error")
                return False
            self.load_cart()
        else:
            line = self._local_line(product["id"])
            if line:
                line["quantity"] += quantity
            else:
                self.cart.append({
                    "productId": product["id"],
                    "quantity": quantity,
                    "addedAt": datetime.now(timezone.utc).isoformat(),
                })
            self._save_local_cart()
        self.notify(f"{product['name']} added to cart!", "success")
        return True

    def remove_from_cart(self, product_id) -> bool:
        product = self.find_product(product_id)
        name = product["name"] if product else "Item"
        if self.is_authenticated:
            try:
                self.api.delete(f"/cart/remove/{product_id}")
            except ApiError as exc:
                self.notify(exc.message or "Failed to remove from cart", "error")
                return False
            self.load_cart()
        else:
            line = self._local_line(product["id"] if product else product_id)
            if line is None:
                return False
            self.cart.remove(line)
            self._save_local_cart()
        self.notify(f"{name} removed from cart", "info")
        return True

    def update_cart_quantity(self, product_id, quantity: int) -> bool:
        if self.is_authenticated:
            try:
                self.api.put("/cart/update", {"productId": product_id, "quantity": quantity})
            except ApiError as exc:
                self.notify(exc.message or "Failed to update quantity", "error")
                return False
            self.load_cart()
            return True
        product = self.find_product(product_id)
        line = self._local_line(product["id"] if product else product_id)
        if line is None:
            return False
        if quantity <= 0:
            return self.remove_from_cart(product_id)
        line["quantity"] = quantity
        self._save_local_cart()
        return True

    def clear_cart(self) -> None:
        if self.is_authenticated:
            try:
                self.api.delete("/cart/clear")
            except ApiError as exc:
                logger.warning("Clear cart error: %s", exc.message)
                return
            self.load_cart()
        else:
            self.cart = []
            self._save_local_cart()

    def get_cart_items(self) -> List[dict]:
        """Cart lines joined with their products.

        The cached page wins; otherwise the product the server sent with the
        line is used. Lines with no known product are skipped.
        """
        items = []
        for item in self.cart:
            product = self.find_product(item["productId"]) or item.get("product")
            if product:
                items.append({**item, "product": product})
        return items

    def get_cart_total(self) -> float:
        return sum(item["product"]["price"] * item["quantity"] for item in self.get_cart_items())

    def cart_count(self) -> int:
        return sum(item["quantity"] for item in self.cart)
