"""
In-memory storage for the storefront.

The Store owns the users, products and carts collections. Nothing survives a
restart: the application factory builds a Store, seeds it, and hands it to the
request handlers through a dependency.

Products are keyed by a canonical integer id. The storefront frontend also
refers to them by a legacy string alias ("product3"), resolved through an
explicit alias table.
"""

import logging
import threading
from typing import Dict, List, Optional

from errors import NotFoundError, ValidationError
from schemas import Cart, Product, ProductCreate, ProductPatch, ProductRef, User
from security import hash_password

logger = logging.getLogger(__name__)

SEED_USERS = [
    {"firstName": "Admin", "lastName": "User", "email": "admin@ecommerce.com", "password": "admin123", "role": "admin"},
    {"firstName": "John", "lastName": "Doe", "email": "user@example.com", "password": "password123", "role": "customer"},
]

SEED_PRODUCTS = [
    {
        "name": "MacBook Pro 16-inch",
        "category": "Electronics",
        "price": 2499,
        "description": "Powerful laptop with M2 chip, perfect for professionals and creators.",
        "image": "laptop",
        "stock": 15,
        "rating": 4.8,
        "featured": True,
    },
    {
        "name": "Wireless Bluetooth Headphones",
        "category": "Electronics",
        "price": 199,
        "description": "High-quality noise-cancelling headphones with 30-hour battery life.",
        "image": "headphones",
        "stock": 25,
        "rating": 4.5,
        "featured": False,
    },
    {
        "name": "Designer Cotton T-Shirt",
        "category": "Clothing",
        "price": 35,
        "description": "Premium cotton t-shirt with modern fit and sustainable materials.",
        "image": "tshirt",
        "stock": 50,
        "rating": 4.2,
        "featured": False,
    },
    {
        "name": "JavaScript: The Complete Guide",
        "category": "Books",
        "price": 45,
        "description": "Comprehensive guide to modern JavaScript programming techniques.",
        "image": "book",
        "stock": 30,
        "rating": 4.7,
        "featured": True,
    },
    {
        "name": "Smart Home Security Camera",
        "category": "Home",
        "price": 129,
        "description": "4K resolution security camera with motion detection and night vision.",
        "image": "camera",
        "stock": 20,
        "rating": 4.4,
        "featured": False,
    },
    {
        "name": "Running Shoes - Ultra Boost",
        "category": "Sports",
        "price": 180,
        "description": "Premium running shoes with responsive cushioning and breathable design.",
        "image": "shoes",
        "stock": 40,
        "rating": 4.6,
        "featured": True,
    },
]


NULLABLE_PRODUCT_FIELDS = {"image"}


def product_alias(product_id: int) -> str:
    return f"product{product_id}"


class Store:
    def __init__(self):
        # Sync routes run on a thread pool, so every read-modify-write takes this lock.
        self.lock = threading.RLock()
        self.reset()

    def reset(self) -> None:
        with self.lock:
            self.users: List[User] = []
            self.products: List[Product] = []
            self.carts: Dict[int, Cart] = {}
            self.aliases: Dict[str, int] = {}
            self._next_user_id = 1
            self._next_product_id = 1

    def seed(self) -> "Store":
        with self.lock:
            self.reset()
            for data in SEED_USERS:
                data = dict(data)
                password = data.pop("password")
                self.add_user(password_hash=hash_password(password), **data)
            for data in SEED_PRODUCTS:
                product = self._insert_product(dict(data))
                self.aliases[product_alias(product.id)] = product.id
        logger.info("Sample data initialized: %d users, %d products", len(self.users), len(self.products))
        return self

    # Users

    def add_user(self, firstName: str, lastName: str, email: str, password_hash: str, role: str = "customer") -> User:
        with self.lock:
            email = email.lower()
            if self.find_user_by_email(email):
                raise ValidationError("Email already exists")
            user = User(
                id=self._next_user_id,
                firstName=firstName,
                lastName=lastName,
                email=email,
                passwordHash=password_hash,
                role=role,
            )
            self._next_user_id += 1
            self.users.append(user)
            return user

    def find_user_by_email(self, email: str) -> Optional[User]:
        email = email.lower()
        return next((u for u in self.users if u.email == email), None)

    def get_user(self, user_id: int) -> Optional[User]:
        return next((u for u in self.users if u.id == user_id), None)

    # Products

    def canonical_id(self, ref: ProductRef) -> Optional[int]:
        """Map an id or legacy alias to the canonical id, whether or not the product still exists."""
        if isinstance(ref, bool):
            return None
        if isinstance(ref, int):
            return ref
        if isinstance(ref, str):
            ref = ref.strip()
            if ref.isdecimal():
                return int(ref)
            return self.aliases.get(ref)
        return None

    def resolve_product_id(self, ref: ProductRef) -> Optional[int]:
        candidate = self.canonical_id(ref)
        if candidate is None or not any(p.id == candidate for p in self.products):
            return None
        return candidate

    def find_product(self, ref: ProductRef) -> Optional[Product]:
        product_id = self.resolve_product_id(ref)
        if product_id is None:
            return None
        return next(p for p in self.products if p.id == product_id)

    def get_product(self, ref: ProductRef) -> Product:
        product = self.find_product(ref)
        if product is None:
            raise NotFoundError("Product not found")
        return product

    def list_products(self) -> List[Product]:
        return list(self.products)

    def categories(self) -> List[str]:
        seen = []
        for product in self.products:
            if product.category not in seen:
                seen.append(product.category)
        return seen

    def _insert_product(self, data: dict) -> Product:
        product = Product(id=self._next_product_id, **data)
        self._next_product_id += 1
        self.products.append(product)
        return product

    def add_product(self, data: ProductCreate) -> Product:
        with self.lock:
            product = self._insert_product({**data.model_dump(), "featured": False})
            self.aliases[product_alias(product.id)] = product.id
            logger.info("Product %d created: %s", product.id, product.name)
            return product

    def update_product(self, ref: ProductRef, patch: ProductPatch) -> Product:
        with self.lock:
            product = self.get_product(ref)
            changes = {
                k: v for k, v in patch.model_dump(exclude_unset=True).items()
                if v is not None or k in NULLABLE_PRODUCT_FIELDS
            }
            updated = product.model_copy(update=changes)
            self.products[self.products.index(product)] = updated
            return updated

    def delete_product(self, ref: ProductRef) -> Product:
        with self.lock:
            product = self.get_product(ref)
            # ids are never reused, so the alias may stay for cart lines that still point at it
            self.products.remove(product)
            logger.info("Product %d deleted", product.id)
            return product

    def serialize_product(self, product: Product) -> dict:
        data = product.model_dump()
        data["_id"] = product_alias(product.id)
        return data

    # Carts

    def find_cart(self, user_id: int) -> Optional[Cart]:
        return self.carts.get(user_id)

    def get_or_create_cart(self, user_id: int) -> Cart:
        with self.lock:
            cart = self.carts.get(user_id)
            if cart is None:
                cart = Cart(userId=user_id)
                self.carts[user_id] = cart
            return cart
