"""Per-user cart operations on the Store."""

import logging
from typing import Optional

from database import Store
from errors import NotFoundError, ValidationError
from schemas import Cart, CartItem, ProductRef, utcnow

logger = logging.getLogger(__name__)


def _find_line(cart: Cart, product_id: Optional[int]) -> Optional[CartItem]:
    if product_id is None:
        return None
    return next((item for item in cart.items if item.productId == product_id), None)


def _existing_cart(store: Store, user_id: int) -> Cart:
    cart = store.find_cart(user_id)
    if cart is None:
        raise NotFoundError("Cart not found")
    return cart


def get_cart(store: Store, user_id: int) -> Cart:
    return store.get_or_create_cart(user_id)


def add_item(store: Store, user_id: int, product_ref: ProductRef, quantity: int = 1) -> Cart:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    with store.lock:
        product = store.get_product(product_ref)
        cart = store.get_or_create_cart(user_id)
        line = _find_line(cart, product.id)
        if line:
            line.quantity += quantity
        else:
            cart.items.append(CartItem(productId=product.id, quantity=quantity, addedAt=utcnow()))
        logger.debug("User %d added %d x product %d", user_id, quantity, product.id)
        return cart


def update_item(store: Store, user_id: int, product_ref: ProductRef, quantity: int) -> Cart:
    with store.lock:
        cart = _existing_cart(store, user_id)
        line = _find_line(cart, store.canonical_id(product_ref))
        if line is None:
            raise NotFoundError("Item not found in cart")
        if quantity <= 0:
            cart.items.remove(line)
        else:
            line.quantity = quantity
        return cart


def remove_item(store: Store, user_id: int, product_ref: ProductRef) -> Cart:
    with store.lock:
        cart = _existing_cart(store, user_id)
        product_id = store.canonical_id(product_ref)
        cart.items = [item for item in cart.items if item.productId != product_id]
        return cart


def clear_cart(store: Store, user_id: int) -> Cart:
    with store.lock:
        cart = store.get_or_create_cart(user_id)
        cart.items = []
        return cart


def populate(store: Store, cart: Cart) -> dict:
    """Cart as JSON, each line carrying the current product (or None once deleted)."""
    with store.lock:
        items = []
        total_price = 0.0
        for item in cart.items:
            product = store.find_product(item.productId)
            if product is not None:
                total_price += product.price * item.quantity
            items.append({
                **item.model_dump(mode="json"),
                "product": store.serialize_product(product) if product else None,
            })
        return {
            "userId": cart.userId,
            "items": items,
            "totalItems": sum(item.quantity for item in cart.items),
            "totalPrice": round(total_price, 2),
        }
