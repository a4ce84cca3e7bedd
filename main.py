import logging
import threading
import time
from typing import Dict, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware

import carts
from catalog import query_products
from database import Store
from errors import AuthError, ForbiddenError, ValidationError, error_response, install_error_handlers
from schemas import (
    AuthResponse,
    CartAddInput,
    CartUpdateInput,
    LoginInput,
    ProductCreate,
    ProductPatch,
    ProductQuery,
    RegisterInput,
    User,
)
from security import create_access_token, decode_token, hash_password, verify_password
from settings import (
    API_PREFIX,
    CORS_ORIGINS,
    DEFAULT_MAX_PRICE,
    DEFAULT_MIN_PRICE,
    DEFAULT_PAGE_SIZE,
    LOG_LEVEL,
    MIN_PASSWORD_LENGTH,
    PORT,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
)

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
}


class RateLimiter:
    """Fixed-window request counter per client address. Excess requests are rejected, not queued."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def allow(self, client: str, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        with self._lock:
            self._windows = {
                key: window for key, window in self._windows.items()
                if now - window[0] < self.window_seconds
            }
            started, count = self._windows.get(client, (now, 0))
            if count >= self.max_requests:
                return False
            self._windows[client] = (started, count + 1)
            return True


# Dependencies

def get_store(request: Request) -> Store:
    return request.app.state.store


def get_current_user(authorization: Optional[str] = Header(default=None), store: Store = Depends(get_store)) -> User:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Access token required")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise AuthError("Access token required")
    payload = decode_token(token)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise ForbiddenError("Invalid token")
    user = store.get_user(user_id)
    if not user:
        raise AuthError("Invalid token")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise ForbiddenError("Admin access required")
    return current_user


def product_query(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    search: str = "",
    category: str = "",
    minPrice: float = DEFAULT_MIN_PRICE,
    maxPrice: float = DEFAULT_MAX_PRICE,
    sortBy: str = "name",
    sortOrder: str = "asc",
) -> ProductQuery:
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be at least 1")
    if sortOrder not in ("asc", "desc"):
        sortOrder = "asc"
    return ProductQuery(
        page=page,
        limit=limit,
        search=search,
        category=category,
        minPrice=minPrice,
        maxPrice=maxPrice,
        sortBy=sortBy,
        sortOrder=sortOrder,
    )


router = APIRouter()


@router.get("/health")
def health():
    return {"status": "OK", "message": "TechMart API is running"}


# Auth
@router.post("/auth/register", status_code=201, response_model=AuthResponse)
def register(payload: RegisterInput, store: Store = Depends(get_store)):
    if not all([payload.firstName, payload.lastName, payload.email, payload.password]):
        raise ValidationError("All fields are required")
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if store.find_user_by_email(payload.email):
        raise ValidationError("Email already exists")
    user = store.add_user(
        firstName=payload.firstName,
        lastName=payload.lastName,
        email=payload.email,
        password_hash=hash_password(payload.password),
    )
    logger.info("Registered user %d", user.id)
    return AuthResponse(token=create_access_token(user), user=user.public())


@router.post("/auth/login", response_model=AuthResponse)
def login(payload: LoginInput, store: Store = Depends(get_store)):
    if not payload.email or not payload.password:
        raise ValidationError("Email and password are required")
    user = store.find_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.passwordHash):
        raise ValidationError("Invalid email or password")
    return AuthResponse(token=create_access_token(user), user=user.public())


@router.get("/auth/me")
def me(current_user: User = Depends(get_current_user)):
    return {"user": current_user.public()}


# Products
@router.get("/products")
def list_products(response: Response, query: ProductQuery = Depends(product_query), store: Store = Depends(get_store)):
    items, pagination = query_products(store.list_products(), query)
    response.headers.update(NO_CACHE_HEADERS)
    return {
        "products": [store.serialize_product(p) for p in items],
        "pagination": pagination.model_dump(),
    }


@router.get("/products/categories")
def list_categories(response: Response, store: Store = Depends(get_store)):
    response.headers.update(NO_CACHE_HEADERS)
    return store.categories()


@router.get("/products/{product_id}")
def get_product(product_id: str, store: Store = Depends(get_store)):
    return store.serialize_product(store.get_product(product_id))


@router.post("/products", status_code=201, dependencies=[Depends(require_admin)])
def create_product(data: ProductCreate, store: Store = Depends(get_store)):
    return store.serialize_product(store.add_product(data))


@router.put("/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, data: ProductPatch, store: Store = Depends(get_store)):
    return store.serialize_product(store.update_product(product_id, data))


@router.delete("/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, store: Store = Depends(get_store)):
    store.delete_product(product_id)
    return {"message": "Product deleted successfully"}


# Cart
@router.get("/cart")
def get_cart(current_user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    return carts.populate(store, carts.get_cart(store, current_user.id))


@router.post("/cart/add")
def add_to_cart(item: CartAddInput, current_user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    cart = carts.add_item(store, current_user.id, item.productId, item.quantity)
    return carts.populate(store, cart)


@router.put("/cart/update")
def update_cart(item: CartUpdateInput, current_user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    cart = carts.update_item(store, current_user.id, item.productId, item.quantity)
    return carts.populate(store, cart)


@router.delete("/cart/remove/{product_id}")
def remove_from_cart(product_id: str, current_user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    cart = carts.remove_item(store, current_user.id, product_id)
    return carts.populate(store, cart)


@router.delete("/cart/clear")
def clear_cart(current_user: User = Depends(get_current_user), store: Store = Depends(get_store)):
    return carts.populate(store, carts.clear_cart(store, current_user.id))


def create_app(store: Optional[Store] = None, rate_limiter: Optional[RateLimiter] = None) -> FastAPI:
    app = FastAPI(title="TechMart API")
    app.state.store = store if store is not None else Store().seed()
    app.state.rate_limiter = rate_limiter or RateLimiter(RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def guard(request: Request, call_next):
        if request.url.path.startswith(API_PREFIX):
            client = request.client.host if request.client else "unknown"
            if not request.app.state.rate_limiter.allow(client):
                logger.warning("Rate limit exceeded for %s", client)
                return error_response(429, "Too many requests, please slow down!")
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    install_error_handlers(app)

    @app.get("/")
    def read_root():
        return {"message": "TechMart API"}

    app.include_router(router, prefix=API_PREFIX)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
