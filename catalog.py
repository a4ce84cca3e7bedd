"""
Product listing: filter, sort and paginate.

Every call works on the full collection it is given; results are never cached.
The helpers accept either Product models (service side) or plain dicts
(the client store's cached page), read through field_value().
"""

import math
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from schemas import Pagination, ProductQuery

SORTABLE_FIELDS = ("name", "price", "rating", "stock", "category", "id", "featured")
DEFAULT_SORT_FIELD = "name"


def field_value(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def matches_search(item: Any, term: str, include_category: bool = False) -> bool:
    term = term.lower()
    fields = ["name", "description"]
    if include_category:
        fields.append("category")
    return any(term in str(field_value(item, f) or "").lower() for f in fields)


def filter_products(
    products: Iterable[Any],
    search: str = "",
    categories: Optional[Sequence[str]] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    search_category: bool = False,
) -> List[Any]:
    filtered = list(products)
    if search:
        filtered = [p for p in filtered if matches_search(p, search, search_category)]
    if categories:
        filtered = [p for p in filtered if field_value(p, "category") in categories]
    if min_price is not None:
        filtered = [p for p in filtered if (field_value(p, "price") or 0) >= min_price]
    if max_price is not None:
        filtered = [p for p in filtered if (field_value(p, "price") or 0) <= max_price]
    return filtered


def sort_key(item: Any, sort_by: str):
    value = field_value(item, sort_by)
    if isinstance(value, str):
        value = value.lower()
    # missing values sort first
    return (value is not None, value)


def sort_products(products: Iterable[Any], sort_by: str = DEFAULT_SORT_FIELD, sort_order: str = "asc") -> List[Any]:
    if sort_by not in SORTABLE_FIELDS:
        sort_by = DEFAULT_SORT_FIELD
    # sorted() is stable for reverse=True as well, so equal keys keep their input order
    return sorted(products, key=lambda p: sort_key(p, sort_by), reverse=(sort_order == "desc"))


def paginate(items: Sequence[Any], page: int, limit: int) -> Tuple[List[Any], Pagination]:
    start = (page - 1) * limit
    pagination = Pagination(
        currentPage=page,
        totalPages=math.ceil(len(items) / limit),
        totalItems=len(items),
        itemsPerPage=limit,
    )
    return list(items[start:start + limit]), pagination


def query_products(products: Iterable[Any], query: ProductQuery) -> Tuple[List[Any], Pagination]:
    """Apply search, category, price range, sort and pagination, in that order."""
    filtered = filter_products(
        products,
        search=query.search,
        categories=[query.category] if query.category else None,
        min_price=query.minPrice,
        max_price=query.maxPrice,
    )
    ordered = sort_products(filtered, query.sortBy, query.sortOrder)
    return paginate(ordered, query.page, query.limit)
