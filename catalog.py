"""
Catalog: product listing, lookup and admin edits.
"""

import logging
from typing import Any, Dict, List, Optional

from database import Store
from errors import InvalidInput, NotFound
from schemas import Product

logger = logging.getLogger("storefront")


def list_products(store: Store, category: Optional[str] = None, search: Optional[str] = None,
                  status: Optional[str] = None, featured: Optional[bool] = None) -> List[dict]:
    if category == "All":
        category = None
    return store.list_products(category=category, search=search or None, status=status or None, featured=featured)


def get_product(store: Store, product_id: str) -> dict:
    product = store.get_product(product_id)
    if not product:
        raise NotFound("Product not found")
    return product


def create_product(store: Store, product: Product) -> dict:
    doc = store.insert_product(product)
    logger.info(f"created product {doc['_id']} ({doc['name']})")
    return doc


def update_product(store: Store, product_id: str, fields: Dict[str, Any]) -> dict:
    if not fields:
        return get_product(store, product_id)
    if "stock" in fields and fields["stock"] < 0:
        raise InvalidInput("stock must not be negative")
    doc = store.update_product(product_id, fields)
    if not doc:
        raise NotFound("Product not found")
    return doc


def delete_product(store: Store, product_id: str) -> None:
    if not store.delete_product(product_id):
        raise NotFound("Product not found")
    logger.info(f"deleted product {product_id}")


def list_categories(store: Store) -> List[str]:
    return store.distinct_categories()
