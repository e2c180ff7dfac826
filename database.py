"""
Database Helper Functions

Persistence for products, users and orders behind one store interface.
MongoStore talks to MongoDB through pymongo; InMemoryStore keeps everything
in process and backs demo mode (no DATABASE_URL) and the test suite.

Documents go in and come out as plain dicts with a string "_id".
"""

import copy
import logging
import re
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

import config
from errors import Conflict, OutOfStock, ProductNotFound

logger = logging.getLogger("storefront")

# (product_id, quantity)
StockLine = Tuple[str, int]

DEMO_PRODUCTS = [
    {"name": "Nike Air Force 1", "price": 430, "category": "Nike", "stock": 15, "image": "🔴", "status": "active"},
    {"name": "Off-White Sneakers", "price": 360, "category": "Off-White", "stock": 8, "image": "⚪", "status": "active"},
    {"name": "Adidas Classic", "price": 360, "category": "Adidas", "stock": 12, "image": "⚫", "status": "active"},
    {"name": "New Balance 740", "price": 380, "category": "New Balance", "stock": 10, "image": "🟠", "status": "active"},
]


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _oid(_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(_id)
    except (InvalidId, TypeError):
        return None


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])  # convert ObjectId to string
    return d


def _out_of_stock(product: dict, quantity: int) -> OutOfStock:
    return OutOfStock(
        f"Insufficient stock for {product['name']}: requested {quantity}, available {product.get('stock', 0)}",
        str(product["_id"]),
    )


class Store(Protocol):
    name: str

    def init(self) -> None: ...
    def describe(self) -> Dict[str, Any]: ...

    def list_products(self, category: Optional[str] = None, search: Optional[str] = None,
                      status: Optional[str] = None, featured: Optional[bool] = None) -> List[dict]: ...
    def get_product(self, _id: str) -> Optional[dict]: ...
    def insert_product(self, data: Union[BaseModel, dict]) -> dict: ...
    def update_product(self, _id: str, fields: Dict[str, Any]) -> Optional[dict]: ...
    def delete_product(self, _id: str) -> bool: ...
    def distinct_categories(self) -> List[str]: ...
    def count_products(self) -> int: ...

    def get_user(self, _id: str) -> Optional[dict]: ...
    def get_user_by_email(self, email: str) -> Optional[dict]: ...
    def insert_user(self, data: Union[BaseModel, dict]) -> dict: ...
    def list_users(self, role: Optional[str] = None) -> List[dict]: ...
    def count_users(self, role: Optional[str] = None) -> int: ...

    def insert_order(self, data: Union[BaseModel, dict]) -> dict: ...
    def get_order(self, _id: str) -> Optional[dict]: ...
    def order_code_exists(self, order_id: str) -> bool: ...
    def list_orders(self, status: Optional[str] = None, email: Optional[str] = None,
                    limit: Optional[int] = None) -> List[dict]: ...
    def update_order(self, _id: str, fields: Dict[str, Any],
                     expected: Optional[Dict[str, Any]] = None) -> Optional[dict]: ...
    def count_orders(self) -> int: ...
    def sum_order_totals(self, status: str) -> float: ...
    def order_totals_by_email(self) -> Dict[str, Dict[str, Any]]: ...

    def reserve_stock(self, lines: List[StockLine]) -> None: ...
    def release_stock(self, lines: List[StockLine]) -> None: ...


class MongoStore:
    """Store backed by a MongoDB database; collections product, user, order."""

    name = "mongodb"

    def __init__(self, database_url: str, database_name: str, client: Optional[MongoClient] = None):
        self._client = client if client is not None else MongoClient(database_url)
        self.db = self._client[database_name]

    def init(self) -> None:
        self.db.user.create_index("email", unique=True)
        self.db.order.create_index("order_id", unique=True)
        self.db.order.create_index("customer.email")
        self.db.product.create_index([("category", ASCENDING)])

    def describe(self) -> Dict[str, Any]:
        return {
            "database": "connected",
            "database_name": self.db.name,
            "collections": self.db.list_collection_names(),
        }

    # Products

    def list_products(self, category=None, search=None, status=None, featured=None):
        query: Dict[str, Any] = {}
        if category:
            query["category"] = category
        if search:
            query["name"] = {"$regex": re.escape(search), "$options": "i"}
        if status:
            query["status"] = status
        if featured is not None:
            query["featured"] = featured
        cursor = self.db.product.find(query).sort("created_at", DESCENDING)
        return [serialize_doc(doc) for doc in cursor]

    def get_product(self, _id):
        oid = _oid(_id)
        if oid is None:
            return None
        return serialize_doc(self.db.product.find_one({"_id": oid}))

    def insert_product(self, data):
        payload = _to_dict(data)
        now = _now()
        payload["created_at"] = now
        payload["updated_at"] = now
        self.db.product.insert_one(payload)
        return serialize_doc(payload)

    def update_product(self, _id, fields):
        oid = _oid(_id)
        if oid is None:
            return None
        update = {"$set": {**fields, "updated_at": _now()}}
        doc = self.db.product.find_one_and_update({"_id": oid}, update, return_document=ReturnDocument.AFTER)
        return serialize_doc(doc)

    def delete_product(self, _id):
        oid = _oid(_id)
        if oid is None:
            return False
        return self.db.product.delete_one({"_id": oid}).deleted_count > 0

    def distinct_categories(self):
        return sorted(c for c in self.db.product.distinct("category") if c)

    def count_products(self):
        return self.db.product.count_documents({})

    # Users

    def get_user(self, _id):
        oid = _oid(_id)
        if oid is None:
            return None
        return serialize_doc(self.db.user.find_one({"_id": oid}))

    def get_user_by_email(self, email):
        return serialize_doc(self.db.user.find_one({"email": email}))

    def insert_user(self, data):
        payload = _to_dict(data)
        payload["created_at"] = _now()
        try:
            self.db.user.insert_one(payload)
        except DuplicateKeyError:
            raise Conflict("Email already registered")
        return serialize_doc(payload)

    def list_users(self, role=None):
        query = {"role": role} if role else {}
        return [serialize_doc(doc) for doc in self.db.user.find(query).sort("created_at", DESCENDING)]

    def count_users(self, role=None):
        return self.db.user.count_documents({"role": role} if role else {})

    # Orders

    def insert_order(self, data):
        payload = _to_dict(data)
        now = _now()
        payload["created_at"] = now
        payload["updated_at"] = now
        try:
            self.db.order.insert_one(payload)
        except DuplicateKeyError:
            raise Conflict(f"Order code {payload.get('order_id')} already exists")
        return serialize_doc(payload)

    def get_order(self, _id):
        oid = _oid(_id)
        if oid is None:
            return None
        return serialize_doc(self.db.order.find_one({"_id": oid}))

    def order_code_exists(self, order_id):
        return self.db.order.count_documents({"order_id": order_id}, limit=1) > 0

    def list_orders(self, status=None, email=None, limit=None):
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if email:
            query["customer.email"] = email
        cursor = self.db.order.find(query).sort("created_at", DESCENDING)
        if limit:
            cursor = cursor.limit(int(limit))
        return [serialize_doc(doc) for doc in cursor]

    def update_order(self, _id, fields, expected=None):
        oid = _oid(_id)
        if oid is None:
            return None
        update = {"$set": {**fields, "updated_at": _now()}}
        query = {**(expected or {}), "_id": oid}
        doc = self.db.order.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
        return serialize_doc(doc)

    def count_orders(self):
        return self.db.order.count_documents({})

    def sum_order_totals(self, status):
        pipeline = [
            {"$match": {"status": status}},
            {"$group": {"_id": None, "total": {"$sum": "$total"}}},
        ]
        res = list(self.db.order.aggregate(pipeline))
        return float(res[0]["total"]) if res else 0.0

    def order_totals_by_email(self):
        pipeline = [
            {"$group": {
                "_id": "$customer.email",
                "order_count": {"$sum": 1},
                "total_spent": {"$sum": {"$cond": [{"$eq": ["$status", "completed"]}, "$total", 0]}},
            }},
        ]
        return {
            row["_id"]: {"order_count": row["order_count"], "total_spent": float(row["total_spent"])}
            for row in self.db.order.aggregate(pipeline)
        }

    # Stock

    def reserve_stock(self, lines):
        applied: List[StockLine] = []
        for product_id, quantity in lines:
            oid = _oid(product_id)
            res = None
            if oid is not None:
                res = self.db.product.update_one(
                    {"_id": oid, "stock": {"$gte": quantity}},
                    {"$inc": {"stock": -quantity}, "$currentDate": {"updated_at": True}},
                )
            if res is None or res.modified_count == 0:
                self.release_stock(applied)
                doc = self.db.product.find_one({"_id": oid}) if oid is not None else None
                if not doc:
                    raise ProductNotFound(product_id)
                raise _out_of_stock(doc, quantity)
            applied.append((product_id, quantity))

    def release_stock(self, lines):
        for product_id, quantity in lines:
            self.db.product.update_one(
                {"_id": ObjectId(product_id)},
                {"$inc": {"stock": quantity}, "$currentDate": {"updated_at": True}},
            )
        if lines:
            logger.warning(f"released stock for {len(lines)} line(s)")


class InMemoryStore:
    """Process-local store. All mutations hold a single lock."""

    name = "memory"

    def __init__(self, products: Optional[List[dict]] = None):
        self._lock = threading.RLock()
        self._products: Dict[str, dict] = {}
        self._users: Dict[str, dict] = {}
        self._orders: Dict[str, dict] = {}
        for product in products or []:
            self.insert_product(product)

    def init(self) -> None:
        pass

    def describe(self):
        return {
            "database": "in-memory (demo mode)",
            "database_name": None,
            "collections": ["product", "user", "order"],
        }

    @staticmethod
    def _newest_first(docs: List[dict]) -> List[dict]:
        # stable sort keeps later inserts ahead on equal timestamps
        return sorted(reversed(docs), key=lambda d: d["created_at"], reverse=True)

    def _insert(self, collection: Dict[str, dict], data, stamp_updated=True) -> dict:
        payload = copy.deepcopy(_to_dict(data))
        payload["_id"] = str(ObjectId())
        now = _now()
        payload["created_at"] = now
        if stamp_updated:
            payload["updated_at"] = now
        collection[payload["_id"]] = payload
        return copy.deepcopy(payload)

    def _update(self, collection: Dict[str, dict], _id, fields, expected=None) -> Optional[dict]:
        with self._lock:
            doc = collection.get(_id)
            if doc is None:
                return None
            if expected and any(doc.get(k) != v for k, v in expected.items()):
                return None
            doc.update(copy.deepcopy(fields))
            doc["updated_at"] = _now()
            return copy.deepcopy(doc)

    # Products

    def list_products(self, category=None, search=None, status=None, featured=None):
        needle = search.lower() if search else None
        with self._lock:
            docs = [
                copy.deepcopy(p) for p in self._products.values()
                if (not category or p.get("category") == category)
                and (not needle or needle in p.get("name", "").lower())
                and (not status or p.get("status") == status)
                and (featured is None or bool(p.get("featured")) == featured)
            ]
        return self._newest_first(docs)

    def get_product(self, _id):
        with self._lock:
            doc = self._products.get(_id)
            return copy.deepcopy(doc) if doc else None

    def insert_product(self, data):
        with self._lock:
            return self._insert(self._products, data)

    def update_product(self, _id, fields):
        return self._update(self._products, _id, fields)

    def delete_product(self, _id):
        with self._lock:
            return self._products.pop(_id, None) is not None

    def distinct_categories(self):
        with self._lock:
            return sorted({p["category"] for p in self._products.values() if p.get("category")})

    def count_products(self):
        with self._lock:
            return len(self._products)

    # Users

    def get_user(self, _id):
        with self._lock:
            doc = self._users.get(_id)
            return copy.deepcopy(doc) if doc else None

    def get_user_by_email(self, email):
        with self._lock:
            for doc in self._users.values():
                if doc["email"] == email:
                    return copy.deepcopy(doc)
        return None

    def insert_user(self, data):
        payload = _to_dict(data)
        with self._lock:
            if any(u["email"] == payload["email"] for u in self._users.values()):
                raise Conflict("Email already registered")
            return self._insert(self._users, payload, stamp_updated=False)

    def list_users(self, role=None):
        with self._lock:
            docs = [copy.deepcopy(u) for u in self._users.values() if not role or u.get("role") == role]
        return self._newest_first(docs)

    def count_users(self, role=None):
        with self._lock:
            return sum(1 for u in self._users.values() if not role or u.get("role") == role)

    # Orders

    def insert_order(self, data):
        payload = _to_dict(data)
        with self._lock:
            if self.order_code_exists(payload["order_id"]):
                raise Conflict(f"Order code {payload['order_id']} already exists")
            return self._insert(self._orders, payload)

    def get_order(self, _id):
        with self._lock:
            doc = self._orders.get(_id)
            return copy.deepcopy(doc) if doc else None

    def order_code_exists(self, order_id):
        with self._lock:
            return any(o["order_id"] == order_id for o in self._orders.values())

    def list_orders(self, status=None, email=None, limit=None):
        with self._lock:
            docs = [
                copy.deepcopy(o) for o in self._orders.values()
                if (not status or o.get("status") == status)
                and (not email or o["customer"]["email"] == email)
            ]
        docs = self._newest_first(docs)
        return docs[:int(limit)] if limit else docs

    def update_order(self, _id, fields, expected=None):
        return self._update(self._orders, _id, fields, expected)

    def count_orders(self):
        with self._lock:
            return len(self._orders)

    def sum_order_totals(self, status):
        with self._lock:
            return float(sum(o["total"] for o in self._orders.values() if o.get("status") == status))

    def order_totals_by_email(self):
        totals: Dict[str, Dict[str, Any]] = {}
        with self._lock:
            for o in self._orders.values():
                row = totals.setdefault(o["customer"]["email"], {"order_count": 0, "total_spent": 0.0})
                row["order_count"] += 1
                if o.get("status") == "completed":
                    row["total_spent"] += o["total"]
        return totals

    # Stock

    def reserve_stock(self, lines):
        with self._lock:
            requested: Dict[str, int] = {}
            for product_id, quantity in lines:
                product = self._products.get(product_id)
                if product is None:
                    raise ProductNotFound(product_id)
                requested[product_id] = requested.get(product_id, 0) + quantity
                if product.get("stock", 0) < requested[product_id]:
                    raise _out_of_stock(product, requested[product_id])
            now = _now()
            for product_id, quantity in requested.items():
                self._products[product_id]["stock"] -= quantity
                self._products[product_id]["updated_at"] = now

    def release_stock(self, lines):
        with self._lock:
            for product_id, quantity in lines:
                product = self._products.get(product_id)
                if product is not None:
                    product["stock"] += quantity
        if lines:
            logger.warning(f"released stock for {len(lines)} line(s)")


_store: Optional[Store] = None


def get_store() -> Store:
    """FastAPI dependency returning the process-wide store."""
    global _store
    if _store is None:
        if config.DATABASE_URL and config.DATABASE_NAME:
            _store = MongoStore(config.DATABASE_URL, config.DATABASE_NAME)
        else:
            _store = InMemoryStore(products=DEMO_PRODUCTS)
        logger.info(f"using {_store.name} store")
    return _store
