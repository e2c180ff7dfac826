"""
Admin reporting over orders and customers. Read-only.
"""

from typing import Any, Dict, List

from auth import public_user
from database import Store


def get_stats(store: Store) -> Dict[str, Any]:
    return {
        "total_products": store.count_products(),
        "total_orders": store.count_orders(),
        "total_customers": store.count_users(role="customer"),
        "total_sales": round(store.sum_order_totals("completed"), 2),
    }


def recent_orders(store: Store, limit: int = 10) -> List[dict]:
    return store.list_orders(limit=limit)


def list_customers_with_stats(store: Store) -> List[dict]:
    totals = store.order_totals_by_email()
    customers = []
    for user in store.list_users(role="customer"):
        row = totals.get(user["email"], {"order_count": 0, "total_spent": 0.0})
        customers.append({
            **public_user(user),
            "order_count": row["order_count"],
            "total_spent": round(row["total_spent"], 2),
        })
    return customers
