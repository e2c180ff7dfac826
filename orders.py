"""
Order intake and order lifecycle.

submit_order prices every line from the catalog, reserves stock for all
lines at once and only then writes the order. A failed reservation leaves
stock untouched and no order behind; a failed write releases the
reservation.
"""

import logging
import secrets
import time
from typing import Dict, List, Optional

import config
from database import Store
from errors import Conflict, InternalError, InvalidInput, NotFound, OutOfStock, ProductNotFound
from schemas import ORDER_STATUSES, PAYMENT_STATUSES, CartLine, CustomerInfo, Order, OrderItem

logger = logging.getLogger("storefront")

ORDER_FLOW = ["pending", "processing", "shipped", "completed"]
TERMINAL_STATUSES = {"completed", "cancelled"}

PAYMENT_TRANSITIONS = {
    "pending": {"paid", "failed"},
    "failed": {"paid"},
    "paid": set(),
}

ORDER_CODE_ATTEMPTS = 3


def _timestamp_code() -> str:
    return "ORD-" + str(int(time.time() * 1000))[-8:]


def generate_order_code(store: Store) -> str:
    code = _timestamp_code()
    while store.order_code_exists(code):
        code = f"{_timestamp_code()}-{secrets.token_hex(2).upper()}"
    return code


def delivery_fee_for(delivery_option: str) -> float:
    try:
        return config.DELIVERY_FEES[delivery_option]
    except KeyError:
        raise InvalidInput(f"Unknown delivery option: {delivery_option}")


def price_lines(store: Store, items: List[CartLine]) -> List[OrderItem]:
    """Merge lines per product and snapshot name, price and image from the catalog."""
    if not items:
        raise InvalidInput("Cart is empty")
    quantities: Dict[str, int] = {}
    for item in items:
        if item.quantity <= 0:
            raise InvalidInput(f"Quantity for {item.name or item.product_id} must be greater than 0")
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

    lines = []
    for product_id, quantity in quantities.items():
        product = store.get_product(product_id)
        if not product:
            raise ProductNotFound(product_id)
        if product.get("status", "active") != "active":
            raise InvalidInput(f"{product['name']} is not available")
        lines.append(OrderItem(
            product_id=product_id,
            name=product["name"],
            price=product["price"],
            quantity=quantity,
            image=product.get("image"),
        ))
    return lines


def _insert_order(store: Store, order: Order) -> dict:
    for _ in range(ORDER_CODE_ATTEMPTS):
        try:
            return store.insert_order(order)
        except Conflict:
            logger.warning(f"order code {order.order_id} taken, retrying")
            order.order_id = generate_order_code(store)
    raise InternalError("Could not allocate an order code")


def submit_order(store: Store, customer: CustomerInfo, items: List[CartLine],
                 payment_method: str = "cash", delivery_option: str = "standard") -> dict:
    delivery_fee = delivery_fee_for(delivery_option)
    lines = price_lines(store, items)
    subtotal = round(sum(line.price * line.quantity for line in lines), 2)
    total = round(subtotal + delivery_fee, 2)

    reservation = [(line.product_id, line.quantity) for line in lines]
    try:
        store.reserve_stock(reservation)
    except (OutOfStock, ProductNotFound) as e:
        logger.info(f"order rejected: {e.message}")
        raise

    snapshot = customer.model_copy(update={"email": customer.email.lower()})
    order = Order(
        order_id=generate_order_code(store),
        customer=snapshot,
        items=lines,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        total=total,
        payment_method=payment_method,
        delivery_option=delivery_option,
    )
    try:
        doc = _insert_order(store, order)
    except Exception as exc:
        logger.exception("saving order failed, releasing stock")
        store.release_stock(reservation)
        raise InternalError("Could not save order") from exc

    logger.info(f"order placed: {doc['order_id']} total={doc['total']}")
    return doc


def get_order(store: Store, order_id: str) -> dict:
    order = store.get_order(order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def list_orders(store: Store, status: Optional[str] = None) -> List[dict]:
    if status and status not in ORDER_STATUSES:
        raise InvalidInput(f"Unknown order status: {status}")
    return store.list_orders(status=status)


def list_customer_orders(store: Store, email: str) -> List[dict]:
    return store.list_orders(email=email.lower())


def check_transition(current: str, status: str) -> None:
    if current in TERMINAL_STATUSES:
        raise InvalidInput(f"Order is already {current}")
    if status == "cancelled":
        return
    if ORDER_FLOW.index(status) < ORDER_FLOW.index(current):
        raise InvalidInput(f"Cannot move order from {current} back to {status}")


def _compare_and_set(store: Store, order_id: str, field: str, current: str, new: str) -> dict:
    """Write field only while it still holds current, else InvalidInput."""
    updated = store.update_order(order_id, {field: new}, expected={field: current})
    if updated:
        return updated
    latest = get_order(store, order_id)
    raise InvalidInput(f"Order changed to {latest.get(field)} while updating to {new}; reload and retry")


def update_order_status(store: Store, order_id: str, status: str) -> dict:
    if status not in ORDER_STATUSES:
        raise InvalidInput(f"Unknown order status: {status}")
    order = get_order(store, order_id)
    if order["status"] == status:
        return order
    check_transition(order["status"], status)
    updated = _compare_and_set(store, order_id, "status", order["status"], status)
    logger.info(f"order {order['order_id']}: {order['status']} -> {status}")
    return updated


def update_payment_status(store: Store, order_id: str, payment_status: str) -> dict:
    if payment_status not in PAYMENT_STATUSES:
        raise InvalidInput(f"Unknown payment status: {payment_status}")
    order = get_order(store, order_id)
    current = order.get("payment_status", "pending")
    if current == payment_status:
        return order
    if payment_status not in PAYMENT_TRANSITIONS[current]:
        raise InvalidInput(f"Cannot change payment status from {current} to {payment_status}")
    updated = _compare_and_set(store, order_id, "payment_status", current, payment_status)
    logger.info(f"order {order['order_id']} payment: {current} -> {payment_status}")
    return updated
