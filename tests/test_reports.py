import orders
import reports
from schemas import CartLine, CustomerInfo
from tests.conftest import customer_info


def place(store, product, email, quantity=1):
    return orders.submit_order(store, CustomerInfo(**customer_info(email=email)),
                               [CartLine(product_id=product["_id"], quantity=quantity)])


def test_stats(client, store, make_product, admin_headers, customer_headers):
    product = make_product(price=100.0, stock=20)
    make_product(name="Other", stock=0)
    done = place(store, product, "alice@mail.com", quantity=2)
    place(store, product, "alice@mail.com")
    orders.update_order_status(store, done["_id"], "completed")

    resp = client.get("/api/admin/stats", headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["stats"] == {
        "totalProducts": 2,
        "totalOrders": 2,
        "totalCustomers": 1,
        "totalSales": 220.0,
    }
    assert len(body["recentOrders"]) == 2


def test_customers_with_stats(client, store, make_product, admin_headers, customer_headers):
    product = make_product(price=50.0, stock=20)
    completed = place(store, product, "alice@mail.com", quantity=2)
    place(store, product, "alice@mail.com")
    cancelled = place(store, product, "alice@mail.com")
    place(store, product, "guest@mail.com")
    orders.update_order_status(store, completed["_id"], "completed")
    orders.update_order_status(store, cancelled["_id"], "cancelled")

    resp = client.get("/api/customers", headers=admin_headers)
    customers = resp.json()["customers"]
    assert len(customers) == 1
    alice = customers[0]
    assert alice["email"] == "alice@mail.com"
    assert alice["orderCount"] == 3
    assert alice["totalSpent"] == 120.0
    assert "passwordHash" not in alice


def test_customer_without_orders(store):
    store.insert_user({"name": "Quiet", "email": "quiet@mail.com", "password_hash": "x", "role": "customer"})
    [row] = reports.list_customers_with_stats(store)
    assert row["order_count"] == 0
    assert row["total_spent"] == 0.0


def test_empty_stats(store):
    assert reports.get_stats(store) == {
        "total_products": 0,
        "total_orders": 0,
        "total_customers": 0,
        "total_sales": 0.0,
    }
