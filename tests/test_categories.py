from blissbay.models import (
    ActivityLog,
    Category,
    Order,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    Product,
)
from tests.factories import make_category, make_product, stock_of


def delivered_order_for(db, user, product):
    order = Order(
        user_id=user.id,
        subtotal=product.price,
        total_amount=product.price,
        status=OrderStatus.delivered,
        payment_status=OrderPaymentStatus.paid,
        payment_method=PaymentMethod.credit_card,
        transaction_id="pi_old",
        shipping_address={"city": "Portland"},
    )
    order.items.append(OrderItem(
        product_id=product.id,
        name_snapshot=product.name,
        price=product.price,
        quantity=1,
        subtotal=product.price,
    ))
    db.add(order)
    db.commit()
    return order


class TestDeleteCategory:
    def test_refused_when_products_were_ordered(self, client, db, user, admin_auth):
        category = make_category(db, "Cameras")
        product = make_product(db, category=category)
        delivered_order_for(db, user, product)

        resp = client.delete(f"/api/admin/categories/{category.id}", headers=admin_auth)
        assert resp.status_code == 409
        assert resp.json()["reason"] == "category_has_orders"
        db.expire_all()
        assert db.get(Category, category.id) is not None

    def test_reassigns_products_and_logs(self, client, db, admin, admin_auth):
        category = make_category(db, "Gadgets")
        product = make_product(db, category=category)

        resp = client.delete(f"/api/admin/categories/{category.id}", headers=admin_auth)
        assert resp.status_code == 200
        body = resp.json()
        assert body["products_reassigned"] == 1

        db.expire_all()
        fallback = db.query(Category).filter(Category.slug == "uncategorized").one()
        assert body["reassigned_to"] == fallback.id
        assert db.get(Product, product.id).category_id == fallback.id
        assert db.get(Category, category.id) is None

        log = db.query(ActivityLog).filter(ActivityLog.entity_id == category.id).one()
        assert log.action == "DELETE"
        assert log.performed_by == admin.id
        assert log.details["before"]["name"] == "Gadgets"
        assert log.details["after"]["product_ids"] == [product.id]

    def test_pulls_products_out_of_carts(self, client, db, auth, admin_auth):
        category = make_category(db, "Toys")
        product = make_product(db, category=category, stock=5, price=10.0)
        client.post("/api/carts/add", json={"productId": product.id, "quantity": 2}, headers=auth)

        body = client.delete(f"/api/admin/categories/{category.id}", headers=admin_auth).json()
        assert body["cart_lines_removed"] == 1
        assert stock_of(db, product.id) == 5

        cart = client.get("/api/carts", headers=auth).json()
        assert cart["items"] == []
        assert cart["total_amount"] == 0

    def test_children_move_up(self, client, db, admin_auth):
        root = make_category(db, "Home")
        middle = make_category(db, "Kitchen", parent=root)
        leaf = make_category(db, "Knives", parent=middle)

        client.delete(f"/api/admin/categories/{middle.id}", headers=admin_auth)

        db.expire_all()
        leaf = db.get(Category, leaf.id)
        assert leaf.parent_id == root.id
        assert [a["id"] for a in leaf.ancestors] == [root.id]

    def test_fallback_is_protected(self, client, db, admin_auth):
        category = make_category(db, "Temp")
        make_product(db, category=category)
        fallback_id = client.delete(f"/api/admin/categories/{category.id}", headers=admin_auth).json()["reassigned_to"]

        resp = client.delete(f"/api/admin/categories/{fallback_id}", headers=admin_auth)
        assert resp.status_code == 403
        assert resp.json()["reason"] == "protected_category"

    def test_requires_admin(self, client, db, auth):
        category = make_category(db)
        resp = client.delete(f"/api/admin/categories/{category.id}", headers=auth)
        assert resp.status_code == 403


class TestCategoryTree:
    def test_create_records_ancestors(self, client, db, admin_auth):
        parent = client.post("/api/admin/categories", json={"name": "Sports"}, headers=admin_auth).json()
        child = client.post(
            "/api/admin/categories",
            json={"name": "Running Shoes", "parent_id": parent["id"]},
            headers=admin_auth,
        ).json()

        assert child["slug"] == "running-shoes"
        assert [a["id"] for a in child["ancestors"]] == [parent["id"]]

        tree = client.get("/api/categories/tree").json()
        sports = next(node for node in tree if node["id"] == parent["id"])
        assert [c["id"] for c in sports["children"]] == [child["id"]]

    def test_cannot_become_own_descendant(self, client, db, admin_auth):
        parent = make_category(db, "Garden")
        child = make_category(db, "Tools", parent=parent)

        resp = client.put(f"/api/admin/categories/{parent.id}", json={"parent_id": child.id}, headers=admin_auth)
        assert resp.status_code == 400

    def test_lookup_by_slug(self, client, db):
        make_category(db, "Board Games")
        resp = client.get("/api/categories/board-games")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Board Games"
