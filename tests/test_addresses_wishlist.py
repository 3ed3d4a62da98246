from blissbay.models import Address
from tests.factories import headers_for, make_product, stock_of


def defaults(db, user_id):
    db.expire_all()
    return [a.id for a in db.query(Address).filter(Address.user_id == user_id, Address.is_default.is_(True))]


class TestAddresses:
    def test_first_address_becomes_default(self, client, auth, address_payload):
        resp = client.post("/api/addresses", json=address_payload, headers=auth)
        assert resp.status_code == 201
        assert resp.json()["is_default"] is True

    def test_single_default_per_user(self, client, db, user, auth, address_payload):
        first = client.post("/api/addresses", json=address_payload, headers=auth).json()
        second = client.post(
            "/api/addresses", json=dict(address_payload, street="1 Main St", is_default=True), headers=auth,
        ).json()
        assert defaults(db, user.id) == [second["id"]]

        client.patch(f"/api/addresses/{first['id']}/default", headers=auth)
        assert defaults(db, user.id) == [first["id"]]

        client.put(f"/api/addresses/{second['id']}", json={"is_default": True}, headers=auth)
        assert defaults(db, user.id) == [second["id"]]

    def test_deleting_default_promotes_another(self, client, db, user, auth, address_payload):
        first = client.post("/api/addresses", json=address_payload, headers=auth).json()
        second = client.post("/api/addresses", json=dict(address_payload, street="1 Main St"), headers=auth).json()

        resp = client.delete(f"/api/addresses/{first['id']}", headers=auth)
        assert resp.status_code == 200
        assert defaults(db, user.id) == [second["id"]]

    def test_other_users_address_is_not_found(self, client, other_user, settings, auth, address_payload):
        mine = client.post("/api/addresses", json=address_payload, headers=auth).json()
        resp = client.delete(f"/api/addresses/{mine['id']}", headers=headers_for(other_user, settings))
        assert resp.status_code == 404

    def test_missing_fields(self, client, auth):
        resp = client.post("/api/addresses", json={"street": "x"}, headers=auth)
        assert resp.status_code == 400
        fields = {e["field"] for e in resp.json()["errors"]}
        assert {"city", "state", "country"} <= fields


class TestWishlist:
    def test_add_and_duplicate(self, client, db, auth):
        product = make_product(db)
        resp = client.post("/api/wishlist", json={"productId": product.id}, headers=auth)
        assert resp.status_code == 201
        assert resp.json()["in_stock"] is True

        resp = client.post("/api/wishlist", json={"productId": product.id}, headers=auth)
        assert resp.status_code == 409
        assert resp.json()["reason"] == "already_in_wishlist"

    def test_soft_remove_and_restore(self, client, db, auth):
        product = make_product(db)
        client.post("/api/wishlist", json={"productId": product.id}, headers=auth)

        resp = client.delete(f"/api/wishlist/{product.id}", headers=auth)
        assert resp.json()["is_deleted"] is True
        assert client.get("/api/wishlist", headers=auth).json()["total"] == 0
        assert client.get("/api/wishlist/removed", headers=auth).json()["total"] == 1
        assert client.get(f"/api/wishlist/check/{product.id}", headers=auth).json()["in_wishlist"] is False

        resp = client.post(f"/api/wishlist/{product.id}/restore", headers=auth)
        assert resp.status_code == 200
        assert client.get("/api/wishlist", headers=auth).json()["total"] == 1

    def test_re_adding_revives_tombstone(self, client, db, auth):
        product = make_product(db)
        client.post("/api/wishlist", json={"productId": product.id}, headers=auth)
        client.delete(f"/api/wishlist/{product.id}", headers=auth)

        resp = client.post("/api/wishlist", json={"productId": product.id}, headers=auth)
        assert resp.status_code == 201
        assert client.get("/api/wishlist/removed", headers=auth).json()["total"] == 0

    def test_restore_all(self, client, db, auth):
        for name in ("A", "B"):
            product = make_product(db, name=name)
            client.post("/api/wishlist", json={"productId": product.id}, headers=auth)
            client.delete(f"/api/wishlist/{product.id}", headers=auth)

        assert client.post("/api/wishlist/restore", headers=auth).json() == {"restored": 2}

    def test_permanent_remove_and_clear(self, client, db, auth):
        a = make_product(db, name="A")
        b = make_product(db, name="B")
        client.post("/api/wishlist", json={"productId": a.id}, headers=auth)
        client.post("/api/wishlist", json={"productId": b.id}, headers=auth)

        client.delete(f"/api/wishlist/{a.id}/permanent", headers=auth)
        assert client.post(f"/api/wishlist/{a.id}/restore", headers=auth).status_code == 404

        assert client.delete("/api/wishlist/clear", headers=auth).json() == {"removed": 1}

    def test_move_to_cart(self, client, db, auth):
        product = make_product(db, stock=4)
        client.post("/api/wishlist", json={"productId": product.id}, headers=auth)

        resp = client.post(f"/api/wishlist/{product.id}/move-to-cart", json={"quantity": 2}, headers=auth)
        assert resp.status_code == 200
        assert resp.json()["items"][0]["quantity"] == 2
        assert stock_of(db, product.id) == 2
        assert client.get("/api/wishlist", headers=auth).json()["total"] == 0

    def test_move_to_cart_requires_wishlist_item(self, client, db, auth):
        product = make_product(db, stock=4)
        resp = client.post(f"/api/wishlist/{product.id}/move-to-cart", json={"quantity": 1}, headers=auth)
        assert resp.status_code == 404
        assert stock_of(db, product.id) == 4
