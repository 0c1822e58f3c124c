from sqlalchemy import select

from app.models import AuditLog, Order, OrderItem
from app.services import pricing


def _client_order(client, headers, product, qty=1, **extra):
    payload = {"items": [{"product_id": product.id, "qty": qty, "color": "черный"}], "phone": "8 999 123 45 67"}
    payload.update(extra)
    return client.post("/api/orders", json=payload, headers=headers)


class TestClientOrders:
    def test_create_order_prices_one_pair_per_size(self, client, make_user, headers_for, make_product):
        buyer = make_user("+79991234567", "client", name="Ольга")
        product = make_product(price_pair=500)
        resp = _client_order(client, headers_for(buyer), product, qty=2)
        assert resp.status_code == 201
        body = resp.json()
        assert body["order_number"] == "10000"
        assert body["status"] == "Новый"
        assert body["phone"] == "+79991234567"
        assert body["full_name"] == "Ольга"
        assert body["items"][0]["price_box"] == 1000
        assert body["total"] == 2000

        second = _client_order(client, headers_for(buyer), product).json()
        assert second["order_number"] == "10001"

        mine = client.get("/api/orders", headers=headers_for(buyer)).json()
        assert [o["order_number"] for o in mine] == ["10001", "10000"]

    def test_number_collision_retried_with_suffix(self, client, make_user, headers_for, make_product, monkeypatch):
        buyer = make_user("+79991234567", "client")
        product = make_product()
        assert _client_order(client, headers_for(buyer), product).json()["order_number"] == "10000"
        monkeypatch.setattr(pricing, "generate_order_number", lambda db: "10000")

        resp = _client_order(client, headers_for(buyer), product)
        assert resp.status_code == 201
        assert resp.json()["order_number"].startswith("10000-")
        assert len(resp.json()["items"]) == 1

    def test_other_clients_orders_hidden(self, client, make_user, headers_for, make_product):
        first = make_user("+79991234567", "client")
        other = make_user("+79991234568", "client")
        _client_order(client, headers_for(first), make_product())
        assert client.get("/api/orders", headers=headers_for(other)).json() == []

    def test_inactive_product_rejected(self, client, make_user, headers_for, make_product):
        buyer = make_user("+79991234567", "client")
        resp = _client_order(client, headers_for(buyer), make_product(is_active=False))
        assert resp.status_code == 400

    def test_empty_order_rejected(self, client, make_user, headers_for):
        buyer = make_user("+79991234567", "client")
        resp = client.post("/api/orders", json={"items": [], "phone": "+79991234567"}, headers=headers_for(buyer))
        assert resp.status_code == 400

    def test_gruzchik_cannot_order(self, client, make_user, headers_for, make_product):
        loader = make_user("+79991234567", "gruzchik")
        resp = _client_order(client, headers_for(loader), make_product())
        assert resp.status_code == 403


class TestAdminOrders:
    def _order(self, client, make_user, headers_for, product):
        buyer = make_user("+79991234567", "client", name="Ольга")
        return _client_order(client, headers_for(buyer), product).json()

    def test_list_includes_status_color_and_gruzchiks(self, client, admin_headers, make_user, headers_for, make_product):
        order = self._order(client, make_user, headers_for, make_product())
        make_user("+79990002233", "gruzchik", name="Петр")
        data = client.get("/api/admin/orders", headers=admin_headers).json()
        assert data["orders"][0]["id"] == order["id"]
        assert data["orders"][0]["status_color"] == "blue"
        assert data["orders"][0]["user"]["name"] == "Ольга"
        assert [g["name"] for g in data["gruzchiks"]] == ["Петр"]

        assert client.get("/api/admin/orders", params={"status": "Куплен"}, headers=admin_headers).json()["orders"] == []

    def test_update_status_and_gruzchik(self, client, admin_headers, make_user, headers_for, make_product, db):
        order = self._order(client, make_user, headers_for, make_product())
        loader = make_user("+79990002233", "gruzchik")
        resp = client.patch(
            f"/api/admin/orders/{order['id']}",
            json={"status": "Купить", "gruzchik_id": str(loader.id), "label": "VIP"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "Купить"
        assert body["status_color"] == "purple"
        assert body["gruzchik_id"] == loader.id
        assert body["user"]["label"] == "VIP"

        cleared = client.patch(f"/api/admin/orders/{order['id']}", json={"gruzchik_id": ""}, headers=admin_headers)
        assert cleared.json()["gruzchik_id"] is None

        db.expire_all()
        log = db.scalars(select(AuditLog).where(AuditLog.action == "order_updated")).first()
        assert "status:Новый->Купить" in log.details

    def test_invalid_status_and_gruzchik(self, client, admin_headers, make_user, headers_for, make_product):
        order = self._order(client, make_user, headers_for, make_product())
        bad_status = client.patch(f"/api/admin/orders/{order['id']}", json={"status": "Потерян"}, headers=admin_headers)
        assert bad_status.status_code == 400
        not_loader = make_user("+79990002233", "client")
        bad_loader = client.patch(f"/api/admin/orders/{order['id']}", json={"gruzchik_id": not_loader.id}, headers=admin_headers)
        assert bad_loader.status_code == 400
        assert client.get("/api/admin/orders/999", headers=admin_headers).status_code == 404

    def test_add_and_delete_item_recalculates_totals(self, client, admin_headers, make_user, headers_for, make_product):
        product = make_product(price_pair=100)
        order = self._order(client, make_user, headers_for, product)
        assert order["total"] == 200

        added = client.post(
            f"/api/admin/orders/{order['id']}/items",
            json={"product_id": product.id, "qty": 2},
            headers=admin_headers,
        )
        assert added.status_code == 201
        # админская коробка: сумма пар по размерной сетке (2 + 3)
        assert added.json()["price_box"] == 500
        detail = client.get(f"/api/admin/orders/{order['id']}", headers=admin_headers).json()
        assert detail["total"] == 1200

        resp = client.delete(f"/api/admin/orders/{order['id']}/items/{added.json()['id']}", headers=admin_headers)
        assert resp.status_code == 200
        detail = client.get(f"/api/admin/orders/{order['id']}", headers=admin_headers).json()
        assert detail["total"] == 200
        assert len(detail["items"]) == 1

    def test_delete_foreign_item(self, client, admin_headers, make_user, headers_for, make_product):
        order = self._order(client, make_user, headers_for, make_product())
        resp = client.delete(f"/api/admin/orders/{order['id']}/items/999", headers=admin_headers)
        assert resp.status_code == 404


class TestGruzchik:
    def _assigned(self, db, loader, product):
        order = Order(order_number="10000", gruzchik_id=loader.id, total=100)
        order.items.append(OrderItem(product_id=product.id, name=product.name, qty=1, price_box=100))
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    def test_sees_only_assigned_orders(self, client, make_user, headers_for, make_product, provider, db):
        loader = make_user("+79990002233", "gruzchik")
        other = make_user("+79990002234", "gruzchik")
        product = make_product(
            provider_id=provider.id,
            images=[
                {"url": "https://cdn/1.jpg", "is_primary": True},
                {"url": "https://cdn/2.jpg", "is_active": False},
            ],
        )
        self._assigned(db, loader, product)

        data = client.get("/api/gruzchik/orders", headers=headers_for(loader)).json()
        assert data["pagination"] == {"page": 1, "limit": 20, "total": 1, "total_pages": 1}
        item = data["orders"][0]["items"][0]
        assert item["product"]["provider"]["link"] == "https://tk-sad.ru/provider/12"
        assert [im["url"] for im in item["product"]["images"]] == ["https://cdn/1.jpg"]

        assert client.get("/api/gruzchik/orders", headers=headers_for(other)).json()["orders"] == []

    def test_client_forbidden(self, client, make_user, headers_for):
        buyer = make_user("+79991234567", "client")
        assert client.get("/api/gruzchik/orders", headers=headers_for(buyer)).status_code == 403

    def test_marks_availability_and_purchase(self, client, make_user, headers_for, make_product, db):
        loader = make_user("+79990002233", "gruzchik")
        order = self._assigned(db, loader, make_product())
        item_id = order.items[0].id

        resp = client.patch(f"/api/gruzchik/order-items/{item_id}/availability", json={"is_available": False}, headers=headers_for(loader))
        assert resp.status_code == 200
        assert resp.json()["is_available"] is False

        resp = client.patch(f"/api/gruzchik/order-items/{item_id}/purchased", json={"is_purchased": True}, headers=headers_for(loader))
        assert resp.json()["is_purchased"] is True

        stranger = make_user("+79990002234", "gruzchik")
        resp = client.patch(f"/api/gruzchik/order-items/{item_id}/purchased", json={"is_purchased": None}, headers=headers_for(stranger))
        assert resp.status_code == 404

    def test_admin_can_mark_any_item(self, client, admin_headers, make_user, make_product, db):
        loader = make_user("+79990002233", "gruzchik")
        order = self._assigned(db, loader, make_product())
        resp = client.patch(
            f"/api/gruzchik/order-items/{order.items[0].id}/availability",
            json={"is_available": True},
            headers=admin_headers,
        )
        assert resp.status_code == 200
