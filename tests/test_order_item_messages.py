import pytest
from sqlalchemy import select

from app.config import settings
from app.models import AuditLog, Order, OrderItem, OrderItemMessage
from app.services import storage


@pytest.fixture
def buyer(make_user):
    return make_user("+79991234567", "client", name="Ольга")


@pytest.fixture
def loader(make_user):
    return make_user("+79990002233", "gruzchik", name="Петр")


@pytest.fixture
def item(db, buyer, loader, make_product):
    product = make_product()
    order = Order(order_number="10000", user_id=buyer.id, gruzchik_id=loader.id, total=2000)
    order.items.append(OrderItem(product_id=product.id, name=product.name, qty=1, price_box=2000))
    db.add(order)
    db.commit()
    return order.items[0]


@pytest.fixture
def uploads(monkeypatch):
    stored = []
    monkeypatch.setattr(settings, "cdn_base_url", "https://cdn.example")
    monkeypatch.setattr(storage, "upload_bytes", lambda key, body, content_type=None, config=None: stored.append((key, content_type)) or True)
    return stored


class TestMessages:
    def test_chat_between_roles(self, client, item, buyer, loader, admin_headers, headers_for):
        resp = client.post(f"/api/gruzchik/order-items/{item.id}/messages", json={"text": " Нет 37 размера "}, headers=headers_for(loader))
        assert resp.status_code == 201
        assert resp.json()["text"] == "Нет 37 размера"
        assert resp.json()["sender"] == "gruzchik"
        assert resp.json()["sender_name"] == "Петр"

        client.post(f"/api/admin/order-items/{item.id}/messages", json={"text": "Ищем замену"}, headers=admin_headers)
        client.post(f"/api/order-items/{item.id}/messages", json={"text": "Жду"}, headers=headers_for(buyer))

        for headers, url in [
            (headers_for(buyer), f"/api/order-items/{item.id}/messages"),
            (headers_for(loader), f"/api/gruzchik/order-items/{item.id}/messages"),
            (admin_headers, f"/api/admin/order-items/{item.id}/messages"),
        ]:
            body = client.get(url, headers=headers).json()
            assert body["item_id"] == item.id
            assert [(m["sender"], m["text"]) for m in body["messages"]] == [
                ("gruzchik", "Нет 37 размера"),
                ("admin", "Ищем замену"),
                ("client", "Жду"),
            ]

    def test_empty_message_rejected(self, client, item, loader, headers_for):
        resp = client.post(f"/api/gruzchik/order-items/{item.id}/messages", json={"text": "  "}, headers=headers_for(loader))
        assert resp.status_code == 400
        assert resp.json() == {"error": "Нужен текст сообщения или вложение"}

    def test_foreign_item_hidden(self, client, item, make_user, headers_for):
        other_loader = make_user("+79990002234", "gruzchik")
        other_client = make_user("+79991234568", "client")
        assert client.get(f"/api/gruzchik/order-items/{item.id}/messages", headers=headers_for(other_loader)).status_code == 404
        assert client.get(f"/api/order-items/{item.id}/messages", headers=headers_for(other_client)).status_code == 404
        resp = client.post(f"/api/order-items/{item.id}/messages", json={"text": "чужой"}, headers=headers_for(other_client))
        assert resp.status_code == 404

    def test_client_cannot_use_admin_routes(self, client, item, buyer, headers_for):
        assert client.get(f"/api/admin/order-items/{item.id}/messages", headers=headers_for(buyer)).status_code == 403

    def test_admin_edits_and_deletes(self, client, item, loader, admin_headers, headers_for, db):
        message_id = client.post(f"/api/gruzchik/order-items/{item.id}/messages", json={"text": "опечатка"}, headers=headers_for(loader)).json()["id"]

        resp = client.patch(f"/api/admin/order-items/{item.id}/messages/{message_id}", json={"text": "исправлено"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["text"] == "исправлено"
        assert resp.json()["sender"] == "gruzchik"

        resp = client.patch(f"/api/admin/order-items/{item.id}/messages/{message_id}", json={"text": " "}, headers=admin_headers)
        assert resp.status_code == 400
        assert client.patch(f"/api/admin/order-items/{item.id}/messages/999", json={"text": "x"}, headers=admin_headers).status_code == 404

        assert client.delete(f"/api/admin/order-items/{item.id}/messages/{message_id}", headers=admin_headers).status_code == 200
        db.expire_all()
        assert db.get(OrderItemMessage, message_id) is None
        assert db.scalar(select(AuditLog.action).where(AuditLog.entity_type == "order_item")) == "order_item_message_deleted"

    def test_deleting_order_item_removes_messages(self, client, item, loader, admin_headers, headers_for, db):
        client.post(f"/api/gruzchik/order-items/{item.id}/messages", json={"text": "есть"}, headers=headers_for(loader))
        assert client.delete(f"/api/admin/orders/{item.order_id}/items/{item.id}", headers=admin_headers).status_code == 200
        db.expire_all()
        assert db.scalar(select(OrderItemMessage.id)) is None


class TestUploads:
    def test_gruzchik_uploads_photos(self, client, item, loader, headers_for, uploads):
        resp = client.post(
            f"/api/gruzchik/order-items/{item.id}/messages/upload",
            data={"text": "Вот фото"},
            files=[
                ("files", ("front.jpg", b"jpeg-bytes", "image/jpeg")),
                ("files", ("side.png", b"png-bytes", "image/png")),
            ],
            headers=headers_for(loader),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["text"] == "Вот фото"
        assert [(a["name"], a["type"], a["size"]) for a in body["attachments"]] == [
            ("front.jpg", "image/jpeg", 10),
            ("side.png", "image/png", 9),
        ]
        assert all(a["url"].startswith(f"https://cdn.example/order-items/{item.id}/") for a in body["attachments"])
        assert [key.rsplit(".", 1)[-1] for key, _ in uploads] == ["jpg", "png"]

    def test_admin_single_file_without_text(self, client, item, admin_headers, uploads):
        resp = client.post(
            f"/api/admin/order-items/{item.id}/messages/upload",
            files={"file": ("clip.mp4", b"video", "video/mp4")},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json()["text"] is None
        assert resp.json()["attachments"][0]["type"] == "video/mp4"

    def test_rejects_unsupported_type_before_upload(self, client, item, loader, headers_for, uploads):
        resp = client.post(
            f"/api/gruzchik/order-items/{item.id}/messages/upload",
            files=[
                ("files", ("ok.jpg", b"jpeg", "image/jpeg")),
                ("files", ("doc.pdf", b"%PDF", "application/pdf")),
            ],
            headers=headers_for(loader),
        )
        assert resp.status_code == 400
        assert "application/pdf" in resp.json()["error"]
        assert uploads == []

    def test_requires_files(self, client, item, loader, headers_for, uploads):
        resp = client.post(f"/api/gruzchik/order-items/{item.id}/messages/upload", data={"text": "без файлов"}, headers=headers_for(loader))
        assert resp.status_code == 400

    def test_storage_failure(self, client, item, loader, headers_for, monkeypatch):
        monkeypatch.setattr(storage, "upload_bytes", lambda *args, **kwargs: False)
        resp = client.post(
            f"/api/gruzchik/order-items/{item.id}/messages/upload",
            files={"file": ("front.jpg", b"jpeg", "image/jpeg")},
            headers=headers_for(loader),
        )
        assert resp.status_code == 502


class TestReplacement:
    def _propose(self, client, item, headers, **extra):
        payload = {"image_url": "https://cdn.example/replace.jpg", "admin_comment": "Есть такие же в сером"}
        payload.update(extra)
        return client.post(f"/api/admin/order-items/{item.id}/replacement", json=payload, headers=headers)

    def test_propose_and_accept(self, client, item, buyer, admin, admin_headers, headers_for):
        resp = self._propose(client, item, admin_headers)
        assert resp.status_code == 201
        proposal = resp.json()
        assert proposal["status"] == "pending"
        assert proposal["client_user"]["phone"] == buyer.phone
        assert proposal["admin_user"]["id"] == admin.id

        chat = client.get(f"/api/order-items/{item.id}/messages", headers=headers_for(buyer)).json()["messages"]
        assert chat[-1]["sender"] == "admin"
        assert chat[-1]["text"] == "Есть такие же в сером"
        assert chat[-1]["attachments"][0]["url"] == "https://cdn.example/replace.jpg"

        resp = client.post(
            f"/api/order-items/{item.id}/replacement/response",
            json={"status": "ACCEPTED", "client_comment": "Подходит"},
            headers=headers_for(buyer),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "accepted"
        assert resp.json()["client_comment"] == "Подходит"

        again = client.post(f"/api/order-items/{item.id}/replacement/response", json={"status": "rejected"}, headers=headers_for(buyer))
        assert again.status_code == 404

        listed = client.get(f"/api/order-items/{item.id}/replacement", headers=headers_for(buyer)).json()
        assert [r["status"] for r in listed] == ["accepted"]

    def test_second_pending_proposal_conflicts(self, client, item, admin_headers, buyer, headers_for):
        self._propose(client, item, admin_headers)
        assert self._propose(client, item, admin_headers).status_code == 409

        client.post(f"/api/order-items/{item.id}/replacement/response", json={"status": "rejected"}, headers=headers_for(buyer))
        assert self._propose(client, item, admin_headers).status_code == 201
        history = client.get(f"/api/admin/order-items/{item.id}/replacement", headers=admin_headers).json()
        assert [r["status"] for r in history] == ["pending", "rejected"]

    def test_image_required(self, client, item, admin_headers):
        resp = self._propose(client, item, admin_headers, image_url=None)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Нужно изображение замены"}

    def test_image_key_resolves_public_url(self, client, item, admin_headers, monkeypatch):
        monkeypatch.setattr(settings, "cdn_base_url", "https://cdn.example")
        resp = self._propose(client, item, admin_headers, image_url=None, image_key="order-items/1/photo.jpg")
        assert resp.json()["image_url"] == "https://cdn.example/order-items/1/photo.jpg"

    def test_order_without_client(self, client, item, admin_headers, db):
        order = db.get(Order, item.order_id)
        order.user_id = None
        db.commit()
        resp = self._propose(client, item, admin_headers)
        assert resp.status_code == 400

    def test_invalid_response_status(self, client, item, admin_headers, buyer, headers_for):
        self._propose(client, item, admin_headers)
        resp = client.post(f"/api/order-items/{item.id}/replacement/response", json={"status": "maybe"}, headers=headers_for(buyer))
        assert resp.status_code == 400

    def test_other_client_cannot_respond(self, client, item, admin_headers, make_user, headers_for):
        self._propose(client, item, admin_headers)
        stranger = make_user("+79991234568", "client")
        resp = client.post(f"/api/order-items/{item.id}/replacement/response", json={"status": "accepted"}, headers=headers_for(stranger))
        assert resp.status_code == 404

    def test_admin_edits_and_withdraws_pending(self, client, item, admin_headers, make_user, headers_for):
        replacement_id = self._propose(client, item, admin_headers).json()["id"]
        resp = client.put(
            f"/api/admin/order-items/{item.id}/replacement",
            json={"replacement_id": replacement_id, "image_url": "https://cdn.example/other.jpg", "admin_comment": ""},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["image_url"] == "https://cdn.example/other.jpg"
        assert resp.json()["admin_comment"] is None

        other_admin = make_user("+79990000009", "admin")
        resp = client.delete(f"/api/admin/order-items/{item.id}/replacement/{replacement_id}", headers=headers_for(other_admin))
        assert resp.status_code == 404

        assert client.delete(f"/api/admin/order-items/{item.id}/replacement/{replacement_id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/admin/order-items/{item.id}/replacement", headers=admin_headers).json() == []
