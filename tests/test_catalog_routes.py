from sqlalchemy import select

from app.models import Category, DraftImage, DraftProduct, Order, OrderItem, Product, ProductImage


class TestCategories:
    def test_create_tree_with_counts(self, client, admin_headers, make_product, category):
        make_product()
        make_product()
        resp = client.post(
            "/api/admin/categories",
            json={"name": "летние КРОССОВКИ", "parent_id": category.id},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        child = resp.json()
        assert child["name"] == "Летние кроссовки"
        assert child["path"] == "obuv/krossovki/letnie-krossovki"
        assert child["slug"] == "obuv-krossovki-letnie-krossovki"

        tree = client.get("/api/admin/categories", headers=admin_headers).json()
        assert tree["ok"] is True
        root = tree["items"][0]
        assert root["total_product_count"] == 2
        krossovki = root["children"][0]
        assert krossovki["url_path"] == "krossovki"
        assert krossovki["direct_product_count"] == 2
        assert krossovki["children"][0]["segment"] == "letnie-krossovki"

    def test_name_required(self, client, admin_headers):
        resp = client.post("/api/admin/categories", json={"name": "  "}, headers=admin_headers)
        assert resp.status_code == 400

    def test_url_segment_and_unique_slug(self, client, admin_headers):
        first = client.post("/api/admin/categories", json={"name": "Сапоги", "url_segment": "Boots"}, headers=admin_headers).json()
        assert first["path"] == "boots"
        assert first["slug"] == "sapogi"
        second = client.post("/api/admin/categories", json={"name": "Сапоги", "url_segment": "boots-2"}, headers=admin_headers).json()
        assert second["slug"] == "sapogi-1"

    def test_cannot_be_own_parent(self, client, admin_headers, category):
        resp = client.patch(f"/api/admin/categories/{category.id}", json={"parent_id": category.id}, headers=admin_headers)
        assert resp.status_code == 400

    def test_cannot_move_into_descendant(self, client, admin_headers, category, db):
        root_id = category.parent_id
        resp = client.patch(f"/api/admin/categories/{root_id}", json={"parent_id": category.id}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Нельзя переместить категорию в её потомка"}

    def test_move_rebuilds_paths(self, client, admin_headers, category, db):
        other = client.post("/api/admin/categories", json={"name": "Мужская"}, headers=admin_headers).json()
        resp = client.patch(f"/api/admin/categories/{category.id}", json={"parent_id": other["id"]}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["path"] == "muzhskaia/krossovki"
        assert resp.json()["slug"] == "muzhskaia-krossovki"

    def test_missing_parent(self, client, admin_headers, category):
        resp = client.patch(f"/api/admin/categories/{category.id}", json={"parent_id": 999}, headers=admin_headers)
        assert resp.status_code == 404

    def test_delete_rules(self, client, admin_headers, category, make_product):
        root_id = category.parent_id
        assert client.delete(f"/api/admin/categories/{root_id}", headers=admin_headers).status_code == 400
        product = make_product()
        assert client.delete(f"/api/admin/categories/{category.id}", headers=admin_headers).status_code == 400
        client.delete(f"/api/admin/products/{product.id}", headers=admin_headers)
        assert client.delete(f"/api/admin/categories/{category.id}", headers=admin_headers).status_code == 200

    def test_public_tree_only_active(self, client, admin_headers, category):
        client.post("/api/admin/categories", json={"name": "Скрытая", "is_active": False}, headers=admin_headers)
        tree = client.get("/api/categories/tree").json()
        assert [node["name"] for node in tree["items"]] == ["Обувь"]

        client.patch(f"/api/admin/categories/{category.parent_id}", json={"is_active": False}, headers=admin_headers)
        tree = client.get("/api/categories/tree").json()
        assert tree["items"] == []
        admin_tree = client.get("/api/admin/categories", headers=admin_headers).json()
        assert "Кроссовки" in [ch["name"] for node in admin_tree["items"] for ch in node["children"]]


class TestProducts:
    def test_list_paginates_and_filters(self, client, admin_headers, make_product, category):
        for _ in range(3):
            make_product()
        make_product(name="Special boots", article="777777", is_active=False)
        page = client.get("/api/admin/products", params={"page_size": 2}, headers=admin_headers).json()
        assert page["pagination"] == {"page": 1, "page_size": 2, "total": 4, "total_pages": 2}

        found = client.get("/api/admin/products", params={"search": "special"}, headers=admin_headers).json()
        assert [p["article"] for p in found["products"]] == ["777777"]
        by_article = client.get("/api/admin/products", params={"search": "7777"}, headers=admin_headers).json()
        assert by_article["pagination"]["total"] == 1
        inactive = client.get("/api/admin/products", params={"is_active": False}, headers=admin_headers).json()
        assert inactive["pagination"]["total"] == 1
        by_category = client.get("/api/admin/products", params={"category_id": category.id}, headers=admin_headers).json()
        assert by_category["pagination"]["total"] == 4

    def test_create_manual_product(self, client, admin_headers, category):
        payload = {"name": "Туфли лодочки", "category_id": category.id, "price_pair": 1500, "sizes": [{"size": "37", "count": 1}]}
        resp = client.post("/api/admin/products", json=payload, headers=admin_headers)
        assert resp.status_code == 201
        body = resp.json()
        assert body["slug"] == "tufli-lodochki"
        assert body["source"] == "MANUAL"
        assert len(body["article"]) == 6
        again = client.post("/api/admin/products", json=payload, headers=admin_headers).json()
        assert again["slug"] == "tufli-lodochki-1"

    def test_get_and_update(self, client, admin_headers, make_product):
        product = make_product()
        assert client.get(f"/api/admin/products/{product.id}", headers=admin_headers).status_code == 200
        assert client.get("/api/admin/products/999", headers=admin_headers).status_code == 404

        empty = client.patch(f"/api/admin/products/{product.id}", json={}, headers=admin_headers)
        assert empty.status_code == 400
        assert empty.json() == {"error": "No fields to update"}

        resp = client.patch(f"/api/admin/products/{product.id}", json={"price_pair": 1200, "is_active": False}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["price_pair"] == 1200
        assert resp.json()["is_active"] is False
        assert resp.json()["active_updated_at"] is not None

    def test_delete_refused_when_ordered(self, client, admin_headers, make_product, db):
        product = make_product()
        order = Order(order_number="10000")
        order.items.append(OrderItem(product_id=product.id, name=product.name, qty=1, price_box=100))
        db.add(order)
        db.commit()
        resp = client.delete(f"/api/admin/products/{product.id}", headers=admin_headers)
        assert resp.status_code == 400

    def test_color_activation(self, client, admin_headers, make_product, db):
        product = make_product(
            images=[
                {"url": "https://cdn/1.jpg", "color": "Черный", "is_primary": True},
                {"url": "https://cdn/2.jpg", "color": "черный"},
                {"url": "https://cdn/3.jpg", "color": "белый"},
            ]
        )
        resp = client.patch(f"/api/admin/products/{product.id}/colors/черный", json={"is_active": False}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["updated"] == 2
        db.expire_all()
        states = {im.url: im.is_active for im in db.scalars(select(ProductImage)).all()}
        assert states == {"https://cdn/1.jpg": False, "https://cdn/2.jpg": False, "https://cdn/3.jpg": True}

        bad = client.patch(f"/api/admin/products/{product.id}/colors/черный", json={"is_active": "yes"}, headers=admin_headers)
        assert bad.status_code == 400

    def test_image_groups(self, client, admin_headers, make_product):
        product = make_product(
            images=[
                {"url": "a", "color": "белый"},
                {"url": "b", "color": None},
                {"url": "c", "color": "Черный", "is_primary": True},
                {"url": "d", "color": "черный"},
            ]
        )
        groups = client.get(f"/api/admin/products/{product.id}/image-groups", headers=admin_headers).json()
        assert [(g["color"], [im["url"] for im in g["images"]]) for g in groups] == [
            ("Черный", ["c", "d"]),
            ("белый", ["a"]),
            (None, ["b"]),
        ]

    def test_single_primary_image(self, client, admin_headers, make_product):
        product = make_product()
        first = client.post(f"/api/admin/products/{product.id}/images", json={"url": "https://cdn/1.jpg", "color": "Black"}, headers=admin_headers).json()
        assert first["is_primary"] is True
        assert first["color"] == "черный"
        second = client.post(f"/api/admin/products/{product.id}/images", json={"url": "https://cdn/2.jpg"}, headers=admin_headers).json()
        assert second["is_primary"] is False

        client.patch(f"/api/admin/images/{second['id']}", json={"is_primary": True}, headers=admin_headers)
        detail = client.get(f"/api/admin/products/{product.id}", headers=admin_headers).json()
        assert [(im["id"], im["is_primary"]) for im in detail["images"]] == [(second["id"], True), (first["id"], False)]

        client.delete(f"/api/admin/images/{second['id']}", headers=admin_headers)
        detail = client.get(f"/api/admin/products/{product.id}", headers=admin_headers).json()
        assert [(im["id"], im["is_primary"]) for im in detail["images"]] == [(first["id"], True)]

    def test_videos(self, client, admin_headers, make_product):
        product = make_product()
        video = client.post(f"/api/admin/products/{product.id}/videos", json={"url": "https://cdn/v.mp4", "duration": 12}, headers=admin_headers)
        assert video.status_code == 201
        assert client.delete(f"/api/admin/videos/{video.json()['id']}", headers=admin_headers).status_code == 200


class TestDrafts:
    def _draft(self, db, **kwargs):
        draft = DraftProduct(name=kwargs.pop("name", "Черновик"), price_pair=900, sizes=[{"size": "38", "count": 1}], **kwargs)
        draft.images = [
            DraftImage(url="https://cdn/d1.jpg", color="черный", sort=0),
            DraftImage(url="https://cdn/d2.jpg", color="белый", sort=1, is_active=False),
            DraftImage(url="https://cdn/d3.jpg", color="черный", sort=2),
        ]
        db.add(draft)
        db.commit()
        db.refresh(draft)
        return draft

    def test_approve_defaults_to_first_root_category(self, client, admin_headers, category, db):
        draft = self._draft(db)
        resp = client.post("/api/admin/drafts/approve", json={"ids": [draft.id, 999]}, headers=admin_headers)
        assert resp.status_code == 200
        results = resp.json()["results"]
        assert results[0] == {"id": draft.id, "ok": True, "status": "approved", "product_id": None, "error": None}
        assert results[1]["ok"] is False
        db.expire_all()
        assert db.get(DraftProduct, draft.id).category_id == category.parent_id

    def test_approve_requires_ids_and_root(self, client, admin_headers, db):
        assert client.post("/api/admin/drafts/approve", json={"ids": []}, headers=admin_headers).status_code == 400
        draft = self._draft(db)
        resp = client.post("/api/admin/drafts/approve", json={"ids": [draft.id]}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json() == {"error": "No root category found"}

    def test_convert_to_catalog(self, client, admin_headers, category, db):
        draft = self._draft(db, category_id=category.id)
        pending = client.post("/api/admin/drafts/convert-to-catalog", json={"ids": [draft.id]}, headers=admin_headers).json()
        assert pending["results"][0]["ok"] is False

        client.post("/api/admin/drafts/approve", json={"ids": [draft.id], "category_id": category.id}, headers=admin_headers)
        converted = client.post("/api/admin/drafts/convert-to-catalog", json={"ids": [draft.id]}, headers=admin_headers).json()
        product_id = converted["results"][0]["product_id"]
        assert converted["results"][0]["status"] == "converted"

        db.expire_all()
        product = db.get(Product, product_id)
        assert product.source == "WA"
        assert product.is_active is False
        assert [(im.url, im.is_primary) for im in product.images] == [("https://cdn/d1.jpg", True), ("https://cdn/d3.jpg", False)]

        listed = client.get("/api/admin/drafts", params={"status": "converted"}, headers=admin_headers).json()
        assert [d["id"] for d in listed] == [draft.id]

    def test_reject(self, client, admin_headers, db):
        draft = self._draft(db)
        resp = client.post("/api/admin/drafts/reject", json={"ids": [draft.id]}, headers=admin_headers).json()
        assert resp["results"][0]["status"] == "rejected"


class TestPublicCatalog:
    def test_only_active_products_and_images(self, client, make_product, category, db):
        make_product(
            name="Visible",
            images=[
                {"url": "https://cdn/on.jpg", "color": "черный", "is_primary": True},
                {"url": "https://cdn/off.jpg", "color": "белый", "is_active": False},
            ],
        )
        make_product(name="Hidden", is_active=False)
        data = client.get("/api/catalog").json()
        assert [p["name"] for p in data["products"]] == ["Visible"]
        product = data["products"][0]
        assert [im["url"] for im in product["images"]] == ["https://cdn/on.jpg"]
        assert product["buy_price"] is None
        assert product["category"]["path"] == "krossovki"

    def test_category_filter_includes_descendants(self, client, make_product, category):
        make_product(name="Nested")
        assert client.get("/api/catalog", params={"category_path": "obuv"}).json()["pagination"]["total"] == 1
        assert client.get("/api/catalog", params={"category_path": "krossovki"}).json()["pagination"]["total"] == 1
        assert client.get("/api/catalog", params={"category_path": "nope"}).status_code == 404

    def test_color_filter_and_detail(self, client, make_product):
        product = make_product(images=[{"url": "https://cdn/1.jpg", "color": "черный", "is_primary": True}])
        make_product()
        assert client.get("/api/catalog", params={"color": "черный"}).json()["pagination"]["total"] == 1
        assert client.get(f"/api/catalog/{product.slug}").status_code == 200
        assert client.get("/api/catalog/unknown").status_code == 404
