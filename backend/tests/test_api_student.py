"""Student API tests."""


class TestMenu:

    def test_menu_shows_regular_products(self, client, student, headers_for, make_product, make_window):
        make_product("Burger", 350)
        make_product("Cake", 1200, category="cakes", is_special=True)
        make_product("Sadza", 300, available=False)
        make_window()

        resp = client.get("/api/student/menu", headers=headers_for(student))
        body = resp.json()
        assert resp.status_code == 200
        assert [p["name"] for p in body["products"]] == ["Burger"]
        assert body["products"][0]["price"] == 3.5
        assert body["orderingOpen"] is True

    def test_special_menu(self, client, student, headers_for, make_product):
        make_product("Cake", 1200, category="cakes", is_special=True)
        body = client.get("/api/student/special-menu", headers=headers_for(student)).json()
        assert [p["name"] for p in body["products"]] == ["Cake"]
        assert body["orderingOpen"] is False

    def test_staff_cannot_use_student_endpoints(self, client, admin, headers_for):
        assert client.get("/api/student/menu", headers=headers_for(admin)).status_code == 403


class TestPlaceOrder:

    def test_place_order(self, client, student, headers_for, make_product, make_window):
        burger = make_product("Burger", 350)
        make_window()

        resp = client.post("/api/student/place-order",
                           json={"items": [{"productId": burger.id, "qty": 2, "notes": "no onions"}]},
                           headers=headers_for(student))
        body = resp.json()
        assert resp.status_code == 201
        assert body["order"]["total"] == 7.0
        assert body["order"]["status"] == "placed"
        assert body["order"]["items"][0]["notes"] == "no onions"
        assert body["tx"]["amount"] == -7.0
        assert body["tx"]["balanceAfter"] == 43.0

        me = client.get("/api/student/me", headers=headers_for(student)).json()
        assert me["user"]["balance"] == 43.0

        orders = client.get("/api/student/orders", headers=headers_for(student)).json()["orders"]
        assert [o["id"] for o in orders] == [body["order"]["id"]]

        txs = client.get("/api/student/transactions", headers=headers_for(student)).json()["transactions"]
        assert [t["type"] for t in txs] == ["order"]

    def test_ordering_closed(self, client, student, headers_for, make_product):
        burger = make_product("Burger", 350)
        resp = client.post("/api/student/place-order", json={"items": [{"productId": burger.id}]},
                           headers=headers_for(student))
        assert resp.status_code == 403
        assert resp.json()["error"] == "ordering_closed"

    def test_insufficient_balance(self, client, make_user, headers_for, make_product, make_window):
        broke = make_user(balance_cents=0)
        burger = make_product("Burger", 350)
        make_window()
        resp = client.post("/api/student/place-order", json={"items": [{"productId": burger.id}]},
                           headers=headers_for(broke))
        assert resp.status_code == 402
        assert resp.json()["error"] == "insufficient_balance"
        assert client.get("/api/student/orders", headers=headers_for(broke)).json()["orders"] == []

    def test_no_items(self, client, student, headers_for, make_window):
        make_window()
        resp = client.post("/api/student/place-order", json={"items": []}, headers=headers_for(student))
        assert resp.status_code == 400

    def test_special_order(self, client, student, headers_for, make_product, make_window):
        cake = make_product("Cake", 1200, category="cakes", is_special=True)
        make_window(category="cakes", is_special=True)
        resp = client.post("/api/student/special-order", json={"items": [{"productId": cake.id}]},
                           headers=headers_for(student))
        assert resp.status_code == 201
        assert resp.json()["order"]["kind"] == "special"
        assert resp.json()["order"]["category"] == "cakes"
