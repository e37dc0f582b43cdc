"""Admin and IT API tests."""

from datetime import timedelta

from rivercafe.core.timeutils import utcnow
from rivercafe.models import ExternalCode


class TestExternalOrders:

    def test_issue_and_collect(self, client, admin, canteen_staff, headers_for, make_product):
        burger = make_product("Burger", 350)
        resp = client.post(
            "/api/admin/external-order",
            json={"items": [{"productId": burger.id}], "issuedToName": "Visiting parent",
                  "expiresInMinutes": 15},
            headers=headers_for(admin),
        )
        body = resp.json()
        assert resp.status_code == 201
        assert body["code"] == body["order"]["code"]
        assert body["order"]["external"] is True
        assert body["externalCode"]["used"] is False

        staff = headers_for(canteen_staff)
        client.post("/api/canteen/product/prepare", json={"productName": "Burger"}, headers=staff)
        resp = client.post("/api/canteen/process", json={"code": body["code"]}, headers=staff)
        assert resp.status_code == 200
        assert resp.json()["issuedToName"] == "Visiting parent"

    def test_name_required(self, client, admin, headers_for, make_product):
        burger = make_product("Burger", 350)
        resp = client.post("/api/admin/external-order", json={"items": [{"productId": burger.id}]},
                           headers=headers_for(admin))
        assert resp.status_code == 400

    def test_admin_only(self, client, it_staff, headers_for):
        resp = client.post("/api/admin/external-order", json={}, headers=headers_for(it_staff))
        assert resp.status_code == 403


class TestCatalog:

    def test_products(self, client, admin, headers_for):
        headers = headers_for(admin)
        resp = client.post("/api/admin/products",
                           json={"name": "Chips", "price": "1.50", "category": "meals"}, headers=headers)
        assert resp.status_code == 201
        assert resp.json()["product"]["price"] == 1.5

        resp = client.post("/api/admin/products", json={"name": "Free lunch", "price": 0}, headers=headers)
        assert resp.json()["error"] == "invalid_amount"

        names = [p["name"] for p in client.get("/api/admin/products", headers=headers).json()["products"]]
        assert names == ["Chips"]

    def test_ordering_windows(self, client, admin, headers_for):
        headers = headers_for(admin)
        resp = client.post(
            "/api/admin/ordering-windows",
            json={"name": "Break", "daysOfWeek": [1, 2, 7], "startTime": "10:00", "endTime": "10:30"},
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.json()["window"]["daysOfWeek"] == [0, 1, 2]

        resp = client.post("/api/admin/ordering-windows",
                           json={"name": "Bad", "startTime": "25:99"}, headers=headers)
        assert resp.status_code == 400

        windows = client.get("/api/admin/ordering-windows", headers=headers).json()["windows"]
        assert [w["name"] for w in windows] == ["Break"]

    def test_settings(self, client, admin, headers_for):
        headers = headers_for(admin)
        resp = client.put("/api/admin/settings/banner", json={"value": {"text": "Closed Friday"}},
                          headers=headers)
        assert resp.status_code == 200
        client.put("/api/admin/settings/banner", json={"value": {"text": "Open"}}, headers=headers)

        settings = client.get("/api/admin/settings", headers=headers).json()["settings"]
        assert [(s["key"], s["value"]) for s in settings] == [("banner", {"text": "Open"})]


    def test_edit_and_disable_product(self, client, admin, student, headers_for, make_product, make_window):
        make_window()
        chips = make_product("Chips", 150)
        headers = headers_for(admin)

        resp = client.put(f"/api/admin/products/{chips.id}", json={"price": "1.75"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["product"]["price"] == 1.75
        assert resp.json()["product"]["name"] == "Chips"

        resp = client.put(f"/api/admin/products/{chips.id}", json={"name": "  "}, headers=headers)
        assert resp.status_code == 400

        resp = client.delete(f"/api/admin/products/{chips.id}", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["product"]["available"] is False

        menu = client.get("/api/student/menu", headers=headers_for(student)).json()
        assert menu["products"] == []
        assert client.get(f"/api/admin/products/{chips.id}", headers=headers).json()["product"]["available"] is False

    def test_unknown_product(self, client, admin, headers_for):
        resp = client.put("/api/admin/products/999", json={"price": 1}, headers=headers_for(admin))
        assert resp.status_code == 404

    def test_edit_and_close_window(self, client, admin, headers_for, make_window):
        window = make_window("Lunch", start_time="12:00", end_time="13:00")
        headers = headers_for(admin)

        resp = client.put(f"/api/admin/ordering-windows/{window.id}",
                          json={"endTime": "13:30", "daysOfWeek": [5, 1]}, headers=headers)
        assert resp.status_code == 200
        body = resp.json()["window"]
        assert (body["startTime"], body["endTime"], body["daysOfWeek"]) == ("12:00", "13:30", [1, 5])

        resp = client.put(f"/api/admin/ordering-windows/{window.id}", json={"startTime": "noon"},
                          headers=headers)
        assert resp.status_code == 400

        resp = client.delete(f"/api/admin/ordering-windows/{window.id}", headers=headers)
        assert resp.json()["window"]["active"] is False
        assert client.get("/api/admin/ordering-windows/424242", headers=headers).status_code == 404


class TestOrderAdministration:

    def test_order_detail(self, client, admin, headers_for, make_order):
        order = make_order(items=[("Burger", 2, 1)])
        resp = client.get(f"/api/admin/orders/{order.id}", headers=headers_for(admin))
        assert resp.status_code == 200
        assert resp.json()["order"]["code"] == order.code
        assert resp.json()["order"]["items"][0]["preparedCount"] == 1

        assert client.get("/api/admin/orders/999", headers=headers_for(admin)).status_code == 404

    def test_external_code_listing(self, client, admin, headers_for, db_session):
        now = utcnow()
        db_session.add_all([
            ExternalCode(code="RC-OLD1", used=False, expires_at=now - timedelta(minutes=5),
                         created_at=now - timedelta(minutes=30)),
            ExternalCode(code="RC-USED", used=True, used_at=now, expires_at=now + timedelta(minutes=30),
                         created_at=now - timedelta(minutes=20)),
            ExternalCode(code="RC-OPEN", used=False, issued_to_name="Visiting parent",
                         expires_at=now + timedelta(minutes=30), created_at=now - timedelta(minutes=10)),
        ])
        db_session.commit()
        headers = headers_for(admin)

        codes = client.get("/api/admin/external-codes", headers=headers).json()["codes"]
        assert [c["code"] for c in codes] == ["RC-OPEN"]
        assert codes[0]["issuedToName"] == "Visiting parent"

        codes = client.get("/api/admin/external-codes", params={"status": "all"}, headers=headers).json()["codes"]
        assert [c["code"] for c in codes] == ["RC-OPEN", "RC-USED", "RC-OLD1"]

        codes = client.get("/api/admin/external-codes", params={"status": "all", "used": "true"},
                           headers=headers).json()["codes"]
        assert [c["code"] for c in codes] == ["RC-USED"]

    def test_admin_only(self, client, canteen_staff, headers_for):
        assert client.get("/api/admin/external-codes", headers=headers_for(canteen_staff)).status_code == 403


class TestAccountAdministration:

    def test_create_student(self, client, it_staff, headers_for):
        resp = client.post("/api/it/create-user",
                           json={"name": "Farai", "role": "student", "regNumber": "R3001"},
                           headers=headers_for(it_staff))
        assert resp.status_code == 201
        assert resp.json()["tempPassword"] == "R3001"
        assert resp.json()["user"]["requirePasswordReset"] is True

        resp = client.post("/api/it/create-user",
                           json={"name": "Farai again", "role": "student", "regNumber": "R3001"},
                           headers=headers_for(it_staff))
        assert resp.status_code == 409
        assert resp.json()["error"] == "conflict"

    def test_reset_password(self, client, it_staff, headers_for, make_user):
        make_user(reg_number="R3002", password="whatever1")
        resp = client.post("/api/it/reset-password", json={"emailOrReg": "R3002"}, headers=headers_for(it_staff))
        assert resp.status_code == 200
        assert resp.json()["tempPassword"]

        resp = client.post("/api/it/reset-password", json={}, headers=headers_for(it_staff))
        assert resp.status_code == 400

    def test_deactivated_user_loses_access(self, client, it_staff, student, headers_for):
        student_headers = headers_for(student)
        resp = client.post(f"/api/it/users/{student.id}/deactivate", headers=headers_for(it_staff))
        assert resp.status_code == 200
        assert resp.json()["user"]["isActive"] is False

        assert client.get("/api/student/me", headers=student_headers).status_code == 401

        client.post(f"/api/it/users/{student.id}/activate", headers=headers_for(it_staff))
        assert client.get("/api/student/me", headers=student_headers).status_code == 200

    def test_students_cannot_administer(self, client, student, headers_for):
        resp = client.post("/api/it/create-user", json={"name": "x", "role": "admin"},
                           headers=headers_for(student))
        assert resp.status_code == 403
