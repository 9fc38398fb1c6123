from helpers import order_payload


class BrokenMailer:

    def __init__(self):
        self.calls = 0

    def send_order_notification(self, order, invoice=None):
        self.calls += 1
        raise ConnectionError("mail relay down")


def register_client(client, email="sara@example.com"):
    response = client.post("/api/auth/register-client", json={
        "full_name": "Sara Ali", "email": email, "password": "secret123",
    })
    assert response.status_code == 201
    return response.json()


def test_root_and_backend_report(client):
    assert client.get("/").status_code == 200
    body = client.get("/test").json()
    assert body["backend"] == "memory"
    assert body["capabilities"] == ["ChatStore", "RequestStore", "ProjectWorkspaceStore"]


def test_catalog_routes(client):
    services = client.get("/api/services").json()
    assert len(services) == 5
    assert client.get("/api/services/ind-1").json()["price"] == 299
    assert client.get("/api/services/nope").status_code == 404


def test_sara_pays_for_her_site(client, admin_headers):
    sara = register_client(client)["account"]
    assert "password" not in sara

    project = client.post("/api/projects", json={"client_id": sara["id"], "project_name": "Sara's Site"})
    assert project.status_code == 201
    assert project.json()["status"] == "analysis"

    order = client.post("/api/orders", json=order_payload(client_id=sara["id"])).json()
    assert order["payment_status"] == "pending"

    paid = client.put(f"/api/orders/{order['id']}/payment",
                      json={"payment_method": "paypal", "payment_status": "completed"})
    assert paid.status_code == 200
    assert paid.json()["payment_status"] == "completed"

    invoice = client.get(f"/api/orders/{order['id']}/invoice").json()
    assert invoice["amount"] == 500
    assert invoice["payment_method"] == "paypal"

    stats = client.get("/api/dashboard/stats", headers=admin_headers).json()
    assert stats["total_revenue"] == 500
    assert stats["total_clients"] == 1
    assert stats["active_projects"] == 1


def test_failing_mailer_keeps_the_order(make_client, memory_store):
    mailer = BrokenMailer()
    client = make_client(memory_store, mailer=mailer)

    created = client.post("/api/orders", json=order_payload())
    assert created.status_code == 201
    order_id = created.json()["id"]

    paid = client.put(f"/api/orders/{order_id}/payment",
                      json={"payment_method": "card", "payment_status": "completed"})
    assert paid.status_code == 200
    assert mailer.calls == 2
    assert memory_store.get_order(order_id)["payment_status"] == "completed"
    assert memory_store.get_order_invoice(order_id) is not None


def test_non_completed_payment_does_not_invoice(client):
    order = client.post("/api/orders", json=order_payload()).json()
    response = client.put(f"/api/orders/{order['id']}/payment",
                          json={"payment_method": "bank_transfer", "payment_status": "failed"})
    assert response.json()["payment_status"] == "failed"
    assert client.get(f"/api/orders/{order['id']}/invoice").status_code == 404


def test_invoice_for_unpaid_order_is_rejected(client):
    order = client.post("/api/orders", json=order_payload()).json()
    response = client.post("/api/invoices", json={"order_id": order["id"]})
    assert response.status_code == 400


def test_unknown_ids_are_404(client):
    assert client.get("/api/orders/missing").status_code == 404
    assert client.post("/api/invoices", json={"order_id": "missing"}).status_code == 404
    assert client.put("/api/orders/missing/status", json={"status": "confirmed"}).status_code == 404
    assert client.get("/api/orders/number/ORD-0-000000").json() == {"detail": "Order not found"}


def test_validation_errors_are_400(client):
    response = client.post("/api/orders", json=order_payload(price=-1, customer_email="nope"))
    assert response.status_code == 400
    fields = {tuple(e["loc"])[-1] for e in response.json()["errors"]}
    assert {"price", "customer_email"} <= fields


def test_discount_validation(client):
    assert client.post("/api/discount-codes/validate", json={"code": "MA3K20"}).status_code == 200
    assert client.post("/api/discount-codes/validate", json={"code": "NOPE"}).status_code == 404


def test_capability_gap_is_501(make_client, mongo_store):
    client = make_client(mongo_store)
    response = client.post("/api/chat/conversations", json={"client_id": "c1"})
    assert response.status_code == 501
    assert client.get("/api/projects/p1/files").status_code == 501
    assert client.get("/test").json() == {"backend": "document", "capabilities": []}


def test_chat_over_http(client):
    conversation = client.post("/api/chat/conversations",
                               json={"project_id": "p1", "client_id": "c1", "employee_id": "e1"}).json()
    again = client.post("/api/chat/conversations", json={"project_id": "p1", "client_id": "c1"}).json()
    assert again["id"] == conversation["id"]

    sent = client.post(f"/api/chat/conversations/{conversation['id']}/messages",
                       json={"sender_id": "e1", "sender_type": "employee", "content": "Welcome"})
    assert sent.status_code == 201
    assert client.get("/api/chat/unread/client/c1").json() == {"count": 1}
    marked = client.put(f"/api/chat/conversations/{conversation['id']}/read", json={"reader_id": "c1"})
    assert marked.json() == {"marked": 1}
    assert client.post("/api/chat/conversations/missing/messages",
                       json={"sender_id": "e1", "sender_type": "employee", "content": "x"}).status_code == 404


def test_questionnaire_initialized_on_read(client):
    questions = client.get("/api/projects/p1/questions").json()
    assert len(questions) == 7
    answered = client.put(f"/api/questions/{questions[0]['id']}/answer", json={"answer": "Sell cakes"})
    assert answered.json()["answer"] == "Sell cakes"
    assert [q["id"] for q in client.get("/api/projects/p1/questions").json()] == [q["id"] for q in questions]


def test_free_course_enrollment_counts(client, memory_store):
    student = client.post("/api/auth/register-student", json={
        "full_name": "Omar", "email": "omar@example.com", "password": "secret123",
    }).json()["account"]
    response = client.post("/api/courses/enroll", json={"student_id": student["id"],
                                                        "course_id": "course-python"})
    assert response.status_code == 201
    assert memory_store.get_student(student["id"])["free_courses_taken"] == 1


class TestAdminAccess:

    def test_missing_token_is_401(self, client):
        assert client.get("/api/admin/analytics").status_code == 401

    def test_client_token_is_403(self, client):
        token = register_client(client)["access_token"]
        response = client.get("/api/admin/analytics", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403

    def test_admin_gets_report(self, client, admin_headers):
        client.post("/api/orders", json=order_payload())
        report = client.get("/api/admin/analytics", headers=admin_headers).json()
        assert report["stats"]["total_orders"] == 1
        assert len(report["revenue_by_month"]) == 6
        assert report["top_services"][0]["name"] == "Basic Personal Website"

    def test_reconciliation_is_empty_after_payment(self, client, admin_headers):
        order = client.post("/api/orders", json=order_payload()).json()
        client.put(f"/api/orders/{order['id']}/payment",
                   json={"payment_method": "paypal", "payment_status": "completed"})
        body = client.get("/api/admin/reconciliation", headers=admin_headers).json()
        assert body == {"orders_missing_invoice": []}

    def test_admin_creates_employee(self, client, admin_headers):
        response = client.post("/api/admin/employees", headers=admin_headers, json={
            "full_name": "Lina Saad", "email": "lina@example.com", "password": "secret123",
        })
        assert response.status_code == 201
        assert response.json()["employee_number"].startswith("EMP-")
        assert "password" not in response.json()
