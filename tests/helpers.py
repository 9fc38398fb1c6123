from auth import get_password_hash

ADMIN_EMAIL = "admin@agency.example.com"
ADMIN_PASSWORD = "admin-pass"

VOLATILE = {"id", "created_at", "updated_at", "order_number", "invoice_number",
            "certificate_number", "paid_at"}


def add_admin(store):
    return store.create_employee({
        "employee_number": "EMP-ADMIN",
        "full_name": "Site Admin",
        "email": ADMIN_EMAIL,
        "password": get_password_hash(ADMIN_PASSWORD),
        "is_admin": True,
    })


def order_payload(**overrides):
    payload = {
        "customer_name": "Sara Ali",
        "customer_email": "sara@example.com",
        "customer_phone": "+966500000000",
        "service_id": "ind-1",
        "service_name": "Basic Personal Website",
        "price": 500,
    }
    payload.update(overrides)
    return payload


def client_payload(**overrides):
    payload = {
        "full_name": "Sara Ali",
        "email": "sara@example.com",
        "password": "hashed",
        "phone": "+966500000000",
        "website_type": "personal",
    }
    payload.update(overrides)
    return payload


def stable_fields(record):
    return {k: v for k, v in record.items() if k not in VOLATILE}
