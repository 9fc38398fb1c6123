import re
from datetime import datetime, timedelta, timezone

import pytest

from storage import (
    ChatStore, InvoiceNotAllowed, MissingService, ProjectWorkspaceStore, RequestStore,
    UnsupportedCapability, ValidService, average_rating, build_invoice, generate_number,
    is_discount_valid, new_record, require_capability, resolve_service_ref,
)


class TestDiscountValidity:

    def test_inactive_code_is_invalid(self):
        assert not is_discount_valid({"is_active": False, "expires_at": None})

    def test_expired_code_is_invalid(self):
        yesterday = datetime.now(timezone.utc) - timedelta(days=1)
        assert not is_discount_valid({"is_active": True, "expires_at": yesterday})

    def test_open_ended_code_is_valid(self):
        assert is_discount_valid({"is_active": True, "expires_at": None})

    def test_code_expiring_tomorrow_is_valid(self):
        tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
        assert is_discount_valid({"is_active": True, "expires_at": tomorrow})

    def test_missing_code_is_invalid(self):
        assert not is_discount_valid(None)

    def test_store_validation_returns_the_code(self, any_store):
        assert any_store.validate_discount_code("WELCOME10")["discount_percentage"] == 10
        assert any_store.validate_discount_code("NOPE") is None


class TestServiceRef:

    def test_known_service(self):
        assert resolve_service_ref("ind-1", {"id": "ind-1"}) == ValidService("ind-1")

    def test_unknown_service_keeps_requested_id(self):
        ref = resolve_service_ref("ghost", None)
        assert ref == MissingService("ghost")
        assert ref.service_id is None


class TestHelpers:

    def test_generated_numbers_have_prefix_timestamp_and_suffix(self):
        number = generate_number("ORD")
        assert re.fullmatch(r"ORD-\d{13}-[0-9A-F]{6}", number)

    def test_generated_numbers_differ_within_the_same_millisecond(self):
        assert len({generate_number("INV") for _ in range(50)}) == 50

    def test_average_rating(self):
        assert average_rating([]) == 0
        assert average_rating([{"rating": 5}, {"rating": 4}, {"rating": 4}]) == 4.3

    def test_new_record_fills_defaults_and_ignores_none(self):
        record = new_record("project", {"project_name": "Shop", "status": None, "client_id": "c1"})
        assert record["status"] == "analysis"
        assert record["tools_used"] == []
        assert record["created_at"] == record["updated_at"]
        assert "id" not in record

    def test_new_record_does_not_share_mutable_defaults(self):
        first = new_record("service", {"name": "A"})
        first["features"].append("x")
        assert new_record("service", {"name": "B"})["features"] == []


class TestInvoiceSnapshot:

    def test_unpaid_order_cannot_be_invoiced(self):
        with pytest.raises(InvoiceNotAllowed):
            build_invoice({"id": "o1", "order_number": "ORD-1", "payment_status": "pending"})

    def test_invoice_copies_order_fields(self):
        invoice = build_invoice({
            "id": "o1", "order_number": "ORD-1", "payment_status": "completed",
            "customer_name": "Sara", "customer_email": "sara@example.com",
            "service_name": "Site", "price": 500, "payment_method": "paypal",
        })
        assert invoice["amount"] == 500
        assert invoice["order_id"] == "o1"
        assert invoice["invoice_number"].startswith("INV-")


class TestCapabilities:

    @pytest.mark.parametrize("segment", [ChatStore, RequestStore, ProjectWorkspaceStore])
    def test_memory_store_supports_every_segment(self, memory_store, segment):
        assert require_capability(memory_store, segment) is memory_store

    @pytest.mark.parametrize("segment", [ChatStore, RequestStore, ProjectWorkspaceStore])
    def test_document_store_rejects_segments(self, mongo_store, segment):
        with pytest.raises(UnsupportedCapability) as excinfo:
            require_capability(mongo_store, segment)
        assert excinfo.value.backend == "document"
        assert excinfo.value.capability == segment.__name__
