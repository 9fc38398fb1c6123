"""
Relational and document backends must agree wherever both implement an
operation; the capability matrix pins where they are allowed to differ.
"""
import pytest

from storage import supported_capabilities

from helpers import client_payload, order_payload, stable_fields

ALL_SEGMENTS = ["ChatStore", "RequestStore", "ProjectWorkspaceStore"]


@pytest.mark.parametrize("fixture, expected", [
    ("memory_store", ALL_SEGMENTS),
    ("sql_store", ALL_SEGMENTS),
    ("mongo_store", []),
])
def test_capability_matrix(request, fixture, expected):
    assert supported_capabilities(request.getfixturevalue(fixture)) == expected


def _create_and_read(store):
    client = store.create_client(client_payload())
    project = store.create_project({"client_id": client["id"], "project_name": "Sara's Site",
                                    "tools_used": ["React", "FastAPI"]})
    order = store.create_order(order_payload(client_id=client["id"]))
    return {
        "client": store.get_client(client["id"]),
        "project": store.get_project(project["id"]),
        "order": store.get_order(order["id"]),
    }


def test_create_then_get_matches_across_backends(sql_store, mongo_store):
    relational = _create_and_read(sql_store)
    document = _create_and_read(mongo_store)
    for entity in ("client", "project", "order"):
        left, right = stable_fields(relational[entity]), stable_fields(document[entity])
        # Foreign keys point at backend-generated ids
        left.pop("client_id", None)
        right.pop("client_id", None)
        assert left == right


def test_records_have_the_same_keys(sql_store, mongo_store, memory_store):
    keys = {frozenset(_create_and_read(store)["order"]) for store in (sql_store, mongo_store, memory_store)}
    assert len(keys) == 1


def test_ids_are_unique_strings(persistent_store):
    ids = [persistent_store.create_order(order_payload())["id"] for _ in range(5)]
    assert all(isinstance(i, str) for i in ids)
    assert len(set(ids)) == 5


def test_dashboard_parity(sql_store, mongo_store):
    for store in (sql_store, mongo_store):
        order = store.create_order(order_payload(price=250))
        store.complete_order_payment(order["id"], "paypal")
        store.create_order(order_payload(price=75))
        store.create_client(client_payload())
    assert sql_store.get_dashboard_stats() == mongo_store.get_dashboard_stats()
