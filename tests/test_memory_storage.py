"""
The in-memory backend is shared by every worker thread of the app.
"""
import threading

from memory_storage import MemoryStorage

from helpers import order_payload


def run_together(*targets):
    barrier = threading.Barrier(len(targets))
    errors = []

    def worker(target):
        barrier.wait()
        try:
            target()
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return errors


class TestConcurrentAccess:

    def test_reads_while_writing(self, memory_store):
        def writer():
            for _ in range(300):
                memory_store.create_order(order_payload())

        def reader():
            for _ in range(300):
                memory_store.list_orders()
                memory_store.get_dashboard_stats()

        assert run_together(writer, reader, writer, reader) == []
        assert len(memory_store.list_orders()) == 600

    def test_parallel_payments_create_one_invoice(self, memory_store):
        for _ in range(20):
            order_id = memory_store.create_order(order_payload())["id"]

            def pay():
                memory_store.complete_order_payment(order_id, "paypal")

            assert run_together(*[pay] * 8) == []
            invoices = [i for i in memory_store.list_invoices() if i["order_id"] == order_id]
            assert len(invoices) == 1

    def test_parallel_questionnaire_reads_create_one_set(self, memory_store):
        def read():
            memory_store.initialize_project_questions("p1")

        assert run_together(*[read] * 6) == []
        assert len(memory_store.get_project_questions("p1")) == 7


class TestIds:

    def test_caller_ids_are_ignored_outside_seeding(self, memory_store):
        created = memory_store.create_service({"id": "ind-1", "name": "Impostor", "price": 1})
        assert created["id"] != "ind-1"
        assert memory_store.get_service("ind-1")["name"] == "Basic Personal Website"

    def test_seed_ids_are_kept(self):
        store = MemoryStorage()
        assert store.get_service("rest-1") is not None
        store.initialize()
        assert len(store.list_services()) == 5
