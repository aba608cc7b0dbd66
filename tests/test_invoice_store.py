"""
Tests for the invoice store: one invoice per (contract, period).
"""

import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

from energy_billing.core.errors import DuplicateInvoiceError
from energy_billing.models import Invoice
from energy_billing.models.invoice import new_invoice_id
from energy_billing.services.billing.invoice_store import (
    InvoiceStore,
    KeyedLock,
    RegenerationPolicy,
    UpsertStatus,
)


def create_invoice(contract_id: str = "C1", period: str = "2024-03", total: str = "130.68", **fields) -> Invoice:
    """Helper for building new invoices."""
    values = {
        "meter_id": "M1",
        "billed_from": date(2024, 3, 1),
        "billed_to": date(2024, 3, 31),
        "total_kwh": Decimal("720.000"),
        "subtotal": Decimal("108.00"),
        "tax": Decimal("22.68"),
        "total": Decimal(total),
        "gap_hours": 24,
        "estimated_hours": 0,
        "generated_at": datetime(2024, 4, 1, 8, 0),
    }
    values.update(fields)
    return Invoice(invoice_id=new_invoice_id(), contract_id=contract_id, period=period, **values)


@pytest.fixture
def store(session_factory, add_meter, add_contract):
    add_meter("M1")
    add_contract("C1", "M1")
    add_contract("C2", "M1")
    return InvoiceStore(session_factory)


class TestUpsert:
    """Create, replace, skip and fail."""

    def test_create(self, store):
        """Test first invoice for a key."""
        invoice = create_invoice()
        result = store.upsert(invoice)
        assert result.status is UpsertStatus.CREATED
        saved = store.get(result.invoice_id)
        assert saved.total == Decimal("130.68")
        assert saved.period == "2024-03"

    def test_replace(self, store):
        """Test the old invoice is removed and the new one stored."""
        first = store.upsert(create_invoice(total="130.68"))
        second = store.upsert(create_invoice(total="99.99"), RegenerationPolicy.REPLACE)

        assert second.status is UpsertStatus.REPLACED
        assert second.invoice_id != first.invoice_id
        assert store.get(first.invoice_id) is None
        invoices = store.list_by_period("2024-03")
        assert len(invoices) == 1
        assert invoices[0].total == Decimal("99.99")

    def test_skip_keeps_existing(self, store):
        """Test SKIP leaves the stored invoice untouched."""
        first = store.upsert(create_invoice(total="130.68"))
        second = store.upsert(create_invoice(total="99.99"), RegenerationPolicy.SKIP)

        assert second.status is UpsertStatus.KEPT
        assert second.invoice_id == first.invoice_id
        assert store.get(first.invoice_id).total == Decimal("130.68")

    def test_fail_on_existing(self, store):
        """Test FAIL raises and writes nothing."""
        store.upsert(create_invoice())
        with pytest.raises(DuplicateInvoiceError):
            store.upsert(create_invoice(), RegenerationPolicy.FAIL)
        assert len(store.list_by_period("2024-03")) == 1

    def test_policy_from_string(self, store):
        """Test policy given by name."""
        store.upsert(create_invoice())
        result = store.upsert(create_invoice(), "skip")
        assert result.status is UpsertStatus.KEPT

    def test_concurrent_writers_same_key(self, store):
        """Test parallel writes for one key leave exactly one invoice."""
        errors = []

        def write(total):
            try:
                store.upsert(create_invoice(total=total))
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        threads = [threading.Thread(target=write, args=(f"{100 + i}.00",)) for i in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(store.list_by_period("2024-03")) == 1


class TestQueries:
    """Lookups and deletion."""

    def test_find_by_contract_and_period(self, store):
        """Test lookup by key."""
        created = store.upsert(create_invoice("C2"))
        found = store.find_by_contract_and_period("C2", "2024-03")
        assert found.invoice_id == created.invoice_id
        assert store.find_by_contract_and_period("C1", "2024-03") is None

    def test_list_by_period(self, store):
        """Test only the period's invoices, ordered by contract."""
        store.upsert(create_invoice("C2", "2024-03"))
        store.upsert(create_invoice("C1", "2024-03"))
        store.upsert(create_invoice("C1", "2024-02"))
        assert [i.contract_id for i in store.list_by_period("2024-03")] == ["C1", "C2"]

    def test_list_all_newest_period_first(self, store):
        """Test ordering across periods."""
        store.upsert(create_invoice("C1", "2024-02"))
        store.upsert(create_invoice("C1", "2024-03"))
        assert [i.period for i in store.list_all()] == ["2024-03", "2024-02"]

    def test_delete(self, store):
        """Test delete reports whether the invoice existed."""
        created = store.upsert(create_invoice())
        assert store.delete(created.invoice_id) is True
        assert store.get(created.invoice_id) is None
        assert store.delete(created.invoice_id) is False


class TestRegenerationPolicy:
    """Parsing policy names."""

    def test_parse(self):
        """Test names are case-insensitive and members pass through."""
        assert RegenerationPolicy.parse("REPLACE") is RegenerationPolicy.REPLACE
        assert RegenerationPolicy.parse(RegenerationPolicy.SKIP) is RegenerationPolicy.SKIP

    def test_unknown(self):
        """Test unknown policy name."""
        with pytest.raises(ValueError):
            RegenerationPolicy.parse("merge")


class TestKeyedLock:
    """Per-key locking."""

    def test_entries_removed_after_release(self):
        """Test no lock entries are left behind."""
        lock = KeyedLock()
        with lock.hold(("C1", "2024-03")):
            assert ("C1", "2024-03") in lock._locks
        assert lock._locks == {}

    def test_different_keys_do_not_block(self):
        """Test another key can be taken while one is held."""
        lock = KeyedLock()
        with lock.hold("a"):
            acquired = threading.Event()

            def other():
                with lock.hold("b"):
                    acquired.set()

            thread = threading.Thread(target=other)
            thread.start()
            assert acquired.wait(timeout=5)
            thread.join()
