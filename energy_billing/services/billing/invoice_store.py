"""
Invoice persistence with one invoice per (contract, period).

Writes for the same key are serialized in-process and backed by the
uq_invoice_contract_period constraint across processes; the last writer wins.
"""

import enum
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from energy_billing.core.errors import DuplicateInvoiceError, PersistenceError
from energy_billing.models.invoice import Invoice

logger = logging.getLogger(__name__)


class RegenerationPolicy(str, enum.Enum):
    """What a billing run does with an invoice that already exists for its key."""

    REPLACE = "replace"
    SKIP = "skip"
    FAIL = "fail"

    @classmethod
    def parse(cls, value) -> "RegenerationPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            allowed = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown regeneration policy '{value}'. Allowed: {allowed}") from None


class UpsertStatus(str, enum.Enum):
    CREATED = "created"
    REPLACED = "replaced"
    KEPT = "kept"


@dataclass(frozen=True)
class UpsertResult:
    invoice_id: str
    status: UpsertStatus


class KeyedLock:
    """One lock per key; entries are dropped when nobody holds or waits for them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class InvoiceStore:
    """Stores and retrieves invoices."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._key_locks = KeyedLock()

    def upsert(self, invoice: Invoice, policy: RegenerationPolicy = RegenerationPolicy.REPLACE) -> UpsertResult:
        """
        Saves an invoice, handling an existing one for the same (contract, period).

        The delete of the old invoice and the insert of the new one are
        committed in one transaction.

        Args:
            invoice: New (transient) invoice with invoice_id set
            policy: REPLACE, SKIP or FAIL

        Returns:
            UpsertResult with the stored invoice id and what happened

        Raises:
            DuplicateInvoiceError: invoice exists and policy is FAIL
            PersistenceError: store unavailable or conflict not resolved by a retry
        """
        policy = RegenerationPolicy.parse(policy)
        invoice_id = invoice.invoice_id
        key = (invoice.contract_id, invoice.period)

        with self._key_locks.hold(key):
            for attempt in (1, 2):
                db = self.session_factory()
                try:
                    existing = db.query(Invoice).filter(
                        Invoice.contract_id == key[0],
                        Invoice.period == key[1]
                    ).first()

                    if existing is not None:
                        if policy is RegenerationPolicy.SKIP:
                            return UpsertResult(existing.invoice_id, UpsertStatus.KEPT)
                        if policy is RegenerationPolicy.FAIL:
                            raise DuplicateInvoiceError(
                                f"Invoice {existing.invoice_id} already exists for contract {key[0]}, period {key[1]}"
                            )
                        db.delete(existing)
                        db.flush()

                    db.add(invoice)
                    db.commit()
                    status = UpsertStatus.REPLACED if existing is not None else UpsertStatus.CREATED
                    return UpsertResult(invoice_id, status)
                except IntegrityError as e:
                    db.rollback()
                    if attempt == 2:
                        raise PersistenceError(
                            f"Write conflict for contract {key[0]}, period {key[1]}: {e.orig}"
                        ) from e
                    logger.warning("[invoices] Write conflict for %s/%s, retrying", key[0], key[1])
                except SQLAlchemyError as e:
                    db.rollback()
                    raise PersistenceError(f"Cannot save invoice for contract {key[0]}, period {key[1]}: {e}") from e
                finally:
                    db.close()

    def find_by_contract_and_period(self, contract_id: str, period: str) -> Optional[Invoice]:
        db = self.session_factory()
        try:
            return db.query(Invoice).filter(
                Invoice.contract_id == contract_id,
                Invoice.period == period
            ).first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot load invoice for contract {contract_id}, period {period}: {e}") from e
        finally:
            db.close()

    def list_by_period(self, period: str) -> List[Invoice]:
        db = self.session_factory()
        try:
            return db.query(Invoice).filter(Invoice.period == period).order_by(Invoice.contract_id).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot list invoices for period {period}: {e}") from e
        finally:
            db.close()

    def list_all(self) -> List[Invoice]:
        """Gets all invoices, newest period first."""
        db = self.session_factory()
        try:
            return db.query(Invoice).order_by(
                desc(Invoice.period), desc(Invoice.generated_at), Invoice.contract_id
            ).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot list invoices: {e}") from e
        finally:
            db.close()

    def get(self, invoice_id: str) -> Optional[Invoice]:
        db = self.session_factory()
        try:
            return db.get(Invoice, invoice_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot load invoice {invoice_id}: {e}") from e
        finally:
            db.close()

    def delete(self, invoice_id: str) -> bool:
        """
        Deletes an invoice.

        Returns:
            True if the invoice existed
        """
        invoice = self.get(invoice_id)
        if invoice is None:
            return False

        with self._key_locks.hold((invoice.contract_id, invoice.period)):
            db = self.session_factory()
            try:
                deleted = db.query(Invoice).filter(Invoice.invoice_id == invoice_id).delete()
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Cannot delete invoice {invoice_id}: {e}") from e
            finally:
                db.close()

        if deleted:
            logger.info("[invoices] Deleted invoice %s (%s, %s)", invoice_id, invoice.contract_id, invoice.period)
        return bool(deleted)
