"""
FastAPI dependencies for billing services.
"""

from functools import lru_cache

from fastapi import Depends

from energy_billing.config import settings
from energy_billing.core.database import get_session_factory
from energy_billing.services.billing.invoice_store import InvoiceStore
from energy_billing.services.billing.orchestrator import BillingRunOrchestrator


@lru_cache(maxsize=None)
def _store_for(session_factory) -> InvoiceStore:
    # One store per session factory so per-key write locks are shared between requests
    return InvoiceStore(session_factory)


def get_invoice_store(session_factory=Depends(get_session_factory)) -> InvoiceStore:
    return _store_for(session_factory)


def get_orchestrator(
    session_factory=Depends(get_session_factory),
    store: InvoiceStore = Depends(get_invoice_store)
) -> BillingRunOrchestrator:
    return BillingRunOrchestrator(session_factory, settings=settings, store=store)
