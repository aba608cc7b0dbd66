"""
API endpoints for generated invoices.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from energy_billing.api.dependencies import get_invoice_store
from energy_billing.core.billing_period import BillingPeriod
from energy_billing.core.errors import InvalidPeriodError, PersistenceError
from energy_billing.core.money import format_kwh, format_money
from energy_billing.models.invoice import Invoice
from energy_billing.services.billing.invoice_store import InvoiceStore

router = APIRouter(prefix="/api/invoices", tags=["invoices"])


def invoice_to_dict(invoice: Invoice) -> dict:
    """Maps an invoice to its API representation (money as 2-digit decimal strings)."""
    return {
        "invoice_id": invoice.invoice_id,
        "contract_id": invoice.contract_id,
        "meter_id": invoice.meter_id,
        "period": invoice.period,
        "billed_from": invoice.billed_from.isoformat(),
        "billed_to": invoice.billed_to.isoformat(),
        "total_kwh": format_kwh(invoice.total_kwh),
        "subtotal": format_money(invoice.subtotal),
        "tax": format_money(invoice.tax),
        "total": format_money(invoice.total),
        "gap_hours": invoice.gap_hours,
        "estimated_hours": invoice.estimated_hours,
        "generated_at": invoice.generated_at.isoformat() if invoice.generated_at else None
    }


def _parse_period(period: str) -> str:
    try:
        return str(BillingPeriod.parse(period))
    except InvalidPeriodError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("", response_model=List[dict])
def list_invoices(
    period: Optional[str] = None,
    store: InvoiceStore = Depends(get_invoice_store)
):
    """Gets invoices, optionally for one period. Newest period first."""
    try:
        if period is not None:
            invoices = store.list_by_period(_parse_period(period))
        else:
            invoices = store.list_all()
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [invoice_to_dict(i) for i in invoices]


@router.get("/contract/{contract_id}/{period}")
def get_invoice_for_contract(
    contract_id: str,
    period: str,
    store: InvoiceStore = Depends(get_invoice_store)
):
    """Gets the invoice of a contract for a period."""
    try:
        invoice = store.find_by_contract_and_period(contract_id, _parse_period(period))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not invoice:
        raise HTTPException(status_code=404, detail=f"No invoice for contract {contract_id} in period {period}")
    return invoice_to_dict(invoice)


@router.get("/{invoice_id}")
def get_invoice(invoice_id: str, store: InvoiceStore = Depends(get_invoice_store)):
    """Gets invoice by ID."""
    try:
        invoice = store.get(invoice_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice_to_dict(invoice)


@router.delete("/{invoice_id}")
def delete_invoice(invoice_id: str, store: InvoiceStore = Depends(get_invoice_store)):
    """Deletes invoice by ID. The next billing run for its period generates it again."""
    try:
        deleted = store.delete(invoice_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not deleted:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return {"message": "Invoice deleted", "invoice_id": invoice_id}
