"""
API endpoints for billing runs.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from energy_billing.api.dependencies import get_orchestrator
from energy_billing.core.billing_period import BillingPeriod
from energy_billing.core.errors import (
    ConcurrentRunError, InvalidPeriodError, PersistenceError, StoreUnavailableError
)
from energy_billing.services.billing.invoice_store import RegenerationPolicy
from energy_billing.services.billing.orchestrator import BillingRunOrchestrator

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/run")
def run_billing(
    period: str,
    policy: Optional[str] = None,
    orchestrator: BillingRunOrchestrator = Depends(get_orchestrator)
):
    """
    Runs billing for a period (YYYY-MM).

    Existing invoices of the period are replaced unless another policy
    ('skip' or 'fail') is given. Contracts that could not be billed are
    listed under 'errors'.
    """
    try:
        run_policy = RegenerationPolicy.parse(policy) if policy else None
        result = orchestrator.run(period, policy=run_policy)
    except ValueError as e:
        # Invalid period or policy
        raise HTTPException(status_code=400, detail=str(e))
    except ConcurrentRunError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreUnavailableError as e:
        # Run aborted; invoices committed before the abort are listed in the partial result
        detail = {"message": str(e)}
        if e.result is not None:
            detail["result"] = e.result.to_dict()
        raise HTTPException(status_code=503, detail=detail)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return result.to_dict()


@router.get("/runs/{period}")
def get_run_status(
    period: str,
    orchestrator: BillingRunOrchestrator = Depends(get_orchestrator)
):
    """Tells whether a billing run for the period is in progress."""
    try:
        billing_period = BillingPeriod.parse(period)
        lease = orchestrator.run_lock.current(str(billing_period))
    except InvalidPeriodError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if lease is None:
        return {"period": str(billing_period), "in_progress": False}

    return {
        "period": lease.period,
        "in_progress": True,
        "run_id": lease.run_id,
        "owner": lease.owner,
        "acquired_at": lease.acquired_at.isoformat(),
        "expires_at": lease.expires_at.isoformat()
    }
