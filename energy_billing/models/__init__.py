"""
Database models - exports all models.
"""

from energy_billing.models.meter import Meter, Reading, ReadingQuality
from energy_billing.models.contract import Contract, ContractType, BillingCycle
from energy_billing.models.invoice import Invoice, BillingRunLease

__all__ = [
    "Meter",
    "Reading",
    "ReadingQuality",
    "Contract",
    "ContractType",
    "BillingCycle",
    "Invoice",
    "BillingRunLease",
]
