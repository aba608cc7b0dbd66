"""
Billing error types.

Per-contract errors (ConfigurationError, NotBillableError, PersistenceError,
DuplicateInvoiceError) are recorded in the run result. ConcurrentRunError,
InvalidPeriodError and StoreUnavailableError reach the caller.
"""


class BillingError(Exception):
    """Base class for billing errors."""


class InvalidPeriodError(BillingError, ValueError):
    """Period string is not a valid 'YYYY-MM' month."""


class ConfigurationError(BillingError):
    """Contract violates its tariff invariants (missing or conflicting fields)."""

    def __init__(self, message: str, contract_id: str = None):
        super().__init__(message)
        self.contract_id = contract_id


class NotBillableError(BillingError):
    """Contract validity interval does not intersect the billing period."""


class PersistenceError(BillingError):
    """Store unavailable or write conflict."""


class DuplicateInvoiceError(BillingError):
    """Invoice for the (contract, period) already exists and the policy forbids replacing it."""


class StoreUnavailableError(PersistenceError):
    """Consecutive store failures during a run; the run was aborted."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class ConcurrentRunError(BillingError):
    """A billing run for this period is already in progress."""

    def __init__(self, period: str, run_id: str = None, owner: str = None):
        message = f"Billing run for period {period} is already in progress"
        if owner:
            message += f" (owner: {owner})"
        super().__init__(message)
        self.period = period
        self.run_id = run_id
        self.owner = owner
