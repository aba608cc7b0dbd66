"""
Billing runs: turns a period's readings and contracts into invoices.

Algorithm for run(period):
1. Take the period lease (a second run for the same period is rejected)
2. Load contracts whose validity interval intersects the period
3. For each contract (in the calling thread):
   - clip the period to the contract interval
   - build the tariff (misconfigured contracts fail here, before any aggregation)
4. For each prepared contract (worker pool, one session per worker):
   - aggregate readings over the clipped range
   - price usage and tax
   - store the invoice (replace / skip / fail on an existing one)
5. Release the lease

A failing contract is recorded in the result and never stops the others.
Consecutive store failures abort the run with StoreUnavailableError once the
contracts already running have finished. The lease is renewed while workers
run; a run that loses its lease stops starting contracts.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, FIRST_COMPLETED, wait
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from energy_billing.config import Settings, settings as default_settings
from energy_billing.core.billing_period import BillingPeriod, DateRange, resolve_billable_range
from energy_billing.core.errors import (
    BillingError, ConfigurationError, NotBillableError, PersistenceError, StoreUnavailableError
)
from energy_billing.core.money import round_kwh, to_decimal
from energy_billing.models.invoice import Invoice, new_invoice_id
from energy_billing.models.meter import ReadingQuality
from energy_billing.services.billing.invoice_store import (
    InvoiceStore, RegenerationPolicy, UpsertResult, UpsertStatus
)
from energy_billing.services.billing.repositories import ContractRepository, ReadingRepository
from energy_billing.services.billing.run_lock import Lease, PeriodRunLock
from energy_billing.services.billing.tariff import Tariff, price_usage, tariff_for_contract

logger = logging.getLogger(__name__)

WAIT_INTERVAL_SECONDS = 0.1

# Reasons recorded for contracts that were never started
RUN_CANCELLED = "Billing run cancelled"
LEASE_LOST = "Billing run lease lost"
STORE_UNAVAILABLE = "Billing run aborted: store unavailable"


@dataclass(frozen=True)
class ContractFailure:
    contract_id: str
    error: str  # Exception class name, e.g. 'ConfigurationError'
    reason: str

    def to_dict(self) -> dict:
        return {"contract_id": self.contract_id, "error": self.error, "reason": self.reason}


@dataclass(frozen=True)
class SkippedContract:
    contract_id: str
    reason: str

    def to_dict(self) -> dict:
        return {"contract_id": self.contract_id, "reason": self.reason}


@dataclass
class BillingRunResult:
    """Outcome of one billing run."""

    period: str
    run_id: str
    invoice_ids: List[str] = field(default_factory=list)
    replaced_count: int = 0
    skipped: List[SkippedContract] = field(default_factory=list)
    errors: List[ContractFailure] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    @property
    def generated_count(self) -> int:
        return len(self.invoice_ids)

    def to_dict(self) -> dict:
        return {
            "period": self.period,
            "run_id": self.run_id,
            "generated": self.generated_count,
            "invoices": list(self.invoice_ids),
            "replaced": self.replaced_count,
            "skipped": [s.to_dict() for s in self.skipped],
            "errors": [e.to_dict() for e in self.errors],
            "cancelled": self.cancelled,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass(frozen=True)
class BillingJob:
    """Everything a worker needs to bill one contract."""

    contract_id: str
    meter_id: str
    tariff: Tariff
    tax_rate: Decimal
    billable_range: DateRange


class BillingRunOrchestrator:
    """Runs billing for a period."""

    def __init__(
        self,
        session_factory,
        settings: Settings = None,
        store: InvoiceStore = None,
        run_lock: PeriodRunLock = None
    ):
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.store = store or InvoiceStore(session_factory)
        self.run_lock = run_lock or PeriodRunLock(
            session_factory,
            owner=self.settings.owner_id,
            ttl_seconds=self.settings.billing_run_lease_seconds
        )

    @property
    def qualities(self) -> Optional[List[ReadingQuality]]:
        if self.settings.billing_include_estimated:
            return None
        return [ReadingQuality.REAL]

    def run(
        self,
        period: str,
        policy: Optional[RegenerationPolicy] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> BillingRunResult:
        """
        Generates invoices for all contracts active in a period.

        Args:
            period: Period in format 'YYYY-MM'
            policy: What to do with existing invoices (default from settings)
            cancel_event: Set it to stop starting new contracts

        Returns:
            BillingRunResult with generated invoice ids and per-contract errors

        Raises:
            InvalidPeriodError: malformed period
            ConcurrentRunError: a run for this period is already in progress
            StoreUnavailableError: too many consecutive store failures
            PersistenceError: contracts could not be loaded
        """
        billing_period = BillingPeriod.parse(period)
        policy = RegenerationPolicy.parse(policy or self.settings.billing_regeneration_policy)

        lease = self.run_lock.acquire(str(billing_period))
        result = BillingRunResult(period=str(billing_period), run_id=lease.run_id)
        logger.info("[billing] Run %s started for %s (policy: %s)", lease.run_id, billing_period, policy.value)

        try:
            jobs = self._prepare_jobs(billing_period, result)
            self._execute(jobs, billing_period, policy, result, cancel_event, lease)
        finally:
            result.finished_at = datetime.utcnow()
            try:
                self.run_lock.release(lease)
            except PersistenceError as e:
                logger.error("[lease] %s - the lease will expire on its own", e)

        logger.info(
            "[billing] Run %s for %s finished: %d generated (%d replaced), %d skipped, %d errors%s",
            result.run_id, result.period, result.generated_count, result.replaced_count,
            len(result.skipped), len(result.errors), " (cancelled)" if result.cancelled else ""
        )
        return result

    def _prepare_jobs(self, period: BillingPeriod, result: BillingRunResult) -> List[BillingJob]:
        db = self.session_factory()
        try:
            contracts = ContractRepository(db).find_contracts_active_during(period)

            jobs = []
            for contract in contracts:
                try:
                    billable_range = resolve_billable_range(contract.start_date, contract.end_date, period)
                except NotBillableError as e:
                    result.skipped.append(SkippedContract(contract.contract_id, str(e)))
                    continue

                try:
                    tariff = tariff_for_contract(contract)
                except ConfigurationError as e:
                    logger.warning("[billing] Contract %s skipped: %s", contract.contract_id, e)
                    result.errors.append(ContractFailure(contract.contract_id, type(e).__name__, str(e)))
                    continue

                jobs.append(BillingJob(
                    contract_id=contract.contract_id,
                    meter_id=contract.meter_id,
                    tariff=tariff,
                    tax_rate=to_decimal(contract.tax_rate),
                    billable_range=billable_range,
                ))
            return jobs
        finally:
            db.close()

    def _execute(
        self,
        jobs: List[BillingJob],
        period: BillingPeriod,
        policy: RegenerationPolicy,
        result: BillingRunResult,
        cancel_event: Optional[threading.Event],
        lease: Lease
    ) -> None:
        """
        Bills the prepared contracts on the worker pool.

        Once the run is stopped (cancelled, lease lost or store unavailable)
        contracts not yet started are cancelled, and the ones already running
        are waited for and recorded before returning or raising.
        """
        if not jobs:
            return

        max_failures = max(1, self.settings.billing_max_consecutive_store_failures)
        consecutive_failures = 0
        store_error: Optional[PersistenceError] = None
        stop_reason: Optional[str] = None
        workers = max(1, min(self.settings.billing_max_workers, len(jobs)))

        renew_interval = self.run_lock.ttl.total_seconds() / 3
        next_renewal = time.monotonic() + renew_interval

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="billing") as executor:
            futures: Dict = {
                executor.submit(self._bill_contract, job, period, policy): job for job in jobs
            }
            pending = set(futures)

            while pending:
                if stop_reason is None and cancel_event is not None and cancel_event.is_set():
                    stop_reason = RUN_CANCELLED
                    result.cancelled = True
                    logger.warning("[billing] Run %s cancelled", result.run_id)

                # Keep the lease alive while workers may still write
                if stop_reason != LEASE_LOST and time.monotonic() >= next_renewal:
                    next_renewal = time.monotonic() + renew_interval
                    if not self._renew(lease):
                        stop_reason = LEASE_LOST
                        result.cancelled = True

                if stop_reason is not None:
                    for future in pending:
                        future.cancel()

                done, pending = wait(pending, timeout=WAIT_INTERVAL_SECONDS, return_when=FIRST_COMPLETED)

                for future in done:
                    job = futures[future]
                    if future.cancelled():
                        result.skipped.append(SkippedContract(job.contract_id, stop_reason))
                        continue

                    error = self._collect(future, job, result)
                    if not isinstance(error, PersistenceError):
                        consecutive_failures = 0
                        continue

                    consecutive_failures += 1
                    if store_error is None and consecutive_failures >= max_failures:
                        store_error = error
                        if stop_reason is None:
                            stop_reason = STORE_UNAVAILABLE
                        logger.error(
                            "[billing] Run %s: store unavailable, waiting for running contracts",
                            result.run_id
                        )

        if store_error is not None:
            message = (
                f"Billing run for {period} aborted after {max_failures} "
                f"consecutive store failures"
            )
            logger.error("[billing] %s", message)
            raise StoreUnavailableError(message, result=result) from store_error

    def _renew(self, lease: Lease) -> bool:
        try:
            return self.run_lock.renew(lease)
        except PersistenceError as e:
            # Not fatal while the current expiry has not passed; retried on the next interval
            logger.warning("[lease] %s", e)
            return True

    def _collect(self, future: Future, job: BillingJob, result: BillingRunResult) -> Optional[Exception]:
        """Records the outcome of a finished contract. Returns the exception it failed with, if any."""
        try:
            outcome = future.result()
        except BillingError as e:
            logger.warning("[billing] Contract %s: %s", job.contract_id, e)
            result.errors.append(ContractFailure(job.contract_id, type(e).__name__, str(e)))
            return e
        except Exception as e:
            logger.exception("[billing] Contract %s failed", job.contract_id)
            result.errors.append(ContractFailure(job.contract_id, type(e).__name__, str(e)))
            return e

        self._record(outcome, job, result)
        return None

    def _record(self, outcome: UpsertResult, job: BillingJob, result: BillingRunResult) -> None:
        if outcome.status is UpsertStatus.KEPT:
            result.skipped.append(SkippedContract(
                job.contract_id, f"Invoice {outcome.invoice_id} already exists"
            ))
            return
        result.invoice_ids.append(outcome.invoice_id)
        if outcome.status is UpsertStatus.REPLACED:
            result.replaced_count += 1

    def _bill_contract(self, job: BillingJob, period: BillingPeriod, policy: RegenerationPolicy) -> UpsertResult:
        """Aggregates, prices and stores one contract's invoice. Runs in a worker thread."""
        db = self.session_factory()
        try:
            aggregate = ReadingRepository(db).sum_readings(job.meter_id, job.billable_range, self.qualities)
        finally:
            db.close()

        if aggregate.has_gaps:
            logger.warning(
                "[billing] Contract %s: %d of %d hours without readings in %s..%s",
                job.contract_id, aggregate.gap_hours, aggregate.expected_hours,
                job.billable_range.start, job.billable_range.end
            )

        priced = price_usage(job.tariff, aggregate.total_kwh, job.tax_rate)

        invoice = Invoice(
            invoice_id=new_invoice_id(),
            contract_id=job.contract_id,
            meter_id=job.meter_id,
            period=str(period),
            billed_from=job.billable_range.start,
            billed_to=job.billable_range.end,
            total_kwh=round_kwh(priced.total_kwh),
            subtotal=priced.subtotal,
            tax=priced.tax,
            total=priced.total,
            gap_hours=aggregate.gap_hours,
            estimated_hours=aggregate.estimated_hours,
            generated_at=datetime.utcnow(),
        )
        outcome = self.store.upsert(invoice, policy)
        logger.info(
            "[billing] Contract %s: %s kWh, total %s EUR (%s)",
            job.contract_id, round_kwh(priced.total_kwh), priced.total, outcome.status.value
        )
        return outcome
