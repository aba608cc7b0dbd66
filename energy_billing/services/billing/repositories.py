"""
Read-only access to contracts and readings for billing runs.
"""

from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from energy_billing.core.billing_period import BillingPeriod, DateRange
from energy_billing.core.errors import PersistenceError
from energy_billing.models.contract import Contract
from energy_billing.models.meter import Reading, ReadingQuality
from energy_billing.services.billing.aggregator import ReadingAggregate, aggregate_readings


class ContractRepository:
    """Queries contracts."""

    def __init__(self, db: Session):
        self.db = db

    def find_contracts_active_during(self, period: BillingPeriod) -> List[Contract]:
        """
        Gets contracts whose validity interval intersects the period.

        Args:
            period: Billing period

        Returns:
            Contracts ordered by contract_id
        """
        try:
            return self.db.query(Contract).filter(
                Contract.start_date <= period.end,
                or_(Contract.end_date.is_(None), Contract.end_date >= period.start)
            ).order_by(Contract.contract_id).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot load contracts for period {period}: {e}") from e

    def get(self, contract_id: str) -> Optional[Contract]:
        try:
            return self.db.get(Contract, contract_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot load contract {contract_id}: {e}") from e


class ReadingRepository:
    """Queries hourly readings."""

    def __init__(self, db: Session):
        self.db = db

    def find_readings(self, meter_id: str, date_range: DateRange) -> List[Reading]:
        try:
            return self.db.query(Reading).filter(
                Reading.meter_id == meter_id,
                Reading.date >= date_range.start,
                Reading.date <= date_range.end
            ).order_by(Reading.date, Reading.hour).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot load readings for meter {meter_id}: {e}") from e

    def sum_readings(
        self,
        meter_id: str,
        date_range: DateRange,
        qualities: Optional[Iterable[ReadingQuality]] = None
    ) -> ReadingAggregate:
        """
        Aggregates a meter's readings over an inclusive date range.

        Args:
            meter_id: Meter identifier
            date_range: Range to aggregate (already clipped to the contract)
            qualities: Qualities to include (None = all)

        Returns:
            ReadingAggregate (total_kwh, gap_hours, ...)
        """
        readings = self.find_readings(meter_id, date_range)
        return aggregate_readings(readings, date_range, qualities)
