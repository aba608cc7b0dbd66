"""
Per-period billing run lease.

A run holds a row in billing_run_leases for its period. The row is created by
insert (the primary key rejects a second holder) and an expired row is taken
over with a conditional update, so the guard holds across processes sharing
the database.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from energy_billing.core.errors import ConcurrentRunError, PersistenceError
from energy_billing.models.invoice import BillingRunLease

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    period: str
    run_id: str
    owner: str
    acquired_at: datetime
    expires_at: datetime


def _to_lease(row: BillingRunLease) -> Lease:
    return Lease(
        period=row.period,
        run_id=row.run_id,
        owner=row.owner,
        acquired_at=row.acquired_at,
        expires_at=row.expires_at,
    )


class PeriodRunLock:
    """Acquires and releases billing run leases."""

    def __init__(self, session_factory, owner: str, ttl_seconds: int = 900):
        self.session_factory = session_factory
        self.owner = owner
        self.ttl = timedelta(seconds=ttl_seconds)

    def acquire(self, period: str, now: Optional[datetime] = None) -> Lease:
        """
        Takes the lease for a period.

        Raises:
            ConcurrentRunError: another run holds a lease that has not expired
            PersistenceError: the lease table is unavailable
        """
        now = now or datetime.utcnow()
        run_id = str(uuid.uuid4())
        lease = Lease(period, run_id, self.owner, now, now + self.ttl)

        db = self.session_factory()
        try:
            try:
                db.add(BillingRunLease(
                    period=period,
                    run_id=run_id,
                    owner=self.owner,
                    acquired_at=now,
                    expires_at=lease.expires_at
                ))
                db.commit()
                logger.info("[lease] Acquired %s (run %s)", period, run_id)
                return lease
            except IntegrityError:
                db.rollback()

            # Lease row exists - take it over only if it has expired
            taken = db.query(BillingRunLease).filter(
                BillingRunLease.period == period,
                BillingRunLease.expires_at < now
            ).update({
                BillingRunLease.run_id: run_id,
                BillingRunLease.owner: self.owner,
                BillingRunLease.acquired_at: now,
                BillingRunLease.expires_at: lease.expires_at,
            }, synchronize_session=False)
            db.commit()
            if taken:
                logger.warning("[lease] Took over expired lease for %s (run %s)", period, run_id)
                return lease

            holder = db.get(BillingRunLease, period)
            raise ConcurrentRunError(
                period,
                run_id=holder.run_id if holder else None,
                owner=holder.owner if holder else None
            )
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Cannot acquire billing lease for {period}: {e}") from e
        finally:
            db.close()

    def renew(self, lease: Lease, now: Optional[datetime] = None) -> bool:
        """
        Extends a lease by the TTL from `now`.

        Returns:
            False if the lease is no longer ours (released or taken over)
        """
        now = now or datetime.utcnow()
        db = self.session_factory()
        try:
            renewed = db.query(BillingRunLease).filter(
                BillingRunLease.period == lease.period,
                BillingRunLease.run_id == lease.run_id
            ).update({BillingRunLease.expires_at: now + self.ttl}, synchronize_session=False)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Cannot renew billing lease for {lease.period}: {e}") from e
        finally:
            db.close()

        if not renewed:
            logger.error("[lease] Lease for %s (run %s) lost", lease.period, lease.run_id)
        return bool(renewed)

    def release(self, lease: Lease) -> bool:
        """Releases a lease if it is still ours. Returns True if a row was removed."""
        db = self.session_factory()
        try:
            removed = db.query(BillingRunLease).filter(
                BillingRunLease.period == lease.period,
                BillingRunLease.run_id == lease.run_id
            ).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Cannot release billing lease for {lease.period}: {e}") from e
        finally:
            db.close()

        if not removed:
            logger.warning("[lease] Lease for %s (run %s) was taken over before release", lease.period, lease.run_id)
        return bool(removed)

    def current(self, period: str) -> Optional[Lease]:
        db = self.session_factory()
        try:
            row = db.get(BillingRunLease, period)
            return _to_lease(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot read billing lease for {period}: {e}") from e
        finally:
            db.close()

    @contextmanager
    def hold(self, period: str):
        lease = self.acquire(period)
        try:
            yield lease
        finally:
            self.release(lease)
