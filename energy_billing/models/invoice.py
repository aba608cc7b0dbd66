"""
SQLAlchemy models for generated invoices and billing run leases.
Defines tables: invoices, billing_run_leases.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Date, DateTime, Numeric, ForeignKey, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship

from energy_billing.core.database import Base


def new_invoice_id() -> str:
    return str(uuid.uuid4())


class Invoice(Base):
    """
    Invoice for one contract and one period.

    total = subtotal + tax. At most one invoice per (contract_id, period);
    a new billing run replaces it.
    """
    __tablename__ = "invoices"

    invoice_id = Column(String(36), primary_key=True, default=new_invoice_id)
    contract_id = Column(String(50), ForeignKey("contracts.contract_id"), nullable=False)
    meter_id = Column(String(50), nullable=False)
    period = Column(String(7), nullable=False)  # 'YYYY-MM'

    # Part of the period covered by the contract
    billed_from = Column(Date, nullable=False)
    billed_to = Column(Date, nullable=False)

    total_kwh = Column(Numeric(12, 3), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)

    # Aggregation metadata
    gap_hours = Column(Integer, nullable=False, default=0)
    estimated_hours = Column(Integer, nullable=False, default=0)

    generated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    contract = relationship("Contract", back_populates="invoices")

    __table_args__ = (
        UniqueConstraint("contract_id", "period", name="uq_invoice_contract_period"),
        CheckConstraint("total_kwh >= 0 AND subtotal >= 0 AND tax >= 0 AND total >= 0", name="check_invoice_amounts"),
    )


class BillingRunLease(Base):
    """
    Marker of a billing run in progress.

    One row per period while a run holds it. Expired rows may be taken over.
    """
    __tablename__ = "billing_run_leases"

    period = Column(String(7), primary_key=True)  # 'YYYY-MM'
    run_id = Column(String(36), nullable=False)
    owner = Column(String(200), nullable=False)
    acquired_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
