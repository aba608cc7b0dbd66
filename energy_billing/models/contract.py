"""
SQLAlchemy model for supply contracts.
Defines table: contracts.
"""

import enum

from sqlalchemy import Column, String, Date, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from energy_billing.core.database import Base


class ContractType(str, enum.Enum):
    FLAT = "FLAT"
    FIXED = "FIXED"


class BillingCycle(str, enum.Enum):
    MONTHLY = "MONTHLY"


class Contract(Base):
    """
    Supply contract for one meter.

    Supports:
    - FLAT: monthly fee with an included kWh allowance and overage price
    - FIXED: price per kWh, no fee and no allowance

    Only the field set of the contract type may be filled in.
    """
    __tablename__ = "contracts"

    contract_id = Column(String(50), primary_key=True)
    meter_id = Column(String(50), ForeignKey("meters.meter_id"), nullable=False)

    # Customer
    customer_id = Column(String(50), nullable=False)
    full_name = Column(String(200), nullable=False)
    nif = Column(String(20), nullable=False)  # Tax id
    email = Column(String(200), nullable=True)

    contract_type = Column(String(10), nullable=False)  # 'FLAT' or 'FIXED'
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)  # NULL for open-ended contracts
    billing_cycle = Column(String(10), nullable=False, default=BillingCycle.MONTHLY.value)

    # ============================================
    # FLAT
    # ============================================
    flat_monthly_fee_eur = Column(Numeric(10, 2), nullable=True)
    included_kwh = Column(Numeric(10, 3), nullable=True)
    overage_price_per_kwh_eur = Column(Numeric(10, 4), nullable=True)

    # ============================================
    # FIXED
    # ============================================
    fixed_price_per_kwh_eur = Column(Numeric(10, 4), nullable=True)

    tax_rate = Column(Numeric(5, 4), nullable=False)  # e.g. 0.21
    iban = Column(String(34), nullable=True)

    meter = relationship("Meter", back_populates="contracts")
    invoices = relationship("Invoice", back_populates="contract")

    __table_args__ = (
        CheckConstraint("end_date IS NULL OR start_date <= end_date", name="check_contract_dates"),
        CheckConstraint("tax_rate >= 0", name="check_contract_tax_rate"),
        CheckConstraint(
            "(contract_type = 'FLAT' AND flat_monthly_fee_eur IS NOT NULL AND included_kwh IS NOT NULL "
            "AND overage_price_per_kwh_eur IS NOT NULL AND fixed_price_per_kwh_eur IS NULL) OR "
            "(contract_type = 'FIXED' AND fixed_price_per_kwh_eur IS NOT NULL AND flat_monthly_fee_eur IS NULL "
            "AND included_kwh IS NULL AND overage_price_per_kwh_eur IS NULL)",
            name="check_contract_type_fields"
        ),
    )
