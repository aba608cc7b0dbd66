"""
SQLAlchemy models for metering points and hourly readings.
Defines tables: meters, readings.
"""

import enum

from sqlalchemy import Column, String, Integer, Date, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from energy_billing.core.database import Base


class ReadingQuality(str, enum.Enum):
    REAL = "REAL"
    ESTIMATED = "ESTIMATED"


class Meter(Base):
    """Metering point. Address fields are editable, meter_id is not."""
    __tablename__ = "meters"

    meter_id = Column(String(50), primary_key=True)
    cups = Column(String(22), unique=True, nullable=True)  # External metering point id
    address = Column(String(200), nullable=True)
    postal_code = Column(String(10), nullable=True)
    city = Column(String(100), nullable=True)

    readings = relationship("Reading", back_populates="meter", cascade="all, delete-orphan")
    contracts = relationship("Contract", back_populates="meter")


class Reading(Base):
    """
    Hourly energy reading.

    One row per (meter_id, date, hour); a second write for the same key
    replaces the first. quality NULL means no estimation metadata (REAL).
    """
    __tablename__ = "readings"

    meter_id = Column(String(50), ForeignKey("meters.meter_id"), primary_key=True)
    date = Column(Date, primary_key=True)
    hour = Column("reading_hour", Integer, primary_key=True)  # 0-23
    kwh = Column(Numeric(10, 3), nullable=False)
    quality = Column(String(10), nullable=True)  # 'REAL', 'ESTIMATED' or NULL

    meter = relationship("Meter", back_populates="readings")

    __table_args__ = (
        CheckConstraint("reading_hour >= 0 AND reading_hour <= 23", name="check_reading_hour"),
        CheckConstraint("kwh >= 0", name="check_reading_kwh"),
        CheckConstraint("quality IS NULL OR quality IN ('REAL', 'ESTIMATED')", name="check_reading_quality"),
    )

    @property
    def effective_quality(self) -> ReadingQuality:
        return ReadingQuality(self.quality) if self.quality else ReadingQuality.REAL
