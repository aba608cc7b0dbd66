"""
Shared fixtures: a file-backed SQLite database per test and helpers
for creating meters, contracts and hourly readings.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from energy_billing.config import Settings
from energy_billing.core.database import create_db_engine, init_db
from energy_billing.models import Meter, Contract, Reading


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'billing.db'}", timeout=30.0)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def billing_settings():
    return Settings(
        _env_file=None,
        billing_max_workers=2,
        billing_max_consecutive_store_failures=3,
        instance_id="test-node"
    )


@pytest.fixture
def add_meter(db):
    """Creates a meter."""
    def _add_meter(meter_id: str = "M1", **fields) -> Meter:
        meter = Meter(meter_id=meter_id, address="C/ Mayor 10", postal_code="46001", city="Valencia", **fields)
        db.add(meter)
        db.commit()
        return meter
    return _add_meter


@pytest.fixture
def add_contract(db):
    """Creates a FIXED contract (0.15 EUR/kWh) unless FLAT fields are given."""
    def _add_contract(contract_id: str = "C1", meter_id: str = "M1", **fields) -> Contract:
        values = {
            "customer_id": f"CUST-{contract_id}",
            "full_name": "Ana Perez",
            "nif": "12345678Z",
            "email": "ana@example.com",
            "contract_type": "FIXED",
            "start_date": date(2024, 1, 1),
            "end_date": None,
            "billing_cycle": "MONTHLY",
            "tax_rate": Decimal("0.21"),
        }
        values.update(fields)
        if values["contract_type"] == "FIXED":
            values.setdefault("fixed_price_per_kwh_eur", Decimal("0.15"))
        contract = Contract(contract_id=contract_id, meter_id=meter_id, **values)
        db.add(contract)
        db.commit()
        return contract
    return _add_contract


@pytest.fixture
def add_readings(db):
    """Adds hourly readings for every hour of every day in [start, end]."""
    def _add_readings(
        meter_id: str,
        start: date,
        end: date,
        kwh: Decimal = Decimal("1.0"),
        quality: str = None
    ) -> int:
        count = 0
        day = start
        while day <= end:
            for hour in range(24):
                db.add(Reading(meter_id=meter_id, date=day, hour=hour, kwh=kwh, quality=quality))
                count += 1
            day += timedelta(days=1)
        db.commit()
        return count
    return _add_readings
