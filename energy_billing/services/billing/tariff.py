"""
Tariff pricing for FIXED and FLAT contracts.

A contract row is turned into exactly one tariff variant by
tariff_for_contract(); pricing never looks at contract fields again.
Money is rounded half-up to cents once for the subtotal and once for tax.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from energy_billing.core.errors import ConfigurationError
from energy_billing.core.money import DecimalLike, round2, to_decimal
from energy_billing.models.contract import Contract, ContractType

ZERO = Decimal("0")


@dataclass(frozen=True)
class FixedTariff:
    """Pure per-kWh pricing."""

    price_per_kwh: Decimal

    kind = ContractType.FIXED

    def price_usage(self, total_kwh: DecimalLike) -> Decimal:
        return round2(to_decimal(total_kwh) * self.price_per_kwh)


@dataclass(frozen=True)
class FlatTariff:
    """Monthly fee covering included_kwh, overage priced per kWh."""

    monthly_fee: Decimal
    included_kwh: Decimal
    overage_price_per_kwh: Decimal

    kind = ContractType.FLAT

    def overage_kwh(self, total_kwh: DecimalLike) -> Decimal:
        return max(ZERO, to_decimal(total_kwh) - self.included_kwh)

    def price_usage(self, total_kwh: DecimalLike) -> Decimal:
        return round2(self.monthly_fee + self.overage_kwh(total_kwh) * self.overage_price_per_kwh)


Tariff = Union[FixedTariff, FlatTariff]


@dataclass(frozen=True)
class PricedUsage:
    total_kwh: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def price_usage(tariff: Tariff, total_kwh: DecimalLike, tax_rate: DecimalLike) -> PricedUsage:
    """
    Prices aggregated usage.

    Args:
        tariff: FixedTariff or FlatTariff
        total_kwh: Aggregated energy (unrounded)
        tax_rate: Fraction, e.g. 0.21

    Returns:
        PricedUsage with subtotal, tax = round2(subtotal * tax_rate) and total = subtotal + tax
    """
    total_kwh = to_decimal(total_kwh)
    subtotal = tariff.price_usage(total_kwh)
    tax = round2(subtotal * to_decimal(tax_rate))
    return PricedUsage(total_kwh=total_kwh, subtotal=subtotal, tax=tax, total=subtotal + tax)


def _require(contract: Contract, field_name: str) -> Decimal:
    value = getattr(contract, field_name)
    if value is None:
        raise ConfigurationError(
            f"{contract.contract_type} contract missing {field_name}: {contract.contract_id}",
            contract_id=contract.contract_id
        )
    value = to_decimal(value)
    if value < 0:
        raise ConfigurationError(
            f"{field_name} must not be negative: {contract.contract_id}",
            contract_id=contract.contract_id
        )
    return value


def _forbid(contract: Contract, *field_names: str) -> None:
    present = [name for name in field_names if getattr(contract, name) is not None]
    if present:
        raise ConfigurationError(
            f"{contract.contract_type} contract must not set {', '.join(present)}: {contract.contract_id}",
            contract_id=contract.contract_id
        )


def validate_contract_terms(contract: Contract) -> Decimal:
    """
    Checks the type-independent contract invariants.

    Returns:
        The tax rate as Decimal
    """
    if contract.end_date is not None and contract.start_date > contract.end_date:
        raise ConfigurationError(
            f"Contract ends before it starts: {contract.contract_id}",
            contract_id=contract.contract_id
        )
    return _require(contract, "tax_rate")


def tariff_for_contract(contract: Contract) -> Tariff:
    """
    Builds the tariff variant of a contract.

    Raises:
        ConfigurationError: unknown type, missing required fields, fields of
            the other type present, or negative prices
    """
    validate_contract_terms(contract)

    if contract.contract_type == ContractType.FIXED.value:
        _forbid(contract, "flat_monthly_fee_eur", "included_kwh", "overage_price_per_kwh_eur")
        return FixedTariff(price_per_kwh=_require(contract, "fixed_price_per_kwh_eur"))

    if contract.contract_type == ContractType.FLAT.value:
        _forbid(contract, "fixed_price_per_kwh_eur")
        return FlatTariff(
            monthly_fee=_require(contract, "flat_monthly_fee_eur"),
            included_kwh=_require(contract, "included_kwh"),
            overage_price_per_kwh=_require(contract, "overage_price_per_kwh_eur"),
        )

    raise ConfigurationError(
        f"Unknown contract type '{contract.contract_type}': {contract.contract_id}",
        contract_id=contract.contract_id
    )
