"""
Shared pytest fixtures for trade chain simulator tests.

Provides:
- Catalog snapshot (the sample data set)
- Configuration factories for the reference chain
- Legacy flat configuration dict factory
"""

import pytest
import os
import sys
from decimal import Decimal

# Root modules (simulation_*) live one level up
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Keep the advisory client unconfigured unless a test opts in
os.environ.setdefault("ADVISORY_API_URL", "")
os.environ.setdefault("ADVISORY_API_KEY", "")

from simulation_mapper import get_sample_catalog
from simulation_models import (
    CalculationConfig,
    EntityConfig,
    PackageItem,
    Region,
    RetailerConfig,
)


# ============================================================================
# MOCK FACTORIES
# ============================================================================

def make_catalog():
    """Sample catalog: m1 (general, Tibet), m2 (small-scale), funders f1/f2, retailers r1/r2."""
    return get_sample_catalog()


def make_funder(**overrides):
    """Tibet funder without refund policy so no rate gap is reported."""
    values = dict(
        region=Region.TIBET,
        vat_refund_rate=Decimal("0"),
        income_tax_refund_rate=Decimal("0"),
    )
    values.update(overrides)
    return EntityConfig(**values)


def make_platform(**overrides):
    """Tibet general-taxpayer platform with 10% markup."""
    values = dict(
        region=Region.TIBET,
        markup_percent=Decimal("10"),
        vat_refund_rate=Decimal("0"),
        income_tax_refund_rate=Decimal("0"),
    )
    values.update(overrides)
    return EntityConfig(**values)


def make_retailer(**overrides):
    """Mainland retailer; markup/term fall back to the catalog (20% / 45 days)."""
    values = dict(region=Region.MAINLAND)
    values.update(overrides)
    return RetailerConfig(**values)


def make_config(items=None, **overrides):
    """
    Reference chain: one 极品虫草 (800 incl. 13%) through
    f1 (3%, 180 days) -> Tibet platform (10%) -> r1 (20%, 45 days).
    """
    values = dict(
        package_items=items if items is not None else [
            PackageItem(manufacturer_id="m1", product_id="p1-1", quantity=1)
        ],
        funder_id="f1",
        retailer_id="r1",
        funder=make_funder(),
        platform=make_platform(),
        retailer=make_retailer(),
    )
    values.update(overrides)
    return CalculationConfig(**values)


def make_legacy_variables(**overrides):
    """Legacy flat configuration dict as stored by the original screens."""
    variables = {
        "packageItems": [
            {"id": "default-item-1", "manufacturer": {"id": "m1"}, "product": {"id": "p1-1"}, "quantity": 1},
        ],
        "funder": {"id": "f1"},
        "retailer": {"id": "r1"},
        "funderInterestRate": 6.0,
        "cangjingInterestRate": 4.35,
        "cangjingOperationalCostPercent": 2.0,
        "defaultMainlandSurcharge": 12.0,
        "defaultMainlandIncomeTax": 25.0,
        "defaultTibetSurcharge": 1.0,
        "defaultTibetIncomeTax": 15.0,
        "transactionLinks": [
            {"id": "link-1", "name": "厂商到宸铭", "fromEntityId": "manufacturer", "toEntityId": "funder",
             "markupPercent": 3, "paymentTermDays": 180, "isEnabled": True},
            {"id": "link-2", "name": "宸铭到藏境", "fromEntityId": "funder", "toEntityId": "cangjing",
             "markupPercent": 10, "paymentTermDays": 0, "isEnabled": True},
            {"id": "link-3", "name": "藏境到终端", "fromEntityId": "cangjing", "toEntityId": "retailer",
             "markupPercent": 20, "paymentTermDays": 45, "isEnabled": True},
        ],
        "funderRegion": "tibet",
        "funderMarkupPercent": 3,
        "funderPaymentTermMonths": 6,
        "funderVatSurchargeRate": 1.0,
        "funderIncomeTaxRate": 15.0,
        "funderVatRefundRate": 0,
        "funderIncomeTaxRefundRate": 0,
        "funderLogisticsCostPercent": 0,
        "cangjingRegion": "tibet",
        "cangjingMarkupPercent": 10,
        "cangjingTaxType": 0.13,
        "cangjingVatSurchargeRate": 1.0,
        "cangjingIncomeTaxRate": 15.0,
        "cangjingVatRefundRate": 0,
        "cangjingIncomeTaxRefundRate": 0,
        "cangjingLogisticsCostPercent": 0,
        "hasIntermediary": False,
        "traderRegion": "mainland",
        "traderTaxType": 0.13,
        "traderMarkupPercent": 5.0,
        "traderPaymentTermDays": 0,
        "traderVatSurchargeRate": 12.0,
        "traderIncomeTaxRate": 25.0,
        "retailerRegion": "mainland",
        "retailerTradeMode": "sales",
        "retailerMarkupPercent": 20,
        "retailerPaymentTermDays": 45,
        "retailerVatSurchargeRate": 12.0,
        "retailerIncomeTaxRate": 25.0,
    }
    variables.update(overrides)
    return variables


# ============================================================================
# PYTEST FIXTURES
# ============================================================================

@pytest.fixture
def catalog():
    return make_catalog()


@pytest.fixture
def reference_config():
    return make_config()


@pytest.fixture
def consignment_config():
    return make_config(retailer=make_retailer(trade_mode="consignment"))


@pytest.fixture
def legacy_variables():
    return make_legacy_variables()
