"""
Tests for simulation_mapper: legacy flat config mapping, defaults and validation.
"""

import pytest
from decimal import Decimal

from conftest import make_config, make_legacy_variables
from simulation_engine import calculate_simulation
from simulation_mapper import (
    build_default_transaction_links,
    get_default_global_settings,
    get_value,
    map_legacy_config,
    map_legacy_links,
    normalize_region,
    normalize_tax_type,
    safe_decimal,
    safe_int,
    validate_simulation_input,
)
from simulation_models import (
    ChainRole,
    GENERAL_TAXPAYER,
    Region,
    SERVICE_TAXPAYER,
    SMALL_SCALE_TAXPAYER,
    TaxpayerClass,
    TradeMode,
)


# ============================================================================
# SAFE CONVERSION / NORMALIZATION
# ============================================================================

class TestSafeConversion:

    def test_safe_decimal(self):
        assert safe_decimal("12.5") == Decimal("12.5")
        assert safe_decimal(6.0) == Decimal("6.0")
        assert safe_decimal("") == Decimal("0")
        assert safe_decimal("abc", None) is None

    def test_safe_int(self):
        assert safe_int("45") == 45
        assert safe_int(6.0) == 6
        assert safe_int(None, None) is None
        assert safe_int("x", 7) == 7


class TestNormalization:

    @pytest.mark.parametrize("value,expected", [
        (0.13, GENERAL_TAXPAYER),
        ("0.13", GENERAL_TAXPAYER),
        (0.01, SMALL_SCALE_TAXPAYER),
        ("small", SMALL_SCALE_TAXPAYER),
        (0.06, SERVICE_TAXPAYER),
        (None, GENERAL_TAXPAYER),
    ])
    def test_tax_type(self, value, expected):
        assert normalize_tax_type(value) == expected

    def test_unknown_tax_type(self):
        assert normalize_tax_type(0.09) is None

    def test_region(self):
        assert normalize_region("tibet") == Region.TIBET
        assert normalize_region(" MAINLAND ") == Region.MAINLAND
        assert normalize_region("") == Region.MAINLAND
        assert normalize_region("hainan") is None


class TestGetValue:
    """Explicit value > catalog default > fallback."""

    def test_explicit_value_wins(self, catalog):
        funder = catalog.get_funder("f1")
        assert get_value("funderMarkupPercent", {"funderMarkupPercent": 5}, funder, "default_markup_percent") == 5

    def test_catalog_default(self, catalog):
        funder = catalog.get_funder("f1")
        assert get_value("funderMarkupPercent", {}, funder, "default_markup_percent") == Decimal("3")

    def test_dict_catalog_entry(self):
        assert get_value("x", {"x": ""}, {"d": 4}, "d") == 4

    def test_fallback(self):
        assert get_value("x", {}, None, None, default=9) == 9


# ============================================================================
# DEFAULTS
# ============================================================================

class TestDefaults:

    def test_default_global_settings(self):
        settings = get_default_global_settings()
        assert settings.funder_interest_rate == Decimal("6.0")
        assert settings.platform_interest_rate == Decimal("4.35")
        assert settings.platform_operational_cost_percent == Decimal("2.0")
        assert settings.get_tax_policy(Region.MAINLAND, TaxpayerClass.GENERAL).surcharge_rate == Decimal("12")
        assert settings.get_tax_policy(Region.TIBET, TaxpayerClass.GENERAL).income_tax_rate == Decimal("15")
        assert settings.get_tax_policy(Region.TIBET, TaxpayerClass.GENERAL).vat_refund_rate is None
        # Every taxpayer class of a region shares its regional defaults
        for kind in TaxpayerClass:
            assert settings.get_tax_policy(Region.MAINLAND, kind).income_tax_rate == Decimal("25")

    def test_legacy_admin_fields_override(self):
        settings = get_default_global_settings({
            "funderInterestRate": 8,
            "defaultTibetVatRefund": 30,
        })
        assert settings.funder_interest_rate == Decimal("8")
        assert settings.get_tax_policy(Region.TIBET, TaxpayerClass.GENERAL).vat_refund_rate == Decimal("30")

    def test_sample_catalog(self, catalog):
        m2 = catalog.get_manufacturer("m2")
        assert m2.tax_identity == SMALL_SCALE_TAXPAYER
        assert m2.get_product("p2-2").msrp == Decimal("588")
        assert catalog.get_funder("f1").default_payment_term_days == 180
        assert catalog.get_retailer("r2").default_markup_percent == Decimal("35")

    def test_default_links_match_scalar_config(self, catalog, reference_config):
        """Seeded links reproduce the scalar configuration exactly."""
        links = build_default_transaction_links(catalog.get_funder("f1"), catalog.get_retailer("r1"))
        assert [(l.from_role, l.to_role) for l in links] == [
            (ChainRole.MANUFACTURER, ChainRole.FUNDER),
            (ChainRole.FUNDER, ChainRole.PLATFORM),
            (ChainRole.PLATFORM, ChainRole.RETAILER),
        ]
        linked = calculate_simulation(make_config(transaction_links=links), catalog)
        assert linked == calculate_simulation(reference_config, catalog)


# ============================================================================
# LEGACY MAPPING
# ============================================================================

class TestMapLegacyConfig:

    def test_maps_core_fields(self, catalog, legacy_variables):
        config = map_legacy_config(legacy_variables, catalog)

        assert config.funder_id == "f1"
        assert config.retailer_id == "r1"
        assert config.package_items[0].product_id == "p1-1"
        assert config.funder.region == Region.TIBET
        assert config.funder.payment_term_days == 180
        assert config.funder.surcharge_rate == Decimal("1.0")
        assert config.platform.tax_identity == GENERAL_TAXPAYER
        assert config.retailer.trade_mode == TradeMode.SALES
        assert config.has_intermediary is False

    def test_legacy_roles_translated(self, catalog, legacy_variables):
        config = map_legacy_config(legacy_variables, catalog)
        roles = [(l.from_role, l.to_role) for l in config.transaction_links]
        assert (ChainRole.FUNDER, ChainRole.PLATFORM) in roles
        assert (ChainRole.PLATFORM, ChainRole.RETAILER) in roles

    def test_funder_term_moved_to_funder_edge(self, legacy_variables):
        links = {l.id: l for l in map_legacy_links(legacy_variables["transactionLinks"])}
        assert links["link-1"].payment_term_days == 0
        assert links["link-2"].payment_term_days == 180
        assert links["link-3"].payment_term_days == 45

    def test_legacy_run_matches_reference(self, catalog, legacy_variables, reference_config):
        """The original default screen reproduces the reference chain values."""
        result = calculate_simulation(map_legacy_config(legacy_variables, catalog), catalog)
        reference = calculate_simulation(reference_config, catalog)

        assert result.funder.net_profit == reference.funder.net_profit == Decimal("-2.7887")
        assert result.platform.net_profit == reference.platform.net_profit
        assert result.retailer.net_profit == reference.retailer.net_profit

    def test_catalog_defaults_fill_missing_fields(self, catalog):
        variables = make_legacy_variables(transactionLinks=[], retailer={"id": "r2"})
        del variables["retailerMarkupPercent"]
        del variables["retailerPaymentTermDays"]
        config = map_legacy_config(variables, catalog)
        assert config.retailer.markup_percent == Decimal("35")
        assert config.retailer.payment_term_days == 15

    def test_ids_accepted_instead_of_objects(self, catalog):
        variables = make_legacy_variables(
            packageItems=[{"manufacturerId": "m2", "productId": "p2-1", "quantity": 4}],
            funder=None, funderId="f2",
        )
        config = map_legacy_config(variables, catalog)
        assert config.funder_id == "f2"
        assert config.package_items[0].quantity == 4

    def test_consignment_and_intermediary(self, catalog):
        variables = make_legacy_variables(
            retailerTradeMode="consignment", hasIntermediary=True, traderTaxType=0.01
        )
        config = map_legacy_config(variables, catalog)
        assert config.retailer.trade_mode == TradeMode.CONSIGNMENT
        assert config.has_intermediary is True
        assert config.intermediary.tax_identity == SMALL_SCALE_TAXPAYER

        result = calculate_simulation(config, catalog)
        assert result.intermediary is not None
        assert result.retailer.trade_mode == TradeMode.CONSIGNMENT

    def test_unknown_link_role_raises(self):
        with pytest.raises(ValueError, match="unknown role"):
            map_legacy_links([{"id": "l", "fromEntityId": "bank", "toEntityId": "funder"}])


# ============================================================================
# VALIDATION
# ============================================================================

class TestValidateSimulationInput:

    def test_valid_input(self, catalog, legacy_variables):
        assert validate_simulation_input(legacy_variables, catalog) == []

    def test_empty_package(self, catalog):
        errors = validate_simulation_input(make_legacy_variables(packageItems=[]), catalog)
        assert any("packageItems" in e for e in errors)

    def test_unknown_references(self, catalog):
        variables = make_legacy_variables(
            packageItems=[{"manufacturer": {"id": "m1"}, "product": {"id": "p9"}, "quantity": 1}],
            funder={"id": "f9"},
            retailer={"id": "r9"},
        )
        errors = validate_simulation_input(variables, catalog)
        assert len(errors) == 3
        assert any("p9" in e for e in errors)
        assert any("f9" in e for e in errors)
        assert any("r9" in e for e in errors)

    def test_negative_values(self, catalog):
        variables = make_legacy_variables(retailerMarkupPercent=-5, traderPaymentTermDays=-1)
        errors = validate_simulation_input(variables, catalog)
        assert len(errors) == 2
        assert all("不能为负数" in e for e in errors)

    def test_invalid_enums(self, catalog):
        variables = make_legacy_variables(
            retailerTradeMode="barter", cangjingTaxType=0.09, funderRegion="hainan"
        )
        errors = validate_simulation_input(variables, catalog)
        assert len(errors) == 3

    def test_negative_quantity(self, catalog):
        variables = make_legacy_variables(
            packageItems=[{"manufacturer": {"id": "m1"}, "product": {"id": "p1-1"}, "quantity": -2}]
        )
        errors = validate_simulation_input(variables, catalog)
        assert any("quantity" in e for e in errors)
