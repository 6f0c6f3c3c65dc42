"""
Tests for services/compliance_service.py
"""

import pytest
from decimal import Decimal

from conftest import make_config, make_platform, make_retailer
from simulation_engine import calculate_simulation
from simulation_models import Region, SMALL_SCALE_TAXPAYER, TradeMode
from services.compliance_service import (
    build_compliance_report,
    build_executive_summary,
    get_payment_term_strategy,
)


def run(config, catalog):
    return build_compliance_report(config, calculate_simulation(config, catalog))


class TestPaymentTermStrategy:
    """Tier boundaries: <= 30 SHORT, <= 90 MEDIUM, > 90 LONG."""

    @pytest.mark.parametrize("days,level", [
        (0, "SHORT"),
        (30, "SHORT"),
        (31, "MEDIUM"),
        (90, "MEDIUM"),
        (91, "LONG"),
        (365, "LONG"),
    ])
    def test_tiers(self, days, level):
        strategy = get_payment_term_strategy(days)
        assert strategy.level == level
        assert strategy.term_days == days
        assert len(strategy.points) == 3

    def test_report_uses_resolved_retailer_term(self, catalog, reference_config):
        """r1's catalog term (45 days) applies when the config leaves it unset."""
        report = run(reference_config, catalog)
        assert report.payment_term_strategy.level == "MEDIUM"
        assert report.payment_term_strategy.term_days == 45


class TestInvoiceFlow:

    def test_general_platform(self, catalog, reference_config):
        report = run(reference_config, catalog)
        labels = [p.label for p in report.invoice_flow]
        assert labels == ["平台身份", "三流一致"]
        assert "13%" in report.invoice_flow[0].text

    def test_small_scale_platform_warns_of_broken_chain(self, catalog):
        config = make_config(platform=make_platform(tax_identity=SMALL_SCALE_TAXPAYER))
        report = run(config, catalog)
        assert "抵扣链条断裂" in report.invoice_flow[0].text

    def test_consignment_adds_settlement_tip(self, catalog, consignment_config):
        report = run(consignment_config, catalog)
        assert [p.label for p in report.invoice_flow][-1] == "代销特殊性"


class TestTibetCompliance:

    def test_tibet_platform_gets_tips(self, catalog, reference_config):
        report = run(reference_config, catalog)
        assert [p.label for p in report.tibet_compliance] == ["实质性运营", "物流轨迹", "税返兑现"]
        assert "未配置物流成本" in report.tibet_compliance[1].text

    def test_logistics_budget_recognised(self, catalog):
        config = make_config(platform=make_platform(logistics_cost_percent=Decimal("1")))
        report = run(config, catalog)
        assert "已有物流成本预算" in report.tibet_compliance[1].text

    def test_mainland_platform_has_no_tibet_tips(self, catalog):
        config = make_config(platform=make_platform(region=Region.MAINLAND))
        assert run(config, catalog).tibet_compliance == []


class TestLossAdvice:

    def test_no_advice_when_profitable(self, catalog, reference_config):
        report = run(reference_config, catalog)
        assert report.loss_advice is None
        assert report.platform_tax_burden_rate > 0

    def test_advice_when_platform_loses(self, catalog):
        config = make_config(platform=make_platform(markup_percent=Decimal("0")))
        report = run(config, catalog)
        assert report.loss_advice is not None
        assert "提高加价率" in report.loss_advice


class TestExecutiveSummary:

    def test_one_line_per_key_party(self, catalog, reference_config):
        lines = build_executive_summary(calculate_simulation(reference_config, catalog))
        assert len(lines) == 3
        assert "宸铭供应链" in lines[0]
        assert "资金成本 24.00" in lines[0]
        assert "净利 48.27" in lines[1]
        assert "德商渠道" in lines[2]
