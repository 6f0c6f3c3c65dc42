"""
Compliance & Risk Service

Rule-based compliance tips for a finished simulation run:
- Payment-term strategy tier (SHORT / MEDIUM / LONG) from the retailer term
- Invoice-flow consistency tips (platform taxpayer class, consignment)
- Tibet park substance, logistics and refund-timing tips
- Loss mitigation advice when the platform runs at a loss
- Executive summary lines for funder, platform and retailer

Reads results only; never feeds back into the engine.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional
import logging

from simulation_models import (
    CalculationConfig,
    EntityResult,
    Region,
    SimulationResult,
    TaxpayerClass,
    TradeMode,
)

logger = logging.getLogger(__name__)

SHORT_TERM_MAX_DAYS = 30
MEDIUM_TERM_MAX_DAYS = 90
REFUND_LAG_MONTHS = "3-6"


@dataclass
class CompliancePoint:
    label: str
    text: str


@dataclass
class PaymentTermStrategy:
    """Contract/tax/cash guidance for one payment-term tier"""
    level: str
    title: str
    term_days: int
    points: List[CompliancePoint] = field(default_factory=list)


@dataclass
class ComplianceReport:
    """All tips for one run, grouped by section"""
    payment_term_strategy: PaymentTermStrategy
    invoice_flow: List[CompliancePoint] = field(default_factory=list)
    tibet_compliance: List[CompliancePoint] = field(default_factory=list)
    loss_advice: Optional[str] = None
    platform_finance_cost: Decimal = Decimal("0")
    platform_tax_burden_rate: Decimal = Decimal("0")

    def all_points(self) -> List[CompliancePoint]:
        return self.payment_term_strategy.points + self.invoice_flow + self.tibet_compliance


# ============================================================================
# PAYMENT TERM STRATEGY
# ============================================================================

def get_payment_term_strategy(days: int) -> PaymentTermStrategy:
    """
    Pick the strategy tier for a retailer payment term.

    Args:
        days: Retailer payment term in days

    Returns:
        SHORT (<= 30), MEDIUM (31-90) or LONG (> 90) strategy
    """
    if days <= SHORT_TERM_MAX_DAYS:
        return PaymentTermStrategy(
            level="SHORT",
            title="短账期 (≤30天) · 快速流转策略",
            term_days=days,
            points=[
                CompliancePoint("合同条款优化", "建议约定“货到验收合格后即付款”或“见票即付”，避免复杂的验收结算流程拖延时间。"),
                CompliancePoint("税务节奏", "发货/验收确认后立即开票，以发票驱动快速结算。周期短，垫税压力小。"),
                CompliancePoint("资金流", "重点提升周转率。若上游账期长于下游账期，可实现正向现金流。"),
            ],
        )
    if days <= MEDIUM_TERM_MAX_DAYS:
        return PaymentTermStrategy(
            level="MEDIUM",
            title="中账期 (31-90天) · 资金平衡策略",
            term_days=days,
            points=[
                CompliancePoint("合同条款优化", "争取“预收+尾款”模式 (如30%预付)。合同明确“付款前X日提供发票”，避免过早开票导致税款空转。"),
                CompliancePoint("税务节奏", f"增值税次月申报缴纳，{days}天账期意味着需垫付税款，需确保毛利覆盖资金成本。"),
                CompliancePoint("供应链金融", "合同建议包含“配合确权”条款，以便使用应收账款进行保理融资。"),
            ],
        )
    return PaymentTermStrategy(
        level="LONG",
        title="长账期 (>90天) · 风险风控策略",
        term_days=days,
        points=[
            CompliancePoint("合同条款优化", "必须约定“逾期违约金”及“所有权保留”条款，考虑加入价格调整机制应对资金成本波动。"),
            CompliancePoint("税务节奏", "垫税风险极高。如可能，合同约定“分期收款”方式，按约定收款日期产生纳税义务。"),
            CompliancePoint("风险定价", "定价需包含 3-5% 以上的资金溢价，建议要求渠道方提供商业承兑汇票便于贴现。"),
        ],
    )


# ============================================================================
# SECTION BUILDERS
# ============================================================================

def _invoice_flow_points(result: SimulationResult) -> List[CompliancePoint]:
    platform = result.platform
    points = []

    if platform.tax_identity.kind == TaxpayerClass.GENERAL:
        points.append(CompliancePoint(
            "平台身份",
            f"一般纳税人。向下游开具 {platform.tax_identity.rate * 100:.0f}% 专票，链条完整，下游抵扣无障碍。"
        ))
    else:
        points.append(CompliancePoint(
            "平台身份",
            f"{platform.tax_identity.label}。进项无法抵扣，下游抵扣链条断裂，需警惕下游压价风险。"
        ))

    points.append(CompliancePoint(
        "三流一致",
        "确保合同、发票、资金三者主体完全一致 (平台-渠道)，禁止第三方代收代付。"
    ))

    if result.retailer.trade_mode == TradeMode.CONSIGNMENT:
        points.append(CompliancePoint(
            "代销特殊性",
            "代销模式下，委托方收到代销清单时发生纳税义务。需建立《代销清单》定期对账机制，避免税务确认滞后。"
        ))
    return points


def _tibet_points(config: CalculationConfig, platform: EntityResult) -> List[CompliancePoint]:
    has_logistics = (
        config.platform.logistics_cost_percent > 0 or config.funder.logistics_cost_percent > 0
    )
    logistics_text = (
        "已有物流成本预算，合规度较高。" if has_logistics
        else "当前未配置物流成本，需补充物流合同/运单以证明贸易真实性。"
    )
    return [
        CompliancePoint("实质性运营", "必须在藏区有实际办公场所、人员社保缴纳记录及真实账务处理，严禁空壳开票。"),
        CompliancePoint("物流轨迹", f"{logistics_text}建议保留完整运输单据备查。"),
        CompliancePoint(
            "税返兑现",
            f"预估税返 {platform.tax_refunds:,.2f} 元。财政兑付周期通常滞后 {REFUND_LAG_MONTHS} 个月，"
            "不可作为短期流动资金依赖。"
        ),
    ]


# ============================================================================
# MAIN REPORT FUNCTION
# ============================================================================

def build_compliance_report(config: CalculationConfig, result: SimulationResult) -> ComplianceReport:
    """
    Build the compliance & risk report for a run.

    Args:
        config: Configuration the run was computed from
        result: Simulation result

    Returns:
        ComplianceReport with strategy tier, invoice-flow, Tibet and loss sections
    """
    platform = result.platform

    report = ComplianceReport(
        payment_term_strategy=get_payment_term_strategy(result.retailer.payment_term_days),
        invoice_flow=_invoice_flow_points(result),
        platform_finance_cost=platform.finance_cost,
        platform_tax_burden_rate=platform.tax_burden_rate,
    )

    if platform.region == Region.TIBET:
        report.tibet_compliance = _tibet_points(config, platform)

    if platform.net_profit < 0:
        report.loss_advice = "当前模型亏损，建议：1. 提高加价率; 2. 压缩账期; 3. 申请更高税返。"
        logger.info("Platform net profit negative: %s", platform.net_profit)

    return report


# ============================================================================
# EXECUTIVE SUMMARY
# ============================================================================

def build_executive_summary(result: SimulationResult) -> List[str]:
    """One line per key party: funder, platform, retailer"""
    lines = []
    for entity in (result.funder, result.platform, result.retailer):
        line = (
            f"{entity.role} {entity.name}: 净利 {entity.net_profit:,.2f} 元, "
            f"应缴增值税 {entity.vat_payable:,.2f} 元, 综合税负 {entity.tax_burden_rate * 100:.2f}%"
        )
        if entity.finance_cost > 0:
            line += f", 资金成本 {entity.finance_cost:,.2f} 元"
        if entity.tax_refunds > 0:
            line += f", 税返 {entity.tax_refunds:,.2f} 元"
        lines.append(line)
    return lines
