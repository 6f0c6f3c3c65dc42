"""
Trade Chain Simulator - Simulation Engine
Maps one CalculationConfig + CatalogSnapshot to a per-entity SimulationResult.

PHASES (called in dependency order):
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
1. Chain Builder        - resolve catalog refs, links and per-entity configs
                          into ordered StageDescriptors
2. Price Cascade        - manufacturer first: strip previous output VAT,
                          apply markup, re-apply own output VAT (per unit)
3. Tax & Incentive      - VAT input/output/payable, surcharges, income tax,
   Ledger                 regional refunds (unset rates degrade to 0 + warning)
4. Cost & Profit        - financing cost from payment-term mismatch,
   Aggregator             operational cost, gross/net profit, warnings
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

The engine is pure: no I/O, no clock, no randomness. Identical input gives
identical output.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Tuple, Optional
from dataclasses import dataclass, field
import logging

from simulation_models import (
    CalculationConfig,
    CatalogSnapshot,
    ChainRole,
    EntityResult,
    GlobalSettings,
    Manufacturer,
    Product,
    ProductPriceDetail,
    ROLE_LABELS,
    SERVICE_TAXPAYER,
    SimulationResult,
    StageDescriptor,
    TaxPolicy,
    TradeMode,
    TransactionLinkConfig,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

# Warning classes consumed verbatim by the presentation layer
WARN_OVER_MSRP = "over_msrp"
WARN_LOW_PROFIT = "low_profit"
WARN_RATE_GAP = "rate_gap"

DEFAULT_PLATFORM_NAME = "平台公司"
DEFAULT_INTERMEDIARY_NAME = "中间贸易商"

RATE_LABELS = {
    "surcharge_rate": "附加税率",
    "income_tax_rate": "所得税率",
    "vat_refund_rate": "增值税返还比例",
    "income_tax_refund_rate": "所得税返还比例",
}


class ConfigurationError(ValueError):
    """Fatal configuration problem, raised before any computation"""


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def round_decimal(value: Decimal, decimal_places: int = 4) -> Decimal:
    """Round decimal to specified places using ROUND_HALF_UP."""
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=ROUND_HALF_UP)


def format_warning(code: str, text: str) -> str:
    return f"[{code}] {text}"


def _pct(value: Decimal) -> Decimal:
    return value / HUNDRED


@dataclass
class ResolvedItem:
    """PackageItem with its catalog references resolved"""
    manufacturer: Manufacturer
    product: Product
    quantity: int

    @property
    def is_priced(self) -> bool:
        return self.quantity > 0 and self.product.base_price > 0


@dataclass
class StagePrices:
    """Price cascade output for one stage"""
    unit_prices: List[Decimal]          # Outbound unit price incl tax, aligned with items
    unit_rates: List[Decimal]           # Output VAT rate per item
    in_price_incl_tax: Decimal = ZERO
    in_price_excl_tax: Decimal = ZERO
    out_price_incl_tax: Decimal = ZERO
    out_price_excl_tax: Decimal = ZERO
    wholesale_unit_prices: Optional[List[Decimal]] = None  # Consignor price before end sale


@dataclass
class TaxLedger:
    """Tax & incentive figures for one stage"""
    vat_input: Decimal
    vat_output: Decimal
    vat_payable: Decimal
    surcharges: Decimal
    income_tax_rate: Decimal
    vat_refund_rate: Decimal
    income_tax_refund_rate: Decimal
    notes: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# ============================================================================
# PHASE 1: CHAIN BUILDER
# ============================================================================

def _resolve_items(config: CalculationConfig, catalog: CatalogSnapshot) -> List[ResolvedItem]:
    """Resolve package items against the catalog snapshot"""
    items = []
    for position, item in enumerate(config.package_items, start=1):
        manufacturer = catalog.get_manufacturer(item.manufacturer_id)
        if manufacturer is None:
            raise ConfigurationError(
                f"Package item {position}: unknown manufacturer '{item.manufacturer_id}'"
            )
        product = manufacturer.get_product(item.product_id)
        if product is None:
            raise ConfigurationError(
                f"Package item {position}: product '{item.product_id}' not found "
                f"for manufacturer '{manufacturer.id}'"
            )
        items.append(ResolvedItem(manufacturer=manufacturer, product=product, quantity=item.quantity))
    return items


def _index_links(
    links: List[TransactionLinkConfig],
    roles: List[ChainRole],
) -> Dict[Tuple[ChainRole, ChainRole], TransactionLinkConfig]:
    """
    Index enabled links by (from_role, to_role).

    Links touching an inactive intermediary are skipped. Any other enabled
    link must connect two adjacent active roles.
    """
    adjacent = set(zip(roles, roles[1:]))
    indexed = {}
    for link in links:
        if not link.is_enabled:
            continue
        edge = (link.from_role, link.to_role)
        if ChainRole.INTERMEDIARY in edge and ChainRole.INTERMEDIARY not in roles:
            logger.info("Skipping link %s: intermediary is not active", link.id)
            continue
        if edge not in adjacent:
            raise ConfigurationError(
                f"Transaction link '{link.id}' connects non-adjacent roles "
                f"{link.from_role.value} -> {link.to_role.value}"
            )
        if edge in indexed:
            raise ConfigurationError(
                f"Duplicate transaction links for {link.from_role.value} -> {link.to_role.value}"
            )
        indexed[edge] = link
    return indexed


def _first_set(*values):
    for value in values:
        if value is not None:
            return value
    return None


def phase1_build_chain(
    config: CalculationConfig,
    catalog: CatalogSnapshot
) -> Tuple[List[StageDescriptor], List[ResolvedItem]]:
    """
    Build ordered stage descriptors.

    Sequence is always Manufacturer -> Funder -> Platform -> [Intermediary] -> Retailer.
    Enabled transaction links override scalar markup and settlement days for
    their edge; scalar fields fall back to catalog defaults.

    Edge settlement days (days until the buyer pays the seller):
    - manufacturer -> funder: link or 0 (cash on delivery)
    - funder -> platform: funder payment term
    - platform -> intermediary: intermediary payment term, or the retailer
      term when the intermediary has none (0 days)
    - last stage -> retailer: retailer payment term
    End customers pay the retailer at sale.

    Raises:
        ConfigurationError: no package items, or unresolved catalog reference
    """
    if not config.package_items:
        raise ConfigurationError("Configuration has no package items")

    funder_entry = catalog.get_funder(config.funder_id)
    if funder_entry is None:
        raise ConfigurationError(f"Unknown funder '{config.funder_id}'")

    retailer_entry = catalog.get_retailer(config.retailer_id)
    if retailer_entry is None:
        raise ConfigurationError(f"Unknown retailer '{config.retailer_id}'")

    items = _resolve_items(config, catalog)

    roles = [ChainRole.MANUFACTURER, ChainRole.FUNDER, ChainRole.PLATFORM]
    if config.has_intermediary:
        roles.append(ChainRole.INTERMEDIARY)
    roles.append(ChainRole.RETAILER)

    links = _index_links(config.transaction_links, roles)
    settings = config.settings
    consignment = config.retailer.trade_mode == TradeMode.CONSIGNMENT

    # Scalar fallbacks keyed by the role receiving goods on each edge
    scalar_markups = {
        ChainRole.FUNDER: _first_set(config.funder.markup_percent, funder_entry.default_markup_percent),
        ChainRole.PLATFORM: _first_set(config.platform.markup_percent, ZERO),
        ChainRole.INTERMEDIARY: _first_set(config.intermediary.markup_percent, ZERO),
        ChainRole.RETAILER: _first_set(config.retailer.markup_percent, retailer_entry.default_markup_percent),
    }
    scalar_terms = {
        ChainRole.FUNDER: 0,
        ChainRole.PLATFORM: _first_set(config.funder.payment_term_days, funder_entry.default_payment_term_days),
        ChainRole.INTERMEDIARY: _first_set(config.intermediary.payment_term_days, 0),
        ChainRole.RETAILER: _first_set(config.retailer.payment_term_days, retailer_entry.default_payment_term_days),
    }

    markups = {}
    edge_days = {}
    for upstream, downstream in zip(roles, roles[1:]):
        link = links.get((upstream, downstream))
        markups[downstream] = link.markup_percent if link else scalar_markups[downstream]
        edge_days[downstream] = link.payment_term_days if link else scalar_terms[downstream]

    # A pass-through intermediary without its own term settles on the retailer term
    if edge_days.get(ChainRole.INTERMEDIARY) == 0:
        edge_days[ChainRole.INTERMEDIARY] = edge_days[ChainRole.RETAILER]

    def supplier_days(role: ChainRole) -> int:
        return edge_days.get(role, 0)

    def customer_days(role: ChainRole) -> int:
        position = roles.index(role)
        if position + 1 >= len(roles):
            return 0
        return edge_days[roles[position + 1]]

    first_manufacturer = items[0].manufacturer
    manufacturer_names = []
    for item in items:
        if item.manufacturer.name not in manufacturer_names:
            manufacturer_names.append(item.manufacturer.name)

    stages = [
        StageDescriptor(
            role=ChainRole.MANUFACTURER,
            name="、".join(manufacturer_names),
            region=first_manufacturer.region,
            tax_identity=first_manufacturer.tax_identity,
            customer_term_days=customer_days(ChainRole.MANUFACTURER),
            # Own levies and profit are not modeled for the source stage
            surcharge_rate=ZERO,
            income_tax_rate=ZERO,
            vat_refund_rate=ZERO,
            income_tax_refund_rate=ZERO,
        )
    ]

    entity_configs = {
        ChainRole.FUNDER: (config.funder, funder_entry.name, settings.funder_interest_rate),
        ChainRole.PLATFORM: (config.platform, DEFAULT_PLATFORM_NAME, settings.platform_interest_rate),
        ChainRole.INTERMEDIARY: (config.intermediary, DEFAULT_INTERMEDIARY_NAME, ZERO),
        ChainRole.RETAILER: (config.retailer, retailer_entry.name, ZERO),
    }

    for position, role in enumerate(roles[1:], start=1):
        entity, default_name, default_rate = entity_configs[role]
        operational = entity.logistics_cost_percent
        if role == ChainRole.PLATFORM:
            operational += settings.platform_operational_cost_percent

        tax_identity = entity.tax_identity
        resale_identity = None
        trade_mode = None
        commission = ZERO
        if role == ChainRole.RETAILER:
            trade_mode = config.retailer.trade_mode
            commission = _first_set(config.retailer.commission_percent, markups[role])
            if consignment:
                resale_identity = tax_identity
                tax_identity = SERVICE_TAXPAYER

        is_consignor = consignment and position + 1 < len(roles) and roles[position + 1] == ChainRole.RETAILER

        stages.append(StageDescriptor(
            role=role,
            name=entity.name or default_name,
            region=entity.region,
            tax_identity=tax_identity,
            markup_percent=markups[role],
            supplier_term_days=supplier_days(role),
            customer_term_days=customer_days(role),
            interest_rate=_first_set(entity.interest_rate, default_rate),
            operational_cost_percent=operational,
            surcharge_rate=entity.surcharge_rate,
            income_tax_rate=entity.income_tax_rate,
            vat_refund_rate=entity.vat_refund_rate,
            income_tax_refund_rate=entity.income_tax_refund_rate,
            trade_mode=trade_mode,
            is_consignor=is_consignor,
            commission_percent=commission,
            resale_tax_identity=resale_identity,
        ))

    logger.debug(
        "Built chain: %s",
        " -> ".join(f"{s.role.value}({s.markup_percent}%/{s.supplier_term_days}d)" for s in stages)
    )
    return stages, items


# ============================================================================
# PHASE 2: PRICE CASCADE RESOLVER
# ============================================================================

def _line_total(unit_prices: List[Decimal], items: List[ResolvedItem]) -> Decimal:
    """Sum of quantity x unit price; matches the breakdown exactly"""
    return sum((unit * Decimal(item.quantity) for unit, item in zip(unit_prices, items)), ZERO)


def _source_prices(items: List[ResolvedItem]) -> StagePrices:
    """Manufacturer: tax-inclusive base cost at each manufacturer's own rate"""
    units = [round_decimal(item.product.base_price) for item in items]
    rates = [item.manufacturer.tax_identity.rate for item in items]
    out_incl = _line_total(units, items)
    out_excl = sum(
        (unit * Decimal(item.quantity) / (ONE + rate) for unit, rate, item in zip(units, rates, items)),
        ZERO
    )
    return StagePrices(
        unit_prices=units,
        unit_rates=rates,
        out_price_incl_tax=out_incl,
        out_price_excl_tax=round_decimal(out_excl),
    )


def _commission_prices(
    stage: StageDescriptor,
    upstream: StagePrices,
    items: List[ResolvedItem]
) -> StagePrices:
    """
    Consignment retailer: commission on the consignor's tax-inclusive price.

    The commission is the excl-tax service fee; the 6% service VAT is
    invoiced on top of it.
    """
    base = upstream.wholesale_unit_prices or upstream.unit_prices
    rate = stage.tax_identity.rate
    fees = [round_decimal(_pct(stage.commission_percent) * unit) for unit in base]
    units = [round_decimal(fee * (ONE + rate)) for fee in fees]
    return StagePrices(
        unit_prices=units,
        unit_rates=[rate] * len(items),
        out_price_incl_tax=_line_total(units, items),
        out_price_excl_tax=_line_total(fees, items),
    )


def phase2_price_cascade(
    stages: List[StageDescriptor],
    items: List[ResolvedItem]
) -> List[StagePrices]:
    """
    Walk the chain manufacturer-first, per unit, then aggregate.

    For each resale stage:
    1. in_excl = previous unit price / (1 + previous output rate)
    2. out_excl = in_excl * (1 + markup/100)
    3. out_incl = out_excl * (1 + own output rate), rounded to 4 places

    A consignor sells to the end customer at the price the retailer would
    have charged: its wholesale price stripped of its rate, marked up by the
    retailer markup and taxed at the retailer's resale rate. Its output VAT
    is then computed at its own rate.
    """
    cascade: List[StagePrices] = []

    for index, stage in enumerate(stages):
        if stage.role == ChainRole.MANUFACTURER:
            cascade.append(_source_prices(items))
            continue

        upstream = cascade[-1]

        if stage.is_commission_agent:
            cascade.append(_commission_prices(stage, upstream, items))
            continue

        own_rate = stage.tax_identity.rate
        markup_factor = ONE + _pct(stage.markup_percent)
        in_excl_units = [
            unit / (ONE + rate) for unit, rate in zip(upstream.unit_prices, upstream.unit_rates)
        ]
        units = [round_decimal(unit * markup_factor * (ONE + own_rate)) for unit in in_excl_units]

        wholesale = None
        if stage.is_consignor:
            agent = stages[index + 1]
            retail_factor = ONE + _pct(agent.markup_percent)
            end_rate = (agent.resale_tax_identity or stage.tax_identity).rate
            wholesale = units
            units = [
                round_decimal(unit / (ONE + own_rate) * retail_factor * (ONE + end_rate))
                for unit in wholesale
            ]

        out_incl = _line_total(units, items)
        cascade.append(StagePrices(
            unit_prices=units,
            unit_rates=[own_rate] * len(items),
            in_price_incl_tax=upstream.out_price_incl_tax,
            in_price_excl_tax=upstream.out_price_excl_tax,
            out_price_incl_tax=out_incl,
            out_price_excl_tax=round_decimal(out_incl / (ONE + own_rate)),
            wholesale_unit_prices=wholesale,
        ))

    return cascade


def build_price_breakdown(prices: StagePrices, items: List[ResolvedItem]) -> List[ProductPriceDetail]:
    """Per-item contract lines; zero-quantity and zero-priced items are excluded"""
    breakdown = []
    for unit, item in zip(prices.unit_prices, items):
        if not item.is_priced or unit <= 0:
            continue
        breakdown.append(ProductPriceDetail(
            product_name=item.product.name,
            quantity=item.quantity,
            unit_price_incl_tax=unit,
            total_price_incl_tax=unit * Decimal(item.quantity),
        ))
    return breakdown


# ============================================================================
# PHASE 3: TAX & INCENTIVE LEDGER
# ============================================================================

def _resolve_rate(
    name: str,
    stage: StageDescriptor,
    policy: Optional[TaxPolicy],
    ledger_warnings: List[str],
) -> Decimal:
    """Entity override > regional policy > zero with a rate-gap warning"""
    override = getattr(stage, name)
    if override is not None:
        return override
    if policy is not None and getattr(policy, name) is not None:
        return getattr(policy, name)

    logger.warning(
        "Rate gap for %s: %s not configured for %s/%s",
        stage.role.value, name, stage.region.value, stage.tax_identity.kind.value
    )
    ledger_warnings.append(format_warning(
        WARN_RATE_GAP,
        f"未配置{RATE_LABELS[name]} ({stage.region.label}/{stage.tax_identity.label})，按 0 计算"
    ))
    return ZERO


def phase3_tax_ledger(
    stage: StageDescriptor,
    prices: StagePrices,
    settings: GlobalSettings,
    commission_vat: Decimal = ZERO
) -> TaxLedger:
    """
    VAT, surcharges and resolved income-tax/refund rates for one stage.

    - vat_input: tax embedded in the inbound price (plus any commission
      invoice), only for general taxpayers
    - vat_output: tax embedded in the outbound price at the own rate
    - vat_payable: max(output - input, 0) for general taxpayers,
      output for small-scale/service taxpayers
    - surcharges: vat_payable * surcharge rate
    """
    notes: List[str] = []
    warnings: List[str] = []

    vat_output = prices.out_price_incl_tax - prices.out_price_excl_tax
    embedded_input = prices.in_price_incl_tax - prices.in_price_excl_tax + commission_vat

    if stage.tax_identity.can_deduct_input:
        vat_input = embedded_input
        vat_payable = max(vat_output - vat_input, ZERO)
        if vat_input > vat_output:
            notes.append(f"留抵税额 {vat_input - vat_output:.2f}")
    else:
        vat_input = ZERO
        vat_payable = vat_output
        if embedded_input > 0:
            notes.append(f"进项税 {embedded_input:.2f} 不可抵扣")

    # Manufacturer carries explicit zero rates from the chain builder
    policy = settings.get_tax_policy(stage.region, stage.tax_identity.kind)
    surcharge_rate = _resolve_rate("surcharge_rate", stage, policy, warnings)
    income_tax_rate = _resolve_rate("income_tax_rate", stage, policy, warnings)

    if stage.region.has_refund_policy:
        vat_refund_rate = _resolve_rate("vat_refund_rate", stage, policy, warnings)
        income_tax_refund_rate = _resolve_rate("income_tax_refund_rate", stage, policy, warnings)
    else:
        vat_refund_rate = ZERO
        income_tax_refund_rate = ZERO
        if (stage.vat_refund_rate or ZERO) > 0 or (stage.income_tax_refund_rate or ZERO) > 0:
            notes.append("内地主体无税返政策，返还比例未生效")

    return TaxLedger(
        vat_input=round_decimal(vat_input),
        vat_output=round_decimal(vat_output),
        vat_payable=round_decimal(vat_payable),
        surcharges=round_decimal(vat_payable * _pct(surcharge_rate)),
        income_tax_rate=income_tax_rate,
        vat_refund_rate=vat_refund_rate,
        income_tax_refund_rate=income_tax_refund_rate,
        notes=notes,
        warnings=warnings,
    )


def phase3_income_tax_and_refunds(
    profit_before_tax: Decimal,
    ledger: TaxLedger
) -> Tuple[Decimal, Decimal]:
    """
    Income tax on positive profit, then regional refunds.

    Refunds are rebates received with a lag; they are reported separately
    and added to net profit, never netted against the taxes.

    Returns: (income_tax, tax_refunds)
    """
    income_tax = round_decimal(_pct(ledger.income_tax_rate) * max(profit_before_tax, ZERO))
    tax_refunds = round_decimal(
        ledger.vat_payable * _pct(ledger.vat_refund_rate)
        + income_tax * _pct(ledger.income_tax_refund_rate)
    )
    return income_tax, tax_refunds


# ============================================================================
# PHASE 4: COST & PROFITABILITY AGGREGATOR
# ============================================================================

def phase4_finance_cost(stage: StageDescriptor, in_price_incl_tax: Decimal, day_count_basis: int) -> Decimal:
    """
    Cost of funding the purchase until the customer pays.

    financeCost = in_incl * (rate/100) * (financing_days / basis)
    where financing_days = max(customer term - supplier term, 0)
    """
    if stage.financing_days <= 0 or stage.interest_rate <= 0:
        return ZERO
    return round_decimal(
        in_price_incl_tax * _pct(stage.interest_rate) * Decimal(stage.financing_days) / Decimal(day_count_basis)
    )


def phase4_operational_cost(stage: StageDescriptor, out_price_excl_tax: Decimal) -> Decimal:
    """Warehousing/logistics overhead as a share of excl-tax revenue"""
    return round_decimal(out_price_excl_tax * _pct(stage.operational_cost_percent))


def phase4_cash_outflow(stage: StageDescriptor, in_price_incl_tax: Decimal, operational_cost: Decimal) -> Decimal:
    """Tax-inclusive outlay committed before the customer pays"""
    if stage.financing_days <= 0:
        return ZERO
    return in_price_incl_tax + operational_cost


def phase4_gross_profit(
    stage: StageDescriptor,
    prices: StagePrices,
    commission_expense: Decimal
) -> Decimal:
    """
    Resale: out_excl - in_excl (consignors also deduct the commission).
    Consignment retailer: commission excluding VAT.
    Manufacturer: 0, its own cost basis is not modeled.
    """
    if stage.role == ChainRole.MANUFACTURER:
        return ZERO
    return prices.out_price_excl_tax - prices.in_price_excl_tax - commission_expense


def phase4_tax_burden(ledger: TaxLedger, income_tax: Decimal, out_price_excl_tax: Decimal) -> Decimal:
    """(VAT payable + surcharges + income tax) / excl-tax revenue"""
    if out_price_excl_tax <= 0:
        return ZERO
    return round_decimal((ledger.vat_payable + ledger.surcharges + income_tax) / out_price_excl_tax)


def phase4_warnings(
    stage: StageDescriptor,
    prices: StagePrices,
    items: List[ResolvedItem],
    net_profit: Decimal,
    settings: GlobalSettings
) -> List[str]:
    """Over-MSRP line items and sub-threshold net profit"""
    warnings = []

    if stage.role != ChainRole.MANUFACTURER and not stage.is_commission_agent:
        for unit, item in zip(prices.unit_prices, items):
            msrp = item.product.msrp
            if not item.is_priced or msrp <= 0:
                continue
            if unit > msrp:
                warnings.append(format_warning(
                    WARN_OVER_MSRP,
                    f"{item.product.name} 售价 {unit:.2f} 高于指导价 {msrp:.2f}"
                ))

    threshold = settings.viability_thresholds.get(stage.role)
    if threshold is not None and net_profit < threshold:
        warnings.append(format_warning(
            WARN_LOW_PROFIT,
            f"净利 {net_profit:.2f} 低于可行阈值 {threshold:.2f}"
        ))

    return warnings


def _stage_notes(stage: StageDescriptor, items: List[ResolvedItem]) -> List[str]:
    notes = [stage.tax_identity.label, stage.region.label]
    if stage.role == ChainRole.MANUFACTURER:
        notes.append("源头成本未建模")
        rates = sorted({item.manufacturer.tax_identity.rate for item in items})
        if len(rates) > 1:
            # Excl-tax totals are summed per item at each manufacturer's own rate
            labels = " / ".join(f"{rate:.0%}" for rate in rates)
            notes.append(f"混合税率: {labels}，不含税金额按各厂商税率分别计算")
    if stage.is_consignor:
        notes.append("委托代销：确认终端销售收入")
    if stage.is_commission_agent:
        notes.append(f"代销佣金 {stage.commission_percent}%")
    if stage.financing_days > 0:
        notes.append(f"垫资 {stage.financing_days} 天")
    return notes


def phase4_assemble_entity(
    stage: StageDescriptor,
    prices: StagePrices,
    items: List[ResolvedItem],
    settings: GlobalSettings,
    commission_incl: Decimal = ZERO,
    commission_excl: Decimal = ZERO,
    extra_notes: Optional[List[str]] = None
) -> EntityResult:
    """Run ledger + aggregator for one stage and build its EntityResult"""
    commission_vat = commission_incl - commission_excl
    ledger = phase3_tax_ledger(stage, prices, settings, commission_vat)

    finance_cost = phase4_finance_cost(stage, prices.in_price_incl_tax, settings.day_count_basis)
    operational_cost = phase4_operational_cost(stage, prices.out_price_excl_tax)
    gross_profit = phase4_gross_profit(stage, prices, commission_excl)

    profit_before_tax = gross_profit - operational_cost - finance_cost - ledger.surcharges
    income_tax, tax_refunds = phase3_income_tax_and_refunds(profit_before_tax, ledger)
    net_profit = profit_before_tax - income_tax + tax_refunds

    warnings = ledger.warnings + phase4_warnings(stage, prices, items, net_profit, settings)

    return EntityResult(
        id=stage.role.value,
        name=stage.name,
        role=ROLE_LABELS[stage.role],
        region=stage.region,
        tax_identity=stage.tax_identity,
        trade_mode=stage.trade_mode,
        in_price_excl_tax=prices.in_price_excl_tax,
        in_price_incl_tax=prices.in_price_incl_tax,
        out_price_excl_tax=prices.out_price_excl_tax,
        out_price_incl_tax=prices.out_price_incl_tax,
        vat_input=ledger.vat_input,
        vat_output=ledger.vat_output,
        vat_payable=ledger.vat_payable,
        surcharges=ledger.surcharges,
        income_tax=income_tax,
        tax_refunds=tax_refunds,
        commission_expense=commission_excl,
        payment_term_days=stage.supplier_term_days,
        financing_days=stage.financing_days,
        finance_cost=finance_cost,
        operational_cost=operational_cost,
        gross_profit=gross_profit,
        net_profit=net_profit,
        cash_outflow=phase4_cash_outflow(stage, prices.in_price_incl_tax, operational_cost),
        tax_burden_rate=phase4_tax_burden(ledger, income_tax, prices.out_price_excl_tax),
        price_breakdown=build_price_breakdown(prices, items),
        notes=_stage_notes(stage, items) + ledger.notes + (extra_notes or []),
        warnings=warnings,
        is_central_node=stage.role == ChainRole.PLATFORM,
    )


# ============================================================================
# MAIN ORCHESTRATOR
# ============================================================================

def calculate_simulation(config: CalculationConfig, catalog: CatalogSnapshot) -> SimulationResult:
    """
    Run one simulation.
    Orchestrates all 4 phases in order and assembles the result set.

    Raises:
        ConfigurationError: before any computation, on invalid configuration
    """
    stages, items = phase1_build_chain(config, catalog)
    cascade = phase2_price_cascade(stages, items)

    # The retailer's commission is the consignor's expense
    retailer_prices = cascade[-1]
    retailer_stage = stages[-1]
    commission_incl = ZERO
    commission_excl = ZERO
    consignor_notes = []
    if retailer_stage.is_commission_agent:
        commission_incl = retailer_prices.out_price_incl_tax
        commission_excl = retailer_prices.out_price_excl_tax
        consignor = stages[-2]
        resale_rate = retailer_stage.resale_tax_identity.rate
        if resale_rate != consignor.tax_identity.rate or not consignor.tax_identity.can_deduct_input:
            consignor_notes.append(
                f"终端售价按渠道税率 {resale_rate:.0%} 定价，销项按本主体税率 "
                f"{consignor.tax_identity.rate:.0%} 计税，链路增值税与经销模式不同"
            )

    entities: Dict[ChainRole, EntityResult] = {}
    for stage, prices in zip(stages, cascade):
        if stage.is_consignor:
            entities[stage.role] = phase4_assemble_entity(
                stage, prices, items, config.settings, commission_incl, commission_excl, consignor_notes
            )
        else:
            entities[stage.role] = phase4_assemble_entity(stage, prices, items, config.settings)

    result = SimulationResult(
        manufacturer=entities[ChainRole.MANUFACTURER],
        funder=entities[ChainRole.FUNDER],
        platform=entities[ChainRole.PLATFORM],
        intermediary=entities.get(ChainRole.INTERMEDIARY),
        retailer=entities[ChainRole.RETAILER],
    )
    logger.debug(
        "Simulation complete: %d entities, chain VAT payable %s",
        len(stages), result.total_vat_payable
    )
    return result


# ============================================================================
# EXPORT FOR USE IN API
# ============================================================================

__all__ = [
    'ConfigurationError',
    'calculate_simulation',
    'phase1_build_chain',
    'phase2_price_cascade',
    'phase3_tax_ledger',
    'phase3_income_tax_and_refunds',
    'round_decimal',
    'WARN_OVER_MSRP',
    'WARN_LOW_PROFIT',
    'WARN_RATE_GAP',
]
