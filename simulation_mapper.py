"""
Simulation Mapping Module

This module handles:
- Two-tier variable resolution (explicit value > catalog default > fallback)
- Mapping the legacy flat (camelCase) configuration dict to CalculationConfig
- Default global settings, sample catalog and default transaction links
- Pre-run validation with human-readable messages

Legacy role ids: 'cangjing' is the platform, 'trader' the intermediary.
"""

from typing import Dict, Any, Optional, List
from decimal import Decimal
import logging

from simulation_models import (
    CalculationConfig,
    CatalogSnapshot,
    ChainRole,
    EntityConfig,
    Funder,
    GENERAL_TAXPAYER,
    GlobalSettings,
    Manufacturer,
    PackageItem,
    Product,
    Region,
    Retailer,
    RetailerConfig,
    SERVICE_TAXPAYER,
    SMALL_SCALE_TAXPAYER,
    TaxIdentity,
    TaxPolicy,
    TaxpayerClass,
    TradeMode,
    TransactionLinkConfig,
    policies_by_region,
)

# Setup logger
logger = logging.getLogger(__name__)


# ============================================================================
# SAFE CONVERSION UTILITIES
# ============================================================================

def safe_decimal(value: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """Safely convert value to Decimal"""
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (ValueError, TypeError, ArithmeticError):
        return default


def safe_str(value: Any, default: str = "") -> str:
    """Safely convert value to string"""
    if value is None or value == "":
        return default
    return str(value)


def safe_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    """Safely convert value to int"""
    if value is None or value == "":
        return default
    try:
        return int(Decimal(str(value)))
    except (ValueError, TypeError, ArithmeticError):
        return default


# ============================================================================
# ENUM NORMALIZATION
# ============================================================================

# Legacy role ids used by stored transaction links
LEGACY_ROLE_MAPPING = {
    "manufacturer": ChainRole.MANUFACTURER,
    "funder": ChainRole.FUNDER,
    "cangjing": ChainRole.PLATFORM,
    "platform": ChainRole.PLATFORM,
    "trader": ChainRole.INTERMEDIARY,
    "intermediary": ChainRole.INTERMEDIARY,
    "retailer": ChainRole.RETAILER,
}

# Legacy tax types were stored as their rate
TAX_TYPE_MAPPING = {
    "0.13": GENERAL_TAXPAYER,
    "general": GENERAL_TAXPAYER,
    "一般纳税人": GENERAL_TAXPAYER,
    "0.01": SMALL_SCALE_TAXPAYER,
    "small": SMALL_SCALE_TAXPAYER,
    "small_scale": SMALL_SCALE_TAXPAYER,
    "小规模纳税人": SMALL_SCALE_TAXPAYER,
    "0.06": SERVICE_TAXPAYER,
    "service": SERVICE_TAXPAYER,
}


def normalize_tax_type(value: Any, default: TaxIdentity = GENERAL_TAXPAYER) -> Optional[TaxIdentity]:
    """
    Normalize a legacy tax type (0.13 / 0.01 / 0.06 or a name) to a TaxIdentity.

    Returns:
        Matching TaxIdentity, default for empty input, None if unrecognized
    """
    if value is None or value == "":
        return default
    if isinstance(value, TaxIdentity):
        return value

    key = str(value).strip().lower()
    if key in TAX_TYPE_MAPPING:
        return TAX_TYPE_MAPPING[key]

    rate = safe_decimal(value, None)
    if rate is not None:
        for identity in (GENERAL_TAXPAYER, SMALL_SCALE_TAXPAYER, SERVICE_TAXPAYER):
            if identity.rate == rate:
                return identity
    return None


def normalize_region(value: Any, default: Region = Region.MAINLAND) -> Optional[Region]:
    """Normalize region value; None if unrecognized"""
    if value is None or value == "":
        return default
    try:
        return Region(str(value).strip().lower())
    except ValueError:
        return None


def normalize_trade_mode(value: Any) -> Optional[TradeMode]:
    if value is None or value == "":
        return TradeMode.SALES
    try:
        return TradeMode(str(value).strip().lower())
    except ValueError:
        return None


def normalize_role(value: Any) -> Optional[ChainRole]:
    return LEGACY_ROLE_MAPPING.get(safe_str(value).strip().lower())


# ============================================================================
# TWO-TIER VARIABLE RESOLUTION
# ============================================================================

def get_value(field_name: str, variables: Dict[str, Any], catalog_entry: Any = None,
              catalog_field: Optional[str] = None, default: Any = None) -> Any:
    """
    Get value using two-tier logic: explicit config value > catalog default > fallback default

    Args:
        field_name: Name of the legacy config field
        variables: Flat configuration dict
        catalog_entry: Catalog entity (dict or object) providing defaults
        catalog_field: Attribute on the catalog entry holding the default
        default: Fallback default if not found anywhere

    Returns:
        Value from config, catalog, or fallback (in that order)
    """
    config_value = variables.get(field_name)
    if config_value is not None and config_value != "":
        return config_value

    if catalog_entry is not None and catalog_field:
        if isinstance(catalog_entry, dict):
            catalog_value = catalog_entry.get(catalog_field)
        else:
            catalog_value = getattr(catalog_entry, catalog_field, None)
        if catalog_value is not None and catalog_value != "":
            return catalog_value

    return default


def _ref_id(value: Any) -> str:
    """Legacy payloads embed whole objects; newer ones carry ids"""
    if isinstance(value, dict):
        return safe_str(value.get("id"))
    return safe_str(value)


# ============================================================================
# DEFAULTS (ADMIN SETTINGS, SAMPLE CATALOG, DEFAULT LINKS)
# ============================================================================

def get_default_global_settings(variables: Optional[Dict[str, Any]] = None) -> GlobalSettings:
    """
    Get default global settings, optionally overridden by legacy admin fields.

    Returns:
        GlobalSettings with interest rates, operational cost and regional policies
    """
    variables = variables or {}
    defaults = GlobalSettings()

    mainland = defaults.get_tax_policy(Region.MAINLAND, TaxpayerClass.GENERAL)
    tibet = defaults.get_tax_policy(Region.TIBET, TaxpayerClass.GENERAL)

    return GlobalSettings(
        funder_interest_rate=safe_decimal(variables.get("funderInterestRate"), defaults.funder_interest_rate),
        platform_interest_rate=safe_decimal(variables.get("cangjingInterestRate"), defaults.platform_interest_rate),
        platform_operational_cost_percent=safe_decimal(
            variables.get("cangjingOperationalCostPercent"), defaults.platform_operational_cost_percent
        ),
        tax_policies=policies_by_region({
            Region.MAINLAND: TaxPolicy(
                surcharge_rate=safe_decimal(variables.get("defaultMainlandSurcharge"), mainland.surcharge_rate),
                income_tax_rate=safe_decimal(variables.get("defaultMainlandIncomeTax"), mainland.income_tax_rate),
            ),
            Region.TIBET: TaxPolicy(
                surcharge_rate=safe_decimal(variables.get("defaultTibetSurcharge"), tibet.surcharge_rate),
                income_tax_rate=safe_decimal(variables.get("defaultTibetIncomeTax"), tibet.income_tax_rate),
                vat_refund_rate=safe_decimal(variables.get("defaultTibetVatRefund"), tibet.vat_refund_rate),
                income_tax_refund_rate=safe_decimal(
                    variables.get("defaultTibetIncomeTaxRefund"), tibet.income_tax_refund_rate
                ),
            ),
        }),
        viability_thresholds=defaults.viability_thresholds,
    )


def get_sample_catalog() -> CatalogSnapshot:
    """Initial catalog used by the sample configuration and the demo runner"""
    return CatalogSnapshot(
        manufacturers=[
            Manufacturer(
                id="m1", name="拉萨特产总厂 (一般)", tax_identity=GENERAL_TAXPAYER, region=Region.TIBET,
                products=[
                    Product(id="p1-1", name="极品虫草 (5g)", base_price=Decimal("800"), msrp=Decimal("1388")),
                    Product(id="p1-2", name="藏红花礼盒", base_price=Decimal("200"), msrp=Decimal("398")),
                ],
            ),
            Manufacturer(
                id="m2", name="林芝松茸合作社 (小规模)", tax_identity=SMALL_SCALE_TAXPAYER, region=Region.TIBET,
                products=[
                    Product(id="p2-1", name="干松茸 (250g)", base_price=Decimal("150"), msrp=Decimal("298")),
                    Product(id="p2-2", name="野生灵芝", base_price=Decimal("300"), msrp=Decimal("588")),
                ],
            ),
        ],
        funders=[
            Funder(id="f1", name="宸铭供应链 (默认)", default_markup_percent=Decimal("3"), default_payment_term_months=6),
            Funder(id="f2", name="其它资方 (短期)", default_markup_percent=Decimal("2"), default_payment_term_months=3),
        ],
        retailers=[
            Retailer(id="r1", name="德商渠道 (商超)", default_markup_percent=Decimal("20"), default_payment_term_days=45),
            Retailer(id="r2", name="电商直播渠道", default_markup_percent=Decimal("35"), default_payment_term_days=15),
        ],
    )


def build_default_transaction_links(funder: Funder, retailer: Retailer,
                                    platform_markup: Decimal = Decimal("10")) -> List[TransactionLinkConfig]:
    """
    Default Manufacturer -> Funder -> Platform -> Retailer links seeded from catalog defaults.

    Days on each link are the buyer's settlement term for that edge.
    """
    return [
        TransactionLinkConfig(
            id="link-1", name="厂商到宸铭",
            from_role=ChainRole.MANUFACTURER, to_role=ChainRole.FUNDER,
            markup_percent=funder.default_markup_percent,
            payment_term_days=0,
        ),
        TransactionLinkConfig(
            id="link-2", name="宸铭到藏境",
            from_role=ChainRole.FUNDER, to_role=ChainRole.PLATFORM,
            markup_percent=platform_markup,
            payment_term_days=funder.default_payment_term_days,
        ),
        TransactionLinkConfig(
            id="link-3", name="藏境到终端",
            from_role=ChainRole.PLATFORM, to_role=ChainRole.RETAILER,
            markup_percent=retailer.default_markup_percent,
            payment_term_days=retailer.default_payment_term_days,
        ),
    ]


# ============================================================================
# LEGACY TRANSACTION LINKS
# ============================================================================

def map_legacy_links(raw_links: List[Dict[str, Any]]) -> List[TransactionLinkConfig]:
    """
    Convert stored links ({fromEntityId, toEntityId, markupPercent, paymentTermDays, isEnabled}).

    Stored manufacturer -> funder links carry the funder's own payment term;
    those days move to the funder -> platform edge unless that edge already
    has a non-zero term.
    """
    links = []
    for raw in raw_links:
        from_role = normalize_role(raw.get("fromEntityId"))
        to_role = normalize_role(raw.get("toEntityId"))
        if from_role is None or to_role is None:
            raise ValueError(
                f"Transaction link '{raw.get('id')}': unknown role "
                f"{raw.get('fromEntityId')} -> {raw.get('toEntityId')}"
            )
        links.append(TransactionLinkConfig(
            id=safe_str(raw.get("id"), f"link-{len(links) + 1}"),
            name=safe_str(raw.get("name")),
            from_role=from_role,
            to_role=to_role,
            markup_percent=safe_decimal(raw.get("markupPercent")),
            payment_term_days=safe_int(raw.get("paymentTermDays")),
            description=raw.get("description"),
            is_enabled=bool(raw.get("isEnabled", True)),
        ))

    source = next((l for l in links if l.from_role == ChainRole.MANUFACTURER and l.is_enabled), None)
    if source is None or source.payment_term_days == 0:
        return links

    shifted = []
    for link in links:
        if link is source:
            link = link.model_copy(update={"payment_term_days": 0})
        elif link.from_role == ChainRole.FUNDER and link.is_enabled and link.payment_term_days == 0:
            link = link.model_copy(update={"payment_term_days": source.payment_term_days})
        shifted.append(link)
    logger.debug("Moved %s-day funder term from link %s", source.payment_term_days, source.id)
    return shifted


def route_through_intermediary(links: List[TransactionLinkConfig]) -> List[TransactionLinkConfig]:
    """
    Stored link sets never contain the intermediary; when it is switched on,
    the platform -> retailer link becomes intermediary -> retailer.
    """
    if any(ChainRole.INTERMEDIARY in (l.from_role, l.to_role) for l in links):
        return links
    routed = []
    for link in links:
        if link.from_role == ChainRole.PLATFORM and link.to_role == ChainRole.RETAILER:
            link = link.model_copy(update={"from_role": ChainRole.INTERMEDIARY})
        routed.append(link)
    return routed


# ============================================================================
# MAIN MAPPING FUNCTION
# ============================================================================

def _entity_rates(variables: Dict[str, Any], prefix: str) -> Dict[str, Optional[Decimal]]:
    """Rate overrides; missing fields stay None so the regional policy applies"""
    return {
        "surcharge_rate": safe_decimal(variables.get(f"{prefix}VatSurchargeRate"), None),
        "income_tax_rate": safe_decimal(variables.get(f"{prefix}IncomeTaxRate"), None),
        "vat_refund_rate": safe_decimal(variables.get(f"{prefix}VatRefundRate"), None),
        "income_tax_refund_rate": safe_decimal(variables.get(f"{prefix}IncomeTaxRefundRate"), None),
    }


def map_legacy_config(
    variables: Dict[str, Any],
    catalog: CatalogSnapshot
) -> CalculationConfig:
    """
    Transform the legacy flat configuration dict into CalculationConfig.

    Funder and retailer markups/terms fall back to their catalog defaults.
    Catalog references are kept as ids; the engine resolves them.

    Args:
        variables: Flat config (packageItems, funder, retailer, funder*/cangjing*/trader*/retailer* fields)
        catalog: Catalog snapshot providing defaults

    Returns:
        CalculationConfig ready for calculate_simulation
    """
    package_items = []
    for raw in variables.get("packageItems") or []:
        package_items.append(PackageItem(
            manufacturer_id=_ref_id(raw.get("manufacturer") or raw.get("manufacturerId")),
            product_id=_ref_id(raw.get("product") or raw.get("productId")),
            quantity=safe_int(raw.get("quantity"), 1),
        ))

    funder_id = _ref_id(variables.get("funder") or variables.get("funderId"))
    retailer_id = _ref_id(variables.get("retailer") or variables.get("retailerId"))
    funder_entry = catalog.get_funder(funder_id)
    retailer_entry = catalog.get_retailer(retailer_id)

    funder_months = safe_int(get_value(
        "funderPaymentTermMonths", variables, funder_entry, "default_payment_term_months"
    ), None)

    funder = EntityConfig(
        region=normalize_region(variables.get("funderRegion"), Region.TIBET),
        markup_percent=safe_decimal(get_value(
            "funderMarkupPercent", variables, funder_entry, "default_markup_percent"
        ), None),
        payment_term_days=funder_months * 30 if funder_months is not None else None,
        logistics_cost_percent=safe_decimal(variables.get("funderLogisticsCostPercent")),
        **_entity_rates(variables, "funder"),
    )

    platform = EntityConfig(
        name=safe_str(variables.get("cangjingName")) or None,
        region=normalize_region(variables.get("cangjingRegion"), Region.TIBET),
        tax_identity=normalize_tax_type(variables.get("cangjingTaxType")),
        markup_percent=safe_decimal(variables.get("cangjingMarkupPercent"), Decimal("10")),
        logistics_cost_percent=safe_decimal(variables.get("cangjingLogisticsCostPercent")),
        **_entity_rates(variables, "cangjing"),
    )

    intermediary = EntityConfig(
        region=normalize_region(variables.get("traderRegion"), Region.MAINLAND),
        tax_identity=normalize_tax_type(variables.get("traderTaxType")),
        markup_percent=safe_decimal(variables.get("traderMarkupPercent"), Decimal("5")),
        payment_term_days=safe_int(variables.get("traderPaymentTermDays"), 0),
        **_entity_rates(variables, "trader"),
    )

    retailer = RetailerConfig(
        region=normalize_region(variables.get("retailerRegion"), Region.MAINLAND),
        tax_identity=normalize_tax_type(variables.get("retailerTaxType")),
        trade_mode=normalize_trade_mode(variables.get("retailerTradeMode")),
        markup_percent=safe_decimal(get_value(
            "retailerMarkupPercent", variables, retailer_entry, "default_markup_percent"
        ), None),
        payment_term_days=safe_int(get_value(
            "retailerPaymentTermDays", variables, retailer_entry, "default_payment_term_days"
        ), None),
        commission_percent=safe_decimal(variables.get("retailerCommissionPercent"), None),
        logistics_cost_percent=safe_decimal(variables.get("retailerLogisticsCostPercent")),
        **_entity_rates(variables, "retailer"),
    )

    has_intermediary = bool(variables.get("hasIntermediary", False))
    links = map_legacy_links(variables.get("transactionLinks") or [])
    if has_intermediary:
        links = route_through_intermediary(links)

    config = CalculationConfig(
        package_items=package_items,
        funder_id=funder_id,
        retailer_id=retailer_id,
        funder=funder,
        platform=platform,
        has_intermediary=has_intermediary,
        intermediary=intermediary,
        retailer=retailer,
        transaction_links=links,
        settings=get_default_global_settings(variables),
    )

    logger.debug(
        "Mapped legacy config: %d items, funder=%s, retailer=%s, mode=%s",
        len(package_items), funder_id, retailer_id, retailer.trade_mode.value
    )
    return config


# ============================================================================
# VALIDATION FUNCTION
# ============================================================================

def validate_simulation_input(
    variables: Dict[str, Any],
    catalog: CatalogSnapshot
) -> List[str]:
    """
    Validate a legacy configuration dict before mapping.
    Returns list of all validation errors (empty list if valid).

    Business rules:
    - At least one package item; each must resolve in the catalog
    - Funder and retailer must exist in the catalog
    - Markups, payment terms and rates must be >= 0
    - Regions, tax types and trade mode must be recognized

    Args:
        variables: Flat configuration dict
        catalog: Catalog snapshot used for reference checks

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    items = variables.get("packageItems") or []
    if not items:
        errors.append("套餐中没有商品 (packageItems)。请至少添加一个商品。")

    for position, raw in enumerate(items, start=1):
        manufacturer_id = _ref_id(raw.get("manufacturer") or raw.get("manufacturerId"))
        product_id = _ref_id(raw.get("product") or raw.get("productId"))
        manufacturer = catalog.get_manufacturer(manufacturer_id)
        if manufacturer is None:
            errors.append(f"商品 {position}: 未找到厂商 '{manufacturer_id}'。")
        elif manufacturer.get_product(product_id) is None:
            errors.append(f"商品 {position}: 厂商 '{manufacturer.name}' 下未找到产品 '{product_id}'。")

        quantity = safe_int(raw.get("quantity"), None)
        if quantity is None or quantity < 0:
            errors.append(f"商品 {position}: 数量 (quantity) 必须为非负整数。")

    funder_id = _ref_id(variables.get("funder") or variables.get("funderId"))
    if catalog.get_funder(funder_id) is None:
        errors.append(f"未找到资方 '{funder_id}' (funder)。请在资方列表中选择。")

    retailer_id = _ref_id(variables.get("retailer") or variables.get("retailerId"))
    if catalog.get_retailer(retailer_id) is None:
        errors.append(f"未找到渠道 '{retailer_id}' (retailer)。请在渠道列表中选择。")

    # Non-negative numeric fields
    numeric_fields = [
        ("funderMarkupPercent", "资方加价率"),
        ("funderPaymentTermMonths", "资方账期"),
        ("cangjingMarkupPercent", "平台加价率"),
        ("traderMarkupPercent", "贸易商加价率"),
        ("traderPaymentTermDays", "贸易商账期"),
        ("retailerMarkupPercent", "渠道加价率"),
        ("retailerPaymentTermDays", "渠道账期"),
        ("funderInterestRate", "资方年化利率"),
        ("cangjingInterestRate", "平台年化利率"),
        ("cangjingOperationalCostPercent", "平台运营成本率"),
    ]
    for prefix in ("funder", "cangjing", "trader", "retailer"):
        numeric_fields.extend([
            (f"{prefix}VatSurchargeRate", f"{prefix} 附加税率"),
            (f"{prefix}IncomeTaxRate", f"{prefix} 所得税率"),
        ])

    for field_name, label in numeric_fields:
        value = variables.get(field_name)
        if value is None or value == "":
            continue
        number = safe_decimal(value, None)
        if number is None:
            errors.append(f"'{label}' ({field_name}) 不是有效数字。")
        elif number < 0:
            errors.append(f"'{label}' ({field_name}) 不能为负数。")

    for field_name in ("funderRegion", "cangjingRegion", "traderRegion", "retailerRegion"):
        if normalize_region(variables.get(field_name)) is None:
            errors.append(f"无效的注册地 ({field_name}): '{variables.get(field_name)}'。")

    for field_name in ("cangjingTaxType", "traderTaxType", "retailerTaxType"):
        if normalize_tax_type(variables.get(field_name)) is None:
            errors.append(f"无效的纳税人类型 ({field_name}): '{variables.get(field_name)}'。")

    if normalize_trade_mode(variables.get("retailerTradeMode")) is None:
        errors.append(
            f"无效的渠道模式 (retailerTradeMode): '{variables.get('retailerTradeMode')}'。"
            "可选值: sales (经销) / consignment (代销)。"
        )

    for raw in variables.get("transactionLinks") or []:
        if normalize_role(raw.get("fromEntityId")) is None or normalize_role(raw.get("toEntityId")) is None:
            errors.append(
                f"交易链路 '{raw.get('id')}': 未知的主体 "
                f"{raw.get('fromEntityId')} -> {raw.get('toEntityId')}。"
            )

    return errors
