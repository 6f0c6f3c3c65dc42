"""
Trade Chain Simulator - Simulation Models
Pydantic models for chain configuration, catalog snapshots and per-entity results

All money values are Decimal. Percentages are in percent units (12 = 12%),
VAT rates are fractions (0.13 = 13%).
"""

from decimal import Decimal
from typing import Optional, List, Dict, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum


# ============================================================================
# ENUMS - Dropdown/Select Values
# ============================================================================

class TaxpayerClass(str, Enum):
    """VAT taxpayer classes"""
    GENERAL = "general"          # 一般纳税人
    SMALL_SCALE = "small_scale"  # 小规模纳税人
    SERVICE = "service"          # 现代服务 (commission invoices)


class Region(str, Enum):
    """Registration region of a chain entity"""
    TIBET = "tibet"
    MAINLAND = "mainland"

    @property
    def has_refund_policy(self) -> bool:
        """Only Tibet-registered entities receive fiscal refunds"""
        return self is Region.TIBET

    @property
    def label(self) -> str:
        return "西藏主体" if self is Region.TIBET else "内地主体"


class TradeMode(str, Enum):
    """Retailer trade structure"""
    SALES = "sales"              # 经销 (buy and resell)
    CONSIGNMENT = "consignment"  # 代销 (commission)


class ChainRole(str, Enum):
    """Chain participants, in chain order"""
    MANUFACTURER = "manufacturer"
    FUNDER = "funder"
    PLATFORM = "platform"
    INTERMEDIARY = "intermediary"
    RETAILER = "retailer"


ROLE_LABELS = {
    ChainRole.MANUFACTURER: "源头厂商 (Manufacturer)",
    ChainRole.FUNDER: "垫资方 (Funder)",
    ChainRole.PLATFORM: "平台 (Platform)",
    ChainRole.INTERMEDIARY: "中间贸易商 (Trader)",
    ChainRole.RETAILER: "渠道 (Retailer)",
}


# ============================================================================
# TAX IDENTITY
# ============================================================================

class TaxIdentity(BaseModel):
    """Taxpayer class with an explicit output VAT rate"""
    model_config = ConfigDict(frozen=True)

    kind: TaxpayerClass
    rate: Decimal = Field(..., ge=0, lt=1, description="Output VAT rate as a fraction")

    @property
    def can_deduct_input(self) -> bool:
        """Only general taxpayers may deduct input VAT"""
        return self.kind == TaxpayerClass.GENERAL

    @property
    def label(self) -> str:
        names = {
            TaxpayerClass.GENERAL: "一般纳税人",
            TaxpayerClass.SMALL_SCALE: "小规模纳税人",
            TaxpayerClass.SERVICE: "服务费",
        }
        return f"{names[self.kind]} {self.rate * 100:.0f}%"


GENERAL_TAXPAYER = TaxIdentity(kind=TaxpayerClass.GENERAL, rate=Decimal("0.13"))
SMALL_SCALE_TAXPAYER = TaxIdentity(kind=TaxpayerClass.SMALL_SCALE, rate=Decimal("0.01"))
SERVICE_TAXPAYER = TaxIdentity(kind=TaxpayerClass.SERVICE, rate=Decimal("0.06"))


# ============================================================================
# CATALOG SNAPSHOT
# ============================================================================

class Product(BaseModel):
    """Product sold by a manufacturer"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    base_price: Decimal = Field(..., ge=0, description="Tax-inclusive cost from the manufacturer")
    msrp: Decimal = Field(default=Decimal("0"), ge=0, description="Suggested retail price (0 = unset)")


class Manufacturer(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    tax_identity: TaxIdentity = GENERAL_TAXPAYER
    region: Region = Region.MAINLAND
    products: List[Product] = Field(default_factory=list)

    def get_product(self, product_id: str) -> Optional[Product]:
        for product in self.products:
            if product.id == product_id:
                return product
        return None


class Funder(BaseModel):
    """Funder catalog entry; defaults seed a configuration"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    default_markup_percent: Decimal = Field(default=Decimal("0"), ge=0, le=500)
    default_payment_term_months: int = Field(default=0, ge=0, le=120)

    @property
    def default_payment_term_days(self) -> int:
        """Months are converted on a 30-day month"""
        return self.default_payment_term_months * 30


class Retailer(BaseModel):
    """Retailer catalog entry; defaults seed a configuration"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    default_markup_percent: Decimal = Field(default=Decimal("0"), ge=0, le=500)
    default_payment_term_days: int = Field(default=0, ge=0, le=3650)


class CatalogSnapshot(BaseModel):
    """Immutable catalog captured at run start"""
    model_config = ConfigDict(frozen=True)

    manufacturers: List[Manufacturer] = Field(default_factory=list)
    funders: List[Funder] = Field(default_factory=list)
    retailers: List[Retailer] = Field(default_factory=list)

    def get_manufacturer(self, manufacturer_id: str) -> Optional[Manufacturer]:
        return next((m for m in self.manufacturers if m.id == manufacturer_id), None)

    def get_funder(self, funder_id: str) -> Optional[Funder]:
        return next((f for f in self.funders if f.id == funder_id), None)

    def get_retailer(self, retailer_id: str) -> Optional[Retailer]:
        return next((r for r in self.retailers if r.id == retailer_id), None)


# ============================================================================
# CONFIGURATION INPUT MODELS
# ============================================================================

class PackageItem(BaseModel):
    """One line of goods flowing through the chain"""
    model_config = ConfigDict(frozen=True)

    manufacturer_id: str
    product_id: str
    quantity: int = Field(default=1, ge=0, description="Number of units")


class EntityConfig(BaseModel):
    """Per-entity tax identity, region, pricing and rate overrides"""
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    region: Region = Region.MAINLAND
    tax_identity: TaxIdentity = GENERAL_TAXPAYER
    markup_percent: Optional[Decimal] = Field(default=None, ge=0, le=500, description="Markup on excl-tax price %")
    payment_term_days: Optional[int] = Field(default=None, ge=0, le=3650, description="Settlement term in days")
    interest_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, description="Annual interest rate %")

    # Rate overrides; None falls back to the regional policy
    surcharge_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, description="Surcharge % of VAT payable")
    income_tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, description="Income tax %")
    vat_refund_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, description="% of VAT payable refunded")
    income_tax_refund_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, description="% of income tax refunded")

    logistics_cost_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100, description="Logistics/warehousing % of revenue")


class RetailerConfig(EntityConfig):
    """Retailer config with trade structure"""
    trade_mode: TradeMode = TradeMode.SALES
    commission_percent: Optional[Decimal] = Field(
        default=None, ge=0, le=100,
        description="Consignment commission %, defaults to markup_percent"
    )


class TaxPolicy(BaseModel):
    """Tax defaults for one region and taxpayer class; None marks an unconfigured rate"""
    model_config = ConfigDict(frozen=True)

    surcharge_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    income_tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    vat_refund_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    income_tax_refund_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)


def policies_by_region(policies: Dict[Region, TaxPolicy]) -> Dict[Tuple[Region, TaxpayerClass], TaxPolicy]:
    """Apply each regional policy to every taxpayer class of that region"""
    return {(region, kind): policy for region, policy in policies.items() for kind in TaxpayerClass}


def _default_tax_policies() -> Dict[Tuple[Region, TaxpayerClass], TaxPolicy]:
    return policies_by_region({
        Region.MAINLAND: TaxPolicy(
            surcharge_rate=Decimal("12"),
            income_tax_rate=Decimal("25"),
        ),
        Region.TIBET: TaxPolicy(
            surcharge_rate=Decimal("1"),
            income_tax_rate=Decimal("15"),
        ),
    })


def _default_viability_thresholds() -> Dict[ChainRole, Decimal]:
    return {
        ChainRole.FUNDER: Decimal("1"),
        ChainRole.PLATFORM: Decimal("0"),
        ChainRole.INTERMEDIARY: Decimal("0"),
        ChainRole.RETAILER: Decimal("0"),
    }


class GlobalSettings(BaseModel):
    """System-wide parameters (admin controlled)"""
    model_config = ConfigDict(frozen=True)

    funder_interest_rate: Decimal = Field(default=Decimal("6.0"), ge=0, le=100, description="Funder annual rate %")
    platform_interest_rate: Decimal = Field(default=Decimal("4.35"), ge=0, le=100, description="Platform annual rate %")
    platform_operational_cost_percent: Decimal = Field(default=Decimal("2.0"), ge=0, le=100)
    day_count_basis: int = Field(default=360, gt=0, description="Days per year for financing")
    tax_policies: Dict[Tuple[Region, TaxpayerClass], TaxPolicy] = Field(default_factory=_default_tax_policies)
    viability_thresholds: Dict[ChainRole, Decimal] = Field(default_factory=_default_viability_thresholds)

    def get_tax_policy(self, region: Region, kind: TaxpayerClass) -> Optional[TaxPolicy]:
        return self.tax_policies.get((region, kind))


class TransactionLinkConfig(BaseModel):
    """Edge between two adjacent chain roles"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    from_role: ChainRole
    to_role: ChainRole
    markup_percent: Decimal = Field(default=Decimal("0"), ge=0, le=500, description="Markup applied by to_role %")
    payment_term_days: int = Field(default=0, ge=0, le=3650, description="Days until to_role pays from_role")
    description: Optional[str] = None
    is_enabled: bool = True

    @field_validator("to_role")
    @classmethod
    def validate_not_self_link(cls, v, info):
        if info.data.get("from_role") == v:
            raise ValueError("Transaction link cannot connect a role to itself")
        return v


class CalculationConfig(BaseModel):
    """
    Complete input snapshot for one simulation run
    Catalog entities are referenced by id and resolved against a CatalogSnapshot
    """
    model_config = ConfigDict(frozen=True)

    package_items: List[PackageItem] = Field(default_factory=list)
    funder_id: str
    retailer_id: str

    # Tibet entities start with explicit zero refund rates
    funder: EntityConfig = Field(default_factory=lambda: EntityConfig(
        region=Region.TIBET, vat_refund_rate=Decimal("0"), income_tax_refund_rate=Decimal("0")
    ))
    platform: EntityConfig = Field(default_factory=lambda: EntityConfig(
        region=Region.TIBET, markup_percent=Decimal("10"),
        vat_refund_rate=Decimal("0"), income_tax_refund_rate=Decimal("0")
    ))
    has_intermediary: bool = False
    intermediary: EntityConfig = Field(default_factory=lambda: EntityConfig(
        markup_percent=Decimal("5"), payment_term_days=0
    ))
    retailer: RetailerConfig = Field(default_factory=RetailerConfig)

    transaction_links: List[TransactionLinkConfig] = Field(default_factory=list)
    settings: GlobalSettings = Field(default_factory=GlobalSettings)


# ============================================================================
# CHAIN BUILDER OUTPUT
# ============================================================================

class StageDescriptor(BaseModel):
    """One resolved chain stage; the only input later phases read"""
    model_config = ConfigDict(frozen=True)

    role: ChainRole
    name: str
    region: Region
    tax_identity: TaxIdentity
    markup_percent: Decimal = Decimal("0")
    supplier_term_days: int = 0   # Days until this stage pays its supplier
    customer_term_days: int = 0   # Days until this stage is paid by its customer
    interest_rate: Decimal = Decimal("0")
    operational_cost_percent: Decimal = Decimal("0")

    surcharge_rate: Optional[Decimal] = None
    income_tax_rate: Optional[Decimal] = None
    vat_refund_rate: Optional[Decimal] = None
    income_tax_refund_rate: Optional[Decimal] = None

    trade_mode: Optional[TradeMode] = None
    is_consignor: bool = False
    commission_percent: Decimal = Decimal("0")
    resale_tax_identity: Optional[TaxIdentity] = None  # Consignment retailer: identity it would resell under

    @property
    def financing_days(self) -> int:
        """Days the stage funds its purchase before collecting"""
        return max(self.customer_term_days - self.supplier_term_days, 0)

    @property
    def is_commission_agent(self) -> bool:
        return self.trade_mode == TradeMode.CONSIGNMENT


# ============================================================================
# CALCULATION OUTPUT MODELS
# ============================================================================

class ProductPriceDetail(BaseModel):
    """Line-item contract price for one entity"""
    model_config = ConfigDict(frozen=True)

    product_name: str
    quantity: int
    unit_price_incl_tax: Decimal
    total_price_incl_tax: Decimal


class EntityResult(BaseModel):
    """Computed outcome for one chain participant"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    role: str
    region: Region
    tax_identity: TaxIdentity
    trade_mode: Optional[TradeMode] = None

    in_price_excl_tax: Decimal
    in_price_incl_tax: Decimal
    out_price_excl_tax: Decimal
    out_price_incl_tax: Decimal

    vat_input: Decimal
    vat_output: Decimal
    vat_payable: Decimal
    surcharges: Decimal
    income_tax: Decimal
    tax_refunds: Decimal

    commission_expense: Decimal = Decimal("0")
    payment_term_days: int = 0   # Days until this entity pays its supplier
    financing_days: int = 0
    finance_cost: Decimal
    operational_cost: Decimal
    gross_profit: Decimal
    net_profit: Decimal
    cash_outflow: Decimal
    tax_burden_rate: Decimal

    price_breakdown: List[ProductPriceDetail] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    is_central_node: bool = False


class SimulationResult(BaseModel):
    """Fixed-shape result set for one configuration run"""
    model_config = ConfigDict(frozen=True)

    manufacturer: EntityResult
    funder: EntityResult
    platform: EntityResult
    intermediary: Optional[EntityResult] = None
    retailer: EntityResult

    def entities(self) -> List[EntityResult]:
        """Entity results in chain order"""
        chain = [self.manufacturer, self.funder, self.platform]
        if self.intermediary is not None:
            chain.append(self.intermediary)
        chain.append(self.retailer)
        return chain

    def get(self, role: ChainRole) -> Optional[EntityResult]:
        return getattr(self, role.value)

    @property
    def total_vat_payable(self) -> Decimal:
        return sum((e.vat_payable for e in self.entities()), Decimal("0"))

    @property
    def total_surcharges(self) -> Decimal:
        return sum((e.surcharges for e in self.entities()), Decimal("0"))

    @property
    def total_income_tax(self) -> Decimal:
        return sum((e.income_tax for e in self.entities()), Decimal("0"))

    @property
    def total_tax_refunds(self) -> Decimal:
        return sum((e.tax_refunds for e in self.entities()), Decimal("0"))

    @property
    def total_net_profit(self) -> Decimal:
        return sum((e.net_profit for e in self.entities()), Decimal("0"))
