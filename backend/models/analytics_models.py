"""
Data models for derived portfolio analytics

Outputs of the holdings aggregator, AUM reconciler, time-weighted return
calculator and quality-control validator. Presentation layers consume these
verbatim.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from models.portfolio import AssetClass, Position, Price, Security, Transaction


ZERO = Decimal("0")


class Holding(BaseModel):
    """Valued holding as of a date"""
    security_id: Optional[str] = None
    symbol: str
    security_name: str
    asset_class: AssetClass
    currency: str = "USD"
    quantity: Optional[Decimal] = None
    price: Optional[Decimal] = None
    average_cost: Optional[Decimal] = None
    market_value: Decimal
    cost_basis: Optional[Decimal] = None
    unrealized_pnl: Optional[Decimal] = None
    unrealized_pnl_percent: Optional[Decimal] = None
    allocation_percent: Decimal = ZERO
    stale_price: bool = Field(False, description="No price on or before the valuation date")
    price_date: Optional[date] = None
    position_date: date


class AssetClassAllocation(BaseModel):
    """Holdings grouped by asset class"""
    asset_class: AssetClass
    market_value: Decimal
    count: int
    allocation_percent: Decimal
    unrealized_pnl: Decimal = ZERO


class HoldingsSummary(BaseModel):
    as_of_date: date
    total_market_value: Decimal = ZERO
    total_cost_basis: Decimal = ZERO
    total_unrealized_pnl: Decimal = ZERO
    number_of_holdings: int = 0
    stale_price_count: int = 0
    asset_classes: List[AssetClassAllocation] = Field(default_factory=list)


class HoldingsResult(BaseModel):
    account_id: str
    holdings: List[Holding] = Field(default_factory=list)
    summary: HoldingsSummary


class UnrealizedPnLSummary(BaseModel):
    total_unrealized_pnl: Decimal = ZERO
    total_unrealized_pnl_percent: Decimal = ZERO
    total_market_value: Decimal = ZERO
    total_cost_basis: Decimal = ZERO
    total_gains: Decimal = ZERO
    total_losses: Decimal = ZERO
    gains_count: int = 0
    losses_count: int = 0
    average_gain: Decimal = ZERO
    average_loss: Decimal = ZERO


class ConcentrationMetrics(BaseModel):
    """Holding-level concentration measures (weights in percent)"""
    top5_weight: Decimal = ZERO
    top10_weight: Decimal = ZERO
    herfindahl_index: Decimal = ZERO
    effective_number_of_holdings: Decimal = ZERO
    largest_holding_weight: Decimal = ZERO
    largest_holding_symbol: Optional[str] = None
    num_holdings: int = 0


class AttributionEntry(BaseModel):
    """Per-holding contribution between two valuation dates (percent)"""
    security_id: Optional[str] = None
    symbol: str
    previous_weight: Decimal
    current_weight: Decimal
    weight_change: Decimal
    previous_price: Optional[Decimal] = None
    current_price: Optional[Decimal] = None
    price_return: Decimal
    contribution: Decimal


class AUMResult(BaseModel):
    """AUM reconciliation for one account and period"""
    account_id: str
    start_date: date
    end_date: date
    bop: Decimal = Field(ZERO, description="Beginning-of-period value")
    eop: Decimal = Field(ZERO, description="End-of-period value")
    contributions: Decimal = ZERO
    withdrawals: Decimal = ZERO
    net_flows: Decimal = ZERO
    market_pnl: Decimal = ZERO
    identity_check: bool = True
    identity_difference: Decimal = ZERO
    total_return_percent: Decimal = ZERO
    net_return_percent: Decimal = ZERO


class AggregateAUMResult(BaseModel):
    account_ids: List[str]
    start_date: date
    end_date: date
    bop: Decimal = ZERO
    eop: Decimal = ZERO
    contributions: Decimal = ZERO
    withdrawals: Decimal = ZERO
    net_flows: Decimal = ZERO
    market_pnl: Decimal = ZERO
    identity_check: bool = True
    identity_difference: Decimal = ZERO
    total_return_percent: Decimal = ZERO
    net_return_percent: Decimal = ZERO
    accounts: List[AUMResult] = Field(default_factory=list)


class DailyAUM(BaseModel):
    date: date
    aum: Decimal


class DailyReturn(BaseModel):
    """Flow-adjusted return for one valuation day"""
    date: date
    beginning_value: Decimal = ZERO
    ending_value: Decimal = ZERO
    net_flows: Decimal = ZERO
    adjusted_ending_value: Decimal = ZERO
    daily_return: Decimal
    cumulative_return: Decimal = ZERO


class TWRResult(BaseModel):
    """Chain-linked time-weighted return"""
    total_return: Decimal = ZERO
    total_return_percent: Decimal = ZERO
    annualized_twr: Decimal = ZERO
    annualized_twr_percent: Decimal = ZERO
    volatility: float = Field(0.0, description="Annualized sample standard deviation")
    sharpe_ratio: float = 0.0
    periods: int = 0
    periods_per_year: int = 252
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    compounding_factor: Decimal = Decimal("1")


class FeeAdjustedTWR(BaseModel):
    gross: TWRResult
    net: TWRResult
    annual_fee_rate: Decimal
    daily_fee_rate: Decimal
    total_return_difference: Decimal
    annualized_return_difference: Decimal
    net_daily_returns: List[DailyReturn] = Field(default_factory=list)


class RollingReturn(BaseModel):
    start_date: date
    end_date: date
    period_days: int
    total_return: Decimal
    annualized_return: Decimal


class DrawdownSummary(BaseModel):
    """Drawdown analysis of a daily return series"""
    max_drawdown: float = Field(0.0, description="Maximum drawdown (negative)")
    max_drawdown_start: Optional[date] = None
    max_drawdown_end: Optional[date] = None
    max_drawdown_duration_days: Optional[int] = None
    recovery_date: Optional[date] = None
    current_drawdown: float = 0.0
    current_drawdown_start: Optional[date] = None
    current_drawdown_duration_days: Optional[int] = None


class PerformanceStatistics(BaseModel):
    count: int = 0
    mean: float = 0.0
    mean_annualized: float = 0.0
    standard_deviation: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    best_day: Optional[float] = None
    worst_day: Optional[float] = None
    positive_days: int = 0
    negative_days: int = 0
    drawdown: DrawdownSummary = Field(default_factory=DrawdownSummary)


class QCStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class QCResult(BaseModel):
    """Outcome of a single quality-control check"""
    check_name: str
    status: QCStatus
    message: str
    evidence: Dict[str, Any] = Field(default_factory=dict)


class QCSummary(BaseModel):
    total_checks: int = 0
    passed: int = 0
    failed: int = 0
    warned: int = 0


class QCReport(BaseModel):
    overall_status: QCStatus
    account_id: str
    checks: List[QCResult] = Field(default_factory=list)
    summary: QCSummary = Field(default_factory=QCSummary)


class QCInput(BaseModel):
    """Everything the validator cross-checks for one account"""
    account_id: str
    aum_data: AUMResult
    positions: List[Position] = Field(default_factory=list)
    transactions: List[Transaction] = Field(default_factory=list)
    prices: Optional[List[Price]] = None
    securities: Optional[List[Security]] = None
    daily_returns: Optional[List[DailyReturn]] = None
    benchmark_dates: Optional[List[date]] = None
    reconcile_positions: bool = False


class LotMethod(str, Enum):
    FIFO = "FIFO"
    LIFO = "LIFO"
    HIGH_COST = "HIGH_COST"
    LOW_COST = "LOW_COST"


class FeeSchedule(BaseModel):
    """Management fee configuration"""
    management_fee_rate: Decimal = Decimal("0.01")
    calculation_method: Literal["average", "beginning", "ending"] = "average"
    minimum_fee: Decimal = ZERO


class FeeAdjustment(BaseModel):
    account_id: str
    date: date
    amount: Decimal


class DailyFee(BaseModel):
    date: date
    aum_for_fee: Decimal
    management_fee: Decimal
    manual_adjustment: Decimal = ZERO
    total_fee: Decimal
    cumulative_fee: Decimal = ZERO


class FeeAccrual(BaseModel):
    account_id: str
    start_date: date
    end_date: date
    total_days: int = 0
    total_management_fees: Decimal = ZERO
    total_manual_adjustments: Decimal = ZERO
    minimum_fee_top_up: Decimal = ZERO
    total_fees: Decimal = ZERO
    average_aum: Decimal = ZERO
    effective_annual_rate: Decimal = ZERO
    nominal_annual_rate: Decimal = ZERO
    daily_fees: List[DailyFee] = Field(default_factory=list)


class FeeTier(BaseModel):
    minimum: Decimal
    rate: Decimal


class TierFee(BaseModel):
    tier_number: int
    minimum: Decimal
    maximum: Optional[Decimal] = None
    rate: Decimal
    applicable_aum: Decimal
    fee: Decimal


class TieredFeeResult(BaseModel):
    aum: Decimal
    total_fee: Decimal = ZERO
    effective_rate: Decimal = ZERO
    tiers: List[TierFee] = Field(default_factory=list)


class PerformanceFeeResult(BaseModel):
    start_value: Decimal
    end_value: Decimal
    net_flows: Decimal
    high_water_mark: Decimal
    new_high_water_mark: Decimal
    hurdle_value: Decimal
    outperformance: Decimal
    performance_fee_rate: Decimal
    performance_fee: Decimal


class MultiAccountFees(BaseModel):
    """Fee accruals for several accounts over one period"""
    account_ids: List[str]
    start_date: date
    end_date: date
    total_management_fees: Decimal = ZERO
    total_manual_adjustments: Decimal = ZERO
    total_fees: Decimal = ZERO
    total_average_aum: Decimal = Field(ZERO, description="Sum of each account's average fee basis")
    weighted_average_rate: Decimal = ZERO
    accounts: List[FeeAccrual] = Field(default_factory=list)


class TaxLot(BaseModel):
    """Open or partially closed purchase lot"""
    lot_id: str
    security_id: str
    purchase_date: date
    original_quantity: Decimal
    remaining_quantity: Decimal
    purchase_price: Decimal


class RealizedGain(BaseModel):
    security_id: str
    lot_id: str
    purchase_date: date
    sale_date: date
    quantity: Decimal
    purchase_price: Decimal
    sale_price: Decimal
    cost: Decimal
    proceeds: Decimal
    gain_loss: Decimal
    holding_period_days: int
    is_long_term: bool


class RealizedPnLSummary(BaseModel):
    total_gain_loss: Decimal = ZERO
    total_proceeds: Decimal = ZERO
    total_cost: Decimal = ZERO
    short_term_gain_loss: Decimal = ZERO
    long_term_gain_loss: Decimal = ZERO
    gains_count: int = 0
    losses_count: int = 0
    win_rate: Decimal = ZERO
    unmatched_quantity: Decimal = Field(ZERO, description="Sold quantity with no open lot")


class RealizedPnLResult(BaseModel):
    method: str
    realized: List[RealizedGain] = Field(default_factory=list)
    summary: RealizedPnLSummary = Field(default_factory=RealizedPnLSummary)


class LotUnrealizedPnL(BaseModel):
    """Mark-to-market result for one open lot"""
    lot_id: str
    security_id: str
    purchase_date: date
    quantity: Decimal
    purchase_price: Decimal
    current_price: Decimal
    book_value: Decimal
    current_value: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_percent: Decimal = ZERO
    holding_period_days: int
    is_long_term: bool


class WashSalePurchase(BaseModel):
    date: date
    quantity: Decimal
    price: Decimal = ZERO


class WashSale(BaseModel):
    """A loss sale with replacement purchases inside the wash-sale window"""
    lot_id: str
    security_id: str
    sale_date: date
    original_loss: Decimal
    wash_sale_quantity: Decimal
    disallowed_loss: Decimal
    allowed_loss: Decimal
    is_long_term: bool
    purchases: List[WashSalePurchase] = Field(default_factory=list)


class WashSaleResult(BaseModel):
    wash_sales: List[WashSale] = Field(default_factory=list)
    total_disallowed_loss: Decimal = ZERO
    affected_transactions: int = 0
    original_total_loss: Decimal = ZERO
    adjusted_total_loss: Decimal = ZERO


class TaxTermSummary(BaseModel):
    gain_loss: Decimal = ZERO
    gains: Decimal = ZERO
    losses: Decimal = ZERO


class TaxReportSummary(BaseModel):
    """Short and long-term results after wash-sale adjustments"""
    method: str
    short_term: TaxTermSummary = Field(default_factory=TaxTermSummary)
    long_term: TaxTermSummary = Field(default_factory=TaxTermSummary)
    total_gain_loss: Decimal = ZERO
    total_proceeds: Decimal = ZERO
    total_cost: Decimal = ZERO
    disallowed_loss: Decimal = ZERO
    wash_sale_count: int = 0


class AccountReport(BaseModel):
    """Everything a reporting request needs for one account and period"""
    account_id: str
    start_date: date
    end_date: date
    holdings: HoldingsResult
    aum: AUMResult
    daily_returns: List[DailyReturn] = Field(default_factory=list)
    twr: TWRResult
    qc: QCReport
