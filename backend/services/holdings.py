"""
Holdings aggregation

Values the latest position snapshot of each security as of a date, joins it
to the latest available price and to security reference data, and derives
unrealized P&L, allocation weights and an asset-class breakdown.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union
import logging

from models.portfolio import (
    AccountData,
    AssetClass,
    Position,
    Price,
    Security,
    coerce_date
)
from models.analytics_models import (
    AssetClassAllocation,
    AttributionEntry,
    ConcentrationMetrics,
    Holding,
    HoldingsResult,
    HoldingsSummary,
    UnrealizedPnLSummary
)
from services.cash_flows import ensure_account
from services.numeric import HUNDRED, ONE, ZERO, percent_of, safe_divide

logger = logging.getLogger(__name__)

CASH_SYMBOL = "CASH"
CASH_NAME = "Cash"


def compute_holdings(
    account_id: str,
    as_of_date: Union[date, str],
    data: Union[AccountData, dict]
) -> HoldingsResult:
    """
    Compute valued holdings and summary as of a date

    Args:
        account_id: Account the positions belong to
        as_of_date: Valuation date; the latest snapshot at or before it is used
        data: AccountData (or mapping) with positions, prices and securities

    Returns:
        HoldingsResult ordered by market value descending, ties by symbol

    Example:
        >>> result = compute_holdings("ACC1", "2024-01-31", {
        ...     "positions": [{"account_id": "ACC1", "date": "2024-01-31",
        ...                    "security_id": "S1", "quantity": 100,
        ...                    "average_cost": 150, "market_value": 15000}],
        ...     "prices": [{"security_id": "S1", "date": "2024-01-31", "close": 160}],
        ... })
        >>> result.holdings[0].market_value
        Decimal('16000')
    """
    data = AccountData.coerce(data)
    as_of = coerce_date(as_of_date, "as_of_date")
    ensure_account(data.positions, account_id, "positions")

    securities = {s.id: s for s in data.securities}
    price_index = _build_price_index(data.prices)

    holdings = []
    for security_id, positions in _latest_positions(data.positions, as_of).items():
        holding = _value_position(
            security_id,
            positions,
            securities.get(security_id) if security_id is not None else None,
            _latest_price(price_index, security_id, as_of)
        )
        if holding is not None:
            holdings.append(holding)

    holdings.sort(key=lambda h: (-h.market_value, h.symbol))

    total_value = sum((h.market_value for h in holdings), ZERO)
    if total_value == 0 and holdings:
        logger.debug(f"Total market value is zero for {account_id} on {as_of}")

    for holding in holdings:
        holding.allocation_percent = percent_of(holding.market_value, total_value)

    summary = HoldingsSummary(
        as_of_date=as_of,
        total_market_value=total_value,
        total_cost_basis=sum((h.cost_basis for h in holdings if h.cost_basis is not None), ZERO),
        total_unrealized_pnl=sum(
            (h.unrealized_pnl for h in holdings if h.unrealized_pnl is not None), ZERO
        ),
        number_of_holdings=len(holdings),
        stale_price_count=sum(1 for h in holdings if h.stale_price),
        asset_classes=compute_asset_class_breakdown(holdings, total_value)
    )

    return HoldingsResult(account_id=account_id, holdings=holdings, summary=summary)


def compute_asset_class_breakdown(
    holdings: List[Holding],
    total_value: Optional[Decimal] = None
) -> List[AssetClassAllocation]:
    """
    Group holdings by asset class

    Returns:
        One entry per asset class with market value, count and percent of
        total, ordered by market value descending
    """
    if not holdings:
        return []

    if total_value is None:
        total_value = sum((h.market_value for h in holdings), ZERO)

    values: Dict[AssetClass, Decimal] = defaultdict(lambda: ZERO)
    pnl: Dict[AssetClass, Decimal] = defaultdict(lambda: ZERO)
    counts: Dict[AssetClass, int] = defaultdict(int)
    for holding in holdings:
        values[holding.asset_class] += holding.market_value
        counts[holding.asset_class] += 1
        if holding.unrealized_pnl is not None:
            pnl[holding.asset_class] += holding.unrealized_pnl

    breakdown = [
        AssetClassAllocation(
            asset_class=asset_class,
            market_value=value,
            count=counts[asset_class],
            allocation_percent=percent_of(value, total_value),
            unrealized_pnl=pnl[asset_class]
        )
        for asset_class, value in values.items()
    ]
    breakdown.sort(key=lambda a: (-a.market_value, a.asset_class.value))
    return breakdown


def _latest_positions(
    positions: List[Position],
    as_of: date
) -> Dict[Optional[str], List[Position]]:
    """Positions on the most recent snapshot date at or before as_of, per security"""
    latest: Dict[Optional[str], List[Position]] = {}
    for position in positions:
        if position.date > as_of:
            continue
        current = latest.get(position.security_id)
        if current is None or position.date > current[0].date:
            latest[position.security_id] = [position]
        elif position.date == current[0].date:
            current.append(position)
    return latest


def _build_price_index(prices: List[Price]) -> Dict[str, List[Price]]:
    index: Dict[str, List[Price]] = defaultdict(list)
    for price in prices:
        index[price.security_id].append(price)
    for series in index.values():
        series.sort(key=lambda p: p.date)
    return index


def _latest_price(
    price_index: Dict[str, List[Price]],
    security_id: Optional[str],
    as_of: date
) -> Optional[Price]:
    if security_id is None:
        return None
    latest = None
    for price in price_index.get(security_id, []):
        if price.date > as_of:
            break
        latest = price
    return latest


def _merge_positions(positions: List[Position]) -> Tuple[Optional[Decimal], Optional[Decimal], Decimal]:
    """Combine same-day records for one security into (quantity, average_cost, market_value)"""
    market_value = sum((p.market_value for p in positions), ZERO)
    if len(positions) == 1:
        return positions[0].quantity, positions[0].average_cost, market_value

    quantities = [p.quantity for p in positions if p.quantity is not None]
    quantity = sum(quantities, ZERO) if quantities else None

    average_cost = None
    if quantity and all(p.quantity is not None and p.average_cost is not None for p in positions):
        cost = sum((p.quantity * p.average_cost for p in positions), ZERO)
        average_cost = cost / quantity
    return quantity, average_cost, market_value


def _describe(security_id: Optional[str], security: Optional[Security]) -> Tuple[str, str, AssetClass, str]:
    if security_id is None:
        return CASH_SYMBOL, CASH_NAME, AssetClass.CASH, "USD"
    if security is None:
        logger.warning(f"No security reference data for {security_id}")
        return security_id, security_id, AssetClass.UNKNOWN, "USD"
    return security.symbol, security.name, security.asset_class, security.currency


def _value_position(
    security_id: Optional[str],
    positions: List[Position],
    security: Optional[Security],
    price: Optional[Price]
) -> Optional[Holding]:
    quantity, average_cost, stored_value = _merge_positions(positions)
    symbol, name, asset_class, currency = _describe(security_id, security)

    if quantity is not None and quantity == 0:
        return None
    if quantity is None and stored_value == 0:
        return None

    stale = False
    unit_price = None
    if quantity is None:
        # Cash-like: the stored balance is the value
        market_value = stored_value
    elif price is not None:
        unit_price = price.close
        market_value = quantity * unit_price
    elif average_cost is not None:
        logger.debug(f"No price for {symbol} on or before {positions[0].date}, using average cost")
        unit_price = average_cost
        market_value = quantity * average_cost
        stale = True
    else:
        logger.debug(f"No price or cost for {symbol}, using stored market value")
        market_value = stored_value
        stale = True

    cost_basis = None
    unrealized_pnl = None
    unrealized_pnl_percent = None
    if quantity is not None and average_cost is not None:
        cost_basis = quantity * average_cost
        unrealized_pnl = market_value - cost_basis
        if cost_basis != 0:
            unrealized_pnl_percent = unrealized_pnl / abs(cost_basis) * HUNDRED

    return Holding(
        security_id=security_id,
        symbol=symbol,
        security_name=name,
        asset_class=asset_class,
        currency=currency,
        quantity=quantity,
        price=unit_price,
        average_cost=average_cost,
        market_value=market_value,
        cost_basis=cost_basis,
        unrealized_pnl=unrealized_pnl,
        unrealized_pnl_percent=unrealized_pnl_percent,
        stale_price=stale,
        price_date=price.date if price is not None else None,
        position_date=positions[0].date
    )


def calculate_unrealized_pnl(holdings: List[Holding]) -> UnrealizedPnLSummary:
    """
    Summarize unrealized gains and losses

    Only holdings with a cost basis contribute to the P&L figures; the total
    percent is measured against that cost basis.
    """
    if not holdings:
        return UnrealizedPnLSummary()

    with_cost = [h for h in holdings if h.unrealized_pnl is not None]
    gains = [h.unrealized_pnl for h in with_cost if h.unrealized_pnl > 0]
    losses = [h.unrealized_pnl for h in with_cost if h.unrealized_pnl < 0]

    total_pnl = sum((h.unrealized_pnl for h in with_cost), ZERO)
    total_cost = sum((h.cost_basis for h in with_cost), ZERO)
    total_gains = sum(gains, ZERO)
    total_losses = sum(losses, ZERO)

    return UnrealizedPnLSummary(
        total_unrealized_pnl=total_pnl,
        total_unrealized_pnl_percent=percent_of(total_pnl, total_cost),
        total_market_value=sum((h.market_value for h in holdings), ZERO),
        total_cost_basis=total_cost,
        total_gains=total_gains,
        total_losses=total_losses,
        gains_count=len(gains),
        losses_count=len(losses),
        average_gain=safe_divide(total_gains, Decimal(len(gains))),
        average_loss=safe_divide(total_losses, Decimal(len(losses)))
    )


def calculate_concentration_risk(holdings: List[Holding]) -> ConcentrationMetrics:
    """
    Compute concentration metrics for the holdings

    Metrics:
        - top5_weight / top10_weight: Percent of value in the largest holdings
        - herfindahl_index: Sum of squared weights (fractions)
        - effective_number_of_holdings: 1 / herfindahl_index

    Note:
        HHI of 1.0 is a single holding; 1/N is N equally weighted holdings.
    """
    if not holdings:
        return ConcentrationMetrics()

    total_value = sum((h.market_value for h in holdings), ZERO)
    if total_value <= 0:
        logger.warning("Total holdings value is not positive, concentration undefined")
        return ConcentrationMetrics(num_holdings=len(holdings))

    ranked = sorted(holdings, key=lambda h: (-h.market_value, h.symbol))
    weights = [h.market_value / total_value for h in ranked]
    hhi = sum((w * w for w in weights), ZERO)

    return ConcentrationMetrics(
        top5_weight=sum(weights[:5], ZERO) * HUNDRED,
        top10_weight=sum(weights[:10], ZERO) * HUNDRED,
        herfindahl_index=hhi,
        effective_number_of_holdings=safe_divide(ONE, hhi),
        largest_holding_weight=weights[0] * HUNDRED,
        largest_holding_symbol=ranked[0].symbol,
        num_holdings=len(holdings)
    )


def calculate_performance_attribution(
    current: List[Holding],
    previous: List[Holding]
) -> List[AttributionEntry]:
    """
    Attribute return to individual holdings between two valuations

    contribution = previous weight x price return (both in percent), so the
    contributions of a buy-and-hold portfolio add up to its price return.

    Returns:
        Entries ordered by absolute contribution, largest first
    """
    def key(holding: Holding) -> str:
        return holding.security_id or holding.symbol

    current_by_key = {key(h): h for h in current}
    previous_by_key = {key(h): h for h in previous}

    entries = []
    for holding_key in set(current_by_key) | set(previous_by_key):
        now = current_by_key.get(holding_key)
        before = previous_by_key.get(holding_key)
        reference = now or before

        previous_weight = before.allocation_percent if before else ZERO
        current_weight = now.allocation_percent if now else ZERO
        previous_price = before.price if before else None
        current_price = now.price if now else None

        price_return = ZERO
        if previous_price and current_price is not None and previous_price > 0:
            price_return = (current_price - previous_price) / previous_price * HUNDRED

        entries.append(AttributionEntry(
            security_id=reference.security_id,
            symbol=reference.symbol,
            previous_weight=previous_weight,
            current_weight=current_weight,
            weight_change=current_weight - previous_weight,
            previous_price=previous_price,
            current_price=current_price,
            price_return=price_return,
            contribution=previous_weight * price_return / HUNDRED
        ))

    entries.sort(key=lambda e: (-abs(e.contribution), e.symbol))
    return entries
