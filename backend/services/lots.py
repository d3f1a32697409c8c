"""
Tax lot tracking, realized and unrealized P&L, wash sales

Replays posted BUY/SELL history in date order. Buys open lots; sells relieve
lots in the order chosen by the lot method.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union
import logging

from models.errors import InvalidInputError
from models.portfolio import Transaction, TransactionType, coerce_date, coerce_records
from models.analytics_models import (
    LotMethod,
    LotUnrealizedPnL,
    RealizedGain,
    RealizedPnLResult,
    RealizedPnLSummary,
    TaxLot,
    TaxReportSummary,
    TaxTermSummary,
    WashSale,
    WashSalePurchase,
    WashSaleResult
)
from services.cash_flows import posted_only
from services.numeric import ZERO, percent_of, safe_divide, to_decimal

logger = logging.getLogger(__name__)

LONG_TERM_DAYS = 365
WASH_SALE_DAYS = 30

_LOT_ORDER = {
    LotMethod.FIFO: lambda lot: (lot.purchase_date, lot.lot_id),
    LotMethod.LIFO: lambda lot: (-lot.purchase_date.toordinal(), lot.lot_id),
    LotMethod.HIGH_COST: lambda lot: (-lot.purchase_price, lot.purchase_date),
    LotMethod.LOW_COST: lambda lot: (lot.purchase_price, lot.purchase_date),
}


def _resolve_method(method: Union[LotMethod, str]) -> LotMethod:
    try:
        return LotMethod(method.upper() if isinstance(method, str) else method)
    except ValueError as e:
        raise InvalidInputError(f"Unknown lot method: {method!r}", field="method") from e


def _trade_price(trade: Transaction) -> Decimal:
    """Execution price, falling back to amount / quantity"""
    if trade.price is not None:
        return trade.price
    return safe_divide(abs(trade.amount), abs(trade.quantity or ZERO))


def _replay(
    transactions: Sequence[Union[Transaction, dict]],
    method: Union[LotMethod, str]
) -> Tuple[Dict[str, List[TaxLot]], List[RealizedGain], Decimal]:
    method = _resolve_method(method)
    records = coerce_records(transactions, Transaction, "transactions")
    trades = [
        t for t in posted_only(records)
        if t.security_id is not None
        and t.transaction_type in (TransactionType.BUY, TransactionType.SELL)
    ]
    # Same-day buys are available to same-day sells
    trades.sort(key=lambda t: (t.date, t.transaction_type != TransactionType.BUY))

    lots: Dict[str, List[TaxLot]] = defaultdict(list)
    realized = []
    unmatched = ZERO

    for trade in trades:
        quantity = abs(trade.quantity or ZERO)
        price = _trade_price(trade)

        if trade.transaction_type == TransactionType.BUY:
            security_lots = lots[trade.security_id]
            security_lots.append(TaxLot(
                lot_id=f"{trade.security_id}-{trade.date.isoformat()}-{len(security_lots) + 1}",
                security_id=trade.security_id,
                purchase_date=trade.date,
                original_quantity=quantity,
                remaining_quantity=quantity,
                purchase_price=price
            ))
            continue

        remaining = quantity
        for lot in sorted(lots[trade.security_id], key=_LOT_ORDER[method]):
            if remaining <= 0:
                break
            if lot.remaining_quantity <= 0:
                continue
            matched = min(remaining, lot.remaining_quantity)
            lot.remaining_quantity -= matched
            remaining -= matched

            holding_days = (trade.date - lot.purchase_date).days
            cost = matched * lot.purchase_price
            proceeds = matched * price
            realized.append(RealizedGain(
                security_id=trade.security_id,
                lot_id=lot.lot_id,
                purchase_date=lot.purchase_date,
                sale_date=trade.date,
                quantity=matched,
                purchase_price=lot.purchase_price,
                sale_price=price,
                cost=cost,
                proceeds=proceeds,
                gain_loss=proceeds - cost,
                holding_period_days=holding_days,
                is_long_term=holding_days >= LONG_TERM_DAYS
            ))

        if remaining > 0:
            logger.warning(
                f"Sale of {quantity} {trade.security_id} on {trade.date} exceeds open lots by {remaining}"
            )
            unmatched += remaining

    return lots, realized, unmatched


def track_lots(
    transactions: Sequence[Union[Transaction, dict]],
    method: Union[LotMethod, str] = LotMethod.FIFO
) -> Dict[str, List[TaxLot]]:
    """
    Open tax lots per security after applying the trade history

    Returns:
        Mapping security_id -> lots with remaining quantity, in purchase order
    """
    lots, _, _ = _replay(transactions, method)
    return {
        security_id: [lot for lot in security_lots if lot.remaining_quantity > 0]
        for security_id, security_lots in lots.items()
        if any(lot.remaining_quantity > 0 for lot in security_lots)
    }


def calculate_realized_pnl(
    transactions: Sequence[Union[Transaction, dict]],
    method: Union[LotMethod, str] = LotMethod.FIFO
) -> RealizedPnLResult:
    """
    Realized gains and losses per relieved lot

    Lots held 365 days or more are long-term. The summary splits short and
    long-term results and reports the win rate (share of lots closed at a
    gain among those closed at a gain or loss).
    """
    _, realized, unmatched = _replay(transactions, method)

    gains = [r.gain_loss for r in realized if r.gain_loss > 0]
    losses = [r.gain_loss for r in realized if r.gain_loss < 0]
    decided = len(gains) + len(losses)

    summary = RealizedPnLSummary(
        total_gain_loss=sum((r.gain_loss for r in realized), ZERO),
        total_proceeds=sum((r.proceeds for r in realized), ZERO),
        total_cost=sum((r.cost for r in realized), ZERO),
        short_term_gain_loss=sum((r.gain_loss for r in realized if not r.is_long_term), ZERO),
        long_term_gain_loss=sum((r.gain_loss for r in realized if r.is_long_term), ZERO),
        gains_count=len(gains),
        losses_count=len(losses),
        win_rate=safe_divide(Decimal(len(gains)), Decimal(decided)),
        unmatched_quantity=unmatched
    )

    return RealizedPnLResult(
        method=_resolve_method(method).value,
        realized=realized,
        summary=summary
    )


def calculate_lot_unrealized_pnl(
    lots: Dict[str, List[TaxLot]],
    current_prices: Mapping[str, Union[Decimal, float, int]],
    as_of: Optional[Union[date, str]] = None
) -> List[LotUnrealizedPnL]:
    """
    Mark every open lot to its security's current price

    Args:
        lots: Open lots by security, as returned by track_lots
        current_prices: Current price by security_id
        as_of: Valuation date for holding periods (defaults to today)

    Returns:
        One entry per lot with remaining quantity, largest gain first.
        A security without a current price is marked at zero.
    """
    as_of = date.today() if as_of is None else coerce_date(as_of, "as_of")

    results = []
    for security_id, security_lots in lots.items():
        if security_id not in current_prices:
            logger.warning(f"No current price for {security_id}, open lots marked at zero")
        current_price = to_decimal(current_prices.get(security_id, ZERO))

        for lot in security_lots:
            if lot.remaining_quantity <= 0:
                continue
            book_value = lot.remaining_quantity * lot.purchase_price
            current_value = lot.remaining_quantity * current_price
            unrealized = current_value - book_value
            holding_days = (as_of - lot.purchase_date).days
            results.append(LotUnrealizedPnL(
                lot_id=lot.lot_id,
                security_id=security_id,
                purchase_date=lot.purchase_date,
                quantity=lot.remaining_quantity,
                purchase_price=lot.purchase_price,
                current_price=current_price,
                book_value=book_value,
                current_value=current_value,
                unrealized_pnl=unrealized,
                unrealized_pnl_percent=percent_of(unrealized, book_value),
                holding_period_days=holding_days,
                is_long_term=holding_days >= LONG_TERM_DAYS
            ))

    results.sort(key=lambda r: r.unrealized_pnl, reverse=True)
    return results


def calculate_wash_sales(
    transactions: Sequence[Union[Transaction, dict]],
    realized: Optional[RealizedPnLResult] = None,
    method: Union[LotMethod, str] = LotMethod.FIFO,
    window_days: int = WASH_SALE_DAYS
) -> WashSaleResult:
    """
    Disallow losses replaced by purchases of the same security

    A lot closed at a loss is a wash sale when posted BUYs of the same
    security fall within window_days before or after the sale date. The
    sale date itself and the purchase dates of lots closed by the same sale
    are excluded. Each replacement share offsets one lost share once,
    consumed in sale order, and the disallowed part of the loss is pro rata
    to the replaced quantity.

    Losses are negative throughout, so disallowed_loss is negative too.

    Args:
        transactions: Trade history
        realized: Result of calculate_realized_pnl on the same history;
            computed with method when omitted
        method: Lot relief method used when realized is omitted
        window_days: Days either side of the sale date
    """
    if window_days < 0:
        raise InvalidInputError("window_days must not be negative", field="window_days")
    if realized is None:
        realized = calculate_realized_pnl(transactions, method)

    records = coerce_records(transactions, Transaction, "transactions")
    purchases: Dict[str, List[Transaction]] = defaultdict(list)
    for t in posted_only(records):
        if t.transaction_type == TransactionType.BUY and t.security_id is not None:
            purchases[t.security_id].append(t)
    available: Dict[str, List[Decimal]] = {}
    for security_id, security_purchases in purchases.items():
        security_purchases.sort(key=lambda t: t.date)
        available[security_id] = [abs(t.quantity or ZERO) for t in security_purchases]

    closed_lot_dates: Dict[Tuple[str, date], Set[date]] = defaultdict(set)
    for r in realized.realized:
        closed_lot_dates[(r.security_id, r.sale_date)].add(r.purchase_date)

    losses = sorted(
        (r for r in realized.realized if r.gain_loss < 0),
        key=lambda r: (r.sale_date, r.lot_id)
    )
    window = timedelta(days=window_days)

    wash_sales = []
    for loss in losses:
        needed = loss.quantity
        excluded = closed_lot_dates[(loss.security_id, loss.sale_date)] | {loss.sale_date}
        matched_purchases = []
        for index, purchase in enumerate(purchases.get(loss.security_id, [])):
            if needed <= 0:
                break
            if purchase.date in excluded:
                continue
            if not loss.sale_date - window <= purchase.date <= loss.sale_date + window:
                continue
            matched = min(needed, available[loss.security_id][index])
            if matched <= 0:
                continue
            available[loss.security_id][index] -= matched
            needed -= matched
            matched_purchases.append(WashSalePurchase(
                date=purchase.date,
                quantity=matched,
                price=_trade_price(purchase)
            ))

        if not matched_purchases:
            continue
        wash_quantity = loss.quantity - needed
        disallowed = loss.gain_loss * safe_divide(wash_quantity, loss.quantity)
        wash_sales.append(WashSale(
            lot_id=loss.lot_id,
            security_id=loss.security_id,
            sale_date=loss.sale_date,
            original_loss=loss.gain_loss,
            wash_sale_quantity=wash_quantity,
            disallowed_loss=disallowed,
            allowed_loss=loss.gain_loss - disallowed,
            is_long_term=loss.is_long_term,
            purchases=matched_purchases
        ))

    total_disallowed = sum((w.disallowed_loss for w in wash_sales), ZERO)
    original_total = sum((r.gain_loss for r in losses), ZERO)
    if wash_sales:
        logger.info(f"{len(wash_sales)} wash sales disallow {total_disallowed} of {original_total} in losses")

    return WashSaleResult(
        wash_sales=wash_sales,
        total_disallowed_loss=total_disallowed,
        affected_transactions=len(wash_sales),
        original_total_loss=original_total,
        adjusted_total_loss=original_total - total_disallowed
    )


def _term_summary(gain_loss: Decimal) -> TaxTermSummary:
    return TaxTermSummary(
        gain_loss=gain_loss,
        gains=max(ZERO, gain_loss),
        losses=min(ZERO, gain_loss)
    )


def generate_tax_report_summary(
    realized: RealizedPnLResult,
    wash_sales: Optional[WashSaleResult] = None
) -> TaxReportSummary:
    """
    Short and long-term totals for tax reporting

    Disallowed wash-sale losses are removed from the term of the lot that
    was sold at a loss.
    """
    short_disallowed = ZERO
    long_disallowed = ZERO
    count = 0
    if wash_sales is not None:
        count = wash_sales.affected_transactions
        for wash in wash_sales.wash_sales:
            if wash.is_long_term:
                long_disallowed += wash.disallowed_loss
            else:
                short_disallowed += wash.disallowed_loss

    summary = realized.summary
    short_term = summary.short_term_gain_loss - short_disallowed
    long_term = summary.long_term_gain_loss - long_disallowed

    return TaxReportSummary(
        method=realized.method,
        short_term=_term_summary(short_term),
        long_term=_term_summary(long_term),
        total_gain_loss=short_term + long_term,
        total_proceeds=summary.total_proceeds,
        total_cost=summary.total_cost,
        disallowed_loss=short_disallowed + long_disallowed,
        wash_sale_count=count
    )
