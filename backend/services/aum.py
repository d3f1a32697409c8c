"""
AUM reconciliation

Splits the change in account value over a period into external flows and
market gain/loss, and verifies the accounting identity

    eop == bop + net_flows + market_pnl

by summing the components through independent paths.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union
import logging

from models.errors import InvalidInputError
from models.portfolio import AccountData, Position, Transaction, coerce_date
from models.analytics_models import AggregateAUMResult, AUMResult, DailyAUM
from services.cash_flows import (
    ensure_account,
    external_flows,
    latest_snapshot_date,
    normalized_amount,
    snapshot_totals,
    split_by_account,
    value_on_or_before
)
from services.config import EngineSettings, resolve_settings
from services.numeric import ZERO, percent_of

logger = logging.getLogger(__name__)


def resolve_period(start_date, end_date) -> Tuple[date, date]:
    """Normalize a reporting period, rejecting start after end"""
    start = coerce_date(start_date, "start_date")
    end = coerce_date(end_date, "end_date")
    if start > end:
        raise InvalidInputError(
            f"start_date {start} is after end_date {end}", field="start_date"
        )
    return start, end


def split_flows(transactions: List[Transaction]) -> Tuple[Decimal, Decimal]:
    """
    Partition flows by normalized sign

    Returns:
        (contributions, withdrawals), both non-negative
    """
    contributions = ZERO
    withdrawals = ZERO
    for transaction in transactions:
        amount = normalized_amount(transaction)
        if amount >= 0:
            contributions += amount
        else:
            withdrawals -= amount
    return contributions, withdrawals


def _snapshot_value(positions: List[Position], snapshot_date: Optional[date]) -> Decimal:
    """Re-sum one snapshot directly from its records in a fixed order"""
    if snapshot_date is None:
        return ZERO
    values = sorted(p.market_value for p in positions if p.date == snapshot_date)
    return sum(values, ZERO)


def compute_aum(
    account_id: str,
    start_date: Union[date, str],
    end_date: Union[date, str],
    data: Union[AccountData, dict],
    settings: Optional[EngineSettings] = None
) -> AUMResult:
    """
    Reconcile account value over a period

    Args:
        account_id: Account the records belong to
        start_date: Period start; bop is the latest snapshot at or before it
        end_date: Period end; eop is the latest snapshot at or before it
        data: AccountData (or mapping) with positions and transactions
        settings: Engine settings (identity tolerance)

    Returns:
        AUMResult with bop, eop, flows, market P&L and the identity check

    Note:
        Flows are POSTED external flows dated in (start_date, end_date].
        A flow dated on start_date is already part of the bop snapshot.

    Example:
        bop 100,000, deposit 10,000, eop 112,000
        -> net_flows 10,000, market_pnl 2,000, identity_check True
    """
    settings = resolve_settings(settings)
    data = AccountData.coerce(data)
    start, end = resolve_period(start_date, end_date)
    ensure_account(data.positions, account_id, "positions")
    ensure_account(data.transactions, account_id, "transactions")

    totals = snapshot_totals(data.positions)
    bop = value_on_or_before(totals, start)
    eop = value_on_or_before(totals, end)

    flows = external_flows(data.transactions, start, end)
    contributions, withdrawals = split_flows(flows)
    net_flows = contributions - withdrawals
    market_pnl = eop - bop - net_flows

    # Second path: eop from the raw snapshot records, flows in date order
    eop_check = _snapshot_value(data.positions, latest_snapshot_date(totals, end))
    flows_check = sum(
        (normalized_amount(t) for t in sorted(flows, key=lambda t: (t.date, t.amount))),
        ZERO
    )
    identity_difference = eop_check - (bop + flows_check + market_pnl)
    identity_check = abs(identity_difference) <= settings.aum_tolerance

    if not identity_check:
        logger.warning(
            f"AUM identity out of balance for {account_id} {start}..{end}: {identity_difference}"
        )

    return AUMResult(
        account_id=account_id,
        start_date=start,
        end_date=end,
        bop=bop,
        eop=eop,
        contributions=contributions,
        withdrawals=withdrawals,
        net_flows=net_flows,
        market_pnl=market_pnl,
        identity_check=identity_check,
        identity_difference=identity_difference,
        total_return_percent=percent_of(market_pnl, bop),
        net_return_percent=percent_of(eop - bop, bop)
    )


def compute_multiple_aum(
    start_date: Union[date, str],
    end_date: Union[date, str],
    data: Union[AccountData, dict],
    settings: Optional[EngineSettings] = None
) -> Dict[str, AUMResult]:
    """AUM for every account present in a multi-account bundle"""
    data = AccountData.coerce(data)
    return {
        account_id: compute_aum(account_id, start_date, end_date, account_data, settings)
        for account_id, account_data in split_by_account(data).items()
    }


def compute_aggregate_aum(
    start_date: Union[date, str],
    end_date: Union[date, str],
    data: Union[AccountData, dict],
    settings: Optional[EngineSettings] = None
) -> AggregateAUMResult:
    """
    Household-level AUM across accounts

    Sums each component over the accounts and re-checks the identity on the
    totals. The aggregate passes only when every account passes as well.
    """
    settings = resolve_settings(settings)
    start, end = resolve_period(start_date, end_date)
    results = compute_multiple_aum(start, end, data, settings)
    accounts = list(results.values())

    bop = sum((r.bop for r in accounts), ZERO)
    eop = sum((r.eop for r in accounts), ZERO)
    contributions = sum((r.contributions for r in accounts), ZERO)
    withdrawals = sum((r.withdrawals for r in accounts), ZERO)
    net_flows = sum((r.net_flows for r in accounts), ZERO)
    market_pnl = sum((r.market_pnl for r in accounts), ZERO)

    identity_difference = eop - (bop + (contributions - withdrawals) + market_pnl)
    identity_check = (
        abs(identity_difference) <= settings.aum_tolerance
        and all(r.identity_check for r in accounts)
    )

    return AggregateAUMResult(
        account_ids=list(results),
        start_date=start,
        end_date=end,
        bop=bop,
        eop=eop,
        contributions=contributions,
        withdrawals=withdrawals,
        net_flows=net_flows,
        market_pnl=market_pnl,
        identity_check=identity_check,
        identity_difference=identity_difference,
        total_return_percent=percent_of(market_pnl, bop),
        net_return_percent=percent_of(eop - bop, bop),
        accounts=accounts
    )


def compute_daily_aum(
    account_id: str,
    start_date: Union[date, str],
    end_date: Union[date, str],
    data: Union[AccountData, dict]
) -> List[DailyAUM]:
    """
    Account value on the start date and on every snapshot day after it

    Returns:
        Ascending list; empty when the account has no snapshot on or before
        end_date
    """
    data = AccountData.coerce(data)
    start, end = resolve_period(start_date, end_date)
    ensure_account(data.positions, account_id, "positions")

    totals = snapshot_totals(data.positions)
    if latest_snapshot_date(totals, end) is None:
        return []

    series = [DailyAUM(date=start, aum=value_on_or_before(totals, start))]
    for snapshot_date in sorted(d for d in totals if start < d <= end):
        series.append(DailyAUM(date=snapshot_date, aum=totals[snapshot_date]))
    return series
