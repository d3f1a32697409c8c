"""
Time-weighted return calculation

Builds a flow-adjusted daily return series from position snapshots and
external cash flows, chain-links it into a period return, and derives
annualized return, volatility and Sharpe ratio.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from models.errors import InvalidInputError
from models.portfolio import AccountData, coerce_records
from models.analytics_models import (
    DailyReturn,
    FeeAdjustedTWR,
    PerformanceStatistics,
    RollingReturn,
    TWRResult
)
from services.aum import resolve_period
from services.cash_flows import (
    ensure_account,
    external_flows,
    normalized_amount,
    snapshot_totals,
    value_on_or_before
)
from services.config import EngineSettings, resolve_settings
from services.drawdown import summarize_drawdowns
from services.numeric import HUNDRED, ONE, ZERO, ensure_finite, to_decimal

logger = logging.getLogger(__name__)


def compute_daily_returns(
    account_id: str,
    start_date: Union[date, str],
    end_date: Union[date, str],
    data: Union[AccountData, dict]
) -> List[DailyReturn]:
    """
    Compute flow-adjusted daily returns for each snapshot day in the period

    Args:
        account_id: Account the records belong to
        start_date: Period start (exclusive); day 1 begins from its value
        end_date: Period end (inclusive)
        data: AccountData (or mapping) with positions and transactions

    Returns:
        One DailyReturn per snapshot day in (start_date, end_date]

    Formula:
        r_t = (EV_t - F_t - BV_t) / BV_t        (0 when BV_t <= 0)
        cumulative_t = (1 + cumulative_{t-1}) * (1 + r_t) - 1

    Note:
        Flows dated on a day without a snapshot roll into the next
        snapshot day, so every flow in the period is counted once.
    """
    data = AccountData.coerce(data)
    start, end = resolve_period(start_date, end_date)
    ensure_account(data.positions, account_id, "positions")
    ensure_account(data.transactions, account_id, "transactions")

    totals = snapshot_totals(data.positions)
    flows_by_day: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    for transaction in external_flows(data.transactions, start, end):
        flows_by_day[transaction.date] += normalized_amount(transaction)

    snapshot_days = sorted(d for d in totals if start < d <= end)
    if not snapshot_days:
        return []

    beginning_value = value_on_or_before(totals, start)
    cumulative = ZERO
    previous_day = start
    daily_returns = []

    for day in snapshot_days:
        ending_value = totals[day]
        net_flows = sum(
            (amount for flow_day, amount in flows_by_day.items() if previous_day < flow_day <= day),
            ZERO
        )
        adjusted_ending_value = ending_value - net_flows

        if beginning_value > 0:
            daily_return = (adjusted_ending_value - beginning_value) / beginning_value
        else:
            logger.debug(f"Zero beginning value for {account_id} on {day}, return set to 0")
            daily_return = ZERO

        cumulative = (ONE + cumulative) * (ONE + daily_return) - ONE
        ensure_finite("daily_return", daily_return)

        daily_returns.append(DailyReturn(
            date=day,
            beginning_value=beginning_value,
            ending_value=ending_value,
            net_flows=net_flows,
            adjusted_ending_value=adjusted_ending_value,
            daily_return=daily_return,
            cumulative_return=cumulative
        ))

        beginning_value = ending_value
        previous_day = day

    return daily_returns


def _coerce_returns(daily_returns: Optional[Sequence]) -> List[DailyReturn]:
    return coerce_records(daily_returns, DailyReturn, "daily_returns")


def _annualize(growth: Decimal, periods: int, periods_per_year: int) -> Decimal:
    """(growth)^(periods_per_year / periods) - 1, a total loss annualizing to -100%"""
    if growth <= 0:
        return -ONE
    return growth ** (Decimal(periods_per_year) / Decimal(periods)) - ONE


def _sample_std(values: Sequence[Decimal]) -> float:
    """Sample standard deviation (ddof=1), exactly zero for a constant series"""
    if len(values) < 2:
        return 0.0
    mean = sum(values, ZERO) / Decimal(len(values))
    variance = sum(((v - mean) ** 2 for v in values), ZERO) / Decimal(len(values) - 1)
    return float(variance.sqrt())


def compute_twr(
    daily_returns: Sequence[Union[DailyReturn, dict]],
    settings: Optional[EngineSettings] = None
) -> TWRResult:
    """
    Chain-link daily returns into a time-weighted return

    Args:
        daily_returns: DailyReturn records (or mappings) in date order
        settings: Engine settings (annualization basis, risk-free rate)

    Returns:
        TWRResult with total, annualized, volatility and Sharpe ratio

    Example:
        >>> compute_twr([{"date": "2024-01-02", "daily_return": 0},
        ...              {"date": "2024-01-03", "daily_return": 0.02},
        ...              {"date": "2024-01-04", "daily_return": 0.0137}])
        total_return_percent == 3.3974 (a simple sum would give 3.37)
    """
    settings = resolve_settings(settings)
    returns = _coerce_returns(daily_returns)
    periods_per_year = settings.periods_per_year
    periods = len(returns)

    result = TWRResult(
        periods=periods,
        periods_per_year=periods_per_year,
        start_date=returns[0].date if returns else None,
        end_date=returns[-1].date if returns else None
    )
    if periods <= 1:
        return result

    growth = ONE
    for daily in returns:
        growth *= ONE + daily.daily_return
    total_return = ensure_finite("total_return", growth - ONE)
    annualized = ensure_finite("annualized_twr", _annualize(growth, periods, periods_per_year))

    std = _sample_std([d.daily_return for d in returns])
    volatility = float(std * np.sqrt(periods_per_year))
    ensure_finite("volatility", volatility)

    sharpe_ratio = 0.0
    if volatility > 0:
        sharpe_ratio = ensure_finite(
            "sharpe_ratio", (float(annualized) - settings.risk_free_rate) / volatility
        )

    result.total_return = total_return
    result.total_return_percent = total_return * HUNDRED
    result.annualized_twr = annualized
    result.annualized_twr_percent = annualized * HUNDRED
    result.volatility = volatility
    result.sharpe_ratio = sharpe_ratio
    result.compounding_factor = growth
    return result


def compute_twr_with_fees(
    daily_returns: Sequence[Union[DailyReturn, dict]],
    annual_fee_rate: Union[Decimal, float] = Decimal("0.01"),
    settings: Optional[EngineSettings] = None
) -> FeeAdjustedTWR:
    """
    Gross and net-of-fee time-weighted returns

    The annual fee accrues daily on a calendar basis and is deducted from
    each day's gross return.
    """
    settings = resolve_settings(settings)
    returns = _coerce_returns(daily_returns)
    annual_fee_rate = to_decimal(annual_fee_rate)
    if annual_fee_rate < 0:
        raise InvalidInputError("annual_fee_rate must not be negative", field="annual_fee_rate")

    daily_fee_rate = annual_fee_rate / Decimal(settings.calendar_days_per_year)

    net_returns = []
    cumulative = ZERO
    for daily in returns:
        net_return = daily.daily_return - daily_fee_rate
        cumulative = (ONE + cumulative) * (ONE + net_return) - ONE
        net_returns.append(daily.model_copy(update={
            "daily_return": net_return,
            "cumulative_return": cumulative
        }))

    gross = compute_twr(returns, settings)
    net = compute_twr(net_returns, settings)

    return FeeAdjustedTWR(
        gross=gross,
        net=net,
        annual_fee_rate=annual_fee_rate,
        daily_fee_rate=daily_fee_rate,
        total_return_difference=gross.total_return - net.total_return,
        annualized_return_difference=gross.annualized_twr - net.annualized_twr,
        net_daily_returns=net_returns
    )


def compute_rolling_returns(
    daily_returns: Sequence[Union[DailyReturn, dict]],
    window: int = 30,
    settings: Optional[EngineSettings] = None
) -> List[RollingReturn]:
    """
    Chain-linked return over every trailing window of `window` periods

    Returns:
        One entry per window end; empty when the series is shorter than the
        window
    """
    if window < 1:
        raise InvalidInputError("window must be at least 1", field="window")

    settings = resolve_settings(settings)
    returns = _coerce_returns(daily_returns)

    rolling = []
    for end in range(window - 1, len(returns)):
        period = returns[end - window + 1:end + 1]
        twr = compute_twr(period, settings)
        rolling.append(RollingReturn(
            start_date=period[0].date,
            end_date=period[-1].date,
            period_days=window,
            total_return=twr.total_return,
            annualized_return=twr.annualized_twr
        ))
    return rolling


def daily_returns_frame(daily_returns: Sequence[Union[DailyReturn, dict]]) -> pd.DataFrame:
    """
    Daily returns as a DataFrame indexed by date

    Decimal fields are converted to float for presentation and analysis.
    """
    columns = [
        "beginning_value", "ending_value", "net_flows",
        "adjusted_ending_value", "daily_return", "cumulative_return"
    ]
    returns = _coerce_returns(daily_returns)
    if not returns:
        return pd.DataFrame(columns=columns, index=pd.DatetimeIndex([], name="date"), dtype=float)

    frame = pd.DataFrame([
        {"date": pd.Timestamp(d.date), **{c: float(getattr(d, c)) for c in columns}}
        for d in returns
    ])
    return frame.set_index("date")


def compute_performance_statistics(
    daily_returns: Sequence[Union[DailyReturn, dict]],
    settings: Optional[EngineSettings] = None
) -> PerformanceStatistics:
    """
    Descriptive statistics of a daily return series

    Metrics:
        - mean / mean_annualized: Arithmetic mean daily return, x periods per year
        - standard_deviation: Sample standard deviation (ddof=1)
        - volatility: standard_deviation x sqrt(periods per year)
        - sharpe_ratio: (mean_annualized - risk_free_rate) / volatility
        - drawdown: Maximum and current drawdown of the compounded series
    """
    settings = resolve_settings(settings)
    records = _coerce_returns(daily_returns)
    frame = daily_returns_frame(records)
    if frame.empty:
        return PerformanceStatistics()

    returns = frame["daily_return"]
    periods_per_year = settings.periods_per_year

    mean = float(returns.mean())
    std = _sample_std([d.daily_return for d in records])
    volatility = std * np.sqrt(periods_per_year)
    mean_annualized = mean * periods_per_year

    sharpe_ratio = 0.0
    if volatility > 0:
        sharpe_ratio = (mean_annualized - settings.risk_free_rate) / volatility

    for name, value in (("mean", mean), ("volatility", volatility), ("sharpe_ratio", sharpe_ratio)):
        ensure_finite(name, value)

    return PerformanceStatistics(
        count=len(returns),
        mean=mean,
        mean_annualized=mean_annualized,
        standard_deviation=std,
        volatility=float(volatility),
        sharpe_ratio=float(sharpe_ratio),
        best_day=float(returns.max()),
        worst_day=float(returns.min()),
        positive_days=int((returns > 0).sum()),
        negative_days=int((returns < 0).sum()),
        drawdown=summarize_drawdowns(returns)
    )
