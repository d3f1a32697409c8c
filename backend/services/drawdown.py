"""
Drawdown analysis of daily return series

Peak-to-trough declines of the compounded return series, measured from an
initial value of 1.0 so a loss on the first day is already a drawdown.
"""

import pandas as pd
import numpy as np
from typing import Any, Dict, Sequence, Union
from datetime import date
import logging

from models.analytics_models import DailyReturn, DrawdownSummary
from models.errors import NumericalInstabilityError

logger = logging.getLogger(__name__)

# Drawdowns shallower than this count as being at the peak
RECOVERY_TOLERANCE = 0.001


def compute_drawdown_series(returns: pd.Series) -> pd.Series:
    """
    Compute drawdown series from returns

    Args:
        returns: Series of periodic returns

    Returns:
        Series of drawdowns (zero or negative values)

    Formula:
        drawdown_t = (cum_return_t - running_max_t) / running_max_t
    """
    if len(returns) == 0:
        return pd.Series(dtype=float)

    cumulative = (1 + returns).cumprod()
    running_max = cumulative.cummax().clip(lower=1.0)
    return (cumulative - running_max) / running_max


def _to_date(value):
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def _duration(returns: pd.Series, start, end) -> int:
    if isinstance(returns.index, pd.DatetimeIndex):
        return (end - start).days
    return returns.index.get_loc(end) - returns.index.get_loc(start)


def compute_max_drawdown(returns: pd.Series) -> Dict[str, Any]:
    """
    Compute maximum drawdown with detailed metadata

    Args:
        returns: Series of returns with datetime index

    Returns:
        Dictionary with:
        - max_drawdown: Maximum drawdown (negative)
        - max_drawdown_start: Last peak before the trough
        - max_drawdown_end: Trough date
        - max_drawdown_duration_days: Peak to trough duration
        - recovery_date: First date back at the peak (None if not recovered)

    Example:
        >>> returns = pd.Series([0.10, 0.05, -0.20, 0.10])
        >>> compute_max_drawdown(returns)["max_drawdown"]
        -0.20
    """
    result = {
        "max_drawdown": 0.0,
        "max_drawdown_start": None,
        "max_drawdown_end": None,
        "max_drawdown_duration_days": None,
        "recovery_date": None
    }
    if len(returns) == 0:
        return result

    drawdown = compute_drawdown_series(returns)
    max_dd = float(drawdown.min())
    if max_dd >= 0:
        return result

    max_dd_end = drawdown.idxmin()

    # Last peak before the trough; the initial value counts as a peak
    to_trough = drawdown.loc[:max_dd_end]
    peaks = to_trough[to_trough >= -RECOVERY_TOLERANCE]
    max_dd_start = peaks.index[-1] if len(peaks) > 0 else returns.index[0]

    recovery_date = None
    after_trough = drawdown.loc[max_dd_end:]
    recovered = after_trough >= -RECOVERY_TOLERANCE
    if recovered.any():
        recovery_date = after_trough[recovered].index[0]

    result.update({
        "max_drawdown": max_dd,
        "max_drawdown_start": max_dd_start,
        "max_drawdown_end": max_dd_end,
        "max_drawdown_duration_days": _duration(returns, max_dd_start, max_dd_end),
        "recovery_date": recovery_date
    })
    return result


def compute_current_drawdown(returns: pd.Series) -> Dict[str, Any]:
    """
    Compute current drawdown from peak

    Returns:
        Dictionary with:
        - current_drawdown: Current drawdown (negative, or 0 at a peak)
        - current_drawdown_start: Last date at the peak
        - current_drawdown_duration_days: Duration in days
    """
    result = {
        "current_drawdown": 0.0,
        "current_drawdown_start": None,
        "current_drawdown_duration_days": None
    }
    if len(returns) == 0:
        return result

    drawdown = compute_drawdown_series(returns)
    current_dd = float(drawdown.iloc[-1])
    result["current_drawdown"] = current_dd

    if current_dd < -RECOVERY_TOLERANCE:
        at_peak = drawdown[drawdown >= -RECOVERY_TOLERANCE]
        start = at_peak.index[-1] if len(at_peak) > 0 else returns.index[0]
        result["current_drawdown_start"] = start
        result["current_drawdown_duration_days"] = _duration(returns, start, returns.index[-1])

    return result


def summarize_drawdowns(
    daily_returns: Union[pd.Series, Sequence[DailyReturn]]
) -> DrawdownSummary:
    """
    Maximum and current drawdown of a daily return series

    Args:
        daily_returns: Series indexed by date, or DailyReturn records
    """
    if isinstance(daily_returns, pd.Series):
        returns = daily_returns.astype(float)
    else:
        returns = pd.Series(
            [float(d.daily_return) for d in daily_returns],
            index=pd.DatetimeIndex([pd.Timestamp(d.date) for d in daily_returns]),
            dtype=float
        )

    if not np.isfinite(returns.to_numpy()).all():
        raise NumericalInstabilityError("daily_returns", returns[~np.isfinite(returns.to_numpy())].iloc[0])

    max_dd = compute_max_drawdown(returns)
    current_dd = compute_current_drawdown(returns)

    return DrawdownSummary(
        max_drawdown=max_dd["max_drawdown"],
        max_drawdown_start=_to_date(max_dd["max_drawdown_start"]),
        max_drawdown_end=_to_date(max_dd["max_drawdown_end"]),
        max_drawdown_duration_days=max_dd["max_drawdown_duration_days"],
        recovery_date=_to_date(max_dd["recovery_date"]),
        current_drawdown=current_dd["current_drawdown"],
        current_drawdown_start=_to_date(current_dd["current_drawdown_start"]),
        current_drawdown_duration_days=current_dd["current_drawdown_duration_days"]
    )
