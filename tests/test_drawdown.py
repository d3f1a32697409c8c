"""
Unit tests for drawdown analysis
"""

import pytest
import numpy as np
import pandas as pd
import sys
import os
from datetime import date

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from models.analytics_models import DailyReturn
from models.errors import NumericalInstabilityError
from services import drawdown


class TestDrawdownSeries:
    """Test drawdown series calculation"""

    def test_compute_drawdown_series_simple(self):
        """Test basic drawdown series"""
        # Returns: +10%, +5%, -20%, +10%
        returns = pd.Series([0.10, 0.05, -0.20, 0.10])

        dd = drawdown.compute_drawdown_series(returns)

        # Cumulative: 1.10, 1.155, 0.924, 1.0164
        # Running max: 1.10, 1.155, 1.155, 1.155
        # Drawdown: 0, 0, -0.20, -0.12
        assert len(dd) == 4
        assert abs(dd.iloc[0]) < 0.001
        assert abs(dd.iloc[1]) < 0.001
        assert abs(dd.iloc[2] - (-0.20)) < 0.001
        assert abs(dd.iloc[3] - (-0.12)) < 0.001

    def test_first_day_loss_is_a_drawdown(self):
        """Drawdown is measured from the initial value of 1.0"""
        returns = pd.Series([-0.05, 0.02])

        dd = drawdown.compute_drawdown_series(returns)

        assert abs(dd.iloc[0] - (-0.05)) < 0.001

    def test_no_drawdown(self):
        returns = pd.Series([0.01, 0.02, 0.03, 0.01])

        dd = drawdown.compute_drawdown_series(returns)

        assert all(dd >= -0.001)

    def test_empty(self):
        assert len(drawdown.compute_drawdown_series(pd.Series(dtype=float))) == 0


class TestMaxDrawdown:
    """Test maximum drawdown calculations"""

    def test_known_scenario(self):
        dates = pd.date_range('2024-01-01', periods=10, freq='D')
        # Pattern: up, up, crash, down, recover
        returns = pd.Series([0.05, 0.05, -0.20, -0.10, 0.05, 0.05, 0.10, 0.05, 0.05, 0.05], index=dates)

        result = drawdown.compute_max_drawdown(returns)

        # Peak 1.1025 on day 2, trough 0.7938 on day 4
        assert abs(result["max_drawdown"] - (-0.28)) < 0.001
        assert result["max_drawdown_start"] == dates[1]
        assert result["max_drawdown_end"] == dates[3]
        assert result["max_drawdown_duration_days"] == 2
        # Back above 1.1025 on the last day
        assert result["recovery_date"] == dates[9]

    def test_recovery(self):
        dates = pd.date_range('2024-01-01', periods=5, freq='D')
        returns = pd.Series([0.10, -0.10, 0.05, 0.10, 0.01], index=dates)

        result = drawdown.compute_max_drawdown(returns)

        # 1.10 -> 0.99 -> 1.0395 -> 1.14345 back above the peak
        assert abs(result["max_drawdown"] - (-0.10)) < 0.001
        assert result["recovery_date"] == dates[3]

    def test_all_positive(self):
        returns = pd.Series([0.01, 0.02, 0.01], index=pd.date_range('2024-01-01', periods=3, freq='D'))

        result = drawdown.compute_max_drawdown(returns)

        assert result["max_drawdown"] == 0.0
        assert result["max_drawdown_start"] is None

    def test_integer_index_duration_counts_periods(self):
        returns = pd.Series([0.10, 0.05, -0.20, 0.10])

        result = drawdown.compute_max_drawdown(returns)

        assert result["max_drawdown_duration_days"] == 1


class TestCurrentDrawdown:
    """Test current drawdown from peak"""

    def test_in_drawdown(self):
        dates = pd.date_range('2024-01-01', periods=4, freq='D')
        returns = pd.Series([0.10, -0.05, -0.05, 0.01], index=dates)

        result = drawdown.compute_current_drawdown(returns)

        assert result["current_drawdown"] < -0.08
        assert result["current_drawdown_start"] == dates[0]
        assert result["current_drawdown_duration_days"] == 3

    def test_at_peak(self):
        returns = pd.Series([0.01, 0.02], index=pd.date_range('2024-01-01', periods=2, freq='D'))

        result = drawdown.compute_current_drawdown(returns)

        assert abs(result["current_drawdown"]) < 0.001
        assert result["current_drawdown_start"] is None


class TestSummarizeDrawdowns:
    """Test the drawdown summary model"""

    def test_from_daily_returns(self):
        daily_returns = [
            DailyReturn(date=date(2024, 1, 2), daily_return="0.10"),
            DailyReturn(date=date(2024, 1, 3), daily_return="-0.20"),
            DailyReturn(date=date(2024, 1, 4), daily_return="0.05"),
        ]

        summary = drawdown.summarize_drawdowns(daily_returns)

        assert abs(summary.max_drawdown - (-0.20)) < 0.001
        assert summary.max_drawdown_start == date(2024, 1, 2)
        assert summary.max_drawdown_end == date(2024, 1, 3)
        assert summary.max_drawdown_duration_days == 1
        assert summary.current_drawdown < 0
        assert summary.current_drawdown_start == date(2024, 1, 2)

    def test_empty(self):
        summary = drawdown.summarize_drawdowns([])

        assert summary.max_drawdown == 0.0
        assert summary.current_drawdown == 0.0

    def test_non_finite_rejected(self):
        returns = pd.Series([0.01, np.nan, 0.02])

        with pytest.raises(NumericalInstabilityError):
            drawdown.summarize_drawdowns(returns)
