"""
Unit tests for daily returns and time-weighted return calculation
"""

import pytest
import numpy as np
import sys
import os
from datetime import date
from decimal import Decimal

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from models.errors import InvalidInputError
from services.config import EngineSettings
from services.performance import (
    compute_daily_returns,
    compute_twr,
    compute_twr_with_fees,
    compute_rolling_returns,
    compute_performance_statistics,
    daily_returns_frame
)


def series(*values, start_day=2):
    return [
        {"date": date(2024, 1, start_day + i), "daily_return": value}
        for i, value in enumerate(values)
    ]


class TestDailyReturns:
    """Test flow-adjusted daily returns"""

    def test_mid_period_deposit(self, three_day_data):
        """The deposit is removed from the day's ending value"""
        returns = compute_daily_returns("ACC2", "2024-03-01", "2024-03-06", three_day_data)

        assert [r.date for r in returns] == [date(2024, 3, 4), date(2024, 3, 5), date(2024, 3, 6)]
        assert returns[0].daily_return == 0
        assert returns[1].net_flows == Decimal("10000")
        assert returns[1].adjusted_ending_value == Decimal("102000")
        assert returns[1].daily_return == Decimal("0.02")
        assert returns[2].daily_return == Decimal("0.0137")

    def test_cumulative_is_chain_linked(self, three_day_data):
        returns = compute_daily_returns("ACC2", "2024-03-01", "2024-03-06", three_day_data)

        assert abs(float(returns[-1].cumulative_return) - 0.033974) < 1e-9

    def test_beginning_value_is_previous_ending_value(self, three_day_data):
        returns = compute_daily_returns("ACC2", "2024-03-01", "2024-03-06", three_day_data)

        assert returns[0].beginning_value == Decimal("100000")
        for previous, current in zip(returns, returns[1:]):
            assert current.beginning_value == previous.ending_value

    def test_cash_to_equity_scenario(self, cash_to_equity_data):
        returns = compute_daily_returns("ACC1", "2024-01-01", "2024-01-31", cash_to_equity_data)

        assert len(returns) == 1
        assert returns[0].net_flows == 0
        assert returns[0].daily_return == Decimal("0.01")

    def test_zero_beginning_value_gives_zero_return(self):
        """An account funded during the period starts from zero"""
        data = {
            "positions": [
                {"account_id": "ACC1", "date": "2024-01-02", "market_value": 1000},
                {"account_id": "ACC1", "date": "2024-01-03", "market_value": 1010},
            ],
            "transactions": [
                {"account_id": "ACC1", "date": "2024-01-02", "transaction_type": "DEPOSIT", "amount": 1000},
            ],
        }

        returns = compute_daily_returns("ACC1", "2024-01-01", "2024-01-03", data)

        assert returns[0].beginning_value == 0
        assert returns[0].daily_return == 0
        assert returns[1].daily_return == Decimal("0.01")
        assert returns[1].cumulative_return == Decimal("0.01")

    def test_flow_on_day_without_snapshot_rolls_forward(self):
        data = {
            "positions": [
                {"account_id": "ACC1", "date": "2024-01-01", "market_value": 1000},
                {"account_id": "ACC1", "date": "2024-01-05", "market_value": 1600},
            ],
            "transactions": [
                {"account_id": "ACC1", "date": "2024-01-03", "transaction_type": "DEPOSIT", "amount": 500},
            ],
        }

        returns = compute_daily_returns("ACC1", "2024-01-01", "2024-01-05", data)

        assert returns[0].net_flows == Decimal("500")
        assert returns[0].daily_return == Decimal("0.1")

    def test_no_snapshots_in_period(self, three_day_data):
        assert compute_daily_returns("ACC2", "2024-03-06", "2024-03-10", three_day_data) == []

    def test_start_after_end_rejected(self, three_day_data):
        with pytest.raises(InvalidInputError):
            compute_daily_returns("ACC2", "2024-03-06", "2024-03-01", three_day_data)


class TestTWR:
    """Test chain-linked TWR"""

    def test_compounding_not_summation(self, settings):
        """0%, +2%, +1.37% compounds to 3.3974%, not the 3.37% sum"""
        result = compute_twr(series("0", "0.02", "0.0137"), settings)

        assert result.periods == 3
        assert result.total_return == Decimal("0.033974")
        assert abs(float(result.total_return_percent) - 3.3974) < 0.0001
        assert abs(float(result.total_return_percent) - 3.37) > 0.02
        assert result.compounding_factor == Decimal("1.033974")

    def test_from_daily_returns(self, three_day_data, settings):
        returns = compute_daily_returns("ACC2", "2024-03-01", "2024-03-06", three_day_data)
        result = compute_twr(returns, settings)

        assert abs(float(result.total_return_percent) - 3.3974) < 0.0001
        assert result.start_date == date(2024, 3, 4)
        assert result.end_date == date(2024, 3, 6)

    def test_annualization(self, settings):
        result = compute_twr(series("0.01", "0.01"), settings)

        expected = 1.0201 ** (252 / 2) - 1
        assert result.periods_per_year == 252
        assert abs(float(result.annualized_twr) - expected) < 1e-9
        assert abs(float(result.annualized_twr_percent) - expected * 100) < 1e-7

    def test_calendar_basis(self):
        settings = EngineSettings(annualization_basis="calendar")
        result = compute_twr(series("0.01", "0.01"), settings)

        assert result.periods_per_year == 365
        assert abs(float(result.annualized_twr) - (1.0201 ** (365 / 2) - 1)) < 1e-6

    def test_total_loss_annualizes_to_minus_100(self, settings):
        result = compute_twr(series("0.5", "-1"), settings)

        assert result.total_return == Decimal("-1")
        assert result.annualized_twr == Decimal("-1")

    def test_volatility_and_sharpe(self, settings):
        values = [0.0, 0.02, 0.0137]
        result = compute_twr(series("0", "0.02", "0.0137"), settings)

        expected_vol = np.std(values, ddof=1) * np.sqrt(252)
        assert abs(result.volatility - expected_vol) < 1e-9
        assert abs(result.sharpe_ratio - float(result.annualized_twr) / expected_vol) < 1e-6

    def test_sharpe_uses_risk_free_rate(self):
        settings = EngineSettings(risk_free_rate=0.05)
        result = compute_twr(series("0.01", "-0.005", "0.02"), settings)

        assert abs(result.sharpe_ratio - (float(result.annualized_twr) - 0.05) / result.volatility) < 1e-9

    def test_constant_returns_have_zero_sharpe(self, settings):
        result = compute_twr(series("0.25", "0.25", "0.25"), settings)

        assert result.volatility == 0
        assert result.sharpe_ratio == 0

    def test_constant_inexact_float_returns_have_zero_sharpe(self, settings):
        """0.1 has no exact binary form; a float std leaves residue near 1e-16"""
        result = compute_twr(series("0.1", "0.1", "0.1"), settings)

        assert result.volatility == 0
        assert result.sharpe_ratio == 0

    def test_single_period_returns_zeros(self, settings):
        result = compute_twr(series("0.05"), settings)

        assert result.periods == 1
        assert result.total_return == 0
        assert result.annualized_twr == 0
        assert result.volatility == 0
        assert result.start_date == date(2024, 1, 2)

    def test_empty_series(self, settings):
        result = compute_twr([], settings)

        assert result.periods == 0
        assert result.total_return == 0
        assert result.start_date is None

    def test_invalid_record_rejected(self, settings):
        with pytest.raises(InvalidInputError) as exc_info:
            compute_twr([{"date": "2024-01-02"}], settings)
        assert exc_info.value.field == "daily_returns[0].daily_return"


class TestFeesAndRolling:
    """Test net-of-fee and rolling returns"""

    def test_net_of_fee(self, settings):
        result = compute_twr_with_fees(series("0.001", "0.001"), Decimal("0.0365"), settings)

        assert result.daily_fee_rate == Decimal("0.0001")
        assert all(r.daily_return == Decimal("0.0009") for r in result.net_daily_returns)
        assert result.net.total_return == Decimal("1.0009") ** 2 - 1
        assert result.gross.total_return == Decimal("1.001") ** 2 - 1
        assert result.total_return_difference > 0
        assert result.annualized_return_difference > 0

    def test_zero_fee_matches_gross(self, settings):
        result = compute_twr_with_fees(series("0.01", "0.02"), 0, settings)

        assert result.net.total_return == result.gross.total_return

    def test_negative_fee_rejected(self, settings):
        with pytest.raises(InvalidInputError):
            compute_twr_with_fees(series("0.01", "0.02"), Decimal("-0.01"), settings)

    def test_rolling_windows(self, settings):
        returns = series("0.01", "0.02", "-0.01", "0.03", "0")

        rolling = compute_rolling_returns(returns, window=3, settings=settings)

        assert len(rolling) == 3
        assert rolling[0].start_date == date(2024, 1, 2)
        assert rolling[0].end_date == date(2024, 1, 4)
        assert rolling[0].period_days == 3
        expected = Decimal("1.01") * Decimal("1.02") * Decimal("0.99") - 1
        assert rolling[0].total_return == expected

    def test_rolling_series_shorter_than_window(self, settings):
        assert compute_rolling_returns(series("0.01"), window=30, settings=settings) == []

    def test_rolling_window_must_be_positive(self, settings):
        with pytest.raises(InvalidInputError):
            compute_rolling_returns(series("0.01"), window=0, settings=settings)


class TestStatistics:
    """Test descriptive statistics and the DataFrame view"""

    def test_frame(self, three_day_data):
        returns = compute_daily_returns("ACC2", "2024-03-01", "2024-03-06", three_day_data)

        frame = daily_returns_frame(returns)

        assert frame.index.name == "date"
        assert len(frame) == 3
        assert abs(frame["daily_return"].iloc[1] - 0.02) < 1e-12
        assert frame["net_flows"].sum() == 10000.0

    def test_empty_frame_keeps_columns(self):
        frame = daily_returns_frame([])

        assert frame.empty
        assert "daily_return" in frame.columns

    def test_statistics(self, settings):
        stats = compute_performance_statistics(series("0.01", "-0.02", "0.03"), settings)

        assert stats.count == 3
        assert abs(stats.mean - 0.02 / 3) < 1e-12
        assert abs(stats.standard_deviation - np.std([0.01, -0.02, 0.03], ddof=1)) < 1e-12
        assert stats.best_day == 0.03
        assert stats.worst_day == -0.02
        assert stats.positive_days == 2
        assert stats.negative_days == 1
        assert abs(stats.drawdown.max_drawdown - (-0.02)) < 1e-9
        assert stats.drawdown.max_drawdown_end == date(2024, 1, 3)

    def test_statistics_constant_returns(self, settings):
        stats = compute_performance_statistics(series("0.1", "0.1", "0.1"), settings)

        assert stats.standard_deviation == 0
        assert stats.volatility == 0
        assert stats.sharpe_ratio == 0
        assert abs(stats.mean - 0.1) < 1e-12

    def test_statistics_empty(self, settings):
        stats = compute_performance_statistics([], settings)

        assert stats.count == 0
        assert stats.volatility == 0
