"""Pytest configuration and fixtures."""

import os
import sys

import pytest

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from services.config import EngineSettings


@pytest.fixture
def settings():
    """Default engine settings, independent of the process environment."""
    return EngineSettings()


@pytest.fixture
def cash_to_equity_data():
    """Account that moves $15,000 of a $100,000 cash balance into AAPL.

    2024-01-01: $100,000 cash (funded by a deposit that day)
    2024-01-15: BUY 100 AAPL @ $150
    2024-01-31: 100 AAPL @ $160 ($16,000) + $85,000 cash
    """
    return {
        "positions": [
            {"account_id": "ACC1", "date": "2024-01-01", "security_id": None, "market_value": 100000},
            {"account_id": "ACC1", "date": "2024-01-31", "security_id": "SEC_AAPL",
             "quantity": 100, "average_cost": 150, "market_value": 16000},
            {"account_id": "ACC1", "date": "2024-01-31", "security_id": None, "market_value": 85000},
        ],
        "transactions": [
            {"account_id": "ACC1", "date": "2024-01-01", "transaction_type": "DEPOSIT",
             "amount": 100000},
            {"account_id": "ACC1", "date": "2024-01-15", "transaction_type": "BUY",
             "security_id": "SEC_AAPL", "quantity": 100, "price": 150, "amount": -15000},
        ],
        "prices": [
            {"security_id": "SEC_AAPL", "date": "2024-01-15", "close": 150},
            {"security_id": "SEC_AAPL", "date": "2024-01-31", "close": 160},
        ],
        "securities": [
            {"id": "SEC_AAPL", "symbol": "AAPL", "name": "Apple Inc.", "asset_class": "EQUITY"},
        ],
    }


@pytest.fixture
def three_day_data():
    """Account with a mid-period deposit and daily snapshots.

    Day returns: 0%, +2%, +1.37% once the deposit is removed.
    """
    return {
        "positions": [
            {"account_id": "ACC2", "date": "2024-03-01", "market_value": 100000},
            {"account_id": "ACC2", "date": "2024-03-04", "market_value": 100000},
            {"account_id": "ACC2", "date": "2024-03-05", "market_value": 112000},
            {"account_id": "ACC2", "date": "2024-03-06", "market_value": "113534.40"},
        ],
        "transactions": [
            {"account_id": "ACC2", "date": "2024-03-05", "transaction_type": "DEPOSIT",
             "amount": 10000},
        ],
    }
