"""
Unit tests for input records, validation and engine settings
"""

import pytest
import sys
import os
from datetime import date, datetime
from decimal import Decimal

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from models.errors import CalculationError, InvalidInputError
from models.portfolio import (
    AccountData,
    AssetClass,
    EntryStatus,
    Position,
    Security,
    Transaction,
    TransactionType,
    coerce_date,
    coerce_records
)
from services.config import EngineSettings


class TestRecordValidation:
    """Test validation of incoming records"""

    def test_transaction_type_is_case_insensitive(self):
        """Lower-case types from data entry are accepted"""
        txn = Transaction.model_validate({
            "account_id": "ACC1", "date": "2024-01-02",
            "transaction_type": "buy", "amount": "-100.00", "entry_status": "posted"
        })

        assert txn.transaction_type == TransactionType.BUY
        assert txn.entry_status == EntryStatus.POSTED
        assert txn.amount == Decimal("-100.00")

    def test_entry_status_defaults_to_posted(self):
        txn = Transaction(account_id="ACC1", date=date(2024, 1, 2),
                          transaction_type=TransactionType.DEPOSIT, amount=Decimal("10"))
        assert txn.entry_status == EntryStatus.POSTED

    def test_cash_position_needs_no_security(self):
        position = Position(account_id="ACC1", date=date(2024, 1, 2), market_value=Decimal("500"))

        assert position.security_id is None
        assert position.quantity is None

    def test_records_are_immutable(self):
        position = Position(account_id="ACC1", date=date(2024, 1, 2), market_value=Decimal("500"))

        with pytest.raises(Exception):
            position.market_value = Decimal("1")

    def test_security_asset_class_normalized(self):
        security = Security(id="S1", symbol="BND", name="Bond Fund", asset_class="fixed_income")
        assert security.asset_class == AssetClass.FIXED_INCOME

    def test_missing_field_names_offending_record(self):
        """The error identifies the record index and field"""
        with pytest.raises(InvalidInputError) as exc_info:
            coerce_records(
                [
                    {"account_id": "ACC1", "date": "2024-01-02", "market_value": 10},
                    {"account_id": "ACC1", "date": "2024-01-02"},
                ],
                Position,
                "positions"
            )

        assert exc_info.value.field == "positions[1].market_value"
        assert "positions[1].market_value" in str(exc_info.value)

    def test_wrong_type_rejected(self):
        with pytest.raises(InvalidInputError) as exc_info:
            coerce_records(
                [{"account_id": "ACC1", "date": "not-a-date", "market_value": 10}],
                Position,
                "positions"
            )
        assert exc_info.value.field == "positions[0].date"

    def test_unknown_transaction_type_rejected(self):
        with pytest.raises(InvalidInputError):
            coerce_records(
                [{"account_id": "ACC1", "date": "2024-01-02", "transaction_type": "GIFT", "amount": 1}],
                Transaction,
                "transactions"
            )

    def test_negative_price_rejected(self):
        with pytest.raises(InvalidInputError):
            AccountData.coerce({"prices": [{"security_id": "S1", "date": "2024-01-02", "close": -1}]})

    def test_mapping_instead_of_sequence_rejected(self):
        with pytest.raises(InvalidInputError):
            coerce_records({"account_id": "ACC1"}, Position, "positions")

    def test_invalid_input_is_value_error(self):
        """Callers catching ValueError also catch engine input errors"""
        error = InvalidInputError("bad", field="x")
        assert isinstance(error, ValueError)
        assert isinstance(error, CalculationError)


class TestAccountData:
    """Test the input bundle"""

    def test_coerce_none_is_empty(self):
        data = AccountData.coerce(None)
        assert data.positions == []
        assert data.transactions == []

    def test_coerce_mapping(self, cash_to_equity_data):
        data = AccountData.coerce(cash_to_equity_data)

        assert len(data.positions) == 3
        assert len(data.transactions) == 2
        assert isinstance(data.positions[0], Position)
        assert data.securities[0].symbol == "AAPL"

    def test_coerce_passes_instance_through(self, cash_to_equity_data):
        data = AccountData.coerce(cash_to_equity_data)
        assert AccountData.coerce(data) is data

    def test_coerce_rejects_non_mapping(self):
        with pytest.raises(InvalidInputError):
            AccountData.coerce([1, 2, 3])


class TestDates:
    """Test date normalization"""

    def test_iso_string(self):
        assert coerce_date("2024-01-31", "end_date") == date(2024, 1, 31)

    def test_datetime_truncated(self):
        assert coerce_date(datetime(2024, 1, 31, 15, 30), "end_date") == date(2024, 1, 31)

    def test_invalid_string(self):
        with pytest.raises(InvalidInputError) as exc_info:
            coerce_date("31/01/2024", "end_date")
        assert exc_info.value.field == "end_date"


class TestEngineSettings:
    """Test configuration defaults and environment overrides"""

    def test_defaults(self):
        settings = EngineSettings()

        assert settings.aum_tolerance == Decimal("0.01")
        assert settings.periods_per_year == 252
        assert settings.risk_free_rate == 0.0
        assert settings.completeness_window_days == 5

    def test_calendar_basis(self):
        settings = EngineSettings(annualization_basis="calendar")
        assert settings.periods_per_year == 365

    def test_from_env(self):
        settings = EngineSettings.from_env({
            "PORTFOLIO_AUM_TOLERANCE": "0.05",
            "PORTFOLIO_ANNUALIZATION_BASIS": "calendar",
            "PORTFOLIO_RISK_FREE_RATE": "0.04",
            "UNRELATED": "x",
        })

        assert settings.aum_tolerance == Decimal("0.05")
        assert settings.periods_per_year == 365
        assert abs(settings.risk_free_rate - 0.04) < 1e-12

    def test_from_env_ignores_blank_values(self):
        settings = EngineSettings.from_env({"PORTFOLIO_TRADING_DAYS_PER_YEAR": ""})
        assert settings.trading_days_per_year == 252

    def test_from_env_invalid_value(self):
        with pytest.raises(InvalidInputError) as exc_info:
            EngineSettings.from_env({"PORTFOLIO_ANNUALIZATION_BASIS": "weekly"})
        assert exc_info.value.field == "annualization_basis"
