"""
End-to-end tests for the account report and the diagnostic script
"""

import json
import pytest
import sys
import os
from datetime import date
from decimal import Decimal

# Add backend and the repository root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from models.analytics_models import QCStatus
from services.reporting import build_account_report
import diagnose_returns


class TestAccountReport:
    """Test the full pipeline for one account"""

    def test_cash_to_equity_scenario(self, cash_to_equity_data, settings):
        report = build_account_report("ACC1", "2024-01-01", "2024-01-31", cash_to_equity_data,
                                      settings=settings)

        assert report.start_date == date(2024, 1, 1)
        assert report.end_date == date(2024, 1, 31)

        assert [h.symbol for h in report.holdings.holdings] == ["CASH", "AAPL"]
        assert report.holdings.summary.total_market_value == Decimal("101000")

        assert report.aum.bop == Decimal("100000")
        assert report.aum.eop == Decimal("101000")
        assert report.aum.market_pnl == Decimal("1000")
        assert report.aum.identity_check is True

        assert len(report.daily_returns) == 1
        assert report.daily_returns[0].daily_return == Decimal("0.01")
        assert report.twr.periods == 1

        assert report.qc.overall_status == QCStatus.PASS
        assert report.qc.summary.total_checks == 7

    def test_holdings_total_matches_eop(self, cash_to_equity_data, settings):
        """Holdings valued at end date agree with the reconciled eop"""
        report = build_account_report("ACC1", "2024-01-01", "2024-01-31", cash_to_equity_data,
                                      settings=settings)

        assert report.holdings.summary.total_market_value == report.aum.eop

    def test_multi_day_period(self, three_day_data, settings):
        report = build_account_report(
            "ACC2", "2024-03-01", "2024-03-06", three_day_data,
            benchmark_dates=[date(2024, 3, 4), date(2024, 3, 5), date(2024, 3, 6)],
            reconcile_positions=True,
            settings=settings
        )

        assert abs(float(report.twr.total_return_percent) - 3.3974) < 0.0001
        assert report.aum.contributions == Decimal("10000")
        assert report.qc.summary.total_checks == 9
        assert report.qc.overall_status == QCStatus.PASS

    def test_qc_failure_reported_not_raised(self, cash_to_equity_data, settings):
        data = dict(cash_to_equity_data)
        data["transactions"] = cash_to_equity_data["transactions"] + [
            {"account_id": "ACC1", "date": "2024-01-16", "transaction_type": "BUY",
             "security_id": "SEC_MSFT", "quantity": 1, "amount": -100},
        ]

        report = build_account_report("ACC1", "2024-01-01", "2024-01-31", data, settings=settings)

        assert report.qc.overall_status == QCStatus.FAIL
        failed = {c.check_name for c in report.qc.checks if c.status == QCStatus.FAIL}
        assert failed == {"POSITION_COMPLETENESS", "MISSING_PRICES"}


class TestDiagnoseReturns:
    """Test the diagnostic script"""

    @pytest.fixture
    def records_file(self, tmp_path, cash_to_equity_data):
        path = tmp_path / "records.json"
        path.write_text(json.dumps(cash_to_equity_data))
        return str(path)

    def test_main_exit_code_on_pass(self, records_file, capsys):
        exit_code = diagnose_returns.main([records_file, "ACC1", "2024-01-01", "2024-01-31"])

        assert exit_code == 0
        output = capsys.readouterr().out
        assert "AUM RECONCILIATION" in output
        assert "AAPL" in output
        assert "Overall: PASS" in output

    def test_main_exit_code_on_fail(self, tmp_path, cash_to_equity_data):
        data = dict(cash_to_equity_data)
        data["transactions"] = cash_to_equity_data["transactions"] + [
            {"account_id": "ACC1", "date": "2024-01-16", "transaction_type": "BUY",
             "security_id": "SEC_MSFT", "quantity": 1, "amount": -100},
        ]
        path = tmp_path / "records.json"
        path.write_text(json.dumps(data))

        assert diagnose_returns.main([str(path), "ACC1", "2024-01-01", "2024-01-31"]) == 1

    def test_run_diagnostics_returns_report(self, records_file):
        report = diagnose_returns.run_diagnostics(records_file, "ACC1", "2024-01-01", "2024-01-31")

        assert report.aum.identity_check is True

    def test_non_object_payload_rejected(self, tmp_path):
        path = tmp_path / "records.json"
        path.write_text("[]")

        with pytest.raises(SystemExit):
            diagnose_returns.load_records(str(path))
