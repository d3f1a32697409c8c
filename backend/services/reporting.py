"""
Account report orchestration

Runs the calculation engine in the order a request handler consumes it:
holdings, AUM, daily returns, TWR and finally quality control over all of
the above.
"""

from datetime import date
from typing import List, Optional, Union
import logging

from models.portfolio import AccountData
from models.analytics_models import AccountReport, QCInput

from services import aum
from services import holdings
from services import performance
from services import quality_control
from services.config import EngineSettings, resolve_settings

logger = logging.getLogger(__name__)


def build_account_report(
    account_id: str,
    start_date: Union[date, str],
    end_date: Union[date, str],
    data: Union[AccountData, dict],
    benchmark_dates: Optional[List[date]] = None,
    reconcile_positions: bool = False,
    settings: Optional[EngineSettings] = None
) -> AccountReport:
    """
    Build the full report for one account and period

    Args:
        account_id: Account to report on
        start_date: Period start
        end_date: Period end; holdings are valued as of this date
        data: AccountData (or mapping) with positions, transactions, prices
            and securities
        benchmark_dates: Benchmark return dates to check alignment against
        reconcile_positions: Also reconcile positions against trade history
        settings: Engine settings shared by every step

    Returns:
        AccountReport with holdings, AUM, daily returns, TWR and QC report

    Example:
        >>> report = build_account_report("ACC1", "2024-01-01", "2024-01-31", data)
        >>> report.aum.identity_check, report.qc.overall_status
        (True, <QCStatus.PASS: 'PASS'>)
    """
    settings = resolve_settings(settings)
    data = AccountData.coerce(data)

    holdings_result = holdings.compute_holdings(account_id, end_date, data)
    aum_result = aum.compute_aum(account_id, start_date, end_date, data, settings)
    daily_returns = performance.compute_daily_returns(account_id, start_date, end_date, data)
    twr = performance.compute_twr(daily_returns, settings)

    qc_report = quality_control.run_comprehensive_qc(
        QCInput(
            account_id=account_id,
            aum_data=aum_result,
            positions=data.positions,
            transactions=data.transactions,
            prices=data.prices,
            securities=data.securities,
            daily_returns=daily_returns,
            benchmark_dates=benchmark_dates,
            reconcile_positions=reconcile_positions
        ),
        settings
    )

    logger.info(
        f"Report for {account_id} {aum_result.start_date}..{aum_result.end_date}: "
        f"TWR {twr.total_return_percent:.4f}%, QC {qc_report.overall_status.value}"
    )

    return AccountReport(
        account_id=account_id,
        start_date=aum_result.start_date,
        end_date=aum_result.end_date,
        holdings=holdings_result,
        aum=aum_result,
        daily_returns=daily_returns,
        twr=twr,
        qc=qc_report
    )
