from .config import EngineSettings, get_settings
from .holdings import compute_holdings
from .aum import compute_aum
from .performance import compute_daily_returns, compute_twr
from .quality_control import run_comprehensive_qc, aggregate_qc_results
from .reporting import build_account_report

__all__ = [
    "EngineSettings",
    "get_settings",
    "compute_holdings",
    "compute_aum",
    "compute_daily_returns",
    "compute_twr",
    "run_comprehensive_qc",
    "aggregate_qc_results",
    "build_account_report"
]
