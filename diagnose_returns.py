#!/usr/bin/env python3
"""
Diagnostic for return and reconciliation issues

Runs the full calculation pipeline over a JSON export of one account's
records and prints holdings, the AUM reconciliation, the daily return chain
and the quality-control findings.

    python diagnose_returns.py records.json ACC1 2024-01-01 2024-01-31
"""
import argparse
import json
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), 'backend'))

import pandas as pd

from models.analytics_models import AccountReport
from services.performance import daily_returns_frame
from services.reporting import build_account_report


def load_records(path: str) -> dict:
    """Load {positions, transactions, prices, securities} from a JSON file"""
    with open(path) as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise SystemExit(f"Expected a JSON object of record lists in {path}")
    return payload


def print_report(report: AccountReport) -> None:
    print("=" * 80)
    print(f"ACCOUNT {report.account_id}: {report.start_date} to {report.end_date}")
    print("=" * 80)

    print("\nHOLDINGS")
    print("-" * 80)
    if report.holdings.holdings:
        holdings_df = pd.DataFrame([
            {
                "symbol": h.symbol,
                "asset_class": h.asset_class.value,
                "quantity": float(h.quantity) if h.quantity is not None else None,
                "price": float(h.price) if h.price is not None else None,
                "market_value": float(h.market_value),
                "allocation_%": round(float(h.allocation_percent), 2),
                "stale": h.stale_price,
            }
            for h in report.holdings.holdings
        ])
        print(holdings_df.to_string(index=False))
    else:
        print("  (no holdings)")
    print(f"  Total market value: {report.holdings.summary.total_market_value:,.2f}")

    aum = report.aum
    print("\nAUM RECONCILIATION")
    print("-" * 80)
    print(f"  BOP:            {aum.bop:>16,.2f}")
    print(f"  Contributions:  {aum.contributions:>16,.2f}")
    print(f"  Withdrawals:    {aum.withdrawals:>16,.2f}")
    print(f"  Market P&L:     {aum.market_pnl:>16,.2f}")
    print(f"  EOP:            {aum.eop:>16,.2f}")
    print(f"  Identity check: {'PASS' if aum.identity_check else 'FAIL'} (difference {aum.identity_difference})")

    print("\nDAILY RETURNS")
    print("-" * 80)
    frame = daily_returns_frame(report.daily_returns)
    if frame.empty:
        print("  (no valuation days in period)")
    else:
        print(frame.to_string())

    twr = report.twr
    print("\nTIME-WEIGHTED RETURN")
    print("-" * 80)
    print(f"  Periods:        {twr.periods}")
    print(f"  Total return:   {twr.total_return_percent:.4f}%")
    print(f"  Annualized:     {twr.annualized_twr_percent:.4f}%")
    print(f"  Volatility:     {twr.volatility:.4f}")
    print(f"  Sharpe ratio:   {twr.sharpe_ratio:.4f}")

    print("\nQUALITY CONTROL")
    print("-" * 80)
    for check in report.qc.checks:
        print(f"  [{check.status.value:4}] {check.check_name}: {check.message}")
    summary = report.qc.summary
    print(f"\n  Overall: {report.qc.overall_status.value} "
          f"({summary.passed} passed, {summary.warned} warned, {summary.failed} failed)")


def run_diagnostics(path: str, account_id: str, start_date: str, end_date: str) -> AccountReport:
    records = load_records(path)
    report = build_account_report(account_id, start_date, end_date, records)
    print_report(report)
    return report


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Diagnose return calculations for one account")
    parser.add_argument("records", help="JSON file with positions, transactions, prices and securities")
    parser.add_argument("account_id")
    parser.add_argument("start_date", help="YYYY-MM-DD")
    parser.add_argument("end_date", help="YYYY-MM-DD")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    report = run_diagnostics(args.records, args.account_id, args.start_date, args.end_date)
    return 1 if report.qc.overall_status.value == "FAIL" else 0


if __name__ == '__main__':
    sys.exit(main())
