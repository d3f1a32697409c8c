"""
Quality-control validation

Cross-checks the outputs of the holdings, AUM and return calculations against
the raw records. Every check runs independently and the battery is never
short-circuited; the report aggregates all results.
"""

from collections import Counter, defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union
import logging

from pydantic import ValidationError

from models.errors import InvalidInputError
from models.portfolio import AssetClass, EntryStatus, Position, Price, Security, Transaction, TransactionType
from models.analytics_models import (
    AUMResult,
    DailyReturn,
    QCInput,
    QCReport,
    QCResult,
    QCStatus,
    QCSummary
)
from services.cash_flows import EXTERNAL_FLOW_TYPES, ensure_account, normalized_amount, posted_only
from services.config import EngineSettings, resolve_settings
from services.numeric import ZERO

logger = logging.getLogger(__name__)

# Share of return dates allowed to be missing from the benchmark before failing
BENCHMARK_MISSING_FAIL_RATIO = 0.10
COST_TOLERANCE = Decimal("0.01")
QUANTITY_FAIL_THRESHOLD = Decimal("1")
COST_FAIL_THRESHOLD = Decimal("10")


def run_comprehensive_qc(
    qc_input: Union[QCInput, Mapping[str, Any]],
    settings: Optional[EngineSettings] = None
) -> QCReport:
    """
    Run the full quality-control battery for one account

    Args:
        qc_input: QCInput (or mapping) with account_id, aum_data, positions,
            transactions and the optional prices, securities, daily_returns,
            benchmark_dates and reconcile_positions
        settings: Engine settings (tolerances, return bounds, windows)

    Returns:
        QCReport with one QCResult per check and the aggregated status

    Note:
        AUM_IDENTITY, POSITION_COMPLETENESS, NO_NEGATIVE_CASH and
        DUPLICATE_TRANSACTION always run. The other checks run when their
        inputs are supplied.
    """
    settings = resolve_settings(settings)
    qc = _coerce_input(qc_input)
    ensure_account(qc.positions, qc.account_id, "positions")
    ensure_account(qc.transactions, qc.account_id, "transactions")

    checks = [
        check_aum_identity(qc.aum_data, qc.positions, qc.transactions, settings),
        check_position_completeness(qc.positions, qc.transactions, qc.prices or [], settings),
        check_no_negative_cash(qc.positions, qc.securities or []),
        check_duplicate_transactions(qc.transactions),
    ]

    if qc.daily_returns is not None:
        checks.append(validate_returns(qc.daily_returns, settings))
        checks.append(check_return_reconciliation(qc.daily_returns, qc.aum_data, settings))
    if qc.prices is not None:
        checks.append(find_missing_prices(
            qc.aum_data.start_date,
            qc.aum_data.end_date,
            qc.positions,
            qc.transactions,
            qc.prices,
            qc.securities or []
        ))
    if qc.benchmark_dates is not None:
        checks.append(validate_benchmark_dates(qc.daily_returns or [], qc.benchmark_dates))
    if qc.reconcile_positions:
        checks.append(validate_position_reconciliation(qc.positions, qc.transactions, settings))

    report = aggregate_qc_results(qc.account_id, checks)
    if report.overall_status != QCStatus.PASS:
        logger.warning(
            f"QC {report.overall_status.value} for {qc.account_id}: "
            f"{report.summary.failed} failed, {report.summary.warned} warned"
        )
    return report


def aggregate_qc_results(account_id: str, checks: Sequence[QCResult]) -> QCReport:
    """
    Combine check results into a report

    overall_status is FAIL if any check failed, WARN if none failed but at
    least one warned, otherwise PASS.
    """
    counts = Counter(check.status for check in checks)
    if counts[QCStatus.FAIL]:
        overall = QCStatus.FAIL
    elif counts[QCStatus.WARN]:
        overall = QCStatus.WARN
    else:
        overall = QCStatus.PASS

    return QCReport(
        overall_status=overall,
        account_id=account_id,
        checks=list(checks),
        summary=QCSummary(
            total_checks=len(checks),
            passed=counts[QCStatus.PASS],
            failed=counts[QCStatus.FAIL],
            warned=counts[QCStatus.WARN]
        )
    )


def _coerce_input(qc_input) -> QCInput:
    if isinstance(qc_input, QCInput):
        return qc_input
    if not isinstance(qc_input, Mapping):
        raise InvalidInputError("qc_input must be a QCInput or a mapping", field="qc_input")
    try:
        return QCInput.model_validate(qc_input)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error.get("loc", ()))
        raise InvalidInputError(f"Invalid qc_input.{field}: {error['msg']}", field=field) from e


def _snapshot_on_or_before(positions: List[Position], day: date) -> Tuple[Optional[date], Decimal]:
    """Walk snapshot dates newest first and sum the first one at or before day"""
    for snapshot_date in sorted({p.date for p in positions}, reverse=True):
        if snapshot_date <= day:
            value = ZERO
            for position in positions:
                if position.date == snapshot_date:
                    value += position.market_value
            return snapshot_date, value
    return None, ZERO


def check_aum_identity(
    aum_data: AUMResult,
    positions: List[Position],
    transactions: List[Transaction],
    settings: Optional[EngineSettings] = None
) -> QCResult:
    """
    Re-derive bop, eop and net flows from the raw records and compare

    Fails when any re-derived figure differs from aum_data, or when aum_data
    itself does not satisfy eop == bop + net_flows + market_pnl, beyond the
    AUM tolerance.
    """
    settings = resolve_settings(settings)
    tolerance = settings.aum_tolerance
    start, end = aum_data.start_date, aum_data.end_date

    bop_date, bop = _snapshot_on_or_before(positions, start)
    eop_date, eop = _snapshot_on_or_before(positions, end)

    net_flows = ZERO
    flow_count = 0
    for transaction in transactions:
        if (
            transaction.entry_status == EntryStatus.POSTED
            and transaction.transaction_type in EXTERNAL_FLOW_TYPES
            and start < transaction.date <= end
        ):
            net_flows += normalized_amount(transaction)
            flow_count += 1

    identity_difference = aum_data.eop - (aum_data.bop + aum_data.net_flows + aum_data.market_pnl)
    mismatches = []
    for name, derived, reported in (
        ("bop", bop, aum_data.bop),
        ("eop", eop, aum_data.eop),
        ("net_flows", net_flows, aum_data.net_flows),
    ):
        if abs(derived - reported) > tolerance:
            mismatches.append({"field": name, "derived": derived, "reported": reported})

    identity_ok = abs(identity_difference) <= tolerance
    evidence = {
        "bop": bop,
        "bop_snapshot_date": bop_date,
        "eop": eop,
        "eop_snapshot_date": eop_date,
        "net_flows": net_flows,
        "flow_count": flow_count,
        "market_pnl": aum_data.market_pnl,
        "identity_difference": identity_difference,
        "tolerance": tolerance,
        "mismatches": mismatches,
    }

    if mismatches or not identity_ok:
        problems = [m["field"] for m in mismatches]
        if not identity_ok:
            problems.append("identity")
        return QCResult(
            check_name="AUM_IDENTITY",
            status=QCStatus.FAIL,
            message=f"AUM identity check failed: {', '.join(problems)} out of tolerance {tolerance}",
            evidence=evidence
        )

    return QCResult(
        check_name="AUM_IDENTITY",
        status=QCStatus.PASS,
        message="AUM identity check passed",
        evidence=evidence
    )


def check_position_completeness(
    positions: List[Position],
    transactions: List[Transaction],
    prices: List[Price],
    settings: Optional[EngineSettings] = None
) -> QCResult:
    """Every posted transaction's security has a position or price nearby"""
    settings = resolve_settings(settings)
    window = timedelta(days=settings.completeness_window_days)

    observed: Dict[str, List[date]] = defaultdict(list)
    for position in positions:
        if position.security_id is not None:
            observed[position.security_id].append(position.date)
    for price in prices:
        observed[price.security_id].append(price.date)

    missing = []
    checked = 0
    for transaction in posted_only(transactions):
        if transaction.security_id is None:
            continue
        checked += 1
        dates = observed.get(transaction.security_id, [])
        if not any(abs(d - transaction.date) <= window for d in dates):
            missing.append({"security_id": transaction.security_id, "date": transaction.date})

    evidence = {
        "transactions_checked": checked,
        "window_days": settings.completeness_window_days,
        "missing": missing,
    }
    if missing:
        return QCResult(
            check_name="POSITION_COMPLETENESS",
            status=QCStatus.FAIL,
            message=f"{len(missing)} transactions have no position or price within "
                    f"{settings.completeness_window_days} days",
            evidence=evidence
        )
    return QCResult(
        check_name="POSITION_COMPLETENESS",
        status=QCStatus.PASS,
        message="All transacted securities have nearby positions or prices",
        evidence=evidence
    )


def _cash_security_ids(securities: List[Security]) -> Set[str]:
    return {s.id for s in securities if s.asset_class == AssetClass.CASH}


def check_no_negative_cash(positions: List[Position], securities: List[Security]) -> QCResult:
    """Cash-like positions should not go negative (margin accounts may, hence WARN)"""
    cash_ids = _cash_security_ids(securities)
    negative = [
        {"date": p.date, "security_id": p.security_id, "market_value": p.market_value}
        for p in positions
        if (p.security_id is None or p.security_id in cash_ids) and p.market_value < 0
    ]

    if negative:
        return QCResult(
            check_name="NO_NEGATIVE_CASH",
            status=QCStatus.WARN,
            message=f"{len(negative)} negative cash balances found",
            evidence={"negative_balances": negative}
        )
    return QCResult(
        check_name="NO_NEGATIVE_CASH",
        status=QCStatus.PASS,
        message="No negative cash balances",
        evidence={"negative_balances": []}
    )


def check_duplicate_transactions(transactions: List[Transaction]) -> QCResult:
    """Flag posted transactions sharing account, date, type and amount"""
    keys = Counter(
        (t.account_id, t.date, t.transaction_type, abs(t.amount))
        for t in posted_only(transactions)
    )
    duplicates = [
        {
            "account_id": account_id,
            "date": day,
            "transaction_type": transaction_type.value,
            "amount": amount,
            "count": count,
        }
        for (account_id, day, transaction_type, amount), count in keys.items()
        if count > 1
    ]
    duplicates.sort(key=lambda d: (d["date"], d["transaction_type"], d["amount"]))

    if duplicates:
        return QCResult(
            check_name="DUPLICATE_TRANSACTION",
            status=QCStatus.WARN,
            message=f"{len(duplicates)} possible duplicate transactions found",
            evidence={"duplicates": duplicates}
        )
    return QCResult(
        check_name="DUPLICATE_TRANSACTION",
        status=QCStatus.PASS,
        message="No duplicate transactions",
        evidence={"duplicates": []}
    )


def validate_returns(
    daily_returns: List[DailyReturn],
    settings: Optional[EngineSettings] = None
) -> QCResult:
    """
    Sanity-check a daily return series

    Returns beyond the configured daily bounds warn; beyond +/-100% they
    fail, as does a date sequence that does not strictly increase.
    """
    settings = resolve_settings(settings)
    upper = Decimal(str(settings.max_daily_return))
    lower = Decimal(str(settings.min_daily_return))

    issues = []
    for index, daily in enumerate(daily_returns):
        value = daily.daily_return
        if value > upper:
            issues.append({
                "date": daily.date,
                "issue": "EXTREME_POSITIVE_RETURN",
                "value": value,
                "severity": "HIGH" if value > 1 else "MEDIUM",
            })
        if value < lower:
            issues.append({
                "date": daily.date,
                "issue": "EXTREME_NEGATIVE_RETURN",
                "value": value,
                "severity": "HIGH" if value < -1 else "MEDIUM",
            })
        if index > 0 and daily.date <= daily_returns[index - 1].date:
            issues.append({
                "date": daily.date,
                "issue": "DATE_SEQUENCE_ERROR",
                "previous_date": daily_returns[index - 1].date,
                "severity": "HIGH",
            })

    high = sum(1 for i in issues if i["severity"] == "HIGH")
    medium = len(issues) - high
    evidence = {"issues": issues, "return_periods": len(daily_returns), "high": high, "medium": medium}

    if high:
        status = QCStatus.FAIL
        message = f"{high} high-severity return validation issues found"
    elif medium:
        status = QCStatus.WARN
        message = f"{medium} medium-severity return validation issues found"
    else:
        status = QCStatus.PASS
        message = "Return validation passed"
    return QCResult(check_name="RETURN_VALIDATION", status=status, message=message, evidence=evidence)


def check_return_reconciliation(
    daily_returns: List[DailyReturn],
    aum_data: AUMResult,
    settings: Optional[EngineSettings] = None
) -> QCResult:
    """Daily series must start at bop, end at eop and carry the same flows"""
    settings = resolve_settings(settings)
    tolerance = settings.aum_tolerance

    if daily_returns:
        beginning = daily_returns[0].beginning_value
        ending = daily_returns[-1].ending_value
    else:
        # No valuation days in the period: value carries over unchanged
        beginning = ending = aum_data.bop
    flows = sum((d.net_flows for d in daily_returns), ZERO)

    mismatches = []
    for name, derived, reported in (
        ("bop", beginning, aum_data.bop),
        ("eop", ending, aum_data.eop),
        ("net_flows", flows, aum_data.net_flows),
    ):
        if abs(derived - reported) > tolerance:
            mismatches.append({"field": name, "from_returns": derived, "from_aum": reported})

    evidence = {"mismatches": mismatches, "return_periods": len(daily_returns)}
    if mismatches:
        return QCResult(
            check_name="RETURN_RECONCILIATION",
            status=QCStatus.FAIL,
            message="Daily returns do not reconcile to AUM: "
                    + ", ".join(m["field"] for m in mismatches),
            evidence=evidence
        )
    return QCResult(
        check_name="RETURN_RECONCILIATION",
        status=QCStatus.PASS,
        message="Daily returns reconcile to AUM",
        evidence=evidence
    )


def _business_days(start: date, end: date) -> List[date]:
    days = []
    current = start
    while current <= end:
        if current.weekday() < 5:
            days.append(current)
        current += timedelta(days=1)
    return days


def find_missing_prices(
    start_date: date,
    end_date: date,
    positions: List[Position],
    transactions: List[Transaction],
    prices: List[Price],
    securities: Optional[List[Security]] = None
) -> QCResult:
    """
    Find business days where a security needed a price and had none

    A security transacted on a day without a price fails; a security held
    (latest position at or before the day has positive quantity) without a
    price warns. Cash-class securities are exempt.
    """
    cash_ids = _cash_security_ids(securities or [])
    priced = {(p.security_id, p.date) for p in prices}

    holdings_by_security: Dict[str, List[Position]] = defaultdict(list)
    for position in positions:
        if position.security_id is not None and position.security_id not in cash_ids:
            holdings_by_security[position.security_id].append(position)
    for series in holdings_by_security.values():
        series.sort(key=lambda p: p.date)

    transacted: Dict[date, Set[str]] = defaultdict(set)
    for transaction in posted_only(transactions):
        if transaction.security_id is not None and transaction.security_id not in cash_ids:
            transacted[transaction.date].add(transaction.security_id)

    missing = []
    for day in _business_days(start_date, end_date):
        for security_id in sorted(transacted.get(day, set())):
            if (security_id, day) not in priced:
                missing.append({"security_id": security_id, "date": day, "priority": "HIGH"})
        for security_id, series in sorted(holdings_by_security.items()):
            if security_id in transacted.get(day, set()) or (security_id, day) in priced:
                continue
            latest = None
            for position in series:
                if position.date > day:
                    break
                latest = position
            if latest is not None and latest.quantity is not None and latest.quantity > 0:
                missing.append({"security_id": security_id, "date": day, "priority": "MEDIUM"})

    high = sum(1 for m in missing if m["priority"] == "HIGH")
    medium = len(missing) - high
    evidence = {
        "start_date": start_date,
        "end_date": end_date,
        "missing_prices": missing,
        "high": high,
        "medium": medium,
    }

    if high:
        status = QCStatus.FAIL
        message = f"{high} missing prices on transaction days"
    elif medium:
        status = QCStatus.WARN
        message = f"{medium} missing prices on holding days"
    else:
        status = QCStatus.PASS
        message = "No missing prices found"
    return QCResult(check_name="MISSING_PRICES", status=status, message=message, evidence=evidence)


def validate_benchmark_dates(daily_returns: List[DailyReturn], benchmark_dates: List[date]) -> QCResult:
    """Return dates should all be present in the benchmark series"""
    return_dates = [d.date for d in daily_returns]
    benchmark = set(benchmark_dates)
    missing = sorted(d for d in set(return_dates) if d not in benchmark)
    extra = sorted(benchmark - set(return_dates))

    ratio = len(missing) / len(return_dates) if return_dates else 0.0
    evidence = {
        "return_periods": len(return_dates),
        "benchmark_periods": len(benchmark),
        "missing_in_benchmark": missing,
        "extra_in_benchmark": extra,
        "missing_ratio": ratio,
    }

    if missing and ratio > BENCHMARK_MISSING_FAIL_RATIO:
        status = QCStatus.FAIL
        message = f"{len(missing)} return dates missing from benchmark data ({ratio * 100:.1f}%)"
    elif missing:
        status = QCStatus.WARN
        message = f"{len(missing)} return dates missing from benchmark data"
    else:
        status = QCStatus.PASS
        message = "Benchmark dates aligned with return data"
    return QCResult(check_name="BENCHMARK_DATES", status=status, message=message, evidence=evidence)


def validate_position_reconciliation(
    positions: List[Position],
    transactions: List[Transaction],
    settings: Optional[EngineSettings] = None
) -> QCResult:
    """
    Compare trade history with the latest position of each security

    Expected quantity and average cost come from posted BUY/SELL history
    (sales relieve cost proportionally).
    """
    settings = resolve_settings(settings)

    trades: Dict[str, List[Transaction]] = defaultdict(list)
    for transaction in posted_only(transactions):
        if transaction.security_id is not None and transaction.transaction_type in (
            TransactionType.BUY, TransactionType.SELL
        ):
            trades[transaction.security_id].append(transaction)

    latest: Dict[str, Position] = {}
    for position in positions:
        if position.security_id is None:
            continue
        current = latest.get(position.security_id)
        if current is None or position.date > current.date:
            latest[position.security_id] = position

    issues = []
    for security_id in sorted(trades):
        quantity = ZERO
        cost = ZERO
        for trade in sorted(trades[security_id], key=lambda t: t.date):
            trade_quantity = abs(trade.quantity or ZERO)
            if trade.transaction_type == TransactionType.BUY:
                quantity += trade_quantity
                cost += trade_quantity * (trade.price or ZERO)
            else:
                if quantity != 0:
                    cost -= cost * (trade_quantity / quantity)
                quantity -= trade_quantity
        expected_cost = cost / quantity if quantity != 0 else ZERO

        position = latest.get(security_id)
        if position is None:
            continue
        actual_quantity = position.quantity or ZERO

        quantity_gap = abs(quantity - actual_quantity)
        if quantity_gap > settings.quantity_tolerance:
            issues.append({
                "security_id": security_id,
                "issue": "QUANTITY_MISMATCH",
                "expected": quantity,
                "actual": actual_quantity,
                "severity": "HIGH" if quantity_gap > QUANTITY_FAIL_THRESHOLD else "LOW",
            })

        if position.average_cost is not None and actual_quantity != 0:
            cost_gap = abs(expected_cost - position.average_cost)
            if cost_gap > COST_TOLERANCE:
                issues.append({
                    "security_id": security_id,
                    "issue": "COST_BASIS_MISMATCH",
                    "expected": expected_cost,
                    "actual": position.average_cost,
                    "severity": "HIGH" if cost_gap > COST_FAIL_THRESHOLD else "MEDIUM",
                })

    high = sum(1 for i in issues if i["severity"] == "HIGH")
    evidence = {"issues": issues, "securities_checked": sorted(trades)}

    if high:
        status = QCStatus.FAIL
        message = f"{high} high-severity position reconciliation issues found"
    elif issues:
        status = QCStatus.WARN
        message = f"{len(issues)} minor position reconciliation issues found"
    else:
        status = QCStatus.PASS
        message = "Position reconciliation passed"
    return QCResult(check_name="POSITION_RECONCILIATION", status=status, message=message, evidence=evidence)
