"""
Fee calculations

Daily management fee accrual on snapshot values for one or several
accounts, breakpoint (tiered) fee schedules and high-water-mark
performance fees.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Union
import logging

from models.errors import InvalidInputError
from models.portfolio import AccountData, coerce_records
from models.analytics_models import (
    DailyFee,
    FeeAccrual,
    FeeAdjustment,
    FeeSchedule,
    FeeTier,
    MultiAccountFees,
    PerformanceFeeResult,
    TieredFeeResult,
    TierFee
)
from services.aum import resolve_period
from services.cash_flows import ensure_account, snapshot_totals, split_by_account, value_on_or_before
from services.config import EngineSettings, resolve_settings
from services.numeric import ONE, ZERO, safe_divide, to_decimal

logger = logging.getLogger(__name__)

TWO = Decimal("2")


def accrue_fees(
    account_id: str,
    start_date: Union[date, str],
    end_date: Union[date, str],
    data: Union[AccountData, dict],
    schedule: Optional[Union[FeeSchedule, dict]] = None,
    adjustments: Optional[Sequence[Union[FeeAdjustment, dict]]] = None,
    settings: Optional[EngineSettings] = None
) -> FeeAccrual:
    """
    Accrue management fees day by day over a period

    Args:
        account_id: Account the records belong to
        start_date: First accrual day (inclusive)
        end_date: Last accrual day (inclusive)
        data: AccountData (or mapping) with positions
        schedule: FeeSchedule (annual rate, value basis, minimum fee)
        adjustments: Manual fee adjustments by date
        settings: Engine settings (day count for the daily rate)

    Returns:
        FeeAccrual with one DailyFee per calendar day and period totals

    Formula:
        daily_fee = value_for_fee x annual_rate / days_per_year
        value_for_fee = beginning, ending or the average of both, where
        beginning is the prior day's snapshot value
    """
    settings = resolve_settings(settings)
    data = AccountData.coerce(data)
    start, end = resolve_period(start_date, end_date)
    ensure_account(data.positions, account_id, "positions")

    if schedule is None:
        schedule = FeeSchedule()
    elif not isinstance(schedule, FeeSchedule):
        schedule = coerce_records([schedule], FeeSchedule, "schedule")[0]
    if schedule.management_fee_rate < 0:
        raise InvalidInputError("management_fee_rate must not be negative", field="schedule.management_fee_rate")

    adjustments = coerce_records(adjustments, FeeAdjustment, "adjustments")
    ensure_account(adjustments, account_id, "adjustments")

    totals = snapshot_totals(data.positions)
    daily_rate = schedule.management_fee_rate / Decimal(settings.calendar_days_per_year)

    daily_fees = []
    cumulative = ZERO
    day = start
    while day <= end:
        beginning = value_on_or_before(totals, day - timedelta(days=1))
        ending = value_on_or_before(totals, day)
        if schedule.calculation_method == "beginning":
            value_for_fee = beginning
        elif schedule.calculation_method == "ending":
            value_for_fee = ending
        else:
            value_for_fee = (beginning + ending) / TWO

        management_fee = value_for_fee * daily_rate
        manual = sum((a.amount for a in adjustments if a.date == day), ZERO)
        total = management_fee + manual
        cumulative += total

        daily_fees.append(DailyFee(
            date=day,
            aum_for_fee=value_for_fee,
            management_fee=management_fee,
            manual_adjustment=manual,
            total_fee=total,
            cumulative_fee=cumulative
        ))
        day += timedelta(days=1)

    total_management = sum((f.management_fee for f in daily_fees), ZERO)
    total_manual = sum((f.manual_adjustment for f in daily_fees), ZERO)
    total_fees = total_management + total_manual

    top_up = ZERO
    if total_fees < schedule.minimum_fee:
        top_up = schedule.minimum_fee - total_fees
        logger.debug(f"Minimum fee applied for {account_id}: top-up {top_up}")
        total_fees = schedule.minimum_fee

    days = len(daily_fees)
    average_aum = safe_divide(sum((f.aum_for_fee for f in daily_fees), ZERO), Decimal(days))
    effective_rate = safe_divide(total_fees, average_aum) * Decimal(settings.calendar_days_per_year) / Decimal(days)

    return FeeAccrual(
        account_id=account_id,
        start_date=start,
        end_date=end,
        total_days=days,
        total_management_fees=total_management,
        total_manual_adjustments=total_manual,
        minimum_fee_top_up=top_up,
        total_fees=total_fees,
        average_aum=average_aum,
        effective_annual_rate=effective_rate,
        nominal_annual_rate=schedule.management_fee_rate,
        daily_fees=daily_fees
    )


def accrue_multi_account_fees(
    account_ids: Sequence[str],
    start_date: Union[date, str],
    end_date: Union[date, str],
    data: Union[AccountData, dict],
    schedule: Optional[Union[FeeSchedule, dict]] = None,
    adjustments: Optional[Sequence[Union[FeeAdjustment, dict]]] = None,
    settings: Optional[EngineSettings] = None
) -> MultiAccountFees:
    """
    Accrue fees for several accounts under one schedule

    data is a multi-account bundle; adjustments are routed to their own
    account. An account with no records accrues nothing.

    Formula:
        weighted_average_rate = total_fees / sum(average_aum) x days_per_year / days
    """
    if not account_ids:
        raise InvalidInputError("account_ids must not be empty", field="account_ids")
    settings = resolve_settings(settings)
    start, end = resolve_period(start_date, end_date)
    partitions = split_by_account(AccountData.coerce(data))
    adjustments = coerce_records(adjustments, FeeAdjustment, "adjustments")

    accounts = [
        accrue_fees(
            account_id, start, end,
            partitions.get(account_id, AccountData()),
            schedule,
            [a for a in adjustments if a.account_id == account_id],
            settings
        )
        for account_id in account_ids
    ]

    total_fees = sum((a.total_fees for a in accounts), ZERO)
    total_average_aum = sum((a.average_aum for a in accounts), ZERO)
    days = Decimal(accounts[0].total_days)
    annual_factor = Decimal(settings.calendar_days_per_year) / days

    return MultiAccountFees(
        account_ids=list(account_ids),
        start_date=start,
        end_date=end,
        total_management_fees=sum((a.total_management_fees for a in accounts), ZERO),
        total_manual_adjustments=sum((a.total_manual_adjustments for a in accounts), ZERO),
        total_fees=total_fees,
        total_average_aum=total_average_aum,
        weighted_average_rate=safe_divide(total_fees, total_average_aum) * annual_factor,
        accounts=accounts
    )


def calculate_tiered_fees(
    aum: Union[Decimal, float, int],
    tiers: Sequence[Union[FeeTier, dict]]
) -> TieredFeeResult:
    """
    Annual fee under a breakpoint schedule

    Each tier's rate applies only to the slice of AUM between its minimum and
    the next tier's minimum.

    Example:
        >>> calculate_tiered_fees(1_500_000, [{"minimum": 0, "rate": 0.01},
        ...                                   {"minimum": 1_000_000, "rate": 0.005}])
        total_fee == 12,500 (10,000 on the first million + 2,500 above it)
    """
    aum = to_decimal(aum)
    schedule = sorted(coerce_records(tiers, FeeTier, "tiers"), key=lambda t: t.minimum)
    if not schedule:
        return TieredFeeResult(aum=aum)

    details = []
    total_fee = ZERO
    for index, tier in enumerate(schedule):
        if aum < tier.minimum:
            break
        maximum = schedule[index + 1].minimum if index + 1 < len(schedule) else None
        upper = aum if maximum is None or aum <= maximum else maximum
        applicable = upper - tier.minimum
        fee = applicable * tier.rate
        total_fee += fee
        details.append(TierFee(
            tier_number=index + 1,
            minimum=tier.minimum,
            maximum=maximum,
            rate=tier.rate,
            applicable_aum=applicable,
            fee=fee
        ))
        if maximum is None or aum <= maximum:
            break

    return TieredFeeResult(
        aum=aum,
        total_fee=total_fee,
        effective_rate=safe_divide(total_fee, aum),
        tiers=details
    )


def calculate_performance_fee(
    start_value: Union[Decimal, float, int],
    end_value: Union[Decimal, float, int],
    net_flows: Union[Decimal, float, int] = ZERO,
    high_water_mark: Union[Decimal, float, int] = ZERO,
    rate: Union[Decimal, float] = Decimal("0.20"),
    hurdle_rate: Union[Decimal, float] = ZERO
) -> PerformanceFeeResult:
    """
    Incentive fee on gains above the high-water mark

    Formula:
        hurdle_value = max(start_value, high_water_mark) x (1 + hurdle_rate)
        outperformance = end_value - net_flows - hurdle_value
        fee = rate x outperformance when positive, else 0
    """
    start_value = to_decimal(start_value)
    end_value = to_decimal(end_value)
    net_flows = to_decimal(net_flows)
    high_water_mark = to_decimal(high_water_mark)
    rate = to_decimal(rate)
    hurdle_rate = to_decimal(hurdle_rate)

    if rate < 0:
        raise InvalidInputError("rate must not be negative", field="rate")

    hurdle_value = max(start_value, high_water_mark) * (ONE + hurdle_rate)
    outperformance = end_value - net_flows - hurdle_value
    fee = outperformance * rate if outperformance > 0 else ZERO

    return PerformanceFeeResult(
        start_value=start_value,
        end_value=end_value,
        net_flows=net_flows,
        high_water_mark=high_water_mark,
        new_high_water_mark=max(high_water_mark, end_value),
        hurdle_value=hurdle_value,
        outperformance=outperformance,
        performance_fee_rate=rate,
        performance_fee=fee
    )
