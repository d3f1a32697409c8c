"""
Cash-flow classification and snapshot helpers

Direction is decided by transaction type through a fixed lookup table; the
stored sign of an amount is never trusted.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
import logging

from models.errors import InvalidInputError
from models.portfolio import AccountData, EntryStatus, Position, Transaction, TransactionType
from services.numeric import ZERO

logger = logging.getLogger(__name__)


CASH_FLOW_DIRECTION: Dict[TransactionType, int] = {
    TransactionType.BUY: -1,
    TransactionType.FEE: -1,
    TransactionType.TAX: -1,
    TransactionType.WITHDRAWAL: -1,
    TransactionType.DISTRIBUTION: -1,
    TransactionType.TRANSFER_OUT: -1,
    TransactionType.SELL: 1,
    TransactionType.DIVIDEND: 1,
    TransactionType.INTEREST: 1,
    TransactionType.DEPOSIT: 1,
    TransactionType.CONTRIBUTION: 1,
    TransactionType.TRANSFER_IN: 1,
}

# Money crossing the account boundary. Everything else is market activity.
EXTERNAL_FLOW_TYPES = frozenset({
    TransactionType.DEPOSIT,
    TransactionType.CONTRIBUTION,
    TransactionType.TRANSFER_IN,
    TransactionType.WITHDRAWAL,
    TransactionType.DISTRIBUTION,
    TransactionType.TRANSFER_OUT,
})


def normalized_amount(transaction: Transaction) -> Decimal:
    """
    Cash impact of a transaction with the sign taken from its type

    Example:
        >>> normalized_amount(Transaction(..., transaction_type="WITHDRAWAL", amount=500))
        Decimal('-500')
    """
    return CASH_FLOW_DIRECTION[transaction.transaction_type] * abs(transaction.amount)


def is_external_flow(transaction: Transaction) -> bool:
    return transaction.transaction_type in EXTERNAL_FLOW_TYPES


def posted_only(transactions: Iterable[Transaction]) -> List[Transaction]:
    return [t for t in transactions if t.entry_status == EntryStatus.POSTED]


def external_flows(
    transactions: Iterable[Transaction],
    start_date: date,
    end_date: date
) -> List[Transaction]:
    """POSTED external flows dated in the half-open window (start_date, end_date]"""
    return [
        t for t in posted_only(transactions)
        if is_external_flow(t) and start_date < t.date <= end_date
    ]


def snapshot_totals(positions: Iterable[Position]) -> Dict[date, Decimal]:
    """Aggregate market value per snapshot date"""
    totals: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    for position in positions:
        totals[position.date] += position.market_value
    return dict(totals)


def latest_snapshot_date(totals: Dict[date, Decimal], day: date) -> Optional[date]:
    candidates = [d for d in totals if d <= day]
    return max(candidates) if candidates else None


def value_on_or_before(totals: Dict[date, Decimal], day: date) -> Decimal:
    """Value of the latest snapshot at or before day, zero when there is none"""
    snapshot_date = latest_snapshot_date(totals, day)
    if snapshot_date is None:
        return ZERO
    return totals[snapshot_date]


def ensure_account(records: Sequence, account_id: str, label: str) -> None:
    """Reject records that belong to another account"""
    for index, record in enumerate(records):
        if record.account_id != account_id:
            raise InvalidInputError(
                f"{label}[{index}] belongs to account {record.account_id!r}, expected {account_id!r}",
                field=f"{label}[{index}].account_id"
            )


def split_by_account(data: AccountData) -> Dict[str, AccountData]:
    """
    Partition a multi-account bundle

    Prices and securities are reference data and are shared by every
    partition.
    """
    positions: Dict[str, List[Position]] = defaultdict(list)
    transactions: Dict[str, List[Transaction]] = defaultdict(list)
    for position in data.positions:
        positions[position.account_id].append(position)
    for transaction in data.transactions:
        transactions[transaction.account_id].append(transaction)

    account_ids = sorted(set(positions) | set(transactions))
    return {
        account_id: AccountData.model_construct(
            positions=positions.get(account_id, []),
            transactions=transactions.get(account_id, []),
            prices=data.prices,
            securities=data.securities,
        )
        for account_id in account_ids
    }
