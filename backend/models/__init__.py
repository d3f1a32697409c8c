from .errors import CalculationError, InvalidInputError, NumericalInstabilityError
from .portfolio import (
    AccountData,
    AssetClass,
    EntryStatus,
    Position,
    Price,
    Security,
    Transaction,
    TransactionType
)
from .analytics_models import (
    AccountReport,
    AUMResult,
    DailyReturn,
    Holding,
    HoldingsResult,
    QCReport,
    QCResult,
    QCStatus,
    TWRResult
)

__all__ = [
    "CalculationError",
    "InvalidInputError",
    "NumericalInstabilityError",
    "AccountData",
    "AssetClass",
    "EntryStatus",
    "Position",
    "Price",
    "Security",
    "Transaction",
    "TransactionType",
    "AccountReport",
    "AUMResult",
    "DailyReturn",
    "Holding",
    "HoldingsResult",
    "QCReport",
    "QCResult",
    "QCStatus",
    "TWRResult"
]
