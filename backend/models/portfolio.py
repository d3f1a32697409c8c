from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from models.errors import InvalidInputError


class TransactionType(str, Enum):
    """Transaction types recorded against an account"""
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"
    DEPOSIT = "DEPOSIT"
    CONTRIBUTION = "CONTRIBUTION"
    TRANSFER_IN = "TRANSFER_IN"
    WITHDRAWAL = "WITHDRAWAL"
    DISTRIBUTION = "DISTRIBUTION"
    TRANSFER_OUT = "TRANSFER_OUT"
    FEE = "FEE"
    TAX = "TAX"


class EntryStatus(str, Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"


class AssetClass(str, Enum):
    EQUITY = "EQUITY"
    FIXED_INCOME = "FIXED_INCOME"
    CASH = "CASH"
    REAL_ESTATE = "REAL_ESTATE"
    ALTERNATIVES = "ALTERNATIVES"
    COMMODITIES = "COMMODITIES"
    FOREIGN_EXCHANGE = "FOREIGN_EXCHANGE"
    UNKNOWN = "UNKNOWN"


def _upper(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


class Position(BaseModel):
    """Point-in-time holding snapshot for one security (or cash)"""
    model_config = ConfigDict(frozen=True)

    account_id: str
    date: date
    security_id: Optional[str] = None  # None for cash
    quantity: Optional[Decimal] = None
    average_cost: Optional[Decimal] = None
    market_value: Decimal


class Transaction(BaseModel):
    """Account transaction"""
    model_config = ConfigDict(frozen=True)

    account_id: str
    date: date
    transaction_type: TransactionType
    security_id: Optional[str] = None
    quantity: Optional[Decimal] = None
    price: Optional[Decimal] = None
    amount: Decimal
    entry_status: EntryStatus = EntryStatus.POSTED

    @field_validator("transaction_type", "entry_status", mode="before")
    @classmethod
    def _normalize_enum(cls, value):
        return _upper(value)


class Price(BaseModel):
    """Daily close for a security"""
    model_config = ConfigDict(frozen=True)

    security_id: str
    date: date
    close: Decimal = Field(..., ge=0)


class Security(BaseModel):
    """Static security reference data"""
    model_config = ConfigDict(frozen=True)

    id: str
    symbol: str
    name: str
    asset_class: AssetClass = AssetClass.UNKNOWN
    currency: str = "USD"

    @field_validator("asset_class", mode="before")
    @classmethod
    def _normalize_asset_class(cls, value):
        return _upper(value)


RecordT = TypeVar("RecordT", bound=BaseModel)


def _format_loc(loc) -> str:
    return ".".join(str(part) for part in loc)


def coerce_records(
    records: Optional[Sequence[Any]],
    model: Type[RecordT],
    label: str
) -> List[RecordT]:
    """
    Validate a sequence of records into model instances

    Accepts model instances or plain mappings. The first invalid record
    aborts with an InvalidInputError naming the offending field.
    """
    if records is None:
        return []
    if isinstance(records, (str, bytes, Mapping)):
        raise InvalidInputError(f"{label} must be a sequence of records", field=label)

    validated = []
    for index, record in enumerate(records):
        if isinstance(record, model):
            validated.append(record)
            continue
        try:
            validated.append(model.model_validate(record))
        except ValidationError as e:
            error = e.errors()[0]
            field = f"{label}[{index}]"
            if error.get("loc"):
                field = f"{field}.{_format_loc(error['loc'])}"
            raise InvalidInputError(f"Invalid {field}: {error['msg']}", field=field) from e
    return validated


_DATE_ADAPTER = TypeAdapter(date)


def coerce_date(value: Union[date, datetime, str], label: str) -> date:
    """Normalize a date, datetime or ISO string to a date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return _DATE_ADAPTER.validate_python(value)
    except ValidationError as e:
        raise InvalidInputError(f"Invalid {label}: {value!r}", field=label) from e


class AccountData(BaseModel):
    """Input bundle supplied by the data-access layer"""
    model_config = ConfigDict(frozen=True)

    positions: List[Position] = []
    transactions: List[Transaction] = []
    prices: List[Price] = []
    securities: List[Security] = []

    @classmethod
    def coerce(cls, data: Union["AccountData", Mapping[str, Any], None]) -> "AccountData":
        """Build an AccountData from a mapping, validating every record"""
        if isinstance(data, cls):
            return data
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise InvalidInputError("data must be a mapping of record lists", field="data")

        return cls.model_construct(
            positions=coerce_records(data.get("positions"), Position, "positions"),
            transactions=coerce_records(data.get("transactions"), Transaction, "transactions"),
            prices=coerce_records(data.get("prices"), Price, "prices"),
            securities=coerce_records(data.get("securities"), Security, "securities"),
        )
