"""
Engine policy constants

Tolerances and conventions are configurable rather than hard-coded. Values
come from PORTFOLIO_* environment variables (a .env file is honoured) and
fall back to the defaults below.
"""

import os
from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional
import logging

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from models.errors import InvalidInputError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PORTFOLIO_"


class EngineSettings(BaseModel):
    """Policy constants shared by every calculation"""
    model_config = ConfigDict(frozen=True)

    aum_tolerance: Decimal = Field(Decimal("0.01"), ge=0, description="Identity check tolerance (currency units)")
    annualization_basis: Literal["trading", "calendar"] = "trading"
    trading_days_per_year: int = Field(252, gt=0)
    calendar_days_per_year: int = Field(365, gt=0)
    risk_free_rate: float = 0.0
    max_daily_return: float = 0.50
    min_daily_return: float = -0.50
    completeness_window_days: int = Field(5, ge=0)
    quantity_tolerance: Decimal = Field(Decimal("0.001"), ge=0)

    @property
    def periods_per_year(self) -> int:
        if self.annualization_basis == "calendar":
            return self.calendar_days_per_year
        return self.trading_days_per_year

    @classmethod
    def from_env(cls, environ=None) -> "EngineSettings":
        """
        Build settings from environment variables

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            EngineSettings with every PORTFOLIO_<FIELD> override applied

        Example:
            PORTFOLIO_ANNUALIZATION_BASIS=calendar -> periods_per_year == 365
        """
        if environ is None:
            environ = os.environ

        overrides = {}
        for name in cls.model_fields:
            value = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if value is not None and value != "":
                overrides[name] = value.strip()

        try:
            return cls(**overrides)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error.get("loc", ()))
            raise InvalidInputError(
                f"Invalid setting {ENV_PREFIX}{field.upper()}: {error['msg']}",
                field=field
            ) from e


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Process-wide settings, read once"""
    load_dotenv()
    settings = EngineSettings.from_env()
    logger.debug(f"Engine settings loaded: {settings}")
    return settings


def resolve_settings(settings: Optional[EngineSettings] = None) -> EngineSettings:
    return settings if settings is not None else get_settings()
