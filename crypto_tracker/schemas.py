from enum import Enum
from pydantic import BaseModel, ConfigDict, Field

class TimeRange(str, Enum):
    H24 = "24h"
    D7 = "7d"
    D30 = "30d"
    Y1 = "1y"

# market_chart `days` parameter per selector
RANGE_DAYS: dict[str, int] = {
    TimeRange.H24.value: 1,
    TimeRange.D7.value: 7,
    TimeRange.D30.value: 30,
    TimeRange.Y1.value: 365,
}

def days_for_range(time_range: str | None) -> int:
    """Map a time-range selector to a day count; unknown selectors mean one day."""
    return RANGE_DAYS.get(time_range or "", 1)

class AssetQuote(BaseModel):
    id: str
    symbol: str
    name: str
    current_price: float
    market_cap: float | None = None
    total_volume: float | None = None
    # [timestamp_ms, price], ascending
    historical_data: list[tuple[int, float]] = Field(default_factory=list)

class FetchStatus(BaseModel):
    id: str
    stage: str  # "price" | "history"
    ok: bool
    error: str | None = None

class FetchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    crypto_data: list[AssetQuote] = Field(default_factory=list, alias="cryptoData")
    statuses: list[FetchStatus] = Field(default_factory=list)
