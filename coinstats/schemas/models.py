from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CoinQuote(BaseModel):
    """One coin's entry in a CoinGecko /simple/price response."""

    # strict: numeric strings from the provider are rejected
    usd: float = Field(ge=0, allow_inf_nan=False, strict=True)
    usd_market_cap: float = Field(ge=0, allow_inf_nan=False, strict=True)
    usd_24h_change: float = Field(allow_inf_nan=False, strict=True)

    model_config = ConfigDict(extra="ignore")


class CoinSample(BaseModel):
    coin: str = Field(min_length=1)

    price_usd: float = Field(ge=0, allow_inf_nan=False)
    market_cap_usd: float = Field(ge=0, allow_inf_nan=False)
    change_24h: float = Field(allow_inf_nan=False)

    captured_at: datetime

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("captured_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive timestamps; everything stored is UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @classmethod
    def from_quote(cls, coin: str, quote: CoinQuote, captured_at: datetime):
        return cls(
            coin=coin,
            price_usd=quote.usd,
            market_cap_usd=quote.usd_market_cap,
            change_24h=quote.usd_24h_change,
            captured_at=captured_at,
        )
