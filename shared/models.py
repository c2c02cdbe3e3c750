from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any
from enum import Enum

class MarketTrend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"

class CoinSnapshot(BaseModel):
    """One asset as supplied by the market-data provider (camelCase keys)."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: Optional[str] = None
    symbol: Optional[str] = None
    price: Optional[float] = None
    price_change_24h: Optional[float] = Field(None, alias="priceChange24h")
    price_change_percent_24h: Optional[float] = Field(None, alias="priceChangePercent24h")
    volume_24h: Optional[float] = Field(None, alias="volume24h")
    market_cap: Optional[float] = Field(None, alias="marketCap")

    @property
    def change_pct(self) -> float:
        """24h change in percent, preferring the explicit percent field."""
        if self.price_change_percent_24h:
            return self.price_change_percent_24h
        return self.price_change_24h or 0.0

class MarketStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    total_market_cap: Optional[float] = Field(None, alias="totalMarketCap")
    previous_market_cap: Optional[float] = Field(None, alias="previousMarketCap")

class NewsHeadline(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    text: Optional[str] = None

    @property
    def headline(self) -> str:
        return self.title or self.text or ""

class MarketContext(BaseModel):
    """
    Lenient view over the plain market-context dict handed to the ensemble.
    Unknown keys are kept; malformed optional sections are dropped.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    top_coin: Optional[CoinSnapshot] = Field(None, alias="topCoin")
    coins: List[CoinSnapshot] = []
    top_coins: List[CoinSnapshot] = Field([], alias="topCoins")
    stats: Optional[MarketStats] = None
    recent_news: List[NewsHeadline] = Field([], alias="recentNews")
    social_trends: List[Dict[str, Any]] = Field([], alias="socialTrends")
    market_trend: Optional[MarketTrend] = Field(None, alias="marketTrend")

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> "MarketContext":
        if isinstance(raw, MarketContext):
            return raw
        if not isinstance(raw, dict):
            return cls()
        cleaned = dict(raw)
        for key in ("recentNews", "recent_news"):
            if key in cleaned and isinstance(cleaned[key], list):
                cleaned[key] = [
                    n if isinstance(n, dict) else {"text": str(n)} for n in cleaned[key]
                ]
        try:
            return cls.model_validate(cleaned)
        except ValueError:
            # keep whatever sections validate on their own
            ctx = cls()
            for field_name, field in cls.model_fields.items():
                key = field.alias or field_name
                if key not in cleaned:
                    continue
                try:
                    section = cls.model_validate({key: cleaned[key]})
                    ctx = ctx.model_copy(update={field_name: getattr(section, field_name)})
                except ValueError:
                    continue
            return ctx

    @property
    def primary_coin(self) -> Optional[CoinSnapshot]:
        if self.top_coin is not None:
            return self.top_coin
        if self.coins:
            return self.coins[0]
        return None

    def headlines(self, n: int = 3) -> List[str]:
        return [h.headline for h in self.recent_news[:n] if h.headline]
