from pydantic import BaseModel, Field
from typing import Literal, Optional

TradeHint = Literal["BUY_YES_PM_BUY_NO_KALSHI", "BUY_YES_KALSHI_BUY_NO_PM", "NONE"]


class PolymarketQuote(BaseModel):
    marketId: Optional[str] = None
    yesPrice: float = Field(..., description="YES price as a probability (0..1).")
    noPrice: float
    url: str
    liquidityUSD: float


class KalshiQuote(BaseModel):
    ticker: Optional[str] = None
    yesPrice: float = Field(..., description="YES price as a probability (0..1).")
    noPrice: float
    url: str
    liquidityUSD: float


class MatchedEvent(BaseModel):
    """
    One event listed on both Polymarket and Kalshi with its price spread.
    """
    id: str
    title: Optional[str] = None
    category: str
    endDateISO: Optional[str] = None
    polymarket: PolymarketQuote
    kalshi: KalshiQuote
    spreadPercent: float = Field(..., description="Price difference in cents.")
    hint: TradeHint
