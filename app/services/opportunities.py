# app/services/opportunities.py
"""
Free arbitrage opportunity feed.

Rows of verified_arbitrage_opportunities are written by the external
matching pipeline; this module only reads the widest spreads and maps
each row into a MatchedEvent with market links and a trade hint.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from app.api.models.opportunity import KalshiQuote, MatchedEvent, PolymarketQuote
from app.services.store import DatasetStore, get_store

logger = logging.getLogger(__name__)

OPPORTUNITY_LIMIT = 50
DEFAULT_CATEGORY = "Politics"
DEFAULT_LIQUIDITY_USD = 10000
POLYMARKET_MARKET_URL = "https://polymarket.com/market"
KALSHI_MARKET_URL = "https://kalshi.com/markets"

HINT_BUY_YES_POLYMARKET = "BUY_YES_PM_BUY_NO_KALSHI"
HINT_BUY_YES_KALSHI = "BUY_YES_KALSHI_BUY_NO_PM"
HINT_NONE = "NONE"


def slugify(text: str) -> str:
    """Lowercase, drop punctuation and join words with single hyphens."""
    slug = re.sub(r"[^\w\s-]", "", text.lower(), flags=re.ASCII)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def polymarket_url(question: Optional[str], slug: Optional[str]) -> str:
    return f"{POLYMARKET_MARKET_URL}/{slugify(question or slug or '')}"


def kalshi_url(ticker: Optional[str]) -> str:
    """
    Build the Kalshi market URL from a contract ticker.

    KXPRES-28-DJT -> /markets/kxpres/pres/kxpres-28
    """
    ticker = ticker or ""
    segments = ticker.split("-")
    if len(segments) > 1:
        base_ticker = segments[0]
        final_ticker = f"{segments[0]}-{segments[1]}"
    else:
        base_ticker = ticker
        final_ticker = ticker
    short_slug = re.sub(r"^kx", "", base_ticker, flags=re.IGNORECASE).lower()
    return f"{KALSHI_MARKET_URL}/{base_ticker.lower()}/{short_slug}/{final_ticker.lower()}"


def trade_hint(poly_yes_price: float, kalshi_yes_price: float) -> str:
    """Buy YES on the cheaper venue and NO on the other."""
    if poly_yes_price < kalshi_yes_price:
        return HINT_BUY_YES_POLYMARKET
    if kalshi_yes_price < poly_yes_price:
        return HINT_BUY_YES_KALSHI
    return HINT_NONE


def transform_opportunity(row: Dict[str, Any]) -> MatchedEvent:
    """Map a verified opportunity row into a MatchedEvent."""
    poly_yes_price = float(row["poly_price_cents"]) / 100
    kalshi_yes_price = float(row["kalshi_price_cents"]) / 100

    return MatchedEvent(
        id=f"{row.get('poly_slug')}-{row.get('kalshi_ticker')}",
        title=row.get("polymarket_question"),
        category=DEFAULT_CATEGORY,
        endDateISO=row.get("poly_end_date") or row.get("kalshi_expiration_time"),
        polymarket=PolymarketQuote(
            marketId=row.get("poly_slug"),
            yesPrice=poly_yes_price,
            noPrice=1 - poly_yes_price,
            url=polymarket_url(row.get("polymarket_question"), row.get("poly_slug")),
            liquidityUSD=DEFAULT_LIQUIDITY_USD,
        ),
        kalshi=KalshiQuote(
            ticker=row.get("kalshi_ticker"),
            yesPrice=kalshi_yes_price,
            noPrice=1 - kalshi_yes_price,
            url=kalshi_url(row.get("kalshi_ticker")),
            liquidityUSD=DEFAULT_LIQUIDITY_USD,
        ),
        spreadPercent=float(row["price_diff_cents"]),
        hint=trade_hint(poly_yes_price, kalshi_yes_price),
    )


def fetch_opportunities(
    store: Optional[DatasetStore] = None,
    limit: int = OPPORTUNITY_LIMIT,
) -> List[MatchedEvent]:
    """
    Get the current opportunities, widest spread first.

    Raises:
        StoreError: If the store cannot be read
    """
    store = store or get_store()
    rows = store.list_opportunities(limit=limit)
    logger.debug(f"Fetched {len(rows)} arbitrage opportunities")
    return [transform_opportunity(row) for row in rows]
