"""
Market data API routes
Team-building coin list with point costs, and cached spot price lookups.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from prizepool.services.price_oracle import CoinGeckoClient, PriceFeedError, get_price_oracle

router = APIRouter()


@router.get("/coins")
async def get_top_coins(
    limit: int = Query(default=200, ge=1, le=250),
    oracle: CoinGeckoClient = Depends(get_price_oracle),
):
    """Top coins by market cap with the points each one costs in a team."""
    try:
        return await oracle.get_top_coins(limit)
    except PriceFeedError:
        raise HTTPException(status_code=503, detail="Market data unavailable")


@router.get("/prices")
async def get_prices(
    ids: str = Query(min_length=1, description="Comma separated coin ids"),
    oracle: CoinGeckoClient = Depends(get_price_oracle),
):
    """Latest USD prices. Coins without data are omitted."""
    coin_ids = [coin_id.strip() for coin_id in ids.split(",") if coin_id.strip()]
    if len(coin_ids) > 250:
        raise HTTPException(status_code=400, detail="At most 250 coin ids per request")

    try:
        return await oracle.get_current_prices(coin_ids)
    except PriceFeedError:
        raise HTTPException(status_code=503, detail="Price service unavailable")
