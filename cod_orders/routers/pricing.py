# cod_orders/routers/pricing.py
from fastapi import APIRouter, HTTPException, Query, status

from cod_orders.core.config import get_settings
from cod_orders.schemas.delivery import FeeQuoteRead
from cod_orders.services.pricing import fee_breakdown, haversine_distance

router = APIRouter(prefix="/delivery", tags=["Delivery pricing"])

settings = get_settings()


@router.get(
    "/quote",
    response_model=FeeQuoteRead,
)
def quote_delivery_fee(
    distance_km: float | None = Query(default=None, ge=0),
    from_lat: float | None = Query(default=None, ge=-90, le=90),
    from_lon: float | None = Query(default=None, ge=-180, le=180),
    to_lat: float | None = Query(default=None, ge=-90, le=90),
    to_lon: float | None = Query(default=None, ge=-180, le=180),
):
    """
    Delivery fee for a distance, or for two coordinate pairs.

    Public: buyers see the fee before signing in.
    """
    if distance_km is None:
        coords = (from_lat, from_lon, to_lat, to_lon)
        if any(c is None for c in coords):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Provide distance_km or from_lat/from_lon/to_lat/to_lon",
            )
        distance_km = haversine_distance(from_lat, from_lon, to_lat, to_lon)

    breakdown = fee_breakdown(
        distance_km,
        rider_rate=settings.RIDER_SHARE_RATE,
        platform_rate=settings.PLATFORM_SHARE_RATE,
    )
    return FeeQuoteRead(**breakdown, currency=settings.CURRENCY)
