# cod_orders/services/pricing.py
"""
Delivery pricing and distance helpers.

Pure functions, no I/O. Fees are tiered by distance: each tier covers
(min_km, max_km] and distances past the last tier pay the last tier's
price rather than being refused.
"""
import math
from dataclasses import dataclass

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class PriceTier:
    min_km: float
    max_km: float
    price: float

    def covers(self, km: float) -> bool:
        return self.min_km < km <= self.max_km


class TierTable:
    """
    Ordered, contiguous distance bands.

    Raises ValueError if bands are empty, overlap, leave gaps or get
    cheaper as distance grows.
    """

    def __init__(self, tiers: list[PriceTier]):
        if not tiers:
            raise ValueError("tier table cannot be empty")
        for prev, cur in zip(tiers, tiers[1:]):
            if cur.min_km != prev.max_km:
                raise ValueError(
                    f"tiers must be contiguous: {prev.max_km} -> {cur.min_km}"
                )
            if cur.price < prev.price:
                raise ValueError("tier prices must not decrease with distance")
        for tier in tiers:
            if tier.max_km <= tier.min_km:
                raise ValueError(f"empty tier ({tier.min_km}, {tier.max_km}]")
        self.tiers = tuple(tiers)

    @property
    def max_km(self) -> float:
        return self.tiers[-1].max_km

    def fee_for(self, km: float) -> float:
        if km <= 0:
            return self.tiers[0].price
        if km > self.max_km:
            return self.tiers[-1].price
        for tier in self.tiers:
            if tier.covers(km):
                return tier.price
        return self.tiers[0].price


# Dodoma pilot, TZS
DEFAULT_TIERS = TierTable(
    [
        PriceTier(0, 0.5, 1000),
        PriceTier(0.5, 2, 1000),
        PriceTier(2, 4, 1500),
        PriceTier(4, 6, 2000),
        PriceTier(6, 8, 2500),
        PriceTier(8, 10, 3000),
        PriceTier(10, 15, 4000),
        PriceTier(15, 20, 5000),
    ]
)

MAX_DELIVERY_DISTANCE_KM = DEFAULT_TIERS.max_km

RIDER_SHARE_RATE = 0.75
PLATFORM_SHARE_RATE = 0.25


def fee_for_distance(km: float, table: TierTable = DEFAULT_TIERS) -> float:
    """Delivery fee for a trip of `km` kilometres."""
    return table.fee_for(km)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two WGS84 points."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def rider_share(fee: float, rate: float = RIDER_SHARE_RATE) -> float:
    return float(round(fee * rate))


def platform_share(fee: float, rate: float = PLATFORM_SHARE_RATE) -> float:
    return float(round(fee * rate))


def fee_breakdown(
    km: float,
    table: TierTable = DEFAULT_TIERS,
    rider_rate: float = RIDER_SHARE_RATE,
    platform_rate: float = PLATFORM_SHARE_RATE,
) -> dict[str, float]:
    """Total fee plus the rider / platform split for a distance."""
    total = fee_for_distance(km, table)
    return {
        "total_fee": total,
        "rider_share": rider_share(total, rider_rate),
        "platform_share": platform_share(total, platform_rate),
        "distance_km": round(km, 2),
    }
