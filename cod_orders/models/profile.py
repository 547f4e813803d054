# cod_orders/models/profile.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class Role:
    """Application roles stored on profiles.role."""

    INDIVIDUAL = "individual"
    PHARMACY = "pharmacy"
    WHOLESALE = "wholesale"
    DELIVERY = "delivery"
    ADMIN = "admin"

    SELLERS = frozenset({PHARMACY, WHOLESALE})


class Profile(SQLModel, table=True):
    """
    Persistent profile for every party in the COD flow.

    Identity:
      - id: MUST match Supabase auth.users.id (UUID from JWT "sub")

    Role:
      - individual | pharmacy | wholesale | delivery | admin

    Sellers (pharmacy/wholesale) carry the address riders pick up from and
    optional coordinates used for distance-based delivery fees.
    """

    __tablename__ = "profiles"

    id: uuid.UUID = Field(
        primary_key=True,
        index=True,
        description="Matches Supabase auth.users.id",
    )

    email: str = Field(
        unique=True,
        index=True,
        description="Email from Supabase auth.users",
    )

    name: str = Field(
        max_length=100,
        description="Display name; first part of email by default",
    )

    role: str = Field(
        default=Role.INDIVIDUAL,
        index=True,
        description="Application role",
    )

    phone: str | None = None
    address: str | None = None

    # pharmacy_name / business_name in the storefront
    business_name: str | None = None

    latitude: float | None = None
    longitude: float | None = None

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )

    @property
    def display_name(self) -> str:
        return self.business_name or self.name

    @property
    def is_seller(self) -> bool:
        return self.role in Role.SELLERS
