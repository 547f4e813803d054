# cod_orders/core/auth.py
import uuid
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlmodel import Session

from cod_orders.core.config import get_settings
from cod_orders.database import get_session
from cod_orders.models.profile import Profile, Role
from cod_orders.repositories.profile_repo import ProfileRepository

settings = get_settings()
profile_repo = ProfileRepository()

# auto_error=False so a missing header reaches require_auth and gets a 401
# with our own message instead of FastAPI's 403.
bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Decode and verify a Supabase access token (JWT).

    Verification:
      - signature (HS256 using SUPABASE_JWT_SECRET)
      - expiration time (exp)
      - audience is NOT verified (Supabase 'aud' may vary)

    Raises:
        HTTPException(401): if token is invalid/expired.
    """
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.SUPABASE_JWT_ALG],
            options={"verify_aud": False},
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def _default_name_from_email(email: str) -> str:
    if "@" in email:
        return email.split("@", 1)[0]
    return email


def get_current_profile(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> Profile | None:
    """
    Resolve the caller's profile from a Supabase JWT.

    Flow:
      1. No Authorization header => return None.
      2. Decode JWT => extract 'sub' (auth user id) and 'email'.
      3. Look up the profile by id.
      4. If missing, auto-provision an 'individual' profile. Sellers,
         riders and admins are promoted outside this service.

    Raises:
        HTTPException(401): if token is malformed or missing required claims.
    """
    if credentials is None:
        return None

    payload = decode_access_token(credentials.credentials)
    sub = payload.get("sub")
    email = payload.get("email")

    if not sub or not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing sub/email",
        )

    try:
        sub_uuid = uuid.UUID(sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid sub in token",
        )

    profile = profile_repo.get_by_id(session, sub_uuid)
    if profile is None:
        profile = profile_repo.create(
            session,
            Profile(
                id=sub_uuid,
                email=email,
                name=_default_name_from_email(email),
                role=Role.INDIVIDUAL,
            ),
        )

    return profile


def require_auth(profile: Profile | None = Depends(get_current_profile)) -> Profile:
    """
    Enforce authentication.

    Raises:
        HTTPException(401): if there is no valid token.
    """
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return profile


def require_seller(profile: Profile = Depends(require_auth)) -> Profile:
    """
    Pharmacies and wholesalers only (order confirmation, rider requests).
    """
    if profile.role not in Role.SELLERS:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Pharmacy or wholesaler access required",
        )
    return profile


def require_rider(profile: Profile = Depends(require_auth)) -> Profile:
    if profile.role != Role.DELIVERY:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Delivery rider access required",
        )
    return profile


def require_admin(profile: Profile = Depends(require_auth)) -> Profile:
    """
    Enforce admin role.

    Raises:
        HTTPException(403): if role is not admin.
    """
    if profile.role != Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return profile
