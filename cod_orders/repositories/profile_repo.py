# cod_orders/repositories/profile_repo.py
import uuid

from sqlmodel import Session, select

from cod_orders.models.profile import Profile, Role


class ProfileRepository:
    """
    Data access layer for Profile.

    Responsibilities:
      - Resolve ids to profiles (sellers, riders, buyers)
      - No FastAPI, no HTTP, no business logic
    """

    def get_by_id(self, session: Session, profile_id: uuid.UUID) -> Profile | None:
        """Return a Profile by primary key, or None if not found."""
        return session.get(Profile, profile_id)

    def get_with_role(
        self,
        session: Session,
        profile_id: uuid.UUID,
        roles: frozenset[str] | set[str],
    ) -> Profile | None:
        """Return the profile only if its role is one of `roles`."""
        profile = session.get(Profile, profile_id)
        if profile is None or profile.role not in roles:
            return None
        return profile

    def is_admin(self, session: Session, profile_id: uuid.UUID) -> bool:
        profile = session.get(Profile, profile_id)
        return profile is not None and profile.role == Role.ADMIN

    def list_by_role(self, session: Session, role: str) -> list[Profile]:
        stmt = select(Profile).where(Profile.role == role).order_by(Profile.name)
        return session.exec(stmt).all()

    def create(self, session: Session, profile: Profile) -> Profile:
        """Insert a new Profile and return the persisted row."""
        session.add(profile)
        session.commit()
        session.refresh(profile)
        return profile
