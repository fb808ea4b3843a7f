"""
Principal directory.

The authentication gateway is the source of truth for who a principal is;
this table keeps the latest id, email, display name and role it supplied so
other modules can denormalize names and contacts without calling out.
"""
import structlog
from sqlalchemy import func, select

from dugout.models import UserProfile, UserRole, db, utcnow

logger = structlog.get_logger(__name__)


def normalize_contact(contact: str | None) -> str | None:
    """Trim and lower-case an email contact; ``None`` for blank input."""
    if contact is None:
        return None
    contact = contact.strip().lower()
    return contact or None


def get_profile(principal_id: str) -> UserProfile | None:
    return db.session.get(UserProfile, principal_id)


def find_by_contact(contact: str) -> UserProfile | None:
    contact = normalize_contact(contact)
    if not contact:
        return None
    return db.session.execute(
        select(UserProfile)
        .where(func.lower(UserProfile.email) == contact)
        .order_by(UserProfile.created_at.asc())
        .limit(1)
    ).scalar_one_or_none()


def upsert_profile(
    principal_id: str,
    email: str | None = None,
    display_name: str | None = None,
    role: UserRole | str | None = None,
    commit: bool = True,
) -> UserProfile:
    """
    Create or refresh a principal's profile.

    Only provided fields are overwritten so a request carrying fewer headers
    does not erase what an earlier one supplied.

    Args:
        principal_id: Gateway-issued principal id
        email: Contact email (stored lower-cased)
        display_name: Human-readable name
        role: UserRole or its string value
        commit: Commit the session (False when called inside a larger unit of work)

    Returns:
        UserProfile: The stored profile
    """
    if not principal_id:
        raise ValueError("principal_id is required")
    if isinstance(role, str):
        role = UserRole(role)

    profile = db.session.get(UserProfile, principal_id)
    created = profile is None
    if created:
        profile = UserProfile(id=principal_id, role=role or UserRole.ATHLETE)
        db.session.add(profile)

    changed = created
    email = normalize_contact(email)
    if email and profile.email != email:
        profile.email = email
        changed = True
    display_name = (display_name or "").strip()[:255]
    if display_name and profile.display_name != display_name:
        profile.display_name = display_name
        changed = True
    if role and profile.role != role:
        profile.role = role
        changed = True

    if changed:
        profile.updated_at = utcnow()
        if commit:
            db.session.commit()
        if created:
            logger.info("profile_created", principal_id=principal_id)
    return profile


def display_name_for(principal_id: str, fallback: str | None = None) -> str:
    """Best available display name for a principal."""
    profile = get_profile(principal_id)
    if profile is not None:
        return profile.name
    return fallback or principal_id


def contact_for(principal_id: str) -> str | None:
    profile = get_profile(principal_id)
    return profile.email if profile is not None else None
