# Overview: Service-layer operations for accounts; password hashing, login checks and role grants.

"""
Account Service

Accounts are created from the CLI by an administrator and belong to exactly
one organization. Usernames and emails are unique inside that organization
only, so login looks the identifier up across all active organizations and
takes the first active match.

Passwords are stored as bcrypt hashes (cost 12).
"""

import re

import bcrypt

from ..extensions import db
from ..models import User, Role, UserRole, Organization, Site
from ..permissions import DEFAULT_ROLES
from canopy.time_utils import utcnow


BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8

# (pattern, message) pairs checked in order; first failure wins
PASSWORD_RULES = [
    (r"[A-Z]", "an uppercase letter"),
    (r"[a-z]", "a lowercase letter"),
    (r"\d", "a digit"),
    (r"[^A-Za-z0-9]", "a special character"),
]


class PasswordValidationError(Exception):
    """Raised when a password fails the strength policy."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    for pattern, requirement in PASSWORD_RULES:
        if not re.search(pattern, password):
            raise PasswordValidationError(f"Password must contain {requirement}")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def _active_org(org_id: int) -> Organization:
    org = db.session.get(Organization, org_id)
    if org is None:
        raise ValueError("Organization not found")
    if not org.is_active:
        raise ValueError("Organization is not active")
    return org


def create_user(
    username: str,
    email: str,
    password: str,
    org_id: int,
    site_id: int | None = None,
) -> User:
    """
    Create an account in org_id, optionally homed at site_id.

    Raises ValueError for an unknown or inactive organization, a site owned
    by another organization, or a username/email already taken in the org.
    Raises PasswordValidationError when the password is too weak.
    """
    _active_org(org_id)

    if site_id is not None:
        site = db.session.get(Site, site_id)
        if site is None or site.org_id != org_id:
            raise ValueError("Site does not belong to this organization")

    taken = db.session.query(User.id).filter(
        User.org_id == org_id,
        db.or_(User.username == username, User.email == email),
    ).first()
    if taken:
        raise ValueError("Username or email already exists in this organization")

    user = User(
        org_id=org_id,
        site_id=site_id,
        username=username,
        email=email,
        password_hash=hash_password(password),
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """
    Check a username-or-email and password.

    Returns None for unknown, inactive or wrong-password accounts and for
    accounts whose organization is deactivated; callers log the failure.
    """
    candidates = (
        db.session.query(User)
        .join(Organization, Organization.id == User.org_id)
        .filter(
            db.or_(User.username == identifier, User.email == identifier),
            User.is_active.is_(True),
            Organization.is_active.is_(True),
        )
        .order_by(User.id)
        .all()
    )

    for user in candidates:
        if verify_password(password, user.password_hash):
            user.last_login_at = utcnow()
            db.session.commit()
            return user
    return None


def create_default_roles(org_id: int) -> int:
    """Create any missing default roles for org_id; returns how many were added."""
    existing = {
        name for (name,) in db.session.query(Role.name).filter_by(org_id=org_id)
    }
    added = 0
    for name, description in DEFAULT_ROLES:
        if name in existing:
            continue
        db.session.add(Role(org_id=org_id, name=name, description=description))
        added += 1

    db.session.commit()
    return added


def assign_role(user_id: int, role_name: str) -> UserRole:
    """Grant one of the user's own organization roles. Idempotent."""
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")

    role = db.session.query(Role).filter_by(org_id=user.org_id, name=role_name).first()
    if role is None:
        raise ValueError(f"Role {role_name} not found")

    grant = db.session.query(UserRole).filter_by(user_id=user.id, role_id=role.id).first()
    if grant is None:
        grant = UserRole(user_id=user.id, role_id=role.id)
        db.session.add(grant)
        db.session.commit()
    return grant
