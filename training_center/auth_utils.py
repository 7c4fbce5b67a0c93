"""Authentication utilities: password hashing, login check and the seed admin."""

import logging
from typing import Optional

from passlib.context import CryptContext
from sqlmodel import Session, select

from training_center.models import User

logger = logging.getLogger(__name__)

# bcrypt with the "2b" ident; pinned bcrypt<4.1 keeps passlib compatible
PWD_CONTEXT = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=12,
)


def hash_password(plain_password: str) -> str:
    return PWD_CONTEXT.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return PWD_CONTEXT.verify(plain_password, password_hash)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def authenticate(session: Session, email: str, password: str) -> Optional[User]:
    """Return the active user with these credentials, or None."""
    user = session.exec(select(User).where(User.email == normalize_email(email))).first()
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def ensure_admin(session: Session, email: str, password: str) -> User:
    """Create the admin account on first startup; leave an existing one untouched."""
    email = normalize_email(email)
    user = session.exec(select(User).where(User.email == email)).first()
    if user is not None:
        return user
    user = User(name="Administrator", email=email, password_hash=hash_password(password), role="admin")
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Seeded admin account %s", email)
    return user
