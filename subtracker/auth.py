import re

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from subtracker.infrastructure.db.models import User

# pbkdf2_sha256 - primary (no native deps, works on Windows)
# bcrypt - legacy support for existing hashes
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated=["bcrypt"])

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)

def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()

def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))

def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == normalize_email(email)).first()

def get_user_by_uid(db: Session, uid: str) -> User | None:
    return db.query(User).filter(User.uid == uid).first()
