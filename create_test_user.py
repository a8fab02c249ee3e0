"""
Create test user (verified, password sign-in)
"""
import secrets

from subtracker.infrastructure.db.session import get_db
from subtracker.infrastructure.db.models import User
from subtracker.auth import hash_password

EMAIL = "test@example.com"
PASSWORD = "password123"

# Create user
db = next(get_db())

# Check if user exists
existing = db.query(User).filter(User.email == EMAIL).first()
if existing:
    print(f"User already exists: {EMAIL} (uid: {existing.uid})")
else:
    user = User(
        uid=secrets.token_hex(14),
        email=EMAIL,
        password_hash=hash_password(PASSWORD),
        provider="password",
        email_verified=True,
        is_disabled=False,
    )
    db.add(user)
    db.commit()
    print("Created user:")
    print(f"  Email: {EMAIL}")
    print(f"  Password: {PASSWORD}")
    print(f"  uid: {user.uid}")

db.close()
