"""
SQLAlchemy ORM models (accounts + local document store)
"""
from sqlalchemy import String, DateTime, Integer, TIMESTAMP, func, Boolean, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from subtracker.infrastructure.db.session import Base


class User(Base):
    """
    Local account used by LocalAuthGateway
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    # Opaque identity used in store paths: subscriptions/{uid}/...
    uid: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    # NULL for federated accounts (no local password)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # "password" | "google"
    provider: Mapped[str] = mapped_column(String(32), nullable=False, server_default="password")
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    is_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    last_seen_at: Mapped[DateTime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )


class AuthToken(Base):
    """
    One-time action codes: email verification and password reset
    """
    __tablename__ = "auth_tokens"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)  # VERIFY_EMAIL, RESET_PASSWORD
    expires_at: Mapped[DateTime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    used_at: Mapped[DateTime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class StoreDocument(Base):
    """
    Document node of the local subscription store.

    path = "{parent_path}/{key}", e.g. "subscriptions/<uid>/<push id>".
    value holds the document body exactly as a Realtime Database node would.
    """
    __tablename__ = "store_documents"

    path: Mapped[str] = mapped_column(String(512), primary_key=True)
    parent_path: Mapped[str] = mapped_column(String(512), nullable=False)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_store_documents_parent_key", "parent_path", "key"),
    )
