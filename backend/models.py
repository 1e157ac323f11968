# backend/models.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, ForeignKey, Text, Boolean, DateTime, JSON, Index, text
from sqlalchemy.orm import relationship, declarative_base

# This is the base class our models will inherit from
Base = declarative_base()


def new_id():
    return uuid.uuid4().hex


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands timestamps back naive; treat those as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class User(Base):
    __tablename__ = "users"

    # Opaque id handed to us by the identity provider
    id = Column(String(128), primary_key=True, index=True)
    email = Column(String(254), index=True, nullable=False)
    display_name = Column(String(100), nullable=False, default="User")
    tokens = Column(Integer, nullable=False, default=0)
    is_pro = Column(Boolean, nullable=False, default=False)
    pro_since = Column(DateTime(timezone=True), nullable=True)
    role = Column(String(10), nullable=False, default="user")
    saved_cvs = Column(Integer, nullable=False, default=0)
    total_generations = Column(Integer, nullable=False, default=0)
    last_login = Column(DateTime(timezone=True), nullable=True)
    last_saved_cv = Column(DateTime(timezone=True), nullable=True)
    last_generated = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # No cascade: deleting users is out of scope and requests must outlive CVs
    cvs = relationship("CVRecord", back_populates="owner")
    upgrade_requests = relationship("UpgradeRequest", back_populates="user")


class CVRecord(Base):
    __tablename__ = "cv_records"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), ForeignKey("users.id"), index=True, nullable=False)
    title = Column(String(200), nullable=False, default="My CV")
    compressed_html = Column(Text, nullable=False)
    # Legacy rows may carry plain HTML; used as the decompression fallback
    html_content = Column(Text, nullable=True)
    original_size = Column(Integer, nullable=False, default=0)
    compressed_size = Column(Integer, nullable=False, default=0)
    industry = Column(String(50), nullable=False, default="general")
    template = Column(String(50), nullable=False, default="modern")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_accessed = Column(DateTime(timezone=True), nullable=True, default=utcnow)
    download_count = Column(Integer, nullable=False, default=0)
    is_public = Column(Boolean, nullable=False, default=False)
    form_data = Column(JSON, nullable=True)

    owner = relationship("User", back_populates="cvs")


class UpgradeRequest(Base):
    __tablename__ = "upgrade_requests"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), ForeignKey("users.id"), index=True, nullable=False)
    user_email = Column(String(254), nullable=False)
    user_name = Column(String(100), nullable=False, default="User")
    transaction_id = Column(String(100), unique=True, nullable=False)
    payment_method = Column(String(20), nullable=False)
    payment_number = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(String(10), nullable=False, default="pending", index=True)
    submitted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    reviewed_by = Column(String(254), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=False, default="")

    user = relationship("User", back_populates="upgrade_requests")

    __table_args__ = (
        # At most one pending request per user, enforced by the database
        Index(
            "uq_upgrade_requests_user_pending",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )
