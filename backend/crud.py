# backend/crud.py
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import codec
import entitlements
import models, schemas
from errors import EntitlementDenied, Forbidden, NotFound

logger = logging.getLogger("cvforge.crud")


# --- Users ---

def get_user(db: Session, user_id: str):
    """Fetches a user from the database by their identity-provider id."""
    return db.get(models.User, user_id)

def require_user(db: Session, user_id: str):
    user = get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return user

def sync_user(db: Session, user_id: str, email: str, display_name: str = None, admin_email: str = None):
    """
    Creates the user on first sign-in, otherwise refreshes lastLogin.
    Returns (user, created).
    """
    now = models.utcnow()
    user = get_user(db, user_id)
    if user is not None:
        user.last_login = now
        db.commit()
        db.refresh(user)
        return user, False

    is_admin = bool(admin_email) and email.lower() == admin_email.lower()
    user = models.User(
        id=user_id,
        email=email.lower(),
        display_name=display_name or "User",
        tokens=entitlements.PRO_TOKEN_SENTINEL if is_admin else entitlements.FREE_SIGNUP_TOKENS,
        is_pro=is_admin,
        pro_since=now if is_admin else None,
        role="admin" if is_admin else "user",
        last_login=now,
        created_at=now,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent sign-in created the row first
        db.rollback()
        return sync_user(db, user_id, email, display_name, admin_email)
    db.refresh(user)
    logger.info("Created user %s (role=%s)", user_id, user.role)
    return user, True

def list_users(db: Session):
    return db.query(models.User).order_by(models.User.created_at.desc()).all()

def add_tokens(db: Session, user_id: str, amount: int):
    """Adds free-generation credits to a user."""
    updated = (
        db.query(models.User)
        .filter(models.User.id == user_id)
        .update({models.User.tokens: models.User.tokens + amount}, synchronize_session=False)
    )
    if not updated:
        db.rollback()
        raise NotFound("User not found")
    db.commit()
    return get_user(db, user_id)

def charge_generation(db: Session, user: models.User):
    """
    Records one generation for the user, charging a token unless they are Pro.
    The decrement is conditional on the stored balance so a charge happens at most once.
    """
    decision = entitlements.can_consume_generation(user)
    if not decision.allowed:
        raise EntitlementDenied(decision.reason, "Insufficient tokens. Upgrade to Pro or purchase tokens.")

    now = models.utcnow()
    query = db.query(models.User).filter(models.User.id == user.id)
    values = {
        models.User.total_generations: models.User.total_generations + 1,
        models.User.last_generated: now,
    }
    if decision.token_charge:
        query = query.filter(models.User.is_pro.is_(False), models.User.tokens >= decision.token_charge)
        values[models.User.tokens] = models.User.tokens - decision.token_charge
    if not query.update(values, synchronize_session=False):
        db.rollback()
        raise EntitlementDenied(entitlements.NO_TOKENS, "Insufficient tokens. Upgrade to Pro or purchase tokens.")
    db.commit()
    db.refresh(user)
    return user


# --- CV records ---

def resolve_html(record: models.CVRecord):
    """
    Returns the decompressed HTML for a record, falling back to the raw column
    when the token is malformed. None means no content could be recovered.
    """
    stored = record.compressed_html or record.html_content or ""
    if not stored:
        return None
    try:
        return codec.decompress(stored)
    except codec.DecompressionError as e:
        logger.warning("Decompression failed for CV %s, using raw content: %s", record.id, e)
        return record.html_content or None

def _owned_cv(db: Session, cv_id: str, requesting_user_id: str):
    record = db.get(models.CVRecord, cv_id)
    if record is None:
        raise NotFound("CV not found")
    if record.user_id != requesting_user_id:
        raise Forbidden("Unauthorized")
    return record

def _touch_cv(db: Session, record: models.CVRecord):
    """Bumps download stats; failures are logged and never fail the read."""
    try:
        (
            db.query(models.CVRecord)
            .filter(models.CVRecord.id == record.id)
            .update(
                {
                    models.CVRecord.download_count: models.CVRecord.download_count + 1,
                    models.CVRecord.last_accessed: models.utcnow(),
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Could not update download stats for CV %s: %s", record.id, e)

def create_cv(db: Session, user_id: str, payload: schemas.CVCreate):
    """Compresses and stores a CV for a Pro user, bumping their savedCVs counter."""
    user = require_user(db, user_id)
    decision = entitlements.can_save_cv(user)
    if not decision.allowed:
        raise EntitlementDenied(decision.reason, "Only Pro users can save CVs")

    now = models.utcnow()
    compressed = codec.compress(payload.html_content)
    record = models.CVRecord(
        user_id=user_id,
        title=payload.title,
        compressed_html=compressed,
        original_size=len(payload.html_content.encode("utf-8", "surrogatepass")),
        compressed_size=len(compressed),
        industry=payload.industry,
        template=payload.template,
        created_at=now,
        last_accessed=now,
        download_count=0,
        is_public=False,
        form_data=payload.form_data or {},
    )
    db.add(record)
    (
        db.query(models.User)
        .filter(models.User.id == user_id)
        .update(
            {models.User.saved_cvs: models.User.saved_cvs + 1, models.User.last_saved_cv: now},
            synchronize_session=False,
        )
    )
    db.commit()
    db.refresh(record)
    logger.info("Saved CV %s for user %s (%s -> %s bytes)", record.id, user_id, record.original_size, record.compressed_size)
    return record

def get_cv(db: Session, cv_id: str, requesting_user_id: str):
    """Fetches an owned CV with its HTML decompressed. Returns (record, html)."""
    record = _owned_cv(db, cv_id, requesting_user_id)
    html = resolve_html(record)
    _touch_cv(db, record)
    return record, html

def get_user_cvs(db: Session, user_id: str):
    """Fetches all CVs for a user, newest first."""
    records = db.query(models.CVRecord).filter(models.CVRecord.user_id == user_id).all()
    # Sorted here rather than in SQL so the listing needs no composite index
    records.sort(key=lambda r: models.as_utc(r.created_at), reverse=True)
    return records

def delete_cv(db: Session, cv_id: str, requesting_user_id: str):
    """Deletes an owned CV and decrements the owner's savedCVs in the same commit."""
    record = _owned_cv(db, cv_id, requesting_user_id)
    db.delete(record)
    decremented = (
        db.query(models.User)
        .filter(models.User.id == requesting_user_id, models.User.saved_cvs > 0)
        .update({models.User.saved_cvs: models.User.saved_cvs - 1}, synchronize_session=False)
    )
    db.commit()
    if not decremented:
        logger.warning("savedCVs counter drift: user %s had no count to decrement after deleting CV %s", requesting_user_id, cv_id)
    logger.info("Deleted CV %s for user %s", cv_id, requesting_user_id)
    return True

def download_cv(db: Session, cv_id: str):
    """Fetches a CV by id alone; the link acts as the access token."""
    record = db.get(models.CVRecord, cv_id)
    if record is None:
        raise NotFound("CV not found")
    html = resolve_html(record)
    _touch_cv(db, record)
    return record, html
