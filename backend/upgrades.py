# backend/upgrades.py
"""Manual payment verification: submit -> pending -> approved | rejected.

Both guards on submission fail closed. The application-level checks give a
friendly message; the unique transaction_id column and the partial unique
index on pending requests reject whichever writer loses a race.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import entitlements
import models, schemas
from errors import Conflict, NotFound

logger = logging.getLogger("cvforge.upgrades")

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
STATUSES = (PENDING, APPROVED, REJECTED)

DUPLICATE_TRANSACTION = "This transaction ID has already been submitted. Please contact support if this is an error."
DUPLICATE_PENDING = "You already have a pending upgrade request. Please wait for admin approval."
ALREADY_REVIEWED = "This request has already been reviewed"
DEFAULT_REJECTION = "Payment verification failed"


def get_request(db: Session, request_id: str):
    return db.get(models.UpgradeRequest, request_id)

def _transaction_taken(db: Session, transaction_id: str) -> bool:
    return db.query(models.UpgradeRequest.id).filter(
        models.UpgradeRequest.transaction_id == transaction_id
    ).first() is not None

def _has_pending(db: Session, user_id: str) -> bool:
    return db.query(models.UpgradeRequest.id).filter(
        models.UpgradeRequest.user_id == user_id,
        models.UpgradeRequest.status == PENDING,
    ).first() is not None

def submit_request(db: Session, user_id: str, payload: schemas.UpgradeRequestCreate):
    """Stores a new pending request after the uniqueness guards pass."""
    if db.get(models.User, user_id) is None:
        raise NotFound("User not found")
    if _transaction_taken(db, payload.transaction_id):
        raise Conflict(DUPLICATE_TRANSACTION)
    if _has_pending(db, user_id):
        raise Conflict(DUPLICATE_PENDING)

    request = models.UpgradeRequest(
        user_id=user_id,
        user_email=payload.user_email,
        user_name=payload.user_name,
        transaction_id=payload.transaction_id,
        payment_method=payload.payment_method,
        payment_number=payload.payment_number,
        amount=payload.amount,
        status=PENDING,
        submitted_at=models.utcnow(),
        notes="",
    )
    db.add(request)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Upgrade submission for user %s lost a uniqueness race", user_id)
        # Tell the two constraints apart after the fact
        if _transaction_taken(db, payload.transaction_id):
            raise Conflict(DUPLICATE_TRANSACTION)
        raise Conflict(DUPLICATE_PENDING)
    db.refresh(request)
    logger.info("Upgrade request %s submitted by user %s via %s", request.id, user_id, request.payment_method)
    return request

def _load_pending(db: Session, request_id: str):
    request = get_request(db, request_id)
    if request is None:
        raise NotFound("Request not found")
    if request.status != PENDING:
        raise Conflict(ALREADY_REVIEWED)
    return request

def _close_request(db: Session, request_id: str, values: dict) -> bool:
    """Moves a request out of pending; False if someone else already did."""
    moved = (
        db.query(models.UpgradeRequest)
        .filter(models.UpgradeRequest.id == request_id, models.UpgradeRequest.status == PENDING)
        .update(values, synchronize_session=False)
    )
    return moved == 1

def approve_request(db: Session, request_id: str, reviewer: str):
    """
    Grants Pro to the requesting user and marks the request approved.
    Both writes share one commit; if either fails the request stays pending.
    """
    request = _load_pending(db, request_id)
    now = models.utcnow()

    granted = (
        db.query(models.User)
        .filter(models.User.id == request.user_id)
        .update(entitlements.grant_pro_fields(now), synchronize_session=False)
    )
    if not granted:
        db.rollback()
        logger.error("Cannot approve request %s: user %s does not exist", request_id, request.user_id)
        raise NotFound("User not found")

    closed = _close_request(db, request_id, {
        "status": APPROVED,
        "reviewed_at": now,
        "reviewed_by": reviewer,
    })
    if not closed:
        db.rollback()
        raise Conflict(ALREADY_REVIEWED)
    db.commit()
    db.refresh(request)
    logger.info("Upgrade request %s approved by %s; user %s is now Pro", request_id, reviewer, request.user_id)
    return request

def reject_request(db: Session, request_id: str, reviewer: str, reason: str = None):
    _load_pending(db, request_id)
    closed = _close_request(db, request_id, {
        "status": REJECTED,
        "reviewed_at": models.utcnow(),
        "reviewed_by": reviewer,
        "notes": reason or DEFAULT_REJECTION,
    })
    if not closed:
        db.rollback()
        raise Conflict(ALREADY_REVIEWED)
    db.commit()
    request = get_request(db, request_id)
    logger.info("Upgrade request %s rejected by %s", request_id, reviewer)
    return request

def list_requests(db: Session, status: str = None):
    """All requests, optionally by status, newest submission first."""
    query = db.query(models.UpgradeRequest)
    if status:
        query = query.filter(models.UpgradeRequest.status == status)
    requests = query.all()
    requests.sort(key=lambda r: models.as_utc(r.submitted_at), reverse=True)
    return requests
