# backend/entitlements.py
"""Pure allow/deny decisions over a server-held user snapshot.

Nothing here touches the database; callers load the user row, ask for a
decision and apply the resulting counter changes themselves.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

FREE_SIGNUP_TOKENS = 5
# Display value only, never decremented: is_pro is the sole authority
PRO_TOKEN_SENTINEL = 999999

NOT_PRO = "NOT_PRO"
NO_TOKENS = "NO_TOKENS"
NOT_ADMIN = "NOT_ADMIN"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None
    # Amount the caller must subtract from `tokens` in the same operation
    token_charge: int = 0


def can_consume_generation(user) -> Decision:
    if user.is_pro:
        return Decision(True)
    if (user.tokens or 0) > 0:
        return Decision(True, token_charge=1)
    return Decision(False, NO_TOKENS)


def can_save_cv(user) -> Decision:
    if user.is_pro:
        return Decision(True)
    return Decision(False, NOT_PRO)


def can_administer(user) -> Decision:
    if user is not None and user.role == "admin":
        return Decision(True)
    return Decision(False, NOT_ADMIN)


def grant_pro_fields(now: datetime) -> dict:
    """Column values applied to a user when Pro is granted."""
    return {"is_pro": True, "tokens": PRO_TOKEN_SENTINEL, "pro_since": now}


def tokens_remaining(user):
    return "unlimited" if user.is_pro else max(0, user.tokens or 0)
