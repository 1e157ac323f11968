# backend/auth.py
import logging
import os
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv
from jose import JWTError, jwt

load_dotenv()

logger = logging.getLogger("cvforge.auth")

SECRET_KEY = os.getenv("SECRET_KEY") or "replace-this-in-production"
ALGORITHM = os.getenv("ALGORITHM") or "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES") or "60")
ADMIN_EMAIL = (os.getenv("ADMIN_EMAIL") or "").strip().lower() or None

if SECRET_KEY == "replace-this-in-production":
    logger.warning("SECRET_KEY is using a default value. Set SECRET_KEY in production.")

MAX_SUBJECT_LENGTH = 128
MAX_EMAIL_LENGTH = 254
MAX_NAME_LENGTH = 100


def create_access_token(data: dict, expires_minutes: int = None):
    """Creates a new JWT access token, as the identity provider would."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

def get_token_claims(token: str):
    """
    Decodes an identity-provider token.
    Returns {"sub", "email", "name"} if the token is valid, otherwise returns None.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    email = payload.get("email")
    if not user_id or not email:
        return None
    # Claims land in fixed-width user columns
    if len(str(user_id)) > MAX_SUBJECT_LENGTH or len(str(email)) > MAX_EMAIL_LENGTH:
        return None
    name = payload.get("name")
    if name:
        name = str(name)[:MAX_NAME_LENGTH]
    return {"sub": user_id, "email": email, "name": name}
