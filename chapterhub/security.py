import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pymongo.database import Database

from chapterhub.config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from chapterhub.database.connection import MEMBERS_COLLECTION, get_db
from chapterhub.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLES = ("admin", "superadmin")


# Create JWT access token
def create_access_token(data: dict, expires_delta: int = ACCESS_TOKEN_EXPIRE_MINUTES):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_delta)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> str:
    """Returns the caller's user id (the token subject)."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        raise AuthenticationError(f"Invalid token: {e}")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token has no subject.")
    return user_id


def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Unauthorized")
    return decode_access_token(credentials.credentials)


def get_current_member(
    user_id: str = Depends(require_auth),
    db: Database = Depends(get_db),
) -> dict:
    member = db[MEMBERS_COLLECTION].find_one({"user_id": user_id})
    if not member:
        logger.warning(f"Authenticated user {user_id} has no member record")
        raise AuthorizationError("Not authorized")
    return member


# --- Role predicates ---

def is_admin(member: dict) -> bool:
    return member.get("role") in ADMIN_ROLES


def is_elections_officer(member: dict) -> bool:
    return bool(member.get("is_ecouncil"))


def is_regent(member: dict) -> bool:
    position = member.get("ecouncil_position") or ""
    return "regent" in position.lower()


def is_scribe(member: dict) -> bool:
    position = member.get("ecouncil_position") or ""
    return bool(member.get("is_ecouncil")) and position.lower() == "scribe"


# --- Dependencies ---

def require_active_member(member: dict = Depends(get_current_member)) -> dict:
    if member.get("status", "Active") != "Active":
        raise AuthorizationError("Only active members may vote")
    return member


def require_elections_officer(member: dict = Depends(get_current_member)) -> dict:
    if not is_elections_officer(member):
        raise AuthorizationError("Not authorized - E-Council only")
    return member


def require_admin(member: dict = Depends(get_current_member)) -> dict:
    if not is_admin(member):
        raise AuthorizationError("User is not an admin")
    return member


def require_regent(member: dict = Depends(get_current_member)) -> dict:
    if not is_regent(member):
        raise AuthorizationError("Only Regent can snap bid")
    return member
