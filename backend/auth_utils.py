# backend/auth_utils.py
import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, NamedTuple, Union

from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import ValidationError # For token data validation
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

# Project imports
import schemas
import models
from database import get_db

log = logging.getLogger(__name__)

# --- Configuration ---
SECRET_KEY = os.getenv("JWT_SECRET")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)) # Default 7 days

if not SECRET_KEY:
    log.critical("FATAL ERROR: JWT_SECRET environment variable is not set.")
    raise ValueError("JWT_SECRET is required for JWT.")

ROLE_FARMER = "farmer"
ROLE_EMPLOYEE = "employee"
ROLE_ADMIN = "admin"

# One table per principal kind; the role picks the table.
ROLE_MODELS = {
    ROLE_FARMER: models.Farmer,
    ROLE_EMPLOYEE: models.Employee,
    ROLE_ADMIN: models.Admin,
}

PrincipalRecord = Union[models.Farmer, models.Employee, models.Admin]

bearer_scheme = HTTPBearer(auto_error=False)

# --- Password Hashing Setup (all roles) ---
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verifies a plain password against a stored hash."""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)

def hash_password(password: str) -> str:
    """Hashes a plain password using bcrypt."""
    return pwd_context.hash(password)


def mask_phone(phone: Optional[str]) -> str:
    return f"******{phone[-4:]}" if phone else "******"


# --- Principal ---
class Principal(NamedTuple):
    """An authenticated caller: role tag plus the row from that role's table."""
    id: int
    role: str
    record: PrincipalRecord

    @property
    def is_staff(self) -> bool:
        return self.role in (ROLE_EMPLOYEE, ROLE_ADMIN)


def find_principal_record(db: Session, role: str, identifier: str) -> Optional[PrincipalRecord]:
    """Looks up a login identifier: phone for farmers, username for staff."""
    model = ROLE_MODELS.get(role)
    if model is None:
        return None
    if role == ROLE_FARMER:
        return db.query(model).filter(model.phone == identifier).first()
    return db.query(model).filter(model.username == identifier).first()


def authenticate(db: Session, role: str, identifier: str, password: str) -> Optional[PrincipalRecord]:
    """Returns the matching record if the password checks out, else None."""
    record = find_principal_record(db, role, identifier)
    if record is None or not verify_password(password, record.hashed_password):
        return None
    return record


def token_payload_for(role: str, record: PrincipalRecord) -> dict:
    payload = {"sub": str(record.id), "id": record.id, "role": role}
    if role == ROLE_FARMER:
        payload["phone"] = record.phone
    else:
        payload["username"] = record.username
    return payload


# --- JWT Token Creation ---
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Creates a JWT access token. Expects 'sub' and 'role' in data."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    if "sub" not in to_encode or "role" not in to_encode:
        log.error("JWT creation failed: 'sub' or 'role' missing in payload data.")
        raise ValueError("Token data must include 'sub' and 'role'")

    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    log.debug(f"Created JWT for sub='{to_encode.get('sub')}', role='{to_encode.get('role')}'")
    return encoded_jwt


def issue_token(role: str, record: PrincipalRecord) -> str:
    return create_access_token(token_payload_for(role, record))


# --- Token Decoding Helper ---
def _decode_token_payload(token: str) -> schemas.TokenData:
    """Decodes JWT, raises HTTPException on failure."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        token_data = schemas.TokenData(**payload)
    except JWTError as e:
        log.warning(f"JWT decoding/validation error: {e}")
        raise credentials_exception from e
    except ValidationError as e:
        log.warning(f"Token payload structure error: {e}")
        raise credentials_exception from e

    if token_data.id is None or token_data.role is None:
        log.warning("Token payload missing 'id' or 'role'.")
        raise credentials_exception
    return token_data


# --- Dependency: Get Current Principal ---
async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    """Dependency: resolves the bearer token to a Principal of any role."""
    if credentials is None or not credentials.credentials:
        log.debug("Authorization header missing.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = _decode_token_payload(credentials.credentials)
    model = ROLE_MODELS[token_data.role]
    record = db.get(model, token_data.id)
    if record is None:
        log.warning(f"{token_data.role} '{token_data.id}' from token not found.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User associated with token no longer exists")

    log.debug(f"Authenticated {token_data.role} retrieved: {record.id}")
    return Principal(id=record.id, role=token_data.role, record=record)


def require_roles(*roles: str):
    """Builds a dependency that admits only principals holding one of `roles`."""
    allowed = ", ".join(roles)

    async def _check_role(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            log.warning(f"Role '{principal.role}' rejected; endpoint requires: {allowed}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(r.capitalize() for r in roles)} access required",
            )
        return principal

    return _check_role


get_current_farmer = require_roles(ROLE_FARMER)
get_current_employee = require_roles(ROLE_EMPLOYEE)
get_current_admin = require_roles(ROLE_ADMIN)
get_current_staff = require_roles(ROLE_EMPLOYEE, ROLE_ADMIN)
