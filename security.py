import os
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Depends, HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from schemas import ADMIN, VISITOR, Role

# Environment / Auth settings
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 4))
BCRYPT_ROUNDS = 12

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
# Missing tokens are reported as 403, so the scheme must not raise its own 401
bearer_scheme = OAuth2PasswordBearer(tokenUrl="users/login", auto_error=False)


class CurrentUser(BaseModel):
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def dummy_verify():
    """Burn the same bcrypt time as a real check when no user matched."""
    pwd_context.dummy_verify()


def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception
    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in (ADMIN, VISITOR):
        raise credentials_exception
    return CurrentUser(id=user_id, role=role)


def get_current_user(token: Optional[str] = Depends(bearer_scheme)) -> CurrentUser:
    if not token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authenticated")
    return decode_access_token(token)


# Guards

def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admins only")
    return current_user


def ensure_self_or_admin(current_user: CurrentUser, owner_id: str) -> None:
    if not current_user.is_admin and current_user.id != owner_id:
        raise HTTPException(status_code=403, detail="Access denied")


# Password complexity

def password_problems(password: str) -> List[str]:
    problems = []
    if len(password) < 8:
        problems.append("Password must be at least 8 characters long")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain a lowercase letter")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain an uppercase letter")
    if not re.search(r"[0-9]", password):
        problems.append("Password must contain a digit")
    if not re.search(r"[^a-zA-Z0-9]", password):
        problems.append("Password must contain a symbol")
    return problems


def ensure_password_complexity(password: str, field: str = "password") -> None:
    problems = password_problems(password)
    if problems:
        raise RequestValidationError(
            [{"loc": ("body", field), "msg": msg, "type": "value_error"} for msg in problems]
        )
