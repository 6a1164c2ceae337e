"""Password hashing, access tokens and role checks.

Tokens carry the user's role at issue time. A token whose role no longer
matches the stored one is refused, so a role change takes effect without
waiting for the token to expire.
"""

import datetime
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from carbonsync.config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from carbonsync.database import get_db
from carbonsync.logger import get_logger
from carbonsync.models import ROLE_ADMIN, ROLE_NGO, User
from carbonsync.schemas import TokenData

logger = get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(user: User, expires_delta: Optional[datetime.timedelta] = None) -> str:
    expires_delta = expires_delta or datetime.timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": user.email,
        "uid": user.user_id,
        "role": user.role,
        "exp": datetime.datetime.now(datetime.timezone.utc) + expires_delta,
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[TokenData]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub") or not payload.get("role"):
        return None
    return TokenData(email=payload["sub"], role=payload["role"])


def get_user(db: Session, email: str):
    return db.query(User).filter(User.email == email).first()


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    user = get_user(db, email=email)
    if not user or not verify_password(password, user.password_hash):
        logger.warning("Failed login", email=email)
        return None
    return user


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    token_data = decode_access_token(token)
    if token_data is None:
        raise credentials_exception
    user = get_user(db, email=token_data.email)
    if user is None:
        raise credentials_exception
    if user.role != token_data.role:
        logger.warning("Token role is stale", user_id=user.user_id, token_role=token_data.role, role=user.role)
        raise credentials_exception
    return user


def require_role(*roles: str):
    def role_checker(current_user: User = Depends(get_current_user)):
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Operation not permitted for user with role '{current_user.role}'",
            )
        return current_user
    return role_checker


require_admin = require_role(ROLE_ADMIN)
require_ngo = require_role(ROLE_NGO)
