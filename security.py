import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

import config
from errors import NotFound

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


# Dependency: get current user
def get_current_user(request: Request, token: str = Depends(oauth2_scheme)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        email: str = payload.get("sub")
        if email is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    try:
        user = request.app.state.users.get_by_email(email)
    except NotFound:
        raise credentials_exception
    if user.get("status") == "fraud":
        raise HTTPException(status_code=403, detail="Account disabled")
    return user


# Role guard
def require_role(*roles):
    def _guard(user=Depends(get_current_user)):
        if user.get("role", "user") not in roles:
            logger.info("Denied %s (%s), requires %s", user.get("email"), user.get("role"), roles)
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard


def ensure_self_or_admin(user: dict, email: Optional[str]):
    if user.get("role") != "admin" and user.get("email") != email:
        raise HTTPException(status_code=403, detail="Forbidden")
