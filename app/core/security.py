# app/core/security.py

import datetime
from bson import ObjectId
from jose import jwt, JWTError
from fastapi import HTTPException, Depends
from fastapi.security import OAuth2PasswordBearer

from app.core import config
from app.db.client import get_db

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/token")


# Create JWT token with expiration
def create_access_token(data: dict, expires_delta: datetime.timedelta) -> str:
    to_encode = data.copy()
    expire = datetime.datetime.now(datetime.timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


# Get current user from token; "sub" carries the user id
def get_current_user(token: str = Depends(oauth2_scheme), db=Depends(get_db)) -> dict:
    credentials_exception = HTTPException(
        status_code=401,
        detail="Could not validate credentials",
    )
    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
        user_id = payload.get("sub")
        if not user_id or not ObjectId.is_valid(user_id):
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = db["users"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise credentials_exception

    return user


#  Role-based access control
def require_role(allowed_roles: list[str]):
    def _role_checker(current_user: dict = Depends(get_current_user)):
        if current_user.get("role") not in allowed_roles:
            raise HTTPException(status_code=403, detail="Access forbidden: insufficient role")
        return current_user
    return _role_checker
