from datetime import datetime, timedelta, timezone

from jose import jwt

from .config import ALGORITHM, SECRET_KEY, TOKEN_EXPIRE_MINUTES


def create_jwt(data: dict, expires_minutes: int = TOKEN_EXPIRE_MINUTES, secret: str = SECRET_KEY) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)
