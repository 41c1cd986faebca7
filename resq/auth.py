from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import ALGORITHM, SECRET_KEY

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = "customer"  # customer / mechanic / admin

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_staff(self) -> bool:
        return self.role in ("mechanic", "admin")


def decode_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return Identity(user_id=str(user_id), role=payload.get("role", "customer"))


# ────────────────────────────── DEPENDENCIES ──────────────────────────────

def get_identity(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Optional[Identity]:
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


def require_identity(identity: Optional[Identity] = Depends(get_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return identity


def require_staff(identity: Identity = Depends(require_identity)) -> Identity:
    if not identity.is_staff:
        raise HTTPException(status_code=403, detail="Mechanic or admin role required")
    return identity


def require_admin(identity: Identity = Depends(require_identity)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return identity
