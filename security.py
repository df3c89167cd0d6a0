from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext

from errors import UnauthenticatedError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


class TokenSigner:
    """Issues and checks the HS256 session tokens handed out at login."""

    def __init__(self, secret: str, algorithm: str = "HS256", expires_days: int = 7):
        self.secret = secret
        self.algorithm = algorithm
        self.expires_days = expires_days

    def create_token(self, account_id, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(account_id),
            "iat": int(now.timestamp()),
            "exp": now + timedelta(days=self.expires_days),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode_token(self, token: str) -> str:
        """Return the account id carried by token."""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise UnauthenticatedError("Token expired")
        except JWTError:
            raise UnauthenticatedError("Invalid token")
        subject = payload.get("sub")
        if not subject:
            raise UnauthenticatedError("Invalid token")
        return subject
