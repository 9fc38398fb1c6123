from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt
from passlib.context import CryptContext

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(account_id: str, account_type: str, secret_key: str,
                        expires_minutes: int, expires_delta: Optional[timedelta] = None) -> str:
    """Signed token with ``sub`` = account id and ``typ`` = account type.

    The expiry is fixed at issue time; tokens are never renewed.
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=expires_minutes))
    to_encode = {"sub": account_id, "typ": account_type, "exp": expire}
    return jwt.encode(to_encode, secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> dict:
    # Raises jose.JWTError (ExpiredSignatureError included) on a bad token
    return jwt.decode(token, secret_key, algorithms=[ALGORITHM])


def public_account(account: dict) -> dict:
    account = dict(account)
    account.pop("password", None)
    return account
