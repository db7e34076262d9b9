from passlib.context import CryptContext
from datetime import datetime, timedelta
import jwt
from ..core.config import settings
from ..core.exceptions import InvalidTokenException

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.
    """
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.
    """
    return pwd_context.verify(plain_password, hashed_password)

def create_access_token(data: dict, expires_delta: timedelta = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to embed; the chat layer only reads "username"
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT string
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=settings.jwt_expiry_hours))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)

def verify_token(token: str) -> dict:
    """
    Verify and decode a JWT token.

    Raises:
        InvalidTokenException: If token is malformed, tampered with or expired
    """
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise InvalidTokenException(detail="Token has expired")
    except jwt.PyJWTError:
        raise InvalidTokenException(detail="Invalid authentication credentials")

def username_from_token(token: str) -> str:
    """Returns the username claim of a valid token."""
    payload = verify_token(token)
    username = payload.get("username")
    if not username:
        raise InvalidTokenException()
    return username
