from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.database.postgres import get_db_session
from app.models.user import User
from app.core.security import username_from_token
from app.core.exceptions import UnauthorizedAccessException, InvalidTokenException

security = HTTPBearer(auto_error=False)

async def _get_user_from_token(token: str, db: AsyncSession) -> User:
    """
    Internal helper to verify a token and fetch the corresponding user.
    """
    if not token:
        raise InvalidTokenException(detail="Token not provided")

    username = username_from_token(token)

    result = await db.execute(select(User).filter(User.username == username))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise UnauthorizedAccessException(detail="User not found")

    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db_session)
) -> User:
    """
    Dependency for standard HTTP routes to get the current user from a Bearer token.
    """
    return await _get_user_from_token(credentials.credentials if credentials else None, db)
