import pytest
from fastapi.security import HTTPAuthorizationCredentials
from app.dependencies.auth_dependencies import get_current_user
from app.core.exceptions import InvalidTokenException, UnauthorizedAccessException
from app.core.security import create_access_token

@pytest.mark.asyncio
async def test_get_current_user_valid_token(async_session, test_user, test_token):
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=test_token)
    user = await get_current_user(credentials, async_session)
    assert user.id == test_user.id

@pytest.mark.asyncio
async def test_get_current_user_invalid_token(async_session):
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="invalid_token")
    with pytest.raises(InvalidTokenException):
        await get_current_user(credentials, async_session)

@pytest.mark.asyncio
async def test_get_current_user_missing_credentials(async_session):
    with pytest.raises(InvalidTokenException):
        await get_current_user(None, async_session)

@pytest.mark.asyncio
async def test_get_current_user_unknown_username(async_session):
    token = create_access_token({"username": "nobody"})
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)
    with pytest.raises(UnauthorizedAccessException):
        await get_current_user(credentials, async_session)
