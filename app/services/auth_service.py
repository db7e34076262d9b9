from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from app.core.exceptions import InvalidCredentialsException, UserAlreadyExistsException
from app.core.log_config import logger
from app.database.postgres import storage_call
from app.models.user import User
from app.core.security import hash_password, verify_password, create_access_token
from app.schemas.auth import RegisterRequest, LoginRequest


class AuthService:
    """Issues tokens for usernames. The chat layer only ever sees the username."""

    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    @storage_call
    async def register_user(self, request: RegisterRequest):
        """
        Handles the logic for registering a user.

        Args:
            request: Registration data

        Returns:
            A tuple (user, access_token)
        """
        existing_user = await self.db_session.execute(
            select(User).filter(User.username == request.username)
        )
        if existing_user.scalar():
            raise UserAlreadyExistsException()

        user = User(
            username=request.username,
            hashed_password=hash_password(request.password)
        )
        self.db_session.add(user)
        try:
            await self.db_session.commit()
        except IntegrityError as e:
            await self.db_session.rollback()
            raise UserAlreadyExistsException() from e
        await self.db_session.refresh(user)
        logger.info(f"New user registered: {user.username}")

        return user, create_access_token(data={"username": user.username})

    @storage_call
    async def login_user(self, request: LoginRequest):
        """
        Handles the logic for logging in a user.

        Args:
            request: Login credentials

        Returns:
            A tuple (user, access_token)
        """
        user = await self.db_session.execute(
            select(User).filter(User.username == request.username)
        )
        user = user.scalar_one_or_none()

        if not user or not verify_password(request.password, user.hashed_password):
            logger.warning(f"Failed login attempt for {request.username}")
            raise InvalidCredentialsException()

        return user, create_access_token(data={"username": user.username})
