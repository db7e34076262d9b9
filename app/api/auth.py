from fastapi import APIRouter, Depends, status
from app.models.user import User
from app.schemas.auth import RegisterRequest, LoginRequest, TokenResponse
from app.dependencies.auth_dependencies import get_current_user
from app.dependencies.service_dependencies import get_auth_service
from app.services.auth_service import AuthService

router = APIRouter(prefix="/api/auth", tags=["auth"])

@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    """
    Register a new user.
    """
    user, access_token = await auth_service.register_user(request)
    return TokenResponse(access_token=access_token, username=user.username)

@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    """
    Authenticate a user and return a JWT.
    """
    user, access_token = await auth_service.login_user(request)
    return TokenResponse(access_token=access_token, username=user.username)

@router.get("/me")
async def protected_route(current_user: User = Depends(get_current_user)):
    """
    Get the current authenticated user's details.
    """
    return {
        "user_id": current_user.id,
        "username": current_user.username,
    }
