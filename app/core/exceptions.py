# app/core/exceptions.py

from fastapi import HTTPException, status

# Base Exception
class BaseAPIException(HTTPException):
    """Base class for all custom API exceptions."""
    def __init__(self, status_code: int, detail: str, headers: dict = None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)


# Authentication & Authorization Exceptions
class InvalidCredentialsException(BaseAPIException):
    """Exception raised when credentials are invalid."""
    def __init__(self, detail="Invalid username or password"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)

class UserAlreadyExistsException(BaseAPIException):
    """Exception raised when a user already exists."""
    def __init__(self, detail="Username already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class InvalidTokenException(BaseAPIException):
    """Exception raised when a token is invalid or expired."""
    def __init__(self, detail="Invalid token"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

class AuthenticationRequiredException(BaseAPIException):
    """Raised when a connection performs an identity-requiring action before binding a username."""
    def __init__(self, detail="Authentication required"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)

class UnauthorizedAccessException(BaseAPIException):
    """Exception raised when the requester is not allowed to perform the action."""
    def __init__(self, detail="Access denied"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


# Room & Chat Exceptions
class RoomNotFoundException(BaseAPIException):
    """Exception raised when a room is not found."""
    def __init__(self, detail="Room not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class RoomAlreadyExistsException(BaseAPIException):
    """Exception raised when a room with the same name already exists."""
    def __init__(self, detail="Room already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class MessageNotFoundException(BaseAPIException):
    """Exception raised when a message is not found."""
    def __init__(self, detail="Message not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class FileNotAvailableException(BaseAPIException):
    """Exception raised when an attachment is missing or has been deleted."""
    def __init__(self, detail="File not available"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


# Validation & Input Exceptions
class ValidationException(BaseAPIException):
    """Exception raised for validation errors."""
    def __init__(self, detail="Input data validation failed"):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


# Storage Exceptions
class StorageUnavailableException(BaseAPIException):
    """Raised when a durable storage call fails. Clients may retry."""
    def __init__(self, detail="Storage temporarily unavailable, please retry"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
