
from fastapi import Request
from fastapi.responses import JSONResponse
from app.core.exceptions import BaseAPIException
from app.core.log_config import logger

async def custom_exception_handler(request: Request, exc: BaseAPIException):
    logger.warning(f"{request.method} {request.url.path} failed with {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=exc.headers,
    )


def error_event(event: str, exc: BaseAPIException) -> dict:
    """Builds the private `error` payload sent back over a websocket."""
    return {
        "type": "error",
        "data": {"event": event, "detail": exc.detail, "status_code": exc.status_code},
    }
