from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.error_handler import custom_exception_handler
from app.core.exceptions import BaseAPIException
from app.core.log_config import logger

from app.api.auth import router as auth_router
from app.api.rooms import router as room_router
from app.api.files import router as file_router
from app.api.websocket import router as websocket_router
from app.globals import file_service, websocket_manager
from app.database.postgres import async_session, initialize_db
from app.services.room_service import RoomService
from app.utils.timing_middleware import TimingMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    await initialize_db()
    async with async_session() as db:
        await RoomService(db).ensure_defaults(settings.default_rooms)
    file_service.ensure_dir()
    logger.info("Chat server ready for connections.")
    yield
    await websocket_manager.close()

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(BaseAPIException, custom_exception_handler)
app.add_middleware(TimingMiddleware)

app.include_router(auth_router)
app.include_router(room_router)
app.include_router(file_router)
app.include_router(websocket_router)
