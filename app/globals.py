from .core.config import settings
from .database.postgres import async_session
from .services.file_service import FileService
from .services.session_coordinator import SessionCoordinator
from .utils.websocket_manager import WebsocketManager

# Process-wide singletons, created once when the module is first imported.
websocket_manager = WebsocketManager()

file_service = FileService(
    upload_dir=settings.upload_dir,
    public_base_url=settings.public_base_url,
    max_bytes=settings.max_upload_bytes,
)

session_coordinator = SessionCoordinator(
    websocket_manager=websocket_manager,
    session_factory=async_session,
    file_service=file_service,
    history_limit=settings.history_limit,
)
