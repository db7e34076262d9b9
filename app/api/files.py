from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse

from ..core.log_config import logger
from ..schemas.message import FileDescriptor
from ..services.file_service import FILES_ROUTE, FileService
from ..services.message_service import MessageService
from app.dependencies.service_dependencies import get_file_service, get_message_service

router = APIRouter(prefix=FILES_ROUTE, tags=["files"])

@router.post("/upload", response_model=FileDescriptor)
async def upload_file(
    file: UploadFile = File(...),
    file_service: FileService = Depends(get_file_service),
):
    """
    Store an attachment and return the descriptor to put in a message.
    """
    return await file_service.save(file)

@router.get("/{stored_name}")
async def get_file(
    stored_name: str,
    download: bool = False,
    file_service: FileService = Depends(get_file_service),
):
    """
    Serve a stored attachment, inline or as a download under its original name.
    """
    path = file_service.path_for(stored_name)
    if download:
        logger.info(f"File download started: {stored_name}")
        return FileResponse(path, filename=file_service.original_name(stored_name))
    return FileResponse(path)

@router.delete("/{stored_name}")
async def delete_file(
    stored_name: str,
    file_service: FileService = Depends(get_file_service),
    message_service: MessageService = Depends(get_message_service),
):
    """
    Delete a stored attachment and flag every message that references it.
    """
    file_service.path_for(stored_name)
    updated = await message_service.mark_files_deleted_by_url(file_service.url_for(stored_name))
    await file_service.delete(stored_name)
    return {"success": True, "messages_updated": updated}
