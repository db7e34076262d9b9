import time
from pathlib import Path

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from ..core.exceptions import FileNotAvailableException, ValidationException
from ..core.log_config import logger
from ..schemas.message import FileDescriptor

FILES_ROUTE = "/api/files"

CHUNK_SIZE = 1024 * 1024


class FileService:
    """
    Local-disk blob store for attachments. Files are stored as
    "<epoch-ms>-<original name>" and served back under FILES_ROUTE.
    """

    def __init__(self, upload_dir: str, public_base_url: str, max_bytes: int):
        self.upload_dir = Path(upload_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.max_bytes = max_bytes

    def ensure_dir(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def url_for(self, stored_name: str) -> str:
        return f"{self.public_base_url}{FILES_ROUTE}/{stored_name}"

    @staticmethod
    def stored_name_from_url(url: str) -> str:
        return url.rstrip("/").rsplit("/", 1)[-1]

    @staticmethod
    def original_name(stored_name: str) -> str:
        return stored_name.split("-", 1)[1] if "-" in stored_name else stored_name

    def path_for(self, stored_name: str) -> Path:
        """Resolves a stored name to a file inside the upload directory."""
        if not stored_name or Path(stored_name).name != stored_name:
            raise FileNotAvailableException(detail="Invalid file name")
        path = self.upload_dir / stored_name
        if not path.is_file():
            raise FileNotAvailableException(detail="File not found")
        return path

    async def save(self, upload: UploadFile) -> FileDescriptor:
        original = Path(upload.filename or "").name
        if not original:
            raise ValidationException(detail="No file uploaded")

        self.ensure_dir()
        stored_name = f"{int(time.time() * 1000)}-{original}"
        path = self.upload_dir / stored_name

        # Streamed to disk; an oversized upload is cut off at the limit.
        size = 0
        try:
            with path.open("wb") as buffer:
                while True:
                    chunk = await upload.read(min(CHUNK_SIZE, self.max_bytes + 1))
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise ValidationException(detail=f"File exceeds the {self.max_bytes} byte limit")
                    await run_in_threadpool(buffer.write, chunk)
        except ValidationException:
            path.unlink(missing_ok=True)
            logger.warning(f"Upload of {original} rejected after {size} bytes.")
            raise
        finally:
            await upload.close()

        logger.info(f"File uploaded: {original} stored as {stored_name} ({size} bytes).")

        return FileDescriptor(
            url=self.url_for(stored_name),
            name=original,
            mime_type=upload.content_type or "application/octet-stream",
            size=size,
        )

    async def delete(self, stored_name: str) -> bool:
        """Removes a stored file. Returns False if it was already gone."""
        try:
            path = self.path_for(stored_name)
        except FileNotAvailableException:
            return False
        await run_in_threadpool(path.unlink)
        logger.info(f"File deleted: {stored_name}")
        return True
