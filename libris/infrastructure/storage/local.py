"""Local file storage implementation."""
import hashlib
import logging
import os
from pathlib import Path

import aiofiles

from libris.domain.repositories import IStorageService

logger = logging.getLogger(__name__)


class LocalStorageService(IStorageService):
    """Content-addressable file storage on the local filesystem.

    Each bucket is a directory under *base_path*; files are served from
    *public_base_url* by whatever static file server fronts the directory.
    """

    def __init__(self, base_path: str = "./storage", public_base_url: str = "/files"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    async def save_file(self, file_content: bytes, filename: str, bucket: str) -> str:
        try:
            file_hash = hashlib.sha256(file_content).hexdigest()
            subdir = file_hash[:2]
            storage_dir = self.base_path / bucket / subdir
            storage_dir.mkdir(parents=True, exist_ok=True)

            file_path = storage_dir / f"{file_hash}_{Path(filename).name}"

            async with aiofiles.open(file_path, "wb") as f:
                await f.write(file_content)

            logger.info(f"File saved: {bucket}/{file_path.name}, size: {len(file_content)} bytes")
            return str(file_path.relative_to(self.base_path / bucket).as_posix())

        except Exception as e:
            logger.error(f"Failed to save file {filename}: {str(e)}", exc_info=True)
            raise

    async def get_file(self, file_path: str, bucket: str) -> bytes:
        try:
            full_path = self.base_path / bucket / file_path
            async with aiofiles.open(full_path, "rb") as f:
                content = await f.read()
            logger.debug(f"File retrieved: {bucket}/{file_path}, size: {len(content)} bytes")
            return content
        except FileNotFoundError:
            logger.error(f"File not found: {bucket}/{file_path}")
            raise

    async def delete_file(self, file_path: str, bucket: str) -> bool:
        full_path = self.base_path / bucket / file_path
        try:
            os.remove(full_path)
            logger.info(f"File deleted: {bucket}/{file_path}")
            return True
        except FileNotFoundError:
            logger.warning(f"File not found for deletion: {bucket}/{file_path}")
            return False

    def public_url(self, file_path: str, bucket: str) -> str:
        return f"{self.public_base_url}/{bucket}/{file_path}"
