import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from core.interfaces import IFileStorage

from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

class LocalFileStorage(IFileStorage):
    """Concrete implementation for storing files on the local disk."""

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path)
        # Create the directory if it doesn't exist
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Upload directory ensured at: {self.base_path}")
        except Exception as e:
            logger.error(f"Could not create upload directory at {self.base_path}: {e}")
            raise

    def _resolve(self, relative_path: str) -> Path:
        """
        Safely join base directory with relative path.
        Ensures resolved path stays within base directory.
        """
        base = self.base_path.resolve()
        full = (base / relative_path).resolve()
        try:
            full.relative_to(base)
        except ValueError:
            raise ValueError(f"Invalid file path: {relative_path}")
        return full

    async def save(self, content: bytes, filename: str) -> str:
        """Saves bytes under the upload directory."""
        file_path = self._resolve(filename)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(file_path.write_bytes, content)
            logger.info(f"Successfully saved file to {file_path}")
            return str(file_path)
        except Exception as e:
            logger.error(f"Failed to save file to {file_path}: {e}")
            raise

    async def get_path(self, filename: str) -> Optional[str]:
        """Gets the full path of a file if it exists."""
        file_path = self._resolve(filename)
        if file_path.exists():
            return str(file_path)
        return None

    async def delete_folder(self, folder: str) -> bool:
        """Deletes a folder (e.g. all files of one knowledge base)."""
        try:
            folder_path = self._resolve(folder)
            if folder_path.exists():
                await asyncio.to_thread(shutil.rmtree, folder_path)
                logger.info(f"Deleted folder: {folder_path}")
            return True
        except Exception as e:
            logger.error(f"Error deleting folder {folder}: {e}")
            return False
