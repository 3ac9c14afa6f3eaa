"""Text extraction from stored files (PDF via PyMuPDF, UTF-8 text formats)."""
import asyncio
import logging
from pathlib import Path
from typing import List

import fitz  # PyMuPDF

from core.domain import ErrorCode, IngestionError
from core.interfaces import ITextExtractor
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

TEXT_EXTENSIONS = {"txt", "md", "csv", "json"}


class PyMuPDFTextExtractor(ITextExtractor):
    """
    Extracts the text layer of PDFs page by page; plain text formats are decoded as UTF-8.

    Pages are joined with a blank line so that page boundaries never glue two
    words into one token.
    """

    def _extract_pdf(self, file_path: str) -> str:
        pages: List[str] = []
        with fitz.open(file_path) as doc:
            for page in doc:
                text = page.get_text("text") # type: ignore
                if text and text.strip():
                    pages.append(text.strip())
        logger.info(f"[EXTRACT] {Path(file_path).name}: {len(pages)} pages with text")
        return "\n\n".join(pages)

    @staticmethod
    def _extract_text(file_path: str) -> str:
        return Path(file_path).read_bytes().decode("utf-8", errors="replace")

    async def extract(self, file_path: str, file_type: str) -> str:
        if file_type == "pdf":
            try:
                return await asyncio.to_thread(self._extract_pdf, file_path)
            except Exception as e:
                raise IngestionError(f"Could not read PDF: {e}", ErrorCode.PROCESSING_FAILED)
        if file_type in TEXT_EXTENSIONS:
            return await asyncio.to_thread(self._extract_text, file_path)
        raise IngestionError(f"Unsupported file type: {file_type}", ErrorCode.PROCESSING_FAILED)
