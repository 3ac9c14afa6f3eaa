# services/chunking.py
"""Token-window chunking with exact overlap between consecutive chunks."""
from dataclasses import dataclass
from typing import List

from core.domain import ErrorCode, ServiceError
from utils.text import token_spans


@dataclass
class TextChunk:
    index: int
    text: str
    token_start: int  # inclusive
    token_end: int    # exclusive
    char_start: int
    char_end: int


def validate_chunk_config(chunk_size: int, chunk_overlap: int) -> None:
    """An overlap as large as the window would never advance."""
    if chunk_size <= 0:
        raise ServiceError("chunkSize must be greater than 0", ErrorCode.VALIDATION_ERROR)
    if chunk_overlap < 0:
        raise ServiceError("chunkOverlap must not be negative", ErrorCode.VALIDATION_ERROR)
    if chunk_overlap >= chunk_size:
        raise ServiceError(
            f"chunkOverlap ({chunk_overlap}) must be smaller than chunkSize ({chunk_size})",
            ErrorCode.VALIDATION_ERROR
        )


def chunk_text(text: str, chunk_size: int, chunk_overlap: int) -> List[TextChunk]:
    """
    Split text into windows of at most chunk_size tokens.

    Window i starts at token i * (chunk_size - chunk_overlap), so consecutive
    windows share exactly chunk_overlap tokens. The last window always ends at
    the last token and no window is emitted past it. Chunk text is the original
    substring from the first to the last token, whitespace preserved.
    """
    validate_chunk_config(chunk_size, chunk_overlap)

    spans = token_spans(text)
    if not spans:
        return []

    step = chunk_size - chunk_overlap
    chunks: List[TextChunk] = []
    start = 0
    while True:
        end = min(start + chunk_size, len(spans))
        char_start, char_end = spans[start][0], spans[end - 1][1]
        chunks.append(TextChunk(
            index=len(chunks),
            text=text[char_start:char_end],
            token_start=start,
            token_end=end,
            char_start=char_start,
            char_end=char_end,
        ))
        if end == len(spans):
            break
        start += step

    return chunks
