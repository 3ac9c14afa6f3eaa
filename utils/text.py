# utils/text.py

"""Text normalization and tokenization for chunking and keyword search."""
import re
import unicodedata
from typing import List, Tuple

TOKEN_PATTERN = re.compile(r"\S+")

def token_spans(text: str) -> List[Tuple[int, int]]:
    """
    Character spans of whitespace-delimited tokens.

    These are the tokens chunk sizes and overlaps are counted in.
    """
    return [m.span() for m in TOKEN_PATTERN.finditer(text or "")]

def normalize_text(text: str) -> str:
    """
    Normalize text for keyword matching.
    Strips accents and punctuation, collapses whitespace, lowercases.
    """
    if not text:
        return ""

    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))

    # Remove punctuation
    text = re.sub(r'[^\w\s]', ' ', text)

    # Collapse whitespace
    text = re.sub(r'\s+', ' ', text).strip()

    return text.lower()

def tokenize(text: str) -> List[str]:
    """Normalized tokens for BM25 indexing."""
    normalized = normalize_text(text)
    return normalized.split() if normalized else []
