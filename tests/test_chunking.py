"""Token-window chunking"""

import pytest

from core.domain import ErrorCode, ServiceError
from services.chunking import chunk_text, validate_chunk_config


def _words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


@pytest.mark.parametrize("n_tokens,size,overlap", [
    (1, 4, 0),
    (10, 4, 0),
    (10, 4, 1),
    (10, 4, 3),
    (57, 10, 5),
    (400, 400, 200),
    (1000, 400, 200),
    (1001, 400, 200),
])
def test_chunks_cover_text_with_exact_overlap(n_tokens, size, overlap):
    text = _words(n_tokens)
    tokens = text.split()
    chunks = chunk_text(text, size, overlap)

    assert chunks[0].token_start == 0
    assert chunks[-1].token_end == n_tokens
    for chunk in chunks:
        assert 0 < chunk.token_end - chunk.token_start <= size
        assert chunk.text.split() == tokens[chunk.token_start:chunk.token_end]
    for prev, nxt in zip(chunks, chunks[1:]):
        assert prev.token_end - nxt.token_start == overlap
        assert nxt.token_start > prev.token_start


def test_no_trailing_chunk_fully_contained_in_previous():
    chunks = chunk_text(_words(400), 400, 200)
    assert len(chunks) == 1


def test_chunk_text_keeps_original_whitespace():
    text = "alpha  beta\n\ngamma\tdelta"
    chunks = chunk_text(text, 2, 1)
    assert [c.text for c in chunks] == ["alpha  beta", "beta\n\ngamma", "gamma\tdelta"]
    assert text[chunks[1].char_start:chunks[1].char_end] == "beta\n\ngamma"


def test_empty_text_has_no_chunks():
    assert chunk_text("   \n\t ", 10, 2) == []


@pytest.mark.parametrize("size,overlap", [(0, 0), (-5, 0), (10, -1), (10, 10), (10, 11)])
def test_invalid_chunk_config_is_rejected(size, overlap):
    with pytest.raises(ServiceError) as exc:
        validate_chunk_config(size, overlap)
    assert exc.value.error_code == ErrorCode.VALIDATION_ERROR
