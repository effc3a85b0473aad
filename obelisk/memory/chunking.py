"""
Text chunking

Fixed-size character windows with overlap. Text that fits in one window is
returned unchanged; otherwise each chunk is `chunk_size` characters and the
window advances by `chunk_size - chunk_overlap`, with the remainder as the
last chunk.
"""

from typing import List

from ..common.errors import ValidationError

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 100


def validate_chunking(chunk_size: int, chunk_overlap: int) -> None:
    if chunk_size <= 0:
        raise ValidationError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValidationError(
            f"chunk_overlap must be in [0, {chunk_size}), got {chunk_overlap}"
        )


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[str]:
    """
    Split text into overlapping chunks.

    Raises:
        ValidationError: chunk_size <= 0 or chunk_overlap outside [0, chunk_size)
    """
    validate_chunking(chunk_size, chunk_overlap)

    if len(text) <= chunk_size:
        return [text]

    step = chunk_size - chunk_overlap
    chunks = []
    remaining = text
    while len(remaining) > chunk_size:
        chunks.append(remaining[:chunk_size])
        remaining = remaining[step:]
    chunks.append(remaining)
    return chunks


def merge_chunks(chunks: List[str], chunk_overlap: int) -> str:
    """Inverse of chunk_text: drop each chunk's leading overlap and join"""
    if not chunks:
        return ""
    return chunks[0] + "".join(chunk[chunk_overlap:] for chunk in chunks[1:])
