from __future__ import annotations

import re
from functools import lru_cache
from typing import List

from pydantic import BaseModel, ConfigDict, Field

import tiktoken

_MAX_LOOKBACK = 2000
_LOOKBACK_RATIO = 0.2
_SENTENCE_BREAK_RE = re.compile(r"[.!?]\s+")


class Chunk(BaseModel):
    """Contiguous slice of the document; the unit sent to the rewrite step."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    index: int = Field(ge=0, description="0-based position in reading order.")
    start: int = Field(ge=0, description="Offset of the first character in the document.")
    text: str


def _find_break(window: str) -> int:
    """Return the split offset inside ``window`` (paragraph > sentence > line > word), or -1."""
    paragraph = window.rfind("\n\n")
    if paragraph != -1:
        return paragraph + 2

    last_sentence = None
    for last_sentence in _SENTENCE_BREAK_RE.finditer(window):
        pass
    if last_sentence is not None:
        return last_sentence.start() + 1

    newline = window.rfind("\n")
    if newline != -1:
        return newline + 1

    space = window.rfind(" ")
    if space != -1:
        return space + 1
    return -1


def split_text(text: str, target_size: int) -> List[str]:
    """
    Partition ``text`` into pieces of about ``target_size`` characters.

    Joining the result gives back ``text`` exactly. Boundaries are looked up in
    a window before each cut (20% of the target size, at most 2000 characters);
    when the window holds no natural break the cut is forced at ``target_size``.
    """
    if target_size <= 0:
        raise ValueError(f"target_size must be positive, got {target_size}")
    if not text:
        return []

    length = len(text)
    lookback = int(min(_MAX_LOOKBACK, target_size * _LOOKBACK_RATIO))
    chunks: List[str] = []
    position = 0
    while position < length:
        if length - position <= target_size:
            chunks.append(text[position:])
            break

        split_at = position + target_size
        search_start = max(position, split_at - lookback)
        offset = _find_break(text[search_start:split_at])
        if offset != -1:
            split_at = search_start + offset
        if split_at <= position:
            split_at = position + target_size

        chunks.append(text[position:split_at])
        position = split_at
    return chunks


def iter_chunks(text: str, target_size: int) -> List[Chunk]:
    chunks: List[Chunk] = []
    start = 0
    for idx, piece in enumerate(split_text(text, target_size)):
        chunks.append(Chunk(index=idx, start=start, text=piece))
        start += len(piece)
    return chunks


@lru_cache(maxsize=1)
def _token_encoder():
    try:
        return tiktoken.get_encoding("cl100k_base")
    except Exception:
        try:
            return tiktoken.encoding_for_model("gpt-4o")
        except Exception:
            return None


def estimate_tokens(text: str) -> int:
    encoder = _token_encoder()
    if encoder is not None:
        try:
            return len(encoder.encode(text))
        except Exception:  # pragma: no cover - fallback path
            pass
    # simple heuristic fallback (~4 characters per token)
    text = text.strip()
    if not text:
        return 0
    return max(1, (len(text) + 3) // 4)
