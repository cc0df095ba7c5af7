from __future__ import annotations

import math
import re
from typing import List, Optional, Sequence

from transcript_toolchain.options import PauseConfiguration

PAUSE_TAG_RE = re.compile(r"\[PAUSE\s+[\d.]+s\]", re.IGNORECASE)
GUARD_RADIUS = 20

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n+")
_SENTENCE_END_RE = re.compile(r"([.!?])(\s+)")

# Tokens after which a period does not end a sentence.
SENTENCE_ABBREVIATIONS: Sequence[str] = (
    "Dr", "Prof", "Jr", "Sr", "Ph.D", "M.D", "B.Sc", "M.Sc",
    "z.B", "d.h", "u.a", "u.U", "usw", "etc", "ca", "bzw",
    "vgl", "Abb", "Nr", "Kap", "S",
    "St", "Str",
    "Mr", "Mrs", "Ms", "Co", "Inc", "Ltd", "Corp",
)
_ABBREVIATION_TAIL_RE = re.compile(
    r"(?<!\w)(?:"
    + "|".join(re.escape(abbr) for abbr in sorted(SENTENCE_ABBREVIATIONS, key=len, reverse=True))
    + r")$",
    re.IGNORECASE,
)


def pause_tag(duration: float) -> str:
    """``[PAUSE <n>s]`` with ``n`` rounded half-up to one decimal, at least 0.1."""
    scaled = duration * 10 + 0.5
    # near float max the scaled value overflows; such durations need no rounding
    value = max(0.1, math.floor(scaled) / 10 if math.isfinite(scaled) else duration)
    if float(value).is_integer():
        return f"[PAUSE {int(value)}s]"
    return f"[PAUSE {value:.1f}s]"


def has_pause_tag_near(text: str, position: int, radius: int = GUARD_RADIUS) -> bool:
    start = max(0, position - radius)
    end = min(len(text), position + radius)
    return bool(PAUSE_TAG_RE.search(text, start, end))


def _inject_paragraph_pauses(text: str, duration: float) -> str:
    tag = pause_tag(duration)
    parts: List[str] = []
    last = 0
    for match in _PARAGRAPH_BREAK_RE.finditer(text):
        end = match.end()
        parts.append(text[last:end])
        if not has_pause_tag_near(text, end):
            parts.append(f" {tag} ")
        last = end
    parts.append(text[last:])
    return "".join(parts)


def _follows_abbreviation(text: str, punctuation_at: int) -> bool:
    before = text[max(0, punctuation_at - 10) : punctuation_at]
    return bool(_ABBREVIATION_TAIL_RE.search(before))


def _inject_sentence_pauses(text: str, duration: float) -> str:
    tag = pause_tag(duration)
    parts: List[str] = []
    last = 0
    for match in _SENTENCE_END_RE.finditer(text):
        whitespace = match.group(2)
        end = match.end()
        # paragraph boundaries belong to the paragraph pass
        if (
            whitespace.count("\n") >= 2
            or _follows_abbreviation(text, match.start())
            or has_pause_tag_near(text, end)
        ):
            parts.append(text[last:end])
        else:
            parts.append(text[last : match.start() + 1] + whitespace + tag + " ")
        last = end
    parts.append(text[last:])
    return "".join(parts)


def inject_pauses(text: str, config: Optional[PauseConfiguration]) -> str:
    """
    Insert structural pause tags: paragraph breaks first, then sentence ends.

    Positions that already carry a tag within ``GUARD_RADIUS`` characters are
    skipped, so running the injector again with the same configuration
    changes nothing.
    """
    if not text or config is None:
        return text
    result = text
    if config.pause_after_paragraph and config.pause_after_paragraph_duration > 0:
        result = _inject_paragraph_pauses(result, config.pause_after_paragraph_duration)
    if config.pause_after_sentence and config.pause_after_sentence_duration > 0:
        result = _inject_sentence_pauses(result, config.pause_after_sentence_duration)
    return result


def remove_pause_tags(text: str) -> str:
    """Strip every pause tag, keeping line structure."""
    if not text:
        return text
    stripped = re.sub(r"[ \t]*\[PAUSE\s+[\d.]+s\][ \t]*", " ", text, flags=re.IGNORECASE)
    stripped = re.sub(r"[ \t]{2,}", " ", stripped)
    return re.sub(r"^[ \t]+|[ \t]+$", "", stripped, flags=re.MULTILINE)


def count_pause_tags(text: str) -> int:
    if not text:
        return 0
    return len(PAUSE_TAG_RE.findall(text))


def validate_pause_config(config: PauseConfiguration) -> List[str]:
    """Problems with a pause configuration; the last entry type is advisory only."""
    problems: List[str] = []
    if config.pause_after_paragraph and config.pause_after_paragraph_duration <= 0:
        problems.append("Paragraph pause duration must be greater than 0.")
    if config.pause_after_sentence and config.pause_after_sentence_duration <= 0:
        problems.append("Sentence pause duration must be greater than 0.")
    if (
        config.pause_after_paragraph
        and config.pause_after_sentence
        and config.pause_after_sentence_duration >= config.pause_after_paragraph_duration
    ):
        problems.append(
            "Warning: sentence pauses should be shorter than paragraph pauses "
            "for a natural flow."
        )
    return problems
