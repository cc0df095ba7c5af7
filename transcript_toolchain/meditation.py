from __future__ import annotations

import math
import re
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from transcript_toolchain.pauses import PAUSE_TAG_RE, pause_tag
from transcript_toolchain.protect import (
    DIRECTIVE_KEYWORDS,
    DURATION_PREPOSITIONS,
    INTENSITY_ADJECTIVES,
    PAUSE_TAG_LOOKAHEAD,
)

DEFAULT_PAUSE_DURATION = 15.0
MIN_PAUSE_DURATION = 0.1
SHORT_PAUSE_WARNING = 2.0
LONG_PAUSE_WARNING = 1800.0
MAX_BARE_NUMBER_SECONDS = 300.0


class DetectedPause(BaseModel):
    """A directive line found in the script, awaiting review before its tag is applied."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    line_number: int = Field(ge=1, description="1-based line in the sanitized text.")
    original_text: str = Field(description="The directive line, verbatim.")
    instruction: str = Field(description="Human-readable label shown during review.")
    duration: float = Field(
        DEFAULT_PAUSE_DURATION,
        ge=MIN_PAUSE_DURATION,
        allow_inf_nan=False,
        description="Suggested seconds.",
    )

    def with_duration(self, seconds: float) -> "DetectedPause":
        return self.model_validate(
            {**self.model_dump(), "duration": max(MIN_PAUSE_DURATION, float(seconds))}
        )


# ---------- Directive families (first match wins per line) ----------

_KW = rf"(?P<keyword>{DIRECTIVE_KEYWORDS})"
_ADJ = rf"(?P<adjective>{INTENSITY_ADJECTIVES})"

_LEADING_DIRECTIVE_RE = re.compile(
    rf"^(?:{_ADJ}\s+)?{_KW}(?!\w)[\s:,.!–—-]*(?P<rest>.*)$", re.IGNORECASE
)
_LEADING_DURATION_RE = re.compile(
    rf"^{_KW}\s+(?P<rest>{DURATION_PREPOSITIONS}\s+.+)$", re.IGNORECASE
)
_INLINE_DIRECTIVE_RE = re.compile(
    rf"(?<!\w){_KW}\s*(?:{DURATION_PREPOSITIONS}\s|:)\s*(?P<rest>.+)$", re.IGNORECASE
)
_BRACKETED_DIRECTIVE_RE = re.compile(
    rf"[\[(]\s*(?:{_ADJ}\s+)?{_KW}(?!\w){PAUSE_TAG_LOOKAHEAD}[\s:,.–—-]*(?P<rest>[^\[\]()]*)[\])]",
    re.IGNORECASE,
)

DIRECTIVE_FAMILIES: Tuple[Tuple[str, re.Pattern[str], bool], ...] = (
    # (name, pattern, anchored to the trimmed line start)
    ("leading", _LEADING_DIRECTIVE_RE, True),
    ("leading_duration", _LEADING_DURATION_RE, True),
    ("inline", _INLINE_DIRECTIVE_RE, False),
    ("bracketed", _BRACKETED_DIRECTIVE_RE, False),
)


def _match_directive(line: str) -> Optional[re.Match[str]]:
    trimmed = line.strip()
    if not trimmed:
        return None
    for _name, pattern, anchored in DIRECTIVE_FAMILIES:
        match = pattern.match(trimmed) if anchored else pattern.search(trimmed)
        if match:
            return match
    return None


def _instruction_label(match: re.Match[str]) -> str:
    groups = match.groupdict()
    head = " ".join(
        part for part in (groups.get("adjective"), groups.get("keyword")) if part
    )
    head = re.sub(r"\s+", " ", head)
    rest = (groups.get("rest") or "").strip()
    return f"{head} – {rest}" if rest else head


# ---------- Duration extraction ----------

_UNIT_SECONDS: Tuple[Tuple[str, float], ...] = (
    (r"sekunden|sekunde|sek\.?|seconds|second|secs|sec", 1.0),
    (r"minuten|minute|min\.?|minutes|mins", 60.0),
    (r"stunden|stunde|std\.?|hours|hour|hrs|hr", 3600.0),
)
_UNIT = "|".join(f"(?P<u{i}>{pattern})" for i, (pattern, _) in enumerate(_UNIT_SECONDS))
_FILLER = r"(?:[^\W\d]+\s+){0,2}?"

_NUMERIC_DURATION_RE = re.compile(
    rf"(?<![\w.,])(?P<number>\d+(?:[.,]\d+)?)\s*{_FILLER}(?:{_UNIT})(?!\w)", re.IGNORECASE
)

SPELLED_NUMBERS: Dict[str, float] = {
    "eine": 1, "einer": 1, "einen": 1, "ein": 1, "zwei": 2, "drei": 3, "vier": 4,
    "fünf": 5, "sechs": 6, "sieben": 7, "acht": 8, "neun": 9, "zehn": 10,
    "fünfzehn": 15, "zwanzig": 20, "dreißig": 30, "sechzig": 60,
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "fifteen": 15, "twenty": 20, "thirty": 30, "sixty": 60,
}
_HALF_DURATION_RE = re.compile(
    rf"(?<!\w)(?:(?:eine\s+)?halbe|half\s+an?|half)\s+(?:{_UNIT})(?!\w)", re.IGNORECASE
)
_SPELLED_DURATION_RE = re.compile(
    rf"(?<!\w)(?P<word>{'|'.join(sorted(SPELLED_NUMBERS, key=len, reverse=True))})\s+"
    rf"{_FILLER}(?:{_UNIT})(?!\w)",
    re.IGNORECASE,
)
_BARE_NUMBER_RE = re.compile(r"(?<![\w.,])\d+(?:[.,]\d+)?(?![\w.,]*\d)")


def _unit_factor(match: re.Match[str]) -> float:
    for i, (_pattern, factor) in enumerate(_UNIT_SECONDS):
        if match.group(f"u{i}"):
            return factor
    return 1.0


def _to_number(raw: str) -> float:
    return float(raw.replace(",", "."))


def extract_duration(line: str) -> float:
    """
    Suggested pause length in seconds for a directive line.

    ``"PAUSE für 14 reale Minuten"`` gives 840, ``"eine halbe Minute"`` 30,
    ``"drei Minuten"`` 180. Without a unit, the first number up to 300 is
    taken as seconds; without any number the default of 15 seconds applies.
    """
    if not line:
        return DEFAULT_PAUSE_DURATION

    numeric = _NUMERIC_DURATION_RE.search(line)
    if numeric:
        seconds = _to_number(numeric.group("number")) * _unit_factor(numeric)
        if 0 < seconds and math.isfinite(seconds):
            return seconds

    half = _HALF_DURATION_RE.search(line)
    if half:
        return 0.5 * _unit_factor(half)

    spelled = _SPELLED_DURATION_RE.search(line)
    if spelled:
        return SPELLED_NUMBERS[spelled.group("word").lower()] * _unit_factor(spelled)

    for bare in _BARE_NUMBER_RE.finditer(line):
        value = _to_number(bare.group(0))
        if 0 < value <= MAX_BARE_NUMBER_SECONDS:
            return value
    return DEFAULT_PAUSE_DURATION


# ---------- Scan / apply ----------


def scan_for_pauses(text: str) -> List[DetectedPause]:
    """One ``DetectedPause`` per directive line, in line order."""
    if not text:
        return []
    pauses: List[DetectedPause] = []
    for idx, line in enumerate(text.split("\n")):
        match = _match_directive(line)
        if match is None:
            continue
        line_number = idx + 1
        pauses.append(
            DetectedPause(
                id=f"pause-{line_number}",
                line_number=line_number,
                original_text=line,
                instruction=_instruction_label(match),
                duration=max(MIN_PAUSE_DURATION, extract_duration(line)),
            )
        )
    return pauses


def apply_pauses(text: str, pauses: Sequence[DetectedPause]) -> str:
    """
    Append ``[PAUSE <n>s]`` to the end of each reviewed directive line.

    The tag goes after the instruction so speech synthesis reads the line
    first and then pauses. A line that already ends with a tag is left alone.
    """
    if not text or not pauses:
        return text
    by_line = {pause.line_number: pause for pause in pauses}
    lines = text.split("\n")
    for idx, line in enumerate(lines):
        pause = by_line.get(idx + 1)
        if pause is None:
            continue
        tail = line.rstrip()
        last_tag = None
        for last_tag in PAUSE_TAG_RE.finditer(tail):
            pass
        if last_tag is not None and last_tag.end() == len(tail):
            continue
        lines[idx] = f"{line} {pause_tag(pause.duration)}"
    return "\n".join(lines)


def validate_pauses(pauses: Sequence[DetectedPause]) -> List[str]:
    """Advisory warnings for the review step; never blocks application."""
    if not pauses:
        return [
            "No pauses found. Make sure directive lines start with "
            '"PAUSE", "STILLE" or "NACHSPÜREN" (optionally with an adjective '
            'such as "KURZE" or "LANGE").'
        ]
    warnings: List[str] = []
    short = [pause for pause in pauses if pause.duration < SHORT_PAUSE_WARNING]
    if short:
        warnings.append(
            f"{len(short)} pause(s) are very short (< {SHORT_PAUSE_WARNING:g}s). "
            "Meditations usually use 5-30s."
        )
    long = [pause for pause in pauses if pause.duration > LONG_PAUSE_WARNING]
    if long:
        warnings.append(
            f"{len(long)} pause(s) are very long (> {LONG_PAUSE_WARNING:g}s). "
            "Please check the time phrases."
        )
    return warnings


def meditation_summary(pauses: Sequence[DetectedPause]) -> str:
    if not pauses:
        return "No explicit pauses detected."
    total = sum(pause.duration for pause in pauses)
    average = total / len(pauses)
    return f"{len(pauses)} pauses found (avg {average:.1f}s, total {round(total)}s)"


def is_meditation_script(text: str) -> bool:
    """True when at least one line opens with a directive keyword."""
    if not text:
        return False
    return any(
        _LEADING_DIRECTIVE_RE.match(line.strip()) for line in text.split("\n")
    )
