from __future__ import annotations

import re
from typing import List, Sequence, Tuple

# Directive vocabulary shared with the meditation scanner.
INTENSITY_ADJECTIVES = r"(?:KURZE|LANGE|KLEINE|GRO(?:SS|ß|ẞ)E|SHORT|LONG|SMALL|BIG)"
DIRECTIVE_KEYWORDS = (
    r"(?:PAUSE|STILLE|NACHSP(?:Ü|UE)REN|SILENCE|SETTLE\s+INTO\s+SENSATION)"
)
DURATION_PREPOSITIONS = r"(?:für|fuer|von|for|of)"
# A "[PAUSE 15s]" tag is output, not a directive.
PAUSE_TAG_LOOKAHEAD = r"(?!\s+[\d.,]+\s*s\s*\])"

PLACEHOLDER_TEMPLATE = "[[PROTECTED_STAGE_DIRECTION_{index}]]"
PLACEHOLDER_RE = re.compile(r"\[\[PROTECTED_STAGE_DIRECTION_(\d+)\]\]")

STAGE_DIRECTION_PATTERNS: Tuple[re.Pattern[str], ...] = (
    # optional intensity adjective + keyword opening the line
    re.compile(
        rf"^\s*(?:{INTENSITY_ADJECTIVES}\s+)?{DIRECTIVE_KEYWORDS}(?!\w)", re.IGNORECASE
    ),
    # pause keyword + duration phrase opening the line
    re.compile(
        rf"^\s*{DIRECTIVE_KEYWORDS}\s+{DURATION_PREPOSITIONS}\s+\S", re.IGNORECASE
    ),
    # keyword in brackets or parentheses anywhere on the line
    re.compile(
        rf"[\[(]\s*(?:{INTENSITY_ADJECTIVES}\s+)?{DIRECTIVE_KEYWORDS}(?!\w){PAUSE_TAG_LOOKAHEAD}[^\[\]()]*[\])]",
        re.IGNORECASE,
    ),
)


def is_stage_direction(line: str) -> bool:
    return any(pattern.search(line) for pattern in STAGE_DIRECTION_PATTERNS)


def placeholder(index: int) -> str:
    return PLACEHOLDER_TEMPLATE.format(index=index)


def protect(chunk: str) -> Tuple[str, List[str]]:
    """
    Replace every stage-direction line by an index-stamped placeholder.

    Returns the masked chunk and the original lines in scan order. Lines that
    already contain placeholder-like text are masked as well, which keeps
    ``restore(*protect(x)) == x`` true for every input.
    """
    originals: List[str] = []
    masked_lines: List[str] = []
    for line in chunk.split("\n"):
        if is_stage_direction(line) or PLACEHOLDER_RE.search(line):
            masked_lines.append(placeholder(len(originals)))
            originals.append(line)
        else:
            masked_lines.append(line)
    return "\n".join(masked_lines), originals


def restore(text: str, originals: Sequence[str]) -> str:
    """Put the original lines back; unknown indices are left untouched."""
    if not originals:
        return text

    def _swap(match: re.Match[str]) -> str:
        index = int(match.group(1))
        if index < len(originals):
            return originals[index]
        return match.group(0)

    return PLACEHOLDER_RE.sub(_swap, text)


def missing_placeholders(text: str, count: int) -> List[int]:
    """Indices of placeholders absent from ``text`` (a rewrite dropped them)."""
    present = {int(index) for index in PLACEHOLDER_RE.findall(text)}
    return [index for index in range(count) if index not in present]
