from __future__ import annotations

import re
import unicodedata
from typing import List, Tuple

# ─────────────────────────────────────────────────────────────────────────────
# Response sanitizer: strip what a chat model wraps around the actual text
# ─────────────────────────────────────────────────────────────────────────────

_CODE_FENCE_RE = re.compile(r"```[\w+-]*[ \t]*\n?")
_WRAPPING_QUOTES: Tuple[Tuple[str, str], ...] = (
    ('"', '"'),
    ("'", "'"),
    ("„", "“"),
    ("“", "”"),
    ("»", "«"),
    ("«", "»"),
)
_PREAMBLE_PHRASES = (
    r"hier\s+(?:ist|sind|kommt|folgt)",
    r"natürlich",
    r"gerne",
    r"selbstverständlich",
    r"klar",
    r"ich\s+habe",
    r"nachfolgend",
    r"im\s+folgenden",
    r"here\s+is",
    r"here's",
    r"here\s+are",
    r"of\s+course",
    r"sure",
    r"certainly",
    r"i\s+have",
    r"i've",
    r"below\s+is",
)
_PREAMBLE_OPENING = rf"(?:{'|'.join(_PREAMBLE_PHRASES)})"
# Preamble line that announces the text ("Hier ist der bereinigte Text:")
_PREAMBLE_ANNOUNCE_RE = re.compile(
    rf"\A\s*{_PREAMBLE_OPENING}\b[^\n]{{0,160}}:[ \t]*(?:\n+|\Z)", re.IGNORECASE
)
# Bare interjection line ("Natürlich!", "Sure.")
_PREAMBLE_INTERJECTION_RE = re.compile(
    rf"\A\s*{_PREAMBLE_OPENING}[!.,]*[ \t]*(?:\n+|\Z)", re.IGNORECASE
)
_TRAILING_NOTE_RE = re.compile(
    r"\n\s*\(?\s*(?:Hinweis|Anmerkung|Notiz|Note|Explanation|Erklärung)\s*:[^\n]*\)?\s*\Z",
    re.IGNORECASE,
)
_TRAILING_PAREN_NOTE_RE = re.compile(
    r"\n\s*\((?:Ich\s+habe|I\s+have|I've|Der\s+Text\s+wurde|The\s+text\s+was)[^\n]*\)\s*\Z",
    re.IGNORECASE,
)
_BOLD_RE = re.compile(r"(\*\*|__)(?=\S)(.+?)(?<=\S)\1", re.DOTALL)
_ITALIC_STAR_RE = re.compile(r"(?<![\w*])\*(?=\S)([^*\n]+?)(?<=\S)\*(?![\w*])")
_ITALIC_UNDERSCORE_RE = re.compile(r"(?<![\w_])_(?=\S)([^_\n]+?)(?<=\S)_(?![\w_])")
_HEADING_RE = re.compile(r"^[ \t]*#{1,6}[ \t]+", re.MULTILINE)


def _strip_wrapping_quotes(text: str) -> str:
    stripped = text.strip()
    if len(stripped) < 2:
        return text
    for opening, closing in _WRAPPING_QUOTES:
        if stripped.startswith(opening) and stripped.endswith(closing):
            inner = stripped[len(opening) : -len(closing)]
            # only a single pair spanning the whole response
            if opening not in inner and closing not in inner:
                return inner
    return text


def clean_response(raw: str) -> str:
    """
    Remove chat decoration from a rewrite response.

    Code fences, one pair of quotes around the whole answer, an announcing
    preamble, a trailing explanatory note, bold/italic/heading markers. Text
    without any of these only gets trimmed.
    """
    if not raw:
        return ""
    text = _CODE_FENCE_RE.sub("", raw)
    text = _strip_wrapping_quotes(text)
    text = _PREAMBLE_INTERJECTION_RE.sub("", text, count=1)
    text = _PREAMBLE_ANNOUNCE_RE.sub("", text, count=1)
    text = _TRAILING_NOTE_RE.sub("", text)
    text = _TRAILING_PAREN_NOTE_RE.sub("", text)
    text = _BOLD_RE.sub(r"\2", text)
    text = _ITALIC_STAR_RE.sub(r"\1", text)
    text = _ITALIC_UNDERSCORE_RE.sub(r"\1", text)
    text = _HEADING_RE.sub("", text)
    return text.strip()


# ─────────────────────────────────────────────────────────────────────────────
# Post-sanitizer: final TTS hygiene on the merged document
# ─────────────────────────────────────────────────────────────────────────────

MAX_PARAGRAPH_LENGTH = 1000
_SPLIT_SEARCH_WINDOW = 300

# soft hyphen, zero-width, BOM, replacement char, exotic spaces
_INVISIBLE_RE = re.compile(
    "[\u00ad\u200b-\u200d\u2060\ufeff\ufffd\x0b\x0c\u00a0\u1680\u180e"
    "\u2000-\u200a\u202f\u205f\u3000]"
)
_LINE_END_HYPHEN_RE = re.compile(r"([^\W\d_])-[ \t]*\n[ \t]*([^\W\d_])")
_PAGE_NUMBER_RE = re.compile(
    r"^(?:Seite|Page|S\.)\s*\d+(?:\s*(?:von|of|/)\s*\d+)?$", re.IGNORECASE
)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0e-\x1f\x7f]")
_ALNUM_RE = re.compile(r"[^\W_]")
_SENTENCE_END_RE = re.compile(r"[.!?]\s")
_CLAUSE_END_RE = re.compile(r"[;:]\s")


def _has_alnum(text: str) -> bool:
    return bool(_ALNUM_RE.search(text))


def _keep_line(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return True  # blank lines carry the paragraph structure
    if _PAGE_NUMBER_RE.match(stripped):
        return False
    return _has_alnum(stripped)


def _last_match_end(pattern: re.Pattern[str], window: str) -> int:
    last = -1
    for match in pattern.finditer(window):
        last = match.start() + 1
    return last


def _split_long_paragraph(paragraph: str, limit: int) -> List[str]:
    pieces: List[str] = []
    remaining = paragraph
    while remaining:
        if len(remaining) <= limit:
            pieces.append(remaining)
            break
        search_start = max(0, limit - _SPLIT_SEARCH_WINDOW)
        window = remaining[search_start:limit]

        # sentence > clause > word > hard cut
        offset = _last_match_end(_SENTENCE_END_RE, window)
        if offset == -1:
            offset = _last_match_end(_CLAUSE_END_RE, window)
        if offset == -1:
            offset = window.rfind(" ")
        split_at = search_start + offset if offset > 0 else limit

        head = remaining[:split_at].strip()
        if head:
            pieces.append(head)
        remaining = remaining[split_at:].strip()
    return pieces


def sanitize_text(text: str, max_paragraph_length: int = MAX_PARAGRAPH_LENGTH) -> str:
    """
    Final cleanup of the merged transcript for speech synthesis.

    NFC normalisation, invisible characters to spaces, LF line endings,
    line-end hyphenation repair, removal of symbol-only and page-number lines,
    whitespace collapsing. Paragraphs are rebuilt with one blank line between
    them; none is empty, symbol-only or longer than ``max_paragraph_length``.
    """
    if not text:
        return ""

    clean = unicodedata.normalize("NFC", text)
    clean = _INVISIBLE_RE.sub(" ", clean)
    clean = clean.replace("\r\n", "\n").replace("\r", "\n")
    clean = _LINE_END_HYPHEN_RE.sub(r"\1\2", clean)
    clean = "\n".join(line for line in clean.split("\n") if _keep_line(line))
    clean = _CONTROL_RE.sub("", clean)
    clean = re.sub(r"[ \t]+", " ", clean)
    clean = re.sub(r" +$", "", clean, flags=re.MULTILINE)

    paragraphs: List[str] = []
    for paragraph in re.split(r"\n[ \t]*\n+", clean):
        stripped = paragraph.strip()
        if not stripped or not _has_alnum(stripped):
            continue
        if len(stripped) <= max_paragraph_length:
            paragraphs.append(stripped)
            continue
        paragraphs.extend(
            piece
            for piece in _split_long_paragraph(stripped, max_paragraph_length)
            if _has_alnum(piece)
        )
    return "\n\n".join(paragraphs)
