from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from transcript_toolchain.options import CustomReplacement

# ---------- Rule tables ----------


class AbbreviationRule(BaseModel):
    """One (pattern, expansion) entry; ``label`` is what users see in the analysis."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    search: re.Pattern[str]
    replacement: str
    label: str


class PhoneticRule(BaseModel):
    """Whole-word respelling for terms speech synthesis tends to mispronounce."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    word: str
    respelling: str


def _abbr(pattern: str, replacement: str, label: str, flags: int = 0) -> AbbreviationRule:
    return AbbreviationRule(
        search=re.compile(pattern, flags), replacement=replacement, label=label
    )


# Case sensitivity is per entry: "Art." or "Fr." folded to lower case would hit
# ordinary words at the end of a sentence.
COMMON_ABBREVIATIONS: Tuple[AbbreviationRule, ...] = (
    # common German abbreviations
    _abbr(r"\bz\.\s?B\.", "zum Beispiel", "z.B."),
    _abbr(r"\bd\.\s?h\.", "das heißt", "d.h."),
    _abbr(r"\bggf\.", "gegebenenfalls", "ggf."),
    _abbr(r"\bbzw\.", "beziehungsweise", "bzw."),
    _abbr(r"\betc\.", "et cetera", "etc."),
    _abbr(r"\bca\.", "circa", "ca."),
    _abbr(r"\bu\.\s?a\.", "unter anderem", "u.a."),
    _abbr(r"\bu\.\s?U\.", "unter Umständen", "u.U."),
    _abbr(r"\bo\.\s?Ä\.", "oder Ähnliches", "o.Ä.", re.IGNORECASE),
    _abbr(r"\busw\.", "und so weiter", "usw."),
    _abbr(r"\bi\.\s?d\.\s?R\.", "in der Regel", "i.d.R."),
    _abbr(r"\bi\.\s?d\.\s?S\.", "in diesem Sinne", "i.d.S."),
    _abbr(r"\bi\.\s?S\.\s?v\.", "im Sinne von", "i.S.v."),
    _abbr(r"\bz\.\s?T\.", "zum Teil", "z.T."),
    _abbr(r"\bv\.\s?a\.", "vor allem", "v.a."),
    _abbr(r"\bsog\.", "sogenannt", "sog."),
    _abbr(r"\bbzgl\.", "bezüglich", "bzgl."),
    _abbr(r"\bevtl\.", "eventuell", "evtl."),
    _abbr(r"\binkl\.", "inklusive", "inkl."),
    _abbr(r"\bexkl\.", "exklusive", "exkl."),
    # document structure
    _abbr(r"\bNr\.", "Nummer", "Nr."),
    _abbr(r"\bArt\.(?=\s*\d)", "Artikel", "Art."),
    _abbr(r"\bAbs\.", "Absatz", "Abs."),
    _abbr(r"\bKap\.", "Kapitel", "Kap.", re.IGNORECASE),
    _abbr(r"\bAbb\.", "Abbildung", "Abb."),
    _abbr(r"\bvgl\.", "vergleiche", "vgl.", re.IGNORECASE),
    _abbr(r"\bs\.\s(?=\S)", "siehe ", "s."),
    _abbr(r"\bff\.", "fortfolgende", "ff."),
    # titles and honorifics
    _abbr(r"\bDr\.", "Doktor", "Dr."),
    _abbr(r"\bProf\.", "Professor", "Prof."),
    _abbr(r"\bHr\.", "Herr", "Hr."),
    _abbr(r"\bFr\.(?=\s*[A-ZÄÖÜ])", "Frau", "Fr."),
    # time and measurement
    _abbr(r"\bmin\.", "Minute", "min."),
    _abbr(r"\bmax\.", "maximal", "max."),
    _abbr(r"\bStd\.", "Stunde", "Std."),
    _abbr(r"\bSek\.", "Sekunde", "Sek."),
    _abbr(r"\btgl\.", "täglich", "tgl."),
    _abbr(r"\bmtl\.", "monatlich", "mtl."),
    _abbr(r"\bjährl\.", "jährlich", "jährl."),
    # financial and legal
    _abbr(r"\bzzgl\.", "zuzüglich", "zzgl."),
    _abbr(r"\babzgl\.", "abzüglich", "abzgl."),
    _abbr(r"\bgem\.", "gemäß", "gem."),
    _abbr(r"\blt\.", "laut", "lt."),
    _abbr(r"\bMwSt\.", "Mehrwertsteuer", "MwSt."),
    # references
    _abbr(r"\bb\.\s?B\.", "bei Bedarf", "b.B."),
    _abbr(r"\bo\.\s?g\.", "oben genannt", "o.g."),
    _abbr(r"\bs\.\s?u\.", "siehe unten", "s.u."),
    _abbr(r"\bs\.\s?o\.", "siehe oben", "s.o."),
    _abbr(r"\bdgl\.", "dergleichen", "dgl."),
    _abbr(r"\bo\.\s?J\.", "ohne Jahr", "o.J."),
    _abbr(r"\bn\.\s?Chr\.", "nach Christus", "n.Chr."),
    _abbr(r"\bv\.\s?Chr\.", "vor Christus", "v.Chr."),
    _abbr(r"\bHrsg\.", "Herausgeber", "Hrsg."),
    _abbr(r"\bJh\.", "Jahrhundert", "Jh."),
    # further common ones
    _abbr(r"\bbspw\.", "beispielsweise", "bspw."),
    _abbr(r"\bFa\.", "Firma", "Fa."),
    _abbr(r"\bStr\.", "Straße", "Str."),
    _abbr(r"\bTel\.", "Telefon", "Tel."),
    _abbr(r"\bStk\.", "Stück", "Stk."),
    _abbr(r"\bu\.\s?v\.\s?m\.", "und vieles mehr", "u.v.m."),
)

PHONETIC_CORRECTIONS: Tuple[PhoneticRule, ...] = (
    PhoneticRule(word="Chakra", respelling="Tschakra"),
    PhoneticRule(word="Chakren", respelling="Tschakren"),
    PhoneticRule(word="Chakras", respelling="Tschakras"),
    PhoneticRule(word="Qi", respelling="Tschi"),
    PhoneticRule(word="Reiki", respelling="Reeki"),
    PhoneticRule(word="Ayurveda", respelling="Ajurweda"),
    PhoneticRule(word="Vipassana", respelling="Wipassana"),
    PhoneticRule(word="Namaste", respelling="Namastee"),
    PhoneticRule(word="Mindfulness", respelling="Maindfulness"),
    PhoneticRule(word="Mindset", respelling="Maindset"),
    PhoneticRule(word="Bodyscan", respelling="Bodiskän"),
    PhoneticRule(word="Body-Scan", respelling="Bodi-Skän"),
    PhoneticRule(word="Coach", respelling="Kohtsch"),
    PhoneticRule(word="Coaching", respelling="Kohtsching"),
    PhoneticRule(word="Feedback", respelling="Fiedbäck"),
    PhoneticRule(word="Workshop", respelling="Wörkschop"),
    PhoneticRule(word="Team", respelling="Tiem"),
)

# Tokens no respelling may touch: pause tags and protected-line placeholders.
_SYSTEM_TOKEN_RE = re.compile(
    r"\[PAUSE\s+[\d.]+s\]|\[\[PROTECTED_STAGE_DIRECTION_\d+\]\]", re.IGNORECASE
)


# ---------- Passes ----------


def expand_abbreviations(
    text: str, rules: Sequence[AbbreviationRule] = COMMON_ABBREVIATIONS
) -> str:
    """Expand abbreviations in table order."""
    if not text:
        return text
    for rule in rules:
        text = rule.search.sub(lambda _match, rule=rule: rule.replacement, text)
    return text


def apply_custom_replacements(
    text: str, replacements: Optional[Sequence[CustomReplacement]]
) -> str:
    """Apply user rules in order; search strings are literals, matched case-insensitively."""
    if not text or not replacements:
        return text
    for rule in replacements:
        if not rule.search:
            continue
        try:
            pattern = re.compile(re.escape(rule.search), re.IGNORECASE)
        except re.error as exc:
            logger.warning(
                "normalize.custom_rule_skipped search={search} error={error}",
                search=rule.search,
                error=exc,
            )
            continue
        text = pattern.sub(lambda _match, rule=rule: rule.replace, text)
    return text


def _match_case(source: str, respelling: str) -> str:
    if source.isupper() and len(source) > 1:
        return respelling.upper()
    if source[:1].isupper():
        return respelling[:1].upper() + respelling[1:]
    return respelling.lower()


def _respell(segment: str, rules: Sequence[PhoneticRule]) -> str:
    for rule in rules:
        pattern = re.compile(rf"(?<![\w-]){re.escape(rule.word)}(?![\w-])", re.IGNORECASE)
        segment = pattern.sub(
            lambda match, rule=rule: _match_case(match.group(0), rule.respelling),
            segment,
        )
    return segment


def apply_phonetic_corrections(
    text: str, rules: Sequence[PhoneticRule] = PHONETIC_CORRECTIONS
) -> str:
    """
    Respell known problem words for speech synthesis.

    Matching is whole-word and case-insensitive; the case shape of the source
    word is kept (``CHAKRA`` -> ``TSCHAKRA``, ``Chakra`` -> ``Tschakra``).
    Only the text between pause tags and protected placeholders is respelled,
    the tokens themselves pass through untouched.
    """
    if not text:
        return text
    parts: List[str] = []
    last = 0
    for match in _SYSTEM_TOKEN_RE.finditer(text):
        parts.append(_respell(text[last : match.start()], rules))
        parts.append(match.group(0))
        last = match.end()
    parts.append(_respell(text[last:], rules))
    return "".join(parts)


class AbbreviationHit(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    label: str
    replacement: str
    count: int = Field(ge=1)


def find_abbreviations(
    text: str, rules: Sequence[AbbreviationRule] = COMMON_ABBREVIATIONS
) -> List[AbbreviationHit]:
    """Abbreviations present in ``text`` with their occurrence counts, in table order."""
    hits: List[AbbreviationHit] = []
    for rule in rules:
        count = sum(1 for _ in rule.search.finditer(text))
        if count:
            hits.append(
                AbbreviationHit(label=rule.label, replacement=rule.replacement, count=count)
            )
    return hits
