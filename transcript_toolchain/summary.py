from __future__ import annotations

import math
import re
from enum import Enum
from typing import Dict, List, Sequence

from langchain_core.callbacks import UsageMetadataCallbackHandler
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.runnables import RunnableConfig
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from transcript_toolchain.chunking import estimate_tokens, split_text
from transcript_toolchain.normalize import (
    COMMON_ABBREVIATIONS,
    AbbreviationHit,
    AbbreviationRule,
    find_abbreviations,
)
from transcript_toolchain.options import CleaningOptions, PipelineSettings
from transcript_toolchain.rewrite import LOCAL_RULES, LocalRule, active_rules

WORDS_PER_MINUTE = 150
SUMMARY_EXCERPT_CHARS = 4000

_DOUBLE_SPACE_RE = re.compile(r" {2,}")
_SPACE_BEFORE_PUNCTUATION_RE = re.compile(r"\s+[.,!?;:]")
_LINE_END_HYPHEN_RE = re.compile(r"[a-zäöüß]-\s*\n\s*[a-zäöüß]", re.IGNORECASE)
_URL_RE = re.compile(r"https?://[^\s]+|www\.[^\s]+", re.IGNORECASE)
_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


def _count(pattern: re.Pattern[str], text: str) -> int:
    return sum(1 for _ in pattern.finditer(text))


# ---------- Pre-run analysis ----------


class TextAnalysis(BaseModel):
    """Issues found in the raw text that the cleaning run will address."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    abbreviations: List[AbbreviationHit] = Field(default_factory=list)
    double_spaces: int = 0
    spaces_before_punctuation: int = 0
    line_end_hyphenations: int = 0
    urls: int = 0
    emails: int = 0

    @property
    def total_issues(self) -> int:
        return (
            sum(hit.count for hit in self.abbreviations)
            + self.double_spaces
            + self.spaces_before_punctuation
            + self.line_end_hyphenations
            + self.urls
            + self.emails
        )


def analyze_text(
    raw_text: str, rules: Sequence[AbbreviationRule] = COMMON_ABBREVIATIONS
) -> TextAnalysis:
    return TextAnalysis(
        abbreviations=find_abbreviations(raw_text, rules),
        double_spaces=_count(_DOUBLE_SPACE_RE, raw_text),
        spaces_before_punctuation=_count(_SPACE_BEFORE_PUNCTUATION_RE, raw_text),
        line_end_hyphenations=_count(_LINE_END_HYPHEN_RE, raw_text),
        urls=_count(_URL_RE, raw_text),
        emails=_count(_EMAIL_RE, raw_text),
    )


class RunEstimate(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    chunks: int = Field(ge=0)
    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0, description="Assumed equal to the input.")
    cost_usd: float = Field(ge=0)
    words: int = Field(ge=0)
    listening_minutes: int = Field(ge=0, description=f"At {WORDS_PER_MINUTE} words per minute.")

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def cost_label(self) -> str:
        if self.cost_usd < 0.0001:
            return "< 0.01 ct"
        return f"~{self.cost_usd * 100:.2f} ct"

    def listening_label(self) -> str:
        hours, minutes = divmod(self.listening_minutes, 60)
        if hours:
            return f"{hours} h {minutes} min"
        return f"{self.listening_minutes} min"


def estimate_run(raw_text: str, settings: PipelineSettings | None = None) -> RunEstimate:
    """Token, cost and listening-time prognosis for cleaning ``raw_text``."""
    settings = settings or PipelineSettings()
    input_tokens = estimate_tokens(raw_text)
    output_tokens = input_tokens
    cost = (
        input_tokens / 1_000_000 * settings.price_per_million_input
        + output_tokens / 1_000_000 * settings.price_per_million_output
    )
    words = len(raw_text.split())
    return RunEstimate(
        chunks=len(split_text(raw_text, settings.chunk_size)),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost_usd=cost,
        words=words,
        listening_minutes=math.ceil(words / WORDS_PER_MINUTE),
    )


# ---------- Post-run cleaning summary ----------


class ActionCategory(str, Enum):
    METHOD = "method"
    STRUCTURE_REMOVAL = "structure_removal"
    FORMAT_CORRECTION = "format_correction"
    CONTENT_REMOVAL = "content_removal"
    CONTENT_CONVERSION = "content_conversion"
    TYPOGRAPHY = "typography"
    NORMALIZATION = "normalization"


class CleaningAction(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    category: ActionCategory = Field(description="Kind of change that was made.")
    description: str = Field(
        description="Short, specific description, e.g. 'Removed 12 page numbers.'"
    )


class CleaningReport(BaseModel):
    """List of cleaning actions, as produced by the chat model."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    actions: List[CleaningAction] = Field(default_factory=list)


_RULE_DESCRIPTIONS: Dict[str, tuple] = {
    "page_numbers": (ActionCategory.STRUCTURE_REMOVAL, "{count} probable page numbers removed."),
    "rules": (ActionCategory.STRUCTURE_REMOVAL, "{count} separator lines removed."),
    "table_of_contents": (ActionCategory.STRUCTURE_REMOVAL, "{count} table-of-contents lines removed."),
    "chapters": (ActionCategory.STRUCTURE_REMOVAL, "{count} chapter markers removed."),
    "urls": (ActionCategory.CONTENT_REMOVAL, "{count} URLs removed."),
    "emails": (ActionCategory.CONTENT_REMOVAL, "{count} e-mail addresses removed."),
    "references": (ActionCategory.CONTENT_REMOVAL, "{count} references ([1], (Author 2020), see ...) removed."),
    "hyphenation": (ActionCategory.TYPOGRAPHY, "{count} words hyphenated at line ends joined."),
    "typography": (ActionCategory.TYPOGRAPHY, "{count} typography issues (double spaces, spaces before punctuation, parentheses) fixed."),
    "blank_lines": (ActionCategory.FORMAT_CORRECTION, "{count} runs of excess blank lines normalized."),
    "lists": (ActionCategory.CONTENT_CONVERSION, "{count} list items turned into running text."),
}


def summarize_cleaning(
    original: str,
    options: CleaningOptions,
    rules: Sequence[LocalRule] = LOCAL_RULES,
) -> List[CleaningAction]:
    """Rule-derived summary: what the active local rules match in the original text."""
    actions = [
        CleaningAction(
            category=ActionCategory.METHOD,
            description="Cleaning summary derived from the local rule set.",
        )
    ]
    counts: Dict[str, int] = {}
    for rule in active_rules(options, rules):
        if rule.name in _RULE_DESCRIPTIONS:
            counts[rule.name] = counts.get(rule.name, 0) + _count(rule.pattern, original)
    for name, count in counts.items():
        if count:
            category, template = _RULE_DESCRIPTIONS[name]
            actions.append(CleaningAction(category=category, description=template.format(count=count)))
    if options.expand_abbreviations:
        expanded = sum(hit.count for hit in find_abbreviations(original))
        if expanded:
            actions.append(
                CleaningAction(
                    category=ActionCategory.NORMALIZATION,
                    description=f"{expanded} abbreviations written out.",
                )
            )
    return actions


SUMMARY_PROMPT = """
You are a text analysis expert. Compare the original text with the cleaned text and list every cleaning action that was performed, as granular and specific as possible.

Check for:
- structure: removed chapter markers, page numbers, headers or footers;
- formatting: merged paragraphs, removed blank lines, repaired mid-sentence line breaks;
- content: removed URLs, e-mail addresses or references such as [1] or (Miller 2021);
- lists: bullet points turned into running text;
- typography: joined hyphenated words, fixed double spaces or spaces before punctuation.

Each description is one short sentence, e.g. "Removed page numbers at the bottom of the pages." Write the descriptions in the language of the text.
"""


async def summarize_with_llm(
    llm,
    original: str,
    cleaned: str,
    options: CleaningOptions,
) -> List[CleaningAction]:
    """Ask the chat model for a cleaning report; any failure yields the rule-derived summary."""
    if llm is None:
        return summarize_cleaning(original, options)
    messages = [
        SystemMessage(content=SUMMARY_PROMPT.strip()),
        HumanMessage(
            content=(
                "== ORIGINAL TEXT (EXCERPT) ==\n"
                f"{original[:SUMMARY_EXCERPT_CHARS]}\n\n"
                "== CLEANED TEXT (EXCERPT) ==\n"
                f"{cleaned[:SUMMARY_EXCERPT_CHARS]}"
            )
        ),
    ]
    callback = UsageMetadataCallbackHandler()
    try:
        res = await llm.with_structured_output(CleaningReport, include_raw=True).ainvoke(
            messages, config=RunnableConfig(callbacks=[callback])
        )
        report = res["parsed"]
        if not isinstance(report, CleaningReport):
            raise ValueError(f"unparsable cleaning report: {res.get('parsing_error')}")
    except Exception as exc:  # noqa: BLE001
        logger.warning("summary.llm_failed error={error}", error=exc)
        return summarize_cleaning(original, options)
    logger.debug("summary.tokens usage={usage}", usage=callback.usage_metadata)
    return list(report.actions)
