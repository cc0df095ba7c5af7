"""
Per-chunk rewrite with a watchdog.

Each chunk gets two delegated attempts against the chat model, each bounded by
``PipelineSettings.rewrite_timeout``; when both fail the chunk is cleaned by
the local rule set instead. Only cancellation escapes ``ChunkRewriter.process``.
"""

from __future__ import annotations

import asyncio
import re
from typing import Callable, List, Optional, Sequence, Tuple

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from loguru import logger
from pydantic import BaseModel, ConfigDict

from transcript_toolchain.cancel import CancelToken
from transcript_toolchain.chunking import Chunk
from transcript_toolchain.errors import RewriteError, RunCancelled, describe_rewrite_error
from transcript_toolchain.normalize import (
    apply_custom_replacements,
    apply_phonetic_corrections,
    expand_abbreviations,
)
from transcript_toolchain.options import (
    ChapterStyle,
    CleaningOptions,
    HyphenationStyle,
    ListStyle,
    PipelineSettings,
    TokenUsage,
)
from transcript_toolchain.protect import PLACEHOLDER_RE, missing_placeholders, protect, restore
from transcript_toolchain.sanitize import clean_response

UsageSink = Callable[[TokenUsage], None]

# ─────────────────────────────────────────────────────────────────────────────
# Prompts
# ─────────────────────────────────────────────────────────────────────────────

STANDARD_PROMPT = """
You are the text cleanup editor preparing extracted document text for a text-to-speech narration. Return the same text, cleaned, in the language it is written in.

Follow these rules:
- Remove metadata: page numbers, running headers and footers, index entries.
{option_rules}
- Repair line breaks that fall in the middle of a sentence.
- Separate paragraphs with exactly one blank line and drop all other empty lines.
- Output plain text only. No Markdown: no bold, no italics, no heading markers (#), no list bullets.
- Output only the cleaned text. No introduction, no comments, no summary of what you changed.
"""

MEDITATION_PROMPT = """
You are a careful proofreader for a guided meditation script that will be narrated by text-to-speech. The wording of the script is final. Return the same text in the language it is written in.

You may ONLY:
- Remove page numbers, running headers and footers.
{option_rules}

Everything else must pass through unchanged: words, word order, punctuation, line breaks, chapter and section markers.
Lines of the form [[PROTECTED_STAGE_DIRECTION_n]] are inviolable: keep every one of them exactly as written, on its own line, in its original position.
Output plain text only, without Markdown, introduction or comments.
"""


def _standard_rules(options: CleaningOptions) -> List[str]:
    rules: List[str] = []
    if options.effective_chapter_style == ChapterStyle.REMOVE:
        rules.append(
            "- Remove structural markers such as 'Chapter 1', 'Part II', 'Section A' "
            "and titles repeated on every page."
        )
    else:
        rules.append("- Keep structural markers such as 'Chapter 1' or 'Part II'.")
    if options.list_style == ListStyle.PROSE:
        rules.append(
            "- Turn bulleted and numbered lists into flowing sentences "
            "('- apples\\n- pears' becomes 'apples and pears')."
        )
    else:
        rules.append("- Keep lists as lists, one item per line.")
    if options.hyphenation_style == HyphenationStyle.JOIN:
        rules.append("- Join words hyphenated across a line break ('hyphen-\\nation' becomes 'hyphenation').")
    else:
        rules.append("- Do not change hyphens at line ends.")
    if options.remove_table_of_contents:
        rules.append("- Remove tables of contents.")
    if options.remove_urls:
        rules.append("- Remove all web addresses (http, https, www).")
    if options.remove_emails:
        rules.append("- Remove all e-mail addresses.")
    if options.remove_references:
        rules.append("- Remove citations and footnote markers such as [1] or (Author 2020).")
    if options.correct_typography:
        rules.append(
            "- Fix typography: single spaces only, no space before punctuation, "
            "no spaces just inside parentheses."
        )
    if options.expand_abbreviations:
        rules.append("- Write out abbreviations so they can be read aloud.")
    return rules


def _meditation_rules(options: CleaningOptions) -> List[str]:
    rules: List[str] = []
    if options.hyphenation_style == HyphenationStyle.JOIN:
        rules.append("- Join words hyphenated across a line break.")
    if options.correct_typography:
        rules.append("- Fix double spaces and spaces before punctuation.")
    if options.expand_abbreviations:
        rules.append("- Write out abbreviations so they can be read aloud.")
    return rules


def build_system_prompt(options: CleaningOptions) -> str:
    if options.is_meditation:
        template, rules = MEDITATION_PROMPT, _meditation_rules(options)
    else:
        template, rules = STANDARD_PROMPT, _standard_rules(options)
    prompt = template.format(option_rules="\n".join(rules)).strip()
    if options.custom_instruction and options.custom_instruction.strip():
        prompt += (
            "\n\nAdditional instruction from the user:\n" + options.custom_instruction.strip()
        )
    return prompt


def build_messages(text: str, options: CleaningOptions) -> List[BaseMessage]:
    return [
        SystemMessage(content=build_system_prompt(options)),
        HumanMessage(content=text),
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Local rule set (the fallback path)
# ─────────────────────────────────────────────────────────────────────────────


class LocalRule(BaseModel):
    """One regex pass of the local cleaner; rules sharing a ``name`` are summarised together."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    name: str
    pattern: re.Pattern[str]
    replacement: str
    applies: Callable[[CleaningOptions], bool]
    meditation_safe: bool = False


def _always(_options: CleaningOptions) -> bool:
    return True


def _rule(
    name: str,
    pattern: str,
    replacement: str,
    applies: Callable[[CleaningOptions], bool] = _always,
    flags: int = 0,
    meditation_safe: bool = False,
) -> LocalRule:
    return LocalRule(
        name=name,
        pattern=re.compile(pattern, flags),
        replacement=replacement,
        applies=applies,
        meditation_safe=meditation_safe,
    )


_URL = r"(?:https?://|www\.)[^\s]*[^.,?!:;\"'›»\s)\]}>]"
_EMAIL = r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"

LOCAL_RULES: Tuple[LocalRule, ...] = (
    _rule("line_endings", r"\r\n?", "\n", meditation_safe=True),
    _rule("page_numbers", r"^[ \t]*\d+[ \t]*$", "", flags=re.MULTILINE, meditation_safe=True),
    _rule("rules", r"^[ \t]*[-_]{3,}[ \t]*$", "", flags=re.MULTILINE, meditation_safe=True),
    _rule(
        "table_of_contents",
        r"^[ \t]*(?:Inhaltsverzeichnis|Inhalt|Table of Contents|Contents)[ \t]*$"
        r"|^[^\n]{1,120}?(?:[ \t]*\.{3,}|…+)[ \t]*\d+[ \t]*$",
        "",
        lambda options: options.remove_table_of_contents,
        flags=re.MULTILINE | re.IGNORECASE,
    ),
    _rule(
        "chapters",
        r"^(?:Kapitel|Chapter|Teil|Part|Abschnitt|Section)\s+\d+.*$",
        "",
        lambda options: options.effective_chapter_style == ChapterStyle.REMOVE,
        flags=re.MULTILINE | re.IGNORECASE,
    ),
    _rule(
        "lists",
        r"^[-*•][ \t]+(.*)$",
        r"\1, ",
        lambda options: options.list_style == ListStyle.PROSE,
        flags=re.MULTILINE,
    ),
    _rule(
        "hyphenation",
        r"([a-zäöüß])-[ \t]*\n[ \t]*([a-zäöüß])",
        r"\1\2",
        lambda options: options.hyphenation_style == HyphenationStyle.JOIN,
        flags=re.IGNORECASE,
        meditation_safe=True,
    ),
    _rule("urls", rf"[ \t]*{_URL}", "", lambda options: options.remove_urls, flags=re.IGNORECASE),
    _rule("emails", rf"[ \t]*{_EMAIL}", "", lambda options: options.remove_emails),
    _rule("references", r"\[\d+(?:[-,\s]+\d+)*\]", "", lambda options: options.remove_references),
    _rule(
        "references",
        r"\([A-Za-zÀ-ſ\s.&]+,?\s+(?:19|20)\d{2}(?::\s?\d+)?\)",
        "",
        lambda options: options.remove_references,
    ),
    _rule(
        "references",
        r"\((?:vgl\.|siehe|see)\s+[^)]*?\)",
        "",
        lambda options: options.remove_references,
        flags=re.IGNORECASE,
    ),
    _rule("typography", r" {2,}", " ", lambda options: options.correct_typography, meditation_safe=True),
    _rule(
        "blank_lines", r"\n{3,}", "\n\n", lambda options: options.correct_typography, meditation_safe=True
    ),
    _rule(
        "typography",
        r"[ \t]+([.,!?;:])",
        r"\1",
        lambda options: options.correct_typography,
        meditation_safe=True,
    ),
    _rule("typography", r"\([ \t]+", "(", lambda options: options.correct_typography, meditation_safe=True),
    _rule("typography", r"[ \t]+\)", ")", lambda options: options.correct_typography, meditation_safe=True),
)


def active_rules(
    options: CleaningOptions, rules: Sequence[LocalRule] = LOCAL_RULES
) -> List[LocalRule]:
    return [
        rule
        for rule in rules
        if rule.applies(options) and (rule.meditation_safe or not options.is_meditation)
    ]


async def local_clean(
    text: str,
    options: CleaningOptions,
    token: Optional[CancelToken] = None,
    rules: Sequence[LocalRule] = LOCAL_RULES,
) -> str:
    """
    Deterministic rule-based cleanup honouring the same options as the prompts.

    Meditation scripts only get page-number, rule-line, hyphenation and
    typography passes. The token is checked between passes.
    """
    for rule in active_rules(options, rules):
        if token is not None:
            token.raise_if_cancelled()
        text = rule.pattern.sub(rule.replacement, text)
        await asyncio.sleep(0)
    if token is not None:
        token.raise_if_cancelled()
    return text


# ─────────────────────────────────────────────────────────────────────────────
# Watchdog
# ─────────────────────────────────────────────────────────────────────────────


def _outside_placeholders(text: str, transform: Callable[[str], str]) -> str:
    parts: List[str] = []
    last = 0
    for match in PLACEHOLDER_RE.finditer(text):
        parts.append(transform(text[last : match.start()]))
        parts.append(match.group(0))
        last = match.end()
    parts.append(transform(text[last:]))
    return "".join(parts)


def _content_text(content: object) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return ""


def _split_outer_whitespace(text: str) -> Tuple[str, str, str]:
    body = text.strip()
    if not body:
        return text, "", ""
    head = text[: len(text) - len(text.lstrip())]
    tail = text[len(text.rstrip()) :]
    return head, body, tail


class ChunkRewriter:
    """
    Drives one chunk through ``ATTEMPT_1 -> ATTEMPT_2 -> FALLBACK``.

    ``llm`` is any LangChain chat model supporting ``astream``; with ``llm=None``
    every chunk goes straight to the local rule set.
    """

    max_attempts = 2

    def __init__(self, llm=None, settings: Optional[PipelineSettings] = None) -> None:
        self.llm = llm
        self.settings = settings or PipelineSettings()

    @property
    def delegated(self) -> bool:
        return self.llm is not None

    def _prepare(self, text: str, options: CleaningOptions) -> str:
        def _normalize(segment: str) -> str:
            if options.expand_abbreviations:
                segment = expand_abbreviations(segment)
            return apply_custom_replacements(segment, options.custom_replacements)

        return _outside_placeholders(text, _normalize)

    async def _stream(self, messages: List[BaseMessage]) -> Tuple[str, TokenUsage]:
        pieces: List[str] = []
        usage = TokenUsage()
        async for piece in self.llm.astream(messages):
            pieces.append(_content_text(getattr(piece, "content", "")))
            metadata = getattr(piece, "usage_metadata", None)
            if metadata:
                usage = usage.add(
                    TokenUsage(
                        prompt=metadata.get("input_tokens", 0) or 0,
                        output=metadata.get("output_tokens", 0) or 0,
                    )
                )
        return "".join(pieces), usage

    async def _attempt(
        self,
        text: str,
        options: CleaningOptions,
        token: CancelToken,
        placeholders: int,
    ) -> Tuple[str, TokenUsage]:
        messages = build_messages(text, options)
        raw, usage = await token.guard(
            asyncio.wait_for(self._stream(messages), timeout=self.settings.rewrite_timeout)
        )
        cleaned = clean_response(raw)
        if not cleaned:
            raise RewriteError("empty response from rewrite service")
        missing = missing_placeholders(cleaned, placeholders)
        if missing:
            raise RewriteError(f"rewrite dropped protected lines {missing}")
        return cleaned, usage

    async def process(
        self,
        chunk: Chunk,
        options: CleaningOptions,
        token: CancelToken,
        on_usage: Optional[UsageSink] = None,
    ) -> str:
        token.raise_if_cancelled()
        head, body, tail = _split_outer_whitespace(chunk.text)
        if not body:
            return chunk.text

        originals: List[str] = []
        if options.is_meditation:
            body, originals = protect(body)
        prepared = self._prepare(body, options)

        result: Optional[str] = None
        if self.delegated:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    result, usage = await self._attempt(prepared, options, token, len(originals))
                except RunCancelled:
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "rewrite.attempt_failed chunk={chunk} attempt={attempt} reason={reason}",
                        chunk=chunk.index,
                        attempt=attempt,
                        reason=describe_rewrite_error(exc),
                    )
                    logger.debug("rewrite.attempt_error error={error!r}", error=exc)
                    continue
                logger.debug(
                    "rewrite.delegated chunk={chunk} attempt={attempt} prompt={prompt} output={output}",
                    chunk=chunk.index,
                    attempt=attempt,
                    prompt=usage.prompt,
                    output=usage.output,
                )
                if on_usage is not None:
                    on_usage(usage)
                break

        if result is None:
            if self.delegated:
                logger.warning("rewrite.fallback chunk={chunk}", chunk=chunk.index)
            result = clean_response(await local_clean(prepared, options, token))

        if originals:
            result = restore(result, originals)
        if options.apply_phonetic_corrections:
            result = apply_phonetic_corrections(result)
        return head + result + tail
