from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------- Modes and structural preferences ----------


class ProcessingMode(str, Enum):
    """How pauses end up in the transcript."""

    STANDARD = "standard"  # structural pauses after paragraphs/sentences
    MEDITATION = "meditation"  # reviewed pauses at operator-authored directive lines


class ChapterStyle(str, Enum):
    REMOVE = "remove"
    KEEP = "keep"


class ListStyle(str, Enum):
    PROSE = "prose"
    KEEP = "keep"


class HyphenationStyle(str, Enum):
    JOIN = "join"
    KEEP = "keep"


class CustomReplacement(BaseModel):
    """User-defined literal replacement, applied case-insensitively."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    search: str = Field(description="Literal text to find; never treated as a pattern.")
    replace: str = Field(default="", description="Replacement text.")


class PauseConfiguration(BaseModel):
    """Structural pause settings (standard mode only)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pause_after_paragraph: bool = True
    pause_after_paragraph_duration: float = Field(
        2.0, gt=0, description="Seconds of silence after each paragraph break."
    )
    pause_after_sentence: bool = False
    pause_after_sentence_duration: float = Field(
        0.8, gt=0, description="Seconds of silence after each sentence."
    )


class CleaningOptions(BaseModel):
    """
    Configuration snapshot for one cleaning run.

    Every field has a documented default (see ``default_options``); in
    meditation mode the chapter markers are always kept, whatever the caller
    asked for, because meditation scripts rely on their structure verbatim.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    chapter_style: ChapterStyle = ChapterStyle.REMOVE
    list_style: ListStyle = ListStyle.PROSE
    hyphenation_style: HyphenationStyle = HyphenationStyle.JOIN
    remove_urls: bool = True
    remove_emails: bool = True
    remove_table_of_contents: bool = True
    remove_references: bool = True
    correct_typography: bool = True
    expand_abbreviations: bool = True
    apply_phonetic_corrections: bool = True
    custom_replacements: List[CustomReplacement] = Field(default_factory=list)
    custom_instruction: Optional[str] = Field(
        default=None, description="Free-text instruction forwarded to the rewrite step."
    )
    processing_mode: ProcessingMode = ProcessingMode.STANDARD
    pause_config: Optional[PauseConfiguration] = Field(
        default_factory=PauseConfiguration,
        description="Structural pauses; ignored in meditation mode.",
    )

    @model_validator(mode="before")
    @classmethod
    def _lock_chapters_for_meditation(cls, data: object) -> object:
        if isinstance(data, dict):
            mode = data.get("processing_mode")
            if mode in (ProcessingMode.MEDITATION, ProcessingMode.MEDITATION.value):
                return {**data, "chapter_style": ChapterStyle.KEEP}
        return data

    @property
    def is_meditation(self) -> bool:
        return self.processing_mode == ProcessingMode.MEDITATION

    @property
    def effective_chapter_style(self) -> ChapterStyle:
        """Chapter handling to apply; ``model_copy`` skips validation, so the lock is re-checked here."""
        if self.is_meditation:
            return ChapterStyle.KEEP
        return ChapterStyle(self.chapter_style)


def default_options(
    processing_mode: ProcessingMode | str = ProcessingMode.STANDARD,
) -> CleaningOptions:
    """Defaults used by the configuration step: aggressive cleanup, paragraph pauses of 2s."""
    return CleaningOptions(processing_mode=ProcessingMode(processing_mode))


# ---------- Usage telemetry ----------


class TokenUsage(BaseModel):
    """Prompt/output token counters; only ever grows within a run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    prompt: int = Field(0, ge=0)
    output: int = Field(0, ge=0)

    def add(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(prompt=self.prompt + other.prompt, output=self.output + other.output)


# ---------- Tunables ----------


class PipelineSettings(BaseModel):
    """Tunable constants of the pipeline (not part of the per-run options)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    chunk_size: int = Field(12000, gt=0, description="Target characters per rewrite chunk.")
    rewrite_timeout: float = Field(
        130.0, gt=0, description="Seconds allowed per delegated rewrite attempt."
    )
    inter_chunk_delay: float = Field(
        2.0, ge=0, description="Pause between delegated chunks to respect rate limits."
    )
    max_paragraph_length: int = Field(1000, gt=0)
    eta_history: int = Field(5, ge=1, description="Chunks in the ETA moving average.")
    price_per_million_input: float = Field(0.075, ge=0)
    price_per_million_output: float = Field(0.30, ge=0)
