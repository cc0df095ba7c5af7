import pytest
from pydantic import ValidationError

from transcript_toolchain.options import (
    ChapterStyle,
    CleaningOptions,
    PauseConfiguration,
    ProcessingMode,
    TokenUsage,
    default_options,
)


def test_defaults() -> None:
    options = default_options()
    assert options.processing_mode == ProcessingMode.STANDARD
    assert options.chapter_style == ChapterStyle.REMOVE
    assert options.expand_abbreviations and options.remove_urls
    assert options.pause_config is not None
    assert options.pause_config.pause_after_paragraph
    assert options.pause_config.pause_after_paragraph_duration == 2.0
    assert not options.pause_config.pause_after_sentence
    assert options.pause_config.pause_after_sentence_duration == 0.8


@pytest.mark.parametrize("mode", [ProcessingMode.MEDITATION, "meditation"])
def test_meditation_always_keeps_chapters(mode: object) -> None:
    options = CleaningOptions(processing_mode=mode, chapter_style=ChapterStyle.REMOVE)
    assert options.chapter_style == ChapterStyle.KEEP
    assert options.is_meditation
    assert default_options("meditation").chapter_style == ChapterStyle.KEEP


def test_meditation_lock_survives_json_round_trip() -> None:
    payload = '{"processing_mode": "meditation", "chapter_style": "remove"}'
    assert CleaningOptions.model_validate_json(payload).chapter_style == ChapterStyle.KEEP


def test_pause_durations_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        PauseConfiguration(pause_after_paragraph_duration=0)
    with pytest.raises(ValidationError):
        PauseConfiguration(pause_after_sentence_duration=-1)


def test_options_are_frozen_and_strict() -> None:
    options = default_options()
    with pytest.raises(ValidationError):
        options.remove_urls = False  # type: ignore[misc]
    with pytest.raises(ValidationError):
        CleaningOptions(unknown_flag=True)  # type: ignore[call-arg]


def test_token_usage_add() -> None:
    total = TokenUsage().add(TokenUsage(prompt=10, output=5)).add(TokenUsage(prompt=1, output=2))
    assert total == TokenUsage(prompt=11, output=7)
