import pytest

from transcript_toolchain.options import PauseConfiguration
from transcript_toolchain.pauses import (
    count_pause_tags,
    inject_pauses,
    pause_tag,
    remove_pause_tags,
    validate_pause_config,
)

SENTENCES_ONLY = PauseConfiguration(pause_after_paragraph=False, pause_after_sentence=True)
BOTH = PauseConfiguration(pause_after_paragraph=True, pause_after_sentence=True)


@pytest.mark.parametrize(
    "duration, expected",
    [
        (2, "[PAUSE 2s]"),
        (0.8, "[PAUSE 0.8s]"),
        (2.25, "[PAUSE 2.3s]"),
        (0.04, "[PAUSE 0.1s]"),
        (840, "[PAUSE 840s]"),
    ],
)
def test_pause_tag_format(duration: float, expected: str) -> None:
    assert pause_tag(duration) == expected


def test_inject_pauses_paragraphs_then_sentences() -> None:
    text = "Erster Satz. Zweiter Satz!\n\nDritter Satz? Vierter Satz."
    result = inject_pauses(text, BOTH)
    assert result == (
        "Erster Satz. [PAUSE 0.8s] Zweiter Satz!\n\n [PAUSE 2s] "
        "Dritter Satz? [PAUSE 0.8s] Vierter Satz."
    )
    assert count_pause_tags(result) == 3
    # a second run finds every position already tagged
    assert inject_pauses(result, BOTH) == result
    assert remove_pause_tags(result) == text


def test_inject_pauses_default_is_paragraphs_only() -> None:
    result = inject_pauses("Eins. Zwei.\n\nDrei.", PauseConfiguration())
    assert result == "Eins. Zwei.\n\n [PAUSE 2s] Drei."


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Ich traf Dr. Müller. Er lachte.", "Ich traf Dr. Müller. [PAUSE 0.8s] Er lachte."),
        ("Das ist z.B. gut. Ende.", "Das ist z.B. gut. [PAUSE 0.8s] Ende."),
        ("Es kostet 3.5 Euro. Danach.", "Es kostet 3.5 Euro. [PAUSE 0.8s] Danach."),
    ],
)
def test_sentence_pauses_skip_abbreviations_and_decimals(text: str, expected: str) -> None:
    assert inject_pauses(text, SENTENCES_ONLY) == expected


def test_inject_pauses_without_config_is_identity() -> None:
    assert inject_pauses("Eins.\n\nZwei.", None) == "Eins.\n\nZwei."
    assert inject_pauses("", BOTH) == ""


def test_remove_and_count_pause_tags() -> None:
    text = "Eins. [PAUSE 0.8s] Zwei.\n [PAUSE 2s] Drei [pause 1.5s]"
    assert count_pause_tags(text) == 3
    assert remove_pause_tags(text) == "Eins. Zwei.\nDrei"
    assert count_pause_tags("") == 0


def test_validate_pause_config() -> None:
    assert validate_pause_config(PauseConfiguration()) == []
    problems = validate_pause_config(
        PauseConfiguration(pause_after_sentence=True, pause_after_sentence_duration=3.0)
    )
    assert len(problems) == 1
    assert "shorter" in problems[0]


def test_pause_tag_near_float_max() -> None:
    tag = pause_tag(1.7e308)
    assert tag.startswith("[PAUSE ") and tag.endswith("s]")
    assert count_pause_tags(tag) == 1
