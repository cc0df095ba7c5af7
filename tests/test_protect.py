import pytest

from transcript_toolchain.protect import (
    is_stage_direction,
    missing_placeholders,
    placeholder,
    protect,
    restore,
)


def test_protect_masks_directive_lines_in_order() -> None:
    text = "Atme ein.\nPAUSE für 30 Sekunden\n(kurze Stille)\nEnde."
    masked, originals = protect(text)
    assert masked == (
        "Atme ein.\n[[PROTECTED_STAGE_DIRECTION_0]]\n[[PROTECTED_STAGE_DIRECTION_1]]\nEnde."
    )
    assert originals == ["PAUSE für 30 Sekunden", "(kurze Stille)"]
    assert restore(masked, originals) == text


@pytest.mark.parametrize(
    "line, expected",
    [
        ("PAUSE", True),
        ("KURZE PAUSE für drei Atemzüge", True),
        ("Nachspüren: wie fühlt sich das an?", True),
        ("  Stille von einer Minute", True),
        ("Atme (lange Pause) weiter.", True),
        ("Text [PAUSE 15s]", False),
        ("[PAUSE 2.5s]", False),
        ("Die Pausenzeit beginnt.", False),
        ("Eine ruhige Stille breitet sich aus.", False),
    ],
)
def test_is_stage_direction(line: str, expected: bool) -> None:
    assert is_stage_direction(line) is expected


@pytest.mark.parametrize(
    "text",
    [
        "",
        "Nur Fließtext.\nZweite Zeile.",
        "PAUSE\r\nText\r\nSTILLE\r\n",
        "Text mit [[PROTECTED_STAGE_DIRECTION_0]] mitten im Satz\nPAUSE",
        "[[PROTECTED_STAGE_DIRECTION_7]]\n\n\nLANGE STILLE",
    ],
)
def test_restore_inverts_protect(text: str) -> None:
    assert restore(*protect(text)) == text


def test_restore_leaves_unknown_indices() -> None:
    assert restore(placeholder(3), ["PAUSE"]) == "[[PROTECTED_STAGE_DIRECTION_3]]"


def test_missing_placeholders() -> None:
    assert missing_placeholders(placeholder(1), 3) == [0, 2]
    assert missing_placeholders(placeholder(0) + "\n" + placeholder(1), 2) == []
