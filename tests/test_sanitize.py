import pytest

from transcript_toolchain.sanitize import clean_response, sanitize_text


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("```\nHier ist der bereinigte Text:\n**Hallo** Welt\n```", "Hallo Welt"),
        ('"Ein Zitat."', "Ein Zitat."),
        ("Sure!\nText.", "Text."),
        ("Text hier.\n\nHinweis: Ich habe Seitenzahlen entfernt.", "Text hier."),
        ("Text hier.\n(I have removed the page numbers.)", "Text hier."),
        ("## Überschrift\nAbsatz mit *Betonung*.", "Überschrift\nAbsatz mit Betonung."),
        ("[[PROTECTED_STAGE_DIRECTION_0]]\n_wichtig_", "[[PROTECTED_STAGE_DIRECTION_0]]\nwichtig"),
        ("  Einfacher Text.  ", "Einfacher Text."),
        ("", ""),
    ],
)
def test_clean_response(raw: str, expected: str) -> None:
    assert clean_response(raw) == expected


def test_sanitize_text_repairs_structure() -> None:
    raw = "Erste Zeilen-\r\numbruch hier.\r\n\r\n***\r\n\r\nSeite 3\r\nZweiter   Absatz."
    assert sanitize_text(raw) == "Erste Zeilenumbruch hier.\n\nZweiter Absatz."


def test_sanitize_text_replaces_invisible_characters() -> None:
    assert sanitize_text("Text\u00a0mit\u200bLücken\ufeff") == "Text mit Lücken"


def test_sanitize_text_drops_symbol_only_paragraphs() -> None:
    assert sanitize_text("Text.\n\n---\n\n...\n\n\n") == "Text."
    assert sanitize_text("") == ""


def test_sanitize_text_splits_long_paragraphs_at_sentences() -> None:
    paragraph = "Das ist ein Satz. " * 20
    pieces = sanitize_text(paragraph, max_paragraph_length=100).split("\n\n")
    assert len(pieces) > 1
    assert all(0 < len(piece) <= 100 for piece in pieces)
    assert all(piece.endswith(".") for piece in pieces)


def test_sanitize_text_hard_cuts_without_boundaries() -> None:
    pieces = sanitize_text("x" * 250, max_paragraph_length=100).split("\n\n")
    assert [len(piece) for piece in pieces] == [100, 100, 50]
