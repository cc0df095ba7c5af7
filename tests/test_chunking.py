import pytest

from transcript_toolchain.chunking import estimate_tokens, iter_chunks, split_text


def test_split_text_prefers_paragraph_breaks() -> None:
    text = "a" * 30 + "\n\n" + "b" * 30
    assert split_text(text, 34) == ["a" * 30 + "\n\n", "b" * 30]


def test_split_text_falls_back_to_sentence_end() -> None:
    text = "x" * 45 + ". " + "y" * 20
    assert split_text(text, 50) == ["x" * 45 + ".", " " + "y" * 20]


def test_split_text_forces_cut_without_natural_break() -> None:
    assert split_text("x" * 25, 10) == ["x" * 10, "x" * 10, "x" * 5]


@pytest.mark.parametrize("size", [7, 40, 120, 5000])
def test_split_text_concatenates_back_to_input(size: int) -> None:
    text = (
        "Erster Absatz mit einigen Sätzen. Noch ein Satz!\n\n"
        "Zweiter Absatz,\nmit Zeilenumbruch und Fragen? Ja.\n\n"
    ) * 7
    pieces = split_text(text, size)
    assert "".join(pieces) == text
    assert all(len(piece) <= size for piece in pieces)
    assert all(piece for piece in pieces)


def test_split_text_edge_cases() -> None:
    assert split_text("", 10) == []
    assert split_text("kurz", 10) == ["kurz"]
    with pytest.raises(ValueError):
        split_text("text", 0)


def test_iter_chunks_tracks_offsets() -> None:
    text = "Satz eins. Satz zwei. Satz drei. Satz vier." * 5
    chunks = iter_chunks(text, 30)
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    for chunk in chunks:
        assert text[chunk.start : chunk.start + len(chunk.text)] == chunk.text


def test_estimate_tokens() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("Ein kurzer Satz zum Zählen.") > 0
