import asyncio

from conftest import ScriptedChatModel

from transcript_toolchain.options import default_options
from transcript_toolchain.summary import (
    ActionCategory,
    CleaningAction,
    CleaningReport,
    RunEstimate,
    analyze_text,
    estimate_run,
    summarize_cleaning,
    summarize_with_llm,
)

ORIGINAL = "Kapitel 1\nText [1].\n12\n"


def test_analyze_text_counts_issues() -> None:
    analysis = analyze_text(
        "Das ist z.B. gut  und schlecht .\nSiehe www.example.com oder info@example.com"
    )
    assert [(hit.label, hit.count) for hit in analysis.abbreviations] == [("z.B.", 1)]
    assert analysis.double_spaces == 1
    assert analysis.spaces_before_punctuation == 1
    assert analysis.urls == 1
    assert analysis.emails == 1
    assert analysis.total_issues == 5


def test_estimate_run() -> None:
    estimate = estimate_run("wort " * 300)
    assert estimate.chunks == 1
    assert estimate.words == 300
    assert estimate.listening_label() == "2 min"
    assert estimate.input_tokens == estimate.output_tokens > 0
    assert estimate.total_tokens == 2 * estimate.input_tokens


def test_run_estimate_labels() -> None:
    estimate = RunEstimate(
        chunks=3, input_tokens=0, output_tokens=0, cost_usd=0.0, words=0, listening_minutes=125
    )
    assert estimate.listening_label() == "2 h 5 min"
    assert estimate.cost_label() == "< 0.01 ct"
    assert estimate.model_copy(update={"cost_usd": 0.0123}).cost_label() == "~1.23 ct"


def test_summarize_cleaning_reports_rule_matches() -> None:
    actions = summarize_cleaning(ORIGINAL, default_options())
    assert actions[0].category == ActionCategory.METHOD
    descriptions = [action.description for action in actions[1:]]
    assert "1 probable page numbers removed." in descriptions
    assert "1 chapter markers removed." in descriptions
    assert "1 references ([1], (Author 2020), see ...) removed." in descriptions


def test_summarize_cleaning_meditation_keeps_chapters() -> None:
    actions = summarize_cleaning(ORIGINAL, default_options("meditation"))
    assert not any("chapter" in action.description for action in actions)
    assert not any("references" in action.description for action in actions)


def test_summarize_with_llm_uses_model_report() -> None:
    report = CleaningReport(
        actions=[
            CleaningAction(
                category=ActionCategory.STRUCTURE_REMOVAL,
                description="Removed page numbers at the bottom of the pages.",
            )
        ]
    )
    model = ScriptedChatModel(report=report)
    actions = asyncio.run(summarize_with_llm(model, ORIGINAL, "Text.", default_options()))
    assert actions == list(report.actions)


def test_summarize_with_llm_falls_back_to_rules() -> None:
    failing = ScriptedChatModel(summary_error=RuntimeError("503 overloaded"))
    actions = asyncio.run(summarize_with_llm(failing, ORIGINAL, "Text.", default_options()))
    assert actions == summarize_cleaning(ORIGINAL, default_options())

    unparsed = ScriptedChatModel(report=None)
    actions = asyncio.run(summarize_with_llm(unparsed, ORIGINAL, "Text.", default_options()))
    assert actions[0].category == ActionCategory.METHOD

    actions = asyncio.run(summarize_with_llm(None, ORIGINAL, "Text.", default_options()))
    assert actions[0].category == ActionCategory.METHOD
