from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional, Sequence, Union

import pytest
from langchain_core.messages import AIMessageChunk

from transcript_toolchain.summary import CleaningReport

Behaviour = Union[str, BaseException, Callable[[str], str]]


class _FakeStructuredLLM:
    def __init__(self, report: Optional[CleaningReport], error: Optional[BaseException]) -> None:
        self.report = report
        self.error = error

    async def ainvoke(self, messages: Sequence[Any], config: object = None) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        return {"parsed": self.report, "raw": None, "parsing_error": None}


class ScriptedChatModel:
    """
    Streaming chat model stub driven by a list of behaviours, one per call.

    ``"hang"`` never answers, an exception is raised, a callable receives the
    human message (the chunk text) and returns the answer, a plain string is
    returned as is. Once the script is exhausted the chunk text is echoed.
    """

    def __init__(
        self,
        behaviours: Sequence[Behaviour] = (),
        report: Optional[CleaningReport] = None,
        summary_error: Optional[BaseException] = None,
    ) -> None:
        self.behaviours: List[Behaviour] = list(behaviours)
        self.calls: List[Sequence[Any]] = []
        self.report = report
        self.summary_error = summary_error

    async def astream(self, messages: Sequence[Any]):
        self.calls.append(messages)
        behaviour: Behaviour = self.behaviours.pop(0) if self.behaviours else (lambda text: text)
        if isinstance(behaviour, str) and behaviour == "hang":
            await asyncio.sleep(3600)
        if isinstance(behaviour, BaseException):
            raise behaviour
        text = behaviour(messages[1].content) if callable(behaviour) else behaviour
        half = len(text) // 2
        yield AIMessageChunk(content=text[:half])
        yield AIMessageChunk(
            content=text[half:],
            usage_metadata={"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
        )

    def with_structured_output(
        self, schema: object, include_raw: bool = False
    ) -> _FakeStructuredLLM:
        return _FakeStructuredLLM(self.report, self.summary_error)


class RecordingProgress:
    def __init__(self, on_report: Optional[Callable[[float], None]] = None) -> None:
        self.reports: List[tuple[float, str]] = []
        self.on_report = on_report

    def report(self, percent: float, eta: str) -> None:
        self.reports.append((percent, eta))
        if self.on_report is not None:
            self.on_report(percent)


@pytest.fixture()
def scripted_model() -> Callable[..., ScriptedChatModel]:
    return ScriptedChatModel
