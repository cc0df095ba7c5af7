"""
Speech Transcript Toolchain (Extract → Clean → Review → Apply)

This module turns extracted document text into a speech-ready transcript with
``[PAUSE <n>s]`` markers for downstream text-to-speech. Stages are exposed as
explicit CLI commands:

raw.txt → transcript.txt (standard mode)
raw.txt → sanitized.txt + pauses.json → transcript.txt (meditation mode)

Each stage validates its preconditions, writes typed artifacts (Pydantic v2
models) and fails fast on policy violations. Between ``clean`` and ``apply``
in meditation mode a human reviews and edits the suggested pause durations in
``pauses.json``.
"""

from __future__ import annotations

import asyncio
import math
import os
import re
import sys
import time
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Deque, List, Optional, Protocol, Tuple

import fire
from langchain_openai import ChatOpenAI
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from transcript_toolchain.cancel import CancelToken
from transcript_toolchain.chunking import iter_chunks
from transcript_toolchain.errors import EmptyDocumentError, NoPausesFoundError, RunCancelled
from transcript_toolchain.extract import extract_text
from transcript_toolchain.meditation import (
    DetectedPause,
    apply_pauses,
    meditation_summary,
    scan_for_pauses,
    validate_pauses,
)
from transcript_toolchain.options import (
    CleaningOptions,
    PipelineSettings,
    ProcessingMode,
    TokenUsage,
    default_options,
)
from transcript_toolchain.pauses import count_pause_tags, inject_pauses, validate_pause_config
from transcript_toolchain.rewrite import ChunkRewriter
from transcript_toolchain.sanitize import sanitize_text
from transcript_toolchain.summary import (
    CleaningAction,
    CleaningReport,
    analyze_text,
    estimate_run,
    summarize_with_llm,
)

# ─────────────────────────────────────────────────────────────────────────────
# Progress reporting
# ─────────────────────────────────────────────────────────────────────────────


class ProgressSink(Protocol):
    def report(self, percent: float, eta: str) -> None: ...


class LogProgress:
    """Default sink: one log line per finished chunk."""

    def report(self, percent: float, eta: str) -> None:
        logger.info("clean.progress percent={percent:.0f} eta={eta}", percent=percent, eta=eta)


def format_eta(seconds: float) -> str:
    if not math.isfinite(seconds) or seconds < 0:
        return "calculating..."
    if seconds < 5:
        return "a moment..."
    minutes = int(seconds // 60)
    rest = round(seconds % 60)
    if rest == 60:
        minutes, rest = minutes + 1, 0
    if minutes == 0:
        return f"about {rest} seconds remaining"
    unit = "minute" if minutes == 1 else "minutes"
    if rest == 0:
        return f"about {minutes} {unit} remaining"
    return f"about {minutes} {unit} and {rest} seconds remaining"


# ─────────────────────────────────────────────────────────────────────────────
# Run driver
# ─────────────────────────────────────────────────────────────────────────────


class RunStatus(str, Enum):
    SUCCESS = "success"  # transcript ready
    REVIEW = "review"  # meditation: pauses await human review
    CANCELLED = "cancelled"


class CleaningResult(BaseModel):
    """Outcome of one cleaning run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: RunStatus
    text: str = Field(
        default="",
        description="Final transcript (success) or sanitized text awaiting review.",
    )
    merged_text: str = Field(default="", description="Rewritten chunks before sanitizing.")
    pauses: List[DetectedPause] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    chunks_done: int = 0
    chunks_total: int = 0


class TranscriptPipeline:
    """
    Sequences one document through chunking, per-chunk rewrite, sanitizing and
    pause annotation.

    Chunks are processed strictly one after another; the merged output and the
    token counter belong to the running ``clean`` call only.
    """

    def __init__(self, llm=None, settings: Optional[PipelineSettings] = None) -> None:
        self.settings = settings or PipelineSettings()
        self.rewriter = ChunkRewriter(llm, self.settings)

    async def clean(
        self,
        raw: str,
        options: Optional[CleaningOptions] = None,
        progress: Optional[ProgressSink] = None,
        token: Optional[CancelToken] = None,
    ) -> CleaningResult:
        if not raw or not raw.strip():
            raise EmptyDocumentError()
        options = options or default_options()
        progress = progress or LogProgress()
        token = token or CancelToken()

        chunks = iter_chunks(raw, self.settings.chunk_size)
        total = len(chunks)
        usage = TokenUsage()
        parts: List[str] = []
        durations: Deque[float] = deque(maxlen=self.settings.eta_history)

        def _on_usage(delta: TokenUsage) -> None:
            nonlocal usage
            usage = usage.add(delta)

        logger.info(
            "clean.start chunks={chunks} mode={mode} delegated={delegated}",
            chunks=total,
            mode=options.processing_mode.value,
            delegated=self.rewriter.delegated,
        )
        try:
            for chunk in chunks:
                token.raise_if_cancelled()
                started = time.monotonic()
                parts.append(await self.rewriter.process(chunk, options, token, _on_usage))

                durations.append(time.monotonic() - started)
                done = chunk.index + 1
                remaining = (sum(durations) / len(durations)) * (total - done)
                token.raise_if_cancelled()
                progress.report(done / total * 100, format_eta(remaining))

                if self.rewriter.delegated and done < total:
                    await token.sleep(self.settings.inter_chunk_delay)
        except RunCancelled:
            logger.info("clean.cancelled chunks_done={done} chunks={total}", done=len(parts), total=total)
            return CleaningResult(
                status=RunStatus.CANCELLED,
                usage=usage,
                chunks_done=len(parts),
                chunks_total=total,
            )

        merged = "".join(parts)
        sanitized = sanitize_text(merged, self.settings.max_paragraph_length)
        logger.info(
            "clean.merged chars_in={chars_in} chars_out={chars_out} prompt_tokens={prompt} output_tokens={output}",
            chars_in=len(raw),
            chars_out=len(sanitized),
            prompt=usage.prompt,
            output=usage.output,
        )

        if options.is_meditation:
            pauses = scan_for_pauses(sanitized)
            if not pauses:
                raise NoPausesFoundError()
            warnings = validate_pauses(pauses)
            for warning in warnings:
                logger.warning("clean.pause_warning {warning}", warning=warning)
            logger.info("clean.review {summary}", summary=meditation_summary(pauses))
            return CleaningResult(
                status=RunStatus.REVIEW,
                text=sanitized,
                merged_text=merged,
                pauses=pauses,
                warnings=warnings,
                usage=usage,
                chunks_done=total,
                chunks_total=total,
            )

        warnings: List[str] = []
        if options.pause_config is not None:
            warnings = validate_pause_config(options.pause_config)
            for warning in warnings:
                logger.warning("clean.pause_config {warning}", warning=warning)
        final = inject_pauses(sanitized, options.pause_config)
        logger.info("clean.done pause_tags={tags}", tags=count_pause_tags(final))
        return CleaningResult(
            status=RunStatus.SUCCESS,
            text=final,
            merged_text=merged,
            warnings=warnings,
            usage=usage,
            chunks_done=total,
            chunks_total=total,
        )

    def finish_review(self, sanitized: str, pauses: List[DetectedPause]) -> str:
        """Apply reviewed pauses to the sanitized text of a meditation run."""
        for warning in validate_pauses(pauses):
            logger.warning("apply.pause_warning {warning}", warning=warning)
        return apply_pauses(sanitized, pauses)


# ─────────────────────────────────────────────────────────────────────────────
# Session persistence
# ─────────────────────────────────────────────────────────────────────────────

_ILLEGAL_FILE_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
MAX_FILE_NAME_LENGTH = 200


def sanitize_file_name(name: str) -> str:
    clean = _ILLEGAL_FILE_CHARS_RE.sub("_", name).strip().strip(".")
    return clean[:MAX_FILE_NAME_LENGTH] or "untitled"


class SessionStore:
    """Saved results keyed by source file name; write failures are warnings only."""

    prefix = "cleaned-"

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def path_for(self, file_name: str) -> Path:
        return self.directory / f"{self.prefix}{sanitize_file_name(file_name)}.txt"

    def save(self, file_name: str, text: str) -> Optional[Path]:
        path = self.path_for(file_name)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            logger.warning(
                "session.save_failed path={path} error={error}", path=path, error=exc
            )
            return None
        logger.debug("session.saved path={path}", path=path)
        return path

    def load(self, file_name: str) -> Optional[str]:
        path = self.path_for(file_name)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def clear(self) -> int:
        if not self.directory.exists():
            return 0
        removed = 0
        for path in self.directory.glob(f"{self.prefix}*.txt"):
            path.unlink()
            removed += 1
        return removed


# ─────────────────────────────────────────────────────────────────────────────
# On-disk artifacts
# ─────────────────────────────────────────────────────────────────────────────


class Manifest(BaseModel):
    text_name: str
    workspace: Path
    source: str


class PauseReview(BaseModel):
    """``pauses.json``: edit ``duration`` values, then run ``apply``."""

    model_config = ConfigDict(extra="forbid")

    summary: str
    warnings: List[str] = Field(default_factory=list)
    pauses: List[DetectedPause] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────────────
# Toolchain implementation
# ─────────────────────────────────────────────────────────────────────────────

WORKSPACE_DIR = Path(os.environ.get("WORKSPACE_DIR", "/data/workspace"))


class Toolchain:
    """Transcript pipeline exposed as sequential CLI stages."""

    def __init__(
        self,
        debug: bool = False,
        workspace_dir: Path | str = WORKSPACE_DIR / "transcripts",
        sessions_dir: Path | str = WORKSPACE_DIR / "sessions",
        force: bool = False,
        llm=None,
        model_name: str = "gpt-4o-mini",
        offline: bool = False,
        chunk_size: int = 12000,
    ) -> None:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG" if debug else "INFO")
        self.debug = debug
        self.force = force
        self.workspace_dir = Path(workspace_dir)
        self.workspace_dir.mkdir(parents=True, exist_ok=True)
        self.sessions = SessionStore(sessions_dir)
        self.settings = PipelineSettings(chunk_size=chunk_size)
        if llm is None and not offline and os.environ.get("OPENAI_API_KEY"):
            llm = ChatOpenAI(
                model=model_name,
                temperature=0,
                max_retries=0,
                timeout=self.settings.rewrite_timeout,
                stream_usage=True,
            )
        self.llm = None if offline else llm
        self.pipeline = TranscriptPipeline(self.llm, self.settings)

    # —————————————————— Utilities ——————————————————

    def _prepare_output_file(self, path: Path, stage: str) -> None:
        """Refuse to overwrite an existing artifact unless `--force` is set."""
        if path.exists():
            if not self.force:
                raise FileExistsError(
                    f"Stage {stage} refuses to overwrite existing file: {path}"
                )
            logger.warning(
                "Overwriting existing file for stage {stage}: {path}",
                stage=stage,
                path=path,
            )

    def _resolve_workspace(self, work_dir: Path | str) -> Path:
        """Resolve a workspace path, accepting relative names under `workspace_dir`."""
        work_path = Path(work_dir)
        if not work_path.is_absolute():
            work_path = self.workspace_dir / work_path
        if not work_path.exists():
            raise FileNotFoundError(
                f"Workspace {work_path} does not exist. Run `extract` first."
            )
        return work_path

    @staticmethod
    def _read_raw(workspace: Path) -> str:
        raw_path = workspace / "raw.txt"
        if not raw_path.exists():
            raise FileNotFoundError(f"Raw text missing: {raw_path}")
        return raw_path.read_text(encoding="utf-8")

    @staticmethod
    def _load_options(workspace: Path, mode: Optional[str]) -> CleaningOptions:
        options_path = workspace / "options.json"
        if options_path.exists():
            options = CleaningOptions.model_validate_json(options_path.read_text())
        else:
            options = default_options()
        if mode:
            # re-validate so the meditation chapter lock applies
            options = CleaningOptions.model_validate(
                {**options.model_dump(), "processing_mode": ProcessingMode(mode)}
            )
        return options

    async def _clean_and_summarize(
        self, raw: str, options: CleaningOptions
    ) -> Tuple[CleaningResult, List[CleaningAction]]:
        # one event loop for both calls; the chat model's client is loop-bound
        result = await self.pipeline.clean(raw, options)
        if result.status != RunStatus.SUCCESS:
            return result, []
        actions = await summarize_with_llm(self.llm, raw, result.merged_text, options)
        return result, actions

    # —————————————————— Stage commands ——————————————————

    def extract(self, source: Path | str) -> Path:
        """Extract the text of a document into a new workspace (raw.txt)."""
        source = Path(source)
        logger.info("extract.start source={source}", source=source)
        work_dir = self.workspace_dir / source.stem
        raw_path = work_dir / "raw.txt"
        self._prepare_output_file(raw_path, stage="extract")

        text = extract_text(
            source,
            on_progress=lambda percent: logger.debug(
                "extract.progress percent={percent}", percent=percent
            ),
        )
        work_dir.mkdir(parents=True, exist_ok=True)
        raw_path.write_text(text, encoding="utf-8")
        manifest = Manifest(text_name=source.stem, workspace=work_dir, source=str(source))
        (work_dir / "manifest.json").write_text(manifest.model_dump_json(indent=2))
        logger.info(
            "extract.done work_dir={work_dir} chars={chars}", work_dir=work_dir, chars=len(text)
        )
        return work_dir

    def plan(self, work_dir: Path | str) -> None:
        """Log issues found in raw.txt and the token, cost and listening-time estimates."""
        workspace = self._resolve_workspace(work_dir)
        raw = self._read_raw(workspace)
        analysis = analyze_text(raw)
        estimate = estimate_run(raw, self.settings)
        logger.info(
            "plan.analysis issues={issues} abbreviations={abbreviations} double_spaces={double_spaces} "
            "spaces_before_punctuation={plenken} hyphenations={hyphenations} urls={urls} emails={emails}",
            issues=analysis.total_issues,
            abbreviations=sum(hit.count for hit in analysis.abbreviations),
            double_spaces=analysis.double_spaces,
            plenken=analysis.spaces_before_punctuation,
            hyphenations=analysis.line_end_hyphenations,
            urls=analysis.urls,
            emails=analysis.emails,
        )
        for hit in analysis.abbreviations:
            logger.debug(
                "plan.abbreviation label={label} replacement={replacement} count={count}",
                label=hit.label,
                replacement=hit.replacement,
                count=hit.count,
            )
        logger.info(
            "plan.estimate chunks={chunks} tokens={tokens} cost={cost} listening={listening}",
            chunks=estimate.chunks,
            tokens=estimate.total_tokens,
            cost=estimate.cost_label(),
            listening=estimate.listening_label(),
        )

    def clean(self, work_dir: Path | str, mode: Optional[str] = None) -> Optional[Path]:
        """Clean raw.txt; standard mode writes transcript.txt, meditation mode pauses.json for review."""
        workspace = self._resolve_workspace(work_dir)
        raw = self._read_raw(workspace)
        options = self._load_options(workspace, mode)
        if options.is_meditation:
            outputs = [workspace / "sanitized.txt", workspace / "pauses.json"]
        else:
            outputs = [workspace / "transcript.txt", workspace / "summary.json"]
        for path in outputs:
            self._prepare_output_file(path, stage="clean")

        logger.info(
            "clean.stage work_dir={work_dir} mode={mode}",
            work_dir=workspace,
            mode=options.processing_mode.value,
        )
        try:
            result, actions = asyncio.run(self._clean_and_summarize(raw, options))
        except KeyboardInterrupt:
            logger.warning("clean.interrupted work_dir={work_dir}", work_dir=workspace)
            return None
        if result.status == RunStatus.CANCELLED:
            return None

        if result.status == RunStatus.REVIEW:
            sanitized_path, review_path = outputs
            sanitized_path.write_text(result.text, encoding="utf-8")
            review = PauseReview(
                summary=meditation_summary(result.pauses),
                warnings=result.warnings,
                pauses=result.pauses,
            )
            review_path.write_text(review.model_dump_json(indent=2))
            logger.info(
                "clean.review_ready pauses={count} path={path}",
                count=len(result.pauses),
                path=review_path,
            )
            return review_path

        transcript_path, summary_path = outputs
        transcript_path.write_text(result.text, encoding="utf-8")
        summary_path.write_text(CleaningReport(actions=actions).model_dump_json(indent=2))
        self.sessions.save(workspace.name, result.text)
        logger.info("clean.stage_done transcript={path}", path=transcript_path)
        return transcript_path

    def apply(self, work_dir: Path | str) -> Path:
        """Append reviewed pause tags from pauses.json to sanitized.txt (transcript.txt)."""
        workspace = self._resolve_workspace(work_dir)
        sanitized_path = workspace / "sanitized.txt"
        review_path = workspace / "pauses.json"
        for path in (sanitized_path, review_path):
            if not path.exists():
                raise FileNotFoundError(f"{path.name} missing; run `clean --mode meditation` first.")
        review = PauseReview.model_validate_json(review_path.read_text())
        if not review.pauses:
            raise NoPausesFoundError()
        transcript_path = workspace / "transcript.txt"
        self._prepare_output_file(transcript_path, stage="apply")

        text = self.pipeline.finish_review(
            sanitized_path.read_text(encoding="utf-8"), review.pauses
        )
        transcript_path.write_text(text, encoding="utf-8")
        self.sessions.save(workspace.name, text)
        logger.info(
            "apply.done transcript={path} pause_tags={tags}",
            path=transcript_path,
            tags=count_pause_tags(text),
        )
        return transcript_path

    def run(self, source: Path | str, mode: Optional[str] = None) -> Optional[Path]:
        """Extract and clean in one go."""
        work_dir = self.extract(source)
        return self.clean(work_dir, mode=mode)

    def clear_sessions(self) -> int:
        """Delete all saved sessions."""
        removed = self.sessions.clear()
        logger.info("sessions.cleared count={count}", count=removed)
        return removed


def main() -> None:
    fire.Fire(Toolchain)


if __name__ == "__main__":
    main()
