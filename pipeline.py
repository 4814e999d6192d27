"""
Two-stage ingestion of shooting schedules and screenplays.

Stage 1 runs in the caller and returns a usable partial model quickly
(cast roster and day count, or scene headings and character names). Stage 2
runs in a background thread: the document is segmented into scopes, every
scope gets a deterministic parse and, when worthwhile, an AI parse, and the
winning result is folded into the cumulative model while progress is
reported.

Usage:
    handle = ScheduleIngestion(settings).start(pdf_bytes=data)
    handle.stage1            # available immediately
    model = handle.wait()    # final ScheduleModel
"""
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional, Union

from loguru import logger

from ai_extractor import extract_day_with_ai, extract_script_chunk_with_ai, should_use_ai
from chunk_grouper import split_schedule_by_days, split_script_into_chunks
from completion_client import CompletionError, CompletionService, TerminalCompletionError
from config import Settings
from metadata_extractor import extract_character_names, extract_metadata, run_stage1
from models import (
    Chunk,
    ExtractionContext,
    ProgressUpdate,
    ScheduleModel,
    ScopeResult,
    ScriptModel,
    Status,
)
from pdf_extractor import DocumentError, extract_text_with_pages
from reconciler import ScheduleReconciler, ScriptReconciler, choose_result
from response_parser import AIResponseParseError
from schedule_parser import parse_schedule_day
from script_parser import find_scene_locations, parse_scene_heading, parse_script_chunk

ProgressCallback = Callable[[ProgressUpdate], None]
Reconciler = Union[ScheduleReconciler, ScriptReconciler]

STAGE1_PERCENT = 10
STAGE2_END_PERCENT = 95


class IngestionSession:
    """One ingestion run, identified by a random id."""

    def __init__(self):
        self.session_id = str(uuid.uuid4())
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class SessionManager:
    """Tracks the current session; starting a new one supersedes the old one."""

    def __init__(self):
        self._lock = threading.Lock()
        self._current: Optional[IngestionSession] = None

    def start(self) -> IngestionSession:
        session = IngestionSession()
        with self._lock:
            if self._current is not None:
                logger.info(f"Session {self._current.session_id} superseded by {session.session_id}")
                self._current.cancel()
            self._current = session
        return session

    @property
    def current(self) -> Optional[IngestionSession]:
        with self._lock:
            return self._current

    def is_current(self, session: IngestionSession) -> bool:
        with self._lock:
            return self._current is session

    def is_active(self, session: IngestionSession) -> bool:
        """True while the session is current and not cancelled."""
        with self._lock:
            return self._current is session and not session.cancelled


class ProgressReporter:
    """Sends ProgressUpdates for one session; silent once it is superseded."""

    def __init__(self, session: IngestionSession, manager: SessionManager,
                 callback: Optional[ProgressCallback] = None):
        self.session = session
        self.manager = manager
        self.callback = callback
        self.last: Optional[ProgressUpdate] = None

    def report(self, status: Status, percent: int, message: str, error: Optional[str] = None) -> None:
        if not self.manager.is_current(self.session):
            return
        update = ProgressUpdate(
            session_id=self.session.session_id,
            status=status,
            percent=max(0, min(100, percent)),
            message=message,
            error=error
        )
        self.last = update
        logger.debug(f"[{update.percent:3d}%] {message}")
        if self.callback:
            self.callback(update)


class IngestionHandle:
    """
    Caller-side view of a running ingestion.

    Attributes:
        stage1: Snapshot of the model right after Stage 1
    """

    def __init__(self, session: IngestionSession, stage1, reconciler: Reconciler, thread: threading.Thread):
        self.session = session
        self.stage1 = stage1
        self._reconciler = reconciler
        self._thread = thread

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def done(self) -> bool:
        return not self._thread.is_alive()

    def wait(self, timeout: Optional[float] = None):
        """Block until Stage 2 ends (or the timeout passes) and return a snapshot."""
        self._thread.join(timeout)
        return self.snapshot()

    def snapshot(self):
        return self._reconciler.snapshot()

    def cancel(self) -> None:
        self.session.cancel()


class _Ingestion:
    """Shared Stage 2 machinery; subclasses supply the document-specific steps."""

    scope_label = "Scope"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        service: Optional[CompletionService] = None,
        on_progress: Optional[ProgressCallback] = None
    ):
        self.settings = settings or Settings.from_env()
        if service is None and self.settings.ai_enabled:
            service = CompletionService(api_key=self.settings.openai_api_key, model=self.settings.model)
        self.service = service if self.settings.ai_mode != "never" else None
        self.on_progress = on_progress
        self.sessions = SessionManager()

    def _load_text(self, pdf_bytes: Optional[bytes], text: Optional[str]) -> tuple[str, list]:
        if text is not None:
            if not text.strip():
                raise DocumentError("Document is empty")
            return text, []
        return extract_text_with_pages(
            pdf_bytes or b"",
            tolerance=self.settings.row_tolerance,
            column_gap=self.settings.column_gap
        )

    def _launch(self, session, reporter, reconciler, full_text, context) -> threading.Thread:
        thread = threading.Thread(
            target=self._run_stage2,
            args=(session, reporter, reconciler, full_text, context),
            name=f"ingest-{session.session_id[:8]}",
            daemon=True
        )
        thread.start()
        return thread

    def _split(self, full_text: str) -> list[Chunk]:
        raise NotImplementedError

    def _parse_deterministic(self, chunk: Chunk, context: ExtractionContext) -> ScopeResult:
        raise NotImplementedError

    def _parse_ai(self, chunk: Chunk, context: ExtractionContext) -> ScopeResult:
        raise NotImplementedError

    def _fold(self, reconciler: Reconciler, result: ScopeResult) -> None:
        raise NotImplementedError

    def _process_scope(self, chunk: Chunk, context: ExtractionContext,
                       session: IngestionSession, ai_disabled: threading.Event) -> list[ScopeResult]:
        """Deterministic parse plus optional AI parse of one scope. Never raises."""
        results = []
        try:
            deterministic = self._parse_deterministic(chunk, context)
        except Exception as e:
            logger.exception(f"{self.scope_label} {chunk.scope_id}: deterministic parse failed")
            deterministic = ScopeResult(scope_id=chunk.scope_id, source="deterministic", error=str(e))
        results.append(deterministic)

        if self.service is None or ai_disabled.is_set() or session.cancelled:
            return results
        if not should_use_ai(self.settings.ai_mode, deterministic.entry_count, chunk.body):
            return results

        try:
            results.append(self._parse_ai(chunk, context))
        except TerminalCompletionError as e:
            ai_disabled.set()
            results.append(ScopeResult(scope_id=chunk.scope_id, source="ai", error=str(e), terminal=True))
        except (CompletionError, AIResponseParseError) as e:
            logger.warning(f"{self.scope_label} {chunk.scope_id}: AI extraction failed: {e}")
            results.append(ScopeResult(scope_id=chunk.scope_id, source="ai", error=str(e)))
        except Exception as e:
            logger.exception(f"{self.scope_label} {chunk.scope_id}: AI extraction crashed")
            results.append(ScopeResult(scope_id=chunk.scope_id, source="ai", error=str(e)))
        return results

    def _run_stage2(self, session: IngestionSession, reporter: ProgressReporter,
                    reconciler: Reconciler, full_text: str, context: ExtractionContext) -> None:
        try:
            self._stage2(session, reporter, reconciler, full_text, context)
        except Exception as e:
            logger.exception(f"Stage 2 failed for session {session.session_id}")
            reconciler.warn(f"Processing failed: {e}")
            reconciler.finalize("error")
            reporter.report("error", 100, "Processing failed", error=str(e))

    def _stage2(self, session: IngestionSession, reporter: ProgressReporter,
                reconciler: Reconciler, full_text: str, context: ExtractionContext) -> None:
        chunks = self._split(full_text)
        total = len(chunks)
        ai_disabled = threading.Event()
        terminal_error = None
        completed = 0

        reporter.report("processing", STAGE1_PERCENT, f"Processing {total} {self.scope_label.lower()}(s)")

        with ThreadPoolExecutor(max_workers=self.settings.workers) as executor:
            future_to_chunk = {
                executor.submit(self._process_scope, chunk, context, session, ai_disabled): chunk
                for chunk in chunks
            }

            for future in as_completed(future_to_chunk):
                if not self.sessions.is_active(session):
                    for pending in future_to_chunk:
                        pending.cancel()
                    break

                chunk = future_to_chunk[future]
                results = future.result()

                for result in results:
                    if result.terminal:
                        terminal_error = terminal_error or result.error
                    elif result.error:
                        reconciler.warn(f"{self.scope_label} {chunk.scope_id}: {result.source} extraction failed: {result.error}")

                chosen = choose_result(results, ai_wins_ties=self.settings.ai_wins_ties)
                if chosen is not None:
                    self._fold(reconciler, chosen)
                    logger.info(f"{self.scope_label} {chunk.scope_id}: {chosen.entry_count} scenes ({chosen.source})")

                completed += 1
                percent = STAGE1_PERCENT + (STAGE2_END_PERCENT - STAGE1_PERCENT) * completed // total
                reporter.report("processing", percent, f"{self.scope_label} {chunk.scope_id} done ({completed}/{total})")

        if not self.sessions.is_active(session):
            logger.info(f"Session {session.session_id} cancelled, partial results kept")
            reconciler.warn("Processing cancelled")
            reconciler.finalize("error")
            reporter.report("error", 100, "Processing cancelled", error="cancelled")
            return

        if terminal_error:
            reconciler.warn(f"AI extraction stopped: {terminal_error}")
            reconciler.finalize("error")
            reporter.report("error", 100, "Completed with heuristic results only", error=terminal_error)
            return

        reconciler.finalize("complete")
        reporter.report("complete", 100, "Processing complete")


class ScheduleIngestion(_Ingestion):
    """Shooting schedule ingestion; scopes are shooting days."""

    scope_label = "Day"

    def start(self, pdf_bytes: Optional[bytes] = None, text: Optional[str] = None) -> IngestionHandle:
        """
        Run Stage 1 and start Stage 2 in the background.

        Args:
            pdf_bytes: Schedule PDF
            text: Already extracted schedule text (takes precedence)

        Raises:
            DocumentError: If the document is empty or unreadable
        """
        full_text, _ = self._load_text(pdf_bytes, text)
        session = self.sessions.start()
        reporter = ProgressReporter(session, self.sessions, self.on_progress)
        reporter.report("processing", 0, "Reading schedule")

        stage1 = run_stage1(full_text)
        model = ScheduleModel(
            cast_list=stage1.cast_list,
            total_days=stage1.total_days,
            processing_status="processing",
            production_name=stage1.production_name,
            script_version=stage1.script_version,
            schedule_version=stage1.schedule_version,
        )
        reconciler = ScheduleReconciler(model)
        reporter.report(
            "processing", STAGE1_PERCENT,
            f"Found {len(stage1.cast_list)} cast members and {stage1.total_days} shooting days"
        )

        context = ExtractionContext(session_id=session.session_id, roster=dict(stage1.cast_list))
        stage1_model = reconciler.snapshot()
        thread = self._launch(session, reporter, reconciler, full_text, context)
        return IngestionHandle(session, stage1_model, reconciler, thread)

    def _split(self, full_text: str) -> list[Chunk]:
        return split_schedule_by_days(full_text, overlap=self.settings.day_overlap)

    def _parse_deterministic(self, chunk: Chunk, context: ExtractionContext) -> ScopeResult:
        day = parse_schedule_day(chunk.body, chunk.scope_id)
        return ScopeResult(scope_id=chunk.scope_id, source="deterministic", day=day)

    def _parse_ai(self, chunk: Chunk, context: ExtractionContext) -> ScopeResult:
        day = extract_day_with_ai(chunk, context, self.service, max_retries=self.settings.ai_max_retries)
        return ScopeResult(scope_id=chunk.scope_id, source="ai", day=day)

    def _fold(self, reconciler: ScheduleReconciler, result: ScopeResult) -> None:
        reconciler.fold(result.day)


class ScriptIngestion(_Ingestion):
    """Screenplay ingestion; scopes are size-bounded chunks."""

    scope_label = "Chunk"

    def start(self, pdf_bytes: Optional[bytes] = None, text: Optional[str] = None) -> IngestionHandle:
        """
        Run Stage 1 and start Stage 2 in the background.

        Raises:
            DocumentError: If the document is empty or unreadable
        """
        full_text, pages = self._load_text(pdf_bytes, text)
        session = self.sessions.start()
        reporter = ProgressReporter(session, self.sessions, self.on_progress)
        reporter.report("processing", 0, "Reading screenplay")

        locations = find_scene_locations(full_text, pages)
        headings = [parse_scene_heading(location.heading) for location in locations]
        known_characters = extract_character_names(full_text)

        model = ScriptModel(
            title=extract_metadata(full_text)["production_name"],
            processing_status="processing"
        )
        if not locations:
            model.warnings.append("No scene headings found")
        reconciler = ScriptReconciler(model)
        reporter.report(
            "processing", STAGE1_PERCENT,
            f"Found {len(locations)} scene headings and {len(known_characters)} characters"
        )

        context = ExtractionContext(
            session_id=session.session_id,
            known_characters=tuple(known_characters),
            heading_offsets=tuple(location.char_offset for location in locations),
            heading_pages=tuple(location.page_number for location in locations),
            numbered_headings=bool(headings) and all(h.scene_number for h in headings if h)
        )
        stage1_model = reconciler.snapshot()
        thread = self._launch(session, reporter, reconciler, full_text, context)
        return IngestionHandle(session, stage1_model, reconciler, thread)

    def _split(self, full_text: str) -> list[Chunk]:
        return split_script_into_chunks(
            full_text,
            max_chars=self.settings.script_max_chars,
            lookback=self.settings.script_lookback,
            overlap=self.settings.script_overlap
        )

    def _parse_deterministic(self, chunk: Chunk, context: ExtractionContext) -> ScopeResult:
        return ScopeResult(scope_id=chunk.scope_id, source="deterministic", script=parse_script_chunk(chunk, context))

    def _parse_ai(self, chunk: Chunk, context: ExtractionContext) -> ScopeResult:
        script = extract_script_chunk_with_ai(chunk, context, self.service, max_retries=self.settings.ai_max_retries)
        return ScopeResult(scope_id=chunk.scope_id, source="ai", script=script)

    def _fold(self, reconciler: ScriptReconciler, result: ScopeResult) -> None:
        reconciler.fold(result.script)


def ingest_schedule(
    pdf_bytes: Optional[bytes] = None,
    text: Optional[str] = None,
    settings: Optional[Settings] = None,
    service: Optional[CompletionService] = None,
    on_progress: Optional[ProgressCallback] = None,
    timeout: Optional[float] = None
) -> ScheduleModel:
    """Ingest a shooting schedule and wait for the final model."""
    ingestion = ScheduleIngestion(settings, service, on_progress)
    return ingestion.start(pdf_bytes=pdf_bytes, text=text).wait(timeout)


def ingest_script(
    pdf_bytes: Optional[bytes] = None,
    text: Optional[str] = None,
    settings: Optional[Settings] = None,
    service: Optional[CompletionService] = None,
    on_progress: Optional[ProgressCallback] = None,
    timeout: Optional[float] = None
) -> ScriptModel:
    """Ingest a screenplay and wait for the final model."""
    ingestion = ScriptIngestion(settings, service, on_progress)
    return ingestion.start(pdf_bytes=pdf_bytes, text=text).wait(timeout)
