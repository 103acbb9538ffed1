# codestream/generation_session.py
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from codestream.config import Settings
from codestream.dependency_collector import DependencyCollector
from codestream.events import ProgressReporter
from codestream.fault_detector import FaultDetector
from codestream.history_cache import EditRecord, HistoryCache
from codestream.llm_client import ProviderStreamError
from codestream.prompts import (
    CURRENT_FILES_BLOCK,
    EDIT_MODE_RULES,
    FRESH_MODE_RULES,
    GENERATION_SYSTEM_PROMPT,
    GENERATION_USER_PROMPT,
    RECENT_EDITS_BLOCK,
    TARGET_FILES_BLOCK,
)
from codestream.record_extractor import RecordExtractor, collect_files, find_directive_records, find_explanation
from codestream.repair_coordinator import RepairContext, RepairCoordinator
from codestream.tag_tracker import TagTracker
from codestream.utils import Utils

logger = logging.getLogger("codestream")


class SessionRequestError(Exception):
    pass


class SessionState(str, Enum):
    STREAMING = "streaming"
    STREAM_ENDED = "stream_ended"
    FAULT_DETECTED = "fault_detected"
    REPAIRING = "repairing"
    COMPLETED = "completed"


@dataclass
class SessionRequest:
    prompt: str
    is_edit: bool = False
    target_files: Optional[List[str]] = None
    current_files: Optional[Dict[str, str]] = None
    model: Optional[str] = None
    conversation_id: str = "default"


@dataclass
class SessionResult:
    files: Dict[str, str] = field(default_factory=dict)
    packages: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    explanation: str = ""
    generated_code: str = ""
    history_entry: Optional[EditRecord] = None
    state: SessionState = SessionState.COMPLETED
    cancelled: bool = False
    error: Optional[str] = None


class GenerationSession(Utils):
    """
    One end-to-end streaming generation: ingest -> extract -> detect -> repair -> complete.

    The session is the only owner of its output buffer and of every component's state;
    nothing here is shared with other sessions except the history store that is passed in.
    Chunks must be fed from a single thread, in order. `cancel()` may be called from anywhere.
    """

    def __init__(
        self,
        request: SessionRequest,
        reporter: ProgressReporter,
        *,
        repair_llm=None,
        settings: Settings | None = None,
        history: HistoryCache | None = None,
    ):
        self.request = request
        self.reporter = reporter
        self.settings = settings or Settings()
        self.history = history
        self.state = SessionState.STREAMING
        self.generated_code = ""
        self.chunk_count = 0
        self._cancelled = threading.Event()

        self.tracker = TagTracker(lookback_chars=self.settings.lookback_chars)
        self.extractor = RecordExtractor(
            reporter,
            component_dir=self.settings.component_dir,
            entry_point_name=self.settings.entry_point_name,
        )
        self.dependencies = DependencyCollector(
            reporter,
            enabled=bool(request.is_edit),
            host_modules=self.settings.host_modules,
            alias_prefixes=self.settings.alias_prefixes,
        )
        self.detector = FaultDetector(brace_tolerance=self.settings.brace_tolerance)
        self.repairer = RepairCoordinator(repair_llm, reporter, self.settings, self.detector)

    # -----------------------
    # Control
    # -----------------------

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # -----------------------
    # Ingest
    # -----------------------

    def ingest(self, chunk: str) -> None:
        if self.state != SessionState.STREAMING:
            raise RuntimeError(f"ingest() called in state {self.state.value}")
        if not chunk:
            return

        self.chunk_count += 1
        self.generated_code += chunk

        for text in self.tracker.feed(chunk):
            self.reporter.emit("conversation", text=text)
        self.reporter.emit("stream", text=chunk, raw=True)

        for record in self.extractor.scan(self.generated_code):
            self.dependencies.collect_from_record(record)

    def end_stream(self) -> None:
        text = self.tracker.close()
        if text:
            self.reporter.emit("conversation", text=text)
        self._transition(SessionState.STREAM_ENDED)
        logger.info(f"Streaming complete: {self.chunk_count} chunks, {len(self.generated_code)} chars")

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"Session state {self.state.value} -> {state.value}")
        self.state = state

    # -----------------------
    # Lifecycle
    # -----------------------

    def validate_request(self) -> None:
        if not (self.request.prompt or "").strip():
            raise SessionRequestError("Prompt is required")

    def generate(self, llm) -> SessionResult:
        """
        Build the generation prompt and run the session over the provider's stream.
        """
        try:
            self.validate_request()
        except SessionRequestError as e:
            return self._fail(str(e))
        if llm is None:
            return self._fail("No generation provider available")

        messages = self.build_generation_messages()
        result = self.run(llm.stream(messages, max_output_tokens=self.settings.max_tokens))
        usage = getattr(llm, "last_usage", None)
        if usage:
            logger.info(f"Generation token usage: {usage}")
        return result

    def run(self, chunks: Iterable[str]) -> SessionResult:
        self.reporter.status("Initializing AI...")
        try:
            self.validate_request()
        except SessionRequestError as e:
            return self._fail(str(e))

        self.reporter.status("Planning application structure...")
        stream_warnings: List[str] = []

        iterator = iter(chunks)
        try:
            while not self.cancelled:
                try:
                    chunk = next(iterator)
                except StopIteration:
                    break
                except Exception as e:
                    if not isinstance(e, ProviderStreamError):
                        e = ProviderStreamError(f"{type(e).__name__}: {e}", self.chunk_count)
                    if self.chunk_count == 0:
                        logger.error(f"Generation provider unavailable: {e}")
                        return self._fail(f"Generation provider unavailable: {e}")
                    logger.warning(f"Stream interrupted after {self.chunk_count} chunks, keeping partial output: {e}")
                    message = f"Generation stream was interrupted: {e}"
                    stream_warnings.append(message)
                    self.reporter.warning(message)
                    break
                if self.cancelled:
                    break
                self.ingest(chunk)
        finally:
            close = getattr(iterator, "close", None)
            if callable(close):
                close()

        if self.cancelled:
            logger.info("Session cancelled, skipping fault detection and repair")
            return self._complete(stream_warnings, cancelled=True)

        self.end_stream()
        report = self.detector.detect_faults(self.generated_code)
        if report:
            self._transition(SessionState.FAULT_DETECTED)
            self._transition(SessionState.REPAIRING)
            outcome = self.repairer.repair(
                report,
                RepairContext(user_request=self.request.prompt, output=self.generated_code),
            )
            self.generated_code = outcome.output
            for payload in outcome.repaired_payloads.values():
                self.dependencies.collect_from_payload(payload)
            report = outcome.residual

        for record in find_directive_records(self.generated_code):
            self.dependencies.collect_from_record(record)

        return self._complete(stream_warnings + report.descriptions())

    def _complete(self, warnings: List[str], cancelled: bool = False) -> SessionResult:
        files = collect_files(self.generated_code)
        explanation = find_explanation(self.generated_code)
        packages = self.dependencies.packages
        self._transition(SessionState.COMPLETED)

        self.reporter.emit(
            "complete",
            generatedCode=self.generated_code,
            explanation=explanation,
            files=len(files),
            components=self.extractor.component_count,
            model=self.request.model,
            packagesToInstall=packages or None,
            warnings=warnings or None,
        )

        result = SessionResult(
            files=files,
            packages=packages,
            warnings=warnings,
            explanation=explanation,
            generated_code=self.generated_code,
            state=self.state,
            cancelled=cancelled,
        )
        if not cancelled:
            result.history_entry = self._record_history(files, explanation)
        return result

    def _fail(self, error: str) -> SessionResult:
        self._transition(SessionState.COMPLETED)
        self.reporter.error(error)
        return SessionResult(state=self.state, error=error)

    # -----------------------
    # Conversation history
    # -----------------------

    def _record_history(self, files: Dict[str, str], explanation: str) -> Optional[EditRecord]:
        if not self.request.is_edit:
            return None

        target_files = list(self.request.target_files or [])
        edit = EditRecord(
            user_request=self.request.prompt,
            edit_type="UPDATE_COMPONENT" if target_files else "UPDATE_FILES",
            target_files=target_files or list(files.keys()),
            confidence=0.95 if target_files else 0.6,
        )
        if self.history is not None:
            key = self.request.conversation_id
            self.history.append_turn(key, self.request.prompt, explanation)
            self.history.record_edit(key, edit)
            logger.debug(f"Updated conversation history with edit: {edit.to_dict()}")
        return edit

    # -----------------------
    # Prompt
    # -----------------------

    def build_generation_messages(self) -> List[BaseMessage]:
        request = self.request
        system_prompt = self.unsafe_string_format(
            GENERATION_SYSTEM_PROMPT,
            MODE_RULES=EDIT_MODE_RULES if request.is_edit else FRESH_MODE_RULES,
        )

        context_parts: List[str] = []
        if request.current_files:
            blocks = "\n".join(
                f'<file path="{path}">\n{content}\n</file>'
                for path, content in request.current_files.items()
                if isinstance(content, str)
            )
            context_parts.append(self.unsafe_string_format(CURRENT_FILES_BLOCK, FILES=blocks))
        if request.target_files:
            context_parts.append(self.unsafe_string_format(
                TARGET_FILES_BLOCK,
                TARGET_FILES="\n".join(f"- {p}" for p in request.target_files),
            ))
        if self.history is not None and request.is_edit:
            edits = self.history.recent_edits(request.conversation_id)
            if edits:
                lines = "\n".join(f'- "{e.user_request}" -> {", ".join(e.target_files)}' for e in edits)
                context_parts.append(self.unsafe_string_format(RECENT_EDITS_BLOCK, EDITS=lines))

        context = ""
        if context_parts:
            context = "CONTEXT:\n" + "\n\n".join(context_parts) + "\n\n"

        user_prompt = self.unsafe_string_format(
            GENERATION_USER_PROMPT,
            CONTEXT=context,
            USER_REQUEST=request.prompt,
        )

        messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]
        if self.history is not None:
            messages.extend(self.history.snapshot(request.conversation_id))
        messages.append(HumanMessage(content=user_prompt))
        return messages
