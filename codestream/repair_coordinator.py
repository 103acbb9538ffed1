# codestream/repair_coordinator.py
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from codestream.config import Settings
from codestream.events import ProgressReporter
from codestream.fault_detector import FaultDetector, FaultReport
from codestream.prompts import REPAIR_SYSTEM_PROMPT, REPAIR_USER_PROMPT
from codestream.record_extractor import RecordSpan, find_file_spans
from codestream.utils import Utils

logger = logging.getLogger("codestream")


class RepairRequestError(Exception):
    pass


class RepairClient(Protocol):
    def invoke(self, messages: List[BaseMessage], *, max_output_tokens: int | None = None) -> str:
        ...


@dataclass
class RepairContext:
    """
    What a repair is allowed to see: the original request and nothing else from the session.
    """

    user_request: str
    output: str


@dataclass
class RepairOutcome:
    output: str
    residual: FaultReport
    repaired: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    repaired_payloads: dict[str, str] = field(default_factory=dict)


class RepairCoordinator(Utils):
    """
    One narrow follow-up generation per faulted file, strictly one after another,
    each splicing its result over the faulted record's exact span.
    """

    def __init__(
        self,
        llm: Optional[RepairClient],
        reporter: ProgressReporter,
        settings: Settings | None = None,
        detector: FaultDetector | None = None,
    ):
        self.llm = llm
        self.reporter = reporter
        self.settings = settings or Settings()
        self.detector = detector or FaultDetector(brace_tolerance=self.settings.brace_tolerance)

    def build_repair_messages(self, file_path: str, user_request: str) -> List[BaseMessage]:
        prompt = self.unsafe_string_format(
            REPAIR_USER_PROMPT,
            FILE_PATH=file_path,
            USER_REQUEST=user_request,
        )
        return [SystemMessage(content=REPAIR_SYSTEM_PROMPT), HumanMessage(content=prompt)]

    def request_completion(self, file_path: str, user_request: str) -> str:
        if self.llm is None:
            raise RepairRequestError("No repair client available")

        messages = self.build_repair_messages(file_path, user_request)
        try:
            raw = self.llm.invoke(messages, max_output_tokens=self.settings.truncation_recovery_max_tokens)
        except Exception as e:
            raise RepairRequestError(f"Completion request for {file_path} failed: {e}") from e

        text = raw if isinstance(raw, str) else str(getattr(raw, "content", raw))
        content = self.extract_code_content(text)
        if not content.strip():
            raise RepairRequestError(f"Completion request for {file_path} returned no content")
        return content

    def repair(self, report: FaultReport, context: RepairContext) -> RepairOutcome:
        output = context.output
        if not report:
            return RepairOutcome(output=output, residual=report)

        if not self.settings.enable_truncation_recovery:
            logger.info("Truncation recovery disabled, leaving faults as warnings")
            return RepairOutcome(output=output, residual=report)

        logger.warning(f"Truncation detected, attempting to fix: {report.descriptions()}")
        self.reporter.warning(
            "Detected incomplete code generation. Attempting to complete...",
            warnings=report.descriptions(),
        )

        targets = self._select_targets(report, output)
        if not targets:
            # only unattributed faults: nothing to splice
            logger.info("No repairable file records among the detected faults")
            self.reporter.info("Truncation recovery complete")
            return RepairOutcome(output=output, residual=report)

        outcome = RepairOutcome(output=output, residual=report)
        shift = 0
        for span in targets:
            file_path = span.identity
            self.reporter.info(f"Completing {file_path}...")

            try:
                content = self.request_completion(file_path, context.user_request)
            except RepairRequestError as e:
                logger.error(f"Failed to complete {file_path}: {e}")
                outcome.failed.append(file_path)
                self.reporter.warning(f"Could not auto-complete {file_path}. Manual review may be needed.")
                continue

            replacement = f'<file path="{file_path}">\n{content}\n</file>'
            start, end = span.start + shift, span.end + shift
            outcome.output = outcome.output[:start] + replacement + outcome.output[end:]
            shift += len(replacement) - (span.end - span.start)

            outcome.repaired.append(file_path)
            outcome.repaired_payloads[file_path] = content.strip()
            logger.info(f"Successfully completed {file_path}")

        outcome.residual = self.detector.detect_faults(outcome.output)
        self.reporter.info("Truncation recovery complete")
        return outcome

    def _select_targets(self, report: FaultReport, output: str) -> List[RecordSpan]:
        """
        Spans to repair, in output order, one per faulted path (the last faulted
        occurrence when a path repeats), capped at max_repairs.
        """
        faulted_starts = {
            f.span[0] for f in report.faults
            if f.record_identity and f.span is not None
        }
        by_identity: dict[str, RecordSpan] = {}
        for span in find_file_spans(output):
            if span.start in faulted_starts:
                by_identity[span.identity] = span

        targets = sorted(by_identity.values(), key=lambda s: s.start)
        cap = self.settings.max_repairs
        if len(targets) > cap:
            skipped = [s.identity for s in targets[cap:]]
            logger.warning(f"Repair cap of {cap} reached, leaving {skipped} as-is")
            targets = targets[:cap]
        return targets
