# codestream/fault_detector.py
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from codestream.record_extractor import FILE_CLOSE_TOKEN, FILE_OPEN_TOKEN, RecordSpan, find_file_spans

logger = logging.getLogger("codestream")


class FaultKind(str, Enum):
    UNCLOSED = "unclosed"
    INCOMPLETE_TAG = "incomplete-tag"
    UNBALANCED_BRACES = "unbalanced-braces"
    SEVERELY_TRUNCATED = "severely-truncated"


@dataclass(frozen=True)
class Fault:
    record_identity: Optional[str]
    kind: FaultKind
    description: str
    span: Optional[Tuple[int, int]] = None


@dataclass
class FaultReport:
    faults: List[Fault] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.faults)

    def __len__(self) -> int:
        return len(self.faults)

    def identities(self) -> List[str]:
        """
        Faulted file paths, first-seen order, no repeats. Unattributed faults are left out.
        """
        out: List[str] = []
        for f in self.faults:
            if f.record_identity and f.record_identity not in out:
                out.append(f.record_identity)
        return out

    def for_identity(self, identity: str) -> List[Fault]:
        return [f for f in self.faults if f.record_identity == identity]

    def descriptions(self) -> List[str]:
        return [f.description for f in self.faults]


SCRIPT_PATH_RE = re.compile(r"\.(jsx?|tsx?)$")
UNFINISHED_TAG_RE = re.compile(r"<[A-Za-z][\w.:-]*(?:\s[^<>]*)?$")
DANGLING_SUFFIXES = ("</", "<", "(", "[", "{")
# trailing separators only count as dangling in script sources
SCRIPT_DANGLING_SUFFIXES = (",", "=")
ESCAPED_CHAR_RE = re.compile(r"\\.")
GROUPING_PAIRS = (("{", "}"), ("(", ")"), ("[", "]"))
SEVERE_TRUNCATION_MAX_CHARS = 20


def is_component_path(path: str) -> bool:
    return bool(SCRIPT_PATH_RE.search(path or ""))


def has_unterminated_quote(line: str) -> bool:
    # double-quoted strings cannot span lines in JS/TS, so an odd count means a cut string
    return ESCAPED_CHAR_RE.sub("", line).count('"') % 2 == 1


# -----------------------
# Checks (one fault kind each)
# -----------------------

def check_unclosed(span: RecordSpan, tolerance: int) -> Optional[Fault]:
    if span.closed:
        return None
    return Fault(
        span.identity,
        FaultKind.UNCLOSED,
        f"File {span.identity} is missing its closing </file> tag",
        (span.start, span.end),
    )


def check_incomplete_tag(span: RecordSpan, tolerance: int) -> Optional[Fault]:
    content = span.payload
    if not content:
        return None
    last_line = content.splitlines()[-1]
    dangling = content.endswith(DANGLING_SUFFIXES) or UNFINISHED_TAG_RE.search(last_line)
    if not dangling and is_component_path(span.identity):
        dangling = content.endswith(SCRIPT_DANGLING_SUFFIXES) or has_unterminated_quote(last_line)
    if dangling:
        return Fault(
            span.identity,
            FaultKind.INCOMPLETE_TAG,
            f"File {span.identity} appears to have incomplete HTML tags",
            (span.start, span.end),
        )
    return None


def check_unbalanced_braces(span: RecordSpan, tolerance: int) -> Optional[Fault]:
    if not is_component_path(span.identity):
        return None
    content = span.raw_payload
    for open_ch, close_ch in GROUPING_PAIRS:
        opened = content.count(open_ch)
        closed = content.count(close_ch)
        if abs(opened - closed) > tolerance:
            return Fault(
                span.identity,
                FaultKind.UNBALANCED_BRACES,
                f"File {span.identity} has severely unmatched '{open_ch}{close_ch}' ({opened} open, {closed} closed)",
                (span.start, span.end),
            )
    return None


def check_severely_truncated(span: RecordSpan, tolerance: int) -> Optional[Fault]:
    if not is_component_path(span.identity):
        return None
    content = span.raw_payload
    if len(content) < SEVERE_TRUNCATION_MAX_CHARS and "function" in content and "}" not in content:
        return Fault(
            span.identity,
            FaultKind.SEVERELY_TRUNCATED,
            f"File {span.identity} appears severely truncated",
            (span.start, span.end),
        )
    return None


DEFAULT_CHECKS: Tuple[Callable[[RecordSpan, int], Optional[Fault]], ...] = (
    check_unclosed,
    check_incomplete_tag,
    check_unbalanced_braces,
    check_severely_truncated,
)


class FaultDetector:
    """
    Post-stream structural checks over the whole output, not just the records the
    streaming extractor emitted, so unterminated records are caught too.
    Heuristic: misses are acceptable, false alarms should be rare.
    """

    def __init__(self, brace_tolerance: int = 3, checks=DEFAULT_CHECKS):
        self.brace_tolerance = brace_tolerance
        self.checks = tuple(checks)

    def detect_faults(self, output: str) -> FaultReport:
        report = FaultReport()
        spans = find_file_spans(output or "")

        for span in spans:
            for check in self.checks:
                fault = check(span, self.brace_tolerance)
                if fault is not None:
                    report.faults.append(fault)

        open_count = (output or "").count(FILE_OPEN_TOKEN)
        close_count = (output or "").count(FILE_CLOSE_TOKEN)
        if open_count != close_count and not any(f.kind == FaultKind.UNCLOSED for f in report.faults):
            report.faults.append(Fault(
                None,
                FaultKind.UNCLOSED,
                f"Unclosed file tags detected: {open_count} open, {close_count} closed",
            ))

        if report:
            logger.warning(f"Fault detection found {len(report)} issue(s): {report.descriptions()}")
        return report
