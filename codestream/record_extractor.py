# codestream/record_extractor.py
import logging
import posixpath
import re
from dataclasses import dataclass
from typing import List, Optional

from codestream.events import ProgressReporter

logger = logging.getLogger("codestream")

RECORD_KINDS = ("file", "packages", "package", "explanation")

OPEN_RECORD_RE = re.compile(r"<(" + "|".join(RECORD_KINDS) + r")(?=[\s>])")
FILE_HEADER_RE = re.compile(r'<file path="([^"]+)">')
FILE_OPEN_TOKEN = '<file path="'
FILE_CLOSE_TOKEN = "</file>"
EXPLANATION_RE = re.compile(r"<explanation>([\s\S]*?)</explanation>")
DIRECTIVE_RE = re.compile(r"<(packages|package)>([\s\S]*?)</\1>")

DEFAULT_EXPLANATION = "Code generated successfully!"

# "<explanation" plus the char that disambiguates it
OPEN_HOLDBACK_CHARS = len("<explanation") + 1


@dataclass(frozen=True)
class Record:
    kind: str
    identity: Optional[str]
    payload: str
    start: int
    end: int


@dataclass(frozen=True)
class RecordSpan:
    """
    A file record as found in the finished output. `closed` is False for records
    cut off by the end of the stream (or by the next file marker).
    """

    identity: str
    start: int
    end: int
    body_start: int
    body_end: int
    closed: bool
    raw_payload: str

    @property
    def payload(self) -> str:
        return self.raw_payload.strip()


@dataclass
class _OpenRecord:
    kind: str
    identity: Optional[str]
    start: int
    body_start: int


def display_name(path: str) -> str:
    base = posixpath.basename(path or "")
    name, _ = posixpath.splitext(base)
    return name or "Component"


class RecordExtractor:
    """
    Incremental extractor over the append-only output buffer.

    `cursor` only moves forward; everything before it has already been emitted or
    ruled out. A record whose close marker has not arrived yet keeps the cursor on its
    open marker, and the close search resumes from where the previous scan stopped.
    """

    def __init__(
        self,
        reporter: ProgressReporter | None = None,
        *,
        component_dir: str = "components/",
        entry_point_name: str = "App.jsx",
    ):
        self.reporter = reporter
        self.component_dir = component_dir
        self.entry_point_name = entry_point_name
        self.cursor = 0
        self.component_count = 0
        self._open: Optional[_OpenRecord] = None
        self._close_scan = 0

    def scan(self, output: str) -> List[Record]:
        records: List[Record] = []

        while True:
            if self._open is None:
                m = OPEN_RECORD_RE.search(output, self.cursor)
                if m is None:
                    self.cursor = max(self.cursor, len(output) - OPEN_HOLDBACK_CHARS)
                    break

                opened = self._parse_header(output, m)
                if opened is None:
                    # header still arriving
                    self.cursor = m.start()
                    break
                if opened is False:
                    # complete tag that is not part of the grammar: skip it
                    logger.debug(f"Skipping malformed <{m.group(1)}> marker at offset {m.start()}")
                    self.cursor = m.end()
                    continue

                self._open = opened
                self._close_scan = opened.body_start

            close_token = f"</{self._open.kind}>"
            idx = output.find(close_token, self._close_scan)
            if idx < 0:
                self._close_scan = max(self._close_scan, len(output) - len(close_token) + 1)
                self.cursor = self._open.start
                break

            opened = self._open
            end = idx + len(close_token)
            record = Record(
                kind=opened.kind,
                identity=opened.identity,
                payload=output[opened.body_start:idx].strip(),
                start=opened.start,
                end=end,
            )
            self._open = None
            self.cursor = end
            records.append(record)
            self._announce(record)

        return records

    def _parse_header(self, output: str, m: re.Match):
        kind = m.group(1)
        if kind == "file":
            header = FILE_HEADER_RE.match(output, m.start())
            if header is not None:
                return _OpenRecord(kind, header.group(1), m.start(), header.end())
            if output.find(">", m.end()) < 0:
                return None
            return False

        token = f"<{kind}>"
        if output.startswith(token, m.start()):
            return _OpenRecord(kind, None, m.start(), m.start() + len(token))
        if output.find(">", m.end()) < 0:
            return None
        return False

    def _announce(self, record: Record) -> None:
        if record.kind != "file":
            return
        logger.debug(f"Record completed: {record.identity} ({len(record.payload)} chars)")
        if self.reporter is None:
            return

        path = record.identity or ""
        if self.component_dir and self.component_dir in path:
            self.component_count += 1
            self.reporter.emit(
                "component",
                name=display_name(path),
                path=path,
                index=self.component_count,
            )
        elif posixpath.basename(path) == self.entry_point_name:
            self.reporter.emit(
                "app",
                message=f"Generated main {self.entry_point_name}",
                path=path,
            )


# -----------------------
# Post-stream helpers
# -----------------------

def find_file_spans(output: str) -> List[RecordSpan]:
    """
    Full-buffer scan of every file record, terminated or not.
    An unterminated record runs up to the next record open marker of any kind, or the end of output.
    """
    spans: List[RecordSpan] = []
    for m in FILE_HEADER_RE.finditer(output):
        body_start = m.end()
        close_idx = output.find(FILE_CLOSE_TOKEN, body_start)
        next_file = output.find(FILE_OPEN_TOKEN, body_start)

        if close_idx >= 0 and (next_file < 0 or close_idx < next_file):
            spans.append(RecordSpan(
                identity=m.group(1),
                start=m.start(),
                end=close_idx + len(FILE_CLOSE_TOKEN),
                body_start=body_start,
                body_end=close_idx,
                closed=True,
                raw_payload=output[body_start:close_idx],
            ))
        else:
            next_open = OPEN_RECORD_RE.search(output, body_start)
            body_end = next_open.start() if next_open else len(output)
            spans.append(RecordSpan(
                identity=m.group(1),
                start=m.start(),
                end=body_end,
                body_start=body_start,
                body_end=body_end,
                closed=False,
                raw_payload=output[body_start:body_end],
            ))
    return spans


def find_directive_records(output: str) -> List[Record]:
    """
    Every <package>/<packages> record in the finished output, including the ones the
    streaming pass never reached because an unterminated file record held its cursor.
    Directives inside a terminated file payload are file content, not directives.
    """
    bodies = [(s.body_start, s.body_end) for s in find_file_spans(output) if s.closed]
    records: List[Record] = []
    for m in DIRECTIVE_RE.finditer(output):
        if any(start <= m.start() < end for start, end in bodies):
            continue
        records.append(Record(
            kind=m.group(1),
            identity=None,
            payload=m.group(2).strip(),
            start=m.start(),
            end=m.end(),
        ))
    return records


def collect_files(output: str) -> dict[str, str]:
    """
    Final path -> payload map. Later duplicates of a path win; unterminated
    records are kept with whatever payload arrived.
    """
    files: dict[str, str] = {}
    for span in find_file_spans(output):
        files[span.identity] = span.payload
    return files


def find_explanation(output: str) -> str:
    m = EXPLANATION_RE.search(output or "")
    return m.group(1).strip() if m else DEFAULT_EXPLANATION
