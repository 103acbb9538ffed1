from __future__ import annotations

import pytest

from codestream.events import ProgressReporter
from codestream.record_extractor import (
    DEFAULT_EXPLANATION,
    RecordExtractor,
    collect_files,
    display_name,
    find_explanation,
    find_directive_records,
    find_file_spans,
)

from fakes import split_chunks

OUTPUT = (
    "Here you go.\n"
    '<file path="src/App.jsx">\nimport Button from "./components/Button";\n'
    "export default function App() { return <Button/>; }\n</file>\n"
    '<file path="src/components/Button.jsx">\nexport default function Button() { return <button/>; }\n</file>\n'
    "<package>framer-motion</package>\n"
    "<packages>\naxios, lodash\n</packages>\n"
    "<explanation>Added a button.</explanation>"
)


def _scan_chunks(chunks: list[str], reporter: ProgressReporter | None = None):
    extractor = RecordExtractor(reporter)
    output = ""
    records = []
    for chunk in chunks:
        output += chunk
        records.extend(extractor.scan(output))
    return records, extractor


def _summary(records):
    return [(r.kind, r.identity, r.payload, r.start, r.end) for r in records]


def test_scenario_a_emits_both_files_in_order() -> None:
    chunks = ['<file path="a.txt">hel', 'lo</file><file path="b.txt">world</', "file>"]

    records, _ = _scan_chunks(chunks)

    assert [(r.identity, r.payload) for r in records] == [("a.txt", "hello"), ("b.txt", "world")]


@pytest.mark.parametrize("count", [1, 2, 50])
def test_records_are_independent_of_chunk_boundaries(count: int) -> None:
    expected, _ = _scan_chunks([OUTPUT])

    records, _ = _scan_chunks(split_chunks(OUTPUT, count))

    assert _summary(records) == _summary(expected)
    assert [r.kind for r in records] == ["file", "file", "package", "packages", "explanation"]


def test_every_payload_is_a_substring_of_the_output() -> None:
    records, _ = _scan_chunks(split_chunks(OUTPUT, 13))

    for record in records:
        assert record.payload in OUTPUT[record.start:record.end]


def test_rescanning_the_same_output_emits_nothing() -> None:
    extractor = RecordExtractor()
    assert len(extractor.scan(OUTPUT)) == 5

    assert extractor.scan(OUTPUT) == []


def test_cursor_only_moves_forward() -> None:
    extractor = RecordExtractor()
    output = ""
    last = 0
    for chunk in split_chunks(OUTPUT, 40):
        output += chunk
        extractor.scan(output)
        assert extractor.cursor >= last
        last = extractor.cursor


def test_unterminated_record_is_not_emitted_while_streaming() -> None:
    extractor = RecordExtractor()

    assert extractor.scan('<file path="a.js">const a = 1;') == []
    assert extractor.cursor == 0


def test_malformed_header_is_skipped() -> None:
    extractor = RecordExtractor()

    records = extractor.scan('<file name="x">oops</file><file path="ok.txt">fine</file>')

    assert [(r.identity, r.payload) for r in records] == [("ok.txt", "fine")]


def test_component_and_app_events(reporter: ProgressReporter) -> None:
    _, extractor = _scan_chunks(split_chunks(OUTPUT, 9), reporter)

    components = reporter.of_type("component")
    assert [(e.name, e.path, e.index) for e in components] == [
        ("Button", "src/components/Button.jsx", 1),
    ]
    apps = reporter.of_type("app")
    assert [(e.message, e.path) for e in apps] == [("Generated main App.jsx", "src/App.jsx")]
    assert extractor.component_count == 1


def test_entry_point_and_component_dir_are_configurable(reporter: ProgressReporter) -> None:
    extractor = RecordExtractor(reporter, component_dir="widgets/", entry_point_name="main.tsx")

    extractor.scan('<file path="src/main.tsx">x</file><file path="src/widgets/Nav.tsx">y</file>')

    assert [e.path for e in reporter.of_type("app")] == ["src/main.tsx"]
    assert [e.name for e in reporter.of_type("component")] == ["Nav"]


def test_display_name_falls_back_for_empty_path() -> None:
    assert display_name("src/components/Card.jsx") == "Card"
    assert display_name("") == "Component"


def test_find_file_spans_includes_unterminated_records() -> None:
    output = 'x <file path="a.js">abc<file path="b.js">def</file>'

    spans = find_file_spans(output)

    assert [(s.identity, s.closed, s.payload) for s in spans] == [
        ("a.js", False, "abc"),
        ("b.js", True, "def"),
    ]
    assert output[spans[0].start:spans[0].end] == '<file path="a.js">abc'


def test_collect_files_last_duplicate_wins() -> None:
    output = '<file path="a.txt">one</file><file path="a.txt">two</file><file path="b.txt">cut'

    assert collect_files(output) == {"a.txt": "two", "b.txt": "cut"}


def test_find_explanation_defaults() -> None:
    assert find_explanation(OUTPUT) == "Added a button."
    assert find_explanation("no explanation here") == DEFAULT_EXPLANATION


def test_unterminated_file_span_stops_at_the_next_record() -> None:
    output = (
        '<file path="src/components/A.jsx">export default function A() {\n  return (\n    <div'
        "\n<package>lodash</package>\n<explanation>Added A</explanation>"
    )

    [span] = find_file_spans(output)

    assert span.closed is False
    assert output[span.end:] == "<package>lodash</package>\n<explanation>Added A</explanation>"
    assert span.payload.endswith("<div")


def test_directive_records_are_found_after_an_unterminated_file() -> None:
    output = '<file path="a.js">x = (\n<packages>axios, lodash</packages><package> dayjs </package>'

    records = find_directive_records(output)

    assert [(r.kind, r.payload) for r in records] == [("packages", "axios, lodash"), ("package", "dayjs")]
    assert all(output[r.start:r.end].startswith("<package") for r in records)


def test_directive_inside_a_terminated_file_is_file_content() -> None:
    output = '<file path="README.md">Use <package>lodash</package> tags</file><package>axios</package>'

    assert [r.payload for r in find_directive_records(output)] == ["axios"]
