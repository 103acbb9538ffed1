from __future__ import annotations

import pytest

from codestream.config import MIN_LOOKBACK_CHARS
from codestream.tag_tracker import TagTracker

from fakes import split_chunks

OUTPUT = (
    "Sure, I'll build a counter.\n"
    '<file path="src/App.jsx">\nexport default function App() { return <div/>; }\n</file>\n'
    "And a helper component:\n"
    '<file path="src/components/Button.jsx">\nexport default function Button() {}\n</file>\n'
    "Done!"
)


def _feed_all(chunks: list[str]) -> tuple[list[str], TagTracker]:
    tracker = TagTracker()
    texts: list[str] = []
    for chunk in chunks:
        texts.extend(tracker.feed(chunk))
    tail = tracker.close()
    if tail:
        texts.append(tail)
    return texts, tracker


def test_conversation_is_flushed_on_record_open() -> None:
    texts, tracker = _feed_all([OUTPUT])

    assert texts == ["Sure, I'll build a counter.", "And a helper component:", "Done!"]
    assert tracker.in_record is False


@pytest.mark.parametrize("count", [2, 7, 50, len(OUTPUT)])
def test_conversation_is_independent_of_chunking(count: int) -> None:
    expected, _ = _feed_all([OUTPUT])

    texts, _ = _feed_all(split_chunks(OUTPUT, count))

    assert texts == expected


def test_open_marker_split_across_chunks_is_recognized() -> None:
    tracker = TagTracker()

    assert tracker.feed("Hello <fi") == []
    assert tracker.feed('le path="a.txt">body') == ["Hello"]
    assert tracker.in_record is True
    assert tracker.record_tag == "file"


def test_close_marker_split_across_chunks_is_recognized() -> None:
    tracker = TagTracker()
    tracker.feed('<package>lodash</pack')
    assert tracker.in_record is True

    tracker.feed("age> after")

    assert tracker.in_record is False
    assert tracker.close() == "after"


def test_pending_tail_stays_bounded_inside_long_record() -> None:
    tracker = TagTracker(lookback_chars=32)
    tracker.feed('<file path="big.js">')
    for _ in range(100):
        tracker.feed("x" * 500)

    assert len(tracker._pending) <= 32


def test_non_marker_angle_brackets_stay_conversation() -> None:
    tracker = TagTracker()
    texts = tracker.feed("Use a <div> or <span> here. ")

    assert texts == []
    assert tracker.close() == "Use a <div> or <span> here."


def test_text_inside_records_is_never_conversation() -> None:
    texts, _ = _feed_all(['<explanation>Built it</explanation>'])

    assert texts == []


def test_lookback_is_never_shorter_than_longest_marker() -> None:
    tracker = TagTracker(lookback_chars=2)

    assert tracker.lookback_chars == MIN_LOOKBACK_CHARS
