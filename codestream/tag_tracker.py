# codestream/tag_tracker.py
import re
from typing import List, Optional

from codestream.config import MIN_LOOKBACK_CHARS

# Tags that mark generated payload rather than conversation.
# Only file/package/packages/explanation are extracted; the rest are just kept out of the chat text.
TRACKED_TAGS = ("file", "packages", "package", "explanation", "command", "structure", "template")

OPEN_TAG_RE = re.compile(r"<(" + "|".join(TRACKED_TAGS) + r")(?=[\s>])")


class TagTracker:
    """
    Classifies the incoming stream as in-record vs conversational text.

    Only a bounded tail of unresolved text survives between chunks, so a marker split
    across chunk boundaries is still seen, and the rest of the stream is never rescanned.
    """

    def __init__(self, lookback_chars: int = 64):
        self.lookback_chars = max(lookback_chars, MIN_LOOKBACK_CHARS)
        self.in_record = False
        self.record_tag: Optional[str] = None
        self._pending = ""
        self._conversation: List[str] = []

    def feed(self, chunk: str) -> List[str]:
        """
        Consume one chunk. Returns the conversational texts flushed by this chunk
        (one per out-of-record -> in-record transition), already trimmed.
        """
        window = self._pending + (chunk or "")
        flushed: List[str] = []
        pos = 0

        while True:
            if self.in_record:
                close_token = f"</{self.record_tag}>"
                idx = window.find(close_token, pos)
                if idx < 0:
                    # keep just enough to catch a close marker split across chunks
                    pos = max(pos, len(window) - self.lookback_chars)
                    break
                pos = idx + len(close_token)
                self.in_record = False
                self.record_tag = None
                continue

            m = OPEN_TAG_RE.search(window, pos)
            if m is None:
                hold = self._holdback_start(window, pos)
                self._conversation.append(window[pos:hold])
                pos = hold
                break

            self._conversation.append(window[pos:m.start()])
            text = self._take_conversation()
            if text:
                flushed.append(text)
            self.in_record = True
            self.record_tag = m.group(1)
            pos = m.end()

        self._pending = window[pos:]
        return flushed

    def close(self) -> Optional[str]:
        """
        Stream ended: flush whatever conversational text is still buffered.
        """
        if not self.in_record:
            self._conversation.append(self._pending)
        self._pending = ""
        text = self._take_conversation()
        return text or None

    def _holdback_start(self, window: str, pos: int) -> int:
        # a trailing "<..." might still grow into an open marker
        idx = window.rfind("<", pos)
        if idx < 0 or len(window) - idx >= self.lookback_chars:
            return len(window)
        fragment = window[idx + 1:]
        if any(tag.startswith(fragment) for tag in TRACKED_TAGS):
            return idx
        return len(window)

    def _take_conversation(self) -> str:
        text = "".join(self._conversation).strip()
        self._conversation = []
        return text
