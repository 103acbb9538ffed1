import time
import threading
from dataclasses import asdict, dataclass, field
from typing import List

from langchain_community.chat_message_histories.in_memory import ChatMessageHistory
from langchain_core.messages import HumanMessage, AIMessage


@dataclass
class EditRecord:
    user_request: str
    edit_type: str
    target_files: List[str]
    confidence: float
    outcome: str = "success"
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return asdict(self)


class HistoryCache:
    """
    In-memory, per-conversation history with:
    - sliding TTL (expires ttl_seconds after last touch)
    - approximate token cap (chars/4 heuristic)
    - bounded list of the most recent edits
    - thread-safe operations (one lock serializes access per process)
    """

    def __init__(self, ttl_seconds: int, max_tokens: int, max_edits: int = 8):
        self.ttl_seconds = ttl_seconds
        self.max_tokens = max_tokens
        self.max_edits = max_edits
        self._lock = threading.Lock()
        # conversation_id -> {"history": ChatMessageHistory, "edits": [EditRecord], "expires_at": float}
        self._items: dict[str, dict[str, object]] = {}

    def _approx_tokens(self, text: str) -> int:
        return max(1, len(text) // 4)

    def _touch_unlocked(self, key: str) -> None:
        now = time.time()
        item = self._items.get(key)
        if item is not None:
            item["expires_at"] = now + self.ttl_seconds

    def _get_or_create_unlocked(self, key: str) -> dict:
        now = time.time()
        item = self._items.get(key)

        if item is not None:
            expires_at = float(item["expires_at"])
            if expires_at > now:
                item["expires_at"] = now + self.ttl_seconds
                return item
            # expired -> replace
            del self._items[key]

        item = {"history": ChatMessageHistory(), "edits": [], "expires_at": now + self.ttl_seconds}
        self._items[key] = item
        return item

    def snapshot(self, key: str) -> list:
        """
        Returns a COPY of the current message list for LLM input.
        Also prunes to cap (under lock), and touches TTL.
        """
        k = str(key)
        with self._lock:
            history = self._get_or_create_unlocked(k)["history"]
            self._prune_to_token_cap_unlocked(history)
            self._touch_unlocked(k)
            return list(history.messages)

    def append_turn(self, key: str, user_text: str, assistant_text: str) -> None:
        """
        Append user+assistant messages as a single turn and prune to cap.
        """
        k = str(key)
        with self._lock:
            history = self._get_or_create_unlocked(k)["history"]
            history.add_message(HumanMessage(content=user_text))
            history.add_message(AIMessage(content=assistant_text))
            self._prune_to_token_cap_unlocked(history)
            self._touch_unlocked(k)

    def record_edit(self, key: str, edit: EditRecord) -> None:
        k = str(key)
        with self._lock:
            item = self._get_or_create_unlocked(k)
            edits: list = item["edits"]  # type: ignore[assignment]
            edits.append(edit)
            if len(edits) > self.max_edits:
                del edits[: len(edits) - self.max_edits]
            self._touch_unlocked(k)

    def recent_edits(self, key: str, limit: int = 3) -> List[EditRecord]:
        with self._lock:
            edits: list = self._get_or_create_unlocked(str(key))["edits"]  # type: ignore[assignment]
            return list(edits[-limit:])

    def _prune_to_token_cap_unlocked(self, history: ChatMessageHistory) -> None:
        msgs = list(history.messages)

        tokens = []
        total = 0
        for m in msgs:
            content = getattr(m, "content", "") or ""
            t = self._approx_tokens(str(content))
            tokens.append(t)
            total += t

        if total <= self.max_tokens:
            return

        # drop from front until under cap
        i = 0
        while i < len(msgs) and total > self.max_tokens:
            total -= tokens[i]
            i += 1

        history.messages = msgs[i:]

    def sweep_expired(self) -> int:
        """
        Delete expired histories. Safe to call between sessions.
        Returns how many entries were removed.
        """
        now = time.time()
        removed = 0
        with self._lock:
            expired = [k for k, v in self._items.items() if float(v["expires_at"]) <= now]
            for k in expired:
                del self._items[k]
                removed += 1
        return removed
