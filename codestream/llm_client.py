# codestream/llm_client.py
import asyncio
import logging
import random
import threading
import time
import traceback
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from openai import OpenAI
from langchain_google_vertexai import ChatVertexAI
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from codestream.model_props import is_openai_model, is_reasoning_model, parse_model_name

T = TypeVar("T")

logger = logging.getLogger("codestream")


class MaxRetryErrorsException(Exception):
    pass


class ProviderStreamError(Exception):
    """
    The generation stream broke (network, timeout, model failure).
    `chunks_received` tells callers whether anything arrived before the failure.
    """

    def __init__(self, message: str, chunks_received: int = 0):
        super().__init__(message)
        self.chunks_received = chunks_received


# Global backoff state (shared across all clients)
_global_backoff_lock = threading.Lock()
_global_wait_until = 0.0
_global_backoff_seconds = 30.0
_GLOBAL_BACKOFF_MAX = 600.0


def call_with_retries_sync(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    log: Callable[[str], None] | None = None,
) -> T:
    """
    Run a sync LLM call with global 429/timeout backoff + retries.
    """
    last_exception: Exception | None = None

    def _is_timeout_error(e: Exception) -> bool:
        if isinstance(e, asyncio.TimeoutError):
            return True
        msg = repr(e)
        return "TimeoutError" in msg or "timed out" in msg.lower()

    def _is_resource_exhausted_error(e: Exception) -> bool:
        msg = str(e)
        return (
            "429" in msg
            and (
                "RESOURCE_EXHAUSTED" in msg
                or "Resource has been exhausted" in msg
                or "Too Many Requests" in msg
            )
        )

    def _respect_global_backoff() -> None:
        while True:
            with _global_backoff_lock:
                now = time.monotonic()
                wait = _global_wait_until - now
            if wait <= 0:
                return
            time.sleep(min(wait, 1.0))

    def _register_429_and_get_delay() -> float:
        global _global_wait_until, _global_backoff_seconds

        with _global_backoff_lock:
            now = time.monotonic()
            base = _global_backoff_seconds
            delay = random.uniform(base * 0.95, base * 1.35)
            _global_backoff_seconds = min(_global_backoff_seconds * 2, _GLOBAL_BACKOFF_MAX)
            _global_wait_until = max(_global_wait_until, now + delay)
            return delay

    def _reset_backoff_on_success() -> None:
        global _global_backoff_seconds
        _global_backoff_seconds = max(1.0, _global_backoff_seconds * 0.5)

    for attempt in range(retries):
        _respect_global_backoff()
        start_time = time.time()
        try:
            result = fn()
            _reset_backoff_on_success()
            return result
        except Exception as e:
            elapsed = time.time() - start_time
            last_exception = e

            if _is_resource_exhausted_error(e) or _is_timeout_error(e):
                delay = _register_429_and_get_delay()
                msg = f"Attempt {attempt+1} got 429/timeout, backing off ~{delay:.1f}s."
            else:
                msg = f"Attempt {attempt+1} failed."

            if log:
                log(f"{msg} (elapsed={elapsed:.2f}s): {e}\n{traceback.format_exc()}")

    raise MaxRetryErrorsException(f"All {retries} retry attempts failed.") from last_exception


def _content_to_text(content: Any) -> str:
    # Vertex chunks carry either a str or a list of parts
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        out = []
        for part in content:
            if isinstance(part, str):
                out.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                out.append(str(part.get("text", "")))
        return "".join(out)
    return str(content)


class ChatLlmClient:
    """
    Chat-style wrapper used for both the streamed generation and the one-shot repairs:

        for text in chat_llm.stream([SystemMessage(...), HumanMessage(...)]): ...
        text = chat_llm.invoke([...], max_output_tokens=4000)

    Under the hood:
    - Vertex: ChatVertexAI.stream / ChatVertexAI.invoke
    - OpenAI: Responses API with input=[{role, content}, ...]
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ):
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self._timeout = timeout
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.last_usage: Optional[Dict[str, int]] = None
        self._openai_params: Dict[str, Any] = {}

        if self.provider == "vertex":
            self._vertex = ChatVertexAI(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                timeout=timeout,
                temperature=temperature,
                max_output_tokens=max_output_tokens,
            )
            self._client = None
        elif self.provider == "openai":
            self._vertex = None
            self.model_name, self._openai_params = parse_model_name(self.model_name)
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if timeout is not None:
                client_kwargs["timeout"] = timeout

            self._client = OpenAI(**client_kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider}")

    # -----------------------
    # Usage accounting
    # -----------------------

    def _merge_counts(self, inc: Dict[str, int]) -> None:
        if self.last_usage is None:
            self.last_usage = dict(inc)
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)

    def _merge_usage(self, usage: Any) -> None:
        if usage is None:
            return
        self._merge_counts({
            "prompt_token_count": getattr(usage, "input_tokens", 0) or 0,
            "candidates_token_count": getattr(usage, "output_tokens", 0) or 0,
            "total_token_count": getattr(usage, "total_tokens", 0) or 0,
        })

    def _merge_vertex_usage(self, usage_metadata: Any) -> None:
        if not usage_metadata:
            return

        def get(*keys: str) -> int:
            for k in keys:
                if isinstance(usage_metadata, dict):
                    v = usage_metadata.get(k)
                else:
                    v = getattr(usage_metadata, k, None)
                if v:
                    return int(v)
            return 0

        self._merge_counts({
            "prompt_token_count": get("prompt_token_count", "input_tokens"),
            "candidates_token_count": get("candidates_token_count", "output_tokens"),
            "total_token_count": get("total_token_count", "total_tokens"),
        })

    # -----------------------
    # OpenAI plumbing
    # -----------------------

    def _to_openai_messages(self, messages: List[BaseMessage]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        for m in messages:
            if isinstance(m, SystemMessage):
                role = "developer"
            elif isinstance(m, HumanMessage):
                role = "user"
            elif isinstance(m, AIMessage):
                role = "assistant"
            else:
                role = "user"
            out.append({"role": role, "content": str(m.content)})
        return out

    def _openai_request(self, messages: List[BaseMessage], max_output_tokens: int | None) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self.model_name,
            "input": self._to_openai_messages(messages),
            **self._openai_params,
        }
        budget = max_output_tokens or self.max_output_tokens
        if budget:
            request["max_output_tokens"] = budget
        if self.temperature is not None and not is_reasoning_model(self.model_name):
            request["temperature"] = self.temperature
        return request

    # -----------------------
    # Calls
    # -----------------------

    def _invoke_once(self, messages: List[BaseMessage], max_output_tokens: int | None = None) -> str:
        """
        Single HTTP call without retries/backoff.
        """
        if self.provider == "vertex":
            kwargs = {"max_output_tokens": max_output_tokens} if max_output_tokens else {}
            resp = self._vertex.invoke(messages, **kwargs)

            usage_md = getattr(resp, "usage_metadata", None)
            if usage_md is None:
                rm = getattr(resp, "response_metadata", None)
                if isinstance(rm, dict):
                    usage_md = rm.get("usage_metadata")
            self._merge_vertex_usage(usage_md)

            if isinstance(resp, str):
                return resp
            return _content_to_text(getattr(resp, "content", str(resp)))

        resp = self._client.responses.create(**self._openai_request(messages, max_output_tokens))
        self._merge_usage(getattr(resp, "usage", None))

        text = getattr(resp, "output_text", "") or ""
        return text.strip()

    def invoke(
        self,
        messages: List[BaseMessage],
        *,
        retries: int = 3,
        max_output_tokens: int | None = None,
    ) -> str:
        """
        Synchronous chat call with global 429/timeout backoff + retries.
        """
        return call_with_retries_sync(
            lambda: self._invoke_once(messages, max_output_tokens),
            retries=retries,
            log=lambda msg: logger.warning(f"[CHAT-LLM-RETRY] {msg}"),
        )

    def stream(self, messages: List[BaseMessage], *, max_output_tokens: int | None = None) -> Iterator[str]:
        """
        Yield text deltas as they arrive. No retries: a broken stream surfaces as
        ProviderStreamError and the caller keeps whatever it already received.
        """
        received = 0
        try:
            if self.provider == "vertex":
                kwargs = {"max_output_tokens": max_output_tokens} if max_output_tokens else {}
                for chunk in self._vertex.stream(messages, **kwargs):
                    self._merge_vertex_usage(getattr(chunk, "usage_metadata", None))
                    text = _content_to_text(getattr(chunk, "content", None))
                    if text:
                        received += 1
                        yield text
                return

            events = self._client.responses.create(
                stream=True, **self._openai_request(messages, max_output_tokens)
            )
            for event in events:
                event_type = getattr(event, "type", "")
                if event_type == "response.output_text.delta":
                    text = getattr(event, "delta", "") or ""
                    if text:
                        received += 1
                        yield text
                elif event_type == "response.completed":
                    self._merge_usage(getattr(getattr(event, "response", None), "usage", None))
                elif event_type in ("error", "response.failed"):
                    detail = getattr(event, "message", None) or getattr(event, "response", None)
                    raise ProviderStreamError(f"Provider reported a failed stream: {detail}", received)
        except ProviderStreamError:
            raise
        except Exception as e:
            raise ProviderStreamError(f"{type(e).__name__}: {e}", received) from e
