# codestream/model_props.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

# Client-facing model ids carry a provider prefix ("openai/gpt-5", "google/gemini-2.5-flash").
SUPPORTED_PROVIDER_PREFIXES = ("openai/", "google/")
UNSUPPORTED_PROVIDER_PREFIXES = ("anthropic/", "groq/", "moonshotai/")


#! MODEL NAMES

def normalize_model_name(raw: str) -> str:
    """
    Strip the provider prefix the UI sends.
    Fails fast for providers this service has no client for.
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("normalize_model_name: No Model Name passed. ")

    for prefix in UNSUPPORTED_PROVIDER_PREFIXES:
        if raw.startswith(prefix):
            raise ValueError(f"normalize_model_name: Unsupported provider for model '{raw}'")

    for prefix in SUPPORTED_PROVIDER_PREFIXES:
        if raw.startswith(prefix):
            return raw[len(prefix):]
    return raw


def is_openai_model(model_name) -> bool:
    # keep it simple; adjust if you start using exotic names
    prefixes = ("gpt-", "gpt4", "gpt-4", "gpt-5", "o3", "o4")
    return any(model_name.startswith(p) for p in prefixes)


def is_reasoning_model(model_name) -> bool:
    # reasoning models reject a sampling temperature
    return any(model_name.startswith(p) for p in ("gpt-5", "o3", "o4"))


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse strings like:
        - 'gpt-5.1_low_low'
        - 'gpt-5.1_standard'
        - 'gpt-5.1_fast'
        - 'gpt-5.1_deep_low'
    into (base_model, openai_params).
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError(f"parse_model_name: No Model Name passed. ")

    parts = raw.split("_")
    base = parts[0]
    if len(parts) <= 1:
        return base, {}

    verbosity: Optional[str] = None
    reasoning_effort: Optional[str] = None
    service_tier: Optional[str] = None

    verbosity_tokens = {"low", "medium", "high"}
    reasoning_tokens = {"none", "minimal", "low", "medium", "high", "xhigh"}
    service_tier_tokens = {"auto", "default", "flex", "priority"}

    # Wildcard presets: (verbosity, reasoning, tier)
    wildcards: Dict[str, Tuple[Optional[str], Optional[str], Optional[str]]] = {
        "standard": ("low", "low", None),
        "std": ("low", "low", None),
        "fast": ("low", "none", None),
        # code generation wants the model to think before it writes files
        "codegen": ("medium", "high", None),
        "deep": ("medium", "high", None),
        "standard-flex": ("low", "low", "flex"),
        "fast-flex": ("low", "none", "flex"),
        "standard-priority": ("low", "low", "priority"),
    }

    unknown = []
    for tok in parts[1:]:
        t = tok.strip().lower()
        if not t:
            continue

        # 1) Wildcard presets
        if t in wildcards:
            w_verb, w_reason, w_tier = wildcards[t]
            if verbosity is None and w_verb is not None:
                verbosity = w_verb
            if reasoning_effort is None and w_reason is not None:
                reasoning_effort = w_reason
            if service_tier is None and w_tier is not None:
                service_tier = w_tier
            continue

        # 2) Explicit verbosity token
        if verbosity is None and t in verbosity_tokens:
            verbosity = t
            continue

        # 3) Explicit reasoning token
        if reasoning_effort is None and t in reasoning_tokens:
            reasoning_effort = t
            continue

        # 4) Explicit service tier token
        if service_tier is None and t in service_tier_tokens:
            service_tier = t
            continue

        unknown.append(t)

    if unknown:
        raise ValueError(f"parse_model_name: Unknown model suffix token(s) {unknown} in '{raw}'. ")

    params: Dict[str, Any] = {}
    if verbosity is not None:
        params.setdefault("text", {})["verbosity"] = verbosity
    if reasoning_effort is not None:
        params.setdefault("reasoning", {})["effort"] = reasoning_effort
    params["service_tier"] = service_tier or "default"

    return base, params
